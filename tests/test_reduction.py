import geopandas as gp
import numpy as np
import pytest
from shapely.geometry import box

from aromatawai import reduction
from aromatawai.climatology import TimeIndex
from aromatawai.grid import Field, Grid, LevelSet


def test_weighted_mean_excludes_missing_cells():
    values = np.array([1.0, np.nan, 3.0])
    weights = np.array([1.0, 100.0, 1.0])

    assert reduction.weighted_mean(values, weights) == 2.0


def test_weighted_mean_uses_weights():
    assert reduction.weighted_mean(np.array([1.0, 4.0]), np.array([2.0, 1.0])) == 2.0


def test_weighted_mean_without_valid_weight_is_nan():
    assert np.isnan(reduction.weighted_mean(np.array([1.0, 2.0]), np.zeros(2)))
    assert np.isnan(reduction.weighted_mean(np.array([np.nan, np.nan]), np.ones(2)))


def test_weighted_mean_rejects_negative_weights():
    with pytest.raises(ValueError):
        reduction.weighted_mean(np.ones(2), np.array([1.0, -1.0]))


def test_weighted_mean_accumulates_in_float64():
    values = np.full(10_000, 0.1, dtype=np.float32)

    mean = reduction.weighted_mean(values, np.ones(values.size, dtype=np.float32))

    assert isinstance(mean, float)
    assert mean == pytest.approx(float(np.float32(0.1)), rel=1e-12)


def test_weighted_mean_series_of_constant_field(constant_field):
    series = reduction.weighted_mean_series(constant_field)

    assert series.shape == (24,)
    np.testing.assert_allclose(series, 3.0)


def test_weighted_mean_series_with_mask(global_grid):
    data = np.zeros((1, 4, 4))
    data[0, 2:, :] = 5.0

    field = Field(data, global_grid, time_index=TimeIndex([2000], [1]))

    north = reduction.hemisphere_mask(global_grid, 'north')

    np.testing.assert_allclose(reduction.weighted_mean_series(field, mask=north), [5.0])


def test_volume_weights_and_max_depth():
    levels = LevelSet([0.0, 10.0, 100.0])
    area = np.array([[1.0, 3.0]])

    weights = reduction.volume_weights(area, levels)

    np.testing.assert_array_equal(weights, [[[10.0, 30.0]], [[90.0, 270.0]]])

    truncated = reduction.volume_weights(area, levels, max_depth=40.0)

    np.testing.assert_array_equal(truncated[:, 0, 0], [10.0, 30.0])


def test_volume_weighted_mean_weights_by_thickness():
    levels = LevelSet([0.0, 10.0, 100.0])
    area = np.ones((1, 2))

    data = np.array([[[10.0, 10.0]], [[0.0, 0.0]]])

    assert reduction.volume_weighted_mean(data, area, levels) == pytest.approx(1.0)
    assert reduction.volume_weighted_mean(data, area, levels, max_depth=10.0) == pytest.approx(10.0)


def test_volume_weighted_mean_skips_missing_cells():
    levels = LevelSet([0.0, 10.0, 20.0])
    area = np.ones((1, 2))

    data = np.array([[[4.0, 4.0]], [[2.0, np.nan]]])

    # Three valid cells of equal volume
    assert reduction.volume_weighted_mean(data, area, levels) == pytest.approx(10.0 / 3.0)

    with pytest.raises(ValueError):
        reduction.volume_weighted_mean(data[:1], area, levels)


def test_volume_weighted_mean_series():
    grid = Grid(np.array([0.0, 0.0001]), np.array([0.0, 1.0]), area=np.ones((2, 2)))
    levels = LevelSet([0.0, 10.0, 100.0])

    data = np.zeros((2, 2, 2, 2))
    data[:, 0] = 10.0

    field = Field(data, grid, time_index=TimeIndex([2000, 2000], [1, 2]), levels=levels)

    np.testing.assert_allclose(reduction.volume_weighted_mean_series(field), [1.0, 1.0])
    np.testing.assert_allclose(reduction.weighted_mean_series(field), [1.0, 1.0])
    np.testing.assert_allclose(reduction.volume_weighted_mean_series(field, max_depth=10.0), [10.0, 10.0])


def test_sea_ice_area_threshold():
    concentration = np.array([[10.0, 20.0], [50.0, np.nan]])
    area = np.ones((2, 2))

    assert reduction.sea_ice_area(concentration, area) == 2.0
    assert reduction.sea_ice_area(concentration, area, weight_by_concentration=True) == pytest.approx(0.7)
    assert reduction.sea_ice_area(concentration, area, threshold=30.0) == 1.0


def test_sea_ice_area_series_by_hemisphere(global_grid):
    data = np.zeros((1, 4, 4))
    data[0, 3, :] = 100.0  # northernmost row
    data[0, 0, :2] = 100.0  # half of the southernmost row

    field = Field(data, global_grid, time_index=TimeIndex([2000], [3]), units='%')

    areas = global_grid.spherical_cell_areas()

    north = reduction.sea_ice_area_series(field, hemisphere='north')
    south = reduction.sea_ice_area_series(field, hemisphere='south')
    both = reduction.sea_ice_area_series(field)

    assert north[0] == pytest.approx(areas[3].sum())
    assert south[0] == pytest.approx(areas[0, :2].sum())
    assert both[0] == pytest.approx(north[0] + south[0])


def test_hemisphere_mask(global_grid):
    north = reduction.hemisphere_mask(global_grid, 'north')

    assert north[2:].all()
    assert not north[:2].any()
    assert reduction.hemisphere_mask(global_grid).all()

    with pytest.raises(ValueError):
        reduction.hemisphere_mask(global_grid, 'east')


def test_region_mask_selects_cells_inside_polygons():
    grid = Grid(np.array([-20.0, 0.0, 20.0]), np.array([0.0, 20.0, 40.0]))

    region_gdf = gp.GeoDataFrame({'name': ['box']}, geometry=[box(10.0, -10.0, 30.0, 10.0)], crs='EPSG:4326')

    mask = reduction.region_mask(grid, region_gdf)

    expected = np.zeros((3, 3), dtype=bool)
    expected[1, 1] = True

    assert mask.dtype == bool
    np.testing.assert_array_equal(mask, expected)

    # The cached mask is returned as a copy
    mask[:] = True
    np.testing.assert_array_equal(reduction.region_mask(grid, region_gdf), expected)


def test_region_mask_unions_polygons_and_tracks_changes():
    grid = Grid(np.array([-20.0, 0.0, 20.0]), np.array([0.0, 20.0, 40.0]))

    two_boxes = gp.GeoDataFrame(
        {'name': ['west', 'east']},
        geometry=[box(10.0, -10.0, 30.0, 10.0), box(30.0, 10.0, 50.0, 30.0)],
        crs='EPSG:4326',
    )

    mask = reduction.region_mask(grid, two_boxes)

    assert mask[1, 1]
    assert mask[2, 2]
    assert mask.sum() == 2

    one_box = two_boxes.iloc[[1]]

    mask = reduction.region_mask(grid, one_box)

    assert not mask[1, 1]
    assert mask[2, 2]
