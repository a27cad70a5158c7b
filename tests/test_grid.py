import numpy as np
import pytest

from aromatawai.errors import GridRepairError
from aromatawai.grid import (
    EARTH_RADIUS,
    Field,
    Grid,
    LevelSet,
    ensure_latitude_ascending,
    fill_coordinate_gaps,
    normalize_field,
    normalize_longitudes,
)


def test_grid_shapes():
    rectilinear = Grid(np.arange(3.0), np.arange(5.0))
    curvilinear = Grid(np.zeros((2, 3)), np.ones((2, 3)))

    assert rectilinear.shape == (3, 5)
    assert rectilinear.is_rectilinear
    assert curvilinear.shape == (2, 3)
    assert not curvilinear.is_rectilinear


def test_grid_rejects_inconsistent_coordinates():
    with pytest.raises(ValueError):
        Grid(np.zeros((2, 3)), np.zeros((3, 2)))

    with pytest.raises(ValueError):
        Grid(np.arange(3.0), np.zeros((3, 3)))

    with pytest.raises(ValueError):
        Grid(np.arange(3.0), np.arange(4.0), area=np.ones((4, 3)))

    with pytest.raises(ValueError):
        Grid(np.arange(2.0), np.arange(2.0), area=-np.ones((2, 2)))


def test_weights_default_to_cosine_latitude():
    grid = Grid(np.array([0.0, 60.0]), np.array([0.0, 10.0, 20.0]))

    np.testing.assert_allclose(grid.weights(), [[1.0, 1.0, 1.0], [0.5, 0.5, 0.5]])

    area = np.full((2, 3), 7.0)
    np.testing.assert_array_equal(grid.with_area(area).weights(), area)


def test_spherical_cell_areas_cover_the_sphere(global_grid):
    areas = global_grid.spherical_cell_areas()

    assert areas.shape == (4, 4)
    assert areas.sum() == pytest.approx(4.0 * np.pi * EARTH_RADIUS**2)

    # Equatorial rows hold larger cells than polar rows
    assert areas[1, 0] > areas[0, 0]


def test_spherical_cell_areas_need_rectilinear_grid():
    with pytest.raises(ValueError):
        Grid(np.zeros((2, 2)), np.zeros((2, 2))).spherical_cell_areas()


def test_level_set():
    levels = LevelSet([0.0, 10.0, 30.0, 100.0])

    assert levels.n_layers == 3
    assert len(levels) == 3
    np.testing.assert_array_equal(levels.thickness, [10.0, 20.0, 70.0])
    np.testing.assert_array_equal(levels.centers, [5.0, 20.0, 65.0])

    with pytest.raises(ValueError):
        LevelSet([0.0, 10.0, 10.0])


def test_field_replaces_sentinel_with_nan():
    grid = Grid(np.arange(2.0), np.arange(2.0))

    field = Field(np.array([[1.0, -999.0], [1.0e20, 2.0]]), grid, missing_value=-999.0)

    assert np.isnan(field.data[0, 1])
    assert field.data[1, 0] == 1.0e20
    assert np.isfinite(field.data).sum() == 3


def test_field_is_read_only_and_validated(global_grid, two_years):
    field = Field(np.zeros((4, 4)), global_grid)

    with pytest.raises(ValueError):
        field.data[0, 0] = 1.0

    with pytest.raises(ValueError):
        Field(np.zeros((4, 3)), global_grid)

    with pytest.raises(ValueError):
        Field(np.zeros((23, 4, 4)), global_grid, time_index=two_years)

    with pytest.raises(ValueError):
        Field(np.zeros((24, 2, 4, 4)), global_grid, time_index=two_years, levels=LevelSet([0.0, 1.0, 2.0, 3.0]))


def test_field_keeps_float32_precision(global_grid):
    field = Field(np.zeros((4, 4), dtype=np.float32), global_grid)

    assert field.data.dtype == np.float32
    assert Field(np.zeros((4, 4), dtype=np.int16), global_grid).data.dtype == np.float64


def test_field_to_dataarray(constant_field):
    da = constant_field.to_dataarray()

    assert da.dims == ('time', 'lat', 'lon')
    assert da.attrs['units'] == 'mm/day'
    assert str(da['time'].values[0])[:10] == '2000-01-01'


def test_fill_interior_gap_by_interpolation():
    np.testing.assert_array_equal(fill_coordinate_gaps(np.array([0.0, np.nan, 2.0])), [0.0, 1.0, 2.0])


def test_fill_edge_gaps_from_nearest_neighbour():
    np.testing.assert_array_equal(fill_coordinate_gaps(np.array([np.nan, 1.0, 2.0])), [1.0, 1.0, 2.0])
    np.testing.assert_array_equal(fill_coordinate_gaps(np.array([1.0, 2.0, np.nan])), [1.0, 2.0, 2.0])

    coord = np.array([[np.nan, np.nan], [1.0, 2.0]])

    np.testing.assert_array_equal(fill_coordinate_gaps(coord), [[1.0, 2.0], [1.0, 2.0]])


def test_fill_never_modifies_valid_entries():
    coord = np.array([[10.0, np.nan, 12.0], [np.nan, 21.0, np.nan], [30.0, np.nan, 32.0]])

    filled = fill_coordinate_gaps(coord)

    valid = np.isfinite(coord)

    assert np.all(np.isfinite(filled))
    np.testing.assert_array_equal(filled[valid], coord[valid])


def test_fill_without_any_valid_value_fails():
    with pytest.raises(GridRepairError):
        fill_coordinate_gaps(np.full((2, 2), np.nan))

    assert issubclass(GridRepairError, ValueError)


def test_normalize_longitudes_permutes_data():
    lon = np.array([-90.0, 0.0, 90.0, 180.0])
    data = np.array([[1.0, 2.0, 3.0, 4.0]])

    normalized, (reordered,) = normalize_longitudes(lon, data)

    np.testing.assert_array_equal(normalized, [0.0, 90.0, 180.0, 270.0])
    np.testing.assert_array_equal(reordered, [[2.0, 3.0, 4.0, 1.0]])


def test_normalize_longitudes_is_idempotent():
    lon = np.array([-90.0, 0.0, 90.0, 180.0])
    data = np.arange(8.0).reshape(2, 4)

    once, (data_once,) = normalize_longitudes(lon, data)
    twice, (data_twice,) = normalize_longitudes(once, data_once)

    np.testing.assert_array_equal(once, twice)
    np.testing.assert_array_equal(data_once, data_twice)


def test_ensure_latitude_ascending():
    lat = np.array([10.0, 0.0, -10.0])
    data = np.array([[1.0], [2.0], [3.0]])

    ascending, (flipped,) = ensure_latitude_ascending(lat, data)

    np.testing.assert_array_equal(ascending, [-10.0, 0.0, 10.0])
    np.testing.assert_array_equal(flipped, [[3.0], [2.0], [1.0]])

    unchanged, (same,) = ensure_latitude_ascending(ascending, flipped)

    np.testing.assert_array_equal(unchanged, ascending)
    np.testing.assert_array_equal(same, flipped)


def test_normalize_field_carries_area():
    lat = np.array([45.0, -45.0])
    lon = np.array([180.0, -90.0, 0.0])
    area = np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
    data = np.array([[10.0, 20.0, 30.0], [40.0, 50.0, 60.0]])

    field = normalize_field(Field(data, Grid(lat, lon, area)))

    np.testing.assert_array_equal(field.grid.lat, [-45.0, 45.0])
    np.testing.assert_array_equal(field.grid.lon, [0.0, 180.0, 270.0])
    np.testing.assert_array_equal(field.data, [[60.0, 40.0, 50.0], [30.0, 10.0, 20.0]])
    np.testing.assert_array_equal(field.grid.area, [[6.0, 4.0, 5.0], [3.0, 1.0, 2.0]])
