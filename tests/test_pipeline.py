import numpy as np
import pytest

from aromatawai import pipeline
from aromatawai.climatology import TimeIndex
from aromatawai.config import ValidationConfig
from aromatawai.grid import Field, Grid


@pytest.fixture
def config():
    return ValidationConfig(
        baseline_years=(2000, 2001), analysis_years=(2000, 2001), model_name='CESM2', obs_name='GPCP'
    )


def test_identical_constant_fields(constant_field, config):
    report = pipeline.compare_fields(constant_field, constant_field, config, 'precipitation')

    assert report.n_years == 2
    assert report.model_mean == pytest.approx(3.0)
    assert report.bias == pytest.approx(0.0)
    assert report.rmse == pytest.approx(0.0)
    assert report.model_name == 'CESM2'
    assert report.units == 'mm/day'


def test_model_is_regridded_onto_obs_grid(constant_field, config):
    obs_grid = Grid(np.array([-45.0, 0.0, 45.0]), np.arange(0.0, 360.0, 45.0))
    obs = Field(np.full((24, 3, 8), 2.0), obs_grid, time_index=constant_field.time_index, units='mm/day')

    report = pipeline.compare_fields(constant_field, obs, config, 'precipitation')

    assert report.model_mean == pytest.approx(3.0)
    assert report.obs_mean == pytest.approx(2.0)
    assert report.bias == pytest.approx(1.0)

    # Regridding the observations instead gives the same constant means
    reverse = pipeline.compare_fields(constant_field, obs, config, 'precipitation', regrid_to='model')

    assert reverse.bias == pytest.approx(1.0)


def test_cells_missing_in_either_field_are_excluded(constant_field, config):
    data = np.array(constant_field.data)
    data[:, 0, :] = np.nan

    obs = constant_field.replace(data=np.where(np.isnan(data), 3.0, 1.0))

    report = pipeline.compare_fields(constant_field.replace(data=data), obs, config, 'precipitation')

    # The only obs cells that differ from 1.0 are masked out by the model
    assert report.obs_mean == pytest.approx(1.0)
    assert report.bias == pytest.approx(2.0)


def test_invalid_arguments(constant_field, config):
    with pytest.raises(ValueError):
        pipeline.compare_fields(constant_field, constant_field, config, 'precipitation', regrid_to='both')

    with pytest.raises(AssertionError):
        pipeline.compare_fields(constant_field, constant_field.replace(units='m/s'), config, 'precipitation')

    with pytest.raises(ValueError):
        pipeline.regrid_onto(constant_field, Grid(np.array([0.0]), np.array([10.0])), method='cubic')


def test_anomalies_remove_constant_offset(global_grid, two_years, config):
    rng = np.random.default_rng(7)

    obs = Field(rng.normal(280.0, 5.0, size=(24, 4, 4)), global_grid, time_index=two_years, units='K')
    model = obs.replace(data=obs.data + 1.5)

    plain = pipeline.compare_fields(model, obs, config, 'tas')
    anomaly = pipeline.compare_fields(model, obs, config, 'tas', anomaly=True)

    assert plain.bias == pytest.approx(1.5)
    assert anomaly.bias == pytest.approx(0.0, abs=1e-9)


def test_align_times(constant_field):
    model, obs = pipeline.align_times(constant_field, constant_field, (2001, 2001))

    assert model.time_index == TimeIndex.monthly(2001, 2001)
    assert obs.data.shape == (12, 4, 4)

    first_year = constant_field.replace(data=constant_field.data[:12], time_index=TimeIndex.monthly(2000, 2000))
    second_year = constant_field.replace(data=constant_field.data[12:], time_index=TimeIndex.monthly(2001, 2001))

    with pytest.raises(ValueError):
        pipeline.align_times(first_year, second_year, (2000, 2001))


def test_compare_series(config):
    times = TimeIndex.monthly(1999, 2001)

    obs = np.arange(len(times), dtype=np.float64)
    model = obs + 0.5

    report = pipeline.compare_series(model, times, obs[12:], times[12:], config, 'thetao_mean', 'degC')

    np.testing.assert_array_equal(report.year, [2000, 2001])
    assert report.bias == pytest.approx(0.5)
    assert report.obs_trend.slope == pytest.approx(12.0)


def test_compare_sea_ice_area(global_grid):
    config = ValidationConfig(analysis_years=(2000, 2000), baseline_years=(2000, 2000))

    data = np.zeros((12, 4, 4))
    data[:, 3, :] = 80.0
    data[:, 0, :] = np.nan

    concentration = Field(data, global_grid, time_index=TimeIndex.monthly(2000, 2000), units='%')

    north = pipeline.compare_sea_ice_area(concentration, concentration, config, 'north')
    south = pipeline.compare_sea_ice_area(concentration, concentration, config, 'south')

    expected = global_grid.spherical_cell_areas()[3].sum() * pipeline.SEA_ICE_AREA_SCALE

    assert north.variable == 'sia_nh'
    assert north.units == '10^6 km^2'
    assert north.model_mean == pytest.approx(expected)
    assert north.bias == 0.0

    # Missing southern cells are open water
    assert south.model_mean == 0.0


def test_regional_model_leaves_obs_outside_its_domain_unmatched(config, two_years):
    model_grid = Grid(np.array([-30.0, 30.0]), np.array([0.0, 10.0, 20.0, 30.0]))
    model = Field(np.full((24, 2, 4), 3.0), model_grid, time_index=two_years, units='mm/day')

    obs_grid = Grid(np.array([-10.0, 10.0]), np.array([15.0, 100.0, 200.0]))
    obs_data = np.full((24, 2, 3), 100.0)
    obs_data[:, :, 0] = 1.0

    obs = Field(obs_data, obs_grid, time_index=two_years, units='mm/day')

    report = pipeline.compare_fields(model, obs, config, 'precipitation')

    assert config.periodic
    assert report.obs_mean == pytest.approx(1.0)
    assert report.bias == pytest.approx(2.0)
