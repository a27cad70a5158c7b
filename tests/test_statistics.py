import numpy as np
import pytest
import xarray as xr
from scipy import stats

from aromatawai.statistics import (
    ModelVsObsStatisticsReport,
    bias,
    correlation,
    linear_trend,
    rmse,
    spatial_correlation,
)


def test_bias_and_rmse_over_paired_samples():
    model = np.array([2.0, 3.0, np.nan, 5.0])
    obs = np.array([1.0, 1.0, 1.0, np.nan])

    assert bias(model, obs) == 1.5
    assert rmse(model=model, obs=obs) == pytest.approx(np.sqrt((1.0 + 4.0) / 2.0))


def test_bias_without_pairs_is_nan():
    assert np.isnan(bias(np.array([np.nan]), np.array([1.0])))
    assert np.isnan(rmse(np.array([np.nan]), np.array([1.0])))


def test_shape_mismatch_raises():
    with pytest.raises(ValueError):
        bias(np.ones(2), np.ones(3))

    with pytest.raises(ValueError):
        rmse(model=np.ones(2), obs=np.ones(3))


def test_correlation():
    x = np.array([1.0, 2.0, 3.0, 4.0])

    assert correlation(x, 2.0 * x + 1.0) == pytest.approx(1.0)
    assert correlation(x, -x) == pytest.approx(-1.0)


def test_degenerate_correlation_is_nan():
    assert np.isnan(correlation(np.array([1.0, 2.0, 3.0]), np.array([5.0, 5.0, 5.0])))
    assert np.isnan(correlation(np.array([1.0, np.nan]), np.array([1.0, 2.0])))


def test_weighted_spatial_correlation():
    model = np.array([[1.0, 2.0], [3.0, 10.0]])
    obs = np.array([[1.0, 2.0], [3.0, -10.0]])
    weights = np.array([[1.0, 1.0], [1.0, 0.0]])

    # The disagreeing cell carries no weight
    assert spatial_correlation(model, obs, weights) == pytest.approx(1.0)
    assert spatial_correlation(model, obs) < 0.0


def test_perfect_trend():
    years = np.arange(2000, 2010, dtype=np.float64)

    trend = linear_trend(2.0 * years + 1.0, years)

    assert trend.slope == pytest.approx(2.0)
    assert trend.slope_per_decade == pytest.approx(20.0)
    assert trend.intercept == pytest.approx(1.0)
    assert trend.p_value == pytest.approx(0.0, abs=1e-12)
    assert trend.n == 10


def test_exact_fit_has_zero_p_value():
    trend = linear_trend(2.0 * np.arange(5.0) + 1.0)

    assert trend.stderr == 0.0
    assert trend.p_value == 0.0


def test_trend_p_value_matches_scipy():
    rng = np.random.default_rng(3)

    time = np.arange(30, dtype=np.float64)
    values = 0.05 * time + rng.normal(size=time.size)

    trend = linear_trend(values, time)
    reference = stats.linregress(time, values)

    assert trend.slope == pytest.approx(reference.slope)
    assert trend.p_value == pytest.approx(reference.pvalue)
    assert trend.stderr == pytest.approx(reference.stderr)


def test_trend_with_too_few_samples_is_nan():
    trend = linear_trend(np.array([1.0, 2.0, np.nan]))

    assert np.isnan(trend.slope)
    assert np.isnan(trend.p_value)
    assert trend.n == 2


def test_trend_of_constant_series():
    trend = linear_trend(np.full(5, 3.0))

    assert trend.slope == 0.0
    assert np.isnan(trend.p_value)


@pytest.fixture
def report():
    years = np.arange(2000, 2005)
    obs = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
    model = obs + 0.5
    model[2] = np.nan

    return ModelVsObsStatisticsReport(
        'tas', 'degC', years, model, obs, model_name='CESM2', obs_name='ERA5', long_name='near-surface air temperature'
    )


def test_report_statistics(report):
    assert report.n_years == 4
    assert report.bias == pytest.approx(0.5)
    assert report.rmse == pytest.approx(0.5)
    assert report.r_corr == pytest.approx(1.0)
    assert report.model_mean - report.obs_mean == pytest.approx(0.5)
    assert report.model_trend.slope == pytest.approx(1.0)
    assert report.obs_trend.slope_per_decade == pytest.approx(10.0)
    assert np.isnan(report.spatial_r_corr)
    assert report.period == (2000, 2004)


def test_report_dataframe(report):
    df = report.DataFrame()

    assert list(df.columns) == ['year', 'model_tas', 'obs_tas', 'model_minus_obs_tas']
    assert df.attrs['model_variable_long_name'] == 'near-surface air temperature'
    assert df.attrs['bias'] == pytest.approx(0.5)
    assert df.attrs['column_attrs']['model_tas']['units'] == 'degC'
    assert np.isnan(df['model_minus_obs_tas'].iloc[2])


def test_report_netcdf(report, tmp_path):
    file_path = report.write_ds2netcdf(report.DataSet(), tmp_path / 'out')

    assert file_path.name == 'CESM2.tas.2000-2004.vs_ERA5.nc'

    with xr.open_dataset(file_path) as ds:
        assert ds['model_tas'].attrs['units'] == 'degC'
        assert float(ds['bias']) == pytest.approx(0.5)
        np.testing.assert_array_equal(ds['year'].values, np.arange(2000, 2005))


def test_report_text(report, tmp_path):
    file_path = report.write_text_report(tmp_path)

    text = file_path.read_text()

    assert file_path.suffix == '.txt'
    assert 'Bias (model - obs)    : 0.5000' in text
    assert 'missing' in text
