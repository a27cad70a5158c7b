'''
Skill and trend statistics for model-versus-observation comparisons.

This module provides:

- bias, rmse, correlation, spatial_correlation:
  Comparison metrics over the samples valid in both series. Degenerate cases
  (fewer than two valid samples, zero variance) return NaN.

- linear_trend:
  Ordinary least-squares trend with a two-sided t-test of the slope
  (n - 2 degrees of freedom), reported per time unit and per decade.

- ModelVsObsStatisticsReport:
  Holds the annual model and observation series of one variable together
  with the summary statistics derived from them (global means, bias, RMSE,
  temporal and spatial correlation, trends and their p-values). Exports
  the results to a pandas.DataFrame or xarray.Dataset with per-column
  metadata, writes NetCDF and plain-text reports.

Design notes
------------
- Annual series are held in lightweight list subclasses (TimeList) that carry
  units, description and var_name alongside the values; these are propagated
  into DataFrame.attrs['column_attrs'] and Dataset variable attributes on export.
- Missing samples are NaN. They never become zeros: a statistic that cannot be
  computed is NaN in the report.
'''

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd
import xarray as xr
from scipy import stats

logger = logging.getLogger(__name__)


class TimeList(list):
    '''
    TimeList is a list that supports attributes (unlike lists). Inherits from list (obviously).
    '''

    pass


@dataclass(frozen=True)
class TrendResult:
    '''
    Least-squares trend of a series. "slope" is per unit of the time
    coordinate (years for annual series), "slope_per_decade" is slope x 10.
    '''

    slope: float
    slope_per_decade: float
    intercept: float
    p_value: float
    stderr: float
    n: int


def _paired_valid(model: np.ndarray, obs: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    model = np.asarray(model, dtype=np.float64)
    obs = np.asarray(obs, dtype=np.float64)

    if model.shape != obs.shape:
        raise ValueError(f'Model {model.shape} and observation {obs.shape} shapes differ.')

    valid = np.isfinite(model) & np.isfinite(obs)

    return model[valid], obs[valid]


def bias(model: np.ndarray, obs: np.ndarray) -> float:
    '''
    Returns mean(model - obs) over samples valid in both, NaN if there are none.
    '''

    model, obs = _paired_valid(model, obs)

    if model.size == 0:
        return np.nan

    return float(np.mean(model - obs))


def rmse(model: np.ndarray, obs: np.ndarray) -> float:
    '''
    Returns sqrt(mean((model - obs) ** 2)) over samples valid in both, NaN if there are none.
    '''

    model, obs = _paired_valid(model, obs)

    if model.size == 0:
        return np.nan

    return float(np.sqrt(np.mean((model - obs) ** 2)))


def correlation(model: np.ndarray, obs: np.ndarray) -> float:
    '''
    Pearson correlation coefficient over samples valid in both.

    Returns NaN for fewer than two valid samples or when either series has zero
    variance.
    '''

    return spatial_correlation(model, obs)


def spatial_correlation(model: np.ndarray, obs: np.ndarray, weights: np.ndarray = None) -> float:
    '''
    (Optionally weighted) Pearson correlation coefficient of two maps or series
    over the cells valid in both.

    Parameters
    ----------
    model, obs : numpy.ndarray
        Arrays of equal shape; NaN marks missing cells.
    weights : numpy.ndarray, optional
        Non-negative weights broadcastable to the arrays, e.g. cell areas.

    Returns
    -------
    float
        Correlation coefficient, or NaN if fewer than two valid cells or
        either array has zero (weighted) variance.
    '''

    model = np.asarray(model, dtype=np.float64)
    obs = np.asarray(obs, dtype=np.float64)

    if model.shape != obs.shape:
        raise ValueError(f'Model {model.shape} and observation {obs.shape} shapes differ.')

    if weights is None:
        weights = np.ones(model.shape)
    else:
        weights = np.broadcast_to(np.asarray(weights, dtype=np.float64), model.shape)

    valid = np.isfinite(model) & np.isfinite(obs) & np.isfinite(weights) & (weights > 0)

    if valid.sum() < 2:
        logger.debug('Correlation undefined: fewer than two valid samples')
        return np.nan

    w = weights[valid] / weights[valid].sum()
    x = model[valid] - np.sum(w * model[valid])
    y = obs[valid] - np.sum(w * obs[valid])

    sxx = np.sum(w * x * x)
    syy = np.sum(w * y * y)

    if sxx == 0 or syy == 0:
        logger.debug('Correlation undefined: zero variance')
        return np.nan

    return float(np.sum(w * x * y) / np.sqrt(sxx * syy))


def linear_trend(values: np.ndarray, time: np.ndarray = None) -> TrendResult:
    '''
    Ordinary least-squares trend of "values" against "time".

    Parameters
    ----------
    values : numpy.ndarray
        1-D series; NaN samples are excluded.
    time : numpy.ndarray, optional
        Time coordinate in consistent units (e.g. years). Defaults to 0, 1, 2, ...

    Returns
    -------
    TrendResult
        Slope, slope per decade, intercept, two-sided p-value of the slope
        (t-distribution with n - 2 degrees of freedom), standard error of the
        slope and the number n of samples used. All numbers are NaN when n < 3
        or the time coordinate does not vary. A perfect fit (zero standard
        error) with non-zero slope has p-value 0.
    '''

    values = np.asarray(values, dtype=np.float64)

    if time is None:
        time = np.arange(values.size, dtype=np.float64)
    else:
        time = np.asarray(time, dtype=np.float64)

    if values.shape != time.shape or values.ndim != 1:
        raise ValueError('Values and time must be 1-D arrays of equal length.')

    valid = np.isfinite(values) & np.isfinite(time)
    n = int(valid.sum())

    undefined = TrendResult(np.nan, np.nan, np.nan, np.nan, np.nan, n)

    if n < 3:
        logger.debug(f'Trend undefined: {n} valid samples')
        return undefined

    x = time[valid]
    y = values[valid]

    x_mean = x.mean()
    y_mean = y.mean()

    sxx = np.sum((x - x_mean) ** 2)

    if sxx == 0:
        logger.debug('Trend undefined: time coordinate does not vary')
        return undefined

    slope = np.sum((x - x_mean) * (y - y_mean)) / sxx
    intercept = y_mean - slope * x_mean

    residuals = y - (intercept + slope * x)
    dof = n - 2

    stderr = np.sqrt(np.sum(residuals**2) / dof / sxx)

    if stderr > 0:
        p_value = 2.0 * stats.t.sf(np.abs(slope / stderr), dof)
    elif slope != 0:
        p_value = 0.0
    else:
        p_value = np.nan

    return TrendResult(float(slope), float(slope * 10.0), float(intercept), float(p_value), float(stderr), n)


class ModelVsObsStatisticsReport:
    '''
    Compute and hold model-vs-observation statistics for one variable.

    Upon initialization the instance holds the annual model and observation
    series (and their difference) as TimeLists, and the scalar statistics:

    1) Global means of model and observations over the years valid in both,
    2) Bias, RMSE and temporal correlation of the annual series,
    3) Spatial correlation of the model and observed period-mean maps (if given),
    4) Linear trends (per decade) and their p-values for model and observations.
    '''

    def __init__(
        self,
        variable: str,
        units: str,
        years: np.ndarray,
        model_annual: np.ndarray,
        obs_annual: np.ndarray,
        model_map: np.ndarray = None,
        obs_map: np.ndarray = None,
        map_weights: np.ndarray = None,
        model_name: str = 'model',
        obs_name: str = 'observations',
        long_name: str = None,
    ):
        '''
        Initialize the report from annual series and optional period-mean maps.

        Parameters
        ----------
        variable : str
            Short variable name, used in variable names and file names.
        units : str
            Units of the annual series and maps.
        years : numpy.ndarray
            Calendar years of the annual series.
        model_annual, obs_annual : numpy.ndarray
            Annual (area- or volume-weighted) means; NaN where undefined.
        model_map, obs_map : numpy.ndarray, optional
            Period-mean maps on a common grid for the spatial correlation.
        map_weights : numpy.ndarray, optional
            Cell weights for the spatial correlation.
        model_name, obs_name : str
            Labels of the model and the observation data set.
        long_name : str, optional
            Descriptive variable name for titles; defaults to "variable".

        Raises
        ------
        AssertionError
            If the annual series and years differ in length.
        '''

        years = np.asarray(years, dtype=np.int64)
        model_annual = np.asarray(model_annual, dtype=np.float64)
        obs_annual = np.asarray(obs_annual, dtype=np.float64)

        assert years.shape == model_annual.shape == obs_annual.shape, 'Annual series and years differ in length'

        self.variable = variable
        self.units = units
        self.long_name = long_name if long_name is not None else variable
        self.model_name = model_name
        self.obs_name = obs_name

        if years.size:
            self.period = (int(years.min()), int(years.max()))
        else:
            self.period = (None, None)

        # Summary statistics

        common = np.isfinite(model_annual) & np.isfinite(obs_annual)

        self.n_years = int(common.sum())

        self.model_mean = float(model_annual[common].mean()) if self.n_years else np.nan
        self.obs_mean = float(obs_annual[common].mean()) if self.n_years else np.nan

        self.bias = bias(model_annual, obs_annual)
        self.rmse = rmse(model_annual, obs_annual)
        self.r_corr = correlation(model_annual, obs_annual)

        if model_map is not None and obs_map is not None:
            self.spatial_r_corr = spatial_correlation(model_map, obs_map, map_weights)
        else:
            self.spatial_r_corr = np.nan

        self.model_trend = linear_trend(model_annual, years.astype(np.float64))
        self.obs_trend = linear_trend(obs_annual, years.astype(np.float64))

        # Annual series with metadata

        self.year = TimeList(years.tolist())
        self.model_annual = TimeList(model_annual.tolist())
        self.obs_annual = TimeList(obs_annual.tolist())
        self.difference = TimeList((model_annual - obs_annual).tolist())

        self.year.units = 'year'
        self.model_annual.units = units
        self.obs_annual.units = units
        self.difference.units = units

        self.year.var_name = 'year'
        self.model_annual.var_name = 'model_' + variable
        self.obs_annual.var_name = 'obs_' + variable
        self.difference.var_name = 'model_minus_obs_' + variable

        self.year.description = 'calendar year'
        self.model_annual.description = model_name + ' annual mean ' + self.long_name
        self.obs_annual.description = obs_name + ' annual mean ' + self.long_name
        self.difference.description = model_name + '-' + obs_name + ' annual mean difference'

        logger.info(
            f'{self.variable}: bias {self.bias:.4g} {units}, RMSE {self.rmse:.4g} {units}, '
            f'r {self.r_corr:.3f}, spatial r {self.spatial_r_corr:.3f} over {self.n_years} years'
        )

        return

    def summary(self) -> dict:
        '''
        Flat record of the scalar statistics.
        '''

        return {
            'variable': self.variable,
            'units': self.units,
            'model': self.model_name,
            'observations': self.obs_name,
            'first_year': self.period[0],
            'last_year': self.period[1],
            'n_years': self.n_years,
            'model_mean': self.model_mean,
            'obs_mean': self.obs_mean,
            'bias': self.bias,
            'rmse': self.rmse,
            'r_corr': self.r_corr,
            'spatial_r_corr': self.spatial_r_corr,
            'model_trend_per_decade': self.model_trend.slope_per_decade,
            'model_trend_p_value': self.model_trend.p_value,
            'obs_trend_per_decade': self.obs_trend.slope_per_decade,
            'obs_trend_p_value': self.obs_trend.p_value,
        }

    def DataFrame(self) -> pd.DataFrame:
        '''
        Export the annual table to a pandas DataFrame.

        Columns
        -------
        - year
        - model_<variable> / obs_<variable> / model_minus_obs_<variable>

        Metadata
        --------
        - "DataFrame.attrs" holds the summary record, "model_variable_long_name"
          and "column_attrs", a mapping of column name to
          "{'units', 'description'}".

        Returns
        -------
        pandas.DataFrame
            A new DataFrame; arrays do not alias the internal lists.
        '''

        series = [self.year, self.model_annual, self.obs_annual, self.difference]

        df = pd.DataFrame({ts.var_name: list(ts) for ts in series})

        # Global attributes, with units and description of every column

        df.attrs.update(self.summary())
        df.attrs['model_variable_long_name'] = self.long_name
        df.attrs['column_attrs'] = {ts.var_name: {'units': ts.units, 'description': ts.description} for ts in series}

        return df

    def DataSet(self) -> xr.Dataset:
        '''
        Export the annual table and the summary statistics to an xarray Dataset.

        Dimensions
        ----------
        - year

        Data Variables
        --------------
        - model_<variable> / obs_<variable> / model_minus_obs_<variable> : annual series
        - bias, rmse, r_corr, spatial_r_corr, model/obs means, trends and p-values : scalars
        '''

        data_vars = {}

        for ts in (self.model_annual, self.obs_annual, self.difference):
            data_vars[ts.var_name] = ('year', np.asarray(ts, dtype=np.float64), {'units': ts.units, 'long_name': ts.description})

        scalar_units = {
            'model_mean': self.units,
            'obs_mean': self.units,
            'bias': self.units,
            'rmse': self.units,
            'r_corr': '1',
            'spatial_r_corr': '1',
            'model_trend_per_decade': self.units + ' per decade',
            'model_trend_p_value': '1',
            'obs_trend_per_decade': self.units + ' per decade',
            'obs_trend_p_value': '1',
        }

        record = self.summary()

        for name, units in scalar_units.items():
            data_vars[name] = ((), float(record[name]), {'units': units})

        ds = xr.Dataset(data_vars=data_vars, coords={'year': ('year', np.asarray(self.year, dtype=np.int64))})

        ds['year'].attrs['long_name'] = self.year.description

        ds.attrs['model'] = self.model_name
        ds.attrs['observations'] = self.obs_name
        ds.attrs['model_variable'] = self.variable
        ds.attrs['model_variable_long_name'] = self.long_name

        return ds

    def write_ds2netcdf(self, ds: xr.Dataset, dir_path: Path) -> Path:
        '''
        Writes an xarray ds holding the statistics of this class into a netCDF file.

        Args:
            ds (xarray.Dataset): xarray holding the statistics of this class
            dir_path (Path): Directory where the netCDF file will be saved.
                             The directory will be created if it does not exist.
                             The file will be overwritten if it exists.

        Returns:
            Path of the written file.
        '''

        file_path = Path(dir_path) / (self._file_stem() + '.nc')

        encoding = {var: {'dtype': 'float32'} for var in ds.data_vars if np.issubdtype(ds[var].dtype, np.floating)}

        file_path.parent.mkdir(parents=True, exist_ok=True)

        ds.to_netcdf(file_path, encoding=encoding)

        logger.info(f'Wrote {file_path}')

        return file_path

    def text_report(self) -> str:
        '''
        Plain-text report: summary statistics followed by the annual table.
        '''

        def fmt(value):
            return 'missing' if value is None or not np.isfinite(value) else f'{value:.4f}'

        lines = [
            f'{self.long_name} ({self.variable}): {self.model_name} vs {self.obs_name}',
            f'Period                : {self.period[0]}-{self.period[1]} ({self.n_years} years valid in both)',
            f'Units                 : {self.units}',
            f'Model mean            : {fmt(self.model_mean)}',
            f'Observed mean         : {fmt(self.obs_mean)}',
            f'Bias (model - obs)    : {fmt(self.bias)}',
            f'RMSE                  : {fmt(self.rmse)}',
            f'Temporal correlation  : {fmt(self.r_corr)}',
            f'Spatial correlation   : {fmt(self.spatial_r_corr)}',
            f'Model trend / decade  : {fmt(self.model_trend.slope_per_decade)} (p = {fmt(self.model_trend.p_value)})',
            f'Obs trend / decade    : {fmt(self.obs_trend.slope_per_decade)} (p = {fmt(self.obs_trend.p_value)})',
            '',
            f'{"year":>6} {"model":>12} {"obs":>12} {"model-obs":>12}',
        ]

        for year, model, obs, diff in zip(self.year, self.model_annual, self.obs_annual, self.difference, strict=True):
            lines.append(f'{year:>6d} {fmt(model):>12} {fmt(obs):>12} {fmt(diff):>12}')

        return '\n'.join(lines) + '\n'

    def write_text_report(self, dir_path: Path) -> Path:
        '''
        Write "text_report()" to <dir_path>/<model>.<variable>.<period>.vs_<obs>.txt.
        '''

        file_path = Path(dir_path) / (self._file_stem() + '.txt')

        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(self.text_report())

        logger.info(f'Wrote {file_path}')

        return file_path

    def _file_stem(self) -> str:
        period = f'{self.period[0]}-{self.period[1]}'
        return (self.model_name + '.' + self.variable + '.' + period + '.vs_' + self.obs_name).replace(' ', '_')
