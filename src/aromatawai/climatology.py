'''
Monthly time indexing, climatologies and anomalies.

This module provides:
- TimeIndex: an ordered sequence of (year, month) pairs, built from calendar
  time axes, integer YYYYMM encodings, or model-relative years.
- ClimatologyAccumulator: incremental per-calendar-month sums and counts, so a
  climatology can be built one monthly slice at a time while reading files.
- ClimatologyTable: twelve monthly mean maps over a baseline year range.
- monthly_climatology, anomalies, period_mean, annual_means, select_years:
  transformations of Fields and scalar series.

Missing samples are NaN and are skipped by every mean. A calendar month with
no sample in the baseline yields an all-missing map, which is reported through
the log and through ClimatologyTable.missing_months; anomalies of that month
are missing as well.
'''

import logging

import numpy as np
import pandas as pd

from aromatawai.grid import Field

logger = logging.getLogger(__name__)

MONTH_NAMES = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun', 'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']


class TimeIndex:
    '''
    Strictly increasing sequence of (year, month) pairs.

    Raises
    ------
    ValueError
        If years and months differ in length, a month is outside 1..12, or the
        sequence is not strictly increasing in (year, month) order.
    '''

    def __init__(self, years, months):
        years = np.asarray(years, dtype=np.int64).ravel()
        months = np.asarray(months, dtype=np.int64).ravel()

        if years.shape != months.shape:
            raise ValueError('Years and months must have equal length.')

        if np.any((months < 1) | (months > 12)):
            raise ValueError('Months must lie in 1..12.')

        keys = years * 12 + months - 1

        if np.any(np.diff(keys) <= 0):
            raise ValueError('Time index must be strictly increasing in (year, month).')

        years.setflags(write=False)
        months.setflags(write=False)

        self.years = years
        self.months = months

    @classmethod
    def from_yyyymm(cls, values) -> 'TimeIndex':
        '''
        Parse integer YYYYMM encodings (e.g. 197901).
        '''

        values = np.rint(np.asarray(values, dtype=np.float64)).astype(np.int64)

        return cls(values // 100, values % 100)

    @classmethod
    def from_times(cls, times) -> 'TimeIndex':
        '''
        Build from a calendar time axis: numpy datetime64 values or cftime
        datetime objects (as decoded by xarray for non-standard calendars).
        '''

        values = np.asarray(times)

        if np.issubdtype(values.dtype, np.datetime64):
            index = pd.DatetimeIndex(values.ravel())
            return cls(index.year, index.month)

        return cls([t.year for t in values.ravel()], [t.month for t in values.ravel()])

    @classmethod
    def from_model_offsets(cls, model_years, months, reference_year: int, first_model_year: int = 1) -> 'TimeIndex':
        '''
        Convert model-relative years into calendar years: model year
        "first_model_year" corresponds to calendar year "reference_year".
        '''

        model_years = np.asarray(model_years, dtype=np.int64)

        return cls(model_years - first_model_year + reference_year, months)

    @classmethod
    def monthly(cls, first_year: int, last_year: int) -> 'TimeIndex':
        '''
        Every month from January of "first_year" to December of "last_year".
        '''

        years = np.repeat(np.arange(first_year, last_year + 1), 12)
        months = np.tile(np.arange(1, 13), last_year - first_year + 1)

        return cls(years, months)

    def __len__(self):
        return self.years.size

    def __iter__(self):
        return zip(self.years.tolist(), self.months.tolist(), strict=True)

    def __getitem__(self, item):
        if isinstance(item, (int, np.integer)):
            return int(self.years[item]), int(self.months[item])
        return TimeIndex(self.years[item], self.months[item])

    def __eq__(self, other):
        if not isinstance(other, TimeIndex):
            return NotImplemented
        return np.array_equal(self.years, other.years) and np.array_equal(self.months, other.months)

    def __repr__(self):
        if len(self) == 0:
            return 'TimeIndex([])'
        return f'TimeIndex({self.years[0]}-{self.months[0]:02d} .. {self.years[-1]}-{self.months[-1]:02d}, n={len(self)})'

    def to_yyyymm(self) -> np.ndarray:
        return self.years * 100 + self.months

    def to_datetime64(self) -> np.ndarray:
        '''
        First day of every month as datetime64[ns].
        '''

        return pd.to_datetime({'year': self.years, 'month': self.months, 'day': 1}).values

    def year_mask(self, first_year: int, last_year: int) -> np.ndarray:
        return (self.years >= first_year) & (self.years <= last_year)

    def intersect(self, other: 'TimeIndex') -> tuple[np.ndarray, np.ndarray]:
        '''
        Positions in self and in other of the (year, month) pairs present in both.
        '''

        keys_self = self.to_yyyymm()
        keys_other = other.to_yyyymm()

        _, index_self, index_other = np.intersect1d(keys_self, keys_other, assume_unique=True, return_indices=True)

        return index_self, index_other


class ClimatologyTable:
    '''
    Twelve calendar-month mean maps over a baseline year range.

    "maps" has shape (12, ...) with the map of month m at index m - 1.
    "n_slices" counts the time slices that contributed to each month.
    '''

    def __init__(self, maps: np.ndarray, n_slices: np.ndarray, baseline: tuple[int, int]):
        maps = np.array(maps, copy=True)
        n_slices = np.array(n_slices, copy=True)

        if maps.shape[0] != 12 or n_slices.shape != (12,):
            raise ValueError('A climatology table holds exactly 12 monthly maps.')

        maps.setflags(write=False)
        n_slices.setflags(write=False)

        self.maps = maps
        self.n_slices = n_slices
        self.baseline = tuple(baseline)

    def __getitem__(self, month: int) -> np.ndarray:
        return self.maps[month - 1]

    @property
    def missing_months(self) -> list[int]:
        return [month for month in range(1, 13) if self.n_slices[month - 1] == 0]


class ClimatologyAccumulator:
    '''
    Incrementally accumulate per-calendar-month sums and valid-sample counts.

    Slices outside the baseline year range are ignored. Sums are accumulated
    in float64 regardless of the precision of the added slices.
    '''

    def __init__(self, shape: tuple, baseline: tuple[int, int]):
        self.shape = tuple(shape)
        self.baseline = tuple(baseline)

        self._sums = np.zeros((12,) + self.shape, dtype=np.float64)
        self._counts = np.zeros((12,) + self.shape, dtype=np.int64)
        self._n_slices = np.zeros(12, dtype=np.int64)

    def add(self, year: int, month: int, values: np.ndarray) -> bool:
        '''
        Add one monthly slice. Returns False if the year lies outside the baseline.
        '''

        if not self.baseline[0] <= year <= self.baseline[1]:
            return False

        values = np.asarray(values, dtype=np.float64)

        if values.shape != self.shape:
            raise ValueError(f'Slice shape {values.shape} does not match accumulator shape {self.shape}.')

        valid = np.isfinite(values)

        self._sums[month - 1][valid] += values[valid]
        self._counts[month - 1][valid] += 1
        self._n_slices[month - 1] += 1

        return True

    def table(self) -> ClimatologyTable:
        with np.errstate(invalid='ignore', divide='ignore'):
            maps = np.where(self._counts > 0, self._sums / self._counts, np.nan)

        table = ClimatologyTable(maps, self._n_slices, self.baseline)

        if table.missing_months:
            names = ', '.join(MONTH_NAMES[month - 1] for month in table.missing_months)
            logger.warning(
                f'No baseline data for {names} in {self.baseline[0]}-{self.baseline[1]}; '
                'climatology and anomalies for these months are missing'
            )

        return table


def monthly_climatology(field: Field, baseline: tuple[int, int]) -> ClimatologyTable:
    '''
    Calendar-month mean maps of a time-indexed Field over the baseline years
    (inclusive), ignoring missing samples.

    Raises
    ------
    ValueError
        If the Field has no TimeIndex.
    '''

    if field.time_index is None:
        raise ValueError('A climatology needs a time-indexed field.')

    accumulator = ClimatologyAccumulator(field.data.shape[1:], baseline)

    for tt, (year, month) in enumerate(field.time_index):
        accumulator.add(year, month, field.data[tt])

    logger.debug(f'Monthly climatology of {field.name} over {baseline[0]}-{baseline[1]}')

    return accumulator.table()


def anomalies(field: Field, table: ClimatologyTable) -> Field:
    '''
    Subtract the climatology of the matching calendar month from every time
    slice of the full series. Slices of months without baseline data are missing.
    '''

    if field.time_index is None:
        raise ValueError('Anomalies need a time-indexed field.')

    if table.maps.shape[1:] != field.data.shape[1:]:
        raise ValueError(f'Climatology map shape {table.maps.shape[1:]} does not match field {field.data.shape[1:]}.')

    data = np.asarray(field.data, dtype=np.float64) - table.maps[field.time_index.months - 1]

    attrs = dict(field.attrs)
    attrs['anomaly_baseline'] = f'{table.baseline[0]}-{table.baseline[1]}'

    return field.replace(data=data, attrs=attrs)


def period_mean(field: Field, first_year: int = None, last_year: int = None) -> Field:
    '''
    Mean over all time slices (optionally restricted to a year range),
    ignoring missing samples. Returns a Field without time axis; cells without
    any valid sample are missing.
    '''

    if field.time_index is None:
        raise ValueError('A period mean needs a time-indexed field.')

    selected = np.ones(len(field.time_index), dtype=bool)

    if first_year is not None or last_year is not None:
        first_year = field.time_index.years.min() if first_year is None else first_year
        last_year = field.time_index.years.max() if last_year is None else last_year
        selected = field.time_index.year_mask(first_year, last_year)

    values = np.asarray(field.data[selected], dtype=np.float64)

    valid = np.isfinite(values)
    counts = valid.sum(axis=0)
    sums = np.where(valid, values, 0.0).sum(axis=0)

    with np.errstate(invalid='ignore', divide='ignore'):
        mean = np.where(counts > 0, sums / counts, np.nan)

    return field.replace(data=mean, time_index=None)


def select_years(field: Field, first_year: int, last_year: int) -> Field:
    '''
    Time slices whose year lies in [first_year, last_year].
    '''

    selected = field.time_index.year_mask(first_year, last_year)

    return field.replace(data=field.data[selected], time_index=field.time_index[selected])


def select_steps(field: Field, positions: np.ndarray) -> Field:
    '''
    Time slices at the given positions.
    '''

    return field.replace(data=field.data[positions], time_index=field.time_index[positions])


def annual_means(values: np.ndarray, time_index: TimeIndex, min_months: int = 12) -> tuple[np.ndarray, np.ndarray]:
    '''
    Calendar-year means of a monthly scalar series.

    Returns every year present in "time_index" with its mean over valid
    months; a year with fewer than "min_months" valid months is missing.

    Returns
    -------
    tuple
        (years, means), both 1-D
    '''

    values = np.asarray(values, dtype=np.float64)

    if values.shape != (len(time_index),):
        raise ValueError('Series and time index must have equal length.')

    years = np.unique(time_index.years)
    means = np.full(years.size, np.nan)

    for jj, year in enumerate(years):
        in_year = values[time_index.years == year]
        valid = in_year[np.isfinite(in_year)]
        if valid.size >= min_months:
            means[jj] = valid.mean()

    return years, means
