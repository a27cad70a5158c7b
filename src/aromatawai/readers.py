'''
Reading model output and observational data sets from NetCDF files.

This module provides:
- open_dataset / require_variable: open files and fetch variables, turning
  missing files and variables into InputUnavailable.
- model_file_path / iter_model_months: locate and stream monthly model history
  files whose names encode a model-relative year.
- read_grid, read_level_set: grid and ocean layer geometry.
- read_model_field, read_obs_field: time-indexed Fields from model files
  (one file per month) and from observation files (one multi-time file, with
  a calendar time axis or an integer YYYYMM time axis).
- total_precipitation, to_mm_per_day, to_celsius, to_percent: unit harmonization.

Design notes
------------
- xarray decodes _FillValue/missing_value attributes to NaN on reading, so
  Fields built here carry NaN as their only missing-value marker.
- Model years relate to calendar years through the configured reference year:
  model year "first_model_year" is calendar year "reference_year".
'''

import logging
from collections.abc import Callable, Iterator
from pathlib import Path

import numpy as np
import xarray as xr

from aromatawai.climatology import TimeIndex
from aromatawai.errors import InputUnavailable
from aromatawai.grid import Field, Grid, LevelSet

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


def open_dataset(path: Path) -> xr.Dataset:
    '''
    Open a NetCDF file with xarray.

    Raises
    ------
    InputUnavailable
        If the file does not exist or cannot be read.
    '''

    path = Path(path)

    if not path.is_file():
        raise InputUnavailable(path, reason='file not found')

    try:
        ds = xr.open_dataset(path)
    except (OSError, ValueError) as e:
        raise InputUnavailable(path, reason=str(e)) from e

    logger.debug(f'Opened {path}')

    return ds


def require_variable(ds: xr.Dataset, name: str, path: Path = None) -> xr.DataArray:
    '''
    Return variable "name" of "ds".

    Raises
    ------
    InputUnavailable
        If the variable is not in the dataset.
    '''

    if name not in ds.variables:
        source = path if path is not None else ds.encoding.get('source')
        raise InputUnavailable(source, variable=name)

    return ds[name]


def model_file_path(
    directory: Path, pattern: str, year: int, month: int, reference_year: int, first_model_year: int = 1
) -> Path:
    '''
    Path of the model history file of a calendar (year, month).

    "pattern" is a str.format template that may use the fields "model_year",
    "year" and "month", e.g. 'b.e21.B1850.f09_g17.cice.h.{model_year:04d}-{month:02d}.nc'.
    '''

    model_year = year - reference_year + first_model_year

    return Path(directory) / pattern.format(model_year=model_year, year=year, month=month)


def iter_model_months(
    directory: Path, pattern: str, time_index: TimeIndex, reference_year: int, first_model_year: int = 1
) -> Iterator[tuple[int, int, xr.Dataset]]:
    '''
    Yield (year, month, dataset) for every step of "time_index", opening one
    monthly file at a time and closing it when the consumer moves on.

    Raises
    ------
    InputUnavailable
        If any monthly file is missing or unreadable.
    '''

    for year, month in time_index:
        path = model_file_path(directory, pattern, year, month, reference_year, first_model_year)

        ds = open_dataset(path)

        try:
            yield year, month, ds
        finally:
            ds.close()


def read_grid(ds: xr.Dataset, lat_name: str, lon_name: str, area_name: str = None, path: Path = None) -> Grid:
    '''
    Grid from the latitude, longitude and (optional) cell-area variables of a dataset.
    '''

    lat = require_variable(ds, lat_name, path).values
    lon = require_variable(ds, lon_name, path).values

    area = None
    if area_name is not None:
        area = require_variable(ds, area_name, path).values

    return Grid(lat, lon, area)


def read_level_set(
    ds: xr.Dataset,
    faces_name: str = None,
    bounds_name: str = None,
    top_name: str = None,
    bottom_name: str = None,
    centers_name: str = None,
    scale: float = 1.0,
    path: Path = None,
) -> LevelSet:
    '''
    Ocean layer geometry from a grid file.

    Face depths come from one variable holding all faces ("faces_name"), from
    (layer, 2) depth bounds ("bounds_name"), or from the layer top depths
    ("top_name") closed by the last layer bottom depth ("bottom_name").
    "scale" converts depths to metres (0.01 for cm).
    '''

    if faces_name is not None:
        faces = require_variable(ds, faces_name, path).values
    elif bounds_name is not None:
        bounds = require_variable(ds, bounds_name, path).values
        faces = np.append(bounds[:, 0], bounds[-1, 1])
    elif top_name is not None and bottom_name is not None:
        top = require_variable(ds, top_name, path).values
        bottom = require_variable(ds, bottom_name, path).values
        faces = np.append(top, bottom[-1])
    else:
        raise ValueError('Give faces_name, bounds_name, or both top_name and bottom_name.')

    centers = None
    if centers_name is not None:
        centers = require_variable(ds, centers_name, path).values * scale

    return LevelSet(np.asarray(faces, dtype=np.float64) * scale, centers)


def read_model_field(
    directory: Path,
    pattern: str,
    variable: str,
    time_index: TimeIndex,
    reference_year: int,
    grid: Grid,
    first_model_year: int = 1,
    levels: LevelSet = None,
    reader: Callable[[xr.Dataset], tuple[np.ndarray, str]] = None,
) -> Field:
    '''
    Stack one variable of monthly model files into a time-indexed Field.

    Parameters
    ----------
    directory, pattern, time_index, reference_year, first_model_year
        Locate the monthly files (see "model_file_path").
    variable : str
        Variable to read; also the name of the returned Field.
    grid : Grid
        Grid of the model variable.
    levels : LevelSet, optional
        Layer geometry of 3-D variables.
    reader : callable, optional
        Function mapping an opened dataset to (values, units); overrides the
        plain read of "variable" (e.g. for derived quantities).

    Raises
    ------
    InputUnavailable
        If a monthly file or the variable is missing.
    '''

    slices = []
    units = ''

    for year, month, ds in iter_model_months(directory, pattern, time_index, reference_year, first_model_year):
        if reader is not None:
            values, units = reader(ds)
        else:
            da = require_variable(ds, variable, ds.encoding.get('source'))
            values = da.values
            units = da.attrs.get('units', '')

        slices.append(_squeeze_time(np.asarray(values), grid, levels))

        logger.debug(f'Read {variable} {year}-{month:02d}')

    logger.info(f'Read {len(slices)} months of model {variable} from {directory}')

    return Field(np.stack(slices), grid, time_index=time_index, units=units, levels=levels, name=variable)


def _squeeze_time(values: np.ndarray, grid: Grid, levels: LevelSet = None) -> np.ndarray:
    n_axes = 3 if levels is not None else 2

    # Monthly history files carry a time axis of length 1

    while values.ndim > n_axes and values.shape[0] == 1:
        values = values[0]

    if values.shape[-2:] != grid.shape:
        raise ValueError(f'Model slice shape {values.shape} does not match grid shape {grid.shape}.')

    return values


def read_obs_field(
    path: Path,
    variable: str,
    lat_name: str = 'lat',
    lon_name: str = 'lon',
    time_name: str = 'time',
    area_name: str = None,
    levels: LevelSet = None,
) -> Field:
    '''
    Read an observational data set into a time-indexed Field.

    The time axis is either a calendar time axis (decoded by xarray to
    datetime64 or cftime objects) or an integer YYYYMM encoding per step.
    The data are transposed so that time is the first axis.

    Raises
    ------
    InputUnavailable
        If the file or one of the named variables is missing.
    '''

    ds = open_dataset(path)

    try:
        da = require_variable(ds, variable, path)
        time = require_variable(ds, time_name, path)

        grid = read_grid(ds, lat_name, lon_name, area_name, path)

        if np.issubdtype(time.dtype, np.integer) or np.issubdtype(time.dtype, np.floating):
            time_index = TimeIndex.from_yyyymm(time.values)
        else:
            time_index = TimeIndex.from_times(time.values)

        values = da.transpose(time.dims[0], ...).values
        units = da.attrs.get('units', '')

    finally:
        ds.close()

    logger.info(f'Read {len(time_index)} steps of observed {variable} from {path}')

    return Field(values, grid, time_index=time_index, units=units, levels=levels, name=variable)


def total_precipitation(ds: xr.Dataset, convective: str = 'PRECC', large_scale: str = 'PRECL') -> tuple[np.ndarray, str]:
    '''
    Sum of convective and large-scale precipitation rates in mm/day.

    Rates in m/s (liquid water equivalent) or kg m-2 s-1 are converted; rates
    already in mm/day are summed as they are.
    '''

    total = None

    for name in (convective, large_scale):
        da = require_variable(ds, name, ds.encoding.get('source'))
        rate = np.asarray(da.values, dtype=np.float64) * _precipitation_factor(da.attrs.get('units', ''), name)

        total = rate if total is None else total + rate

    return total, 'mm/day'


def _precipitation_factor(units: str, name: str) -> float:
    if units in ('m/s', 'm s-1', 'm s^-1'):
        return 1000.0 * SECONDS_PER_DAY
    if units in ('kg m-2 s-1', 'kg/m2/s', 'kg m^-2 s^-1', 'mm/s', 'mm s-1'):
        return SECONDS_PER_DAY
    if units in ('mm/day', 'mm/d', 'mm d-1', 'mm day-1'):
        return 1.0

    raise ValueError(f"Unsupported precipitation units '{units}' for {name}.")


def to_mm_per_day(values: np.ndarray, units: str) -> tuple[np.ndarray, str]:
    '''
    Convert precipitation rates (m/s, kg m-2 s-1, mm/s or mm/day) to mm/day.
    '''

    return np.asarray(values, dtype=np.float64) * _precipitation_factor(units, 'precipitation'), 'mm/day'


def to_celsius(values: np.ndarray, units: str) -> tuple[np.ndarray, str]:
    '''
    Convert temperatures in K to degC; degC input is returned as is.
    '''

    if units in ('K', 'kelvin', 'Kelvin', 'degK'):
        return np.asarray(values, dtype=np.float64) - 273.15, 'degC'
    if units in ('C', 'degC', 'deg_C', 'degrees_C', 'degrees C', 'Celsius', 'celsius', 'degree_Celsius'):
        return np.asarray(values), 'degC'

    raise ValueError(f"Unsupported temperature units '{units}'.")


def to_percent(values: np.ndarray, units: str) -> tuple[np.ndarray, str]:
    '''
    Convert concentrations given as fractions (units '1' or 'fraction') to percent.
    '''

    if units in ('1', 'fraction', '0-1'):
        return np.asarray(values, dtype=np.float64) * 100.0, '%'
    if units in ('%', 'percent'):
        return np.asarray(values), '%'

    raise ValueError(f"Unsupported concentration units '{units}'.")
