'''
Grid, level and field value types plus coordinate normalization.

This module provides:
- Grid: latitude/longitude coordinates (1-D rectilinear or 2-D curvilinear)
  with an optional cell-area array.
- LevelSet: ocean layer geometry (face depths, centre depths, thickness).
- Field: a numeric array bound to exactly one Grid, optionally to a LevelSet
  and a TimeIndex, with missing values stored as NaN.
- fill_coordinate_gaps, normalize_longitudes, ensure_latitude_ascending and
  normalize_field: repair and align coordinate arrays before regridding and
  reduction.

Design notes
------------
- Shapes are validated once, when a Grid or Field is constructed. The trailing
  two axes of every Field are the grid's horizontal axes (y, x); a Field with a
  LevelSet carries the layer axis immediately before them; a Field with a
  TimeIndex carries time as its first axis.
- Arrays held by Grid, LevelSet and Field are read-only. Every transformation
  returns a new object.
- Longitudes are normalized to the 0-360 convention.
'''

import logging

import numpy as np
import xarray as xr

from aromatawai.errors import GridRepairError

logger = logging.getLogger(__name__)

EARTH_RADIUS = 6371000.0  # m


def _frozen(array: np.ndarray) -> np.ndarray:
    array = np.array(array, copy=True)
    array.setflags(write=False)
    return array


class Grid:
    '''
    Horizontal grid: latitude and longitude in degrees plus optional cell areas.

    A rectilinear grid is given by 1-D latitude (ny) and 1-D longitude (nx)
    arrays; a curvilinear grid by 2-D latitude and longitude arrays of equal
    shape (ny, nx). The area array, if given, must have shape (ny, nx).
    '''

    def __init__(self, lat: np.ndarray, lon: np.ndarray, area: np.ndarray = None):
        lat = np.asarray(lat, dtype=np.float64)
        lon = np.asarray(lon, dtype=np.float64)

        if lat.ndim == 1 and lon.ndim == 1:
            shape = (lat.size, lon.size)
        elif lat.ndim == 2 and lon.ndim == 2:
            if lat.shape != lon.shape:
                raise ValueError(f'Curvilinear latitude {lat.shape} and longitude {lon.shape} shapes differ.')
            shape = lat.shape
        else:
            raise ValueError('Latitude and longitude must both be 1-D or both be 2-D.')

        if area is not None:
            area = np.asarray(area, dtype=np.float64)
            if area.shape != shape:
                raise ValueError(f'Cell area shape {area.shape} does not match grid shape {shape}.')
            if np.any(area[np.isfinite(area)] < 0):
                raise ValueError('Cell areas must be non-negative.')
            area = _frozen(area)

        self.lat = _frozen(lat)
        self.lon = _frozen(lon)
        self.area = area
        self.shape = shape

    def __repr__(self):
        kind = 'rectilinear' if self.is_rectilinear else 'curvilinear'
        return f'Grid({kind}, shape={self.shape}, area={self.area is not None})'

    @property
    def is_rectilinear(self) -> bool:
        return self.lat.ndim == 1

    def lat2d(self) -> np.ndarray:
        if self.is_rectilinear:
            return np.broadcast_to(self.lat[:, np.newaxis], self.shape)
        return self.lat

    def lon2d(self) -> np.ndarray:
        if self.is_rectilinear:
            return np.broadcast_to(self.lon[np.newaxis, :], self.shape)
        return self.lon

    def same_as(self, other: 'Grid') -> bool:
        '''
        True if both grids have identical coordinates.
        '''

        return (
            self.lat.shape == other.lat.shape
            and self.lon.shape == other.lon.shape
            and np.array_equal(self.lat, other.lat)
            and np.array_equal(self.lon, other.lon)
        )

    def weights(self) -> np.ndarray:
        '''
        Horizontal weights of shape (ny, nx): the cell area when the grid carries
        one, otherwise the cosine of latitude.
        '''

        if self.area is not None:
            return self.area

        return np.clip(np.cos(np.deg2rad(self.lat2d())), 0.0, None)

    def with_area(self, area: np.ndarray) -> 'Grid':
        return Grid(self.lat, self.lon, area)

    def spherical_cell_areas(self, radius: float = EARTH_RADIUS) -> np.ndarray:
        '''
        Cell areas (m^2) of a rectilinear grid on a sphere.

        Cell edges lie midway between adjacent centres; the outermost edges are
        placed half a cell beyond the outermost centres, and latitude edges are
        clipped to [-90, 90].

        Raises
        ------
        ValueError
            If the grid is curvilinear or an axis has fewer than 2 points.
        '''

        if not self.is_rectilinear:
            raise ValueError('Spherical cell areas can only be derived for rectilinear grids.')

        if self.lat.size < 2 or self.lon.size < 2:
            raise ValueError('Cell areas need at least two points along each axis.')

        lat_edges = np.clip(_cell_edges(self.lat), -90.0, 90.0)
        lon_edges = _cell_edges(self.lon)

        dsin = np.abs(np.diff(np.sin(np.deg2rad(lat_edges))))
        dlon = np.abs(np.diff(np.deg2rad(lon_edges)))

        return radius**2 * dsin[:, np.newaxis] * dlon[np.newaxis, :]


def _cell_edges(centres: np.ndarray) -> np.ndarray:
    mid = 0.5 * (centres[1:] + centres[:-1])
    first = centres[0] - (mid[0] - centres[0])
    last = centres[-1] + (centres[-1] - mid[-1])
    return np.concatenate(([first], mid, [last]))


class LevelSet:
    '''
    Vertical layer geometry of an ocean grid.

    Face (interface) depths are strictly increasing from the surface to the
    bottom; layer k spans faces[k] to faces[k + 1] and its thickness is their
    difference. Centre depths default to the face midpoints.
    '''

    def __init__(self, faces: np.ndarray, centers: np.ndarray = None, units: str = 'm'):
        faces = np.asarray(faces, dtype=np.float64)

        if faces.ndim != 1 or faces.size < 2:
            raise ValueError('A level set needs a 1-D array of at least two face depths.')

        if not np.all(np.isfinite(faces)) or not np.all(np.diff(faces) > 0):
            raise ValueError('Face depths must be finite and strictly increasing from surface to bottom.')

        if centers is None:
            centers = 0.5 * (faces[1:] + faces[:-1])
        else:
            centers = np.asarray(centers, dtype=np.float64)
            if centers.shape != (faces.size - 1,):
                raise ValueError(f'Expected {faces.size - 1} centre depths, got {centers.shape}.')

        self.faces = _frozen(faces)
        self.centers = _frozen(centers)
        self.units = units

    def __repr__(self):
        return f'LevelSet(n_layers={self.n_layers}, bottom={self.faces[-1]} {self.units})'

    def __len__(self):
        return self.n_layers

    @property
    def n_layers(self) -> int:
        return self.faces.size - 1

    @property
    def thickness(self) -> np.ndarray:
        return np.diff(self.faces)


class Field:
    '''
    A numeric array defined on one Grid.

    Axes, in order: [time,] [layer,] y, x. The missing-value sentinel, if
    given, is replaced by NaN on construction; NaN is the only missing-value
    marker used downstream. Floating-point input keeps its storage precision,
    other input is stored as float64.

    Parameters
    ----------
    data : numpy.ndarray
        Field values.
    grid : Grid
        Grid whose shape matches the trailing two axes of "data".
    time_index : TimeIndex, optional
        (year, month) of every slice along the first axis.
    units : str
        Physical units.
    missing_value : float, optional
        Sentinel marking missing samples in "data".
    levels : LevelSet, optional
        Layer geometry of the axis preceding the horizontal axes.
    name : str, optional
        Variable name.
    attrs : dict, optional
        Free-form metadata carried along transformations.

    Raises
    ------
    ValueError
        If any of the shapes are incompatible.
    '''

    def __init__(
        self,
        data: np.ndarray,
        grid: Grid,
        time_index=None,
        units: str = '',
        missing_value: float = None,
        levels: LevelSet = None,
        name: str = None,
        attrs: dict = None,
    ):
        data = np.asarray(data)

        if not np.issubdtype(data.dtype, np.floating):
            data = data.astype(np.float64)
        else:
            data = data.copy()

        if missing_value is not None and np.isfinite(missing_value):
            data[np.isclose(data, missing_value, rtol=1e-6, atol=0.0)] = np.nan

        if data.ndim < 2 or data.shape[-2:] != grid.shape:
            raise ValueError(f'Data shape {data.shape} does not end with grid shape {grid.shape}.')

        n_fixed_axes = 2

        if levels is not None:
            if data.ndim < 3 or data.shape[-3] != levels.n_layers:
                raise ValueError(f'Data shape {data.shape} does not match {levels.n_layers} layers.')
            n_fixed_axes = 3

        if time_index is not None:
            if data.ndim != n_fixed_axes + 1 or data.shape[0] != len(time_index):
                raise ValueError(f'Data shape {data.shape} does not match a time axis of length {len(time_index)}.')

        data.setflags(write=False)

        self.data = data
        self.grid = grid
        self.time_index = time_index
        self.units = units
        self.missing_value = missing_value
        self.levels = levels
        self.name = name
        self.attrs = dict(attrs or {})

    def __repr__(self):
        return f'Field(name={self.name!r}, shape={self.data.shape}, units={self.units!r})'

    @property
    def n_times(self) -> int:
        return 0 if self.time_index is None else len(self.time_index)

    def replace(self, **changes) -> 'Field':
        '''
        Return a new Field with the given constructor arguments replaced.
        '''

        arguments = {
            'data': self.data,
            'grid': self.grid,
            'time_index': self.time_index,
            'units': self.units,
            'missing_value': self.missing_value,
            'levels': self.levels,
            'name': self.name,
            'attrs': self.attrs,
        }
        arguments.update(changes)

        return Field(**arguments)

    def to_dataarray(self) -> xr.DataArray:
        '''
        Export to an xarray DataArray with latitude/longitude coordinates, and
        time (first of month) and depth coordinates where present.
        '''

        horizontal_dims = ('lat', 'lon') if self.grid.is_rectilinear else ('y', 'x')

        dims = list(horizontal_dims)
        coords = {}

        if self.grid.is_rectilinear:
            coords['lat'] = ('lat', self.grid.lat)
            coords['lon'] = ('lon', self.grid.lon)
        else:
            coords['lat'] = (horizontal_dims, self.grid.lat)
            coords['lon'] = (horizontal_dims, self.grid.lon)

        if self.levels is not None:
            dims.insert(0, 'depth')
            coords['depth'] = ('depth', self.levels.centers)

        if self.time_index is not None:
            dims.insert(0, 'time')
            coords['time'] = ('time', self.time_index.to_datetime64())

        attrs = dict(self.attrs)
        attrs['units'] = self.units

        return xr.DataArray(np.array(self.data), dims=dims, coords=coords, name=self.name, attrs=attrs)


#
# Coordinate normalization
#


def fill_coordinate_gaps(coord: np.ndarray) -> np.ndarray:
    '''
    Fill missing (non-finite) entries of a 1-D or 2-D coordinate array.

    Behavior
    --------
    - Returns the input unchanged if nothing is missing.
    - Fills interior gaps by linear interpolation along the first axis
      (per column for 2-D arrays).
    - Fills what remains (gaps at the array edges) by nearest-neighbour
      propagation in two passes: a forward row-major scan copying from the
      previous row, else the previous column; then a backward scan copying
      from the next row, else the next column. Forward results take
      precedence where both passes produce a value.
    - Originally valid entries are never modified.

    Raises
    ------
    GridRepairError
        If a cell remains missing after both passes (e.g. an all-missing array).
    '''

    coord = np.asarray(coord, dtype=np.float64)

    missing = ~np.isfinite(coord)
    n_missing = int(missing.sum())

    if n_missing == 0:
        return coord

    logger.debug(f'Filling {n_missing} missing coordinate values in array of shape {coord.shape}')

    filled = coord.reshape(coord.shape[0], -1).copy()

    # Interior gaps: linear interpolation along the first axis

    index = np.arange(filled.shape[0])

    for jj in range(filled.shape[1]):
        column = filled[:, jj]
        valid = np.isfinite(column)

        if valid.sum() < 2:
            continue

        first = index[valid][0]
        last = index[valid][-1]
        interior = ~valid & (index > first) & (index < last)

        if interior.any():
            column[interior] = np.interp(index[interior], index[valid], column[valid])

    # Edge gaps: forward and backward nearest-neighbour propagation

    forward = _propagate_forward(filled)
    backward = _propagate_forward(filled[::-1, ::-1])[::-1, ::-1]

    merged = np.where(np.isfinite(forward), forward, backward)

    n_unfilled = int((~np.isfinite(merged)).sum())
    if n_unfilled:
        raise GridRepairError(f'{n_unfilled} coordinate values have no valid neighbour and cannot be filled.')

    return merged.reshape(coord.shape)


def _propagate_forward(values: np.ndarray) -> np.ndarray:
    out = values.copy()
    n_rows, n_cols = out.shape

    for ii in range(n_rows):
        for jj in range(n_cols):
            if np.isfinite(out[ii, jj]):
                continue
            if ii > 0 and np.isfinite(out[ii - 1, jj]):
                out[ii, jj] = out[ii - 1, jj]
            elif jj > 0 and np.isfinite(out[ii, jj - 1]):
                out[ii, jj] = out[ii, jj - 1]

    return out


def normalize_longitudes(lon: np.ndarray, *data: np.ndarray) -> tuple[np.ndarray, list[np.ndarray]]:
    '''
    Convert longitudes to the 0-360 convention and sort them ascending.

    Longitudes below 0 are mapped to value + 360. One stable permutation that
    sorts the longitudes ascending is computed and applied to the coordinate
    array and to the last axis of every array in "data". For 2-D longitudes
    the permutation is applied only when all rows share it (a rectilinear grid
    stored in 2-D); curvilinear longitudes are converted but not reordered.

    Normalizing already normalized longitudes returns them unchanged.

    Returns
    -------
    tuple
        (normalized longitudes, list of reordered data arrays)
    '''

    lon = np.asarray(lon, dtype=np.float64)
    data = [np.asarray(array) for array in data]

    wrapped = np.where(lon < 0, lon + 360.0, lon)

    if wrapped.ndim == 1:
        perm = np.argsort(wrapped, kind='stable')
    else:
        perms = np.argsort(wrapped, axis=-1, kind='stable')
        if np.all(perms == perms[0]):
            perm = perms[0]
        else:
            logger.debug('Curvilinear longitudes converted to 0-360 without reordering')
            perm = None

    if perm is None or np.array_equal(perm, np.arange(perm.size)):
        return wrapped, data

    return wrapped[..., perm], [array[..., perm] for array in data]


def ensure_latitude_ascending(lat: np.ndarray, *data: np.ndarray) -> tuple[np.ndarray, list[np.ndarray]]:
    '''
    Reverse the latitude axis when the first latitude exceeds the last.

    The latitude array (along its first axis) and the second-to-last axis of
    every array in "data" are reversed in lock-step. For 2-D latitudes the
    first and last rows are compared in their first column.

    Returns
    -------
    tuple
        (latitudes, list of data arrays), reversed or as given
    '''

    lat = np.asarray(lat, dtype=np.float64)
    data = [np.asarray(array) for array in data]

    first = lat[0] if lat.ndim == 1 else lat[0, 0]
    last = lat[-1] if lat.ndim == 1 else lat[-1, 0]

    if not first > last:
        return lat, data

    return lat[::-1, ...], [array[..., ::-1, :] for array in data]


def normalize_field(field: Field) -> Field:
    '''
    Repair and align the coordinates of a Field.

    Fills coordinate gaps, converts longitudes to 0-360 in ascending order and
    makes latitudes ascending, permuting data and cell areas consistently.
    Returns a new Field on a new Grid.
    '''

    grid = field.grid

    lat = fill_coordinate_gaps(grid.lat)
    lon = fill_coordinate_gaps(grid.lon)

    curvilinear = lat.ndim == 2

    # Longitude convention and order; the data, the cell areas and, for 2-D
    # coordinates, the latitudes follow the longitude permutation

    carried = [np.asarray(field.data)]
    if grid.area is not None:
        carried.append(grid.area)
    if curvilinear:
        carried.append(lat)

    lon, carried = normalize_longitudes(lon, *carried)

    if curvilinear:
        lat = carried.pop()

    # Latitude order; for 2-D coordinates the longitudes follow

    if curvilinear:
        carried.append(lon)

    lat, carried = ensure_latitude_ascending(lat, *carried)

    if curvilinear:
        lon = carried.pop()

    data = carried[0]
    area = carried[1] if grid.area is not None else None

    return field.replace(data=data, grid=Grid(lat, lon, area))
