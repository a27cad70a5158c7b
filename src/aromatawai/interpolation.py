'''
Interpolation of gridded fields between rectilinear latitude/longitude grids.

This module provides:
- bilinear_regrid: Interpolates a Field (any number of leading time/layer axes)
  from its rectilinear grid onto another rectilinear grid by bilinear
  interpolation over the two horizontal axes.
- nearest_regrid: Same contract with nearest-neighbour selection, for masks
  and categorical fields.

Design notes
------------
- Source coordinates must be strictly increasing along both axes; run
  "grid.normalize_field" beforehand (latitudes ascending, longitudes in
  0-360 ascending).
- A target cell is missing if any bracketing source cell with positive
  weight is missing, so missing source samples never leak into valid output
  and never spread past the cells they touch.
- Target cells outside the source coordinate range are missing (no
  extrapolation). With "periodic=True" the longitude axis of a global source
  (one whose seam gap is no wider than its widest longitude step) wraps
  across 360 degrees, so global grids have no gap at the meridian seam.
  Regional sources are never wrapped.
- Regridding onto a grid identical to the source grid returns the values
  unchanged.
- Curvilinear sources are handled by "aromatawai.remapping" (xESMF).
'''

import logging

import numpy as np

from aromatawai.grid import Field, Grid

logger = logging.getLogger(__name__)


def bilinear_regrid(field: Field, target_grid: Grid, periodic: bool = False) -> Field:
    '''
    Bilinearly interpolate a Field onto a rectilinear target grid.

    Parameters
    ----------
    field : Field
        Field on a rectilinear grid with strictly increasing coordinates.
    target_grid : Grid
        Rectilinear grid to interpolate onto. Its cell areas, if any, are
        carried by the returned Field.
    periodic : bool, default False
        Wrap source longitudes across 360 degrees when the source grid is global.

    Returns
    -------
    Field
        New Field on "target_grid" with the same leading axes, time index,
        levels, units and metadata as "field".

    Raises
    ------
    ValueError
        If either grid is curvilinear, or the source coordinates are not
        strictly increasing or have fewer than two points along an axis.
    '''

    source, lat, lon = _prepare_source(field, periodic)
    target_lat, target_lon = _target_coordinates(target_grid, lon, periodic)

    iy, fy, inside_y = _bracket(lat, target_lat)
    ix, fx, inside_x = _bracket(lon, target_lon)

    # Weights of the four bracketing cells

    wy0 = (1.0 - fy)[:, np.newaxis]
    wy1 = fy[:, np.newaxis]
    wx0 = (1.0 - fx)[np.newaxis, :]
    wx1 = fx[np.newaxis, :]

    f00 = source[:, iy[:, np.newaxis], ix[np.newaxis, :]]
    f01 = source[:, iy[:, np.newaxis], ix[np.newaxis, :] + 1]
    f10 = source[:, iy[:, np.newaxis] + 1, ix[np.newaxis, :]]
    f11 = source[:, iy[:, np.newaxis] + 1, ix[np.newaxis, :] + 1]

    # Only corners with positive weight contribute, or make the cell missing

    out = np.zeros(np.broadcast_shapes(f00.shape, wy0.shape, wx0.shape))
    missing = np.zeros(out.shape, dtype=bool)

    for weight, corner in ((wy0 * wx0, f00), (wy0 * wx1, f01), (wy1 * wx0, f10), (wy1 * wx1, f11)):
        used = weight > 0
        out += np.where(used, corner, 0.0) * weight
        missing |= used & np.isnan(corner)

    out[missing] = np.nan

    return _finish(field, target_grid, out, inside_y, inside_x)


def nearest_regrid(field: Field, target_grid: Grid, periodic: bool = False) -> Field:
    '''
    Nearest-neighbour counterpart of "bilinear_regrid" (ties go to the lower
    source index). Same parameters, return value and exceptions.
    '''

    source, lat, lon = _prepare_source(field, periodic)
    target_lat, target_lon = _target_coordinates(target_grid, lon, periodic)

    iy, fy, inside_y = _bracket(lat, target_lat)
    ix, fx, inside_x = _bracket(lon, target_lon)

    jy = iy + (fy > 0.5)
    jx = ix + (fx > 0.5)

    out = source[:, jy[:, np.newaxis], jx[np.newaxis, :]]

    return _finish(field, target_grid, out, inside_y, inside_x)


def _prepare_source(field: Field, periodic: bool) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    grid = field.grid

    if not grid.is_rectilinear:
        raise ValueError('Source grid is curvilinear; use aromatawai.remapping.regrid_curvilinear.')

    lat = np.asarray(grid.lat, dtype=np.float64)
    lon = np.asarray(grid.lon, dtype=np.float64)

    for name, coord in (('latitude', lat), ('longitude', lon)):
        if coord.size < 2:
            raise ValueError(f'Source {name} needs at least two points for interpolation.')
        if not np.all(np.diff(coord) > 0):
            raise ValueError(f'Source {name} must be strictly increasing; normalize the field first.')

    source = np.asarray(field.data, dtype=np.float64).reshape((-1,) + grid.shape)

    if periodic:
        if lon[-1] - lon[0] >= 360.0:
            raise ValueError('Periodic source longitudes must span less than 360 degrees.')

        seam = 360.0 - (lon[-1] - lon[0])

        if seam > np.diff(lon).max() + 1.0e-6:
            logger.debug(f'Source longitudes {lon[0]}-{lon[-1]} do not cover the globe; not wrapping')
            return source, lat, lon

        # Append the first column one revolution east to close the seam

        lon = np.append(lon, lon[0] + 360.0)
        source = np.concatenate([source, source[:, :, :1]], axis=2)

    return source, lat, lon


def _target_coordinates(target_grid: Grid, source_lon: np.ndarray, periodic: bool) -> tuple[np.ndarray, np.ndarray]:
    if not target_grid.is_rectilinear:
        raise ValueError('Target grid must be rectilinear.')

    target_lat = np.asarray(target_grid.lat, dtype=np.float64)
    target_lon = np.asarray(target_grid.lon, dtype=np.float64)

    if periodic:
        target_lon = (target_lon - source_lon[0]) % 360.0 + source_lon[0]

    return target_lat, target_lon


def _bracket(source: np.ndarray, target: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    '''
    Lower bracketing index, fractional distance to the next source point, and
    coverage flag for every target coordinate.
    '''

    inside = (target >= source[0]) & (target <= source[-1])

    index = np.searchsorted(source, target, side='right') - 1
    index = np.clip(index, 0, source.size - 2)

    fraction = (target - source[index]) / (source[index + 1] - source[index])
    fraction = np.where(inside, fraction, 0.0)

    return index, fraction, inside


def _finish(field: Field, target_grid: Grid, out: np.ndarray, inside_y: np.ndarray, inside_x: np.ndarray) -> Field:
    inside = inside_y[:, np.newaxis] & inside_x[np.newaxis, :]

    n_outside = int((~inside).sum())
    if n_outside:
        logger.info(f'{n_outside} of {inside.size} target cells lie outside the source grid and are set to missing')

    out = np.where(inside[np.newaxis, :, :], out, np.nan)

    leading_shape = field.data.shape[:-2]
    out = out.reshape(leading_shape + target_grid.shape).astype(field.data.dtype, copy=False)

    return field.replace(data=out, grid=target_grid)
