'''
Area- and volume-weighted reductions of gridded fields.

This module provides:
- weighted_mean: Weighted mean over the valid (non-missing) cells of an array.
- weighted_mean_series: Per-time-step weighted means of a Field.
- volume_weights / volume_weighted_mean / volume_weighted_mean_series:
  Depth- and area-weighted means of 3-D ocean fields, reduced over all layers
  and horizontal cells at once.
- sea_ice_area / sea_ice_area_series: Summed area of cells whose
  concentration exceeds a threshold.
- hemisphere_mask / region_mask: Cell selections by hemisphere or by the union
  of polygons in a GeoDataFrame.

Design notes
------------
- Sums are accumulated in float64 whatever the storage precision of inputs.
- A missing cell is excluded from both the numerator and the denominator.
  When no valid cell carries positive weight the result is NaN, never 0.
- Volume means weight each cell by area x layer thickness in one reduction,
  so thin and thick layers contribute in proportion to their volume.
- region_mask caches the last grid and unioned region, and recomputes the
  mask only when either changes.
'''

import logging

import geopandas as gp
import numpy as np
import regionmask
import xarray as xr

from aromatawai.grid import Field, Grid, LevelSet

logger = logging.getLogger(__name__)


def weighted_mean(values: np.ndarray, weights: np.ndarray) -> float:
    '''
    Return sum(value * weight) / sum(weight) over cells where both the value and
    the weight are finite.

    Parameters
    ----------
    values : numpy.ndarray
        Values; NaN marks missing cells.
    weights : numpy.ndarray
        Non-negative weights broadcastable to the shape of "values".

    Returns
    -------
    float
        The weighted mean, or NaN if the valid weights sum to zero.

    Raises
    ------
    ValueError
        If weights are negative or cannot be broadcast to the values.
    '''

    values = np.asarray(values, dtype=np.float64)
    weights = np.broadcast_to(np.asarray(weights, dtype=np.float64), values.shape)

    finite_weights = np.isfinite(weights)

    if np.any(weights[finite_weights] < 0):
        raise ValueError('Weights must be non-negative.')

    valid = np.isfinite(values) & finite_weights

    weight_sum = weights[valid].sum()

    if not weight_sum > 0:
        logger.debug('Weighted mean undefined: no valid cell with positive weight')
        return np.nan

    return float((values[valid] * weights[valid]).sum() / weight_sum)


def weighted_mean_series(field: Field, weights: np.ndarray = None, mask: np.ndarray = None) -> np.ndarray:
    '''
    Weighted mean of every time slice of a Field.

    Parameters
    ----------
    field : Field
        Time-indexed Field. If it carries a LevelSet, slices are reduced by
        volume (grid weights x layer thickness).
    weights : numpy.ndarray, optional
        Weights broadcastable to one time slice. Defaults to the grid cell
        areas, or cosine-latitude weights if the grid carries no areas.
    mask : numpy.ndarray, optional
        Boolean selection of horizontal cells (y, x); cells outside get zero weight.

    Returns
    -------
    numpy.ndarray
        One value per time step (NaN where the slice has no valid cell).
    '''

    if field.time_index is None:
        raise ValueError('A weighted mean series needs a time-indexed field.')

    if weights is None:
        weights = field.grid.weights()
        if field.levels is not None:
            weights = volume_weights(weights, field.levels)

    weights = np.asarray(weights, dtype=np.float64)

    if mask is not None:
        weights = np.where(np.asarray(mask, dtype=bool), weights, 0.0)

    return np.array([weighted_mean(field.data[tt], weights) for tt in range(field.n_times)])


def volume_weights(area: np.ndarray, levels: LevelSet, max_depth: float = None) -> np.ndarray:
    '''
    Cell volumes (layer, y, x) = layer thickness x horizontal cell area.

    With "max_depth", layers are truncated at that depth; layers entirely below
    it get zero thickness.
    '''

    area = np.asarray(area, dtype=np.float64)

    if max_depth is None:
        thickness = levels.thickness
    else:
        thickness = np.clip(np.minimum(levels.faces[1:], max_depth) - levels.faces[:-1], 0.0, None)

    return thickness[:, np.newaxis, np.newaxis] * area[np.newaxis, :, :]


def volume_weighted_mean(data: np.ndarray, area: np.ndarray, levels: LevelSet, max_depth: float = None) -> float:
    '''
    Volume-weighted mean of a 3-D (layer, y, x) array over the whole water
    column and horizontal extent. Cells missing at a layer contribute no weight
    at that layer.
    '''

    data = np.asarray(data)

    if data.ndim != 3 or data.shape[0] != levels.n_layers:
        raise ValueError(f'Expected data of shape ({levels.n_layers}, ny, nx), got {data.shape}.')

    return weighted_mean(data, volume_weights(area, levels, max_depth))


def volume_weighted_mean_series(field: Field, max_depth: float = None, mask: np.ndarray = None) -> np.ndarray:
    '''
    Volume-weighted mean of every time slice of a 3-D Field.
    '''

    if field.levels is None:
        raise ValueError('Volume means need a field with a level set.')

    weights = volume_weights(field.grid.weights(), field.levels, max_depth)

    if mask is not None:
        weights = np.where(np.asarray(mask, dtype=bool)[np.newaxis, :, :], weights, 0.0)

    return weighted_mean_series(field, weights=weights)


def sea_ice_area(
    concentration: np.ndarray,
    area: np.ndarray,
    threshold: float = 15.0,
    mask: np.ndarray = None,
    weight_by_concentration: bool = False,
) -> float:
    '''
    Summed area of cells whose concentration (percent) exceeds "threshold".

    With "weight_by_concentration", each such cell contributes its area times
    its concentration fraction instead of its full area. Missing cells and
    cells outside "mask" contribute nothing.
    '''

    concentration = np.asarray(concentration, dtype=np.float64)
    area = np.broadcast_to(np.asarray(area, dtype=np.float64), concentration.shape)

    with np.errstate(invalid='ignore'):
        ice = (concentration > threshold) & np.isfinite(area)

    if mask is not None:
        ice &= np.broadcast_to(np.asarray(mask, dtype=bool), concentration.shape)

    if weight_by_concentration:
        return float((area[ice] * concentration[ice] / 100.0).sum())

    return float(area[ice].sum())


def sea_ice_area_series(
    field: Field,
    threshold: float = 15.0,
    hemisphere: str = None,
    weight_by_concentration: bool = False,
) -> np.ndarray:
    '''
    Sea-ice area of every time slice of a concentration Field, optionally
    restricted to one hemisphere. Uses the grid cell areas; rectilinear grids
    without areas use spherical cell areas (m^2).
    '''

    if field.time_index is None:
        raise ValueError('A sea-ice area series needs a time-indexed field.')

    area = field.grid.area
    if area is None:
        area = field.grid.spherical_cell_areas()

    mask = hemisphere_mask(field.grid, hemisphere)

    return np.array(
        [
            sea_ice_area(field.data[tt], area, threshold, mask, weight_by_concentration=weight_by_concentration)
            for tt in range(field.n_times)
        ]
    )


def hemisphere_mask(grid: Grid, hemisphere: str = None) -> np.ndarray:
    '''
    Boolean (y, x) selection of the 'north' (lat > 0) or 'south' (lat < 0)
    hemisphere; all cells if "hemisphere" is None.
    '''

    lat = grid.lat2d()

    if hemisphere is None:
        return np.ones(grid.shape, dtype=bool)
    if hemisphere == 'north':
        return lat > 0
    if hemisphere == 'south':
        return lat < 0

    raise ValueError(f"Hemisphere must be 'north', 'south' or None, not {hemisphere!r}.")


def region_mask(grid: Grid, region_gdf: gp.GeoDataFrame) -> np.ndarray:
    '''
    Boolean (y, x) selection of the grid cells whose centres lie inside the
    union of all polygons in "region_gdf".

    Caching
    -------
    The last grid, the last unioned region and the resulting mask are cached on
    the function. The mask is recomputed when the grid coordinates differ
    from the cached grid or the unioned region is topologically different from
    the cached one (after aligning coordinate reference systems).
    '''

    # Build a single-geometry union from the provided region_gdf

    if 'name' in region_gdf.columns:
        union_name = '-'.join(str(name) for name in region_gdf['name'].tolist())
    else:
        union_name = 'region'

    union_gdf = gp.GeoDataFrame({'name': [union_name]}, geometry=[region_gdf.union_all()], crs=region_gdf.crs)

    cached_grid = getattr(region_mask, '_cached_grid', None)
    cached_gdf = getattr(region_mask, '_cached_gdf', None)

    grid_changed = cached_grid is None or not grid.same_as(cached_grid)

    if cached_gdf is None:
        region_changed = True
    else:
        if union_gdf.crs != cached_gdf.crs:
            cached_gdf = cached_gdf.to_crs(union_gdf.crs)
        region_changed = not union_gdf.geometry.iloc[0].equals(cached_gdf.geometry.iloc[0])

    if grid_changed or region_changed:
        regions = regionmask.from_geopandas(union_gdf, names='name')

        if grid.is_rectilinear:
            lon = np.asarray(grid.lon)
            lat = np.asarray(grid.lat)
        else:
            lon = xr.DataArray(grid.lon, dims=('y', 'x'))
            lat = xr.DataArray(grid.lat, dims=('y', 'x'))

        # For a single unioned region the mask is 2-D (y, x), NaN outside

        mask_values = np.asarray(regions.mask(lon, lat).values)

        if mask_values.shape != grid.shape:
            raise ValueError(f'Region mask shape {mask_values.shape} does not match grid shape {grid.shape}.')

        region_mask._cached_grid = grid
        region_mask._cached_gdf = union_gdf.copy(deep=True)
        region_mask._cached_mask = ~np.isnan(mask_values)

        logger.debug(f"Region mask '{union_name}' selects {int(region_mask._cached_mask.sum())} cells")

    return region_mask._cached_mask.copy()
