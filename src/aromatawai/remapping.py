'''
Regridding of fields on curvilinear model grids with xESMF.

This module provides:
- regrid_curvilinear: Interpolates a Field defined on a 2-D (curvilinear)
  latitude/longitude grid, such as an ocean or sea-ice model tripole grid,
  onto a target grid using bilinear regridding via xESMF (xesmf.Regridder).
  The regridder is cached and reused while the source and target grids do
  not change, since building the weights dominates the cost.

Design notes
------------
- Requires the optional "regrid" extra (xesmf and its ESMF backend).
- Longitudes of both grids are expected in the 0-360 convention.
- Target cells not covered by the source grid are returned missing
  ("unmapped_to_nan"); missing source samples propagate to every target cell
  they contribute to (no "skipna" renormalization).
'''

import logging

import numpy as np
import xarray as xr
import xesmf as xe  # Universal Regridder for Geospatial Data

from aromatawai.grid import Field, Grid

logger = logging.getLogger(__name__)


def regrid_curvilinear(field: Field, target_grid: Grid, periodic: bool = False) -> Field:
    '''
    Bilinearly regrid a Field onto "target_grid" with xESMF.

    Caching
    -------
    The function caches an "xesmf.Regridder" together with the source and
    target coordinates it was built for. A new regridder is constructed only if:
      - No regridder has been cached yet,
      - The source latitude/longitude arrays differ from the cached ones,
      - The target latitude/longitude arrays differ from the cached ones,
      - "periodic" differs from the cached setting.

    Parameters
    ----------
    field : Field
        Field on a rectilinear or curvilinear grid; any leading axes are
        regridded slice by slice.
    target_grid : Grid
        Rectilinear or curvilinear destination grid.
    periodic : bool, default False
        Whether the source grid is global and periodic in longitude.

    Returns
    -------
    Field
        New Field on "target_grid".
    '''

    source_ds = _grid_dataset(field.grid)
    target_ds = _grid_dataset(target_grid)

    # Create regridder if necessary, otherwise use the old regridder

    cached_regridder = getattr(regrid_curvilinear, '_cached_regridder', None)
    cached_source = getattr(regrid_curvilinear, '_cached_source', None)
    cached_target = getattr(regrid_curvilinear, '_cached_target', None)
    cached_periodic = getattr(regrid_curvilinear, '_cached_periodic', None)

    if (
        cached_regridder is None
        or cached_periodic != periodic
        or not field.grid.same_as(cached_source)
        or not target_grid.same_as(cached_target)
    ):
        logger.info(f'Building bilinear xESMF regridder {field.grid.shape} -> {target_grid.shape}')

        cached_regridder = xe.Regridder(source_ds, target_ds, method='bilinear', periodic=periodic, unmapped_to_nan=True)

        regrid_curvilinear._cached_regridder = cached_regridder
        regrid_curvilinear._cached_source = field.grid
        regrid_curvilinear._cached_target = target_grid
        regrid_curvilinear._cached_periodic = periodic

    # Regrid the data, slice dimensions in front of the horizontal ones

    leading_dims = tuple(f'dim_{kk}' for kk in range(field.data.ndim - 2))

    source_da = xr.DataArray(np.asarray(field.data, dtype=np.float64), dims=leading_dims + ('y', 'x'))

    regridded = cached_regridder(source_da, skipna=False).values

    return field.replace(data=regridded.astype(field.data.dtype, copy=False), grid=target_grid)


def _grid_dataset(grid: Grid) -> xr.Dataset:
    '''
    xESMF-compatible Dataset holding 2-D 'lat'/'lon' coordinates on dims (y, x).
    '''

    return xr.Dataset(
        coords={
            'lat': (('y', 'x'), np.asarray(grid.lat2d())),
            'lon': (('y', 'x'), np.asarray(grid.lon2d())),
        }
    )
