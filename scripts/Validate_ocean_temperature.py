#!/usr/bin/env python

import argparse
import logging
import sys
from pathlib import Path

import geopandas as gpd
import numpy as np
import xarray as xr

from aromatawai import climatology, grid, masking, pipeline, plotting, readers, reduction
from aromatawai.config import ValidationConfig
from aromatawai.errors import GridRepairError, InputUnavailable

#
# Settings
#

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

logger = logging.getLogger(__name__)

# Keep attributes of xarray Datasets upon numerical operations (otherwise they are lost)

xr.set_options(keep_attrs=True)

#
# Command line arguments
#


def arg_parse(argv=None):
    '''
    Argument parser which returns the parsed values given as arguments.
    '''

    code_description = (
        'Compare model ocean temperature against an objective analysis. '
        'Given a year range, the directory and file name pattern of monthly ocean history files, '
        'an observational temperature file and an output directory, the script streams the model files '
        'one month at a time and reduces them to volume-averaged temperatures on the native model grid, '
        'reduces the observations in the same way, and regrids the model sea surface temperature onto the '
        'observation grid (xESMF). Both comparisons are written to NetCDF and text files together with plots. '
        'An optional GeoJSON file restricts the volume averages to the union of its polygons.'
    )

    parser = argparse.ArgumentParser(description=code_description)

    # Mandatory arguments
    parser.add_argument('first_year', type=int, help='First calendar year of the analysis.')
    parser.add_argument('last_year', type=int, help='Last calendar year of the analysis.')
    parser.add_argument('model_data_dir', type=str, help='Directory where monthly model history files are located.')
    parser.add_argument(
        'model_file_pattern',
        type=str,
        help='File name pattern of the monthly model files, e.g. "b.e21.pop.h.{model_year:04d}-{month:02d}.nc".',
    )
    parser.add_argument('obs_file', type=str, help='Observational ocean temperature file with depth bounds.')
    parser.add_argument(
        'out_dir', type=str, help='Directory where results will be saved. Will be created if it does not exist.'
    )

    # Optional arguments
    parser.add_argument('-c', '--config', type=str, help='YAML configuration file.')
    parser.add_argument('-r', '--reference_year', type=int, help='Calendar year of the first model year.')
    parser.add_argument('-d', '--max_depth', type=float, help='Lower bound (m) of the volume averages.')
    parser.add_argument('-g', '--path_to_geojson', type=str, help='Region geometries restricting the volume averages.')
    parser.add_argument('--obs_variable', type=str, default='temperature', help='Observed temperature variable.')

    args = parser.parse_args(argv)

    first_year = args.first_year
    last_year = args.last_year
    model_data_dir = Path(args.model_data_dir)
    model_file_pattern = args.model_file_pattern
    obs_file = Path(args.obs_file)
    out_dir = Path(args.out_dir)
    config_file = Path(args.config) if args.config is not None else None
    path_to_geojson = Path(args.path_to_geojson) if args.path_to_geojson is not None else None

    return (
        first_year,
        last_year,
        model_data_dir,
        model_file_pattern,
        obs_file,
        out_dir,
        config_file,
        args.reference_year,
        args.max_depth,
        path_to_geojson,
        args.obs_variable,
    )


(
    first_year,
    last_year,
    model_data_dir,
    model_file_pattern,
    obs_file,
    out_dir,
    config_file,
    reference_year,
    max_depth,
    path_to_geojson,
    obs_variable,
) = arg_parse(sys.argv[1:])

#
# Configuration
#

settings = ValidationConfig.from_yaml(config_file) if config_file is not None else ValidationConfig(obs_name='EN4')

settings = settings.updated(
    analysis_years=(first_year, last_year), output_dir=out_dir, model_reference_year=reference_year, max_depth=max_depth
)

settings.log_summary()

time_index = climatology.TimeIndex.monthly(*settings.analysis_years)

region_gdf = gpd.read_file(path_to_geojson) if path_to_geojson is not None else None

#
# Model: grid, layers and ocean mask from the first monthly file
#

try:
    first_file = readers.model_file_path(
        model_data_dir, model_file_pattern, first_year, 1, settings.model_reference_year, settings.first_model_year
    )

    grid_ds = readers.open_dataset(first_file)

    model_grid = readers.read_grid(grid_ds, 'TLAT', 'TLONG', 'TAREA', first_file)
    model_levels = readers.read_level_set(grid_ds, top_name='z_w_top', bottom_name='z_w_bot', centers_name='z_t', scale=0.01, path=first_file)

    # Number of active layers per column

    kmt = readers.require_variable(grid_ds, 'KMT', first_file).values

    grid_ds.close()

    # POP coordinates carry gaps over land; areas are in cm^2

    model_grid = grid.Grid(
        grid.fill_coordinate_gaps(model_grid.lat), grid.fill_coordinate_gaps(model_grid.lon), model_grid.area * 1.0e-4
    )

except (InputUnavailable, GridRepairError) as e:
    logger.error(str(e))
    sys.exit(1)

ocean = np.arange(model_levels.n_layers)[:, np.newaxis, np.newaxis] < kmt[np.newaxis, :, :]

if region_gdf is not None:
    ocean &= reduction.region_mask(model_grid, region_gdf)[np.newaxis, :, :]

#
# Model: stream monthly files, one volume mean and one surface slice per month
#

model_volume_means = []
model_sst_slices = []

try:
    for year, month, ds in readers.iter_model_months(
        model_data_dir, model_file_pattern, time_index, settings.model_reference_year, settings.first_model_year
    ):
        temp = readers.require_variable(ds, 'TEMP').values

        while temp.ndim > 3 and temp.shape[0] == 1:
            temp = temp[0]

        temp = masking.mask_temperature(masking.apply_land_mask(temp, ocean), settings.temperature)

        model_volume_means.append(reduction.volume_weighted_mean(temp, model_grid.weights(), model_levels, settings.max_depth))
        model_sst_slices.append(temp[0])

        logger.info(f'{year}-{month:02d}: model volume mean {model_volume_means[-1]:.4f} degC')

except InputUnavailable as e:
    logger.error(str(e))
    sys.exit(1)

model_sst = grid.normalize_field(
    grid.Field(np.stack(model_sst_slices), model_grid, time_index=time_index, units='degC', name='SST')
)

#
# Observations
#

try:
    obs_ds = readers.open_dataset(obs_file)
    obs_levels = readers.read_level_set(obs_ds, bounds_name='depth_bnds', centers_name='depth', path=obs_file)
    obs_ds.close()

    obs = readers.read_obs_field(obs_file, obs_variable, levels=obs_levels)

    obs_data, obs_units = readers.to_celsius(obs.data, obs.units or 'K')
    obs = grid.normalize_field(obs.replace(data=masking.mask_temperature(obs_data, settings.temperature), units=obs_units))

except (InputUnavailable, GridRepairError) as e:
    logger.error(str(e))
    sys.exit(1)

obs_region = reduction.region_mask(obs.grid, region_gdf) if region_gdf is not None else None

obs_volume_means = reduction.volume_weighted_mean_series(obs, settings.max_depth, mask=obs_region)

obs_sst = obs.replace(data=obs.data[:, 0], levels=None, name='SST')

#
# Model versus observations
#

depth_label = f'0-{settings.max_depth:g} m' if settings.max_depth is not None else 'full depth'

reports = [
    pipeline.compare_series(
        model_volume_means,
        time_index,
        obs_volume_means,
        obs.time_index,
        settings,
        'thetao_vm',
        'degC',
        long_name=f'volume-averaged ocean temperature ({depth_label})',
    ),
    pipeline.compare_fields(model_sst, obs_sst, settings, 'sst', regrid_to='obs', long_name='sea surface temperature'),
]

for report in reports:
    report.write_ds2netcdf(report.DataSet(), settings.output_dir)
    report.write_text_report(settings.output_dir)

    #
    # Plotting
    #

    plot_file_paths = plotting.plot_annual_timeseries(settings.output_dir / 'plots' / report.variable, [report.DataFrame()])

    for plot_file_path in plot_file_paths:
        logger.info(f'Wrote {plot_file_path}')
