#!/usr/bin/env python

import argparse
import logging
import sys
from pathlib import Path

import xarray as xr

from aromatawai import climatology, grid, pipeline, plotting, readers
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
        'Compare model precipitation against a gridded observational analysis. '
        'Given a year range, the directory and file name pattern of monthly atmosphere history files, '
        'an observational precipitation file and an output directory, the script sums convective and '
        'large-scale precipitation of the model, converts it to mm/day, interpolates it bilinearly onto '
        'the observation grid, and computes area-weighted global means, bias, RMSE, correlations and '
        'trends. Results are written to NetCDF and text files together with time-series and map plots.'
    )

    parser = argparse.ArgumentParser(description=code_description)

    # Mandatory arguments
    parser.add_argument('first_year', type=int, help='First calendar year of the analysis.')
    parser.add_argument('last_year', type=int, help='Last calendar year of the analysis.')
    parser.add_argument('model_data_dir', type=str, help='Directory where monthly model history files are located.')
    parser.add_argument(
        'model_file_pattern',
        type=str,
        help='File name pattern of the monthly model files, e.g. "b.e21.cam.h0.{model_year:04d}-{month:02d}.nc".',
    )
    parser.add_argument('obs_file', type=str, help='Observational precipitation file (mm/day).')
    parser.add_argument(
        'out_dir', type=str, help='Directory where results will be saved. Will be created if it does not exist.'
    )

    # Optional arguments
    parser.add_argument('-c', '--config', type=str, help='YAML configuration file.')
    parser.add_argument('-r', '--reference_year', type=int, help='Calendar year of the first model year.')
    parser.add_argument('--obs_variable', type=str, default='precip', help='Observed precipitation variable.')
    parser.add_argument('-a', '--anomaly', action='store_true', help='Compare anomalies from the baseline climatology.')

    args = parser.parse_args(argv)

    first_year = args.first_year
    last_year = args.last_year
    model_data_dir = Path(args.model_data_dir)
    model_file_pattern = args.model_file_pattern
    obs_file = Path(args.obs_file)
    out_dir = Path(args.out_dir)
    config_file = Path(args.config) if args.config is not None else None

    return (
        first_year,
        last_year,
        model_data_dir,
        model_file_pattern,
        obs_file,
        out_dir,
        config_file,
        args.reference_year,
        args.obs_variable,
        args.anomaly,
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
    obs_variable,
    anomaly,
) = arg_parse(sys.argv[1:])

#
# Configuration
#

settings = ValidationConfig.from_yaml(config_file) if config_file is not None else ValidationConfig(obs_name='GPCP')

settings = settings.updated(analysis_years=(first_year, last_year), output_dir=out_dir, model_reference_year=reference_year)

settings.log_summary()

# Anomalies need the baseline years as well

first_read_year = min(first_year, settings.baseline_years[0]) if anomaly else first_year
last_read_year = max(last_year, settings.baseline_years[1]) if anomaly else last_year

time_index = climatology.TimeIndex.monthly(first_read_year, last_read_year)

#
# Read model and observations
#

try:
    first_file = readers.model_file_path(
        model_data_dir, model_file_pattern, first_read_year, 1, settings.model_reference_year, settings.first_model_year
    )

    grid_ds = readers.open_dataset(first_file)
    model_grid = readers.read_grid(grid_ds, 'lat', 'lon', path=first_file)
    grid_ds.close()

    model = readers.read_model_field(
        model_data_dir,
        model_file_pattern,
        'PRECT',
        time_index,
        settings.model_reference_year,
        model_grid,
        settings.first_model_year,
        reader=readers.total_precipitation,
    )

    obs = readers.read_obs_field(obs_file, obs_variable)

    obs_data, obs_units = readers.to_mm_per_day(obs.data, obs.units or 'mm/day')
    obs = obs.replace(data=obs_data, units=obs_units)

    # Both grids: longitudes 0-360 ascending, latitudes ascending

    model = grid.normalize_field(model)
    obs = grid.normalize_field(obs)

except (InputUnavailable, GridRepairError) as e:
    logger.error(str(e))
    sys.exit(1)

#
# Model versus observations on the observation grid
#

report = pipeline.compare_fields(
    model,
    obs,
    settings,
    'precipitation',
    regrid_to='obs',
    anomaly=anomaly,
    long_name='precipitation anomaly' if anomaly else 'total precipitation',
)

report.write_ds2netcdf(report.DataSet(), settings.output_dir)
report.write_text_report(settings.output_dir)

#
# Plotting
#

plot_dir = settings.output_dir / 'plots'

plot_file_paths = plotting.plot_annual_timeseries(plot_dir, [report.DataFrame()])

# Period-mean maps on the observation grid

model_on_obs = pipeline.regrid_onto(climatology.select_years(model, *settings.analysis_years), obs.grid, periodic=settings.periodic)

model_map = climatology.period_mean(model_on_obs).data
obs_map = climatology.period_mean(obs, *settings.analysis_years).data

plot_file_paths.append(
    plotting.plot_difference_map(
        plot_dir / f'{first_year}-{last_year}.precipitation.map.png',
        obs.grid,
        model_map,
        obs_map,
        f'Mean precipitation {first_year}-{last_year}',
        'mm/day',
        settings.model_name,
        settings.obs_name,
    )
)

for plot_file_path in plot_file_paths:
    logger.info(f'Wrote {plot_file_path}')
