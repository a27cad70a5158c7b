#!/usr/bin/env python

import argparse
import logging
import sys
from pathlib import Path

import numpy as np
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
        'Compare model sea-ice concentration against satellite observations. '
        'Given a year range, the directory and file name pattern of monthly model history files, '
        'an observational concentration file and an output directory, the script reads both data sets, '
        'applies the concentration quality policy (invalid values, pole hole, open water), computes the '
        'northern and southern hemisphere sea-ice area of model and observations on their native grids, '
        'and writes the statistics to NetCDF and text files together with time-series plots.'
    )

    parser = argparse.ArgumentParser(description=code_description)

    # Mandatory arguments
    parser.add_argument('first_year', type=int, help='First calendar year of the analysis.')
    parser.add_argument('last_year', type=int, help='Last calendar year of the analysis.')
    parser.add_argument('model_data_dir', type=str, help='Directory where monthly model history files are located.')
    parser.add_argument(
        'model_file_pattern',
        type=str,
        help='File name pattern of the monthly model files, e.g. "b.e21.cice.h.{model_year:04d}-{month:02d}.nc".',
    )
    parser.add_argument('obs_file', type=str, help='Observational sea-ice concentration file.')
    parser.add_argument(
        'out_dir', type=str, help='Directory where results will be saved. Will be created if it does not exist.'
    )

    # Optional arguments
    parser.add_argument('-c', '--config', type=str, help='YAML configuration file.')
    parser.add_argument('-r', '--reference_year', type=int, help='Calendar year of the first model year.')
    parser.add_argument('--model_variable', type=str, default='aice', help='Model concentration variable.')
    parser.add_argument('--obs_variable', type=str, default='cdr_seaice_conc_monthly', help='Observed concentration variable.')
    parser.add_argument('--obs_lat', type=str, default='latitude', help='Observed latitude variable.')
    parser.add_argument('--obs_lon', type=str, default='longitude', help='Observed longitude variable.')
    parser.add_argument(
        '--obs_cell_area',
        type=float,
        default=625.0e6,
        help='Cell area (m^2) of the observation grid when the file carries none. Default: 25 km x 25 km.',
    )

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
        args.model_variable,
        args.obs_variable,
        args.obs_lat,
        args.obs_lon,
        args.obs_cell_area,
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
    model_variable,
    obs_variable,
    obs_lat_name,
    obs_lon_name,
    obs_cell_area,
) = arg_parse(sys.argv[1:])

#
# Configuration
#

settings = ValidationConfig.from_yaml(config_file) if config_file is not None else ValidationConfig(obs_name='NSIDC')

settings = settings.updated(analysis_years=(first_year, last_year), output_dir=out_dir, model_reference_year=reference_year)

settings.log_summary()

time_index = climatology.TimeIndex.monthly(*settings.analysis_years)

#
# Read model and observations
#


def model_concentration(ds):
    '''
    Model concentration in percent.
    '''

    da = readers.require_variable(ds, model_variable)

    return readers.to_percent(da.values, da.attrs.get('units', '%'))


try:
    # Model grid from the first monthly file; CICE coordinates can carry gaps over land

    first_file = readers.model_file_path(
        model_data_dir, model_file_pattern, first_year, 1, settings.model_reference_year, settings.first_model_year
    )

    grid_ds = readers.open_dataset(first_file)
    model_grid = readers.read_grid(grid_ds, 'TLAT', 'TLON', 'tarea', first_file)
    grid_ds.close()

    model_grid = grid.Grid(grid.fill_coordinate_gaps(model_grid.lat), grid.fill_coordinate_gaps(model_grid.lon), model_grid.area)

    model = readers.read_model_field(
        model_data_dir,
        model_file_pattern,
        model_variable,
        time_index,
        settings.model_reference_year,
        model_grid,
        settings.first_model_year,
        reader=model_concentration,
    )

    obs = readers.read_obs_field(obs_file, obs_variable, obs_lat_name, obs_lon_name)

except (InputUnavailable, GridRepairError) as e:
    logger.error(str(e))
    sys.exit(1)

# Observations are fractions with flag values above 1; flags become invalid percentages

obs_data, obs_units = readers.to_percent(obs.data, obs.units or '1')

obs = obs.replace(data=obs_data, units=obs_units)

if obs.grid.area is None and not obs.grid.is_rectilinear:
    obs = obs.replace(grid=obs.grid.with_area(np.full(obs.grid.shape, obs_cell_area)))

#
# Sea-ice area by hemisphere
#

hemispheres = ['north', 'south']

for hemisphere in hemispheres:
    report = pipeline.compare_sea_ice_area(model, obs, settings, hemisphere)

    report.write_ds2netcdf(report.DataSet(), settings.output_dir)
    report.write_text_report(settings.output_dir)

    df = report.DataFrame()

    #
    # Plotting
    #

    plot_dir = settings.output_dir / 'plots' / hemisphere

    plot_file_paths = plotting.plot_annual_timeseries(plot_dir, [df], [settings.model_name + ' vs ' + settings.obs_name])

    for plot_file_path in plot_file_paths:
        logger.info(f'Wrote {plot_file_path}')
