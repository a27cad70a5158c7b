'''
Plotting utilities for validation reports.

This module provides:
- plot_annual_timeseries: Save a model-versus-observation figure and one figure per
  statistic (column) by overlaying the same statistic across multiple pandas.DataFrame
  inputs that share a common schema.
- plot_difference_map: Save maps of the model and observed period means and of their
  difference on a PlateCarree projection.
- pandas_series_plottable: Heuristic check for whether a pandas.Series can be plotted
  directly by Matplotlib without pre-conversion.

Assumptions shared by callers:
- Each DataFrame in a plotting call is the export of a ModelVsObsStatisticsReport: its
  first column is 'year', followed by the model, observation and difference columns,
  whose units and descriptions are held in "df.attrs['column_attrs']".
- Each DataFrame provides "attrs['model_variable_long_name']" for titling and
  "attrs['variable']", "attrs['model']" and "attrs['observations']" for file names.
'''

from datetime import datetime, timedelta
from pathlib import Path

import cartopy.crs as ccrs
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pandas.api.types as ptypes

from aromatawai.grid import Grid


def plot_annual_timeseries(plot_dir: Path, dfs: list[pd.DataFrame], legend_strings: list[str] = None) -> list[Path]:
    '''
    Plot annual model and observation series, then one figure per statistic (per
    non-year column) overlaying that statistic across multiple DataFrames, and save
    each figure as a PNG under "plot_dir".

    Behavior
    --------
    - Interprets the first column in each DataFrame as the year axis; the second and
      third columns are the model and observation series.
    - The first figure draws the model and observation series of every DataFrame.
    - For every statistic present in the FIRST DataFrame (columns[1:]), creates a single
      figure and draws one line per DataFrame.
    - Skips a statistic if "pandas_series_plottable" returns False for that column in the
      FIRST DataFrame.
    - X-axis limits span the global min and max year across ALL DataFrames.
    - Figure title is taken from "df.attrs['model_variable_long_name']" (which must match
      across all DataFrames).
    - Legend entries are "legend_strings[j]" if given, otherwise
      "<model> vs <observations>" from the DataFrame attributes.
    - Output filenames follow:
        "<first_year>-<last_year>.<variable>.<column_label>.<suffix>.png"
      where <column_label> is 'model_vs_obs' for the first figure and <suffix> is the
      underscore-joined legend list with spaces replaced by underscores.

    Parameters
    ----------
    plot_dir : pathlib.Path
        Directory where PNG files will be written. Created if it does not exist.
    dfs : list[pandas.DataFrame]
        DataFrames to overlay.
    legend_strings : list[str], optional
        Labels used both in the legend and as components of the filename suffix.
        Must match "len(dfs)" if provided.

    Returns
    -------
    list[pathlib.Path]
        Full paths of the saved PNG files.

    Raises
    ------
    AssertionError
        If "legend_strings" is provided with a length different from "len(dfs)".
        If the DataFrames do not share the same "attrs['model_variable_long_name']".
    '''

    # Check input

    if legend_strings is not None:
        assert len(dfs) == len(legend_strings), 'Length of the iteratable arguments dfs and legend_strings differs.'

    model_variable_long_names = set([df.attrs['model_variable_long_name'] for df in dfs])

    assert len(model_variable_long_names) == 1, 'The Pandas DataFrames provided hold different model variables.'

    plot_title = list(model_variable_long_names)[0]

    if legend_strings is None:
        legend_strings = [df.attrs['model'] + ' vs ' + df.attrs['observations'] for df in dfs]

    # Plot year range

    min_year = min(int(df[df.columns[0]].min()) for df in dfs)
    max_year = max(int(df[df.columns[0]].max()) for df in dfs)

    # Plot file prefix and suffix

    file_prefix = str(min_year) + '-' + str(max_year) + '.' + str(dfs[0].attrs['variable'])

    file_suffix = '_'.join(legend_string.replace(' ', '_') for legend_string in legend_strings)

    column_attrs = dfs[0].attrs['column_attrs']

    plot_dir = Path(plot_dir)

    plot_file_paths = []

    # Model and observations in one figure

    fig, ax = plt.subplots(figsize=(14, 7), dpi=150)

    for jj, df in enumerate(dfs):
        year = df[df.columns[0]]
        model_series = df[df.columns[1]]
        obs_series = df[df.columns[2]]

        ax.plot(year, model_series, linewidth=1, marker='o', markersize=3, label=legend_strings[jj] + ', ' + df.attrs['model'])
        ax.plot(year, obs_series, linewidth=1, marker='s', markersize=3, linestyle='--', label=legend_strings[jj] + ', ' + df.attrs['observations'])

    ax.set_title(plot_title)
    ax.set_xlim(min_year, max_year)
    ax.set_xlabel('Year')
    ax.set_ylabel(plot_title + ' (' + column_attrs[dfs[0].columns[1]]['units'] + ')')
    ax.legend(title=None)

    plot_file_paths.append(_save(fig, plot_dir / (file_prefix + '.model_vs_obs.' + file_suffix + '.png')))

    # One figure per statistic

    for column_label in dfs[0].columns[1:]:
        time_series = dfs[0][column_label]

        # Skip columns whose elements cannot be plotted

        if not pandas_series_plottable(time_series):
            continue

        fig, ax = plt.subplots(figsize=(14, 7), dpi=150)

        for jj, df in enumerate(dfs):
            ax.plot(df[df.columns[0]], df[column_label], linewidth=1, label=legend_strings[jj])

        ax.set_title(plot_title)
        ax.set_xlim(min_year, max_year)
        ax.set_xlabel('Year')
        ax.set_ylabel(column_attrs[column_label]['description'] + ' (' + column_attrs[column_label]['units'] + ')')

        if column_label.startswith('model_minus_obs'):
            ax.axhline(0.0, color='black', linewidth=0.5)

        ax.legend(title=None)

        plot_file_paths.append(_save(fig, plot_dir / (file_prefix + '.' + column_label + '.' + file_suffix + '.png')))

    return plot_file_paths


def plot_difference_map(
    plot_file_path: Path,
    grid: Grid,
    model_map: np.ndarray,
    obs_map: np.ndarray,
    title: str,
    units: str,
    model_name: str = 'model',
    obs_name: str = 'observations',
    coastlines: bool = True,
) -> Path:
    '''
    Three-panel figure of the model and observed period-mean maps (shared color
    scale) and of model minus observations (symmetric diverging color scale).
    Missing cells stay blank.

    Parameters
    ----------
    plot_file_path : pathlib.Path
        PNG file to write; its directory is created if it does not exist.
    grid : Grid
        Common grid of both maps.
    model_map, obs_map : numpy.ndarray
        2-D (y, x) maps on "grid".
    title, units : str
        Figure title and color bar units.
    coastlines : bool
        Draw Natural Earth coastlines.
    '''

    model_map = np.ma.masked_invalid(np.asarray(model_map, dtype=np.float64))
    obs_map = np.ma.masked_invalid(np.asarray(obs_map, dtype=np.float64))
    difference = model_map - obs_map

    assert model_map.shape == obs_map.shape == grid.shape, 'Map shapes do not match the grid.'

    lon = grid.lon2d()
    lat = grid.lat2d()

    both = np.ma.concatenate([model_map.ravel(), obs_map.ravel()])

    vmin = both.min()
    vmax = both.max()
    dmax = np.abs(difference).max()

    if np.ma.is_masked(dmax) or dmax == 0:
        dmax = 1.0

    fig, axes = plt.subplots(1, 3, figsize=(21, 5), dpi=150, subplot_kw={'projection': ccrs.PlateCarree()})

    panels = (
        (model_map, model_name, 'viridis', vmin, vmax),
        (obs_map, obs_name, 'viridis', vmin, vmax),
        (difference, model_name + ' - ' + obs_name, 'RdBu_r', -dmax, dmax),
    )

    for ax, (values, label, cmap, low, high) in zip(axes, panels, strict=True):
        mesh = ax.pcolormesh(lon, lat, values, cmap=cmap, vmin=low, vmax=high, shading='auto', transform=ccrs.PlateCarree())

        if coastlines:
            ax.coastlines(linewidth=0.5)

        ax.set_global()
        ax.set_title(label)

        fig.colorbar(mesh, ax=ax, orientation='horizontal', pad=0.05, label=units)

    fig.suptitle(title)

    return _save(fig, Path(plot_file_path))


def _save(fig, plot_file_path: Path) -> Path:
    plot_file_path.parent.mkdir(parents=True, exist_ok=True)

    fig.savefig(plot_file_path, bbox_inches='tight')

    plt.close(fig)

    return plot_file_path


def pandas_series_plottable(col: pd.Series) -> bool:
    '''
    Return True if "col" can be plotted directly by Matplotlib without pre-conversion,
    otherwise return False.

    Rules
    -----
    - Returns True for numeric dtypes.
    - Returns True for any datetime64 dtype.
    - Returns True for timedelta64 dtype.
    - For object dtype:
        * If the first non-null element is an int or a float, return True.
        * If the first non-null element is a "datetime.datetime" or "datetime.timedelta",
          return False because explicit conversion is expected before plotting.
        * Otherwise return False.
    - Returns False for empty Series (all values NA) and for unsupported dtypes.
    '''

    if ptypes.is_numeric_dtype(col):
        return True

    if ptypes.is_datetime64_any_dtype(col):
        return True

    if ptypes.is_timedelta64_dtype(col):
        return True

    if ptypes.is_object_dtype(col):
        # Inspect first non-null element
        if col.dropna().empty:
            return False
        first_non_null = col.dropna().iloc[0]
        if isinstance(first_non_null, (int | float)):
            return True
        if isinstance(first_non_null, datetime):
            return False  # requires conversion with pd.to_datetime
        if isinstance(first_non_null, timedelta):
            return False  # requires conversion with pd.to_timedelta or .total_seconds()
        return False

    return False
