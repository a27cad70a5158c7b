'''
Model-versus-observation comparison pipelines.

This module provides:
- align_times: restrict two Fields to a year range and to the months present in both.
- regrid_onto: put a Field on another grid (rectilinear: bilinear or nearest;
  curvilinear: xESMF).
- compare_fields: the full field comparison: regrid onto a common grid,
  optionally convert to anomalies, mask cells missing in either field, reduce
  to weighted global means and annual means, and summarize in a
  ModelVsObsStatisticsReport.
- compare_series: the same summary for monthly scalar series computed
  elsewhere (e.g. streamed volume means).
- compare_sea_ice_area: hemispheric sea-ice area of model and observations,
  each on its native grid.
'''

import logging

import numpy as np

from aromatawai import climatology, interpolation, masking, reduction
from aromatawai.climatology import TimeIndex
from aromatawai.config import ValidationConfig
from aromatawai.grid import Field, Grid
from aromatawai.statistics import ModelVsObsStatisticsReport

logger = logging.getLogger(__name__)

SEA_ICE_AREA_SCALE = 1.0e-12  # m^2 -> 10^6 km^2


def align_times(model: Field, obs: Field, years: tuple[int, int]) -> tuple[Field, Field]:
    '''
    Time slices of "model" and "obs" within "years" (inclusive) whose
    (year, month) occurs in both.

    Raises
    ------
    ValueError
        If the fields share no month in the year range.
    '''

    model = climatology.select_years(model, *years)
    obs = climatology.select_years(obs, *years)

    model_steps, obs_steps = model.time_index.intersect(obs.time_index)

    if model_steps.size == 0:
        raise ValueError(f'Model and observations share no month in {years[0]}-{years[1]}.')

    if model_steps.size < len(model.time_index) or obs_steps.size < len(obs.time_index):
        logger.info(f'Comparing the {model_steps.size} months present in both model and observations')

    return climatology.select_steps(model, model_steps), climatology.select_steps(obs, obs_steps)


def regrid_onto(field: Field, target_grid: Grid, method: str = 'bilinear', periodic: bool = False) -> Field:
    '''
    Field on "target_grid". Identical grids are passed through (taking over the
    target grid's cell areas); rectilinear pairs use "method" ('bilinear' or
    'nearest'); anything curvilinear goes through xESMF (bilinear).
    '''

    if field.grid.same_as(target_grid):
        return field.replace(grid=target_grid)

    if field.grid.is_rectilinear and target_grid.is_rectilinear:
        if method == 'bilinear':
            return interpolation.bilinear_regrid(field, target_grid, periodic=periodic)
        if method == 'nearest':
            return interpolation.nearest_regrid(field, target_grid, periodic=periodic)
        raise ValueError(f"Unknown regridding method '{method}'.")

    # Curvilinear grids need the optional xESMF backend

    from aromatawai import remapping

    return remapping.regrid_curvilinear(field, target_grid, periodic=periodic)


def _common_missing(model: Field, obs: Field) -> tuple[Field, Field]:
    valid = np.isfinite(model.data) & np.isfinite(obs.data)

    return (
        model.replace(data=np.where(valid, model.data, np.nan)),
        obs.replace(data=np.where(valid, obs.data, np.nan)),
    )


def compare_fields(
    model: Field,
    obs: Field,
    config: ValidationConfig,
    variable: str,
    regrid_to: str = 'obs',
    method: str = 'bilinear',
    anomaly: bool = False,
    mask: np.ndarray = None,
    long_name: str = None,
    min_months: int = 12,
) -> ModelVsObsStatisticsReport:
    '''
    Compare a model Field against an observed Field.

    Behavior
    --------
    - Regrids one field onto the other's grid: "regrid_to" = 'obs' puts the
      model on the observation grid, 'model' the reverse.
    - With "anomaly", subtracts from each field its own monthly climatology
      over config.baseline_years.
    - Restricts both fields to config.analysis_years and the months present in
      both, then masks every cell missing in either field.
    - Reduces each month to a weighted mean (cell areas, cosine latitude if the
      grid has no areas, cell volumes for fields with levels), optionally
      restricted to the cells selected by "mask".
    - Averages months to calendar years (years with fewer than "min_months"
      valid months are missing) and builds the statistics report, including
      the spatial correlation of the period-mean maps.

    Raises
    ------
    AssertionError
        If model and observation units differ.
    ValueError
        If the fields share no month in the analysis years.
    '''

    assert model.units == obs.units, f'Mismatching units between model ({model.units}) and observations ({obs.units})'

    # Only the years needed for the analysis and the baseline are regridded

    first_year = config.analysis_years[0]
    last_year = config.analysis_years[1]

    if anomaly:
        first_year = min(first_year, config.baseline_years[0])
        last_year = max(last_year, config.baseline_years[1])

    model = climatology.select_years(model, first_year, last_year)
    obs = climatology.select_years(obs, first_year, last_year)

    if regrid_to == 'obs':
        model = regrid_onto(model, obs.grid, method, periodic=config.periodic)
    elif regrid_to == 'model':
        obs = regrid_onto(obs, model.grid, method, periodic=config.periodic)
    else:
        raise ValueError(f"regrid_to must be 'obs' or 'model', not {regrid_to!r}.")

    if anomaly:
        model = climatology.anomalies(model, climatology.monthly_climatology(model, config.baseline_years))
        obs = climatology.anomalies(obs, climatology.monthly_climatology(obs, config.baseline_years))

    model, obs = align_times(model, obs, config.analysis_years)
    model, obs = _common_missing(model, obs)

    logger.info(f'Comparing {variable} over {len(model.time_index)} months on grid {obs.grid if regrid_to == "obs" else model.grid}')

    # Weighted global means, monthly then annual

    model_series = reduction.weighted_mean_series(model, mask=mask)
    obs_series = reduction.weighted_mean_series(obs, mask=mask)

    years, model_annual = climatology.annual_means(model_series, model.time_index, min_months)
    _, obs_annual = climatology.annual_means(obs_series, obs.time_index, min_months)

    # Period-mean maps for the spatial correlation

    weights = model.grid.weights()
    if model.levels is not None:
        weights = reduction.volume_weights(weights, model.levels)
    if mask is not None:
        weights = np.where(np.asarray(mask, dtype=bool), weights, 0.0)

    model_map = climatology.period_mean(model).data
    obs_map = climatology.period_mean(obs).data

    return ModelVsObsStatisticsReport(
        variable,
        model.units,
        years,
        model_annual,
        obs_annual,
        model_map=model_map,
        obs_map=obs_map,
        map_weights=weights,
        model_name=config.model_name,
        obs_name=config.obs_name,
        long_name=long_name,
    )


def compare_series(
    model_values: np.ndarray,
    model_times: TimeIndex,
    obs_values: np.ndarray,
    obs_times: TimeIndex,
    config: ValidationConfig,
    variable: str,
    units: str,
    long_name: str = None,
    min_months: int = 12,
) -> ModelVsObsStatisticsReport:
    '''
    Compare monthly scalar series (e.g. global or volume means reduced while
    streaming files) over the months they share in config.analysis_years.
    '''

    model_values = np.asarray(model_values, dtype=np.float64)
    obs_values = np.asarray(obs_values, dtype=np.float64)

    model_keep = model_times.year_mask(*config.analysis_years)
    obs_keep = obs_times.year_mask(*config.analysis_years)

    model_times = model_times[model_keep]
    obs_times = obs_times[obs_keep]
    model_values = model_values[model_keep]
    obs_values = obs_values[obs_keep]

    model_steps, obs_steps = model_times.intersect(obs_times)

    if model_steps.size == 0:
        raise ValueError(f'Model and observations share no month in {config.analysis_years[0]}-{config.analysis_years[1]}.')

    times = model_times[model_steps]

    model_values = model_values[model_steps]
    obs_values = obs_values[obs_steps]

    valid = np.isfinite(model_values) & np.isfinite(obs_values)

    years, model_annual = climatology.annual_means(np.where(valid, model_values, np.nan), times, min_months)
    _, obs_annual = climatology.annual_means(np.where(valid, obs_values, np.nan), times, min_months)

    return ModelVsObsStatisticsReport(
        variable,
        units,
        years,
        model_annual,
        obs_annual,
        model_name=config.model_name,
        obs_name=config.obs_name,
        long_name=long_name,
    )


def compare_sea_ice_area(
    model: Field, obs: Field, config: ValidationConfig, hemisphere: str, weight_by_concentration: bool = False
) -> ModelVsObsStatisticsReport:
    '''
    Sea-ice area (10^6 km^2) of model and observations for one hemisphere.

    Both concentration Fields (percent) go through the concentration policy
    of config.concentration (masking, pole-hole fill, open-water fill) and are
    reduced on their own grids, using cell areas in m^2 (spherical cell areas
    for rectilinear grids without areas).
    '''

    model = masking.apply_concentration_policy(model, config.concentration)
    obs = masking.apply_concentration_policy(obs, config.concentration)

    model_sia = SEA_ICE_AREA_SCALE * reduction.sea_ice_area_series(
        model, config.sea_ice_threshold, hemisphere, weight_by_concentration
    )
    obs_sia = SEA_ICE_AREA_SCALE * reduction.sea_ice_area_series(
        obs, config.sea_ice_threshold, hemisphere, weight_by_concentration
    )

    hemisphere_label = {'north': 'NH', 'south': 'SH'}.get(hemisphere, 'global')

    return compare_series(
        model_sia,
        model.time_index,
        obs_sia,
        obs.time_index,
        config,
        'sia_' + hemisphere_label.lower(),
        '10^6 km^2',
        long_name=f'{hemisphere_label} sea-ice area',
    )
