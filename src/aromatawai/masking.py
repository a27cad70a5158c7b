'''
Quality masking and gap-filling policies.

This module provides:
- ConcentrationRules / TemperatureRules: per-call masking thresholds.
- mask_concentration, fill_pole_hole, fill_open_water and
  apply_concentration_policy: the sea-ice concentration policy.
- mask_temperature: validity screening of surface and ocean temperatures.
- apply_land_mask: generic land masking.

Design notes
------------
- Concentration is on a 0-100 scale. After invalid samples are masked, missing
  cells poleward of the pole-hole latitude are set to 100 (the satellite
  coverage gap is assumed fully ice covered), and every remaining missing cell
  is set to 0. The last step is a scientific assumption, not a neutral
  default: it converts "no data" (land, coverage gaps) into "no ice". It is
  logged at WARNING level with the number of converted cells.
- Temperatures are never filled; missing stays missing, so weighted
  reductions skip those cells instead of counting them as zero.
'''

import logging
from dataclasses import dataclass

import numpy as np

from aromatawai.grid import Field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConcentrationRules:
    '''
    Masking thresholds for sea-ice concentration (percent).
    '''

    valid_max: float = 100.0
    pole_hole_latitude: float = 84.0
    fill_open_water: bool = True


@dataclass(frozen=True)
class TemperatureRules:
    '''
    Validity range (degC) and near-zero land/ice sentinel tolerance for temperatures.
    '''

    valid_min: float = -5.0
    valid_max: float = 50.0
    zero_epsilon: float = 1.0e-6


def apply_land_mask(data: np.ndarray, ocean: np.ndarray) -> np.ndarray:
    '''
    Set cells where "ocean" is False to missing. "ocean" broadcasts against the
    trailing axes of "data".
    '''

    data = np.array(data, dtype=np.result_type(data, np.float32))
    ocean = np.asarray(ocean, dtype=bool)

    return np.where(np.broadcast_to(ocean, data.shape), data, np.nan)


def mask_concentration(data: np.ndarray, rules: ConcentrationRules = ConcentrationRules()) -> np.ndarray:
    '''
    Set land (values <= 0) and unphysical (values < 0 or > valid_max) concentration samples to missing.
    '''

    data = np.array(data, dtype=np.result_type(data, np.float32))

    with np.errstate(invalid='ignore'):
        invalid = (data <= 0.0) | (data > rules.valid_max)

    data[invalid] = np.nan

    return data


def fill_pole_hole(
    data: np.ndarray, lat: np.ndarray, rules: ConcentrationRules = ConcentrationRules()
) -> np.ndarray:
    '''
    Set missing cells with |latitude| above the pole-hole latitude to valid_max.

    Parameters
    ----------
    data : numpy.ndarray
        Concentration with trailing axes (y, x).
    lat : numpy.ndarray
        Latitudes broadcastable to the trailing axes of "data" (2-D, or 1-D
        along y).
    '''

    data = np.array(data, dtype=np.result_type(data, np.float32))
    lat = np.asarray(lat, dtype=np.float64)

    if lat.ndim == 1:
        lat = lat[:, np.newaxis]

    polar = np.broadcast_to(np.abs(lat) > rules.pole_hole_latitude, data.shape)

    hole = polar & np.isnan(data)

    if hole.any():
        logger.debug(f'Filling {int(hole.sum())} pole-hole cells poleward of {rules.pole_hole_latitude} deg with {rules.valid_max}')

    data[hole] = rules.valid_max

    return data


def fill_open_water(data: np.ndarray) -> np.ndarray:
    '''
    Set every remaining missing concentration sample to 0 (open water).
    '''

    data = np.array(data, dtype=np.result_type(data, np.float32))

    missing = np.isnan(data)
    n_missing = int(missing.sum())

    if n_missing:
        logger.warning(f'Treating {n_missing} missing concentration samples as open water (0 %)')

    data[missing] = 0.0

    return data


def apply_concentration_policy(field: Field, rules: ConcentrationRules = ConcentrationRules()) -> Field:
    '''
    Mask invalid samples, fill the pole hole, then (if enabled in "rules")
    treat all remaining missing cells as open water.
    '''

    data = mask_concentration(field.data, rules)
    data = fill_pole_hole(data, field.grid.lat2d(), rules)

    if rules.fill_open_water:
        data = fill_open_water(data)

    attrs = dict(field.attrs)
    attrs['pole_hole_latitude'] = rules.pole_hole_latitude
    attrs['missing_as_open_water'] = int(rules.fill_open_water)

    return field.replace(data=data, attrs=attrs)


def mask_temperature(data: np.ndarray, rules: TemperatureRules = TemperatureRules()) -> np.ndarray:
    '''
    Set temperatures (degC) outside [valid_min, valid_max], or with absolute
    value below zero_epsilon (a land/ice sentinel), to missing.
    '''

    data = np.array(data, dtype=np.result_type(data, np.float32))

    with np.errstate(invalid='ignore'):
        invalid = (data < rules.valid_min) | (data > rules.valid_max) | (np.abs(data) < rules.zero_epsilon)

    data[invalid] = np.nan

    n_invalid = int(invalid.sum())
    if n_invalid:
        logger.debug(f'Masked {n_invalid} temperature samples outside [{rules.valid_min}, {rules.valid_max}] degC or near zero')

    return data
