'''
Run configuration of the validation scripts.

A ValidationConfig is built once per run (from command line arguments and/or
a YAML file) and passed explicitly to every component call; nothing in the
library reads global settings.

Example YAML
------------
    baseline_years: [1981, 2010]
    analysis_years: [1979, 2014]
    output_dir: "results/sea_ice"
    model_name: "CESM2"
    obs_name: "NSIDC-0051"
    model_reference_year: 1850
    first_model_year: 1
    sea_ice_threshold: 15.0
    concentration:
      pole_hole_latitude: 84.0
      fill_open_water: true
    temperature:
      valid_min: -5.0
      valid_max: 50.0
'''

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

import yaml

from aromatawai.errors import InputUnavailable
from aromatawai.masking import ConcentrationRules, TemperatureRules

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationConfig:
    '''
    Year ranges (inclusive), quality thresholds and output destination of one run.
    '''

    baseline_years: tuple = (1981, 2010)
    analysis_years: tuple = (1979, 2014)
    output_dir: Path = Path('.')
    model_name: str = 'model'
    obs_name: str = 'observations'
    model_reference_year: int = 1
    first_model_year: int = 1
    sea_ice_threshold: float = 15.0
    max_depth: float = None
    periodic: bool = True
    concentration: ConcentrationRules = field(default_factory=ConcentrationRules)
    temperature: TemperatureRules = field(default_factory=TemperatureRules)

    def __post_init__(self):
        for name in ('baseline_years', 'analysis_years'):
            years = tuple(int(year) for year in getattr(self, name))
            if len(years) != 2 or years[0] > years[1]:
                raise ValueError(f'{name} must be an inclusive (first, last) pair, got {years}.')
            object.__setattr__(self, name, years)

        object.__setattr__(self, 'output_dir', Path(self.output_dir))

    @classmethod
    def from_dict(cls, settings: dict) -> 'ValidationConfig':
        '''
        Build from a (YAML-derived) mapping; unknown keys raise ValueError.
        '''

        settings = dict(settings or {})

        known = {f.name for f in fields(cls)}
        unknown = set(settings) - known
        if unknown:
            raise ValueError(f'Unknown configuration keys: {sorted(unknown)}')

        if 'concentration' in settings:
            settings['concentration'] = ConcentrationRules(**settings['concentration'])
        if 'temperature' in settings:
            settings['temperature'] = TemperatureRules(**settings['temperature'])

        return cls(**settings)

    @classmethod
    def from_yaml(cls, path: Path) -> 'ValidationConfig':
        '''
        Load a configuration file.

        Raises
        ------
        InputUnavailable
            If the file does not exist.
        '''

        path = Path(path)

        if not path.is_file():
            raise InputUnavailable(path, reason='configuration file not found')

        with open(path) as f:
            settings = yaml.safe_load(f)

        logger.info(f'Loaded configuration from {path}')

        return cls.from_dict(settings)

    def updated(self, **changes) -> 'ValidationConfig':
        '''
        Copy with the given settings replaced; settings given as None are ignored.
        '''

        return replace(self, **{key: value for key, value in changes.items() if value is not None})

    def log_summary(self):
        logger.info('--- Validation configuration ---')
        logger.info(f'Model              : {self.model_name}')
        logger.info(f'Observations       : {self.obs_name}')
        logger.info(f'Baseline years     : {self.baseline_years[0]}-{self.baseline_years[1]}')
        logger.info(f'Analysis years     : {self.analysis_years[0]}-{self.analysis_years[1]}')
        logger.info(f'Model year offset  : model year {self.first_model_year} = {self.model_reference_year}')
        logger.info(f'Output directory   : {self.output_dir}')
        logger.info('--------------------------------')
