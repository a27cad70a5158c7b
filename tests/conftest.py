import numpy as np
import pytest

from aromatawai.climatology import TimeIndex
from aromatawai.grid import Field, Grid


@pytest.fixture
def global_grid():
    '''
    Regular 4 x 4 global grid (45 degree latitude spacing, 90 degree longitude spacing).
    '''

    return Grid(np.array([-67.5, -22.5, 22.5, 67.5]), np.array([0.0, 90.0, 180.0, 270.0]))


@pytest.fixture
def two_years():
    return TimeIndex.monthly(2000, 2001)


@pytest.fixture
def constant_field(global_grid, two_years):
    '''
    Precipitation field of constant 3.0 mm/day over 24 months.
    '''

    return Field(np.full((24, 4, 4), 3.0), global_grid, time_index=two_years, units='mm/day', name='precipitation')
