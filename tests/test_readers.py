import numpy as np
import pytest
import xarray as xr

from aromatawai import readers
from aromatawai.climatology import TimeIndex
from aromatawai.errors import InputUnavailable
from aromatawai.grid import Grid

LAT = np.array([-45.0, 45.0])
LON = np.array([0.0, 120.0, 240.0])


def write_obs_file(path, time, units='mm/day'):
    values = np.arange(len(time) * 6, dtype=np.float64).reshape(len(time), 2, 3)

    ds = xr.Dataset(
        {'precip': (('time', 'lat', 'lon'), values, {'units': units})},
        coords={'time': time, 'lat': LAT, 'lon': LON},
    )
    ds.to_netcdf(path)

    return values


def test_read_obs_field_with_yyyymm_time(tmp_path):
    path = tmp_path / 'obs.nc'
    values = write_obs_file(path, np.array([200011, 200012, 200101], dtype=np.int32))

    field = readers.read_obs_field(path, 'precip')

    assert field.time_index == TimeIndex([2000, 2000, 2001], [11, 12, 1])
    assert field.units == 'mm/day'
    assert field.name == 'precip'
    np.testing.assert_array_equal(field.data, values)
    np.testing.assert_array_equal(field.grid.lon, LON)


def test_read_obs_field_with_calendar_time(tmp_path):
    path = tmp_path / 'obs.nc'
    write_obs_file(path, np.array(['2001-01-16', '2001-02-15'], dtype='datetime64[ns]'))

    field = readers.read_obs_field(path, 'precip')

    assert field.time_index == TimeIndex([2001, 2001], [1, 2])


def test_missing_obs_variable(tmp_path):
    path = tmp_path / 'obs.nc'
    write_obs_file(path, np.array([200001], dtype=np.int32))

    with pytest.raises(InputUnavailable) as excinfo:
        readers.read_obs_field(path, 'tas')

    assert excinfo.value.variable == 'tas'
    assert excinfo.value.path == path


def test_missing_file(tmp_path):
    with pytest.raises(InputUnavailable, match='file not found'):
        readers.read_obs_field(tmp_path / 'absent.nc', 'precip')


def test_model_file_path():
    path = readers.model_file_path('/data', 'case.cice.h.{model_year:04d}-{month:02d}.nc', 1981, 3, reference_year=1979)

    assert path.name == 'case.cice.h.0003-03.nc'


@pytest.fixture
def model_dir(tmp_path):
    for month in (1, 2):
        ds = xr.Dataset(
            {
                'PRECC': (('time', 'lat', 'lon'), np.full((1, 2, 3), 1.0e-8 * month), {'units': 'm/s'}),
                'PRECL': (('time', 'lat', 'lon'), np.full((1, 2, 3), 2.0e-8), {'units': 'm/s'}),
            },
            coords={'lat': LAT, 'lon': LON},
        )
        ds.to_netcdf(tmp_path / f'case.cam.h0.0001-{month:02d}.nc')

    return tmp_path


def test_read_model_field_with_reader(model_dir):
    time_index = TimeIndex.monthly(2000, 2000)[:2]

    field = readers.read_model_field(
        model_dir,
        'case.cam.h0.{model_year:04d}-{month:02d}.nc',
        'precipitation',
        time_index,
        reference_year=2000,
        grid=Grid(LAT, LON),
        reader=readers.total_precipitation,
    )

    assert field.units == 'mm/day'
    assert field.data.shape == (2, 2, 3)
    np.testing.assert_allclose(field.data[0], 3.0e-8 * 8.64e7)
    np.testing.assert_allclose(field.data[1], 4.0e-8 * 8.64e7)


def test_read_model_field_plain_variable(model_dir):
    field = readers.read_model_field(
        model_dir,
        'case.cam.h0.{model_year:04d}-{month:02d}.nc',
        'PRECL',
        TimeIndex([2000], [1]),
        reference_year=2000,
        grid=Grid(LAT, LON),
    )

    assert field.units == 'm/s'
    np.testing.assert_allclose(field.data, 2.0e-8)


def test_missing_model_month(model_dir):
    with pytest.raises(InputUnavailable):
        list(
            readers.iter_model_months(
                model_dir, 'case.cam.h0.{model_year:04d}-{month:02d}.nc', TimeIndex.monthly(2000, 2000), 2000
            )
        )


def test_unit_conversions():
    values, units = readers.to_celsius(np.array([273.15, 300.0]), 'K')

    assert units == 'degC'
    np.testing.assert_allclose(values, [0.0, 26.85])

    values, units = readers.to_percent(np.array([0.15, 1.0]), '1')

    assert units == '%'
    np.testing.assert_allclose(values, [15.0, 100.0])

    values, units = readers.to_mm_per_day(np.array([1.0e-5]), 'kg m-2 s-1')

    assert units == 'mm/day'
    np.testing.assert_allclose(values, [0.864])

    with pytest.raises(ValueError):
        readers.to_celsius(np.ones(1), 'degF')

    with pytest.raises(ValueError):
        readers.to_mm_per_day(np.ones(1), 'in/h')


def test_read_level_set_from_bounds():
    ds = xr.Dataset({'depth_bnds': (('depth', 'nbnds'), np.array([[0.0, 10.0], [10.0, 30.0], [30.0, 70.0]]))})

    levels = readers.read_level_set(ds, bounds_name='depth_bnds')

    np.testing.assert_array_equal(levels.faces, [0.0, 10.0, 30.0, 70.0])
    np.testing.assert_array_equal(levels.thickness, [10.0, 20.0, 40.0])


def test_read_level_set_from_tops_in_centimetres():
    ds = xr.Dataset(
        {
            'z_w_top': ('z_t', np.array([0.0, 1000.0])),
            'z_w_bot': ('z_t', np.array([1000.0, 2500.0])),
            'z_t': ('z_t', np.array([500.0, 1750.0])),
        }
    )

    levels = readers.read_level_set(ds, top_name='z_w_top', bottom_name='z_w_bot', centers_name='z_t', scale=0.01)

    np.testing.assert_allclose(levels.faces, [0.0, 10.0, 25.0])
    np.testing.assert_allclose(levels.centers, [5.0, 17.5])

    with pytest.raises(ValueError):
        readers.read_level_set(ds, top_name='z_w_top')
