"""Tests for forecast result output."""

import numpy as np
import pytest

from lakeda.data_assimilation import DAOutputManager, DataAssimilationManager


@pytest.fixture
def config(make_config):
    return make_config(
        parameters=[{'name': 'zone1temp', 'lower_bound': 0.0, 'upper_bound': 20.0}],
        output_settings={'diagnostics_names': ['extc_coef']},
    )


@pytest.fixture
def result(config, make_linear_model, make_initial_conditions, empty_obs, forcing):
    states, aux = make_initial_conditions(nmembers=3)
    obs = empty_obs()
    obs[0, 2, 0] = 11.0
    manager = DataAssimilationManager(config, make_linear_model(n_diagnostics=1))
    return manager.run_da_forecast(
        states, aux, obs, np.zeros((2, 3)), forcing, pars_init=np.full((1, 3), 5.0)
    )


class TestDAOutputManager:

    def test_dataset_layout(self, config, result):
        ds = DAOutputManager.from_config(config).to_dataset(result)

        assert ds['states'].dims == ('time', 'state', 'depth', 'member')
        assert ds['states'].shape == (5, 2, 3, 3)
        assert list(ds['state'].values) == ['temp', 'oxy']
        assert list(ds['parameter'].values) == ['zone1temp']
        assert ds['diagnostics'].dims == ('time', 'diagnostic', 'depth', 'member')
        np.testing.assert_array_equal(ds['data_assimilation_flag'].values, [0, 0, 1, 0, 0])
        assert ds['failed_members'].dtype == np.int8

    def test_attributes(self, config, result):
        ds = DAOutputManager.from_config(config).to_dataset(result)

        assert ds.attrs['sim_name'] == 'unit_lake'
        assert ds.attrs['da_method'] == 'enkf'
        assert ds.attrs['n_analyses'] == 1
        assert ds.attrs['forecast_start_datetime'].startswith('2024-01-05')

    def test_without_parameters(self, make_config, make_linear_model,
                                make_initial_conditions, empty_obs, forcing):
        config = make_config()
        states, aux = make_initial_conditions(nmembers=2)
        result = DataAssimilationManager(config, make_linear_model()).run_da_forecast(
            states, aux, empty_obs(), np.zeros((2, 3)), forcing
        )
        ds = DAOutputManager.from_config(config).to_dataset(result)

        assert 'parameters' not in ds
        assert 'diagnostics' not in ds

    def test_write_netcdf(self, config, result, tmp_path):
        pytest.importorskip("netCDF4")
        import xarray as xr

        path = DAOutputManager.from_config(config).write(tmp_path / 'out' / 'forecast.nc', result)

        assert path.exists()
        with xr.open_dataset(path) as ds:
            np.testing.assert_allclose(ds['states'].values, result.x)
            np.testing.assert_array_equal(ds['forecast_flag'].values, result.forecast_flag)
