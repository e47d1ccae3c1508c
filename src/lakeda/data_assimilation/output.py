# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Forecast result output.

Converts a ForecastResult into an xarray Dataset and writes it to NetCDF.
"""

import logging
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import xarray as xr

from .store import ForecastResult

logger = logging.getLogger(__name__)


class DAOutputManager:
    """Writes forecast results to NetCDF.

    Args:
        state_names: Name of every assimilated state.
        modeled_depths: Depth coordinate.
        parameter_names: Name of every calibrated parameter.
        diagnostics_names: Name of every diagnostic.
    """

    def __init__(
        self,
        state_names: Sequence[str],
        modeled_depths: Sequence[float],
        parameter_names: Sequence[str] = (),
        diagnostics_names: Sequence[str] = (),
    ):
        self.state_names = list(state_names)
        self.modeled_depths = np.asarray(modeled_depths, dtype=float)
        self.parameter_names = list(parameter_names)
        self.diagnostics_names = list(diagnostics_names)

    @classmethod
    def from_config(cls, config) -> 'DAOutputManager':
        return cls(
            state_names=config.states.state_names,
            modeled_depths=config.model_settings.modeled_depths,
            parameter_names=[p.name for p in config.parameters],
            diagnostics_names=config.output_settings.diagnostics_names,
        )

    def to_dataset(self, result: ForecastResult) -> xr.Dataset:
        """Build the result dataset (dims: time, state, depth, member, parameter)."""
        n_members = result.x.shape[-1]
        coords = {
            'time': result.full_time,
            'state': self.state_names,
            'depth': self.modeled_depths,
            'member': np.arange(n_members),
        }

        data_vars = {
            'states': (['time', 'state', 'depth', 'member'], result.x),
            'lake_depth': (['time', 'member'], result.lake_depth),
            'avg_surf_temp': (['time', 'member'], result.avg_surf_temp),
            'snow_ice_thickness': (['time', 'snow_ice_layer', 'member'], result.snow_ice_thickness),
            'mixing_vars': (['time', 'mixing_var', 'member'], result.mixing_vars),
            'model_internal_depths': (['time', 'internal_depth', 'member'], result.model_internal_depths),
            'data_assimilation_flag': (['time'], result.data_assimilation_flag),
            'forecast_flag': (['time'], result.forecast_flag),
            'da_qc_flag': (['time'], result.da_qc_flag),
            'qc_interventions': (['time'], result.qc_interventions),
            'failed_members': (['time', 'member'], result.failed_members.astype(np.int8)),
        }

        if result.pars is not None:
            coords['parameter'] = self.parameter_names
            data_vars['parameters'] = (['time', 'parameter', 'member'], result.pars)

        if result.diagnostics is not None:
            coords['diagnostic'] = self.diagnostics_names
            data_vars['diagnostics'] = (['time', 'diagnostic', 'depth', 'member'], result.diagnostics)

        ds = xr.Dataset(data_vars=data_vars, coords=coords)

        ds.attrs.update({
            'title': 'Ensemble lake forecast with data assimilation',
            'forecast_start_datetime': str(result.forecast_start_datetime),
            'n_members': n_members,
            'n_analyses': int(np.nansum(result.data_assimilation_flag)),
        })
        ds.attrs.update({k: str(v) for k, v in result.attrs.items()})

        ds['states'].attrs = {'long_name': 'Ensemble state after assimilation and QC'}
        ds['lake_depth'].attrs = {'units': 'm', 'long_name': 'Lake depth per member'}
        ds['depth'].attrs = {'units': 'm', 'positive': 'down'}
        ds['data_assimilation_flag'].attrs = {'long_name': '1 = correction applied'}
        ds['forecast_flag'].attrs = {'long_name': '1 = forecast step without correction'}
        ds['da_qc_flag'].attrs = {'long_name': '1 = historical step without correction'}

        return ds

    def write(self, output_path: Path, result: ForecastResult,
              dataset: Optional[xr.Dataset] = None) -> Path:
        """Write the result dataset to a NetCDF file."""
        ds = dataset if dataset is not None else self.to_dataset(result)

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        encoding = {}
        for var in ds.data_vars:
            if np.issubdtype(ds[var].dtype, np.floating):
                encoding[str(var)] = {'zlib': True, 'complevel': 4}

        ds.to_netcdf(output_path, encoding=encoding)
        logger.info("Wrote forecast output: %s", output_path)
        return output_path
