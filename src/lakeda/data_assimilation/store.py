# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Ensemble state and parameter store.

Owns every array of a forecast run, pre-sized for the full horizon and
indexed time-first. Step ``t`` is written once by propagation and
correction and then only touched by quality control before step ``t + 1``
starts; entries below a member's lake floor are NaN.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

import numpy as np
import pandas as pd

from lakeda.core.exceptions import DimensionMismatchError, ValidationError, require, require_not_none
from .flags import TimestepFlagRecorder

logger = logging.getLogger(__name__)


@dataclass
class AuxiliaryState:
    """Per-member model state needed to restart the process model.

    Never corrected by the Kalman gain; resampled by the particle filter
    and perturbed by depth observations.
    """
    lake_depth: float
    model_internal_depths: np.ndarray
    mixing_vars: np.ndarray
    snow_ice_thickness: np.ndarray
    avg_surf_temp: float

    def copy(self) -> 'AuxiliaryState':
        return AuxiliaryState(
            lake_depth=float(self.lake_depth),
            model_internal_depths=np.array(self.model_internal_depths, dtype=float),
            mixing_vars=np.array(self.mixing_vars, dtype=float),
            snow_ice_thickness=np.array(self.snow_ice_thickness, dtype=float),
            avg_surf_temp=float(self.avg_surf_temp),
        )


class EnsembleStore:
    """Pre-sized ensemble arrays for a whole run.

    Args:
        nsteps: Number of timesteps (including the initial step 0).
        nstates: Number of assimilated state variables.
        ndepths: Number of modeled depths.
        nmembers: Ensemble size.
        npars: Number of calibrated parameters (0 = no parameter array).
        ndiagnostics: Number of diagnostics (0 = no diagnostics array).
        n_internal_depths: Length of the process model's internal grid.
        n_mixing_vars: Number of mixing variables.
        n_snow_ice: Number of snow/ice layers.
    """

    def __init__(
        self,
        nsteps: int,
        nstates: int,
        ndepths: int,
        nmembers: int,
        npars: int = 0,
        ndiagnostics: int = 0,
        n_internal_depths: int = 500,
        n_mixing_vars: int = 17,
        n_snow_ice: int = 3,
    ):
        self.nsteps = nsteps
        self.nstates = nstates
        self.ndepths = ndepths
        self.nmembers = nmembers
        self.npars = npars

        self.x = np.full((nsteps, nstates, ndepths, nmembers), np.nan)
        self.pars = np.full((nsteps, npars, nmembers), np.nan) if npars > 0 else None
        self.lake_depth = np.full((nsteps, nmembers), np.nan)
        self.model_internal_depths = np.full((nsteps, n_internal_depths, nmembers), np.nan)
        self.mixing_vars = np.full((nsteps, n_mixing_vars, nmembers), np.nan)
        self.snow_ice_thickness = np.full((nsteps, n_snow_ice, nmembers), np.nan)
        self.avg_surf_temp = np.full((nsteps, nmembers), np.nan)
        self.diagnostics = (
            np.full((nsteps, ndiagnostics, ndepths, nmembers), np.nan)
            if ndiagnostics > 0 else None
        )
        self.failed_members = np.zeros((nsteps, nmembers), dtype=bool)
        self.qc_interventions = np.zeros(nsteps, dtype=int)
        self.flags = TimestepFlagRecorder(nsteps)
        self._last_committed = -1

    @classmethod
    def from_config(cls, config, nmembers: int) -> 'EnsembleStore':
        settings = config.model_settings
        return cls(
            nsteps=config.run.nsteps,
            nstates=config.nstates,
            ndepths=config.ndepths,
            nmembers=nmembers,
            npars=config.npars,
            ndiagnostics=config.ndiagnostics,
            n_internal_depths=settings.n_internal_depths,
            n_mixing_vars=settings.n_mixing_vars,
            n_snow_ice=settings.n_snow_ice,
        )

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def seed(
        self,
        states_init: np.ndarray,
        aux_states_init: Mapping[str, np.ndarray],
        pars_init: Optional[np.ndarray] = None,
    ) -> None:
        """Write the initial conditions into step 0.

        Args:
            states_init: Initial states, shape (nstates, ndepths, nmembers).
            aux_states_init: Mapping with 'lake_depth' (nmembers,),
                'model_internal_depths' (n_internal, nmembers),
                'mixing_vars' (n_mixing, nmembers), 'snow_ice_thickness'
                (n_snow_ice, nmembers) and 'avg_surf_temp' (nmembers,).
            pars_init: Initial parameters, shape (npars, nmembers).
        """
        states_init = np.asarray(states_init, dtype=float)
        expected = (self.nstates, self.ndepths, self.nmembers)
        require(
            states_init.shape == expected,
            f"states_init has shape {states_init.shape}, expected {expected}",
            DimensionMismatchError,
        )
        self.x[0] = states_init

        if self.npars > 0:
            pars_init = require_not_none(pars_init, "pars_init", DimensionMismatchError)
            pars_init = np.asarray(pars_init, dtype=float).reshape(self.npars, -1)
            require(
                pars_init.shape == (self.npars, self.nmembers),
                f"pars_init has shape {pars_init.shape}, expected {(self.npars, self.nmembers)}",
                DimensionMismatchError,
            )
            self.pars[0] = pars_init

        targets = {
            'lake_depth': self.lake_depth,
            'model_internal_depths': self.model_internal_depths,
            'mixing_vars': self.mixing_vars,
            'snow_ice_thickness': self.snow_ice_thickness,
            'avg_surf_temp': self.avg_surf_temp,
        }
        for name, array in targets.items():
            require(name in aux_states_init, f"aux_states_init is missing '{name}'",
                    DimensionMismatchError)
            value = np.asarray(aux_states_init[name], dtype=float)
            if array.ndim == 3 and value.shape[0] < array.shape[1]:
                # Shorter internal grids are padded with missing values
                padded = np.full(array.shape[1:], np.nan)
                padded[:value.shape[0]] = value
                value = padded
            try:
                array[0] = value
            except ValueError as e:
                raise DimensionMismatchError(
                    f"aux_states_init['{name}'] has shape {value.shape}, expected {array.shape[1:]}"
                ) from e

    # ------------------------------------------------------------------
    # Access scoped to the current / previous step
    # ------------------------------------------------------------------

    def check_writable(self, step: int) -> None:
        """Refuse writes to a step that was already committed."""
        if step <= self._last_committed:
            raise ValidationError(f"Timestep {step} is already committed")

    def commit(self, step: int) -> None:
        self.check_writable(step)
        self._last_committed = step

    def member_auxiliary(self, step: int, member: int) -> AuxiliaryState:
        return AuxiliaryState(
            lake_depth=float(self.lake_depth[step, member]),
            model_internal_depths=self.model_internal_depths[step, :, member].copy(),
            mixing_vars=self.mixing_vars[step, :, member].copy(),
            snow_ice_thickness=self.snow_ice_thickness[step, :, member].copy(),
            avg_surf_temp=float(self.avg_surf_temp[step, member]),
        )

    def write_auxiliary(self, step: int, member: int, aux: AuxiliaryState) -> None:
        self.check_writable(step)
        self.lake_depth[step, member] = aux.lake_depth
        internal = np.full(self.model_internal_depths.shape[1], np.nan)
        depths = np.asarray(aux.model_internal_depths, dtype=float)[:internal.size]
        internal[:depths.size] = depths
        self.model_internal_depths[step, :, member] = internal
        self.mixing_vars[step, :, member] = aux.mixing_vars
        self.snow_ice_thickness[step, :, member] = aux.snow_ice_thickness
        self.avg_surf_temp[step, member] = aux.avg_surf_temp

    def resample_members(self, step: int, sample: np.ndarray) -> None:
        """Replace every member-carried auxiliary quantity of a step by the sampled members.

        States and parameters are written by the caller from the
        pre-correction ensemble; this covers everything else.
        """
        self.check_writable(step)
        self.lake_depth[step] = self.lake_depth[step, sample]
        self.model_internal_depths[step] = self.model_internal_depths[step][:, sample]
        self.mixing_vars[step] = self.mixing_vars[step][:, sample]
        self.snow_ice_thickness[step] = self.snow_ice_thickness[step][:, sample]
        self.avg_surf_temp[step] = self.avg_surf_temp[step, sample]
        if self.diagnostics is not None:
            self.diagnostics[step] = self.diagnostics[step][..., sample]

    def below_floor(self, step: int, modeled_depths: np.ndarray) -> np.ndarray:
        """Boolean mask (ndepths, nmembers) of modeled depths below each member's lake floor."""
        return np.asarray(modeled_depths)[:, np.newaxis] > self.lake_depth[step][np.newaxis, :]

    def mask_below_floor(self, step: int, modeled_depths: np.ndarray, states: bool = True) -> None:
        """Set states (optionally) and diagnostics below the lake floor to missing."""
        mask = self.below_floor(step, modeled_depths)
        if states:
            self.x[step][:, mask] = np.nan
        if self.diagnostics is not None:
            self.diagnostics[step][:, mask] = np.nan

    def write_states_above_floor(
        self,
        step: int,
        update: np.ndarray,
        modeled_depths: np.ndarray,
    ) -> None:
        """Write corrected states at or above each member's floor; leave the rest missing."""
        self.check_writable(step)
        keep = ~self.below_floor(step, modeled_depths)
        layer = np.full(update.shape, np.nan)
        layer[:, keep] = update[:, keep]
        self.x[step] = layer

    def resample_lake_depth(
        self,
        step: int,
        observed_depth: float,
        sd: float,
        rng: np.random.Generator,
    ) -> None:
        """Draw every member's lake depth around an observed depth.

        Internal grid points deeper than the new lake depth become missing.
        """
        self.check_writable(step)
        self.lake_depth[step] = rng.normal(observed_depth, sd, size=self.nmembers)
        internal = self.model_internal_depths[step]
        internal[internal > self.lake_depth[step][np.newaxis, :]] = np.nan

    # ------------------------------------------------------------------
    # Result surface
    # ------------------------------------------------------------------

    def to_result(self, full_time: pd.DatetimeIndex, forecast_start_step: int,
                  attrs: Optional[Dict[str, object]] = None) -> 'ForecastResult':
        self.flags.ensure_complete()
        return ForecastResult(
            full_time=full_time,
            forecast_start_step=forecast_start_step,
            x=self.x,
            pars=self.pars,
            lake_depth=self.lake_depth,
            model_internal_depths=self.model_internal_depths,
            mixing_vars=self.mixing_vars,
            snow_ice_thickness=self.snow_ice_thickness,
            avg_surf_temp=self.avg_surf_temp,
            diagnostics=self.diagnostics,
            data_assimilation_flag=self.flags.data_assimilation_flag,
            forecast_flag=self.flags.forecast_flag,
            da_qc_flag=self.flags.da_qc_flag,
            qc_interventions=self.qc_interventions,
            failed_members=self.failed_members,
            attrs=dict(attrs or {}),
        )


@dataclass
class ForecastResult:
    """Everything a forecast run hands to persistence and reporting."""
    full_time: pd.DatetimeIndex
    forecast_start_step: int
    x: np.ndarray
    pars: Optional[np.ndarray]
    lake_depth: np.ndarray
    model_internal_depths: np.ndarray
    mixing_vars: np.ndarray
    snow_ice_thickness: np.ndarray
    avg_surf_temp: np.ndarray
    diagnostics: Optional[np.ndarray]
    data_assimilation_flag: np.ndarray
    forecast_flag: np.ndarray
    da_qc_flag: np.ndarray
    qc_interventions: np.ndarray
    failed_members: np.ndarray
    attrs: Dict[str, object] = field(default_factory=dict)

    @property
    def forecast_start_datetime(self) -> pd.Timestamp:
        return self.full_time[min(self.forecast_start_step, len(self.full_time) - 1)]
