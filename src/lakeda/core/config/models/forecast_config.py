# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Forecast and data assimilation configuration models.

Contains the run window, model settings, assimilation setup, uncertainty
toggles, state/parameter/observation descriptions and the root
ForecastConfig container.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import pandas as pd
from pydantic import BaseModel, Field, field_validator, model_validator

from .base import FROZEN_CONFIG

# Supported assimilation methods
DAMethodType = Literal['enkf', 'pf', 'none']

# Supported parameter fitting methods
ParFitMethodType = Literal['inflate', 'perturb', 'perturb_const', 'perturb_init']


class RunConfig(BaseModel):
    """Run window and reproducibility settings.

    The run covers daily steps from ``start_datetime`` to the end of the
    forecast horizon. Step 0 holds the initial conditions; the step at
    ``forecast_start_datetime`` is the last historical step.
    """
    model_config = FROZEN_CONFIG

    sim_name: str = Field(default='lakeda_forecast', alias='SIM_NAME')
    start_datetime: datetime = Field(alias='START_DATETIME')
    forecast_start_datetime: Optional[datetime] = Field(
        default=None, alias='FORECAST_START_DATETIME'
    )
    end_datetime: Optional[datetime] = Field(default=None, alias='END_DATETIME')
    forecast_horizon: int = Field(
        default=0, alias='FORECAST_HORIZON', ge=0,
        description='Forecast length in days after forecast_start_datetime'
    )
    random_seed: Optional[int] = Field(default=None, alias='RANDOM_SEED')

    @model_validator(mode='after')
    def check_window(self):
        if self.forecast_start_datetime is None and self.end_datetime is None:
            raise ValueError(
                "Either FORECAST_START_DATETIME or END_DATETIME must be set"
            )
        if self.forecast_start < pd.Timestamp(self.start_datetime):
            raise ValueError("Forecast start precedes START_DATETIME")
        hist = (self.forecast_start - pd.Timestamp(self.start_datetime)) / pd.Timedelta(days=1)
        if hist != int(hist):
            raise ValueError("The historical window must span a whole number of days")
        return self

    @property
    def forecast_start(self) -> pd.Timestamp:
        """Start of the forecast; the end of the run for pure reanalysis."""
        if self.forecast_start_datetime is None:
            return pd.Timestamp(self.end_datetime)
        return pd.Timestamp(self.forecast_start_datetime)

    @property
    def end(self) -> pd.Timestamp:
        if self.forecast_start_datetime is None:
            return pd.Timestamp(self.end_datetime)
        return self.forecast_start + pd.Timedelta(days=self.forecast_horizon)

    @property
    def full_time(self) -> pd.DatetimeIndex:
        return pd.date_range(pd.Timestamp(self.start_datetime), self.end, freq='D')

    @property
    def nsteps(self) -> int:
        return len(self.full_time)

    @property
    def forecast_start_step(self) -> int:
        """Index of the historical/forecast boundary step (number of historical days)."""
        return int((self.forecast_start - pd.Timestamp(self.start_datetime)) / pd.Timedelta(days=1))


class ModelSettings(BaseModel):
    """Process model grid and ensemble execution settings."""
    model_config = FROZEN_CONFIG

    modeled_depths: List[float] = Field(alias='MODELED_DEPTHS', min_length=1)
    ncore: int = Field(default=1, alias='NCORE', ge=1)
    parallel_backend: Literal['thread', 'process'] = Field(
        default='thread', alias='PARALLEL_BACKEND'
    )
    member_failure_policy: Literal['raise', 'isolate'] = Field(
        default='raise', alias='MEMBER_FAILURE_POLICY',
        description="'raise' aborts the step, 'isolate' carries the failed member forward"
    )
    n_internal_depths: int = Field(default=500, alias='N_INTERNAL_DEPTHS', ge=1)
    n_mixing_vars: int = Field(default=17, alias='N_MIXING_VARS', ge=0)
    n_snow_ice: int = Field(default=3, alias='N_SNOW_ICE', ge=0)

    @field_validator('modeled_depths')
    @classmethod
    def validate_depths(cls, v):
        """Modeled depths must be strictly increasing"""
        if any(b <= a for a, b in zip(v, v[1:])):
            raise ValueError("MODELED_DEPTHS must be strictly increasing")
        return v


class DASetupConfig(BaseModel):
    """Data assimilation method and covariance settings."""
    model_config = FROZEN_CONFIG

    da_method: DAMethodType = Field(default='enkf', alias='DA_METHOD')
    par_fit_method: ParFitMethodType = Field(default='inflate', alias='PAR_FIT_METHOD')
    inflation_factor: Optional[float] = Field(
        default=None, alias='INFLATION_FACTOR', gt=0,
        description='Covariance inflation (unset = 1.0, no inflation)'
    )
    localization_distance: Optional[float] = Field(
        default=None, alias='LOCALIZATION_DISTANCE', gt=0
    )
    use_obs_constraint: bool = Field(default=True, alias='USE_OBS_CONSTRAINT')
    assimilate_first_step: bool = Field(default=False, alias='ASSIMILATE_FIRST_STEP')
    log_transform_wq: bool = Field(
        default=False, alias='LOG_TRANSFORM_WQ',
        description='Reserved: water quality assimilated in log space (disables clipping)'
    )
    solve_tolerance: float = Field(default=1e-17, alias='SOLVE_TOLERANCE', gt=0)

    @field_validator('da_method', 'par_fit_method', mode='before')
    @classmethod
    def normalize_method(cls, v):
        """Normalize method names to lowercase for case-insensitive matching"""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @property
    def effective_inflation_factor(self) -> float:
        return 1.0 if self.inflation_factor is None else self.inflation_factor


class UncertaintyConfig(BaseModel):
    """Per-source uncertainty toggles.

    Process, parameter, weather and inflow uncertainty are only switched
    off in forecast steps; initial-condition uncertainty acts on the
    boundary step; observation uncertainty acts on every analysis.
    """
    model_config = FROZEN_CONFIG

    process: bool = Field(default=True, alias='UNCERTAINTY_PROCESS')
    parameter: bool = Field(default=True, alias='UNCERTAINTY_PARAMETER')
    initial_condition: bool = Field(default=True, alias='UNCERTAINTY_INITIAL_CONDITION')
    observation: bool = Field(default=True, alias='UNCERTAINTY_OBSERVATION')
    weather: bool = Field(default=True, alias='UNCERTAINTY_WEATHER')
    inflow: bool = Field(default=True, alias='UNCERTAINTY_INFLOW')


class StatesConfig(BaseModel):
    """Assimilated state variables and their mapping to observations.

    State 0 is the primary physical state (water temperature); every other
    state is a non-negative biogeochemical concentration.
    """
    model_config = FROZEN_CONFIG

    state_names: List[str] = Field(alias='STATE_NAMES', min_length=1)
    states_to_obs: List[List[int]] = Field(default_factory=list, alias='STATES_TO_OBS')
    states_to_obs_mapping: List[List[float]] = Field(
        default_factory=list, alias='STATES_TO_OBS_MAPPING'
    )
    vert_decorr_length: List[float] = Field(alias='VERT_DECORR_LENGTH')

    @model_validator(mode='after')
    def check_lengths(self):
        n = len(self.state_names)
        if len(self.vert_decorr_length) != n:
            raise ValueError("VERT_DECORR_LENGTH needs one entry per state")
        if self.states_to_obs and len(self.states_to_obs) != n:
            raise ValueError("STATES_TO_OBS needs one entry per state")
        if len(self.states_to_obs_mapping) != len(self.states_to_obs):
            raise ValueError("STATES_TO_OBS_MAPPING must match STATES_TO_OBS")
        for obs_idx, coefs in zip(self.states_to_obs, self.states_to_obs_mapping):
            if len(obs_idx) != len(coefs):
                raise ValueError("Each state needs one mapping coefficient per observed variable")
            if any(i < 0 for i in obs_idx):
                raise ValueError("Observed variable indices must be non-negative")
        return self

    @property
    def nstates(self) -> int:
        return len(self.state_names)


class ParameterSpec(BaseModel):
    """A calibrated model parameter."""
    model_config = FROZEN_CONFIG

    name: str = Field(alias='PAR_NAME')
    lower_bound: float = Field(alias='PAR_LOWERBOUND')
    upper_bound: float = Field(alias='PAR_UPPERBOUND')
    inflation: float = Field(
        default=1.0, alias='INFLAT_PARS', ge=0,
        description="Spread multiplier for the 'inflate' fitting method"
    )
    perturb_sd: float = Field(
        default=0.0, alias='PERTURB_PAR', ge=0,
        description="Noise std for the 'perturb' and 'perturb_const' fitting methods"
    )
    @model_validator(mode='after')
    def check_bounds(self):
        if self.lower_bound > self.upper_bound:
            raise ValueError(f"Parameter {self.name}: lower bound exceeds upper bound")
        return self


class ObservationConfig(BaseModel):
    """Observation uncertainty and auxiliary observation settings."""
    model_config = FROZEN_CONFIG

    obs_sd: List[float] = Field(alias='OBS_SD', min_length=1)
    secchi_sd: Optional[float] = Field(default=None, alias='SECCHI_SD', gt=0)
    secchi_reference_depth: float = Field(default=1.0, alias='SECCHI_REFERENCE_DEPTH')
    secchi_coefficient: float = Field(
        default=1.7, alias='SECCHI_COEFFICIENT',
        description='Secchi depth = coefficient / light extinction'
    )
    secchi_diagnostic: int = Field(default=0, alias='SECCHI_DIAGNOSTIC', ge=0)
    depth_obs_sd: float = Field(default=0.05, alias='DEPTH_OBS_SD', gt=0)

    @field_validator('obs_sd')
    @classmethod
    def validate_obs_sd(cls, v):
        if any(sd < 0 for sd in v):
            raise ValueError("OBS_SD entries must be non-negative")
        return v


class OutputSettings(BaseModel):
    """Diagnostics carried alongside the states."""
    model_config = FROZEN_CONFIG

    diagnostics_names: List[str] = Field(default_factory=list, alias='DIAGNOSTICS_NAMES')


class ForecastConfig(BaseModel):
    """Top-level forecast configuration."""
    model_config = FROZEN_CONFIG

    run: RunConfig
    model_settings: ModelSettings
    da_setup: DASetupConfig = Field(default_factory=DASetupConfig)
    uncertainty: UncertaintyConfig = Field(default_factory=UncertaintyConfig)
    states: StatesConfig
    parameters: List[ParameterSpec] = Field(default_factory=list)
    observations: ObservationConfig
    output_settings: OutputSettings = Field(default_factory=OutputSettings)

    @model_validator(mode='after')
    def check_consistency(self):
        if self.da_setup.da_method == 'pf' and self.da_setup.par_fit_method == 'inflate' and self.parameters:
            raise ValueError(
                "PAR_FIT_METHOD 'inflate' is only supported with DA_METHOD 'enkf'"
            )
        n_obs_vars = len(self.observations.obs_sd)
        for obs_idx in self.states.states_to_obs:
            if any(i >= n_obs_vars for i in obs_idx):
                raise ValueError(
                    f"STATES_TO_OBS references an observed variable beyond the {n_obs_vars} in OBS_SD"
                )
        return self

    @property
    def nstates(self) -> int:
        return self.states.nstates

    @property
    def ndepths(self) -> int:
        return len(self.model_settings.modeled_depths)

    @property
    def npars(self) -> int:
        return len(self.parameters)

    @property
    def ndiagnostics(self) -> int:
        return len(self.output_settings.diagnostics_names)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ForecastConfig':
        """Build a validated config from a nested or flat (alias-keyed) dict."""
        from ..factories import from_dict_factory
        return from_dict_factory(cls, data)

    @classmethod
    def from_file(cls, path: Union[str, Path], overrides: Optional[Dict[str, Any]] = None) -> 'ForecastConfig':
        """Load configuration from a YAML file."""
        from ..factories import from_file_factory
        return from_file_factory(cls, Path(path), overrides)
