"""
Unit test fixtures and configuration.

Fixtures specific to unit tests (fast, isolated tests): a small forecast
configuration factory, seeded random generators, initial conditions and
synthetic process models.
"""

import copy

import numpy as np
import pytest

from lakeda.core.config.models import ForecastConfig
from lakeda.data_assimilation.ensemble_manager import (
    ForcingFiles,
    ProcessModel,
    PropagationResult,
)

# ============================================================================
# Synthetic process models
# ============================================================================


class LinearLakeModel(ProcessModel):
    """Relaxes every state linearly: x_next = decay * x + offset.

    Auxiliary state is carried unchanged; diagnostics are constant.
    """

    def __init__(self, decay=0.9, offset=1.0, n_diagnostics=0, diagnostic_value=0.85,
                 lake_depth=None):
        self.decay = decay
        self.offset = offset
        self.n_diagnostics = n_diagnostics
        self.diagnostic_value = diagnostic_value
        self.lake_depth = lake_depth
        self.calls = []

    def propagate(self, request):
        self.calls.append((request.step, request.member))
        auxiliary = request.auxiliary.copy()
        if self.lake_depth is not None:
            auxiliary.lake_depth = self.lake_depth
        diagnostics = None
        if self.n_diagnostics:
            diagnostics = np.full((self.n_diagnostics, request.states.shape[1]), self.diagnostic_value)
        return PropagationResult(
            states=self.decay * request.states + self.offset,
            auxiliary=auxiliary,
            diagnostics=diagnostics,
            pars=request.pars,
        )


class FailingLakeModel(LinearLakeModel):
    """Linear model whose listed members raise at the listed steps."""

    def __init__(self, failing_members, failing_steps=None, **kwargs):
        super().__init__(**kwargs)
        self.failing_members = set(failing_members)
        self.failing_steps = set(failing_steps) if failing_steps is not None else None

    def propagate(self, request):
        step_fails = self.failing_steps is None or request.step in self.failing_steps
        if request.member in self.failing_members and step_fails:
            raise RuntimeError(f"model crashed for member {request.member}")
        return super().propagate(request)


# ============================================================================
# Configuration
# ============================================================================

BASE_CONFIG = {
    'run': {
        'sim_name': 'unit_lake',
        'start_datetime': '2024-01-01T00:00:00',
        'forecast_start_datetime': '2024-01-05T00:00:00',
        'forecast_horizon': 0,
        'random_seed': 42,
    },
    'model_settings': {
        'modeled_depths': [0.5, 1.0, 2.0],
    },
    'da_setup': {
        'da_method': 'enkf',
        'par_fit_method': 'perturb',
    },
    'states': {
        'state_names': ['temp', 'oxy'],
        'states_to_obs': [[0], [1]],
        'states_to_obs_mapping': [[1.0], [1.0]],
        'vert_decorr_length': [1.0, 1.0],
    },
    'observations': {
        'obs_sd': [0.5, 1.0],
    },
}


def _merge(base, override):
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


@pytest.fixture
def config_dict():
    """Nested configuration dict: 2 states, 3 depths, 5 daily steps, boundary at step 4."""
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def make_config():
    """Build a ForecastConfig from the base dict plus nested overrides."""
    def _make(**overrides):
        return ForecastConfig.from_dict(_merge(BASE_CONFIG, overrides))
    return _make


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(42)


# ============================================================================
# Initial conditions and inputs
# ============================================================================


@pytest.fixture
def make_initial_conditions():
    """Initial states and auxiliary state for an ensemble."""
    def _make(nmembers=4, nstates=2, ndepths=3, lake_depth=3.0, seed=0):
        gen = np.random.default_rng(seed)
        states = np.empty((nstates, ndepths, nmembers))
        states[0] = 10.0 + gen.normal(0.0, 1.0, size=(ndepths, nmembers))
        for s in range(1, nstates):
            states[s] = 5.0 + gen.normal(0.0, 0.5, size=(ndepths, nmembers))
        aux = {
            'lake_depth': np.full(nmembers, lake_depth),
            'model_internal_depths': np.tile(np.linspace(0.0, lake_depth, 6)[:, np.newaxis], (1, nmembers)),
            'mixing_vars': np.zeros((17, nmembers)),
            'snow_ice_thickness': np.zeros((3, nmembers)),
            'avg_surf_temp': np.full(nmembers, 4.0),
        }
        return states, aux
    return _make


@pytest.fixture
def make_linear_model():
    return LinearLakeModel


@pytest.fixture
def make_failing_model():
    return FailingLakeModel


@pytest.fixture
def forcing():
    return ForcingFiles(met_files=['met_1.csv', 'met_2.csv'])


@pytest.fixture
def empty_obs():
    """Factory for an all-missing observation array (n_obs_vars, nsteps, ndepths)."""
    def _make(n_obs_vars=2, nsteps=5, ndepths=3):
        return np.full((n_obs_vars, nsteps, ndepths), np.nan)
    return _make
