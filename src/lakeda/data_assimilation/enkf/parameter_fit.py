# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Parameter fitting strategies.

Each strategy decides three things for calibrated parameters:

- the per-member parameter vector handed to the process model,
- the spread adjustment applied before the analysis,
- whether the analysis updates parameters at all.

Strategies are selected once per run through ``create_parameter_fit``.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Sequence

import numpy as np

from lakeda.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class ParFitMethod(str, Enum):
    INFLATE = 'inflate'
    PERTURB = 'perturb'
    PERTURB_CONST = 'perturb_const'
    PERTURB_INIT = 'perturb_init'


def ensemble_mean_parameters(pars: np.ndarray) -> np.ndarray:
    """Every member set to the per-parameter ensemble mean."""
    mean = pars.mean(axis=1, keepdims=True)
    return np.broadcast_to(mean, pars.shape).copy()


class ParameterFitStrategy(ABC):
    """Abstract base class for parameter fitting strategies.

    Args:
        specs: Parameter specifications (order matches the parameter axis).
    """

    method: ParFitMethod
    updates_parameters: bool = True

    def __init__(self, specs: Sequence):
        self.specs = list(specs)

    @property
    def npars(self) -> int:
        return len(self.specs)

    def propagation_parameters(
        self,
        prev_pars: np.ndarray,
        forecast: bool,
        parameter_uncertainty: bool,
        rng: np.random.Generator,
    ) -> np.ndarray:
        """Parameters handed to the process model, shape (npars, n_members).

        In forecast steps without parameter uncertainty every member
        receives the ensemble mean.
        """
        if forecast and not parameter_uncertainty:
            return ensemble_mean_parameters(prev_pars)
        return self._member_parameters(prev_pars, rng)

    @abstractmethod
    def _member_parameters(self, prev_pars: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        ...

    def prepare_analysis(self, pars: np.ndarray) -> np.ndarray:
        """Spread adjustment applied to the parameter ensemble before the analysis."""
        return pars


class InflateParameters(ParameterFitStrategy):
    """Parameters carry over; their spread is inflated before each analysis."""

    method = ParFitMethod.INFLATE

    def _member_parameters(self, prev_pars, rng):
        return np.array(prev_pars, dtype=float)

    def prepare_analysis(self, pars: np.ndarray) -> np.ndarray:
        inflation = np.array([spec.inflation for spec in self.specs], dtype=float)[:, np.newaxis]
        mean = pars.mean(axis=1, keepdims=True)
        return inflation * (pars - mean) + mean


class PerturbParameters(ParameterFitStrategy):
    """Independent Gaussian noise added to every member before propagation."""

    method = ParFitMethod.PERTURB

    def _member_parameters(self, prev_pars, rng):
        npars, n_members = prev_pars.shape
        sd = np.array([spec.perturb_sd for spec in self.specs], dtype=float)
        # Drawn member by member
        noise = rng.normal(0.0, 1.0, size=(n_members, npars)) * sd
        return prev_pars + noise.T


class PerturbConstParameters(ParameterFitStrategy):
    """Member z-scores rescaled to a fixed spread around the ensemble mean."""

    method = ParFitMethod.PERTURB_CONST

    def _member_parameters(self, prev_pars, rng):
        n_members = prev_pars.shape[1]
        mean = prev_pars.mean(axis=1, keepdims=True)
        if n_members < 2:
            return ensemble_mean_parameters(prev_pars)
        sd = prev_pars.std(axis=1, ddof=1, keepdims=True)
        target = np.array([spec.perturb_sd for spec in self.specs], dtype=float)[:, np.newaxis]
        z = np.divide(prev_pars - mean, sd, out=np.zeros_like(prev_pars), where=sd > 0)
        return z * target + mean


class PerturbInitParameters(ParameterFitStrategy):
    """Parameters fixed after initialisation; never updated by the analysis."""

    method = ParFitMethod.PERTURB_INIT
    updates_parameters = False

    def _member_parameters(self, prev_pars, rng):
        return np.array(prev_pars, dtype=float)


_STRATEGIES = {
    ParFitMethod.INFLATE: InflateParameters,
    ParFitMethod.PERTURB: PerturbParameters,
    ParFitMethod.PERTURB_CONST: PerturbConstParameters,
    ParFitMethod.PERTURB_INIT: PerturbInitParameters,
}


def create_parameter_fit(method: str, da_method: str, specs: Sequence) -> ParameterFitStrategy:
    """Select the parameter fitting strategy of a run.

    Without assimilation parameters always carry over unchanged.

    Raises:
        ConfigurationError: Unknown method, or 'inflate' with a particle filter.
    """
    try:
        fit_method = ParFitMethod(str(method).lower())
    except ValueError as e:
        raise ConfigurationError(
            f"Unknown parameter fitting method '{method}'. "
            f"Supported: {[m.value for m in ParFitMethod]}"
        ) from e

    if da_method == 'none':
        return PerturbInitParameters(specs)
    if fit_method is ParFitMethod.INFLATE and da_method != 'enkf' and specs:
        raise ConfigurationError("Parameter fitting method 'inflate' is only supported with 'enkf'")

    strategy = _STRATEGIES[fit_method](specs)
    logger.debug("Using parameter fitting method %s", fit_method.value)
    return strategy
