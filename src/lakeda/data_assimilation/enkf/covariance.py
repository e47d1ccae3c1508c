# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Ensemble covariance estimation.

Ensemble matrices are laid out with one row per state x depth entry (plus
trailing auxiliary rows) and one column per member.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from lakeda.core.exceptions import DimensionMismatchError
from .localization import Localizer, localize_covariance

logger = logging.getLogger(__name__)


def fill_missing(ensemble: np.ndarray) -> np.ndarray:
    """Replace missing entries by the ensemble mean of their row (zero for all-missing rows)."""
    ensemble = np.array(ensemble, dtype=float)
    missing = ~np.isfinite(ensemble)
    if not missing.any():
        return ensemble
    counts = np.sum(~missing, axis=1)
    sums = np.where(missing, 0.0, ensemble).sum(axis=1)
    row_mean = np.divide(sums, counts, out=np.zeros_like(sums), where=counts > 0)
    ensemble[missing] = np.broadcast_to(row_mean[:, np.newaxis], ensemble.shape)[missing]
    return ensemble


def anomalies(ensemble: np.ndarray) -> np.ndarray:
    """Member deviations from the ensemble mean, same shape as ``ensemble``."""
    return ensemble - ensemble.mean(axis=1, keepdims=True)


def sample_covariance(ensemble: np.ndarray) -> np.ndarray:
    """Sample covariance of an ensemble matrix (n, n_members); zero for a single member."""
    n, n_members = ensemble.shape
    if n_members < 2:
        return np.zeros((n, n))
    A = anomalies(ensemble)
    return A @ A.T / (n_members - 1)


def cross_covariance(left: np.ndarray, right: np.ndarray) -> np.ndarray:
    """Sample cross-covariance between two ensembles sharing members; zero for a single member."""
    if left.shape[1] != right.shape[1]:
        raise DimensionMismatchError(
            f"Ensembles have {left.shape[1]} and {right.shape[1]} members"
        )
    n_members = left.shape[1]
    if n_members < 2:
        return np.zeros((left.shape[0], right.shape[0]))
    return anomalies(left) @ anomalies(right).T / (n_members - 1)


@dataclass
class CovarianceEstimate:
    """State covariance and (optionally) parameter/state cross-covariance."""
    P: np.ndarray
    P_pars: Optional[np.ndarray] = None


class CovarianceEstimator:
    """Estimates inflated, optionally localized ensemble covariance.

    Args:
        inflation_factor: Multiplier on the sample covariance and the parameter
            cross-covariance (1.0 = none).
        localization_distance: Distance at which covariance is tapered to
            zero; None disables localization.
        modeled_depths: Depth coordinate vector.
        nstates: Number of depth-indexed states.
        localizer: Localization routine; defaults to Gaspari-Cohn tapering.
    """

    def __init__(
        self,
        modeled_depths: Sequence[float],
        nstates: int,
        inflation_factor: float = 1.0,
        localization_distance: Optional[float] = None,
        localizer: Optional[Localizer] = None,
    ):
        self.modeled_depths = np.asarray(modeled_depths, dtype=float)
        self.nstates = nstates
        self.inflation_factor = inflation_factor
        self.localization_distance = localization_distance
        self.localizer = localizer or localize_covariance

    @classmethod
    def from_config(cls, config, localizer: Optional[Localizer] = None) -> 'CovarianceEstimator':
        return cls(
            modeled_depths=config.model_settings.modeled_depths,
            nstates=config.nstates,
            inflation_factor=config.da_setup.effective_inflation_factor,
            localization_distance=config.da_setup.localization_distance,
            localizer=localizer,
        )

    def estimate(
        self,
        x_matrix: np.ndarray,
        pars_matrix: Optional[np.ndarray] = None,
    ) -> CovarianceEstimate:
        """Compute P (and P_pars) from member-column ensemble matrices.

        Args:
            x_matrix: States (+ auxiliary rows), shape (n_state, n_members).
            pars_matrix: Parameters, shape (npars, n_members), or None.
        """
        n_profile = self.nstates * self.modeled_depths.size
        num_single = x_matrix.shape[0] - n_profile
        if num_single < 0:
            raise DimensionMismatchError(
                f"Ensemble matrix has {x_matrix.shape[0]} rows, fewer than {n_profile} profile rows"
            )

        P = self.inflation_factor * sample_covariance(x_matrix)
        if self.localization_distance is not None:
            P = self.localizer(
                P, self.modeled_depths, self.nstates, self.localization_distance, num_single
            )
            if P.shape != (x_matrix.shape[0], x_matrix.shape[0]):
                raise DimensionMismatchError(
                    f"Localization returned shape {P.shape} for a {x_matrix.shape[0]}-row ensemble"
                )

        P_pars = None
        if pars_matrix is not None:
            P_pars = self.inflation_factor * cross_covariance(pars_matrix, x_matrix)
        return CovarianceEstimate(P=P, P_pars=P_pars)
