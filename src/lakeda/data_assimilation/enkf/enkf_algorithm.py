# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Ensemble Kalman Filter algorithm.

Implements the stochastic (perturbed observation) EnKF analysis for depth
profiles, with an optional parameter update through the parameter/state
cross-covariance.

References:
    Evensen, G. (2003). The Ensemble Kalman Filter: theoretical formulation
    and practical implementation. Ocean Dynamics, 53, 343-367.

    Burgers, G., van Leeuwen, P.J. & Evensen, G. (1998). Analysis scheme in
    the ensemble Kalman filter. Monthly Weather Review, 126, 1719-1724.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import scipy.linalg

from lakeda.core.exceptions import DimensionMismatchError, NumericalDegeneracyWarning
from .covariance import CovarianceEstimate
from .observation_operator import ProfileObservationOperator

logger = logging.getLogger(__name__)


@dataclass
class EnKFUpdate:
    """Result of an EnKF analysis."""
    x: np.ndarray
    pars: Optional[np.ndarray]
    K: np.ndarray
    K_pars: Optional[np.ndarray]
    perturbed_obs: np.ndarray
    degenerate: bool = False


class EnKFAlgorithm:
    """Ensemble Kalman Filter (EnKF) analysis step.

    Args:
        ndepths: Number of modeled depths; observation rows at or beyond it
            belong to non-primary variables (and the auxiliary observation).
        solve_tolerance: Relative singular-value floor for the fallback
            least-squares solve of a near-singular innovation covariance.
        observation_uncertainty: Use the observation variances as R; with
            False, R is zero and observations are not perturbed.
        clip_perturbed: Clip non-primary perturbed observations at zero.
    """

    def __init__(
        self,
        ndepths: int,
        solve_tolerance: float = 1e-17,
        observation_uncertainty: bool = True,
        clip_perturbed: bool = True,
    ):
        self.ndepths = ndepths
        self.solve_tolerance = solve_tolerance
        self.observation_uncertainty = observation_uncertainty
        self.clip_perturbed = clip_perturbed

    @classmethod
    def from_config(cls, config) -> 'EnKFAlgorithm':
        return cls(
            ndepths=config.ndepths,
            solve_tolerance=config.da_setup.solve_tolerance,
            observation_uncertainty=config.uncertainty.observation,
            clip_perturbed=not config.da_setup.log_transform_wq,
        )

    def perturb_observations(
        self,
        operator: ProfileObservationOperator,
        n_members: int,
        rng: np.random.Generator,
    ) -> np.ndarray:
        """Draw one perturbed observation vector per member.

        Returns:
            Perturbed observations, shape (n_obs, n_members).
        """
        R = operator.R(self.observation_uncertainty)
        d = rng.multivariate_normal(operator.zt, R, size=n_members).T
        d = d.reshape(operator.n_obs, n_members)
        if self.clip_perturbed:
            non_primary = operator.z_index >= self.ndepths
            d[non_primary] = np.maximum(d[non_primary], 0.0)
        return d

    def kalman_gain(
        self,
        P: np.ndarray,
        H: np.ndarray,
        R: np.ndarray,
        P_pars: Optional[np.ndarray] = None,
    ) -> Tuple[np.ndarray, Optional[np.ndarray], bool]:
        """Compute K = P H^T (H P H^T + R)^-1 (and the parameter analog).

        Solved as a linear system; a singular or ill-conditioned innovation
        covariance falls back to a tolerance-bounded least-squares solve.

        Returns:
            (K, K_pars, degenerate)
        """
        S = H @ P @ H.T + R
        PHt = P @ H.T
        if P_pars is not None:
            PHt = np.vstack([PHt, P_pars @ H.T])

        degenerate = False
        try:
            with warnings.catch_warnings():
                warnings.simplefilter('error', scipy.linalg.LinAlgWarning)
                gain = scipy.linalg.solve(S.T, PHt.T).T
        except (np.linalg.LinAlgError, scipy.linalg.LinAlgWarning) as e:
            degenerate = True
            logger.warning(
                "Innovation covariance is near-singular (%s); using least-squares solve "
                "with tolerance %g", e, self.solve_tolerance,
            )
            warnings.warn(
                "Near-singular innovation covariance in Kalman gain solve",
                NumericalDegeneracyWarning,
                stacklevel=2,
            )
            gain = scipy.linalg.lstsq(S.T, PHt.T, cond=self.solve_tolerance)[0].T

        n_state = P.shape[0]
        K = gain[:n_state]
        K_pars = gain[n_state:] if P_pars is not None else None
        return K, K_pars, degenerate

    def analyze(
        self,
        x_matrix: np.ndarray,
        operator: ProfileObservationOperator,
        estimate: CovarianceEstimate,
        rng: np.random.Generator,
        pars_matrix: Optional[np.ndarray] = None,
    ) -> EnKFUpdate:
        """Perform the EnKF analysis (update) step.

        Args:
            x_matrix: Forecast ensemble, shape (n_state, n_members).
            operator: Observation operator of the step.
            estimate: Covariance estimate of ``x_matrix``.
            rng: Random generator of the run.
            pars_matrix: Parameter ensemble, shape (npars, n_members), or
                None when parameters are not updated.

        Returns:
            EnKFUpdate with the analysis ensembles.
        """
        n_state, n_members = x_matrix.shape
        H = operator.get_matrix(n_state)
        if estimate.P.shape != (n_state, n_state):
            raise DimensionMismatchError(
                f"Covariance has shape {estimate.P.shape}, expected {(n_state, n_state)}"
            )

        d = self.perturb_observations(operator, n_members, rng)
        R = operator.R(self.observation_uncertainty)
        P_pars = estimate.P_pars if pars_matrix is not None else None
        K, K_pars, degenerate = self.kalman_gain(estimate.P, H, R, P_pars)

        # Innovation per member
        innovation = d - H @ x_matrix
        x_a = x_matrix + K @ innovation
        pars_a = None
        if pars_matrix is not None:
            pars_a = pars_matrix + K_pars @ innovation

        return EnKFUpdate(
            x=x_a, pars=pars_a, K=K, K_pars=K_pars,
            perturbed_obs=d, degenerate=degenerate,
        )
