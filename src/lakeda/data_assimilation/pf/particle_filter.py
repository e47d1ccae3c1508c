# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Bootstrap particle filter analysis.

Members are weighted by the Gaussian likelihood of the observations and
resampled with replacement. Resampling is a full particle replacement:
the caller applies the returned index vector to every member-carried
array (states, parameters, auxiliary model state, diagnostics).
"""

import logging
from dataclasses import dataclass

import numpy as np
from scipy.stats import norm

from ..enkf.observation_operator import ProfileObservationOperator

logger = logging.getLogger(__name__)


def effective_sample_size(weights: np.ndarray) -> float:
    """ESS = 1 / sum(w^2) of normalized weights."""
    return float(1.0 / np.sum(np.asarray(weights) ** 2))


@dataclass
class PFUpdate:
    """Result of a particle filter analysis."""
    sample: np.ndarray
    weights: np.ndarray
    log_likelihood: np.ndarray
    ess: float


class ParticleFilter:
    """Likelihood-weighted resampling of ensemble members."""

    def log_likelihood(
        self,
        x_matrix: np.ndarray,
        operator: ProfileObservationOperator,
    ) -> np.ndarray:
        """Sum of Gaussian log densities of the observations per member.

        Args:
            x_matrix: Ensemble, shape (n_state, n_members).
            operator: Observation operator of the step.

        Returns:
            Log-likelihood per member, shape (n_members,).
        """
        projected = operator.apply(x_matrix)  # (n_obs, n_members)
        with np.errstate(divide='ignore', invalid='ignore'):
            ll = norm.logpdf(
                operator.zt[:, np.newaxis],
                loc=projected,
                scale=operator.sd[:, np.newaxis],
            ).sum(axis=0)
        return np.where(np.isnan(ll), -np.inf, ll)

    def normalized_weights(self, log_likelihood: np.ndarray) -> np.ndarray:
        """Weights proportional to exp(LL), uniform when no member has a finite likelihood."""
        log_likelihood = np.asarray(log_likelihood, dtype=float)
        finite = np.isfinite(log_likelihood)
        if not finite.any():
            logger.warning("No member has a finite likelihood; resampling with uniform weights")
            return np.full(log_likelihood.size, 1.0 / log_likelihood.size)
        shifted = np.where(finite, log_likelihood - log_likelihood[finite].max(), -np.inf)
        w = np.exp(shifted)
        return w / w.sum()

    def resample(self, weights: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        """Multinomial resampling: member indices drawn with replacement."""
        n_members = weights.size
        return rng.choice(n_members, size=n_members, replace=True, p=weights)

    def analyze(
        self,
        x_matrix: np.ndarray,
        operator: ProfileObservationOperator,
        rng: np.random.Generator,
    ) -> PFUpdate:
        ll = self.log_likelihood(x_matrix, operator)
        w = self.normalized_weights(ll)
        ess = effective_sample_size(w)
        sample = self.resample(w, rng)
        logger.info("Particle filter effective sample size: %.1f of %d", ess, w.size)
        return PFUpdate(sample=sample, weights=w, log_likelihood=ll, ess=ess)
