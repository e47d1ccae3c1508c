# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Ensemble diagnostics.

Per-step parameter summary logged by the forecast loop, and verification
scores of an ensemble against observed profiles (rank histogram, CRPS,
spread-error ratio).
"""

import logging
from typing import Dict, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


def parameter_summary(
    pars: np.ndarray,
    names: Sequence[str],
) -> Dict[str, Tuple[float, float]]:
    """Ensemble mean and standard deviation of every parameter.

    Args:
        pars: Parameter ensemble of one step, shape (npars, n_members).
        names: Parameter names.

    Returns:
        {name: (mean, sd)}; sd is NaN for a single member.
    """
    n_members = pars.shape[1]
    mean = pars.mean(axis=1)
    sd = pars.std(axis=1, ddof=1) if n_members > 1 else np.full(pars.shape[0], np.nan)
    return {name: (float(m), float(s)) for name, m, s in zip(names, mean, sd)}


def format_parameter_summary(summary: Dict[str, Tuple[float, float]]) -> str:
    return ", ".join(f"{name}: mean {mean:.4f} sd {sd:.4f}" for name, (mean, sd) in summary.items())


def _valid_pairs(ensemble_predictions: np.ndarray, observations: np.ndarray):
    ensemble_predictions = np.asarray(ensemble_predictions, dtype=float)
    observations = np.asarray(observations, dtype=float)
    valid = np.isfinite(observations) & np.all(np.isfinite(ensemble_predictions), axis=1)
    return ensemble_predictions[valid], observations[valid]


def rank_histogram(
    ensemble_predictions: np.ndarray,
    observations: np.ndarray,
) -> np.ndarray:
    """Count the rank of each observation within its sorted ensemble.

    Flat counts mean the observations are statistically indistinguishable
    from members; U shapes indicate too little spread.

    Args:
        ensemble_predictions: Shape (n_samples, n_members).
        observations: Shape (n_samples,).

    Returns:
        Counts per rank, shape (n_members + 1,).
    """
    n_members = np.asarray(ensemble_predictions).shape[1]
    preds, obs = _valid_pairs(ensemble_predictions, observations)
    ranks = np.array(
        [np.searchsorted(np.sort(p), o) for p, o in zip(preds, obs)],
        dtype=int,
    )
    return np.bincount(ranks, minlength=n_members + 1)


def crps(
    ensemble_predictions: np.ndarray,
    observations: np.ndarray,
) -> float:
    """Mean Continuous Ranked Probability Score of an ensemble.

    Uses the energy form ``E|X - y| - 0.5 E|X - X'|``. Lower is better.

    Args:
        ensemble_predictions: Shape (n_samples, n_members).
        observations: Shape (n_samples,).
    """
    preds, obs = _valid_pairs(ensemble_predictions, observations)
    if obs.size == 0:
        return float('nan')
    n_members = preds.shape[1]
    abs_diff = np.mean(np.abs(preds - obs[:, np.newaxis]), axis=1)
    pairwise = np.abs(preds[:, :, np.newaxis] - preds[:, np.newaxis, :]).sum(axis=(1, 2))
    spread = pairwise / (n_members * (n_members - 1)) if n_members > 1 else np.zeros(obs.size)
    return float(np.mean(abs_diff - 0.5 * spread))


def spread_error_ratio(
    ensemble_predictions: np.ndarray,
    observations: np.ndarray,
) -> float:
    """Mean member spread divided by the RMSE of the ensemble mean.

    Values well below 1 flag an under-dispersive (overconfident) ensemble.
    Infinite when the ensemble mean matches every observation.
    """
    preds, obs = _valid_pairs(ensemble_predictions, observations)
    if obs.size == 0:
        return float('nan')

    spread = np.std(preds, axis=1).mean()
    rmse = np.sqrt(np.mean((np.mean(preds, axis=1) - obs) ** 2))

    if rmse < 1e-12:
        return float('inf')

    return float(spread / rmse)


def verification_pairs(
    x: np.ndarray,
    obs: np.ndarray,
    state: int,
    obs_var: int,
    steps: Sequence[int],
) -> Tuple[np.ndarray, np.ndarray]:
    """Collect (ensemble, observation) pairs of one state against one observed variable.

    Args:
        x: State array (nsteps, nstates, ndepths, n_members).
        obs: Observations (n_obs_vars, nsteps, ndepths).
        state: State index.
        obs_var: Observed variable index.
        steps: Steps to include.

    Returns:
        (ensemble_predictions (n, n_members), observations (n,)) over every
        observed depth of the selected steps.
    """
    preds = []
    values = []
    for t in steps:
        for j in np.flatnonzero(np.isfinite(obs[obs_var, t])):
            preds.append(x[t, state, j])
            values.append(obs[obs_var, t, j])
    n_members = x.shape[-1]
    return np.array(preds).reshape(-1, n_members), np.array(values, dtype=float)
