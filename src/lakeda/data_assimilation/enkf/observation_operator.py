# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Observation operators for the ensemble update.

Maps from the flattened model state space (state x depth, plus an optional
auxiliary scalar column) to the quantities observed at a given step.

Candidate rows follow the layout ``v * ndepths + j`` for observed variable
``v`` at depth ``j``; columns follow ``s * ndepths + j`` for state ``s``.
The auxiliary observation, when present, is the last row and column.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from lakeda.core.exceptions import DimensionMismatchError

logger = logging.getLogger(__name__)


class ObservationOperator(ABC):
    """Abstract base class for observation operators.

    The observation operator maps from the model state vector to the
    predicted observations: y_pred = H(x).
    """

    @abstractmethod
    def apply(self, state_vector: np.ndarray) -> np.ndarray:
        """Apply the observation operator to a state vector (or ensemble matrix).

        Args:
            state_vector: State vector of shape (n_state,) or ensemble
                matrix of shape (n_state, n_members).

        Returns:
            Predicted observations of shape (n_obs,) or (n_obs, n_members).
        """
        ...

    @abstractmethod
    def get_matrix(self, n_state: int) -> np.ndarray:
        """Return the explicit observation operator matrix H.

        Args:
            n_state: Total length of the state vector.

        Returns:
            H matrix of shape (n_obs, n_state).
        """
        ...


class ProfileObservationOperator(ObservationOperator):
    """Per-step operator over depth profiles, already filtered to observed rows.

    Args:
        H: Filtered operator matrix, shape (n_obs, n_state). Always 2-D.
        z_index: Candidate row index of every kept row.
        zt: Observed values of the kept rows.
        variances: Observation error variances of the kept rows.
    """

    def __init__(
        self,
        H: np.ndarray,
        z_index: np.ndarray,
        zt: np.ndarray,
        variances: np.ndarray,
    ):
        self.H = np.atleast_2d(np.asarray(H, dtype=float))
        self.z_index = np.asarray(z_index, dtype=int)
        self.zt = np.asarray(zt, dtype=float)
        self.variances = np.asarray(variances, dtype=float)
        if not (self.H.shape[0] == self.z_index.size == self.zt.size == self.variances.size):
            raise DimensionMismatchError(
                f"Operator has {self.H.shape[0]} rows but {self.z_index.size} row indices, "
                f"{self.zt.size} observations and {self.variances.size} variances"
            )

    @property
    def n_obs(self) -> int:
        return self.z_index.size

    @property
    def is_empty(self) -> bool:
        return self.n_obs == 0

    @property
    def sd(self) -> np.ndarray:
        return np.sqrt(self.variances)

    def apply(self, state_vector: np.ndarray) -> np.ndarray:
        state_vector = np.asarray(state_vector, dtype=float)
        if state_vector.shape[0] != self.H.shape[1]:
            raise DimensionMismatchError(
                f"State has {state_vector.shape[0]} rows, operator expects {self.H.shape[1]}"
            )
        return self.H @ state_vector

    def get_matrix(self, n_state: int) -> np.ndarray:
        if n_state != self.H.shape[1]:
            raise DimensionMismatchError(
                f"Operator has {self.H.shape[1]} columns, state vector has {n_state}"
            )
        return self.H

    def R(self, observation_uncertainty: bool = True) -> np.ndarray:
        """Observation error covariance, (n_obs, n_obs); zero when uncertainty is off."""
        if not observation_uncertainty:
            return np.zeros((self.n_obs, self.n_obs))
        return np.diag(self.variances)


@dataclass(frozen=True)
class StateToObservationMap:
    """Non-zero operator entries as (state, observed variable, coefficient) triples."""
    pairs: Tuple[Tuple[int, int, float], ...]

    @classmethod
    def from_lists(
        cls,
        states_to_obs: Sequence[Sequence[int]],
        states_to_obs_mapping: Sequence[Sequence[float]],
    ) -> 'StateToObservationMap':
        pairs: List[Tuple[int, int, float]] = []
        for s, (obs_vars, coefs) in enumerate(zip(states_to_obs, states_to_obs_mapping)):
            for v, coef in zip(obs_vars, coefs):
                pairs.append((s, int(v), float(coef)))
        return cls(tuple(pairs))

    @classmethod
    def from_config(cls, config) -> 'StateToObservationMap':
        return cls.from_lists(config.states.states_to_obs, config.states.states_to_obs_mapping)


class ObservationOperatorBuilder:
    """Builds the filtered observation operator of a single step.

    Args:
        state_map: State to observed-variable mapping.
        nstates: Number of assimilated states.
        ndepths: Number of modeled depths.
        obs_sd: Observation standard deviation per observed variable.
        auxiliary_sd: Standard deviation of the auxiliary scalar
            observation (Secchi depth), or None when not configured.
    """

    def __init__(
        self,
        state_map: StateToObservationMap,
        nstates: int,
        ndepths: int,
        obs_sd: Sequence[float],
        auxiliary_sd: Optional[float] = None,
    ):
        self.state_map = state_map
        self.nstates = nstates
        self.ndepths = ndepths
        self.obs_sd = np.asarray(obs_sd, dtype=float)
        self.auxiliary_sd = auxiliary_sd
        for s, v, _ in state_map.pairs:
            if s >= nstates or v >= self.obs_sd.size:
                raise DimensionMismatchError(
                    f"Mapping of state {s} to observed variable {v} is outside "
                    f"{nstates} states / {self.obs_sd.size} observed variables"
                )

    @classmethod
    def from_config(cls, config) -> 'ObservationOperatorBuilder':
        return cls(
            state_map=StateToObservationMap.from_config(config),
            nstates=config.nstates,
            ndepths=config.ndepths,
            obs_sd=config.observations.obs_sd,
            auxiliary_sd=config.observations.secchi_sd,
        )

    @property
    def n_obs_vars(self) -> int:
        return self.obs_sd.size

    def build(
        self,
        obs_step: np.ndarray,
        auxiliary_obs: Optional[float] = None,
    ) -> ProfileObservationOperator:
        """Build the operator for one step.

        Args:
            obs_step: Observations of the step, shape (n_obs_vars, ndepths),
                NaN where unobserved.
            auxiliary_obs: Auxiliary scalar observation of the step, or None.

        Returns:
            ProfileObservationOperator; empty (no rows) when nothing usable
            was observed.
        """
        obs_step = np.atleast_2d(np.asarray(obs_step, dtype=float))
        if obs_step.shape != (self.n_obs_vars, self.ndepths):
            raise DimensionMismatchError(
                f"Observations have shape {obs_step.shape}, "
                f"expected {(self.n_obs_vars, self.ndepths)}"
            )

        has_auxiliary = (
            auxiliary_obs is not None
            and self.auxiliary_sd is not None
            and np.isfinite(auxiliary_obs)
        )
        n_rows = self.n_obs_vars * self.ndepths + int(has_auxiliary)
        n_cols = self.nstates * self.ndepths + int(has_auxiliary)

        H_full = np.zeros((n_rows, n_cols))
        observed = np.isfinite(obs_step)
        for s, v, coef in self.state_map.pairs:
            for j in np.flatnonzero(observed[v]):
                H_full[v * self.ndepths + j, s * self.ndepths + j] = coef

        z_full = obs_step.reshape(-1)
        var_full = np.repeat(self.obs_sd ** 2, self.ndepths)
        if has_auxiliary:
            H_full[-1, -1] = 1.0
            z_full = np.append(z_full, auxiliary_obs)
            var_full = np.append(var_full, self.auxiliary_sd ** 2)

        z_index = np.flatnonzero(np.any(H_full != 0.0, axis=1))
        logger.debug("Observation operator keeps %d of %d candidate rows", z_index.size, n_rows)
        return ProfileObservationOperator(
            H=H_full[z_index, :].reshape(z_index.size, n_cols),
            z_index=z_index,
            zt=z_full[z_index],
            variances=var_full[z_index],
        )
