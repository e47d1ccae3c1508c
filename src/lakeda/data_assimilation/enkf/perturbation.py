# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Vertically correlated process noise.

Each state group receives an AR(1) noise profile along depth: adjacent
depths are correlated through ``alpha = 1 - exp(-decorr_length)`` while
different state groups are drawn independently.
"""

import logging
from typing import Sequence

import numpy as np

from lakeda.core.exceptions import DimensionMismatchError
from ..quality_control import clip_negative_non_primary

logger = logging.getLogger(__name__)


def decorrelation_alpha(vert_decorr_length: Sequence[float]) -> np.ndarray:
    """Per-group AR(1) coefficient from the vertical decorrelation length."""
    return 1.0 - np.exp(-np.asarray(vert_decorr_length, dtype=float))


class ProcessNoiseInjector:
    """Adds depth-correlated Gaussian noise to propagated ensemble members.

    Args:
        model_sd: Process noise standard deviation, shape (nstates, ndepths).
        vert_decorr_length: Vertical decorrelation length per state group.
        clip_non_primary: Clip negative non-primary states after injection
            (disabled when water quality is assimilated in log space).
    """

    def __init__(
        self,
        model_sd: np.ndarray,
        vert_decorr_length: Sequence[float],
        clip_non_primary: bool = True,
    ):
        self.model_sd = np.atleast_2d(np.asarray(model_sd, dtype=float))
        self.alpha = decorrelation_alpha(vert_decorr_length)
        if self.model_sd.shape[0] != self.alpha.shape[0]:
            raise DimensionMismatchError(
                f"model_sd has {self.model_sd.shape[0]} state groups but "
                f"{self.alpha.shape[0]} decorrelation lengths were given"
            )
        self.clip_non_primary = clip_non_primary

    @classmethod
    def from_config(cls, config, model_sd: np.ndarray) -> 'ProcessNoiseInjector':
        injector = cls(
            model_sd=model_sd,
            vert_decorr_length=config.states.vert_decorr_length,
            clip_non_primary=not config.da_setup.log_transform_wq,
        )
        if injector.model_sd.shape != (config.nstates, config.ndepths):
            raise DimensionMismatchError(
                f"model_sd has shape {injector.model_sd.shape}, "
                f"expected {(config.nstates, config.ndepths)}"
            )
        return injector

    @property
    def nstates(self) -> int:
        return self.model_sd.shape[0]

    @property
    def ndepths(self) -> int:
        return self.model_sd.shape[1]

    def sample(self, rng: np.random.Generator, enabled: bool = True) -> np.ndarray:
        """Draw one noise field q, shape (nstates, ndepths).

        With ``enabled=False`` the white noise is forced to zero and
        nothing is drawn from ``rng``.
        """
        if not enabled:
            return np.zeros_like(self.model_sd)

        q = np.zeros_like(self.model_sd)
        for s in range(self.nstates):
            w = rng.standard_normal(self.ndepths)
            w_new = np.empty(self.ndepths)
            w_new[0] = w[0]
            scale = np.sqrt(1.0 - self.alpha[s] ** 2)
            for d in range(1, self.ndepths):
                w_new[d] = self.alpha[s] * w_new[d - 1] + scale * w[d]
            q[s] = w_new * self.model_sd[s]
        return q

    def inject(
        self,
        x_star: np.ndarray,
        rng: np.random.Generator,
        enabled: bool = True,
    ) -> np.ndarray:
        """Return ``x_star + q`` for one member.

        Args:
            x_star: Propagated member states, shape (nstates, ndepths).
            rng: Random generator of the run.
            enabled: Whether process uncertainty is active this step.

        Returns:
            Noise-corrected states of the member (a new array).
        """
        x_star = np.asarray(x_star, dtype=float)
        if x_star.shape != self.model_sd.shape:
            raise DimensionMismatchError(
                f"Member state has shape {x_star.shape}, expected {self.model_sd.shape}"
            )
        x_corr = x_star + self.sample(rng, enabled)
        if self.clip_non_primary:
            clip_negative_non_primary(x_corr)
        return x_corr
