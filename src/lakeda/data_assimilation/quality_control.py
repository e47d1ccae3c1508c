# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Quality control of a finalized timestep.

Non-primary (biogeochemical) states are concentrations and cannot be
negative; calibrated parameters must stay inside their configured bounds.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


def clip_negative_non_primary(states: np.ndarray) -> int:
    """Clip negative non-primary states to zero in place.

    Args:
        states: Array whose first axis is the state index, e.g.
            (nstates, ndepths, nmembers). State 0 is the primary state and
            is never clipped. Missing (NaN) entries are left untouched.

    Returns:
        Number of entries that were clipped.
    """
    if states.shape[0] < 2:
        return 0
    non_primary = states[1:]
    negative = non_primary < 0.0
    n_clipped = int(np.count_nonzero(negative))
    non_primary[negative] = 0.0
    return n_clipped


@dataclass
class QCReport:
    """Outcome of the quality-control gate for one step."""
    negative_states_clipped: int = 0
    parameters_clipped: int = 0

    @property
    def intervened(self) -> bool:
        return (self.negative_states_clipped + self.parameters_clipped) > 0


class QualityControlGate:
    """Clips non-primary states and parameters of the just-written step.

    Args:
        lower_bounds: Lower bound per calibrated parameter.
        upper_bounds: Upper bound per calibrated parameter.
        clip_states: Clip negative non-primary states (off when water
            quality is assimilated in log space).
    """

    def __init__(
        self,
        lower_bounds: Optional[Sequence[float]] = None,
        upper_bounds: Optional[Sequence[float]] = None,
        clip_states: bool = True,
    ):
        self.lower_bounds = np.asarray(lower_bounds if lower_bounds is not None else [], dtype=float)
        self.upper_bounds = np.asarray(upper_bounds if upper_bounds is not None else [], dtype=float)
        self.clip_states = clip_states

    @classmethod
    def from_config(cls, config) -> 'QualityControlGate':
        return cls(
            lower_bounds=[p.lower_bound for p in config.parameters],
            upper_bounds=[p.upper_bound for p in config.parameters],
            clip_states=not config.da_setup.log_transform_wq,
        )

    def apply(self, states: np.ndarray, pars: Optional[np.ndarray] = None) -> QCReport:
        """Apply QC in place.

        Args:
            states: State slice of one step, shape (nstates, ndepths, nmembers).
            pars: Parameter slice of one step, shape (npars, nmembers), or None.

        Returns:
            QCReport with the number of clipped entries.
        """
        report = QCReport()
        if self.clip_states:
            report.negative_states_clipped = clip_negative_non_primary(states)

        if pars is not None and pars.size > 0:
            lower = self.lower_bounds[:, np.newaxis]
            upper = self.upper_bounds[:, np.newaxis]
            outside = (pars < lower) | (pars > upper)
            report.parameters_clipped = int(np.count_nonzero(outside))
            np.clip(pars, lower, upper, out=pars)

        if report.intervened:
            logger.debug(
                "QC clipped %d negative states and %d parameter values",
                report.negative_states_clipped, report.parameters_clipped,
            )
        return report
