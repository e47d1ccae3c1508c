# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Per-timestep assimilation flags.

Every step carries exactly one of three mutually exclusive flags. They are
exported as the three 0/1 vectors consumed by downstream reporting:
``data_assimilation_flag``, ``forecast_flag`` and ``da_qc_flag``.
"""

from enum import Enum

import numpy as np

from lakeda.core.exceptions import ValidationError


class StepFlag(Enum):
    """Outcome of a timestep."""
    ASSIMILATED = 'assimilated'
    FORECAST = 'forecast'
    PASSTHROUGH = 'passthrough'


# (data_assimilation_flag, forecast_flag, da_qc_flag)
_FLAG_VECTORS = {
    StepFlag.ASSIMILATED: (1, 0, 0),
    StepFlag.FORECAST: (0, 1, 0),
    StepFlag.PASSTHROUGH: (0, 0, 1),
}


def classify_step(step: int, forecast_start_step: int, corrected: bool) -> StepFlag:
    """Pick the flag of a step.

    Args:
        step: Step index.
        forecast_start_step: Index of the historical/forecast boundary step;
            later steps are forecast steps.
        corrected: Whether an EnKF or particle filter correction was applied.
    """
    if corrected:
        return StepFlag.ASSIMILATED
    if step > forecast_start_step:
        return StepFlag.FORECAST
    return StepFlag.PASSTHROUGH


class TimestepFlagRecorder:
    """Write-once record of the flag of every step.

    Args:
        nsteps: Number of steps in the run.
    """

    def __init__(self, nsteps: int):
        self.nsteps = nsteps
        self._flags = [None] * nsteps

    def record(self, step: int, flag: StepFlag) -> None:
        if self._flags[step] is not None:
            raise ValidationError(
                f"Timestep {step} already flagged as {self._flags[step].value}"
            )
        self._flags[step] = flag

    def ensure_complete(self) -> None:
        """Raise if any step left the loop without a flag."""
        missing = [i for i, flag in enumerate(self._flags) if flag is None]
        if missing:
            raise ValidationError(f"Timesteps without a recorded flag: {missing}")

    def _vector(self, position: int) -> np.ndarray:
        out = np.full(self.nsteps, np.nan)
        for i, flag in enumerate(self._flags):
            if flag is not None:
                out[i] = _FLAG_VECTORS[flag][position]
        return out

    @property
    def data_assimilation_flag(self) -> np.ndarray:
        return self._vector(0)

    @property
    def forecast_flag(self) -> np.ndarray:
        return self._vector(1)

    @property
    def da_qc_flag(self) -> np.ndarray:
        return self._vector(2)

    def steps_with(self, flag: StepFlag) -> list:
        return [i for i, f in enumerate(self._flags) if f is flag]
