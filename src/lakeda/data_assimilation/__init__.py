# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Ensemble data assimilation for lake forecasting.

Provides the EnKF and particle filter update engine, the ensemble store,
quality control and per-step flags.
"""

from .config import DASetupConfig, ForecastConfig, UncertaintyConfig
from .da_manager import DataAssimilationManager
from .ensemble_manager import (
    EnsembleManager,
    ForcingFiles,
    ProcessModel,
    PropagationRequest,
    PropagationResult,
)
from .flags import StepFlag, TimestepFlagRecorder
from .output import DAOutputManager
from .store import AuxiliaryState, EnsembleStore, ForecastResult

__all__ = [
    "AuxiliaryState",
    "DAOutputManager",
    "DASetupConfig",
    "DataAssimilationManager",
    "EnsembleManager",
    "EnsembleStore",
    "ForcingFiles",
    "ForecastConfig",
    "ForecastResult",
    "ProcessModel",
    "PropagationRequest",
    "PropagationResult",
    "StepFlag",
    "TimestepFlagRecorder",
    "UncertaintyConfig",
]
