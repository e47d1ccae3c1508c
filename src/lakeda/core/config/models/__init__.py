# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Hierarchical configuration models for lakeda.

Configs are immutable (frozen=True) pydantic models; every field accepts
either its Python name or its uppercase alias.
"""

from .forecast_config import (
    DAMethodType,
    DASetupConfig,
    ForecastConfig,
    ModelSettings,
    ObservationConfig,
    OutputSettings,
    ParameterSpec,
    ParFitMethodType,
    RunConfig,
    StatesConfig,
    UncertaintyConfig,
)

__all__ = [
    'DAMethodType',
    'DASetupConfig',
    'ForecastConfig',
    'ModelSettings',
    'ObservationConfig',
    'OutputSettings',
    'ParameterSpec',
    'ParFitMethodType',
    'RunConfig',
    'StatesConfig',
    'UncertaintyConfig',
]
