# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Data assimilation configuration.

Re-exports from the core config module for convenience.
"""

from lakeda.core.config.models.forecast_config import (
    DASetupConfig,
    ForecastConfig,
    UncertaintyConfig,
)

__all__ = [
    "DASetupConfig",
    "ForecastConfig",
    "UncertaintyConfig",
]
