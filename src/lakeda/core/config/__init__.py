# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""Configuration loading and models."""

from .factories import from_dict_factory, from_file_factory, transform_flat_to_nested
from .models import ForecastConfig

__all__ = [
    'ForecastConfig',
    'from_dict_factory',
    'from_file_factory',
    'transform_flat_to_nested',
]
