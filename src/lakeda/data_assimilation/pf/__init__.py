# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Particle filter implementation.
"""

from .particle_filter import ParticleFilter, PFUpdate, effective_sample_size

__all__ = [
    "ParticleFilter",
    "PFUpdate",
    "effective_sample_size",
]
