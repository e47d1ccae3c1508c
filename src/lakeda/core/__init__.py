# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Core infrastructure shared by the lakeda modules: exceptions,
logging/timing mixins and configuration models.
"""
