# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Vertical covariance localization.

Tapers the state x depth block of a covariance matrix with the
Gaspari-Cohn function of vertical separation. Columns that are not
depth-indexed (auxiliary scalars) are appended last and left untouched.
"""

from typing import Callable, Sequence

import numpy as np

from lakeda.core.exceptions import DimensionMismatchError

# (mat, modeled_depths, nstates, localization_distance, num_single_states) -> mat
Localizer = Callable[[np.ndarray, np.ndarray, int, float, int], np.ndarray]


def gaspari_cohn(r: np.ndarray) -> np.ndarray:
    """
    Gaspari-Cohn taper function for localization.
    Defined for 0 <= r <= 2, zero beyond.
    """
    r = np.abs(np.asarray(r, dtype=float))
    taper = np.zeros_like(r)

    near = r <= 1
    far = (r > 1) & (r < 2)

    rn = r[near]
    taper[near] = (((-0.25 * rn + 0.5) * rn + 0.625) * rn - 5 / 3) * rn ** 2 + 1
    rf = r[far]
    taper[far] = ((((1 / 12 * rf - 0.5) * rf + 0.625) * rf + 5 / 3) * rf - 5) * rf + 4 - 2 / (3 * rf)

    return np.maximum(taper, 0)


def localize_covariance(
    mat: np.ndarray,
    modeled_depths: Sequence[float],
    nstates: int,
    localization_distance: float,
    num_single_states: int = 0,
) -> np.ndarray:
    """Taper a covariance matrix by vertical distance.

    The taper reaches zero at ``localization_distance``.

    Args:
        mat: Covariance, shape (n, n) with n = nstates * ndepths + num_single_states.
        modeled_depths: Depth coordinate of every modeled depth.
        nstates: Number of depth-indexed states.
        localization_distance: Separation at which covariance vanishes.
        num_single_states: Trailing non-depth-indexed columns.

    Returns:
        Tapered covariance of the same shape.
    """
    depths = np.asarray(modeled_depths, dtype=float)
    n_profile = nstates * depths.size
    n = n_profile + num_single_states
    if mat.shape != (n, n):
        raise DimensionMismatchError(
            f"Covariance has shape {mat.shape}, expected {(n, n)} "
            f"for {nstates} states x {depths.size} depths + {num_single_states} single"
        )

    column_depth = np.tile(depths, nstates)
    separation = np.abs(column_depth[:, np.newaxis] - column_depth[np.newaxis, :])
    taper = gaspari_cohn(separation / (localization_distance / 2.0))

    out = np.array(mat, dtype=float)
    out[:n_profile, :n_profile] *= taper
    return out
