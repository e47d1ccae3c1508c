# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Ensemble Kalman Filter (EnKF) implementation.
"""

from .covariance import CovarianceEstimate, CovarianceEstimator
from .enkf_algorithm import EnKFAlgorithm, EnKFUpdate
from .localization import gaspari_cohn, localize_covariance
from .observation_operator import (
    ObservationOperator,
    ObservationOperatorBuilder,
    ProfileObservationOperator,
    StateToObservationMap,
)
from .parameter_fit import ParameterFitStrategy, ParFitMethod, create_parameter_fit
from .perturbation import ProcessNoiseInjector

__all__ = [
    "CovarianceEstimate",
    "CovarianceEstimator",
    "EnKFAlgorithm",
    "EnKFUpdate",
    "gaspari_cohn",
    "localize_covariance",
    "ObservationOperator",
    "ObservationOperatorBuilder",
    "ProfileObservationOperator",
    "StateToObservationMap",
    "ParameterFitStrategy",
    "ParFitMethod",
    "create_parameter_fit",
    "ProcessNoiseInjector",
]
