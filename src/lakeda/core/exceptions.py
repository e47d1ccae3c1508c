# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Custom exception hierarchy for lakeda.

This module defines a hierarchy of exceptions that provide clear, specific
error types for the failure modes of the ensemble forecasting loop.
"""

import logging
from contextlib import contextmanager
from typing import Optional, TypeVar


class LakeDAError(Exception):
    """
    Base exception for all lakeda-specific errors.

    All custom exceptions in lakeda should inherit from this class.
    This allows catching all lakeda errors with a single except clause.
    """
    pass


class ConfigurationError(LakeDAError):
    """
    Configuration-related errors.

    Raised when:
    - The assimilation method or parameter-fit method is not supported
    - Configuration values are invalid or inconsistent with each other
    - Configuration file cannot be loaded or parsed
    """
    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration validation failures.

    Raised when:
    - Configuration fails schema validation
    - Cross-field validation constraints are violated
    """
    pass


class DimensionMismatchError(LakeDAError):
    """
    Array shape disagreements.

    Raised when:
    - The observation operator and the filtered observation vector disagree
    - Initial conditions or observations do not match the configured
      states, depths, parameters or ensemble size
    """
    pass


class MemberPropagationError(LakeDAError):
    """
    Process model failure for one ensemble member.

    Raised when a member's propagation fails and the failure policy does
    not allow the member to be isolated, or when every member failed.

    Attributes:
        step: Timestep being propagated.
        member: Ensemble member index (None when every member failed).
    """

    def __init__(self, message: str, step: Optional[int] = None, member: Optional[int] = None):
        super().__init__(message)
        self.step = step
        self.member = member


class ValidationError(LakeDAError):
    """
    Data or parameter validation failures.

    Raised when:
    - Input data fails validation checks
    - Timestep flags are recorded twice or left unset
    """
    pass


class NumericalDegeneracyWarning(UserWarning):
    """
    Near-singular innovation covariance in the Kalman-gain solve.

    The solve recovers with a tolerance-bounded least-squares solution;
    the warning signals ill-conditioned observation uncertainty or
    ensemble covariance.
    """
    pass


# =============================================================================
# Validation Helpers
# =============================================================================

T = TypeVar('T')


def require(condition: bool, message: str, error_type: type = None) -> None:
    """
    Raise ``error_type`` (ValidationError by default) with ``message`` unless ``condition`` holds.

    Used instead of ``assert`` so shape and input checks survive ``python -O``.

    Example:
        >>> require(H.shape[0] == len(zt), "H rows must match z", DimensionMismatchError)
    """
    if not condition:
        raise (error_type or ValidationError)(message)


def require_not_none(value: Optional[T], name: str, error_type: type = None) -> T:
    """Return ``value``, raising ``error_type`` (ValidationError by default) when it is None."""
    if value is None:
        raise (error_type or ValidationError)(f"{name} must not be None")
    return value


@contextmanager
def lakeda_error_handler(
    operation: str,
    logger: Optional[logging.Logger] = None,
    reraise: bool = True,
    error_type: type = LakeDAError
):
    """
    Log failures of ``operation`` and translate foreign exceptions.

    lakeda errors pass through unchanged; any other exception is re-raised
    as ``error_type`` chained to the original. With ``reraise=False`` the
    failure is only logged.

    Example:
        >>> with lakeda_error_handler("loading configuration", logger, error_type=ConfigurationError):
        ...     raw = yaml.safe_load(f)
    """
    try:
        yield
    except LakeDAError:
        if logger:
            logger.error("%s failed", operation, exc_info=True)
        if reraise:
            raise
    except Exception as e:
        if logger:
            logger.error("%s failed: %s", operation, e, exc_info=True)
        if reraise:
            raise error_type(f"Failed during {operation}: {e}") from e


__all__ = [
    'LakeDAError',
    'ConfigurationError',
    'ConfigValidationError',
    'DimensionMismatchError',
    'MemberPropagationError',
    'ValidationError',
    'NumericalDegeneracyWarning',
    'require',
    'require_not_none',
    'lakeda_error_handler',
]
