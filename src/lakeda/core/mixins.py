# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Core mixins for lakeda modules.

Provides logging and step-timing mixins that the forecast managers build upon.
"""

import logging
import time
from contextlib import contextmanager
from typing import ContextManager, Optional


class LoggingMixin:
    """
    Lazily created per-class logger.

    Managers log under ``<module>.<ClassName>`` unless a logger is injected
    through the ``logger`` setter (for instance by the caller of a run).
    """

    @property
    def logger(self) -> logging.Logger:
        if getattr(self, '_logger', None) is None:
            cls = type(self)
            self._logger = logging.getLogger(f"{cls.__module__}.{cls.__qualname__}")
        return self._logger

    @logger.setter
    def logger(self, value: logging.Logger) -> None:
        self._logger = value


class TimingMixin:
    """
    Mixin timing the phases of a forecast step.

    Logs through ``self.logger`` when the class provides one.
    """

    @contextmanager
    def time_step(
        self,
        step: int,
        nsteps: int,
        window: Optional[str] = None,
    ) -> ContextManager[None]:
        """Log the start of a timestep and its wall-clock duration.

        Args:
            step: 0-based index of the step being run.
            nsteps: Total number of steps in the run.
            window: Optional human-readable time window of the step.
        """
        start_time = time.time()
        logger = getattr(self, 'logger', logging.getLogger(__name__))
        suffix = f" : {window}" if window else ""
        logger.info("Running time step %d/%d%s", step, nsteps - 1, suffix)
        try:
            yield
        finally:
            duration = time.time() - start_time
            logger.debug("Completed time step %d in %.2f seconds", step, duration)

    @contextmanager
    def time_phase(self, phase: str) -> ContextManager[None]:
        """Time a named phase (propagation, analysis) at debug level."""
        start_time = time.time()
        logger = getattr(self, 'logger', logging.getLogger(__name__))
        try:
            yield
        finally:
            logger.debug("%s took %.3f seconds", phase, time.time() - start_time)
