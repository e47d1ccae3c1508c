"""Tests for the logging and timing mixins."""

import logging

import pytest

from lakeda.core.mixins import LoggingMixin, TimingMixin


class _Manager(LoggingMixin, TimingMixin):
    pass


def test_default_logger_named_after_class():
    manager = _Manager()
    assert manager.logger.name.endswith("._Manager")
    assert manager.logger is manager.logger


def test_logger_override():
    manager = _Manager()
    custom = logging.getLogger("lakeda.custom")
    manager.logger = custom
    assert manager.logger is custom


def test_time_step_logs_window(caplog):
    manager = _Manager()
    with caplog.at_level(logging.DEBUG):
        with manager.time_step(2, 5, "2024-01-02 00:00 - 2024-01-03 00:00"):
            pass

    assert "Running time step 2/4 : 2024-01-02 00:00 - 2024-01-03 00:00" in caplog.text
    assert "Completed time step 2" in caplog.text


def test_time_phase_logs_on_error(caplog):
    manager = _Manager()
    with caplog.at_level(logging.DEBUG):
        with pytest.raises(RuntimeError):
            with manager.time_phase("Analysis"):
                raise RuntimeError("boom")

    assert "Analysis took" in caplog.text
