"""
Root conftest.py - Session-scoped fixtures shared across all tests.
"""

from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).parent.resolve()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: Long-running ensemble experiments")


@pytest.fixture(scope="session")
def tests_dir():
    """Path to tests directory."""
    return TESTS_DIR
