# src/lakeda/__init__.py
try:
    from .lakeda_version import __version__
except ImportError:
    try:
        from importlib.metadata import version, PackageNotFoundError
        __version__ = version("lakeda")
    except (ImportError, PackageNotFoundError):
        __version__ = "0.0.0"

from .core.config.models import ForecastConfig
from .data_assimilation.da_manager import DataAssimilationManager

__all__ = ["DataAssimilationManager", "ForecastConfig", "__version__"]
