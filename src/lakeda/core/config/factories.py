# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 lakeda developers

"""
Factory functions for building ForecastConfig instances.

Supports both the nested format (``da_setup: {da_method: enkf}``) and the
flat format with uppercase aliases (``DA_METHOD: enkf``). Overrides are
merged on top of the file contents before validation.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from pydantic import ValidationError as PydanticValidationError

from lakeda.core.exceptions import ConfigurationError, ConfigValidationError, lakeda_error_handler

logger = logging.getLogger(__name__)

# Top-level keys that hold sub-models (parameters is a list of sub-models)
SECTION_KEYS = (
    'run', 'model_settings', 'da_setup', 'uncertainty',
    'states', 'observations', 'output_settings',
)


def _alias_map(cls: type) -> Dict[str, Tuple[str, str]]:
    """Map every uppercase alias to its (section, field) location."""
    mapping = {}
    for section in SECTION_KEYS:
        section_cls = cls.model_fields[section].annotation
        for field_name, field in section_cls.model_fields.items():
            if field.alias:
                mapping[field.alias] = (section, field_name)
    return mapping


def _is_nested_config(config: Dict[str, Any]) -> bool:
    """Detect whether a config dict uses the nested section format."""
    return any(str(key).lower() in SECTION_KEYS for key in config)


def transform_flat_to_nested(cls: type, flat: Dict[str, Any]) -> Dict[str, Any]:
    """Transform a flat alias-keyed dict into the nested section layout.

    Unknown keys are kept at the top level (``extra='allow'``) and logged.
    """
    aliases = _alias_map(cls)
    nested: Dict[str, Any] = {}
    for key, value in flat.items():
        upper = str(key).upper()
        if upper in aliases:
            section, field_name = aliases[upper]
            nested.setdefault(section, {})[field_name] = value
        elif upper == 'PARAMETERS':
            nested['parameters'] = value
        else:
            logger.debug("Unrecognised configuration key kept as extra: %s", key)
            nested[key] = value
    return nested


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _normalize(cls: type, config: Dict[str, Any]) -> Dict[str, Any]:
    if _is_nested_config(config):
        return {
            (str(k).lower() if str(k).lower() in SECTION_KEYS + ('parameters',) else k): v
            for k, v in config.items()
        }
    return transform_flat_to_nested(cls, config)


def _format_validation_error(error: PydanticValidationError) -> str:
    lines = []
    for err in error.errors():
        location = '.'.join(str(part) for part in err.get('loc', ()))
        lines.append(f"  {location or '<root>'}: {err.get('msg')}")
    return "Invalid forecast configuration:\n" + "\n".join(lines)


def from_dict_factory(
    cls: type,
    data: Dict[str, Any],
    overrides: Optional[Dict[str, Any]] = None,
) -> 'ForecastConfig':
    """
    Build a validated configuration from a dict.

    Args:
        cls: ForecastConfig class
        data: Nested or flat configuration dict
        overrides: Optional nested or flat overrides applied last

    Returns:
        Validated ForecastConfig instance

    Raises:
        ConfigValidationError: If the configuration fails validation
    """
    nested = _normalize(cls, data or {})
    if overrides:
        nested = _deep_merge(nested, _normalize(cls, overrides))

    try:
        return cls.model_validate(nested)
    except PydanticValidationError as e:
        raise ConfigValidationError(_format_validation_error(e)) from e


def from_file_factory(
    cls: type,
    path: Path,
    overrides: Optional[Dict[str, Any]] = None,
) -> 'ForecastConfig':
    """
    Load configuration from a YAML file.

    Loading precedence (highest to lowest):
    1. Programmatic overrides
    2. Config file (YAML)
    3. Defaults from the Pydantic models

    Raises:
        ConfigurationError: If the file cannot be parsed or is invalid
        FileNotFoundError: If config file is missing
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with lakeda_error_handler(f"loading configuration file {path}", logger,
                              error_type=ConfigurationError):
        with open(path, "r") as f:
            file_config = yaml.safe_load(f) or {}

    if not isinstance(file_config, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")

    logger.debug("Loaded configuration from %s", path)
    return from_dict_factory(cls, file_config, overrides)
