"""
matrixci config package public API.

File: src/matrixci/config/__init__.py
Last updated: 2026-10-18

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading a TOML or YAML matrix config + ``MATRIXCI_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from matrixci.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_var_name,
    load_config,
    load_config_payload,
    normalize_paths,
)
from matrixci.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "env_var_name",
    "load_config",
    "load_config_payload",
    "merge_config",
    "normalize_paths",
    "validate_config",
]
