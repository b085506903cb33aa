"""Stable constants shared across matrixci planes."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
REPORT_SCHEMA_VERSION: Final[int] = 1

# Environment variable prefix for config overrides (MATRIXCI_<SECTION>_<KEY>).
ENV_PREFIX: Final[str] = "MATRIXCI_"

# Accepted config file suffixes.
TOML_SUFFIXES: Final[frozenset[str]] = frozenset({".toml"})
YAML_SUFFIXES: Final[frozenset[str]] = frozenset({".yml", ".yaml"})

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "ENV_PREFIX",
    "REPORT_SCHEMA_VERSION",
    "TOML_SUFFIXES",
    "YAML_SUFFIXES",
]
