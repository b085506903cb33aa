"""
matrixci — matrix config loader.

File: src/matrixci/config/loader.py
Last updated: 2026-10-18

Purpose
- Build the effective config from defaults, a TOML or YAML file, ``MATRIXCI_`` env vars, and
  CLI overrides, in that order of increasing precedence.

Behavior
- ``.toml`` files are parsed with ``tomllib``; ``.yml``/``.yaml`` with ``yaml.safe_load``.
- Every scalar setting of the ``meta``, ``retry``, ``execution`` and ``observability``
  sections binds to ``MATRIXCI_<SECTION>_<KEY>`` and is coerced to the type of its default.
  The ``env`` table holds user data and is never bound.
- Relative ``execution.working_dir`` and ``observability.log_dir`` resolve against the
  config file's directory.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

import yaml

from matrixci.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
)
from matrixci.constants import ENV_PREFIX, TOML_SUFFIXES, YAML_SUFFIXES

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})
_SETTINGS_SECTIONS: Final[tuple[str, ...]] = ("meta", "retry", "execution", "observability")


class ConfigLoadError(ValueError):
    """The config file could not be read or parsed, or an override could not be coerced."""


def load_config(
    config_path: str | Path,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config; CLI > env > file > defaults."""

    path = Path(config_path).expanduser().resolve()
    layers = (
        load_config_payload(path),
        _env_layer(os.environ if environ is None else environ),
        _cli_layer(cli_overrides or {}),
    )

    effective = default_config()
    for layer in layers:
        effective = merge_config(effective, layer)
    return normalize_paths(assert_valid_config(effective), base_dir=path.parent)


def load_config_payload(path: Path) -> dict[str, Any]:
    """Parse one config file, choosing the parser by suffix."""

    if not path.exists():
        raise ConfigLoadError(f"config file not found: {path}")
    suffix = path.suffix.lower()
    parser = _PARSERS.get(suffix)
    if parser is None:
        raise ConfigLoadError(
            f"unsupported config format {suffix!r}: expected .toml, .yml, or .yaml"
        )
    try:
        payload = parser(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as exc:
        kind = "YAML" if suffix in YAML_SUFFIXES else "TOML"
        raise ConfigLoadError(f"invalid {kind} in {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigLoadError(f"config root must be an object: {path}")
    return payload


def normalize_paths(config: Mapping[str, Any], *, base_dir: Path) -> dict[str, Any]:
    """Resolve the path settings of ``config`` against ``base_dir``."""

    normalized = merge_config({}, config)
    for section, key in PATH_FIELDS:
        table = normalized.get(section)
        if isinstance(table, dict) and isinstance(table.get(key), str):
            table[key] = _resolve_path(table[key], base_dir)
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(config, sort_keys=True, indent=2, ensure_ascii=False)


def env_var_name(section: str, key: str) -> str:
    return f"{ENV_PREFIX}{section}_{key}".upper()


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for section in _SETTINGS_SECTIONS:
        defaults: Mapping[str, object] = DEFAULT_CONFIG[section]
        for key, default in defaults.items():
            name = env_var_name(section, key)
            if name in environ:
                layer.setdefault(section, {})[key] = _coerce(environ[name], default, name)
    return layer


def _coerce(raw: str, default: object, name: str) -> object:
    text = raw.strip()
    if isinstance(default, bool):
        if text.lower() in _TRUTHY:
            return True
        if text.lower() in _FALSY:
            return False
        raise ConfigLoadError(f"{name} must be a boolean (true/false/1/0/yes/no/on/off)")
    if isinstance(default, (int, float)):
        try:
            return type(default)(text)
        except ValueError as exc:
            expected = "an integer" if isinstance(default, int) else "a number"
            raise ConfigLoadError(f"{name} must be {expected}, got {raw!r}") from exc
    return text


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted, value in overrides.items():
        if value is None:
            continue
        *sections, key = dotted.split(".")
        table = layer
        for section in sections:
            table = table.setdefault(section, {})
        table[key] = value
    return layer


def _resolve_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


def _parse_toml(text: str) -> object:
    return tomllib.loads(text)


def _parse_yaml(text: str) -> object:
    return yaml.safe_load(text)


_PARSERS: Final[dict[str, Callable[[str], object]]] = {
    **{suffix: _parse_toml for suffix in TOML_SUFFIXES},
    **{suffix: _parse_yaml for suffix in YAML_SUFFIXES},
}


__all__ = [
    "ConfigLoadError",
    "dump_effective_config",
    "env_var_name",
    "load_config",
    "load_config_payload",
    "normalize_paths",
]
