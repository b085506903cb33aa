"""
matrixci — matrix config schema and validation.

File: src/matrixci/config/schema.py
Last updated: 2026-10-18

Purpose
- Defaults for every optional setting and strict validation of a merged config payload.

Rules
- ``toolchains`` is a non-empty list of names; ``stage_commands`` a non-empty list of tables.
- ``allow_failures`` and per-stage ``toolchains`` filters may only name declared toolchains.
- Setup and stage names are unique; a bare-string setup entry is named ``setup-<n>``.
- Scalar settings of ``retry``, ``execution`` and ``observability`` are typed and bounded by
  the ``SETTINGS`` table. Unknown keys anywhere are errors.
- Every issue carries a dotted path (``stage_commands[1].name``) so all of them can be
  reported at once.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final

from matrixci.constants import CONFIG_SCHEMA_VERSION

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

# Settings resolved against the config file's directory.
PATH_FIELDS: Final[tuple[tuple[str, str], ...]] = (
    ("execution", "working_dir"),
    ("observability", "log_dir"),
)

_ENV_NAME: Final[re.Pattern[str]] = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_ROOT_KEYS: Final[frozenset[str]] = frozenset(
    {
        "meta",
        "toolchains",
        "allow_failures",
        "setup_commands",
        "stage_commands",
        "retry",
        "execution",
        "observability",
        "env",
    }
)
_COMMAND_KEYS: Final[frozenset[str]] = frozenset(
    {"name", "command", "cwd", "timeout_seconds", "env"}
)
_SETUP_KEYS: Final[frozenset[str]] = _COMMAND_KEYS | {"retry"}
_STAGE_KEYS: Final[frozenset[str]] = _COMMAND_KEYS | {"toolchains"}


@dataclass(frozen=True, slots=True)
class Setting:
    """Type and bounds of one scalar setting."""

    kind: type
    minimum: float | None = None
    maximum: float | None = None
    positive: bool = False
    choices: tuple[str, ...] = ()


SETTINGS: Final[dict[str, dict[str, Setting]]] = {
    "retry": {
        "max_attempts": Setting(int, minimum=1),
        "initial_delay_seconds": Setting(float, minimum=0.0),
        "multiplier": Setting(float, minimum=1.0),
        "max_delay_seconds": Setting(float, minimum=0.0),
        "jitter_ratio": Setting(float, minimum=0.0, maximum=1.0),
        "attempt_timeout_seconds": Setting(float, positive=True),
    },
    "execution": {
        "max_parallel_variants": Setting(int, minimum=1),
        "default_timeout_seconds": Setting(float, positive=True),
        "install_scope": Setting(str, choices=("once", "per_variant")),
        "working_dir": Setting(str),
    },
    "observability": {
        "log_level": Setting(str, choices=("DEBUG", "INFO", "WARNING", "ERROR")),
        "log_dir": Setting(str),
        "redact_secrets": Setting(bool),
    },
}

DEFAULT_CONFIG: Final[dict[str, Any]] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "allow_failures": [],
    "setup_commands": [],
    "retry": {
        "max_attempts": 5,
        "initial_delay_seconds": 1.0,
        "multiplier": 2.0,
        "max_delay_seconds": 30.0,
        "jitter_ratio": 0.0,
        "attempt_timeout_seconds": 300.0,
    },
    "execution": {
        "max_parallel_variants": 1,
        "default_timeout_seconds": 3600.0,
        "install_scope": "once",
        "working_dir": ".",
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "redact_secrets": True,
    },
    "env": {},
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Normalized config, or ``None`` with the issues that prevented it."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None


class ConfigValidationError(ValueError):
    """Raised by ``assert_valid_config``; the message lists every issue."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        listing = "\n".join(f"- {issue.path}: {issue.message}" for issue in self.issues)
        super().__init__(f"invalid config:\n{listing or '- unknown validation failure'}")


class _Issues(list[ConfigValidationIssue]):
    def add(self, path: str, message: str) -> None:
        self.append(ConfigValidationIssue(path=path, message=message))


def default_config() -> dict[str, Any]:
    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``. Tables merge, lists are replaced."""

    merged = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade the matrix config to the current schema"
        )
    return (
        f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
        "upgrade the matrixci runtime"
    )


def validate_config(config: object) -> ConfigValidationResult:
    issues = _Issues()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {type(config).__name__}")
        return ConfigValidationResult(config=None, issues=tuple(issues))

    normalized = _check_root(config, issues)
    return ConfigValidationResult(config=None if issues else normalized, issues=tuple(issues))


def assert_valid_config(config: object) -> dict[str, Any]:
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _check_root(payload: Mapping[str, Any], issues: _Issues) -> dict[str, Any]:
    _check_keys(payload, _ROOT_KEYS, "", issues, required=("toolchains", "stage_commands"))
    out: dict[str, Any] = {}

    meta = payload.get("meta", {})
    if not isinstance(meta, Mapping):
        issues.add("meta", f"expected table, got {type(meta).__name__}")
        meta = {}
    _check_keys(meta, {"schema_version"}, "meta", issues)
    version = meta.get("schema_version", ConfigSchemaVersion)
    if isinstance(version, bool) or not isinstance(version, int):
        issues.add("meta.schema_version", f"expected integer, got {type(version).__name__}")
    elif version != ConfigSchemaVersion:
        issues.add("meta.schema_version", migration_guidance(version))
    out["meta"] = {"schema_version": version}

    toolchains = _names(payload.get("toolchains"), "toolchains", issues, non_empty=True)
    if toolchains is not None:
        out["toolchains"] = toolchains

    allow_failures = _names(payload.get("allow_failures", []), "allow_failures", issues)
    if allow_failures is not None:
        _check_declared(allow_failures, toolchains, "allow_failures", issues)
        out["allow_failures"] = allow_failures

    out["setup_commands"] = _check_setup(payload.get("setup_commands", []), issues)
    if "stage_commands" in payload:
        out["stage_commands"] = _check_stages(payload["stage_commands"], toolchains, issues)

    for section, settings in SETTINGS.items():
        out[section] = _check_section(payload.get(section), section, settings, issues)
    retry = out["retry"]
    if retry.get("initial_delay_seconds", 0.0) > retry.get("max_delay_seconds", math.inf):
        issues.add("retry.initial_delay_seconds", "must be <= max_delay_seconds")

    out["env"] = _env_table(payload.get("env", {}), "env", issues)
    return out


def _check_section(
    payload: object,
    section: str,
    settings: Mapping[str, Setting],
    issues: _Issues,
) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        issues.add(section, f"expected table, got {type(payload).__name__}")
        return {}
    _check_keys(payload, settings.keys(), section, issues, required=tuple(settings))
    out: dict[str, Any] = {}
    for key, setting in settings.items():
        if key in payload:
            value = _check_setting(payload[key], setting, f"{section}.{key}", issues)
            if value is not None:
                out[key] = value
    return out


def _check_setting(value: object, setting: Setting, path: str, issues: _Issues) -> object:
    """Return the normalized value, or ``None`` after recording an issue."""

    if setting.kind is bool:
        if isinstance(value, bool):
            return value
        issues.add(path, f"expected boolean, got {type(value).__name__}")
        return None

    if setting.kind is str:
        if not isinstance(value, str) or not value.strip():
            issues.add(path, "expected a non-empty string")
            return None
        text = value.strip()
        if setting.choices:
            # Choice settings are case-insensitive when every choice is upper case.
            if all(choice.isupper() for choice in setting.choices):
                text = text.upper()
            if text not in setting.choices:
                expected = ", ".join(setting.choices)
                issues.add(path, f"invalid value {text!r}; expected one of: {expected}")
                return None
        return text

    numeric = (int,) if setting.kind is int else (int, float)
    if isinstance(value, bool) or not isinstance(value, numeric):
        kind = "integer" if setting.kind is int else "number"
        issues.add(path, f"expected {kind}, got {type(value).__name__}")
        return None
    number = setting.kind(value)
    if not math.isfinite(number):
        issues.add(path, "must be finite")
    elif setting.positive and number <= 0:
        issues.add(path, "must be > 0")
    elif setting.minimum is not None and number < setting.minimum:
        issues.add(path, f"must be >= {setting.minimum:g}")
    elif setting.maximum is not None and number > setting.maximum:
        issues.add(path, f"must be <= {setting.maximum:g}")
    else:
        return number
    return None


def _check_setup(value: object, issues: _Issues) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        issues.add("setup_commands", f"expected array, got {type(value).__name__}")
        return []

    steps: list[dict[str, Any]] = []
    for index, raw in enumerate(value):
        path = f"setup_commands[{index}]"
        default_name = f"setup-{index + 1}"
        if isinstance(raw, str):
            raw = {"command": raw}
        step = _check_command(raw, path, _SETUP_KEYS, issues, default_name=default_name)
        if step is None:
            steps.append({})
            continue
        retry = raw.get("retry", False)
        if not isinstance(retry, bool):
            issues.add(f"{path}.retry", f"expected boolean, got {type(retry).__name__}")
        step["retry"] = retry is True
        steps.append(step)

    _check_unique_names(steps, "setup_commands", issues)
    return steps


def _check_stages(
    value: object,
    toolchains: Sequence[str] | None,
    issues: _Issues,
) -> list[dict[str, Any]]:
    if not isinstance(value, list) or not value:
        issues.add("stage_commands", "expected a non-empty array of stage tables")
        return []

    stages: list[dict[str, Any]] = []
    for index, raw in enumerate(value):
        path = f"stage_commands[{index}]"
        stage = _check_command(raw, path, _STAGE_KEYS, issues, default_name=None)
        if stage is None:
            stages.append({})
            continue
        if "toolchains" in raw:
            selected = _names(raw["toolchains"], f"{path}.toolchains", issues, non_empty=True)
            if selected is not None:
                _check_declared(selected, toolchains, f"{path}.toolchains", issues)
                stage["toolchains"] = selected
        stages.append(stage)

    _check_unique_names(stages, "stage_commands", issues)
    return stages


def _check_command(
    raw: object,
    path: str,
    allowed: frozenset[str],
    issues: _Issues,
    *,
    default_name: str | None,
) -> dict[str, Any] | None:
    if not isinstance(raw, Mapping):
        issues.add(path, f"expected table, got {type(raw).__name__}")
        return None
    required = ("command",) if default_name is not None else ("name", "command")
    _check_keys(raw, allowed, path, issues, required=required)

    entry: dict[str, Any] = {}
    name = raw.get("name", default_name)
    if name is not None:
        entry["name"] = _text(name, f"{path}.name", issues)
    if "command" in raw:
        entry["command"] = _text(raw["command"], f"{path}.command", issues)
    if "cwd" in raw:
        entry["cwd"] = _text(raw["cwd"], f"{path}.cwd", issues)
    if "timeout_seconds" in raw:
        entry["timeout_seconds"] = _check_setting(
            raw["timeout_seconds"], Setting(float, positive=True), f"{path}.timeout_seconds", issues
        )
    entry["env"] = _env_table(raw.get("env", {}), f"{path}.env", issues)
    return entry


def _check_unique_names(entries: Sequence[Mapping[str, Any]], path: str, issues: _Issues) -> None:
    first_seen: dict[str, int] = {}
    for index, entry in enumerate(entries):
        name = entry.get("name")
        if not isinstance(name, str):
            continue
        if name in first_seen:
            issues.add(
                f"{path}[{index}].name",
                f"duplicate name {name!r} (first used at {path}[{first_seen[name]}])",
            )
        else:
            first_seen[name] = index


def _check_declared(
    names: Sequence[str],
    toolchains: Sequence[str] | None,
    path: str,
    issues: _Issues,
) -> None:
    if toolchains is None:
        return
    for index, name in enumerate(names):
        if name not in toolchains:
            issues.add(f"{path}[{index}]", f"toolchain {name!r} is not declared in toolchains")


def _check_keys(
    payload: Mapping[str, Any],
    allowed: Collection[str],
    path: str,
    issues: _Issues,
    *,
    required: Sequence[str] = (),
) -> None:
    prefix = f"{path}." if path else ""
    for key in sorted(map(str, payload)):
        if key not in allowed:
            issues.add(f"{prefix}{key}", "unknown field")
    for key in required:
        if key not in payload:
            issues.add(f"{prefix}{key}", "missing required field")


def _names(
    value: object,
    path: str,
    issues: _Issues,
    *,
    non_empty: bool = False,
) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list):
        issues.add(path, f"expected array of strings, got {type(value).__name__}")
        return None
    if non_empty and not value:
        issues.add(path, "must not be empty")
        return None
    return [_text(item, f"{path}[{index}]", issues) for index, item in enumerate(value)]


def _text(value: object, path: str, issues: _Issues) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    issues.add(path, "expected a non-empty string")
    return ""


def _env_table(value: object, path: str, issues: _Issues) -> dict[str, str]:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected table, got {type(value).__name__}")
        return {}
    env: dict[str, str] = {}
    for key, item in sorted(value.items()):
        if not _ENV_NAME.fullmatch(str(key)):
            issues.add(f"{path}.{key}", "must be an env var name (example: RUSTFLAGS)")
        elif isinstance(item, bool) or not isinstance(item, (str, int, float)):
            issues.add(f"{path}.{key}", f"expected string, got {type(item).__name__}")
        else:
            env[str(key)] = str(item)
    return env


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "SETTINGS",
    "Setting",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
