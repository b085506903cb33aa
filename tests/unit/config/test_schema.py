"""
matrixci — unit tests for config schema

File: tests/unit/config/test_schema.py
Last updated: 2026-10-18

Purpose
- Validate required fields, cross-field rules, entry normalization, and structured issues.
"""

from __future__ import annotations

from typing import Any

import pytest

from matrixci.config.schema import (
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)


def _config(**overrides: object) -> dict[str, Any]:
    base = merge_config(
        default_config(),
        {
            "toolchains": ["stable", "beta"],
            "allow_failures": ["beta"],
            "stage_commands": [{"name": "test", "command": "cargo test"}],
        },
    )
    base.update(overrides)
    return base


def _issue_paths(config: object) -> list[str]:
    result = validate_config(config)
    return [issue.path for issue in result.issues]


def test_minimal_config_is_valid_and_filled_with_defaults() -> None:
    validated = assert_valid_config(_config())

    assert validated["toolchains"] == ["stable", "beta"]
    assert validated["retry"]["max_attempts"] == 5
    assert validated["execution"]["install_scope"] == "once"
    assert validated["stage_commands"] == [{"name": "test", "command": "cargo test", "env": {}}]


def test_missing_required_fields_are_reported() -> None:
    paths = _issue_paths(default_config())

    assert "toolchains" in paths
    assert "stage_commands" in paths


def test_allow_failures_must_reference_declared_toolchains() -> None:
    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(_config(allow_failures=["nightly"]))

    assert excinfo.value.issues[0].path == "allow_failures[0]"
    assert "nightly" in str(excinfo.value)


def test_empty_toolchains_and_stages_are_rejected() -> None:
    assert "toolchains" in _issue_paths(_config(toolchains=[], allow_failures=[]))
    assert "stage_commands" in _issue_paths(_config(stage_commands=[]))


def test_bare_string_setup_commands_are_named_by_position() -> None:
    validated = assert_valid_config(
        _config(
            setup_commands=[
                {"name": "fetch", "command": "curl -O sdl.tar.gz", "retry": True},
                "tar xzf sdl.tar.gz",
            ]
        )
    )

    assert validated["setup_commands"] == [
        {"name": "fetch", "command": "curl -O sdl.tar.gz", "retry": True, "env": {}},
        {"name": "setup-2", "command": "tar xzf sdl.tar.gz", "retry": False, "env": {}},
    ]


def test_duplicate_stage_names_are_rejected() -> None:
    paths = _issue_paths(
        _config(
            stage_commands=[
                {"name": "test", "command": "cargo test"},
                {"name": "test", "command": "cargo test --release"},
            ]
        )
    )

    assert paths == ["stage_commands[1].name"]


def test_stage_entries_require_name_and_command() -> None:
    paths = _issue_paths(_config(stage_commands=[{"command": "cargo test"}, {"name": "doc"}]))

    assert "stage_commands[0].name" in paths
    assert "stage_commands[1].command" in paths


def test_stage_toolchain_filter_must_reference_declared_toolchains() -> None:
    paths = _issue_paths(
        _config(
            stage_commands=[{"name": "bench", "command": "cargo bench", "toolchains": ["nightly"]}]
        )
    )

    assert paths == ["stage_commands[0].toolchains[0]"]


def test_numeric_constraints() -> None:
    config = _config()
    config["retry"] = {**config["retry"], "max_attempts": 0, "jitter_ratio": 2.0}
    config["execution"] = {**config["execution"], "max_parallel_variants": 0}

    paths = _issue_paths(config)

    assert "retry.max_attempts" in paths
    assert "retry.jitter_ratio" in paths
    assert "execution.max_parallel_variants" in paths


def test_initial_delay_cannot_exceed_max_delay() -> None:
    config = _config()
    config["retry"] = {**config["retry"], "initial_delay_seconds": 60.0}

    assert _issue_paths(config) == ["retry.initial_delay_seconds"]


def test_install_scope_and_log_level_enums() -> None:
    config = _config()
    config["execution"] = {**config["execution"], "install_scope": "sometimes"}
    config["observability"] = {**config["observability"], "log_level": "debug"}

    result = validate_config(config)

    assert [issue.path for issue in result.issues] == ["execution.install_scope"]


def test_unknown_fields_and_bad_env_names_are_rejected() -> None:
    paths = _issue_paths(_config(language="rust", env={"BAD-NAME": "1", "OK_NAME": 2}))

    assert "language" in paths
    assert "env.BAD-NAME" in paths
    assert "env.OK_NAME" not in paths


def test_schema_version_mismatch_gives_migration_guidance() -> None:
    with pytest.raises(ConfigValidationError, match="newer than supported"):
        assert_valid_config(_config(meta={"schema_version": 2}))


def test_merge_replaces_lists_and_merges_tables() -> None:
    merged = merge_config(
        {"toolchains": ["stable"], "retry": {"max_attempts": 5, "multiplier": 2.0}},
        {"toolchains": ["beta"], "retry": {"max_attempts": 2}},
    )

    assert merged == {"toolchains": ["beta"], "retry": {"max_attempts": 2, "multiplier": 2.0}}
