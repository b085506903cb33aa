"""
matrixci — unit tests for the CLI router

File: tests/unit/ui/test_cli.py
Last updated: 2026-10-18

Purpose
- Validate argument parsing, command routing, and the exit-code contract using real shell
  commands as stages.

What this test file should cover
- ``validate`` prints the effective config.
- ``run`` exits 0 (green), 1 (red), 2 (config error), 3 (installer failure).
- ``--json`` emits the full report with the structured log path.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from matrixci.domain.models import PipelineRun, PipelineState, Verdict
from matrixci.main import ExitCode, cli_entrypoint
from matrixci.ui.cli import build_parser, exit_code_for, run_cli

STAGES = """
[[stage_commands]]
name = "build"
command = "echo building {toolchain}"

[[stage_commands]]
name = "test"
command = 'test "$MATRIXCI_TOOLCHAIN" != "beta"'
"""


def _write_config(tmp_path: Path, *, allow_failures: str, setup: str = "[]") -> Path:
    path = tmp_path / "matrixci.toml"
    path.write_text(
        f'toolchains = ["stable", "beta"]\n'
        f"allow_failures = {allow_failures}\n"
        f"setup_commands = {setup}\n"
        f"{STAGES}\n"
        "[observability]\n"
        'log_dir = "logs"\n',
        encoding="utf-8",
    )
    return path


def test_parser_routes_run_and_validate() -> None:
    parser = build_parser()

    run_args = parser.parse_args(["run", "matrix.toml", "--max-parallel", "2", "--json", "-v"])
    validate_args = parser.parse_args(["validate", "matrix.yml", "--no-color"])

    assert run_args.command == "run"
    assert run_args.config_path == "matrix.toml"
    assert run_args.max_parallel == 2
    assert run_args.json
    assert run_args.verbose
    assert validate_args.command == "validate"
    assert validate_args.no_color


def test_exit_code_for_each_terminal_state() -> None:
    green = PipelineRun(run_id="r", state=PipelineState.SEALED, verdict=Verdict.GREEN)
    red = PipelineRun(run_id="r", state=PipelineState.SEALED, verdict=Verdict.RED)
    install = PipelineRun(run_id="r", state=PipelineState.INSTALL_FAILED, verdict=Verdict.RED)

    assert exit_code_for(green) == ExitCode.GREEN
    assert exit_code_for(red) == ExitCode.RED
    assert exit_code_for(install) == ExitCode.INSTALL_FAILED


def test_validate_prints_effective_config(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = _write_config(tmp_path, allow_failures='["beta"]')

    exit_code = run_cli(["validate", str(path)])

    assert exit_code == ExitCode.GREEN
    payload = json.loads(capsys.readouterr().out)
    assert payload["toolchains"] == ["stable", "beta"]
    assert payload["retry"]["max_attempts"] == 5


def test_run_with_allowed_beta_failure_is_green(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = _write_config(tmp_path, allow_failures='["beta"]', setup='["echo fetched"]')

    exit_code = run_cli(["run", str(path), "--no-color"])

    output = capsys.readouterr().out
    assert exit_code == ExitCode.GREEN
    assert "OK    setup-1 (attempts=1)" in output
    assert "== beta #1 (allowed to fail): failed_but_allowed" in output
    assert "Verdict: GREEN" in output
    assert f"Log: {(tmp_path / 'logs').resolve().as_posix()}/run-" in output


def test_run_with_blocking_failure_is_red(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = _write_config(tmp_path, allow_failures="[]")

    exit_code = run_cli(["run", str(path), "--no-color"])

    assert exit_code == ExitCode.RED
    assert "Verdict: RED" in capsys.readouterr().out


def test_run_json_report(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _write_config(tmp_path, allow_failures='["beta"]')

    exit_code = run_cli(["run", str(path), "--json", "--max-parallel", "2"])

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == ExitCode.GREEN
    assert payload["command"] == "run"
    assert payload["exit_code"] == 0
    assert payload["verdict"] == "green"
    assert [item["variant"]["toolchain"] for item in payload["variants"]] == ["stable", "beta"]
    assert payload["variants"][0]["stages"][0]["stdout"] == "building stable\n"
    assert Path(payload["log_path"]).is_file()


def test_installer_failure_exits_three(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = _write_config(tmp_path, allow_failures='["beta"]', setup='["false"]')

    exit_code = run_cli(["run", str(path), "--no-color"])

    output = capsys.readouterr().out
    assert exit_code == ExitCode.INSTALL_FAILED
    assert "installer failed at setup-1" in output
    assert "==" not in output


def test_config_errors_exit_two(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _write_config(tmp_path, allow_failures='["nightly"]')

    assert run_cli(["run", str(path)]) == ExitCode.CONFIG_ERROR
    assert "allow_failures[0]" in capsys.readouterr().err

    assert run_cli(["validate", str(tmp_path / "missing.toml")]) == ExitCode.CONFIG_ERROR
    assert "config file not found" in capsys.readouterr().err

    valid = _write_config(tmp_path, allow_failures="[]")
    assert run_cli(["run", str(valid), "--max-parallel", "0"]) == ExitCode.CONFIG_ERROR
    assert "execution.max_parallel_variants" in capsys.readouterr().err


def test_entrypoint_normalizes_usage_errors(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint([]) == ExitCode.CONFIG_ERROR
    assert cli_entrypoint(["deploy", "matrix.toml"]) == ExitCode.CONFIG_ERROR
    assert "usage:" in capsys.readouterr().err
    assert cli_entrypoint(["--help"]) == ExitCode.GREEN


def test_entrypoint_reports_unexpected_errors_as_internal(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    path = _write_config(tmp_path, allow_failures="[]")

    async def exploding_pipeline(*args: object, **kwargs: object) -> PipelineRun:
        raise RuntimeError("controller bug")

    monkeypatch.setattr("matrixci.ui.cli.run_pipeline", exploding_pipeline)

    assert cli_entrypoint(["run", str(path)]) == ExitCode.INTERNAL_ERROR
    assert "RuntimeError: controller bug" in capsys.readouterr().err
