"""
matrixci — unit tests for domain models

File: tests/unit/domain/test_models.py
Last updated: 2026-10-18

Purpose
- Validate value-type invariants: prefix-only stage sequences, terminal status rules, and
  deterministic exports.
"""

from __future__ import annotations

import pytest

from matrixci.domain.models import (
    InstallAttempt,
    InstallReport,
    InstallStepResult,
    PipelineRun,
    PipelineState,
    Stage,
    StageResult,
    StageStatus,
    ToolchainVariant,
    VariantRun,
    VariantStatus,
    Verdict,
)


def _ok(name: str) -> StageResult:
    return StageResult(stage_name=name, status=StageStatus.SUCCESS, exit_code=0)


def _failed(name: str) -> StageResult:
    return StageResult(stage_name=name, status=StageStatus.FAILURE, exit_code=1)


def test_variant_id_distinguishes_duplicate_toolchains() -> None:
    first = ToolchainVariant(toolchain="stable", index=0)
    second = ToolchainVariant(toolchain="stable", index=1)

    assert first.variant_id == "0:stable"
    assert second.variant_id == "1:stable"
    assert first != second


def test_toolchain_variant_rejects_blank_and_negative_index() -> None:
    with pytest.raises(ValueError):
        ToolchainVariant(toolchain="   ")
    with pytest.raises(ValueError):
        ToolchainVariant(toolchain="stable", index=-1)
    with pytest.raises(TypeError):
        ToolchainVariant(toolchain=1)  # type: ignore[arg-type]


def test_stage_renders_toolchain_placeholder_and_filter() -> None:
    stage = Stage(
        name="lint",
        command="cargo +{toolchain} clippy -- -D warnings",
        toolchains=("stable",),
    )
    stable = ToolchainVariant(toolchain="stable")
    beta = ToolchainVariant(toolchain="beta", index=1)

    assert stage.render_command(beta) == "cargo +beta clippy -- -D warnings"
    assert stage.applies_to(stable)
    assert not stage.applies_to(beta)
    assert Stage(name="test", command="cargo test").applies_to(beta)


def test_stage_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError):
        Stage(name="test", command="cargo test", timeout_seconds=0)


def test_stage_result_timeout_requires_failure_status() -> None:
    with pytest.raises(ValueError):
        StageResult(stage_name="test", status=StageStatus.SUCCESS, timed_out=True)

    result = StageResult(stage_name="test", status=StageStatus.FAILURE, timed_out=True)
    assert result.is_failure


def test_stage_result_output_joins_streams() -> None:
    result = StageResult(
        stage_name="build",
        status=StageStatus.FAILURE,
        exit_code=2,
        stdout="compiling\n",
        stderr="error[E0425]",
    )

    assert result.output == "compiling\nerror[E0425]"


def test_variant_run_seal_passes_without_failures() -> None:
    variant = ToolchainVariant(toolchain="stable")
    run = VariantRun.seal(variant, [_ok("lint"), _ok("test")])

    assert run.terminal_status is VariantStatus.PASSED
    assert run.failed_stage is None
    assert not run.is_blocking


@pytest.mark.parametrize(
    ("allowed", "expected"),
    [(False, VariantStatus.FAILED), (True, VariantStatus.FAILED_BUT_ALLOWED)],
)
def test_variant_run_seal_failure_honors_allowed_to_fail(
    allowed: bool, expected: VariantStatus
) -> None:
    variant = ToolchainVariant(toolchain="beta", allowed_to_fail=allowed)
    run = VariantRun.seal(variant, [_ok("lint"), _failed("test")])

    assert run.terminal_status is expected
    assert run.failed_stage == "test"
    assert run.is_blocking is (expected is VariantStatus.FAILED)


def test_variant_run_rejects_results_after_failure() -> None:
    variant = ToolchainVariant(toolchain="stable")
    with pytest.raises(ValueError, match="after a failure"):
        VariantRun(
            variant=variant,
            stage_results=(_failed("lint"), _ok("test")),
            terminal_status=VariantStatus.FAILED,
        )


def test_variant_run_rejects_inconsistent_terminal_status() -> None:
    variant = ToolchainVariant(toolchain="stable")
    with pytest.raises(ValueError):
        VariantRun(
            variant=variant,
            stage_results=(_failed("lint"),),
            terminal_status=VariantStatus.PASSED,
        )
    with pytest.raises(ValueError):
        VariantRun(
            variant=variant,
            stage_results=(_ok("lint"),),
            terminal_status=VariantStatus.FAILED,
        )


def test_cancelled_variant_run_is_halted() -> None:
    variant = ToolchainVariant(toolchain="stable")
    run = VariantRun.seal(variant, [_ok("lint")], cancelled=True)

    assert run.cancelled
    assert run.terminal_status is VariantStatus.FAILED
    assert run.failed_stage is None


def test_install_report_tracks_failed_step() -> None:
    ok_step = InstallStepResult(
        step_name="unpack",
        retry=False,
        attempts=(InstallAttempt(attempt=1, exit_code=0, duration_ms=3),),
    )
    failing = InstallStepResult(
        step_name="fetch",
        retry=True,
        attempts=(
            InstallAttempt(attempt=1, exit_code=None, duration_ms=10, timed_out=True),
            InstallAttempt(attempt=2, exit_code=6, duration_ms=4),
        ),
    )

    assert ok_step.succeeded
    assert not failing.succeeded
    assert failing.attempt_count == 2
    assert InstallReport(steps=(ok_step,)).succeeded
    assert not InstallReport(steps=(ok_step, failing), failed_step="fetch").succeeded


def test_pipeline_run_orders_variants_by_matrix_index() -> None:
    late = VariantRun.seal(ToolchainVariant(toolchain="beta", index=1), [_ok("test")])
    early = VariantRun.seal(ToolchainVariant(toolchain="stable", index=0), [_ok("test")])

    run = PipelineRun(run_id="run-1", state=PipelineState.SEALED, variant_runs=(late, early))

    assert [item.variant.toolchain for item in run.variant_runs] == ["stable", "beta"]
    assert run.is_sealed
    assert not run.install_failed


def test_pipeline_run_to_dict_is_stable() -> None:
    variant = ToolchainVariant(toolchain="stable")
    run = PipelineRun(
        run_id="run-1",
        state=PipelineState.SEALED,
        variant_runs=(VariantRun.seal(variant, [_ok("lint")]),),
        install_reports=(InstallReport(),),
        verdict=Verdict.GREEN,
        duration_ms=12,
    )

    payload = run.to_dict()

    assert payload["verdict"] == "green"
    assert payload["state"] == "sealed"
    assert payload["install"] == [
        {"succeeded": True, "failed_step": None, "variant_id": None, "steps": []}
    ]
    variants = payload["variants"]
    assert isinstance(variants, list)
    assert variants[0]["terminal_status"] == "passed"  # type: ignore[index]
    assert variants[0]["stages"][0]["stage"] == "lint"  # type: ignore[index]
