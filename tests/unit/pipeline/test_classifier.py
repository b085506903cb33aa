"""Unit and property tests for the failure classifier."""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from matrixci.domain.models import (
    PipelineRun,
    PipelineState,
    StageResult,
    StageStatus,
    ToolchainVariant,
    VariantRun,
    VariantStatus,
    Verdict,
)
from matrixci.pipeline.classifier import blocking_runs, classify, summarize


def _variant_run(index: int, *, failed: bool, allowed: bool) -> VariantRun:
    variant = ToolchainVariant(toolchain=f"tc{index}", allowed_to_fail=allowed, index=index)
    status = StageStatus.FAILURE if failed else StageStatus.SUCCESS
    return VariantRun.seal(variant, [StageResult(stage_name="test", status=status)])


_RUN_SPECS = st.lists(st.tuples(st.booleans(), st.booleans()), max_size=6)


def test_stable_passes_beta_allowed_failure_is_green() -> None:
    runs = [
        _variant_run(0, failed=False, allowed=False),
        _variant_run(1, failed=True, allowed=True),
    ]

    assert classify(runs) is Verdict.GREEN
    assert blocking_runs(runs) == ()


def test_blocking_failure_is_red() -> None:
    runs = [
        _variant_run(0, failed=True, allowed=False),
        _variant_run(1, failed=False, allowed=True),
    ]

    assert classify(runs) is Verdict.RED
    assert [item.variant.index for item in blocking_runs(runs)] == [0]


def test_install_failure_is_red_with_zero_runs() -> None:
    run = PipelineRun(run_id="run-x", state=PipelineState.INSTALL_FAILED)

    assert classify(run) is Verdict.RED


def test_empty_sealed_run_is_green() -> None:
    run = PipelineRun(run_id="run-x", state=PipelineState.SEALED)

    assert classify(run) is Verdict.GREEN
    assert summarize(run) == {status: 0 for status in VariantStatus}


@given(specs=_RUN_SPECS)
def test_verdict_is_red_iff_some_variant_failed(specs: list[tuple[bool, bool]]) -> None:
    runs = [
        _variant_run(index, failed=failed, allowed=allowed)
        for index, (failed, allowed) in enumerate(specs)
    ]
    expected_red = any(failed and not allowed for failed, allowed in specs)

    verdict = classify(runs)

    assert (verdict is Verdict.RED) is expected_red
    assert classify(list(reversed(runs))) is verdict


@given(specs=_RUN_SPECS)
def test_summary_counts_every_run_once(specs: list[tuple[bool, bool]]) -> None:
    runs = [
        _variant_run(index, failed=failed, allowed=allowed)
        for index, (failed, allowed) in enumerate(specs)
    ]

    counts = summarize(runs)

    assert sum(counts.values()) == len(runs)
    assert counts[VariantStatus.FAILED] == len(blocking_runs(runs))
