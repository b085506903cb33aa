"""
matrixci — failure classifier

File: src/matrixci/pipeline/classifier.py
Last updated: 2026-10-18

Purpose
- Reduce variant outcomes to one Green/Red verdict.

Normative behavior
- Red iff any variant run is ``failed`` or the installer failed; ``passed`` and
  ``failed_but_allowed`` are both non-blocking.
- Pure and order-independent; safe on a partially populated run. A Green verdict is final
  only once the run is sealed.
"""

from __future__ import annotations

from collections.abc import Iterable

from matrixci.domain.models import PipelineRun, VariantRun, VariantStatus, Verdict


def classify(run: PipelineRun | Iterable[VariantRun]) -> Verdict:
    if isinstance(run, PipelineRun):
        if run.install_failed:
            return Verdict.RED
        variant_runs: Iterable[VariantRun] = run.variant_runs
    else:
        variant_runs = run

    if any(item.terminal_status is VariantStatus.FAILED for item in variant_runs):
        return Verdict.RED
    return Verdict.GREEN


def summarize(run: PipelineRun | Iterable[VariantRun]) -> dict[VariantStatus, int]:
    """Count variant runs per terminal status, every status present."""

    variant_runs = run.variant_runs if isinstance(run, PipelineRun) else run
    counts = {status: 0 for status in VariantStatus}
    for item in variant_runs:
        counts[item.terminal_status] += 1
    return counts


def blocking_runs(run: PipelineRun | Iterable[VariantRun]) -> tuple[VariantRun, ...]:
    variant_runs = run.variant_runs if isinstance(run, PipelineRun) else run
    return tuple(item for item in variant_runs if item.is_blocking)


__all__ = ["blocking_runs", "classify", "summarize"]
