"""
matrixci — stage runner

File: src/matrixci/pipeline/stage_runner.py
Last updated: 2026-10-18

Purpose
- Execute the ordered stage sequence for one toolchain variant.

Normative behavior
- Stages run strictly in order; stage N+1 never starts before stage N is recorded.
- The first failing stage halts the variant. Later stages are absent from the run, not
  recorded as skipped.
- A stage whose ``toolchains`` filter excludes the variant is recorded as skipped and does
  not halt the variant.
- Terminal status is passed, failed, or failed_but_allowed (``variant.allowed_to_fail``).
- A fired cancellation token halts the variant between stages.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import structlog

from matrixci.domain.models import (
    TOOLCHAIN_ENV_VAR,
    Stage,
    StageResult,
    StageStatus,
    ToolchainVariant,
    VariantRun,
)
from matrixci.execution.commands import CommandExecutor, CommandResult, CommandSpec
from matrixci.observability.logging import correlation_scope
from matrixci.setup_plane.installer import resolve_cwd
from matrixci.utils.concurrency import CancellationToken


class StageRunner:
    """Fail-fast sequential executor for one variant's stages."""

    def __init__(
        self,
        *,
        executor: CommandExecutor,
        working_dir: str | Path = ".",
        default_timeout_seconds: float | None = None,
        base_env: Mapping[str, str] | None = None,
        logger: Any | None = None,
    ) -> None:
        if default_timeout_seconds is not None and default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0")
        self._executor = executor
        self._working_dir = Path(working_dir)
        self._default_timeout_seconds = default_timeout_seconds
        self._base_env = dict(base_env or {})
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def run(
        self,
        variant: ToolchainVariant,
        stages: Sequence[Stage],
        *,
        cancel_token: CancellationToken | None = None,
    ) -> VariantRun:
        results: list[StageResult] = []
        log = self._logger.bind(toolchain=variant.toolchain, variant_id=variant.variant_id)

        with correlation_scope(toolchain=variant.toolchain, variant_id=variant.variant_id):
            for stage in stages:
                if cancel_token is not None and cancel_token.is_cancelled:
                    log.warning("variant_cancelled", before_stage=stage.name)
                    return VariantRun.seal(variant, results, cancelled=True)

                if not stage.applies_to(variant):
                    results.append(StageResult(stage_name=stage.name, status=StageStatus.SKIPPED))
                    log.info("stage_skipped", stage=stage.name)
                    continue

                with correlation_scope(stage=stage.name):
                    result = await self._run_stage(variant, stage)
                results.append(result)
                log.info(
                    "stage_finished",
                    stage=stage.name,
                    status=result.status.value,
                    exit_code=result.exit_code,
                    duration_ms=result.duration_ms,
                )
                if result.is_failure:
                    break

        variant_run = VariantRun.seal(variant, results)
        log.info(
            "variant_sealed",
            terminal_status=variant_run.terminal_status.value,
            failed_stage=variant_run.failed_stage,
        )
        return variant_run

    async def _run_stage(self, variant: ToolchainVariant, stage: Stage) -> StageResult:
        env = dict(self._base_env)
        env[TOOLCHAIN_ENV_VAR] = variant.toolchain
        env.update(stage.env)
        spec = CommandSpec(
            command=stage.render_command(variant),
            cwd=str(resolve_cwd(self._working_dir, stage.cwd)),
            env=env,
            timeout_seconds=(
                stage.timeout_seconds
                if stage.timeout_seconds is not None
                else self._default_timeout_seconds
            ),
            label=stage.name,
        )
        return _to_stage_result(stage.name, await self._executor.run(spec))


def _to_stage_result(stage_name: str, result: CommandResult) -> StageResult:
    return StageResult(
        stage_name=stage_name,
        status=StageStatus.SUCCESS if result.is_success else StageStatus.FAILURE,
        exit_code=result.exit_code,
        stdout=result.stdout,
        stderr=result.stderr,
        duration_ms=result.duration_ms,
        timed_out=result.timed_out,
        error=result.error,
    )


__all__ = ["StageRunner"]
