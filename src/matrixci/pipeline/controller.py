"""
matrixci — pipeline controller

File: src/matrixci/pipeline/controller.py
Last updated: 2026-10-18

Purpose
- Own the end-to-end run: shared setup, matrix expansion, per-variant dispatch, and
  classification into one ``PipelineRun``.

Normative behavior
- State machine: not_started -> installing -> install_failed (terminal)
  | running -> sealed.
- With ``install_scope = once`` the installer runs before any variant; its failure aborts the
  run with zero variant runs. With ``per_variant`` setup runs inside each variant's dispatch
  and any failure cancels every variant that has not started yet.
- Installer failures are never retried at this layer; retries already happened inside it.
- Variants are independent and may run in parallel (``max_parallel_variants``); the report
  always follows the declared matrix order.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import structlog

from matrixci.domain.errors import InstallError
from matrixci.domain.models import (
    TOOLCHAIN_ENV_VAR,
    InstallReport,
    InstallScope,
    PipelineRun,
    PipelineState,
    SetupStep,
    Stage,
    ToolchainVariant,
    VariantRun,
)
from matrixci.execution.commands import CommandExecutor, LocalSubprocessExecutor
from matrixci.observability.logging import correlation_scope
from matrixci.pipeline.classifier import classify, summarize
from matrixci.pipeline.matrix import expand
from matrixci.pipeline.stage_runner import StageRunner
from matrixci.setup_plane.installer import DependencyInstaller
from matrixci.setup_plane.retry import RetryPolicy, SleepFn
from matrixci.utils.concurrency import CancellationToken, WorkerPool

_ALLOWED_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.NOT_STARTED: frozenset({PipelineState.INSTALLING, PipelineState.RUNNING}),
    PipelineState.INSTALLING: frozenset({PipelineState.INSTALL_FAILED, PipelineState.RUNNING}),
    PipelineState.RUNNING: frozenset({PipelineState.SEALED, PipelineState.INSTALL_FAILED}),
    PipelineState.INSTALL_FAILED: frozenset(),
    PipelineState.SEALED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class PipelineConfiguration:
    """Validated, typed view of one configuration file."""

    toolchains: tuple[str, ...]
    stages: tuple[Stage, ...]
    allow_failures: frozenset[str] = frozenset()
    setup_steps: tuple[SetupStep, ...] = ()
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    install_scope: InstallScope = InstallScope.ONCE
    max_parallel_variants: int = 1
    default_timeout_seconds: float | None = 3600.0
    working_dir: str = "."
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "toolchains", tuple(self.toolchains))
        object.__setattr__(self, "stages", tuple(self.stages))
        object.__setattr__(self, "allow_failures", frozenset(self.allow_failures))
        object.__setattr__(self, "setup_steps", tuple(self.setup_steps))
        object.__setattr__(self, "install_scope", InstallScope(self.install_scope))
        object.__setattr__(self, "env", dict(self.env))
        if self.max_parallel_variants <= 0:
            raise ValueError("max_parallel_variants must be > 0")
        if self.default_timeout_seconds is not None and self.default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0 when provided")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> PipelineConfiguration:
        """Build from a mapping already validated by ``matrixci.config``."""

        execution = config.get("execution", {})
        return cls(
            toolchains=tuple(config["toolchains"]),
            allow_failures=frozenset(config.get("allow_failures", ())),
            setup_steps=tuple(
                SetupStep(
                    name=item["name"],
                    command=item["command"],
                    retry=bool(item.get("retry", False)),
                    timeout_seconds=item.get("timeout_seconds"),
                    cwd=item.get("cwd"),
                    env=item.get("env", {}),
                )
                for item in config.get("setup_commands", ())
            ),
            stages=tuple(
                Stage(
                    name=item["name"],
                    command=item["command"],
                    timeout_seconds=item.get("timeout_seconds"),
                    cwd=item.get("cwd"),
                    env=item.get("env", {}),
                    toolchains=(
                        tuple(item["toolchains"]) if item.get("toolchains") is not None else None
                    ),
                )
                for item in config["stage_commands"]
            ),
            retry_policy=RetryPolicy.from_config(config.get("retry")),
            install_scope=InstallScope(execution.get("install_scope", InstallScope.ONCE)),
            max_parallel_variants=int(execution.get("max_parallel_variants", 1)),
            default_timeout_seconds=execution.get("default_timeout_seconds", 3600.0),
            working_dir=str(execution.get("working_dir", ".")),
            env=config.get("env", {}),
        )


class PipelineController:
    """Runs one configuration end to end and returns the sealed ``PipelineRun``."""

    def __init__(
        self,
        *,
        executor: CommandExecutor | None = None,
        sleep: SleepFn = asyncio.sleep,
        run_id: str | None = None,
        logger: Any | None = None,
    ) -> None:
        self._executor = executor
        self._sleep = sleep
        self._run_id = run_id or f"run-{uuid.uuid4().hex[:12]}"
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._state = PipelineState.NOT_STARTED

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def run_id(self) -> str:
        return self._run_id

    async def run(self, configuration: PipelineConfiguration) -> PipelineRun:
        if self._state is not PipelineState.NOT_STARTED:
            raise RuntimeError(f"controller already used (state={self._state.value})")

        started = time.monotonic()
        executor = self._executor or LocalSubprocessExecutor(
            default_timeout_seconds=configuration.default_timeout_seconds
        )
        working_dir = Path(configuration.working_dir)
        installer = DependencyInstaller(
            executor=executor,
            policy=configuration.retry_policy,
            working_dir=working_dir,
            default_timeout_seconds=configuration.default_timeout_seconds,
            sleep=self._sleep,
        )
        runner = StageRunner(
            executor=executor,
            working_dir=working_dir,
            default_timeout_seconds=configuration.default_timeout_seconds,
            base_env=configuration.env,
        )
        install_reports: list[InstallReport] = []

        with correlation_scope(run_id=self._run_id):
            self._logger.info(
                "pipeline_started",
                toolchains=list(configuration.toolchains),
                allow_failures=sorted(configuration.allow_failures),
                install_scope=configuration.install_scope.value,
                max_parallel_variants=configuration.max_parallel_variants,
            )

            if configuration.install_scope is InstallScope.ONCE and configuration.setup_steps:
                self._transition(PipelineState.INSTALLING)
                try:
                    report = await installer.install(
                        configuration.setup_steps,
                        extra_env=configuration.env,
                    )
                    install_reports.append(report)
                except InstallError as exc:
                    if exc.report is not None:
                        install_reports.append(exc.report)
                    self._transition(PipelineState.INSTALL_FAILED)
                    return self._seal((), install_reports, started)

            variants = expand(configuration.toolchains, configuration.allow_failures)
            self._transition(PipelineState.RUNNING)
            token = CancellationToken()
            variant_runs = await self._dispatch(
                variants,
                configuration=configuration,
                installer=installer,
                runner=runner,
                token=token,
                install_reports=install_reports,
            )

            if any(not report.succeeded for report in install_reports):
                self._transition(PipelineState.INSTALL_FAILED)
            else:
                self._transition(PipelineState.SEALED)
            return self._seal(variant_runs, install_reports, started)

    async def _dispatch(
        self,
        variants: Sequence[ToolchainVariant],
        *,
        configuration: PipelineConfiguration,
        installer: DependencyInstaller,
        runner: StageRunner,
        token: CancellationToken,
        install_reports: list[InstallReport],
    ) -> tuple[VariantRun, ...]:
        async def run_variant(variant: ToolchainVariant) -> VariantRun | None:
            if token.is_cancelled:
                self._logger.warning("variant_not_started", variant_id=variant.variant_id)
                return None
            if (
                configuration.install_scope is InstallScope.PER_VARIANT
                and configuration.setup_steps
            ):
                env = dict(configuration.env)
                env[TOOLCHAIN_ENV_VAR] = variant.toolchain
                try:
                    install_reports.append(
                        await installer.install(
                            configuration.setup_steps,
                            extra_env=env,
                            variant_id=variant.variant_id,
                        )
                    )
                except InstallError as exc:
                    if exc.report is not None:
                        install_reports.append(exc.report)
                    token.cancel(f"setup failed for {variant.variant_id}")
                    return None
            return await runner.run(variant, configuration.stages, cancel_token=token)

        collected: list[VariantRun] = []
        if configuration.max_parallel_variants == 1 or len(variants) <= 1:
            for variant in variants:
                outcome = await run_variant(variant)
                if outcome is not None:
                    collected.append(outcome)
        else:
            pool: WorkerPool[VariantRun | None] = WorkerPool(
                max_concurrency=min(configuration.max_parallel_variants, len(variants))
            )
            async for outcome in pool.run(run_variant(variant) for variant in variants):
                if outcome is not None:
                    collected.append(outcome)

        collected.sort(key=lambda item: item.variant.index)
        return tuple(collected)

    def _transition(self, target: PipelineState) -> None:
        if target not in _ALLOWED_TRANSITIONS[self._state]:
            raise RuntimeError(f"invalid transition {self._state.value} -> {target.value}")
        self._logger.info("pipeline_state", source=self._state.value, target=target.value)
        self._state = target

    def _seal(
        self,
        variant_runs: Sequence[VariantRun],
        install_reports: Sequence[InstallReport],
        started: float,
    ) -> PipelineRun:
        run = PipelineRun(
            run_id=self._run_id,
            state=self._state,
            variant_runs=tuple(variant_runs),
            install_reports=tuple(install_reports),
            duration_ms=max(0, int((time.monotonic() - started) * 1000)),
        )
        verdict = classify(run)
        self._logger.info(
            "pipeline_sealed",
            state=run.state.value,
            verdict=verdict.value,
            counts={status.value: count for status, count in summarize(run).items()},
        )
        return replace(run, verdict=verdict)


async def run_pipeline(
    configuration: PipelineConfiguration,
    *,
    executor: CommandExecutor | None = None,
    sleep: SleepFn = asyncio.sleep,
    run_id: str | None = None,
) -> PipelineRun:
    """Functional wrapper around ``PipelineController.run``."""

    controller = PipelineController(executor=executor, sleep=sleep, run_id=run_id)
    return await controller.run(configuration)


__all__ = ["PipelineConfiguration", "PipelineController", "run_pipeline"]
