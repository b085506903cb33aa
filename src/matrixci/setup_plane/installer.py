"""
matrixci — dependency installer

File: src/matrixci/setup_plane/installer.py
Last updated: 2026-10-18

Purpose
- Run the setup procedure of a native dependency (fetch, unpack, configure, build, install)
  as an ordered list of opaque commands.

Normative behavior
- Steps run strictly in order; the first failing step aborts the sequence.
- Only steps flagged ``retry`` (the fetch) are retried, under ``RetryPolicy``. A timeout or
  non-zero exit of such a step is a ``NetworkError``; a spawn failure is a ``CommandError``.
- Non-retry failures are fatal immediately.
- Every step runs with an explicit working directory derived from ``working_dir``.
- Failure raises ``InstallError`` carrying the partial ``InstallReport``.
"""

from __future__ import annotations

import asyncio
import random as random_module
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import structlog

from matrixci.domain.errors import CommandError, InstallError, MatrixError, NetworkError
from matrixci.domain.models import InstallAttempt, InstallReport, InstallStepResult, SetupStep
from matrixci.execution.commands import CommandExecutor, CommandResult, CommandSpec
from matrixci.setup_plane.retry import RandomFn, RetryPolicy, SleepFn, run_with_retries


class DependencyInstaller:
    """Executes setup steps with retry-on-failure semantics for the fetch step."""

    def __init__(
        self,
        *,
        executor: CommandExecutor,
        policy: RetryPolicy | None = None,
        working_dir: str | Path = ".",
        default_timeout_seconds: float | None = None,
        sleep: SleepFn = asyncio.sleep,
        random_fn: RandomFn = random_module.random,
        logger: Any | None = None,
    ) -> None:
        if default_timeout_seconds is not None and default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0")
        self._executor = executor
        self._policy = policy if policy is not None else RetryPolicy()
        self._working_dir = Path(working_dir)
        self._default_timeout_seconds = default_timeout_seconds
        self._sleep = sleep
        self._random_fn = random_fn
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def install(
        self,
        steps: Sequence[SetupStep],
        *,
        extra_env: Mapping[str, str] | None = None,
        variant_id: str | None = None,
    ) -> InstallReport:
        completed: list[InstallStepResult] = []

        for step in steps:
            self._logger.info("setup_step_started", step=step.name, retry=step.retry)
            spec = self._build_spec(step, extra_env)
            attempts: list[InstallAttempt] = []
            outputs: list[CommandResult] = []

            try:
                if step.retry:
                    await self._run_with_retries(step, spec, attempts, outputs)
                else:
                    await self._run_once(step, spec, attempts, outputs, attempt=1)
            except MatrixError as exc:
                completed.append(_step_result(step, attempts, outputs))
                report = InstallReport(
                    steps=tuple(completed),
                    failed_step=step.name,
                    variant_id=variant_id,
                )
                self._logger.error(
                    "setup_failed",
                    step=step.name,
                    code=exc.code,
                    attempts=len(attempts),
                    detail=exc.detail,
                )
                raise InstallError(
                    step=step.name,
                    cause=exc,
                    attempts=max(len(attempts), 1),
                    report=report,
                ) from exc

            completed.append(_step_result(step, attempts, outputs))
            self._logger.info("setup_step_finished", step=step.name, attempts=len(attempts))

        return InstallReport(steps=tuple(completed), variant_id=variant_id)

    async def _run_with_retries(
        self,
        step: SetupStep,
        spec: CommandSpec,
        attempts: list[InstallAttempt],
        outputs: list[CommandResult],
    ) -> None:
        async def operation(attempt: int) -> None:
            await self._run_once(step, spec, attempts, outputs, attempt=attempt)

        def on_retry(attempt: int, error: MatrixError, delay_seconds: float) -> None:
            self._logger.warning(
                "setup_attempt_failed",
                step=step.name,
                attempt=attempt,
                max_attempts=self._policy.max_attempts,
                delay_seconds=delay_seconds,
                detail=error.detail,
            )

        await run_with_retries(
            operation,
            policy=self._policy,
            sleep=self._sleep,
            random_fn=self._random_fn,
            on_retry=on_retry,
        )

    async def _run_once(
        self,
        step: SetupStep,
        spec: CommandSpec,
        attempts: list[InstallAttempt],
        outputs: list[CommandResult],
        *,
        attempt: int,
    ) -> None:
        result = await self._executor.run(spec)
        attempts.append(
            InstallAttempt(
                attempt=attempt,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
                timed_out=result.timed_out,
                error=result.error,
            )
        )
        outputs.append(result)
        if result.is_success:
            return

        if step.retry and not result.spawn_failed:
            raise NetworkError(
                step=step.name,
                detail=result.describe_failure(),
                attempt=attempt,
                timed_out=result.timed_out,
                exit_code=result.exit_code,
            )
        raise CommandError(
            step=step.name,
            detail=result.describe_failure(),
            exit_code=result.exit_code,
        )

    def _build_spec(self, step: SetupStep, extra_env: Mapping[str, str] | None) -> CommandSpec:
        env = dict(extra_env or {})
        env.update(step.env)
        timeout = step.timeout_seconds
        if timeout is None and step.retry:
            timeout = self._policy.attempt_timeout_seconds
        if timeout is None:
            timeout = self._default_timeout_seconds
        return CommandSpec(
            command=step.command,
            cwd=str(resolve_cwd(self._working_dir, step.cwd)),
            env=env,
            timeout_seconds=timeout,
            label=step.name,
        )


async def install(
    steps: Sequence[SetupStep],
    *,
    executor: CommandExecutor,
    policy: RetryPolicy | None = None,
    working_dir: str | Path = ".",
    sleep: SleepFn = asyncio.sleep,
) -> InstallReport:
    """Functional wrapper around ``DependencyInstaller.install``."""

    installer = DependencyInstaller(
        executor=executor,
        policy=policy,
        working_dir=working_dir,
        sleep=sleep,
    )
    return await installer.install(steps)


def resolve_cwd(working_dir: Path, cwd: str | None) -> Path:
    """Resolve a step/stage ``cwd`` against the run working directory."""

    if cwd is None:
        return working_dir
    candidate = Path(cwd).expanduser()
    if candidate.is_absolute():
        return candidate
    return working_dir / candidate


def _step_result(
    step: SetupStep,
    attempts: list[InstallAttempt],
    outputs: list[CommandResult],
) -> InstallStepResult:
    last = outputs[-1] if outputs else None
    return InstallStepResult(
        step_name=step.name,
        retry=step.retry,
        attempts=tuple(attempts),
        stdout=last.stdout if last is not None else "",
        stderr=last.stderr if last is not None else "",
    )


__all__ = ["DependencyInstaller", "install", "resolve_cwd"]
