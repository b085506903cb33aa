"""
matrixci — domain model

File: src/matrixci/domain/models.py
Last updated: 2026-10-18

Purpose
- Immutable value types shared by the installer, matrix expander, stage runner, classifier,
  and pipeline controller.

Normative behavior
- A ``VariantRun`` holds results for a contiguous prefix of the stage sequence and never
  continues past the first failure.
- ``ToolchainVariant.index`` keeps duplicate toolchain ids distinct.
- Every ``to_dict`` export uses stable keys so reports are reproducible.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TOOLCHAIN_PLACEHOLDER: Final[str] = "{toolchain}"
TOOLCHAIN_ENV_VAR: Final[str] = "MATRIXCI_TOOLCHAIN"


class StageStatus(StrEnum):
    """Outcome of one stage for one variant."""

    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class VariantStatus(StrEnum):
    """Terminal status of a sealed variant run."""

    PASSED = "passed"
    FAILED = "failed"
    FAILED_BUT_ALLOWED = "failed_but_allowed"


class Verdict(StrEnum):
    GREEN = "green"
    RED = "red"


class PipelineState(StrEnum):
    """Pipeline controller state machine."""

    NOT_STARTED = "not_started"
    INSTALLING = "installing"
    INSTALL_FAILED = "install_failed"
    RUNNING = "running"
    SEALED = "sealed"


class InstallScope(StrEnum):
    """Whether setup runs once for the whole matrix or inside every variant."""

    ONCE = "once"
    PER_VARIANT = "per_variant"


@dataclass(frozen=True, slots=True)
class ToolchainVariant:
    """One matrix entry."""

    toolchain: str
    allowed_to_fail: bool = False
    index: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "toolchain", _require_text(self.toolchain, "toolchain"))
        if self.index < 0:
            raise ValueError("ToolchainVariant.index must be >= 0")

    @property
    def variant_id(self) -> str:
        return f"{self.index}:{self.toolchain}"

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "toolchain": self.toolchain,
            "allowed_to_fail": self.allowed_to_fail,
            "index": self.index,
        }


@dataclass(frozen=True, slots=True)
class Stage:
    """Named opaque verification command, shared by every variant."""

    name: str
    command: str
    timeout_seconds: float | None = None
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    toolchains: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _require_text(self.name, "Stage.name"))
        object.__setattr__(self, "command", _require_text(self.command, "Stage.command"))
        _check_timeout(self.timeout_seconds, "Stage.timeout_seconds")
        object.__setattr__(self, "env", dict(self.env))
        if self.toolchains is not None:
            object.__setattr__(
                self,
                "toolchains",
                tuple(_require_text(item, "Stage.toolchains[]") for item in self.toolchains),
            )

    def applies_to(self, variant: ToolchainVariant) -> bool:
        return self.toolchains is None or variant.toolchain in self.toolchains

    def render_command(self, variant: ToolchainVariant) -> str:
        return self.command.replace(TOOLCHAIN_PLACEHOLDER, variant.toolchain)


@dataclass(frozen=True, slots=True)
class SetupStep:
    """One installer sub-step. ``retry`` marks the fetch step."""

    name: str
    command: str
    retry: bool = False
    timeout_seconds: float | None = None
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _require_text(self.name, "SetupStep.name"))
        object.__setattr__(self, "command", _require_text(self.command, "SetupStep.command"))
        _check_timeout(self.timeout_seconds, "SetupStep.timeout_seconds")
        object.__setattr__(self, "env", dict(self.env))


@dataclass(frozen=True, slots=True)
class StageResult:
    """Captured outcome of one stage command."""

    stage_name: str
    status: StageStatus
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False
    error: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "stage_name", _require_text(self.stage_name, "stage_name"))
        object.__setattr__(self, "status", StageStatus(self.status))
        if self.duration_ms < 0:
            raise ValueError("StageResult.duration_ms must be >= 0")
        if self.timed_out and self.status is not StageStatus.FAILURE:
            raise ValueError("StageResult.timed_out requires status=failure")

    @property
    def is_failure(self) -> bool:
        return self.status is StageStatus.FAILURE

    @property
    def output(self) -> str:
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "stage": self.stage_name,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class VariantRun:
    """Sealed stage sequence of one variant plus its terminal status."""

    variant: ToolchainVariant
    stage_results: tuple[StageResult, ...]
    terminal_status: VariantStatus
    cancelled: bool = False

    def __post_init__(self) -> None:
        results = tuple(self.stage_results)
        object.__setattr__(self, "stage_results", results)
        object.__setattr__(self, "terminal_status", VariantStatus(self.terminal_status))

        failures = [index for index, item in enumerate(results) if item.is_failure]
        if len(failures) > 1:
            raise ValueError("VariantRun must stop at the first failing stage")
        if failures and failures[0] != len(results) - 1:
            raise ValueError("VariantRun cannot record stages after a failure")
        halted = bool(failures) or self.cancelled
        if halted and self.terminal_status is not _halted_status(self.variant):
            raise ValueError(
                f"VariantRun for {self.variant.variant_id} must be "
                f"{_halted_status(self.variant).value}"
            )
        if not halted and self.terminal_status is not VariantStatus.PASSED:
            raise ValueError("VariantRun without failures must be passed")

    @classmethod
    def seal(
        cls,
        variant: ToolchainVariant,
        stage_results: tuple[StageResult, ...] | list[StageResult],
        *,
        cancelled: bool = False,
    ) -> VariantRun:
        results = tuple(stage_results)
        halted = cancelled or any(item.is_failure for item in results)
        status = _halted_status(variant) if halted else VariantStatus.PASSED
        return cls(
            variant=variant,
            stage_results=results,
            terminal_status=status,
            cancelled=cancelled,
        )

    @property
    def failed_stage(self) -> str | None:
        for item in self.stage_results:
            if item.is_failure:
                return item.stage_name
        return None

    @property
    def is_blocking(self) -> bool:
        return self.terminal_status is VariantStatus.FAILED

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "variant": self.variant.to_dict(),
            "terminal_status": self.terminal_status.value,
            "failed_stage": self.failed_stage,
            "cancelled": self.cancelled,
            "stages": [item.to_dict() for item in self.stage_results],
        }


@dataclass(frozen=True, slots=True)
class InstallAttempt:
    """One execution of one setup step."""

    attempt: int
    exit_code: int | None
    duration_ms: int
    timed_out: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.error is None and self.exit_code == 0

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "attempt": self.attempt,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class InstallStepResult:
    step_name: str
    retry: bool
    attempts: tuple[InstallAttempt, ...]
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return bool(self.attempts) and self.attempts[-1].succeeded

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "step": self.step_name,
            "retry": self.retry,
            "succeeded": self.succeeded,
            "attempts": [item.to_dict() for item in self.attempts],
            "stdout": self.stdout,
            "stderr": self.stderr,
        }


@dataclass(frozen=True, slots=True)
class InstallReport:
    """Ordered setup step results; ``failed_step`` is set when the installer aborted."""

    steps: tuple[InstallStepResult, ...] = ()
    failed_step: str | None = None
    variant_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.failed_step is None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "succeeded": self.succeeded,
            "failed_step": self.failed_step,
            "variant_id": self.variant_id,
            "steps": [item.to_dict() for item in self.steps],
        }


@dataclass(frozen=True, slots=True)
class PipelineRun:
    """Top-level aggregate. ``variant_runs`` preserves declared matrix order."""

    run_id: str
    state: PipelineState
    variant_runs: tuple[VariantRun, ...] = ()
    install_reports: tuple[InstallReport, ...] = ()
    verdict: Verdict | None = None
    duration_ms: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "run_id", _require_text(self.run_id, "run_id"))
        object.__setattr__(self, "state", PipelineState(self.state))
        ordered = tuple(sorted(self.variant_runs, key=lambda item: item.variant.index))
        object.__setattr__(self, "variant_runs", ordered)
        object.__setattr__(self, "install_reports", tuple(self.install_reports))
        if self.verdict is not None:
            object.__setattr__(self, "verdict", Verdict(self.verdict))

    @property
    def install_failed(self) -> bool:
        return self.state is PipelineState.INSTALL_FAILED

    @property
    def is_sealed(self) -> bool:
        return self.state in {PipelineState.SEALED, PipelineState.INSTALL_FAILED}

    @property
    def failed_install(self) -> InstallReport | None:
        for report in self.install_reports:
            if not report.succeeded:
                return report
        return None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "verdict": self.verdict.value if self.verdict is not None else None,
            "duration_ms": self.duration_ms,
            "install": [item.to_dict() for item in self.install_reports],
            "variants": [item.to_dict() for item in self.variant_runs],
        }


def _halted_status(variant: ToolchainVariant) -> VariantStatus:
    if variant.allowed_to_fail:
        return VariantStatus.FAILED_BUT_ALLOWED
    return VariantStatus.FAILED


def _require_text(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{name} must be non-empty")
    return normalized


def _check_timeout(value: float | None, name: str) -> None:
    if value is not None and value <= 0:
        raise ValueError(f"{name} must be > 0 when provided")


__all__ = [
    "InstallAttempt",
    "InstallReport",
    "InstallScope",
    "InstallStepResult",
    "JSONScalar",
    "JSONValue",
    "PipelineRun",
    "PipelineState",
    "SetupStep",
    "Stage",
    "StageResult",
    "StageStatus",
    "TOOLCHAIN_ENV_VAR",
    "TOOLCHAIN_PLACEHOLDER",
    "ToolchainVariant",
    "VariantRun",
    "VariantStatus",
    "Verdict",
]
