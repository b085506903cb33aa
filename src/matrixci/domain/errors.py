"""
matrixci — error taxonomy

File: src/matrixci/domain/errors.py
Last updated: 2026-10-18

Purpose
- Normalized errors raised by setup and stage execution.

Taxonomy
- ``CommandError``: an opaque command exited non-zero or could not be spawned. Never retried.
- ``NetworkError``: a retry-eligible (fetch) step timed out or failed. Absorbed by the retry
  loop while attempts remain.
- ``InstallError``: the setup procedure failed fatally; aborts the whole run.

Configuration errors live in ``matrixci.config`` (``ConfigLoadError``,
``ConfigValidationError``) and abort before any execution starts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from matrixci.domain.models import InstallReport


class MatrixError(RuntimeError):
    """Base error with deterministic machine-readable fields."""

    code: str = "matrix"

    def __init__(self, *, step: str, detail: str, retryable: bool = False) -> None:
        self.step = _validate_non_empty_str(step, "step")
        self.detail = _normalize_detail(detail)
        self.retryable = bool(retryable)
        super().__init__(self._render())

    def _render(self) -> str:
        parts = [
            f"step={self.step}",
            f"code={self.code}",
            f"retryable={str(self.retryable).lower()}",
        ]
        parts.extend(self._extra_parts())
        parts.append(f"detail={self.detail}")
        return " ".join(parts)

    def _extra_parts(self) -> list[str]:
        return []


class CommandError(MatrixError):
    """Deterministic command failure."""

    code = "command"

    def __init__(self, *, step: str, detail: str, exit_code: int | None = None) -> None:
        self.exit_code = exit_code
        super().__init__(step=step, detail=detail, retryable=False)

    def _extra_parts(self) -> list[str]:
        if self.exit_code is None:
            return []
        return [f"exit_code={self.exit_code}"]


class NetworkError(MatrixError):
    """Transient failure of a retry-eligible step."""

    code = "network"

    def __init__(
        self,
        *,
        step: str,
        detail: str,
        attempt: int,
        timed_out: bool = False,
        exit_code: int | None = None,
    ) -> None:
        if attempt <= 0:
            raise ValueError("attempt must be > 0")
        self.attempt = attempt
        self.timed_out = bool(timed_out)
        self.exit_code = exit_code
        super().__init__(step=step, detail=detail, retryable=True)

    def _extra_parts(self) -> list[str]:
        parts = [f"attempt={self.attempt}"]
        if self.timed_out:
            parts.append("timed_out=true")
        if self.exit_code is not None:
            parts.append(f"exit_code={self.exit_code}")
        return parts


class InstallError(MatrixError):
    """Fatal setup failure. ``report`` carries every step recorded so far."""

    code = "install"

    def __init__(
        self,
        *,
        step: str,
        cause: MatrixError,
        attempts: int,
        report: InstallReport | None = None,
    ) -> None:
        if attempts <= 0:
            raise ValueError("attempts must be > 0")
        self.cause = cause
        self.attempts = attempts
        self.report = report
        super().__init__(step=step, detail=cause.detail, retryable=False)

    def _extra_parts(self) -> list[str]:
        return [f"cause={self.cause.code}", f"attempts={self.attempts}"]


def _validate_non_empty_str(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{name} must not be empty")
    return normalized


def _normalize_detail(detail: object) -> str:
    if not isinstance(detail, str):
        detail = str(detail)
    collapsed = " ".join(detail.split())
    return collapsed or "no detail"


__all__ = [
    "CommandError",
    "InstallError",
    "MatrixError",
    "NetworkError",
]
