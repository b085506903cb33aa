"""
matrixci — command execution

File: src/matrixci/execution/commands.py
Last updated: 2026-10-18

Purpose
- Portable contract for running opaque shell commands with explicit cwd, env, and timeout.

Normative behavior
- Every command runs with an explicit working directory; no process-wide ``chdir``.
- Every command has a timeout; on expiry the process group is killed and partial output kept.
- Reading stops a short grace after the kill even if a detached child still holds the pipes.
- Spawn failures are reported as ``CommandResult.error`` instead of raising.
"""

from __future__ import annotations

import asyncio
import math
import os
import signal
import subprocess
import time
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Final, Protocol, runtime_checkable

DEFAULT_SHELL: Final[tuple[str, ...]] = ("/bin/sh", "-c")
DEFAULT_MAX_OUTPUT_CHARS: Final[int] = 200_000
_KILL_GRACE_SECONDS: Final[float] = 1.0


@dataclass(slots=True)
class CommandSpec:
    """One opaque command invocation."""

    command: str
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_seconds: float | None = None
    inherit_env: bool = True
    label: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.command, str) or not self.command.strip():
            raise ValueError("CommandSpec.command must be a non-empty string")
        if self.timeout_seconds is not None:
            self.timeout_seconds = _as_positive_float(
                self.timeout_seconds, "CommandSpec.timeout_seconds"
            )
        self.env = {str(key): str(value) for key, value in self.env.items()}
        if not self.label:
            self.label = self.command.split()[0]

    def resolved_timeout(self, default_timeout_seconds: float | None = None) -> float | None:
        if self.timeout_seconds is not None:
            return self.timeout_seconds
        if default_timeout_seconds is None:
            return None
        return _as_positive_float(default_timeout_seconds, "default_timeout_seconds")

    def build_env(self) -> dict[str, str] | None:
        if self.inherit_env:
            env = dict(os.environ)
            env.update(self.env)
            return env
        return dict(self.env)

    def argv(self, shell: tuple[str, ...] = DEFAULT_SHELL) -> tuple[str, ...]:
        return (*shell, self.command)


@dataclass(slots=True)
class CommandResult:
    """Deterministic command execution outcome."""

    command: str
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    error: str | None = None

    def __post_init__(self) -> None:
        if self.duration_ms < 0:
            raise ValueError("CommandResult.duration_ms must be >= 0")
        if self.timed_out and self.exit_code is not None:
            raise ValueError("CommandResult.exit_code must be None when timed_out is true")

    @property
    def is_success(self) -> bool:
        return not self.timed_out and self.error is None and self.exit_code == 0

    @property
    def spawn_failed(self) -> bool:
        return self.exit_code is None and not self.timed_out and self.error is not None

    def describe_failure(self) -> str:
        if self.timed_out:
            return self.error or "command timed out"
        if self.error is not None:
            return self.error
        tail = _tail(self.stderr) or _tail(self.stdout)
        if tail:
            return f"exit code {self.exit_code}: {tail}"
        return f"exit code {self.exit_code}"


@runtime_checkable
class CommandExecutor(Protocol):
    """Pluggable async command execution interface."""

    async def run(self, spec: CommandSpec) -> CommandResult: ...


class LocalSubprocessExecutor(CommandExecutor):
    """Async local shell executor with deterministic capture/timeout behavior."""

    def __init__(
        self,
        *,
        default_timeout_seconds: float | None = None,
        max_output_chars: int | None = DEFAULT_MAX_OUTPUT_CHARS,
        shell: tuple[str, ...] = DEFAULT_SHELL,
    ) -> None:
        self._default_timeout_seconds = (
            _as_positive_float(default_timeout_seconds, "default_timeout_seconds")
            if default_timeout_seconds is not None
            else None
        )
        if max_output_chars is not None and max_output_chars <= 0:
            raise ValueError("max_output_chars must be > 0")
        self._max_output_chars = max_output_chars
        self._shell = tuple(shell)

    async def run(self, spec: CommandSpec) -> CommandResult:
        started_ns = time.monotonic_ns()
        timeout = spec.resolved_timeout(self._default_timeout_seconds)
        loop = asyncio.get_running_loop()
        capture = _OutputCapture(loop)

        try:
            transport, _ = await loop.subprocess_exec(
                lambda: capture,
                *spec.argv(self._shell),
                cwd=spec.cwd,
                env=spec.build_env(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            return CommandResult(
                command=spec.command,
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=_elapsed_ms(started_ns),
                error=str(exc),
            )

        try:
            finished = await _wait_or_kill(transport, capture, timeout)
            exit_code = transport.get_returncode() if finished else None
        finally:
            transport.close()

        error_text: str | None = None
        if not finished:
            timeout_value = timeout if timeout is not None else 0.0
            error_text = f"command timed out after {timeout_value:.3f}s"

        return CommandResult(
            command=spec.command,
            exit_code=exit_code,
            stdout=_truncate_text(
                _normalize_output_text(bytes(capture.stdout)), self._max_output_chars
            ),
            stderr=_truncate_text(
                _normalize_output_text(bytes(capture.stderr)), self._max_output_chars
            ),
            duration_ms=_elapsed_ms(started_ns),
            timed_out=not finished,
            error=error_text,
        )


class _OutputCapture(asyncio.SubprocessProtocol):
    """Collects both pipes into buffers that outlive a kill."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.stdout = bytearray()
        self.stderr = bytearray()
        self.closed: asyncio.Future[None] = loop.create_future()

    def pipe_data_received(self, fd: int, data: bytes | str) -> None:
        chunk = data.encode() if isinstance(data, str) else data
        if fd == 1:
            self.stdout.extend(chunk)
        elif fd == 2:
            self.stderr.extend(chunk)

    def connection_lost(self, exc: Exception | None) -> None:
        # Called once the process has exited and both pipes reached EOF.
        if not self.closed.done():
            self.closed.set_result(None)


async def _wait_or_kill(
    transport: asyncio.SubprocessTransport,
    capture: _OutputCapture,
    timeout_seconds: float | None,
) -> bool:
    """Wait for exit and EOF; returns False when the timeout killed the command."""

    try:
        await asyncio.wait_for(asyncio.shield(capture.closed), timeout=timeout_seconds)
    except TimeoutError:
        _kill_process_group(transport)
        await _settle(capture)
        return False
    except asyncio.CancelledError:
        _kill_process_group(transport)
        await _settle(capture)
        raise
    return True


async def _settle(capture: _OutputCapture) -> None:
    # A detached grandchild can hold the pipes open forever; stop reading after the grace.
    with suppress(TimeoutError):
        await asyncio.wait_for(asyncio.shield(capture.closed), timeout=_KILL_GRACE_SECONDS)


def _kill_process_group(transport: asyncio.SubprocessTransport) -> None:
    # Commands run in their own session; kill the whole group, not just the shell.
    with suppress(ProcessLookupError, PermissionError):
        os.killpg(transport.get_pid(), signal.SIGKILL)
        return
    with suppress(ProcessLookupError):
        transport.kill()


def _elapsed_ms(started_ns: int) -> int:
    delta_ns = time.monotonic_ns() - started_ns
    if delta_ns < 0:
        return 0
    return delta_ns // 1_000_000


def _normalize_output_text(raw: bytes | None) -> str:
    if not raw:
        return ""
    text = raw.decode("utf-8", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _truncate_text(text: str, max_chars: int | None) -> str:
    if max_chars is None or len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    return f"{text[:max_chars]}\n...[truncated {omitted} chars]"


def _tail(text: str, *, limit: int = 200) -> str:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return ""
    last = lines[-1]
    return last if len(last) <= limit else f"{last[: limit - 3]}..."


def _as_positive_float(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{path}: expected number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        raise ValueError(f"{path}: must be finite")
    if parsed <= 0.0:
        raise ValueError(f"{path}: must be > 0")
    return parsed


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "DEFAULT_SHELL",
    "LocalSubprocessExecutor",
]
