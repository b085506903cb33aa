"""Opaque command execution used by the installer and the stage runner."""

from matrixci.execution.commands import (
    DEFAULT_SHELL,
    CommandExecutor,
    CommandResult,
    CommandSpec,
    LocalSubprocessExecutor,
)

__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "DEFAULT_SHELL",
    "LocalSubprocessExecutor",
]
