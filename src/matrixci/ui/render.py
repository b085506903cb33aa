"""Output rendering abstraction for the matrixci status log.

File: src/matrixci/ui/render.py
Last updated: 2026-10-18

Purpose
- Provide a thin rendering layer for the human-readable status log on stdout.
- Respect NO_COLOR environment variable and --no-color CLI flag.

What should be included in this file
- CLIRenderer class with methods for common output patterns.
- Factory function to create a renderer with appropriate settings.

Functional requirements
- Plain-text rendering must always work; color is only added on a TTY.
- Structured logs never go through this layer.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Sequence

_GREEN: Final[str] = "\033[32m"
_RED: Final[str] = "\033[31m"
_YELLOW: Final[str] = "\033[33m"
_BOLD: Final[str] = "\033[1m"
_RESET: Final[str] = "\033[0m"


def _color_allowed(no_color_flag: bool) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


class CLIRenderer:
    """Thin CLI output renderer.

    Produces clean, deterministic plain-text output.
    Respects ``NO_COLOR`` env var and ``--no-color`` flag.
    """

    def __init__(self, *, no_color: bool = False, verbose: bool = False) -> None:
        self.verbose = verbose
        self._color = _color_allowed(no_color)

    @property
    def color(self) -> bool:
        return self._color

    def heading(self, text: str) -> None:
        """Print a heading line."""

        print(self._paint(text, _BOLD))

    def kv(self, key: str, value: object) -> None:
        """Print a key: value pair."""

        print(f"{key}: {value}")

    def text(self, line: str) -> None:
        """Print a plain text line."""

        print(line)

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        print(f"\n{self._paint(title, _BOLD)}")

    def warning(self, text: str) -> None:
        """Print a warning message."""

        print(f"  {self._paint('Warning:', _YELLOW)} {text}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        """Print a bulleted list."""

        for entry in entries:
            print(f"  {prefix}{entry}")

    def block(self, text: str, *, indent: str = "    ") -> None:
        """Print captured command output, indented."""

        for line in text.rstrip("\n").splitlines():
            print(f"{indent}{line}")

    def ok(self, label: str) -> None:
        """Print a passing line."""

        print(f"  {self._paint('OK  ', _GREEN)}  {label}")

    def fail(self, label: str) -> None:
        """Print a failing line."""

        print(f"  {self._paint('FAIL', _RED)}  {label}")

    def allowed_fail(self, label: str) -> None:
        """Print a failing line that does not block the verdict."""

        print(f"  {self._paint('FAIL', _YELLOW)}  {label}")

    def skip(self, label: str) -> None:
        """Print a skipped line."""

        print(f"  {self._paint('SKIP', _YELLOW)}  {label}")

    def verdict(self, green: bool, detail: str) -> None:
        """Print the final verdict line."""

        label = "GREEN" if green else "RED"
        print(f"\nVerdict: {self._paint(label, _GREEN if green else _RED)} ({detail})")

    def _paint(self, text: str, code: str) -> str:
        if not self._color:
            return text
        return f"{code}{text}{_RESET}"


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
