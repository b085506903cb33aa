"""Executable CLI entrypoint for ``matrixci``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


class ExitCode(IntEnum):
    """Process exit codes of ``matrixci run`` and ``matrixci validate``."""

    GREEN = 0
    RED = 1
    CONFIG_ERROR = 2
    INSTALL_FAILED = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m matrixci`` and the console script.

    Config and installer failures are already mapped by the CLI; argparse usage errors
    become ``CONFIG_ERROR`` and anything unexpected is an ``INTERNAL_ERROR`` with a traceback.
    """

    from matrixci.ui.cli import run_cli

    try:
        return int(run_cli(argv))
    except SystemExit as exc:
        # argparse exits 0 for --help and 2 for usage errors.
        if exc.code in (None, 0):
            return int(ExitCode.GREEN)
        return int(ExitCode.CONFIG_ERROR)
    except Exception:
        traceback.print_exc(file=sys.stderr)
        return int(ExitCode.INTERNAL_ERROR)


__all__ = ["ExitCode", "cli_entrypoint"]
