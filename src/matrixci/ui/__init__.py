"""Command-line surface: argument routing and status-log rendering."""

from matrixci.ui.cli import CLIError, build_parser, exit_code_for, render_run, run_cli
from matrixci.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "exit_code_for",
    "render_run",
    "run_cli",
]
