"""Shared setup: dependency installer and its bounded retry policy."""

from matrixci.setup_plane.installer import DependencyInstaller, install, resolve_cwd
from matrixci.setup_plane.retry import RetryPolicy, compute_backoff_delay, run_with_retries

__all__ = [
    "DependencyInstaller",
    "RetryPolicy",
    "compute_backoff_delay",
    "install",
    "resolve_cwd",
    "run_with_retries",
]
