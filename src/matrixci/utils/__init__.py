"""Utility exports for concurrency helpers."""

from matrixci.utils.concurrency import CancellationToken, WorkerPool

__all__ = [
    "CancellationToken",
    "WorkerPool",
]
