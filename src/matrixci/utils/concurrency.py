"""Variant fan-out: a shared stop signal and a bounded worker pool."""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Iterable

T = TypeVar("T")


class CancellationToken:
    """Stop signal shared by the variants of one run; checked between stages."""

    __slots__ = ("_reason", "_cancelled")

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        # The first reason wins; later cancels are no-ops.
        if not self._cancelled:
            self._cancelled = True
            self._reason = reason

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason


class WorkerPool(Generic[T]):
    """Run at most ``max_concurrency`` coroutines at once, yielding results as they finish.

    An exception from any coroutine cancels the ones still pending and propagates.
    """

    def __init__(self, max_concurrency: int) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self.max_concurrency = max_concurrency

    async def run(self, coroutines: Iterable[Awaitable[T]]) -> AsyncIterator[T]:
        gate = asyncio.Semaphore(self.max_concurrency)

        async def gated(coroutine: Awaitable[T]) -> T:
            try:
                await gate.acquire()
            except asyncio.CancelledError:
                # Never started; close it.
                if inspect.iscoroutine(coroutine):
                    coroutine.close()
                raise
            try:
                return await coroutine
            finally:
                gate.release()

        tasks = [asyncio.ensure_future(gated(coroutine)) for coroutine in coroutines]
        try:
            for finished in asyncio.as_completed(tasks):
                yield await finished
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)


__all__ = ["CancellationToken", "WorkerPool"]
