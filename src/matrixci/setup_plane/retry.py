"""
matrixci — bounded retry policy

File: src/matrixci/setup_plane/retry.py
Last updated: 2026-10-18

Purpose
- Bounded exponential backoff for retry-eligible setup steps (the dependency fetch).

Normative behavior
- ``max_attempts`` counts total attempts, including the first; termination is guaranteed.
- Only errors flagged ``retryable`` are retried; anything else propagates immediately.
- Sleep and randomness are injectable so callers can assert attempt counts, not timing.
"""

from __future__ import annotations

import asyncio
import random as random_module
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TypeAlias, TypeVar

from matrixci.domain.errors import MatrixError

_ResultT = TypeVar("_ResultT")

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
RandomFn: TypeAlias = Callable[[], float]
RetryCallback: TypeAlias = Callable[[int, MatrixError, float], None]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff policy."""

    max_attempts: int = 5
    initial_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0
    jitter_ratio: float = 0.0
    attempt_timeout_seconds: float | None = 300.0

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if self.max_delay_seconds < 0:
            raise ValueError("max_delay_seconds must be >= 0")
        if self.initial_delay_seconds > self.max_delay_seconds:
            raise ValueError("initial_delay_seconds must be <= max_delay_seconds")
        if not (0.0 <= self.jitter_ratio <= 1.0):
            raise ValueError("jitter_ratio must be between 0.0 and 1.0")
        if self.attempt_timeout_seconds is not None and self.attempt_timeout_seconds <= 0:
            raise ValueError("attempt_timeout_seconds must be > 0 when provided")

    @classmethod
    def from_config(cls, section: object) -> RetryPolicy:
        """Build a policy from the ``[retry]`` config section."""

        if not isinstance(section, Mapping):
            return cls()
        known = {
            "max_attempts",
            "initial_delay_seconds",
            "multiplier",
            "max_delay_seconds",
            "jitter_ratio",
            "attempt_timeout_seconds",
        }
        return cls(**{key: value for key, value in section.items() if key in known})


def compute_backoff_delay(
    *,
    retry_number: int,
    policy: RetryPolicy,
    random_fn: RandomFn = random_module.random,
) -> float:
    """Return bounded exponential backoff delay before retry N (1-based)."""

    if retry_number <= 0:
        raise ValueError("retry_number must be > 0")

    base_delay = policy.initial_delay_seconds * (policy.multiplier ** (retry_number - 1))
    bounded_delay = min(base_delay, policy.max_delay_seconds)

    if policy.jitter_ratio == 0.0:
        return bounded_delay

    random_value = random_fn()
    if not (0.0 <= random_value <= 1.0):
        raise ValueError("random_fn must return values in [0.0, 1.0]")

    max_jitter = bounded_delay * policy.jitter_ratio
    jitter = ((random_value * 2.0) - 1.0) * max_jitter
    return max(0.0, min(policy.max_delay_seconds, bounded_delay + jitter))


async def run_with_retries(
    operation: Callable[[int], Awaitable[_ResultT]],
    *,
    policy: RetryPolicy,
    sleep: SleepFn = asyncio.sleep,
    random_fn: RandomFn = random_module.random,
    on_retry: RetryCallback | None = None,
) -> _ResultT:
    """Run ``operation(attempt)`` until it succeeds or attempts are exhausted.

    The last retryable error is re-raised once ``policy.max_attempts`` is reached.
    """

    attempt = 1
    while True:
        try:
            return await operation(attempt)
        except MatrixError as exc:
            if not exc.retryable or attempt >= policy.max_attempts:
                raise

            delay_seconds = compute_backoff_delay(
                retry_number=attempt,
                policy=policy,
                random_fn=random_fn,
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay_seconds)
            await sleep(delay_seconds)
            attempt += 1


__all__ = [
    "RandomFn",
    "RetryCallback",
    "RetryPolicy",
    "SleepFn",
    "compute_backoff_delay",
    "run_with_retries",
]
