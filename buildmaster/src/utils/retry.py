"""
BuildMaster - Retry with Exponential Backoff
=============================================
Bounded async retry for the transient hops (vector index, language
model).  Only exceptions accepted by ``retry_on`` are retried; anything
else propagates on the first failure.
"""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, TypeVar

from buildmaster.src.core.exceptions import BuildMasterError
from buildmaster.src.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_MAX_DELAY_MS = 10_000


def is_transient(exc: BaseException) -> bool:
    """Default retry predicate: core errors flagged ``transient``."""
    return isinstance(exc, BuildMasterError) and exc.transient


def backoff_delay_ms(attempt: int, base_delay_ms: int, multiplier: float = 2.0, max_delay_ms: int = _MAX_DELAY_MS) -> int:
    """Delay before retry number *attempt* (0-based), with up to 10% jitter."""
    delay = base_delay_ms * (multiplier ** attempt)
    jitter = random.uniform(0, 0.1 * delay)
    return int(min(delay + jitter, max_delay_ms))


async def retry_async(operation: Callable[[], Awaitable[T]], *, max_attempts: int, base_delay_ms: int, retry_on: Callable[[BaseException], bool] = is_transient, label: str = "operation") -> T:
    """
    Await ``operation()`` up to *max_attempts* times.

    Parameters
    ----------
    operation
        Zero-argument factory returning a fresh awaitable per attempt.
    max_attempts
        Total attempts including the first (≥ 1).
    base_delay_ms
        Delay before the first retry; doubles on each further retry.
    retry_on
        Predicate deciding whether an exception is worth retrying.
    label
        Name used in log lines.
    """
    attempts = max(1, max_attempts)
    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as exc:
            if not retry_on(exc) or attempt == attempts - 1:
                raise
            delay = backoff_delay_ms(attempt, base_delay_ms) / 1000.0
            logger.warning("[RETRY] %s attempt %d/%d failed: %s. Retrying in %.2fs.", label, attempt + 1, attempts, exc, delay)
            await asyncio.sleep(delay)
    raise RuntimeError("retry_async exhausted without result")  # unreachable
