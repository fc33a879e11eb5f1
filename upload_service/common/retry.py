"""Bounded retry with a fixed delay between attempts."""

from __future__ import annotations

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

T = TypeVar("T")

logger = logging.getLogger("upload_service.retry")


def retry(
    attempts: int,
    delay_ms: int,
    operation: Callable[[], T],
    *,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Callable[[int, BaseException], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` up to ``attempts`` times.

    Only exceptions matching ``retry_on`` are retried; anything else
    propagates on the first occurrence. ``delay_ms`` is slept between
    attempts, never after the last one. When the budget is exhausted the
    last exception is re-raised unchanged.

    Args:
        attempts: Total number of attempts, including the first one.
        delay_ms: Fixed pause between attempts, in milliseconds.
        operation: Zero-argument callable to run.
        retry_on: Exception types considered transient.
        on_retry: Called with ``(attempt, exc)`` before each pause.
        sleep: Sleep function, injectable for tests.

    Returns:
        Whatever ``operation`` returns on its first successful attempt.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except retry_on as exc:
            if attempt >= attempts:
                raise
            logger.warning(
                "retrying attempt=%s/%s delay_ms=%s error=%s",
                attempt,
                attempts,
                delay_ms,
                exc,
            )
            if on_retry is not None:
                on_retry(attempt, exc)
            if delay_ms > 0:
                sleep(delay_ms / 1000.0)

    raise AssertionError("unreachable")  # pragma: no cover
