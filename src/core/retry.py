# src/core/retry.py — v1
"""Retry with exponential backoff for remote calls.

Only transient errors (network, timeout, server-side) are retried. The
default policy performs no retries; callers opt in through Settings.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class RetryExhausted(Exception):
    """All attempts failed for a remote call."""

    def __init__(self, operation: str, error_type: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.error_type = error_type
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"'{operation}' failed after {attempts} attempts ({error_type}): {last_error}"
        )


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for transient errors."""

    max_retries: int = 0
    base_delay_s: float = 0.5
    backoff_factor: float = 2.0
    jitter: bool = True


def classify_error(error: Exception) -> str:
    """Classify an exception as ``transient`` or ``permanent``."""
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return "transient"
    msg = str(error).lower()
    if "429" in msg or "rate" in msg or "timeout" in msg:
        return "transient"
    if any(c in msg for c in ("500", "502", "503", "504", "unavailable")):
        return "transient"
    return "permanent"


def _compute_delay(config: RetryConfig, attempt: int) -> float:
    """Compute delay for a given attempt (0-based)."""
    delay = config.base_delay_s * (config.backoff_factor ** attempt)
    if config.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return delay


async def with_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    operation: str = "remote call",
    config: RetryConfig | None = None,
    **kwargs: Any,
) -> Any:
    """Execute an async function, retrying transient failures.

    Raises:
        RetryExhausted: On a permanent error or once retries are used up.
    """
    config = config or RetryConfig()
    attempts = 0

    while True:
        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            error_type = classify_error(e)
            attempts += 1

            if error_type != "transient" or attempts > config.max_retries:
                raise RetryExhausted(operation, error_type, attempts, e) from e

            delay = _compute_delay(config, attempts - 1)
            logger.warning(
                "%s: transient error (attempt %d/%d), retrying in %.1fs: %s",
                operation, attempts, config.max_retries, delay, e,
            )
            await asyncio.sleep(delay)
