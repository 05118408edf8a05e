"""Retry combinator with exponential backoff for remote provider calls."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from storyteller.config import get_settings
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.retry")

T = TypeVar("T")

# Matched against str(error).lower(); any hit makes the error terminal.
NON_RETRYABLE_MARKERS = (
    "content_policy",
    "content policy",
    "invalid input",
    "invalid_request",
    "authentication",
    "api key",
    "api_key",
    "unauthorized",
)


class NonRetryableError(Exception):
    """Raised by callers that already know a failure is terminal."""


def is_retryable_error(exc: BaseException) -> bool:
    """Transient failures (timeouts, 5xx, rate limits) are retryable."""
    if isinstance(exc, NonRetryableError):
        return False
    message = str(exc).lower()
    code = str(getattr(exc, "code", "") or "").lower()
    return not any(marker in message or marker in code for marker in NON_RETRYABLE_MARKERS)


def backoff_delay(attempt: int, base_delay: float = 1.0) -> float:
    """Seconds to wait after the 1-based *attempt* failed: 2s, 4s, 8s at the default base."""
    return base_delay * (2 ** attempt)


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    label: str = "operation",
) -> T:
    """Run *operation* until it succeeds, a terminal error occurs, or attempts run out.

    The last error is re-raised unchanged once attempts are exhausted.
    """
    settings = get_settings()
    attempts = max_attempts if max_attempts is not None else settings.retry_max_attempts
    delay = base_delay if base_delay is not None else settings.retry_base_delay
    started = time.monotonic()

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        wait = state.next_action.sleep if state.next_action else 0
        logger.warning(
            "retry_scheduled | label=%s | attempt=%d/%d | backoff=%.1fs | error=%s",
            label, state.attempt_number, attempts, wait, exc,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(attempts, 1)),
        wait=lambda state: backoff_delay(state.attempt_number, delay),
        sleep=_sleep,
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_retry,
        reraise=True,
    )

    try:
        result = await retrying(operation)
    except Exception as exc:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        terminal = not is_retryable(exc)
        logger.error(
            "retry_failed | label=%s | attempts=%d | terminal=%s | elapsed_ms=%d | error=%s",
            label, retrying.statistics.get("attempt_number", 1), terminal, elapsed_ms, exc,
        )
        raise

    attempt_number = retrying.statistics.get("attempt_number", 1)
    if attempt_number > 1:
        logger.info("retry_succeeded | label=%s | attempt=%d", label, attempt_number)
    return result
