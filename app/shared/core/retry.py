"""
Retry Logic with Exponential Backoff

Bounded retry for idempotent single-account calls against external admin
APIs. Only transient failures (rate limiting, timeouts, dropped
connections) are retried; every other error propagates on the first
failure. Bulk listings are never wrapped in this policy.
"""
import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.shared.core.exceptions import RetryableAPIError

logger = structlog.get_logger()
T = TypeVar("T")

MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
BACKOFF_MULTIPLIER = 2.0
RETRYABLE_STATUS_CODES = frozenset({408, 429, 504})

SleepFn = Callable[[float], Awaitable[None]]


def is_retryable_error(exc: BaseException) -> bool:
    """Classify an exception as transient (rate limit, timeout, connection reset)."""
    if isinstance(exc, RetryableAPIError):
        return True
    # Dropped connections only; refused connections and DNS failures fail fast.
    if isinstance(exc, (httpx.TimeoutException, httpx.ReadError, httpx.WriteError)):
        return True
    return isinstance(exc, (ConnectionResetError, asyncio.TimeoutError))


def _log_before_sleep(operation: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "operation_failed_will_retry",
            operation=operation,
            attempt=retry_state.attempt_number,
            max_attempts=MAX_RETRIES + 1,
            delay_seconds=delay,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    return _before_sleep


async def call_with_retry(
    operation: str,
    func: Callable[[], Awaitable[T]],
    *,
    max_retries: int = MAX_RETRIES,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """
    Run `func` with up to `max_retries` retries, waiting 1s, 2s, 4s between attempts.

    The last error is re-raised when retries are exhausted.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(
            multiplier=INITIAL_BACKOFF_SECONDS,
            exp_base=BACKOFF_MULTIPLIER,
        ),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=_log_before_sleep(operation),
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            result = await func()
        if attempt.retry_state.attempt_number > 1 and not attempt.retry_state.outcome.failed:
            logger.info(
                "operation_succeeded_after_retry",
                operation=operation,
                attempt=attempt.retry_state.attempt_number,
            )
    return result
