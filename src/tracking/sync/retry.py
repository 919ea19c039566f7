"""Timeout and exponential-backoff retry around a single carrier call."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tracking.errors import AdapterTransportError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def backoff_delays(max_retries: int, base_delay: float) -> list[float]:
    """Delays slept between attempts: ``base * 2**n`` for each retry."""
    return [base_delay * 2**attempt for attempt in range(max_retries)]


def _describe(error: BaseException, timeout: float) -> str:
    if isinstance(error, TimeoutError):
        return f"timed out after {timeout}s"
    return str(error) or type(error).__name__


def _log_retry(name: str, attempts: int, timeout: float) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        logger.warning(
            "Carrier call failed, retrying",
            operation=name,
            attempt=state.attempt_number,
            max_attempts=attempts,
            delay_seconds=state.next_action.sleep,
            error=_describe(state.outcome.exception(), timeout),
        )

    return before_sleep


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    max_retries: int = 3,
    base_delay: float = 1.0,
    timeout: float = 30.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    throttle: Callable[[], Awaitable[None]] | None = None,
) -> T:
    """Run ``operation`` with a per-attempt timeout, retrying on any failure.

    The call is attempted ``max_retries + 1`` times, sleeping
    ``backoff_delays(max_retries, base_delay)`` in between. A timeout counts
    as a transport failure. ``throttle`` (the rate limiter) is awaited before
    each attempt, outside the timeout. After the last attempt an
    ``AdapterTransportError`` wrapping the final failure is raised.
    """
    attempts = max_retries + 1
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay, exp_base=2),
        retry=retry_if_exception_type(Exception),
        sleep=sleep,
        before_sleep=_log_retry(name, attempts, timeout),
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                if throttle is not None:
                    await throttle()
                return await asyncio.wait_for(operation(), timeout=timeout)
    except Exception as exc:
        reason = _describe(exc, timeout)
        logger.error("Carrier call failed after retries", operation=name, attempts=attempts, error=reason)
        raise AdapterTransportError(
            f"{name} failed after {attempts} attempts: {reason}",
            attempts=attempts,
            cause=exc,
        ) from exc
