"""
Retry with exponential backoff, shared by provider and database calls.

Errors are classified as transient (worth another attempt) or permanent
(fail fast). Only transient errors are retried.
"""

import asyncio
import random
from datetime import datetime, timezone
from typing import TypeVar, Callable, Awaitable
from dataclasses import dataclass
import httpx
import structlog

logger = structlog.get_logger()

T = TypeVar('T')

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior"""
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True


class TransientError(Exception):
    """Indicates an operation may succeed if retried"""
    pass


class PermanentError(Exception):
    """Indicates an operation should NOT be retried"""
    pass


def is_transient_error(exception: Exception) -> bool:
    """Classify an exception as transient (retry) or permanent (give up)."""
    if isinstance(exception, PermanentError):
        return False

    if isinstance(exception, TransientError):
        return True

    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code in RETRYABLE_STATUS_CODES

    if isinstance(exception, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True

    return isinstance(exception, (ConnectionError, TimeoutError, asyncio.TimeoutError))


async def retry_async(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig = None,
    context: str = "unknown_operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> T:
    """
    Call func until it succeeds, a permanent error occurs, or attempts run out.

    Args:
        func: Zero-argument coroutine factory
        config: Retry configuration (optional)
        context: Operation name for logging
        sleep: Awaitable sleep, injectable for tests

    Returns:
        Result of the first successful call

    Raises:
        The last exception once retries are exhausted, or the first permanent one
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(config.max_attempts):
        try:
            start_time = datetime.now(timezone.utc)
            result = await func()

            if attempt > 0:
                duration = (datetime.now(timezone.utc) - start_time).total_seconds()
                logger.info("retry_success",
                    context=context,
                    attempt=attempt + 1,
                    duration_ms=duration * 1000
                )

            return result

        except Exception as e:
            if not is_transient_error(e):
                logger.error("non_retryable_error",
                    context=context,
                    attempt=attempt + 1,
                    error_type=type(e).__name__,
                    error_message=str(e)[:200]
                )
                raise

            if attempt == config.max_attempts - 1:
                logger.error("retry_exhausted",
                    context=context,
                    total_attempts=config.max_attempts,
                    final_error=str(e)[:200],
                    error_type=type(e).__name__
                )
                raise

            delay = calculate_delay(attempt, config)

            logger.warning("retry_attempt",
                context=context,
                attempt=attempt + 1,
                max_attempts=config.max_attempts,
                error_type=type(e).__name__,
                error_message=str(e)[:200],
                next_delay_seconds=round(delay, 2)
            )

            await sleep(delay)

    raise PermanentError(f"{context}: retry loop exited without result")


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Exponential backoff capped at max_delay, with optional ±50% jitter"""
    delay = min(config.base_delay * (config.exponential_base ** attempt), config.max_delay)

    if config.jitter:
        delay *= random.uniform(0.5, 1.5)

    return delay


class RetryConfigs:
    """Pre-configured retry settings per external dependency"""

    AERO_API = RetryConfig(
        max_attempts=3,
        base_delay=2.0,
        max_delay=30.0
    )

    AVIATIONSTACK_API = RetryConfig(
        max_attempts=2,
        base_delay=2.0,
        max_delay=10.0
    )

    RESEND_API = RetryConfig(
        max_attempts=2,
        base_delay=0.5,
        max_delay=5.0
    )

    DATABASE = RetryConfig(
        max_attempts=2,
        base_delay=0.1,
        max_delay=1.0,
        jitter=False  # DB operations should be more predictable
    )
