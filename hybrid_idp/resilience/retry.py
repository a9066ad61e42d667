"""Async retry with exponential backoff and jitter.

Example:
    >>> config = RetryConfig(max_attempts=3, initial_delay_seconds=0.5)
    >>> result = await retry_with_backoff(
    ...     client.analyze,
    ...     config,
    ...     (ExternalServiceError,),
    ...     "invoice.pdf",
    ...     "Extract all fields",
    ... )
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry logic.

    Attributes:
        max_attempts: Maximum number of attempts (including initial)
        initial_delay_seconds: Initial delay before first retry
        max_delay_seconds: Maximum delay between retries
        exponential_base: Base for exponential backoff (delay *= base ** attempt)
        jitter: Whether to add random jitter to delays
    """

    max_attempts: int = 3
    initial_delay_seconds: float = 0.5
    max_delay_seconds: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Backoff delay before retry number ``attempt + 1`` (0-based attempt)."""
    delay = min(
        config.initial_delay_seconds * (config.exponential_base**attempt),
        config.max_delay_seconds,
    )
    if config.jitter:
        delay = delay * (0.5 + random.random())
    return delay


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    config: RetryConfig,
    retryable_exceptions: Tuple[Type[Exception], ...],
    *args,
    **kwargs,
) -> Any:
    """Await ``func`` and retry on retryable exceptions.

    Args:
        func: Coroutine function to execute
        config: Retry configuration
        retryable_exceptions: Exception types that trigger a retry
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result from the first successful call

    Raises:
        The last exception once every attempt failed, or any
        non-retryable exception immediately.
    """
    for attempt in range(config.max_attempts):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt == config.max_attempts - 1:
                logger.error(
                    "All %d attempts failed",
                    config.max_attempts,
                    extra={"exception_type": type(e).__name__},
                )
                raise

            delay = compute_delay(config, attempt)
            logger.warning(
                "Attempt %d/%d failed: %s: %s. Retrying in %.2fs",
                attempt + 1,
                config.max_attempts,
                type(e).__name__,
                e,
                delay,
                extra={
                    "attempt": attempt + 1,
                    "max_attempts": config.max_attempts,
                    "delay_seconds": delay,
                    "exception_type": type(e).__name__,
                },
            )
            await asyncio.sleep(delay)

    raise ValueError("max_attempts must be at least 1")
