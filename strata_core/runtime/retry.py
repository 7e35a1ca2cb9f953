"""
Retry policy configuration and decorator.

Session-based backends (FTP, SFTP) reconnect for every operation, so a
single refused handshake should not fail the whole call. The decorator
here retries RetryableError with exponential backoff and jitter.
"""

from __future__ import annotations

import asyncio
import functools
import random
from typing import Any, Callable, TypeVar

from loguru import logger
from pydantic import BaseModel

from .errors import ServiceError

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    The delay for attempt N is min(base_delay * exponential_base ** N, max_delay),
    plus up to 25% jitter when enabled.

    Attributes:
        max_attempts: Maximum number of attempts (including initial).
        base_delay: Initial delay in seconds between retries.
        max_delay: Maximum delay in seconds (caps backoff).
        exponential_base: Base for exponential backoff calculation.
        jitter: Whether to add random jitter to delays.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True

    model_config = {"frozen": True}

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay in seconds for a 0-indexed attempt number."""
        delay = self.base_delay * (self.exponential_base**attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay += delay * 0.25 * random.random()

        return delay


DEFAULT_RETRY_POLICY = RetryPolicy()


def connect_retry_policy() -> RetryPolicy:
    """Policy used when establishing FTP/SFTP sessions."""
    from strata_core.config import settings

    return RetryPolicy(max_attempts=max(1, settings.STORAGE_CONNECT_MAX_ATTEMPTS))


def with_retry(
    policy: RetryPolicy | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for retrying async functions on retryable ServiceErrors.

    Args:
        policy: Retry policy to use. Defaults to DEFAULT_RETRY_POLICY.
        on_retry: Optional callback called before each retry with
                  (attempt, exception, delay).

    Example:
        @with_retry(RetryPolicy(max_attempts=5))
        async def open_session() -> Session:
            ...
    """
    retry_policy = policy or DEFAULT_RETRY_POLICY

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            last_exception: Exception | None = None

            for attempt in range(retry_policy.max_attempts):
                try:
                    return await func(*args, **kwargs)
                except ServiceError as e:
                    if not e.retryable:
                        raise
                    last_exception = e
                    if attempt + 1 >= retry_policy.max_attempts:
                        logger.warning(
                            f"[{e.debug_id}] Max retries ({retry_policy.max_attempts}) "
                            f"exceeded for {func.__name__}: {e.message_safe}"
                        )
                        raise

                    delay = retry_policy.calculate_delay(attempt)
                    logger.info(
                        f"[{e.debug_id}] Retry {attempt + 1}/{retry_policy.max_attempts} "
                        f"for {func.__name__} in {delay:.2f}s: {e.message_safe}"
                    )

                    if on_retry:
                        on_retry(attempt, e, delay)

                    await asyncio.sleep(delay)
            if last_exception:
                raise last_exception
            raise RuntimeError(f"Retry loop exited unexpectedly in {func.__name__}")

        return wrapper  # type: ignore

    return decorator
