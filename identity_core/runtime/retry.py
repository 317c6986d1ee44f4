"""
Retry policy for outbound side effects.

Only the event and notification sinks retry. Store mutations never do:
an aborted transaction surfaces to the caller, who decides whether to
replay the request.
"""

from __future__ import annotations

import asyncio
import functools
import random
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger
from pydantic import BaseModel

from .errors import RetryableError

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Exponential backoff with optional jitter.

    Attributes:
        max_attempts: Maximum number of attempts (including initial).
        base_delay: Initial delay in seconds between retries.
        max_delay: Cap for the computed delay.
        exponential_base: Base for exponential backoff calculation.
        jitter: Whether to add up to 25% random jitter.
        retry_on_status: HTTP status codes that trigger retry.
    """

    max_attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 5.0
    exponential_base: float = 2.0
    jitter: bool = True
    retry_on_status: tuple[int, ...] = (429, 502, 503, 504)

    model_config = {"frozen": True}

    def calculate_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            delay += delay * 0.25 * random.random()
        return delay

    def should_retry_status(self, status_code: int) -> bool:
        return status_code in self.retry_on_status


DEFAULT_RETRY_POLICY = RetryPolicy()


def with_retry(
    policy: RetryPolicy | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Retry an async callable while it raises RetryableError.

    Args:
        policy: Retry policy to use. Defaults to DEFAULT_RETRY_POLICY.

    Returns:
        Decorator applying the policy.
    """
    retry_policy = policy or DEFAULT_RETRY_POLICY

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except RetryableError as e:
                    attempt += 1
                    if attempt >= retry_policy.max_attempts:
                        logger.warning(
                            f"[{e.debug_id}] Giving up on {func.__name__} after {attempt} attempts: {e.message_safe}"
                        )
                        raise
                    delay = retry_policy.calculate_delay(attempt - 1)
                    logger.info(
                        f"[{e.debug_id}] Retry {attempt}/{retry_policy.max_attempts - 1} "
                        f"for {func.__name__} in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
