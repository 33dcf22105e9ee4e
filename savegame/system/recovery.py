"""Bounded retry with linear backoff."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry policy configuration.

    The delay before attempt ``n + 1`` is ``n * backoff_seconds``.
    """

    name: str
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    # Exceptions that end the retry loop immediately
    give_up_on: tuple = ()

    def get_delay(self, attempt: int) -> float:
        return attempt * self.backoff_seconds

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        if isinstance(error, self.give_up_on):
            return False
        return attempt < self.max_attempts


@dataclass
class RetryAttempt:
    """Record of one attempt."""

    policy: str
    attempt: int
    timestamp: float = field(default_factory=time.time)
    success: bool = False
    error_message: Optional[str] = None
    duration: float = 0.0


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    before_retry: Optional[Callable[[int, Exception], Awaitable[None]]] = None,
    history: Optional[list[RetryAttempt]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run an async operation under a retry policy.

    Args:
        operation: Called with the 1-based attempt number
        policy: Retry policy to apply
        before_retry: Awaited after a failed attempt and its backoff delay,
            with the number of the failed attempt and its error
        history: Optional list that receives one RetryAttempt per attempt
        sleep: Awaitable used for backoff delays

    Returns:
        The operation's result

    Raises:
        Exception: The last error once attempts are exhausted, or a
            ``give_up_on`` error as soon as it occurs
    """
    attempt = 0
    while True:
        attempt += 1
        record = RetryAttempt(policy=policy.name, attempt=attempt)
        start = time.time()
        try:
            result = await operation(attempt)
        except Exception as e:
            record.error_message = str(e)
            record.duration = time.time() - start
            if history is not None:
                history.append(record)

            if not policy.should_retry(attempt, e):
                raise

            delay = policy.get_delay(attempt)
            logger.warning(
                f"{policy.name} attempt {attempt}/{policy.max_attempts} failed: {e}. "
                f"Retrying in {delay:.1f}s"
            )
            if delay > 0:
                await sleep(delay)
            if before_retry is not None:
                await before_retry(attempt, e)
            continue

        record.success = True
        record.duration = time.time() - start
        if history is not None:
            history.append(record)
        return result
