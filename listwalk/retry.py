"""Retry policy for page fetches.

One page fetch (render + extract) is wrapped by the retry policy. Transient
failures are retried with a backoff that grows linearly with the attempt
number; anything else propagates immediately. When every attempt has failed
the policy raises PermanentFetchError, which carries the attempt history.

This is the only place where attempt-level logging happens.

Example::

    policy = RetryPolicy(max_attempts=3, base_delay=2.0)
    records = await policy.execute(
        lambda: fetch_and_extract(url), description=url
    )
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from listwalk.common.exceptions import (
    PermanentFetchError,
    TransientException,
)
from listwalk.data_types import FetchAttempt

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Returns False when the wait was interrupted by cancellation
Sleeper = Callable[[float], Awaitable[bool]]


async def default_sleep(seconds: float) -> bool:
    await asyncio.sleep(seconds)
    return True


class RetryPolicy:
    """Bounded retry with linear-in-attempt backoff.

    The delay after the n-th failed attempt is ``base_delay * n``, capped at
    ``max_delay`` when one is given, so delays never decrease.

    Attributes:
        max_attempts: Total number of tries, including the first.
        base_delay: Backoff unit in seconds.
        max_delay: Optional cap on a single backoff delay, in seconds.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        max_delay: float | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0:
            raise ValueError("base_delay must not be negative")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep or default_sleep

    def backoff_delay(self, failed_attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        delay = self.base_delay * failed_attempt
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    async def execute(
        self,
        action: Callable[[], Awaitable[T]],
        description: str = "action",
    ) -> T:
        """Run *action* until it succeeds or the attempts are used up.

        Args:
            action: Zero-argument callable returning a fresh awaitable for
                each attempt.
            description: Label used in log messages and errors (the URL).

        Returns:
            The value of the first successful attempt.

        Raises:
            PermanentFetchError: If every attempt failed transiently, or the
                run was cancelled during a backoff wait.
            Exception: Any non-transient exception raised by *action*,
                unchanged and without retrying.
        """
        attempts: list[FetchAttempt] = []
        delay = 0.0

        for attempt in range(1, self.max_attempts + 1):
            logger.info(f"Attempt {attempt}: Loading {description}")
            try:
                result = await action()
            except TransientException as e:
                attempts.append(
                    FetchAttempt(
                        attempt=attempt,
                        delay=delay,
                        outcome="transient_failure",
                        error=str(e),
                    )
                )
                logger.warning(
                    f"Attempt {attempt} failed for {description}: {e}",
                    extra={
                        "url": description,
                        "attempt": attempt,
                        "error_type": type(e).__name__,
                    },
                )
                if attempt == self.max_attempts:
                    logger.error(
                        f"Skipping {description} after {attempt} attempts."
                    )
                    raise PermanentFetchError(description, attempts, e) from e

                delay = self.backoff_delay(attempt)
                logger.info(f"Retrying {description} in {delay:.2f}s")
                if not await self._sleep(delay):
                    logger.info(
                        f"Retry of {description} cancelled during backoff"
                    )
                    raise PermanentFetchError(
                        description, attempts, e, cancelled=True
                    ) from e
            else:
                attempts.append(
                    FetchAttempt(attempt=attempt, delay=delay, outcome="success")
                )
                logger.info(
                    f"Loaded {description} on attempt {attempt}",
                    extra={"url": description, "attempt_count": attempt},
                )
                return result

        # The loop always returns or raises
        raise AssertionError("unreachable")


async def execute_with_retry(
    action: Callable[[], Awaitable[T]],
    max_attempts: int,
    base_delay: float,
    description: str = "action",
) -> T:
    """Functional form of RetryPolicy.execute()."""
    policy = RetryPolicy(max_attempts=max_attempts, base_delay=base_delay)
    return await policy.execute(action, description=description)
