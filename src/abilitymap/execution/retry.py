"""Retry with exponential backoff and a shared rate-limit cooldown.

Every remote call goes through ``retry_with_backoff``. Before each attempt
the call waits for the shared ``RateLimitCooldown`` to pass; failures are
classified by ``abilitymap.core.errors.classify_error``:

- Rate limit (429): wait the provider's ``retryDelay`` hint (or a
  ``Retry-After`` value, or 30s) plus up to 1.5s of jitter. The cooldown is
  extended so that *every* caller sharing it backs off, not just this one.
- Transient server error (500/503): ``base_delay * 2**attempt`` plus up to
  0.4s of jitter.
- Anything else: raised immediately.

On the last attempt a retryable error is re-raised as-is, so callers see the
provider's error rather than a generic one.

State machine per call:

    Idle -> Attempting -> Success
                       -> RateLimited -> Cooldown -> Attempting
                       -> TransientFailure -> Backoff -> Attempting
                       -> FatalFailure -> Failed

Example usage:
    from abilitymap.execution.retry import RateLimitCooldown, retry_with_backoff

    cooldown = RateLimitCooldown()
    text = await retry_with_backoff(
        lambda: backend.complete(system, prompt),
        max_retries=4,
        base_delay=1.2,
        cooldown=cooldown,
    )
"""

from __future__ import annotations

import asyncio
import math
import random
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from abilitymap.core import constants
from abilitymap.core.errors import (
    ClassifiedError,
    ErrorCategory,
    MaxRetriesExceededError,
    classify_error,
)
from abilitymap.core.logging import get_logger

_logger = get_logger("retry")

T = TypeVar("T")

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[object]]


class RateLimitCooldown:
    """Shared "do not call before" timestamp for a rate-limited provider.

    One instance is shared by every retry loop that talks to the same
    provider. When any of them sees a rate limit it extends the cooldown,
    and all of them wait it out before their next attempt. The timestamp only
    ever moves forward; a shorter wait never cuts an existing cooldown short.

    The clock and sleeper are injectable so tests can run on virtual time.

    Attributes:
        clock: Monotonic clock returning seconds.
    """

    def __init__(
        self,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.clock = clock
        self._sleep = sleep
        self._until = 0.0
        self._lock = asyncio.Lock()

    @property
    def cooldown_until(self) -> float:
        """Clock value before which no attempt should start."""
        return self._until

    def remaining(self) -> float:
        """Seconds left in the current cooldown, 0.0 when inactive."""
        return max(0.0, self._until - self.clock())

    @property
    def active(self) -> bool:
        return self.remaining() > 0

    async def extend(self, seconds: float) -> float:
        """Push the cooldown to at least ``now + seconds``.

        Non-finite or negative waits are ignored.

        Returns:
            The resulting cooldown deadline.
        """
        if not math.isfinite(seconds) or seconds <= 0:
            return self._until
        async with self._lock:
            self._until = max(self._until, self.clock() + seconds)
            return self._until

    async def wait(self) -> float:
        """Block until the cooldown has passed.

        Loops in case another caller extends the cooldown while this one
        is sleeping.

        Returns:
            Total seconds spent waiting.
        """
        waited = 0.0
        while (remaining := self.remaining()) > 0:
            _logger.info("retry.cooldown_wait", wait_seconds=round(remaining, 3))
            await self._sleep(remaining)
            waited += remaining
        return waited

    async def sleep(self, seconds: float) -> None:
        """Sleep using the injected sleeper."""
        await self._sleep(seconds)

    def reset(self) -> None:
        """Clear any active cooldown."""
        self._until = 0.0


_default_cooldown = RateLimitCooldown()


def get_default_cooldown() -> RateLimitCooldown:
    """The process-wide cooldown used when callers do not pass their own."""
    return _default_cooldown


def rate_limit_delay(error: ClassifiedError) -> float:
    """Seconds to wait after a rate limit, jitter included."""
    base = error.suggested_wait_seconds
    if base is None or not math.isfinite(base) or base <= 0:
        base = constants.DEFAULT_RATE_LIMIT_WAIT_SECONDS
    return base + random.uniform(0, constants.RATE_LIMIT_JITTER_SECONDS)


def backoff_delay(base_delay: float, attempt: int) -> float:
    """Exponential backoff for the 0-indexed ``attempt``, jitter included."""
    return base_delay * 2**attempt + random.uniform(0, constants.BACKOFF_JITTER_SECONDS)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 4,
    base_delay: float = 1.2,
    *,
    cooldown: RateLimitCooldown | None = None,
    label: str | None = None,
) -> T:
    """Run ``operation`` with bounded retries.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        max_retries: Total attempts allowed.
        base_delay: Initial backoff for transient server errors, in seconds.
        cooldown: Shared cooldown. Defaults to the process-wide instance.
        label: Name used in log events (e.g. the item being processed).

    Returns:
        The first successful result.

    Raises:
        Exception: The operation's error when it is fatal, or when a
            retryable error happens on the last attempt.
        MaxRetriesExceededError: If no attempt was allowed (max_retries < 1).
    """
    cooldown = cooldown or get_default_cooldown()
    log = _logger.bind(item=label) if label else _logger

    for attempt in range(max_retries):
        await cooldown.wait()
        try:
            return await operation()
        except Exception as e:
            classified = classify_error(e)
            is_last = attempt == max_retries - 1

            if classified.category is ErrorCategory.RATE_LIMIT:
                delay = rate_limit_delay(classified)
                await cooldown.extend(delay)
                if is_last:
                    log.error(
                        "retry.rate_limit_exhausted",
                        attempts=max_retries,
                        error=classified.message,
                    )
                    raise
                log.warning(
                    "retry.rate_limited",
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay_seconds=round(delay, 3),
                )
                await cooldown.sleep(delay)
                continue

            if classified.category is not ErrorCategory.TRANSIENT or is_last:
                if classified.category is not ErrorCategory.TRANSIENT:
                    log.debug(
                        "retry.not_retriable",
                        category=classified.category.value,
                        status=classified.status,
                        error_type=type(e).__name__,
                    )
                raise

            delay = backoff_delay(base_delay, attempt)
            log.warning(
                "retry.transient_error",
                attempt=attempt + 1,
                max_retries=max_retries,
                status=classified.status,
                delay_seconds=round(delay, 3),
            )
            await cooldown.sleep(delay)

    raise MaxRetriesExceededError(max_retries)


__all__ = [
    "RateLimitCooldown",
    "backoff_delay",
    "get_default_cooldown",
    "rate_limit_delay",
    "retry_with_backoff",
]
