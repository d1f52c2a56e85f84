"""Tests for retry_with_backoff and the shared RateLimitCooldown.

All tests run on a FakeClock, so waits of tens of seconds complete
instantly while the recorded sleeps still show what would have happened.
"""

import asyncio
import math

import pytest
from helpers import FakeClock

from abilitymap.core.errors import (
    FatalError,
    MaxRetriesExceededError,
    RateLimitedError,
    TransientServerError,
    classify_error,
)
from abilitymap.execution.retry import (
    RateLimitCooldown,
    backoff_delay,
    get_default_cooldown,
    rate_limit_delay,
    retry_with_backoff,
)


class Flaky:
    """Operation that raises scripted errors before succeeding."""

    def __init__(self, errors: list[BaseException], result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0
        self.call_times: list[float] = []
        self.clock: FakeClock | None = None

    async def __call__(self) -> str:
        self.calls += 1
        if self.clock is not None:
            self.call_times.append(self.clock.now)
        if self.errors:
            raise self.errors.pop(0)
        return self.result


# ─── RateLimitCooldown ─────────────────────────────────────────────────


class TestRateLimitCooldown:
    def test_inactive_initially(self, cooldown: RateLimitCooldown) -> None:
        assert cooldown.remaining() == 0.0
        assert not cooldown.active

    @pytest.mark.asyncio
    async def test_extend_sets_deadline(
        self, cooldown: RateLimitCooldown, fake_clock: FakeClock
    ) -> None:
        until = await cooldown.extend(10.0)
        assert until == fake_clock.now + 10.0
        assert cooldown.remaining() == pytest.approx(10.0)
        assert cooldown.active

    @pytest.mark.asyncio
    async def test_extend_never_shortens(
        self, cooldown: RateLimitCooldown, fake_clock: FakeClock
    ) -> None:
        """A shorter wait arriving later does not cut the cooldown short."""
        await cooldown.extend(30.0)
        await cooldown.extend(5.0)
        assert cooldown.cooldown_until == fake_clock.now + 30.0

    @pytest.mark.asyncio
    async def test_extend_can_lengthen(
        self, cooldown: RateLimitCooldown, fake_clock: FakeClock
    ) -> None:
        await cooldown.extend(5.0)
        await cooldown.extend(30.0)
        assert cooldown.cooldown_until == fake_clock.now + 30.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seconds", [0.0, -3.0, math.inf, math.nan])
    async def test_extend_ignores_invalid(
        self, cooldown: RateLimitCooldown, seconds: float
    ) -> None:
        await cooldown.extend(seconds)
        assert not cooldown.active

    @pytest.mark.asyncio
    async def test_wait_sleeps_until_deadline(
        self, cooldown: RateLimitCooldown, fake_clock: FakeClock
    ) -> None:
        await cooldown.extend(12.0)
        waited = await cooldown.wait()
        assert waited == pytest.approx(12.0)
        assert not cooldown.active
        assert fake_clock.total_slept == pytest.approx(12.0)

    @pytest.mark.asyncio
    async def test_wait_is_noop_when_inactive(
        self, cooldown: RateLimitCooldown, fake_clock: FakeClock
    ) -> None:
        assert await cooldown.wait() == 0.0
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_reset_clears(self, cooldown: RateLimitCooldown) -> None:
        await cooldown.extend(100.0)
        cooldown.reset()
        assert not cooldown.active

    def test_default_cooldown_is_shared(self) -> None:
        assert get_default_cooldown() is get_default_cooldown()


# ─── Delay computation ─────────────────────────────────────────────────


class TestDelays:
    def test_rate_limit_default_wait(self) -> None:
        classified = classify_error(RateLimitedError("slow down"))
        for _ in range(20):
            assert 30.0 <= rate_limit_delay(classified) <= 31.5

    def test_rate_limit_uses_hint(self) -> None:
        classified = classify_error(Exception('[429 Too Many Requests] {"retryDelay":"7s"}'))
        for _ in range(20):
            assert 7.0 <= rate_limit_delay(classified) <= 8.5

    @pytest.mark.parametrize("attempt,low", [(0, 1.2), (1, 2.4), (2, 4.8)])
    def test_backoff_is_exponential(self, attempt: int, low: float) -> None:
        for _ in range(20):
            delay = backoff_delay(1.2, attempt)
            assert low <= delay <= low + 0.4


# ─── retry_with_backoff ────────────────────────────────────────────────


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_success_first_try(
        self, cooldown: RateLimitCooldown, fake_clock: FakeClock
    ) -> None:
        op = Flaky([])
        assert await retry_with_backoff(op, cooldown=cooldown) == "ok"
        assert op.calls == 1
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_three_rate_limits_then_success(
        self, cooldown: RateLimitCooldown, fake_clock: FakeClock
    ) -> None:
        """Returns the single success after waiting out every rate limit."""
        op = Flaky([RateLimitedError("429") for _ in range(3)], result="done")
        start = fake_clock.now

        result = await retry_with_backoff(op, max_retries=4, cooldown=cooldown)

        assert result == "done"
        assert op.calls == 4
        assert fake_clock.now - start >= 3 * 30.0
        assert fake_clock.total_slept <= 3 * 31.5 + 1e-6

    @pytest.mark.asyncio
    async def test_rate_limit_hint_from_message(
        self, cooldown: RateLimitCooldown, fake_clock: FakeClock
    ) -> None:
        op = Flaky([Exception('[429 Too Many Requests] {"retryDelay":"7s"}')])
        await retry_with_backoff(op, cooldown=cooldown)
        assert 7.0 <= fake_clock.total_slept <= 8.5

    @pytest.mark.asyncio
    async def test_rate_limit_retry_after_attribute(
        self, cooldown: RateLimitCooldown, fake_clock: FakeClock
    ) -> None:
        op = Flaky([RateLimitedError("slow down", retry_after_seconds=12.0)])
        await retry_with_backoff(op, cooldown=cooldown)
        assert 12.0 <= fake_clock.total_slept <= 13.5

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted_reraises(
        self, cooldown: RateLimitCooldown
    ) -> None:
        """The provider's own error surfaces, and the cooldown stays set."""
        op = Flaky([RateLimitedError("429") for _ in range(5)])
        with pytest.raises(RateLimitedError):
            await retry_with_backoff(op, max_retries=2, cooldown=cooldown)
        assert op.calls == 2
        assert cooldown.active

    @pytest.mark.asyncio
    async def test_transient_errors_back_off(
        self, cooldown: RateLimitCooldown, fake_clock: FakeClock
    ) -> None:
        op = Flaky([TransientServerError("503"), TransientServerError("500", status=500)])
        result = await retry_with_backoff(op, base_delay=1.0, cooldown=cooldown)

        assert result == "ok"
        assert op.calls == 3
        assert len(fake_clock.sleeps) == 2
        assert 1.0 <= fake_clock.sleeps[0] <= 1.4
        assert 2.0 <= fake_clock.sleeps[1] <= 2.4
        assert not cooldown.active

    @pytest.mark.asyncio
    async def test_transient_on_last_attempt_reraises(
        self, cooldown: RateLimitCooldown
    ) -> None:
        op = Flaky([TransientServerError("503") for _ in range(3)])
        with pytest.raises(TransientServerError):
            await retry_with_backoff(op, max_retries=2, base_delay=0.0, cooldown=cooldown)
        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_fatal_error_raises_immediately(
        self, cooldown: RateLimitCooldown, fake_clock: FakeClock
    ) -> None:
        op = Flaky([FatalError("bad request", status=400)])
        with pytest.raises(FatalError):
            await retry_with_backoff(op, cooldown=cooldown)
        assert op.calls == 1
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_plain_exception_is_fatal(self, cooldown: RateLimitCooldown) -> None:
        op = Flaky([ValueError("boom")])
        with pytest.raises(ValueError, match="boom"):
            await retry_with_backoff(op, cooldown=cooldown)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self, cooldown: RateLimitCooldown) -> None:
        op = Flaky([asyncio.TimeoutError()])
        with pytest.raises(asyncio.TimeoutError):
            await retry_with_backoff(op, cooldown=cooldown)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_zero_retries_never_calls(self, cooldown: RateLimitCooldown) -> None:
        op = Flaky([])
        with pytest.raises(MaxRetriesExceededError) as exc_info:
            await retry_with_backoff(op, max_retries=0, cooldown=cooldown)
        assert exc_info.value.attempts == 0
        assert op.calls == 0

    @pytest.mark.asyncio
    async def test_waits_for_existing_cooldown_before_first_attempt(
        self, cooldown: RateLimitCooldown, fake_clock: FakeClock
    ) -> None:
        await cooldown.extend(20.0)
        op = Flaky([])
        op.clock = fake_clock
        start = fake_clock.now

        await retry_with_backoff(op, cooldown=cooldown)

        assert op.call_times[0] >= start + 20.0

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_cooldown(
        self, cooldown: RateLimitCooldown, fake_clock: FakeClock
    ) -> None:
        limited = Flaky([RateLimitedError("429", retry_after_seconds=60.0)])
        limited.clock = fake_clock
        other = Flaky([TransientServerError("503")])
        other.clock = fake_clock

        await asyncio.gather(
            retry_with_backoff(limited, cooldown=cooldown),
            retry_with_backoff(other, base_delay=0.5, cooldown=cooldown),
        )

        assert limited.calls == 2
        assert other.calls == 2
        # The second attempt of the transient caller waits out the rate limit
        assert other.call_times[1] >= limited.call_times[0] + 60.0
