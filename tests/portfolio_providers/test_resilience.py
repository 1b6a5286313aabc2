"""
Tests for Resilience Primitives.

============================================================
PURPOSE
============================================================
Rate limiting, retry/backoff and circuit breaking run on an
injected clock, so every timing assertion is deterministic.

TEST PRINCIPLES:
- Waiting is a suspension, never a failure
- Permanent errors are never retried
- An open circuit never reaches the network

============================================================
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from portfolio_providers.exceptions import (
    CircuitOpenError,
    ConfigurationError,
    FetchError,
    NormalizationError,
    RateLimitError,
)
from portfolio_providers.resilience import (
    CircuitBreaker,
    CircuitState,
    ResiliencePolicy,
    RetryPolicy,
    SlidingWindowRateLimiter,
)


def server_error(status: int = 503) -> FetchError:
    return FetchError(f"HTTP {status}", provider_name="test", status_code=status)


def make_policy(clock, delays=(2.0, 4.0, 8.0), breaker=None, call_timeout=5.0):
    return ResiliencePolicy(
        rate_limiter=SlidingWindowRateLimiter(
            max_requests=1000, window_seconds=60.0, clock=clock, sleep=clock.sleep
        ),
        retry=RetryPolicy(delays=delays),
        circuit_breaker=breaker,
        call_timeout_seconds=call_timeout,
        sleep=clock.sleep,
    )


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class TestTransientClassification:
    """Which failures are worth retrying."""

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_retryable_status_codes(self, status):
        assert server_error(status).is_transient() is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_client_errors_are_permanent(self, status):
        assert server_error(status).is_transient() is False

    def test_connection_failure_is_transient(self):
        assert FetchError("Connection reset").is_transient() is True

    def test_rate_limit_is_transient(self):
        assert RateLimitError("slow down").is_transient() is True

    def test_schema_and_config_errors_are_permanent(self):
        assert NormalizationError("bad payload").is_transient() is False
        assert ConfigurationError("no key").is_transient() is False


# ============================================================
# RATE LIMITER
# ============================================================

class TestSlidingWindowRateLimiter:
    """Tests for SlidingWindowRateLimiter."""

    @pytest.mark.asyncio
    async def test_calls_under_limit_do_not_wait(self, fake_clock):
        limiter = SlidingWindowRateLimiter(
            2, 1.0, clock=fake_clock, sleep=fake_clock.sleep
        )

        assert await limiter.acquire() == 0.0
        assert await limiter.acquire() == 0.0
        assert fake_clock.sleeps == []
        assert limiter.in_window() == 2

    @pytest.mark.asyncio
    async def test_third_call_waits_for_window(self, fake_clock):
        """Third call of a 2-per-second limiter waits until the first leaves."""
        limiter = SlidingWindowRateLimiter(
            2, 1.0, clock=fake_clock, sleep=fake_clock.sleep
        )
        await limiter.acquire()
        fake_clock.advance(0.25)
        await limiter.acquire()

        expected = limiter.compute_wait()
        assert expected == pytest.approx(0.75)

        waited = await limiter.acquire()

        assert waited == pytest.approx(expected)
        assert fake_clock.sleeps == [pytest.approx(0.75)]
        assert limiter.total_wait_seconds == pytest.approx(0.75)

    def test_margin_is_added_to_wait(self, fake_clock):
        limiter = SlidingWindowRateLimiter(1, 60.0, margin_seconds=0.1, clock=fake_clock)
        limiter._timestamps.append(fake_clock())

        assert limiter.compute_wait() == pytest.approx(60.1)

    @pytest.mark.asyncio
    async def test_window_slides(self, fake_clock):
        limiter = SlidingWindowRateLimiter(
            1, 1.0, clock=fake_clock, sleep=fake_clock.sleep
        )
        await limiter.acquire()
        fake_clock.advance(1.0)

        assert limiter.compute_wait() == 0.0
        assert limiter.in_window() == 0

    @pytest.mark.asyncio
    async def test_reset_forgets_history(self, fake_clock):
        limiter = SlidingWindowRateLimiter(
            1, 10.0, clock=fake_clock, sleep=fake_clock.sleep
        )
        await limiter.acquire()
        limiter.reset()

        assert limiter.compute_wait() == 0.0

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(0, 1.0)
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(1, 0)


# ============================================================
# RETRY
# ============================================================

class TestRetryPolicy:
    """Tests for RetryPolicy through ResiliencePolicy.call."""

    def test_attempts_are_delays_plus_one(self):
        assert RetryPolicy(delays=(2.0, 4.0, 8.0)).max_attempts == 4
        assert RetryPolicy(delays=()).max_attempts == 1

    def test_retry_after_overrides_but_is_capped(self):
        policy = RetryPolicy(delays=(2.0, 4.0, 8.0))

        assert policy.delay_for(0, RateLimitError("x", retry_after_seconds=6)) == 6
        assert policy.delay_for(0, RateLimitError("x", retry_after_seconds=30)) == 8
        assert policy.delay_for(1, RateLimitError("x", retry_after_seconds=1)) == 4

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried_with_backoff(self, fake_clock):
        operation = AsyncMock(side_effect=[server_error(503), FetchError("reset"), "ok"])
        policy = make_policy(fake_clock)

        result = await policy.call(operation, endpoint="e", provider_name="test")

        assert result == "ok"
        assert operation.call_count == 3
        assert fake_clock.sleeps == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self, fake_clock):
        operation = AsyncMock(side_effect=server_error(404))
        policy = make_policy(fake_clock)

        with pytest.raises(FetchError) as exc_info:
            await policy.call(operation, endpoint="e", provider_name="test")

        assert exc_info.value.status_code == 404
        assert operation.call_count == 1
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self, fake_clock):
        operation = AsyncMock(side_effect=server_error(500))
        policy = make_policy(fake_clock)

        with pytest.raises(FetchError):
            await policy.call(operation, endpoint="e", provider_name="test")

        assert operation.call_count == 4
        assert fake_clock.sleeps == [2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_slow_call_becomes_transient_fetch_error(self, fake_clock):
        async def slow():
            await asyncio.sleep(1.0)

        policy = make_policy(fake_clock, delays=(), call_timeout=0.05)

        with pytest.raises(FetchError) as exc_info:
            await policy.call(slow, endpoint="e", provider_name="test")

        assert exc_info.value.is_transient()
        assert "Timeout" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped(self, fake_clock):
        operation = AsyncMock(side_effect=KeyError("items"))
        policy = make_policy(fake_clock)

        with pytest.raises(Exception) as exc_info:
            await policy.call(operation, endpoint="e", provider_name="test")

        assert "Unexpected error" in str(exc_info.value)
        assert operation.call_count == 1


# ============================================================
# CIRCUIT BREAKER
# ============================================================

class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    def test_opens_at_threshold(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=3, cooldown_seconds=300, clock=fake_clock)

        breaker.record_failure("balances:1")
        breaker.record_failure("balances:1")
        assert breaker.state("balances:1") == CircuitState.CLOSED

        breaker.record_failure("balances:1")
        assert breaker.state("balances:1") == CircuitState.OPEN
        assert breaker.allow_request("balances:1") is False

    def test_endpoints_are_independent(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=300, clock=fake_clock)
        breaker.record_failure("balances:1")

        assert breaker.allow_request("balances:1") is False
        assert breaker.allow_request("balances:137") is True

    def test_success_resets_failure_count(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=3, cooldown_seconds=300, clock=fake_clock)
        breaker.record_failure("e")
        breaker.record_failure("e")
        breaker.record_success("e")
        breaker.record_failure("e")

        assert breaker.state("e") == CircuitState.CLOSED

    def test_half_open_after_cooldown_allows_single_trial(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=300, clock=fake_clock)
        breaker.record_failure("e")

        fake_clock.advance(299)
        assert breaker.allow_request("e") is False

        fake_clock.advance(1)
        assert breaker.state("e") == CircuitState.HALF_OPEN
        assert breaker.allow_request("e") is True
        assert breaker.allow_request("e") is False

    def test_trial_success_closes(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=10, clock=fake_clock)
        breaker.record_failure("e")
        fake_clock.advance(10)
        breaker.allow_request("e")

        breaker.record_success("e")

        assert breaker.state("e") == CircuitState.CLOSED
        assert breaker.allow_request("e") is True

    def test_trial_failure_reopens(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=10, clock=fake_clock)
        breaker.record_failure("e")
        fake_clock.advance(10)
        breaker.allow_request("e")

        breaker.record_failure("e")

        assert breaker.state("e") == CircuitState.OPEN
        assert breaker.retry_in("e") == pytest.approx(10)

    def test_cancelled_trial_releases_slot(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=10, clock=fake_clock)
        breaker.record_failure("e")
        fake_clock.advance(10)
        assert breaker.allow_request("e") is True

        breaker.record_cancelled("e")

        assert breaker.allow_request("e") is True

    def test_cancel_outside_trial_is_ignored(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=3, cooldown_seconds=10, clock=fake_clock)
        breaker.record_failure("e")

        breaker.record_cancelled("e")

        assert breaker.state("e") == CircuitState.CLOSED
        assert breaker.snapshot()["e"]["consecutive_failures"] == 1

    @pytest.mark.asyncio
    async def test_cancelled_trial_call_does_not_wedge_endpoint(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=10, clock=fake_clock)
        policy = make_policy(fake_clock, delays=(), breaker=breaker)
        breaker.record_failure("e")
        fake_clock.advance(10)

        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.Event().wait()

        trial = asyncio.ensure_future(policy.call(hang, endpoint="e", provider_name="test"))
        await started.wait()
        trial.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trial

        healthy = AsyncMock(return_value="ok")
        result = await policy.call(healthy, endpoint="e", provider_name="test")

        assert result == "ok"
        assert healthy.call_count == 1
        assert breaker.state("e") == CircuitState.CLOSED

    def test_snapshot(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=60, clock=fake_clock)
        breaker.record_failure("balances:1")

        snapshot = breaker.snapshot()

        assert snapshot["balances:1"]["state"] == "open"
        assert snapshot["balances:1"]["consecutive_failures"] == 1
        assert snapshot["balances:1"]["retry_in_seconds"] == 60.0

    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits_without_calling(self, fake_clock):
        """After 3 exhausted calls the 4th never reaches the operation."""
        breaker = CircuitBreaker(failure_threshold=3, cooldown_seconds=300, clock=fake_clock)
        operation = AsyncMock(side_effect=server_error(503))
        policy = make_policy(fake_clock, delays=(), breaker=breaker)

        for _ in range(3):
            with pytest.raises(FetchError):
                await policy.call(operation, endpoint="balances:1", provider_name="test")

        with pytest.raises(CircuitOpenError) as exc_info:
            await policy.call(operation, endpoint="balances:1", provider_name="test")

        assert operation.call_count == 3
        assert exc_info.value.endpoint == "balances:1"
        assert exc_info.value.retry_in_seconds == pytest.approx(300)

    @pytest.mark.asyncio
    async def test_retries_count_as_one_failure(self, fake_clock):
        breaker = CircuitBreaker(failure_threshold=2, cooldown_seconds=300, clock=fake_clock)
        operation = AsyncMock(side_effect=server_error(503))
        policy = make_policy(fake_clock, delays=(1.0, 1.0), breaker=breaker)

        with pytest.raises(FetchError):
            await policy.call(operation, endpoint="e", provider_name="test")

        assert operation.call_count == 3
        assert breaker.state("e") == CircuitState.CLOSED
