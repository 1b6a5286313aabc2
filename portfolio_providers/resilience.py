"""
Resilience Primitives - Rate limiting, retry/backoff and circuit breaking.

One implementation shared by every vendor adapter and parameterized per
adapter instance through a ResiliencePolicy. Policies are built once at
process start and injected, so their counters are process-wide (the
vendors' limits are account-wide too).

All waiting is done with asyncio.sleep; nothing here blocks the loop.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from portfolio_providers.exceptions import (
    CircuitOpenError,
    FetchError,
    ProviderError,
    RateLimitError,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[Any]]


# ─────────────────────────────────────────────────────────────
# Rate Limiting
# ─────────────────────────────────────────────────────────────

class SlidingWindowRateLimiter:
    """
    At most max_requests in any rolling window_seconds.

    acquire() computes how long the caller must wait to stay under the
    limit, suspends for that long, then records the request. Callers of
    the same limiter queue behind one asyncio.Lock; other limiters are
    unaffected.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        margin_seconds: float = 0.0,
        name: str = "",
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.margin_seconds = margin_seconds
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock: Optional[asyncio.Lock] = None
        self.total_wait_seconds = 0.0

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    def compute_wait(self, now: Optional[float] = None) -> float:
        """Seconds to wait before the next request may be issued."""
        if now is None:
            now = self._clock()
        self._prune(now)
        if len(self._timestamps) < self.max_requests:
            return 0.0
        # The oldest of the last max_requests calls must leave the window
        anchor = self._timestamps[-self.max_requests]
        return max(0.0, anchor + self.window_seconds - now + self.margin_seconds)

    async def acquire(self) -> float:
        """Wait for a free slot and record the request. Returns seconds waited."""
        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            wait = self.compute_wait()
            if wait > 0:
                logger.info(
                    f"[{self.name or 'rate_limiter'}] Rate limit reached, "
                    f"waiting {wait:.2f}s"
                )
                await self._sleep(wait)
                self.total_wait_seconds += wait
            self._timestamps.append(self._clock())
            return wait

    def in_window(self) -> int:
        """Requests recorded in the current window."""
        self._prune(self._clock())
        return len(self._timestamps)

    def reset(self) -> None:
        """Forget all recorded requests."""
        self._timestamps.clear()
        self.total_wait_seconds = 0.0


# ─────────────────────────────────────────────────────────────
# Retry / Backoff
# ─────────────────────────────────────────────────────────────

@dataclass
class RetryPolicy:
    """
    Fixed backoff schedule for transient failures.

    One initial attempt plus one retry per delay. Permanent failures
    (4xx other than 429, schema errors, missing credentials) are never
    retried.
    """
    delays: tuple[float, ...] = (2.0, 4.0, 8.0)

    @property
    def max_attempts(self) -> int:
        return len(self.delays) + 1

    def should_retry(self, error: ProviderError, attempt: int) -> bool:
        """attempt is zero-based."""
        return error.is_transient() and attempt < len(self.delays)

    def delay_for(self, attempt: int, error: Optional[ProviderError] = None) -> float:
        """Delay before the retry that follows `attempt`."""
        delay = self.delays[min(attempt, len(self.delays) - 1)]
        if isinstance(error, RateLimitError) and error.retry_after_seconds:
            # Honour Retry-After, but never beyond our own longest backoff
            delay = min(max(delay, error.retry_after_seconds), max(self.delays))
        return delay


# ─────────────────────────────────────────────────────────────
# Circuit Breaking
# ─────────────────────────────────────────────────────────────

class CircuitState(Enum):
    """Breaker state for one endpoint."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class _EndpointCircuit:
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    opened_at: Optional[float] = None
    trial_in_flight: bool = False


class CircuitBreaker:
    """
    Per-endpoint consecutive-failure breaker.

    After failure_threshold consecutive failures the endpoint is OPEN and
    calls are refused without touching the network. Once cooldown_seconds
    have passed a single trial call is let through (HALF_OPEN); its
    success closes the circuit, its failure reopens it.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        cooldown_seconds: float = 300.0,
        clock: Clock = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._circuits: dict[str, _EndpointCircuit] = {}

    def _circuit(self, endpoint: str) -> _EndpointCircuit:
        circuit = self._circuits.get(endpoint)
        if circuit is None:
            circuit = _EndpointCircuit()
            self._circuits[endpoint] = circuit
        return circuit

    def state(self, endpoint: str) -> CircuitState:
        """Current state, accounting for an elapsed cool-down."""
        circuit = self._circuit(endpoint)
        if circuit.state == CircuitState.OPEN and self.retry_in(endpoint) <= 0:
            return CircuitState.HALF_OPEN
        return circuit.state

    def retry_in(self, endpoint: str) -> float:
        """Seconds until an OPEN endpoint accepts a trial call."""
        circuit = self._circuit(endpoint)
        if circuit.opened_at is None:
            return 0.0
        return max(0.0, circuit.opened_at + self.cooldown_seconds - self._clock())

    def allow_request(self, endpoint: str) -> bool:
        """Whether a call to endpoint may go to the network now."""
        circuit = self._circuit(endpoint)

        if circuit.state == CircuitState.CLOSED:
            return True

        if circuit.state == CircuitState.OPEN:
            if self.retry_in(endpoint) > 0:
                return False
            circuit.state = CircuitState.HALF_OPEN
            circuit.trial_in_flight = True
            logger.info(f"Circuit for '{endpoint}' half-open, allowing trial call")
            return True

        # HALF_OPEN: only the single trial call
        if circuit.trial_in_flight:
            return False
        circuit.trial_in_flight = True
        return True

    def record_success(self, endpoint: str) -> None:
        circuit = self._circuit(endpoint)
        if circuit.state != CircuitState.CLOSED:
            logger.info(f"Circuit for '{endpoint}' closed after successful call")
        circuit.state = CircuitState.CLOSED
        circuit.consecutive_failures = 0
        circuit.opened_at = None
        circuit.trial_in_flight = False

    def record_failure(self, endpoint: str) -> None:
        circuit = self._circuit(endpoint)
        circuit.consecutive_failures += 1
        circuit.trial_in_flight = False

        if circuit.state == CircuitState.HALF_OPEN:
            circuit.state = CircuitState.OPEN
            circuit.opened_at = self._clock()
            logger.warning(f"Circuit for '{endpoint}' reopened after failed trial call")
        elif circuit.consecutive_failures >= self.failure_threshold:
            if circuit.state != CircuitState.OPEN:
                logger.warning(
                    f"Circuit for '{endpoint}' opened after "
                    f"{circuit.consecutive_failures} consecutive failures "
                    f"(cooldown={self.cooldown_seconds:.0f}s)"
                )
            circuit.state = CircuitState.OPEN
            circuit.opened_at = self._clock()

    def record_cancelled(self, endpoint: str) -> None:
        """
        Release an interrupted trial call.

        The endpoint goes back to OPEN with its original opened_at, so the
        next call is let through as a fresh trial.
        """
        circuit = self._circuit(endpoint)
        if circuit.state == CircuitState.HALF_OPEN and circuit.trial_in_flight:
            circuit.state = CircuitState.OPEN
            circuit.trial_in_flight = False
            logger.info(f"Circuit for '{endpoint}' trial call cancelled, trial slot released")

    def reset(self, endpoint: Optional[str] = None) -> None:
        """Close one endpoint's circuit, or all of them."""
        if endpoint is None:
            self._circuits.clear()
        else:
            self._circuits.pop(endpoint, None)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Diagnostic view of every tracked endpoint."""
        return {
            endpoint: {
                "state": self.state(endpoint).value,
                "consecutive_failures": circuit.consecutive_failures,
                "retry_in_seconds": round(self.retry_in(endpoint), 1),
            }
            for endpoint, circuit in self._circuits.items()
        }


# ─────────────────────────────────────────────────────────────
# Policy
# ─────────────────────────────────────────────────────────────

@dataclass
class ResiliencePolicy:
    """
    Everything that guards one adapter's outbound calls.

    call() runs an operation under the breaker, the rate limiter, a
    per-attempt timeout and the retry schedule, and raises a
    ProviderError subclass on final failure.
    """
    rate_limiter: SlidingWindowRateLimiter
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    circuit_breaker: Optional[CircuitBreaker] = None
    call_timeout_seconds: float = 15.0
    sleep: Sleeper = asyncio.sleep

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        endpoint: str,
        provider_name: str,
        chain_id: Optional[int] = None,
    ) -> T:
        breaker = self.circuit_breaker
        if breaker is not None and not breaker.allow_request(endpoint):
            retry_in = breaker.retry_in(endpoint)
            raise CircuitOpenError(
                message=f"Circuit open for {endpoint}, retry in {retry_in:.0f}s",
                provider_name=provider_name,
                chain_id=chain_id,
                endpoint=endpoint,
                retry_in_seconds=retry_in,
            )

        last_error: Optional[ProviderError] = None

        try:
            for attempt in range(self.retry.max_attempts):
                await self.rate_limiter.acquire()

                try:
                    result = await asyncio.wait_for(
                        operation(),
                        timeout=self.call_timeout_seconds,
                    )
                except asyncio.TimeoutError as e:
                    last_error = FetchError(
                        message=f"Timeout after {self.call_timeout_seconds:.0f}s",
                        provider_name=provider_name,
                        chain_id=chain_id,
                        original_error=e,
                    )
                except ProviderError as e:
                    last_error = e
                except Exception as e:
                    last_error = ProviderError(
                        message=f"Unexpected error: {e}",
                        provider_name=provider_name,
                        chain_id=chain_id,
                        original_error=e,
                    )
                else:
                    if breaker is not None:
                        breaker.record_success(endpoint)
                    return result

                if not self.retry.should_retry(last_error, attempt):
                    break

                delay = self.retry.delay_for(attempt, last_error)
                logger.warning(
                    f"[{provider_name}] {endpoint} attempt {attempt + 1}/"
                    f"{self.retry.max_attempts} failed, retrying in {delay:.1f}s: "
                    f"{last_error.message}"
                )
                await self.sleep(delay)
        except asyncio.CancelledError:
            # Budget or deadline cancellation; not a verdict on the endpoint
            if breaker is not None:
                breaker.record_cancelled(endpoint)
            raise

        if breaker is not None:
            breaker.record_failure(endpoint)

        assert last_error is not None
        raise last_error
