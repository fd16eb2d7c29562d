"""Circuit breakers and rate limiters for upstream services.

Breakers and limiters are owned by a ResilienceRegistry that is created once
per process (or per test) and injected where needed, so there is exactly one
breaker per upstream service name without any module-level state.
"""

import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, TypeVar

from grocerypricing.logging_config import get_logger
from grocerypricing.pricing.exceptions import CircuitOpenError, RateLimitExceeded

logger = get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass(frozen=True)
class BreakerOptions:
    """Circuit breaker tuning, all durations in seconds."""

    failure_threshold: int = 3
    timeout: float = 30.0
    monitoring_period: float = 60.0
    success_threshold: int = 2


# Presets per upstream service; anything else gets BreakerOptions()
BREAKER_PRESETS: dict[str, BreakerOptions] = {
    "perplexity-pricing": BreakerOptions(
        failure_threshold=2, timeout=60.0, monitoring_period=120.0, success_threshold=1
    ),
    "google-places": BreakerOptions(
        failure_threshold=3, timeout=30.0, monitoring_period=60.0, success_threshold=1
    ),
}


@dataclass
class CircuitBreakerStats:
    """Point-in-time snapshot of a circuit breaker."""

    state: CircuitState
    failures: int
    successes: int
    last_failure: float | None = None
    last_success: float | None = None
    next_attempt: float | None = None
    accepting_calls: bool = True

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class CircuitBreaker:
    """
    Circuit breaker for a single upstream service.

    closed -> open after ``failure_threshold`` failures inside the trailing
    ``monitoring_period``; open -> half-open once ``next_attempt`` is reached;
    half-open -> closed after ``success_threshold`` successes; any failure
    while half-open re-opens the circuit.
    """

    def __init__(
        self,
        name: str,
        options: BreakerOptions | None = None,
        clock: Clock = time.time,
    ):
        self.name = name
        self.options = options or BreakerOptions()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._recent_failures: deque[float] = deque()
        self._last_failure: float | None = None
        self._last_success: float | None = None
        self._next_attempt: float | None = None

    @property
    def state(self) -> CircuitState:
        return self._state

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Run ``fn`` under breaker protection.

        Raises:
            CircuitOpenError: If the circuit is open; ``fn`` is not invoked.
        """
        if self._state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._state = CircuitState.HALF_OPEN
                self._successes = 0
                logger.info(f"Circuit breaker {self.name}: attempting reset (half-open)")
            else:
                retry_after = (self._next_attempt or self._clock()) - self._clock()
                raise CircuitOpenError(
                    f"Circuit breaker {self.name} is open",
                    service=self.name,
                    retry_after=max(0.0, retry_after),
                )

        try:
            result = await fn(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def can_execute(self) -> bool:
        """Check whether a call would currently be attempted."""
        if self._state in (CircuitState.CLOSED, CircuitState.HALF_OPEN):
            return True
        return self._should_attempt_reset()

    def stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(
            state=self._state,
            failures=self._failures,
            successes=self._successes,
            last_failure=self._last_failure,
            last_success=self._last_success,
            next_attempt=self._next_attempt,
            accepting_calls=self.can_execute(),
        )

    def reset(self) -> None:
        """Force the breaker back to closed and clear all counters."""
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._recent_failures.clear()
        self._next_attempt = None
        logger.info(f"Circuit breaker {self.name}: manually reset")

    def record_success(self) -> None:
        now = self._clock()
        self._successes += 1
        self._last_success = now

        if self._state == CircuitState.HALF_OPEN:
            if self._successes >= self.options.success_threshold:
                self._state = CircuitState.CLOSED
                self._failures = 0
                self._recent_failures.clear()
                self._next_attempt = None
                logger.info(f"Circuit breaker {self.name}: closed (recovered)")
        else:
            self._prune_failures(now)

    def record_failure(self) -> None:
        now = self._clock()
        self._failures += 1
        self._last_failure = now
        self._recent_failures.append(now)
        self._prune_failures(now)

        if self._state == CircuitState.HALF_OPEN:
            self._open(now)
            logger.warning(f"Circuit breaker {self.name}: opened (half-open failure)")
        elif (
            self._state == CircuitState.CLOSED
            and len(self._recent_failures) >= self.options.failure_threshold
        ):
            self._open(now)
            logger.warning(
                f"Circuit breaker {self.name}: opened ({len(self._recent_failures)} failures)"
            )

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._next_attempt = now + self.options.timeout

    def _should_attempt_reset(self) -> bool:
        return self._next_attempt is not None and self._clock() >= self._next_attempt

    def _prune_failures(self, now: float) -> None:
        cutoff = now - self.options.monitoring_period
        while self._recent_failures and self._recent_failures[0] <= cutoff:
            self._recent_failures.popleft()


class RateLimiter:
    """Sliding-window limiter allowing ``max_requests`` per ``window_seconds``."""

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_seconds: float,
        clock: Clock = time.time,
    ):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: deque[float] = deque()

    def check(self) -> tuple[bool, float]:
        """
        Check whether another request fits in the window.

        Returns:
            Tuple of (allowed, wait_seconds). ``wait_seconds`` is 0 when allowed.
        """
        now = self._clock()
        self._prune(now)
        if len(self._requests) < self.max_requests:
            return True, 0.0
        wait = self._requests[0] + self.window_seconds - now
        return False, max(0.0, wait)

    def acquire(self) -> None:
        """
        Record a request.

        Raises:
            RateLimitExceeded: If the window is full.
        """
        allowed, wait = self.check()
        if not allowed:
            raise RateLimitExceeded(
                f"Rate limit exceeded for {self.name}, retry in {wait:.1f}s",
                retry_after=wait,
                service=self.name,
            )
        self._requests.append(self._clock())

    @property
    def in_window(self) -> int:
        self._prune(self._clock())
        return len(self._requests)

    def reset(self) -> None:
        self._requests.clear()

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._requests and self._requests[0] <= cutoff:
            self._requests.popleft()


class ResilienceRegistry:
    """Holds one breaker and one limiter per upstream service name."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._limiters: dict[str, RateLimiter] = {}

    def breaker(self, name: str, **overrides: Any) -> CircuitBreaker:
        """Get or create the breaker for ``name``; overrides apply on creation only."""
        if name not in self._breakers:
            options = BREAKER_PRESETS.get(name, BreakerOptions())
            if overrides:
                options = replace(options, **overrides)
            self._breakers[name] = CircuitBreaker(name, options, clock=self._clock)
        return self._breakers[name]

    def limiter(self, name: str, max_requests: int = 30, window_seconds: float = 60.0) -> RateLimiter:
        """Get or create the rate limiter for ``name``."""
        if name not in self._limiters:
            self._limiters[name] = RateLimiter(
                name, max_requests, window_seconds, clock=self._clock
            )
        return self._limiters[name]

    def all_stats(self) -> dict[str, CircuitBreakerStats]:
        return {name: breaker.stats() for name, breaker in self._breakers.items()}

    def rate_limit_usage(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "in_window": limiter.in_window,
                "max_requests": limiter.max_requests,
                "window_seconds": limiter.window_seconds,
            }
            for name, limiter in self._limiters.items()
        }

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
        for limiter in self._limiters.values():
            limiter.reset()
