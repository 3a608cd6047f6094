"""
Circuit breaker implementation for the billing engine.
Prevents cascading failures when the payment processor (or any other
named external dependency) is slow or unavailable.
"""

import asyncio
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple, TypeVar

from .exceptions import CircuitBreakerError

logger = logging.getLogger(__name__)

T = TypeVar('T')

Fallback = Callable[[Exception], Any]
StateListener = Callable[[str, "CircuitBreakerState", "CircuitBreakerState"], None]


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation, requests pass through
    OPEN = "open"            # Circuit is open, requests short-circuit to the fallback
    HALF_OPEN = "half_open"  # Testing if service is back, limited probe requests


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for a circuit breaker."""
    timeout: float = 10.0                     # Per-call timeout in seconds
    error_threshold_percentage: float = 50.0  # Error rate in the window that opens the circuit
    reset_timeout: float = 30.0               # Seconds to stay open before probing
    rolling_window: float = 10.0              # Seconds of history used for the error rate
    volume_threshold: int = 5                 # Calls in the window before the circuit may open
    half_open_max_calls: int = 1              # Concurrent probes allowed while half-open
    success_threshold: int = 1                # Probe successes needed to close again

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "timeout": self.timeout,
            "error_threshold_percentage": self.error_threshold_percentage,
            "reset_timeout": self.reset_timeout,
            "rolling_window": self.rolling_window,
            "volume_threshold": self.volume_threshold,
            "half_open_max_calls": self.half_open_max_calls,
            "success_threshold": self.success_threshold,
        }


class RollingWindow:
    """Time-bounded record of call outcomes used to compute the error rate."""

    def __init__(self, duration: float, clock: Callable[[], float]):
        self.duration = duration
        self._clock = clock
        self._outcomes: Deque[Tuple[float, bool]] = deque()

    def _prune(self) -> None:
        cutoff = self._clock() - self.duration
        while self._outcomes and self._outcomes[0][0] < cutoff:
            self._outcomes.popleft()

    def record(self, success: bool) -> None:
        self._outcomes.append((self._clock(), success))
        self._prune()

    def counts(self) -> Tuple[int, int]:
        """Return (successes, failures) inside the window."""
        self._prune()
        failures = sum(1 for _, ok in self._outcomes if not ok)
        return len(self._outcomes) - failures, failures

    def error_percentage(self) -> float:
        successes, failures = self.counts()
        total = successes + failures
        if total == 0:
            return 0.0
        return failures * 100.0 / total

    def clear(self) -> None:
        self._outcomes.clear()


class CircuitBreakerStats:
    """Lifetime statistics for circuit breaker monitoring."""

    def __init__(self):
        self.failure_count = 0
        self.success_count = 0
        self.timeout_count = 0
        self.reject_count = 0
        self.fallback_count = 0
        self.total_requests = 0
        self.last_failure_time: Optional[datetime] = None
        self.last_success_time: Optional[datetime] = None
        self.state_changes: List[Dict[str, str]] = []

    def record_success(self):
        self.success_count += 1
        self.total_requests += 1
        self.last_success_time = datetime.now(timezone.utc)

    def record_failure(self, timed_out: bool = False):
        self.failure_count += 1
        self.total_requests += 1
        if timed_out:
            self.timeout_count += 1
        self.last_failure_time = datetime.now(timezone.utc)

    def record_state_change(self, old_state: CircuitBreakerState, new_state: CircuitBreakerState):
        self.state_changes.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "from_state": old_state.value,
            "to_state": new_state.value
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "timeout_count": self.timeout_count,
            "reject_count": self.reject_count,
            "fallback_count": self.fallback_count,
            "total_requests": self.total_requests,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "last_success_time": self.last_success_time.isoformat() if self.last_success_time else None,
            "state_changes": len(self.state_changes)
        }


class CircuitBreaker:
    """
    Circuit breaker for calls to a single named external dependency.

    Closed: every call is forwarded; outcomes feed a rolling window.
    Open: once the window holds at least ``volume_threshold`` calls and the
    error rate reaches ``error_threshold_percentage``; calls go straight to
    the fallback without touching the dependency.
    Half-open: after ``reset_timeout`` a bounded number of probes is let
    through; success closes the circuit, failure re-opens it.

    A call exceeding ``timeout`` counts as a failure even if the underlying
    coroutine would have completed later.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config
        self.state = CircuitBreakerState.CLOSED
        self.stats = CircuitBreakerStats()
        self.window = RollingWindow(config.rolling_window, clock)
        self.opened_at: Optional[float] = None
        self.half_open_successes = 0
        self._half_open_in_flight = 0
        self._clock = clock
        self._lock = asyncio.Lock()
        self._listeners: List[StateListener] = []

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback invoked (off the call path) on every state change."""
        self._listeners.append(listener)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        fallback: Optional[Fallback] = None,
    ) -> T:
        """
        Execute ``operation`` with circuit breaker protection.

        Args:
            operation: Zero-argument coroutine function calling the dependency
            fallback: Called with the triggering exception when the circuit is
                open or the call fails; its (possibly awaitable) result is
                returned instead

        Returns:
            The operation result, or the fallback result

        Raises:
            CircuitBreakerError: If the circuit is open, or the call timed out,
                and no fallback was given
            Exception: The operation's own error when no fallback was given
        """
        is_probe = await self._acquire_permission()
        if is_probe is None:
            logger.warning(f"Circuit breaker '{self.name}' is OPEN - request rejected")
            return await self._handle_rejection(fallback)

        try:
            result = await asyncio.wait_for(operation(), timeout=self.config.timeout)
        except asyncio.CancelledError:
            if is_probe:
                await self._release_half_open_slot()
            raise
        except asyncio.TimeoutError:
            logger.warning(f"Circuit breaker '{self.name}' - call timed out after {self.config.timeout}s")
            await self._on_failure(is_probe, timed_out=True)
            error = CircuitBreakerError(
                message=f"Request timeout for service '{self.name}'",
                service_name=self.name,
            )
            return await self._invoke_fallback(fallback, error)
        except Exception as e:
            logger.error(f"Circuit breaker '{self.name}' - call failed: {e}")
            await self._on_failure(is_probe)
            if fallback is None:
                raise
            return await self._invoke_fallback(fallback, e)

        await self._on_success(is_probe)
        return result

    async def _acquire_permission(self) -> Optional[bool]:
        """
        Decide whether a call may reach the dependency.

        Returns None when the call must short-circuit, otherwise whether the
        call is a half-open probe.
        """
        async with self._lock:
            if self.state == CircuitBreakerState.OPEN:
                if self.opened_at is not None and self._clock() - self.opened_at >= self.config.reset_timeout:
                    self._change_state(CircuitBreakerState.HALF_OPEN)
                else:
                    self.stats.reject_count += 1
                    return None

            if self.state == CircuitBreakerState.HALF_OPEN:
                if self._half_open_in_flight >= self.config.half_open_max_calls:
                    self.stats.reject_count += 1
                    return None
                self._half_open_in_flight += 1
                return True

            return False

    async def _release_half_open_slot(self):
        """Give back a half-open slot whose call never finished."""
        async with self._lock:
            if self._half_open_in_flight > 0:
                self._half_open_in_flight -= 1

    async def _on_success(self, is_probe: bool):
        async with self._lock:
            self.stats.record_success()
            self.window.record(True)

            if is_probe:
                self._half_open_in_flight -= 1
                if self.state == CircuitBreakerState.HALF_OPEN:
                    self.half_open_successes += 1
                    if self.half_open_successes >= self.config.success_threshold:
                        self._change_state(CircuitBreakerState.CLOSED)

    async def _on_failure(self, is_probe: bool, timed_out: bool = False):
        async with self._lock:
            self.stats.record_failure(timed_out=timed_out)
            self.window.record(False)

            if is_probe:
                self._half_open_in_flight -= 1
                if self.state == CircuitBreakerState.HALF_OPEN:
                    self._change_state(CircuitBreakerState.OPEN)
                return

            if self.state == CircuitBreakerState.CLOSED and self._should_trip():
                self._change_state(CircuitBreakerState.OPEN)

    def _should_trip(self) -> bool:
        successes, failures = self.window.counts()
        if successes + failures < self.config.volume_threshold:
            return False
        return self.window.error_percentage() > self.config.error_threshold_percentage

    def _change_state(self, new_state: CircuitBreakerState):
        """Change circuit breaker state. Caller holds the lock."""
        old_state = self.state
        if old_state == new_state:
            return
        self.state = new_state
        self.stats.record_state_change(old_state, new_state)

        if new_state == CircuitBreakerState.OPEN:
            self.opened_at = self._clock()
        elif new_state == CircuitBreakerState.HALF_OPEN:
            self.half_open_successes = 0
            self._half_open_in_flight = 0
        else:
            self.opened_at = None
            self.half_open_successes = 0
            self.window.clear()

        log = logger.warning if new_state == CircuitBreakerState.OPEN else logger.info
        log(f"Circuit breaker '{self.name}' state changed: {old_state.value} -> {new_state.value}")
        self._notify_listeners(old_state, new_state)

    def _notify_listeners(self, old_state: CircuitBreakerState, new_state: CircuitBreakerState):
        if not self._listeners:
            return
        loop = asyncio.get_running_loop()
        for listener in self._listeners:
            loop.call_soon(listener, self.name, old_state, new_state)

    async def _handle_rejection(self, fallback: Optional[Fallback]) -> Any:
        remaining = 0
        if self.opened_at is not None:
            remaining = max(0, int(self.config.reset_timeout - (self._clock() - self.opened_at)))
        error = CircuitBreakerError(
            message=f"Service '{self.name}' is temporarily unavailable",
            service_name=self.name,
            failure_count=self.stats.failure_count,
            reset_time=remaining,
        )
        return await self._invoke_fallback(fallback, error)

    async def _invoke_fallback(self, fallback: Optional[Fallback], error: Exception) -> Any:
        if fallback is None:
            raise error
        self.stats.fallback_count += 1
        logger.info(f"Circuit breaker '{self.name}' - using fallback")
        result = fallback(error)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def reset(self):
        """Manually reset circuit breaker to closed state."""
        async with self._lock:
            logger.info(f"Manually resetting circuit breaker '{self.name}'")
            self._change_state(CircuitBreakerState.CLOSED)
            self.stats = CircuitBreakerStats()
            self.window.clear()
            self.opened_at = None
            self.half_open_successes = 0
            self._half_open_in_flight = 0

    def get_status(self) -> Dict[str, Any]:
        """Get current circuit breaker status."""
        successes, failures = self.window.counts()
        return {
            "name": self.name,
            "state": self.state.value,
            "config": self.config.to_dict(),
            "stats": self.stats.to_dict(),
            "window": {
                "successes": successes,
                "failures": failures,
                "error_percentage": self.window.error_percentage(),
            },
            "is_available": self.state != CircuitBreakerState.OPEN,
        }


class CircuitBreakerRegistry:
    """
    Registry for managing one circuit breaker per dependency name.

    Instances are created by the application factory (and by each worker
    process) and passed to the components that need them, so tests can use a
    fresh registry.
    """

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get_or_create(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None
    ) -> CircuitBreaker:
        """
        Return the breaker for ``name``, creating it on first use.

        The configuration only applies when the breaker is created.
        """
        breaker = self._breakers.get(name)
        if breaker is not None:
            return breaker

        breaker = CircuitBreaker(name, config or self.default_config, clock=self._clock)
        self._breakers[name] = breaker
        logger.info(f"Circuit breaker '{name}' registered")
        return breaker

    def get(self, name: str) -> Optional[CircuitBreaker]:
        return self._breakers.get(name)

    def get_status(self, name: str) -> Optional[Dict[str, Any]]:
        breaker = self._breakers.get(name)
        return breaker.get_status() if breaker else None

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        """Get status of all circuit breakers."""
        return {
            name: breaker.get_status()
            for name, breaker in self._breakers.items()
        }

    async def reset_by_name(self, name: str) -> bool:
        breaker = self._breakers.get(name)
        if breaker is None:
            logger.warning(f"Circuit breaker '{name}' not found")
            return False
        await breaker.reset()
        return True


class ResilientGateway:
    """
    Entry point for every call to an external dependency.

    Wraps ``CircuitBreakerRegistry`` so call sites only name the dependency,
    pass the coroutine and decide their own fallback policy: background jobs
    return a skip marker, foreground requests let the error propagate.
    """

    def __init__(self, registry: CircuitBreakerRegistry):
        self.registry = registry

    async def execute(
        self,
        dependency_name: str,
        operation: Callable[[], Awaitable[T]],
        options: Optional[CircuitBreakerConfig] = None,
        fallback: Optional[Fallback] = None,
    ) -> T:
        breaker = self.registry.get_or_create(dependency_name, options)
        return await breaker.execute(operation, fallback=fallback)

    def get_stats(self, dependency_name: str) -> Optional[Dict[str, Any]]:
        return self.registry.get_status(dependency_name)

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        return self.registry.get_all_status()


def build_default_config(settings, **overrides: Any) -> CircuitBreakerConfig:
    """Build a breaker config from application settings."""
    config = CircuitBreakerConfig(
        timeout=settings.BREAKER_TIMEOUT_SECONDS,
        error_threshold_percentage=settings.BREAKER_ERROR_THRESHOLD_PERCENTAGE,
        reset_timeout=settings.BREAKER_RESET_TIMEOUT_SECONDS,
        rolling_window=settings.BREAKER_ROLLING_WINDOW_SECONDS,
        volume_threshold=settings.BREAKER_VOLUME_THRESHOLD,
    )
    return replace(config, **overrides) if overrides else config


def skipped_fallback(error: Exception) -> Dict[str, Any]:
    """Fallback for background jobs: log and report the run as skipped."""
    logger.warning(f"Dependency unavailable, skipping this run: {error}")
    return {"skipped": True, "reason": str(error)}


# Named dependencies and their breaker settings
PAYMENT_API = "external-payment-api"
PAYMENT_API_SCHEDULER = "external-payment-api-scheduler"

SCHEDULER_BREAKER_OVERRIDES = {
    "timeout": 45.0,
    "error_threshold_percentage": 60.0,
    "reset_timeout": 120.0,
    "volume_threshold": 3,
}
