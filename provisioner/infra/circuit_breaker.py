"""Circuit breaker for external service calls."""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Any, Dict, Optional, Tuple, Type, Union
from datetime import datetime, timezone

from provisioner.infra.error_handler import CircuitOpenError
from provisioner.infra.metrics import circuit_breaker_rejections_total, circuit_breaker_state

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitBreaker:
    """
    Circuit breaker implementation for external service calls.
    
    Prevents cascading failures by opening the circuit when failure threshold
    is reached. The breaker only decides admission; it never retries.
    """
    
    def __init__(
        self,
        name: str,
        max_failures: int = 5,
        open_timeout: float = 30.0,
        half_open_max_probes: int = 3,
        success_threshold: int = 2,
        expected_exception: Union[Type[BaseException], Tuple[Type[BaseException], ...]] = Exception,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.
        
        Args:
            name: Logical dependency name, used in logs and metrics
            max_failures: Consecutive failures in closed state before opening
            open_timeout: Seconds since the last failure before a probe is allowed
            half_open_max_probes: Calls allowed in flight while half-open
            success_threshold: Half-open successes needed to close the circuit
            expected_exception: Exception type(s) that count as failure; any
                other exception propagates and counts as a success
            clock: Monotonic time source in seconds
        """
        self.name = name
        self.max_failures = max_failures
        self.open_timeout = open_timeout
        self.half_open_max_probes = half_open_max_probes
        self.success_threshold = success_threshold
        self.expected_exception = expected_exception
        self._clock = clock
        
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0  # For half-open state
        self._half_open_in_flight = 0
        # Bumped on every state change; outcomes of calls admitted under an
        # older generation do not touch the current counters
        self._generation = 0
        self._last_failure: Optional[float] = None
        self._last_failure_at: Optional[datetime] = None
        
        circuit_breaker_state.labels(service=name).set(_STATE_GAUGE_VALUES[CircuitState.CLOSED])
    
    @property
    def state(self) -> CircuitState:
        """Current state, without triggering the open -> half-open transition."""
        with self._lock:
            return self._state
    
    def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute function with circuit breaker protection.
        
        Args:
            func: Function to execute
            *args, **kwargs: Function arguments
        
        Returns:
            Function result
        
        Raises:
            CircuitOpenError: If the circuit rejects the call
            Exception: Original exception from function
        """
        admission = self._before_call()
        try:
            result = func(*args, **kwargs)
        except BaseException as e:
            self._after_call(admission, e)
            raise
        self._after_call(admission, None)
        return result
    
    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute async function with circuit breaker protection.
        
        Args:
            func: Async function to execute
            *args, **kwargs: Function arguments
        
        Returns:
            Function result
        
        Raises:
            CircuitOpenError: If the circuit rejects the call
            Exception: Original exception from function
        """
        admission = self._before_call()
        try:
            result = await func(*args, **kwargs)
        except BaseException as e:
            self._after_call(admission, e)
            raise
        self._after_call(admission, None)
        return result
    
    def reset(self) -> None:
        """Force the circuit closed and clear all counters."""
        with self._lock:
            previous = self._state
            self._failures = 0
            self._successes = 0
            self._half_open_in_flight = 0
            self._transition(CircuitState.CLOSED)
        logger.info(
            "Circuit breaker reset",
            extra={"service": self.name, "previous_state": previous.value},
        )
    
    def stats(self) -> Dict[str, Any]:
        """Snapshot of state, counters and configuration."""
        with self._lock:
            return {
                "service": self.name,
                "state": self._state.value,
                "failures": self._failures,
                "successes": self._successes,
                "half_open_in_flight": self._half_open_in_flight,
                "last_failure_at": self._last_failure_at.isoformat() if self._last_failure_at else None,
                "max_failures": self.max_failures,
                "open_timeout": self.open_timeout,
                "half_open_max_probes": self.half_open_max_probes,
                "success_threshold": self.success_threshold,
            }
    
    def _before_call(self) -> Tuple[bool, int]:
        """
        Admit or reject a call.

        Returns ``(probe, generation)``: whether the call is a half-open probe,
        and the state generation it was admitted under.
        """
        with self._lock:
            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - (self._last_failure or 0.0)
                if elapsed < self.open_timeout:
                    retry_after = self.open_timeout - elapsed
                    circuit_breaker_rejections_total.labels(service=self.name).inc()
                    raise CircuitOpenError(
                        self.name,
                        f"circuit breaker is open, retry after {retry_after:.1f}s",
                        retry_after=retry_after,
                    )
                self._successes = 0
                self._half_open_in_flight = 0
                self._transition(CircuitState.HALF_OPEN)
            
            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_in_flight >= self.half_open_max_probes:
                    circuit_breaker_rejections_total.labels(service=self.name).inc()
                    raise CircuitOpenError(self.name, "circuit breaker is half-open, probe limit reached")
                self._half_open_in_flight += 1
                return True, self._generation
            
            return False, self._generation
    
    def _after_call(self, admission: Tuple[bool, int], error: Optional[BaseException]) -> None:
        probe, generation = admission
        failed = error is not None and isinstance(error, self.expected_exception)
        with self._lock:
            if generation != self._generation:
                # Admitted before the last state change: its probe slot was
                # already reclaimed. Only a failure seen while closed counts.
                if failed and not probe and self._state == CircuitState.CLOSED:
                    self._on_failure(False)
                return
            if probe and self._half_open_in_flight > 0:
                self._half_open_in_flight -= 1
            if error is not None and not isinstance(error, Exception):
                # Cancelled or interrupted: no outcome to record
                return
            if failed:
                self._on_failure(probe)
            else:
                self._on_success(probe)
    
    def _on_success(self, probe: bool) -> None:
        if self._state == CircuitState.HALF_OPEN and probe:
            self._successes += 1
            if self._successes >= self.success_threshold:
                self._failures = 0
                self._successes = 0
                self._half_open_in_flight = 0
                self._transition(CircuitState.CLOSED)
        elif self._state == CircuitState.CLOSED:
            self._failures = 0
    
    def _on_failure(self, probe: bool) -> None:
        self._failures += 1
        self._last_failure = self._clock()
        self._last_failure_at = datetime.now(timezone.utc)
        
        if self._state == CircuitState.HALF_OPEN and probe:
            self._successes = 0
            self._half_open_in_flight = 0
            self._transition(CircuitState.OPEN)
        elif self._state == CircuitState.CLOSED and self._failures >= self.max_failures:
            self._transition(CircuitState.OPEN)
    
    def _transition(self, new_state: CircuitState) -> None:
        # Caller holds the lock
        if new_state == self._state:
            return
        old_state = self._state
        self._state = new_state
        self._generation += 1
        circuit_breaker_state.labels(service=self.name).set(_STATE_GAUGE_VALUES[new_state])
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            "Circuit breaker state changed",
            extra={"service": self.name, "from_state": old_state.value, "to_state": new_state.value},
        )
