"""
Circuit Breaker - Failure isolation for calls against one upstream
"""

import time
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, TypeVar
from enum import Enum
import structlog
from pydantic import BaseModel, Field

from bond_directory.core.exceptions import CircuitOpenError

logger = structlog.get_logger(__name__)

T = TypeVar('T')


class CircuitBreakerState(str, Enum):
    """Circuit breaker states"""
    CLOSED = "CLOSED"        # Normal operation
    OPEN = "OPEN"            # Failing, rejecting requests
    HALF_OPEN = "HALF_OPEN"  # Admitting one trial request


class CircuitBreakerConfig(BaseModel):
    """Configuration for circuit breaker"""
    failure_threshold: int = 5           # Failures before opening
    reset_timeout_seconds: float = 60.0  # Time to wait before moving to half-open
    # When set, only failures inside this window count toward the threshold.
    # When None, the counter is a plain consecutive-failure counter.
    monitoring_window_seconds: Optional[float] = None


class StateTransition(BaseModel):
    """Notification emitted on every state change"""
    from_state: CircuitBreakerState
    to_state: CircuitBreakerState
    failure_count: int
    timestamp: datetime = Field(default_factory=datetime.utcnow)


StateListener = Callable[[StateTransition], None]


class CircuitBreaker:
    """Circuit breaker wrapping every outbound call to one upstream"""

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Optional[StateListener] = None
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._listeners: List[StateListener] = []
        if on_state_change:
            self._listeners.append(on_state_change)

        self._state = CircuitBreakerState.CLOSED
        self._failure_times: Deque[float] = deque()
        self._last_failure_time: Optional[float] = None
        self._next_retry_time: Optional[float] = None
        self._trial_in_flight = False

        self._total_requests = 0
        self._total_successes = 0
        self._rejected_requests = 0

        self.transitions: List[StateTransition] = []

        logger.info("Circuit breaker initialized",
                   name=name,
                   state=self._state.value,
                   failure_threshold=self.config.failure_threshold,
                   counting="sliding_window" if self.config.monitoring_window_seconds else "consecutive")

    # Read-only counters

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    @property
    def failure_count(self) -> int:
        self._prune_failures()
        return len(self._failure_times)

    @property
    def total_requests(self) -> int:
        return self._total_requests

    @property
    def total_successes(self) -> int:
        return self._total_successes

    @property
    def rejected_requests(self) -> int:
        return self._rejected_requests

    @property
    def last_failure_time(self) -> Optional[float]:
        return self._last_failure_time

    @property
    def next_retry_time(self) -> Optional[float]:
        return self._next_retry_time

    def add_listener(self, listener: StateListener):
        """Register a state-change listener"""
        self._listeners.append(listener)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run an operation through the breaker

        Args:
            operation: Zero-argument coroutine function performing the call

        Returns:
            The operation's result

        Raises:
            CircuitOpenError: If the breaker rejects the call; operation is not invoked
        """
        self._total_requests += 1
        self._admit()

        is_trial = self._state == CircuitBreakerState.HALF_OPEN
        if is_trial:
            self._trial_in_flight = True

        try:
            result = await operation()
        except Exception as e:
            self._on_failure(e)
            raise
        finally:
            if is_trial:
                self._trial_in_flight = False

        self._on_success()
        return result

    def _admit(self):
        """Decide whether a call may proceed, transitioning OPEN -> HALF_OPEN when due"""
        now = self._clock()

        if self._state == CircuitBreakerState.OPEN:
            if self._next_retry_time is not None and now >= self._next_retry_time:
                self._transition(CircuitBreakerState.HALF_OPEN)
            else:
                self._reject(now)

        if self._state == CircuitBreakerState.HALF_OPEN and self._trial_in_flight:
            self._reject(now)

    def _reject(self, now: float):
        self._rejected_requests += 1
        retry_in = max(0.0, (self._next_retry_time or now) - now)
        logger.debug("Circuit breaker rejecting request",
                    name=self.name,
                    state=self._state.value,
                    retry_in_seconds=round(retry_in, 3))
        raise CircuitOpenError(
            f"Circuit breaker '{self.name}' is {self._state.value}; upstream unavailable",
            details={"breaker": self.name, "retry_in_seconds": retry_in}
        )

    def _on_success(self):
        self._total_successes += 1
        self._failure_times.clear()

        if self._state == CircuitBreakerState.HALF_OPEN:
            self._next_retry_time = None
            self._transition(CircuitBreakerState.CLOSED)

    def _on_failure(self, error: Exception):
        now = self._clock()
        self._last_failure_time = now
        self._failure_times.append(now)
        self._prune_failures()

        logger.warning("Circuit breaker recorded failure",
                      name=self.name,
                      state=self._state.value,
                      failure_count=len(self._failure_times),
                      error_type=type(error).__name__,
                      error=str(error))

        if self._state == CircuitBreakerState.HALF_OPEN:
            self._trip(now)
        elif (self._state == CircuitBreakerState.CLOSED
              and len(self._failure_times) >= self.config.failure_threshold):
            self._trip(now)

    def _trip(self, now: float):
        self._next_retry_time = now + self.config.reset_timeout_seconds
        self._transition(CircuitBreakerState.OPEN)

    def _prune_failures(self):
        window = self.config.monitoring_window_seconds
        if not window:
            return
        cutoff = self._clock() - window
        while self._failure_times and self._failure_times[0] < cutoff:
            self._failure_times.popleft()

    def _transition(self, new_state: CircuitBreakerState):
        """Change state and notify listeners"""
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        event = StateTransition(
            from_state=old_state,
            to_state=new_state,
            failure_count=len(self._failure_times)
        )
        self.transitions.append(event)
        if len(self.transitions) > 100:
            self.transitions = self.transitions[-100:]

        logger.info("Circuit breaker state changed",
                   name=self.name,
                   old_state=old_state.value,
                   new_state=new_state.value,
                   failure_count=event.failure_count)

        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error("Circuit breaker listener failed",
                            name=self.name,
                            error=str(e))

    def get_status(self) -> Dict[str, Any]:
        """Get current circuit breaker status"""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self.failure_count,
            "total_requests": self._total_requests,
            "total_successes": self._total_successes,
            "rejected_requests": self._rejected_requests,
            "last_failure_time": self._last_failure_time,
            "next_retry_time": self._next_retry_time,
            "config": self.config.model_dump()
        }

    def reset(self):
        """Force the breaker back to CLOSED (operator action)"""
        self._failure_times.clear()
        self._last_failure_time = None
        self._next_retry_time = None
        self._trial_in_flight = False
        self._transition(CircuitBreakerState.CLOSED)
        logger.info("Circuit breaker reset", name=self.name)
