"""
Retry Handler - Bounded retries with exponential backoff and a session-refresh state machine
"""

import random
from enum import Enum
from typing import List, Optional
import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


class RetryConfig(BaseModel):
    """Configuration for retry logic"""
    max_retries: int = 3                 # Physical attempts = max_retries + 1
    base_backoff_seconds: float = 2.5    # Delay before retry n is base * 2**n
    backoff_jitter_seconds: float = 1.0  # Plus uniform(0, jitter)


class AttemptState(str, Enum):
    """States of one logical fetch"""
    ATTEMPTING = "attempting"
    EXPIRED_PENDING_REFRESH = "expired_pending_refresh"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class AttemptTransition(BaseModel):
    """One recorded move of the attempt state machine"""
    attempt: int
    from_state: AttemptState
    to_state: AttemptState
    reason: str


class AttemptStateMachine:
    """
    Tracks the attempt loop of a single logical fetch.

    ATTEMPTING -> EXPIRED_PENDING_REFRESH on a session-expiry signal. A
    successful refresh returns to ATTEMPTING at the same attempt index, so the
    refresh never consumes retry budget. A failed refresh, or a second expiry
    after the one allowed refresh, ends in FAILED.
    """

    def __init__(self, max_retries: int):
        self.max_retries = max_retries
        self.attempt = 0
        self.state = AttemptState.ATTEMPTING
        self.refresh_used = False
        self.history: List[AttemptTransition] = []

    def _move(self, to_state: AttemptState, reason: str):
        self.history.append(AttemptTransition(
            attempt=self.attempt,
            from_state=self.state,
            to_state=to_state,
            reason=reason
        ))
        self.state = to_state

    def session_expired(self) -> AttemptState:
        """Record an expiry signal; FAILED when the refresh was already spent"""
        if self.refresh_used:
            self._move(AttemptState.FAILED, "session expired again after refresh")
        else:
            self._move(AttemptState.EXPIRED_PENDING_REFRESH, "session expired")
        return self.state

    def refresh_completed(self, refreshed: bool) -> AttemptState:
        """Record the outcome of the single allowed refresh"""
        self.refresh_used = True
        if refreshed:
            self._move(AttemptState.ATTEMPTING, "session refreshed")
        else:
            self._move(AttemptState.FAILED, "session refresh failed")
        return self.state

    def can_retry(self) -> bool:
        return self.attempt < self.max_retries

    def next_attempt(self):
        """Consume one unit of retry budget"""
        self.attempt += 1
        self._move(AttemptState.ATTEMPTING, "retry")

    def succeeded(self):
        self._move(AttemptState.SUCCEEDED, "response accepted")

    def failed(self, reason: str):
        self._move(AttemptState.FAILED, reason)


class RetryHandler:
    """Computes backoff delays for the attempt loop"""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        rng: Optional[random.Random] = None
    ):
        self.config = config or RetryConfig()
        self._rng = rng or random.Random()

    def new_attempt_machine(self) -> AttemptStateMachine:
        return AttemptStateMachine(self.config.max_retries)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after a failure at the given attempt index"""
        base = self.config.base_backoff_seconds * (2 ** attempt)
        jitter = self._rng.uniform(0, self.config.backoff_jitter_seconds) if self.config.backoff_jitter_seconds > 0 else 0.0
        return base + jitter
