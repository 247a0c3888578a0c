"""
Data Extraction Package

This package contains the fault-tolerant request layer: circuit breaking,
bounded retries with backoff, session recovery and response decoding.
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerState
from .retry_handler import AttemptState, AttemptStateMachine, RetryConfig, RetryHandler
from .response_decoder import ResponseKind, decode_response
from .request_executor import ExecutorConfig, ExecutorStats, ResilientRequestExecutor

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "AttemptState",
    "AttemptStateMachine",
    "RetryConfig",
    "RetryHandler",
    "ResponseKind",
    "decode_response",
    "ExecutorConfig",
    "ExecutorStats",
    "ResilientRequestExecutor"
]
