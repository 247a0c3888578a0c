"""
Upstream Access Package

This package contains request pacing and the session-cookie store shared by
every executor talking to the NSDL upstream.
"""

from .authentication import SessionCookies, SessionStore
from .rate_limiter import RateLimitConfig, RateLimiter

__all__ = [
    "SessionCookies",
    "SessionStore",
    "RateLimitConfig",
    "RateLimiter"
]
