"""
Authentication Handler - Session-cookie lifecycle for the NSDL upstream
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional
import structlog
from pydantic import BaseModel

from bond_directory.core.config import Settings

logger = structlog.get_logger(__name__)

COOKIE_NAME_NL01 = "NL01dfc552"
COOKIE_NAME_NL1E = "NL1e619be7027"


class SessionCookies(BaseModel):
    """The two opaque cookie values the upstream gates on"""
    nl01: str = ""
    nl1e: str = ""
    obtained_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.nl01 and self.nl1e)

    def header_value(self) -> str:
        """Render as a Cookie header; empty when incomplete"""
        if not self.is_complete:
            return ""
        return f"{COOKIE_NAME_NL01}={self.nl01}; {COOKIE_NAME_NL1E}={self.nl1e}"


# Out-of-band login collaborator: no inputs, returns fresh cookies or raises.
CookieRefresher = Callable[[], Awaitable[SessionCookies]]


class SessionStore:
    """
    Holds the current session cookies and refreshes them on demand.

    One store is shared by every executor talking to the same upstream. A
    refresh is serialized behind a lock; callers pass the generation they
    observed when the session failed, so an expiry seen by several executors
    at once triggers a single login.
    """

    def __init__(
        self,
        initial: Optional[SessionCookies] = None,
        refresher: Optional[CookieRefresher] = None
    ):
        self._cookies = initial or SessionCookies()
        self._refresher = refresher
        self._generation = 0
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self.refresh_attempts = 0
        self.refresh_failures = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        refresher: Optional[CookieRefresher] = None
    ) -> "SessionStore":
        """Seed the store from configured cookie values"""
        initial = SessionCookies(
            nl01=settings.NSDL_COOKIE_NL01,
            nl1e=settings.NSDL_COOKIE_NL1E
        )
        if not initial.is_complete:
            logger.warning("Session cookies not configured; requests may fail with 403",
                          missing=[name for name, value in (("NSDL_COOKIE_NL01", initial.nl01),
                                                            ("NSDL_COOKIE_NL1E", initial.nl1e)) if not value])
        return cls(initial=initial, refresher=refresher)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def can_refresh(self) -> bool:
        return self._refresher is not None

    def get(self) -> SessionCookies:
        """Current cookies (possibly incomplete)"""
        return self._cookies

    def get_auth_headers(self) -> Dict[str, str]:
        """Headers to attach to an upstream request"""
        header = self._cookies.header_value()
        return {"Cookie": header} if header else {}

    def _refresh_lock(self) -> asyncio.Lock:
        # One lock per event loop
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def refresh(self, seen_generation: Optional[int] = None) -> bool:
        """
        Run the login collaborator once

        Args:
            seen_generation: Generation the caller used when its request failed.
                If another caller refreshed since then, no new login is made.

        Returns:
            True when fresh cookies are available, False when the login failed
        """
        async with self._refresh_lock():
            if seen_generation is not None and seen_generation != self._generation:
                logger.info("Session already refreshed by another caller",
                           generation=self._generation)
                return True

            if self._refresher is None:
                logger.error("No session refresher configured")
                self.refresh_failures += 1
                return False

            self.refresh_attempts += 1
            try:
                cookies = await self._refresher()
            except Exception as e:
                self.refresh_failures += 1
                logger.error("Session refresh failed",
                            error=str(e),
                            error_type=type(e).__name__)
                return False

            if cookies is None or not cookies.is_complete:
                self.refresh_failures += 1
                logger.error("Session refresh returned incomplete cookies")
                return False

            if cookies.obtained_at is None:
                cookies = cookies.model_copy(update={"obtained_at": datetime.utcnow()})
            self._cookies = cookies
            self._generation += 1
            logger.info("Session cookies refreshed", generation=self._generation)
            return True
