"""
Resilient Request Executor - Rate-limited, retried, breaker-guarded fetches against one upstream
"""

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional
import httpx
import structlog
from pydantic import BaseModel, Field

from bond_directory.core.config import Settings
from bond_directory.core.exceptions import (
    BondDirectoryException,
    SessionExpiredError,
    SyncCancelledError,
    TransportError,
)
from bond_directory.api.discovery.authentication import SessionStore
from bond_directory.api.discovery.rate_limiter import RateLimitConfig, RateLimiter
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from .response_decoder import ResponseKind, decode_response, looks_like_error_page
from .retry_handler import AttemptState, AttemptStateMachine, RetryConfig, RetryHandler

logger = structlog.get_logger(__name__)

SESSION_EXPIRED_STATUSES = (401, 403)


class ExecutorConfig(BaseModel):
    """Tuning for one executor instance"""
    base_url: str
    timeout_seconds: float = 45.0
    headers: Dict[str, str] = Field(default_factory=dict)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "ExecutorConfig":
        """Build executor tuning from application settings"""
        window = settings.MONITORING_WINDOW_MS
        values: Dict[str, Any] = {
            "base_url": settings.NSDL_BASE_URL,
            "timeout_seconds": settings.REQUEST_TIMEOUT,
            "rate_limit": RateLimitConfig(
                request_delay_seconds=settings.REQUEST_DELAY_MS / 1000,
                jitter_max_seconds=settings.JITTER_MAX_MS / 1000
            ),
            "retry": RetryConfig(
                max_retries=settings.MAX_RETRIES,
                base_backoff_seconds=settings.BASE_BACKOFF_MS / 1000,
                backoff_jitter_seconds=settings.BACKOFF_JITTER_MS / 1000
            ),
            "circuit_breaker": CircuitBreakerConfig(
                failure_threshold=settings.FAILURE_THRESHOLD,
                reset_timeout_seconds=settings.RESET_TIMEOUT_MS / 1000,
                monitoring_window_seconds=window / 1000 if window else None
            ),
        }
        values.update(overrides)
        return cls(**values)


class ExecutorStats(BaseModel):
    """Counters for one executor instance"""
    requests: int = 0
    successes: int = 0
    failures: int = 0
    retries: int = 0
    not_found: int = 0
    session_refreshes: int = 0


class ResilientRequestExecutor:
    """
    Performs logical fetches against one upstream.

    Every fetch runs inside the circuit breaker; inside, each physical attempt
    waits on the rate limiter, so one instance never has two attempts in
    flight. Use separate instances for endpoints that may run concurrently.
    """

    def __init__(
        self,
        name: str,
        config: ExecutorConfig,
        session_store: SessionStore,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None
    ):
        self.name = name
        self.config = config
        self.session_store = session_store
        self.stats = ExecutorStats()

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._sleep = sleep
        self._lock = asyncio.Lock()

        rng = rng or random.Random()
        self.rate_limiter = RateLimiter(name, config.rate_limit, clock=clock, sleep=sleep, rng=rng)
        self.circuit_breaker = CircuitBreaker(name, config.circuit_breaker, clock=clock)
        self.retry_handler = RetryHandler(config.retry, rng=rng)

        logger.info("Request executor initialized",
                   name=name,
                   base_url=config.base_url,
                   max_retries=config.retry.max_retries)

    def _url(self, endpoint: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

    async def fetch(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        kind: ResponseKind = ResponseKind.JSON
    ) -> List[Dict[str, Any]]:
        """
        Fetch one endpoint and return its records

        Args:
            endpoint: Path relative to the upstream base URL
            params: Query parameters
            kind: Expected response kind

        Returns:
            Decoded records; empty when the upstream answers 404

        Raises:
            CircuitOpenError: Breaker is open; nothing was sent
            SessionExpiredError: Session could not be recovered
            TransportError: Retry budget exhausted
            DecodeError: Payload could not be decoded
        """
        self.stats.requests += 1
        params = params or {}

        async def operation() -> List[Dict[str, Any]]:
            return await self._attempt_loop(endpoint, params, kind)

        try:
            async with self._lock:
                return await self.circuit_breaker.execute(operation)
        except BondDirectoryException as e:
            self.stats.failures += 1
            logger.error("Fetch failed",
                        executor=self.name,
                        endpoint=endpoint,
                        **e.to_dict())
            raise

    async def _attempt_loop(
        self,
        endpoint: str,
        params: Dict[str, Any],
        kind: ResponseKind
    ) -> List[Dict[str, Any]]:
        machine = self.retry_handler.new_attempt_machine()
        url = self._url(endpoint)

        if self.session_store.can_refresh and not self.session_store.get().is_complete:
            logger.info("No session cookies present; refreshing before first attempt",
                       executor=self.name,
                       endpoint=endpoint)
            if await self.session_store.refresh(seen_generation=self.session_store.generation):
                self.stats.session_refreshes += 1

        while True:
            await self.rate_limiter.acquire()
            generation = self.session_store.generation
            headers = {**self.config.headers, **self.session_store.get_auth_headers()}

            try:
                response = await self._client.get(
                    url,
                    params=params,
                    headers=headers,
                    timeout=self.config.timeout_seconds
                )
            except httpx.HTTPError as e:
                last_error = TransportError(
                    f"{type(e).__name__} calling {endpoint}: {e}",
                    details={"endpoint": endpoint, "attempt": machine.attempt}
                )
                last_error.__cause__ = e
            else:
                status = response.status_code

                if status == 404:
                    self.stats.not_found += 1
                    machine.succeeded()
                    logger.info("Endpoint returned 404; treating as empty",
                               executor=self.name,
                               endpoint=endpoint)
                    return []

                expired = status in SESSION_EXPIRED_STATUSES or (
                    response.is_success and looks_like_error_page(response.content)
                )
                if expired:
                    await self._recover_session(machine, endpoint, status, generation)
                    continue

                if not response.is_success:
                    last_error = TransportError(
                        f"Unexpected status {status} from {endpoint}",
                        status_code=status,
                        details={"endpoint": endpoint, "attempt": machine.attempt}
                    )
                else:
                    records = decode_response(response.content, kind)
                    machine.succeeded()
                    self.stats.successes += 1
                    logger.info("Fetch succeeded",
                               executor=self.name,
                               endpoint=endpoint,
                               records=len(records),
                               attempt=machine.attempt)
                    return records

            if not machine.can_retry():
                machine.failed("retry budget exhausted")
                raise last_error

            delay = self.retry_handler.backoff_delay(machine.attempt)
            self.stats.retries += 1
            logger.warning("Retrying after failure",
                          executor=self.name,
                          endpoint=endpoint,
                          retry=machine.attempt + 1,
                          max_retries=machine.max_retries,
                          delay_seconds=round(delay, 3),
                          error=last_error.message)
            await self._sleep(delay)
            machine.next_attempt()

    async def _recover_session(
        self,
        machine: AttemptStateMachine,
        endpoint: str,
        status: int,
        generation: int
    ):
        """Run the single allowed refresh or fail the fetch"""
        logger.warning("Session expired",
                      executor=self.name,
                      endpoint=endpoint,
                      status_code=status)

        if machine.session_expired() == AttemptState.FAILED:
            raise SessionExpiredError(
                f"Session expired again after refresh: {endpoint}",
                details={"endpoint": endpoint, "status_code": status}
            )

        refreshed = await self.session_store.refresh(seen_generation=generation)
        self.stats.session_refreshes += 1

        if machine.refresh_completed(refreshed) == AttemptState.FAILED:
            raise SessionExpiredError(
                f"Session refresh failed: {endpoint}",
                details={"endpoint": endpoint, "status_code": status}
            )

        logger.info("Retrying after session refresh",
                   executor=self.name,
                   endpoint=endpoint,
                   attempt=machine.attempt)

    async def fetch_all_pages(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        page_size: int = 100,
        page_param: str = "pgno",
        size_param: str = "pgsize",
        start_page: int = 1,
        max_pages: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch a paginated JSON endpoint one page at a time

        Stops on an empty page or a page shorter than page_size. The cancel
        event is checked before every page.

        Raises:
            SyncCancelledError: Cancellation observed; carries records fetched so far
        """
        records: List[Dict[str, Any]] = []
        page = start_page
        pages_fetched = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Paginated fetch cancelled",
                              executor=self.name,
                              endpoint=endpoint,
                              page=page,
                              records=len(records))
                raise SyncCancelledError(
                    f"Fetch of {endpoint} cancelled before page {page}",
                    partial_records=records,
                    details={"endpoint": endpoint, "page": page}
                )

            if max_pages is not None and pages_fetched >= max_pages:
                logger.warning("Page cap reached",
                              executor=self.name,
                              endpoint=endpoint,
                              max_pages=max_pages)
                break

            batch = await self.fetch(
                endpoint,
                {**(params or {}), page_param: page, size_param: page_size},
                ResponseKind.JSON
            )
            pages_fetched += 1

            if not batch:
                break

            records.extend(batch)
            logger.debug("Page fetched",
                        executor=self.name,
                        endpoint=endpoint,
                        page=page,
                        cumulative=len(records))

            if len(batch) < page_size:
                break
            page += 1

        logger.info("Paginated fetch complete",
                   executor=self.name,
                   endpoint=endpoint,
                   pages=pages_fetched,
                   records=len(records))
        return records

    def get_stats(self) -> Dict[str, Any]:
        """Executor counters plus breaker and limiter status"""
        return {
            **self.stats.model_dump(),
            "circuit_breaker": self.circuit_breaker.get_status(),
            "rate_limiter": self.rate_limiter.get_status()
        }

    def reset_stats(self):
        self.stats = ExecutorStats()
        self.circuit_breaker.reset()

    async def close(self):
        """Close the HTTP client if this executor created it"""
        if self._owns_client and self._client is not None:
            await self._client.aclose()

    async def __aenter__(self) -> "ResilientRequestExecutor":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()
