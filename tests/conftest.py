"""
Pytest configuration and fixtures for the bond directory tests.

Fixtures provide:
- A manual clock and a sleep that advances it instead of waiting
- Executor configuration with zero pacing
- An httpx MockTransport-backed executor factory
- Spreadsheet payloads built in memory
"""

import io
from typing import Any, Callable, Dict, List, Optional

import httpx
import pandas as pd
import pytest

from bond_directory.api.discovery.authentication import SessionCookies, SessionStore
from bond_directory.api.discovery.rate_limiter import RateLimitConfig
from bond_directory.api.extraction.circuit_breaker import CircuitBreakerConfig
from bond_directory.api.extraction.request_executor import ExecutorConfig, ResilientRequestExecutor
from bond_directory.api.extraction.retry_handler import RetryConfig

BASE_URL = "https://nsdl.test/bdsinfo"


class FakeClock:
    """Monotonic clock under test control"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSleep:
    """Records requested delays and advances the clock instead of sleeping"""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)
        self.clock.advance(seconds)


def xlsx_bytes(rows: List[Dict[str, Any]]) -> bytes:
    """Spreadsheet payload with one sheet holding the given rows"""
    buffer = io.BytesIO()
    pd.DataFrame(rows).to_excel(buffer, index=False, engine="openpyxl")
    return buffer.getvalue()


def make_refresher(*results: Any) -> Callable:
    """
    Async login collaborator returning (or raising) each result in turn.

    The returned callable exposes ``calls`` with the number of invocations.
    """
    queue = list(results)

    async def refresher() -> SessionCookies:
        refresher.calls += 1
        result = queue.pop(0) if queue else SessionCookies(nl01="fresh-01", nl1e="fresh-1e")
        if isinstance(result, Exception):
            raise result
        return result

    refresher.calls = 0
    return refresher


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(fake_clock):
    return FakeSleep(fake_clock)


@pytest.fixture
def valid_cookies():
    return SessionCookies(nl01="cookie-01", nl1e="cookie-1e")


@pytest.fixture
def executor_config():
    """Zero pacing, small deterministic backoff"""
    return ExecutorConfig(
        base_url=BASE_URL,
        timeout_seconds=5.0,
        rate_limit=RateLimitConfig(request_delay_seconds=0.0, jitter_max_seconds=0.0),
        retry=RetryConfig(max_retries=3, base_backoff_seconds=0.5, backoff_jitter_seconds=0.0),
        circuit_breaker=CircuitBreakerConfig(failure_threshold=5, reset_timeout_seconds=60.0)
    )


@pytest.fixture
def make_executor(executor_config, fake_clock, fake_sleep, valid_cookies):
    """
    Build an executor whose HTTP traffic goes to ``handler``.

    handler receives an httpx.Request and returns an httpx.Response.
    """
    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
        session_store: Optional[SessionStore] = None,
        config: Optional[ExecutorConfig] = None,
        name: str = "test"
    ) -> ResilientRequestExecutor:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ResilientRequestExecutor(
            name=name,
            config=config or executor_config,
            session_store=session_store or SessionStore(initial=valid_cookies),
            client=client,
            clock=fake_clock,
            sleep=fake_sleep
        )
    return factory


@pytest.fixture
def sample_listing_rows():
    """Rows as they appear in /listofsecurities?type=Active"""
    return [
        {
            "ISIN": "INE002A07809",
            "Name of Issuer": "Reliance Industries Limited",
            "Coupon Rate (%)": "8.95",
            "Date of Allotment": "09-11-2018",
            "Date of Redemption/Conversion": "09-11-2035",
            "Face Value(in Rs.)": "10,00,000",
            "Credit Rating": "ICRAAAA/STABLE;CRISILAAA/STABLE",
            "Coupon Type": "Fixed",
            "Frequency of Interest Payment": "Annual",
            "Type of Issuer-Ownership": "Private Sector",
            "Business Sector": "Oil & Gas",
        },
        {
            "ISIN": "INE062A08264",
            "Name of Issuer": "State Bank of India",
            "Coupon Rate (%)": 7.72,
            "Date of Allotment": "2021-09-01",
            "Date of Redemption/Conversion": "2036-09-01",
            "Credit Rating": "CRISILAA+/STABLE",
            "Coupon Type": "Floating",
            "Frequency of Interest Payment": "Semi-Annual",
            "Type of Issuer-Ownership": "PSU",
        },
        {
            "ISIN": "",
            "Name of Issuer": "Missing Identifier Ltd",
        },
    ]


class Router:
    """
    MockTransport handler dispatching on endpoint path.

    Keys are paths relative to the service root, with "?type=..." appended
    for /listofsecurities. Values are a status code, raw bytes (200), a JSON
    payload (200) or a callable taking the request. Unrouted paths answer 404.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes = dict(routes or {})
        self.hits: List[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        key = request.url.path.split("/bdsinfo", 1)[-1]
        if "type" in request.url.params:
            key = f"{key}?type={request.url.params['type']}"
        self.hits.append(key)

        route = self.routes.get(key)
        if route is None:
            return httpx.Response(404)
        if callable(route):
            return route(request)
        if isinstance(route, int):
            return httpx.Response(route)
        if isinstance(route, bytes):
            return httpx.Response(200, content=route)
        return httpx.Response(200, json=route)


@pytest.fixture
def make_nsdl_client(executor_config, fake_clock, fake_sleep, valid_cookies):
    """Build an NSDLBondClient whose traffic goes to a Router"""
    from bond_directory.api.sources.nsdl import NSDLBondClient

    def factory(router: Router) -> NSDLBondClient:
        return NSDLBondClient(
            executor_config,
            SessionStore(initial=valid_cookies),
            client=httpx.AsyncClient(transport=httpx.MockTransport(router)),
            clock=fake_clock,
            sleep=fake_sleep
        )
    return factory
