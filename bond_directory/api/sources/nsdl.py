"""
NSDL IndiaBondInfo Client - Logical datasets mapped onto upstream endpoints

Spreadsheet endpoints (issuer type, credit rating, interest rate,
restructured ISINs, list of securities, issuer-wise) and JSON endpoints
(listed securities, dashboards, dropdown metadata) all go through a
ResilientRequestExecutor. Each dataset gets its own executor, so each has its
own breaker, pacer and retry budget; all of them share one session store and
one HTTP connection pool.
"""

import asyncio
import random
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
import httpx
import structlog
from pydantic import BaseModel, Field

from bond_directory.core.config import Settings
from bond_directory.core.exceptions import BondDirectoryException
from bond_directory.api.discovery.authentication import CookieRefresher, SessionStore
from bond_directory.api.extraction.request_executor import ExecutorConfig, ResilientRequestExecutor
from bond_directory.api.extraction.response_decoder import ResponseKind

logger = structlog.get_logger(__name__)

DEFAULT_HEADERS: Dict[str, str] = {
    "Accept": "*/*",
    "Accept-Language": "en-GB,en-US;q=0.9,en;q=0.8",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-origin",
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
    ),
}


class Dataset(str, Enum):
    """Logical datasets a caller can request"""
    ACTIVE_SECURITIES = "active_securities"
    MATURED_SECURITIES = "matured_securities"
    CREDIT_RATING_WISE = "credit_rating_wise"
    INTEREST_RATE_WISE = "interest_rate_wise"
    ISSUER_TYPE_WISE = "issuer_type_wise"
    ISSUER_WISE = "issuer_wise"
    RESTRUCTURED_ISINS = "restructured_isins"
    LISTED_SECURITIES = "listed_securities"
    DUE_FOR_REDEMPTION = "due_for_redemption"
    NEW_BOND_ISSUES = "new_bond_issues"
    OUTSTANDING_BONDS = "outstanding_bonds"
    CURRENT_ISSUANCE = "current_issuance"
    PREVIOUS_ISSUANCE = "previous_issuance"
    DROPDOWN = "dropdown"


class EndpointSpec(BaseModel):
    """Physical endpoint behind a dataset"""
    path: str
    kind: ResponseKind = ResponseKind.JSON
    params: Dict[str, Any] = Field(default_factory=dict)


ENDPOINTS: Dict[Dataset, EndpointSpec] = {
    Dataset.ACTIVE_SECURITIES: EndpointSpec(
        path="/listofsecurities", kind=ResponseKind.TABULAR, params={"type": "Active"}
    ),
    Dataset.MATURED_SECURITIES: EndpointSpec(
        path="/listofsecurities", kind=ResponseKind.TABULAR, params={"type": "Matured"}
    ),
    Dataset.CREDIT_RATING_WISE: EndpointSpec(path="/creditratingwise", kind=ResponseKind.TABULAR),
    Dataset.INTEREST_RATE_WISE: EndpointSpec(path="/interestratewise", kind=ResponseKind.TABULAR),
    Dataset.ISSUER_TYPE_WISE: EndpointSpec(path="/issuertypewise", kind=ResponseKind.TABULAR),
    Dataset.ISSUER_WISE: EndpointSpec(path="/issuerwise", kind=ResponseKind.TABULAR),
    Dataset.RESTRUCTURED_ISINS: EndpointSpec(path="/restructuredisins", kind=ResponseKind.TABULAR),
    Dataset.LISTED_SECURITIES: EndpointSpec(path="/listedsecurities"),
    Dataset.DUE_FOR_REDEMPTION: EndpointSpec(path="/dueforredemption"),
    Dataset.NEW_BOND_ISSUES: EndpointSpec(path="/newbondissues"),
    Dataset.OUTSTANDING_BONDS: EndpointSpec(path="/outstandingbondsinfo"),
    Dataset.CURRENT_ISSUANCE: EndpointSpec(path="/currentissuance"),
    Dataset.PREVIOUS_ISSUANCE: EndpointSpec(path="/previousissuance"),
    Dataset.DROPDOWN: EndpointSpec(path="/dropdown"),
}


class NSDLBondClient:
    """Client for the NSDL IndiaBondInfo public bdsinfo service"""

    def __init__(
        self,
        config: ExecutorConfig,
        session_store: SessionStore,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None
    ):
        self.config = config
        self.session_store = session_store
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._executors: Dict[Dataset, ResilientRequestExecutor] = {}

        logger.info("NSDL client initialized", base_url=config.base_url)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        refresher: Optional[CookieRefresher] = None,
        **kwargs: Any
    ) -> "NSDLBondClient":
        """Client wired from application settings"""
        headers = {**DEFAULT_HEADERS, "Referer": settings.NSDL_REFERER}
        config = ExecutorConfig.from_settings(settings, headers=headers)
        return cls(config, SessionStore.from_settings(settings, refresher), **kwargs)

    def executor(self, dataset: Dataset) -> ResilientRequestExecutor:
        """Executor dedicated to one dataset, created on first use"""
        if dataset not in self._executors:
            self._executors[dataset] = ResilientRequestExecutor(
                name=dataset.value,
                config=self.config,
                session_store=self.session_store,
                client=self._client,
                clock=self._clock,
                sleep=self._sleep,
                rng=self._rng
            )
        return self._executors[dataset]

    async def fetch(self, dataset: Dataset, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Fetch one dataset as raw records"""
        spec = ENDPOINTS[dataset]
        records = await self.executor(dataset).fetch(
            spec.path,
            {**spec.params, **(params or {})},
            spec.kind
        )
        logger.info("Dataset fetched",
                   dataset=dataset.value,
                   endpoint=spec.path,
                   records=len(records))
        return records

    # Spreadsheet datasets

    async def get_active_bonds(self) -> List[Dict[str, Any]]:
        """Primary source of currently active bonds"""
        return await self.fetch(Dataset.ACTIVE_SECURITIES)

    async def get_matured_bonds(self) -> List[Dict[str, Any]]:
        return await self.fetch(Dataset.MATURED_SECURITIES)

    async def get_credit_rating_wise(self) -> List[Dict[str, Any]]:
        return await self.fetch(Dataset.CREDIT_RATING_WISE)

    async def get_interest_rate_wise(self) -> List[Dict[str, Any]]:
        return await self.fetch(Dataset.INTEREST_RATE_WISE)

    async def get_issuer_type_wise(self) -> List[Dict[str, Any]]:
        return await self.fetch(Dataset.ISSUER_TYPE_WISE)

    async def get_issuer_wise(self) -> List[Dict[str, Any]]:
        return await self.fetch(Dataset.ISSUER_WISE)

    async def get_restructured_isins(self) -> List[Dict[str, Any]]:
        return await self.fetch(Dataset.RESTRUCTURED_ISINS)

    # JSON datasets

    async def get_listed_securities(
        self,
        page: int = 1,
        page_size: int = 100,
        status: str = ""
    ) -> List[Dict[str, Any]]:
        """One page of the listed-securities feed; status is '', 'Active' or 'Matured'"""
        return await self.fetch(Dataset.LISTED_SECURITIES, {"pgno": page, "pgsize": page_size, "status": status})

    async def get_all_listed_securities(
        self,
        status: str = "",
        page_size: int = 100,
        max_pages: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[Dict[str, Any]]:
        """
        Every page of the listed-securities feed

        Raises:
            SyncCancelledError: cancel_event was set; carries the pages fetched so far
        """
        spec = ENDPOINTS[Dataset.LISTED_SECURITIES]
        return await self.executor(Dataset.LISTED_SECURITIES).fetch_all_pages(
            spec.path,
            {"status": status},
            page_size=page_size,
            max_pages=max_pages,
            cancel_event=cancel_event
        )

    async def get_due_for_redemption(self) -> List[Dict[str, Any]]:
        return await self.fetch(Dataset.DUE_FOR_REDEMPTION)

    async def get_new_bond_issues(self) -> List[Dict[str, Any]]:
        return await self.fetch(Dataset.NEW_BOND_ISSUES)

    async def get_outstanding_bonds(self) -> List[Dict[str, Any]]:
        return await self.fetch(Dataset.OUTSTANDING_BONDS)

    async def get_current_issuance(self) -> List[Dict[str, Any]]:
        return await self.fetch(Dataset.CURRENT_ISSUANCE)

    async def get_previous_issuance(self) -> List[Dict[str, Any]]:
        return await self.fetch(Dataset.PREVIOUS_ISSUANCE)

    async def get_dropdown_metadata(self, attr_key: str) -> List[Dict[str, Any]]:
        """Filter option values for one attribute key"""
        return await self.fetch(Dataset.DROPDOWN, {"attrkey": attr_key})

    # Utils

    async def test_connection(self) -> Dict[str, Any]:
        """Health check against /issuertypewise"""
        try:
            records = await self.get_issuer_type_wise()
        except BondDirectoryException as e:
            return {"ok": False, "error": e.message, "error_code": e.error_code}
        return {"ok": True, "record_count": len(records)}

    def circuit_breaker_states(self) -> Dict[str, str]:
        return {
            dataset.value: executor.circuit_breaker.state.value
            for dataset, executor in self._executors.items()
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "executors": {dataset.value: executor.get_stats() for dataset, executor in self._executors.items()},
            "session": {
                "generation": self.session_store.generation,
                "refresh_attempts": self.session_store.refresh_attempts,
                "refresh_failures": self.session_store.refresh_failures
            }
        }

    def reset_stats(self):
        for executor in self._executors.values():
            executor.reset_stats()

    async def close(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "NSDLBondClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()
