"""
Bond Sync - One ingestion run: fetch, transform, enrich, upsert

A run always finishes with an IngestionRun summary. Endpoint failures only
drop that endpoint's contribution; if every primary dataset fails the run is
marked failed and nothing is written.
"""

import asyncio
import time
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
import structlog

from bond_directory.core.config import Settings
from bond_directory.core.exceptions import BondDirectoryException, SyncCancelledError
from bond_directory.api.sources.nsdl import Dataset, NSDLBondClient
from bond_directory.api.standardization.classification import IssuerClassifier
from bond_directory.api.standardization.data_enricher import DataEnricher, merge_non_destructive
from bond_directory.api.standardization.data_transformer import (
    EnrichmentMap,
    extract_credit_rating_map,
    extract_interest_rate_map,
    extract_issuer_type_map,
    extract_issuer_wise_map,
    extract_restructured_set,
    transform_listed_securities,
)
from bond_directory.api.standardization.field_mapper import FieldMapper
from bond_directory.db.models import ActiveStatus, CanonicalBond
from bond_directory.db.repository import BondRepository, UpsertResult
from bond_directory.db.run_log import (
    EndpointRun,
    IngestionRun,
    RunLogSink,
    RunStatus,
    RunType,
    SyncStage,
)

logger = structlog.get_logger(__name__)

Records = List[Dict[str, Any]]

ENRICHMENT_EXTRACTORS: Dict[Dataset, Callable[..., EnrichmentMap]] = {
    Dataset.CREDIT_RATING_WISE: extract_credit_rating_map,
    Dataset.INTEREST_RATE_WISE: extract_interest_rate_map,
    Dataset.ISSUER_TYPE_WISE: extract_issuer_type_map,
    Dataset.ISSUER_WISE: extract_issuer_wise_map,
    Dataset.RESTRUCTURED_ISINS: extract_restructured_set,
}

PRIMARY_STATUS: Dict[Dataset, ActiveStatus] = {
    Dataset.ACTIVE_SECURITIES: ActiveStatus.ACTIVE,
    Dataset.MATURED_SECURITIES: ActiveStatus.MATURED,
}

UPSERT_BATCH_SIZE = 500


class BondSyncService:
    """Runs sync passes against the NSDL upstream"""

    def __init__(
        self,
        client: NSDLBondClient,
        repository: BondRepository,
        run_log: Optional[RunLogSink] = None,
        enricher: Optional[DataEnricher] = None,
        mapper: Optional[FieldMapper] = None,
        classifier: Optional[IssuerClassifier] = None,
        max_concurrency: int = 2,
        listed_page_size: int = 100,
        max_pages: Optional[int] = None,
        today: Optional[date] = None
    ):
        self.client = client
        self.repository = repository
        self.run_log = run_log
        self.enricher = enricher or DataEnricher()
        self.mapper = mapper
        self.classifier = classifier
        self.max_concurrency = max_concurrency
        self.listed_page_size = listed_page_size
        self.max_pages = max_pages
        self.today = today

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: NSDLBondClient,
        repository: BondRepository,
        run_log: Optional[RunLogSink] = None
    ) -> "BondSyncService":
        return cls(
            client,
            repository,
            run_log=run_log,
            max_concurrency=settings.SYNC_MAX_CONCURRENCY,
            listed_page_size=settings.LISTED_PAGE_SIZE,
            max_pages=settings.MAX_PAGES
        )

    async def sync(
        self,
        run_type: RunType = RunType.MANUAL,
        deep: bool = False,
        cancel_event: Optional[asyncio.Event] = None
    ) -> IngestionRun:
        """
        Execute one sync run

        Args:
            run_type: Trigger recorded on the run
            deep: Also pull matured securities and the paginated JSON feed,
                and rewrite every record even when unchanged
            cancel_event: Checked before each endpoint and between pages

        Returns:
            The finished run summary; this method does not raise
        """
        run = IngestionRun(run_type=run_type, deep=deep)
        logger.info("Bond sync started", run_id=run.run_id, run_type=run_type.value, deep=deep)

        try:
            status = await self._execute(run, deep, cancel_event)
        except Exception as e:
            logger.exception("Bond sync crashed", run_id=run.run_id, error=str(e))
            run.add_error(SyncStage.UPSERT, f"Unexpected error: {e}")
            status = RunStatus.FAILED

        run.circuit_breaker_state = self.client.circuit_breaker_states()
        run.finish(status)
        self._record(run)
        return run

    async def _execute(
        self,
        run: IngestionRun,
        deep: bool,
        cancel_event: Optional[asyncio.Event]
    ) -> RunStatus:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        primary_datasets = [Dataset.ACTIVE_SECURITIES]
        if deep:
            primary_datasets.append(Dataset.MATURED_SECURITIES)

        fetchers: Dict[Dataset, Callable[[], Awaitable[Records]]] = {
            dataset: (lambda d=dataset: self.client.fetch(d)) for dataset in primary_datasets
        }
        if deep:
            fetchers[Dataset.LISTED_SECURITIES] = lambda: self.client.get_all_listed_securities(
                page_size=self.listed_page_size,
                max_pages=self.max_pages,
                cancel_event=cancel_event
            )
        primary = await self._fetch_group(run, fetchers, semaphore, cancel_event)

        if all(primary.get(dataset) is None for dataset in primary_datasets):
            logger.error("All primary datasets failed; nothing will be written", run_id=run.run_id)
            return RunStatus.FAILED

        bonds = self._build_primary(run, primary, primary_datasets)

        enrichment_records = await self._fetch_group(
            run,
            {dataset: (lambda d=dataset: self.client.fetch(d)) for dataset in ENRICHMENT_EXTRACTORS},
            semaphore,
            cancel_event
        )
        maps = [
            ENRICHMENT_EXTRACTORS[dataset](records, self.mapper)
            for dataset, records in enrichment_records.items()
            if records is not None
        ]

        enriched = self.enricher.enrich(bonds.values(), maps)
        run.stats.total_enriched = enriched.enriched
        for error in enriched.errors:
            run.add_error(SyncStage.ENRICH, error["message"], isin=error["details"].get("isin"))

        upserted, upsert_failed = await self._upsert(run, enriched.bonds, force=deep)
        run.stats.total_created = upserted.created
        run.stats.total_updated = upserted.updated
        run.stats.total_skipped = upserted.skipped

        if upsert_failed or any(not endpoint.success for endpoint in run.endpoints):
            return RunStatus.PARTIAL
        return RunStatus.COMPLETED

    async def _fetch_group(
        self,
        run: IngestionRun,
        fetchers: Dict[Dataset, Callable[[], Awaitable[Records]]],
        semaphore: asyncio.Semaphore,
        cancel_event: Optional[asyncio.Event]
    ) -> Dict[Dataset, Optional[Records]]:
        datasets = list(fetchers)
        results = await asyncio.gather(*(
            self._fetch_dataset(run, dataset, fetchers[dataset], semaphore, cancel_event)
            for dataset in datasets
        ))
        return dict(zip(datasets, results))

    async def _fetch_dataset(
        self,
        run: IngestionRun,
        dataset: Dataset,
        fetcher: Callable[[], Awaitable[Records]],
        semaphore: asyncio.Semaphore,
        cancel_event: Optional[asyncio.Event]
    ) -> Optional[Records]:
        """Fetch one dataset; None when it contributed nothing"""
        endpoint = EndpointRun(name=dataset.value)
        run.endpoints.append(endpoint)

        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                endpoint.error = "cancelled before start"
                run.add_error(SyncStage.FETCH, f"{dataset.value}: {endpoint.error}")
                logger.warning("Endpoint skipped; sync cancelled", run_id=run.run_id, dataset=dataset.value)
                return None

            started = time.monotonic()
            records: Optional[Records] = None
            try:
                records = await fetcher()
                endpoint.success = True
            except SyncCancelledError as e:
                records = e.partial_records or None
                endpoint.error = e.message
                run.add_error(SyncStage.FETCH, f"{dataset.value}: {e.message}")
            except BondDirectoryException as e:
                endpoint.error = f"{e.error_code}: {e.message}"
                run.add_error(SyncStage.FETCH, f"{dataset.value}: {endpoint.error}")
                logger.error("Endpoint failed",
                            run_id=run.run_id,
                            dataset=dataset.value,
                            **e.to_dict())
            finally:
                endpoint.duration_ms = int((time.monotonic() - started) * 1000)

        endpoint.record_count = len(records or [])
        return records

    def _transform(
        self,
        run: IngestionRun,
        records: Records,
        status: Optional[ActiveStatus],
        source: str
    ) -> List[CanonicalBond]:
        bonds, rejected = transform_listed_securities(
            records,
            active_status=status.value if status else None,
            source=source,
            mapper=self.mapper,
            classifier=self.classifier,
            today=self.today
        )
        for error in rejected:
            run.add_error(SyncStage.VALIDATE, error.message, isin=error.details.get("isin"))
        return bonds

    def _build_primary(
        self,
        run: IngestionRun,
        primary: Dict[Dataset, Optional[Records]],
        primary_datasets: Sequence[Dataset]
    ) -> Dict[str, CanonicalBond]:
        """Primary bonds keyed by ISIN; the listed JSON feed only fills gaps"""
        bonds: Dict[str, CanonicalBond] = {}

        for dataset in primary_datasets:
            records = primary.get(dataset) or []
            run.stats.total_fetched += len(records)
            status = PRIMARY_STATUS[dataset]
            for bond in self._transform(run, records, status, f"IndiaBondInfo-{status.value}"):
                self._absorb(bonds, bond)

        listed = primary.get(Dataset.LISTED_SECURITIES) or []
        if listed:
            run.stats.total_fetched += len(listed)
            before = len(bonds)
            for bond in self._transform(run, listed, None, "IndiaBondInfo-Listed"):
                self._absorb(bonds, bond)
            logger.info("Listed feed merged",
                       run_id=run.run_id,
                       records=len(listed),
                       new_isins=len(bonds) - before)

        return bonds

    @staticmethod
    def _absorb(bonds: Dict[str, CanonicalBond], bond: CanonicalBond):
        """Add a bond; an ISIN seen earlier keeps its values and only gains missing ones"""
        existing = bonds.get(bond.isin)
        if existing is None:
            bonds[bond.isin] = bond
            return
        merged = merge_non_destructive(bond.model_dump(), existing.model_dump())
        bonds[bond.isin] = CanonicalBond.model_validate(merged)

    async def _upsert(
        self,
        run: IngestionRun,
        bonds: List[CanonicalBond],
        force: bool
    ) -> Tuple[UpsertResult, bool]:
        total = UpsertResult()
        failed = False

        for start in range(0, len(bonds), UPSERT_BATCH_SIZE):
            batch = bonds[start:start + UPSERT_BATCH_SIZE]
            try:
                total = total + await self.repository.upsert_many(batch, force=force)
            except Exception as e:
                failed = True
                run.add_error(SyncStage.UPSERT, f"Batch of {len(batch)} failed: {e}")
                logger.error("Upsert batch failed",
                            run_id=run.run_id,
                            batch_start=start,
                            batch_size=len(batch),
                            error=str(e),
                            error_type=type(e).__name__)
        return total, failed

    def _record(self, run: IngestionRun):
        logger.info("Bond sync finished",
                   run_id=run.run_id,
                   run_type=run.run_type.value,
                   status=run.status.value,
                   duration_ms=run.duration_ms,
                   **run.stats.model_dump(),
                   endpoints={e.name: e.success for e in run.endpoints},
                   circuit_breakers=run.circuit_breaker_state)

        if self.run_log is None:
            return
        try:
            self.run_log.record(run)
        except Exception as e:
            logger.error("Failed to record ingestion run", run_id=run.run_id, error=str(e))
