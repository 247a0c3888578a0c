"""
Tests for the in-memory bond repository and run log.
"""

from datetime import datetime

import pytest

from bond_directory.db.models import CanonicalBond, Issuer
from bond_directory.db.repository import InMemoryBondRepository, UpsertResult
from bond_directory.db.run_log import InMemoryRunLog, IngestionRun, RunStatus, SyncStage


def make_bond(isin: str = "INE002A07809", coupon_rate: float = 8.95) -> CanonicalBond:
    return CanonicalBond(
        isin=isin,
        issuer=Issuer(id="reliance-industries-ltd", name="Reliance Industries Limited"),
        coupon_rate=coupon_rate,
        data_source="IndiaBondInfo-Active",
        api_response_raw={"ISIN": isin}
    )


class TestInMemoryBondRepository:

    @pytest.mark.asyncio
    async def test_create_skip_update(self):
        repository = InMemoryBondRepository()

        assert await repository.upsert_many([make_bond()]) == UpsertResult(created=1)
        assert await repository.upsert_many([make_bond()]) == UpsertResult(skipped=1)
        assert await repository.upsert_many([make_bond(coupon_rate=9.1)]) == UpsertResult(updated=1)
        assert (await repository.get("ine002a07809")).coupon_rate == 9.1

    @pytest.mark.asyncio
    async def test_force_rewrites_unchanged(self):
        repository = InMemoryBondRepository()
        await repository.upsert_many([make_bond()])

        assert await repository.upsert_many([make_bond()], force=True) == UpsertResult(updated=1)

    @pytest.mark.asyncio
    async def test_stored_copy_is_isolated(self):
        repository = InMemoryBondRepository()
        bond = make_bond()
        await repository.upsert_many([bond])

        bond.coupon_rate = 1.0

        assert (await repository.get("INE002A07809")).coupon_rate == 8.95
        assert await repository.count() == 1

    def test_upsert_results_add(self):
        total = UpsertResult(created=1, skipped=2) + UpsertResult(created=3, updated=1)
        assert total == UpsertResult(created=4, updated=1, skipped=2)


class TestCanonicalBond:

    def test_document_drops_raw_payload(self):
        document = make_bond().to_document()

        assert "api_response_raw" not in document
        assert document["normalized_rating"] == "Unrated"
        assert isinstance(document["last_synced_at"], str)

    def test_fingerprint_ignores_sync_time(self):
        first = make_bond()
        second = make_bond().model_copy(update={"last_synced_at": datetime(2000, 1, 1)})

        assert first.content_fingerprint() == second.content_fingerprint()


class TestRunLog:

    def test_error_detail_is_capped(self):
        run = IngestionRun()
        for index in range(IngestionRun.MAX_STORED_ERRORS + 10):
            run.add_error(SyncStage.VALIDATE, f"bad record {index}")

        assert run.stats.total_errors == IngestionRun.MAX_STORED_ERRORS + 10
        assert len(run.sync_errors) == IngestionRun.MAX_STORED_ERRORS

    def test_finish_sets_duration(self):
        run = IngestionRun()
        run.finish(RunStatus.COMPLETED)

        assert run.status == RunStatus.COMPLETED
        assert run.completed_at >= run.started_at
        assert run.duration_ms >= 0

    def test_last_successful_skips_failed_runs(self):
        run_log = InMemoryRunLog()
        partial = IngestionRun(status=RunStatus.PARTIAL)
        run_log.record(partial)
        run_log.record(IngestionRun(status=RunStatus.FAILED))

        assert run_log.last_successful().run_id == partial.run_id

    def test_keeps_most_recent_runs(self):
        run_log = InMemoryRunLog(max_runs=2)
        runs = [IngestionRun(status=RunStatus.COMPLETED) for _ in range(3)]
        for run in runs:
            run_log.record(run)

        assert [run.run_id for run in run_log.runs] == [run.run_id for run in runs[1:]]

    def test_empty_log(self):
        assert InMemoryRunLog().last_successful() is None
