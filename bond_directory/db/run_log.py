"""
Ingestion run log - per-run counters and per-endpoint outcomes
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import ClassVar, Dict, List, Optional, Protocol
import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


class RunType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MANUAL = "manual"
    STARTUP = "startup"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class SyncStage(str, Enum):
    FETCH = "fetch"
    ENRICH = "enrich"
    VALIDATE = "validate"
    UPSERT = "upsert"


class RunStats(BaseModel):
    total_fetched: int = 0
    total_enriched: int = 0
    total_created: int = 0
    total_updated: int = 0
    total_skipped: int = 0
    total_errors: int = 0


class EndpointRun(BaseModel):
    """Outcome of one dataset fetch"""
    name: str
    record_count: int = 0
    duration_ms: int = 0
    success: bool = False
    error: Optional[str] = None


class SyncErrorRecord(BaseModel):
    isin: Optional[str] = None
    stage: SyncStage
    message: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class IngestionRun(BaseModel):
    """Summary of one sync run"""
    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    run_type: RunType = RunType.MANUAL
    deep: bool = False
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    stats: RunStats = Field(default_factory=RunStats)
    endpoints: List[EndpointRun] = Field(default_factory=list)
    sync_errors: List[SyncErrorRecord] = Field(default_factory=list)
    circuit_breaker_state: Dict[str, str] = Field(default_factory=dict)

    # Stored error detail is capped; stats.total_errors keeps the full count
    MAX_STORED_ERRORS: ClassVar[int] = 500

    def add_error(self, stage: SyncStage, message: str, isin: Optional[str] = None):
        self.stats.total_errors += 1
        if len(self.sync_errors) < self.MAX_STORED_ERRORS:
            self.sync_errors.append(SyncErrorRecord(isin=isin, stage=stage, message=message))

    def finish(self, status: RunStatus):
        self.status = status
        self.completed_at = datetime.utcnow()
        self.duration_ms = int((self.completed_at - self.started_at).total_seconds() * 1000)


class RunLogSink(Protocol):
    """Destination for finished run summaries"""

    def record(self, run: IngestionRun) -> None:
        ...

    def last_successful(self) -> Optional[IngestionRun]:
        ...


class InMemoryRunLog:
    """Keeps the most recent runs in memory"""

    def __init__(self, max_runs: int = 100):
        self.max_runs = max_runs
        self.runs: List[IngestionRun] = []

    def record(self, run: IngestionRun) -> None:
        self.runs.append(run.model_copy(deep=True))
        logger.debug("Run recorded", run_id=run.run_id, status=run.status.value)
        if len(self.runs) > self.max_runs:
            self.runs = self.runs[-self.max_runs:]

    def last_successful(self) -> Optional[IngestionRun]:
        """Most recent completed or partial run"""
        for run in reversed(self.runs):
            if run.status in (RunStatus.COMPLETED, RunStatus.PARTIAL):
                return run
        return None
