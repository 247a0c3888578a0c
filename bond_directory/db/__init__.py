"""
Bond models and the persistence and run-log boundaries
"""

from .models import CanonicalBond, Issuer
from .repository import BondRepository, InMemoryBondRepository, UpsertResult
from .run_log import IngestionRun, InMemoryRunLog, RunLogSink

__all__ = [
    "CanonicalBond",
    "Issuer",
    "BondRepository",
    "InMemoryBondRepository",
    "UpsertResult",
    "IngestionRun",
    "InMemoryRunLog",
    "RunLogSink"
]
