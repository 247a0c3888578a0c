"""
Bond repository - persistence boundary for canonical bonds
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Protocol
import structlog
from pydantic import BaseModel

from bond_directory.db.models import CanonicalBond

logger = structlog.get_logger(__name__)


class UpsertResult(BaseModel):
    """Counts from one batch upsert"""
    created: int = 0
    updated: int = 0
    skipped: int = 0

    def __add__(self, other: "UpsertResult") -> "UpsertResult":
        return UpsertResult(
            created=self.created + other.created,
            updated=self.updated + other.updated,
            skipped=self.skipped + other.skipped
        )


class BondRepository(Protocol):
    """
    Idempotent store keyed by ISIN.

    force=True rewrites records even when their content is unchanged.
    """

    async def upsert_many(self, bonds: Iterable[CanonicalBond], force: bool = False) -> UpsertResult:
        ...

    async def get(self, isin: str) -> Optional[CanonicalBond]:
        ...

    async def count(self) -> int:
        ...


class InMemoryBondRepository:
    """Dict-backed repository for tests and dry runs"""

    def __init__(self):
        self._bonds: Dict[str, CanonicalBond] = {}
        self._lock = asyncio.Lock()

    async def upsert_many(self, bonds: Iterable[CanonicalBond], force: bool = False) -> UpsertResult:
        result = UpsertResult()
        async with self._lock:
            for bond in bonds:
                existing = self._bonds.get(bond.isin)
                if existing is None:
                    result.created += 1
                elif force or existing.content_fingerprint() != bond.content_fingerprint():
                    result.updated += 1
                else:
                    result.skipped += 1
                    continue
                self._bonds[bond.isin] = bond.model_copy(deep=True)

        logger.debug("Bonds upserted", **result.model_dump(), force=force)
        return result

    async def get(self, isin: str) -> Optional[CanonicalBond]:
        return self._bonds.get(isin.upper())

    async def count(self) -> int:
        return len(self._bonds)

    def all(self) -> List[CanonicalBond]:
        return list(self._bonds.values())
