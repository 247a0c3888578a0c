"""
Background jobs: the bond sync run and its scheduler
"""

from .bond_sync import BondSyncService
from .scheduler import SyncScheduler

__all__ = [
    "BondSyncService",
    "SyncScheduler"
]
