import argparse
import asyncio
import signal
import threading

import structlog

from bond_directory.core.config import settings
from bond_directory.core.logging import setup_logging
from bond_directory.api.sources.nsdl import NSDLBondClient
from bond_directory.db.repository import InMemoryBondRepository
from bond_directory.db.run_log import InMemoryRunLog, RunStatus, RunType
from bond_directory.jobs.bond_sync import BondSyncService
from bond_directory.jobs.scheduler import SyncScheduler

logger = structlog.get_logger(__name__)


async def run_once(deep: bool) -> int:
    """Run a single sync against an in-memory repository and print the summary"""
    async with NSDLBondClient.from_settings(settings) as client:
        service = BondSyncService.from_settings(settings, client, InMemoryBondRepository(), InMemoryRunLog())
        run = await service.sync(run_type=RunType.MANUAL, deep=deep)
    print(run.model_dump_json(indent=2))
    return 1 if run.status == RunStatus.FAILED else 0


def main():
    """
    Run the bond sync scheduler, or a single sync with --once
    """
    parser = argparse.ArgumentParser(description="NSDL bond directory ingestion")
    parser.add_argument("--once", action="store_true", help="run one sync and exit")
    parser.add_argument("--deep", action="store_true", help="with --once, run a deep sync")
    args = parser.parse_args()

    setup_logging()

    if args.once:
        raise SystemExit(asyncio.run(run_once(args.deep)))

    client = NSDLBondClient.from_settings(settings)
    run_log = InMemoryRunLog()
    service = BondSyncService.from_settings(settings, client, InMemoryBondRepository(), run_log)
    scheduler = SyncScheduler.from_settings(settings, service, run_log)

    stopped = threading.Event()

    def shutdown(signum, frame):
        logger.info("Shutdown requested", signal=signum)
        stopped.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    scheduler.start()
    stopped.wait()
    scheduler.stop(timeout=30)


if __name__ == "__main__":
    main()
