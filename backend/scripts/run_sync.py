#!/usr/bin/env python3
"""
Run one full sync of every dataset from the command line.

Usage:
    python scripts/run_sync.py [--clear-cache] [--recover]

--clear-cache drops every cached CSV first so the vaccination CSV is
downloaded fresh.

The sync is refused while any sync_log row is still 'running', since the
server may be syncing right now. --recover marks such rows as failed first;
only use it when no server process is up. Exits non-zero if the sync was
refused or failed.
"""

import asyncio
import sys

from dotenv import load_dotenv

load_dotenv()

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from healthdash.database import async_session_maker, check_db_ready, engine, init_db  # noqa: E402
from healthdash.logging_config import setup_logging  # noqa: E402
from healthdash.services.csv_cache import CSVCacheService  # noqa: E402
from healthdash.services.sync_service import SyncOrchestrator  # noqa: E402

CLI_PRINCIPAL = "system:cli"


def log(msg):
    """Print with flush for immediate output."""
    print(msg, flush=True)


async def run_sync(
    orchestrator: SyncOrchestrator,
    session_maker: async_sessionmaker[AsyncSession],
    clear_cache: bool = False,
    recover: bool = False,
) -> bool:
    if recover:
        recovered = await orchestrator.recover_interrupted_runs()
        log(f"Marked {recovered} interrupted run(s) as failed")

    running = await orchestrator.get_running_run()
    if running is not None:
        log(f"Sync refused: run {running.id} has been running since {running.started_at}")
        log("If no server is running, retry with --recover")
        return False

    if clear_cache:
        async with session_maker() as db:
            await CSVCacheService(db).clear_cache()
        log("CSV cache cleared")

    result = await orchestrator.run_full_sync("manual", CLI_PRINCIPAL)

    log("")
    log(f"Sync {'succeeded' if result.success else 'failed'}")
    log(f"  Run id: {result.run_id}")
    log(f"  Records processed: {result.records_processed:,}")
    log(f"  Duration: {result.duration_ms:,} ms")
    for error in result.errors:
        log(f"  Error: {error}")

    async with session_maker() as db:
        stats = await CSVCacheService(db).get_cache_stats()
    log("")
    log("CSV cache:")
    log(f"  Entries: {stats.total_entries}")
    log(f"  Size: {stats.total_size:,} bytes")
    log(f"  Oldest entry: {stats.oldest_entry}")
    log(f"  Newest entry: {stats.newest_entry}")

    return result.success


async def main(clear_cache: bool = False, recover: bool = False) -> bool:
    try:
        await init_db()
        await check_db_ready()
        return await run_sync(
            SyncOrchestrator(), async_session_maker, clear_cache=clear_cache, recover=recover
        )
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    args = sys.argv[1:]
    ok = asyncio.run(main(clear_cache="--clear-cache" in args, recover="--recover" in args))
    sys.exit(0 if ok else 1)
