#!/usr/bin/env python3
"""
Run one async validation pass: claim pending rows, query SML, store outcomes.
Meant for a cron/task scheduler when the in-process worker is disabled.
Run after migrations: python scripts/process_async_validation.py
"""

import asyncio
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from entval.config import settings
from entval.database import async_session_maker, engine
from entval.lookup.sml_client import SMLClient
from entval.schemas.validation import RunStatus
from entval.worker.runner import ValidationWorker


async def process() -> int:
    worker = ValidationWorker.from_settings(async_session_maker, SMLClient.from_settings(settings), settings)
    try:
        result = await worker.run_once()
    finally:
        await engine.dispose()

    c = result.counters
    print(f"Run {result.log_id}: {result.status.value}")
    print(f"  queued={c.queued} processed={c.processed} succeeded={c.succeeded} failed={c.failed} skipped={c.skipped}")
    if result.error_message:
        print(f"  {result.error_message}")
    return 0 if result.status is RunStatus.COMPLETED else 1


if __name__ == "__main__":
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    sys.exit(asyncio.run(process()))
