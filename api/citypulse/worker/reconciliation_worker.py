"""Reconciliation worker: repairs denormalized report vote counters.

Counters are only ever changed by atomic increments, so drift should not
happen. If it does (manual SQL, a restored backup), this loop recomputes
upvotes/downvotes from the vote table every reconcile_interval_minutes and
logs each repaired report.

Run as its own process:

    python -m citypulse.worker.reconciliation_worker
"""

import asyncio

import structlog

from citypulse.config import settings
from citypulse.database import async_session_factory
from citypulse.logging_config import configure_logging
from citypulse.services.voting import reconcile_report_counters

log = structlog.get_logger()


async def run_reconciliation_cycle() -> int:
    """One pass over every report. Returns the number of reports repaired."""
    async with async_session_factory() as db:
        try:
            repaired = await reconcile_report_counters(db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    if repaired:
        log.warning("reconciliation_repaired_drift", repaired=repaired)
    else:
        log.info("reconciliation_completed", repaired=0)
    return repaired


async def run_worker() -> None:
    configure_logging()
    interval = settings.reconcile_interval_minutes * 60
    log.info(
        "reconciliation_worker_started",
        interval_minutes=settings.reconcile_interval_minutes,
    )

    while True:
        try:
            await run_reconciliation_cycle()
        except Exception:
            log.error("reconciliation_worker_error", exc_info=True)
        await asyncio.sleep(interval)


if __name__ == "__main__":
    asyncio.run(run_worker())
