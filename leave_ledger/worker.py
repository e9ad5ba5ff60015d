"""Worker process for the scheduled leave credit jobs.

Runs an asyncio loop that, once a day:
  * moves probation credits for anyone who regularized (first regularization),
  * accrues last month's and this month's credits for everyone who is due,
  * on January 1, runs year-end carryover out of the previous year.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from leave_ledger.clock import get_clock
from leave_ledger.config import get_settings
from leave_ledger.db import get_session_factory
from leave_ledger.services.accrual import run_monthly_accruals
from leave_ledger.services.carryover import run_carryover_processing, run_regularization_processing
from leave_ledger.services.eligibility import add_months

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


async def run_daily_jobs(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Run one pass of every scheduled job for the clock's current date.

    Each job gets its own session so a failing job never blocks the others.
    Every job is idempotent, so reruns on the same day are harmless.
    """
    today = get_clock().today()

    try:
        async with session_factory() as session:
            reg_result = await run_regularization_processing(session, today.year)
        if reg_result.processed or reg_result.errors:
            logger.info(
                "Regularization run for %s: processed=%d skipped=%d errors=%d transferred=%s",
                today,
                reg_result.processed,
                reg_result.skipped,
                reg_result.errors,
                reg_result.total_transferred,
            )
    except Exception:
        logger.exception("Regularization run failed for %s", today)

    # Last month is included: its month-end credit may not have posted yet.
    previous = add_months(today.replace(day=1), -1)
    for year, month in ((previous.year, previous.month), (today.year, today.month)):
        try:
            async with session_factory() as session:
                result = await run_monthly_accruals(session, year, month)
            logger.info(
                "Accrual run for %d-%02d: processed=%d accrued=%d skipped=%d errors=%d",
                year,
                month,
                result.processed,
                result.accrued,
                result.skipped,
                result.errors,
            )
        except Exception:
            logger.exception("Accrual run failed for %d-%02d", year, month)

    # Year-end carryover (only fires on Jan 1)
    if today.month == 1 and today.day == 1:
        try:
            async with session_factory() as session:
                co_result = await run_carryover_processing(session, today.year - 1)
            logger.info(
                "Carryover run %d->%d: processed=%d skipped=%d errors=%d",
                co_result.from_year,
                co_result.to_year,
                co_result.processed,
                co_result.skipped,
                co_result.errors,
            )
        except Exception:
            logger.exception("Carryover run failed for %s", today)


async def run_worker_loop() -> None:
    """Main worker loop: run the daily jobs, then sleep for the configured interval."""
    settings = get_settings()
    logger.info("Leave credit worker started")
    session_factory = get_session_factory()

    while True:
        await run_daily_jobs(session_factory)
        await asyncio.sleep(settings.worker_interval_seconds)


def main() -> None:
    """Entry point for the worker process."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    asyncio.run(run_worker_loop())


if __name__ == "__main__":
    main()
