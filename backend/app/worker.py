"""Worker process for scheduled period-end reconciliation.

Runs an asyncio loop that reconciles every assignment whose previous period
has closed. Re-running for a date that was already settled is a no-op, so a
restarted worker simply picks up where it left off.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import TYPE_CHECKING

from app.config import get_settings
from app.core.resources import build_default_registry
from app.db import session_scope
from app.services.balance import today_utc
from app.services.reconciliation import ReconciliationBatchResult, run_reconciliation

if TYPE_CHECKING:
    from app.core.resources import ResourceRegistry

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


async def run_once(registry: ResourceRegistry, today: date | None = None) -> ReconciliationBatchResult:
    """One reconciliation pass in a fresh session."""
    today = today or today_utc()
    async with session_scope() as session:
        return await run_reconciliation(session, registry, today)


async def run_reconciliation_loop(registry: ResourceRegistry) -> None:
    """Main worker loop."""
    interval = get_settings().reconciliation_interval_seconds
    logger.info("Reconciliation worker started (interval=%ds)", interval)

    while True:
        today = today_utc()
        logger.info("Running reconciliation for %s", today)
        try:
            result = await run_once(registry, today)
            logger.info(
                "Reconciliation run complete for %s: processed=%d reconciled=%d skipped=%d errors=%d",
                today,
                result.processed,
                result.reconciled,
                result.skipped,
                result.errors,
            )
        except Exception:
            logger.exception("Reconciliation run failed for %s", today)

        await asyncio.sleep(interval)


def main() -> None:
    """Entry point for the worker process."""
    logging.basicConfig(level=get_settings().log_level, format=LOG_FORMAT)
    asyncio.run(run_reconciliation_loop(build_default_registry()))


if __name__ == "__main__":
    main()
