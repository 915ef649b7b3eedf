"""
Radius Reconciler -- Scheduled Polling Job.

This module provides the polling tick for the lead matching engine:

1. Observes every open/active request whose matching has not been stopped,
   recomputing its matching state and persisting a changed radius.
2. Records newly in-range providers when a radius widens.
3. Reports, once per request, those that have drawn no quotes for
   ``stale_request_minutes``.

Observation is idempotent, so overlapping runs or a concurrently open
requester view are harmless. A database error while observing one
request is logged and counted as failed, and the run moves on to the next
request.

Intended to run every 30-60 seconds via cron, Celery Beat, or a similar
scheduler.

Usage with a simple cron runner::

    python -m leadengine.jobs.radiusReconciler
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadengine.core.config import settings
from leadengine.events.requestEvents import emit_request_stale
from leadengine.services import requestService
from leadengine.services.leadMatcher import elapsed_minutes, is_request_stale
from leadengine.services.radiusSync import RadiusPersistenceError

logger = logging.getLogger(__name__)


async def run_radius_reconciliation(
    db: AsyncSession,
    now: Optional[datetime] = None,
    *,
    stale_after_minutes: Optional[float] = None,
) -> dict[str, int]:
    """Observe all live requests once.

    Args:
        db: Async database session.
        now: Optional clock override (for testing).
        stale_after_minutes: Override for ``settings.stale_request_minutes``.

    Returns:
        Counts of requests ``observed``, ``radius_updated``, ``failed``,
        and ``stale``.
    """
    now = now or datetime.now(timezone.utc)
    stale_after = (
        stale_after_minutes
        if stale_after_minutes is not None
        else settings.stale_request_minutes
    )
    counts = {"observed": 0, "radius_updated": 0, "failed": 0, "stale": 0}

    requests = await requestService.list_live_requests(db)
    logger.info("Radius reconciliation starting: %d live requests", len(requests))

    for request in requests:
        counts["observed"] += 1
        try:
            observation = await requestService.observe(db, request, now)
        except RadiusPersistenceError:
            counts["failed"] += 1
            continue
        except SQLAlchemyError:
            logger.exception("Observation failed for request %s", request.id)
            counts["failed"] += 1
            continue

        if observation.radius_updated:
            counts["radius_updated"] += 1

        if request.stale_notified_at is None and is_request_stale(request, now, stale_after):
            try:
                first_notice = await requestService.mark_stale_notified(db, request, now)
            except SQLAlchemyError:
                logger.exception("Could not record stale notice for request %s", request.id)
                continue
            if first_notice:
                emit_request_stale(
                    request.id,
                    request.customer_id,
                    elapsed_minutes(request.created_at, now),
                )
                counts["stale"] += 1

    logger.info(
        "Radius reconciliation completed: observed=%d, updated=%d, failed=%d, stale=%d",
        counts["observed"],
        counts["radius_updated"],
        counts["failed"],
        counts["stale"],
    )
    return counts


# ---------------------------------------------------------------------------
# CLI entry point (for manual runs / simple cron)
# ---------------------------------------------------------------------------

async def _cli_main() -> None:
    """Entry point for running the reconciler from the command line.

    Creates its own database session via the application session factory.
    """
    from leadengine.api.deps import async_session_factory

    async with async_session_factory() as session:
        try:
            result = await run_radius_reconciliation(session)
            await session.commit()
            print(f"Radius reconciliation completed: {result}")  # noqa: T201
        except Exception:
            await session.rollback()
            logger.exception("Radius reconciliation failed")
            raise
        finally:
            await session.close()


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    asyncio.run(_cli_main())
