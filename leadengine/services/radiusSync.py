"""
Radius Sync
===========

Mirrors the calculator's ``current_radius_km`` into the persisted
``search_radius_km`` of a service request. Decides nothing itself: it
writes only when the derived radius differs from the stored one, the
requester has not stopped matching, and the request is still open or
active.

The write is a single-field conditional UPDATE with the same guards in
its WHERE clause, run inside a SAVEPOINT. Calling it redundantly is safe:
concurrent observers derive the same radius from the same record, so a
lost race or a dropped write is corrected on the next observation.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadengine.models import RequestStatus, ServiceRequest
from leadengine.services.leadMatcher import MatchingState

logger = logging.getLogger(__name__)

# Statuses in which the engine may still move the radius
LIVE_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.OPEN,
    RequestStatus.ACTIVE,
})


class RadiusPersistenceError(Exception):
    """Raised when the radius write fails. Recoverable: retry next tick."""

    def __init__(self, request_id: uuid.UUID, radius_km: int) -> None:
        self.request_id = request_id
        self.radius_km = radius_km
        super().__init__(
            f"Could not persist search radius {radius_km} km for request '{request_id}'."
        )


def needs_radius_sync(request: ServiceRequest, state: MatchingState) -> bool:
    """Whether ``state`` should be written back to ``request``."""
    return (
        state.current_radius_km != request.search_radius_km
        and not request.matching_stopped
        and request.status in LIVE_STATUSES
    )


async def sync_search_radius(
    db: AsyncSession,
    request: ServiceRequest,
    state: MatchingState,
) -> bool:
    """Persist ``state.current_radius_km`` if it diverges from the record.

    Returns:
        True if a row was written, False if nothing needed writing or the
        request stopped being live between the read and the write.

    Raises:
        RadiusPersistenceError: The UPDATE failed. The SAVEPOINT is rolled
            back, leaving the surrounding transaction usable.
    """
    if not needs_radius_sync(request, state):
        return False

    stmt = (
        update(ServiceRequest)
        .where(
            ServiceRequest.id == request.id,
            ServiceRequest.matching_stopped.is_(False),
            ServiceRequest.status.in_(tuple(LIVE_STATUSES)),
        )
        .values(search_radius_km=state.current_radius_km)
        .execution_options(synchronize_session=False)
    )

    try:
        async with db.begin_nested():
            result = await db.execute(stmt)
    except SQLAlchemyError as exc:
        logger.warning(
            "Radius write failed for request %s (%s -> %s km): %s",
            request.id,
            request.search_radius_km,
            state.current_radius_km,
            exc,
        )
        raise RadiusPersistenceError(request.id, state.current_radius_km) from exc

    if result.rowcount == 0:
        logger.info(
            "Radius write skipped for request %s: no longer live in storage",
            request.id,
        )
        return False

    previous = request.search_radius_km
    request.search_radius_km = state.current_radius_km
    logger.info(
        "Search radius updated: request=%s, %s -> %s km",
        request.id,
        previous,
        state.current_radius_km,
    )
    return True
