"""
Service Request Service
=======================

Business logic for service requests: creation, quote recording, requester
actions on the matching flags, and the observation step that recomputes
the matching state and reconciles the stored search radius.

Requester actions (``approve_expansion``, ``stop_matching``,
``dismiss_low_quote_warning``) are the only writers of the matching flags;
``record_quote`` is the only writer of ``quotes_count``; ``radiusSync`` is
the only writer of ``search_radius_km``.
"""

from __future__ import annotations

import logging
import random
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadengine.events.requestEvents import (
    emit_expansion_approved,
    emit_matching_stopped,
    emit_quote_received,
    emit_radius_expanded,
    emit_request_created,
    emit_request_status_changed,
)
from leadengine.models import (
    Quote,
    QuoteStatus,
    RequestStatus,
    ServiceRequest,
)
from leadengine.services import matchIndexer
from leadengine.services.leadMatcher import (
    TIER_1_RADIUS_KM,
    MatchingState,
    get_matching_state,
    phase_label,
)
from leadengine.services.radiusSync import LIVE_STATUSES, sync_search_radius

logger = logging.getLogger(__name__)

EXPANSION_TIERS: frozenset[int] = frozenset({2, 3})

# Status changes a requester may make directly; ACTIVE and ACCEPTED are
# reached through quotes
_CLOSING_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.COMPLETED,
    RequestStatus.CANCELED,
})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class RequestNotFoundError(Exception):
    """Raised when a service request cannot be found by ID."""

    def __init__(self, request_id: uuid.UUID) -> None:
        self.request_id = request_id
        super().__init__(f"Service request with id '{request_id}' not found.")


class QuoteNotFoundError(Exception):
    def __init__(self, quote_id: uuid.UUID) -> None:
        self.quote_id = quote_id
        super().__init__(f"Quote with id '{quote_id}' not found.")


class RequestClosedError(Exception):
    """Raised when an action needs a live (open/active) request."""

    def __init__(self, request_id: uuid.UUID, status: RequestStatus) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Service request '{request_id}' is {status.value}; "
            f"the action requires an open or active request."
        )


class InvalidExpansionTierError(Exception):
    def __init__(self, tier: int) -> None:
        self.tier = tier
        super().__init__(
            f"Expansion tier must be one of {sorted(EXPANSION_TIERS)}, got {tier}."
        )


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RequestObservation:
    """One observation of a request: its state and what was reconciled."""

    request: ServiceRequest
    state: MatchingState
    radius_updated: bool
    new_matches: int = 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def generate_reference_number() -> str:
    """Generate a human-readable reference number in REQ-XXXXXX format.

    Collision avoidance is handled at the database level via a unique
    constraint; callers should retry on IntegrityError.
    """
    chars = string.ascii_uppercase + string.digits
    suffix = "".join(random.choices(chars, k=6))
    return f"REQ-{suffix}"


def _require_live(request: ServiceRequest) -> None:
    if request.status not in LIVE_STATUSES:
        raise RequestClosedError(request.id, request.status)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

async def get_request(db: AsyncSession, request_id: uuid.UUID) -> ServiceRequest:
    """Load a service request.

    Raises:
        RequestNotFoundError: If no request has this id.
    """
    request = await db.get(ServiceRequest, request_id)
    if request is None:
        raise RequestNotFoundError(request_id)
    return request


async def list_live_requests(
    db: AsyncSession,
    *,
    include_stopped: bool = False,
) -> list[ServiceRequest]:
    """Open and active requests, oldest first."""
    filters = [ServiceRequest.status.in_(tuple(LIVE_STATUSES))]
    if not include_stopped:
        filters.append(ServiceRequest.matching_stopped.is_(False))
    stmt = select(ServiceRequest).where(*filters).order_by(ServiceRequest.created_at)
    return list((await db.execute(stmt)).scalars().all())


async def create_request(
    db: AsyncSession,
    *,
    customer_id: uuid.UUID,
    title: str,
    service: str,
    latitude: Decimal | float,
    longitude: Decimal | float,
    description: Optional[str] = None,
    category: Optional[str] = None,
    location_name: Optional[str] = None,
) -> ServiceRequest:
    """Create an open service request at the narrowest radius and record
    the providers already inside it."""
    request = ServiceRequest(
        reference_number=generate_reference_number(),
        customer_id=customer_id,
        title=title,
        description=description,
        service=service,
        category=category,
        location_name=location_name,
        latitude=Decimal(str(latitude)),
        longitude=Decimal(str(longitude)),
        status=RequestStatus.OPEN,
        quotes_count=0,
        search_radius_km=TIER_1_RADIUS_KM,
        expansion_approved_tier2=False,
        expansion_approved_tier3=False,
        matching_stopped=False,
        low_quote_warning_dismissed=False,
        accepted_quote_id=None,
    )
    db.add(request)
    await db.flush()

    emit_request_created(request.id, customer_id, service, request.reference_number)
    await matchIndexer.sync_request_matches(db, request, TIER_1_RADIUS_KM)

    logger.info(
        "Service request created: id=%s, ref=%s, service=%s",
        request.id,
        request.reference_number,
        service,
    )
    return request


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------

async def record_quote(
    db: AsyncSession,
    request_id: uuid.UUID,
    provider_id: uuid.UUID,
    *,
    price_cents: int,
    timeline: Optional[str] = None,
    message: Optional[str] = None,
) -> Quote:
    """Record a provider's quote and bump the request's quote count.

    The count is incremented in SQL so concurrent quotes are not lost. The
    first quote moves an open request to active.

    Raises:
        RequestNotFoundError: If the request does not exist.
        RequestClosedError: If the request is no longer open or active.
    """
    request = await get_request(db, request_id)
    _require_live(request)

    quote = Quote(
        request_id=request_id,
        provider_id=provider_id,
        price_cents=price_cents,
        timeline=timeline,
        message=message,
        status=QuoteStatus.SENT,
    )
    db.add(quote)

    await db.execute(
        update(ServiceRequest)
        .where(ServiceRequest.id == request_id)
        .values(quotes_count=ServiceRequest.quotes_count + 1)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(request, attribute_names=["quotes_count"])

    if request.status == RequestStatus.OPEN:
        request.status = RequestStatus.ACTIVE
        emit_request_status_changed(
            request.id,
            RequestStatus.OPEN.value,
            RequestStatus.ACTIVE.value,
            actor_id=provider_id,
        )
    await db.flush()

    emit_quote_received(request.id, quote.id, provider_id, request.quotes_count)
    return quote


async def accept_quote(
    db: AsyncSession,
    request_id: uuid.UUID,
    quote_id: uuid.UUID,
) -> ServiceRequest:
    """Accept a quote: the quote becomes accepted, the request accepted.

    An accepted request is no longer live, which freezes its radius.
    """
    request = await get_request(db, request_id)
    _require_live(request)

    quote = await db.get(Quote, quote_id)
    if quote is None or quote.request_id != request_id:
        raise QuoteNotFoundError(quote_id)

    old_status = request.status
    quote.status = QuoteStatus.ACCEPTED
    request.status = RequestStatus.ACCEPTED
    request.accepted_quote_id = quote.id
    await db.flush()

    emit_request_status_changed(
        request.id, old_status.value, RequestStatus.ACCEPTED.value
    )
    return request


async def update_status(
    db: AsyncSession,
    request_id: uuid.UUID,
    new_status: RequestStatus,
    actor_id: Optional[uuid.UUID] = None,
) -> ServiceRequest:
    """Complete or cancel a request."""
    if new_status not in _CLOSING_STATUSES:
        raise ValueError(
            f"Status can only be set to completed or canceled, got '{new_status.value}'."
        )
    request = await get_request(db, request_id)
    if request.status in _CLOSING_STATUSES:
        raise RequestClosedError(request.id, request.status)

    old_status = request.status
    request.status = new_status
    await db.flush()

    emit_request_status_changed(
        request.id, old_status.value, new_status.value, actor_id=actor_id
    )
    return request


# ---------------------------------------------------------------------------
# Requester actions
# ---------------------------------------------------------------------------

async def approve_expansion(
    db: AsyncSession,
    request_id: uuid.UUID,
    tier: int,
    actor_id: Optional[uuid.UUID] = None,
) -> ServiceRequest:
    """Record the requester's consent to widen the radius to ``tier``.

    Approving is idempotent. Approving tier 3 does not imply tier 2.
    """
    if tier not in EXPANSION_TIERS:
        raise InvalidExpansionTierError(tier)

    request = await get_request(db, request_id)
    _require_live(request)

    if tier == 2:
        request.expansion_approved_tier2 = True
    else:
        request.expansion_approved_tier3 = True
    await db.flush()

    emit_expansion_approved(request.id, tier, actor_id=actor_id)
    return request


async def stop_matching(
    db: AsyncSession,
    request_id: uuid.UUID,
    actor_id: Optional[uuid.UUID] = None,
) -> ServiceRequest:
    """Freeze the radius at its stored value. Cannot be undone."""
    request = await get_request(db, request_id)
    if request.matching_stopped:
        return request

    request.matching_stopped = True
    await db.flush()

    emit_matching_stopped(request.id, request.search_radius_km, actor_id=actor_id)
    return request


async def dismiss_low_quote_warning(
    db: AsyncSession,
    request_id: uuid.UUID,
) -> ServiceRequest:
    request = await get_request(db, request_id)
    request.low_quote_warning_dismissed = True
    await db.flush()
    logger.info("Low-quote warning dismissed for request %s", request.id)
    return request


async def mark_stale_notified(
    db: AsyncSession,
    request: ServiceRequest,
    now: Optional[datetime] = None,
) -> bool:
    """Record that the requester was told their request drew no quotes.

    Returns True only for the caller that set the marker, so the notice
    goes out once even with overlapping reconciler runs.
    """
    now = now or datetime.now(timezone.utc)
    stmt = (
        update(ServiceRequest)
        .where(
            ServiceRequest.id == request.id,
            ServiceRequest.stale_notified_at.is_(None),
        )
        .values(stale_notified_at=now)
        .execution_options(synchronize_session=False)
    )
    async with db.begin_nested():
        result = await db.execute(stmt)
    if result.rowcount == 0:
        return False
    request.stale_notified_at = now
    return True


# ---------------------------------------------------------------------------
# Observation
# ---------------------------------------------------------------------------

async def observe(
    db: AsyncSession,
    request: ServiceRequest,
    now: Optional[datetime] = None,
) -> RequestObservation:
    """Compute the matching state of a loaded request and reconcile storage.

    When the stored radius widens, newly in-range providers are matched.
    A hold can also narrow it; existing matches are kept and provider lead
    lists follow the narrower stored radius.

    A failed match sync is rolled back to its SAVEPOINT and logged. The
    radius write stands; any later ``sync_request_matches`` call records
    the missing matches.

    Raises:
        RadiusPersistenceError: The radius write failed; the state is
            still valid and the next observation retries the write.
    """
    now = now or datetime.now(timezone.utc)
    state = get_matching_state(request, now)

    previous_radius = request.search_radius_km
    radius_updated = await sync_search_radius(db, request, state)

    new_matches = 0
    if radius_updated and state.current_radius_km > (previous_radius or 0):
        emit_radius_expanded(
            request.id,
            previous_radius,
            state.current_radius_km,
            phase_label(state.current_radius_km),
        )
        try:
            async with db.begin_nested():
                created = await matchIndexer.sync_request_matches(
                    db, request, state.current_radius_km
                )
        except SQLAlchemyError as exc:
            logger.warning(
                "Match sync failed for request %s at %s km: %s",
                request.id,
                state.current_radius_km,
                exc,
            )
        else:
            new_matches = len(created)
    elif radius_updated:
        logger.info(
            "Search radius held back: request=%s, %s -> %s km",
            request.id,
            previous_radius,
            state.current_radius_km,
        )

    return RequestObservation(
        request=request,
        state=state,
        radius_updated=radius_updated,
        new_matches=new_matches,
    )


async def observe_request(
    db: AsyncSession,
    request_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> RequestObservation:
    """Load a request by id and observe it (see ``observe``)."""
    request = await get_request(db, request_id)
    return await observe(db, request, now)
