"""
Match Indexer
=============

Records which providers fall inside a service request's active search
radius and answers the provider-side question "which open requests can I
see right now?".

A provider is a candidate for a request when they are active, have a home
location, and list the request's ``service``. Candidates are classified one
by one against the request's center point with the haversine distance; no
ranking is applied beyond ordering by distance.

Key functions:
  - sync_request_matches     -- record newly in-range providers for a request
  - list_request_matches     -- recorded matches, closest first
  - list_leads_for_provider  -- live requests visible to one provider
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadengine.events.requestEvents import emit_lead_matched
from leadengine.models import Provider, Quote, RequestMatch, ServiceRequest
from leadengine.services.geoService import (
    filter_by_radius,
    haversine_distance,
    is_within_radius,
)
from leadengine.services.leadMatcher import coerce_radius, phase_label
from leadengine.services.radiusSync import LIVE_STATUSES

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ProviderNotFoundError(Exception):
    def __init__(self, provider_id: uuid.UUID) -> None:
        self.provider_id = provider_id
        super().__init__(f"Provider with id '{provider_id}' not found.")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class ProviderLead:
    """A live request visible to a provider, with the distance to it."""

    request: ServiceRequest
    distance_km: float


# ---------------------------------------------------------------------------
# Request side
# ---------------------------------------------------------------------------

async def _load_service_providers(
    db: AsyncSession,
    service: str,
) -> list[Provider]:
    """Active providers with a location who offer ``service``."""
    stmt = select(Provider).where(
        Provider.is_active.is_(True),
        Provider.home_latitude.isnot(None),
        Provider.home_longitude.isnot(None),
    )
    providers = (await db.execute(stmt)).scalars().all()
    # services is a JSON list; membership is checked here to stay portable
    return [p for p in providers if service in (p.services or [])]


async def sync_request_matches(
    db: AsyncSession,
    request: ServiceRequest,
    radius_km: Optional[int] = None,
) -> list[RequestMatch]:
    """Record every candidate inside the radius that is not yet matched.

    Args:
        db: Async database session.
        request: The service request.
        radius_km: Radius to match at; defaults to the stored
            ``search_radius_km``.

    Returns:
        The newly created RequestMatch rows (empty when matching stopped).
    """
    if request.matching_stopped:
        logger.info("Matching stopped for request %s; skipping match sync", request.id)
        return []

    radius = coerce_radius(radius_km if radius_km is not None else request.search_radius_km)
    candidates = await _load_service_providers(db, request.service)
    in_range = filter_by_radius(
        candidates,
        float(request.latitude),
        float(request.longitude),
        radius,
    )

    existing_stmt = select(RequestMatch.provider_id).where(
        RequestMatch.request_id == request.id
    )
    already_matched = set((await db.execute(existing_stmt)).scalars().all())

    created: list[RequestMatch] = []
    for entry in in_range:
        provider = entry.candidate
        if provider.id in already_matched:
            continue
        match = RequestMatch(
            request_id=request.id,
            provider_id=provider.id,
            distance_km=round(entry.distance_km, 2),
            matched_at_radius_km=radius,
        )
        db.add(match)
        created.append(match)
        emit_lead_matched(
            request.id,
            provider.id,
            entry.distance_km,
            radius,
            phase_label(radius),
        )

    if created:
        await db.flush()

    logger.info(
        "Match sync for request %s at %d km: %d candidates, %d in range, %d new",
        request.id,
        radius,
        len(candidates),
        len(in_range),
        len(created),
    )
    return created


async def list_request_matches(
    db: AsyncSession,
    request_id: uuid.UUID,
) -> list[RequestMatch]:
    stmt = (
        select(RequestMatch)
        .where(RequestMatch.request_id == request_id)
        .order_by(RequestMatch.distance_km)
    )
    return list((await db.execute(stmt)).scalars().all())


# ---------------------------------------------------------------------------
# Provider side
# ---------------------------------------------------------------------------

async def list_leads_for_provider(
    db: AsyncSession,
    provider_id: uuid.UUID,
) -> list[ProviderLead]:
    """Live requests a provider can currently see and has not quoted on.

    Each request is checked against its own persisted ``search_radius_km``.

    Raises:
        ProviderNotFoundError: If the provider does not exist.
    """
    provider = await db.get(Provider, provider_id)
    if provider is None:
        raise ProviderNotFoundError(provider_id)

    if provider.home_latitude is None or provider.home_longitude is None:
        return []
    services = list(provider.services or [])
    if not services:
        return []

    quoted_stmt = select(Quote.request_id).where(Quote.provider_id == provider_id)
    quoted = set((await db.execute(quoted_stmt)).scalars().all())

    stmt = select(ServiceRequest).where(
        ServiceRequest.status.in_(tuple(LIVE_STATUSES)),
        ServiceRequest.service.in_(services),
    )
    requests = (await db.execute(stmt)).scalars().all()

    leads: list[ProviderLead] = []
    for request in requests:
        if request.id in quoted:
            continue
        distance = haversine_distance(
            float(provider.home_latitude),
            float(provider.home_longitude),
            float(request.latitude),
            float(request.longitude),
        )
        if is_within_radius(distance, coerce_radius(request.search_radius_km)):
            leads.append(ProviderLead(request=request, distance_km=distance))

    leads.sort(key=lambda lead: lead.distance_km)
    return leads
