"""
Service Request Event Emission Stubs
====================================

Event system for service request lifecycle and matching changes. Each
function emits an event that downstream consumers (push notifications,
email, provider lead feeds) can subscribe to.

Delivery transport is outside this service: each emitter logs the event
and returns the payload dict so callers can forward it.

Events emitted:
  - request.created
  - request.radius_expanded
  - request.expansion_approved
  - request.matching_stopped
  - request.lead_matched
  - request.quote_received
  - request.status_changed
  - request.stale
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def _build_event(
    event_type: str,
    request_id: uuid.UUID,
    *,
    data: dict[str, Any] | None = None,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    """Construct a standardised event payload."""
    return {
        "event_type": event_type,
        "request_id": str(request_id),
        "actor_id": str(actor_id) if actor_id else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data or {},
    }


def emit_request_created(
    request_id: uuid.UUID,
    customer_id: uuid.UUID,
    service: str,
    reference_number: str,
) -> dict[str, Any]:
    """Emit event when a customer posts a new service request."""
    event = _build_event(
        "request.created",
        request_id,
        actor_id=customer_id,
        data={"service": service, "reference_number": reference_number},
    )
    logger.info("Event emitted: %s for request %s", event["event_type"], request_id)
    return event


def emit_radius_expanded(
    request_id: uuid.UUID,
    old_radius_km: int | None,
    new_radius_km: int,
    phase: str,
) -> dict[str, Any]:
    """Emit event when the persisted search radius widens."""
    event = _build_event(
        "request.radius_expanded",
        request_id,
        data={
            "old_radius_km": old_radius_km,
            "new_radius_km": new_radius_km,
            "phase": phase,
        },
    )
    logger.info(
        "Event emitted: %s for request %s (%s -> %s km, %s)",
        event["event_type"],
        request_id,
        old_radius_km,
        new_radius_km,
        phase,
    )
    return event


def emit_expansion_approved(
    request_id: uuid.UUID,
    tier: int,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    event = _build_event(
        "request.expansion_approved",
        request_id,
        actor_id=actor_id,
        data={"tier": tier},
    )
    logger.info(
        "Event emitted: %s for request %s (tier %d)",
        event["event_type"],
        request_id,
        tier,
    )
    return event


def emit_matching_stopped(
    request_id: uuid.UUID,
    radius_km: int,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    event = _build_event(
        "request.matching_stopped",
        request_id,
        actor_id=actor_id,
        data={"radius_km": radius_km},
    )
    logger.info("Event emitted: %s for request %s", event["event_type"], request_id)
    return event


def emit_lead_matched(
    request_id: uuid.UUID,
    provider_id: uuid.UUID,
    distance_km: float,
    radius_km: int,
    phase: str,
) -> dict[str, Any]:
    """Emit event when a provider falls inside a request's active radius.

    Consumed by the provider notification fan-out ("Lead found").
    """
    event = _build_event(
        "request.lead_matched",
        request_id,
        data={
            "provider_id": str(provider_id),
            "distance_km": round(distance_km, 2),
            "radius_km": radius_km,
            "phase": phase,
        },
    )
    logger.info(
        "Event emitted: %s for request %s -> provider %s at %.2f km",
        event["event_type"],
        request_id,
        provider_id,
        distance_km,
    )
    return event


def emit_quote_received(
    request_id: uuid.UUID,
    quote_id: uuid.UUID,
    provider_id: uuid.UUID,
    quotes_count: int,
) -> dict[str, Any]:
    event = _build_event(
        "request.quote_received",
        request_id,
        actor_id=provider_id,
        data={"quote_id": str(quote_id), "quotes_count": quotes_count},
    )
    logger.info(
        "Event emitted: %s for request %s (quotes=%d)",
        event["event_type"],
        request_id,
        quotes_count,
    )
    return event


def emit_request_status_changed(
    request_id: uuid.UUID,
    old_status: str,
    new_status: str,
    actor_id: uuid.UUID | None = None,
) -> dict[str, Any]:
    event = _build_event(
        "request.status_changed",
        request_id,
        actor_id=actor_id,
        data={"old_status": old_status, "new_status": new_status},
    )
    logger.info(
        "Event emitted: %s for request %s (%s -> %s)",
        event["event_type"],
        request_id,
        old_status,
        new_status,
    )
    return event


def emit_request_stale(
    request_id: uuid.UUID,
    customer_id: uuid.UUID,
    elapsed_minutes: float,
) -> dict[str, Any]:
    """Emit event when a live request has drawn no quotes for too long."""
    event = _build_event(
        "request.stale",
        request_id,
        actor_id=customer_id,
        data={"elapsed_minutes": round(elapsed_minutes, 1)},
    )
    logger.warning(
        "Event emitted: %s for request %s (%.1f min without quotes)",
        event["event_type"],
        request_id,
        elapsed_minutes,
    )
    return event
