"""
Service Request API Routes
==========================

REST endpoints for service requests and their lead matching state.

Routes:
  POST  /api/v1/requests                                    -- Post a request
  GET   /api/v1/requests/{id}                               -- Request + matching state
  GET   /api/v1/requests/{id}/matches                       -- Providers matched so far
  POST  /api/v1/requests/{id}/expansion-approvals           -- Approve 8/15 km
  POST  /api/v1/requests/{id}/stop-matching                 -- Freeze the radius
  POST  /api/v1/requests/{id}/dismiss-low-quote-warning     -- Hide modify warning
  POST  /api/v1/requests/{id}/quotes                        -- Record a quote
  POST  /api/v1/requests/{id}/quotes/{quote_id}/accept      -- Accept a quote
  PATCH /api/v1/requests/{id}/status                        -- Complete / cancel
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, HTTPException, status

from leadengine.api.deps import DBSession
from leadengine.api.schemas.requests import (
    ApproveExpansionIn,
    CreateQuoteIn,
    CreateRequestIn,
    MatchingStateOut,
    QuoteOut,
    RequestDetailOut,
    RequestMatchOut,
    ServiceRequestOut,
    UpdateStatusIn,
)
from leadengine.models import RequestStatus
from leadengine.services import matchIndexer, requestService
from leadengine.services.leadMatcher import get_matching_state
from leadengine.services.radiusSync import RadiusPersistenceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/requests", tags=["Requests"])


def _not_found(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _conflict(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


# ---------------------------------------------------------------------------
# POST /api/v1/requests -- Post a new service request
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=ServiceRequestOut,
    status_code=status.HTTP_201_CREATED,
    summary="Post a service request",
    description=(
        "Creates an open request at the 3 km radius and records the "
        "providers for its service already inside that radius."
    ),
)
async def create_request(db: DBSession, body: CreateRequestIn) -> ServiceRequestOut:
    request = await requestService.create_request(
        db,
        customer_id=body.customer_id,
        title=body.title,
        description=body.description,
        service=body.service,
        category=body.category,
        location_name=body.location_name,
        latitude=body.latitude,
        longitude=body.longitude,
    )
    return ServiceRequestOut.model_validate(request)


# ---------------------------------------------------------------------------
# GET /api/v1/requests/{id} -- Request with its current matching state
# ---------------------------------------------------------------------------

@router.get(
    "/{request_id}",
    response_model=RequestDetailOut,
    summary="Get a request and its matching state",
    description=(
        "Recomputes the matching state for the request at the current time "
        "and persists the search radius when it changes. A failed radius "
        "write is retried on the next read."
    ),
)
async def get_request(db: DBSession, request_id: uuid.UUID) -> RequestDetailOut:
    try:
        request = await requestService.get_request(db, request_id)
    except requestService.RequestNotFoundError as exc:
        raise _not_found(exc)

    try:
        observation = await requestService.observe(db, request)
        state, radius_updated = observation.state, observation.radius_updated
    except RadiusPersistenceError:
        state, radius_updated = get_matching_state(request), False

    return RequestDetailOut(
        request=ServiceRequestOut.model_validate(request),
        matching=MatchingStateOut(
            current_radius_km=state.current_radius_km,
            phase=state.phase,
            show_expansion_prompt_tier2=state.show_expansion_prompt_tier2,
            show_expansion_prompt_tier3=state.show_expansion_prompt_tier3,
            show_modify_warning=state.show_modify_warning,
            is_matching_finished=state.is_matching_finished,
        ),
        radius_updated=radius_updated,
    )


@router.get(
    "/{request_id}/matches",
    response_model=list[RequestMatchOut],
    summary="List providers matched to a request",
)
async def list_matches(db: DBSession, request_id: uuid.UUID) -> list[RequestMatchOut]:
    try:
        await requestService.get_request(db, request_id)
    except requestService.RequestNotFoundError as exc:
        raise _not_found(exc)
    matches = await matchIndexer.list_request_matches(db, request_id)
    return [RequestMatchOut.model_validate(m) for m in matches]


# ---------------------------------------------------------------------------
# Requester actions
# ---------------------------------------------------------------------------

@router.post(
    "/{request_id}/expansion-approvals",
    response_model=ServiceRequestOut,
    summary="Approve widening the search radius",
)
async def approve_expansion(
    db: DBSession,
    request_id: uuid.UUID,
    body: ApproveExpansionIn,
) -> ServiceRequestOut:
    try:
        request = await requestService.approve_expansion(db, request_id, body.tier)
    except requestService.RequestNotFoundError as exc:
        raise _not_found(exc)
    except requestService.RequestClosedError as exc:
        raise _conflict(exc)
    return ServiceRequestOut.model_validate(request)


@router.post(
    "/{request_id}/stop-matching",
    response_model=ServiceRequestOut,
    summary="Stop expanding the search radius",
)
async def stop_matching(db: DBSession, request_id: uuid.UUID) -> ServiceRequestOut:
    try:
        request = await requestService.stop_matching(db, request_id)
    except requestService.RequestNotFoundError as exc:
        raise _not_found(exc)
    return ServiceRequestOut.model_validate(request)


@router.post(
    "/{request_id}/dismiss-low-quote-warning",
    response_model=ServiceRequestOut,
    summary="Dismiss the modify-your-request warning",
)
async def dismiss_low_quote_warning(
    db: DBSession,
    request_id: uuid.UUID,
) -> ServiceRequestOut:
    try:
        request = await requestService.dismiss_low_quote_warning(db, request_id)
    except requestService.RequestNotFoundError as exc:
        raise _not_found(exc)
    return ServiceRequestOut.model_validate(request)


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------

@router.post(
    "/{request_id}/quotes",
    response_model=QuoteOut,
    status_code=status.HTTP_201_CREATED,
    summary="Record a provider quote",
)
async def create_quote(
    db: DBSession,
    request_id: uuid.UUID,
    body: CreateQuoteIn,
) -> QuoteOut:
    try:
        quote = await requestService.record_quote(
            db,
            request_id,
            body.provider_id,
            price_cents=body.price_cents,
            timeline=body.timeline,
            message=body.message,
        )
    except requestService.RequestNotFoundError as exc:
        raise _not_found(exc)
    except requestService.RequestClosedError as exc:
        raise _conflict(exc)
    return QuoteOut.model_validate(quote)


@router.post(
    "/{request_id}/quotes/{quote_id}/accept",
    response_model=ServiceRequestOut,
    summary="Accept a quote",
)
async def accept_quote(
    db: DBSession,
    request_id: uuid.UUID,
    quote_id: uuid.UUID,
) -> ServiceRequestOut:
    try:
        request = await requestService.accept_quote(db, request_id, quote_id)
    except (requestService.RequestNotFoundError, requestService.QuoteNotFoundError) as exc:
        raise _not_found(exc)
    except requestService.RequestClosedError as exc:
        raise _conflict(exc)
    return ServiceRequestOut.model_validate(request)


@router.patch(
    "/{request_id}/status",
    response_model=ServiceRequestOut,
    summary="Complete or cancel a request",
)
async def update_status(
    db: DBSession,
    request_id: uuid.UUID,
    body: UpdateStatusIn,
) -> ServiceRequestOut:
    try:
        request = await requestService.update_status(
            db, request_id, RequestStatus(body.status)
        )
    except requestService.RequestNotFoundError as exc:
        raise _not_found(exc)
    except requestService.RequestClosedError as exc:
        raise _conflict(exc)
    return ServiceRequestOut.model_validate(request)
