"""
Provider Lead API Routes
========================

Routes:
  GET /api/v1/providers/{provider_id}/leads -- Live requests visible to a provider
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, HTTPException, status

from leadengine.api.deps import DBSession
from leadengine.api.schemas.requests import LeadOut, ServiceRequestOut
from leadengine.services import matchIndexer

router = APIRouter(prefix="/providers", tags=["Leads"])


@router.get(
    "/{provider_id}/leads",
    response_model=list[LeadOut],
    summary="List leads visible to a provider",
    description=(
        "Open or active requests for the provider's services that the "
        "provider has not quoted on and whose current search radius reaches "
        "the provider's home location. Closest first."
    ),
)
async def list_leads(db: DBSession, provider_id: uuid.UUID) -> list[LeadOut]:
    try:
        leads = await matchIndexer.list_leads_for_provider(db, provider_id)
    except matchIndexer.ProviderNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        )

    return [
        LeadOut(
            request=ServiceRequestOut.model_validate(lead.request),
            distance_km=round(lead.distance_km, 2),
        )
        for lead in leads
    ]
