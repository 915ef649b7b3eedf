"""
Pydantic v2 schemas for the Service Request & Lead Matching API
===============================================================

Schemas for creating requests, reading their matching state, requester
actions, quotes, recorded matches, and provider lead lists.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from leadengine.models import QuoteStatus, RequestStatus


# ---------------------------------------------------------------------------
# Request creation / detail
# ---------------------------------------------------------------------------

class CreateRequestIn(BaseModel):
    """Request body for posting a new service request."""

    customer_id: uuid.UUID
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    service: str = Field(min_length=1, max_length=100, description="Service slug")
    category: Optional[str] = Field(default=None, max_length=100)
    location_name: Optional[str] = None
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class ServiceRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    reference_number: str
    customer_id: uuid.UUID
    title: str
    description: Optional[str] = None
    service: str
    category: Optional[str] = None
    location_name: Optional[str] = None
    latitude: Decimal
    longitude: Decimal
    status: RequestStatus
    quotes_count: int
    search_radius_km: int
    expansion_approved_tier2: bool
    expansion_approved_tier3: bool
    matching_stopped: bool
    low_quote_warning_dismissed: bool
    accepted_quote_id: Optional[uuid.UUID] = None
    created_at: datetime


class MatchingStateOut(BaseModel):
    """Radius and prompts the requester's view should render."""

    model_config = ConfigDict(from_attributes=True)

    current_radius_km: int
    phase: int = Field(description="1, 2 or 3 for the 3/8/15 km tiers")
    show_expansion_prompt_tier2: bool
    show_expansion_prompt_tier3: bool
    show_modify_warning: bool
    is_matching_finished: bool


class RequestDetailOut(BaseModel):
    request: ServiceRequestOut
    matching: MatchingStateOut
    radius_updated: bool = Field(
        description="Whether this read persisted a new search radius"
    )


# ---------------------------------------------------------------------------
# Requester actions
# ---------------------------------------------------------------------------

class ApproveExpansionIn(BaseModel):
    tier: Literal[2, 3] = Field(description="2 approves 8 km, 3 approves 15 km")


class UpdateStatusIn(BaseModel):
    status: Literal["completed", "canceled"]


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------

class CreateQuoteIn(BaseModel):
    provider_id: uuid.UUID
    price_cents: int = Field(gt=0)
    timeline: Optional[str] = Field(default=None, max_length=100)
    message: Optional[str] = Field(default=None, max_length=2000)


class QuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_id: uuid.UUID
    provider_id: uuid.UUID
    price_cents: int
    timeline: Optional[str] = None
    message: Optional[str] = None
    status: QuoteStatus
    created_at: datetime


# ---------------------------------------------------------------------------
# Matches & leads
# ---------------------------------------------------------------------------

class RequestMatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider_id: uuid.UUID
    distance_km: float
    matched_at_radius_km: int
    matched_at: datetime


class LeadOut(BaseModel):
    request: ServiceRequestOut
    distance_km: float
