"""
SQLAlchemy models for service_requests, quotes, and request_matches.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class RequestStatus(str, enum.Enum):
    OPEN = "open"
    ACTIVE = "active"            # at least one quote received
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELED = "canceled"


class QuoteStatus(str, enum.Enum):
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ServiceRequest(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "service_requests"

    reference_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    # Request details
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    service: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, name="request_status"),
        nullable=False,
        default=RequestStatus.OPEN,
        server_default="OPEN",
    )

    # Location (center point of the search radius)
    location_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    latitude: Mapped[Decimal] = mapped_column(Numeric(10, 7), nullable=False)
    longitude: Mapped[Decimal] = mapped_column(Numeric(10, 7), nullable=False)

    # Matching state -- quotes_count is written by quote recording only,
    # search_radius_km by the radius sync only, the flags by requester actions
    quotes_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    search_radius_km: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, server_default="3"
    )
    expansion_approved_tier2: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    expansion_approved_tier3: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    matching_stopped: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    low_quote_warning_dismissed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    accepted_quote_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    # Set once the no-quotes notice has gone out
    stale_notified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    quotes: Mapped[list["Quote"]] = relationship(
        "Quote", back_populates="request", lazy="raise"
    )
    matches: Mapped[list["RequestMatch"]] = relationship(
        "RequestMatch", back_populates="request", lazy="raise"
    )

    def __repr__(self) -> str:
        return (
            f"<ServiceRequest(id={self.id}, ref={self.reference_number}, "
            f"status={self.status}, radius={self.search_radius_km}km)>"
        )


class Quote(UUIDPrimaryKeyMixin, Base):
    """A provider's bid on a service request. Immutable apart from status."""

    __tablename__ = "quotes"

    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("service_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="RESTRICT"),
        nullable=False,
    )
    price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timeline: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[QuoteStatus] = mapped_column(
        Enum(QuoteStatus, name="quote_status"),
        nullable=False,
        default=QuoteStatus.SENT,
        server_default="SENT",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    request: Mapped["ServiceRequest"] = relationship(
        "ServiceRequest", back_populates="quotes", lazy="raise"
    )

    def __repr__(self) -> str:
        return (
            f"<Quote(id={self.id}, request={self.request_id}, "
            f"provider={self.provider_id}, status={self.status})>"
        )


class RequestMatch(UUIDPrimaryKeyMixin, Base):
    """Records that a provider fell inside a request's active search radius.

    One row per (request, provider); the first radius at which the provider
    matched is kept.
    """

    __tablename__ = "request_matches"
    __table_args__ = (
        UniqueConstraint("request_id", "provider_id", name="uq_request_matches_request_provider"),
    )

    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("service_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
    )
    distance_km: Mapped[float] = mapped_column(Float, nullable=False)
    matched_at_radius_km: Mapped[int] = mapped_column(Integer, nullable=False)
    matched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    request: Mapped["ServiceRequest"] = relationship(
        "ServiceRequest", back_populates="matches", lazy="raise"
    )
