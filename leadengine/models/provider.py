"""
SQLAlchemy model for providers: the candidates a service request is
matched against.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, Boolean, Numeric, String, true
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Provider(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "providers"

    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )

    # Service slugs this provider quotes for (e.g. ["plumbing", "ac-repair"])
    services: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Home base; providers without a location are never matched
    home_latitude: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 7), nullable=True
    )
    home_longitude: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 7), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Provider(id={self.id}, name={self.display_name!r})>"
