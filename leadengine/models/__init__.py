"""
Lead Engine SQLAlchemy Models
=============================

Central import point for all ORM models. Importing ``Base`` from here
registers every table on ``Base.metadata``.

Usage::

    from leadengine.models import Base, ServiceRequest, Provider
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Providers --
from .provider import Provider

# -- Service requests, quotes, matches --
from .service_request import (
    Quote,
    QuoteStatus,
    RequestMatch,
    RequestStatus,
    ServiceRequest,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    # Providers
    "Provider",
    # Requests
    "ServiceRequest",
    "RequestStatus",
    "Quote",
    "QuoteStatus",
    "RequestMatch",
]
