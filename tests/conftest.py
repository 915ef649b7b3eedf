"""
Shared pytest fixtures for lead engine unit tests.

Provides mock database sessions and sample domain objects that mirror
production ORM models without requiring a live database connection.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from leadengine.models import Provider, RequestStatus, ServiceRequest

# Fixed clock used by every time-dependent unit test
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Database session mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db() -> AsyncMock:
    """Async mock of ``AsyncSession``.

    Supports ``db.execute()``, ``db.get()``, ``db.add()``, ``db.flush()``,
    ``db.refresh()`` and ``async with db.begin_nested()`` out of the box.
    Individual tests configure ``mock_db.execute.return_value`` to control
    query results.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()

    savepoint = MagicMock()
    savepoint.__aenter__ = AsyncMock(return_value=None)
    savepoint.__aexit__ = AsyncMock(return_value=False)
    session.begin_nested = MagicMock(return_value=savepoint)
    return session


# ---------------------------------------------------------------------------
# Request fixtures
# ---------------------------------------------------------------------------


def make_request(
    *,
    minutes_ago: float = 0,
    quotes_count: int = 0,
    search_radius_km: int = 3,
    tier2: bool = False,
    tier3: bool = False,
    stopped: bool = False,
    warning_dismissed: bool = False,
    status: RequestStatus = RequestStatus.OPEN,
    now: datetime = NOW,
) -> ServiceRequest:
    """A service request created ``minutes_ago`` before ``now``."""
    request = MagicMock(spec=ServiceRequest)
    request.id = uuid.uuid4()
    request.reference_number = "REQ-TEST01"
    request.customer_id = uuid.uuid4()
    request.title = "Fix leaking kitchen tap"
    request.description = "Mixer tap drips constantly"
    request.service = "plumbing"
    request.category = "home-repair"
    request.location_name = "Dubai Marina, Dubai"
    request.latitude = Decimal("25.0800000")
    request.longitude = Decimal("55.1400000")
    request.status = status
    request.created_at = now - timedelta(minutes=minutes_ago)
    request.updated_at = request.created_at
    request.quotes_count = quotes_count
    request.search_radius_km = search_radius_km
    request.expansion_approved_tier2 = tier2
    request.expansion_approved_tier3 = tier3
    request.matching_stopped = stopped
    request.low_quote_warning_dismissed = warning_dismissed
    request.accepted_quote_id = None
    request.stale_notified_at = None
    return request


@pytest.fixture
def sample_request() -> ServiceRequest:
    """A freshly posted open request at the narrowest radius."""
    return make_request()


# ---------------------------------------------------------------------------
# Provider fixtures
# ---------------------------------------------------------------------------


def make_provider(
    lat: float | None,
    lng: float | None,
    *,
    services: list[str] | None = None,
    name: str = "Ahmed Plumbing",
) -> Provider:
    provider = MagicMock(spec=Provider)
    provider.id = uuid.uuid4()
    provider.display_name = name
    provider.email = "provider@example.com"
    provider.is_active = True
    provider.services = services if services is not None else ["plumbing"]
    provider.home_latitude = Decimal(str(lat)) if lat is not None else None
    provider.home_longitude = Decimal(str(lng)) if lng is not None else None
    return provider


@pytest.fixture
def sample_provider() -> Provider:
    """A plumbing provider about 1.1 km from the sample request."""
    return make_provider(25.09, 55.14)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def request_factory():
    """Build requests with ``request_factory(minutes_ago=4, quotes_count=7)``."""
    return make_request


@pytest.fixture
def provider_factory():
    """Build providers with ``provider_factory(lat, lng, services=[...])``."""
    return make_provider
