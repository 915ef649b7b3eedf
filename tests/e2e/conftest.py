"""
E2E test fixtures for the lead engine backend.

Provides:
- An async SQLite database (in-memory) with the full schema, fresh per test
- Seeded providers at known distances from the Dubai Marina test location
- An in-process FastAPI test app with the request and lead routes registered
- httpx AsyncClient wired via ASGI transport (no network needed)
- Helpers to post requests and to move a request's creation time back

The full route -> service -> DB flow is exercised; only the clock is
controlled, by rewriting ``created_at``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leadengine.models import Base, Provider, ServiceRequest

# ---------------------------------------------------------------------------
# Test IDs and locations
# ---------------------------------------------------------------------------

CUSTOMER_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")

# Request center: Dubai Marina
CENTER = (Decimal("25.0800000"), Decimal("55.1400000"))


@dataclass(frozen=True)
class SeededProviders:
    near: uuid.UUID          # ~1.1 km, inside Tier 1
    mid: uuid.UUID           # ~5.6 km, inside Tier 2
    far: uuid.UUID           # ~11.1 km, inside Tier 3
    outside: uuid.UUID       # ~18.9 km, never matched
    electrician: uuid.UUID   # ~0.6 km, different service
    inactive: uuid.UUID      # ~1.1 km, deactivated
    unlocated: uuid.UUID     # no home location


# ---------------------------------------------------------------------------
# Async engine + session (in-memory SQLite)
# ---------------------------------------------------------------------------

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def _test_engine():
    """A fresh in-memory database for each test."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite defers BEGIN, which breaks SAVEPOINT; emit it ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_conn, _):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(_test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session inside one transaction that is rolled back afterwards."""
    session_factory = async_sessionmaker(
        bind=_test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        await session.begin()
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

def _provider(name: str, lat: str | None, lng: str | None, **kwargs: Any) -> Provider:
    return Provider(
        id=uuid.uuid4(),
        display_name=name,
        email=f"{name.lower().replace(' ', '.')}@test.leadengine.ae",
        is_active=kwargs.get("is_active", True),
        services=kwargs.get("services", ["plumbing"]),
        home_latitude=Decimal(lat) if lat is not None else None,
        home_longitude=Decimal(lng) if lng is not None else None,
    )


@pytest_asyncio.fixture
async def providers(db_session: AsyncSession) -> SeededProviders:
    """Providers placed due north of the request center."""
    near = _provider("Marina Plumbing", "25.0900000", "55.1400000")
    mid = _provider("JLT Plumbing", "25.1300000", "55.1400000")
    far = _provider("Barsha Plumbing", "25.1800000", "55.1400000")
    outside = _provider("Deira Plumbing", "25.2500000", "55.1400000")
    electrician = _provider(
        "Marina Electric", "25.0850000", "55.1400000", services=["electrical"]
    )
    inactive = _provider("Retired Plumbing", "25.0900000", "55.1400000", is_active=False)
    unlocated = _provider("Mobile Plumbing", None, None)

    db_session.add_all([near, mid, far, outside, electrician, inactive, unlocated])
    await db_session.flush()

    return SeededProviders(
        near=near.id,
        mid=mid.id,
        far=far.id,
        outside=outside.id,
        electrician=electrician.id,
        inactive=inactive.id,
        unlocated=unlocated.id,
    )


# ---------------------------------------------------------------------------
# FastAPI test application
# ---------------------------------------------------------------------------

def _create_test_app(db_session_override: AsyncSession):
    """Build a FastAPI app with the routes registered and the DB dependency
    overridden to use the test session."""
    from fastapi import FastAPI

    from leadengine.api.deps import get_db
    from leadengine.api.routes.leads import router as leads_router
    from leadengine.api.routes.requests import router as requests_router

    app = FastAPI(title="Lead Engine Test")

    async def _override_get_db():
        yield db_session_override

    app.dependency_overrides[get_db] = _override_get_db

    app.include_router(requests_router, prefix="/api/v1")
    app.include_router(leads_router, prefix="/api/v1")

    return app


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    providers: SeededProviders,
) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient connected to the test app via ASGI transport."""
    app = _create_test_app(db_session)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def post_request(client: AsyncClient):
    """POST a plumbing request at the test center; returns the response JSON."""

    async def _post(**overrides: Any) -> dict[str, Any]:
        payload = {
            "customer_id": str(CUSTOMER_ID),
            "title": "Fix leaking kitchen tap",
            "description": "Mixer tap drips constantly",
            "service": "plumbing",
            "category": "home-repair",
            "location_name": "Dubai Marina, Dubai",
            "latitude": float(CENTER[0]),
            "longitude": float(CENTER[1]),
        }
        payload.update(overrides)
        resp = await client.post("/api/v1/requests", json=payload)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _post


@pytest.fixture
def backdate(db_session: AsyncSession):
    """Move a request's ``created_at`` to ``minutes`` before now."""

    async def _backdate(request_id: str, minutes: float) -> None:
        request = await db_session.get(ServiceRequest, uuid.UUID(request_id))
        request.created_at = datetime.now(timezone.utc) - timedelta(minutes=minutes)
        await db_session.flush()

    return _backdate


@pytest.fixture
def add_quotes(client: AsyncClient, providers: SeededProviders):
    """POST ``count`` quotes on a request from the nearby provider."""

    async def _add(request_id: str, count: int = 1) -> list[dict[str, Any]]:
        quotes = []
        for i in range(count):
            resp = await client.post(
                f"/api/v1/requests/{request_id}/quotes",
                json={
                    "provider_id": str(providers.near),
                    "price_cents": 15000 + i * 500,
                    "timeline": "Tomorrow",
                },
            )
            assert resp.status_code == 201, resp.text
            quotes.append(resp.json())
        return quotes

    return _add
