"""Test fixtures with in-memory SQLite via SQLModel."""

from __future__ import annotations

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from nearhand.auth import hash_key, key_fingerprint
from nearhand.database import get_db_session
from nearhand.db_models import (  # noqa: F401
    Application,
    Profile,
    Task,
)
from nearhand.geocoding import GeocodingError, GeoResolver, get_geo_resolver
from nearhand.ids import api_key, profile_id
from nearhand.main import app
from nearhand.rate_limit import limiter

PARIS = (48.8566, 2.3522)
LYON = (45.7640, 4.8357)


class FakeGeocoder:
    """Reverse geocoder returning canned Nominatim-style display names."""

    def __init__(self, display_name: str | None = None, fail: bool = False):
        self.display_name = display_name or (
            "12, Rue de Rivoli, Quartier Saint-Merri, Paris 4e Arrondissement, "
            "Paris, Île-de-France, France métropolitaine, 75004, France"
        )
        self.fail = fail
        self.calls: list[tuple[float, float]] = []

    async def reverse_geocode(self, lat: float, lng: float) -> str:
        self.calls.append((lat, lng))
        if self.fail:
            raise GeocodingError("geocoder down")
        return self.display_name


@pytest.fixture(autouse=True)
def _no_rate_limits():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def resolver(geocoder):
    return GeoResolver(geocoder, timeout=1.0)


@pytest.fixture
async def db(resolver):
    engine = create_async_engine(
        "sqlite+aiosqlite://", echo=False, connect_args={"check_same_thread": False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)  # type: ignore[call-overload]

    async def override_get_db_session():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[get_geo_resolver] = lambda: resolver

    yield factory

    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture
async def session(db):
    async with db() as s:
        yield s


@pytest.fixture
async def client(db):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def register_profile(client: AsyncClient, name: str = "test-user") -> dict:
    """Helper: register a profile, return {"profile_id", "api_key"}."""
    resp = await client.post(
        "/v1/register",
        json={"name": name},
        headers={"Accept": "application/json"},
    )
    assert resp.status_code == 201
    return resp.json()


def auth_header(key: str) -> dict:
    return {"Authorization": f"Bearer {key}", "Accept": "application/json"}


async def make_profile(session: AsyncSession, name: str = "someone") -> Profile:
    """Helper: insert a profile directly, bypassing the API."""
    key = api_key()
    profile = Profile(
        id=profile_id(), name=name, key_hash=hash_key(key), key_fingerprint=key_fingerprint(key)
    )
    session.add(profile)
    await session.commit()
    return profile


async def make_task(session: AsyncSession, author_id: str, at=PARIS, **kwargs) -> Task:
    """Helper: create an open task through the service, without geocoding."""
    from nearhand.services.tasks import create_task

    kwargs.setdefault("title", "Water my plants")
    kwargs.setdefault("description", "Twice a week while I'm away")
    kwargs.setdefault("budget", Decimal("20.00"))
    kwargs.setdefault("address", "12, Rue de Rivoli, Paris")
    return await create_task(session, author_id, latitude=at[0], longitude=at[1], **kwargs)


@pytest.fixture
async def two_users(client):
    """Register an author and a helper."""
    d1 = await register_profile(client, "author")
    d2 = await register_profile(client, "helper")
    return {
        "client": client,
        "author": {"id": d1["profile_id"], "key": d1["api_key"]},
        "helper": {"id": d2["profile_id"], "key": d2["api_key"]},
    }


@pytest.fixture
async def three_users(client):
    """Register an author and two competing helpers."""
    users = {"client": client}
    for role in ("author", "helper_a", "helper_b"):
        d = await register_profile(client, role)
        users[role] = {"id": d["profile_id"], "key": d["api_key"]}
    return users
