"""Pytest configuration and fixtures for API and service tests."""
import os

# Set test env BEFORE any imports that use config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["INITIAL_ADMIN_PASSWORD"] = "testpass123"
os.environ["INITIAL_ADMIN_USERNAME"] = "admin"
os.environ["EMAIL_HOST"] = ""

import pytest
from httpx import ASGITransport, AsyncClient

from core.models.base import async_session_factory, reset_db
from core.services import catalog, registry
from web.api.main import app


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
async def _init_db():
    """Fresh tables for every test (ASGI lifespan doesn't run with httpx)."""
    await reset_db()


@pytest.fixture
async def client():
    """Async HTTP client for testing the API."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
async def session():
    """Database session for driving services directly."""
    async with async_session_factory() as s:
        yield s


@pytest.fixture
async def auth_headers(client):
    """Login as admin and return Authorization headers for protected endpoints."""
    r = await client.post(
        "/api/auth/login",
        json={"username": "admin", "password": "testpass123"},
    )
    assert r.status_code == 200, f"Login failed: {r.text}"
    token = r.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


async def _staff_headers(client, admin_headers, username, role):
    r = await client.post(
        "/api/auth/users",
        json={"username": username, "password": "staffpass", "role": role},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    r = await client.post("/api/auth/login", json={"username": username, "password": "staffpass"})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
async def gate_headers(client, auth_headers):
    return await _staff_headers(client, auth_headers, "gate1", "gate")


@pytest.fixture
async def food_headers(client, auth_headers):
    return await _staff_headers(client, auth_headers, "food1", "food")


async def _make_template(session, name, category="food", is_countable=False, max_count=1, players=True, participants=True):
    return await catalog.create_template(
        session,
        {
            "name": name,
            "category": category,
            "is_countable": is_countable,
            "max_count": max_count,
            "default_for_players": players,
            "default_for_participants": participants,
        },
        None,
    )


async def _make_participant(session, name, email, is_player=False, present=False):
    participant, _ = await registry.create_participant(
        session, {"name": name, "email": email, "is_player": is_player}, send_email=False
    )
    if present:
        participant = await registry.mark_attendance(session, participant.participant_id, None)
    return participant


@pytest.fixture
def make_template(session):
    """Factory: make_template("Beer", category="beverage", is_countable=True, max_count=2)."""
    async def factory(name, **kwargs):
        return await _make_template(session, name, **kwargs)
    return factory


@pytest.fixture
def make_participant(session):
    """Factory: make_participant("Ann", "ann@example.com", present=True)."""
    async def factory(name, email, **kwargs):
        return await _make_participant(session, name, email, **kwargs)
    return factory
