"""Test fixtures with in-memory SQLite via SQLModel."""

from __future__ import annotations

import os

os.environ.setdefault("HOMEEASY_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("HOMEEASY_BCRYPT_ROUNDS", "4")
os.environ.setdefault("HOMEEASY_STORAGE_BACKEND", "memory")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from homeeasy.db_models import UserRow  # noqa: E402, F401
from homeeasy.main import app  # noqa: E402
from homeeasy.state import build_state  # noqa: E402
from homeeasy.storage.memory import MemoryStore  # noqa: E402
from homeeasy.storage.sql import SqlStore  # noqa: E402


async def _sqlite_factory(url: str = "sqlite+aiosqlite://"):
    engine = create_async_engine(url, echo=False, connect_args={"check_same_thread": False})
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)  # type: ignore[call-overload]
    return engine, factory


@pytest.fixture
async def db():
    engine, factory = await _sqlite_factory()
    services = build_state(SqlStore(factory))
    app.state.services = services

    yield services

    app.state.services = None
    await engine.dispose()


@pytest.fixture
async def client(db):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(params=["sql", "memory"])
async def store(request, tmp_path):
    """Both store implementations; the SQL one on a file so sessions really interleave."""
    if request.param == "memory":
        yield MemoryStore()
        return
    engine, factory = await _sqlite_factory(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    yield SqlStore(factory)
    await engine.dispose()


async def register_user(
    client: AsyncClient,
    email: str,
    role: str = "client",
    first_name: str = "Test",
    last_name: str = "User",
    password: str = "secret123",
) -> dict:
    """Helper: register a user, return {"id", "token", "user"}."""
    resp = await client.post(
        "/v1/auth/register",
        json={
            "email": email,
            "password": password,
            "first_name": first_name,
            "last_name": last_name,
            "role": role,
        },
        headers={"Accept": "application/json"},
    )
    assert resp.status_code == 201, resp.text
    data = resp.json()
    return {"id": data["user"]["id"], "token": data["token"], "user": data["user"]}


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}", "Accept": "application/json"}


TASK_BODY = {
    "title": "Fix leaking kitchen tap",
    "description": "The kitchen tap drips constantly, needs a new washer.",
    "category": "repairs",
    "location": "Amsterdam",
    "suggested_price": 40.0,
}


async def post_task(client: AsyncClient, token: str, **overrides) -> dict:
    resp = await client.post(
        "/v1/tasks", json={**TASK_BODY, **overrides}, headers=auth_header(token)
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def place_bid(client: AsyncClient, token: str, task_id: str, amount: float = 35.0) -> dict:
    resp = await client.post(
        "/v1/bids",
        json={
            "task_id": task_id,
            "amount": amount,
            "message": "I can do this tomorrow",
            "estimated_duration": 2,
        },
        headers=auth_header(token),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.fixture
async def parties(client):
    """A client and two taskers."""
    owner = await register_user(client, "client@example.com", "client", "Cora", "Client")
    alice = await register_user(client, "alice@example.com", "tasker", "Alice", "Tasker")
    bob = await register_user(client, "bob@example.com", "tasker", "Bob", "Builder")
    return {"client": client, "owner": owner, "alice": alice, "bob": bob}


@pytest.fixture
async def assigned_task(parties):
    """A task with Alice's bid accepted and Bob's rejected."""
    c = parties["client"]
    task = await post_task(c, parties["owner"]["token"])
    alice_bid = await place_bid(c, parties["alice"]["token"], task["id"], 35.0)
    bob_bid = await place_bid(c, parties["bob"]["token"], task["id"], 30.0)
    resp = await c.post(
        f"/v1/bids/{alice_bid['id']}/accept", headers=auth_header(parties["owner"]["token"])
    )
    assert resp.status_code == 200, resp.text
    return {**parties, "task": task, "alice_bid": alice_bid, "bob_bid": bob_bid}
