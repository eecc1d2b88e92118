"""Registration, login, tokens and profiles."""

from __future__ import annotations

import pytest

from homeeasy.auth import bearer_token, issue_token, resolve_caller
from homeeasy.errors import Unauthenticated
from tests.conftest import auth_header, register_user


@pytest.mark.asyncio
async def test_register_returns_token_and_private_profile(client):
    data = await register_user(client, "Cora@Example.com ", "client", "Cora", "Client")
    assert data["id"].startswith("us_")
    assert data["user"]["email"] == "cora@example.com"
    assert data["user"]["role"] == "client"
    assert data["user"]["rating"] == 0.0
    assert "password_hash" not in data["user"]


@pytest.mark.asyncio
async def test_register_duplicate_email(client):
    await register_user(client, "dup@example.com")
    resp = await client.post(
        "/v1/auth/register",
        json={
            "email": "DUP@example.com",
            "password": "secret123",
            "first_name": "Again",
            "role": "tasker",
        },
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "User already exists"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"email": "not-an-email", "password": "secret123", "first_name": "X", "role": "client"},
        {"email": "a@example.com", "password": "123", "first_name": "X", "role": "client"},
        {"email": "a@example.com", "password": "secret123", "first_name": "X", "role": "admin"},
        {"email": "a@example.com", "password": "secret123", "role": "client"},
    ],
)
async def test_register_invalid_body(client, body):
    resp = await client.post("/v1/auth/register", json=body)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid request body"


@pytest.mark.asyncio
async def test_login(client):
    await register_user(client, "login@example.com", password="hunter22")
    resp = await client.post(
        "/v1/auth/login", json={"email": "login@example.com", "password": "hunter22"}
    )
    assert resp.status_code == 200
    token = resp.json()["token"]

    resp = await client.get("/v1/me", headers=auth_header(token))
    assert resp.status_code == 200
    assert resp.json()["email"] == "login@example.com"


@pytest.mark.asyncio
async def test_login_wrong_password_and_unknown_email_look_the_same(client):
    await register_user(client, "login@example.com", password="hunter22")
    wrong = await client.post(
        "/v1/auth/login", json={"email": "login@example.com", "password": "nope-nope"}
    )
    unknown = await client.post(
        "/v1/auth/login", json={"email": "ghost@example.com", "password": "hunter22"}
    )
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"error": "Invalid email or password"}


@pytest.mark.asyncio
async def test_me_requires_token(client):
    resp = await client.get("/v1/me")
    assert resp.status_code == 401

    resp = await client.get("/v1/me", headers=auth_header("garbage"))
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid or expired token"


@pytest.mark.asyncio
async def test_token_for_deleted_user_is_rejected(client):
    resp = await client.get("/v1/me", headers=auth_header(issue_token("us_doesnotexist")))
    assert resp.status_code == 401
    assert resp.json()["error"] == "User no longer exists"


@pytest.mark.asyncio
async def test_update_profile(client):
    user = await register_user(client, "p@example.com", "tasker", "Pat")
    resp = await client.patch(
        "/v1/me",
        json={"bio": "  Handy with tools  ", "last_name": "Smith"},
        headers=auth_header(user["token"]),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["bio"] == "Handy with tools"
    assert data["last_name"] == "Smith"
    assert data["first_name"] == "Pat"


@pytest.mark.asyncio
async def test_update_profile_rejects_null_and_blank_names(client):
    user = await register_user(client, "p@example.com", "tasker", "Pat")
    for body in ({"first_name": None}, {"first_name": "   "}, {"last_name": None}):
        resp = await client.patch("/v1/me", json=body, headers=auth_header(user["token"]))
        assert resp.status_code == 400, body

    resp = await client.get("/v1/me", headers=auth_header(user["token"]))
    assert resp.json()["first_name"] == "Pat"


@pytest.mark.asyncio
async def test_change_password(client):
    user = await register_user(client, "pw@example.com", password="secret123")
    hdr = auth_header(user["token"])

    resp = await client.post(
        "/v1/me/password",
        json={"current_password": "wrong-one", "new_password": "another1"},
        headers=hdr,
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Current password is incorrect"}

    resp = await client.post(
        "/v1/me/password",
        json={"current_password": "secret123", "new_password": "short"},
        headers=hdr,
    )
    assert resp.status_code == 400

    resp = await client.post(
        "/v1/me/password",
        json={"current_password": "secret123", "new_password": "another1"},
        headers=hdr,
    )
    assert resp.status_code == 204

    resp = await client.post(
        "/v1/auth/login", json={"email": "pw@example.com", "password": "secret123"}
    )
    assert resp.status_code == 401
    resp = await client.post(
        "/v1/auth/login", json={"email": "pw@example.com", "password": "another1"}
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_change_password_requires_token(client):
    resp = await client.post(
        "/v1/me/password", json={"current_password": "secret123", "new_password": "another1"}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_update_profile_rejects_role_change(client):
    user = await register_user(client, "p@example.com", "tasker")
    resp = await client.patch(
        "/v1/me", json={"role": "client"}, headers=auth_header(user["token"])
    )
    assert resp.status_code == 400

    resp = await client.get("/v1/me", headers=auth_header(user["token"]))
    assert resp.json()["role"] == "tasker"


@pytest.mark.asyncio
async def test_public_profile_hides_email(client):
    user = await register_user(client, "pub@example.com", "tasker")
    viewer = await register_user(client, "viewer@example.com")
    resp = await client.get(f"/v1/users/{user['id']}", headers=auth_header(viewer["token"]))
    assert resp.status_code == 200
    data = resp.json()
    assert "email" not in data
    assert data["is_online"] is False

    resp = await client.get("/v1/users/us_missing")
    assert resp.status_code == 404


def test_token_roundtrip():
    assert resolve_caller(issue_token("us_abc")) == "us_abc"


def test_tampered_token_rejected():
    head, _, sig = issue_token("us_abc").split(".")
    _, forged, _ = issue_token("us_evil").split(".")
    with pytest.raises(Unauthenticated):
        resolve_caller(f"{head}.{forged}.{sig}")


def test_bearer_header_parsing():
    assert bearer_token("Bearer abc.def") == "abc.def"
    with pytest.raises(Unauthenticated):
        bearer_token("Token abc")
    with pytest.raises(Unauthenticated):
        bearer_token(None)
