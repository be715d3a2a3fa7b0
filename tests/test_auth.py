"""Authentication tests.

Tests password hashing, JWT creation and verification, and the auth
endpoints with the database session replaced by a mock.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient
from jose import jwt

from src.autosettle.config import get_settings
from src.autosettle.core.security import (
    create_access_token,
    create_refresh_token,
    hash_password,
    verify_password,
    verify_token,
)


# ── Password Hashing ──────────────────────────────────────────────────────────


def test_hash_and_verify_password():
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed) is True
    assert verify_password("wrong-pass", hashed) is False


def test_verify_password_with_non_bcrypt_hash():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


# ── JWT Tokens ────────────────────────────────────────────────────────────────


def test_access_token_claims():
    token = create_access_token({"sub": "user-1", "email": "a@example.com"})
    settings = get_settings()
    payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    assert payload["sub"] == "user-1"
    assert payload["email"] == "a@example.com"
    assert payload["type"] == "access"


def test_verify_token_round_trip():
    token = create_refresh_token({"sub": "user-1"})
    assert verify_token(token, token_type="refresh")["sub"] == "user-1"


def test_verify_token_rejects_wrong_type():
    token = create_refresh_token({"sub": "user-1"})
    with pytest.raises(HTTPException) as exc:
        verify_token(token, token_type="access")
    assert exc.value.status_code == 401


def test_verify_token_rejects_expired():
    token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-1))
    with pytest.raises(HTTPException) as exc:
        verify_token(token)
    assert exc.value.status_code == 401


def test_verify_token_rejects_garbage():
    with pytest.raises(HTTPException):
        verify_token("not.a.jwt")


def test_verify_token_requires_subject():
    token = create_access_token({"email": "a@example.com"})
    with pytest.raises(HTTPException):
        verify_token(token)


# ── Endpoint Fixtures ─────────────────────────────────────────────────────────


def _make_user(password: str = "correct-horse") -> MagicMock:
    user = MagicMock()
    user.id = uuid.uuid4()
    user.email = "owner@example.com"
    user.name = "Owner"
    user.hashed_password = hash_password(password)
    user.is_active = True
    user.created_at = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return user


def _mock_session(found_user) -> MagicMock:
    """AsyncSession whose SELECTs all return ``found_user``."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = found_user
    session = MagicMock()
    session.execute = AsyncMock(return_value=result)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    return session


@pytest_asyncio.fixture
async def make_client():
    """Factory for a client whose DB session returns a given user."""
    from fastapi import FastAPI

    from src.autosettle.api.deps import get_db
    from src.autosettle.api.v1.auth import router

    clients: list[AsyncClient] = []

    async def _factory(found_user, session: MagicMock | None = None) -> AsyncClient:
        session = session or _mock_session(found_user)
        app = FastAPI()
        app.include_router(router)

        async def _get_db():
            yield session

        app.dependency_overrides[get_db] = _get_db
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield _factory

    for client in clients:
        await client.aclose()


# ── Endpoint Tests ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_login_valid_credentials(make_client):
    user = _make_user()
    client = await make_client(user)

    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "Owner@Example.com", "password": "correct-horse"},
    )
    assert response.status_code == 200, response.text
    data = response.json()
    assert data["token_type"] == "bearer"
    assert verify_token(data["access_token"])["sub"] == str(user.id)
    assert verify_token(data["refresh_token"], token_type="refresh")["sub"] == str(user.id)


@pytest.mark.asyncio
async def test_login_invalid_password(make_client):
    client = await make_client(_make_user())

    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "owner@example.com", "password": "wrong-password"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_unknown_user(make_client):
    client = await make_client(None)

    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "nobody@example.com", "password": "whatever"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_signup_duplicate_email(make_client):
    client = await make_client(_make_user())

    response = await client.post(
        "/api/v1/auth/signup",
        json={"email": "owner@example.com", "password": "long-enough"},
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_signup_rejects_short_password(make_client):
    client = await make_client(None)

    response = await client.post(
        "/api/v1/auth/signup",
        json={"email": "new@example.com", "password": "short"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_signup_stores_lowercased_email(make_client):
    session = _mock_session(None)
    added = []

    def _add(user):
        user.id = uuid.uuid4()
        added.append(user)

    session.add = _add
    client = await make_client(None, session=session)

    response = await client.post(
        "/api/v1/auth/signup",
        json={"email": "New@Example.com", "password": "long-enough", "name": "New"},
    )
    assert response.status_code == 201, response.text
    assert response.json()["email"] == "new@example.com"
    assert added[0].email == "new@example.com"
    assert verify_password("long-enough", added[0].hashed_password)


@pytest.mark.asyncio
async def test_refresh_issues_new_tokens(make_client):
    user = _make_user()
    client = await make_client(user)
    refresh = create_refresh_token({"sub": str(user.id)})

    response = await client.post("/api/v1/auth/refresh", json={"refresh_token": refresh})
    assert response.status_code == 200
    assert verify_token(response.json()["access_token"])["sub"] == str(user.id)


@pytest.mark.asyncio
async def test_refresh_rejects_access_token(make_client):
    user = _make_user()
    client = await make_client(user)
    access = create_access_token({"sub": str(user.id)})

    response = await client.post("/api/v1/auth/refresh", json={"refresh_token": access})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_requires_bearer_token(make_client):
    client = await make_client(_make_user())

    response = await client.get("/api/v1/auth/me")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_returns_profile(make_client):
    user = _make_user()
    client = await make_client(user)
    token = create_access_token({"sub": str(user.id), "email": user.email})

    response = await client.get(
        "/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == str(user.id)
    assert data["email"] == "owner@example.com"


@pytest.mark.asyncio
async def test_me_rejects_non_uuid_subject(make_client):
    client = await make_client(_make_user())
    token = create_access_token({"sub": "not-a-uuid"})

    response = await client.get(
        "/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize("subject", [12345, ["a", "b"], {"id": 1}])
async def test_me_rejects_non_string_subject(make_client, subject):
    client = await make_client(_make_user())

    with patch(
        "src.autosettle.api.deps.verify_token",
        return_value={"sub": subject, "type": "access"},
    ):
        response = await client.get(
            "/api/v1/auth/me", headers={"Authorization": "Bearer signed-token"}
        )
    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize("subject", ["not-a-uuid", 12345, ["a", "b"]])
async def test_refresh_rejects_malformed_subject(make_client, subject):
    client = await make_client(_make_user())

    with patch(
        "src.autosettle.api.v1.auth.verify_token",
        return_value={"sub": subject, "type": "refresh"},
    ):
        response = await client.post(
            "/api/v1/auth/refresh", json={"refresh_token": "signed-token"}
        )
    assert response.status_code == 401
