"""Tests for bearer-token authentication and role checks."""
import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from httpx import AsyncClient

from backed.db.enums import PrincipalRole


@pytest.mark.asyncio
async def test_health_is_public(client: AsyncClient):
    """Health check needs no token."""
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["ai_configured"] is False


@pytest.mark.asyncio
async def test_feed_requires_token(client: AsyncClient):
    """Alumni endpoints reject anonymous callers."""
    response = await client.get("/feed/personalized")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_garbage_token_is_rejected(client: AsyncClient):
    response = await client.get(
        "/feed/personalized", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token"


@pytest.mark.asyncio
async def test_expired_token_is_rejected(client: AsyncClient, donor):
    """Expired tokens are rejected."""
    token = jwt.encode(
        {
            "sub": str(donor.user_id),
            "role": "alumni",
            "exp": datetime.now(timezone.utc) - timedelta(minutes=1),
        },
        "test-secret",
        algorithm="HS256",
    )
    response = await client.get(
        "/feed/personalized", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unknown_role_is_forbidden(client: AsyncClient):
    token = jwt.encode(
        {
            "sub": str(uuid.uuid4()),
            "role": "superuser",
            "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        },
        "test-secret",
        algorithm="HS256",
    )
    response = await client.get(
        "/feed/personalized", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_school_cannot_use_alumni_endpoints(client: AsyncClient, school_auth):
    """Role gating: schools have no feed."""
    response = await client.get("/feed/personalized", headers=school_auth.headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_alumni_without_profile(client: AsyncClient, make_auth):
    """A valid alumni token with no stored profile is a 404, not a crash."""
    auth = make_auth(uuid.uuid4(), PrincipalRole.ALUMNI)
    response = await client.get("/feed/personalized", headers=auth.headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_alumni_cannot_create_projects(client: AsyncClient, alumni_auth):
    response = await client.post(
        "/projects",
        json={"title": "x", "description": "y"},
        headers=alumni_auth.headers,
    )
    assert response.status_code == 403
