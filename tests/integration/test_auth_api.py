"""Integration tests for /api/v1/auth endpoints."""

import pytest
from sqlalchemy import select

from src.kernel.models.user import User
from tests.factories import DEFAULT_PASSWORD


@pytest.mark.asyncio
class TestAuthAPI:
    """Sign-in over HTTP."""

    async def test_login_success(self, api):
        response = await api.client.post(
            "/api/v1/auth/login",
            json={"email": "admin@example.com", "password": DEFAULT_PASSWORD},
        )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["expires_in"] > 0
        assert data["user"]["email"] == "admin@example.com"
        assert "password_hash" not in data["user"]

    async def test_login_wrong_password(self, api):
        response = await api.client.post(
            "/api/v1/auth/login",
            json={"email": "admin@example.com", "password": "WrongPassword"},
        )

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    async def test_failed_attempts_survive_the_error(self, api):
        for _ in range(2):
            await api.client.post(
                "/api/v1/auth/login",
                json={"email": "admin@example.com", "password": "WrongPassword"},
            )

        async with api.session_maker() as session:
            admin = (await session.execute(select(User).where(User.email == "admin@example.com"))).scalar_one()
        assert admin.failed_login_attempts == 2

    async def test_me_requires_token(self, api):
        response = await api.client.get("/api/v1/auth/me")
        assert response.status_code == 401

    async def test_me_with_token(self, api):
        response = await api.client.get("/api/v1/auth/me", headers=api.auth("supervisor"))
        assert response.status_code == 200
        assert response.json()["role"] == "SUPERVISOR"

    async def test_bad_token(self, api):
        response = await api.client.get("/api/v1/auth/me", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
