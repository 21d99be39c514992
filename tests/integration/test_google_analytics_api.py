"""Integration tests for Google Analytics connection endpoints."""

import pytest
from httpx import AsyncClient

from tests.conftest import PROPERTY_ID, USER_ID, auth


class TestAuthFlow:
    """Tests for the OAuth connect flow."""

    @pytest.mark.asyncio
    async def test_auth_url(self, client: AsyncClient):
        response = await client.get("/api/v1/google-analytics/auth-url", headers=auth())

        assert response.status_code == 200
        data = response.json()
        assert data["auth_url"].startswith("https://accounts.google.com/")
        assert f"state={data['state']}" in data["auth_url"]

    @pytest.mark.asyncio
    async def test_callback_stores_tokens(self, client: AsyncClient, credential_store):
        response = await client.post(
            "/api/v1/google-analytics/callback", json={"code": "good-code"}, headers=auth()
        )

        assert response.status_code == 200
        assert response.json()["connected"] is True
        assert (await credential_store.load_tokens(USER_ID)).refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_callback_rejected_code(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/google-analytics/callback", json={"code": "bad-code"}, headers=auth()
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_disconnect(self, client: AsyncClient, credential_store, connected_user):
        response = await client.delete("/api/v1/google-analytics/connection", headers=auth())

        assert response.status_code == 200
        assert response.json()["revoked"] is True
        assert await credential_store.load_tokens(USER_ID) is None


class TestProperties:
    """Tests for GET /api/v1/google-analytics/properties"""

    @pytest.mark.asyncio
    async def test_lists_properties(self, client: AsyncClient, connected_user):
        response = await client.get("/api/v1/google-analytics/properties", headers=auth())

        assert response.status_code == 200
        assert [p["name"] for p in response.json()["properties"]] == [PROPERTY_ID]

    @pytest.mark.asyncio
    async def test_not_connected(self, client: AsyncClient):
        response = await client.get("/api/v1/google-analytics/properties", headers=auth())
        assert response.status_code == 404
