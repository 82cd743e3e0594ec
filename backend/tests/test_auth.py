# tests/test_auth.py - Token exchange, bearer tokens and API keys
from datetime import timedelta

import pytest
from httpx import AsyncClient

from auth import AuthService
from tests.conftest import get_auth_headers


@pytest.mark.asyncio
async def test_token_exchange_and_me(client: AsyncClient, test_user):
    """An OSM request token is exchanged for a bearer token"""
    resp = await client.post("/api/v2/auth/token", json={"token": "token-2000", "secret": "secret-2000"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["token_type"] == "bearer"
    assert data["user"]["id"] == test_user.id
    assert "request_token" not in data["user"]["osm_profile"]

    me = await client.get(
        "/api/v2/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"}
    )
    assert me.status_code == 200
    assert me.json()["osm_profile"]["display_name"] == "Mapper"
    assert me.json()["is_super_user"] is False


@pytest.mark.asyncio
async def test_token_exchange_with_user_id(client: AsyncClient, test_user, other_user):
    resp = await client.post(
        "/api/v2/auth/token",
        json={"token": "token-2000", "secret": "secret-2000", "user_id": test_user.id},
    )
    assert resp.status_code == 200

    # the token belongs to a different user
    resp = await client.post(
        "/api/v2/auth/token",
        json={"token": "token-2000", "secret": "secret-2000", "user_id": other_user.id},
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_token_exchange_wrong_secret(client: AsyncClient, test_user):
    resp = await client.post("/api/v2/auth/token", json={"token": "token-2000", "secret": "nope"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_me_requires_authentication(client: AsyncClient):
    resp = await client.get("/api/v2/auth/me")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_invalid_and_expired_tokens(client: AsyncClient, test_user):
    resp = await client.get("/api/v2/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401

    expired = AuthService.create_access_token({"sub": str(test_user.id)}, expires_delta=timedelta(seconds=-10))
    resp = await client.get("/api/v2/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token expired"


@pytest.mark.asyncio
async def test_token_for_deleted_user(client: AsyncClient):
    token = AuthService.create_access_token({"sub": "999999"})
    resp = await client.get("/api/v2/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_api_key_authentication(client: AsyncClient, test_user):
    resp = await client.get(f"/api/v2/user/{test_user.id}/apikey", headers=get_auth_headers(test_user))
    assert resp.status_code == 200
    api_key = resp.json()["api_key"]
    assert api_key.startswith(f"{test_user.id}|mr_")

    me = await client.get("/api/v2/auth/me", headers={"apiKey": api_key})
    assert me.status_code == 200
    assert me.json()["id"] == test_user.id


@pytest.mark.asyncio
async def test_regenerated_api_key_replaces_old_one(client: AsyncClient, test_user):
    headers = get_auth_headers(test_user)
    first = (await client.get(f"/api/v2/user/{test_user.id}/apikey", headers=headers)).json()["api_key"]
    second = (await client.get(f"/api/v2/user/{test_user.id}/apikey", headers=headers)).json()["api_key"]
    assert first != second

    assert (await client.get("/api/v2/auth/me", headers={"apiKey": first})).status_code == 401
    assert (await client.get("/api/v2/auth/me", headers={"apiKey": second})).status_code == 200


@pytest.mark.asyncio
async def test_bad_api_keys(client: AsyncClient, test_user):
    resp = await client.get("/api/v2/auth/me", headers={"apiKey": f"{test_user.id}|mr_wrong"})
    assert resp.status_code == 401
    resp = await client.get("/api/v2/auth/me", headers={"apiKey": "no-separator"})
    assert resp.status_code == 401
    resp = await client.get("/api/v2/auth/me", headers={"apiKey": "abc|key"})
    assert resp.status_code == 401


def test_parse_api_key():
    assert AuthService.parse_api_key("12|mr_abc|def") == (12, "mr_abc|def")


def test_generated_keys_are_hashed():
    raw, digest, prefix = AuthService.generate_api_key()
    assert raw.startswith("mr_")
    assert digest == AuthService.hash_api_key(raw)
    assert raw.startswith(prefix)
    assert digest != raw
