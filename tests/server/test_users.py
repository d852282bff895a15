"""Tests for user profiles and user search."""

from __future__ import annotations

import pytest


@pytest.mark.asyncio
async def test_profile_hides_email_from_others(client, alice, bob):
    own = (await client.get("/api/v1/users/alice", headers=alice)).json()["data"]
    assert own["email"] == "alice@example.com"
    other = (await client.get("/api/v1/users/alice", headers=bob)).json()["data"]
    assert "email" not in other
    assert other["name"] == "Alice Admin"


@pytest.mark.asyncio
async def test_unknown_user(client):
    resp = await client.get("/api/v1/users/ghost")
    assert resp.status_code == 404
    assert resp.json()["error"] == "User not found"


@pytest.mark.asyncio
async def test_update_profile(client, alice):
    resp = await client.patch("/api/v1/user", json={"bio": "Ships things", "location": "Lisbon"}, headers=alice)
    assert resp.status_code == 200
    assert resp.json()["data"]["bio"] == "Ships things"
    assert (await client.get("/api/v1/users/alice")).json()["data"]["location"] == "Lisbon"


@pytest.mark.asyncio
async def test_update_validates_every_field(client, alice):
    resp = await client.patch(
        "/api/v1/user",
        json={"email": "nope", "website": "gopher://x", "preferred_mfa": "sms", "bio": "kept?"},
        headers=alice,
    )
    assert resp.status_code == 400
    assert set(resp.json()["validation_errors"]) == {"email", "website", "preferred_mfa"}
    # Nothing was written
    assert (await client.get("/api/v1/users/alice")).json()["data"]["bio"] is None


@pytest.mark.asyncio
async def test_email_conflict(client, alice):
    resp = await client.patch("/api/v1/user", json={"email": "bob@example.com"}, headers=alice)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_update_requires_auth(client):
    assert (await client.patch("/api/v1/user", json={"bio": "x"})).status_code == 401


@pytest.mark.asyncio
async def test_search_users(client):
    data = (await client.get("/api/v1/users/search?q=builder")).json()["data"]
    assert [u["username"] for u in data["users"]] == ["bob"]
    assert all("email" not in u for u in data["users"])

    ordered = (await client.get("/api/v1/users/search?sort=username&order=asc&per_page=2")).json()["data"]
    assert [u["username"] for u in ordered["users"]] == ["alice", "bob"]
    assert ordered["total"] == 5
