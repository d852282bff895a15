"""Tests for organizations, members, invitations and the audit log."""

from __future__ import annotations

import asyncio

import pytest

BASE = "/api/v1/organizations/acme"


async def _member_ids(client, headers) -> dict[str, str]:
    members = (await client.get(f"{BASE}/members", headers=headers)).json()["data"]["members"]
    return {m["username"]: m["id"] for m in members}


@pytest.mark.asyncio
async def test_list_and_get(client, alice, carol):
    orgs = (await client.get("/api/v1/organizations")).json()["data"]
    assert [o["slug"] for o in orgs["organizations"]] == ["acme"]

    org = (await client.get(BASE, headers=alice)).json()["data"]
    assert org["role"] == "owner"
    assert org["memberCount"] == 2
    assert org["settings"]["visibility"] == "public"
    assert (await client.get(BASE, headers=carol)).json()["data"]["role"] is None


@pytest.mark.asyncio
async def test_missing_org(client):
    resp = await client.get("/api/v1/organizations/nope")
    assert resp.status_code == 404
    assert resp.json()["error"] == "Organization not found"


@pytest.mark.asyncio
async def test_create_organization(client, carol):
    resp = await client.post("/api/v1/organizations", json={"name": "Carol Labs"}, headers=carol)
    assert resp.status_code == 201
    org = resp.json()["data"]
    assert org["slug"] == "carol-labs"
    assert (await client.get("/api/v1/organizations/carol-labs", headers=carol)).json()["data"]["role"] == "owner"

    dup = await client.post("/api/v1/organizations", json={"name": "Acme"}, headers=carol)
    assert dup.status_code == 409


@pytest.mark.asyncio
async def test_concurrent_creates_of_one_slug(client, carol, bob):
    responses = await asyncio.gather(
        client.post("/api/v1/organizations", json={"name": "Twin Labs"}, headers=carol),
        client.post("/api/v1/organizations", json={"name": "Twin Labs"}, headers=bob),
    )
    assert sorted(r.status_code for r in responses) == [201, 409]


@pytest.mark.asyncio
async def test_create_organization_validation(client, carol):
    resp = await client.post(
        "/api/v1/organizations",
        json={"name": " ", "slug": "Bad Slug", "website": "ftp://x", "visibility": "hidden"},
        headers=carol,
    )
    assert resp.status_code == 400
    assert set(resp.json()["validation_errors"]) == {"name", "slug", "website", "visibility"}


@pytest.mark.asyncio
async def test_update_requires_admin(client, alice, bob):
    denied = await client.patch(BASE, json={"description": "x"}, headers=bob)
    assert denied.status_code == 403
    resp = await client.patch(BASE, json={"description": "Rockets", "location": "Mars"}, headers=alice)
    assert resp.json()["data"]["description"] == "Rockets"
    assert resp.json()["data"]["location"] == "Mars"


@pytest.mark.asyncio
async def test_settings_round_trip_and_audit(client, alice, bob, carol):
    assert (await client.get(f"{BASE}/settings", headers=carol)).status_code == 403
    assert (await client.get(f"{BASE}/settings", headers=bob)).status_code == 200

    resp = await client.put(f"{BASE}/settings", json={"memberVisibility": "private"}, headers=alice)
    assert resp.json()["data"]["memberVisibility"] == "private"

    hidden = await client.get(f"{BASE}/members", headers=carol)
    assert hidden.status_code == 403

    logs = (await client.get(f"{BASE}/audit-logs?event=org.settings_updated", headers=alice)).json()["data"]
    assert logs["total"] == 1
    assert logs["logs"][0]["details"] == {"memberVisibility": {"from": "public", "to": "private"}}

    bad = await client.put(f"{BASE}/settings", json={"visibility": "secret"}, headers=alice)
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_member_emails_only_for_admins(client, alice, bob):
    as_admin = (await client.get(f"{BASE}/members", headers=alice)).json()["data"]["members"]
    assert all("email" in m for m in as_admin)
    as_member = (await client.get(f"{BASE}/members", headers=bob)).json()["data"]["members"]
    assert all("email" not in m for m in as_member)
    owners = (await client.get(f"{BASE}/members?role=owner", headers=bob)).json()["data"]["members"]
    assert [m["username"] for m in owners] == ["alice"]


@pytest.mark.asyncio
async def test_role_changes(client, alice, bob):
    ids = await _member_ids(client, alice)

    # Admins cannot touch the owner role; only owners can
    resp = await client.patch(f"{BASE}/members/{ids['bob']}", json={"role": "admin"}, headers=alice)
    assert resp.json()["data"]["role"] == "admin"
    denied = await client.patch(f"{BASE}/members/{ids['alice']}", json={"role": "member"}, headers=bob)
    assert denied.status_code == 403

    last_owner = await client.patch(f"{BASE}/members/{ids['alice']}", json={"role": "member"}, headers=alice)
    assert last_owner.status_code == 409

    bad = await client.patch(f"{BASE}/members/{ids['bob']}", json={"role": "king"}, headers=alice)
    assert bad.status_code == 400
    missing = await client.patch(f"{BASE}/members/nobody", json={"role": "member"}, headers=alice)
    assert missing.status_code == 404

    logs = (await client.get(f"{BASE}/audit-logs?event=member.role_changed", headers=alice)).json()["data"]
    assert logs["logs"][0]["target"] == "bob"
    assert logs["logs"][0]["details"] == {"from": "member", "to": "admin"}


@pytest.mark.asyncio
async def test_remove_members(client, alice, bob):
    ids = await _member_ids(client, alice)
    assert (await client.delete(f"{BASE}/members/{ids['alice']}", headers=alice)).status_code == 409
    assert (await client.delete(f"{BASE}/members/{ids['alice']}", headers=bob)).status_code == 403

    # Members may leave on their own
    assert (await client.delete(f"{BASE}/members/{ids['bob']}", headers=bob)).status_code == 200
    assert "bob" not in await _member_ids(client, alice)
    assert (await client.get("/api/v1/repositories/acme/infra", headers=bob)).status_code == 404


@pytest.mark.asyncio
async def test_invitation_flow(client, alice, carol):
    resp = await client.post(
        f"{BASE}/invitations", json={"email": "Carol@Example.com", "teams": ["engineering"]}, headers=alice
    )
    assert resp.status_code == 201
    invitation = resp.json()["data"]
    assert invitation["email"] == "carol@example.com"

    dup = await client.post(f"{BASE}/invitations", json={"email": "carol@example.com"}, headers=alice)
    assert dup.status_code == 409

    pending = (await client.get(f"{BASE}/invitations", headers=alice)).json()["data"]["items"]
    assert [i["id"] for i in pending] == [invitation["id"]]

    # Only the invited address can accept
    wrong_user = await client.post(f"/api/v1/invitations/{invitation['id']}/accept", headers=alice)
    assert wrong_user.status_code == 404

    accepted = await client.post(f"/api/v1/invitations/{invitation['id']}/accept", headers=carol)
    assert accepted.status_code == 200
    assert accepted.json()["data"]["role"] == "member"
    assert (await client.get("/api/v1/repositories/acme/infra", headers=carol)).status_code == 200
    assert (await client.get(f"{BASE}/invitations", headers=alice)).json()["data"]["items"] == []

    team = (await client.get(f"{BASE}/teams/engineering", headers=carol)).json()["data"]
    assert "carol" in [m["username"] for m in team["members"]]


@pytest.mark.asyncio
async def test_invitation_validation(client, alice, bob):
    resp = await client.post(
        f"{BASE}/invitations", json={"email": "not-an-email", "role": "king", "teams": ["ghosts"]}, headers=alice
    )
    assert resp.status_code == 400
    assert set(resp.json()["validation_errors"]) == {"email", "role", "teams"}

    member = await client.post(f"{BASE}/invitations", json={"email": "bob@example.com"}, headers=alice)
    assert member.status_code == 409

    not_admin = await client.post(f"{BASE}/invitations", json={"email": "x@example.com"}, headers=bob)
    assert not_admin.status_code == 403


@pytest.mark.asyncio
async def test_two_factor_requirement_blocks_accept(client, alice, carol):
    await client.put(f"{BASE}/settings", json={"requireTwoFactor": True}, headers=alice)
    invitation = (await client.post(f"{BASE}/invitations", json={"email": "carol@example.com"}, headers=alice)).json()["data"]
    resp = await client.post(f"/api/v1/invitations/{invitation['id']}/accept", headers=carol)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_audit_log_requires_admin(client, bob):
    assert (await client.get(f"{BASE}/audit-logs", headers=bob)).status_code == 403


@pytest.mark.asyncio
async def test_analytics(client, alice):
    resp = await client.get(f"{BASE}/analytics?period=7d", headers=alice)
    assert resp.status_code == 200
    data = resp.json()["data"]
    overview = data["overview"]
    assert overview["total_members"] == 2
    assert overview["total_repositories"] == 3
    assert overview["issues_open"] == 1
    assert overview["pull_requests_open"] == 2
    assert data["workflow_runs"]["success"] == 1
    assert data["workflow_runs"]["in_progress"] == 1
    assert data["top_repositories"][0]["name"] == "web-app"

    bad = await client.get(f"{BASE}/analytics?period=1y", headers=alice)
    assert bad.status_code == 400
