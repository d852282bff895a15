"""Tests for the activity feeds."""

from __future__ import annotations

import pytest

FEED = "/api/v1/activity"
WEB_APP = "/api/v1/repositories/acme/web-app"


async def _push(client, repo, path, headers):
    resp = await client.put(f"/api/v1/repositories/{repo}/contents/{path}", json={"content": "x"}, headers=headers)
    assert resp.status_code == 201
    return resp


@pytest.mark.asyncio
async def test_writes_are_recorded(client, alice, bob):
    await client.post(f"{WEB_APP}/issues", json={"title": "Flaky test"}, headers=bob)
    await client.post(f"{WEB_APP}/issues/1/comments", json={"body": "On it"}, headers=alice)

    events = (await client.get(f"{WEB_APP}/activity")).json()["data"]["activities"]
    assert [(e["type"], e["actor"]["username"]) for e in events] == [
        ("issue_comment", "alice"), ("issues", "bob"),
    ]
    assert events[1]["payload"] == {"action": "opened", "number": 5, "title": "Flaky test"}
    assert events[0]["repository"]["full_name"] == "acme/web-app"


@pytest.mark.asyncio
async def test_state_changes_are_recorded(client, alice, bob):
    await client.post(f"{WEB_APP}/issues/1/close", headers=alice)
    await client.post(f"{WEB_APP}/issues/1/close", headers=alice)
    await client.patch(f"{WEB_APP}/pulls/3", json={"state": "closed"}, headers=bob)

    events = (await client.get(f"{WEB_APP}/activity")).json()["data"]["activities"]
    # Closing an already closed issue changes nothing
    assert [(e["type"], e["payload"]["action"]) for e in events] == [
        ("pull_request", "closed"), ("issues", "closed"),
    ]


@pytest.mark.asyncio
async def test_repository_creation_is_recorded(client, carol):
    resp = await client.post("/api/v1/repositories", json={"name": "sandbox"}, headers=carol)
    assert resp.status_code == 201
    events = (await client.get("/api/v1/repositories/carol/sandbox/activity")).json()["data"]["activities"]
    assert [e["type"] for e in events] == ["create"]
    assert events[0]["payload"] == {"ref_type": "repository", "private": False}


@pytest.mark.asyncio
async def test_feed_filters(client, alice, bob, carol):
    await _push(client, "acme/web-app", "alice.md", alice)
    await client.post(f"{WEB_APP}/issues", json={"title": "From bob"}, headers=bob)
    await client.post("/api/v1/repositories", json={"name": "sandbox"}, headers=carol)

    everything = (await client.get(FEED, headers=alice)).json()["data"]["activities"]
    assert [e["actor"]["username"] for e in everything] == ["carol", "bob", "alice"]

    own = (await client.get(f"{FEED}?filter=own", headers=alice)).json()["data"]["activities"]
    assert [e["type"] for e in own] == ["push"]

    # Other people's activity in repositories alice has a role in; carol/sandbox is not one
    following = (await client.get(f"{FEED}?filter=following", headers=alice)).json()["data"]["activities"]
    assert [(e["actor"]["username"], e["type"]) for e in following] == [("bob", "issues")]

    by_type = (await client.get(f"{FEED}?type=create", headers=alice)).json()["data"]["activities"]
    assert [e["repository"]["full_name"] for e in by_type] == ["carol/sandbox"]


@pytest.mark.asyncio
async def test_feed_hides_private_repositories(client, alice, carol):
    await _push(client, "acme/infra", "vars.tf", alice)
    await _push(client, "acme/web-app", "public.md", alice)

    anonymous = (await client.get(FEED)).json()["data"]["activities"]
    assert [e["repository"]["full_name"] for e in anonymous] == ["acme/web-app"]
    outsider = (await client.get(FEED, headers=carol)).json()["data"]["activities"]
    assert [e["repository"]["full_name"] for e in outsider] == ["acme/web-app"]
    member = (await client.get(FEED, headers=alice)).json()["data"]["activities"]
    assert [e["repository"]["full_name"] for e in member] == ["acme/web-app", "acme/infra"]

    assert (await client.get("/api/v1/repositories/acme/infra/activity", headers=carol)).status_code == 404


@pytest.mark.asyncio
async def test_feed_rejects_bad_parameters(client, alice):
    assert (await client.get(f"{FEED}?filter=own")).status_code == 400
    assert (await client.get(f"{FEED}?filter=following")).status_code == 400
    assert (await client.get(f"{FEED}?filter=starred", headers=alice)).status_code == 400
    bad_type = await client.get(f"{FEED}?type=fork", headers=alice)
    assert bad_type.status_code == 400
    assert "type" in bad_type.json()["validation_errors"]


@pytest.mark.asyncio
async def test_repository_activity_filters(client, alice, bob):
    await _push(client, "acme/web-app", "one.md", alice)
    await client.post(f"{WEB_APP}/issues", json={"title": "From bob"}, headers=bob)

    pushes = (await client.get(f"{WEB_APP}/activity?activity_type=push")).json()["data"]["activities"]
    assert [e["actor"]["username"] for e in pushes] == ["alice"]
    by_bob = (await client.get(f"{WEB_APP}/activity?actor=BOB")).json()["data"]["activities"]
    assert [e["type"] for e in by_bob] == ["issues"]

    since = (await client.get(f"{WEB_APP}/activity?since=2000-01-01T00:00:00Z")).json()["data"]
    assert since["total"] == 2
    future = (await client.get(f"{WEB_APP}/activity?since=2999-01-01T00:00:00Z")).json()["data"]
    assert future["total"] == 0
    past = (await client.get(f"{WEB_APP}/activity?until=2000-01-01")).json()["data"]
    assert past["total"] == 0


@pytest.mark.asyncio
async def test_repository_activity_rejects_bad_parameters(client):
    resp = await client.get(f"{WEB_APP}/activity?since=yesterday&until=soon&activity_type=fork")
    assert resp.status_code == 400
    assert set(resp.json()["validation_errors"]) == {"since", "until", "activity_type"}


@pytest.mark.asyncio
async def test_activity_pagination(client, alice):
    for n in range(3):
        await _push(client, "acme/web-app", f"page-{n}.md", alice)
    data = (await client.get(f"{WEB_APP}/activity?per_page=2&page=2")).json()["data"]
    assert data["total"] == 3
    assert data["total_pages"] == 2
    assert [e["payload"]["commits"][0]["message"] for e in data["activities"]] == ["Create page-0.md"]


@pytest.mark.asyncio
async def test_deleted_repository_leaves_the_feed(client, alice):
    await _push(client, "alice/dotfiles", "vimrc", alice)
    assert len((await client.get(f"{FEED}?filter=own", headers=alice)).json()["data"]["activities"]) == 1
    assert (await client.delete("/api/v1/repositories/alice/dotfiles", headers=alice)).status_code == 200
    assert (await client.get(f"{FEED}?filter=own", headers=alice)).json()["data"]["activities"] == []
