"""Tests for the notification inbox and notification fan-out."""

from __future__ import annotations

import pytest

from fakehub.services.notification_service import mentioned_usernames

BASE = "/api/v1/notifications"
WEB_APP = "/api/v1/repositories/acme/web-app"


async def _inbox(client, headers, filter="all"):
    return (await client.get(f"{BASE}?filter={filter}", headers=headers)).json()["data"]


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unread_by_default(client, alice):
    resp = await client.get(BASE, headers=alice)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert [n["title"] for n in data["notifications"]] == ["Crash on login"]
    assert data["unread_count"] == 1
    assert data["notifications"][0]["repository"]["full_name"] == "acme/web-app"


@pytest.mark.asyncio
async def test_filters(client, alice):
    everything = await _inbox(client, alice)
    assert [n["repository"]["name"] for n in everything["notifications"]] == ["web-app", "api-server", "infra"]
    assert everything["unread_count"] == 1
    read = everything["notifications"][1]
    assert read["unread"] is False
    assert read["last_read_at"] == read["updated_at"]

    participating = await _inbox(client, alice, "participating")
    assert [n["reason"] for n in participating["notifications"]] == ["assigned"]

    assert (await client.get(f"{BASE}?filter=starred", headers=alice)).status_code == 400
    assert (await client.get(BASE)).status_code == 401


@pytest.mark.asyncio
async def test_inboxes_are_private(client, alice, bob):
    notification_id = (await _inbox(client, alice))["notifications"][0]["id"]
    assert (await client.get(f"{BASE}/{notification_id}", headers=alice)).status_code == 200
    assert (await client.get(f"{BASE}/{notification_id}", headers=bob)).status_code == 404
    assert (await client.patch(f"{BASE}/{notification_id}", json={}, headers=bob)).status_code == 404
    assert (await client.delete(f"{BASE}/{notification_id}", headers=bob)).status_code == 404
    assert [n["reason"] for n in (await _inbox(client, bob))["notifications"]] == ["review_requested"]


@pytest.mark.asyncio
async def test_mark_read_and_unread(client, alice):
    notification_id = (await _inbox(client, alice, "unread"))["notifications"][0]["id"]

    read = await client.patch(f"{BASE}/{notification_id}", headers=alice)
    assert read.status_code == 200
    assert read.json()["data"]["unread"] is False
    assert read.json()["data"]["last_read_at"] is not None
    assert (await _inbox(client, alice, "unread"))["unread_count"] == 0

    unread = await client.patch(f"{BASE}/{notification_id}", json={"unread": True}, headers=alice)
    assert unread.json()["data"]["unread"] is True
    assert (await _inbox(client, alice, "unread"))["unread_count"] == 1


@pytest.mark.asyncio
async def test_bulk_mark(client, alice):
    everything = (await _inbox(client, alice))["notifications"]
    resp = await client.patch(BASE, json={"unread": True}, headers=alice)
    # Only the two read ones change
    assert resp.json()["data"] == {"updated": 2}
    assert (await _inbox(client, alice, "unread"))["unread_count"] == 3

    resp = await client.patch(BASE, json={"ids": [everything[0]["id"], "missing"]}, headers=alice)
    assert resp.json()["data"] == {"updated": 1}
    assert (await _inbox(client, alice, "unread"))["unread_count"] == 2


@pytest.mark.asyncio
async def test_delete(client, alice):
    notification_id = (await _inbox(client, alice))["notifications"][0]["id"]
    assert (await client.delete(f"{BASE}/{notification_id}", headers=alice)).status_code == 200
    assert (await client.get(f"{BASE}/{notification_id}", headers=alice)).status_code == 404
    assert (await client.delete(f"{BASE}/{notification_id}", headers=alice)).status_code == 404


@pytest.mark.asyncio
async def test_cleanup_removes_old_read_notifications(client, alice):
    resp = await client.post("/api/v1/user/notifications/cleanup", json={"older_than_days": 30}, headers=alice)
    assert resp.status_code == 200
    assert resp.json()["data"] == {"deleted": 2}
    assert [n["reason"] for n in (await _inbox(client, alice))["notifications"]] == ["assigned"]

    bad = await client.post("/api/v1/user/notifications/cleanup", json={"older_than_days": -1}, headers=alice)
    assert bad.status_code == 400


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_new_issue_notifies_assignees_and_mentions(client, alice, bob, carol):
    resp = await client.post(
        f"{WEB_APP}/issues",
        json={"title": "Broken build", "body": "cc @carol and @bob, mail bob@example.com", "assignees": ["alice"]},
        headers=bob,
    )
    assert resp.status_code == 201

    newest = (await _inbox(client, alice))["notifications"][0]
    assert newest["reason"] == "assigned"
    assert newest["subject"] == {
        "title": "Broken build #5", "url": "/repositories/acme/web-app/issues/5", "type": "issue",
    }
    assert [n["reason"] for n in (await _inbox(client, carol))["notifications"]] == ["mentioned"]
    # bob mentioned himself
    assert len((await _inbox(client, bob))["notifications"]) == 1


@pytest.mark.asyncio
async def test_assignment_beats_mention(client, alice, bob):
    await client.post(
        f"{WEB_APP}/issues", json={"title": "Both", "body": "@alice please", "assignees": ["alice"]}, headers=bob
    )
    reasons = [n["reason"] for n in (await _inbox(client, alice))["notifications"]]
    assert reasons.count("assigned") == 2
    assert "mentioned" not in reasons


@pytest.mark.asyncio
async def test_mentions_in_private_repositories_skip_outsiders(client, alice, bob, carol):
    resp = await client.post(
        "/api/v1/repositories/acme/infra/issues", json={"title": "Rotate keys", "body": "@bob @carol"}, headers=alice
    )
    assert resp.status_code == 201
    assert [n["reason"] for n in (await _inbox(client, bob))["notifications"]] == ["mentioned", "review_requested"]
    assert (await _inbox(client, carol))["notifications"] == []


@pytest.mark.asyncio
async def test_later_assignment_notifies_new_assignees_only(client, alice, bob):
    await client.patch(f"{WEB_APP}/issues/1", json={"assignees": ["alice", "bob"]}, headers=alice)
    bob_inbox = (await _inbox(client, bob))["notifications"]
    assert bob_inbox[0]["reason"] == "assigned"
    assert bob_inbox[0]["title"] == "alice assigned you to issue #1"
    # alice was already assigned, and is the actor
    assert len((await _inbox(client, alice))["notifications"]) == 3


@pytest.mark.asyncio
async def test_comment_notifies_issue_author(client, alice, bob):
    await client.post(f"{WEB_APP}/issues/1/comments", json={"body": "Fixed in main"}, headers=alice)
    newest = (await _inbox(client, bob))["notifications"][0]
    assert newest["reason"] == "author"
    assert newest["title"] == "alice commented on issue #1"

    # Commenting on your own issue notifies nobody
    await client.post(f"{WEB_APP}/issues/1/comments", json={"body": "Thanks"}, headers=bob)
    assert len((await _inbox(client, bob))["notifications"]) == 2
    assert len((await _inbox(client, alice))["notifications"]) == 3


@pytest.mark.asyncio
async def test_review_notifies_pull_request_author(client, alice, bob):
    resp = await client.post(f"{WEB_APP}/pulls/3/reviews", json={"state": "approved"}, headers=alice)
    assert resp.status_code == 201
    newest = (await _inbox(client, bob))["notifications"][0]
    assert newest["reason"] == "author"
    assert newest["subject"]["url"] == "/repositories/acme/web-app/pulls/3"
    assert newest["subject"]["type"] == "pull_request"


@pytest.mark.asyncio
async def test_notifications_follow_repository_visibility(client, alice, bob, carol):
    await client.post(f"{WEB_APP}/issues", json={"title": "Ping", "body": "@carol"}, headers=bob)
    assert len((await _inbox(client, carol))["notifications"]) == 1

    resp = await client.put(WEB_APP, json={"private": True}, headers=alice)
    assert resp.status_code == 200
    data = await _inbox(client, carol)
    assert data["notifications"] == []
    assert data["unread_count"] == 0


class TestMentions:
    def test_mentions(self):
        assert mentioned_usernames("hi @alice and @bob-2, again @Alice") == ["alice", "bob-2"]

    def test_not_mentions(self):
        assert mentioned_usernames("mail me at carol@example.com or see a/@b") == []
        assert mentioned_usernames(None) == []
