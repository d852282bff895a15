"""Tests for repository webhooks and their recorded deliveries."""

from __future__ import annotations

import json

import pytest

from fakehub.services.webhook_service import MASKED_SECRET, sign
from tests.conftest import HOOK_SECRET

REPO = "/api/v1/repositories/acme/web-app"
BASE = f"{REPO}/hooks"


async def _hooks(client, headers) -> dict[str, dict]:
    return {h["name"]: h for h in (await client.get(BASE, headers=headers)).json()["data"]}


async def _deliveries(client, headers, hook_id) -> list[dict]:
    return (await client.get(f"{BASE}/{hook_id}/deliveries", headers=headers)).json()["data"]["deliveries"]


def _signed(delivery: dict, secret: str) -> bool:
    return delivery["signature"] == sign(secret, json.dumps(delivery["payload"], sort_keys=True))


@pytest.mark.asyncio
async def test_list_masks_secrets(client, alice):
    resp = await client.get(BASE, headers=alice)
    assert resp.status_code == 200
    hooks = resp.json()["data"]
    assert [h["name"] for h in hooks] == ["CI", "Paused"]
    ci, paused = hooks
    assert ci["config"] == {"url": "https://ci.example.com/hook", "content_type": "json", "secret": MASKED_SECRET}
    assert ci["events"] == ["push", "issues"]
    assert ci["ping_url"] == f"{BASE}/{ci['id']}/pings"
    assert "secret" not in paused["config"]
    assert paused["active"] is False


@pytest.mark.asyncio
async def test_admin_only(client, bob, carol):
    # bob can write to web-app but is not an admin
    assert (await client.get(BASE, headers=bob)).status_code == 403
    assert (await client.get(BASE, headers=carol)).status_code == 403
    assert (await client.get("/api/v1/repositories/acme/infra/hooks", headers=carol)).status_code == 404
    assert (await client.get(BASE)).status_code == 401


@pytest.mark.asyncio
async def test_create_validation(client, alice):
    resp = await client.post(
        BASE,
        json={"name": " ", "config": {"url": "ftp://example.com", "content_type": "xml"}, "events": ["fork"]},
        headers=alice,
    )
    assert resp.status_code == 400
    assert set(resp.json()["validation_errors"]) == {"name", "config.url", "config.content_type", "events"}

    no_events = await client.post(
        BASE, json={"name": "Empty", "config": {"url": "https://x.example.com"}, "events": []}, headers=alice
    )
    assert no_events.status_code == 400
    missing_config = await client.post(BASE, json={"name": "No config"}, headers=alice)
    assert missing_config.status_code == 400


@pytest.mark.asyncio
async def test_create_with_defaults(client, alice):
    resp = await client.post(
        BASE,
        json={"name": "Deploy", "config": {"url": "https://deploy.example.com"}, "events": ["push", "push"]},
        headers=alice,
    )
    assert resp.status_code == 201
    hook = resp.json()["data"]
    assert hook["config"] == {"url": "https://deploy.example.com", "content_type": "json"}
    assert hook["events"] == ["push"]
    assert hook["active"] is True
    assert (await client.get(f"{BASE}/{hook['id']}", headers=alice)).json()["data"]["name"] == "Deploy"

    logs = (await client.get("/api/v1/organizations/acme/audit-logs?event=hook.created", headers=alice)).json()["data"]
    assert logs["logs"][0]["details"] == {"hook_id": hook["id"], "url": "https://deploy.example.com"}


@pytest.mark.asyncio
async def test_ping_is_signed(client, alice):
    hooks = await _hooks(client, alice)
    resp = await client.post(f"{BASE}/{hooks['CI']['id']}/pings", headers=alice)
    assert resp.status_code == 200
    delivery = resp.json()["data"]
    assert delivery["event"] == "ping"
    assert delivery["payload"]["hook_id"] == hooks["CI"]["id"]
    assert delivery["payload"]["sender"]["username"] == "alice"
    assert _signed(delivery, HOOK_SECRET)

    # A ping reaches an inactive hook too, unsigned when it has no secret
    paused = (await client.post(f"{BASE}/{hooks['Paused']['id']}/pings", headers=alice)).json()["data"]
    assert paused["signature"] is None


@pytest.mark.asyncio
async def test_events_reach_subscribed_active_hooks(client, alice, bob):
    await client.post(f"{REPO}/issues", json={"title": "Hooked"}, headers=bob)
    await client.post(f"{REPO}/issues/1/comments", json={"body": "Not subscribed"}, headers=bob)
    await client.put(f"{REPO}/contents/hooked.md", json={"content": "x"}, headers=alice)

    hooks = await _hooks(client, alice)
    delivered = await _deliveries(client, alice, hooks["CI"]["id"])
    assert [d["event"] for d in delivered] == ["push", "issues"]
    assert delivered[1]["payload"]["payload"]["title"] == "Hooked"
    assert delivered[1]["payload"]["actor"]["username"] == "bob"
    assert all(_signed(d, HOOK_SECRET) for d in delivered)
    assert await _deliveries(client, alice, hooks["Paused"]["id"]) == []


@pytest.mark.asyncio
async def test_update_keeps_masked_secret(client, alice):
    hook_id = (await _hooks(client, alice))["CI"]["id"]
    resp = await client.patch(
        f"{BASE}/{hook_id}",
        json={"config": {"url": "https://ci.example.com/v2", "secret": MASKED_SECRET}, "events": ["*"]},
        headers=alice,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["config"]["url"] == "https://ci.example.com/v2"
    assert resp.json()["data"]["events"] == ["*"]
    ping = (await client.post(f"{BASE}/{hook_id}/pings", headers=alice)).json()["data"]
    assert _signed(ping, HOOK_SECRET)

    config = {"url": "https://ci.example.com/v2", "secret": "new"}
    await client.patch(f"{BASE}/{hook_id}", json={"config": config}, headers=alice)
    assert _signed((await client.post(f"{BASE}/{hook_id}/pings", headers=alice)).json()["data"], "new")

    config["secret"] = ""
    cleared = await client.patch(f"{BASE}/{hook_id}", json={"config": config}, headers=alice)
    assert "secret" not in cleared.json()["data"]["config"]
    assert (await client.post(f"{BASE}/{hook_id}/pings", headers=alice)).json()["data"]["signature"] is None


@pytest.mark.asyncio
async def test_update_validation(client, alice):
    hook_id = (await _hooks(client, alice))["CI"]["id"]
    resp = await client.patch(f"{BASE}/{hook_id}", json={"events": ["fork"], "active": None}, headers=alice)
    assert resp.status_code == 400
    assert set(resp.json()["validation_errors"]) == {"events", "active"}
    assert (await client.patch(f"{BASE}/missing", json={"active": False}, headers=alice)).status_code == 404


@pytest.mark.asyncio
async def test_delete(client, alice):
    hook_id = (await _hooks(client, alice))["Paused"]["id"]
    assert (await client.delete(f"{BASE}/{hook_id}", headers=alice)).status_code == 200
    assert (await client.get(f"{BASE}/{hook_id}", headers=alice)).status_code == 404
    assert (await client.post(f"{BASE}/{hook_id}/pings", headers=alice)).status_code == 404
    assert list(await _hooks(client, alice)) == ["CI"]

    logs = (await client.get("/api/v1/organizations/acme/audit-logs?event=hook.deleted", headers=alice)).json()["data"]
    assert logs["total"] == 1


@pytest.mark.asyncio
async def test_deliveries_are_paged(client, alice):
    hook_id = (await _hooks(client, alice))["CI"]["id"]
    pings = [(await client.post(f"{BASE}/{hook_id}/pings", headers=alice)).json()["data"]["id"] for _ in range(3)]
    data = (await client.get(f"{BASE}/{hook_id}/deliveries?per_page=2", headers=alice)).json()["data"]
    assert data["total"] == 3
    assert [d["id"] for d in data["deliveries"]] == pings[::-1][:2]
