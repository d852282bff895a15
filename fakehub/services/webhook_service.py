"""Webhook configuration checks and recorded deliveries.

Nothing is sent over the network. Each delivery that would have gone out
is stored with its JSON body and, for hooks with a secret, the
``sha256=<hex>`` HMAC a receiver would check.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from urllib.parse import urlparse

import aiosqlite

from fakehub.db.queries import activity as activity_queries
from fakehub.db.queries import webhooks as hook_queries
from fakehub.errors import ValidationCollector
from fakehub.utils.crypto import decrypt

logger = logging.getLogger(__name__)

HOOK_EVENTS = (*activity_queries.EVENT_TYPES, "*")
CONTENT_TYPES = ("json", "form")
MASKED_SECRET = "********"


def public_hook(hook: dict, repo: dict) -> dict:
    base = f"/api/v1/repositories/{repo['full_name']}/hooks/{hook['id']}"
    config = {"url": hook["url"], "content_type": hook["content_type"]}
    if hook.get("secret"):
        config["secret"] = MASKED_SECRET
    return {
        "id": hook["id"],
        "name": hook["name"],
        "config": config,
        "events": hook["events"],
        "active": hook["active"],
        "ping_url": f"{base}/pings",
        "deliveries_url": f"{base}/deliveries",
        "created_at": hook["created_at"],
        "updated_at": hook["updated_at"],
    }


def check_config(fields: dict, errors: ValidationCollector) -> None:
    """Validate hook fields in place; ``fields`` uses the stored column names."""
    if "name" in fields and not (fields["name"] or "").strip():
        errors.add("name", "must not be empty")
    if "url" in fields:
        parsed = urlparse(fields["url"] or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.add("config.url", "must be an http or https URL")
    if "content_type" in fields and fields["content_type"] not in CONTENT_TYPES:
        errors.add("config.content_type", "must be 'json' or 'form'")
    if "events" in fields:
        events = fields["events"]
        if not events:
            errors.add("events", "must contain at least one event")
        else:
            unknown = [e for e in events if e not in HOOK_EVENTS]
            if unknown:
                errors.add("events", f"unknown events: {', '.join(unknown)}")
            fields["events"] = list(dict.fromkeys(events))
    if "active" in fields and fields["active"] is None:
        errors.add("active", "must be true or false")


def sign(secret: str, body: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


async def deliver(db: aiosqlite.Connection, hook: dict, event: str, payload: dict) -> dict:
    body = json.dumps(payload, sort_keys=True)
    signature = sign(decrypt(hook["secret"]), body) if hook.get("secret") else None
    delivery_id = await hook_queries.add_delivery(db, hook["id"], event, body, signature)
    logger.debug("Recorded %s delivery %s for hook %s", event, delivery_id, hook["id"])
    return await hook_queries.get_delivery(db, delivery_id)


async def dispatch(db: aiosqlite.Connection, repo_id: str, event: str, payload: dict) -> int:
    """Record a delivery for every active hook of the repository subscribed to ``event``."""
    delivered = 0
    for hook in await hook_queries.list_hooks(db, repo_id):
        if hook["active"] and (event in hook["events"] or "*" in hook["events"]):
            await deliver(db, hook, event, payload)
            delivered += 1
    return delivered
