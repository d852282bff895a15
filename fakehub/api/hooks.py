"""Repository webhooks: configuration, pings and the recorded deliveries."""

from __future__ import annotations

import logging

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import require_user
from fakehub.api.envelope import created, ok
from fakehub.db.database import get_db, get_locks
from fakehub.db.locks import EntityLocks
from fakehub.db.queries import webhooks as hook_queries
from fakehub.errors import NotFoundError, ValidationCollector
from fakehub.models.repository import WebhookCreate, WebhookUpdate
from fakehub.services import access, audit_service, webhook_service
from fakehub.services.pagination import paginate
from fakehub.utils.clock import now_iso
from fakehub.utils.crypto import encrypt

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/repositories/{owner}/{name}/hooks", tags=["hooks"])


async def _admin_repository(db: aiosqlite.Connection, owner: str, name: str, user: dict) -> dict:
    repo = await access.get_visible_repository(db, owner, name, user)
    await access.require_repository_admin(db, repo, user)
    return repo


async def _get_hook(db: aiosqlite.Connection, repo: dict, hook_id: str) -> dict:
    hook = await hook_queries.get_hook(db, repo["id"], hook_id)
    if not hook:
        raise NotFoundError("Webhook not found")
    return hook


async def _audit(db: aiosqlite.Connection, event: str, user: dict, repo: dict, hook: dict) -> None:
    if repo["owner_type"] == "organization":
        await audit_service.record(
            db, event, user, target=repo["full_name"], details={"hook_id": hook["id"], "url": hook["url"]},
            org_id=repo["owner_id"],
        )


@router.get("")
async def list_hooks(
    owner: str,
    name: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await _admin_repository(db, owner, name, user)
    return ok([webhook_service.public_hook(h, repo) for h in await hook_queries.list_hooks(db, repo["id"])])


@router.post("")
async def create_hook(
    owner: str,
    name: str,
    body: WebhookCreate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await _admin_repository(db, owner, name, user)
    fields = {
        "name": body.name.strip(),
        "url": body.config.url,
        "content_type": body.config.content_type,
        "events": body.events,
        "active": body.active,
    }
    errors = ValidationCollector()
    webhook_service.check_config(fields, errors)
    errors.raise_if_any()

    hook_id = await hook_queries.create_hook(
        db, repo["id"], fields["name"], fields["url"], fields["content_type"],
        encrypt(body.config.secret) if body.config.secret else None, fields["events"], fields["active"],
    )
    hook = await hook_queries.get_hook(db, repo["id"], hook_id)
    await _audit(db, "hook.created", user, repo, hook)
    logger.info("Webhook %s added to %s by %s", hook_id, repo["full_name"], user["username"])
    return created(webhook_service.public_hook(hook, repo))


@router.get("/{hook_id}")
async def get_hook(
    owner: str,
    name: str,
    hook_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await _admin_repository(db, owner, name, user)
    return ok(webhook_service.public_hook(await _get_hook(db, repo, hook_id), repo))


@router.patch("/{hook_id}")
async def update_hook(
    owner: str,
    name: str,
    hook_id: str,
    body: WebhookUpdate,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    """A ``config.secret`` echoed back masked keeps the stored secret; an empty one clears it."""
    repo = await _admin_repository(db, owner, name, user)
    fields = body.model_dump(exclude_unset=True, exclude={"config"})
    if "name" in fields and fields["name"]:
        fields["name"] = fields["name"].strip()
    if body.config is not None:
        fields["url"] = body.config.url
        fields["content_type"] = body.config.content_type
        secret = body.config.secret
        if "secret" in body.config.model_fields_set and secret != webhook_service.MASKED_SECRET:
            fields["secret"] = encrypt(secret) if secret else None
    errors = ValidationCollector()
    webhook_service.check_config(fields, errors)
    errors.raise_if_any()

    async with locks.hold("hook", hook_id):
        hook = await _get_hook(db, repo, hook_id)
        await hook_queries.update_hook(db, hook["id"], fields)
        hook = await hook_queries.get_hook(db, repo["id"], hook_id)
    return ok(webhook_service.public_hook(hook, repo))


@router.delete("/{hook_id}")
async def delete_hook(
    owner: str,
    name: str,
    hook_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    repo = await _admin_repository(db, owner, name, user)
    async with locks.hold("hook", hook_id):
        hook = await _get_hook(db, repo, hook_id)
        await hook_queries.delete_hook(db, hook["id"])
    await _audit(db, "hook.deleted", user, repo, hook)
    return ok({"deleted": True})


@router.post("/{hook_id}/pings")
async def ping_hook(
    owner: str,
    name: str,
    hook_id: str,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await _admin_repository(db, owner, name, user)
    hook = await _get_hook(db, repo, hook_id)
    payload = {
        "hook_id": hook["id"],
        "hook": webhook_service.public_hook(hook, repo),
        "repository": {"id": repo["id"], "full_name": repo["full_name"]},
        "sender": {"id": user["id"], "username": user["username"]},
        "sent_at": now_iso(),
    }
    delivery = await webhook_service.deliver(db, hook, "ping", payload)
    return ok(hook_queries.public_delivery(delivery))


@router.get("/{hook_id}/deliveries")
async def list_deliveries(
    owner: str,
    name: str,
    hook_id: str,
    page: int = 1,
    per_page: int | None = None,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await _admin_repository(db, owner, name, user)
    hook = await _get_hook(db, repo, hook_id)
    deliveries = [hook_queries.public_delivery(d) for d in await hook_queries.list_deliveries(db, hook["id"])]
    return ok(paginate(deliveries, page, per_page).to_dict("deliveries"))
