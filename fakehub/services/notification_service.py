"""Notification fan-out for issue and pull request activity.

The acting user is never notified, and nobody is notified about a
repository they cannot see. When one write gives a user several reasons,
the most specific wins: ``assigned`` over ``mentioned`` over ``author``.
"""

from __future__ import annotations

import logging
import re

import aiosqlite

from fakehub.db.queries import notifications as notification_queries
from fakehub.db.queries import users as user_queries
from fakehub.services import access

logger = logging.getLogger(__name__)

MENTION_RE = re.compile(r"(?<![\w@/.-])@([A-Za-z0-9](?:[A-Za-z0-9-]{0,37}[A-Za-z0-9])?)(?![\w-])")
PARTICIPATING_REASONS = ("assigned", "mentioned", "author", "review_requested")
FILTERS = ("unread", "all", "participating")


def mentioned_usernames(text: str | None) -> list[str]:
    """``@name`` mentions in order of first appearance; e-mail addresses don't count."""
    seen: dict[str, str] = {}
    for name in MENTION_RE.findall(text or ""):
        seen.setdefault(name.lower(), name)
    return list(seen.values())


async def recipients(
    db: aiosqlite.Connection,
    actor: dict,
    *,
    author_id: str | None = None,
    assignee_ids: list[str] | tuple[str, ...] = (),
    text: str | None = None,
) -> dict[str, str]:
    """User id -> reason."""
    found: dict[str, str] = {}
    if author_id:
        found[author_id] = "author"
    for username in mentioned_usernames(text):
        user = await user_queries.get_user_by_username(db, username)
        if user:
            found[user["id"]] = "mentioned"
    for user_id in assignee_ids:
        found[user_id] = "assigned"
    found.pop(actor["id"], None)
    return found


async def notify(
    db: aiosqlite.Connection,
    repo: dict,
    targets: dict[str, str],
    notification_type: str,
    title: str,
    subject: dict,
) -> int:
    sent = 0
    for user_id, reason in targets.items():
        viewer = {"id": user_id}
        if not access.can_view_repository(repo, viewer, await access.viewer_org_ids(db, viewer)):
            continue
        await notification_queries.add_notification(db, user_id, repo["id"], notification_type, title, subject, reason)
        sent += 1
    if sent:
        logger.debug("Sent %d %s notifications for %s", sent, notification_type, repo["full_name"])
    return sent


def subject_for(repo: dict, kind: str, number: int, title: str) -> dict:
    path = "issues" if kind == "issue" else "pulls"
    return {"title": f"{title} #{number}", "url": f"/repositories/{repo['full_name']}/{path}/{number}", "type": kind}
