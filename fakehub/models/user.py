from __future__ import annotations

from pydantic import BaseModel


class UserUpdate(BaseModel):
    name: str | None = None
    email: str | None = None
    bio: str | None = None
    website: str | None = None
    location: str | None = None
    company: str | None = None
    avatar_url: str | None = None
    preferred_mfa: str | None = None


class NotificationUpdate(BaseModel):
    unread: bool = False


class NotificationBulkUpdate(BaseModel):
    ids: list[str] | None = None
    unread: bool = False


class NotificationCleanup(BaseModel):
    older_than_days: int = 30
