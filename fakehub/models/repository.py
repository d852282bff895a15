from __future__ import annotations

from pydantic import BaseModel


class RepositoryCreate(BaseModel):
    name: str
    description: str | None = None
    private: bool = False
    language: str | None = None
    default_branch: str = "main"
    organization: str | None = None


class RepositoryUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    private: bool | None = None
    language: str | None = None
    default_branch: str | None = None
    archived: bool | None = None
    has_issues: bool | None = None


class ContentWrite(BaseModel):
    content: str = ""
    encoding: str = "utf-8"
    message: str | None = None
    branch: str | None = None
    sha: str | None = None


class ContentDelete(BaseModel):
    sha: str | None = None
    message: str | None = None
    branch: str | None = None


class WebhookConfig(BaseModel):
    url: str
    content_type: str = "json"
    secret: str | None = None


class WebhookCreate(BaseModel):
    name: str
    config: WebhookConfig
    events: list[str] = ["push"]
    active: bool = True


class WebhookUpdate(BaseModel):
    name: str | None = None
    config: WebhookConfig | None = None
    events: list[str] | None = None
    active: bool | None = None
