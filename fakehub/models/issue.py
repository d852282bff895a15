from __future__ import annotations

from pydantic import BaseModel


class IssueCreate(BaseModel):
    title: str
    body: str = ""
    labels: list[str] = []
    assignees: list[str] = []


class IssueUpdate(BaseModel):
    title: str | None = None
    body: str | None = None
    state: str | None = None
    labels: list[str] | None = None
    assignees: list[str] | None = None


class CommentCreate(BaseModel):
    body: str


class PullRequestCreate(BaseModel):
    title: str
    head: str
    base: str | None = None
    body: str = ""
    draft: bool = False


class PullRequestUpdate(BaseModel):
    title: str | None = None
    body: str | None = None
    state: str | None = None
    draft: bool | None = None
    base: str | None = None


class ReviewCreate(BaseModel):
    state: str
    body: str = ""


class MergeRequest(BaseModel):
    merge_method: str = "merge"
    commit_title: str | None = None
