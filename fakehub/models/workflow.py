from __future__ import annotations

from pydantic import BaseModel


class DispatchRequest(BaseModel):
    ref: str = "main"
    head_sha: str | None = None
    inputs: dict = {}


class JobUpdate(BaseModel):
    status: str
    conclusion: str | None = None
    steps: list[dict] | None = None


class RunComplete(BaseModel):
    conclusion: str


class LogAppend(BaseModel):
    lines: list[str]
    job_id: str | None = None


class ArtifactCreate(BaseModel):
    name: str
    size: int = 0
