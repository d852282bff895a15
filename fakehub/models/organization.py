from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class OrganizationCreate(BaseModel):
    name: str
    slug: str | None = None
    description: str | None = None
    website: str | None = None
    location: str | None = None
    visibility: str = "public"


class OrganizationUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    website: str | None = None
    location: str | None = None


class OrganizationSettings(BaseModel):
    """Accepts the camelCase keys the settings payload is served with."""

    model_config = ConfigDict(populate_by_name=True)

    visibility: str | None = None
    member_visibility: str | None = Field(default=None, alias="memberVisibility")
    allow_member_repositories: bool | None = Field(default=None, alias="allowMemberRepositories")
    require_two_factor: bool | None = Field(default=None, alias="requireTwoFactor")


class MemberRoleUpdate(BaseModel):
    role: str


class InvitationCreate(BaseModel):
    email: str
    role: str = "member"
    teams: list[str] = []


class TeamCreate(BaseModel):
    name: str
    slug: str | None = None
    description: str | None = None
    parent: str | None = None
    privacy: str = "closed"


class TeamUpdate(BaseModel):
    """``parent`` sent as null moves the team to the top level; omitted leaves it."""

    name: str | None = None
    description: str | None = None
    parent: str | None = None
    privacy: str | None = None


class TeamRepositoryPermission(BaseModel):
    permission: str = "read"
