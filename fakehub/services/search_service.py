"""Unified search over repositories, issues, pull requests, users and organizations.

Explicit query parameters and ``key:value`` qualifiers inside ``q`` both
become predicates of one ``FilterSpec`` per result type, so they combine
with AND regardless of where they were written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import aiosqlite

from fakehub.db.queries import issues as issue_queries
from fakehub.db.queries import organizations as org_queries
from fakehub.db.queries import pull_requests as pr_queries
from fakehub.db.queries import users as user_queries
from fakehub.db.queries.repositories import public_repository
from fakehub.errors import ValidationError
from fakehub.services import access
from fakehub.services.filters import (
    AnyOf,
    Contains,
    Equals,
    FilterSpec,
    Prefix,
    parse_comparison,
    parse_qualifiers,
    sort_items,
    split_csv,
)
from fakehub.services.pagination import paginate

logger = logging.getLogger(__name__)

SEARCH_TYPES = ("repositories", "issues", "pull_requests", "users", "organizations")

REPO_SORT_KEYS = {
    "stars": "stargazers_count",
    "forks": "forks_count",
    "created": "created_at",
    "updated": "updated_at",
    "name": "name",
}
ISSUE_SORT_KEYS = {"created": "created_at", "updated": "updated_at", "comments": "comments_count"}
PR_SORT_KEYS = {"created": "created_at", "updated": "updated_at"}
USER_SORT_KEYS = {"created": "created_at", "joined": "created_at", "username": "username", "name": "name"}
ORG_SORT_KEYS = {"name": "name", "created": "created_at", "members": "memberCount", "repositories": "repositoryCount"}

SORT_KEYS = {
    "repositories": REPO_SORT_KEYS,
    "issues": ISSUE_SORT_KEYS,
    "pull_requests": PR_SORT_KEYS,
    "users": USER_SORT_KEYS,
    "organizations": ORG_SORT_KEYS,
}

TEXT_FIELDS = {
    "repositories": ("name", "full_name", "description"),
    "issues": ("title", "body"),
    "pull_requests": ("title", "body"),
    "users": ("username", "name", "bio"),
    "organizations": ("name", "slug", "description"),
}

_TYPE_ALIASES = {"repos": "repositories", "code": "repositories", "prs": "pull_requests", "pullrequests": "pull_requests", "orgs": "organizations"}


@dataclass
class SearchParams:
    q: str | None = None
    type: str | None = None
    state: str | None = None
    labels: str | None = None
    assignee: str | None = None
    author: str | None = None
    language: str | None = None
    stars: str | None = None
    visibility: str | None = None
    sort: str | None = None
    order: str = "desc"
    page: int = 1
    per_page: int | None = None


# ── Records ──

async def issue_records(db: aiosqlite.Connection, repos: list[dict]) -> list[dict]:
    issues = await issue_queries.list_issues(db, [r["id"] for r in repos])
    user_ids = sorted({uid for i in issues for uid in i["assignees"]})
    users = await user_queries.get_users_by_ids(db, user_ids)
    return [issue_queries.public_issue(i, users) for i in issues]


async def pull_request_records(db: aiosqlite.Connection, repos: list[dict]) -> list[dict]:
    rows = await pr_queries.list_pull_requests(db, [r["id"] for r in repos])
    return [pr_queries.public_pull_request(r) for r in rows]


async def user_records(db: aiosqlite.Connection) -> list[dict]:
    return [
        {k: v for k, v in user_queries.public_user(u).items() if k != "email"}
        for u in await user_queries.list_users(db)
    ]


async def organization_records(db: aiosqlite.Connection, user: dict | None) -> list[dict]:
    org_ids = await access.viewer_org_ids(db, user)
    return [
        org_queries.public_org(o)
        for o in await org_queries.list_orgs(db)
        if o["visibility"] == "public" or o["id"] in org_ids
    ]


# ── Filters ──

def state_predicate(state: str, field_name: str = "state") -> Equals | None:
    if state == "all":
        return None
    if state not in ("open", "closed"):
        raise ValidationError.for_field("state", "must be 'open', 'closed' or 'all'")
    return Equals(field_name, state)


def issue_filter(
    state: str | None = None,
    labels: str | None = None,
    assignee: str | None = None,
    author: str | None = None,
    text: str | None = None,
) -> FilterSpec:
    spec = FilterSpec()
    if state:
        predicate = state_predicate(state)
        if predicate:
            spec.add(predicate)
    wanted = split_csv(labels)
    if wanted:
        spec.add(AnyOf("labels", frozenset(wanted)))
    if assignee:
        spec.add(AnyOf("assignees.username", frozenset([assignee])))
    if author:
        spec.add(Equals("author.username", author))
    if text:
        spec.add(Contains(TEXT_FIELDS["issues"], text))
    return spec


def repository_filter(
    text: str | None = None,
    language: str | None = None,
    stars: str | None = None,
    visibility: str | None = None,
    owner: str | None = None,
) -> FilterSpec:
    spec = FilterSpec()
    if text:
        spec.add(Contains(TEXT_FIELDS["repositories"], text))
    if language:
        spec.add(AnyOf("language", frozenset(split_csv(language))))
    if stars:
        spec.add(parse_comparison("stargazers_count", stars, param="stars"))
    if visibility:
        if visibility not in ("public", "private"):
            raise ValidationError.for_field("visibility", "must be 'public' or 'private'")
        spec.add(Equals("visibility", visibility))
    if owner:
        spec.add(Equals("owner.login", owner))
    return spec


def _apply_qualifiers(specs: dict[str, FilterSpec], qualifiers: dict[str, list[str]], types: set[str]) -> set[str]:
    """Fold ``q`` qualifiers into the per-type specs. Returns the narrowed type set."""
    for key, values in qualifiers.items():
        for value in values:
            if key == "language":
                specs["repositories"].add(Equals("language", value))
            elif key in ("stars", "forks"):
                field_name = "stargazers_count" if key == "stars" else "forks_count"
                specs["repositories"].add(parse_comparison(field_name, value, param="q"))
            elif key == "state":
                predicate = state_predicate(value)
                if predicate:
                    specs["issues"].add(predicate)
                    specs["pull_requests"].add(predicate)
            elif key == "label":
                specs["issues"].add(AnyOf("labels", frozenset([value])))
            elif key == "author":
                specs["issues"].add(Equals("author.username", value))
                specs["pull_requests"].add(Equals("author.username", value))
            elif key == "assignee":
                specs["issues"].add(AnyOf("assignees.username", frozenset([value])))
            elif key in ("user", "org", "owner"):
                specs["repositories"].add(Equals("owner.login", value))
                specs["issues"].add(Prefix("repository.full_name", value + "/"))
                specs["pull_requests"].add(Prefix("repository.full_name", value + "/"))
            elif key == "repo":
                specs["issues"].add(Equals("repository.full_name", value))
                specs["pull_requests"].add(Equals("repository.full_name", value))
                specs["repositories"].add(Equals("full_name", value))
            elif key == "is":
                types = _apply_is(specs, value, types)
    return types


def _apply_is(specs: dict[str, FilterSpec], value: str, types: set[str]) -> set[str]:
    if value in ("open", "closed"):
        specs["issues"].add(Equals("state", value))
        specs["pull_requests"].add(Equals("state", value))
        return types & {"issues", "pull_requests"}
    if value in ("public", "private"):
        specs["repositories"].add(Equals("visibility", value))
        return types & {"repositories"}
    if value == "issue":
        return types & {"issues"}
    if value == "pr":
        return types & {"pull_requests"}
    if value == "merged":
        specs["pull_requests"].add(Equals("merged", True))
        return types & {"pull_requests"}
    if value == "draft":
        specs["pull_requests"].add(Equals("draft", True))
        return types & {"pull_requests"}
    raise ValidationError.for_field("q", f"unknown qualifier is:{value}")


def _resolve_type(value: str | None) -> set[str]:
    if not value or value == "all":
        return set(SEARCH_TYPES)
    value = _TYPE_ALIASES.get(value, value)
    if value not in SEARCH_TYPES:
        raise ValidationError.for_field("type", f"must be one of: all, {', '.join(SEARCH_TYPES)}")
    return {value}


async def search(db: aiosqlite.Connection, user: dict | None, params: SearchParams) -> dict:
    types = _resolve_type(params.type)
    if params.sort and not any(params.sort in SORT_KEYS[t] for t in types):
        valid = sorted({k for t in types for k in SORT_KEYS[t]})
        raise ValidationError.for_field("sort", f"must be one of: {', '.join(valid)}")

    text, qualifiers = parse_qualifiers(params.q)
    specs = {
        "repositories": repository_filter(text, params.language, params.stars, params.visibility),
        "issues": issue_filter(params.state, params.labels, params.assignee, params.author, text),
        "pull_requests": FilterSpec(),
        "users": FilterSpec(),
        "organizations": FilterSpec(),
    }
    if params.state:
        predicate = state_predicate(params.state)
        if predicate:
            specs["pull_requests"].add(predicate)
    if params.author:
        specs["pull_requests"].add(Equals("author.username", params.author))
    if text:
        for name in ("pull_requests", "users", "organizations"):
            specs[name].add(Contains(TEXT_FIELDS[name], text))
    types = _apply_qualifiers(specs, qualifiers, types)

    repos = await access.visible_repositories(db, user)

    result: dict = {"query": params.q or "", "type": params.type or "all"}
    counts: dict[str, int] = {}
    per_page = None
    for name in SEARCH_TYPES:
        if name not in types:
            result[name] = []
            continue
        records = specs[name].apply(await _records(db, user, name, repos))
        if params.sort and params.sort in SORT_KEYS[name]:
            records = sort_items(records, params.sort, params.order, SORT_KEYS[name])
        page = paginate(records, params.page, params.per_page)
        per_page = page.per_page
        result[name] = page.items
        counts[name] = page.total

    result["counts"] = counts
    result["total_count"] = sum(counts.values())
    result["page"] = params.page
    result["per_page"] = per_page
    logger.debug("Search %r types=%s -> %d results", params.q, sorted(types), result["total_count"])
    return result


async def _records(db: aiosqlite.Connection, user: dict | None, name: str, repos: list[dict]) -> list[dict]:
    if name == "repositories":
        return [public_repository(r) for r in repos]
    if name == "issues":
        return await issue_records(db, repos)
    if name == "pull_requests":
        return await pull_request_records(db, repos)
    if name == "users":
        return await user_records(db)
    return await organization_records(db, user)


def pull_request_filter(
    status: str | None = None,
    review_state: str | None = None,
    author: str | None = None,
    q: str | None = None,
    repo: str | None = None,
) -> FilterSpec:
    text, qualifiers = parse_qualifiers(q)
    specs = {name: FilterSpec() for name in SEARCH_TYPES}
    spec = specs["pull_requests"]
    if status:
        if status in ("open", "closed"):
            spec.add(Equals("state", status))
        elif status == "merged":
            spec.add(Equals("merged", True))
        elif status == "draft":
            spec.add(Equals("draft", True))
        elif status != "all":
            raise ValidationError.for_field("status", "must be open, closed, merged, draft or all")
    if review_state:
        if review_state not in ("approved", "changes_requested", "pending"):
            raise ValidationError.for_field("review_state", "must be approved, changes_requested or pending")
        spec.add(Equals("review_state", review_state))
    if author:
        spec.add(Equals("author.username", author))
    if repo:
        spec.add(Equals("repository.full_name", repo))
    if text:
        spec.add(Contains(TEXT_FIELDS["pull_requests"], text))
    _apply_qualifiers(specs, qualifiers, {"pull_requests"})
    return spec
