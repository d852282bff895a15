"""Seed a fixture store from a YAML (or already parsed) document.

Top-level keys, all optional: ``users``, ``organizations``, ``repositories``
(with nested ``files``, ``webhooks``, ``issues``, ``pull_requests`` and
``workflows``/``runs``), ``teams`` under each organization,
``sso_providers``, ``notifications`` and ``audit_logs``.
References between records use usernames, organization slugs and
``owner/name`` repository names, never generated ids.
"""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import Any

import aiosqlite
import yaml

from fakehub.auth.passwords import hash_password, hash_secret, normalize_backup_code
from fakehub.auth.webauthn import load_public_key, to_pem
from fakehub.config import settings
from fakehub.db.queries import audit_logs as audit_queries
from fakehub.db.queries import contents as content_queries
from fakehub.db.queries import issues as issue_queries
from fakehub.db.queries import mfa as mfa_queries
from fakehub.db.queries import notifications as notification_queries
from fakehub.db.queries import organizations as org_queries
from fakehub.db.queries import pull_requests as pr_queries
from fakehub.db.queries import repositories as repo_queries
from fakehub.db.queries import sessions as session_queries
from fakehub.db.queries import sso as sso_queries
from fakehub.db.queries import teams as team_queries
from fakehub.db.queries import users as user_queries
from fakehub.db.queries import webhooks as hook_queries
from fakehub.db.queries import workflows as workflow_queries
from fakehub.errors import ValidationError
from fakehub.utils.clock import iso_in
from fakehub.utils.crypto import digest, encrypt
from fakehub.utils.validators import PASSWORD_MAX_BYTES, file_path_problems, slugify

logger = logging.getLogger(__name__)


def _fail(path: str, message: str) -> ValidationError:
    return ValidationError(f"Invalid fixture at {path}: {message}", {path: [message]})


class _Loader:
    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db
        self.users: dict[str, dict] = {}
        self.orgs: dict[str, dict] = {}
        self.counts: dict[str, int] = {}

    def _count(self, kind: str, n: int = 1) -> None:
        self.counts[kind] = self.counts.get(kind, 0) + n

    async def user(self, username: str | None, path: str) -> dict:
        if not username:
            raise _fail(path, "user reference is required")
        user = self.users.get(username.lower()) or await user_queries.get_user_by_username(self.db, username)
        if not user:
            raise _fail(path, f"unknown user {username!r}")
        return user

    async def org(self, slug: str, path: str) -> dict:
        org = self.orgs.get(slug.lower()) or await org_queries.get_org_by_slug(self.db, slug)
        if not org:
            raise _fail(path, f"unknown organization {slug!r}")
        return org

    async def repository(self, full_name: str, path: str) -> dict:
        owner, _, name = full_name.partition("/")
        repo = await repo_queries.get_repository_by_full_name(self.db, owner, name)
        if not repo:
            raise _fail(path, f"unknown repository {full_name!r}")
        return repo

    # ── Users ──

    async def load_user(self, spec: dict, path: str) -> None:
        username = spec.get("username")
        if not username:
            raise _fail(path, "username is required")
        email = spec.get("email") or f"{username}@example.com"
        password = spec.get("password")
        if password and len(str(password).encode()) > PASSWORD_MAX_BYTES:
            raise _fail(path, f"password must be at most {PASSWORD_MAX_BYTES} bytes")
        user_id = await user_queries.create_user(
            self.db,
            username,
            email,
            hash_password(password) if password else None,
            spec.get("name"),
            user_id=spec.get("id"),
            bio=spec.get("bio"),
            website=spec.get("website"),
            location=spec.get("location"),
            company=spec.get("company"),
            avatar_url=spec.get("avatar_url"),
            is_admin=bool(spec.get("is_admin")),
            created_at=spec.get("created_at"),
        )
        if spec.get("mfa_secret"):
            await user_queries.enable_mfa(self.db, user_id, encrypt(spec["mfa_secret"]))
        if spec.get("preferred_mfa"):
            await user_queries.update_profile(self.db, user_id, {"preferred_mfa": spec["preferred_mfa"]})
        if spec.get("backup_codes"):
            await mfa_queries.replace_backup_codes(
                self.db, user_id, [hash_secret(normalize_backup_code(c)) for c in spec["backup_codes"]]
            )
        for cred in spec.get("webauthn", []):
            key = to_pem(load_public_key(cred["public_key"]))
            await mfa_queries.add_webauthn_credential(
                self.db, user_id, cred["id"], key, cred.get("name"), cred.get("sign_count", 0)
            )
            self._count("webauthn_credentials")
        for i, sess in enumerate(spec.get("sessions", [])):
            if not sess.get("token"):
                raise _fail(f"{path}.sessions[{i}]", "token is required")
            await session_queries.create_session(
                self.db,
                user_id,
                digest(sess["token"]),
                sess.get("expires_at") or iso_in(hours=settings.session_ttl_hours),
                sess.get("user_agent"),
                sess.get("ip"),
                sess.get("location"),
                session_id=sess.get("id"),
                created_at=sess.get("created_at"),
            )
            self._count("sessions")
        self.users[username.lower()] = await user_queries.get_user(self.db, user_id)
        self._count("users")

    # ── Organizations ──

    async def load_org(self, spec: dict, path: str) -> None:
        name = spec.get("name") or spec.get("slug")
        if not name:
            raise _fail(path, "name or slug is required")
        slug = spec.get("slug") or slugify(name)
        org_id = await org_queries.create_org(
            self.db,
            name,
            slug,
            None,
            spec.get("description"),
            spec.get("website"),
            spec.get("location"),
            org_id=spec.get("id"),
            visibility=spec.get("visibility", "public"),
            created_at=spec.get("created_at"),
        )
        settings_fields = {
            key: spec[key]
            for key in ("member_visibility", "allow_member_repositories", "require_two_factor")
            if key in spec
        }
        await org_queries.update_org(self.db, org_id, settings_fields)
        for i, member in enumerate(spec.get("members", [])):
            if isinstance(member, str):
                member = {"user": member}
            user = await self.user(member.get("user"), f"{path}.members[{i}]")
            await org_queries.add_member(self.db, org_id, user["id"], member.get("role", "member"))
        self.orgs[slug.lower()] = await org_queries.get_org(self.db, org_id)
        self._count("organizations")

    async def load_teams(self, org_spec: dict, path: str) -> None:
        org = await self.org(org_spec.get("slug") or slugify(org_spec["name"]), path)
        created: dict[str, str] = {}
        for i, spec in enumerate(org_spec.get("teams", [])):
            tpath = f"{path}.teams[{i}]"
            slug = spec.get("slug") or slugify(spec["name"])
            parent = spec.get("parent")
            if parent and parent not in created:
                raise _fail(tpath, f"parent team {parent!r} must be listed first")
            team_id = await team_queries.create_team(
                self.db, org["id"], spec["name"], slug, spec.get("description"),
                created.get(parent) if parent else None, spec.get("privacy", "closed"),
            )
            created[slug] = team_id
            for username in spec.get("members", []):
                user = await self.user(username, f"{tpath}.members")
                await team_queries.add_team_member(self.db, team_id, user["id"])
            for full_name in spec.get("repositories", []):
                repo = await self.repository(full_name, f"{tpath}.repositories")
                await team_queries.set_team_repository(self.db, team_id, repo["id"], "read")
            self._count("teams")

    # ── Repositories ──

    async def load_repository(self, spec: dict, path: str) -> None:
        owner_login = spec.get("owner")
        name = spec.get("name")
        if not owner_login or not name:
            raise _fail(path, "owner and name are required")
        org = self.orgs.get(owner_login.lower()) or await org_queries.get_org_by_slug(self.db, owner_login)
        if org:
            owner_id, owner_type, owner_login = org["id"], "organization", org["slug"]
        else:
            owner = await self.user(owner_login, path)
            owner_id, owner_type, owner_login = owner["id"], "user", owner["username"]
        repo_id = await repo_queries.create_repository(
            self.db,
            owner_id,
            owner_type,
            owner_login,
            name,
            spec.get("description"),
            bool(spec.get("private", False)),
            spec.get("language"),
            spec.get("default_branch", "main"),
            repo_id=spec.get("id"),
            stargazers_count=int(spec.get("stars", spec.get("stargazers_count", 0))),
            forks_count=int(spec.get("forks", spec.get("forks_count", 0))),
            has_issues=bool(spec.get("has_issues", True)),
            created_at=spec.get("created_at"),
            updated_at=spec.get("updated_at"),
        )
        if spec.get("archived"):
            await repo_queries.update_repository(self.db, {"id": repo_id, "owner_login": owner_login}, {"archived": True})
        await self.load_files(
            repo_id, owner_id if owner_type == "user" else None, spec.get("files") or {},
            spec.get("default_branch", "main"), f"{path}.files",
        )
        for i, hook in enumerate(spec.get("webhooks", [])):
            await self.load_webhook(repo_id, hook, f"{path}.webhooks[{i}]")
        for i, issue in enumerate(spec.get("issues", [])):
            await self.load_issue(repo_id, issue, f"{path}.issues[{i}]")
        for i, pr in enumerate(spec.get("pull_requests", [])):
            await self.load_pull_request(repo_id, pr, f"{path}.pull_requests[{i}]")
        for i, workflow in enumerate(spec.get("workflows", [])):
            await self.load_workflow(repo_id, workflow, f"{path}.workflows[{i}]")
        self._count("repositories")

    async def load_files(
        self, repo_id: str, author_id: str | None, files: dict | list, default_branch: str, path: str
    ) -> None:
        """``{path: text}`` on the default branch, or a list of ``{path, content, encoding?, branch?}``.

        Each branch gets a single "Initial commit".
        """
        if isinstance(files, dict):
            files = [{"path": p, "content": c} for p, c in files.items()]
        by_ref: dict[str, dict[str, bytes]] = {}
        for i, spec in enumerate(files):
            fpath = f"{path}[{i}]"
            problems = file_path_problems(spec.get("path") or "")
            if problems:
                raise _fail(fpath, f"path {problems[0]}")
            content = "" if spec.get("content") is None else str(spec["content"])
            if spec.get("encoding") == "base64":
                try:
                    raw = base64.b64decode(content, validate=True)
                except (binascii.Error, ValueError):
                    raise _fail(fpath, "content is not valid base64")
            else:
                raw = content.encode()
            by_ref.setdefault(spec.get("branch") or default_branch, {})[spec["path"]] = raw
        for ref, writes in by_ref.items():
            for file_path in writes:
                parts = file_path.split("/")
                for j in range(1, len(parts)):
                    if "/".join(parts[:j]) in writes:
                        raise _fail(path, f"{'/'.join(parts[:j])} is both a file and a directory")
            await content_queries.commit(self.db, repo_id, ref, "Initial commit", author_id, writes)
            self._count("files", len(writes))

    async def load_webhook(self, repo_id: str, spec: dict, path: str) -> None:
        if not spec.get("url"):
            raise _fail(path, "url is required")
        await hook_queries.create_hook(
            self.db, repo_id, spec.get("name") or spec["url"], spec["url"], spec.get("content_type", "json"),
            encrypt(spec["secret"]) if spec.get("secret") else None, list(spec.get("events") or ["push"]),
            bool(spec.get("active", True)),
        )
        self._count("webhooks")

    async def _number(self, repo_id: str, spec: dict) -> int:
        if spec.get("number"):
            await repo_queries.raise_number_floor(self.db, repo_id, int(spec["number"]))
            return int(spec["number"])
        return await repo_queries.next_number(self.db, repo_id)

    async def load_issue(self, repo_id: str, spec: dict, path: str) -> None:
        author = await self.user(spec.get("author"), path)
        assignees = [(await self.user(a, f"{path}.assignees"))["id"] for a in spec.get("assignees", [])]
        issue_id = await issue_queries.create_issue(
            self.db,
            repo_id,
            await self._number(repo_id, spec),
            spec["title"],
            author["id"],
            spec.get("body", ""),
            list(spec.get("labels", [])),
            assignees,
            state=spec.get("state", "open"),
            created_at=spec.get("created_at"),
            closed_at=spec.get("closed_at"),
        )
        for j, comment in enumerate(spec.get("comments", [])):
            commenter = await self.user(comment.get("author"), f"{path}.comments[{j}]")
            await issue_queries.add_comment(self.db, issue_id, commenter["id"], comment["body"])
        self._count("issues")

    async def load_pull_request(self, repo_id: str, spec: dict, path: str) -> None:
        author = await self.user(spec.get("author"), path)
        pr_id = await pr_queries.create_pull_request(
            self.db,
            repo_id,
            await self._number(repo_id, spec),
            spec["title"],
            author["id"],
            spec.get("head", "feature"),
            spec.get("base", "main"),
            spec.get("body", ""),
            bool(spec.get("draft", False)),
            state=spec.get("state", "open"),
            merged=bool(spec.get("merged", False)),
            created_at=spec.get("created_at"),
        )
        for j, review in enumerate(spec.get("reviews", [])):
            reviewer = await self.user(review.get("reviewer"), f"{path}.reviews[{j}]")
            await pr_queries.add_review(self.db, pr_id, reviewer["id"], review["state"], review.get("body", ""))
        self._count("pull_requests")

    async def load_workflow(self, repo_id: str, spec: dict, path: str) -> None:
        jobs = [
            {"name": job["name"], "steps": list(job.get("steps", []))} if isinstance(job, dict) else {"name": job, "steps": []}
            for job in spec.get("jobs", [])
        ]
        workflow_id = await workflow_queries.create_workflow(
            self.db, repo_id, spec["name"], spec.get("path") or f".github/workflows/{slugify(spec['name'])}.yml",
            jobs, workflow_id=spec.get("id"),
        )
        workflow = await workflow_queries.get_workflow(self.db, repo_id, workflow_id)
        for i, run in enumerate(spec.get("runs", [])):
            rpath = f"{path}.runs[{i}]"
            status = run.get("status", "completed")
            conclusion = run.get("conclusion", "success" if status == "completed" else None)
            if (status == "completed") != (conclusion is not None):
                raise _fail(rpath, "conclusion must be set exactly when status is completed")
            actor = await self.user(run["actor"], rpath) if run.get("actor") else None
            run_id = await workflow_queries.create_run(
                self.db, workflow, run.get("head_sha", "0" * 40), run.get("branch", "main"),
                run.get("event", "push"), actor["id"] if actor else None,
                status=status, conclusion=conclusion, created_at=run.get("created_at"),
            )
            if run.get("logs"):
                await workflow_queries.append_log_lines(self.db, run_id, [str(line) for line in run["logs"]])
            for artifact in run.get("artifacts", []):
                await workflow_queries.add_artifact(self.db, run_id, artifact["name"], int(artifact.get("size", 0)))
            self._count("workflow_runs")
        self._count("workflows")

    # ── SSO and audit ──

    async def load_sso_provider(self, spec: dict, path: str) -> None:
        if spec.get("kind") not in ("saml", "oidc"):
            raise _fail(path, "kind must be saml or oidc")
        org = await self.org(spec["org"], path) if spec.get("org") else None
        await sso_queries.create_provider(
            self.db, spec["slug"], spec["kind"], spec.get("name", spec["slug"]), spec["secret"],
            spec.get("email_domain"), org["id"] if org else None,
        )
        self._count("sso_providers")

    async def load_notification(self, spec: dict, path: str) -> None:
        user = await self.user(spec.get("user"), path)
        if not spec.get("repository"):
            raise _fail(path, "repository is required")
        repo = await self.repository(spec["repository"], path)
        kind = spec.get("type", "issue")
        subject = spec.get("subject") or {"title": spec.get("title", ""), "type": kind}
        await notification_queries.add_notification(
            self.db, user["id"], repo["id"], kind, spec.get("title") or subject["title"], subject,
            spec.get("reason", "subscribed"), unread=bool(spec.get("unread", True)),
            updated_at=spec.get("updated_at"),
        )
        self._count("notifications")

    async def load_audit_entry(self, spec: dict, path: str) -> None:
        org = await self.org(spec["org"], path) if spec.get("org") else None
        actor = await self.user(spec["actor"], path) if spec.get("actor") else None
        await audit_queries.add_entry(
            self.db, spec["event"], actor["id"] if actor else None, actor["username"] if actor else None,
            spec.get("target"), spec.get("details"), org_id=org["id"] if org else None,
            user_id=(await self.user(spec["user"], path))["id"] if spec.get("user") else None,
            timestamp=spec.get("timestamp"),
        )
        self._count("audit_logs")


def parse_document(source: str | Path | dict) -> dict:
    if isinstance(source, dict):
        return source
    text = Path(source).read_text() if isinstance(source, Path) else source
    document = yaml.safe_load(text) or {}
    if not isinstance(document, dict):
        raise ValidationError("Fixture document must be a mapping")
    return document


async def load_fixtures(db: aiosqlite.Connection, source: str | Path | dict[str, Any]) -> dict[str, int]:
    """Load a fixture document into ``db``. Returns how many records of each kind were created."""
    document = parse_document(source)
    loader = _Loader(db)
    try:
        for i, spec in enumerate(document.get("users", [])):
            await loader.load_user(spec, f"users[{i}]")
        for i, spec in enumerate(document.get("organizations", [])):
            await loader.load_org(spec, f"organizations[{i}]")
        for i, spec in enumerate(document.get("repositories", [])):
            await loader.load_repository(spec, f"repositories[{i}]")
        for i, spec in enumerate(document.get("organizations", [])):
            await loader.load_teams(spec, f"organizations[{i}]")
        for i, spec in enumerate(document.get("sso_providers", [])):
            await loader.load_sso_provider(spec, f"sso_providers[{i}]")
        for i, spec in enumerate(document.get("notifications", [])):
            await loader.load_notification(spec, f"notifications[{i}]")
        for i, spec in enumerate(document.get("audit_logs", [])):
            await loader.load_audit_entry(spec, f"audit_logs[{i}]")
    except (KeyError, TypeError, aiosqlite.IntegrityError) as exc:
        raise ValidationError(f"Invalid fixture document: {exc}")
    logger.info("Loaded fixtures: %s", loader.counts)
    return loader.counts


async def load_fixtures_file(db: aiosqlite.Connection, path: str | Path) -> dict[str, int]:
    return await load_fixtures(db, Path(path))
