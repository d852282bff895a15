"""Repository file contents and the commits that change them.

Every write is one commit on one ref, made under that ref's lock.
Changing an existing file requires the blob ``sha`` the caller last saw,
so two editors starting from the same version cannot both win.
"""

from __future__ import annotations

import base64
import binascii
import logging

import aiosqlite
from fastapi import APIRouter, Depends

from fakehub.api.deps import optional_user, require_user
from fakehub.api.envelope import created, ok
from fakehub.api.issues import ensure_writable
from fakehub.config import settings
from fakehub.db.database import get_db, get_locks
from fakehub.db.locks import EntityLocks
from fakehub.db.queries import contents as content_queries
from fakehub.db.queries import repositories as repo_queries
from fakehub.errors import ConflictError, NotFoundError, ValidationCollector, ValidationError
from fakehub.models.repository import ContentDelete, ContentWrite
from fakehub.services import access, activity_service
from fakehub.services.pagination import paginate
from fakehub.utils.validators import file_path_problems

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/repositories/{owner}/{name}", tags=["contents"])

ENCODINGS = ("utf-8", "base64")


def _name(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def file_payload(row: dict) -> dict:
    raw = bytes(row["content"])
    try:
        content, encoding = raw.decode("utf-8"), "utf-8"
    except UnicodeDecodeError:
        content, encoding = base64.b64encode(raw).decode(), "base64"
    return {
        "type": "file",
        "name": _name(row["path"]),
        "path": row["path"],
        "sha": row["sha"],
        "size": len(raw),
        "encoding": encoding,
        "content": content,
    }


def directory_payload(path: str, files: list[dict]) -> dict:
    """Immediate children of ``path``: directories first, then files, each by name."""
    offset = len(path) + 1 if path else 0
    files_by_dir: dict[str, list[dict]] = {}
    entries: dict[str, dict] = {}
    for f in files:
        head, sep, _ = f["path"][offset:].partition("/")
        if sep:
            files_by_dir.setdefault(head, []).append(f)
        else:
            entries[head] = {"name": head, "path": f["path"], "type": "file", "sha": f["sha"], "size": f["size"]}
    for head, nested in files_by_dir.items():
        entries[head] = {
            "name": head,
            "path": f"{path}/{head}" if path else head,
            "type": "dir",
            "sha": content_queries.tree_sha(nested),
            "size": 0,
        }
    return {
        "type": "dir",
        "name": _name(path) if path else "",
        "path": path,
        "sha": content_queries.tree_sha(files),
        "entries": sorted(entries.values(), key=lambda e: (e["type"] != "dir", e["name"])),
    }


async def _read(db: aiosqlite.Connection, repo: dict, ref: str | None, path: str) -> dict:
    ref = ref or repo["default_branch"]
    path = path.strip("/")
    if path:
        row = await content_queries.get_file(db, repo["id"], ref, path)
        if row:
            return file_payload(row)
    files = await content_queries.list_files(db, repo["id"], ref, path)
    if files:
        return directory_payload(path, files)
    if ref != repo["default_branch"] and await content_queries.head_sha(db, repo["id"], ref) is None:
        raise NotFoundError(f"No commit found for the ref {ref}")
    if path:
        raise NotFoundError("Path not found")
    return directory_payload("", [])


def _decode_content(body: ContentWrite, errors: ValidationCollector) -> bytes:
    if body.encoding not in ENCODINGS:
        errors.add("encoding", "must be 'utf-8' or 'base64'")
        return b""
    if body.encoding == "utf-8":
        raw = body.content.encode()
    else:
        try:
            raw = base64.b64decode(body.content, validate=True)
        except (binascii.Error, ValueError):
            errors.add("content", "is not valid base64")
            return b""
    if len(raw) > settings.max_file_bytes:
        errors.add("content", f"must be at most {settings.max_file_bytes} bytes")
    return raw


def _message(message: str | None, verb: str, path: str, errors: ValidationCollector) -> str:
    if message is None:
        return f"{verb} {_name(path)}"
    if not message.strip():
        errors.add("message", "must not be empty")
    return message.strip()


async def _check_placement(db: aiosqlite.Connection, repo: dict, ref: str, path: str) -> None:
    """A new file may not shadow a directory or sit below an existing file."""
    if await content_queries.list_files(db, repo["id"], ref, path):
        raise ConflictError(f"{path} is a directory")
    parts = path.split("/")
    for i in range(1, len(parts)):
        parent = "/".join(parts[:i])
        if await content_queries.get_file(db, repo["id"], ref, parent):
            raise ConflictError(f"{parent} is a file")


async def _writable_repository(db: aiosqlite.Connection, owner: str, name: str, user: dict) -> dict:
    repo = await access.get_visible_repository(db, owner, name, user)
    ensure_writable(repo)
    await access.require_repository_write(db, repo, user)
    return repo


async def _commit(
    db: aiosqlite.Connection,
    locks: EntityLocks,
    repo: dict,
    user: dict,
    path: str,
    ref: str,
    message: str,
    sha: str | None,
    content: bytes | None,
    *,
    create_only: bool = False,
) -> tuple[dict | None, dict, bool]:
    """Commit one file change. Returns (file row or None, commit, whether the file is new)."""
    async with locks.hold("contents", f"{repo['id']}:{ref}"):
        current = await content_queries.get_file(db, repo["id"], ref, path)
        if current:
            if create_only:
                raise ConflictError(f"{path} already exists")
            if not sha:
                raise ValidationError.for_field("sha", "is required to change an existing file")
            if sha != current["sha"]:
                raise ConflictError(f"{path} has changed; it is now at {current['sha']}")
        elif content is None or sha:
            raise NotFoundError("File not found")
        else:
            await _check_placement(db, repo, ref, path)
        commit = await content_queries.commit(db, repo["id"], ref, message, user["id"], {path: content})
        row = await content_queries.get_file(db, repo["id"], ref, path)
    await repo_queries.touch_repository(db, repo["id"])
    await activity_service.record(
        db, "push", user, repo,
        {"ref": ref, "head": commit["sha"], "commits": [{"sha": commit["sha"], "message": message}]},
    )
    logger.info("%s@%s: %s by %s", repo["full_name"], ref, message, user["username"])
    return row, commit, current is None


async def _write(
    db: aiosqlite.Connection,
    locks: EntityLocks,
    owner: str,
    name: str,
    path: str,
    body: ContentWrite,
    user: dict,
    *,
    create_only: bool,
):
    repo = await _writable_repository(db, owner, name, user)
    errors = ValidationCollector()
    for problem in file_path_problems(path):
        errors.add("path", problem)
    raw = _decode_content(body, errors)
    verb = "Create" if create_only or not body.sha else "Update"
    message = _message(body.message, verb, path, errors)
    if body.branch is not None and not body.branch.strip():
        errors.add("branch", "must not be empty")
    errors.raise_if_any()

    ref = body.branch or repo["default_branch"]
    row, commit, is_new = await _commit(
        db, locks, repo, user, path, ref, message, body.sha, raw, create_only=create_only
    )
    data = {"content": file_payload(row), "commit": content_queries.public_commit(commit)}
    return created(data) if is_new else ok(data)


@router.get("/contents")
async def get_root_contents(
    owner: str,
    name: str,
    ref: str | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    return ok(await _read(db, repo, ref, ""))


@router.get("/contents/{path:path}")
async def get_contents(
    owner: str,
    name: str,
    path: str,
    ref: str | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    return ok(await _read(db, repo, ref, path))


@router.post("/contents/{path:path}")
async def create_file(
    owner: str,
    name: str,
    path: str,
    body: ContentWrite,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    return await _write(db, locks, owner, name, path, body, user, create_only=True)


@router.put("/contents/{path:path}")
async def put_file(
    owner: str,
    name: str,
    path: str,
    body: ContentWrite,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    """Create the file, or update it when ``sha`` names its current version."""
    return await _write(db, locks, owner, name, path, body, user, create_only=False)


@router.delete("/contents/{path:path}")
async def delete_file(
    owner: str,
    name: str,
    path: str,
    body: ContentDelete,
    user: dict = Depends(require_user),
    db: aiosqlite.Connection = Depends(get_db),
    locks: EntityLocks = Depends(get_locks),
):
    repo = await _writable_repository(db, owner, name, user)
    errors = ValidationCollector()
    for problem in file_path_problems(path):
        errors.add("path", problem)
    message = _message(body.message, "Delete", path, errors)
    if not body.sha:
        errors.add("sha", "is required to delete a file")
    errors.raise_if_any()

    ref = body.branch or repo["default_branch"]
    _, commit, _ = await _commit(db, locks, repo, user, path, ref, message, body.sha, None)
    return ok({"content": None, "commit": content_queries.public_commit(commit)})


@router.get("/commits")
async def list_commits(
    owner: str,
    name: str,
    ref: str | None = None,
    page: int = 1,
    per_page: int | None = None,
    user: dict | None = Depends(optional_user),
    db: aiosqlite.Connection = Depends(get_db),
):
    repo = await access.get_visible_repository(db, owner, name, user)
    rows = await content_queries.list_commits(db, repo["id"], ref or repo["default_branch"])
    commits = [content_queries.public_commit(r) for r in rows]
    return ok(paginate(commits, page, per_page).to_dict("commits"))
