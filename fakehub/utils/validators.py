"""Field validators shared by request models and services."""

from __future__ import annotations

import re

USERNAME_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,37}[A-Za-z0-9])?$")
SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
REPO_NAME_RE = re.compile(r"^[A-Za-z0-9._-]{1,100}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
LABEL_MAX = 50
# bcrypt only reads the first 72 bytes and refuses anything longer.
PASSWORD_MAX_BYTES = 72

VALID_ORG_ROLES = ("owner", "admin", "member")
VALID_TEAM_PRIVACY = ("closed", "secret")
VALID_VISIBILITY = ("public", "private")
VALID_TEAM_PERMISSIONS = ("read", "triage", "write", "maintain", "admin")


def is_valid_username(value: str) -> bool:
    return bool(USERNAME_RE.match(value))


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value))


def is_valid_repo_name(value: str) -> bool:
    return bool(REPO_NAME_RE.match(value)) and value not in (".", "..")


def slugify(value: str) -> str:
    """Lowercase, hyphen-separated slug ("Acme Corp!" -> "acme-corp")."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "item"


def password_problems(password: str) -> list[str]:
    problems = []
    if len(password) < 8:
        problems.append("must be at least 8 characters")
    if len(password.encode()) > PASSWORD_MAX_BYTES:
        problems.append(f"must be at most {PASSWORD_MAX_BYTES} bytes")
    if password.isdigit() or password.isalpha():
        problems.append("must mix letters and digits or symbols")
    return problems


def file_path_problems(path: str) -> list[str]:
    """Repository-relative file paths: ``/``-separated, no empty, ``.`` or ``..`` segments."""
    if not path:
        return ["must not be empty"]
    problems = []
    if path.startswith("/") or path.endswith("/"):
        problems.append("must not start or end with '/'")
    segments = path.strip("/").split("/")
    if any(s in ("", ".", "..") for s in segments):
        problems.append("must not contain empty, '.' or '..' segments")
    if "\\" in path or "\0" in path:
        problems.append("must not contain backslashes or NUL")
    return problems
