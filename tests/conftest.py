"""Shared test fixtures for fakehub."""

from __future__ import annotations

import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from httpx import ASGITransport, AsyncClient

from fakehub.auth.webauthn import b64url_encode
from fakehub.db.database import close_db, open_db
from fakehub.main import create_app
from fakehub.services.fixture_loader import load_fixtures


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

PASSWORD = "password123!"
ALICE_TOKEN = "fhs_test_alice_0000000000000000"
BOB_TOKEN = "fhs_test_bob_00000000000000000000"
CAROL_TOKEN = "fhs_test_carol_000000000000000000"
TOTP_SECRET = "JBSWY3DPEHPK3PXP"
BACKUP_CODES = ["aaaaa-11111", "bbbbb-22222"]
SAML_SECRET = "saml-shared-secret"
OIDC_SECRET = "oidc-shared-secret"
WORKFLOW_ID = "wf-ci"
HOOK_SECRET = "hook-signing-secret"
README = "# web-app\n"
# PNG signature plus two bytes; not valid UTF-8
LOGO_B64 = "iVBORw0KGgoA/w=="

# Fixed scalar so every import of this module agrees on the key
WEBAUTHN_KEY = ec.derive_private_key(0x5EED_CAFE_F00D_1234, ec.SECP256R1())
WEBAUTHN_CREDENTIAL_ID = "cred-dave-1"
WEBAUTHN_PUBLIC_KEY = b64url_encode(
    WEBAUTHN_KEY.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
)

SEED = {
    "users": [
        {"username": "alice", "name": "Alice Admin", "password": PASSWORD,
         "sessions": [{"token": ALICE_TOKEN, "user_agent": "pytest-alice"}]},
        {"username": "bob", "name": "Bob Builder", "password": PASSWORD,
         "sessions": [{"token": BOB_TOKEN, "user_agent": "pytest-bob"}]},
        {"username": "carol", "name": "Carol Outsider", "password": PASSWORD,
         "sessions": [{"token": CAROL_TOKEN}]},
        {"username": "mfa-user", "password": PASSWORD, "mfa_secret": TOTP_SECRET, "backup_codes": BACKUP_CODES},
        {"username": "dave", "password": PASSWORD, "preferred_mfa": "webauthn",
         "webauthn": [{"id": WEBAUTHN_CREDENTIAL_ID, "public_key": WEBAUTHN_PUBLIC_KEY, "name": "YubiKey"}]},
    ],
    "organizations": [
        {
            "name": "Acme",
            "slug": "acme",
            "members": [{"user": "alice", "role": "owner"}, {"user": "bob", "role": "member"}],
            "teams": [
                {"name": "Engineering", "members": ["bob"], "repositories": ["acme/web-app"]},
                {"name": "Platform", "parent": "engineering"},
                {"name": "Security", "privacy": "secret", "members": ["alice"]},
            ],
        },
    ],
    "repositories": [
        {
            "owner": "acme",
            "name": "web-app",
            "description": "Customer facing web application",
            "language": "TypeScript",
            "stars": 1200,
            "files": [
                {"path": "README.md", "content": README},
                {"path": "src/app.ts", "content": "export const app = 1;\n"},
                {"path": "src/lib/util.ts", "content": "export {};\n"},
                {"path": "assets/logo.png", "content": LOGO_B64, "encoding": "base64"},
                {"path": "CHANGELOG.md", "content": "wip\n", "branch": "develop"},
            ],
            "webhooks": [
                {"name": "CI", "url": "https://ci.example.com/hook", "secret": HOOK_SECRET, "events": ["push", "issues"]},
                {"name": "Paused", "url": "https://paused.example.com/hook", "events": ["*"], "active": False},
            ],
            "issues": [
                {"title": "Crash on login", "body": "Stack trace attached", "author": "bob",
                 "labels": ["bug"], "assignees": ["alice"]},
                {"title": "Add dark mode", "author": "alice", "labels": ["enhancement"], "state": "closed"},
            ],
            "pull_requests": [
                {"title": "Fix login crash", "author": "bob", "head": "fix-crash"},
                {"title": "WIP: new layout", "author": "bob", "head": "layout", "draft": True},
            ],
            "workflows": [
                {
                    "id": WORKFLOW_ID,
                    "name": "CI",
                    "jobs": [{"name": "build", "steps": ["checkout", "test"]}, {"name": "lint"}],
                    "runs": [
                        {"status": "completed", "conclusion": "success", "logs": ["setup", "build", "done"],
                         "artifacts": [{"name": "coverage", "size": 2048}]},
                        {"status": "in_progress", "branch": "feature", "logs": ["starting"]},
                    ],
                },
            ],
        },
        {"owner": "acme", "name": "infra", "private": True, "language": "HCL", "stars": 5,
         "files": {"main.tf": "terraform {}\n"}},
        {"owner": "acme", "name": "api-server", "language": "Go", "stars": 300},
        {"owner": "alice", "name": "dotfiles", "language": "Shell", "stars": 12},
        {"owner": "carol", "name": "old-prototype", "language": "Python", "stars": 2, "archived": True},
    ],
    "sso_providers": [
        {"slug": "acme-saml", "kind": "saml", "name": "Acme SAML", "secret": SAML_SECRET,
         "email_domain": "acme-sso.test", "org": "acme"},
        {"slug": "google", "kind": "oidc", "name": "Google", "secret": OIDC_SECRET},
    ],
    "notifications": [
        {"user": "alice", "repository": "acme/web-app", "type": "issue", "title": "Crash on login",
         "reason": "assigned", "updated_at": "2024-05-02T10:00:00Z"},
        {"user": "alice", "repository": "acme/api-server", "type": "security_alert", "title": "Vulnerable dependency",
         "reason": "security_alert", "unread": False, "updated_at": "2024-05-01T10:00:00Z"},
        {"user": "alice", "repository": "acme/infra", "type": "issue", "title": "Old read note",
         "reason": "subscribed", "unread": False, "updated_at": "2020-01-01T00:00:00Z"},
        {"user": "bob", "repository": "acme/web-app", "type": "pull_request", "title": "Review requested",
         "reason": "review_requested", "updated_at": "2024-05-03T10:00:00Z"},
    ],
}


def auth(token: str) -> dict[str, str]:
    """Authorization header for a bearer token."""
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db():
    """In-memory fixture store with schema + seed data."""
    conn = await open_db(":memory:")
    await load_fixtures(conn, SEED)
    yield conn
    await close_db(conn)


# ---------------------------------------------------------------------------
# App / client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(db):
    """A fresh application serving the test store (fresh overrides and rate limiter too)."""
    return create_app(db)


@pytest_asyncio.fixture
async def client(app):
    """Async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def alice() -> dict[str, str]:
    return auth(ALICE_TOKEN)


@pytest.fixture
def bob() -> dict[str, str]:
    return auth(BOB_TOKEN)


@pytest.fixture
def carol() -> dict[str, str]:
    return auth(CAROL_TOKEN)
