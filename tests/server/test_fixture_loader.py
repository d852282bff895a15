"""Tests for fixture loading, seeding and the response envelope."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from fakehub.db.database import close_db, open_db
from fakehub.db.queries import contents as content_queries
from fakehub.db.queries import repositories as repo_queries
from fakehub.db.queries import users as user_queries
from fakehub.errors import ValidationError
from fakehub.services.fixture_loader import load_fixtures, load_fixtures_file, parse_document

DEMO = Path(__file__).resolve().parents[2] / "fakehub" / "fixtures" / "demo.yaml"

YAML_DOC = """
users:
  - username: zed
    password: s3cret-pass!
organizations:
  - name: Zed Works
    members:
      - {user: zed, role: owner}
repositories:
  - owner: zed-works
    name: engine
    stars: 7
    issues:
      - {title: First, author: zed}
    pull_requests:
      - {title: Second, author: zed, head: topic}
"""


@pytest_asyncio.fixture
async def empty_db():
    conn = await open_db(":memory:")
    yield conn
    await close_db(conn)


class TestParseDocument:
    def test_yaml_string(self):
        assert parse_document("users: []") == {"users": []}

    def test_empty_document(self):
        assert parse_document("") == {}

    def test_dict_passes_through(self):
        doc = {"users": []}
        assert parse_document(doc) is doc

    def test_non_mapping(self):
        with pytest.raises(ValidationError):
            parse_document("- just\n- a list\n")


class TestLoadFixtures:
    @pytest.mark.asyncio
    async def test_counts(self, empty_db):
        counts = await load_fixtures(empty_db, YAML_DOC)
        assert counts == {"users": 1, "organizations": 1, "repositories": 1, "issues": 1, "pull_requests": 1}

    @pytest.mark.asyncio
    async def test_numbers_are_shared(self, empty_db):
        await load_fixtures(empty_db, YAML_DOC)
        repo = await repo_queries.get_repository_by_full_name(empty_db, "zed-works", "engine")
        assert await repo_queries.next_number(empty_db, repo["id"]) == 3

    @pytest.mark.asyncio
    async def test_default_email(self, empty_db):
        await load_fixtures(empty_db, YAML_DOC)
        user = await user_queries.get_user_by_username(empty_db, "zed")
        assert user["email"] == "zed@example.com"

    @pytest.mark.asyncio
    async def test_unknown_user_reference(self, empty_db):
        doc = {"repositories": [{"owner": "ghost", "name": "x"}]}
        with pytest.raises(ValidationError) as exc_info:
            await load_fixtures(empty_db, doc)
        assert "repositories[0]" in exc_info.value.errors

    @pytest.mark.asyncio
    async def test_unknown_issue_author(self, empty_db):
        doc = {
            "users": [{"username": "zed"}],
            "repositories": [{"owner": "zed", "name": "x", "issues": [{"title": "t", "author": "nobody"}]}],
        }
        with pytest.raises(ValidationError) as exc_info:
            await load_fixtures(empty_db, doc)
        assert "repositories[0].issues[0]" in exc_info.value.errors

    @pytest.mark.asyncio
    async def test_completed_run_needs_conclusion(self, empty_db):
        doc = {
            "users": [{"username": "zed"}],
            "repositories": [{
                "owner": "zed", "name": "x",
                "workflows": [{"name": "CI", "runs": [{"status": "completed", "conclusion": None}]}],
            }],
        }
        with pytest.raises(ValidationError) as exc_info:
            await load_fixtures(empty_db, doc)
        assert "repositories[0].workflows[0].runs[0]" in exc_info.value.errors

    @pytest.mark.asyncio
    async def test_parent_team_must_come_first(self, empty_db):
        doc = {"organizations": [{"name": "Zed", "teams": [{"name": "Child", "parent": "later"}]}]}
        with pytest.raises(ValidationError):
            await load_fixtures(empty_db, doc)

    @pytest.mark.asyncio
    async def test_missing_required_key(self, empty_db):
        doc = {"users": [{"username": "zed"}], "repositories": [{"owner": "zed", "name": "x", "issues": [{"author": "zed"}]}]}
        with pytest.raises(ValidationError):
            await load_fixtures(empty_db, doc)

    @pytest.mark.asyncio
    async def test_files_hooks_and_notifications(self, empty_db):
        doc = {
            "users": [{"username": "zed"}],
            "repositories": [{
                "owner": "zed", "name": "x",
                "files": [
                    {"path": "README.md", "content": "hi"},
                    {"path": "docs/a.md", "content": "a"},
                    {"path": "NOTES.md", "content": "wip", "branch": "dev"},
                ],
                "webhooks": [{"url": "https://hooks.example.com"}],
            }],
            "notifications": [{"user": "zed", "repository": "zed/x", "title": "Hello"}],
        }
        counts = await load_fixtures(empty_db, doc)
        assert counts["files"] == 3
        assert counts["webhooks"] == 1
        assert counts["notifications"] == 1

        repo = await repo_queries.get_repository_by_full_name(empty_db, "zed", "x")
        assert [f["path"] for f in await content_queries.list_files(empty_db, repo["id"], "main")] == [
            "README.md", "docs/a.md",
        ]
        commits = await content_queries.list_commits(empty_db, repo["id"], "dev")
        assert [c["message"] for c in commits] == ["Initial commit"]
        assert commits[0]["author_username"] == "zed"

    @pytest.mark.asyncio
    async def test_file_and_directory_collide(self, empty_db):
        doc = {
            "users": [{"username": "zed"}],
            "repositories": [{"owner": "zed", "name": "x", "files": {"docs": "file", "docs/a.md": "nested"}}],
        }
        with pytest.raises(ValidationError) as exc_info:
            await load_fixtures(empty_db, doc)
        assert "repositories[0].files" in exc_info.value.errors

    @pytest.mark.asyncio
    async def test_bad_file_content(self, empty_db):
        doc = {
            "users": [{"username": "zed"}],
            "repositories": [{
                "owner": "zed", "name": "x",
                "files": [{"path": "logo.png", "content": "not base64!", "encoding": "base64"}],
            }],
        }
        with pytest.raises(ValidationError) as exc_info:
            await load_fixtures(empty_db, doc)
        assert "repositories[0].files[0]" in exc_info.value.errors

    @pytest.mark.asyncio
    async def test_demo_file_loads(self, empty_db):
        counts = await load_fixtures_file(empty_db, DEMO)
        assert counts["users"] >= 4
        assert counts["repositories"] >= 5


class TestSeedEndpoint:
    @pytest.mark.asyncio
    async def test_seed_adds_records(self, client):
        resp = await client.post("/api/v1/_fixtures/seed", json={"users": [{"username": "zed"}]})
        assert resp.status_code == 201
        assert resp.json()["data"] == {"users": 1}
        assert (await client.get("/api/v1/users/zed")).status_code == 200

    @pytest.mark.asyncio
    async def test_seed_rejects_bad_reference(self, client):
        resp = await client.post("/api/v1/_fixtures/seed", json={"repositories": [{"owner": "ghost", "name": "x"}]})
        assert resp.status_code == 400
        assert resp.json()["success"] is False


class TestEnvelope:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_unknown_route(self, client):
        resp = await client.get("/api/v1/nowhere")
        assert resp.status_code == 404
        assert resp.json() == {"success": False, "error": "Not found"}

    @pytest.mark.asyncio
    async def test_request_validation_is_400(self, client, carol):
        resp = await client.post("/api/v1/repositories", json={}, headers=carol)
        assert resp.status_code == 400
        assert "name" in resp.json()["validation_errors"]

    @pytest.mark.asyncio
    async def test_success_shape(self, client):
        body = (await client.get("/api/v1/repositories/acme/web-app")).json()
        assert body["success"] is True
        assert set(body) == {"success", "data"}
