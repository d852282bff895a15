"""Organization analytics computed from the fixture store."""

from __future__ import annotations

from collections import Counter
from datetime import timedelta

import aiosqlite

from fakehub.db.queries import audit_logs as audit_queries
from fakehub.db.queries import organizations as org_queries
from fakehub.db.queries import repositories as repo_queries
from fakehub.db.queries import teams as team_queries
from fakehub.db.queries import workflows as workflow_queries
from fakehub.errors import ValidationError
from fakehub.services.search_service import issue_records, pull_request_records
from fakehub.utils.clock import isoformat, utcnow

PERIODS = {"7d": 7, "30d": 30, "90d": 90}


def _day(timestamp: str) -> str:
    return timestamp[:10]


async def org_analytics(db: aiosqlite.Connection, org: dict, period: str = "30d") -> dict:
    if period not in PERIODS:
        raise ValidationError.for_field("period", f"must be one of: {', '.join(PERIODS)}")
    days = PERIODS[period]
    since = isoformat(utcnow() - timedelta(days=days))

    repos = await repo_queries.list_repositories(db, owner_id=org["id"])
    members = await org_queries.list_members(db, org["id"])
    teams = await team_queries.list_teams(db, org["id"])
    issues = await issue_records(db, repos)
    pulls = await pull_request_records(db, repos)
    runs = await workflow_queries.list_runs_for_repositories(db, [r["id"] for r in repos])
    entries = await audit_queries.list_for_org(db, org["id"])

    completed = [r for r in runs if r["status"] == "completed"]
    conclusions = Counter(r["conclusion"] for r in completed)
    success_rate = round(100.0 * conclusions["success"] / len(completed), 1) if completed else None

    top = sorted(repos, key=lambda r: r["stargazers_count"], reverse=True)[:5]

    trends: dict[str, Counter] = {}
    for kind, records in (("issues", issues), ("pull_requests", pulls)):
        for record in records:
            if record["created_at"] >= since:
                trends.setdefault(_day(record["created_at"]), Counter())[kind] += 1
    for entry in entries:
        if entry["timestamp"] >= since:
            trends.setdefault(_day(entry["timestamp"]), Counter())["events"] += 1

    return {
        "period": period,
        "overview": {
            "total_members": len(members),
            "total_repositories": len(repos),
            "total_teams": len(teams),
            "issues_open": sum(1 for i in issues if i["state"] == "open"),
            "issues_closed": sum(1 for i in issues if i["state"] == "closed"),
            "pull_requests_open": sum(1 for p in pulls if p["state"] == "open"),
            "pull_requests_merged": sum(1 for p in pulls if p["merged"]),
            "total_stars": sum(r["stargazers_count"] for r in repos),
        },
        "languages": dict(Counter(r["language"] for r in repos if r.get("language")).most_common()),
        "workflow_runs": {
            "total": len(runs),
            "in_progress": sum(1 for r in runs if r["status"] != "completed"),
            "success": conclusions["success"],
            "failure": conclusions["failure"],
            "cancelled": conclusions["cancelled"],
            "success_rate": success_rate,
        },
        "top_repositories": [
            {
                "name": r["name"],
                "language": r.get("language"),
                "stars": r["stargazers_count"],
                "forks": r["forks_count"],
                "last_activity_at": r["updated_at"],
            }
            for r in top
        ],
        "recent_activity": [
            {
                "date": e["timestamp"],
                "action": e["event"],
                "actor_name": e.get("actor"),
                "target_name": e.get("target"),
            }
            for e in entries[:10]
        ],
        "activity_trends": [
            {
                "date": day,
                "issues": counts["issues"],
                "pull_requests": counts["pull_requests"],
                "events": counts["events"],
            }
            for day, counts in sorted(trends.items())
        ],
    }
