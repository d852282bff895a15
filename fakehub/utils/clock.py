from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def now_iso() -> str:
    return isoformat(utcnow())


def iso_in(**delta) -> str:
    """ISO timestamp ``timedelta(**delta)`` from now."""
    return isoformat(utcnow() + timedelta(**delta))


def parse_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_past(value: str | None) -> bool:
    if not value:
        return False
    return parse_iso(value) <= utcnow()
