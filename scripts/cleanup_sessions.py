"""One-shot cleanup of expired sessions and stale pending logins in a file-backed store.

The server runs the same cleanup in a background loop; this is for stores
shared between runs (``DATABASE_PATH=./data/fakehub.db``) that are not
currently being served.

    python scripts/cleanup_sessions.py [path/to/fakehub.db]
"""

from __future__ import annotations

import asyncio
import logging
import sys

from fakehub.auth.sessions import cleanup_expired_sessions
from fakehub.config import settings
from fakehub.db.database import close_db, open_db

logger = logging.getLogger(__name__)


async def _cleanup(database_path: str) -> int:
    db = await open_db(database_path)
    try:
        deleted = await cleanup_expired_sessions(db)
        logger.info("Session cleanup: removed %d expired sessions", deleted)
        return deleted
    finally:
        await close_db(db)


def main(argv: list[str]) -> int:
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    database_path = argv[1] if len(argv) > 1 else settings.database_path
    if database_path == ":memory:":
        logger.error("Nothing to clean: set DATABASE_PATH or pass a store file")
        return 1
    deleted = asyncio.run(_cleanup(database_path))
    print(f"Cleaned up {deleted} expired sessions")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
