"""
Bounded local queue, backed by async SQLite, buffering hub events.

The state sink writes every capability update, availability change and
trigger here; the uploader deletes rows only after the hub acknowledged
them. The LS120 is polled every few seconds, so during a long hub outage
the spool would grow without bound: it is capped at ``max_rows`` and the
oldest events are discarded first (the newest capability values are the
ones the hub needs).

Operations:
- enqueue(payload): INSERT a JSON payload row, pruning beyond max_rows.
- peek(n): SELECT up to n oldest rows with their rowids (FIFO).
- ack(rowids): DELETE only the specified rows.
- count(): number of pending events.

CHANGELOG:
- 2026-10-18: Cap the spool size, discarding oldest events first
- 2026-10-18: Initial creation (STORY-010)

TODO:
- None
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS: int = 100_000

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS events (
    rowid INTEGER PRIMARY KEY AUTOINCREMENT,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_INSERT_SQL = "INSERT INTO events (payload) VALUES (?);"

_PEEK_SQL = """\
SELECT rowid, payload
FROM events
ORDER BY rowid ASC
LIMIT ?;
"""

_COUNT_SQL = "SELECT COUNT(*) FROM events;"

_PRUNE_SQL = """\
DELETE FROM events
WHERE rowid IN (SELECT rowid FROM events ORDER BY rowid ASC LIMIT ?);
"""


class Spool:
    """Async FIFO of JSON event payloads in a SQLite file (WAL mode).

    Args:
        path: Filesystem path for the SQLite database file.
        max_rows: Upper bound on pending rows.

    Usage::

        async with Spool(path="/data/spool.db") as spool:
            await spool.enqueue('{"kind": "capabilities", ...}')
            rows = await spool.peek(10)
            await spool.ack([rowid for rowid, _ in rows])
    """

    def __init__(self, path: str | Path, max_rows: int = DEFAULT_MAX_ROWS) -> None:
        if max_rows < 1:
            raise ValueError("max_rows must be >= 1")
        self._path = Path(path)
        self._max_rows = max_rows
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        self._db = await aiosqlite.connect(str(self._path))
        await self._db.execute("PRAGMA journal_mode=WAL;")
        await self._db.execute(_CREATE_TABLE_SQL)
        await self._db.commit()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> Spool:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def enqueue(self, payload: str) -> None:
        """Append a JSON payload, discarding the oldest rows beyond max_rows."""
        db = self._require_db()
        await db.execute(_INSERT_SQL, (payload,))
        overflow = await self._count(db) - self._max_rows
        if overflow > 0:
            await db.execute(_PRUNE_SQL, (overflow,))
            logger.warning("Spool full, discarded %d oldest events", overflow)
        await db.commit()

    async def peek(self, n: int) -> list[tuple[int, str]]:
        """Return up to *n* oldest ``(rowid, payload)`` pairs without removing them."""
        db = self._require_db()
        if n < 1:
            return []
        cursor = await db.execute(_PEEK_SQL, (n,))
        rows = await cursor.fetchall()
        return [(row[0], row[1]) for row in rows]

    async def ack(self, rowids: list[int]) -> None:
        """Delete the given rows; unknown rowids are ignored."""
        db = self._require_db()
        if not rowids:
            return
        placeholders = ",".join("?" for _ in rowids)
        sql = f"DELETE FROM events WHERE rowid IN ({placeholders});"  # noqa: S608
        await db.execute(sql, rowids)
        await db.commit()

    async def count(self) -> int:
        return await self._count(self._require_db())

    def _require_db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Spool not opened. Call open() or use async with."
        return self._db

    @staticmethod
    async def _count(db: aiosqlite.Connection) -> int:
        cursor = await db.execute(_COUNT_SQL)
        row = await cursor.fetchone()
        return row[0]
