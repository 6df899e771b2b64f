"""
Run-state persistence with SQLite and async support.

A small key/value table with optional expiry. Holds the start-up lock, the
running flag, the cancel flag, the run state machine and the error
notification, so they survive the process and can be polled from outside.
"""

import json
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Optional

import aiosqlite


logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at REAL
)
"""


def database_path(location: str) -> Path:
    """Accept a plain path or a ``sqlite:///`` / ``sqlite+aiosqlite:///`` URL."""
    if location.startswith("sqlite"):
        _, _, rest = location.partition("://")
        return Path(rest[1:] if rest.startswith("/") else rest)
    return Path(location)


class StateStore:
    """Async SQLite key/value store with TTL support."""

    def __init__(self, db_path: str = ".staticgen/state.db", clock: Callable[[], float] = time.time):
        self.db_path = database_path(db_path)
        self._clock = clock
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        if self._conn is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(self.db_path, timeout=30)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA busy_timeout=30000")
        await conn.execute(SCHEMA)
        await conn.commit()
        self._conn = conn

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "StateStore":
        await self.connect()
        return self

    async def __aexit__(self, *_) -> None:
        await self.close()

    @asynccontextmanager
    async def transaction(self):
        """Write transaction; takes the database write lock up front."""
        await self.connect()
        try:
            await self._conn.execute("BEGIN IMMEDIATE")
            yield self._conn
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise

    # ---------------------------------------------- #
    # Key/value API
    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        return self._clock() + ttl if ttl else None

    async def add(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Insert ``key`` only if it is absent or expired. Atomic."""
        now = self._clock()
        async with self.transaction() as conn:
            await conn.execute(
                "DELETE FROM state WHERE key = ? AND expires_at IS NOT NULL AND expires_at <= ?",
                (key, now),
            )
            cursor = await conn.execute(
                "INSERT OR IGNORE INTO state (key, value, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), self._expiry(ttl)),
            )
            return cursor.rowcount == 1

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Insert or overwrite ``key``."""
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO state (key, value, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at
                """,
                (key, json.dumps(value), self._expiry(ttl)),
            )

    async def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value, or ``default`` when absent or expired."""
        await self.connect()
        cursor = await self._conn.execute(
            "SELECT value, expires_at FROM state WHERE key = ?", (key,)
        )
        row = await cursor.fetchone()
        if row is None:
            return default
        if row["expires_at"] is not None and row["expires_at"] <= self._clock():
            return default
        try:
            return json.loads(row["value"])
        except ValueError:
            logger.warning(f"Unreadable state value for {key}")
            return default

    async def delete(self, key: str) -> bool:
        async with self.transaction() as conn:
            cursor = await conn.execute("DELETE FROM state WHERE key = ?", (key,))
            return cursor.rowcount > 0

    async def delete_if(self, key: str, value: Any) -> bool:
        """Delete ``key`` only while it still holds ``value``."""
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM state WHERE key = ? AND value = ?", (key, json.dumps(value))
            )
            return cursor.rowcount > 0
