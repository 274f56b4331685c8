"""
Durable key-value store backed by SQLite.

Both the verification registry and the durable config cache keep their
state here so it survives process restarts.

Design
------
One long-lived aiosqlite connection is opened for the process lifetime, with
WAL mode so readers never block. Writes go through ``transaction()``, which
serialises writers with a semaphore and commits or rolls back as a unit.

Expiry
------
``put`` takes an optional ``ttl_seconds``. Expired rows are invisible to
``get`` and ``list`` and are purged lazily by ``purge_expired``.

Usage
-----
    kv = KVStore()
    await kv.open(Path("./data/kv.db"))
    await kv.put("verify:1:2", {"expires_at": 123}, ttl_seconds=3600)
    value = await kv.get("verify:1:2")
    keys = await kv.list("verify:")
    await kv.close()
"""

from __future__ import annotations

import asyncio
import json
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, List

import aiosqlite

from gitmod.util.logger import get_logger

logger = get_logger("kv_store")

_PRAGMAS = [
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",    # safe with WAL; faster than FULL
    "PRAGMA temp_store = MEMORY",
    "PRAGMA busy_timeout = 5000",
]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    expires_at REAL
)
"""


class KVStore:
    """
    Key-value store on a single aiosqlite connection.

    Values are JSON-serialised. Reads share the connection directly; writes
    are serialised by ``_write_sem``.

    Args:
        clock: Source of unix time, injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._conn: aiosqlite.Connection | None = None
        self._write_sem = asyncio.Semaphore(1)
        self._path: Path | None = None
        self._clock = clock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, path: Path) -> None:
        """
        Open the database, apply pragmas and create the table.

        Args:
            path: Path to the SQLite database file.
        """
        if self._conn is not None:
            logger.warning("[KV STORE] open() called but connection already exists, ignoring")
            return

        self._path = path
        path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(path)
        for pragma in _PRAGMAS:
            await self._conn.execute(pragma)
        await self._conn.execute(_SCHEMA)
        await self._conn.execute("CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv_store(expires_at)")
        await self._conn.commit()

        logger.info("[KV STORE] Opened %s", path)

    async def close(self) -> None:
        """Flush WAL and close the connection."""
        if self._conn is None:
            return

        try:
            await self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            await self._conn.commit()
        except Exception:
            logger.exception("[KV STORE] WAL checkpoint failed during close")
        finally:
            await self._conn.close()
            self._conn = None
            logger.info("[KV STORE] Connection closed")

    @property
    def connection(self) -> aiosqlite.Connection:
        """
        The raw aiosqlite connection.

        Raises:
            RuntimeError: If the store has not been opened yet.
        """
        if self._conn is None:
            raise RuntimeError("KVStore: connection is not open. Call await kv_store.open(path) first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Serialised write transaction: commits on clean exit, rolls back on error.
        """
        conn = self.connection

        async with self._write_sem:
            try:
                yield conn
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

    # ------------------------------------------------------------------
    # Key-value API
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None if absent or expired."""
        cursor = await self.connection.execute(
            "SELECT value FROM kv_store WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
            (key, self._clock()),
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None
        return json.loads(row[0])

    async def put(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Insert or replace ``key``. With ``ttl_seconds`` the row expires after that long."""
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        payload = json.dumps(value, ensure_ascii=False)
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO kv_store (key, value, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value      = excluded.value,
                    expires_at = excluded.expires_at
                """,
                (key, payload, expires_at),
            )

    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if a row was deleted."""
        async with self.transaction() as conn:
            cursor = await conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            deleted = cursor.rowcount > 0
            await cursor.close()
        return deleted

    async def list(self, prefix: str = "") -> List[str]:
        """Return live keys starting with ``prefix``, sorted."""
        cursor = await self.connection.execute(
            "SELECT key FROM kv_store "
            "WHERE substr(key, 1, ?) = ? AND (expires_at IS NULL OR expires_at > ?) "
            "ORDER BY key",
            (len(prefix), prefix, self._clock()),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [row[0] for row in rows]

    async def purge_expired(self) -> int:
        """Delete expired rows and return how many were removed."""
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM kv_store WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (self._clock(),),
            )
            removed = cursor.rowcount
            await cursor.close()
        if removed:
            logger.debug("[KV STORE] Purged %d expired rows", removed)
        return removed
