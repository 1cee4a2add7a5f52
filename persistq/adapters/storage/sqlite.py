"""
SQLiteStorage — aiosqlite adapter, the production storage backend.

Schema
------
    queue        (id INTEGER PRIMARY KEY ASC AUTOINCREMENT, job TEXT)
    queue_count  (counter BIGINT)             -- exactly one row
    queue_insert AFTER INSERT ON queue  → counter + 1
    queue_delete AFTER DELETE ON queue  → counter - 1

Every DDL statement is IF NOT EXISTS, so connect() is safe against an
existing database. AUTOINCREMENT guarantees ids are never reused, even after
the highest id has been deleted.

Execution model
---------------
One aiosqlite connection (one background thread), opened in autocommit
mode. An asyncio.Lock additionally makes multi-statement calls such as
insert-then-read-counter atomic with respect to other coroutines, so at
most one statement runs at a time and statements run in call order.
reclaim() holds the lock for the whole VACUUM, so callers arriving during it
wait; the queue engine only reclaims while it has no other work queued.

Pass "" (or ":memory:") as the path for an ephemeral in-memory database.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3

import aiosqlite

from persistq.domain.errors import StorageError

logger = logging.getLogger(__name__)

JOB_TABLE = "queue"
COUNT_TABLE = "queue_count"

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {JOB_TABLE} (id INTEGER PRIMARY KEY ASC AUTOINCREMENT, job TEXT);

CREATE TABLE IF NOT EXISTS {COUNT_TABLE} (counter BIGINT);

INSERT INTO {COUNT_TABLE} SELECT 0 AS counter WHERE NOT EXISTS (SELECT * FROM {COUNT_TABLE});

CREATE TRIGGER IF NOT EXISTS queue_insert
AFTER INSERT ON {JOB_TABLE}
BEGIN
    UPDATE {COUNT_TABLE} SET counter = counter + 1;
END;

CREATE TRIGGER IF NOT EXISTS queue_delete
AFTER DELETE ON {JOB_TABLE}
BEGIN
    UPDATE {COUNT_TABLE} SET counter = counter - 1;
END;
"""


class SQLiteStorage:
    """
    SQLite job storage.

    Parameters
    ----------
    path : database file path; "" selects an in-memory database
    """

    def __init__(self, path: str) -> None:
        self.path = ":memory:" if path == "" else path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"SQLiteStorage(path={self.path!r})"

    @property
    def connection(self) -> aiosqlite.Connection:
        """The live aiosqlite connection (raises StorageError when closed)."""
        if self._db is None:
            raise StorageError(
                "SQLite connection is not open", RuntimeError(self.path)
            )
        return self._db

    async def connect(self) -> None:
        async with self._lock:
            try:
                self._db = await aiosqlite.connect(self.path, isolation_level=None)
                await self._db.executescript(SCHEMA_SQL)
            except sqlite3.Error as exc:
                await self._discard()
                raise StorageError(f"Cannot open SQLite database {self.path!r}", exc) from exc
        logger.info("Opened SQLite job storage at %s", self.path)

    async def close(self) -> None:
        async with self._lock:
            if self._db is None:
                return
            try:
                await self._db.close()
            except sqlite3.Error as exc:
                raise StorageError("SQLite close failed", exc) from exc
            finally:
                self._db = None
        logger.info("Closed SQLite job storage at %s", self.path)

    async def resync_count(self) -> int:
        async with self._lock:
            try:
                await self.connection.execute(
                    f"UPDATE {COUNT_TABLE} SET counter = (SELECT count(*) FROM {JOB_TABLE})"
                )
                return await self._read_counter()
            except sqlite3.Error as exc:
                raise StorageError("SQLite count resync failed", exc) from exc

    async def insert(self, job: str) -> tuple[int, int]:
        async with self._lock:
            try:
                cursor = await self.connection.execute(
                    f"INSERT INTO {JOB_TABLE} (job) VALUES (?)", (job,)
                )
                job_id = cursor.lastrowid
                await cursor.close()
                return job_id, await self._read_counter()
            except sqlite3.Error as exc:
                raise StorageError("SQLite insert failed", exc) from exc

    async def select_first(self, limit: int) -> list[tuple[int, str]]:
        async with self._lock:
            try:
                async with self.connection.execute(
                    f"SELECT id, job FROM {JOB_TABLE} ORDER BY id ASC LIMIT ?", (limit,)
                ) as cursor:
                    rows = await cursor.fetchall()
            except sqlite3.Error as exc:
                raise StorageError("SQLite select failed", exc) from exc
        return [(row[0], row[1]) for row in rows]

    async def delete(self, job_id: int) -> tuple[int, int]:
        async with self._lock:
            try:
                cursor = await self.connection.execute(
                    f"DELETE FROM {JOB_TABLE} WHERE id = ?", (job_id,)
                )
                rows = cursor.rowcount
                await cursor.close()
                return rows, await self._read_counter()
            except sqlite3.Error as exc:
                raise StorageError("SQLite delete failed", exc) from exc

    async def exists(self, job_id: int) -> bool:
        async with self._lock:
            try:
                async with self.connection.execute(
                    f"SELECT id FROM {JOB_TABLE} WHERE id = ?", (job_id,)
                ) as cursor:
                    return await cursor.fetchone() is not None
            except sqlite3.Error as exc:
                raise StorageError("SQLite lookup failed", exc) from exc

    async def search(self, job: str) -> list[int]:
        async with self._lock:
            try:
                async with self.connection.execute(
                    f"SELECT id FROM {JOB_TABLE} WHERE job = ? ORDER BY id ASC", (job,)
                ) as cursor:
                    rows = await cursor.fetchall()
            except sqlite3.Error as exc:
                raise StorageError("SQLite search failed", exc) from exc
        return [row[0] for row in rows]

    async def reclaim(self) -> None:
        async with self._lock:
            try:
                await self.connection.execute("VACUUM")
            except sqlite3.Error as exc:
                raise StorageError("SQLite VACUUM failed", exc) from exc
        logger.debug("Reclaimed free pages in %s", self.path)

    # ------------------------------------------------------------------ #
    # Internal helpers (caller holds the lock)                            #
    # ------------------------------------------------------------------ #

    async def _read_counter(self) -> int:
        async with self.connection.execute(
            f"SELECT counter FROM {COUNT_TABLE} LIMIT 1"
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row is not None else 0

    async def _discard(self) -> None:
        if self._db is not None:
            db, self._db = self._db, None
            await db.close()
