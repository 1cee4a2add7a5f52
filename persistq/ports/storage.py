"""
JobStoragePort — the single port in persistq.

Any object satisfying this structural Protocol can act as the storage backend.
No base class or registration is required — Python's structural subtyping
(duck typing + Protocol) is sufficient.

Counter contract
----------------
The backend owns the authoritative job count. It is maintained by the
backend itself whenever a row is inserted or deleted (SQLite: AFTER INSERT /
AFTER DELETE triggers on the job table). Writes therefore return the counter
value observed right after the write, and the engine adopts that value
instead of counting on its own.

  insert(text)    → (new_id, counter)
  delete(job_id)  → (rows_affected, counter)
  resync_count()  → counter recomputed from a full count(*)  (open() only)

Ordering contract
-----------------
Statements are executed one at a time, in call order. Ids are assigned in
ascending order and never reused.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class JobStoragePort(Protocol):
    """
    Minimal interface required by the persistq engine.

    Implementing adapters (built-in):
      - SQLiteStorage    — aiosqlite, single serialized connection
      - InMemoryStorage  — dict-backed, for tests and examples
    """

    async def connect(self) -> None:
        """
        Open the backend and create the schema if it does not exist.

        Must be idempotent and safe against a pre-populated store.

        Raises
        ------
        StorageError   if the connection cannot be established
        """
        ...

    async def close(self) -> None:
        """Release the connection. Safe to call on a closed backend."""
        ...

    async def resync_count(self) -> int:
        """Reset the counter from a full count of stored jobs and return it."""
        ...

    async def insert(self, job: str) -> tuple[int, int]:
        """
        Persist serialized job text.

        Returns
        -------
        job_id  : int — storage-assigned id
        counter : int — job count after the insert
        """
        ...

    async def select_first(self, limit: int) -> list[tuple[int, str]]:
        """Return up to `limit` (id, job_text) rows in ascending id order."""
        ...

    async def delete(self, job_id: int) -> tuple[int, int]:
        """
        Delete a job by id.

        Returns
        -------
        rows    : int — number of rows removed (0 when the id was absent)
        counter : int — job count after the delete
        """
        ...

    async def exists(self, job_id: int) -> bool:
        """True if a job with `job_id` is stored."""
        ...

    async def search(self, job: str) -> list[int]:
        """Ids of all jobs whose stored text equals `job`, ascending."""
        ...

    async def reclaim(self) -> None:
        """Compact the store after deletions. Housekeeping only."""
        ...
