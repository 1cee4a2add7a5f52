"""
InMemoryStorage — dict-backed job storage for testing and development.

Mirrors the SQLite adapter's behaviour: ids come from a monotonic
autoincrement sequence that is never reused, and a separate counter is
updated on every insert and delete the way the SQLite triggers do.
An asyncio.Lock serializes every call, faithfully simulating the
one-statement-at-a-time execution of the real backend.

Zero external dependencies. Safe for multiple concurrent coroutines in a
single event loop. NOT safe across processes or threads.
"""
from __future__ import annotations

import asyncio
import dataclasses


@dataclasses.dataclass
class InMemoryStorage:
    """
    In-process job storage.

    Parameters
    ----------
    initial_jobs : optional pre-populated job texts (useful for test setup);
                   they receive ids 1..n in order
    """

    initial_jobs: list[str] = dataclasses.field(default_factory=list)

    def __post_init__(self) -> None:
        self._rows: dict[int, str] = {}
        self._seq: int = 0
        self._counter: int = 0
        self._connected: bool = False
        self._lock: asyncio.Lock = asyncio.Lock()
        self.reclaims: int = 0
        # The counter stays at 0 for pre-populated rows until resync_count().
        for job in self.initial_jobs:
            self._seq += 1
            self._rows[self._seq] = job

    async def connect(self) -> None:
        async with self._lock:
            self._connected = True

    async def close(self) -> None:
        async with self._lock:
            self._connected = False

    async def resync_count(self) -> int:
        async with self._lock:
            self._counter = len(self._rows)
            return self._counter

    async def insert(self, job: str) -> tuple[int, int]:
        async with self._lock:
            self._seq += 1
            self._rows[self._seq] = job
            self._counter += 1
            return self._seq, self._counter

    async def select_first(self, limit: int) -> list[tuple[int, str]]:
        async with self._lock:
            return [(i, self._rows[i]) for i in sorted(self._rows)[:limit]]

    async def delete(self, job_id: int) -> tuple[int, int]:
        async with self._lock:
            if self._rows.pop(job_id, None) is None:
                return 0, self._counter
            self._counter -= 1
            return 1, self._counter

    async def exists(self, job_id: int) -> bool:
        async with self._lock:
            return job_id in self._rows

    async def search(self, job: str) -> list[int]:
        async with self._lock:
            return sorted(i for i, text in self._rows.items() if text == job)

    async def reclaim(self) -> None:
        async with self._lock:
            self.reclaims += 1
