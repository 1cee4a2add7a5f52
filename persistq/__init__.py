"""
persistq — durable FIFO job queue with a bounded in-memory window.

Producers add JSON-serializable payloads, a single consumer drains them in
order, and every job is persisted before the consumer sees it, so the
backlog survives restarts. Only up to `batch_size` jobs are ever held in
memory; the rest stay on disk until the window drains and the next batch is
hydrated.

The total job count is kept by the storage itself (SQLite insert/delete
triggers on a one-row counter table), so the engine never scans the backlog
except once at open(), when the counter is resynchronized.

Quick start
-----------
    import asyncio
    from persistq import PersistentQueue, QueueEvent

    async def main():
        async with PersistentQueue("jobs.db", batch_size=10) as q:
            drained = asyncio.Event()

            async def handle(job):
                print(f"Processing job {job.id}: {job.payload}")
                await q.done(job.id)

            q.on(QueueEvent.NEXT, handle)
            q.on(QueueEvent.EMPTY, drained.set)

            await q.add({"to": "user@example.com"})
            q.start()
            await drained.wait()

    asyncio.run(main())

Storage adapters
----------------
  - SQLiteStorage     — aiosqlite; the default ("" selects :memory:)
  - InMemoryStorage   — for tests and examples, no dependencies

Custom adapters implement the JobStoragePort Protocol (ports/storage.py).

Architecture
------------
Follows the Ports & Adapters pattern:
  domain/   — pure value types (Job, QueueState, QueueEvent) and errors
  ports/    — Protocol interfaces (JobStoragePort)
  core/     — business logic (PersistentQueue, signals, events, codec)
  adapters/ — concrete storage implementations
"""
from __future__ import annotations

from persistq.adapters.storage.memory import InMemoryStorage
from persistq.adapters.storage.sqlite import SQLiteStorage
from persistq.config import QueueConfig
from persistq.core.engine import PersistentQueue
from persistq.domain.errors import (
    ConfigurationError,
    FatalQueueError,
    JobNotFoundError,
    PayloadError,
    PersistQError,
    QueueAlreadyOpenError,
    QueueNotOpenError,
    StorageError,
)
from persistq.domain.models import Job, QueueEvent, QueueState
from persistq.ports.storage import JobStoragePort

__all__ = [
    # Domain models
    "Job",
    "QueueEvent",
    "QueueState",
    # Errors
    "PersistQError",
    "ConfigurationError",
    "FatalQueueError",
    "JobNotFoundError",
    "PayloadError",
    "QueueAlreadyOpenError",
    "QueueNotOpenError",
    "StorageError",
    # Configuration
    "QueueConfig",
    # Port (for typing custom adapters)
    "JobStoragePort",
    # Queue engine
    "PersistentQueue",
    # Built-in storage adapters
    "InMemoryStorage",
    "SQLiteStorage",
]
