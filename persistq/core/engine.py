"""
PersistentQueue — durable FIFO job queue with a bounded in-memory window.

Every job is written to storage before a consumer ever sees it. Only a
window of at most `batch_size` jobs is held in memory; when the consumer has
worked through it and storage still holds jobs, the next batch is hydrated.

Usage
-----
    from persistq import PersistentQueue, QueueEvent

    async with PersistentQueue("jobs.db", batch_size=10) as q:

        async def handle(job):
            await send_email(job.payload)
            await q.done(job.id)

        q.on(QueueEvent.NEXT, handle)
        await q.add({"to": "user@example.com"})
        q.start()

Dispatcher
----------
All storage access and every change to the queue state goes through a single
asyncio dispatcher task, which handles one Signal at a time in arrival
order (see core/signals.py). Callers of add/done/delete/has/... enqueue a
signal and await its future; start/stop/abort only flip the running flag
and post a Trigger.

Trigger policy
--------------
  1. not running, or empty           → nothing to do
  2. window empty, jobs in storage   → hydrate a batch, emit next(head)
  3. window non-empty                → emit next(head)
  4. otherwise                       → mark empty, emit empty, reclaim

Emitting ``next`` does not remove the job: it stays in storage until the
consumer calls done() or delete().

Reclaim
-------
Becoming empty marks storage for a reclaim (VACUUM). The dispatcher runs it
only when no signal is pending, skips it if a job arrived in the meantime and
never runs it after close() begins. A failed reclaim is logged and ignored.

Fatal channel
-------------
A failure inside the consumption path (hydration, done) leaves the window and
the counter untrustworthy. The queue then stops, logs at CRITICAL, emits
``fatal`` with a FatalQueueError, and every later operation raises that
error. Hosts observe it with ``await q.wait_fatal()`` or the ``fatal`` event
and decide how to terminate.
"""
from __future__ import annotations

import asyncio
import collections
import itertools
import logging
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any

from pydantic import JsonValue

from persistq.adapters.storage.sqlite import SQLiteStorage
from persistq.config import QueueConfig
from persistq.core import codec
from persistq.core.events import EventEmitter, Listener
from persistq.core.signals import Add, FirstMatch, Has, Remove, Search, Signal, Trigger
from persistq.domain.errors import (
    FatalQueueError,
    JobNotFoundError,
    PersistQError,
    QueueAlreadyOpenError,
    QueueNotOpenError,
)
from persistq.domain.models import Job, QueueEvent, QueueState
from persistq.ports.storage import JobStoragePort

logger = logging.getLogger(__name__)

_instance_ids = itertools.count(1)


class PersistentQueue:
    """
    Durable single-consumer FIFO queue.

    Parameters
    ----------
    target     : SQLite database path; "" selects an in-memory database
    batch_size : maximum number of jobs hydrated into memory (default 10)
    storage    : any JobStoragePort; defaults to SQLiteStorage(target)

    Raises
    ------
    ConfigurationError  if target is None or batch_size is not an int >= 1
    """

    def __init__(
        self,
        target: str | None,
        batch_size: int | None = None,
        *,
        storage: JobStoragePort | None = None,
    ) -> None:
        self.config = QueueConfig.build(target, batch_size)
        self.storage: JobStoragePort = (
            storage if storage is not None else SQLiteStorage(self.config.target)
        )
        self._state = QueueState()
        self._events = EventEmitter()
        self._pending: collections.deque[Signal] = collections.deque()
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._reclaim_due = False
        self._closing = False
        self._offered: int | None = None
        self._fatal: FatalQueueError | None = None
        self._fatal_event = asyncio.Event()
        # Child of the module logger so set_debug only affects this queue.
        self._logger = logger.getChild(f"queue-{next(_instance_ids)}")

    @classmethod
    def from_config(
        cls, config: QueueConfig, *, storage: JobStoragePort | None = None
    ) -> "PersistentQueue":
        return cls(config.target, config.batch_size, storage=storage)

    def __repr__(self) -> str:
        return (
            f"PersistentQueue(target={self.config.target!r}, "
            f"batch_size={self.config.batch_size}, opened={self._state.opened})"
        )

    async def __aenter__(self) -> "PersistentQueue":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._state.opened:
            await self.close()

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    async def open(self) -> None:
        """
        Connect storage, resync the job counter and hydrate the first window.

        Raises StorageError if the storage cannot be opened.
        """
        if self._state.opened:
            raise QueueAlreadyOpenError("Queue is already open")

        await self.storage.connect()
        try:
            length = await self.storage.resync_count()
            window = await self._read_batch()
        except Exception:
            await self.storage.close()
            raise

        self._state = QueueState().opened_with(length, window)
        self._offered = None
        self._closing = False
        self._reclaim_due = False
        self._fatal = None
        self._fatal_event.clear()
        self._task = asyncio.create_task(
            self._dispatch_loop(), name="persistq-dispatcher"
        )
        self._logger.info(
            "Opened queue %s: %d job(s), %d hydrated",
            self.config.target or ":memory:",
            length,
            len(window),
        )
        self._events.emit(QueueEvent.OPEN, self.storage)

    async def close(self) -> None:
        """
        Stop consumption, let in-flight listeners and signals finish, then
        release storage and forget the window and the counter.
        """
        if not self._state.opened:
            raise QueueNotOpenError("close")

        self._state = self._state.with_running(False)
        await self._events.drain()

        self._closing = True
        self._wakeup.set()
        if self._task is not None:
            await self._task
            self._task = None
        await self._events.drain()

        try:
            await self.storage.close()
        finally:
            self._state = QueueState()
            self._logger.info("Closed queue %s", self.config.target or ":memory:")
            self._events.emit(QueueEvent.CLOSE)

    def start(self) -> None:
        """Begin emitting jobs. No-op when already started."""
        self._require_open("start")
        if self._state.running:
            return
        self._state = self._state.with_running(True)
        # A restart offers the current head again.
        self._offered = None
        self._logger.debug("Queue started")
        self._post(Trigger())

    def stop(self) -> None:
        """Stop scheduling new ``next`` emissions. In-flight work completes."""
        self._state = self._state.with_running(False)
        self._logger.debug("Queue stopped")

    def abort(self) -> None:
        """Same as stop(); does not roll back an add or done in progress."""
        self._logger.debug("Queue aborted")
        self.stop()

    # ------------------------------------------------------------------ #
    # Operations                                                           #
    # ------------------------------------------------------------------ #

    async def add(self, payload: object) -> int:
        """
        Persist a job and return its storage-assigned id.

        Raises PayloadError if the payload is not JSON-serializable and
        StorageError if the insert fails.
        """
        self._require_open("add")
        value = codec.validate(payload)
        return await self._request(
            lambda f: Add(payload=value, text=codec.encode(value), future=f)
        )

    async def done(self, job_id: int | None = None) -> None:
        """
        Acknowledge a consumed job (the window head when `job_id` is omitted)
        and move on to the next one.

        Raises FatalQueueError if the job was already gone or storage failed;
        the same error is published on the fatal channel.
        """
        self._require_open("done")
        await self._request(lambda f: Remove(job_id=job_id, completed=True, future=f))

    async def delete(self, job_id: int | None = None) -> int:
        """
        Remove a job without marking it executed and return its id.

        Raises JobNotFoundError if no such job is stored.
        """
        self._require_open("delete")
        return await self._request(
            lambda f: Remove(job_id=job_id, completed=False, future=f)
        )

    async def has(self, job_id: int) -> bool:
        """True if the job is still queued (window first, then storage)."""
        self._require_open("has")
        return await self._request(lambda f: Has(job_id=job_id, future=f))

    async def get_job_ids(self, payload: object) -> list[int]:
        """Ids of all queued jobs whose payload equals `payload`, in execution order."""
        self._require_open("get_job_ids")
        text = codec.encode(payload)
        return await self._request(lambda f: Search(text=text, future=f))

    async def get_first_job_id(self, payload: object) -> int | None:
        """Id of the earliest queued job whose payload equals `payload`, else None."""
        self._require_open("get_first_job_id")
        text = codec.encode(payload)
        return await self._request(lambda f: FirstMatch(text=text, future=f))

    # ------------------------------------------------------------------ #
    # State queries                                                        #
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> QueueState:
        """Snapshot of the engine state (immutable)."""
        return self._state

    @property
    def fatal_error(self) -> FatalQueueError | None:
        return self._fatal

    def get_length(self) -> int | None:
        """Total number of persisted jobs; None before open()."""
        return self._state.length

    def is_empty(self) -> bool:
        if self._state.empty is None:
            raise QueueNotOpenError("is_empty")
        return self._state.empty

    def is_started(self) -> bool:
        return self._state.running

    def is_open(self) -> bool:
        return self._state.opened

    def get_storage(self) -> JobStoragePort:
        """The storage adapter in use. Raises QueueNotOpenError before open()."""
        if not self._state.opened:
            raise QueueNotOpenError("get_storage")
        return self.storage

    def set_debug(self, debug: bool) -> "PersistentQueue":
        """Enable or disable DEBUG logging for this queue only."""
        self._logger.setLevel(logging.DEBUG if debug else logging.NOTSET)
        return self

    async def wait_fatal(self) -> FatalQueueError:
        """Block until the queue hits a fatal error, then return it."""
        while self._fatal is None:
            await self._fatal_event.wait()
        return self._fatal

    # ------------------------------------------------------------------ #
    # Notifications                                                        #
    # ------------------------------------------------------------------ #

    def on(self, event: QueueEvent | str, listener: Listener) -> "PersistentQueue":
        self._events.on(event, listener)
        return self

    def off(self, event: QueueEvent | str, listener: Listener) -> "PersistentQueue":
        self._events.off(event, listener)
        return self

    # ------------------------------------------------------------------ #
    # Internal machinery                                                   #
    # ------------------------------------------------------------------ #

    def _require_open(self, operation: str) -> None:
        if self._fatal is not None:
            raise self._fatal
        if not self._state.opened or self._closing:
            raise QueueNotOpenError(operation)

    def _post(self, signal: Signal) -> None:
        self._pending.append(signal)
        self._wakeup.set()

    async def _request(self, make: Callable[[asyncio.Future[Any]], Signal]) -> Any:
        """Post the signal built by make(future) and wait for its result."""
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._post(make(future))
        return await future

    async def _dispatch_loop(self) -> None:
        """Background coroutine — runs until closing and all signals drain."""
        while not self._closing or self._pending:
            if self._pending:
                await self._dispatch(self._pending.popleft())
            elif self._reclaim_due:
                # Yield once so callers woken by the last signal can post first.
                await asyncio.sleep(0)
                if not self._pending and not self._closing:
                    await self._reclaim()
            else:
                self._wakeup.clear()
                await self._wakeup.wait()

    async def _dispatch(self, signal: Signal) -> None:
        match signal:
            case Trigger():
                await self._advance()
            case Add(payload=payload, text=text, future=future):
                await self._resolve(future, self._handle_add(payload, text))
            case Remove(job_id=job_id, completed=True, future=future):
                await self._resolve(future, self._handle_done(job_id))
            case Remove(job_id=job_id, completed=False, future=future):
                await self._resolve(future, self._handle_delete(job_id))
            case Has(job_id=job_id, future=future):
                await self._resolve(future, self._handle_has(job_id))
            case Search(text=text, future=future):
                await self._resolve(future, self.storage.search(text))
            case FirstMatch(text=text, future=future):
                await self._resolve(future, self._handle_first_match(text))

    @staticmethod
    async def _resolve(future: asyncio.Future[Any], coro: Awaitable[Any]) -> None:
        """Run a handler; its result or exception goes to the caller's future."""
        try:
            result = await coro
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
            return
        if not future.done():
            future.set_result(result)

    # -- trigger -------------------------------------------------------- #

    async def _advance(self) -> None:
        state = self._state
        if self._fatal is not None or not state.running or state.empty:
            self._logger.debug(
                "Trigger ignored: running=%s empty=%s", state.running, state.empty
            )
            return

        if not state.window and state.length != 0:
            try:
                window = await self._read_batch()
            except Exception as exc:
                self._fail("Hydration failed", exc)
                return
            if not window:
                self._fail(
                    "Hydration failed",
                    RuntimeError(f"counter reports {state.length} job(s), storage has none"),
                )
                return
            self._state = self._state.with_window(window)

        head = self._state.head()
        if head is None:
            self._mark_empty()
        elif head.id == self._offered:
            self._logger.debug("Job %d already offered", head.id)
        else:
            self._offered = head.id
            self._logger.debug("Emitting job %d", head.id)
            self._events.emit(QueueEvent.NEXT, head)

    async def _read_batch(self) -> tuple[Job, ...]:
        rows = await self.storage.select_first(self.config.batch_size)
        self._logger.debug("Hydrated %d job(s)", len(rows))
        return tuple(Job(id=job_id, payload=codec.decode(text)) for job_id, text in rows)

    def _mark_empty(self) -> None:
        self._state = self._state.with_length(0)
        self._logger.debug("Queue is empty")
        self._events.emit(QueueEvent.EMPTY)
        self._reclaim_due = True

    async def _reclaim(self) -> None:
        self._reclaim_due = False
        if not self._state.empty:
            return
        try:
            await self.storage.reclaim()
        except PersistQError as exc:
            self._logger.warning("Storage reclaim failed: %s", exc)

    def _fail(self, message: str, cause: Exception) -> FatalQueueError:
        if self._fatal is None:
            self._fatal = FatalQueueError(message, cause)
            self._state = self._state.with_running(False)
            self._logger.critical("%s", self._fatal, exc_info=cause)
            self._fatal_event.set()
            self._events.emit(QueueEvent.FATAL, self._fatal)
        return self._fatal

    # -- request handlers ----------------------------------------------- #

    async def _handle_add(self, payload: JsonValue, text: str) -> int:
        job_id, counter = await self.storage.insert(text)
        was_empty = self._state.empty
        self._state = self._state.with_length(counter)
        self._logger.debug("Added job %d (%d queued)", job_id, counter)
        self._events.emit(QueueEvent.ADD, Job(id=job_id, payload=payload))
        if was_empty:
            self._logger.debug("No longer empty")
            if self._state.running:
                self._post(Trigger())
        return job_id

    async def _remove(self, job_id: int | None) -> int:
        if job_id is None:
            head = self._state.head()
            if head is None:
                raise JobNotFoundError(None)
            job_id = head.id

        rows, counter = await self.storage.delete(job_id)
        self._state = self._state.with_job_removed(job_id).with_length(counter)
        if rows == 0:
            raise JobNotFoundError(job_id)
        self._logger.debug("Removed job %d (%d queued)", job_id, counter)
        if counter == 0:
            self._mark_empty()
        return job_id

    async def _handle_done(self, job_id: int | None) -> int:
        try:
            removed = await self._remove(job_id)
        except Exception as exc:
            raise self._fail("Completing job failed", exc) from exc
        self._post(Trigger())
        return removed

    async def _handle_delete(self, job_id: int | None) -> int:
        removed = await self._remove(job_id)
        self._events.emit(QueueEvent.DELETE, removed)
        # Deleting the offered head must not stall the consumer.
        if removed == self._offered:
            self._post(Trigger())
        return removed

    async def _handle_has(self, job_id: int) -> bool:
        if self._state.find(job_id) is not None:
            return True
        return await self.storage.exists(job_id)

    async def _handle_first_match(self, text: str) -> int | None:
        # Canonical text equality, as in the storage search.
        for job in self._state.window:
            if codec.encode(job.payload) == text:
                return job.id
        ids = await self.storage.search(text)
        return ids[0] if ids else None
