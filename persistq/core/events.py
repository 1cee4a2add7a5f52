"""
EventEmitter — listener registry behind the queue's notification surface.

Listeners are registered per QueueEvent and called in registration order.

  - plain callables run inline, at the moment the event is emitted
  - coroutine functions are scheduled as tasks on the running loop, so a
    ``next`` listener can ``await queue.done(job.id)`` without blocking the
    engine's dispatcher

A listener that raises is logged with its traceback and does not prevent the
remaining listeners from running.
"""
from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from persistq.domain.models import QueueEvent

logger = logging.getLogger(__name__)

Listener = Callable[..., Awaitable[None] | None]


@dataclasses.dataclass
class EventEmitter:
    """Per-queue registry of notification listeners."""

    _listeners: dict[QueueEvent, list[Listener]] = dataclasses.field(
        default_factory=dict, init=False, repr=False
    )
    _tasks: set[asyncio.Task[None]] = dataclasses.field(
        default_factory=set, init=False, repr=False
    )

    def on(self, event: QueueEvent | str, listener: Listener) -> None:
        """Register `listener` for `event`."""
        self._listeners.setdefault(QueueEvent(event), []).append(listener)

    def off(self, event: QueueEvent | str, listener: Listener) -> None:
        """Unregister `listener`. Unknown listeners are ignored."""
        listeners = self._listeners.get(QueueEvent(event), [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: QueueEvent | str) -> int:
        return len(self._listeners.get(QueueEvent(event), []))

    def emit(self, event: QueueEvent, *args: Any) -> None:
        """Deliver `event` to every registered listener."""
        for listener in list(self._listeners.get(event, [])):
            if inspect.iscoroutinefunction(listener):
                task = asyncio.get_running_loop().create_task(
                    listener(*args), name=f"persistq-{event.value}-listener"
                )
                self._tasks.add(task)
                task.add_done_callback(self._reap)
                continue
            try:
                listener(*args)
            except Exception:
                logger.exception("Listener for %r raised", event.value)

    async def drain(self) -> None:
        """Wait for listener tasks to finish, excluding the calling task."""
        current = asyncio.current_task()
        while pending := [t for t in self._tasks if t is not current and not t.done()]:
            await asyncio.gather(*pending, return_exceptions=True)

    def _reap(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Listener task %s raised", task.get_name(), exc_info=exc
            )
