import asyncio
import logging

import pytest

from persistq.core.events import EventEmitter
from persistq.domain.models import Job, QueueEvent


async def test_sync_listener_runs_inline():
    emitter = EventEmitter()
    seen: list[Job] = []
    emitter.on(QueueEvent.NEXT, seen.append)
    emitter.emit(QueueEvent.NEXT, Job(id=1))
    assert seen == [Job(id=1)]


async def test_listeners_run_in_registration_order():
    emitter = EventEmitter()
    calls: list[str] = []
    emitter.on(QueueEvent.EMPTY, lambda: calls.append("first"))
    emitter.on(QueueEvent.EMPTY, lambda: calls.append("second"))
    emitter.emit(QueueEvent.EMPTY)
    assert calls == ["first", "second"]


async def test_event_names_accepted_as_strings():
    emitter = EventEmitter()
    seen: list[int] = []
    emitter.on("delete", seen.append)
    emitter.emit(QueueEvent.DELETE, 5)
    assert seen == [5]
    assert emitter.listener_count("delete") == 1


def test_unknown_event_name_raises():
    with pytest.raises(ValueError):
        EventEmitter().on("finished", print)


async def test_coroutine_listener_runs_as_task():
    emitter = EventEmitter()
    seen: list[Job] = []

    async def listener(job: Job) -> None:
        await asyncio.sleep(0)
        seen.append(job)

    emitter.on(QueueEvent.NEXT, listener)
    emitter.emit(QueueEvent.NEXT, Job(id=1))
    assert seen == []
    await emitter.drain()
    assert seen == [Job(id=1)]


async def test_off_removes_listener():
    emitter = EventEmitter()
    seen: list[int] = []
    emitter.on(QueueEvent.DELETE, seen.append)
    emitter.off(QueueEvent.DELETE, seen.append)
    emitter.emit(QueueEvent.DELETE, 1)
    assert seen == []
    assert emitter.listener_count(QueueEvent.DELETE) == 0


def test_off_unknown_listener_is_ignored():
    EventEmitter().off(QueueEvent.ADD, print)


async def test_failing_listener_is_logged_and_others_still_run(
    caplog: pytest.LogCaptureFixture,
):
    emitter = EventEmitter()
    seen: list[int] = []

    def broken(_: int) -> None:
        raise RuntimeError("boom")

    emitter.on(QueueEvent.DELETE, broken)
    emitter.on(QueueEvent.DELETE, seen.append)
    with caplog.at_level(logging.ERROR, logger="persistq.core.events"):
        emitter.emit(QueueEvent.DELETE, 3)
    assert seen == [3]
    assert "boom" in caplog.text


async def test_failing_coroutine_listener_is_logged(caplog: pytest.LogCaptureFixture):
    emitter = EventEmitter()

    async def broken() -> None:
        raise RuntimeError("async boom")

    emitter.on(QueueEvent.EMPTY, broken)
    with caplog.at_level(logging.ERROR, logger="persistq.core.events"):
        emitter.emit(QueueEvent.EMPTY)
        await emitter.drain()
        await asyncio.sleep(0)
    assert "async boom" in caplog.text


async def test_drain_skips_calling_task():
    emitter = EventEmitter()
    finished = asyncio.Event()

    async def listener() -> None:
        await emitter.drain()
        finished.set()

    emitter.on(QueueEvent.CLOSE, listener)
    emitter.emit(QueueEvent.CLOSE)
    await asyncio.wait_for(emitter.drain(), timeout=1)
    assert finished.is_set()
