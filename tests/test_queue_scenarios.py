"""End-to-end behaviour of PersistentQueue over both storage adapters."""

import asyncio
import random
from collections.abc import Callable
from pathlib import Path

import aiosqlite
import pytest

from persistq.adapters.storage.memory import InMemoryStorage
from persistq.adapters.storage.sqlite import COUNT_TABLE, SQLiteStorage
from persistq.core.engine import PersistentQueue
from persistq.domain.models import Job, QueueEvent


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


# ---------------------------------------------------------------------------
# Draining
# ---------------------------------------------------------------------------


async def test_drain_three_jobs_with_batch_of_two():
    async with PersistentQueue("", 2) as q:
        seen: list[Job] = []
        q.on(QueueEvent.NEXT, seen.append)

        assert await q.add("a") == 1
        assert await q.add("b") == 2
        assert await q.add("c") == 3
        q.start()

        await _wait_until(lambda: len(seen) == 1)
        await q.done(1)
        assert q.get_length() == 2

        await _wait_until(lambda: len(seen) == 2)
        await q.done(2)
        await _wait_until(lambda: len(seen) == 3)
        await q.done(3)

        assert [j.id for j in seen] == [1, 2, 3]
        assert [j.payload for j in seen] == ["a", "b", "c"]
        assert q.is_empty() is True
        assert q.get_length() == 0


async def test_batch_of_one_hydrates_once_per_job():
    storage = InMemoryStorage()
    async with PersistentQueue("", 1, storage=storage) as q:
        for p in ("a", "b", "c"):
            await q.add(p)

        reads = 0
        original_select = storage.select_first

        async def counting_select(limit: int) -> list[tuple[int, str]]:
            nonlocal reads
            reads += 1
            assert limit == 1
            return await original_select(limit)

        storage.select_first = counting_select  # type: ignore[method-assign]

        windows: list[int] = []

        async def consume(job: Job) -> None:
            windows.append(len(q.state.window))
            await q.done(job.id)

        drained = asyncio.Event()
        q.on(QueueEvent.NEXT, consume)
        q.on(QueueEvent.EMPTY, drained.set)
        q.start()
        await asyncio.wait_for(drained.wait(), 2)

        assert reads == 3
        assert windows == [1, 1, 1]


async def test_stop_suppresses_next_until_restarted():
    async with PersistentQueue("", 10, storage=InMemoryStorage()) as q:
        seen: list[int] = []
        q.on(QueueEvent.NEXT, lambda job: seen.append(job.id))
        for p in ("a", "b", "c"):
            await q.add(p)
        q.start()
        await _wait_until(lambda: seen == [1])

        q.stop()
        await q.done(1)
        job_id = await q.add("d")
        await asyncio.sleep(0.05)

        assert seen == [1]
        assert job_id == 4
        assert q.get_length() == 3
        assert await q.has(job_id) is True

        q.start()
        await _wait_until(lambda: seen == [1, 2])


async def test_fifo_order_with_adds_during_consumption():
    async with PersistentQueue("", 3, storage=InMemoryStorage()) as q:
        added = [await q.add({"n": n}) for n in range(5)]
        seen: list[int] = []
        drained = asyncio.Event()

        async def consume(job: Job) -> None:
            seen.append(job.id)
            if job.id % 2 == 0 and len(added) < 12:
                added.append(await q.add({"n": len(added)}))
            await q.done(job.id)

        q.on(QueueEvent.NEXT, consume)
        q.on(QueueEvent.EMPTY, drained.set)
        q.start()
        await asyncio.wait_for(drained.wait(), 2)

        assert seen == sorted(added)
        assert all(a < b for a, b in zip(seen, seen[1:]))
        assert q.is_empty() is True


# ---------------------------------------------------------------------------
# Counting invariants
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("batch_size", [1, 3, 10])
async def test_length_tracks_adds_minus_removals(batch_size: int):
    rng = random.Random(batch_size)
    async with PersistentQueue("", batch_size, storage=InMemoryStorage()) as q:
        live: list[int] = []
        for _ in range(150):
            if live and rng.random() < 0.4:
                job_id = live.pop(rng.randrange(len(live)))
                assert await q.delete(job_id) == job_id
                assert await q.has(job_id) is False
            else:
                job_id = await q.add(rng.choice(["a", "b", {"k": 1}]))
                live.append(job_id)
                assert await q.has(job_id) is True

            assert q.get_length() == len(live)
            assert q.is_empty() is (len(live) == 0)
            window_ids = [j.id for j in q.state.window]
            assert window_ids == sorted(set(window_ids))
            assert len(window_ids) <= batch_size


async def test_first_job_id_after_add():
    async with PersistentQueue("", 2) as q:
        for n in range(4):
            await q.add({"n": n})
        job_id = await q.add({"unique": True})
        assert await q.get_first_job_id({"unique": True}) == job_id


# ---------------------------------------------------------------------------
# Durability (SQLite file)
# ---------------------------------------------------------------------------


async def test_unacknowledged_jobs_survive_restart(tmp_path: Path):
    path = str(tmp_path / "jobs.db")

    async with PersistentQueue(path, 2) as q:
        seen: list[int] = []
        q.on(QueueEvent.NEXT, lambda job: seen.append(job.id))
        for p in ("a", "b", "c"):
            await q.add(p)
        q.start()
        await _wait_until(lambda: seen == [1])
        await q.done(1)
        await _wait_until(lambda: seen == [1, 2])
        # job 2 offered but never acknowledged

    async with PersistentQueue(path, 2) as q:
        assert q.get_length() == 2
        assert await q.has(1) is False
        seen = []
        q.on(QueueEvent.NEXT, lambda job: seen.append(job.id))
        q.start()
        await _wait_until(lambda: seen == [2])
        assert await q.add("d") == 4


async def test_counter_is_resynchronized_on_open(tmp_path: Path):
    path = str(tmp_path / "jobs.db")
    async with PersistentQueue(path) as q:
        await q.add("a")
        await q.add("b")

    async with aiosqlite.connect(path) as db:
        await db.execute(f"UPDATE {COUNT_TABLE} SET counter = 40")
        await db.commit()

    async with PersistentQueue(path) as q:
        assert q.get_length() == 2
        assert isinstance(q.get_storage(), SQLiteStorage)
