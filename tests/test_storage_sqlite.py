from pathlib import Path

import pytest

from persistq.adapters.storage.sqlite import COUNT_TABLE, SQLiteStorage
from persistq.domain.errors import StorageError
from persistq.ports.storage import JobStoragePort

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def storage() -> SQLiteStorage:  # type: ignore[misc]
    s = SQLiteStorage("")
    await s.connect()
    yield s
    await s.close()


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def test_empty_path_selects_memory():
    assert SQLiteStorage("").path == ":memory:"


def test_satisfies_port():
    assert isinstance(SQLiteStorage("jobs.db"), JobStoragePort)


def test_repr_contains_path():
    assert "jobs.db" in repr(SQLiteStorage("jobs.db"))


def test_connection_before_connect_raises():
    with pytest.raises(StorageError):
        SQLiteStorage("").connection


async def test_connect_failure_raises_storage_error(tmp_path: Path):
    s = SQLiteStorage(str(tmp_path / "missing" / "jobs.db"))
    with pytest.raises(StorageError, match="Cannot open"):
        await s.connect()


async def test_close_is_idempotent():
    s = SQLiteStorage("")
    await s.connect()
    await s.close()
    await s.close()


# ---------------------------------------------------------------------------
# Counter triggers
# ---------------------------------------------------------------------------


async def test_insert_returns_id_and_trigger_counter(storage: SQLiteStorage):
    assert await storage.insert('"a"') == (1, 1)
    assert await storage.insert('"b"') == (2, 2)


async def test_delete_decrements_counter(storage: SQLiteStorage):
    await storage.insert('"a"')
    await storage.insert('"b"')
    assert await storage.delete(1) == (1, 1)


async def test_delete_missing_reports_zero_rows(storage: SQLiteStorage):
    await storage.insert('"a"')
    assert await storage.delete(42) == (0, 1)


async def test_resync_count_repairs_counter(storage: SQLiteStorage):
    await storage.insert('"a"')
    await storage.connection.execute(f"UPDATE {COUNT_TABLE} SET counter = 99")
    assert await storage.resync_count() == 1


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def test_select_first_orders_and_limits(storage: SQLiteStorage):
    for text in ('"a"', '"b"', '"c"'):
        await storage.insert(text)
    assert await storage.select_first(2) == [(1, '"a"'), (2, '"b"')]


async def test_select_first_on_empty_table(storage: SQLiteStorage):
    assert await storage.select_first(10) == []


async def test_exists(storage: SQLiteStorage):
    await storage.insert('"a"')
    assert await storage.exists(1) is True
    assert await storage.exists(2) is False


async def test_search_exact_match(storage: SQLiteStorage):
    for text in ('{"a":1}', '{"a":2}', '{"a":1}'):
        await storage.insert(text)
    assert await storage.search('{"a":1}') == [1, 3]
    assert await storage.search('{"a":3}') == []


async def test_ids_never_reused_after_deleting_max(storage: SQLiteStorage):
    await storage.insert('"a"')
    await storage.insert('"b"')
    await storage.delete(2)
    job_id, counter = await storage.insert('"c"')
    assert job_id == 3
    assert counter == 2


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


async def test_schema_creation_is_idempotent(tmp_path: Path):
    path = str(tmp_path / "jobs.db")
    first = SQLiteStorage(path)
    await first.connect()
    await first.insert('"a"')
    await first.close()

    second = SQLiteStorage(path)
    await second.connect()
    try:
        assert await second.resync_count() == 1
        assert await second.select_first(10) == [(1, '"a"')]
        assert await second.insert('"b"') == (2, 2)
    finally:
        await second.close()


async def test_reclaim_on_file(tmp_path: Path):
    s = SQLiteStorage(str(tmp_path / "jobs.db"))
    await s.connect()
    try:
        for i in range(20):
            await s.insert(f'"{i}"')
        for i in range(1, 21):
            await s.delete(i)
        await s.reclaim()
        assert await s.resync_count() == 0
    finally:
        await s.close()


async def test_operations_after_close_raise(tmp_path: Path):
    s = SQLiteStorage(str(tmp_path / "jobs.db"))
    await s.connect()
    await s.close()
    with pytest.raises(StorageError):
        await s.insert('"a"')
