"""
Tests for the key-value stores and best-effort writer.
"""

import asyncio
from pathlib import Path

import pytest

from learning_companion.core.exceptions import StorageError
from learning_companion.core.persistence import (
    BestEffortWriter,
    InMemoryStore,
    JSONFileStore,
    create_store,
)


class TestInMemoryStore:
    """Test the in-memory store."""

    @pytest.mark.asyncio
    async def test_put_get_copies_values(self) -> None:
        store = InMemoryStore()
        value = {"topics": ["planets"]}
        await store.put("memory/profiles/u1", value)
        value["topics"].append("magnets")

        loaded = await store.get("memory/profiles/u1")
        assert loaded == {"topics": ["planets"]}
        assert await store.get("missing", "default") == "default"

    @pytest.mark.asyncio
    async def test_list_and_delete(self) -> None:
        store = InMemoryStore()
        await store.put("sessions/archive/a", {})
        await store.put("sessions/archive/b", {})
        await store.append("usage/ledger", {"tokens": 1})

        assert await store.list("sessions/") == ["sessions/archive/a", "sessions/archive/b"]
        assert await store.delete("sessions/archive/a") is True
        assert await store.delete("sessions/archive/a") is False

    @pytest.mark.asyncio
    async def test_append_log(self) -> None:
        store = InMemoryStore()
        await store.append("usage/ledger", {"n": 1})
        await store.append("usage/ledger", {"n": 2})
        assert await store.read_log("usage/ledger") == [{"n": 1}, {"n": 2}]

    @pytest.mark.asyncio
    async def test_rejects_path_traversal(self) -> None:
        store = InMemoryStore()
        with pytest.raises(StorageError):
            await store.put("../etc/passwd", {})


class TestJSONFileStore:
    """Test the file-backed store."""

    @pytest.mark.asyncio
    async def test_documents_and_logs(self, temp_dir: Path) -> None:
        store = JSONFileStore(temp_dir)
        await store.put("memory/profiles/u1", {"streak_days": 2})
        await store.append("usage/ledger", {"tokens": 10})
        await store.append("usage/ledger", {"tokens": 20})

        assert (temp_dir / "memory" / "profiles" / "u1.json").exists()
        assert await store.get("memory/profiles/u1") == {"streak_days": 2}
        assert [r["tokens"] for r in await store.read_log("usage/ledger")] == [10, 20]
        assert await store.list("memory") == ["memory/profiles/u1"]

    @pytest.mark.asyncio
    async def test_corrupt_log_lines_are_skipped(self, temp_dir: Path) -> None:
        store = JSONFileStore(temp_dir)
        await store.append("usage/ledger", {"tokens": 10})
        with open(temp_dir / "usage" / "ledger.jsonl", "a", encoding="utf-8") as f:
            f.write("{not json\n")

        assert await store.read_log("usage/ledger") == [{"tokens": 10}]

    @pytest.mark.asyncio
    async def test_unserializable_value(self, temp_dir: Path) -> None:
        store = JSONFileStore(temp_dir)
        with pytest.raises(StorageError):
            await store.put("bad", {"value": object()})

    def test_create_store(self, temp_dir: Path) -> None:
        assert isinstance(create_store("memory", temp_dir), InMemoryStore)
        assert isinstance(create_store("json", temp_dir), JSONFileStore)
        with pytest.raises(StorageError):
            create_store("redis", temp_dir)


class TestBestEffortWriter:
    """Test background writes."""

    @pytest.mark.asyncio
    async def test_successful_write(self) -> None:
        store = InMemoryStore()
        writer = BestEffortWriter()
        writer.submit("profile", lambda: store.put("k", 1))
        await writer.flush()

        assert await store.get("k") == 1
        assert writer.completed_writes == 1
        assert writer.pending == 0

    @pytest.mark.asyncio
    async def test_failed_write_is_dropped_after_retries(self) -> None:
        attempts = []

        async def failing() -> None:
            attempts.append(1)
            raise OSError("disk full")

        writer = BestEffortWriter(max_retries=3, retry_delay_s=0)
        writer.submit("profile", failing)
        await writer.flush()

        assert len(attempts) == 3
        assert writer.failed_writes == 1

    @pytest.mark.asyncio
    async def test_failed_snapshot_does_not_overwrite_newer_one(self) -> None:
        store = InMemoryStore()
        failures = [OSError("store busy")]

        async def flaky(value: dict) -> None:
            if failures:
                raise failures.pop()
            await store.put("memory/profiles/u1", value)

        writer = BestEffortWriter(max_retries=3, retry_delay_s=0)
        writer.submit("profile v1", lambda: flaky({"v": 1}), key="memory/u1")
        await asyncio.sleep(0)
        writer.submit("profile v2", lambda: flaky({"v": 2}), key="memory/u1")
        await writer.flush()

        assert await store.get("memory/profiles/u1") == {"v": 2}
        assert writer.failed_writes == 0

    @pytest.mark.asyncio
    async def test_in_flight_failure_yields_to_newer_snapshot(self) -> None:
        store = InMemoryStore()
        attempts = []

        async def stale() -> None:
            attempts.append("v1")
            writer.submit("profile v2", lambda: store.put("k", {"v": 2}), key="k")
            raise OSError("store busy")

        writer = BestEffortWriter(max_retries=3, retry_delay_s=0)
        writer.submit("profile v1", stale, key="k")
        await writer.flush()

        assert attempts == ["v1"]
        assert await store.get("k") == {"v": 2}
        assert writer.superseded_writes == 1
        assert writer.completed_writes == 1

    @pytest.mark.asyncio
    async def test_unkeyed_writes_all_run(self) -> None:
        store = InMemoryStore()
        writer = BestEffortWriter()
        for n in range(3):
            writer.submit("ledger append", lambda n=n: store.append("usage/ledger", {"n": n}))
        await writer.flush()

        assert len(await store.read_log("usage/ledger")) == 3

    def test_submit_without_loop_drops(self) -> None:
        writer = BestEffortWriter()

        async def write() -> None:
            return None

        writer.submit("profile", write)
        assert writer.failed_writes == 1
