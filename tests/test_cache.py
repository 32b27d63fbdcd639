import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from snapchef.cache import ResultCache
from snapchef.errors import DisposedError, NetworkError
from snapchef.storage import FileCache, MemoryStore


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _cache(tmp_path=None, clock=None, **kwargs) -> ResultCache[dict]:
    if tmp_path is not None:
        kwargs.setdefault("disk", FileCache(tmp_path / "entries"))
    return ResultCache(
        "test",
        ttl=timedelta(hours=24),
        encode=lambda value: value,
        decode=lambda raw: raw,
        clock=clock or Clock(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_ttl_boundary() -> None:
    clock = Clock()
    cache = _cache(clock=clock)
    await cache.put("k", {"v": 1})

    clock.advance(hours=24)
    assert await cache.get("k") == {"v": 1}

    clock.advance(seconds=1)
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_disk_roundtrip_and_index(tmp_path) -> None:
    store = MemoryStore()
    cache = _cache(tmp_path, index_store=store)
    await cache.put("k", {"v": 1})

    fresh = _cache(tmp_path, index_store=store)
    assert await fresh.get("k") == {"v": 1}
    metadata = json.loads(store.get_data("test_metadata"))
    assert metadata["keys"] == ["k"]


@pytest.mark.asyncio
async def test_expired_disk_entry_is_a_miss(tmp_path) -> None:
    clock = Clock()
    store = MemoryStore()
    await _cache(tmp_path, clock=clock, index_store=store).put("k", {"v": 1})

    clock.advance(hours=25)
    assert await _cache(tmp_path, clock=clock, index_store=store).get("k") is None


@pytest.mark.asyncio
async def test_memory_tier_evicts_oldest() -> None:
    clock = Clock()
    cache = _cache(clock=clock, max_memory_entries=2)
    for key in ("a", "b", "c"):
        await cache.put(key, {"key": key})
        clock.advance(seconds=1)

    assert cache.memory_size == 2
    assert await cache.get("a") is None
    assert await cache.get("c") == {"key": "c"}


@pytest.mark.asyncio
async def test_index_eviction_removes_files(tmp_path) -> None:
    disk = FileCache(tmp_path / "entries")
    store = MemoryStore()
    cache = _cache(disk=disk, index_store=store, max_entries=2)
    for key in ("a", "b", "c"):
        await cache.put(key, {"key": key})

    assert not disk.exists("a")
    assert disk.exists("b") and disk.exists("c")
    assert json.loads(store.get_data("test_metadata"))["keys"] == ["c", "b"]
    assert await cache.get("a") is None


@pytest.mark.asyncio
async def test_get_or_fetch_deduplicates_concurrent_calls() -> None:
    cache = _cache()
    calls = 0

    async def fetch():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.1)
        return {"v": calls}

    results = await asyncio.gather(*(cache.get_or_fetch("k", fetch) for _ in range(5)))

    assert calls == 1
    values = [value for value, _ in results]
    assert all(value is values[0] for value in values)
    assert cache.in_flight == 0

    value, from_cache = await cache.get_or_fetch("k", fetch)
    assert from_cache is True
    assert value == {"v": 1}
    assert calls == 1


@pytest.mark.asyncio
async def test_failed_fetch_is_shared_and_not_cached() -> None:
    cache = _cache()
    calls = 0

    async def failing():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.05)
        raise NetworkError.timeout()

    results = await asyncio.gather(
        cache.get_or_fetch("k", failing),
        cache.get_or_fetch("k", failing),
        return_exceptions=True,
    )
    assert calls == 1
    assert all(isinstance(item, NetworkError) for item in results)
    assert results[0] is results[1]
    assert await cache.get("k") is None

    async def succeeding():
        return {"v": 2}

    assert await cache.get_or_fetch("k", succeeding) == ({"v": 2}, False)


@pytest.mark.asyncio
async def test_dispose_fails_waiters() -> None:
    cache = _cache()
    release = asyncio.Event()

    async def slow():
        await release.wait()
        return {"v": 1}

    first = asyncio.create_task(cache.get_or_fetch("k", slow))
    await asyncio.sleep(0)
    waiter = asyncio.create_task(cache.get_or_fetch("k", slow))
    await asyncio.sleep(0)

    cache.dispose()
    release.set()

    with pytest.raises(DisposedError):
        await waiter
    with pytest.raises(DisposedError):
        await first
    with pytest.raises(DisposedError):
        await cache.get("k")


@pytest.mark.asyncio
async def test_clear_empty_and_populated(tmp_path) -> None:
    disk = FileCache(tmp_path / "entries")
    store = MemoryStore()
    cache = _cache(disk=disk, index_store=store)
    await cache.clear()

    await cache.put("k", {"v": 1})
    assert cache.size_bytes() > 0
    await cache.clear()
    assert cache.size_bytes() == 0
    assert store.get_data("test_metadata") is None
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_corrupt_disk_entry_is_dropped(tmp_path) -> None:
    disk = FileCache(tmp_path / "entries")
    store = MemoryStore()
    await _cache(disk=disk, index_store=store).put("k", {"v": 1})
    disk.path_for("k").write_text("{not-json")

    assert await _cache(disk=disk, index_store=store).get("k") is None
    assert not disk.exists("k")


@pytest.mark.asyncio
async def test_prune_expired(tmp_path) -> None:
    clock = Clock()
    disk = FileCache(tmp_path / "entries")
    cache = _cache(disk=disk, clock=clock)
    await cache.put("old", {"v": 1})
    clock.advance(hours=20)
    await cache.put("new", {"v": 2})
    clock.advance(hours=5)

    assert await cache.prune_expired() == 1
    assert not disk.exists("old")
    assert await cache.get("new") == {"v": 2}


@pytest.mark.asyncio
async def test_stats() -> None:
    cache = _cache()
    await cache.put("k", {"v": 1})
    stats = cache.stats()
    assert stats["namespace"] == "test"
    assert stats["memory_entries"] == 1
    assert stats["size"] == "0 B"


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_strand_waiters() -> None:
    cache = _cache()
    release = asyncio.Event()
    calls = 0

    async def slow():
        nonlocal calls
        calls += 1
        await release.wait()
        return {"v": 1}

    first = asyncio.create_task(cache.get_or_fetch("k", slow))
    await asyncio.sleep(0)
    waiter = asyncio.create_task(cache.get_or_fetch("k", slow))
    await asyncio.sleep(0)

    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first
    release.set()

    assert await asyncio.wait_for(waiter, timeout=1.0) == ({"v": 1}, False)
    assert calls == 1
    assert await cache.get("k") == {"v": 1}


@pytest.mark.asyncio
async def test_clear_during_fetch_is_not_undone(tmp_path) -> None:
    cache = _cache(tmp_path, index_store=MemoryStore())
    release = asyncio.Event()

    async def slow():
        await release.wait()
        return {"v": "stale"}

    running = asyncio.create_task(cache.get_or_fetch("k", slow))
    await asyncio.sleep(0)
    await cache.clear()
    release.set()

    assert await running == ({"v": "stale"}, False)
    assert await cache.get("k") is None
    assert cache.size_bytes() == 0
