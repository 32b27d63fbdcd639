"""Two-tier result cache with TTL, capacity bounds and in-flight de-duplication.

Memory tier: a dict capped at ``max_memory_entries``; overflow drops the entries
with the oldest ``cached_at``. Disk tier: one JSON file per key in a
:class:`~snapchef.storage.FileCache`, tracked by a metadata index (keys ordered
most-recent-first) kept in a :class:`~snapchef.storage.KeyValueStore`. When the
index grows past ``max_entries`` the tail keys and their files are dropped.

All bookkeeping runs on the event loop thread without awaiting in between, so
concurrent coroutines never see a half-applied insert, eviction or clear.
Disk writes go through a temporary file and ``replace``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Generic, TypeVar

from snapchef.errors import CacheError, DisposedError
from snapchef.models import CacheEntry, utcnow
from snapchef.storage import FileCache, KeyValueStore, MemoryStore
from snapchef.utils import format_bytes

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ENTRIES = 200
DEFAULT_MAX_MEMORY_ENTRIES = 50


class ResultCache(Generic[T]):
    def __init__(
        self,
        namespace: str,
        *,
        ttl: timedelta,
        encode: Callable[[T], dict[str, Any]],
        decode: Callable[[dict[str, Any]], T],
        disk: FileCache | None = None,
        index_store: KeyValueStore | None = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        max_memory_entries: int = DEFAULT_MAX_MEMORY_ENTRIES,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if max_entries < 1 or max_memory_entries < 1:
            raise ValueError("cache capacities must be at least 1")
        self.namespace = namespace
        self.ttl = ttl
        self.max_entries = max_entries
        self.max_memory_entries = max_memory_entries
        self._encode = encode
        self._decode = decode
        self._disk = disk
        self._index_store = index_store if index_store is not None else MemoryStore()
        self._clock = clock
        self._memory: dict[str, CacheEntry[T]] = {}
        self._pending: dict[str, asyncio.Future[T]] = {}
        self._tasks: set[asyncio.Future[None]] = set()
        self._warmed = False
        self._disposed = False

    @property
    def index_key(self) -> str:
        return f"{self.namespace}_metadata"

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    @property
    def memory_size(self) -> int:
        return len(self._memory)

    def is_valid(self, entry: CacheEntry[T]) -> bool:
        return not entry.is_expired(self.ttl, self._clock())

    def _check_disposed(self) -> None:
        if self._disposed:
            raise DisposedError(f"{self.namespace} cache")

    # metadata index

    def _read_index(self) -> list[str]:
        try:
            raw = self._index_store.get_data(self.index_key)
        except CacheError as exc:
            logger.warning("Failed to read %s index: %s", self.namespace, exc)
            return []
        if not raw:
            return []
        try:
            metadata = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt %s index", self.namespace)
            return []
        keys = metadata.get("keys") if isinstance(metadata, dict) else None
        if not isinstance(keys, list):
            return []
        return [str(key) for key in keys]

    def _write_index(self, keys: list[str]) -> None:
        metadata = {"keys": keys, "last_updated": self._clock().isoformat()}
        try:
            self._index_store.save_data(self.index_key, json.dumps(metadata))
        except CacheError as exc:
            logger.warning("Failed to update %s index: %s", self.namespace, exc)

    def _touch_index(self, key: str) -> list[str]:
        keys = [existing for existing in self._read_index() if existing != key]
        keys.insert(0, key)
        evicted = keys[self.max_entries:]
        self._write_index(keys[: self.max_entries])
        return evicted

    # disk tier

    def _load_from_disk(self, key: str) -> CacheEntry[T] | None:
        if self._disk is None:
            return None
        try:
            raw = self._disk.read(key)
        except CacheError as exc:
            logger.warning("Failed to read %s entry %s: %s", self.namespace, key, exc)
            return None
        if raw is None:
            return None
        try:
            payload = json.loads(raw.decode("utf-8"))
            return CacheEntry(
                key=payload["key"],
                value=self._decode(payload["value"]),
                cached_at=CacheEntry.parse_cached_at(payload["cached_at"]),
            )
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding corrupt %s entry %s: %s", self.namespace, key, exc)
            self._remove_from_disk(key)
            return None

    def _save_to_disk(self, entry: CacheEntry[T]) -> int:
        if self._disk is None:
            return 0
        data = json.dumps(entry.to_dict(self._encode(entry.value))).encode("utf-8")
        try:
            self._disk.write(entry.key, data)
        except CacheError as exc:
            logger.warning("Failed to write %s entry %s: %s", self.namespace, entry.key, exc)
            return 0
        return len(data)

    def _remove_from_disk(self, key: str) -> None:
        if self._disk is None:
            return
        try:
            self._disk.remove(key)
        except CacheError as exc:
            logger.warning("Failed to remove %s entry %s: %s", self.namespace, key, exc)

    # memory tier

    def _remember(self, entry: CacheEntry[T]) -> None:
        self._memory[entry.key] = entry
        overflow = len(self._memory) - self.max_memory_entries
        if overflow > 0:
            oldest = sorted(self._memory.values(), key=lambda item: item.cached_at)
            for stale in oldest[:overflow]:
                del self._memory[stale.key]

    def _warm(self) -> None:
        if self._warmed:
            return
        self._warmed = True
        if self._disk is None:
            return
        loaded = 0
        for key in self._read_index()[: self.max_memory_entries]:
            entry = self._load_from_disk(key)
            if entry is not None and self.is_valid(entry):
                self._memory[key] = entry
                loaded += 1
        if loaded:
            logger.debug("Loaded %d %s entries into memory", loaded, self.namespace)

    # public API

    def lookup(self, key: str) -> CacheEntry[T] | None:
        self._check_disposed()
        self._warm()
        entry = self._memory.get(key)
        if entry is not None:
            if self.is_valid(entry):
                logger.debug("%s cache hit (memory): %s", self.namespace, key)
                return entry
            del self._memory[key]

        entry = self._load_from_disk(key)
        if entry is not None and self.is_valid(entry):
            logger.debug("%s cache hit (disk): %s", self.namespace, key)
            self._remember(entry)
            return entry

        logger.debug("%s cache miss: %s", self.namespace, key)
        return None

    async def get(self, key: str) -> T | None:
        entry = self.lookup(key)
        return entry.value if entry is not None else None

    async def put(self, key: str, value: T) -> None:
        self._check_disposed()
        self._warm()
        entry = CacheEntry(key=key, value=value, cached_at=self._clock())
        self._remember(entry)
        written = self._save_to_disk(entry)
        if self._disk is not None:
            for evicted in self._touch_index(key):
                self._memory.pop(evicted, None)
                self._remove_from_disk(evicted)
        logger.debug("Cached %s entry %s (%d bytes)", self.namespace, key, written)

    async def get_or_fetch(
        self, key: str, fetch: Callable[[], Awaitable[T]]
    ) -> tuple[T, bool]:
        """Return ``(value, from_cache)``, running ``fetch`` at most once per key.

        Callers arriving while a fetch for ``key`` is running wait on the same
        future and see the same value or the same exception. The fetch runs in
        a task owned by the cache, so cancelling one caller leaves the others
        waiting on it unaffected.
        """
        self._check_disposed()
        pending = self._pending.get(key)
        if pending is not None:
            logger.debug("%s fetch already in flight, waiting: %s", self.namespace, key)
            return await asyncio.shield(pending), False

        entry = self.lookup(key)
        if entry is not None:
            return entry.value, True

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        task = asyncio.ensure_future(self._run_fetch(key, fetch, future))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return await asyncio.shield(future), False

    async def _run_fetch(
        self, key: str, fetch: Callable[[], Awaitable[T]], future: asyncio.Future[T]
    ) -> None:
        try:
            value = await fetch()
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
                # mark retrieved; waiters (if any) still receive it
                future.exception()
        else:
            if future.done():
                # disposed while fetching
                return
            # a clear() during the fetch drops tracking; the value is not cached then
            if self._pending.get(key) is future and not self._disposed:
                try:
                    await self.put(key, value)
                except Exception as exc:
                    future.set_exception(exc)
                    future.exception()
                    return
            future.set_result(value)
        finally:
            if self._pending.get(key) is future:
                del self._pending[key]

    async def prune_expired(self) -> int:
        self._check_disposed()
        removed = 0
        for key, entry in list(self._memory.items()):
            if not self.is_valid(entry):
                del self._memory[key]
                removed += 1
        if self._disk is None:
            return removed
        removed = 0
        keep: list[str] = []
        for key in self._read_index():
            entry = self._load_from_disk(key)
            if entry is None or not self.is_valid(entry):
                self._remove_from_disk(key)
                removed += 1
            else:
                keep.append(key)
        self._write_index(keep)
        if removed:
            logger.info("Pruned %d expired %s entries", removed, self.namespace)
        return removed

    async def clear(self) -> None:
        self._memory.clear()
        self._pending.clear()
        if self._disk is not None:
            try:
                self._disk.clear()
            except CacheError as exc:
                logger.warning("Failed to clear %s disk cache: %s", self.namespace, exc)
        try:
            self._index_store.remove_data(self.index_key)
        except CacheError as exc:
            logger.warning("Failed to clear %s index: %s", self.namespace, exc)
        logger.info("%s cache cleared", self.namespace)

    def size_bytes(self) -> int:
        if self._disk is None:
            return 0
        return self._disk.size_bytes()

    def stats(self) -> dict[str, Any]:
        size = self.size_bytes()
        return {
            "namespace": self.namespace,
            "memory_entries": len(self._memory),
            "indexed_entries": len(self._read_index()),
            "in_flight": len(self._pending),
            "size_bytes": size,
            "size": format_bytes(size),
        }

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        for future in self._pending.values():
            if not future.done():
                future.set_exception(DisposedError(f"{self.namespace} cache"))
                future.exception()
        self._pending.clear()
        for task in list(self._tasks):
            task.cancel()
        self._memory.clear()
        logger.debug("%s cache disposed", self.namespace)
