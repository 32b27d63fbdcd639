from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterator, Protocol

from snapchef.errors import CacheError

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_bytes(data)
    tmp_path.replace(path)


class KeyValueStore(Protocol):
    def save_data(self, key: str, value: str) -> None: ...

    def get_data(self, key: str) -> str | None: ...

    def remove_data(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def save_data(self, key: str, value: str) -> None:
        self._data[key] = value

    def get_data(self, key: str) -> str | None:
        return self._data.get(key)

    def remove_data(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """Small string key-value store kept in one JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt key-value file %s", self.path)
            try:
                self.path.unlink()
            except OSError:
                pass
            return {}
        except OSError as exc:
            raise CacheError(f"Failed to read {self.path}", cause=exc) from exc
        if not isinstance(data, dict):
            return {}
        return {str(key): str(value) for key, value in data.items()}

    def _store(self, data: dict[str, str]) -> None:
        try:
            _atomic_write(self.path, json.dumps(data).encode("utf-8"))
        except OSError as exc:
            raise CacheError(f"Failed to write {self.path}", cause=exc) from exc

    def save_data(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._store(data)

    def get_data(self, key: str) -> str | None:
        return self._load().get(key)

    def remove_data(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._store(data)


class FileCache:
    """Binary blobs stored one file per key under a directory."""

    def __init__(self, root: str | Path, suffix: str = ".json") -> None:
        self.root = Path(root).expanduser()
        self.suffix = suffix

    def path_for(self, key: str) -> Path:
        return self.root / f"{_SAFE_KEY.sub('_', key)}{self.suffix}"

    def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def read(self, key: str) -> bytes | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError as exc:
            raise CacheError(f"Failed to read cache file {path}", cause=exc) from exc

    def write(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        try:
            _atomic_write(path, data)
        except OSError as exc:
            raise CacheError(f"Failed to write cache file {path}", cause=exc) from exc

    def remove(self, key: str) -> None:
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            raise CacheError(f"Failed to remove cache entry {key}", cause=exc) from exc

    def _files(self) -> Iterator[Path]:
        if not self.root.exists():
            return iter(())
        return (path for path in self.root.glob(f"*{self.suffix}") if path.is_file())

    def clear(self) -> None:
        try:
            for path in list(self._files()):
                path.unlink(missing_ok=True)
        except OSError as exc:
            raise CacheError(f"Failed to clear cache directory {self.root}", cause=exc) from exc

    def size_bytes(self) -> int:
        total = 0
        for path in self._files():
            try:
                total += path.stat().st_size
            except OSError:
                continue
        return total
