from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable

from snapchef.errors import InvalidImageError


SUPPORTED_IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".heic", ".bmp"}

RECIPE_KEY_PREFIX = "recipe_cache_"


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    return sha256_bytes(text.encode("utf-8"))


def image_fingerprint(path: str | Path) -> str:
    """Hash of path, modification time (ms) and byte size.

    Changes whenever the file on disk changes, without reading its content.
    """
    file_path = Path(path)
    stat = file_path.stat()
    modified_ms = stat.st_mtime_ns // 1_000_000
    return sha256_text(f"{file_path}-{modified_ms}-{stat.st_size}")


def normalize_ingredient(name: str) -> str:
    return " ".join(name.split()).lower()


def ingredient_cache_key(ingredients: Iterable[str]) -> str:
    normalized = sorted(
        {normalize_ingredient(item) for item in ingredients if item and item.strip()}
    )
    return RECIPE_KEY_PREFIX + sha256_text(",".join(normalized))


def is_supported_image(path: str | Path) -> bool:
    return Path(path).suffix.lower() in SUPPORTED_IMAGE_EXTENSIONS


def require_existing_file(path: str | Path) -> Path:
    file_path = Path(path)
    if not file_path.exists():
        raise InvalidImageError(f"File not found: {file_path}")
    if not file_path.is_file():
        raise InvalidImageError(f"Not a file: {file_path}")
    return file_path


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.1f} GB"
