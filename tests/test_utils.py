import os

import pytest

from snapchef.errors import InvalidImageError
from snapchef.utils import (
    format_bytes,
    image_fingerprint,
    ingredient_cache_key,
    is_supported_image,
    require_existing_file,
    sha256_text,
)


def test_sha256_text() -> None:
    assert sha256_text("hello") == (
        "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
    )


def test_ingredient_cache_key_ignores_order_and_case() -> None:
    first = ingredient_cache_key(["Tomato", "basil", "  garlic "])
    second = ingredient_cache_key(["garlic", "TOMATO", "Basil"])
    assert first == second
    assert first.startswith("recipe_cache_")


def test_ingredient_cache_key_ignores_duplicates_and_blanks() -> None:
    assert ingredient_cache_key(["rice", "Rice", " "]) == ingredient_cache_key(["rice"])
    assert ingredient_cache_key(["rice"]) != ingredient_cache_key(["rice", "egg"])


def test_image_fingerprint_changes_with_content(tmp_path) -> None:
    path = tmp_path / "meal.jpg"
    path.write_bytes(b"abc")
    os.utime(path, ns=(1_000_000_000, 1_000_000_000))
    before = image_fingerprint(path)
    assert image_fingerprint(path) == before

    path.write_bytes(b"abcdef")
    os.utime(path, ns=(1_000_000_000, 1_000_000_000))
    assert image_fingerprint(path) != before


def test_image_fingerprint_changes_with_mtime(tmp_path) -> None:
    path = tmp_path / "meal.jpg"
    path.write_bytes(b"abc")
    os.utime(path, ns=(1_000_000_000, 1_000_000_000))
    before = image_fingerprint(path)
    os.utime(path, ns=(2_000_000_000, 2_000_000_000))
    assert image_fingerprint(path) != before


def test_require_existing_file(tmp_path) -> None:
    with pytest.raises(InvalidImageError):
        require_existing_file(tmp_path / "missing.jpg")
    with pytest.raises(InvalidImageError):
        require_existing_file(tmp_path)


@pytest.mark.parametrize(
    ("name", "expected"),
    [("a.JPG", True), ("a.png", True), ("a.webp", True), ("a.gif", False), ("a", False)],
)
def test_is_supported_image(name, expected) -> None:
    assert is_supported_image(name) is expected


@pytest.mark.parametrize(
    ("size", "expected"),
    [
        (512, "512 B"),
        (2048, "2.0 KB"),
        (5 * 1024 * 1024, "5.0 MB"),
        (3 * 1024 * 1024 * 1024, "3.0 GB"),
    ],
)
def test_format_bytes(size, expected) -> None:
    assert format_bytes(size) == expected
