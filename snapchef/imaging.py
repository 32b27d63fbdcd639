from __future__ import annotations

import asyncio
import base64
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import timedelta
from io import BytesIO
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from snapchef.cache import ResultCache
from snapchef.errors import DisposedError, InvalidImageError
from snapchef.models import ImageAsset, ProcessedImage
from snapchef.utils import image_fingerprint, require_existing_file

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 4 * 1024 * 1024
MAX_DIMENSION = 1024
MIN_DIMENSION = 100
JPEG_QUALITY = 85
BACKGROUND_THRESHOLD_BYTES = 1024 * 1024
PROCESSED_IMAGE_TTL = timedelta(days=7)
PROCESSED_IMAGE_MAX_ENTRIES = 100


def _check_file_size(path: Path) -> int:
    size = path.stat().st_size
    if size == 0:
        raise InvalidImageError(f"Image file is empty: {path}")
    if size > MAX_IMAGE_BYTES:
        raise InvalidImageError(
            f"Image file too large: {size} bytes > {MAX_IMAGE_BYTES} bytes"
        )
    return size


def _read_image(path: str | Path) -> tuple[Path, bytes, Image.Image]:
    file_path = require_existing_file(path)
    _check_file_size(file_path)
    data = file_path.read_bytes()
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise InvalidImageError("Unable to decode image") from exc
    if image.width < MIN_DIMENSION or image.height < MIN_DIMENSION:
        raise InvalidImageError(f"Image too small: {image.width}x{image.height}")
    return file_path, data, image


def target_size(width: int, height: int, max_dimension: int = MAX_DIMENSION) -> tuple[int, int]:
    if width <= max_dimension and height <= max_dimension:
        return width, height
    aspect_ratio = width / height
    if width > height:
        return max_dimension, max(1, round(max_dimension / aspect_ratio))
    return max(1, round(max_dimension * aspect_ratio)), max_dimension


def _to_rgb(image: Image.Image) -> Image.Image:
    if image.mode == "RGB":
        return image
    if image.mode in ("RGBA", "LA", "P"):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    return image.convert("RGB")


def load_image_asset(path: str | Path) -> ImageAsset:
    file_path, data, image = _read_image(path)
    return ImageAsset(
        path=str(file_path),
        data=data,
        width=image.width,
        height=image.height,
        fingerprint=image_fingerprint(file_path),
    )


def encode_image(path: str | Path, cache_key: str) -> ProcessedImage:
    """Validate, downscale and JPEG-encode one image file.

    Depends only on the file content, so it gives the same result on the
    worker thread and inline.
    """
    started = time.perf_counter()
    _, data, image = _read_image(path)
    width, height = target_size(image.width, image.height)
    if (width, height) != image.size:
        image = image.resize((width, height), Image.Resampling.BILINEAR)

    buffer = BytesIO()
    _to_rgb(image).save(buffer, format="JPEG", quality=JPEG_QUALITY)
    encoded = buffer.getvalue()
    return ProcessedImage(
        encoded_payload=base64.b64encode(encoded).decode("ascii"),
        original_size=len(data),
        processed_size=len(encoded),
        cache_key=cache_key,
        width=width,
        height=height,
        processing_time_ms=int((time.perf_counter() - started) * 1000),
    )


def processed_image_cache(**kwargs) -> ResultCache[ProcessedImage]:
    kwargs.setdefault("max_entries", PROCESSED_IMAGE_MAX_ENTRIES)
    return ResultCache(
        "image_processing_cache",
        ttl=PROCESSED_IMAGE_TTL,
        encode=ProcessedImage.to_dict,
        decode=ProcessedImage.from_dict,
        **kwargs,
    )


class ImagePreprocessor:
    def __init__(
        self,
        cache: ResultCache[ProcessedImage] | None = None,
        *,
        background_threshold: int = BACKGROUND_THRESHOLD_BYTES,
    ) -> None:
        self._cache = cache if cache is not None else processed_image_cache()
        self.background_threshold = background_threshold
        self._executor: ThreadPoolExecutor | None = None
        self._disposed = False

    def _worker(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="snapchef-image")
        return self._executor

    def validate(self, path: str | Path) -> bool:
        try:
            asset = load_image_asset(path)
        except InvalidImageError as exc:
            logger.info("Image validation failed: %s", exc)
            return False
        logger.debug(
            "Image validation passed: %dx%d, %d bytes", asset.width, asset.height, asset.size_bytes
        )
        return True

    async def _encode(self, path: Path, cache_key: str) -> ProcessedImage:
        size = _check_file_size(path)
        if size > self.background_threshold:
            logger.debug("Processing %s on the image worker (%d bytes)", path, size)
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._worker(), encode_image, path, cache_key)
        logger.debug("Processing %s inline (%d bytes)", path, size)
        return encode_image(path, cache_key)

    async def process(self, path: str | Path) -> ProcessedImage:
        if self._disposed:
            raise DisposedError("image preprocessor")
        started = time.perf_counter()
        file_path = require_existing_file(path)
        cache_key = image_fingerprint(file_path)

        result, from_cache = await self._cache.get_or_fetch(
            cache_key, lambda: self._encode(file_path, cache_key)
        )
        if from_cache:
            result = replace(
                result,
                processing_time_ms=int((time.perf_counter() - started) * 1000),
                from_cache=True,
            )
        logger.debug(
            "Processed image %s: %d -> %d bytes (%.2f), %d ms, cached=%s",
            file_path,
            result.original_size,
            result.processed_size,
            result.compression_ratio,
            result.processing_time_ms,
            result.from_cache,
        )
        return result

    async def clear_cache(self) -> None:
        await self._cache.clear()

    def cache_size(self) -> int:
        return self._cache.size_bytes()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._cache.dispose()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        logger.debug("Image preprocessor disposed")
