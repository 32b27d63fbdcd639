from __future__ import annotations

import logging
import time
from datetime import timedelta
from pathlib import Path
from typing import Any

from snapchef.cache import ResultCache
from snapchef.connectivity import Connectivity, require_online
from snapchef.errors import (
    DisposedError,
    InvalidImageError,
    ProcessingError,
    SnapChefError,
)
from snapchef.imaging import ImagePreprocessor
from snapchef.llm import ChatClient
from snapchef.models import Ingredient, VisionResult
from snapchef.retry import RetryPolicy

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.3
VISION_RESULT_TTL = timedelta(hours=24)


def build_prompt() -> str:
    return (
        "Analyze this food image and identify all visible ingredients with confidence scores.\n"
        "\n"
        "Return your response as a JSON object with this exact structure:\n"
        "{\n"
        '  "ingredients": [\n'
        '    {"name": "ingredient_name", "confidence": 0.95, "category": "category_name"}\n'
        "  ],\n"
        '  "overall_confidence": 0.90\n'
        "}\n"
        "\n"
        "Guidelines:\n"
        "- Only identify ingredients you can clearly see in the image\n"
        "- Use confidence scores from 0.0 to 1.0 (1.0 = completely certain)\n"
        '- Categories should be: "protein", "vegetable", "fruit", "grain", "dairy", '
        '"spice", "herb", "sauce", "other"\n'
        '- Be specific with ingredient names (e.g., "red bell pepper" not just "pepper")\n'
        "- Include overall confidence for the entire analysis\n"
        "- If no food is visible, return empty ingredients array with overall_confidence: 0.0\n"
        "- Minimum confidence threshold: 0.3 (don't include ingredients below this)\n"
        "\n"
        "Return only the JSON object, no additional text."
    )


def build_request(encoded_image: str, model: str) -> dict[str, Any]:
    return {
        "model": model,
        "messages": [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": build_prompt()},
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:image/jpeg;base64,{encoded_image}",
                            "detail": "high",
                        },
                    },
                ],
            }
        ],
        "max_tokens": 1000,
        "temperature": 0.1,
    }


def parse_ingredients(raw: dict[str, Any], processing_time_ms: int = 0) -> VisionResult:
    """Strictly decode the vision JSON and apply the confidence policy."""
    try:
        items = raw["ingredients"]
        if not isinstance(items, list):
            raise TypeError("ingredients must be a list")
        overall_raw = raw["overall_confidence"]
        if isinstance(overall_raw, bool) or not isinstance(overall_raw, (int, float)):
            raise TypeError("overall_confidence must be a number")
        parsed = [Ingredient.from_dict(item) for item in items]
    except (KeyError, TypeError, ValueError) as exc:
        raise ProcessingError.service_failure(
            f"Invalid vision response: {exc}", cause=exc
        ) from exc

    overall = float(overall_raw)
    ingredients = [item for item in parsed if item.confidence >= MIN_CONFIDENCE]
    if not ingredients and overall < MIN_CONFIDENCE:
        raise ProcessingError.no_food_detected()

    ingredients.sort(key=lambda item: item.confidence, reverse=True)
    return VisionResult.succeeded(
        ingredients=ingredients,
        overall_confidence=overall,
        processing_time_ms=processing_time_ms,
    )


def vision_result_cache(**kwargs) -> ResultCache[VisionResult]:
    return ResultCache(
        "vision_cache",
        ttl=VISION_RESULT_TTL,
        encode=VisionResult.to_dict,
        decode=VisionResult.from_dict,
        **kwargs,
    )


class VisionClient:
    def __init__(
        self,
        chat: ChatClient,
        preprocessor: ImagePreprocessor,
        *,
        model: str,
        retry: RetryPolicy | None = None,
        connectivity: Connectivity | None = None,
        cache: ResultCache[VisionResult] | None = None,
    ) -> None:
        self._chat = chat
        self._preprocessor = preprocessor
        self.model = model
        self._retry = retry if retry is not None else RetryPolicy()
        self._connectivity = connectivity
        self._cache = cache if cache is not None else vision_result_cache()
        self._disposed = False

    async def _request(self, encoded_image: str) -> VisionResult:
        started = time.perf_counter()
        raw = await self._retry.run(
            lambda: self._chat.complete(build_request(encoded_image, self.model)),
            description="Vision request",
        )
        return parse_ingredients(raw, int((time.perf_counter() - started) * 1000))

    async def detect(self, image_path: str | Path) -> VisionResult:
        if self._disposed:
            raise DisposedError("vision client")
        await require_online(self._connectivity)
        try:
            processed = await self._preprocessor.process(image_path)
        except InvalidImageError as exc:
            raise ProcessingError.invalid_image(str(exc), cause=exc) from exc

        result, from_cache = await self._cache.get_or_fetch(
            processed.cache_key, lambda: self._request(processed.encoded_payload)
        )
        if from_cache:
            logger.debug("Using cached vision result for %s", processed.cache_key)
        return result

    async def analyze(self, image_path: str | Path) -> VisionResult:
        started = time.perf_counter()
        try:
            result = await self.detect(image_path)
        except DisposedError:
            raise
        except SnapChefError as exc:
            elapsed = int((time.perf_counter() - started) * 1000)
            logger.warning("Food recognition failed: %s", exc)
            return VisionResult.failed(str(exc), exc.code, elapsed)
        logger.info(
            "Food recognition found %d ingredients in %d ms",
            len(result.ingredients),
            int((time.perf_counter() - started) * 1000),
        )
        return result

    async def clear_cache(self) -> None:
        await self._cache.clear()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._cache.dispose()
        self._preprocessor.dispose()
        logger.debug("Vision client disposed")
