from __future__ import annotations

import asyncio
import logging
import math
import time
from pathlib import Path
from typing import Any, Iterable, Protocol, Sequence, TypeVar

import httpx

from snapchef.cache import ResultCache
from snapchef.errors import CacheError, DisposedError, SnapChefError
from snapchef.models import (
    PageResult,
    PaginatedView,
    Recipe,
    RecipeGenerationResult,
    RecipeRequest,
    utcnow,
)
from snapchef.recipes import RecipeClient
from snapchef.storage import FileCache
from snapchef.utils import format_bytes, ingredient_cache_key, sha256_text

logger = logging.getLogger(__name__)

T = TypeVar("T")

PRELOAD_DELAY = 0.5

MEAT_KEYWORDS = ("chicken", "beef", "pork", "lamb", "turkey", "fish", "salmon", "tuna")
ANIMAL_PRODUCT_KEYWORDS = ("milk", "cheese", "butter", "egg", "honey", "yogurt", "cream")
GLUTEN_KEYWORDS = ("wheat", "flour", "bread")
DIFFICULTY_ORDER = {"easy": 1, "medium": 2, "hard": 3}


def _mentions(recipe: Recipe, keywords: Iterable[str]) -> bool:
    keywords = tuple(keywords)
    return any(
        keyword in ingredient.lower() for ingredient in recipe.ingredients for keyword in keywords
    )


def contains_meat(recipe: Recipe) -> bool:
    return _mentions(recipe, MEAT_KEYWORDS)


def contains_animal_products(recipe: Recipe) -> bool:
    return contains_meat(recipe) or _mentions(recipe, ANIMAL_PRODUCT_KEYWORDS)


def contains_gluten(recipe: Recipe) -> bool:
    return any(
        intolerance.type.lower() == "gluten" for intolerance in recipe.intolerances
    ) or _mentions(recipe, GLUTEN_KEYWORDS)


def contains_dairy(recipe: Recipe) -> bool:
    return any(allergen.name.lower() == "dairy" for allergen in recipe.allergens) or any(
        intolerance.type.lower() == "lactose" for intolerance in recipe.intolerances
    )


def contains_nuts(recipe: Recipe) -> bool:
    return any("nut" in allergen.name.lower() for allergen in recipe.allergens)


DIETARY_EXCLUSIONS = {
    "vegetarian": contains_meat,
    "vegan": contains_animal_products,
    "gluten-free": contains_gluten,
    "dairy-free": contains_dairy,
    "nut-free": contains_nuts,
}


def matches_filters(recipe: Recipe, filters: Iterable[str]) -> bool:
    for name in filters:
        excluded = DIETARY_EXCLUSIONS.get(name.strip().lower())
        if excluded is not None and excluded(recipe):
            return False
    return True


def filter_recipes(recipes: Iterable[Recipe], filters: Sequence[str]) -> list[Recipe]:
    if not filters:
        return list(recipes)
    return [recipe for recipe in recipes if matches_filters(recipe, filters)]


def difficulty_rank(difficulty: str) -> int:
    return DIFFICULTY_ORDER.get(difficulty.strip().lower(), 2)


def sort_recipes(recipes: Iterable[Recipe], sort_by: str | None = None) -> list[Recipe]:
    key = (sort_by or "match").strip().lower()
    if key == "time":
        return sorted(recipes, key=lambda recipe: recipe.cooking_time)
    if key == "difficulty":
        return sorted(recipes, key=lambda recipe: difficulty_rank(recipe.difficulty))
    return sorted(recipes, key=lambda recipe: recipe.match_percentage, reverse=True)


def paginate(items: Sequence[T], page: int, page_size: int) -> PaginatedView[T]:
    if not items or page < 1 or page_size <= 0:
        return PaginatedView.empty(page_size)
    total_items = len(items)
    total_pages = math.ceil(total_items / page_size)
    start = (page - 1) * page_size
    return PaginatedView(
        items=list(items[start : start + page_size]),
        page_number=page,
        page_size=page_size,
        total_pages=total_pages,
        total_items=total_items,
        has_next=page < total_pages,
        has_prev=page > 1,
    )


class ImagePreloader(Protocol):
    async def preload(self, recipes: Sequence[Recipe]) -> None: ...


class HttpImagePreloader:
    """Downloads recipe images into a file cache keyed by the URL hash."""

    def __init__(self, http_client: httpx.AsyncClient, store: FileCache) -> None:
        self._http = http_client
        self._store = store

    def key_for(self, url: str) -> str:
        return sha256_text(url)

    def cached_path(self, url: str) -> Path:
        return self._store.path_for(self.key_for(url))

    async def _download(self, url: str) -> bool:
        key = self.key_for(url)
        if self._store.exists(key):
            return False
        try:
            response = await self._http.get(url)
            response.raise_for_status()
            self._store.write(key, response.content)
        except (httpx.HTTPError, CacheError) as exc:
            logger.warning("Failed to preload image %s: %s", url, exc)
            return False
        return True

    async def preload(self, recipes: Sequence[Recipe]) -> None:
        urls = list(dict.fromkeys(recipe.image_url for recipe in recipes if recipe.image_url))
        if not urls:
            return
        downloaded = await asyncio.gather(*(self._download(url) for url in urls))
        logger.debug("Preloaded %d of %d recipe images", sum(downloaded), len(urls))


class RecipePager:
    def __init__(
        self,
        client: RecipeClient,
        cache: ResultCache[RecipeGenerationResult],
        *,
        image_preloader: ImagePreloader | None = None,
        preload_delay: float = PRELOAD_DELAY,
    ) -> None:
        self._client = client
        self._cache = cache
        self._image_preloader = image_preloader
        self.preload_delay = preload_delay
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._disposed = False

    @property
    def scheduled_preloads(self) -> int:
        return len(self._timers)

    def _check_disposed(self) -> None:
        if self._disposed:
            raise DisposedError("recipe pager")

    async def _load(
        self, request: RecipeRequest
    ) -> tuple[RecipeGenerationResult, bool, int]:
        key = ingredient_cache_key(request.ingredients)
        cache_started = time.perf_counter()
        cached = await self._cache.get(key)
        cache_time_ms = int((time.perf_counter() - cache_started) * 1000)
        if cached is not None:
            return cached, True, cache_time_ms
        result, from_cache = await self._cache.get_or_fetch(
            key, lambda: self._client.fetch(list(request.ingredients))
        )
        return result, from_cache, cache_time_ms

    def _view(
        self, result: RecipeGenerationResult, request: RecipeRequest
    ) -> tuple[PaginatedView[Recipe], bool]:
        recipes = result.recipes
        used_alternatives = False
        if not recipes and result.alternative_suggestions:
            recipes = result.alternative_suggestions
            used_alternatives = True
        items = sort_recipes(filter_recipes(recipes, request.filters), request.sort_by)
        return paginate(items, request.page, request.page_size), used_alternatives

    async def get_page(
        self,
        ingredients: Sequence[str],
        page: int = 1,
        page_size: int = 10,
        sort_by: str | None = None,
        filters: Sequence[str] = (),
    ) -> PageResult:
        self._check_disposed()
        started = time.perf_counter()
        request = RecipeRequest(
            ingredients=tuple(ingredients),
            page=page,
            page_size=page_size,
            sort_by=sort_by,
            filters=tuple(filters),
        ).normalized()
        if not request.ingredients:
            return PageResult.failed(
                "No ingredients provided", "validation", int((time.perf_counter() - started) * 1000)
            )

        try:
            result, from_cache, cache_time_ms = await self._load(request)
        except DisposedError:
            raise
        except SnapChefError as exc:
            logger.warning("Recipe page request failed: %s", exc)
            return PageResult.failed(
                str(exc), exc.code, int((time.perf_counter() - started) * 1000)
            )

        view, used_alternatives = self._view(result, request)
        if view.has_next:
            self._schedule_preload(request)
        if view.items and self._image_preloader is not None:
            self._spawn(self._preload_images(view.items))

        total_time_ms = int((time.perf_counter() - started) * 1000)
        logger.debug(
            "Page %d/%d for %s (%d items, cached=%s) in %d ms",
            view.page_number,
            view.total_pages,
            list(request.ingredients),
            len(view.items),
            from_cache,
            total_time_ms,
        )
        return PageResult(
            view=view,
            from_cache=from_cache,
            total_time_ms=total_time_ms,
            cache_time_ms=cache_time_ms,
            used_alternatives=used_alternatives,
        )

    # background work

    def _spawn(self, coroutine) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _schedule_preload(self, request: RecipeRequest) -> None:
        key = request.request_key
        pending = self._timers.pop(key, None)
        if pending is not None:
            pending.cancel()
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self.preload_delay, self._fire_preload, key, request)

    def _fire_preload(self, key: str, request: RecipeRequest) -> None:
        self._timers.pop(key, None)
        if self._disposed:
            return
        self._spawn(self.preload_next_page(request.next_page()))

    async def _preload_images(self, recipes: Sequence[Recipe]) -> None:
        if self._image_preloader is None:
            return
        try:
            await self._image_preloader.preload(recipes)
        except Exception:
            logger.warning("Recipe image preload failed", exc_info=True)

    async def preload_next_page(self, request: RecipeRequest) -> None:
        """Warm the cache for ``request`` and fetch the images on that page."""
        try:
            self._check_disposed()
            result, _, _ = await self._load(request)
            view, _ = self._view(result, request)
            await self._preload_images(view.items)
            logger.debug("Preloaded page %d (%d recipes)", request.page, len(view.items))
        except Exception as exc:
            logger.warning("Preloading page %d failed: %s", request.page, exc)

    async def join_background(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _cancel_timers(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    async def clear_cache(self) -> None:
        self._cancel_timers()
        await self._cache.clear()

    def cache_stats(self) -> dict[str, Any]:
        size = self._cache.size_bytes()
        return {
            "cache_size": size,
            "cache_size_formatted": format_bytes(size),
            "active_requests": self._cache.in_flight,
            "scheduled_preloads": len(self._timers),
            "timestamp": utcnow().isoformat(),
        }

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._cancel_timers()
        for task in list(self._tasks):
            task.cancel()
        self._cache.dispose()
        logger.debug("Recipe pager disposed")
