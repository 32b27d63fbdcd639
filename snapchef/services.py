from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import httpx

from snapchef.cache import ResultCache
from snapchef.config import Settings
from snapchef.connectivity import (
    Connectivity,
    ConnectivityMonitor,
    ConnectivityStatus,
    StaticConnectivity,
)
from snapchef.imaging import ImagePreprocessor, processed_image_cache
from snapchef.llm import ChatClient, build_http_client
from snapchef.models import ProcessedImage, RecipeGenerationResult, VisionResult
from snapchef.pager import HttpImagePreloader, RecipePager
from snapchef.recipes import RecipeClient, recipe_cache
from snapchef.retry import RetryPolicy
from snapchef.storage import FileCache, JsonFileStore
from snapchef.vision import VisionClient, vision_result_cache

logger = logging.getLogger(__name__)

INDEX_FILE = "index.json"
RECIPE_IMAGES_DIR = "recipe_images"


@dataclass
class Caches:
    images: ResultCache[ProcessedImage]
    vision: ResultCache[VisionResult]
    recipes: ResultCache[RecipeGenerationResult]

    def all(self) -> list[ResultCache]:
        return [self.images, self.vision, self.recipes]


def build_caches(cache_dir: Path) -> Caches:
    index_store = JsonFileStore(cache_dir / INDEX_FILE)
    return Caches(
        images=processed_image_cache(
            disk=FileCache(cache_dir / "images"), index_store=index_store
        ),
        vision=vision_result_cache(
            disk=FileCache(cache_dir / "vision"), index_store=index_store
        ),
        recipes=recipe_cache(disk=FileCache(cache_dir / "recipes"), index_store=index_store),
    )


@dataclass
class Services:
    http_client: httpx.AsyncClient
    image_client: httpx.AsyncClient
    chat: ChatClient
    connectivity: Connectivity
    preprocessor: ImagePreprocessor
    vision: VisionClient
    recipes: RecipeClient
    pager: RecipePager

    async def aclose(self) -> None:
        await self.pager.join_background()
        self.pager.dispose()
        self.recipes.dispose()
        self.vision.dispose()
        await self.image_client.aclose()
        await self.chat.aclose()


def _host_of(api_base: str) -> str:
    return httpx.URL(api_base).host or "api.openai.com"


def build_services(settings: Settings, *, offline: bool = False) -> Services:
    """Wire every component against one API client and one cache directory."""
    caches = build_caches(settings.cache_dir)

    if offline:
        connectivity: Connectivity = StaticConnectivity(ConnectivityStatus.OFFLINE)
    else:
        connectivity = ConnectivityMonitor(_host_of(settings.api_base))

    http_client = build_http_client(settings)
    # recipe images live on arbitrary hosts, keep the API credentials off them
    image_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.timeout), follow_redirects=True
    )
    chat = ChatClient(http_client)
    retry = RetryPolicy(max_attempts=settings.max_retries, delay=settings.retry_delay)

    preprocessor = ImagePreprocessor(caches.images)
    vision = VisionClient(
        chat,
        preprocessor,
        model=settings.vision_model,
        retry=retry,
        connectivity=connectivity,
        cache=caches.vision,
    )
    recipes = RecipeClient(
        chat, model=settings.recipe_model, retry=retry, connectivity=connectivity
    )
    pager = RecipePager(
        recipes,
        caches.recipes,
        image_preloader=HttpImagePreloader(
            image_client, FileCache(settings.cache_dir / RECIPE_IMAGES_DIR, suffix=".img")
        ),
    )
    logger.debug("Services ready (cache dir %s, offline=%s)", settings.cache_dir, offline)
    return Services(
        http_client=http_client,
        image_client=image_client,
        chat=chat,
        connectivity=connectivity,
        preprocessor=preprocessor,
        vision=vision,
        recipes=recipes,
        pager=pager,
    )
