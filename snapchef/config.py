from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_ENV_LOADED = False

DEFAULT_API_BASE = "https://api.openai.com/v1"
DEFAULT_VISION_MODEL = "gpt-4-vision-preview"
DEFAULT_RECIPE_MODEL = "gpt-4"
DEFAULT_CACHE_DIR = "~/.snapchef/cache"


def _ensure_env_loaded() -> None:
    global _ENV_LOADED
    if not _ENV_LOADED:
        load_dotenv()
        _ENV_LOADED = True


@dataclass
class Settings:
    api_key: str
    api_base: str = DEFAULT_API_BASE
    vision_model: str = DEFAULT_VISION_MODEL
    recipe_model: str = DEFAULT_RECIPE_MODEL
    timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 2.0
    cache_dir: Path = Path(DEFAULT_CACHE_DIR).expanduser()
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if not self.api_key or not self.api_key.strip():
            raise ValueError("LLM_API_KEY is required")
        if self.timeout <= 0:
            raise ValueError("LLM_TIMEOUT must be greater than 0")
        if self.max_retries < 1:
            raise ValueError("LLM_MAX_RETRIES must be at least 1")
        if self.retry_delay < 0:
            raise ValueError("LLM_RETRY_DELAY must be non-negative")
        self.api_base = self.api_base.rstrip("/")
        self.cache_dir = Path(self.cache_dir).expanduser()


def _env(name: str, default: str) -> str:
    value = os.environ.get(name, "").strip()
    return value or default


def _env_number(name: str, default: str, cast: type) -> float | int:
    raw = _env(name, default)
    try:
        return cast(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got: {raw!r}") from exc


def resolve_cache_dir(cache_dir: str | Path | None = None) -> Path:
    if cache_dir is not None:
        return Path(cache_dir).expanduser()
    _ensure_env_loaded()
    return Path(_env("SNAPCHEF_CACHE_DIR", DEFAULT_CACHE_DIR)).expanduser()


def get_settings(cache_dir: str | Path | None = None) -> Settings:
    _ensure_env_loaded()
    return Settings(
        api_key=os.environ.get("LLM_API_KEY", "").strip(),
        api_base=_env("LLM_API_BASE", DEFAULT_API_BASE),
        vision_model=_env("LLM_VISION_MODEL", DEFAULT_VISION_MODEL),
        recipe_model=_env("LLM_RECIPE_MODEL", DEFAULT_RECIPE_MODEL),
        timeout=_env_number("LLM_TIMEOUT", "30", float),
        max_retries=_env_number("LLM_MAX_RETRIES", "3", int),
        retry_delay=_env_number("LLM_RETRY_DELAY", "2.0", float),
        cache_dir=resolve_cache_dir(cache_dir),
        log_level=_env("SNAPCHEF_LOG_LEVEL", "WARNING").upper(),
    )
