from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Generic, Sequence, TypeVar

T = TypeVar("T")


def _require_non_empty(value: str, field_name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty string")


def _require_non_negative(value: float, field_name: str) -> None:
    if value < 0:
        raise ValueError(f"{field_name} must be non-negative")


def _require(data: dict[str, Any], key: str) -> Any:
    if not isinstance(data, dict):
        raise TypeError(f"expected an object, got {type(data).__name__}")
    if key not in data or data[key] is None:
        raise KeyError(f"missing required field: {key}")
    return data[key]


def _require_str(data: dict[str, Any], key: str) -> str:
    value = _require(data, key)
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string")
    return value


def _require_int(data: dict[str, Any], key: str) -> int:
    value = _require(data, key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{key} must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise TypeError(f"{key} must be an integer")
    return int(value)


def _require_float(data: dict[str, Any], key: str) -> float:
    value = _require(data, key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{key} must be a number")
    return float(value)


def _require_list(data: dict[str, Any], key: str) -> list[Any]:
    value = _require(data, key)
    if not isinstance(value, list):
        raise TypeError(f"{key} must be a list")
    return value


def _str_list(values: Sequence[Any], field_name: str) -> list[str]:
    result: list[str] = []
    for value in values:
        if not isinstance(value, str):
            raise TypeError(f"{field_name} must contain only strings")
        result.append(value)
    return result


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ImageAsset:
    path: str
    data: bytes
    width: int
    height: int
    fingerprint: str

    def __post_init__(self) -> None:
        _require_non_empty(self.path, "path")
        _require_non_empty(self.fingerprint, "fingerprint")
        if self.width <= 0 or self.height <= 0:
            raise ValueError("image dimensions must be positive")

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ProcessedImage:
    encoded_payload: str
    original_size: int
    processed_size: int
    cache_key: str
    width: int
    height: int
    processing_time_ms: int = 0
    from_cache: bool = False

    def __post_init__(self) -> None:
        _require_non_empty(self.encoded_payload, "encoded_payload")
        _require_non_empty(self.cache_key, "cache_key")
        _require_non_negative(self.original_size, "original_size")
        _require_non_negative(self.processed_size, "processed_size")

    @property
    def compression_ratio(self) -> float:
        if self.original_size <= 0:
            return 0.0
        return self.processed_size / self.original_size

    def to_dict(self) -> dict[str, Any]:
        return {
            "encoded_payload": self.encoded_payload,
            "original_size": self.original_size,
            "processed_size": self.processed_size,
            "cache_key": self.cache_key,
            "width": self.width,
            "height": self.height,
            "processing_time_ms": self.processing_time_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProcessedImage:
        return cls(
            encoded_payload=_require_str(data, "encoded_payload"),
            original_size=_require_int(data, "original_size"),
            processed_size=_require_int(data, "processed_size"),
            cache_key=_require_str(data, "cache_key"),
            width=_require_int(data, "width"),
            height=_require_int(data, "height"),
            processing_time_ms=int(data.get("processing_time_ms") or 0),
        )


@dataclass(frozen=True)
class Ingredient:
    name: str
    confidence: float
    category: str

    def __post_init__(self) -> None:
        _require_non_empty(self.name, "name")
        if not (0.0 <= self.confidence <= 1.0):
            raise ValueError("confidence must be between 0.0 and 1.0")

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "confidence": self.confidence, "category": self.category}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Ingredient:
        return cls(
            name=_require_str(data, "name"),
            confidence=_require_float(data, "confidence"),
            category=_require_str(data, "category"),
        )


@dataclass(frozen=True)
class VisionResult:
    ingredients: list[Ingredient]
    overall_confidence: float
    processing_time_ms: int = 0
    success: bool = True
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def succeeded(
        cls,
        ingredients: list[Ingredient],
        overall_confidence: float,
        processing_time_ms: int = 0,
    ) -> VisionResult:
        return cls(
            ingredients=ingredients,
            overall_confidence=overall_confidence,
            processing_time_ms=processing_time_ms,
        )

    @classmethod
    def failed(
        cls, error: str, error_code: str | None = None, processing_time_ms: int = 0
    ) -> VisionResult:
        return cls(
            ingredients=[],
            overall_confidence=0.0,
            processing_time_ms=processing_time_ms,
            success=False,
            error=error,
            error_code=error_code,
        )

    @property
    def ingredient_names(self) -> list[str]:
        return [ingredient.name for ingredient in self.ingredients]

    def to_dict(self) -> dict[str, Any]:
        return {
            "ingredients": [ingredient.to_dict() for ingredient in self.ingredients],
            "overall_confidence": self.overall_confidence,
            "processing_time_ms": self.processing_time_ms,
            "success": self.success,
            "error": self.error,
            "error_code": self.error_code,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VisionResult:
        return cls(
            ingredients=[
                Ingredient.from_dict(item) for item in _require_list(data, "ingredients")
            ],
            overall_confidence=_require_float(data, "overall_confidence"),
            processing_time_ms=int(data.get("processing_time_ms") or 0),
            success=bool(data.get("success", True)),
            error=data.get("error"),
            error_code=data.get("error_code"),
        )


@dataclass(frozen=True)
class NutritionInfo:
    calories: int
    protein: float
    carbohydrates: float
    fat: float
    fiber: float
    sugar: float
    sodium: float
    serving_size: str

    def __post_init__(self) -> None:
        _require_non_negative(self.calories, "calories")
        _require_non_negative(self.protein, "protein")
        _require_non_negative(self.carbohydrates, "carbohydrates")
        _require_non_negative(self.fat, "fat")
        _require_non_negative(self.fiber, "fiber")
        _require_non_negative(self.sugar, "sugar")
        _require_non_negative(self.sodium, "sodium")

    def to_dict(self) -> dict[str, Any]:
        return {
            "calories": self.calories,
            "protein": self.protein,
            "carbohydrates": self.carbohydrates,
            "fat": self.fat,
            "fiber": self.fiber,
            "sugar": self.sugar,
            "sodium": self.sodium,
            "serving_size": self.serving_size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NutritionInfo:
        return cls(
            calories=_require_int(data, "calories"),
            protein=_require_float(data, "protein"),
            carbohydrates=_require_float(data, "carbohydrates"),
            fat=_require_float(data, "fat"),
            fiber=_require_float(data, "fiber"),
            sugar=_require_float(data, "sugar"),
            sodium=_require_float(data, "sodium"),
            serving_size=_require_str(data, "serving_size"),
        )


@dataclass(frozen=True)
class Allergen:
    name: str
    severity: str
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "severity": self.severity, "description": self.description}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Allergen:
        return cls(
            name=_require_str(data, "name"),
            severity=_require_str(data, "severity"),
            description=_require_str(data, "description"),
        )


@dataclass(frozen=True)
class Intolerance:
    name: str
    type: str
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.type, "description": self.description}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Intolerance:
        return cls(
            name=_require_str(data, "name"),
            type=_require_str(data, "type"),
            description=_require_str(data, "description"),
        )


@dataclass(frozen=True)
class Recipe:
    id: str
    title: str
    ingredients: list[str]
    instructions: list[str]
    cooking_time: int
    servings: int
    nutrition: NutritionInfo
    difficulty: str
    match_percentage: float = 0.0
    allergens: list[Allergen] = field(default_factory=list)
    intolerances: list[Intolerance] = field(default_factory=list)
    used_ingredients: list[str] = field(default_factory=list)
    missing_ingredients: list[str] = field(default_factory=list)
    image_url: str | None = None

    def __post_init__(self) -> None:
        _require_non_empty(self.id, "id")
        _require_non_empty(self.title, "title")
        _require_non_negative(self.cooking_time, "cooking_time")
        if self.servings <= 0:
            raise ValueError("servings must be greater than 0")
        if not (0.0 <= self.match_percentage <= 100.0):
            raise ValueError("match_percentage must be between 0 and 100")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "ingredients": list(self.ingredients),
            "instructions": list(self.instructions),
            "cooking_time": self.cooking_time,
            "servings": self.servings,
            "match_percentage": self.match_percentage,
            "image_url": self.image_url,
            "nutrition": self.nutrition.to_dict(),
            "allergens": [allergen.to_dict() for allergen in self.allergens],
            "intolerances": [intolerance.to_dict() for intolerance in self.intolerances],
            "used_ingredients": list(self.used_ingredients),
            "missing_ingredients": list(self.missing_ingredients),
            "difficulty": self.difficulty,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Recipe:
        image_url = data.get("image_url") if isinstance(data, dict) else None
        if image_url is not None and not isinstance(image_url, str):
            raise TypeError("image_url must be a string")
        match_raw = data.get("match_percentage") if isinstance(data, dict) else None
        match_percentage = 0.0
        if match_raw is not None:
            match_percentage = min(max(_require_float(data, "match_percentage"), 0.0), 100.0)
        return cls(
            id=str(_require(data, "id")),
            title=_require_str(data, "title"),
            ingredients=_str_list(_require_list(data, "ingredients"), "ingredients"),
            instructions=_str_list(_require_list(data, "instructions"), "instructions"),
            cooking_time=_require_int(data, "cooking_time"),
            servings=_require_int(data, "servings"),
            nutrition=NutritionInfo.from_dict(_require(data, "nutrition")),
            difficulty=_require_str(data, "difficulty").strip().lower(),
            match_percentage=match_percentage,
            allergens=[Allergen.from_dict(item) for item in _require_list(data, "allergens")],
            intolerances=[
                Intolerance.from_dict(item) for item in _require_list(data, "intolerances")
            ],
            used_ingredients=_str_list(data.get("used_ingredients") or [], "used_ingredients"),
            missing_ingredients=_str_list(
                data.get("missing_ingredients") or [], "missing_ingredients"
            ),
            image_url=image_url or None,
        )


@dataclass(frozen=True)
class RecipeGenerationResult:
    recipes: list[Recipe]
    total_found: int
    alternative_suggestions: list[Recipe] = field(default_factory=list)
    generation_time_ms: int = 0
    success: bool = True
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def failed(
        cls, error: str, error_code: str | None = None, generation_time_ms: int = 0
    ) -> RecipeGenerationResult:
        return cls(
            recipes=[],
            total_found=0,
            generation_time_ms=generation_time_ms,
            success=False,
            error=error,
            error_code=error_code,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipes": [recipe.to_dict() for recipe in self.recipes],
            "total_found": self.total_found,
            "alternative_suggestions": [
                recipe.to_dict() for recipe in self.alternative_suggestions
            ],
            "generation_time_ms": self.generation_time_ms,
            "success": self.success,
            "error": self.error,
            "error_code": self.error_code,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecipeGenerationResult:
        return cls(
            recipes=[Recipe.from_dict(item) for item in _require_list(data, "recipes")],
            total_found=_require_int(data, "total_found"),
            alternative_suggestions=[
                Recipe.from_dict(item) for item in data.get("alternative_suggestions") or []
            ],
            generation_time_ms=int(data.get("generation_time_ms") or 0),
            success=bool(data.get("success", True)),
            error=data.get("error"),
            error_code=data.get("error_code"),
        )


@dataclass
class CacheEntry(Generic[T]):
    key: str
    value: T
    cached_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        _require_non_empty(self.key, "key")
        if self.cached_at.tzinfo is None:
            raise ValueError("cached_at must be timezone-aware")

    def age(self, now: datetime) -> timedelta:
        return now - self.cached_at

    def is_expired(self, ttl: timedelta, now: datetime) -> bool:
        return self.age(now) > ttl

    def to_dict(self, encoded_value: dict[str, Any]) -> dict[str, Any]:
        return {
            "key": self.key,
            "cached_at": self.cached_at.isoformat(),
            "value": encoded_value,
        }

    @staticmethod
    def parse_cached_at(raw: str) -> datetime:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except (AttributeError, ValueError) as exc:
            raise ValueError("cached_at must be ISO-8601") from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


@dataclass(frozen=True)
class PaginatedView(Generic[T]):
    items: list[T]
    page_number: int
    page_size: int
    total_pages: int
    total_items: int
    has_next: bool
    has_prev: bool

    @classmethod
    def empty(cls, page_size: int = 0) -> PaginatedView[T]:
        return cls(
            items=[],
            page_number=1,
            page_size=max(page_size, 0),
            total_pages=0,
            total_items=0,
            has_next=False,
            has_prev=False,
        )


@dataclass(frozen=True)
class RecipeRequest:
    ingredients: tuple[str, ...]
    page: int = 1
    page_size: int = 10
    sort_by: str | None = None
    filters: tuple[str, ...] = ()

    def normalized(self) -> RecipeRequest:
        seen: set[str] = set()
        cleaned: list[str] = []
        for raw in self.ingredients:
            name = " ".join(str(raw).split())
            if not name or name.lower() in seen:
                continue
            seen.add(name.lower())
            cleaned.append(name)
        filters = tuple(
            sorted({value.strip().lower() for value in self.filters if value and value.strip()})
        )
        sort_by = self.sort_by.strip().lower() if self.sort_by and self.sort_by.strip() else None
        return RecipeRequest(
            ingredients=tuple(cleaned),
            page=self.page,
            page_size=self.page_size,
            sort_by=sort_by,
            filters=filters,
        )

    def next_page(self) -> RecipeRequest:
        return RecipeRequest(
            ingredients=self.ingredients,
            page=self.page + 1,
            page_size=self.page_size,
            sort_by=self.sort_by,
            filters=self.filters,
        )

    @property
    def request_key(self) -> str:
        ingredients = ",".join(sorted(item.lower() for item in self.ingredients))
        filters = ",".join(self.filters)
        return f"{ingredients}_{self.page}_{self.page_size}_{self.sort_by}_{filters}"


@dataclass(frozen=True)
class PageResult:
    view: PaginatedView[Recipe]
    from_cache: bool = False
    total_time_ms: int = 0
    cache_time_ms: int = 0
    used_alternatives: bool = False
    success: bool = True
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def failed(
        cls, error: str, error_code: str | None = None, total_time_ms: int = 0
    ) -> PageResult:
        return cls(
            view=PaginatedView.empty(),
            total_time_ms=total_time_ms,
            success=False,
            error=error,
            error_code=error_code,
        )

    @property
    def recipes(self) -> list[Recipe]:
        return self.view.items
