from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import timedelta
from typing import Any, Sequence

from snapchef.cache import ResultCache
from snapchef.connectivity import Connectivity, require_online
from snapchef.errors import (
    DisposedError,
    ProcessingError,
    SnapChefError,
    ValidationError,
)
from snapchef.llm import ChatClient
from snapchef.models import Recipe, RecipeGenerationResult
from snapchef.retry import NO_RETRY, RetryPolicy

logger = logging.getLogger(__name__)

RECIPE_RESULT_TTL = timedelta(hours=24)
MAX_TOKENS = 4000
PRIMARY_TEMPERATURE = 0.3
ALTERNATIVE_TEMPERATURE = 0.5

SYSTEM_PROMPT = """\
You are a professional chef and nutritionist AI assistant. Your task is to generate detailed recipes based on provided ingredients, including comprehensive nutrition information and allergen detection.

Always respond with valid JSON in this exact structure:
{
  "recipes": [
    {
      "id": "unique_recipe_id",
      "title": "Recipe Name",
      "ingredients": ["ingredient 1", "ingredient 2"],
      "instructions": ["step 1", "step 2"],
      "cooking_time": 30,
      "servings": 4,
      "match_percentage": 85.5,
      "image_url": null,
      "nutrition": {
        "calories": 350,
        "protein": 25.5,
        "carbohydrates": 45.2,
        "fat": 12.8,
        "fiber": 8.3,
        "sugar": 6.1,
        "sodium": 580.2,
        "serving_size": "1 cup"
      },
      "allergens": [
        {"name": "Dairy", "severity": "medium", "description": "Contains milk products"}
      ],
      "intolerances": [
        {"name": "Lactose", "type": "lactose", "description": "Contains lactose from dairy products"}
      ],
      "used_ingredients": ["ingredient from user list"],
      "missing_ingredients": ["additional ingredients needed"],
      "difficulty": "easy"
    }
  ],
  "total_found": 5,
  "alternative_suggestions": []
}

Guidelines:
- Generate exactly 5 recipes ranked by ingredient match percentage
- Calculate accurate nutrition information per serving
- Identify all potential allergens (nuts, dairy, gluten, shellfish, eggs, soy, etc.)
- Detect intolerances (lactose, gluten, etc.)
- Match percentage should reflect how many user ingredients are used
- Include clear, step-by-step cooking instructions
- Difficulty levels: "easy" (< 30 min, simple techniques), "medium" (30-60 min, moderate skills), "hard" (> 60 min, advanced techniques)
- If no good matches exist, provide alternative suggestions
- All nutrition values should be realistic and accurate
- Allergen severity: "low" (trace amounts), "medium" (moderate amounts), "high" (primary ingredient)
"""


def build_user_prompt(ingredients: Sequence[str]) -> str:
    return (
        f"Generate 5 recipes using these ingredients: {', '.join(ingredients)}\n"
        "\n"
        "Requirements:\n"
        "- Prioritize recipes that use the most provided ingredients\n"
        "- Include detailed nutrition information for each recipe\n"
        "- Identify all allergens and intolerances\n"
        "- Provide clear cooking instructions\n"
        "- Calculate realistic cooking times\n"
        "- Rank recipes by ingredient match percentage (highest first)\n"
        "- If exact matches are limited, include alternative recipe suggestions\n"
        "\n"
        "Return only the JSON response, no additional text."
    )


def build_alternative_prompt(ingredients: Sequence[str]) -> str:
    return (
        f"The user has these ingredients: {', '.join(ingredients)}\n"
        "\n"
        "Since exact matches might be limited, generate 5 alternative recipe suggestions that:\n"
        "- Use some of the provided ingredients but don't require all of them\n"
        "- Include common pantry staples that most people have\n"
        "- Offer different cooking styles and cuisines\n"
        "- Are accessible for home cooking\n"
        "- Still provide good nutritional value\n"
        "\n"
        "Focus on practical, delicious recipes that can work with partial ingredient matches.\n"
        "\n"
        "Return only the JSON response, no additional text."
    )


def build_request(
    user_prompt: str, model: str, temperature: float = PRIMARY_TEMPERATURE
) -> dict[str, Any]:
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ],
        "max_tokens": MAX_TOKENS,
        "temperature": temperature,
    }


def _ingredients_match(recipe_ingredient: str, detected: str) -> bool:
    return detected in recipe_ingredient or recipe_ingredient in detected


def highlight_used_ingredients(recipe: Recipe, ingredients: Sequence[str]) -> Recipe:
    """Recompute used/missing ingredients and match percentage for ``recipe``.

    A recipe ingredient counts as used when it and one of ``ingredients``
    contain each other after lower-casing and trimming.
    """
    detected = {item.strip().lower() for item in ingredients if item and item.strip()}
    used: list[str] = []
    missing: list[str] = []
    for recipe_ingredient in recipe.ingredients:
        normalized = recipe_ingredient.strip().lower()
        if normalized and any(_ingredients_match(normalized, item) for item in detected):
            if recipe_ingredient not in used:
                used.append(recipe_ingredient)
        elif recipe_ingredient not in missing:
            missing.append(recipe_ingredient)

    match = 0.0
    if recipe.ingredients:
        match = min(len(used) / len(recipe.ingredients) * 100.0, 100.0)
    return replace(
        recipe,
        used_ingredients=used,
        missing_ingredients=missing,
        match_percentage=match,
    )


def rank_by_match(recipes: Sequence[Recipe]) -> list[Recipe]:
    return sorted(recipes, key=lambda recipe: recipe.match_percentage, reverse=True)


def _prepare(recipes: Sequence[Recipe], ingredients: Sequence[str]) -> list[Recipe]:
    return rank_by_match([highlight_used_ingredients(recipe, ingredients) for recipe in recipes])


def parse_recipes(
    raw: dict[str, Any], ingredients: Sequence[str], generation_time_ms: int = 0
) -> RecipeGenerationResult:
    try:
        decoded = RecipeGenerationResult.from_dict(raw)
    except (KeyError, TypeError, ValueError) as exc:
        raise ProcessingError.service_failure(
            f"Invalid recipe response: {exc}", cause=exc
        ) from exc
    return RecipeGenerationResult(
        recipes=_prepare(decoded.recipes, ingredients),
        total_found=decoded.total_found,
        alternative_suggestions=_prepare(decoded.alternative_suggestions, ingredients),
        generation_time_ms=generation_time_ms,
    )


def recipe_cache(**kwargs) -> ResultCache[RecipeGenerationResult]:
    return ResultCache(
        "recipe_cache",
        ttl=RECIPE_RESULT_TTL,
        encode=RecipeGenerationResult.to_dict,
        decode=RecipeGenerationResult.from_dict,
        **kwargs,
    )


class RecipeClient:
    def __init__(
        self,
        chat: ChatClient,
        *,
        model: str,
        retry: RetryPolicy | None = None,
        connectivity: Connectivity | None = None,
    ) -> None:
        self._chat = chat
        self.model = model
        self._retry = retry if retry is not None else RetryPolicy()
        self._connectivity = connectivity
        self._disposed = False

    def _check_disposed(self) -> None:
        if self._disposed:
            raise DisposedError("recipe client")

    async def fetch(self, ingredients: Sequence[str]) -> RecipeGenerationResult:
        self._check_disposed()
        cleaned = [item.strip() for item in ingredients if item and item.strip()]
        if not cleaned:
            raise ValidationError("No ingredients provided")
        await require_online(self._connectivity)

        started = time.perf_counter()
        raw = await self._retry.run(
            lambda: self._chat.complete(build_request(build_user_prompt(cleaned), self.model)),
            description="Recipe request",
        )
        result = parse_recipes(raw, cleaned, int((time.perf_counter() - started) * 1000))

        if not result.recipes and not result.alternative_suggestions:
            logger.info("No recipes matched %s, asking for alternatives", cleaned)
            result = replace(
                result, alternative_suggestions=await self.find_alternatives(cleaned)
            )
        return result

    async def generate(self, ingredients: Sequence[str]) -> RecipeGenerationResult:
        started = time.perf_counter()
        try:
            result = await self.fetch(ingredients)
        except DisposedError:
            raise
        except SnapChefError as exc:
            elapsed = int((time.perf_counter() - started) * 1000)
            logger.warning("Recipe generation failed: %s", exc)
            return RecipeGenerationResult.failed(str(exc), exc.code, elapsed)
        logger.info(
            "Generated %d recipes (%d alternatives) in %d ms",
            len(result.recipes),
            len(result.alternative_suggestions),
            result.generation_time_ms,
        )
        return result

    async def find_alternatives(self, ingredients: Sequence[str]) -> list[Recipe]:
        self._check_disposed()
        cleaned = [item.strip() for item in ingredients if item and item.strip()]
        try:
            await require_online(self._connectivity)
            raw = await NO_RETRY.run(
                lambda: self._chat.complete(
                    build_request(
                        build_alternative_prompt(cleaned),
                        self.model,
                        temperature=ALTERNATIVE_TEMPERATURE,
                    )
                ),
                description="Alternative recipe request",
            )
            return parse_recipes(raw, cleaned).recipes
        except SnapChefError as exc:
            logger.warning("Alternative recipe request failed: %s", exc)
            return []

    async def top_recipes(self, ingredients: Sequence[str], limit: int) -> list[Recipe]:
        result = await self.fetch(ingredients)
        return result.recipes[: max(limit, 0)]

    def dispose(self) -> None:
        self._disposed = True
