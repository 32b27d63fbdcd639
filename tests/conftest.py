import json
from pathlib import Path

import httpx
import pytest
from PIL import Image

from snapchef.llm import ChatClient
from snapchef.models import Allergen, Intolerance, NutritionInfo, Recipe


def _nutrition() -> NutritionInfo:
    return NutritionInfo(
        calories=350,
        protein=25.5,
        carbohydrates=45.2,
        fat=12.8,
        fiber=8.3,
        sugar=6.1,
        sodium=580.2,
        serving_size="1 cup",
    )


def recipe_dict(recipe_id: str = "r1", **overrides) -> dict:
    data = {
        "id": recipe_id,
        "title": f"Recipe {recipe_id}",
        "ingredients": ["chicken breast", "rice", "soy sauce"],
        "instructions": ["Cook rice", "Fry chicken", "Combine"],
        "cooking_time": 30,
        "servings": 2,
        "match_percentage": 50.0,
        "nutrition": _nutrition().to_dict(),
        "allergens": [],
        "intolerances": [],
        "used_ingredients": [],
        "missing_ingredients": [],
        "difficulty": "easy",
    }
    data.update(overrides)
    return data


def completion(content) -> dict:
    text = content if isinstance(content, str) else json.dumps(content)
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


@pytest.fixture
def make_recipe():
    def _make(
        recipe_id: str = "r1",
        *,
        ingredients=("chicken breast", "rice"),
        cooking_time: int = 30,
        difficulty: str = "easy",
        match: float = 0.0,
        allergens=(),
        intolerances=(),
        image_url: str | None = None,
    ) -> Recipe:
        return Recipe(
            id=recipe_id,
            title=f"Recipe {recipe_id}",
            ingredients=list(ingredients),
            instructions=["Cook"],
            cooking_time=cooking_time,
            servings=2,
            nutrition=_nutrition(),
            difficulty=difficulty,
            match_percentage=match,
            allergens=[Allergen(name=name, severity="medium", description="") for name in allergens],
            intolerances=[
                Intolerance(name=kind.title(), type=kind, description="") for kind in intolerances
            ],
            image_url=image_url,
        )

    return _make


@pytest.fixture
def write_image(tmp_path: Path):
    def _write(name: str = "meal.png", size=(200, 150), mode: str = "RGB", fmt: str = "PNG") -> Path:
        path = tmp_path / name
        color = (200, 80, 40, 128) if mode == "RGBA" else (200, 80, 40)
        Image.new(mode, size, color).save(path, format=fmt)
        return path

    return _write


@pytest.fixture
def make_chat():
    def _make(handler) -> ChatClient:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="https://llm.test/v1"
        )
        return ChatClient(client)

    return _make
