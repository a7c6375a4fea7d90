"""Pytest configuration and fixtures."""

from datetime import datetime

import pytest

from mealplan.recipes import Ingredient, Recipe
from mealplan.storage import JsonStore

# A Wednesday; the Monday-aligned week starts 2024-03-11
NOW = datetime(2024, 3, 13, 12, 0)


def create_test_recipe(
    recipe_id: str,
    name: str | None = None,
    category: str = "chicken",
    servings: int = 4,
    tags: list | None = None,
    ingredients: list | None = None,
    instructions: list | None = None,
) -> Recipe:
    """Helper to create a test Recipe; ingredients may be dicts or Ingredient objects."""
    return Recipe(
        id=recipe_id,
        name=name or recipe_id.replace("-", " ").title(),
        category=category,
        servings=servings,
        tags=tags or [],
        ingredients=[
            i if isinstance(i, Ingredient) else Ingredient.from_dict(i)
            for i in ingredients or []
        ],
        instructions=instructions or [],
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store(tmp_path):
    return JsonStore(tmp_path / "data")
