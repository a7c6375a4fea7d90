import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


class RecipeLoadError(Exception):
    """Raised when recipes cannot be loaded from file."""
    pass


class RecipeSaveError(Exception):
    """Raised when recipes cannot be saved to file."""
    pass


@dataclass
class Ingredient:
    item: str
    amount: float | None = None
    unit: str = ""
    modifier: str | None = None         # free text, e.g. "diced"
    shopping_category: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "item": self.item,
            "amount": self.amount,
            "unit": self.unit,
            "modifier": self.modifier,
            "shopping_category": self.shopping_category,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Ingredient":
        if not data.get("item"):
            raise ValueError("Ingredient is missing 'item'")
        amount = data.get("amount")
        if amount is not None:
            amount = float(amount)
            if amount < 0:
                raise ValueError(f"Ingredient '{data['item']}' has a negative amount")
        return cls(
            item=data["item"],
            amount=amount,
            unit=data.get("unit") or "",
            modifier=data.get("modifier"),
            # Older files used camelCase for the hint
            shopping_category=data.get("shopping_category") or data.get("shoppingCategory"),
        )


@dataclass
class Recipe:
    id: str
    name: str
    category: str
    servings: int = 4
    tags: list[str] = field(default_factory=list)
    ingredients: list[Ingredient] = field(default_factory=list)
    instructions: list[str] = field(default_factory=list)
    favorite: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "servings": self.servings,
            "tags": list(self.tags),
            "ingredients": [i.to_dict() for i in self.ingredients],
            "instructions": list(self.instructions),
            "favorite": self.favorite,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Recipe":
        required = ["id", "name", "category"]
        missing = [f for f in required if not data.get(f)]
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")

        servings = int(data.get("servings", 4))
        if servings <= 0:
            raise ValueError(f"Recipe '{data['id']}' must have positive servings")

        # Tags behave as a set but keep their first-seen order
        tags = list(dict.fromkeys(data.get("tags", [])))

        return cls(
            id=data["id"],
            name=data["name"],
            category=data["category"],
            servings=servings,
            tags=tags,
            ingredients=[Ingredient.from_dict(i) for i in data.get("ingredients", [])],
            instructions=data.get("instructions", []),
            favorite=bool(data.get("favorite", False)),
        )


def load_recipes(file_path: Path | str) -> list[Recipe]:
    file_path = Path(file_path)

    if not file_path.exists():
        raise RecipeLoadError(f"Recipe file not found: {file_path}")

    try:
        with open(file_path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise RecipeLoadError(f"Invalid JSON in recipe file: {e}")

    if "recipes" not in data:
        raise RecipeLoadError("Recipe file must contain a 'recipes' key")

    try:
        return [Recipe.from_dict(r) for r in data["recipes"]]
    except ValueError as e:
        raise RecipeLoadError(f"Invalid recipe in {file_path}: {e}")


def write_json_atomic(file_path: Path | str, data: Any) -> None:
    """Write *data* as JSON, replacing *file_path* atomically.

    Raises OSError subclasses on failure; the temp file is cleaned up.
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    # Same directory so the rename stays on one filesystem
    temp_fd, temp_path = tempfile.mkstemp(
        dir=file_path.parent,
        prefix=f".{file_path.stem}_tmp_",
        suffix=".json"
    )

    try:
        with os.fdopen(temp_fd, 'w') as f:
            json.dump(data, f, indent=2)
        os.replace(temp_path, file_path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def save_recipes(file_path: Path | str, recipes: list[Recipe]) -> None:
    """Save recipes to JSON file with atomic write.

    Raises:
        RecipeSaveError: If the file cannot be written
    """
    data = {"recipes": [recipe.to_dict() for recipe in recipes]}
    try:
        write_json_atomic(file_path, data)
    except OSError as e:
        raise RecipeSaveError(f"Failed to save recipes to {file_path}: {e}")
