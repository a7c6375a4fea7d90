"""
JSON-file store for recipes, config, history, pantry, plans and the shopping list.

Each collection lives in its own file under the data directory. Every write
replaces the whole file atomically, so a call either lands completely or not
at all; concurrent writers resolve as last write wins.
"""

import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any

from mealplan.categories import normalize_item_name
from mealplan.planner import RecipeHistoryEntry, WeeklyPlan
from mealplan.recipes import Recipe, load_recipes, save_recipes, write_json_atomic
from mealplan.shopping_list import ShoppingList
from mealplan.user_config import UserConfig

logger = logging.getLogger(__name__)

RECIPES_FILE = "recipes.json"
USER_CONFIG_FILE = "user_config.json"
HISTORY_FILE = "history.json"
PANTRY_FILE = "pantry.json"
PLANS_FILE = "plans.json"
SHOPPING_LIST_FILE = "shopping_list.json"


class StoreError(Exception):
    """Raised when a store file cannot be read or written."""
    pass


class JsonStore:
    def __init__(self, data_dir: Path | str):
        self.data_dir = Path(data_dir)

    def _path(self, name: str) -> Path:
        return self.data_dir / name

    def _read(self, name: str, default: Any) -> Any:
        path = self._path(name)
        if not path.exists():
            return default
        try:
            with open(path) as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise StoreError(f"Invalid JSON in {path}: {e}")
        except OSError as e:
            raise StoreError(f"Failed to read {path}: {e}")

    def _write(self, name: str, data: Any) -> None:
        path = self._path(name)
        try:
            write_json_atomic(path, data)
        except OSError as e:
            raise StoreError(f"Failed to write {path}: {e}")
        logger.debug("Store file written", extra={"path": str(path)})

    # -- recipes --------------------------------------------------------------

    def list_recipes(self, category: str | None = None) -> list[Recipe]:
        path = self._path(RECIPES_FILE)
        if not path.exists():
            return []
        recipes = load_recipes(path)
        if category is not None:
            recipes = [r for r in recipes if r.category == category]
        return recipes

    def get_recipe(self, recipe_id: str) -> Recipe | None:
        return next((r for r in self.list_recipes() if r.id == recipe_id), None)

    def save_recipes(self, recipes: list[Recipe]) -> None:
        save_recipes(self._path(RECIPES_FILE), recipes)

    # -- user config ----------------------------------------------------------

    def get_user_config(self) -> UserConfig:
        data = self._read(USER_CONFIG_FILE, {})
        try:
            return UserConfig.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Invalid user config: {e}")

    def update_user_config(self, **partial: Any) -> UserConfig:
        updated = self.get_user_config().with_updates(**partial)
        self._write(USER_CONFIG_FILE, updated.to_dict())
        logger.info("User config updated", extra={"fields": sorted(partial)})
        return updated

    # -- history --------------------------------------------------------------

    def list_history(self) -> list[RecipeHistoryEntry]:
        """All history entries, most recent first."""
        entries = [RecipeHistoryEntry.from_dict(h) for h in self._read(HISTORY_FILE, [])]
        return sorted(entries, key=lambda h: h.date_made, reverse=True)

    def append_history(self, recipe_id: str, date_made: datetime) -> RecipeHistoryEntry:
        entry = RecipeHistoryEntry(recipe_id=recipe_id, date_made=date_made)
        data = self._read(HISTORY_FILE, [])
        data.append(entry.to_dict())
        self._write(HISTORY_FILE, data)
        return entry

    def remove_most_recent_history(self, recipe_id: str) -> bool:
        """Drop the newest entry for *recipe_id*. Returns False if it has none."""
        data = self._read(HISTORY_FILE, [])
        candidates = [
            (datetime.fromisoformat(h["date_made"]), index)
            for index, h in enumerate(data)
            if h["recipe_id"] == recipe_id
        ]
        if not candidates:
            return False
        _, index = max(candidates)
        del data[index]
        self._write(HISTORY_FILE, data)
        return True

    # -- pantry ---------------------------------------------------------------

    def list_pantry_items(self) -> list[str]:
        return list(self._read(PANTRY_FILE, []))

    def add_pantry_item(self, name: str) -> bool:
        """Add a pantry item; returns False if it is already there."""
        item = normalize_item_name(name)
        if not item:
            raise ValueError("Pantry item name is required")
        items = self.list_pantry_items()
        if item in items:
            return False
        items.append(item)
        self._write(PANTRY_FILE, items)
        return True

    def remove_pantry_item(self, name: str) -> bool:
        item = normalize_item_name(name)
        items = self.list_pantry_items()
        if item not in items:
            return False
        items.remove(item)
        self._write(PANTRY_FILE, items)
        return True

    # -- plans ----------------------------------------------------------------

    def get_plan(self, week_date: date) -> WeeklyPlan | None:
        data = self._read(PLANS_FILE, {}).get(week_date.isoformat())
        return WeeklyPlan.from_dict(data) if data else None

    def save_plan(self, plan: WeeklyPlan) -> None:
        plans = self._read(PLANS_FILE, {})
        plans[plan.week_date.isoformat()] = plan.to_dict()
        self._write(PLANS_FILE, plans)

    # -- shopping list --------------------------------------------------------

    def get_shopping_list(self) -> ShoppingList | None:
        data = self._read(SHOPPING_LIST_FILE, None)
        return ShoppingList.from_dict(data) if data else None

    def save_shopping_list(self, shopping_list: ShoppingList) -> None:
        self._write(SHOPPING_LIST_FILE, shopping_list.to_dict())
