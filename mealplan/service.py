import logging
import random
from datetime import date, datetime
from typing import Callable

from mealplan import planner
from mealplan import shopping_list as sl_ops
from mealplan.categories import (
    FALLBACK_CATEGORY,
    CustomCategory,
    is_known_category,
    new_custom_category,
    normalize_item_name,
    reassign_overrides,
)
from mealplan.planner import GenerationResult, MealPlanner, WeeklyPlan, week_start_date
from mealplan.recipes import Recipe
from mealplan.shopping_list import BulkAddResult, DuplicateSkipped, ShoppingList, generate_shopping_list
from mealplan.storage import JsonStore

logger = logging.getLogger(__name__)


class NotFoundError(LookupError):
    """Raised when a plan, recipe, list or category does not exist."""
    pass


class PlanningService:
    """Operations exposed to the UI layer.

    Reads what it needs from the store, runs the pure planning and shopping
    functions, and writes the result back. Store errors propagate unchanged.
    """

    def __init__(
        self,
        store: JsonStore,
        clock: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.clock = clock
        self.rng = rng

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def _week(self, week_date: date) -> date:
        return week_start_date(week_date, self.store.get_user_config().week_start_day)

    def get_plan(self, week_date: date) -> WeeklyPlan | None:
        return self.store.get_plan(self._week(week_date))

    def _require_plan(self, week_date: date) -> WeeklyPlan:
        plan = self.get_plan(week_date)
        if plan is None:
            raise NotFoundError(f"No meal plan for week of {week_date.isoformat()}")
        return plan

    def generate_plan(
        self,
        week_date: date,
        quotas: dict[str, int] | None = None,
        preserve_made: bool = True,
        total_meals: int | None = None,
    ) -> GenerationResult:
        user_config = self.store.get_user_config()
        week = week_start_date(week_date, user_config.week_start_day)
        existing = self.store.get_plan(week) if preserve_made else None

        result = MealPlanner.from_user_config(user_config, rng=self.rng).generate(
            catalog=self.store.list_recipes(),
            quotas=quotas if quotas is not None else user_config.default_selection,
            history=self.store.list_history(),
            week_date=week,
            now=self.clock(),
            existing_plan=existing,
            total_meals=total_meals,
        )
        self.store.save_plan(result.plan)
        return result

    def swap_recipe(
        self,
        week_date: date,
        old_id: str,
        category: str | None = None,
        exclude_ids: list[str] | None = None,
    ) -> tuple[WeeklyPlan, Recipe]:
        plan = self._require_plan(week_date)
        swapped, new_recipe = planner.swap_recipe(
            plan,
            old_id,
            self.store.list_recipes(),
            category=category,
            exclude_ids=exclude_ids,
            history=self.store.list_history(),
            rng=self.rng,
        )
        self.store.save_plan(swapped)
        return swapped, new_recipe

    def mark_made(
        self,
        week_date: date,
        recipe_id: str,
        made: bool = True,
        date_made: datetime | None = None,
    ) -> WeeklyPlan:
        """Set the made flag and keep the history log in step with it.

        The plan is saved before history is touched, so a failed save leaves
        both unchanged and the call can simply be repeated.
        """
        plan = self._require_plan(week_date)
        result = planner.mark_made(plan, recipe_id, made, now=self.clock(), date_made=date_made)
        if result.history_action is None:
            return result.plan

        self.store.save_plan(result.plan)
        if result.history_action == planner.HISTORY_APPEND:
            self.store.append_history(recipe_id, result.date_made)
        elif not self.store.remove_most_recent_history(recipe_id):
            logger.warning("No history entry to retract", extra={"recipe_id": recipe_id})

        logger.info(
            "Recipe made flag updated",
            extra={"recipe_id": recipe_id, "made": made, "week_date": plan.week_date.isoformat()},
        )
        return result.plan

    def move_to_day(self, week_date: date, recipe_id: str, day_index: int) -> WeeklyPlan:
        plan = planner.move_to_day(self._require_plan(week_date), recipe_id, day_index)
        self.store.save_plan(plan)
        return plan

    # ------------------------------------------------------------------
    # Shopping list
    # ------------------------------------------------------------------

    def get_shopping_list(self) -> ShoppingList | None:
        return self.store.get_shopping_list()

    def _require_list(self) -> ShoppingList:
        shopping_list = self.store.get_shopping_list()
        if shopping_list is None:
            raise NotFoundError("No shopping list available")
        return shopping_list

    def _resolve_recipes(self, recipe_scales: list[tuple[str, float]]) -> list[tuple[Recipe, float]]:
        by_id = {r.id: r for r in self.store.list_recipes()}
        missing = [rid for rid, _ in recipe_scales if rid not in by_id]
        if missing:
            raise NotFoundError(f"Recipes not found: {', '.join(missing)}")
        return [(by_id[rid], recipe_scale) for rid, recipe_scale in recipe_scales]

    def build_shopping_list(
        self,
        recipe_scales: list[tuple[str, float]],
        scale: float = 1.0,
        keep_existing: bool = True,
    ) -> ShoppingList:
        """Build the list from (recipe id, scale) pairs.

        With *keep_existing*, checked flags, manual items and a custom order
        from the current list carry over to the new one.
        """
        selections = self._resolve_recipes(recipe_scales)
        user_config = self.store.get_user_config()
        rebuilt = generate_shopping_list(
            selections,
            pantry_items=self.store.list_pantry_items(),
            excluded_keywords=user_config.excluded_keywords,
            category_overrides=user_config.category_overrides,
            custom_categories=user_config.custom_categories,
            scale=scale,
            now=self.clock(),
        )

        existing = self.store.get_shopping_list() if keep_existing else None
        if existing is not None:
            rebuilt = sl_ops.carry_over_user_state(existing, rebuilt)

        self.store.save_shopping_list(rebuilt)
        return rebuilt

    def build_shopping_list_for_week(self, week_date: date, keep_existing: bool = True) -> ShoppingList:
        plan = self._require_plan(week_date)
        recipe_scales = [(rid, 1.0) for rid in dict.fromkeys(plan.recipe_ids)]
        return self.build_shopping_list(recipe_scales, scale=plan.scale, keep_existing=keep_existing)

    def add_recipes_to_list(self, recipe_scales: list[tuple[str, float]], scale: float = 1.0) -> ShoppingList:
        """Merge more recipes into the current list, or start one if there is none."""
        existing = self.store.get_shopping_list()
        if existing is None:
            return self.build_shopping_list(recipe_scales, scale=scale, keep_existing=False)

        user_config = self.store.get_user_config()
        updated = sl_ops.add_recipes_to_list(
            existing,
            self._resolve_recipes(recipe_scales),
            pantry_items=self.store.list_pantry_items(),
            excluded_keywords=user_config.excluded_keywords,
            category_overrides=user_config.category_overrides,
            custom_categories=user_config.custom_categories,
            scale=scale,
            now=self.clock(),
        )
        self.store.save_shopping_list(updated)
        return updated

    def add_week_to_list(self, week_date: date) -> ShoppingList:
        plan = self._require_plan(week_date)
        recipe_scales = [(rid, 1.0) for rid in dict.fromkeys(plan.recipe_ids)]
        return self.add_recipes_to_list(recipe_scales, scale=plan.scale)

    def add_manual_item(self, name: str, amount: float | None = None, unit: str = "") -> ShoppingList:
        user_config = self.store.get_user_config()
        updated = sl_ops.add_manual_item(
            self._require_list(),
            name,
            amount=amount,
            unit=unit,
            category_overrides=user_config.category_overrides,
            custom_categories=user_config.custom_categories,
        )
        self.store.save_shopping_list(updated)
        return updated

    def add_manual_items(self, names: list[str]) -> tuple[ShoppingList, BulkAddResult]:
        user_config = self.store.get_user_config()
        updated, report = sl_ops.add_manual_items(
            self._require_list(),
            names,
            category_overrides=user_config.category_overrides,
            custom_categories=user_config.custom_categories,
        )
        self.store.save_shopping_list(updated)
        return updated, report

    def remove_item(self, name: str, bucket: str = sl_ops.BUCKET_ITEMS) -> ShoppingList:
        updated = sl_ops.remove_item(self._require_list(), name, bucket)
        self.store.save_shopping_list(updated)
        return updated

    def remove_recipe_items(self, recipe_id: str) -> ShoppingList:
        updated = sl_ops.remove_recipe_items(self._require_list(), recipe_id)
        self.store.save_shopping_list(updated)
        return updated

    def move_item(self, name: str, from_bucket: str, to_bucket: str, keyword: str | None = None) -> ShoppingList:
        updated = sl_ops.move_item(self._require_list(), name, from_bucket, to_bucket, keyword)
        self.store.save_shopping_list(updated)
        return updated

    def reorder(self, category_key: str, ordered_names: list[str]) -> ShoppingList:
        updated = sl_ops.reorder(self._require_list(), category_key, ordered_names)
        self.store.save_shopping_list(updated)
        return updated

    def set_checked(self, names: list[str], checked: bool = True) -> ShoppingList:
        updated = sl_ops.set_checked(self._require_list(), names, checked)
        self.store.save_shopping_list(updated)
        return updated

    def set_category_override(self, item_name: str, category_key: str) -> ShoppingList | None:
        """Pin *item_name* to a category and retag it on the current list."""
        user_config = self.store.get_user_config()
        if not is_known_category(category_key, user_config.custom_categories):
            raise ValueError(f"Unknown category '{category_key}'")
        key = normalize_item_name(item_name)
        if not key:
            raise ValueError("Item name is required")

        overrides = {**user_config.category_overrides, key: category_key}
        user_config = self.store.update_user_config(category_overrides=overrides)
        logger.info("Category override set", extra={"item": key, "category": category_key})

        shopping_list = self.store.get_shopping_list()
        if shopping_list is None:
            return None
        on_list = any(i.key == key for bucket in sl_ops.BUCKETS for i in shopping_list.bucket(bucket))
        if not on_list:
            return shopping_list
        updated = sl_ops.set_item_category(shopping_list, key, category_key, user_config.custom_categories)
        self.store.save_shopping_list(updated)
        return updated

    # ------------------------------------------------------------------
    # Categories, pantry and keywords
    # ------------------------------------------------------------------

    def add_custom_category(self, name: str) -> CustomCategory:
        user_config = self.store.get_user_config()
        category = new_custom_category(name, user_config.custom_categories)
        self.store.update_user_config(custom_categories=[*user_config.custom_categories, category])
        logger.info("Custom category added", extra={"category": category.key, "name": category.name})
        return category

    def delete_custom_category(self, category_id: str) -> None:
        """Delete a custom category, first pointing its overrides at misc.

        Overrides, category list and explicit order are rewritten in one
        config update; lines on the current list move to misc as well.
        """
        user_config = self.store.get_user_config()
        category = next((c for c in user_config.custom_categories if c.id == category_id), None)
        if category is None:
            raise NotFoundError(f"Custom category not found: {category_id}")

        overrides = reassign_overrides(user_config.category_overrides, category.key)
        order = user_config.category_order
        if order is not None:
            order = [key for key in order if key != category.key]
        remaining = [c for c in user_config.custom_categories if c.id != category_id]
        self.store.update_user_config(
            category_overrides=overrides,
            custom_categories=remaining,
            category_order=order,
        )

        shopping_list = self.store.get_shopping_list()
        if shopping_list is not None:
            names = {
                i.key for bucket in sl_ops.BUCKETS for i in shopping_list.bucket(bucket)
                if i.category_key == category.key
            }
            for name in names:
                shopping_list = sl_ops.set_item_category(shopping_list, name, FALLBACK_CATEGORY, remaining)
            if names:
                self.store.save_shopping_list(shopping_list)

        logger.info("Custom category deleted", extra={"category": category.key})

    def add_pantry_items(self, names: list[str]) -> BulkAddResult:
        report = BulkAddResult()
        for name in names:
            clean = (name or "").strip()
            if not clean:
                continue
            if self.store.add_pantry_item(clean):
                report.added.append(normalize_item_name(clean))
            else:
                report.skipped.append(DuplicateSkipped(clean, "already in pantry"))
        return report

    def add_excluded_keywords(self, keywords: list[str]) -> BulkAddResult:
        user_config = self.store.get_user_config()
        current = list(user_config.excluded_keywords)
        present = {k.lower() for k in current}
        report = BulkAddResult()

        for keyword in keywords:
            clean = (keyword or "").strip()
            if not clean:
                continue
            if clean.lower() in present:
                report.skipped.append(DuplicateSkipped(clean, "already excluded"))
                continue
            present.add(clean.lower())
            current.append(clean)
            report.added.append(clean)

        if report.added:
            self.store.update_user_config(excluded_keywords=current)
        return report
