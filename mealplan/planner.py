import logging
import random
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Any

from mealplan.recipes import Recipe

logger = logging.getLogger(__name__)

# Day indices in a plan are offsets from the week's start day. Weekday
# numbering for week_start_day follows 0 = Sunday.
WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
DAYS_PER_WEEK = 7

HISTORY_APPEND = "append"
HISTORY_RETRACT = "retract"


class ValidationError(ValueError):
    """Raised when a planning request is invalid. Nothing is applied."""
    pass


class NoCandidateError(ValidationError):
    """Raised when a swap has no recipe left to choose from."""
    pass


@dataclass
class RecipeHistoryEntry:
    recipe_id: str
    date_made: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"recipe_id": self.recipe_id, "date_made": self.date_made.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecipeHistoryEntry":
        return cls(recipe_id=data["recipe_id"], date_made=datetime.fromisoformat(data["date_made"]))


@dataclass
class WeeklyPlan:
    week_date: date
    recipe_ids: list[str] = field(default_factory=list)
    made_recipe_ids: list[str] = field(default_factory=list)
    day_assignments: dict[str, int] = field(default_factory=dict)
    scale: float = 1.0
    generated_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not self.recipe_ids

    def recipes_on_day(self, day_index: int) -> list[str]:
        return [rid for rid in self.recipe_ids if self.day_assignments.get(rid) == day_index]

    @property
    def unassigned_ids(self) -> list[str]:
        return [rid for rid in self.recipe_ids if rid not in self.day_assignments]

    def to_dict(self) -> dict[str, Any]:
        return {
            "week_date": self.week_date.isoformat(),
            "recipe_ids": list(self.recipe_ids),
            "made_recipe_ids": list(self.made_recipe_ids),
            "day_assignments": dict(self.day_assignments),
            "scale": self.scale,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WeeklyPlan":
        """Load a stored plan, dropping made flags and days for ids no longer in it."""
        recipe_ids = list(data.get("recipe_ids", []))
        members = set(recipe_ids)
        made = [rid for rid in data.get("made_recipe_ids", []) if rid in members]
        days = {
            rid: int(day)
            for rid, day in (data.get("day_assignments") or {}).items()
            if rid in members
        }
        dropped = len(data.get("day_assignments") or {}) - len(days)
        if dropped:
            logger.warning("Dropped day assignments for recipes not in plan", extra={"count": dropped})
        generated_at = data.get("generated_at")
        return cls(
            week_date=date.fromisoformat(data["week_date"]),
            recipe_ids=recipe_ids,
            made_recipe_ids=list(dict.fromkeys(made)),
            day_assignments=days,
            scale=float(data.get("scale", 1.0)),
            generated_at=datetime.fromisoformat(generated_at) if generated_at else None,
        )


@dataclass
class Shortfall:
    category: str
    requested: int
    selected: int

    @property
    def missing(self) -> int:
        return self.requested - self.selected

    @property
    def message(self) -> str:
        return f"Not enough {self.category} recipes. Need {self.requested}, have {self.selected}."


@dataclass
class DayPlacement:
    placed: int
    unplaced: list[str] = field(default_factory=list)
    reason: str | None = None


@dataclass
class GenerationResult:
    plan: WeeklyPlan
    shortfalls: list[Shortfall] = field(default_factory=list)
    placement: DayPlacement | None = None  # None when auto-assignment is off

    @property
    def has_shortfall(self) -> bool:
        return bool(self.shortfalls)


@dataclass
class MarkMadeResult:
    plan: WeeklyPlan
    history_action: str | None       # HISTORY_APPEND, HISTORY_RETRACT or None
    date_made: datetime | None = None


def day_name(day_index: int, week_start_day: int = 1) -> str:
    return WEEKDAY_NAMES[(week_start_day + day_index) % DAYS_PER_WEEK]


def _validate_day(day: Any) -> int:
    if not isinstance(day, int) or isinstance(day, bool) or not 0 <= day < DAYS_PER_WEEK:
        raise ValidationError(f"Day index must be between 0 and 6, got {day!r}")
    return day


def recently_made_ids(history: list[RecipeHistoryEntry], days: int, now: datetime) -> set[str]:
    """Ids of recipes made within the trailing window [now - days, now]."""
    cutoff = now - timedelta(days=days)
    return {h.recipe_id for h in history if cutoff <= h.date_made <= now}


def last_made_dates(history: list[RecipeHistoryEntry]) -> dict[str, datetime]:
    last: dict[str, datetime] = {}
    for entry in history:
        current = last.get(entry.recipe_id)
        if current is None or entry.date_made > current:
            last[entry.recipe_id] = entry.date_made
    return last


def order_candidates(
    pool: list[Recipe],
    last_made: dict[str, datetime],
    rng: random.Random | None = None,
) -> list[Recipe]:
    """Order a candidate pool for selection.

    Without *rng* the order is deterministic: never-made recipes first, then
    least recently made, then by name and id. With *rng* the pool is shuffled.
    """
    if rng is not None:
        shuffled = list(pool)
        rng.shuffle(shuffled)
        return shuffled

    def sort_key(recipe: Recipe):
        made = last_made.get(recipe.id)
        return (made is not None, made or datetime.min, recipe.name.lower(), recipe.id)

    return sorted(pool, key=sort_key)


def candidate_days(excluded_days: list[int], preferred_days: list[int] | None = None) -> list[int]:
    """Placement order: preferred days as listed, then the rest ascending, never excluded ones."""
    excluded = set(excluded_days)
    ordered: list[int] = []
    for day in [*(preferred_days or []), *range(DAYS_PER_WEEK)]:
        if day not in excluded and day not in ordered:
            ordered.append(day)
    return ordered


def assign_days(
    recipe_ids: list[str],
    excluded_days: list[int],
    preferred_days: list[int] | None = None,
    fixed: dict[str, int] | None = None,
) -> tuple[dict[str, int], DayPlacement]:
    """Distribute *recipe_ids* round-robin over the candidate days.

    *fixed* assignments are kept as they are; the days they occupy go to the
    end of the rotation.
    """
    assignments = dict(fixed or {})
    days = candidate_days(excluded_days, preferred_days)

    if not days:
        logger.warning("All days are excluded, no recipes placed", extra={"recipe_count": len(recipe_ids)})
        return assignments, DayPlacement(
            placed=0,
            unplaced=list(recipe_ids),
            reason="All days of the week are excluded",
        )

    occupied = set(assignments.values())
    rotation = [d for d in days if d not in occupied] + [d for d in days if d in occupied]
    for i, recipe_id in enumerate(recipe_ids):
        assignments[recipe_id] = rotation[i % len(rotation)]

    return assignments, DayPlacement(placed=len(recipe_ids))


class MealPlanner:
    def __init__(
        self,
        history_exclusion_days: int = 10,
        excluded_days: list[int] | None = None,
        preferred_days: list[int] | None = None,
        auto_assign_days: bool = False,
        rng: random.Random | None = None,
    ):
        if history_exclusion_days < 0:
            raise ValidationError("history_exclusion_days must be >= 0")
        self.history_exclusion_days = history_exclusion_days
        self.excluded_days = [_validate_day(d) for d in excluded_days or []]
        self.preferred_days = [_validate_day(d) for d in preferred_days or []]
        self.auto_assign_days = auto_assign_days
        self.rng = rng

    @classmethod
    def from_user_config(cls, user_config, rng: random.Random | None = None) -> "MealPlanner":
        return cls(
            history_exclusion_days=user_config.history_exclusion_days,
            excluded_days=user_config.excluded_days,
            preferred_days=user_config.preferred_days,
            auto_assign_days=user_config.auto_assign_days,
            rng=rng,
        )

    @staticmethod
    def _validate_quotas(quotas: dict[str, int], total_meals: int | None) -> None:
        for category, count in quotas.items():
            if not category:
                raise ValidationError("Quota category must be a non-empty string")
            if not isinstance(count, int) or isinstance(count, bool) or count < 0:
                raise ValidationError(f"Quota for {category} must be a non-negative integer, got {count!r}")
        if total_meals and sum(quotas.values()) == 0:
            raise ValidationError(f"No category quotas given for {total_meals} meals")

    def generate(
        self,
        catalog: list[Recipe],
        quotas: dict[str, int],
        history: list[RecipeHistoryEntry],
        week_date: date,
        now: datetime,
        existing_plan: WeeklyPlan | None = None,
        total_meals: int | None = None,
    ) -> GenerationResult:
        """Select recipes for a week against per-category quotas.

        Recipes made inside the history window are skipped, and no recipe is
        picked twice. When *existing_plan* is given, its made recipes are kept
        and count toward their category's quota.
        """
        self._validate_quotas(quotas, total_meals)

        logger.info(
            "Generating weekly plan",
            extra={"catalog_size": len(catalog), "quotas": quotas, "week_date": week_date.isoformat()},
        )

        recent = recently_made_ids(history, self.history_exclusion_days, now)
        last_made = last_made_dates(history)
        by_id = {r.id: r for r in catalog}

        preserved: list[str] = []
        if existing_plan is not None:
            made = set(existing_plan.made_recipe_ids)
            preserved = [rid for rid in dict.fromkeys(existing_plan.recipe_ids) if rid in made]

        preserved_per_category: dict[str, int] = {}
        for recipe_id in preserved:
            recipe = by_id.get(recipe_id)
            if recipe is not None:
                preserved_per_category[recipe.category] = preserved_per_category.get(recipe.category, 0) + 1

        taken: set[str] = set(preserved)
        selection: list[str] = []
        shortfalls: list[Shortfall] = []

        for category, count in quotas.items():
            kept = preserved_per_category.get(category, 0)
            need = max(0, count - kept)
            if need == 0:
                continue

            pool: list[Recipe] = []
            for recipe in catalog:
                if recipe.category != category or recipe.id in recent or recipe.id in taken:
                    continue
                taken.add(recipe.id)
                pool.append(recipe)

            chosen = order_candidates(pool, last_made, self.rng)[:need]
            # Unchosen pool members go back to being available
            taken.difference_update(r.id for r in pool)
            taken.update(r.id for r in chosen)
            selection.extend(r.id for r in chosen)

            if len(chosen) < need:
                shortfall = Shortfall(category=category, requested=count, selected=kept + len(chosen))
                shortfalls.append(shortfall)
                logger.warning(
                    "Quota not fully satisfied",
                    extra={"category": category, "requested": count, "selected": shortfall.selected},
                )

        day_assignments: dict[str, int] = {}
        if existing_plan is not None:
            day_assignments = {
                rid: day for rid, day in existing_plan.day_assignments.items() if rid in preserved
            }

        placement = None
        if self.auto_assign_days:
            # Preserved recipes sitting on a now-excluded day are placed again
            displaced = [rid for rid, day in day_assignments.items() if day in self.excluded_days]
            for recipe_id in displaced:
                del day_assignments[recipe_id]
            day_assignments, placement = assign_days(
                displaced + selection, self.excluded_days, self.preferred_days, fixed=day_assignments
            )

        plan = WeeklyPlan(
            week_date=week_date,
            recipe_ids=preserved + selection,
            made_recipe_ids=list(preserved),
            day_assignments=day_assignments,
            scale=existing_plan.scale if existing_plan is not None else 1.0,
            generated_at=now,
        )

        logger.info(
            "Weekly plan generated",
            extra={"recipe_count": len(plan.recipe_ids), "preserved": len(preserved), "shortfalls": len(shortfalls)},
        )
        return GenerationResult(plan=plan, shortfalls=shortfalls, placement=placement)


def _require_member(plan: WeeklyPlan, recipe_id: str) -> None:
    if recipe_id not in plan.recipe_ids:
        raise ValidationError(f"Recipe '{recipe_id}' is not in the plan for {plan.week_date.isoformat()}")


def swap_recipe(
    plan: WeeklyPlan,
    old_id: str,
    catalog: list[Recipe],
    category: str | None = None,
    exclude_ids: list[str] | None = None,
    history: list[RecipeHistoryEntry] | None = None,
    rng: random.Random | None = None,
) -> tuple[WeeklyPlan, Recipe]:
    """Replace *old_id* with another recipe of the same category.

    Candidates exclude every recipe already in the plan plus *exclude_ids*.
    The old recipe's day assignment and made flag are cleared.
    """
    _require_member(plan, old_id)

    if category is None:
        old = next((r for r in catalog if r.id == old_id), None)
        if old is None:
            raise ValidationError(f"Recipe '{old_id}' not found; pass a category to swap it")
        category = old.category

    excluded = set(plan.recipe_ids) | set(exclude_ids or [])
    pool = [r for r in catalog if r.category == category and r.id not in excluded]
    if not pool:
        raise NoCandidateError(f"No more {category} recipes available")

    new_recipe = order_candidates(pool, last_made_dates(history or []), rng)[0]
    logger.info("Swapping recipe", extra={"old_id": old_id, "new_id": new_recipe.id, "category": category})

    swapped = replace(
        plan,
        recipe_ids=[new_recipe.id if rid == old_id else rid for rid in plan.recipe_ids],
        made_recipe_ids=[rid for rid in plan.made_recipe_ids if rid != old_id],
        day_assignments={rid: d for rid, d in plan.day_assignments.items() if rid != old_id},
    )
    return swapped, new_recipe


def mark_made(
    plan: WeeklyPlan,
    recipe_id: str,
    made: bool,
    now: datetime,
    date_made: datetime | None = None,
) -> MarkMadeResult:
    """Set or clear the weekly made flag and say what the history log needs.

    Marking appends a history entry dated *date_made* (default *now*);
    unmarking retracts the recipe's most recent entry. Setting the flag to
    its current value changes nothing.
    """
    _require_member(plan, recipe_id)

    currently_made = recipe_id in plan.made_recipe_ids
    if made == currently_made:
        return MarkMadeResult(plan=plan, history_action=None)

    if made:
        updated = replace(plan, made_recipe_ids=[*plan.made_recipe_ids, recipe_id])
        return MarkMadeResult(plan=updated, history_action=HISTORY_APPEND, date_made=date_made or now)

    updated = replace(plan, made_recipe_ids=[rid for rid in plan.made_recipe_ids if rid != recipe_id])
    return MarkMadeResult(plan=updated, history_action=HISTORY_RETRACT)


def move_to_day(plan: WeeklyPlan, recipe_id: str, day_index: int) -> WeeklyPlan:
    _validate_day(day_index)
    _require_member(plan, recipe_id)
    return replace(plan, day_assignments={**plan.day_assignments, recipe_id: day_index})


def add_recipe_to_plan(plan: WeeklyPlan, recipe_id: str) -> WeeklyPlan:
    if recipe_id in plan.recipe_ids:
        raise ValidationError("Recipe is already in this week's meal plan")
    return replace(plan, recipe_ids=[*plan.recipe_ids, recipe_id])


def remove_recipe_from_plan(plan: WeeklyPlan, recipe_id: str) -> WeeklyPlan:
    _require_member(plan, recipe_id)
    return replace(
        plan,
        recipe_ids=[rid for rid in plan.recipe_ids if rid != recipe_id],
        made_recipe_ids=[rid for rid in plan.made_recipe_ids if rid != recipe_id],
        day_assignments={rid: d for rid, d in plan.day_assignments.items() if rid != recipe_id},
    )


def week_start_date(day: date | datetime, week_start_day: int = 1) -> date:
    """Return the first day of the week containing *day* (0 = Sunday start)."""
    if isinstance(day, datetime):
        day = day.date()
    sunday_based = (day.weekday() + 1) % DAYS_PER_WEEK
    return day - timedelta(days=(sunday_based - week_start_day) % DAYS_PER_WEEK)


def navigate_week(week_date: date, direction: str) -> date:
    if direction == "next":
        return week_date + timedelta(days=DAYS_PER_WEEK)
    if direction == "prev":
        return week_date - timedelta(days=DAYS_PER_WEEK)
    raise ValidationError(f"Direction must be 'prev' or 'next', got {direction!r}")
