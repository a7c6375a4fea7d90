import random
from datetime import date, datetime, timedelta

import pytest

from mealplan.planner import (
    HISTORY_APPEND,
    HISTORY_RETRACT,
    DayPlacement,
    MealPlanner,
    NoCandidateError,
    RecipeHistoryEntry,
    ValidationError,
    WeeklyPlan,
    add_recipe_to_plan,
    assign_days,
    candidate_days,
    day_name,
    mark_made,
    move_to_day,
    navigate_week,
    recently_made_ids,
    remove_recipe_from_plan,
    swap_recipe,
    week_start_date,
)
from tests.conftest import NOW, create_test_recipe

WEEK = date(2024, 3, 11)


@pytest.fixture
def catalog():
    return [
        create_test_recipe("c1", name="Apricot Chicken", category="chicken"),
        create_test_recipe("c2", name="Butter Chicken", category="chicken"),
        create_test_recipe("c3", name="Chicken Curry", category="chicken"),
        create_test_recipe("b1", name="Beef Stew", category="beef"),
        create_test_recipe("v1", name="Lentil Dal", category="vegetarian"),
        create_test_recipe("v2", name="Mushroom Risotto", category="vegetarian"),
    ]


def made(recipe_id, days_ago):
    return RecipeHistoryEntry(recipe_id=recipe_id, date_made=NOW - timedelta(days=days_ago))


class TestGenerate:
    def test_fills_quotas(self, catalog):
        result = MealPlanner().generate(catalog, {"chicken": 2, "beef": 1}, [], WEEK, NOW)

        assert result.plan.recipe_ids == ["c1", "c2", "b1"]
        assert result.shortfalls == []
        assert result.placement is None
        assert result.plan.week_date == WEEK
        assert result.plan.generated_at == NOW

    def test_never_made_first_then_least_recent(self, catalog):
        history = [made("c1", 20), made("c2", 30)]
        result = MealPlanner().generate(catalog, {"chicken": 2}, history, WEEK, NOW)
        assert result.plan.recipe_ids == ["c3", "c2"]

    def test_history_window_is_inclusive(self, catalog):
        history = [made("c1", 10), made("c2", 11)]
        result = MealPlanner(history_exclusion_days=10).generate(catalog, {"chicken": 3}, history, WEEK, NOW)

        assert "c1" not in result.plan.recipe_ids
        assert "c2" in result.plan.recipe_ids
        assert result.shortfalls[0].selected == 2

    def test_zero_day_window_only_excludes_today(self, catalog):
        history = [made("c1", 0), made("c2", 1)]
        result = MealPlanner(history_exclusion_days=0).generate(catalog, {"chicken": 2}, history, WEEK, NOW)
        assert sorted(result.plan.recipe_ids) == ["c2", "c3"]

    def test_shortfall_reported_not_raised(self, catalog):
        result = MealPlanner().generate(catalog, {"beef": 3, "lamb": 1}, [], WEEK, NOW)

        assert result.plan.recipe_ids == ["b1"]
        assert result.has_shortfall
        beef, lamb = result.shortfalls
        assert (beef.category, beef.requested, beef.selected, beef.missing) == ("beef", 3, 1, 2)
        assert (lamb.requested, lamb.selected) == (1, 0)
        assert "Not enough beef recipes" in beef.message

    def test_selected_recipes_match_category_and_never_repeat(self, catalog):
        rng = random.Random(7)
        result = MealPlanner(rng=rng).generate(catalog, {"chicken": 3, "vegetarian": 2}, [], WEEK, NOW)

        ids = result.plan.recipe_ids
        assert len(ids) == len(set(ids)) == 5
        by_id = {r.id: r for r in catalog}
        assert sum(by_id[i].category == "chicken" for i in ids) == 3

    def test_seeded_rng_is_reproducible(self, catalog):
        first = MealPlanner(rng=random.Random(3)).generate(catalog, {"chicken": 2}, [], WEEK, NOW)
        second = MealPlanner(rng=random.Random(3)).generate(catalog, {"chicken": 2}, [], WEEK, NOW)
        assert first.plan.recipe_ids == second.plan.recipe_ids

    def test_zero_quota_selects_nothing(self, catalog):
        result = MealPlanner().generate(catalog, {"chicken": 0}, [], WEEK, NOW)
        assert result.plan.is_empty
        assert result.shortfalls == []

    @pytest.mark.parametrize("quotas", [{"chicken": -1}, {"chicken": 1.5}, {"chicken": True}, {"": 1}])
    def test_invalid_quota(self, catalog, quotas):
        with pytest.raises(ValidationError):
            MealPlanner().generate(catalog, quotas, [], WEEK, NOW)

    def test_empty_quotas_with_total_meals(self, catalog):
        with pytest.raises(ValidationError):
            MealPlanner().generate(catalog, {}, [], WEEK, NOW, total_meals=4)

    def test_invalid_day_configuration(self):
        with pytest.raises(ValidationError):
            MealPlanner(excluded_days=[7])
        with pytest.raises(ValidationError):
            MealPlanner(preferred_days=[-1])


class TestRegeneration:
    def test_made_recipes_preserved_and_counted(self, catalog):
        existing = WeeklyPlan(
            week_date=WEEK,
            recipe_ids=["c3", "b1"],
            made_recipe_ids=["c3"],
            day_assignments={"c3": 2, "b1": 4},
            scale=1.5,
        )

        result = MealPlanner().generate(catalog, {"chicken": 2, "beef": 1}, [], WEEK, NOW, existing_plan=existing)

        plan = result.plan
        assert plan.recipe_ids[0] == "c3"
        assert plan.made_recipe_ids == ["c3"]
        assert plan.recipe_ids.count("c3") == 1
        assert sorted(plan.recipe_ids) == ["b1", "c1", "c3"]
        assert plan.day_assignments == {"c3": 2}
        assert plan.scale == 1.5

    def test_preserved_recipes_keep_day_and_days_rotate(self, catalog):
        existing = WeeklyPlan(week_date=WEEK, recipe_ids=["c3"], made_recipe_ids=["c3"], day_assignments={"c3": 0})
        planner = MealPlanner(auto_assign_days=True)

        result = planner.generate(catalog, {"chicken": 3}, [], WEEK, NOW, existing_plan=existing)

        assert result.plan.day_assignments == {"c3": 0, "c1": 1, "c2": 2}
        assert result.placement.placed == 2

    def test_preserved_recipe_on_excluded_day_is_moved(self, catalog):
        existing = WeeklyPlan(week_date=WEEK, recipe_ids=["c3"], made_recipe_ids=["c3"], day_assignments={"c3": 2})
        planner = MealPlanner(auto_assign_days=True, excluded_days=[2])

        result = planner.generate(catalog, {"chicken": 2}, [], WEEK, NOW, existing_plan=existing)

        assert result.plan.day_assignments == {"c3": 0, "c1": 1}
        assert result.placement == DayPlacement(placed=2)

    def test_preserved_recipe_unplaced_when_all_days_excluded(self, catalog):
        existing = WeeklyPlan(week_date=WEEK, recipe_ids=["c3"], made_recipe_ids=["c3"], day_assignments={"c3": 2})
        planner = MealPlanner(auto_assign_days=True, excluded_days=list(range(7)))

        result = planner.generate(catalog, {"chicken": 2}, [], WEEK, NOW, existing_plan=existing)

        assert result.plan.day_assignments == {}
        assert result.placement.unplaced == ["c3", "c1"]

    def test_quota_met_by_preserved_recipes(self, catalog):
        existing = WeeklyPlan(week_date=WEEK, recipe_ids=["b1"], made_recipe_ids=["b1"])
        result = MealPlanner().generate(catalog, {"beef": 1}, [], WEEK, NOW, existing_plan=existing)
        assert result.plan.recipe_ids == ["b1"]
        assert result.shortfalls == []


class TestDayAssignment:
    def test_candidate_days(self):
        assert candidate_days([5, 6], [4, 5, 2]) == [4, 2, 0, 1, 3]
        assert candidate_days([]) == [0, 1, 2, 3, 4, 5, 6]

    def test_round_robin_over_preferred_then_remaining(self, catalog):
        planner = MealPlanner(auto_assign_days=True, excluded_days=[5, 6], preferred_days=[4])

        result = planner.generate(catalog, {"chicken": 3, "beef": 1}, [], WEEK, NOW)

        assert result.plan.day_assignments == {"c1": 4, "c2": 0, "c3": 1, "b1": 2}
        assert result.placement.placed == 4
        assert result.placement.unplaced == []

    def test_wraps_when_more_recipes_than_days(self):
        assignments, placement = assign_days(["a", "b", "c"], excluded_days=[0, 1, 2, 3, 4])
        assert assignments == {"a": 5, "b": 6, "c": 5}
        assert placement.placed == 3

    def test_never_places_on_excluded_day(self, catalog):
        excluded = [1, 3]
        planner = MealPlanner(auto_assign_days=True, excluded_days=excluded, preferred_days=[1, 2])
        result = planner.generate(catalog, {"chicken": 3, "vegetarian": 2, "beef": 1}, [], WEEK, NOW)
        assert not set(result.plan.day_assignments.values()) & set(excluded)

    def test_all_days_excluded_reports_zero_placements(self, catalog):
        planner = MealPlanner(auto_assign_days=True, excluded_days=[0, 1, 2, 3, 4, 5, 6])

        result = planner.generate(catalog, {"chicken": 2}, [], WEEK, NOW)

        assert result.plan.recipe_ids == ["c1", "c2"]
        assert result.plan.day_assignments == {}
        assert result.placement.placed == 0
        assert result.placement.unplaced == ["c1", "c2"]
        assert result.placement.reason

    def test_no_assignment_when_disabled(self, catalog):
        result = MealPlanner(preferred_days=[0]).generate(catalog, {"chicken": 1}, [], WEEK, NOW)
        assert result.plan.day_assignments == {}


@pytest.fixture
def plan():
    return WeeklyPlan(
        week_date=WEEK,
        recipe_ids=["c1", "b1"],
        made_recipe_ids=["b1"],
        day_assignments={"c1": 0, "b1": 1},
    )


class TestSwapRecipe:
    def test_swaps_within_category(self, plan, catalog):
        swapped, new_recipe = swap_recipe(plan, "c1", catalog)

        assert new_recipe.id == "c2"
        assert swapped.recipe_ids == ["c2", "b1"]
        assert "c1" not in swapped.day_assignments
        assert "c2" not in swapped.day_assignments
        assert plan.recipe_ids == ["c1", "b1"]

    def test_clears_made_flag_of_old_recipe(self, plan, catalog):
        plan = WeeklyPlan(week_date=WEEK, recipe_ids=["c1"], made_recipe_ids=["c1"])
        swapped, _ = swap_recipe(plan, "c1", catalog)
        assert swapped.made_recipe_ids == []

    def test_respects_caller_exclusions_and_history(self, plan, catalog):
        _, new_recipe = swap_recipe(plan, "c1", catalog, exclude_ids=["c2"])
        assert new_recipe.id == "c3"

        _, new_recipe = swap_recipe(plan, "c1", catalog, history=[made("c2", 3)])
        assert new_recipe.id == "c3"

    def test_explicit_category(self, plan, catalog):
        _, new_recipe = swap_recipe(plan, "c1", catalog, category="vegetarian")
        assert new_recipe.category == "vegetarian"

    def test_no_candidates(self, plan, catalog):
        with pytest.raises(NoCandidateError, match="No more beef recipes"):
            swap_recipe(plan, "b1", catalog)

    def test_recipe_not_in_plan(self, plan, catalog):
        with pytest.raises(ValidationError):
            swap_recipe(plan, "c3", catalog)


class TestMarkMade:
    def test_mark_appends_history(self, plan):
        result = mark_made(plan, "c1", True, now=NOW)
        assert result.history_action == HISTORY_APPEND
        assert result.date_made == NOW
        assert result.plan.made_recipe_ids == ["b1", "c1"]

    def test_explicit_date(self, plan):
        when = datetime(2024, 3, 12, 19, 0)
        assert mark_made(plan, "c1", True, now=NOW, date_made=when).date_made == when

    def test_unmark_retracts_history(self, plan):
        result = mark_made(plan, "b1", False, now=NOW)
        assert result.history_action == HISTORY_RETRACT
        assert result.plan.made_recipe_ids == []

    def test_same_state_is_a_no_op(self, plan):
        result = mark_made(plan, "b1", True, now=NOW)
        assert result.history_action is None
        assert result.plan is plan

    def test_recipe_not_in_plan(self, plan):
        with pytest.raises(ValidationError):
            mark_made(plan, "zz", True, now=NOW)


class TestPlanEdits:
    def test_move_to_day(self, plan):
        moved = move_to_day(plan, "c1", 6)
        assert moved.day_assignments == {"c1": 6, "b1": 1}
        assert moved.recipe_ids == plan.recipe_ids
        assert moved.made_recipe_ids == plan.made_recipe_ids

    @pytest.mark.parametrize("day", [-1, 7, "2", True])
    def test_move_to_invalid_day(self, plan, day):
        with pytest.raises(ValidationError):
            move_to_day(plan, "c1", day)

    def test_move_recipe_not_in_plan(self, plan):
        with pytest.raises(ValidationError):
            move_to_day(plan, "zz", 2)

    def test_add_and_remove(self, plan):
        added = add_recipe_to_plan(plan, "v1")
        assert added.recipe_ids == ["c1", "b1", "v1"]
        with pytest.raises(ValidationError):
            add_recipe_to_plan(added, "v1")

        removed = remove_recipe_from_plan(added, "b1")
        assert removed.recipe_ids == ["c1", "v1"]
        assert removed.made_recipe_ids == []
        assert removed.day_assignments == {"c1": 0}

    def test_unassigned_and_day_lookup(self, plan):
        plan = add_recipe_to_plan(plan, "v1")
        assert plan.unassigned_ids == ["v1"]
        assert plan.recipes_on_day(1) == ["b1"]


class TestWeeks:
    def test_week_start_monday(self):
        assert week_start_date(date(2024, 3, 13)) == date(2024, 3, 11)
        assert week_start_date(date(2024, 3, 17)) == date(2024, 3, 11)
        assert week_start_date(date(2024, 3, 11)) == date(2024, 3, 11)

    def test_week_start_sunday(self):
        assert week_start_date(NOW, week_start_day=0) == date(2024, 3, 10)

    def test_navigate_week(self):
        assert navigate_week(WEEK, "next") == date(2024, 3, 18)
        assert navigate_week(WEEK, "prev") == date(2024, 3, 4)
        with pytest.raises(ValidationError):
            navigate_week(WEEK, "sideways")

    def test_day_name(self):
        assert day_name(0) == "Monday"
        assert day_name(6) == "Sunday"
        assert day_name(0, week_start_day=0) == "Sunday"


class TestWeeklyPlanSerialization:
    def test_round_trip(self, plan):
        plan.generated_at = NOW
        assert WeeklyPlan.from_dict(plan.to_dict()) == plan

    def test_drops_entries_for_recipes_not_in_plan(self):
        plan = WeeklyPlan.from_dict({
            "week_date": "2024-03-11",
            "recipe_ids": ["a"],
            "made_recipe_ids": ["a", "ghost"],
            "day_assignments": {"a": 1, "ghost": 2},
        })
        assert plan.made_recipe_ids == ["a"]
        assert plan.day_assignments == {"a": 1}


def test_recently_made_ids():
    history = [made("a", 2), made("b", 15), made("c", -1)]
    assert recently_made_ids(history, 10, NOW) == {"a"}
