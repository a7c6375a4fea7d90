from dataclasses import dataclass, field, fields, replace
from typing import Any

from mealplan import config
from mealplan.categories import CustomCategory


@dataclass
class UserConfig:
    categories: list[str] = field(default_factory=lambda: list(config.DEFAULT_MEAL_CATEGORIES))
    default_selection: dict[str, int] = field(default_factory=lambda: dict(config.DEFAULT_SELECTION))
    excluded_keywords: list[str] = field(default_factory=list)
    history_exclusion_days: int = config.DEFAULT_HISTORY_EXCLUSION_DAYS
    week_start_day: int = config.DEFAULT_WEEK_START_DAY  # 0 = Sunday
    excluded_days: list[int] = field(default_factory=list)
    preferred_days: list[int] = field(default_factory=list)
    auto_assign_days: bool = False
    custom_categories: list[CustomCategory] = field(default_factory=list)
    category_order: list[str] | None = None
    category_overrides: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "categories": list(self.categories),
            "default_selection": dict(self.default_selection),
            "excluded_keywords": list(self.excluded_keywords),
            "history_exclusion_days": self.history_exclusion_days,
            "week_start_day": self.week_start_day,
            "excluded_days": list(self.excluded_days),
            "preferred_days": list(self.preferred_days),
            "auto_assign_days": self.auto_assign_days,
            "custom_categories": [c.to_dict() for c in self.custom_categories],
            "category_order": list(self.category_order) if self.category_order is not None else None,
            "category_overrides": dict(self.category_overrides),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserConfig":
        """Build a config from stored data; missing keys take the defaults."""
        defaults = cls()
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if "custom_categories" in values:
            values["custom_categories"] = [
                CustomCategory.from_dict(c) for c in values["custom_categories"] or []
            ]
        result = replace(defaults, **values)
        result.validate()
        return result

    def validate(self) -> None:
        if self.history_exclusion_days < 0:
            raise ValueError("history_exclusion_days must be >= 0")
        if not 0 <= self.week_start_day <= 6:
            raise ValueError("week_start_day must be between 0 and 6")
        for day in [*self.excluded_days, *self.preferred_days]:
            if not isinstance(day, int) or isinstance(day, bool) or not 0 <= day <= 6:
                raise ValueError(f"Invalid day index: {day!r}")
        for category, count in self.default_selection.items():
            if not isinstance(count, int) or isinstance(count, bool) or count < 0:
                raise ValueError(f"Invalid count for {category}: {count!r}")

    def with_updates(self, **partial: Any) -> "UserConfig":
        """Return a copy with *partial* applied, validated."""
        unknown = set(partial) - {f.name for f in fields(UserConfig)}
        if unknown:
            raise ValueError(f"Unknown config fields: {', '.join(sorted(unknown))}")
        merged = self.to_dict()
        merged.update(partial)
        if "custom_categories" in partial:
            merged["custom_categories"] = [
                c.to_dict() if isinstance(c, CustomCategory) else c
                for c in partial["custom_categories"]
            ]
        return UserConfig.from_dict(merged)
