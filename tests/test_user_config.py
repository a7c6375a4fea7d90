import pytest

from mealplan.categories import CustomCategory
from mealplan.user_config import UserConfig


class TestUserConfig:
    def test_defaults(self):
        cfg = UserConfig()
        assert cfg.categories == ["chicken", "beef", "lamb", "turkey", "vegetarian"]
        assert cfg.default_selection == {"chicken": 2, "beef": 1, "turkey": 1}
        assert cfg.history_exclusion_days == 10
        assert cfg.week_start_day == 1
        assert cfg.auto_assign_days is False
        assert cfg.category_order is None

    def test_from_dict_fills_missing_keys_and_ignores_unknown(self):
        cfg = UserConfig.from_dict({"excluded_keywords": ["nut"], "theme": "dark"})
        assert cfg.excluded_keywords == ["nut"]
        assert cfg.history_exclusion_days == 10

    def test_round_trip_with_custom_categories(self):
        cfg = UserConfig(
            custom_categories=[CustomCategory(id="abc", name="Snacks", order=9)],
            category_overrides={"chips": "custom_abc"},
            excluded_days=[0, 6],
        )
        assert UserConfig.from_dict(cfg.to_dict()) == cfg

    @pytest.mark.parametrize("data", [
        {"history_exclusion_days": -1},
        {"week_start_day": 7},
        {"excluded_days": [8]},
        {"preferred_days": [True]},
        {"default_selection": {"chicken": -2}},
        {"default_selection": {"chicken": True}},
    ])
    def test_invalid_values_rejected(self, data):
        with pytest.raises(ValueError):
            UserConfig.from_dict(data)


class TestWithUpdates:
    def test_returns_updated_copy(self):
        cfg = UserConfig()
        updated = cfg.with_updates(auto_assign_days=True, excluded_days=[5, 6])
        assert updated.auto_assign_days is True
        assert updated.excluded_days == [5, 6]
        assert cfg.auto_assign_days is False

    def test_accepts_custom_category_objects(self):
        snacks = CustomCategory(id="abc", name="Snacks", order=9)
        updated = UserConfig().with_updates(custom_categories=[snacks])
        assert updated.custom_categories == [snacks]

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="Unknown config fields: colour"):
            UserConfig().with_updates(colour="blue")

    def test_invalid_update_rejected(self):
        with pytest.raises(ValueError):
            UserConfig().with_updates(week_start_day=-1)
