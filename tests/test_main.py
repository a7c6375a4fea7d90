import pytest

from mealplan.main import app, limiter
from mealplan.storage import JsonStore
from tests.conftest import create_test_recipe


@pytest.fixture
def data_dir(tmp_path):
    data_dir = tmp_path / "data"
    JsonStore(data_dir).save_recipes([
        create_test_recipe(
            "lemon-chicken",
            name="Lemon Chicken",
            category="chicken",
            ingredients=[
                {"item": "chicken breast", "amount": 1, "unit": "lb"},
                {"item": "lemons", "amount": 2},
            ],
        ),
        create_test_recipe(
            "chicken-curry",
            name="Chicken Curry",
            category="chicken",
            ingredients=[
                {"item": "chicken breast", "amount": 8, "unit": "oz"},
                {"item": "coconut milk", "amount": 1, "unit": "can"},
            ],
        ),
        create_test_recipe(
            "beef-stew",
            name="Beef Stew",
            category="beef",
            ingredients=[{"item": "beef chuck", "amount": 2, "unit": "lb"}],
        ),
    ])
    return data_dir


@pytest.fixture
def client(data_dir, monkeypatch):
    """Create a test client backed by a temporary data directory."""
    from mealplan import config
    monkeypatch.setattr(config, "DATA_DIR", str(data_dir))

    app.config["TESTING"] = True
    app.config["WTF_CSRF_ENABLED"] = False
    limiter.reset()
    with app.test_client() as client:
        yield client


@pytest.fixture
def plan_week(client):
    response = client.post("/plans/2024-03-11/generate", json={"quotas": {"chicken": 2, "beef": 1}})
    assert response.status_code == 200
    return "2024-03-11"


class TestRecipesEndpoint:
    def test_lists_recipes(self, client):
        response = client.get("/recipes")
        assert response.status_code == 200
        assert [r["id"] for r in response.get_json()["recipes"]] == ["lemon-chicken", "chicken-curry", "beef-stew"]

    def test_filters_by_category(self, client):
        response = client.get("/recipes?category=beef")
        assert [r["id"] for r in response.get_json()["recipes"]] == ["beef-stew"]


class TestPlanEndpoints:
    def test_generate(self, client):
        response = client.post("/plans/2024-03-13/generate", json={"quotas": {"chicken": 2, "beef": 2}})

        data = response.get_json()
        assert response.status_code == 200
        assert data["plan"]["week_date"] == "2024-03-11"
        assert sorted(data["plan"]["recipe_ids"]) == ["beef-stew", "chicken-curry", "lemon-chicken"]
        assert data["shortfalls"][0]["category"] == "beef"
        assert data["shortfalls"][0]["selected"] == 1
        assert data["placement"] is None

    def test_generate_with_invalid_quota(self, client):
        response = client.post("/plans/2024-03-11/generate", json={"quotas": {"chicken": -1}})
        assert response.status_code == 400
        assert "chicken" in response.get_json()["error"]

    def test_get_plan(self, client, plan_week):
        response = client.get(f"/plans/{plan_week}")
        assert response.status_code == 200
        assert len(response.get_json()["plan"]["recipe_ids"]) == 3

    def test_get_missing_plan(self, client):
        assert client.get("/plans/2024-03-11").status_code == 404

    def test_invalid_week(self, client):
        assert client.get("/plans/next-tuesday").status_code == 400

    def test_mark_made_and_unmark(self, client, plan_week):
        response = client.post(f"/plans/{plan_week}/made", json={"recipe_id": "beef-stew"})
        assert response.get_json()["plan"]["made_recipe_ids"] == ["beef-stew"]

        response = client.post(f"/plans/{plan_week}/made", json={"recipe_id": "beef-stew", "made": False})
        assert response.get_json()["plan"]["made_recipe_ids"] == []

    def test_swap_without_candidates(self, client, plan_week):
        response = client.post(f"/plans/{plan_week}/swap", json={"recipe_id": "beef-stew"})
        assert response.status_code == 400
        assert "No more beef recipes" in response.get_json()["error"]

    def test_move(self, client, plan_week):
        response = client.post(f"/plans/{plan_week}/move", json={"recipe_id": "beef-stew", "day": 4})
        assert response.get_json()["plan"]["day_assignments"] == {"beef-stew": 4}

    def test_move_to_invalid_day(self, client, plan_week):
        response = client.post(f"/plans/{plan_week}/move", json={"recipe_id": "beef-stew", "day": 7})
        assert response.status_code == 400

    def test_missing_field(self, client, plan_week):
        response = client.post(f"/plans/{plan_week}/move", json={"day": 2})
        assert response.status_code == 400
        assert response.get_json()["error"] == "Missing required field: recipe_id"


class TestShoppingListEndpoints:
    def test_build_from_recipes(self, client):
        response = client.post("/shopping-list/build", json={
            "recipes": [{"id": "lemon-chicken"}, {"id": "chicken-curry", "scale": 2}],
        })

        data = response.get_json()
        assert response.status_code == 200
        chicken = next(i for i in data["items"] if i["item"] == "chicken breast")
        assert (chicken["amount"], chicken["unit"]) == (2.0, "lb")
        assert data["source_recipes"] == ["lemon-chicken", "chicken-curry"]

    def test_build_from_week(self, client, plan_week):
        response = client.post("/shopping-list/build", json={"week": plan_week})
        assert response.status_code == 200
        assert len(response.get_json()["source_recipes"]) == 3

    def test_add_recipes_to_existing_list(self, client):
        client.post("/shopping-list/build", json={"recipes": [{"id": "lemon-chicken"}]})
        client.post("/shopping-list/check", json={"names": ["lemons"]})

        response = client.post("/shopping-list/add-recipes", json={"recipes": [{"id": "chicken-curry"}]})

        data = response.get_json()
        assert response.status_code == 200
        chicken = next(i for i in data["items"] if i["item"] == "chicken breast")
        assert (chicken["amount"], chicken["unit"]) == (1.5, "lb")
        assert next(i for i in data["items"] if i["item"] == "lemons")["checked"] is True
        assert data["source_recipes"] == ["lemon-chicken", "chicken-curry"]

    def test_add_week_to_list(self, client, plan_week):
        client.post("/shopping-list/build", json={"recipes": [{"id": "lemon-chicken"}]})
        response = client.post("/shopping-list/add-recipes", json={"week": plan_week})
        assert sorted(response.get_json()["source_recipes"]) == ["beef-stew", "chicken-curry", "lemon-chicken"]

    def test_add_recipes_requires_a_list_of_recipes(self, client):
        response = client.post("/shopping-list/add-recipes", json={"recipes": "lemon-chicken"})
        assert response.status_code == 400

    def test_build_with_unknown_recipe(self, client):
        response = client.post("/shopping-list/build", json={"recipes": [{"id": "nope"}]})
        assert response.status_code == 404

    def test_get_before_build(self, client):
        assert client.get("/shopping-list").status_code == 404

    def test_add_items(self, client):
        client.post("/shopping-list/build", json={"recipes": [{"id": "lemon-chicken"}]})

        response = client.post("/shopping-list/items", json={"name": "Coffee"})
        assert response.status_code == 200

        response = client.post("/shopping-list/items", json={"name": "coffee"})
        assert response.status_code == 409

        response = client.post("/shopping-list/items", json={"names": ["tea", "Lemons"]})
        data = response.get_json()
        assert data["added"] == ["tea"]
        assert data["skipped"] == [{"name": "Lemons", "reason": "already on the list"}]

    def test_edit_operations(self, client):
        client.post("/shopping-list/build", json={"recipes": [{"id": "lemon-chicken"}, {"id": "chicken-curry"}]})

        assert client.post("/shopping-list/check", json={"names": ["lemons"]}).status_code == 200
        assert client.post("/shopping-list/move-item", json={
            "name": "coconut milk", "from": "items", "to": "already_have",
        }).status_code == 200
        assert client.post("/shopping-list/category", json={"item": "lemons", "category": "misc"}).status_code == 200
        assert client.post("/shopping-list/remove-recipe", json={"recipe_id": "chicken-curry"}).status_code == 200

        data = client.get("/shopping-list").get_json()
        lemons = next(i for i in data["items"] if i["item"] == "lemons")
        assert lemons["checked"] is True
        assert lemons["category_key"] == "misc"
        assert data["already_have"] == []
        assert data["source_recipes"] == ["lemon-chicken"]

    def test_reorder(self, client):
        client.post("/shopping-list/build", json={"recipes": [{"id": "lemon-chicken"}]})
        client.post("/shopping-list/items", json={"names": ["apples"]})

        response = client.post("/shopping-list/reorder", json={"category": "produce", "items": ["lemons", "apples"]})

        data = response.get_json()
        assert [i["item"] for i in data["items"] if i["category_key"] == "produce"] == ["lemons", "apples"]
        assert data["custom_order"] is True

    def test_remove_unknown_item(self, client):
        client.post("/shopping-list/build", json={"recipes": [{"id": "lemon-chicken"}]})
        response = client.post("/shopping-list/remove-item", json={"name": "caviar"})
        assert response.status_code == 404


class TestConfigEndpoints:
    def test_pantry_items(self, client):
        response = client.post("/pantry", json={"items": ["Lemons", "lemons"]})
        assert response.get_json()["added"] == ["lemons"]
        assert len(response.get_json()["skipped"]) == 1

        response = client.post("/shopping-list/build", json={"recipes": [{"id": "lemon-chicken"}]})
        assert [i["item"] for i in response.get_json()["already_have"]] == ["lemons"]

    def test_excluded_keywords(self, client):
        response = client.post("/config/excluded-keywords", json={"keywords": ["coconut"]})
        assert response.get_json()["added"] == ["coconut"]

        response = client.post("/shopping-list/build", json={"recipes": [{"id": "chicken-curry"}]})
        assert [i["excluded_keyword"] for i in response.get_json()["excluded"]] == ["coconut"]

    def test_pantry_requires_list(self, client):
        assert client.post("/pantry", json={"items": "salt"}).status_code == 400

    def test_custom_category_lifecycle(self, client):
        response = client.post("/config/custom-categories", json={"name": "Snacks"})
        assert response.status_code == 201
        category = response.get_json()
        assert category["key"] == f"custom_{category['id']}"

        assert client.post("/config/custom-categories", json={"name": "snacks"}).status_code == 400
        assert client.delete(f"/config/custom-categories/{category['id']}").status_code == 200
        assert client.delete(f"/config/custom-categories/{category['id']}").status_code == 404

    def test_body_must_be_json_object(self, client):
        response = client.post("/config/custom-categories", data="name=Snacks")
        assert response.status_code == 400


class TestCsrfProtection:
    @pytest.fixture
    def protected_client(self, client, monkeypatch):
        monkeypatch.setitem(app.config, "WTF_CSRF_ENABLED", True)
        return client

    def test_post_without_token_rejected(self, protected_client):
        response = protected_client.post("/pantry", json={"items": ["garlic"]})
        assert response.status_code == 400
        assert "CSRF" in response.get_json()["error"]

    def test_post_with_token_header_accepted(self, protected_client):
        token = protected_client.get("/csrf-token").get_json()["csrf_token"]

        response = protected_client.post("/pantry", json={"items": ["garlic"]}, headers={"X-CSRFToken": token})

        assert response.status_code == 200
        assert response.get_json()["added"] == ["garlic"]
