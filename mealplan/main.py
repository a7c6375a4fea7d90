import logging
from dataclasses import asdict
from datetime import date, datetime

from flask import Flask, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf.csrf import CSRFError, CSRFProtect, generate_csrf

from mealplan import config
from mealplan.logging_config import configure_logging
from mealplan.planner import GenerationResult, ValidationError
from mealplan.recipes import RecipeLoadError, RecipeSaveError
from mealplan.service import NotFoundError, PlanningService
from mealplan.shopping_list import BUCKET_ITEMS, BulkAddResult, DuplicateItemError, ItemNotFoundError
from mealplan.storage import JsonStore, StoreError

configure_logging(config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["SECRET_KEY"] = config.SECRET_KEY
csrf = CSRFProtect(app)
limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[],          # no global limit; apply per-route only
    storage_uri="memory://",
)


def _get_service() -> PlanningService:
    # Read DATA_DIR per request so tests can point it at a temp directory
    return PlanningService(JsonStore(config.DATA_DIR))


def _body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def _require(data: dict, *fields: str) -> None:
    for field in fields:
        if field not in data:
            raise ValueError(f"Missing required field: {field}")


def _parse_week(week: str) -> date:
    try:
        return date.fromisoformat(week)
    except ValueError:
        raise ValueError(f"Invalid week date: {week}")


def _recipe_scales(data: dict) -> list[tuple[str, float]]:
    _require(data, "recipes")
    if not isinstance(data["recipes"], list):
        raise ValueError("recipes must be a list")
    return [(r["id"], float(r.get("scale", 1.0))) for r in data["recipes"]]


def _serialize_generation(result: GenerationResult) -> dict:
    return {
        "plan": result.plan.to_dict(),
        "shortfalls": [
            {**asdict(s), "message": s.message} for s in result.shortfalls
        ],
        "placement": asdict(result.placement) if result.placement else None,
    }


def _serialize_bulk(report: BulkAddResult) -> dict:
    return {
        "added": report.added,
        "skipped": [asdict(s) for s in report.skipped],
    }


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(CSRFError)
def handle_csrf_error(e):
    logger.warning("CSRF check failed", extra={"path": request.path, "reason": e.description})
    return jsonify({"error": e.description}), 400


@app.errorhandler(ValueError)
def handle_validation_error(e):
    logger.info("Rejected request", extra={"path": request.path, "error": str(e)})
    return jsonify({"error": str(e)}), 400


@app.errorhandler(DuplicateItemError)
def handle_duplicate(e):
    return jsonify({"error": str(e)}), 409


@app.errorhandler(NotFoundError)
@app.errorhandler(ItemNotFoundError)
def handle_not_found(e):
    return jsonify({"error": str(e)}), 404


@app.errorhandler(StoreError)
@app.errorhandler(RecipeLoadError)
@app.errorhandler(RecipeSaveError)
def handle_storage_error(e):
    logger.exception("Storage failure", extra={"path": request.path})
    return jsonify({"error": "Storage failure"}), 500


# ---------------------------------------------------------------------------
# Recipes and plans
# ---------------------------------------------------------------------------

@app.route("/csrf-token", methods=["GET"])
def csrf_token():
    """Hand out a token; clients send it back in the X-CSRFToken header on every POST/DELETE."""
    return jsonify({"csrf_token": generate_csrf()})


@app.route("/recipes", methods=["GET"])
def recipes():
    """List recipes, optionally filtered by ?category=."""
    category = request.args.get("category")
    logger.debug("Listing recipes", extra={"category": category})
    return jsonify({
        "recipes": [r.to_dict() for r in _get_service().store.list_recipes(category)]
    })


@app.route("/plans/<week>", methods=["GET"])
def get_plan(week):
    plan = _get_service().get_plan(_parse_week(week))
    if plan is None:
        raise NotFoundError(f"No meal plan for week of {week}")
    return jsonify({"plan": plan.to_dict()})


@app.route("/plans/<week>/generate", methods=["POST"])
@limiter.limit(config.GENERATE_RATE_LIMIT)
def generate_plan(week):
    """Generate (or regenerate) the plan for a week.

    Body (all optional): quotas, preserve_made, total_meals.
    """
    data = request.get_json(silent=True) or {}
    quotas = data.get("quotas")
    if quotas is not None and not isinstance(quotas, dict):
        raise ValidationError("quotas must be an object of category -> count")

    logger.info("Generating plan", extra={"week": week})
    result = _get_service().generate_plan(
        _parse_week(week),
        quotas=quotas,
        preserve_made=bool(data.get("preserve_made", True)),
        total_meals=data.get("total_meals"),
    )
    return jsonify(_serialize_generation(result))


@app.route("/plans/<week>/swap", methods=["POST"])
def swap_recipe(week):
    data = _body()
    _require(data, "recipe_id")
    plan, new_recipe = _get_service().swap_recipe(
        _parse_week(week),
        data["recipe_id"],
        category=data.get("category"),
        exclude_ids=data.get("exclude_ids"),
    )
    return jsonify({"plan": plan.to_dict(), "recipe": new_recipe.to_dict()})


@app.route("/plans/<week>/made", methods=["POST"])
def mark_made(week):
    data = _body()
    _require(data, "recipe_id")
    date_made = data.get("date_made")
    plan = _get_service().mark_made(
        _parse_week(week),
        data["recipe_id"],
        made=bool(data.get("made", True)),
        date_made=datetime.fromisoformat(date_made) if date_made else None,
    )
    return jsonify({"plan": plan.to_dict()})


@app.route("/plans/<week>/move", methods=["POST"])
def move_to_day(week):
    data = _body()
    _require(data, "recipe_id", "day")
    plan = _get_service().move_to_day(_parse_week(week), data["recipe_id"], data["day"])
    return jsonify({"plan": plan.to_dict()})


# ---------------------------------------------------------------------------
# Shopping list
# ---------------------------------------------------------------------------

@app.route("/shopping-list", methods=["GET"])
def get_shopping_list():
    shopping_list = _get_service().get_shopping_list()
    if shopping_list is None:
        raise NotFoundError("No shopping list available")
    return jsonify(shopping_list.to_dict())


@app.route("/shopping-list/build", methods=["POST"])
@limiter.limit(config.GENERATE_RATE_LIMIT)
def build_shopping_list():
    """Build the list from {"week": ...} or {"recipes": [{"id", "scale"}], "scale"}."""
    data = _body()
    service = _get_service()
    keep_existing = bool(data.get("keep_existing", True))

    if "week" in data:
        shopping_list = service.build_shopping_list_for_week(_parse_week(data["week"]), keep_existing)
    else:
        shopping_list = service.build_shopping_list(
            _recipe_scales(data),
            scale=float(data.get("scale", 1.0)),
            keep_existing=keep_existing,
        )

    logger.info("Shopping list built", extra={"item_count": len(shopping_list.items)})
    return jsonify(shopping_list.to_dict())


@app.route("/shopping-list/add-recipes", methods=["POST"])
@limiter.limit(config.GENERATE_RATE_LIMIT)
def add_recipes_to_shopping_list():
    """Merge {"week": ...} or {"recipes": [...]} into the current list."""
    data = _body()
    service = _get_service()

    if "week" in data:
        shopping_list = service.add_week_to_list(_parse_week(data["week"]))
    else:
        shopping_list = service.add_recipes_to_list(_recipe_scales(data), scale=float(data.get("scale", 1.0)))

    logger.info("Recipes added to shopping list", extra={"item_count": len(shopping_list.items)})
    return jsonify(shopping_list.to_dict())


@app.route("/shopping-list/items", methods=["POST"])
def add_shopping_items():
    """Add one item ({"name", "amount", "unit"}) or several ({"names": [...]})."""
    data = _body()
    service = _get_service()

    if "names" in data:
        if not isinstance(data["names"], list):
            raise ValueError("names must be a list")
        shopping_list, report = service.add_manual_items([str(n) for n in data["names"]])
        return jsonify({"shopping_list": shopping_list.to_dict(), **_serialize_bulk(report)})

    _require(data, "name")
    amount = data.get("amount")
    if amount is not None and (not isinstance(amount, (int, float)) or amount <= 0):
        raise ValueError("amount must be a positive number")
    shopping_list = service.add_manual_item(data["name"], amount=amount, unit=data.get("unit") or "")
    return jsonify({"shopping_list": shopping_list.to_dict()})


@app.route("/shopping-list/remove-item", methods=["POST"])
def remove_shopping_item():
    data = _body()
    _require(data, "name")
    shopping_list = _get_service().remove_item(data["name"], data.get("bucket", BUCKET_ITEMS))
    return jsonify(shopping_list.to_dict())


@app.route("/shopping-list/remove-recipe", methods=["POST"])
def remove_recipe_items():
    data = _body()
    _require(data, "recipe_id")
    return jsonify(_get_service().remove_recipe_items(data["recipe_id"]).to_dict())


@app.route("/shopping-list/move-item", methods=["POST"])
def move_shopping_item():
    data = _body()
    _require(data, "name", "from", "to")
    shopping_list = _get_service().move_item(data["name"], data["from"], data["to"], data.get("keyword"))
    return jsonify(shopping_list.to_dict())


@app.route("/shopping-list/reorder", methods=["POST"])
def reorder_shopping_items():
    data = _body()
    _require(data, "category", "items")
    return jsonify(_get_service().reorder(data["category"], data["items"]).to_dict())


@app.route("/shopping-list/check", methods=["POST"])
def check_shopping_items():
    data = _body()
    _require(data, "names")
    shopping_list = _get_service().set_checked(data["names"], bool(data.get("checked", True)))
    return jsonify(shopping_list.to_dict())


@app.route("/shopping-list/category", methods=["POST"])
def set_item_category():
    """Pin an ingredient to a shopping category for this and future lists."""
    data = _body()
    _require(data, "item", "category")
    shopping_list = _get_service().set_category_override(data["item"], data["category"])
    return jsonify({"shopping_list": shopping_list.to_dict() if shopping_list else None})


# ---------------------------------------------------------------------------
# Pantry and configuration
# ---------------------------------------------------------------------------

@app.route("/pantry", methods=["POST"])
def add_pantry_items():
    data = _body()
    _require(data, "items")
    if not isinstance(data["items"], list):
        raise ValueError("items must be a list")
    report = _get_service().add_pantry_items([str(i) for i in data["items"]])
    return jsonify(_serialize_bulk(report))


@app.route("/config/excluded-keywords", methods=["POST"])
def add_excluded_keywords():
    data = _body()
    _require(data, "keywords")
    if not isinstance(data["keywords"], list):
        raise ValueError("keywords must be a list")
    report = _get_service().add_excluded_keywords([str(k) for k in data["keywords"]])
    return jsonify(_serialize_bulk(report))


@app.route("/config/custom-categories", methods=["POST"])
def add_custom_category():
    data = _body()
    _require(data, "name")
    category = _get_service().add_custom_category(data["name"])
    return jsonify({**category.to_dict(), "key": category.key}), 201


@app.route("/config/custom-categories/<category_id>", methods=["DELETE"])
def delete_custom_category(category_id):
    _get_service().delete_custom_category(category_id)
    return jsonify({"success": True})


if __name__ == "__main__":
    import os
    port = int(os.environ.get("PORT", 5000))
    debug = os.environ.get("FLASK_ENV") != "production"
    app.run(host="0.0.0.0", port=port, debug=debug)
