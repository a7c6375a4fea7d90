"""
Shopping categories for ingredient classification.

Categories are ordered by a typical grocery store layout. Users can add
their own categories and pin individual ingredients to a category through
overrides; both are resolved here.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = "misc"
CUSTOM_PREFIX = "custom_"


@dataclass(frozen=True)
class ShoppingCategory:
    name: str
    order: int
    keywords: tuple[str, ...]


BUILTIN_CATEGORIES: dict[str, ShoppingCategory] = {
    "produce": ShoppingCategory("Fresh Produce", 1, (
        # Vegetables
        "lettuce", "spinach", "kale", "arugula", "cabbage", "bok choy",
        "tomato", "tomatoes", "cherry tomatoes", "onion", "onions", "red onion",
        "shallot", "shallots", "garlic", "ginger", "scallion", "scallions",
        "green onion", "green onions", "pepper", "peppers", "bell pepper",
        "bell peppers", "jalapeno", "jalapenos", "cucumber", "zucchini", "squash",
        "eggplant", "carrot", "carrots", "celery", "broccoli", "cauliflower",
        "asparagus", "mushroom", "mushrooms", "potato", "potatoes",
        "sweet potato", "sweet potatoes", "corn", "peas", "green beans",
        "avocado", "avocados",
        # Fruits
        "apple", "apples", "banana", "bananas", "orange", "oranges", "lemon",
        "lemons", "lime", "limes", "strawberries", "blueberries", "raspberries",
        "grapes", "mango", "pineapple", "peach", "peaches", "pear", "pears",
        # Fresh herbs
        "cilantro", "parsley", "basil", "mint", "dill", "chives", "rosemary",
        "thyme", "sage", "oregano",
    )),
    "deli": ShoppingCategory("Deli", 2, (
        "ham", "turkey breast", "roast beef", "pastrami", "salami", "pepperoni",
        "prosciutto", "pancetta", "bacon", "sausage", "chorizo", "deli meat",
        "cheese", "cheddar", "mozzarella", "parmesan", "swiss", "provolone",
        "gouda", "brie", "feta", "goat cheese", "blue cheese", "cream cheese",
        "ricotta", "cottage cheese", "mascarpone", "monterey jack",
    )),
    "bakery": ShoppingCategory("Bakery", 3, (
        "bread", "loaf", "baguette", "ciabatta", "sourdough", "focaccia",
        "rolls", "dinner rolls", "hamburger buns", "hot dog buns", "tortilla",
        "tortillas", "wrap", "wraps", "pita", "naan", "flatbread", "croissant",
        "bagel", "bagels", "english muffin", "muffin", "muffins",
    )),
    "protein": ShoppingCategory("Protein", 4, (
        # Poultry
        "chicken", "chicken breast", "chicken thigh", "chicken thighs",
        "chicken wings", "ground chicken", "turkey", "ground turkey", "duck",
        # Beef, pork, lamb
        "beef", "ground beef", "steak", "sirloin", "ribeye", "flank steak",
        "brisket", "short ribs", "pork", "pork chop", "pork chops", "pork loin",
        "pork tenderloin", "ground pork", "pork shoulder", "ribs", "lamb",
        "lamb chops", "ground lamb", "lamb shank", "veal",
        # Seafood
        "fish", "salmon", "tuna", "cod", "tilapia", "halibut", "trout",
        "shrimp", "prawns", "lobster", "crab", "scallops", "mussels", "clams",
        "squid",
    )),
    "dairy": ShoppingCategory("Dairy", 5, (
        "milk", "whole milk", "half and half", "heavy cream", "whipping cream",
        "sour cream", "buttermilk", "egg", "eggs", "butter", "unsalted butter",
        "margarine", "yogurt", "greek yogurt", "kefir", "creme fraiche",
    )),
    "pantry": ShoppingCategory("Pantry", 6, (
        # Canned goods
        "canned", "diced tomatoes", "crushed tomatoes", "tomato paste",
        "tomato sauce", "sun dried tomatoes", "beans", "black beans",
        "kidney beans", "chickpeas", "lentils",
        # Pasta & grains
        "pasta", "spaghetti", "penne", "rigatoni", "fettuccine", "linguine",
        "macaroni", "noodles", "rice", "brown rice", "jasmine rice", "basmati",
        "arborio", "quinoa", "couscous", "orzo", "barley", "oats",
        "breadcrumbs", "panko", "crackers", "tortilla chips",
        # Sauces & condiments
        "sauce", "marinara", "pesto", "salsa", "ketchup", "mustard",
        "mayonnaise", "mayo", "soy sauce", "hoisin", "fish sauce",
        "oyster sauce", "vinegar", "balsamic", "olive oil", "vegetable oil",
        "canola oil", "sesame oil", "coconut oil", "oil",
        # Baking
        "flour", "sugar", "brown sugar", "baking powder", "baking soda",
        "yeast", "cornstarch", "vanilla", "vanilla extract", "cocoa",
        "chocolate chips",
        # Spices & seasonings
        "salt", "black pepper", "cumin", "paprika", "chili powder", "cayenne",
        "cinnamon", "nutmeg", "turmeric", "curry powder", "garlic powder",
        "onion powder", "italian seasoning", "bay leaf", "bay leaves",
        # Nuts, stocks, spreads
        "almonds", "walnuts", "pecans", "cashews", "peanuts", "pine nuts",
        "raisins", "broth", "stock", "chicken broth", "beef broth",
        "vegetable broth", "bouillon", "honey", "maple syrup", "peanut butter",
        "almond butter", "tahini", "coconut milk",
    )),
    "frozen": ShoppingCategory("Frozen", 7, (
        "frozen", "ice cream", "frozen pizza", "frozen vegetables",
        "frozen fruit", "frozen berries", "frozen peas", "frozen corn",
        "frozen spinach", "french fries", "tater tots", "fish sticks",
    )),
    "misc": ShoppingCategory("Miscellaneous", 8, (
        # Non-food items only
        "aluminum foil", "foil", "plastic wrap", "parchment paper",
        "paper towels", "napkins", "storage bags", "freezer bags",
        "trash bags", "dish soap", "sponge", "sponges", "laundry detergent",
        "toilet paper", "tissues", "toothpaste", "shampoo", "soap",
        "dog food", "cat food", "cat litter", "batteries", "light bulbs",
    )),
}

# (keyword, category key, declaration index), longest keyword first so
# "peanut butter" wins over "butter" and "sun dried tomatoes" over "tomatoes".
_KEYWORD_INDEX: list[tuple[str, str, int]] = sorted(
    (
        (keyword, key, index)
        for index, (key, category) in enumerate(BUILTIN_CATEGORIES.items())
        for keyword in category.keywords
    ),
    key=lambda entry: (-len(entry[0]), entry[2]),
)

_KEYWORD_PATTERNS: dict[str, re.Pattern] = {
    keyword: re.compile(r"\b" + re.escape(keyword) + r"\b")
    for keyword, _key, _index in _KEYWORD_INDEX
}


@dataclass
class CustomCategory:
    id: str
    name: str
    order: int

    @property
    def key(self) -> str:
        return f"{CUSTOM_PREFIX}{self.id}"

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "order": self.order}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CustomCategory":
        return cls(id=data["id"], name=data["name"], order=int(data["order"]))


@dataclass(frozen=True)
class CategoryInfo:
    key: str
    name: str
    order: int
    is_custom: bool


def normalize_item_name(name: str) -> str:
    """Grouping key for an ingredient: trimmed and lowercased, nothing else."""
    return (name or "").strip().lower()


def _find_custom(key: str, custom_categories: list[CustomCategory] | None) -> CustomCategory | None:
    if not key.startswith(CUSTOM_PREFIX):
        return None
    for category in custom_categories or []:
        if category.key == key:
            return category
    return None


def is_known_category(key: str | None, custom_categories: list[CustomCategory] | None = None) -> bool:
    if not key:
        return False
    return key in BUILTIN_CATEGORIES or _find_custom(key, custom_categories) is not None


def category_order(key: str, custom_categories: list[CustomCategory] | None = None) -> int:
    """Sort position of a category key; unknown keys sort with misc."""
    if key in BUILTIN_CATEGORIES:
        return BUILTIN_CATEGORIES[key].order
    custom = _find_custom(key, custom_categories)
    if custom is not None:
        return custom.order
    return BUILTIN_CATEGORIES[FALLBACK_CATEGORY].order


def match_keyword_category(item_name: str) -> str | None:
    """Return the built-in category whose longest keyword appears in *item_name*."""
    item_lower = normalize_item_name(item_name)
    for keyword, key, _index in _KEYWORD_INDEX:
        if _KEYWORD_PATTERNS[keyword].search(item_lower):
            return key
    return None


def category_for(
    item_name: str,
    overrides: dict[str, str] | None = None,
    custom_categories: list[CustomCategory] | None = None,
    hint: str | None = None,
) -> str:
    """Resolve the shopping category key for an ingredient name.

    Lookup order:
      1. user override keyed by the normalized item name
      2. the ingredient's own shopping-category hint
      3. longest built-in keyword match
      4. "misc"

    Overrides and hints pointing at an unknown (e.g. deleted) category are
    ignored.
    """
    normalized = normalize_item_name(item_name)

    override = (overrides or {}).get(normalized)
    if override:
        if is_known_category(override, custom_categories):
            return override
        logger.warning(
            "Ignoring override to unknown category",
            extra={"item": normalized, "category": override},
        )

    if hint and is_known_category(hint, custom_categories):
        return hint

    matched = match_keyword_category(normalized)
    if matched:
        return matched

    return FALLBACK_CATEGORY


def categorize(
    item_name: str,
    overrides: dict[str, str] | None = None,
    custom_categories: list[CustomCategory] | None = None,
    hint: str | None = None,
) -> tuple[str, int]:
    """Return (category key, category order) for sorting."""
    key = category_for(item_name, overrides, custom_categories, hint)
    return key, category_order(key, custom_categories)


def all_categories(
    custom_categories: list[CustomCategory] | None = None,
    order: list[str] | None = None,
) -> list[CategoryInfo]:
    """Built-in and custom categories, in display order.

    An explicit *order* list of keys wins; categories missing from it follow
    in their default order. Without one, categories sort by their order
    number.
    """
    categories = [
        CategoryInfo(key, category.name, category.order, False)
        for key, category in BUILTIN_CATEGORIES.items()
    ] + [
        CategoryInfo(custom.key, custom.name, custom.order, True)
        for custom in custom_categories or []
    ]

    if order:
        position = {key: index for index, key in enumerate(order)}
        return sorted(
            categories,
            key=lambda c: (0, position[c.key], 0) if c.key in position else (1, c.order, 0),
        )

    return sorted(categories, key=lambda c: c.order)


def next_category_order(custom_categories: list[CustomCategory] | None = None) -> int:
    highest = max(category.order for category in BUILTIN_CATEGORIES.values())
    for custom in custom_categories or []:
        highest = max(highest, custom.order)
    return highest + 1


def new_custom_category(name: str, existing: list[CustomCategory] | None = None) -> CustomCategory:
    """Create a custom category with a generated id and the next free order."""
    clean = (name or "").strip()
    if not clean:
        raise ValueError("Category name is required")
    taken = {c.name.lower() for c in existing or []}
    taken.update(c.name.lower() for c in BUILTIN_CATEGORIES.values())
    if clean.lower() in taken:
        raise ValueError(f"Category '{clean}' already exists")
    return CustomCategory(id=uuid.uuid4().hex, name=clean, order=next_category_order(existing))


def reassign_overrides(overrides: dict[str, str], category_key: str) -> dict[str, str]:
    """Point every override that targets *category_key* at misc instead."""
    return {
        item: (FALLBACK_CATEGORY if key == category_key else key)
        for item, key in overrides.items()
    }
