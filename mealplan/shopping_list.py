import copy
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mealplan import units
from mealplan.categories import (
    FALLBACK_CATEGORY,
    CustomCategory,
    categorize,
    category_order,
    normalize_item_name,
)
from mealplan.recipes import Recipe

logger = logging.getLogger(__name__)

BUCKET_ITEMS = "items"
BUCKET_ALREADY_HAVE = "already_have"
BUCKET_EXCLUDED = "excluded"
BUCKETS = (BUCKET_ITEMS, BUCKET_ALREADY_HAVE, BUCKET_EXCLUDED)

MANUAL_SOURCE = "Manual"

_FALLBACK_ORDER = category_order(FALLBACK_CATEGORY)


class DuplicateItemError(ValueError):
    """Raised when an item with the same name is already in the target bucket."""
    pass


class ItemNotFoundError(LookupError):
    """Raised when a named item is not in the bucket it is looked up in."""
    pass


@dataclass
class AmountEntry:
    amount: float | None
    unit: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"amount": self.amount, "unit": self.unit}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AmountEntry":
        return cls(amount=data.get("amount"), unit=data.get("unit") or "")


@dataclass
class ItemSource:
    recipe_name: str
    recipe_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"recipe_name": self.recipe_name, "recipe_id": self.recipe_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ItemSource":
        return cls(recipe_name=data["recipe_name"], recipe_id=data.get("recipe_id") or "")


@dataclass
class Contribution:
    """One recipe's scaled quantity of an ingredient, before merging."""
    recipe_id: str
    recipe_name: str
    amount: float | None
    unit: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipe_id": self.recipe_id,
            "recipe_name": self.recipe_name,
            "amount": self.amount,
            "unit": self.unit,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Contribution":
        return cls(
            recipe_id=data["recipe_id"],
            recipe_name=data["recipe_name"],
            amount=data.get("amount"),
            unit=data.get("unit") or "",
        )


@dataclass
class ShoppingItem:
    item: str
    amount: float | None = None
    unit: str = ""
    additional_amounts: list[AmountEntry] = field(default_factory=list)
    category_key: str = FALLBACK_CATEGORY
    category_order: int = _FALLBACK_ORDER
    sources: list[ItemSource] = field(default_factory=list)
    checked: bool = False
    excluded_keyword: str | None = None
    shopping_category: str | None = None
    contributions: list[Contribution] = field(default_factory=list)

    @property
    def key(self) -> str:
        return normalize_item_name(self.item)

    @property
    def is_manual(self) -> bool:
        return not self.contributions

    @property
    def display_text(self) -> str:
        """E.g. ``3 cup flour`` or ``2 cup + 100 g sugar``; just the name when amount-less."""
        quantities = [
            units.format_quantity(entry.amount, entry.unit)
            for entry in [AmountEntry(self.amount, self.unit), *self.additional_amounts]
        ]
        quantities = [q for q in quantities if q]
        if not quantities:
            return self.item
        return f"{' + '.join(quantities)} {self.item}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "item": self.item,
            "amount": self.amount,
            "unit": self.unit,
            "additional_amounts": [a.to_dict() for a in self.additional_amounts],
            "category_key": self.category_key,
            "category_order": self.category_order,
            "sources": [s.to_dict() for s in self.sources],
            "checked": self.checked,
            "excluded_keyword": self.excluded_keyword,
            "shopping_category": self.shopping_category,
            "contributions": [c.to_dict() for c in self.contributions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShoppingItem":
        return cls(
            item=data["item"],
            amount=data.get("amount"),
            unit=data.get("unit") or "",
            additional_amounts=[AmountEntry.from_dict(a) for a in data.get("additional_amounts", [])],
            category_key=data.get("category_key") or FALLBACK_CATEGORY,
            category_order=int(data.get("category_order", _FALLBACK_ORDER)),
            sources=[ItemSource.from_dict(s) for s in data.get("sources", [])],
            checked=bool(data.get("checked", False)),
            excluded_keyword=data.get("excluded_keyword"),
            shopping_category=data.get("shopping_category"),
            contributions=[Contribution.from_dict(c) for c in data.get("contributions", [])],
        )


@dataclass
class ShoppingList:
    items: list[ShoppingItem] = field(default_factory=list)
    already_have: list[ShoppingItem] = field(default_factory=list)
    excluded: list[ShoppingItem] = field(default_factory=list)
    source_recipes: list[str] = field(default_factory=list)
    scale: float = 1.0
    total_servings: int = 0
    generated_at: datetime | None = None
    custom_order: bool = False

    def bucket(self, name: str) -> list[ShoppingItem]:
        if name not in BUCKETS:
            raise ValueError(f"Unknown bucket '{name}', expected one of {', '.join(BUCKETS)}")
        return getattr(self, name)

    @property
    def items_by_category(self) -> dict[str, list[ShoppingItem]]:
        """Group active items by category key."""
        grouped = defaultdict(list)
        for item in self.items:
            grouped[item.category_key].append(item)
        return dict(grouped)

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [i.to_dict() for i in self.items],
            "already_have": [i.to_dict() for i in self.already_have],
            "excluded": [i.to_dict() for i in self.excluded],
            "source_recipes": list(self.source_recipes),
            "scale": self.scale,
            "total_servings": self.total_servings,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
            "custom_order": self.custom_order,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShoppingList":
        generated_at = data.get("generated_at")
        return cls(
            items=[ShoppingItem.from_dict(i) for i in data.get("items", [])],
            already_have=[ShoppingItem.from_dict(i) for i in data.get("already_have", [])],
            excluded=[ShoppingItem.from_dict(i) for i in data.get("excluded", [])],
            source_recipes=list(data.get("source_recipes", [])),
            scale=float(data.get("scale", 1.0)),
            total_servings=int(data.get("total_servings", 0)),
            generated_at=datetime.fromisoformat(generated_at) if generated_at else None,
            custom_order=bool(data.get("custom_order", False)),
        )


@dataclass
class DuplicateSkipped:
    name: str
    reason: str


@dataclass
class BulkAddResult:
    added: list[str] = field(default_factory=list)
    skipped: list[DuplicateSkipped] = field(default_factory=list)


def sort_items(items: list[ShoppingItem]) -> None:
    """Sort in place by category order, then name."""
    items.sort(key=lambda i: (i.category_order, i.key))


def _fold(contributions: list[Contribution]) -> tuple[AmountEntry, list[AmountEntry]]:
    """Merge contributions into a primary quantity plus any that would not merge.

    Each contribution is tried against the primary quantity first and then
    against each additional one; only when every merge fails does it start a
    new additional quantity.
    """
    quantities: list[AmountEntry] = []
    for contribution in contributions:
        for index, current in enumerate(quantities):
            merged = units.merge(current.amount, current.unit, contribution.amount, contribution.unit)
            if merged is not None:
                quantities[index] = AmountEntry(merged.amount, merged.unit)
                break
        else:
            quantities.append(AmountEntry(contribution.amount, units.canonical_unit(contribution.unit)))

    rounded = [AmountEntry(units.round_for_display(q.amount), q.unit) for q in quantities]
    if not rounded:
        return AmountEntry(None, ""), []
    return rounded[0], rounded[1:]


def _sources_for(contributions: list[Contribution]) -> list[ItemSource]:
    seen: dict[str, ItemSource] = {}
    for contribution in contributions:
        if contribution.recipe_name not in seen:
            seen[contribution.recipe_name] = ItemSource(contribution.recipe_name, contribution.recipe_id)
    return list(seen.values())


def _apply_category(
    item: ShoppingItem,
    category_overrides: dict[str, str] | None,
    custom_categories: list[CustomCategory] | None,
) -> None:
    item.category_key, item.category_order = categorize(
        item.item, category_overrides, custom_categories, hint=item.shopping_category
    )


def generate_shopping_list(
    selections: list[tuple[Recipe, float]],
    pantry_items: list[str] | None = None,
    excluded_keywords: list[str] | None = None,
    category_overrides: dict[str, str] | None = None,
    custom_categories: list[CustomCategory] | None = None,
    scale: float = 1.0,
    now: datetime | None = None,
) -> ShoppingList:
    """Generate a shopping list from (recipe, scale) pairs.

    Ingredients with the same normalized name are combined into a single
    line. Compatible units are converted and summed; quantities that cannot
    be merged are kept in ``additional_amounts``. Lines matching a pantry item
    go to ``already_have`` and lines containing an excluded keyword go to
    ``excluded``; everything else is an active item.
    """
    if scale <= 0:
        raise ValueError(f"Scale must be positive, got {scale}")

    logger.debug("Generating shopping list", extra={"recipe_count": len(selections), "scale": scale})

    groups: dict[str, dict] = {}
    source_recipes: list[str] = []
    total_servings = 0.0

    for recipe, recipe_scale in selections:
        if recipe_scale <= 0:
            raise ValueError(f"Scale for recipe '{recipe.id}' must be positive, got {recipe_scale}")
        total_servings += recipe.servings * recipe_scale * scale

        for ingredient in recipe.ingredients:
            key = normalize_item_name(ingredient.item)
            if not key:
                continue
            amount = ingredient.amount
            if amount:
                amount = amount * recipe_scale * scale
            else:
                amount = None

            if key not in groups:
                groups[key] = {
                    "display_name": ingredient.item.strip(),  # first-seen name for display
                    "hint": ingredient.shopping_category,
                    "contributions": [],
                }
            elif groups[key]["hint"] is None:
                groups[key]["hint"] = ingredient.shopping_category

            groups[key]["contributions"].append(
                Contribution(recipe.id, recipe.name, amount, ingredient.unit)
            )
            if recipe.id not in source_recipes:
                source_recipes.append(recipe.id)

    pantry = {normalize_item_name(p) for p in pantry_items or []}
    keywords = [k.strip() for k in excluded_keywords or [] if k and k.strip()]

    result = ShoppingList(
        source_recipes=source_recipes,
        scale=scale,
        total_servings=round(total_servings),
        generated_at=now,
    )

    for key, data in groups.items():
        primary, additional = _fold(data["contributions"])
        item = ShoppingItem(
            item=data["display_name"],
            amount=primary.amount,
            unit=primary.unit,
            additional_amounts=additional,
            sources=_sources_for(data["contributions"]),
            shopping_category=data["hint"],
            contributions=list(data["contributions"]),
        )
        _apply_category(item, category_overrides, custom_categories)

        if key in pantry:
            result.already_have.append(item)
            continue

        keyword = next((k for k in keywords if k.lower() in key), None)
        if keyword is not None:
            item.excluded_keyword = keyword
            result.excluded.append(item)
            logger.debug("Excluded item by keyword", extra={"item": key, "keyword": keyword})
            continue

        result.items.append(item)

    for bucket in BUCKETS:
        sort_items(result.bucket(bucket))

    logger.info(
        "Shopping list generated",
        extra={
            "item_count": len(result.items),
            "already_have_count": len(result.already_have),
            "excluded_count": len(result.excluded),
            "recipe_count": len(source_recipes),
        },
    )
    return result


def _find(items: list[ShoppingItem], name: str) -> int:
    key = normalize_item_name(name)
    for index, item in enumerate(items):
        if item.key == key:
            return index
    raise ItemNotFoundError(f"'{name}' is not on the list")


def _manual_item(
    name: str,
    amount: float | None,
    unit: str,
    category_overrides: dict[str, str] | None,
    custom_categories: list[CustomCategory] | None,
) -> ShoppingItem:
    item = ShoppingItem(
        item=name,
        amount=amount,
        unit=unit,
        sources=[ItemSource(MANUAL_SOURCE)],
    )
    _apply_category(item, category_overrides, custom_categories)
    return item


def _insert(sl: ShoppingList, bucket: str, item: ShoppingItem) -> None:
    items = sl.bucket(bucket)
    items.append(item)
    if not sl.custom_order:
        sort_items(items)


def add_manual_item(
    sl: ShoppingList,
    name: str,
    amount: float | None = None,
    unit: str = "",
    category_overrides: dict[str, str] | None = None,
    custom_categories: list[CustomCategory] | None = None,
) -> ShoppingList:
    """Add a user-entered item to the active bucket.

    Raises:
        ValueError: If the name is empty
        DuplicateItemError: If an item with the same name is already active
    """
    clean = (name or "").strip()
    if not clean:
        raise ValueError("Item name is required")
    key = normalize_item_name(clean)
    if any(i.key == key for i in sl.items):
        raise DuplicateItemError(f"'{clean}' is already on the list")

    result = copy.deepcopy(sl)
    _insert(result, BUCKET_ITEMS, _manual_item(clean, amount, unit, category_overrides, custom_categories))
    logger.info("Manual item added", extra={"item": key})
    return result


def add_manual_items(
    sl: ShoppingList,
    names: list[str],
    category_overrides: dict[str, str] | None = None,
    custom_categories: list[CustomCategory] | None = None,
) -> tuple[ShoppingList, BulkAddResult]:
    """Add several items; duplicates are reported per item and never stop the batch."""
    result = copy.deepcopy(sl)
    report = BulkAddResult()
    present = {i.key for i in result.items}

    for name in names:
        clean = (name or "").strip()
        if not clean:
            continue
        key = normalize_item_name(clean)
        if key in present:
            report.skipped.append(DuplicateSkipped(clean, "already on the list"))
            continue
        present.add(key)
        _insert(result, BUCKET_ITEMS, _manual_item(clean, None, "", category_overrides, custom_categories))
        report.added.append(clean)

    logger.info(
        "Manual items added",
        extra={"added": len(report.added), "skipped": len(report.skipped)},
    )
    return result, report


def remove_item(sl: ShoppingList, name: str, bucket: str = BUCKET_ITEMS) -> ShoppingList:
    result = copy.deepcopy(sl)
    items = result.bucket(bucket)
    del items[_find(items, name)]
    return result


def remove_recipe_items(sl: ShoppingList, recipe_id: str) -> ShoppingList:
    """Take one recipe's ingredients back off the list.

    Items that only came from *recipe_id* are dropped; items shared with
    other recipes are refolded from the remaining contributions and stay in
    their current bucket with their checked flag and category.
    """
    result = copy.deepcopy(sl)
    removed = 0

    for bucket in BUCKETS:
        kept: list[ShoppingItem] = []
        for item in result.bucket(bucket):
            if not any(c.recipe_id == recipe_id for c in item.contributions):
                kept.append(item)
                continue
            remaining = [c for c in item.contributions if c.recipe_id != recipe_id]
            if not remaining:
                removed += 1
                continue
            primary, additional = _fold(remaining)
            item.amount, item.unit = primary.amount, primary.unit
            item.additional_amounts = additional
            item.contributions = remaining
            item.sources = _sources_for(remaining)
            kept.append(item)
        setattr(result, bucket, kept)

    result.source_recipes = [rid for rid in result.source_recipes if rid != recipe_id]
    logger.info("Recipe items removed", extra={"recipe_id": recipe_id, "removed": removed})
    return result


def _insert_after_category(sl: ShoppingList, bucket: str, item: ShoppingItem) -> None:
    if not sl.custom_order:
        _insert(sl, bucket, item)
        return
    items = sl.bucket(bucket)
    same = [index for index, i in enumerate(items) if i.category_key == item.category_key]
    items.insert(same[-1] + 1 if same else len(items), item)


def add_recipes_to_list(
    sl: ShoppingList,
    selections: list[tuple[Recipe, float]],
    pantry_items: list[str] | None = None,
    excluded_keywords: list[str] | None = None,
    category_overrides: dict[str, str] | None = None,
    custom_categories: list[CustomCategory] | None = None,
    scale: float = 1.0,
    now: datetime | None = None,
) -> ShoppingList:
    """Fold more recipes into an existing list without rebuilding it.

    A new ingredient already on the list, in any bucket, is merged into that
    line, which keeps its bucket, checked flag and category. A manual line
    keeps its own quantity as a "Manual" contribution. Ingredients not on the
    list yet are partitioned like a fresh list; with a custom order they go
    after the last line of their category.
    """
    fresh = generate_shopping_list(
        selections,
        pantry_items=pantry_items,
        excluded_keywords=excluded_keywords,
        category_overrides=category_overrides,
        custom_categories=custom_categories,
        scale=scale,
        now=now,
    )
    result = copy.deepcopy(sl)
    merged = 0

    for bucket in BUCKETS:
        for new_item in fresh.bucket(bucket):
            existing = next(
                (i for b in BUCKETS for i in result.bucket(b) if i.key == new_item.key),
                None,
            )
            if existing is None:
                _insert_after_category(result, bucket, new_item)
                continue

            contributions = existing.contributions or [
                Contribution("", MANUAL_SOURCE, existing.amount, existing.unit)
            ]
            contributions = [*contributions, *new_item.contributions]
            primary, additional = _fold(contributions)
            existing.amount, existing.unit = primary.amount, primary.unit
            existing.additional_amounts = additional
            existing.contributions = contributions
            existing.sources = _sources_for(contributions)
            merged += 1

    for recipe_id in fresh.source_recipes:
        if recipe_id not in result.source_recipes:
            result.source_recipes.append(recipe_id)
    result.total_servings += fresh.total_servings
    if now is not None:
        result.generated_at = now

    logger.info(
        "Recipes added to shopping list",
        extra={"recipe_count": len(fresh.source_recipes), "merged": merged},
    )
    return result


def move_item(
    sl: ShoppingList,
    name: str,
    from_bucket: str,
    to_bucket: str,
    keyword: str | None = None,
) -> ShoppingList:
    """Move an item between buckets as-is; amounts are not re-merged.

    Moving into ``excluded`` tags the item with *keyword* (or keeps its old
    tag); moving anywhere else clears the tag.
    """
    result = copy.deepcopy(sl)
    source = result.bucket(from_bucket)
    target = result.bucket(to_bucket)
    if from_bucket == to_bucket:
        return result

    item = source[_find(source, name)]
    if any(i.key == item.key for i in target):
        raise DuplicateItemError(f"'{item.item}' is already in {to_bucket}")

    source.remove(item)
    if to_bucket == BUCKET_EXCLUDED:
        item.excluded_keyword = keyword or item.excluded_keyword
    else:
        item.excluded_keyword = None
    _insert(result, to_bucket, item)
    return result


def reorder(sl: ShoppingList, category_key: str, ordered_names: list[str]) -> ShoppingList:
    """Set an explicit order for the active items of one category.

    *ordered_names* must name exactly the items in that category. The list
    keeps this order from now on instead of the default sort.
    """
    result = copy.deepcopy(sl)
    slots = [index for index, item in enumerate(result.items) if item.category_key == category_key]
    by_key = {result.items[index].key: result.items[index] for index in slots}
    wanted = [normalize_item_name(n) for n in ordered_names]

    if sorted(wanted) != sorted(by_key):
        raise ValueError(f"Order must list exactly the items in category '{category_key}'")

    for slot, key in zip(slots, wanted):
        result.items[slot] = by_key[key]
    result.custom_order = True
    return result


def set_checked(sl: ShoppingList, names: list[str], checked: bool = True) -> ShoppingList:
    """Check (or uncheck) several active items at once.

    Raises ItemNotFoundError, before anything changes, if a name is not active.
    """
    result = copy.deepcopy(sl)
    indices = [_find(result.items, name) for name in names]
    for index in indices:
        result.items[index].checked = checked
    return result


def toggle_checked(sl: ShoppingList, name: str) -> ShoppingList:
    result = copy.deepcopy(sl)
    item = result.items[_find(result.items, name)]
    item.checked = not item.checked
    return result


def clear_checked(sl: ShoppingList) -> ShoppingList:
    """Drop every checked item from the active bucket."""
    result = copy.deepcopy(sl)
    result.items = [i for i in result.items if not i.checked]
    return result


def set_item_category(
    sl: ShoppingList,
    name: str,
    category_key: str,
    custom_categories: list[CustomCategory] | None = None,
) -> ShoppingList:
    """Retag every line named *name*, in any bucket."""
    result = copy.deepcopy(sl)
    key = normalize_item_name(name)
    order = category_order(category_key, custom_categories)
    found = False

    for bucket in BUCKETS:
        for item in result.bucket(bucket):
            if item.key == key:
                item.category_key = category_key
                item.category_order = order
                found = True
        if not result.custom_order:
            sort_items(result.bucket(bucket))

    if not found:
        raise ItemNotFoundError(f"'{name}' is not on the list")
    return result


def carry_over_user_state(previous: ShoppingList, rebuilt: ShoppingList) -> ShoppingList:
    """Keep what the user did to *previous* when a list is rebuilt.

    Checked flags survive for lines still present, manual items are
    re-added to the active bucket, and a custom order is kept for the
    lines that survive, with new lines after them.
    """
    result = copy.deepcopy(rebuilt)
    checked = {i.key for bucket in BUCKETS for i in previous.bucket(bucket) if i.checked}
    present = {i.key for bucket in BUCKETS for i in result.bucket(bucket)}

    for bucket in BUCKETS:
        for item in result.bucket(bucket):
            if item.key in checked:
                item.checked = True

    for manual in (i for i in previous.items if i.is_manual):
        if manual.key not in present:
            result.items.append(copy.deepcopy(manual))
            present.add(manual.key)

    if previous.custom_order:
        position = {item.key: index for index, item in enumerate(previous.items)}
        tail = len(position)
        result.items.sort(key=lambda i: (position.get(i.key, tail), i.category_order, i.key))
        result.custom_order = True
    else:
        sort_items(result.items)

    return result
