import logging
import math
from dataclasses import dataclass
from fractions import Fraction

logger = logging.getLogger(__name__)

VOLUME = "volume"
WEIGHT = "weight"
COUNT = "count"
OTHER = "other"

# ---------------------------------------------------------------------------
# Unit conversion tables
# All volume units are expressed in ml; all weight units in grams.
# Keys are lowercased canonical spellings (plus common abbreviations).
# ---------------------------------------------------------------------------

_VOLUME_TO_ML: dict[str, float] = {
    "ml": 1, "milliliter": 1, "milliliters": 1, "millilitre": 1, "millilitres": 1,
    # teaspoon: "t" is a common shorthand in recipes
    "t": 4.92892, "tsp": 4.92892, "teaspoon": 4.92892, "teaspoons": 4.92892,
    # tablespoon: "T" and "Tbsp" are common shorthands
    "T": 14.7868, "tbsp": 14.7868, "Tbsp": 14.7868, "tablespoon": 14.7868, "tablespoons": 14.7868,
    "fl oz": 29.5735, "fluid ounce": 29.5735, "fluid ounces": 29.5735,
    "c": 236.588, "cup": 236.588, "cups": 236.588,
    "pt": 473.176, "pint": 473.176, "pints": 473.176,
    "qt": 946.353, "quart": 946.353, "quarts": 946.353,
    "l": 1000, "liter": 1000, "liters": 1000, "litre": 1000, "litres": 1000,
    "gal": 3785.41, "gallon": 3785.41, "gallons": 3785.41,
}

_WEIGHT_TO_G: dict[str, float] = {
    "g": 1, "gram": 1, "grams": 1,
    "kg": 1000, "kilogram": 1000, "kilograms": 1000,
    "oz": 28.3495, "ounce": 28.3495, "ounces": 28.3495,
    "lb": 453.592, "lbs": 453.592, "pound": 453.592, "pounds": 453.592,
}

_COUNT_UNITS: frozenset[str] = frozenset({"", "whole", "piece", "pieces", "count", "each"})

# Map shorthand abbreviations to canonical display names
_UNIT_DISPLAY: dict[str, str] = {
    "t": "tsp", "tsp": "tsp", "teaspoon": "tsp", "teaspoons": "tsp",
    "T": "tbsp", "Tbsp": "tbsp", "tbsp": "tbsp", "tablespoon": "tbsp", "tablespoons": "tbsp",
    "c": "cup", "cup": "cup", "cups": "cup",
    "ml": "ml", "milliliter": "ml", "milliliters": "ml", "millilitre": "ml", "millilitres": "ml",
    "fl oz": "fl oz", "fluid ounce": "fl oz", "fluid ounces": "fl oz",
    "pt": "pint", "pint": "pint", "pints": "pint",
    "qt": "quart", "quart": "quart", "quarts": "quart",
    "l": "l", "liter": "l", "liters": "l", "litre": "l", "litres": "l",
    "gal": "gallon", "gallon": "gallon", "gallons": "gallon",
    "g": "g", "gram": "g", "grams": "g",
    "kg": "kg", "kilogram": "kg", "kilograms": "kg",
    "oz": "oz", "ounce": "oz", "ounces": "oz",
    "lb": "lb", "lbs": "lb", "pound": "lb", "pounds": "lb",
}


@dataclass(frozen=True)
class UnitInfo:
    family: str
    canonical_unit: str
    factor: float  # multiplier to the family's base unit (ml, g, or 1)


@dataclass(frozen=True)
class MergeResult:
    amount: float | None
    unit: str


def _lookup(table: dict[str, float], stripped: str) -> tuple[str, float] | None:
    # Case-sensitive first pass (handles t vs T, Tbsp, etc.)
    if stripped in table:
        return stripped, table[stripped]
    lowered = stripped.lower()
    if lowered in table:
        return lowered, table[lowered]
    return None


def classify(unit: str | None) -> UnitInfo:
    """Return the measurement family, canonical spelling and base factor of *unit*.

    Unknown units come back as family ``other`` with factor 1 and the
    stripped literal as canonical unit; they only ever merge with the same
    literal.
    """
    stripped = (unit or "").strip()

    found = _lookup(_VOLUME_TO_ML, stripped)
    if found:
        key, factor = found
        return UnitInfo(VOLUME, _UNIT_DISPLAY[key], factor)

    found = _lookup(_WEIGHT_TO_G, stripped)
    if found:
        key, factor = found
        return UnitInfo(WEIGHT, _UNIT_DISPLAY[key], factor)

    if stripped.lower() in _COUNT_UNITS:
        return UnitInfo(COUNT, "", 1.0)

    return UnitInfo(OTHER, stripped, 1.0)


def canonical_unit(unit: str | None) -> str:
    return classify(unit).canonical_unit


def merge(
    amount_a: float | None,
    unit_a: str,
    amount_b: float | None,
    unit_b: str,
) -> MergeResult | None:
    """Combine two quantities of the same ingredient.

    Returns None when the units cannot be combined (different families, or
    two different unrecognised units); callers keep both quantities.

    Within a family both sides are converted to the base unit, summed, and
    expressed in the larger of the two operand units.
    """
    info_a = classify(unit_a)
    info_b = classify(unit_b)

    # An amount-less entry ("salt, to taste") adds nothing to a real quantity
    if amount_a is None and amount_b is None:
        return MergeResult(None, info_a.canonical_unit)
    if amount_b is None:
        return MergeResult(amount_a, info_a.canonical_unit)
    if amount_a is None:
        return MergeResult(amount_b, info_b.canonical_unit)

    # Exact text only: "t" and "T" are different units
    if (unit_a or "").strip() == (unit_b or "").strip():
        return MergeResult(amount_a + amount_b, info_a.canonical_unit)

    if info_a.family != info_b.family:
        return None

    if info_a.family == OTHER:
        if info_a.canonical_unit.lower() != info_b.canonical_unit.lower():
            return None
        return MergeResult(amount_a + amount_b, info_a.canonical_unit)

    total_base = amount_a * info_a.factor + amount_b * info_b.factor
    target = info_b if info_b.factor > info_a.factor else info_a
    return MergeResult(total_base / target.factor, target.canonical_unit)


def _round_to(value: float, step: float) -> float:
    # Half rounds up; round() would round half to even
    return math.floor(value / step + 0.5) * step


def round_for_display(amount: float | None) -> float | None:
    """Round to a fraction-friendly precision.

    Below 1/4: nearest 1/8 (never below 1/8 for a positive amount).
    Below 2: nearest 1/4. Below 10: nearest 1/2. Otherwise whole numbers.
    Every threshold is a multiple of all coarser steps, so the rounding is
    monotonic and round_for_display(round_for_display(x)) == round_for_display(x).
    """
    if amount is None:
        return None
    if amount <= 0:
        return 0.0
    if amount < 0.25:
        return max(0.125, _round_to(amount, 0.125))
    if amount < 2:
        return _round_to(amount, 0.25)
    if amount < 10:
        return _round_to(amount, 0.5)
    return float(_round_to(amount, 1))


def format_quantity(amount: float | None, unit: str = "") -> str:
    """Render e.g. ``1 1/2 cup``; amount-less lines render as an empty string."""
    if amount is None:
        return ""
    rounded = round_for_display(amount)
    frac = Fraction(rounded).limit_denominator(8)
    whole, rest = divmod(frac.numerator, frac.denominator)
    if rest == 0:
        text = str(whole)
    elif whole == 0:
        text = f"{rest}/{frac.denominator}"
    else:
        text = f"{whole} {rest}/{frac.denominator}"
    return f"{text} {unit}".strip()
