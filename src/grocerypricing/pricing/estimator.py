"""Heuristic ingredient cost estimates used when the price source times out."""

import re

from grocerypricing.normalize.units import identify_unit_type, is_countable, to_grams
from grocerypricing.pricing.models import IngredientRequest

# Dollars per kilogram
PRICE_PER_KG: dict[str, float] = {
    "onion": 4.4,
    "red onion": 5.5,
    "green onion": 8.8,
    "carrot": 3.8,
    "tomato": 6.6,
    "cherry tomatoes": 11.0,
    "celery": 5.5,
    "bell pepper": 8.8,
    "pepper": 8.8,
    "jalapeño": 11.0,
    "potato": 3.3,
    "sweet potato": 5.5,
    "garlic": 15.4,
    "ginger": 13.2,
    "spinach": 11.0,
    "kale": 8.8,
    "lettuce": 6.6,
    "basil": 44.0,
    "parsley": 22.0,
    "cilantro": 22.0,
    "chicken": 15.4,
    "whole chicken": 8.8,
    "chicken breast": 19.8,
    "chicken thighs": 13.2,
    "turkey": 17.6,
    "ground turkey": 15.4,
    "beef": 28.6,
    "ground beef": 17.6,
    "pork": 13.2,
    "bacon": 22.0,
    "sausage": 15.4,
    "salmon": 44.0,
    "shrimp": 33.0,
    "cod": 26.4,
    "rice": 4.4,
    "flour": 2.2,
    "sugar": 2.6,
    "pasta": 4.4,
    "butter": 17.6,
    "cheese": 22.0,
    "tofu": 8.8,
    "miso": 22.0,
}

# Dollars per piece
PRICE_PER_EACH: dict[str, float] = {
    "egg": 0.5,
    "lemon": 1.2,
    "lime": 0.8,
    "orange": 1.0,
    "apple": 1.0,
    "banana": 0.3,
    "avocado": 2.0,
    "onion": 0.8,
    "red onion": 1.0,
    "garlic": 0.5,
    "bell pepper": 1.5,
    "potato": 0.7,
    "tomato": 0.9,
}

# Dollars per liter
PRICE_PER_LITER: dict[str, float] = {
    "milk": 1.0,
    "heavy cream": 8.0,
    "coconut milk": 3.5,
    "yogurt": 4.0,
    "oil": 6.0,
    "olive oil": 12.0,
    "sesame oil": 15.0,
    "soy sauce": 6.0,
    "vinegar": 3.0,
    "rice vinegar": 5.0,
    "fish sauce": 8.0,
    "stock": 3.0,
    "broth": 3.0,
}

# Fallback rate for weighable goods without a table entry
DEFAULT_PRICE_PER_KG = 8.0

_EACH_UNITS = re.compile(r"^(each|small|medium|large|clove|cloves|whole|piece|pieces|item|items|)$")
_ZIP = re.compile(r"\b(\d{5})\b")

# (low, high, multiplier) over 5-digit ZIP codes
ZIP_COST_MULTIPLIERS: list[tuple[int, int, float]] = [
    (90000, 96199, 1.4),  # California
    (10000, 14999, 1.4),  # New York
    (98000, 99499, 1.4),  # Washington
    (96700, 96999, 1.4),  # Hawaii
    (80000, 81999, 1.1),  # Colorado
    (78000, 79999, 1.1),  # Texas (Austin)
    (97000, 97999, 1.1),  # Oregon
    (30000, 31999, 1.1),  # Georgia (Atlanta)
    (19000, 19999, 1.1),  # Pennsylvania (Philadelphia)
    (35000, 36999, 0.8),  # Alabama
    (38000, 39999, 0.8),  # Mississippi
    (72000, 72999, 0.8),  # Arkansas
    (73000, 74999, 0.8),  # Oklahoma
]


def _match_key(name: str, table: dict[str, float]) -> str | None:
    """Exact match first, then the longest table key contained in the name."""
    lowered = name.lower().strip()
    if lowered in table:
        return lowered
    candidates = [key for key in table if re.search(rf"\b{re.escape(key)}", lowered)]
    return max(candidates, key=len) if candidates else None


def location_multiplier(location: str | None) -> float:
    """Regional price multiplier for a ZIP code; 1.0 when unknown."""
    match = _ZIP.search(location or "")
    if not match:
        return 1.0
    zip_code = int(match.group(1))
    for low, high, multiplier in ZIP_COST_MULTIPLIERS:
        if low <= zip_code <= high:
            return multiplier
    return 1.0


def estimate_ingredient_cost(ingredient: IngredientRequest, location: str | None = None) -> float:
    """
    Estimate what the needed quantity of an ingredient costs.

    Uses per-kg, per-liter and per-piece tables, then generic rates. Always
    returns a positive number rounded to cents.
    """
    unit = (ingredient.unit or "").lower().strip()
    amount = ingredient.amount if ingredient.amount > 0 else 1.0
    unit_type, _ = identify_unit_type(unit)

    cost: float | None = None

    if unit_type == "volume":
        key = _match_key(ingredient.name, PRICE_PER_LITER)
        if key:
            ml = to_grams(amount, unit) or 0.0
            cost = ml / 1000 * PRICE_PER_LITER[key]

    if cost is None and unit_type in ("weight", "volume"):
        grams = to_grams(amount, unit) or 0.0
        key = _match_key(ingredient.name, PRICE_PER_KG)
        rate = PRICE_PER_KG[key] if key else DEFAULT_PRICE_PER_KG
        cost = grams / 1000 * rate

    if cost is None and (_EACH_UNITS.match(unit) or is_countable(unit)):
        key = _match_key(ingredient.name, PRICE_PER_EACH)
        if key:
            cost = PRICE_PER_EACH[key] * max(1, round(amount))

    if cost is None:
        if amount <= 1:
            cost = amount * 2.5
        elif amount <= 3:
            cost = amount * 1.8
        elif amount <= 10:
            cost = amount * 1.2
        else:
            cost = amount * 0.8

    cost *= location_multiplier(location)
    return max(0.01, round(cost, 2))
