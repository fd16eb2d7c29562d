"""Unit normalization, conversion and price-text parsing utilities.

Everything in this module is a pure function: unknown or unparseable input
returns ``None`` so callers can fall through to their next strategy.
"""

import math
import re
from dataclasses import dataclass

# =============================================================================
# Unit Conversion Tables
# =============================================================================

# Volume conversions (base unit: ml)
VOLUME_UNITS: dict[str, float] = {
    # Metric
    "ml": 1.0,
    "milliliter": 1.0,
    "milliliters": 1.0,
    "millilitre": 1.0,
    "millilitres": 1.0,
    "l": 1000.0,
    "liter": 1000.0,
    "liters": 1000.0,
    "litre": 1000.0,
    "litres": 1000.0,
    "dl": 100.0,
    "cl": 10.0,
    # US customary
    "cup": 236.588,
    "cups": 236.588,
    "tbsp": 14.787,
    "tablespoon": 14.787,
    "tablespoons": 14.787,
    "tbs": 14.787,
    "tsp": 4.929,
    "teaspoon": 4.929,
    "teaspoons": 4.929,
    "fl oz": 29.574,
    "fl. oz": 29.574,
    "fl_oz": 29.574,
    "floz": 29.574,
    "fluid ounce": 29.574,
    "fluid ounces": 29.574,
    "pint": 473.176,
    "pints": 473.176,
    "pt": 473.176,
    "quart": 946.353,
    "quarts": 946.353,
    "qt": 946.353,
    "gallon": 3785.41,
    "gallons": 3785.41,
    "gal": 3785.41,
}

# Weight conversions (base unit: g)
WEIGHT_UNITS: dict[str, float] = {
    # Metric
    "g": 1.0,
    "gram": 1.0,
    "grams": 1.0,
    "kg": 1000.0,
    "kilogram": 1000.0,
    "kilograms": 1000.0,
    "mg": 0.001,
    "milligram": 0.001,
    "milligrams": 0.001,
    # Imperial
    "oz": 28.3495,
    "ounce": 28.3495,
    "ounces": 28.3495,
    "lb": 453.592,
    "lbs": 453.592,
    "pound": 453.592,
    "pounds": 453.592,
}

# Countable units (base unit: each)
COUNT_UNITS: dict[str, float] = {
    "each": 1.0,
    "ea": 1.0,
    "unit": 1.0,
    "units": 1.0,
    "ct": 1.0,
    "count": 1.0,
    "item": 1.0,
    "items": 1.0,
    "piece": 1.0,
    "pieces": 1.0,
    "pc": 1.0,
    "pcs": 1.0,
    "whole": 1.0,
    "small": 1.0,
    "medium": 1.0,
    "large": 1.0,
    "slice": 1.0,
    "slices": 1.0,
    "clove": 1.0,
    "cloves": 1.0,
    "bulb": 1.0,
    "bulbs": 1.0,
    "head": 1.0,
    "heads": 1.0,
    "bunch": 1.0,
    "bunches": 1.0,
    "sprig": 1.0,
    "sprigs": 1.0,
    "can": 1.0,
    "cans": 1.0,
    "jar": 1.0,
    "jars": 1.0,
    "package": 1.0,
    "packages": 1.0,
    "pkg": 1.0,
    "pack": 1.0,
    "packs": 1.0,
    "bottle": 1.0,
    "bottles": 1.0,
    "bag": 1.0,
    "bags": 1.0,
    "stick": 1.0,
    "sticks": 1.0,
    "fillet": 1.0,
    "fillets": 1.0,
    "breast": 1.0,
    "breasts": 1.0,
    "dozen": 12.0,
    "doz": 12.0,
}

# Units a recipe uses when it means "one of the thing"
WHOLE_ITEM_UNITS = {"whole", "piece", "pieces", "each", "", "item", "items"}

# Approximate weight of one countable item (first match wins)
GRAMS_PER_EACH: list[tuple[str, float]] = [
    ("onion", 150.0),
    ("garlic", 3.0),  # per clove
    ("lemon", 90.0),
    ("lime", 70.0),
    ("tomato", 120.0),
    ("bell pepper", 120.0),
    ("pepper", 120.0),
    ("potato", 170.0),
    ("egg", 50.0),
]

# Pack-size unit spellings -> table key; longest alternatives first
_PACK_SIZE_PATTERN = re.compile(
    r"(\d+(?:\.\d+)?|\.\d+)\s*"
    r"(fl\.?\s*oz|floz|fluid\s+ounces?|gallons?|gal|ounces?|oz|pounds?|lbs?|"
    r"kilograms?|kg|grams?|g|milliliters?|millilitres?|ml|liters?|litres?|l|"
    r"count|ct|each|ea|pieces?|pcs?|whole|items?|pack|pk|dozen|doz)\b",
    re.IGNORECASE,
)

_PACK_UNIT_CANONICAL: dict[str, str] = {
    "floz": "fl oz",
    "fluid ounce": "fl oz",
    "fluid ounces": "fl oz",
    "gallon": "gal",
    "gallons": "gal",
    "ounce": "oz",
    "ounces": "oz",
    "pound": "lb",
    "pounds": "lb",
    "lbs": "lb",
    "kilogram": "kg",
    "kilograms": "kg",
    "gram": "g",
    "grams": "g",
    "milliliter": "ml",
    "milliliters": "ml",
    "millilitre": "ml",
    "millilitres": "ml",
    "liter": "l",
    "liters": "l",
    "litre": "l",
    "litres": "l",
}

_UNIT_PRICE_PATTERN = re.compile(
    r"([\d.,]+)\s*/?\s*per\s*([a-z\s]+)|\$\s*([\d.,]+)\s*/\s*([a-z\s]+)",
    re.IGNORECASE,
)
_UNIT_PRICE_SIMPLE_PATTERN = re.compile(r"\$?([\d.,]+)\s*/\s*([a-z\s]+)", re.IGNORECASE)
_PRICE_NUMBER_PATTERN = re.compile(r"[-+]?[0-9]*\.?[0-9]+")


@dataclass(frozen=True)
class PackSize:
    """Parsed package size, e.g. ``16 oz`` or ``12 each``."""

    qty: float
    unit: str
    unit_type: str  # "volume", "weight", "count"


@dataclass(frozen=True)
class UnitPriceLabel:
    """Parsed shelf label such as ``$7.99/lb``."""

    price: float
    unit: str


# =============================================================================
# Unit Identification and Conversion
# =============================================================================


def _unit_key(unit: str | None) -> str:
    key = (unit or "").lower().strip()
    key = re.sub(r"\s+", " ", key)
    return key.rstrip(".")


def identify_unit_type(unit: str | None) -> tuple[str, float]:
    """
    Identify the unit type and conversion factor to its base unit.

    Returns:
        Tuple of (unit_type, conversion_factor). ``unit_type`` is one of
        "volume" (ml), "weight" (g), "count" (each) or "unknown".
    """
    key = _unit_key(unit)

    if key in VOLUME_UNITS:
        return "volume", VOLUME_UNITS[key]

    if key in WEIGHT_UNITS:
        return "weight", WEIGHT_UNITS[key]

    if key in COUNT_UNITS:
        return "count", COUNT_UNITS[key]

    return "unknown", 1.0


def is_countable(unit: str | None) -> bool:
    """Check if a unit counts items rather than measuring them."""
    return identify_unit_type(unit)[0] == "count"


def convert(amount: float, from_unit: str | None, to_unit: str | None) -> float | None:
    """
    Convert an amount between two units.

    Mass and volume convert into each other using water density (1 g/ml).
    Countable units only convert to other countable units.

    Returns:
        The converted amount, or None if either unit is unknown or the
        conversion crosses the count/measure boundary.
    """
    from_type, from_factor = identify_unit_type(from_unit)
    to_type, to_factor = identify_unit_type(to_unit)

    if from_type == "unknown" or to_type == "unknown":
        return None

    if from_type == to_type or {from_type, to_type} == {"volume", "weight"}:
        return amount * from_factor / to_factor

    return None


def to_grams(amount: float, unit: str | None) -> float | None:
    """Convert a mass or volume amount to grams."""
    return convert(amount, unit, "g")


def grams_per_each(ingredient_name: str | None) -> float | None:
    """Guess the weight of one countable item, e.g. one onion ~ 150 g."""
    name = (ingredient_name or "").lower()
    for keyword, grams in GRAMS_PER_EACH:
        if keyword in name:
            return grams
    return None


def convert_needed_to_unit(
    needed_qty: float,
    needed_unit: str | None,
    target_unit: str,
    ingredient_name: str | None = None,
) -> float | None:
    """
    Express a recipe quantity in the unit a price is quoted in.

    Handles "each -> weight" through the grams-per-each table, so
    ``convert_needed_to_unit(2, "each", "lb", "onion")`` is roughly 0.66.
    Count-style targets (each, ct, bulb, clove, ...) round up to whole pieces.
    """
    target = _unit_key(target_unit)
    needed_type, _ = identify_unit_type(needed_unit)
    if needed_type == "unknown":
        return None

    if re.search(r"\b(lb|lbs|pound|pounds)\b", target):
        canonical = "lb"
    elif re.search(r"\b(fl\.?\s*oz|floz|fluid ounces?)\b", target):
        canonical = "fl oz"
    elif re.search(r"\b(oz|ounces?)\b", target):
        canonical = "oz"
    elif re.search(r"\b(kg|kilograms?)\b", target):
        canonical = "kg"
    elif re.search(r"\b(g|grams?)\b", target):
        canonical = "g"
    elif re.search(r"\b(ml|milliliters?)\b", target):
        canonical = "ml"
    elif re.search(r"\b(l|liters?|litres?)\b", target):
        canonical = "l"
    elif re.search(
        r"\b(each|ea|ct|count|piece|pieces|item|bulb|bulbs|head|onion|clove|cloves|lemon|lime)\b",
        target,
    ):
        return float(max(1, math.ceil(needed_qty)))
    else:
        return None

    if needed_type == "count" and canonical in WEIGHT_UNITS:
        grams = grams_per_each(ingredient_name)
        if grams is None:
            return None
        _, count_factor = identify_unit_type(needed_unit)
        return needed_qty * count_factor * grams / WEIGHT_UNITS[canonical]

    return convert(needed_qty, needed_unit, canonical)


# =============================================================================
# Parsing Functions
# =============================================================================


def parse_quantity_string(quantity_str: str) -> float:
    """
    Parse a quantity string into a float.

    Handles formats like:
    - "2"
    - "1.5"
    - "1/2"
    - "1 1/2" (one and a half)
    - "2-3" (range, returns average)
    """
    if not quantity_str:
        return 1.0

    quantity_str = quantity_str.strip().lower()

    if not quantity_str or quantity_str in ("to taste", "pinch", "dash", "some"):
        return 1.0

    range_match = re.match(r"(\d+(?:\.\d+)?)\s*-\s*(\d+(?:\.\d+)?)", quantity_str)
    if range_match:
        low = float(range_match.group(1))
        high = float(range_match.group(2))
        return (low + high) / 2

    mixed_match = re.match(r"(\d+)\s+(\d+)/(\d+)", quantity_str)
    if mixed_match:
        whole = int(mixed_match.group(1))
        num = int(mixed_match.group(2))
        denom = int(mixed_match.group(3))
        return whole + (num / denom) if denom else float(whole)

    frac_match = re.match(r"(\d+)/(\d+)", quantity_str)
    if frac_match:
        num = int(frac_match.group(1))
        denom = int(frac_match.group(2))
        return num / denom if denom else 1.0

    num_match = re.match(r"(\d+(?:\.\d+)?)", quantity_str)
    if num_match:
        return float(num_match.group(1))

    return 1.0


def parse_pack_size(size: str | None) -> PackSize | None:
    """
    Parse a package size string.

    Examples:
        "16 oz jar" -> PackSize(16, "oz", "weight")
        "1.5 lb" -> PackSize(1.5, "lb", "weight")
        "12 count" -> PackSize(12, "each", "count")
        "dozen" -> PackSize(12, "each", "count")
    """
    if not size:
        return None

    text = str(size).lower()
    match = _PACK_SIZE_PATTERN.search(text)
    if not match:
        if re.search(r"\bdozen\b", text):
            return PackSize(qty=12.0, unit="each", unit_type="count")
        return None

    qty = float(match.group(1))
    raw_unit = re.sub(r"\s+", " ", match.group(2).lower())
    if raw_unit.startswith("fl"):
        raw_unit = "fl oz"
    unit = _PACK_UNIT_CANONICAL.get(raw_unit, raw_unit)

    unit_type, factor = identify_unit_type(unit)
    if unit_type == "unknown":
        return None

    if unit_type == "count":
        return PackSize(qty=max(1.0, qty * factor), unit="each", unit_type="count")

    if qty <= 0:
        return None

    return PackSize(qty=qty, unit=unit, unit_type=unit_type)


def parse_unit_price_label(label: str | float | int | None) -> UnitPriceLabel | None:
    """
    Parse a shelf unit-price label into a price and a unit.

    Examples:
        "$7.99/lb" -> UnitPriceLabel(7.99, "lb")
        "0.59 per bulb" -> UnitPriceLabel(0.59, "bulb")
        0.25 -> UnitPriceLabel(0.25, "each")
    """
    if isinstance(label, bool):
        return None
    if isinstance(label, (int, float)):
        if not math.isfinite(label):
            return None
        return UnitPriceLabel(price=float(label), unit="each")
    if not label:
        return None

    text = str(label).lower()

    match = _UNIT_PRICE_PATTERN.search(text)
    if match:
        raw_value = match.group(1) or match.group(3) or ""
        unit = (match.group(2) or match.group(4) or "").strip()
        value = _to_float(raw_value)
        if value is not None and unit:
            return UnitPriceLabel(price=value, unit=unit)

    match = _UNIT_PRICE_SIMPLE_PATTERN.search(text)
    if match:
        value = _to_float(match.group(1))
        unit = match.group(2).strip()
        if value is not None and unit:
            return UnitPriceLabel(price=value, unit=unit)

    return None


def normalize_price(value: object) -> float | None:
    """
    Coerce an upstream price into a float.

    Accepts numbers and strings such as "$4.99", "about 3.49 USD" or
    "$1,299.00". Returns None for anything without a finite number.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        match = _PRICE_NUMBER_PATTERN.search(value.replace(",", ""))
        if match:
            number = float(match.group(0))
            return number if math.isfinite(number) else None
    return None


def _to_float(raw: str) -> float | None:
    try:
        value = float(raw.replace(",", ""))
    except ValueError:
        return None
    return value if math.isfinite(value) else None
