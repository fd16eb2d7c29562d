"""Portion cost derivation from package pricing."""

import math
import re

from grocerypricing.logging_config import get_logger
from grocerypricing.normalize.units import (
    WHOLE_ITEM_UNITS,
    PackSize,
    convert_needed_to_unit,
    grams_per_each,
    identify_unit_type,
    parse_pack_size,
    parse_unit_price_label,
    to_grams,
)
from grocerypricing.pricing.models import SanitizedPriceOption

logger = get_logger(__name__)

# Share of the package charged when nothing structured is known
LAST_RESORT_PORTION_FRACTION = 0.25

# Upstream portion costs at or above this share of the package are treated
# as an echo of the package price for divisible goods
SUSPICIOUS_PORTION_SHARE = 0.9

WHOLE_ITEM_KEYWORDS = ("whole", "chicken", "turkey", "fish")
_SMALL_PRODUCE = re.compile(r"\b(onion|garlic|egg|lemon|lime|potato)s?\b")


def is_whole_item(ingredient_name: str, needed_qty: float, needed_unit: str | None) -> bool:
    """
    Check whether an ingredient is bought and used as a whole item.

    This is a keyword heuristic and will miss whole items outside its list.
    """
    name = (ingredient_name or "").lower()
    if any(keyword in name for keyword in WHOLE_ITEM_KEYWORDS):
        return True

    unit = (needed_unit or "").lower().strip()
    if needed_qty <= 1:
        if unit == "whole":
            return True
        if unit == "each" and _SMALL_PRODUCE.search(name):
            return True

    return False


class PortionCostResolver:
    """
    Resolve the cost of the quantity a recipe needs from a price option.

    Strategies, first satisfied wins:
    1. Trust the upstream portion cost when it is plausible.
    2. Package-aware ratio of needed quantity to package size.
    3. Shelf unit-price label (e.g. "$7.99/lb") times needed quantity.
    4. Linear per-gram (or per-piece) pricing of the package.
    5. A fixed fraction of the package price.
    """

    def __init__(self, last_resort_fraction: float = LAST_RESORT_PORTION_FRACTION):
        self.last_resort_fraction = last_resort_fraction

    def resolve(
        self,
        option: SanitizedPriceOption,
        needed_qty: float,
        needed_unit: str | None,
        ingredient_name: str,
    ) -> float:
        """
        Compute the portion cost in dollars.

        Returns:
            A finite value in ``[0, package_price]``. Never raises.
        """
        package_price = option.package_price if _finite(option.package_price) else 0.0
        package_price = max(0.0, package_price)
        qty = needed_qty if _finite(needed_qty) and needed_qty > 0 else 1.0

        strategies = (
            ("upstream", self._trust_upstream),
            ("package", self._package_ratio),
            ("unit-price", self._unit_price_label),
            ("linear", self._linear_fallback),
        )
        for label, strategy in strategies:
            cost = strategy(option, package_price, qty, needed_unit, ingredient_name)
            if cost is not None and _finite(cost) and cost > 0:
                logger.debug(f"Portion cost for {ingredient_name} via {label}: ${cost:.2f}")
                return _clamp(cost, package_price)

        cost = package_price * self.last_resort_fraction
        if cost > 0:
            logger.warning(
                f"Low-confidence portion estimate for {ingredient_name}: "
                f"{self.last_resort_fraction:.0%} of ${package_price:.2f}"
            )
        return _clamp(cost, package_price)

    # =========================================================================
    # Strategies
    # =========================================================================

    def _trust_upstream(
        self,
        option: SanitizedPriceOption,
        package_price: float,
        qty: float,
        unit: str | None,
        name: str,
    ) -> float | None:
        portion = option.portion_cost
        if not _finite(portion) or portion <= 0 or portion > package_price:
            return None

        if is_whole_item(name, qty, unit) or portion < package_price * SUSPICIOUS_PORTION_SHARE:
            return portion

        logger.info(
            f"Upstream portion cost for {name} is {portion / package_price:.0%} "
            "of the package, recalculating"
        )
        return None

    def _package_ratio(
        self,
        option: SanitizedPriceOption,
        package_price: float,
        qty: float,
        unit: str | None,
        name: str,
    ) -> float | None:
        if package_price <= 0 or not option.package_size:
            return None

        pack = parse_pack_size(option.package_size)
        if pack is None:
            return None

        needed = self._needed_in_pack_unit(pack, qty, unit, name)
        if needed is None or needed <= 0:
            return None

        ratio = min(needed / pack.qty, 1.0)
        return round(package_price * ratio, 2)

    def _needed_in_pack_unit(
        self, pack: PackSize, qty: float, unit: str | None, name: str
    ) -> float | None:
        unit_key = (unit or "").lower().strip()
        needed_type, count_factor = identify_unit_type(unit_key)
        grams_each = grams_per_each(name)

        if pack.unit_type == "count":
            if unit_key in WHOLE_ITEM_UNITS or needed_type == "count":
                return qty * count_factor
            grams = to_grams(qty, unit_key)
            if grams is not None and grams_each:
                return grams / grams_each
            return None

        if unit_key in WHOLE_ITEM_UNITS and not grams_each:
            # Pieces of something we cannot weigh; count against the pack quantity
            return qty

        if unit_key in WHOLE_ITEM_UNITS or needed_type == "count":
            return convert_needed_to_unit(qty, unit_key or "each", pack.unit, name)

        return convert_needed_to_unit(qty, unit_key, pack.unit, name)

    def _unit_price_label(
        self,
        option: SanitizedPriceOption,
        package_price: float,
        qty: float,
        unit: str | None,
        name: str,
    ) -> float | None:
        label = parse_unit_price_label(option.unit_price)
        if label is None:
            return None

        needed = convert_needed_to_unit(qty, unit or "each", label.unit, name)
        if needed is None:
            return None
        return label.price * needed

    def _linear_fallback(
        self,
        option: SanitizedPriceOption,
        package_price: float,
        qty: float,
        unit: str | None,
        name: str,
    ) -> float | None:
        if package_price <= 0:
            return None

        pack = parse_pack_size(option.package_size)
        if pack is None:
            return None

        needed_grams = to_grams(qty, unit)
        pack_grams = to_grams(pack.qty, pack.unit)
        if needed_grams is not None and pack_grams:
            return package_price / pack_grams * needed_grams

        if pack.unit_type == "count":
            pieces = max(1, math.ceil(qty))
            return package_price / max(1.0, pack.qty) * pieces

        return None


def _finite(value: float | None) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _clamp(cost: float, package_price: float) -> float:
    if not _finite(cost) or cost < 0:
        return 0.0
    return round(min(cost, package_price), 2)
