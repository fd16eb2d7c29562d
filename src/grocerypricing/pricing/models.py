"""Domain records for ingredient pricing."""

from dataclasses import asdict, dataclass, field
from typing import Any

from grocerypricing.logging_config import get_logger
from grocerypricing.normalize.units import normalize_price, parse_quantity_string

logger = get_logger(__name__)

# Upstream records may use camelCase or snake_case keys
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "ingredient": ("ingredient", "name"),
    "store_name": ("storeName", "store_name", "store"),
    "product_name": ("productName", "product_name", "product"),
    "package_size": ("packageSize", "package_size", "size"),
    "package_price": ("packagePrice", "package_price", "price"),
    "unit_price": ("unitPrice", "unit_price"),
    "portion_cost": ("portionCost", "portion_cost"),
    "store_type": ("storeType", "store_type"),
    "store_address": ("storeAddress", "store_address", "address"),
    "source_url": ("sourceUrl", "source_url", "url"),
}


@dataclass(frozen=True)
class IngredientRequest:
    """Canonical ingredient request used everywhere downstream."""

    name: str
    amount: float = 1.0
    unit: str = "each"


@dataclass
class SanitizedPriceOption:
    """Validated price record for one ingredient at one store."""

    package_price: float = 0.0
    portion_cost: float = 0.0
    ingredient: str | None = None
    store_name: str | None = None
    product_name: str | None = None
    package_size: str | None = None
    unit_price: float | str | None = None
    store_type: str | None = None
    store_address: str | None = None
    source_url: str | None = None


@dataclass
class IngredientAlternative:
    """Substitute ingredient suggestion."""

    name: str
    price: float
    store_name: str
    notes: str | None = None


@dataclass
class StoreOption:
    """A store offering an ingredient."""

    store_name: str
    store_address: str
    store_type: str
    price: float


@dataclass
class PricingResult:
    """Priced outcome for a single requested ingredient."""

    id: int
    original: str
    matched: str
    estimated_cost: float
    portion_cost: float
    package_price: float
    confidence: float
    needs_review: bool
    packages: int = 1
    source: str = "perplexity"  # "perplexity", "cache", "stale", "estimated", "unavailable"
    package_size: str | None = None
    store_name: str | None = None
    store_type: str | None = None
    store_address: str | None = None
    source_url: str | None = None
    price_label: str | None = None
    best_price_summary: str | None = None
    store_options: list[StoreOption] | None = None
    alternatives: list[IngredientAlternative] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return asdict(self)


@dataclass
class PricingOutcome:
    """Results for a whole request plus where they came from."""

    results: list[PricingResult] = field(default_factory=list)
    source: str = "perplexity"  # "perplexity", "cache", "mixed", "stale", "estimated"
    options: list[SanitizedPriceOption] = field(default_factory=list)

    @property
    def total_estimated(self) -> float:
        return round(sum(r.estimated_cost for r in self.results), 2)


# =============================================================================
# Boundary normalization
# =============================================================================


def normalize_ingredient(raw: Any) -> IngredientRequest:
    """
    Convert any accepted ingredient shape into an IngredientRequest.

    Accepts a plain string, or a mapping using ``name``/``item`` for the name
    and ``amount``/``quantity`` for the amount. Numeric strings such as
    ``"1 1/2"`` are parsed; anything unparseable becomes 1.
    """
    if isinstance(raw, IngredientRequest):
        return raw

    if isinstance(raw, str):
        return IngredientRequest(name=raw.strip())

    if not isinstance(raw, dict):
        raise TypeError(f"Unsupported ingredient shape: {type(raw).__name__}")

    name = str(raw.get("name") or raw.get("item") or "").strip()
    if not name:
        logger.warning(f"Empty ingredient name in {raw!r}")

    qty = raw.get("amount")
    if qty is None:
        qty = raw.get("quantity")

    amount = _coerce_amount(qty)
    unit = raw.get("unit")
    unit = str(unit).strip() if unit else "each"

    return IngredientRequest(name=name, amount=amount, unit=unit)


def _coerce_amount(qty: Any) -> float:
    if qty is None or isinstance(qty, bool):
        return 1.0
    if isinstance(qty, (int, float)):
        return float(qty) if qty > 0 else 1.0
    if isinstance(qty, str):
        value = parse_quantity_string(qty)
        return value if value > 0 else 1.0
    return 1.0


def sanitize_text(value: Any) -> str | None:
    """Trim whitespace and wrapping quotes; empty text becomes None."""
    if value is None:
        return None
    text = str(value).strip()
    text = text.strip("\"'").strip()
    return text or None


def _pick(raw: dict[str, Any], name: str) -> Any:
    for key in _FIELD_ALIASES[name]:
        if raw.get(key) is not None:
            return raw[key]
    return None


def sanitize_option(raw: dict[str, Any]) -> SanitizedPriceOption:
    """
    Convert an untyped upstream record into a SanitizedPriceOption.

    Prices given as strings are parsed; negative or unparseable package prices
    become 0, and portion costs that are not finite non-negative numbers
    become 0. Store validation is applied separately.
    """
    package_price = normalize_price(_pick(raw, "package_price"))
    if package_price is None or package_price < 0:
        package_price = 0.0

    portion_cost = normalize_price(_pick(raw, "portion_cost"))
    if portion_cost is None or portion_cost < 0:
        portion_cost = 0.0

    unit_price_raw = _pick(raw, "unit_price")
    if isinstance(unit_price_raw, str):
        unit_price: float | str | None = sanitize_text(unit_price_raw)
    else:
        unit_price = normalize_price(unit_price_raw)

    return SanitizedPriceOption(
        package_price=package_price,
        portion_cost=portion_cost,
        ingredient=sanitize_text(_pick(raw, "ingredient")),
        store_name=sanitize_text(_pick(raw, "store_name")),
        product_name=sanitize_text(_pick(raw, "product_name")),
        package_size=sanitize_text(_pick(raw, "package_size")),
        unit_price=unit_price,
        store_type=sanitize_text(_pick(raw, "store_type")),
        store_address=sanitize_text(_pick(raw, "store_address")),
        source_url=sanitize_text(_pick(raw, "source_url")),
    )
