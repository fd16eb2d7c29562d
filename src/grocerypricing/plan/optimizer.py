"""One-store-first shopping optimization.

Assigns every priced ingredient to a store, preferring the shopper's primary
store and sending only specialty items elsewhere.
"""

import re
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from grocerypricing.logging_config import get_logger
from grocerypricing.pricing.models import IngredientRequest, SanitizedPriceOption, normalize_ingredient

logger = get_logger(__name__)


@dataclass
class StoreInfo:
    """A store the shopper could visit."""

    name: str
    type: str  # "mainstream", "ethnic", "specialty"
    address: str
    estimated_shopping_time: int
    specialties: list[str] = field(default_factory=list)


@dataclass
class StoreAssignment:
    """Where one ingredient will be bought."""

    ingredient: str
    assigned_store: str
    store_type: str
    store_address: str
    package_price: float
    portion_cost: float
    product_name: str
    package_size: str
    confidence: str  # "high", "medium", "low"
    alternatives: list["StoreAssignment"] = field(default_factory=list)


@dataclass
class OptimizedShoppingPlan:
    """Store assignments plus aggregate trip metrics."""

    primary_store: StoreInfo
    secondary_stores: list[StoreInfo]
    assignments: dict[str, StoreAssignment]
    efficiency: int
    total_stores: int
    estimated_time_minutes: int
    total_cost: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ShoppingStrategy:
    """Summary of a shopping approach."""

    strategy: str
    description: str
    estimated_time: int
    estimated_stores: int
    efficiency: int


@dataclass(frozen=True)
class CityStores:
    """Common grocery chains for a city."""

    city: str
    state: str
    zip_code: str
    common_stores: tuple[str, ...]


CITY_STORES: list[CityStores] = [
    CityStores("Atlanta", "GA", "30309", ("Kroger", "Publix", "Whole Foods Market", "Walmart Supercenter", "Target", "Aldi", "Trader Joe's", "H Mart", "Sprouts Farmers Market")),
    CityStores("Milwaukee", "WI", "53202", ("Pick 'n Save", "Metro Market", "Woodman's Markets", "Walmart Supercenter", "Target", "Aldi", "Festival Foods", "Fresh Thyme Market")),
    CityStores("Chicago", "IL", "60601", ("Jewel-Osco", "Mariano's", "Whole Foods Market", "Trader Joe's", "Aldi", "Pete's Fresh Market", "Target", "Walmart")),
    CityStores("New York", "NY", "10001", ("Whole Foods Market", "Trader Joe's", "Key Food", "C-Town Supermarkets", "Fairway Market", "Gristedes", "H Mart", "Morton Williams")),
    CityStores("Los Angeles", "CA", "90001", ("Ralphs", "Vons", "Trader Joe's", "Whole Foods Market", "Sprouts Farmers Market", "H Mart", "Northgate Market", "Smart & Final")),
    CityStores("Houston", "TX", "77001", ("H-E-B", "Kroger", "Randalls", "Whole Foods Market", "Fiesta Mart", "H Mart", "Walmart Supercenter", "Target")),
    CityStores("Phoenix", "AZ", "85001", ("Fry's Food Stores", "Safeway", "Walmart Supercenter", "Target", "Whole Foods Market", "Sprouts Farmers Market", "Bashas'")),
    CityStores("Philadelphia", "PA", "19101", ("ACME Markets", "ShopRite", "Whole Foods Market", "Trader Joe's", "Fresh Grocer", "Giant Food Stores", "Walmart")),
    CityStores("San Antonio", "TX", "78201", ("H-E-B", "Walmart Supercenter", "Target", "Market Street", "Whole Foods Market", "Fiesta Mart")),
    CityStores("San Diego", "CA", "92101", ("Vons", "Ralphs", "Whole Foods Market", "Trader Joe's", "Sprouts Farmers Market", "H Mart", "Smart & Final")),
    CityStores("Dallas", "TX", "75201", ("Kroger", "Tom Thumb", "Walmart Supercenter", "Target", "Whole Foods Market", "H-E-B", "Market Street")),
    CityStores("San Jose", "CA", "95101", ("Safeway", "Lucky Supermarkets", "Whole Foods Market", "Trader Joe's", "Target", "Walmart", "99 Ranch Market")),
    CityStores("Austin", "TX", "78701", ("H-E-B", "Whole Foods Market", "Trader Joe's", "Randalls", "Target", "Walmart Supercenter", "Central Market")),
    CityStores("Jacksonville", "FL", "32099", ("Publix", "Winn-Dixie", "Walmart Supercenter", "Target", "Whole Foods Market", "Fresh Market")),
    CityStores("Columbus", "OH", "43085", ("Kroger", "Giant Eagle", "Meijer", "Walmart Supercenter", "Target", "Whole Foods Market", "Aldi")),
    CityStores("San Francisco", "CA", "94102", ("Safeway", "Whole Foods Market", "Trader Joe's", "Rainbow Grocery", "Mollie Stone's Market", "Lucky Supermarkets")),
    CityStores("Charlotte", "NC", "28202", ("Harris Teeter", "Food Lion", "Publix", "Walmart Supercenter", "Target", "Whole Foods Market", "Aldi")),
    CityStores("Indianapolis", "IN", "46201", ("Kroger", "Meijer", "IGA", "Walmart Supercenter", "Target", "Whole Foods Market", "Fresh Thyme Market")),
]

DEFAULT_CITY = CITY_STORES[0]

# Ingredients that usually need an ethnic or specialty store
SPECIALTY_KEYWORDS: dict[str, list[str]] = {
    "asian": ["dashi", "miso", "okonomiyaki", "soy sauce", "rice vinegar", "mirin", "sake", "nori", "wasabi", "gochujang", "kimchi", "fish sauce", "lemongrass"],
    "middle-eastern": ["sumac", "za'atar", "tahini", "harissa", "pomegranate molasses"],
    "south-asian": ["garam masala", "paneer", "ghee", "asafoetida", "curry leaves", "tamarind"],
    "specialty-sauces": ["okonomiyaki sauce", "teriyaki", "hot sauce"],
}

# Name fragments identifying ethnic and international grocers
ETHNIC_STORE_MARKERS = ("asian", "international", "ethnic", "h mart", "99 ranch", "patel brothers", "fiesta")

DEFAULT_SHOPPING_TIME = 20
TRAVEL_MINUTES_PER_EXTRA_STORE = 10
MAX_ALTERNATIVES = 3

_ZIP = re.compile(r"\b(\d{5})\b")


def get_store_type(store_name: str) -> tuple[str, int, list[str]]:
    """Infer (type, shopping minutes, specialties) from a store name."""
    name = store_name.lower()

    if any(marker in name for marker in ETHNIC_STORE_MARKERS):
        return "ethnic", 15, ["asian", "dashi", "miso", "specialty-sauces", "noodles", "international"]
    if "whole foods" in name or "trader joe" in name:
        return "specialty", 20, ["organic", "premium", "prepared", "health"]
    if "aldi" in name:
        return "mainstream", 18, ["budget", "pantry", "basic"]
    if "walmart" in name:
        return "mainstream", 35, ["bulk", "pantry", "general", "budget"]
    if "kroger" in name or "publix" in name:
        return "mainstream", 25, ["general", "pantry", "fresh", "dairy"]
    return "mainstream", 25, ["general", "pantry", "fresh", "dairy"]


def find_city(location: str | None) -> CityStores:
    """Find the city table entry for a ZIP or "City, ST" location; Atlanta if unknown."""
    text = (location or "").strip()

    zip_match = _ZIP.search(text)
    if zip_match:
        zip_code = zip_match.group(1)
        for city in CITY_STORES:
            if city.zip_code == zip_code:
                return city
        for city in CITY_STORES:
            if city.zip_code[:3] == zip_code[:3]:
                return city

    city_name = text.split(",")[0].strip().lower()
    for city in CITY_STORES:
        if city.city.lower() == city_name:
            return city

    return DEFAULT_CITY


def is_specialty_ingredient(ingredient_name: str) -> bool:
    name = ingredient_name.lower()
    return any(keyword in name for keywords in SPECIALTY_KEYWORDS.values() for keyword in keywords)


def calculate_confidence(option: SanitizedPriceOption) -> str:
    """Score how complete a price option is: high, medium or low."""
    score = 0
    if option.package_price and option.package_price > 0:
        score += 3
    if option.product_name and option.product_name != "Unknown":
        score += 2
    if option.store_address:
        score += 2
    if option.package_size:
        score += 1
    if option.source_url:
        score += 1

    if score >= 7:
        return "high"
    if score >= 4:
        return "medium"
    return "low"


def _same_store(a: str | None, b: str | None) -> bool:
    return bool(a) and bool(b) and a.strip().lower() == b.strip().lower()


class ShoppingOptimizer:
    """
    Assigns ingredients to stores, minimizing the number of store visits.

    For each ingredient the preferred store wins if it has a price. Otherwise
    specialty ingredients go to an ethnic store when one has a price, and
    everything else goes to the cheapest package.
    """

    def build_store_database(
        self, location: str, pricing_options: Sequence[SanitizedPriceOption] = ()
    ) -> dict[str, StoreInfo]:
        """Common stores for the location plus every store seen in the options."""
        city = find_city(location)
        stores: dict[str, StoreInfo] = {}

        for name in city.common_stores:
            store_type, minutes, specialties = get_store_type(name)
            stores[name] = StoreInfo(
                name=name,
                type=store_type,
                address=f"{name} - {city.city}, {city.state} {city.zip_code}",
                estimated_shopping_time=minutes,
                specialties=specialties,
            )

        for option in pricing_options:
            if not option.store_name or self._lookup(stores, option.store_name):
                continue
            inferred_type, minutes, specialties = get_store_type(option.store_name)
            stores[option.store_name] = StoreInfo(
                name=option.store_name,
                type=option.store_type or inferred_type,
                address=option.store_address or f"{option.store_name} - {city.city}, {city.state}",
                estimated_shopping_time=minutes,
                specialties=specialties,
            )

        return stores

    @staticmethod
    def _lookup(stores: dict[str, StoreInfo], name: str | None) -> StoreInfo | None:
        if not name:
            return None
        if name in stores:
            return stores[name]
        return next((store for key, store in stores.items() if _same_store(key, name)), None)

    def optimize(
        self,
        ingredients: Sequence[Any],
        preferred_store: str,
        location: str,
        pricing_options: Sequence[SanitizedPriceOption] | None = None,
    ) -> OptimizedShoppingPlan:
        """
        Build a one-store-first shopping plan.

        Args:
            ingredients: Ingredients to buy (any shape accepted by normalize_ingredient).
            preferred_store: The shopper's primary store.
            location: ZIP code or city text.
            pricing_options: Priced store options, each tagged with its ingredient.

        Returns:
            The plan. With no pricing options the plan is empty and zeroed.
        """
        requests: list[IngredientRequest] = [normalize_ingredient(i) for i in ingredients]
        options = list(pricing_options or [])
        stores = self.build_store_database(location, options)
        primary = self._lookup(stores, preferred_store) or next(iter(stores.values()))

        if not options:
            logger.warning("No pricing data supplied, returning an empty shopping plan")
            return OptimizedShoppingPlan(
                primary_store=primary,
                secondary_stores=[],
                assignments={},
                efficiency=0,
                total_stores=0,
                estimated_time_minutes=0,
                total_cost=0.0,
            )

        assignments = self._assign(requests, options, preferred_store, stores)

        at_primary = sum(1 for a in assignments.values() if _same_store(a.assigned_store, preferred_store))
        efficiency = round(100 * at_primary / len(requests)) if requests else 0

        used_stores: list[str] = []
        for assignment in assignments.values():
            if not any(_same_store(assignment.assigned_store, s) for s in used_stores):
                used_stores.append(assignment.assigned_store)

        secondary = [
            store
            for name in used_stores
            if not _same_store(name, preferred_store)
            for store in [self._lookup(stores, name)]
            if store is not None
        ]

        purchased: dict[tuple[str, str], float] = {}
        for assignment in assignments.values():
            key = (assignment.assigned_store.lower(), assignment.product_name.lower())
            purchased.setdefault(key, assignment.package_price)
        total_cost = round(sum(purchased.values()), 2)

        estimated_time = self._shopping_time(used_stores, stores)

        logger.info(
            f"Shopping plan: {preferred_store} at {efficiency}% efficiency, "
            f"{len(used_stores)} stores, ${total_cost:.2f}, {estimated_time} min"
        )

        return OptimizedShoppingPlan(
            primary_store=primary,
            secondary_stores=secondary,
            assignments=assignments,
            efficiency=efficiency,
            total_stores=len(used_stores),
            estimated_time_minutes=estimated_time,
            total_cost=total_cost,
        )

    def _assign(
        self,
        requests: list[IngredientRequest],
        options: list[SanitizedPriceOption],
        preferred_store: str,
        stores: dict[str, StoreInfo],
    ) -> dict[str, StoreAssignment]:
        assignments: dict[str, StoreAssignment] = {}

        for request in requests:
            wanted = request.name.lower()
            candidates = [o for o in options if (o.ingredient or "").lower() == wanted]
            if not candidates:
                logger.warning(f"No pricing found for ingredient: {request.name}")
                continue

            best = next((o for o in candidates if _same_store(o.store_name, preferred_store)), None)

            if best is None and is_specialty_ingredient(request.name):
                best = next(
                    (o for o in candidates if self._store_type(o, stores) == "ethnic"),
                    None,
                )

            if best is None:
                best = min(
                    candidates,
                    key=lambda o: o.package_price if o.package_price > 0 else float("inf"),
                )

            runners_up = [o for o in candidates if not _same_store(o.store_name, best.store_name)]
            assignment = self._to_assignment(request.name, best, stores)
            assignment.alternatives = [
                self._to_assignment(request.name, alt, stores) for alt in runners_up[:MAX_ALTERNATIVES]
            ]
            assignments[request.name] = assignment

        return assignments

    def _store_type(self, option: SanitizedPriceOption, stores: dict[str, StoreInfo]) -> str:
        if option.store_type == "ethnic":
            return "ethnic"
        store = self._lookup(stores, option.store_name)
        if store is not None:
            return store.type
        return option.store_type or "mainstream"

    def _to_assignment(
        self, ingredient: str, option: SanitizedPriceOption, stores: dict[str, StoreInfo]
    ) -> StoreAssignment:
        store = self._lookup(stores, option.store_name)
        return StoreAssignment(
            ingredient=ingredient,
            assigned_store=option.store_name or "Unknown Store",
            store_type=option.store_type or (store.type if store else "mainstream"),
            store_address=option.store_address or (store.address if store else ""),
            package_price=option.package_price or 0.0,
            portion_cost=option.portion_cost or 0.0,
            product_name=option.product_name or ingredient,
            package_size=option.package_size or "",
            confidence=calculate_confidence(option),
        )

    def _shopping_time(self, store_names: list[str], stores: dict[str, StoreInfo]) -> int:
        if not store_names:
            return 0
        base = 0
        for name in store_names:
            store = self._lookup(stores, name)
            base += store.estimated_shopping_time if store else DEFAULT_SHOPPING_TIME
        return base + TRAVEL_MINUTES_PER_EXTRA_STORE * (len(store_names) - 1)

    @staticmethod
    def suggest_strategies() -> list[ShoppingStrategy]:
        """Static summaries of the supported shopping approaches."""
        return [
            ShoppingStrategy(
                strategy="One-Store First",
                description="Shop primarily at your preferred store, visit specialty stores only when needed",
                estimated_time=45,
                estimated_stores=2,
                efficiency=85,
            ),
            ShoppingStrategy(
                strategy="Best Price",
                description="Get the lowest price for each ingredient regardless of store",
                estimated_time=75,
                estimated_stores=4,
                efficiency=60,
            ),
            ShoppingStrategy(
                strategy="Convenience",
                description="Shop at the single closest store even if some items cost more",
                estimated_time=25,
                estimated_stores=1,
                efficiency=65,
            ),
        ]
