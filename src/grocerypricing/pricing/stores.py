"""Location-aware store validation and address resolution."""

import re
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from grocerypricing.config import get_settings
from grocerypricing.logging_config import get_logger
from grocerypricing.pricing.exceptions import PricingError
from grocerypricing.pricing.resilience import ResilienceRegistry

logger = get_logger(__name__)

# =============================================================================
# Static store tables
# =============================================================================

DOMAIN_BRANDS: dict[str, str] = {
    "walmart.com": "Walmart",
    "target.com": "Target",
    "kroger.com": "Kroger",
    "publix.com": "Publix",
    "safeway.com": "Safeway",
    "albertsons.com": "Albertsons",
    "aldi.us": "Aldi",
    "costco.com": "Costco",
    "samsclub.com": "Sam's Club",
    "wholefoodsmarket.com": "Whole Foods Market",
    "traderjoes.com": "Trader Joe's",
    "meijer.com": "Meijer",
    "heb.com": "H-E-B",
    "foodlion.com": "Food Lion",
    "giantfood.com": "Giant",
    "stopandshop.com": "Stop & Shop",
    "winndixie.com": "Winn-Dixie",
    "ralphs.com": "Ralphs",
    "vons.com": "Vons",
    "fredmeyer.com": "Fred Meyer",
}

# Upstream search is restricted to these grocery domains
SEARCH_DOMAINS: list[str] = list(DOMAIN_BRANDS)

STORE_AVAILABILITY: dict[str, list[str]] = {
    "WI": [
        "Pick 'n Save",
        "Pick n Save",
        "Metro Market",
        "Woodman's",
        "Woodmans",
        "Festival Foods",
        "Walmart",
        "Target",
        "Aldi",
        "Costco",
        "Sam's Club",
        "Whole Foods",
        "Meijer",
        "Fresh Thyme",
        "Cermak Fresh Market",
        "El Rey",
        "Asian International Market",
    ],
    "CA": [
        "Ralphs",
        "Vons",
        "Safeway",
        "Trader Joe's",
        "Whole Foods",
        "Target",
        "Walmart",
        "H Mart",
        "H-Mart",
        "99 Ranch",
    ],
    "TX": ["H-E-B", "HEB", "Kroger", "Walmart", "Target", "Whole Foods", "H Mart"],
    "FL": ["Publix", "Kroger", "Walmart", "Target", "Whole Foods", "Winn-Dixie"],
    "NY": ["Wegmans", "Stop & Shop", "Whole Foods", "Target", "Walmart", "H Mart"],
    "IL": ["Jewel-Osco", "Mariano's", "Whole Foods", "Target", "Walmart", "H Mart", "Cermak"],
}

# Regional chains that do not operate in a state
BLOCKED_CHAINS: dict[str, list[str]] = {
    "WI": ["h mart", "h-mart", "hmart", "h.e.b", "h-e-b", "heb", "publix", "safeway", "kroger", "ralphs", "vons"],
}

NATIONAL_CHAINS = ["walmart", "target", "costco", "sam's club", "whole foods", "aldi"]

# Inclusive ranges of 3-digit ZIP prefixes per state
ZIP_PREFIX_RANGES: list[tuple[int, int, str]] = [
    (100, 114, "NY"),
    (532, 535, "WI"),
    (537, 539, "WI"),
    (541, 549, "WI"),
    (606, 620, "IL"),
    (750, 765, "TX"),
    (900, 908, "CA"),
]

_STATE_IN_CITY = re.compile(r",\s*([A-Z]{2})\b")
_ZIP = re.compile(r"\b(\d{5})(?:-\d{4})?\b")


@dataclass
class VerifiedAddress:
    """Address returned by a store directory."""

    address: str
    verified: bool = True
    name: str | None = None


@dataclass
class StoreValidation:
    """Outcome of validating a store against a location."""

    store_name: str | None
    store_address: str | None
    verified: bool


class StoreDirectory(Protocol):
    """Looks up a physical store address."""

    async def lookup(self, store_name: str, location: str) -> VerifiedAddress | None: ...


# =============================================================================
# Pure helpers
# =============================================================================


def _normalize_dashes(text: str) -> str:
    return text.replace("‑", "-").replace("‐", "-")


def infer_store_from_url(source_url: str | None) -> str | None:
    """Map a product URL's host to a grocery brand, e.g. walmart.com -> Walmart."""
    if not source_url:
        return None
    try:
        host = urlparse(source_url).hostname or ""
    except ValueError:
        return None
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return DOMAIN_BRANDS.get(host)


def resolve_state(location: str | None, city: str | None = "") -> str | None:
    """
    Resolve a US state code from a city string or ZIP code.

    A ", XX" state code in the city wins; otherwise the 3-digit ZIP prefix
    table is consulted. Returns None when the state cannot be determined.
    """
    match = _STATE_IN_CITY.search(city or "")
    if match:
        return match.group(1)

    text = (location or "").strip()
    zip_match = _ZIP.search(text)
    prefix = zip_match.group(1)[:3] if zip_match else text[:3]
    if not prefix.isdigit() or len(prefix) != 3:
        return None

    value = int(prefix)
    for low, high, state in ZIP_PREFIX_RANGES:
        if low <= value <= high:
            return state
    return None


def is_store_valid_for_location(store_name: str | None, location: str | None, city: str | None = "") -> bool:
    """
    Check whether a chain plausibly operates at a location.

    Unknown states allow every store; blocked regional chains are rejected;
    otherwise the store must be on the state's list or a national chain.
    """
    if not store_name:
        return False

    state = resolve_state(location, city)
    if not state:
        return True

    name = _normalize_dashes(store_name).lower().strip()

    if any(blocked in name for blocked in BLOCKED_CHAINS.get(state, [])):
        return False

    available = STORE_AVAILABILITY.get(state, [])
    if any(store.lower() in name for store in available):
        return True

    return any(chain in name for chain in NATIONAL_CHAINS)


# =============================================================================
# Store directories
# =============================================================================


class NullStoreDirectory:
    """Directory used when no places API is configured; never finds anything."""

    async def lookup(self, store_name: str, location: str) -> VerifiedAddress | None:
        return None


class PlacesStoreDirectory:
    """Store address lookup through the Google Places Text Search API."""

    SERVICE_NAME = "google-places"

    def __init__(
        self,
        api_key: str,
        registry: ResilienceRegistry,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key
        self.base_url = (base_url or settings.places_base_url).rstrip("/")
        self.timeout = timeout or settings.places_timeout
        self.max_retries = max_retries or settings.places_max_retries
        self._breaker = registry.breaker(self.SERVICE_NAME)
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _search(self, query: str) -> list[dict[str, Any]]:
        client = await self._get_client()

        @retry(
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=0.5, max=4),
            reraise=True,
        )
        async def _do_request() -> httpx.Response:
            return await client.get(
                f"{self.base_url}/textsearch/json",
                params={"query": query, "type": "grocery_or_supermarket", "key": self.api_key},
            )

        response = await _do_request()
        response.raise_for_status()
        payload = response.json()
        return payload.get("results") or []

    async def lookup(self, store_name: str, location: str) -> VerifiedAddress | None:
        """Find the best-matching store address, or None."""
        query = f"{store_name} {location}".strip()
        try:
            results = await self._breaker.call(self._search, query)
        except (httpx.HTTPError, RetryError, PricingError, ValueError) as e:
            logger.warning(f"Places lookup failed for {store_name!r}: {e}")
            return None

        if not results:
            return None

        wanted = store_name.lower()
        best = next(
            (r for r in results if wanted in str(r.get("name", "")).lower()),
            results[0],
        )
        address = best.get("formatted_address")
        if not address:
            return None

        logger.info(f"Places found address for {store_name}: {address}")
        return VerifiedAddress(address=address, verified=True, name=best.get("name"))


# =============================================================================
# Validator
# =============================================================================


class StoreValidator:
    """
    Repairs store names and addresses on price options.

    A store that does not operate at the location keeps its name (it is
    never swapped for another brand) but is reported unverified.
    """

    def __init__(self, directory: StoreDirectory | None = None):
        self.directory: StoreDirectory = directory or NullStoreDirectory()

    async def _lookup(self, store_name: str, location: str, city: str) -> VerifiedAddress | None:
        search_location = location or city
        try:
            return await self.directory.lookup(store_name, search_location)
        except Exception as e:
            # Directory failures never reach the pricing pipeline
            logger.warning(f"Store directory error for {store_name!r}: {e}")
            return None

    async def validate(
        self,
        store_name: str | None,
        source_url: str | None,
        location: str,
        city: str = "",
        store_address: str | None = None,
    ) -> StoreValidation:
        """
        Validate a store for a location and refresh its address.

        Returns:
            StoreValidation with ``verified`` False when the store is not known
            to operate at the location (or no name could be determined).
        """
        name = store_name or infer_store_from_url(source_url)
        if not name:
            return StoreValidation(store_name=None, store_address=store_address, verified=False)

        if not is_store_valid_for_location(name, location, city):
            logger.info(f"Store {name!r} not verified for {city or location}; keeping name")
            found = await self._lookup(name, location, city)
            address = found.address if found else (city or location)
            return StoreValidation(store_name=name, store_address=address, verified=False)

        found = await self._lookup(name, location, city)
        if found and found.verified:
            store_address = found.address
        return StoreValidation(store_name=name, store_address=store_address, verified=True)
