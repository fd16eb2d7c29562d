"""Ingredient pricing: upstream client, resilience, caching and orchestration."""

from grocerypricing.pricing.cache import (
    CachedPrice,
    CacheLookup,
    CacheStats,
    PriceCache,
    PriceCacheEntry,
    normalize_ingredient_key,
    normalize_location_key,
)
from grocerypricing.pricing.client import PerplexityClient, build_pricing_prompt
from grocerypricing.pricing.exceptions import (
    CircuitOpenError,
    ParseFailure,
    PricingError,
    RateLimitExceeded,
    UpstreamHTTPError,
    UpstreamNotConfigured,
    UpstreamTimeout,
)
from grocerypricing.pricing.models import (
    IngredientAlternative,
    IngredientRequest,
    PricingOutcome,
    PricingResult,
    SanitizedPriceOption,
    StoreOption,
    normalize_ingredient,
    sanitize_option,
)
from grocerypricing.pricing.orchestrator import PricingOrchestrator
from grocerypricing.pricing.portion import PortionCostResolver
from grocerypricing.pricing.resilience import (
    CircuitBreaker,
    CircuitState,
    RateLimiter,
    ResilienceRegistry,
)
from grocerypricing.pricing.stores import (
    NullStoreDirectory,
    PlacesStoreDirectory,
    StoreValidator,
)

__all__ = [
    "CacheLookup",
    "CacheStats",
    "CachedPrice",
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "IngredientAlternative",
    "IngredientRequest",
    "NullStoreDirectory",
    "ParseFailure",
    "PerplexityClient",
    "PlacesStoreDirectory",
    "PortionCostResolver",
    "PriceCache",
    "PriceCacheEntry",
    "PricingError",
    "PricingOrchestrator",
    "PricingOutcome",
    "PricingResult",
    "RateLimitExceeded",
    "RateLimiter",
    "ResilienceRegistry",
    "SanitizedPriceOption",
    "StoreOption",
    "StoreValidator",
    "UpstreamHTTPError",
    "UpstreamNotConfigured",
    "UpstreamTimeout",
    "build_pricing_prompt",
    "normalize_ingredient",
    "normalize_ingredient_key",
    "normalize_location_key",
    "sanitize_option",
]
