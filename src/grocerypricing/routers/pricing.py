"""API routes for ingredient pricing and shopping plans."""

from collections import Counter
from functools import lru_cache
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from grocerypricing.config import get_settings
from grocerypricing.database import AsyncSessionLocal
from grocerypricing.logging_config import get_logger
from grocerypricing.plan.optimizer import OptimizedShoppingPlan, ShoppingOptimizer, find_city
from grocerypricing.pricing.cache import PriceCache
from grocerypricing.pricing.client import PerplexityClient
from grocerypricing.pricing.exceptions import (
    PricingError,
    UpstreamHTTPError,
    UpstreamNotConfigured,
)
from grocerypricing.pricing.models import SanitizedPriceOption, sanitize_option
from grocerypricing.pricing.orchestrator import PricingOrchestrator
from grocerypricing.pricing.resilience import ResilienceRegistry
from grocerypricing.pricing.stores import (
    NullStoreDirectory,
    PlacesStoreDirectory,
    StoreDirectory,
    StoreValidator,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/pricing", tags=["pricing"])

# Upstream bodies echoed back in debug mode are cut to this length
DEBUG_BODY_LIMIT = 800


# Request/Response schemas
class PricingRequest(BaseModel):
    """Request to price a list of ingredients."""

    ingredients: list[str | dict[str, Any]] = Field(min_length=1)
    location: str = Field(min_length=1)
    city: str = ""
    preferred_store: str | None = None
    cultural_context: str | None = None
    generate_shopping_plan: bool = False


class StoreOptionResponse(BaseModel):
    """Another store offering an ingredient."""

    store_name: str
    store_address: str
    store_type: str
    price: float


class AlternativeResponse(BaseModel):
    """Substitute ingredient suggestion."""

    name: str
    price: float
    store_name: str
    notes: str | None = None


class PricingResultResponse(BaseModel):
    """Priced ingredient."""

    id: int
    original: str
    matched: str
    estimated_cost: float
    portion_cost: float
    package_price: float
    confidence: float
    needs_review: bool
    packages: int = 1
    source: str
    package_size: str | None = None
    store_name: str | None = None
    store_type: str | None = None
    store_address: str | None = None
    source_url: str | None = None
    price_label: str | None = None
    best_price_summary: str | None = None
    store_options: list[StoreOptionResponse] | None = None
    alternatives: list[AlternativeResponse] | None = None


class StoreInfoResponse(BaseModel):
    """Store in a shopping plan."""

    name: str
    type: str
    address: str
    estimated_shopping_time: int
    specialties: list[str] = []


class StoreAssignmentResponse(BaseModel):
    """Where one ingredient will be bought."""

    ingredient: str
    assigned_store: str
    store_type: str
    store_address: str
    package_price: float
    portion_cost: float
    product_name: str
    package_size: str
    confidence: str
    alternatives: list["StoreAssignmentResponse"] = []


class ShoppingPlanResponse(BaseModel):
    """One-store-first shopping plan."""

    primary_store: StoreInfoResponse
    secondary_stores: list[StoreInfoResponse]
    assignments: dict[str, StoreAssignmentResponse]
    efficiency: int
    total_stores: int
    estimated_time_minutes: int
    total_cost: float


class PricingResponse(BaseModel):
    """Pricing results for a request."""

    results: list[PricingResultResponse]
    total_estimated: float
    source: str
    shopping_plan: ShoppingPlanResponse | None = None


class OptimizeStoresRequest(BaseModel):
    """Request to build a shopping plan from already priced options."""

    ingredients: list[str | dict[str, Any]] = Field(min_length=1)
    preferred_store: str = Field(min_length=1)
    location: str = Field(min_length=1)
    pricing_options: list[dict[str, Any]] = []


class StrategyResponse(BaseModel):
    """Summary of a shopping approach."""

    strategy: str
    description: str
    estimated_time: int
    estimated_stores: int
    efficiency: int


class OptimizeStoresResponse(BaseModel):
    """Shopping plan plus the available strategies."""

    plan: ShoppingPlanResponse
    strategies: list[StrategyResponse]


class CacheStatsResponse(BaseModel):
    """Entry counts per cache tier."""

    total: int
    fresh: int
    stale: int
    expired: int


class PricingStatusResponse(BaseModel):
    """Upstream configuration, breaker states and cache statistics."""

    configured: bool
    circuit_breakers: dict[str, dict[str, Any]]
    rate_limiters: dict[str, dict[str, Any]]
    cache: CacheStatsResponse


class CacheCleanupResponse(BaseModel):
    """Result of an expired-entry cleanup."""

    deleted: int


# Dependencies
@lru_cache
def get_registry() -> ResilienceRegistry:
    """Process-wide breaker and rate limiter registry."""
    return ResilienceRegistry()


@lru_cache
def get_pricing_client() -> PerplexityClient:
    return PerplexityClient()


@lru_cache
def get_store_directory() -> StoreDirectory:
    settings = get_settings()
    if settings.google_places_api_key:
        return PlacesStoreDirectory(settings.google_places_api_key, get_registry())
    return NullStoreDirectory()


def get_price_cache() -> PriceCache:
    return PriceCache(AsyncSessionLocal)


def get_orchestrator(
    registry: ResilienceRegistry = Depends(get_registry),
    client: PerplexityClient = Depends(get_pricing_client),
    cache: PriceCache = Depends(get_price_cache),
    directory: StoreDirectory = Depends(get_store_directory),
) -> PricingOrchestrator:
    return PricingOrchestrator(
        client=client,
        registry=registry,
        cache=cache,
        validator=StoreValidator(directory),
    )


def _default_store(options: list[SanitizedPriceOption], location: str) -> str:
    """The store carrying the most priced ingredients, else the city's first chain."""
    counts = Counter(o.store_name for o in options if o.store_name)
    if counts:
        return counts.most_common(1)[0][0]
    return find_city(location).common_stores[0]


def _plan_response(plan: OptimizedShoppingPlan) -> ShoppingPlanResponse:
    return ShoppingPlanResponse.model_validate(plan.to_dict())


@router.post("", response_model=PricingResponse)
async def price_ingredients(
    request: PricingRequest,
    debug: Annotated[bool, Query(description="Echo the upstream error body")] = False,
    orchestrator: PricingOrchestrator = Depends(get_orchestrator),
) -> PricingResponse:
    """
    Price ingredients at a location.

    Fresh cache entries are served first; the rest are priced live. When
    requested, a one-store-first shopping plan is built from the results.
    """
    logger.info(
        f"Pricing request: {len(request.ingredients)} ingredients, "
        f"location={request.location}, store={request.preferred_store}"
    )

    try:
        outcome = await orchestrator.price(
            request.ingredients,
            request.location,
            city=request.city,
            preferred_store=request.preferred_store,
            cultural_context=request.cultural_context,
        )
    except UpstreamNotConfigured as e:
        logger.error(f"Pricing unavailable: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pricing service is not configured",
        )
    except UpstreamHTTPError as e:
        logger.error(f"Pricing upstream failed with HTTP {e.status_code}")
        detail: Any = f"Pricing API error (HTTP {e.status_code})"
        if debug:
            detail = {
                "message": detail,
                "status_code": e.status_code,
                "body": e.body[:DEBUG_BODY_LIMIT],
            }
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)
    except PricingError as e:
        logger.error(f"Pricing failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Pricing failed: {e}",
        )

    shopping_plan = None
    if request.generate_shopping_plan and outcome.options:
        preferred = request.preferred_store or _default_store(outcome.options, request.location)
        plan = ShoppingOptimizer().optimize(
            request.ingredients, preferred, request.location, outcome.options
        )
        shopping_plan = _plan_response(plan)

    return PricingResponse(
        results=[PricingResultResponse.model_validate(r.to_dict()) for r in outcome.results],
        total_estimated=outcome.total_estimated,
        source=outcome.source,
        shopping_plan=shopping_plan,
    )


@router.post("/optimize-stores", response_model=OptimizeStoresResponse)
async def optimize_stores(request: OptimizeStoresRequest) -> OptimizeStoresResponse:
    """Build a shopping plan from pricing options the caller already holds."""
    options = [sanitize_option(raw) for raw in request.pricing_options]
    optimizer = ShoppingOptimizer()
    plan = optimizer.optimize(request.ingredients, request.preferred_store, request.location, options)

    return OptimizeStoresResponse(
        plan=_plan_response(plan),
        strategies=[StrategyResponse(**vars(s)) for s in optimizer.suggest_strategies()],
    )


@router.get("/status", response_model=PricingStatusResponse)
async def pricing_status(
    registry: ResilienceRegistry = Depends(get_registry),
    cache: PriceCache = Depends(get_price_cache),
) -> PricingStatusResponse:
    """Report upstream configuration, breaker and rate limiter states, and cache tiers."""
    stats = await cache.stats()
    return PricingStatusResponse(
        configured=bool(get_settings().perplexity_api_key),
        circuit_breakers={name: s.to_dict() for name, s in registry.all_stats().items()},
        rate_limiters=registry.rate_limit_usage(),
        cache=CacheStatsResponse(
            total=stats.total,
            fresh=stats.fresh,
            stale=stats.stale,
            expired=stats.expired,
        ),
    )


@router.post("/cache/cleanup", response_model=CacheCleanupResponse)
async def cleanup_cache(cache: PriceCache = Depends(get_price_cache)) -> CacheCleanupResponse:
    """Delete cache entries past both their expiry and the stale window."""
    deleted = await cache.cleanup_expired()
    logger.info(f"Manual cache cleanup removed {deleted} entries")
    return CacheCleanupResponse(deleted=deleted)
