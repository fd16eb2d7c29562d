"""Tests for the pricing API routes."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from grocerypricing.main import app
from grocerypricing.pricing.cache import CacheStats, PriceCache
from grocerypricing.pricing.exceptions import (
    ParseFailure,
    UpstreamHTTPError,
    UpstreamNotConfigured,
)
from grocerypricing.pricing.models import PricingOutcome, PricingResult
from grocerypricing.pricing.resilience import ResilienceRegistry
from grocerypricing.routers.pricing import get_orchestrator, get_price_cache, get_registry

INGREDIENTS = ["chicken thighs", "green onion", "rice", "instant dashi stock powder"]


def _result(index: int, name: str, price: float, store: str = "Kroger", cost: float = 0.5) -> PricingResult:
    return PricingResult(
        id=index,
        original=name,
        matched=f"{store} {name}",
        estimated_cost=cost,
        portion_cost=cost,
        package_price=price,
        confidence=0.85,
        needs_review=False,
        store_name=store,
    )


@pytest.fixture
def orchestrator():
    orchestrator = MagicMock()
    orchestrator.price = AsyncMock(
        return_value=PricingOutcome(results=[_result(1, "rice", 2.19), _result(2, "nori", 3.99, "H Mart")])
    )
    return orchestrator


@pytest.fixture
def price_cache():
    cache = MagicMock(spec=PriceCache)
    cache.stats = AsyncMock(return_value=CacheStats(total=5, fresh=3, stale=1, expired=1))
    cache.cleanup_expired = AsyncMock(return_value=1)
    return cache


@pytest.fixture
def registry():
    return ResilienceRegistry()


@pytest.fixture
def client(orchestrator, price_cache, registry):
    """Test client with pricing dependencies replaced."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_price_cache] = lambda: price_cache
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


# =============================================================================
# Pricing
# =============================================================================


class TestPriceIngredients:
    """Tests for POST /api/v1/pricing."""

    def test_prices_ingredients(self, client, orchestrator):
        response = client.post(
            "/api/v1/pricing",
            json={
                "ingredients": ["rice", {"name": "nori", "amount": 2}],
                "location": "30309",
                "city": "Atlanta, GA",
                "cultural_context": "japanese",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert [r["original"] for r in data["results"]] == ["rice", "nori"]
        assert data["total_estimated"] == 1.0
        assert data["source"] == "perplexity"
        assert data["shopping_plan"] is None

        args, kwargs = orchestrator.price.call_args
        assert args == (["rice", {"name": "nori", "amount": 2}], "30309")
        assert kwargs["city"] == "Atlanta, GA"
        assert kwargs["cultural_context"] == "japanese"

    def test_shopping_plan_defaults_to_most_common_store(self, client, orchestrator, atlanta_pricing_options):
        orchestrator.price.return_value = PricingOutcome(
            results=[_result(i + 1, name, 1.0) for i, name in enumerate(INGREDIENTS)],
            options=atlanta_pricing_options,
        )

        response = client.post(
            "/api/v1/pricing",
            json={"ingredients": INGREDIENTS, "location": "30309", "generate_shopping_plan": True},
        )

        assert response.status_code == 200
        plan = response.json()["shopping_plan"]
        assert plan["primary_store"]["name"] == "Kroger"
        assert plan["efficiency"] == 75
        assert plan["assignments"]["instant dashi stock powder"]["assigned_store"] == "H Mart"

    def test_empty_ingredients_rejected(self, client):
        response = client.post("/api/v1/pricing", json={"ingredients": [], "location": "30309"})

        assert response.status_code == 422

    def test_not_configured(self, client, orchestrator):
        orchestrator.price.side_effect = UpstreamNotConfigured("no key")

        response = client.post("/api/v1/pricing", json={"ingredients": ["rice"], "location": "30309"})

        assert response.status_code == 503
        assert response.json()["detail"] == "Pricing service is not configured"

    def test_upstream_http_error(self, client, orchestrator):
        orchestrator.price.side_effect = UpstreamHTTPError("HTTP 401", status_code=401, body="x" * 1000)

        response = client.post("/api/v1/pricing", json={"ingredients": ["rice"], "location": "30309"})

        assert response.status_code == 502
        assert response.json()["detail"] == "Pricing API error (HTTP 401)"

    def test_upstream_http_error_debug_body(self, client, orchestrator):
        orchestrator.price.side_effect = UpstreamHTTPError("HTTP 401", status_code=401, body="x" * 1000)

        response = client.post(
            "/api/v1/pricing?debug=true", json={"ingredients": ["rice"], "location": "30309"}
        )

        detail = response.json()["detail"]
        assert detail["status_code"] == 401
        assert detail["message"] == "Pricing API error (HTTP 401)"
        assert len(detail["body"]) == 800

    def test_other_pricing_errors(self, client, orchestrator):
        orchestrator.price.side_effect = ParseFailure("nothing parsed")

        response = client.post("/api/v1/pricing", json={"ingredients": ["rice"], "location": "30309"})

        assert response.status_code == 502


# =============================================================================
# Shopping Plans
# =============================================================================


class TestOptimizeStores:
    """Tests for POST /api/v1/pricing/optimize-stores."""

    def test_plan_from_raw_options(self, client):
        options = [
            {"ingredient": "chicken thighs", "storeName": "Kroger", "packagePrice": 6.49, "portionCost": 4.33},
            {"ingredient": "green onion", "storeName": "Kroger", "packagePrice": 0.99, "portionCost": 0.5},
            {"ingredient": "rice", "storeName": "Kroger", "packagePrice": "$2.19", "portionCost": 0.55},
            {"ingredient": "rice", "storeName": "Aldi", "packagePrice": 1.79, "portionCost": 0.45},
            {
                "ingredient": "instant dashi stock powder",
                "storeName": "H Mart",
                "storeType": "ethnic",
                "packagePrice": 4.99,
                "portionCost": 0.5,
            },
        ]

        response = client.post(
            "/api/v1/pricing/optimize-stores",
            json={
                "ingredients": INGREDIENTS,
                "preferred_store": "Kroger",
                "location": "30309",
                "pricing_options": options,
            },
        )

        assert response.status_code == 200
        data = response.json()
        plan = data["plan"]
        assert plan["efficiency"] == 75
        assert plan["total_stores"] == 2
        assert [s["name"] for s in plan["secondary_stores"]] == ["H Mart"]
        assert plan["assignments"]["rice"]["package_price"] == 2.19
        assert [a["assigned_store"] for a in plan["assignments"]["rice"]["alternatives"]] == ["Aldi"]
        assert [s["strategy"] for s in data["strategies"]] == ["One-Store First", "Best Price", "Convenience"]

    def test_without_options(self, client):
        response = client.post(
            "/api/v1/pricing/optimize-stores",
            json={"ingredients": ["rice"], "preferred_store": "Kroger", "location": "30309"},
        )

        assert response.status_code == 200
        plan = response.json()["plan"]
        assert plan["efficiency"] == 0
        assert plan["assignments"] == {}

    def test_preferred_store_required(self, client):
        response = client.post(
            "/api/v1/pricing/optimize-stores",
            json={"ingredients": ["rice"], "preferred_store": "", "location": "30309"},
        )

        assert response.status_code == 422


# =============================================================================
# Status and Maintenance
# =============================================================================


class TestStatusAndCleanup:
    """Tests for status reporting and cache cleanup."""

    def test_status(self, client, registry):
        registry.breaker("perplexity-pricing")
        registry.limiter("perplexity-pricing", max_requests=30).acquire()

        response = client.get("/api/v1/pricing/status")

        assert response.status_code == 200
        data = response.json()
        assert isinstance(data["configured"], bool)
        assert data["circuit_breakers"]["perplexity-pricing"]["state"] == "closed"
        assert data["circuit_breakers"]["perplexity-pricing"]["accepting_calls"] is True
        assert data["rate_limiters"]["perplexity-pricing"]["in_window"] == 1
        assert data["cache"] == {"total": 5, "fresh": 3, "stale": 1, "expired": 1}

    def test_cleanup(self, client, price_cache):
        response = client.post("/api/v1/pricing/cache/cleanup")

        assert response.status_code == 200
        assert response.json() == {"deleted": 1}
        price_cache.cleanup_expired.assert_awaited_once()
