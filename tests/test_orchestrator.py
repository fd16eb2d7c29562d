"""Tests for the batch pricing pipeline."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from grocerypricing.plan.optimizer import ShoppingOptimizer
from grocerypricing.pricing.cache import PriceCache, PriceCacheEntry
from grocerypricing.pricing.client import PerplexityClient
from grocerypricing.pricing.exceptions import UpstreamHTTPError, UpstreamNotConfigured, UpstreamTimeout
from grocerypricing.pricing.orchestrator import PricingOrchestrator
from grocerypricing.pricing.portion import PortionCostResolver
from grocerypricing.pricing.resilience import ResilienceRegistry

ATLANTA_ZIP = "30309"

RICE_RECORD = {
    "ingredient": "rice",
    "storeName": "Kroger",
    "productName": "Kroger Long Grain White Rice",
    "packageSize": "2 lb",
    "packagePrice": 2.19,
    "portionCost": 0.55,
    "unitPrice": "$1.10/lb",
    "storeType": "mainstream",
}

NORI_RECORD = {
    "ingredient": "nori",
    "storeName": "H Mart",
    "productName": "Roasted Seaweed Sheets",
    "packageSize": "10 sheets",
    "packagePrice": "$3.99",
    "portionCost": 0.8,
    "storeType": "ethnic",
    "sourceUrl": "https://www.hmart.com/nori",
}


@pytest.fixture
def pricing_client():
    """Configured client whose completions are set per test."""
    client = MagicMock(spec=PerplexityClient)
    client.is_configured = True
    client.complete = AsyncMock(return_value=json.dumps([RICE_RECORD, NORI_RECORD]))
    return client


@pytest.fixture
def registry(clock):
    return ResilienceRegistry(clock=clock)


@pytest.fixture
def cache(cache_session_factory, datetime_clock):
    return PriceCache(cache_session_factory, ttl_hours=48, stale_hours=72, clock=datetime_clock)


@pytest.fixture
def orchestrator(pricing_client, registry, cache):
    return PricingOrchestrator(pricing_client, registry, cache=cache, batch_size=2, timeout=5.0)


def _cached(name: str, price: float) -> PriceCacheEntry:
    return PriceCacheEntry(
        ingredient_name=name,
        location=ATLANTA_ZIP,
        package_price=price,
        portion_cost=round(price / 4, 2),
        product_name=f"Cached {name}",
        package_size="1 lb",
        store_name="Publix",
        confidence=0.85,
        source="perplexity",
    )


async def _open_breaker(registry: ResilienceRegistry) -> None:
    async def fail():
        raise UpstreamTimeout("timed out")

    breaker = registry.breaker(PerplexityClient.SERVICE_NAME)
    for _ in range(breaker.options.failure_threshold):
        with pytest.raises(UpstreamTimeout):
            await breaker.call(fail)


# =============================================================================
# Live Pricing
# =============================================================================


class TestLivePricing:
    """Tests for the upstream happy path."""

    @pytest.mark.asyncio
    async def test_prices_batch_in_order(self, orchestrator, pricing_client):
        outcome = await orchestrator.price(["rice", "nori"], ATLANTA_ZIP, city="Atlanta, GA")

        assert outcome.source == "perplexity"
        assert [r.original for r in outcome.results] == ["rice", "nori"]
        assert [r.id for r in outcome.results] == [1, 2]

        rice, nori = outcome.results
        assert rice.matched == "Kroger Long Grain White Rice"
        assert rice.package_price == 2.19
        assert rice.portion_cost == 0.55
        assert rice.confidence == 0.85
        assert rice.needs_review is False
        assert rice.price_label == "$1.10/lb"
        assert rice.best_price_summary == "$0.55 at Kroger"
        assert nori.package_price == 3.99
        assert nori.store_type == "ethnic"

        assert [o.ingredient for o in outcome.options] == ["rice", "nori"]
        pricing_client.complete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_mapping_inputs(self, orchestrator):
        outcome = await orchestrator.price(
            [{"name": "rice", "amount": "1 1/2", "unit": "cup"}, {"item": "nori", "quantity": 2}],
            ATLANTA_ZIP,
        )

        assert [r.original for r in outcome.results] == ["rice", "nori"]

    @pytest.mark.asyncio
    async def test_batches_by_size(self, orchestrator, pricing_client):
        pricing_client.complete.return_value = json.dumps([RICE_RECORD])

        outcome = await orchestrator.price(["rice", "nori", "mirin"], ATLANTA_ZIP)

        assert pricing_client.complete.await_count == 2
        assert len(outcome.results) == 3

    @pytest.mark.asyncio
    async def test_fuzzy_matching_out_of_order(self, orchestrator, pricing_client):
        """Records are matched by name, not position, when names allow it."""
        thighs = dict(RICE_RECORD, ingredient="boneless chicken thighs", productName="Chicken Thighs",
                      packagePrice=6.49, portionCost=4.33)
        pricing_client.complete.return_value = json.dumps([RICE_RECORD, thighs])

        outcome = await orchestrator.price(["chicken thighs boneless", "rice"], ATLANTA_ZIP)

        assert [r.matched for r in outcome.results] == ["Chicken Thighs", "Kroger Long Grain White Rice"]

    @pytest.mark.asyncio
    async def test_exact_name_beats_containment(self, orchestrator, pricing_client):
        peanut_butter = dict(RICE_RECORD, ingredient="peanut butter", productName="Peanut Butter")
        butter = dict(RICE_RECORD, ingredient="butter", productName="Salted Butter")
        pricing_client.complete.return_value = json.dumps([peanut_butter, butter])

        outcome = await orchestrator.price(["butter", "peanut butter"], ATLANTA_ZIP)

        assert [r.matched for r in outcome.results] == ["Salted Butter", "Peanut Butter"]

    @pytest.mark.asyncio
    async def test_positional_fallback(self, orchestrator, pricing_client):
        unnamed = {k: v for k, v in RICE_RECORD.items() if k != "ingredient"}
        pricing_client.complete.return_value = json.dumps([unnamed])

        outcome = await orchestrator.price(["white rice"], ATLANTA_ZIP)

        assert outcome.results[0].package_price == 2.19

    @pytest.mark.asyncio
    async def test_store_options(self, orchestrator, pricing_client):
        record = dict(
            RICE_RECORD,
            options=[
                {"storeName": "Aldi", "packagePrice": 1.79, "portionCost": 0.45},
                {"storeName": "", "packagePrice": 1.0},
                {"storeName": "Target", "packagePrice": 0},
                "junk",
            ],
        )
        pricing_client.complete.return_value = json.dumps([record])

        outcome = await orchestrator.price(["rice"], ATLANTA_ZIP, city="Atlanta, GA")

        options = outcome.results[0].store_options
        assert len(options) == 1
        assert options[0].store_name == "Aldi"
        assert options[0].store_address == "Atlanta, GA"
        assert options[0].store_type == "mainstream"
        assert options[0].price == 0.45

    @pytest.mark.asyncio
    async def test_missing_store_lowers_confidence(self, orchestrator, pricing_client):
        record = {k: v for k, v in RICE_RECORD.items() if k != "storeName"}
        pricing_client.complete.return_value = json.dumps([record])

        result = (await orchestrator.price(["rice"], ATLANTA_ZIP)).results[0]

        assert result.store_name is None
        assert result.confidence == 0.45
        assert result.needs_review is True
        assert result.best_price_summary is None

    @pytest.mark.asyncio
    async def test_out_of_region_store_is_unverified(self, orchestrator, pricing_client):
        pricing_client.complete.return_value = json.dumps([RICE_RECORD])

        result = (await orchestrator.price(["rice"], "53202", city="Milwaukee, WI")).results[0]

        assert result.store_name == "Kroger"
        assert result.store_address == "Milwaukee, WI"
        assert result.confidence == 0.6

    @pytest.mark.asyncio
    async def test_cultural_alternatives(self, orchestrator, pricing_client):
        record = dict(NORI_RECORD, ingredient="instant dashi stock powder")
        pricing_client.complete.return_value = json.dumps([record])

        result = (
            await orchestrator.price(["instant dashi stock powder"], ATLANTA_ZIP, cultural_context="japanese")
        ).results[0]

        names = [a.name for a in result.alternatives]
        assert "kombu seaweed" in names
        assert names[-1] == "Hondashi (concentrated)"


# =============================================================================
# Cache
# =============================================================================


class TestCaching:
    """Tests for cache reads and write-back."""

    @pytest.mark.asyncio
    async def test_second_request_is_served_from_cache(self, orchestrator, pricing_client):
        first = await orchestrator.price(["rice", "nori"], ATLANTA_ZIP)
        second = await orchestrator.price(["Rice", "NORI"], ATLANTA_ZIP)

        pricing_client.complete.assert_awaited_once()
        assert second.source == "cache"
        assert [r.package_price for r in second.results] == [r.package_price for r in first.results]
        assert [r.original for r in second.results] == ["Rice", "NORI"]

    @pytest.mark.asyncio
    async def test_mixed_sources(self, orchestrator, cache, pricing_client):
        await cache.put_many([_cached("rice", 2.49)])
        pricing_client.complete.return_value = json.dumps([NORI_RECORD])

        outcome = await orchestrator.price(["rice", "nori"], ATLANTA_ZIP)

        assert outcome.source == "mixed"
        assert [r.source for r in outcome.results] == ["cache", "perplexity"]
        assert outcome.results[0].store_name == "Publix"
        prompt = pricing_client.complete.call_args.args[0]
        assert '"name": "nori"' in prompt
        assert '"name": "rice"' not in prompt

    @pytest.mark.asyncio
    async def test_fully_cached_request_needs_no_key(self, orchestrator, cache, pricing_client):
        await cache.put_many([_cached("rice", 2.49)])
        pricing_client.is_configured = False

        outcome = await orchestrator.price(["rice"], ATLANTA_ZIP)

        assert outcome.source == "cache"
        pricing_client.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_configured(self, orchestrator, pricing_client):
        pricing_client.is_configured = False

        with pytest.raises(UpstreamNotConfigured):
            await orchestrator.price(["rice"], ATLANTA_ZIP)

    @pytest.mark.asyncio
    async def test_estimates_are_not_cached(self, orchestrator, cache, pricing_client):
        pricing_client.complete.side_effect = UpstreamTimeout("timed out")

        await orchestrator.price(["rice"], ATLANTA_ZIP)

        assert (await cache.stats()).total == 0

    @pytest.mark.asyncio
    async def test_works_without_cache(self, pricing_client, registry):
        orchestrator = PricingOrchestrator(pricing_client, registry, batch_size=2, timeout=5.0)

        outcome = await orchestrator.price(["rice", "nori"], ATLANTA_ZIP)

        assert outcome.source == "perplexity"


# =============================================================================
# Degradation
# =============================================================================


class TestDegradation:
    """Tests for each failure mode of the upstream call."""

    @pytest.mark.asyncio
    async def test_client_timeout_uses_estimates(self, orchestrator, pricing_client):
        pricing_client.complete.side_effect = UpstreamTimeout("timed out")

        outcome = await orchestrator.price(["rice", "nori"], ATLANTA_ZIP)

        assert outcome.source == "estimated"
        for result in outcome.results:
            assert result.confidence == 0.3
            assert result.needs_review is True
            assert result.store_name == "Estimated"
            assert result.estimated_cost > 0
        assert [r.id for r in outcome.results] == [1, 2]

    @pytest.mark.asyncio
    async def test_dropped_connection_uses_estimates(self, registry, cache, mock_http_client):
        mock_http_client.post.side_effect = httpx.RemoteProtocolError("Server disconnected")
        client = PerplexityClient(api_key="pplx-test", client=mock_http_client)
        orchestrator = PricingOrchestrator(client, registry, cache=cache, timeout=5.0)

        outcome = await orchestrator.price(["rice"], ATLANTA_ZIP)

        assert outcome.source == "estimated"
        assert outcome.results[0].confidence == 0.3
        assert registry.breaker(PerplexityClient.SERVICE_NAME).stats().failures == 1

    @pytest.mark.asyncio
    async def test_non_object_body_is_unavailable(self, registry, cache, mock_http_client, make_response):
        mock_http_client.post.return_value = make_response(json_data=["rice", 2.19])
        client = PerplexityClient(api_key="pplx-test", client=mock_http_client)
        orchestrator = PricingOrchestrator(client, registry, cache=cache, timeout=5.0)

        outcome = await orchestrator.price(["rice"], ATLANTA_ZIP)

        assert outcome.results[0].source == "unavailable"

    @pytest.mark.asyncio
    async def test_slow_upstream_hits_deadline(self, pricing_client, registry, cache):
        async def slow(prompt):
            await asyncio.sleep(1)
            return "[]"

        pricing_client.complete.side_effect = slow
        orchestrator = PricingOrchestrator(pricing_client, registry, cache=cache, timeout=0.01)

        outcome = await orchestrator.price(["rice"], ATLANTA_ZIP)

        assert outcome.source == "estimated"
        assert registry.breaker(PerplexityClient.SERVICE_NAME).stats().failures == 1

    @pytest.mark.asyncio
    async def test_open_circuit_serves_stale_then_estimates(
        self, orchestrator, cache, registry, pricing_client, datetime_clock
    ):
        await cache.put_many([_cached("rice", 2.49)])
        datetime_clock.advance(50)
        await _open_breaker(registry)

        outcome = await orchestrator.price(["rice", "nori"], ATLANTA_ZIP)

        pricing_client.complete.assert_not_awaited()
        rice, nori = outcome.results
        assert rice.source == "stale"
        assert rice.confidence == 0.5
        assert rice.package_price == 2.49
        assert nori.source == "estimated"
        assert outcome.source == "mixed"

    @pytest.mark.asyncio
    async def test_rate_limited_batch_degrades(self, pricing_client, registry, cache):
        registry.limiter(PerplexityClient.SERVICE_NAME, max_requests=1)
        orchestrator = PricingOrchestrator(pricing_client, registry, cache=cache, batch_size=1, timeout=5.0)
        pricing_client.complete.return_value = json.dumps([RICE_RECORD])

        outcome = await orchestrator.price(["rice", "nori"], ATLANTA_ZIP)

        assert [r.source for r in outcome.results] == ["perplexity", "estimated"]
        pricing_client.complete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_http_error_without_stale_propagates(self, orchestrator, pricing_client):
        pricing_client.complete.side_effect = UpstreamHTTPError("HTTP 500", status_code=500, body="boom")

        with pytest.raises(UpstreamHTTPError) as exc_info:
            await orchestrator.price(["rice"], ATLANTA_ZIP)
        assert exc_info.value.body == "boom"

    @pytest.mark.asyncio
    async def test_http_error_with_stale_cache(self, orchestrator, cache, pricing_client, datetime_clock):
        await cache.put_many([_cached("rice", 2.49), _cached("nori", 3.99)])
        datetime_clock.advance(50)
        pricing_client.complete.side_effect = UpstreamHTTPError("HTTP 502", status_code=502)

        outcome = await orchestrator.price(["rice", "nori"], ATLANTA_ZIP)

        assert outcome.source == "stale"
        assert [r.package_price for r in outcome.results] == [2.49, 3.99]

    @pytest.mark.asyncio
    async def test_partial_stale_still_raises(self, orchestrator, cache, pricing_client, datetime_clock):
        await cache.put_many([_cached("rice", 2.49)])
        datetime_clock.advance(50)
        pricing_client.complete.side_effect = UpstreamHTTPError("HTTP 502", status_code=502)

        with pytest.raises(UpstreamHTTPError):
            await orchestrator.price(["rice", "nori"], ATLANTA_ZIP)

    @pytest.mark.asyncio
    async def test_text_fallback(self, orchestrator, pricing_client):
        pricing_client.complete.return_value = "Store: Kroger\nPrice: $3.49\nSize: 16 oz"

        result = (await orchestrator.price(["soy sauce"], ATLANTA_ZIP)).results[0]

        assert result.source == "perplexity"
        assert result.store_name == "Kroger"
        assert result.package_price == 3.49
        assert result.portion_cost == 0.35

    @pytest.mark.asyncio
    async def test_unparseable_response_is_unavailable(self, orchestrator, pricing_client):
        pricing_client.complete.return_value = "I could not find prices."

        outcome = await orchestrator.price(["saffron"], ATLANTA_ZIP)

        result = outcome.results[0]
        assert result.source == "unavailable"
        assert result.matched == "Pricing unavailable"
        assert result.confidence == 0.1
        assert result.estimated_cost == 0.0

    @pytest.mark.asyncio
    async def test_one_failing_ingredient_is_isolated(self, pricing_client, registry, cache):
        real = PortionCostResolver()

        def resolve(option, qty, unit, name):
            if name == "nori":
                raise RuntimeError("boom")
            return real.resolve(option, qty, unit, name)

        resolver = MagicMock(spec=PortionCostResolver)
        resolver.resolve.side_effect = resolve
        orchestrator = PricingOrchestrator(pricing_client, registry, cache=cache, resolver=resolver, timeout=5.0)

        outcome = await orchestrator.price(["rice", "nori"], ATLANTA_ZIP)

        assert [r.source for r in outcome.results] == ["perplexity", "unavailable"]
        assert (await cache.stats()).total == 1


# =============================================================================
# Shopping Plan
# =============================================================================


class TestPlanFromOutcome:
    """Tests for feeding pricing options into the shopping optimizer."""

    @pytest.mark.asyncio
    async def test_plan_portion_matches_resolved_result(self, orchestrator, pricing_client):
        record = dict(RICE_RECORD, packagePrice=4.0, portionCost=12.0, packageSize="2 lb")
        pricing_client.complete.return_value = json.dumps([record])

        outcome = await orchestrator.price(
            [{"name": "rice", "amount": 1, "unit": "cup"}], ATLANTA_ZIP, city="Atlanta, GA"
        )
        plan = ShoppingOptimizer().optimize(["rice"], "Kroger", ATLANTA_ZIP, outcome.options)

        result = outcome.results[0]
        assignment = plan.assignments["rice"]
        assert result.portion_cost <= 4.0 * 1.001
        assert assignment.portion_cost == result.portion_cost
        assert assignment.portion_cost <= assignment.package_price * 1.001

    @pytest.mark.asyncio
    async def test_cached_options_carry_resolved_portion(self, orchestrator, pricing_client):
        record = dict(RICE_RECORD, packagePrice=4.0, portionCost=12.0, packageSize="2 lb")
        pricing_client.complete.return_value = json.dumps([record])
        request = [{"name": "rice", "amount": 1, "unit": "cup"}]
        await orchestrator.price(request, ATLANTA_ZIP)

        outcome = await orchestrator.price(request, ATLANTA_ZIP)

        assert outcome.source == "cache"
        assert outcome.options[0].portion_cost == outcome.results[0].portion_cost
        assert outcome.options[0].portion_cost <= 4.0 * 1.001
