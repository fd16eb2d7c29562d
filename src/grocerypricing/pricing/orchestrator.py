"""Batch pricing pipeline.

For each request: serve fresh cache hits, then price the remaining
ingredients in small batches through the rate-limited, breaker-guarded
upstream call. Every failure mode degrades per batch or per ingredient:

- timeout -> heuristic estimates
- open breaker / rate limit -> stale cache, then heuristic estimates
- HTTP error -> stale cache, else the error propagates
- unparseable response -> text fallback, then "Pricing unavailable"
"""

import asyncio
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from rapidfuzz import fuzz, process

from grocerypricing.config import get_settings
from grocerypricing.logging_config import LoggingContext, get_logger
from grocerypricing.pricing.cache import (
    CachedPrice,
    PriceCache,
    PriceCacheEntry,
    normalize_ingredient_key,
)
from grocerypricing.pricing.client import PerplexityClient, PromptBuilder, build_pricing_prompt
from grocerypricing.pricing.estimator import estimate_ingredient_cost
from grocerypricing.pricing.exceptions import (
    CircuitOpenError,
    ParseFailure,
    RateLimitExceeded,
    UpstreamHTTPError,
    UpstreamNotConfigured,
    UpstreamTimeout,
)
from grocerypricing.pricing.extraction import parse_records, parse_text_response
from grocerypricing.pricing.models import (
    IngredientRequest,
    PricingOutcome,
    PricingResult,
    SanitizedPriceOption,
    StoreOption,
    normalize_ingredient,
    sanitize_option,
)
from grocerypricing.pricing.portion import PortionCostResolver
from grocerypricing.pricing.resilience import ResilienceRegistry
from grocerypricing.pricing.stores import StoreValidator
from grocerypricing.pricing.substitutions import find_alternatives

logger = get_logger(__name__)

MATCHED_CONFIDENCE = 0.85
UNVERIFIED_STORE_CONFIDENCE = 0.6
STALE_CONFIDENCE = 0.5
NO_STORE_CONFIDENCE = 0.45
ESTIMATED_CONFIDENCE = 0.3
UNAVAILABLE_CONFIDENCE = 0.1

# Minimum rapidfuzz score for matching a record to an ingredient by name
FUZZY_MATCH_THRESHOLD = 85


@dataclass
class _Priced:
    """Result plus the option it was derived from."""

    result: PricingResult
    option: SanitizedPriceOption | None = None


class PricingOrchestrator:
    """Composes cache, upstream client, parsing, portioning and store checks."""

    def __init__(
        self,
        client: PerplexityClient,
        registry: ResilienceRegistry,
        cache: PriceCache | None = None,
        validator: StoreValidator | None = None,
        resolver: PortionCostResolver | None = None,
        prompt_builder: PromptBuilder = build_pricing_prompt,
        batch_size: int | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        self.client = client
        self.cache = cache
        self.validator = validator or StoreValidator()
        self.resolver = resolver or PortionCostResolver()
        self.prompt_builder = prompt_builder
        self.batch_size = max(1, batch_size or settings.pricing_batch_size)
        self.timeout = timeout or settings.effective_upstream_timeout
        self.breaker = registry.breaker(PerplexityClient.SERVICE_NAME)
        self.limiter = registry.limiter(
            PerplexityClient.SERVICE_NAME,
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )

    async def price(
        self,
        ingredients: Sequence[Any],
        location: str,
        city: str = "",
        preferred_store: str | None = None,
        cultural_context: str | None = None,
    ) -> PricingOutcome:
        """
        Price a list of ingredients at a location.

        Args:
            ingredients: Raw ingredients (strings or name/amount/unit mappings).
            location: ZIP code or city text.
            city: Optional "City, ST" string used for store validation.
            preferred_store: Store the shopper would rather use.
            cultural_context: Cuisine hint used for substitutions.

        Returns:
            PricingOutcome with one result per ingredient, in input order.

        Raises:
            UpstreamHTTPError: If the price source fails and no stale data exists.
            UpstreamNotConfigured: If live pricing is needed but no key is set.
        """
        requests = [normalize_ingredient(raw) for raw in ingredients]
        slots: list[_Priced | None] = [None] * len(requests)

        with LoggingContext(location=location):
            pending = await self._serve_from_cache(requests, slots, location, city, cultural_context)

            if pending and not self.client.is_configured:
                raise UpstreamNotConfigured("Pricing API key is not configured")

            for start in range(0, len(pending), self.batch_size):
                batch = pending[start : start + self.batch_size]
                batch_id = uuid.uuid4().hex[:8]
                with LoggingContext(batch_id=batch_id):
                    priced = await self._price_batch(
                        [requests[i] for i in batch],
                        location,
                        city,
                        preferred_store,
                        cultural_context,
                    )
                for index, item in zip(batch, priced):
                    item.result.id = index + 1
                    slots[index] = item

            await self._write_back(requests, slots, location)

        priced_items = [item for item in slots if item is not None]
        sources = {item.result.source for item in priced_items}
        if len(sources) == 1:
            source = sources.pop()
        elif sources:
            source = "mixed"
        else:
            source = "perplexity"

        return PricingOutcome(
            results=[item.result for item in priced_items],
            source=source,
            options=[item.option for item in priced_items if item.option is not None],
        )

    # =========================================================================
    # Cache
    # =========================================================================

    async def _serve_from_cache(
        self,
        requests: list[IngredientRequest],
        slots: list[_Priced | None],
        location: str,
        city: str,
        cultural_context: str | None,
    ) -> list[int]:
        if self.cache is None or not requests:
            return list(range(len(requests)))

        lookup = await self.cache.get_many([r.name for r in requests], location)
        by_key = {entry.ingredient_name: entry for entry in lookup.cached}

        pending: list[int] = []
        for index, request in enumerate(requests):
            entry = by_key.get(normalize_ingredient_key(request.name))
            if entry is None:
                pending.append(index)
                continue
            slots[index] = self._from_cached(index, request, entry, "cache", cultural_context)

        if len(pending) < len(requests):
            logger.info(f"Served {len(requests) - len(pending)}/{len(requests)} ingredients from cache")
        return pending

    def _from_cached(
        self,
        index: int,
        request: IngredientRequest,
        entry: CachedPrice,
        source: str,
        cultural_context: str | None,
    ) -> _Priced:
        option = SanitizedPriceOption(
            package_price=entry.package_price,
            portion_cost=entry.portion_cost,
            ingredient=request.name,
            store_name=entry.store_name,
            product_name=entry.product_name,
            package_size=entry.package_size,
            unit_price=entry.unit_price,
            store_type=entry.store_type,
        )
        portion = self.resolver.resolve(option, request.amount, request.unit, request.name)
        option.portion_cost = portion
        confidence = entry.confidence if source == "cache" else min(entry.confidence, STALE_CONFIDENCE)
        alternatives = find_alternatives(request.name, cultural_context)

        result = PricingResult(
            id=index + 1,
            original=request.name,
            matched=entry.product_name,
            estimated_cost=portion,
            portion_cost=portion,
            package_price=entry.package_price,
            package_size=entry.package_size,
            confidence=confidence,
            needs_review=confidence < 0.5,
            source=source,
            store_name=entry.store_name,
            store_type=entry.store_type,
            price_label=entry.unit_price,
            best_price_summary=f"${portion:.2f} at {entry.store_name}",
            alternatives=alternatives or None,
        )
        return _Priced(result=result, option=option)

    async def _write_back(
        self,
        requests: list[IngredientRequest],
        slots: list[_Priced | None],
        location: str,
    ) -> None:
        if self.cache is None:
            return

        entries = [
            PriceCacheEntry(
                ingredient_name=request.name,
                location=location,
                package_price=item.result.package_price,
                portion_cost=item.result.portion_cost,
                product_name=item.result.matched,
                package_size=item.result.package_size,
                store_name=item.result.store_name,
                store_type=item.result.store_type,
                unit_price=item.result.price_label,
                confidence=item.result.confidence,
                source="perplexity",
            )
            for request, item in zip(requests, slots)
            if item is not None and item.result.source == "perplexity" and item.result.package_price > 0
        ]
        if entries:
            await self.cache.put_many(entries)

    # =========================================================================
    # Upstream
    # =========================================================================

    async def _complete_with_timeout(self, prompt: str) -> str:
        try:
            return await asyncio.wait_for(self.client.complete(prompt), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout(
                f"Pricing API did not answer within {self.timeout}s",
                service=PerplexityClient.SERVICE_NAME,
            ) from e

    async def _fetch(
        self,
        batch: list[IngredientRequest],
        location: str,
        city: str,
        preferred_store: str | None,
    ) -> str:
        self.limiter.acquire()
        prompt = self.prompt_builder(batch, location, city, preferred_store)
        return await self.breaker.call(self._complete_with_timeout, prompt)

    async def _price_batch(
        self,
        batch: list[IngredientRequest],
        location: str,
        city: str,
        preferred_store: str | None,
        cultural_context: str | None,
    ) -> list[_Priced]:
        try:
            content = await self._fetch(batch, location, city, preferred_store)
        except UpstreamTimeout as e:
            logger.warning(f"Pricing batch timed out, using estimates: {e}")
            return [self._estimated(request, location) for request in batch]
        except (CircuitOpenError, RateLimitExceeded) as e:
            logger.warning(f"Pricing call skipped ({type(e).__name__}), trying stale cache")
            stale = await self._stale_results(batch, location, cultural_context)
            return [item or self._estimated(request, location) for request, item in zip(batch, stale)]
        except UpstreamHTTPError as e:
            stale = await self._stale_results(batch, location, cultural_context)
            if all(stale):
                logger.warning(f"Pricing API HTTP {e.status_code}, serving stale cache")
                return [item for item in stale if item is not None]
            raise

        try:
            records = self._parse(content, batch)
        except ParseFailure:
            logger.warning("No price records in pricing response, using text fallback")
            records = [parse_text_response(content, request.name) for request in batch]

        priced: list[_Priced] = []
        used: set[int] = set()
        for position, request in enumerate(batch):
            try:
                record = self._match_record(request, position, records, used)
                if record is None:
                    priced.append(self._unavailable(request))
                    continue
                priced.append(
                    await self._from_record(request, record, location, city, cultural_context)
                )
            except Exception:
                logger.exception(f"Failed to price {request.name!r}")
                priced.append(self._unavailable(request))
        return priced

    def _parse(self, content: str, batch: list[IngredientRequest]) -> list[dict[str, Any]]:
        records = parse_records(content)
        if not records:
            raise ParseFailure(f"No price records for {len(batch)} ingredients")
        return records

    async def _stale_results(
        self,
        batch: list[IngredientRequest],
        location: str,
        cultural_context: str | None,
    ) -> list[_Priced | None]:
        if self.cache is None:
            return [None] * len(batch)

        stale = await self.cache.get_stale([r.name for r in batch], location)
        by_key: dict[str, CachedPrice] = {}
        for entry in stale:
            by_key.setdefault(entry.ingredient_name, entry)

        results: list[_Priced | None] = []
        for request in batch:
            entry = by_key.get(normalize_ingredient_key(request.name))
            if entry is None:
                results.append(None)
            else:
                results.append(self._from_cached(0, request, entry, "stale", cultural_context))
        return results

    # =========================================================================
    # Matching and result construction
    # =========================================================================

    @staticmethod
    def _match_record(
        request: IngredientRequest,
        position: int,
        records: list[dict[str, Any]],
        used: set[int],
    ) -> dict[str, Any] | None:
        """Match by exact name, then containment, then fuzzy name, then by position."""
        wanted = request.name.lower()
        names = {
            i: str(record.get("ingredient") or "").lower()
            for i, record in enumerate(records)
            if i not in used
        }

        index = next((i for i, name in names.items() if wanted and wanted == name), None)
        if index is None:
            index = next((i for i, name in names.items() if wanted and wanted in name), None)

        if index is None and wanted:
            candidates = {i: name for i, name in names.items() if name}
            best = process.extractOne(
                wanted,
                candidates,
                scorer=fuzz.token_sort_ratio,
                score_cutoff=FUZZY_MATCH_THRESHOLD,
            )
            if best:
                index = best[2]

        if index is None and position < len(records) and position not in used:
            index = position

        if index is None:
            return None
        used.add(index)
        return records[index]

    async def _from_record(
        self,
        request: IngredientRequest,
        record: dict[str, Any],
        location: str,
        city: str,
        cultural_context: str | None,
    ) -> _Priced:
        option = sanitize_option(record)
        if option.package_price <= 0:
            return self._unavailable(request)

        validation = await self.validator.validate(
            option.store_name, option.source_url, location, city, option.store_address
        )
        option.store_name = validation.store_name
        option.store_address = validation.store_address
        option.ingredient = request.name

        portion = self.resolver.resolve(option, request.amount, request.unit, request.name)
        option.portion_cost = portion

        if not option.store_name:
            confidence = NO_STORE_CONFIDENCE
        elif not validation.verified:
            confidence = UNVERIFIED_STORE_CONFIDENCE
        else:
            confidence = MATCHED_CONFIDENCE

        store_options = await self._store_options(request, record, location, city)
        alternatives = find_alternatives(request.name, cultural_context)

        if isinstance(option.unit_price, float):
            price_label: str | None = f"{option.unit_price}/unit"
        else:
            price_label = option.unit_price

        result = PricingResult(
            id=0,
            original=request.name,
            matched=option.product_name or option.store_name or "Perplexity",
            estimated_cost=portion,
            portion_cost=portion,
            package_price=option.package_price,
            package_size=option.package_size,
            confidence=confidence,
            needs_review=confidence < 0.5,
            source="perplexity",
            store_name=option.store_name,
            store_type=option.store_type,
            store_address=option.store_address,
            source_url=option.source_url,
            price_label=price_label,
            best_price_summary=(
                f"${portion:.2f} at {option.store_name}" if option.store_name else None
            ),
            store_options=store_options or None,
            alternatives=alternatives or None,
        )
        return _Priced(result=result, option=option)

    async def _store_options(
        self,
        request: IngredientRequest,
        record: dict[str, Any],
        location: str,
        city: str,
    ) -> list[StoreOption]:
        """Price the additional store choices the upstream listed under "options"."""
        raw_options = record.get("options")
        if not isinstance(raw_options, list):
            return []

        store_options: list[StoreOption] = []
        for raw in raw_options[:5]:
            if not isinstance(raw, dict):
                continue
            option = sanitize_option(raw)
            if option.package_price <= 0 or not option.store_name:
                continue
            validation = await self.validator.validate(
                option.store_name, option.source_url, location, city, option.store_address
            )
            store_options.append(
                StoreOption(
                    store_name=validation.store_name or option.store_name,
                    store_address=validation.store_address or city or location,
                    store_type=option.store_type or "mainstream",
                    price=self.resolver.resolve(option, request.amount, request.unit, request.name),
                )
            )
        return store_options

    @staticmethod
    def _estimated(request: IngredientRequest, location: str) -> _Priced:
        estimate = estimate_ingredient_cost(request, location)
        result = PricingResult(
            id=0,
            original=request.name,
            matched="Estimated price (API timeout)",
            estimated_cost=estimate,
            portion_cost=estimate,
            package_price=round(estimate * 4, 2),
            confidence=ESTIMATED_CONFIDENCE,
            needs_review=True,
            source="estimated",
            store_name="Estimated",
            store_type="fallback",
        )
        return _Priced(result=result)

    @staticmethod
    def _unavailable(request: IngredientRequest) -> _Priced:
        result = PricingResult(
            id=0,
            original=request.name,
            matched="Pricing unavailable",
            estimated_cost=0.0,
            portion_cost=0.0,
            package_price=0.0,
            confidence=UNAVAILABLE_CONFIDENCE,
            needs_review=True,
            source="unavailable",
        )
        return _Priced(result=result)
