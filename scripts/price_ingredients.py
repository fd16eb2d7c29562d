"""Script to price ingredients from the command line and warm the price cache.

Prices are written to the cache table like any API request, so running this
ahead of time makes later requests for the same location cache hits.

Run with: uv run python scripts/price_ingredients.py 30309 rice "miso paste" nori
Plan with: uv run python scripts/price_ingredients.py 30309 rice nori --plan --store Kroger
Cache tiers: uv run python scripts/price_ingredients.py --stats

Requires PostgreSQL (via Docker or locally) and PERPLEXITY_API_KEY for live prices.
"""

import argparse
import asyncio

from grocerypricing.config import get_settings
from grocerypricing.database import AsyncSessionLocal, Base, async_engine
from grocerypricing.logging_config import configure_logging
from grocerypricing.plan.optimizer import ShoppingOptimizer
from grocerypricing.pricing.cache import PriceCache
from grocerypricing.pricing.client import PerplexityClient
from grocerypricing.pricing.exceptions import PricingError
from grocerypricing.pricing.orchestrator import PricingOrchestrator
from grocerypricing.pricing.resilience import ResilienceRegistry


async def init_db() -> None:
    """Create the cache table if needed."""
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def price(location: str, ingredients: list[str], store: str | None, plan: bool) -> None:
    """Price ingredients and print the results."""
    await init_db()
    client = PerplexityClient()
    orchestrator = PricingOrchestrator(client, ResilienceRegistry(), cache=PriceCache(AsyncSessionLocal))

    print(f"\n{'='*60}")
    print(f"Pricing {len(ingredients)} ingredients at {location}")
    print(f"{'='*60}\n")

    try:
        outcome = await orchestrator.price(ingredients, location, preferred_store=store)
    except PricingError as e:
        print(f"Pricing failed: {e}")
        return
    finally:
        await client.close()

    for r in outcome.results:
        print(f"{r.original}")
        print(f"  Product: {r.matched}")
        print(f"  Store: {r.store_name or 'N/A'}")
        print(f"  Package: ${r.package_price:.2f} ({r.package_size or 'N/A'})")
        print(f"  Portion: ${r.portion_cost:.2f}")
        print(f"  Confidence: {r.confidence:.2f}{' (review)' if r.needs_review else ''}")
        print(f"  Source: {r.source}")
        print()

    print(f"Total: ${outcome.total_estimated:.2f} (source: {outcome.source})")

    if plan and outcome.options:
        preferred = store or outcome.options[0].store_name or "Walmart"
        shopping = ShoppingOptimizer().optimize(ingredients, preferred, location, outcome.options)

        print(f"\n{'='*60}")
        print(f"Shopping plan ({shopping.efficiency}% at {shopping.primary_store.name})")
        print(f"{'='*60}\n")
        for name, assignment in shopping.assignments.items():
            print(f"  {name}: {assignment.assigned_store} ${assignment.package_price:.2f}")
        print(f"\nStores: {shopping.total_stores}, ~{shopping.estimated_time_minutes} min, "
              f"${shopping.total_cost:.2f}")


async def show_stats(cleanup: bool) -> None:
    """Print cache tier counts, optionally after a cleanup."""
    await init_db()
    cache = PriceCache(AsyncSessionLocal)

    if cleanup:
        deleted = await cache.cleanup_expired()
        print(f"Deleted {deleted} expired entries")

    stats = await cache.stats()
    print(f"\n{'='*60}")
    print(f"Database: {get_settings().database_url}")
    print(f"Total entries: {stats.total}")
    print(f"{'='*60}\n")
    print(f"  Fresh: {stats.fresh}")
    print(f"  Stale: {stats.stale}")
    print(f"  Expired: {stats.expired}")

    await async_engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Price ingredients and warm the price cache")
    parser.add_argument("location", nargs="?", help="ZIP code or city")
    parser.add_argument("ingredients", nargs="*", help="Ingredient names")
    parser.add_argument("--store", "-s", type=str, help="Preferred store")
    parser.add_argument("--plan", "-p", action="store_true", help="Print a shopping plan")
    parser.add_argument("--stats", action="store_true", help="Show cache tier counts")
    parser.add_argument("--cleanup", action="store_true", help="Delete expired entries (with --stats)")

    args = parser.parse_args()
    configure_logging(log_level="WARNING")

    if args.stats:
        asyncio.run(show_stats(cleanup=args.cleanup))
    elif args.location and args.ingredients:
        asyncio.run(price(args.location, args.ingredients, args.store, args.plan))
    else:
        parser.error("location and at least one ingredient are required")


if __name__ == "__main__":
    main()
