"""Celery tasks for price cache maintenance."""

import asyncio
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from grocerypricing.celery_app import celery_app
from grocerypricing.config import get_settings
from grocerypricing.logging_config import LoggingContext, configure_logging, get_logger
from grocerypricing.pricing.cache import PriceCache

# Configure logging for Celery workers
configure_logging()
logger = get_logger(__name__)


def run_async(coro: Any) -> Any:
    """Run an async coroutine in a synchronous context."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            # If there's already an event loop, run in a separate thread
            import concurrent.futures

            with concurrent.futures.ThreadPoolExecutor() as executor:
                future = executor.submit(asyncio.run, coro)
                return future.result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        # No event loop exists, create one
        return asyncio.run(coro)


async def cleanup_price_cache() -> dict[str, Any]:
    """
    Delete expired cache entries and report the remaining tiers.

    Uses its own engine without pooling so connections never outlive the
    event loop the task runs in.
    """
    engine = create_async_engine(get_settings().database_url, poolclass=NullPool)
    try:
        cache = PriceCache(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
        deleted = await cache.cleanup_expired()
        stats = await cache.stats()
    finally:
        await engine.dispose()

    return {
        "status": "completed",
        "deleted": deleted,
        "remaining": stats.total,
        "fresh": stats.fresh,
        "stale": stats.stale,
    }


@celery_app.task(
    bind=True,
    name="grocerypricing.tasks.cache.cleanup_price_cache_task",
    max_retries=3,
    default_retry_delay=300,  # 5 minutes
    autoretry_for=(Exception,),
    retry_backoff=True,
    acks_late=True,
)
def cleanup_price_cache_task(self) -> dict[str, Any]:
    """
    Celery task removing price cache entries past the stale window.

    Scheduled every 6 hours by Celery Beat.

    Returns:
        dict with the number of deleted entries and the remaining tier counts.
    """
    task_id = self.request.id

    with LoggingContext(task_id=task_id):
        logger.info(f"Starting price cache cleanup task {task_id}")

        try:
            result = run_async(cleanup_price_cache())
            logger.info(
                f"Price cache cleanup {task_id} removed {result['deleted']} entries, "
                f"{result['remaining']} remain"
            )
            return result

        except Exception as e:
            logger.exception(f"Price cache cleanup {task_id} failed with error: {e}")
            # Re-raise to trigger Celery retry mechanism
            raise
