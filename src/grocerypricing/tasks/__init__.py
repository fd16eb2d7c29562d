"""Celery tasks for background job processing."""

from grocerypricing.tasks.cache import cleanup_price_cache_task

__all__ = [
    "cleanup_price_cache_task",
]
