"""Tests for Celery configuration and cache maintenance tasks."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from grocerypricing.celery_app import celery_app
from grocerypricing.config import Settings
from grocerypricing.database import Base
from grocerypricing.pricing.cache import PriceCache, PriceCacheEntry
from grocerypricing.tasks.cache import cleanup_price_cache, cleanup_price_cache_task


@pytest.fixture
def cache_db_url(tmp_path, monkeypatch):
    """File-backed SQLite database with the cache table, used as the task's database."""
    path = tmp_path / "cache.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()

    url = f"sqlite+aiosqlite:///{path}"
    monkeypatch.setattr("grocerypricing.tasks.cache.get_settings", lambda: Settings(database_url=url))
    return url


def _entry(name: str) -> PriceCacheEntry:
    return PriceCacheEntry(ingredient_name=name, location="30309", package_price=2.0, portion_cost=0.5)


class TestCeleryConfiguration:
    """Tests for Celery configuration and task registration."""

    def test_celery_app_configured(self):
        assert celery_app.main == "grocerypricing"
        assert "redis" in celery_app.conf.broker_url

    def test_cleanup_task_registered(self):
        assert "grocerypricing.tasks.cache.cleanup_price_cache_task" in celery_app.tasks

    def test_beat_schedule(self):
        schedule = celery_app.conf.beat_schedule

        assert schedule["price-cache-cleanup"]["task"] == "grocerypricing.tasks.cache.cleanup_price_cache_task"

    def test_task_routes(self):
        assert celery_app.conf.task_routes["grocerypricing.tasks.cache.*"]["queue"] == "maintenance"


class TestCleanupPriceCache:
    """Tests for the cache cleanup job."""

    @pytest.mark.asyncio
    async def test_removes_only_entries_past_stale_window(self, cache_db_url):
        engine = create_async_engine(cache_db_url)
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        long_ago = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=10)
        await PriceCache(factory, clock=lambda: long_ago).put_many([_entry("old rice")])
        await PriceCache(factory).put_many([_entry("new rice")])
        await engine.dispose()

        result = await cleanup_price_cache()

        assert result == {"status": "completed", "deleted": 1, "remaining": 1, "fresh": 1, "stale": 0}

    def test_task_runs_eagerly(self, cache_db_url):
        result = cleanup_price_cache_task.apply().get()

        assert result["status"] == "completed"
        assert result["deleted"] == 0
