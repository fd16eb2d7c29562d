"""Tiered ingredient price cache backed by the ``ingredient_price_cache`` table.

Entries are fresh while ``now < expires_at``, stale while past expiry but
cached within the stale window, and expired after that. Stale entries are only
served as an emergency fallback when the live upstream call fails.
"""

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grocerypricing.config import get_settings
from grocerypricing.logging_config import get_logger
from grocerypricing.models import IngredientPriceCache

logger = get_logger(__name__)

INGREDIENT_KEY_MAX = 100
LOCATION_KEY_MAX = 50

_ZIP_PATTERN = re.compile(r"\b(\d{5})(?:-\d{4})?\b")
_SEPARATORS = re.compile(r"[,\s]+")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_ingredient_key(name: str) -> str:
    """Lower-case, collapse commas/whitespace and cap the length."""
    key = _SEPARATORS.sub(" ", (name or "").lower().strip()).strip()
    return key[:INGREDIENT_KEY_MAX]


def normalize_location_key(location: str) -> str:
    """Prefer a 5-digit ZIP (ZIP+4 is truncated), else the collapsed city text."""
    text = location or "default"
    match = _ZIP_PATTERN.search(text)
    if match:
        return match.group(1)
    key = _SEPARATORS.sub(" ", text.lower().strip()).strip()
    return key[:LOCATION_KEY_MAX]


@dataclass
class CachedPrice:
    """A price read back from the cache."""

    ingredient_name: str
    location: str
    package_price: float
    portion_cost: float
    product_name: str
    package_size: str
    store_name: str
    store_type: str
    unit_price: str | None
    confidence: float
    source: str
    cached_at: datetime
    expires_at: datetime

    @classmethod
    def from_row(cls, row: IngredientPriceCache) -> "CachedPrice":
        return cls(
            ingredient_name=row.ingredient_name,
            location=row.location,
            package_price=row.package_price,
            portion_cost=row.portion_cost,
            product_name=row.product_name,
            package_size=row.package_size,
            store_name=row.store_name,
            store_type=row.store_type,
            unit_price=row.unit_price,
            confidence=row.confidence,
            source=row.source,
            cached_at=row.cached_at,
            expires_at=row.expires_at,
        )


@dataclass
class PriceCacheEntry:
    """A price to be written to the cache."""

    ingredient_name: str
    location: str
    package_price: float
    portion_cost: float
    product_name: str | None = None
    package_size: str | None = None
    store_name: str | None = None
    store_type: str | None = None
    unit_price: str | None = None
    confidence: float | None = None
    source: str | None = None


@dataclass
class CacheLookup:
    """Result of a batch cache lookup."""

    cached: list[CachedPrice] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


@dataclass
class CacheStats:
    """Entry counts per cache tier."""

    total: int = 0
    fresh: int = 0
    stale: int = 0
    expired: int = 0


class PriceCache:
    """Ingredient price cache keyed by (ingredient, location)."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_hours: float | None = None,
        stale_hours: float | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        settings = get_settings()
        self._session_factory = session_factory
        self.ttl_hours = ttl_hours if ttl_hours is not None else settings.cache_ttl_hours
        self.stale_hours = stale_hours if stale_hours is not None else settings.cache_stale_hours
        self._clock = clock

    async def get_many(self, names: Sequence[str], location: str) -> CacheLookup:
        """
        Look up fresh entries for ``names`` at ``location``.

        Returns:
            CacheLookup whose ``missing`` keeps the caller's original spelling.
            On storage errors every name is reported missing.
        """
        keys = [normalize_ingredient_key(name) for name in names]
        location_key = normalize_location_key(location)
        now = self._clock()

        try:
            async with self._session_factory() as session:
                stmt = (
                    select(IngredientPriceCache)
                    .where(IngredientPriceCache.ingredient_name.in_(sorted(set(keys))))
                    .where(IngredientPriceCache.location == location_key)
                    .where(IngredientPriceCache.expires_at > now)
                    .order_by(IngredientPriceCache.cached_at.desc())
                )
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Cache lookup failed: {e}")
            return CacheLookup(cached=[], missing=list(names))

        by_key: dict[str, CachedPrice] = {}
        for row in rows:
            by_key.setdefault(row.ingredient_name, CachedPrice.from_row(row))

        cached: list[CachedPrice] = []
        missing: list[str] = []
        seen: set[str] = set()
        for name, key in zip(names, keys):
            if key in by_key:
                if key not in seen:
                    cached.append(by_key[key])
                    seen.add(key)
            else:
                missing.append(name)

        logger.info(f"Cache hit: {len(cached)}/{len(names)} ingredients at {location_key}")
        return CacheLookup(cached=cached, missing=missing)

    async def put_many(self, entries: Sequence[PriceCacheEntry], ttl_hours: float | None = None) -> bool:
        """
        Upsert ``entries``; the last entry wins for duplicate keys.

        Returns:
            True on success, False if the write failed.
        """
        if not entries:
            return True

        ttl = ttl_hours if ttl_hours is not None else self.ttl_hours
        now = self._clock()
        expires_at = now + timedelta(hours=ttl)

        rows: dict[tuple[str, str], dict] = {}
        for entry in entries:
            key = (
                normalize_ingredient_key(entry.ingredient_name),
                normalize_location_key(entry.location),
            )
            rows[key] = {
                "ingredient_name": key[0],
                "location": key[1],
                "package_price": entry.package_price,
                "portion_cost": entry.portion_cost,
                "product_name": (entry.product_name or entry.ingredient_name)[:200],
                "package_size": (entry.package_size or "standard")[:100],
                "store_name": (entry.store_name or "Unknown")[:100],
                "store_type": (entry.store_type or "mainstream")[:50],
                "unit_price": entry.unit_price or f"${entry.package_price / 10:.2f}",
                "confidence": entry.confidence or 0.5,
                "source": entry.source or "estimated",
                "cached_at": now,
                "expires_at": expires_at,
            }

        try:
            async with self._session_factory() as session:
                insert = pg_insert if session.bind.dialect.name == "postgresql" else sqlite_insert
                stmt = insert(IngredientPriceCache).values(list(rows.values()))
                update_columns = {
                    column: stmt.excluded[column]
                    for column in rows[next(iter(rows))]
                    if column not in ("ingredient_name", "location")
                }
                stmt = stmt.on_conflict_do_update(
                    index_elements=["ingredient_name", "location"],
                    set_=update_columns,
                )
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Cache write failed: {e}")
            return False

        logger.info(f"Cached pricing for {len(rows)} ingredients")
        return True

    async def get_stale(self, names: Sequence[str], location: str) -> list[CachedPrice]:
        """Return expired entries still inside the stale window."""
        keys = {normalize_ingredient_key(name) for name in names}
        location_key = normalize_location_key(location)
        now = self._clock()
        stale_threshold = now - timedelta(hours=self.stale_hours)

        try:
            async with self._session_factory() as session:
                stmt = (
                    select(IngredientPriceCache)
                    .where(IngredientPriceCache.ingredient_name.in_(sorted(keys)))
                    .where(IngredientPriceCache.location == location_key)
                    .where(IngredientPriceCache.expires_at <= now)
                    .where(IngredientPriceCache.cached_at > stale_threshold)
                    .order_by(IngredientPriceCache.cached_at.desc())
                )
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Stale cache lookup failed: {e}")
            return []

        logger.info(f"Found {len(rows)} stale prices as fallback")
        return [CachedPrice.from_row(row) for row in rows]

    async def cleanup_expired(self) -> int:
        """Delete entries past both their expiry and the stale window."""
        now = self._clock()
        stale_threshold = now - timedelta(hours=self.stale_hours)

        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(IngredientPriceCache)
                    .where(IngredientPriceCache.expires_at <= now)
                    .where(IngredientPriceCache.cached_at <= stale_threshold)
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Cache cleanup failed: {e}")
            return 0

        deleted = result.rowcount or 0
        logger.info(f"Cleaned up {deleted} expired cache entries")
        return deleted

    async def stats(self) -> CacheStats:
        """Count entries per tier."""
        now = self._clock()
        stale_threshold = now - timedelta(hours=self.stale_hours)
        count = select(func.count()).select_from(IngredientPriceCache)

        try:
            async with self._session_factory() as session:
                total = (await session.execute(count)).scalar_one()
                fresh = (
                    await session.execute(count.where(IngredientPriceCache.expires_at > now))
                ).scalar_one()
                stale = (
                    await session.execute(
                        count.where(IngredientPriceCache.expires_at <= now).where(
                            IngredientPriceCache.cached_at > stale_threshold
                        )
                    )
                ).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Cache stats failed: {e}")
            return CacheStats()

        return CacheStats(total=total, fresh=fresh, stale=stale, expired=total - fresh - stale)
