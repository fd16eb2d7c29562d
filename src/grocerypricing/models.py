"""SQLAlchemy database models."""

from datetime import datetime

from sqlalchemy import DateTime, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from grocerypricing.database import Base


class IngredientPriceCache(Base):
    """Cached price resolution for one ingredient at one location."""

    __tablename__ = "ingredient_price_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ingredient_name: Mapped[str] = mapped_column(String(100), nullable=False)
    location: Mapped[str] = mapped_column(String(50), nullable=False)
    package_price: Mapped[float] = mapped_column(Float, nullable=False)
    portion_cost: Mapped[float] = mapped_column(Float, nullable=False)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    package_size: Mapped[str] = mapped_column(String(100), default="standard")
    store_name: Mapped[str] = mapped_column(String(100), default="Unknown")
    store_type: Mapped[str] = mapped_column(String(50), default="mainstream")
    unit_price: Mapped[str | None] = mapped_column(String(50), nullable=True)
    confidence: Mapped[float] = mapped_column(Float, default=0.5)
    source: Mapped[str] = mapped_column(String(20), default="estimated")  # "perplexity", "estimated"
    cached_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("ingredient_name", "location", name="uq_ingredient_cache_key"),
        Index("idx_ingredient_cache_lookup", "ingredient_name", "location", "expires_at"),
        Index("idx_ingredient_cache_cleanup", "expires_at"),
        Index("idx_ingredient_cache_source", "source", "cached_at"),
    )
