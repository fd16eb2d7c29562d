"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from grocerypricing.database import Base
from grocerypricing.models import IngredientPriceCache  # noqa: F401  (registers the table)
from grocerypricing.pricing.models import SanitizedPriceOption

# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (require external services)"
    )
    config.addinivalue_line("markers", "slow: marks tests as slow running")


# =============================================================================
# Clocks
# =============================================================================


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDatetimeClock:
    """Manually advanced clock returning naive UTC datetimes."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 6, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, hours: float) -> None:
        self.now += timedelta(hours=hours)


@pytest.fixture
def clock():
    """Epoch-seconds clock for breakers and rate limiters."""
    return FakeClock()


@pytest.fixture
def datetime_clock():
    """Datetime clock for the price cache."""
    return FakeDatetimeClock()


# =============================================================================
# SQLite Test Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def cache_session_factory():
    """In-memory SQLite database with the price cache table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


# =============================================================================
# HTTP Mock Fixtures
# =============================================================================


def _make_response(status_code: int = 200, json_data=None, text: str = "") -> MagicMock:
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.text = text
    response.json.return_value = json_data
    return response


@pytest.fixture
def mock_http_client():
    """Mock httpx.AsyncClient with async get/post."""
    client = MagicMock(spec=httpx.AsyncClient)
    client.post = AsyncMock()
    client.get = AsyncMock()
    client.is_closed = False
    return client


def _chat_completion(content: str) -> dict:
    return {
        "id": "cmpl-test",
        "model": "sonar",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
    }


@pytest.fixture
def make_response():
    """Factory for mock httpx.Response objects."""
    return _make_response


@pytest.fixture
def chat_completion():
    """Factory wrapping assistant content in a chat-completions body."""
    return _chat_completion


# =============================================================================
# Pricing Data Fixtures
# =============================================================================


@pytest.fixture
def atlanta_pricing_options():
    """Priced options for a four-ingredient Japanese dinner in Atlanta."""
    return [
        SanitizedPriceOption(
            ingredient="chicken thighs",
            store_name="Kroger",
            product_name="Kroger Boneless Chicken Thighs",
            package_size="1.5 lb",
            package_price=6.49,
            portion_cost=4.33,
            store_address="1700 Monroe Dr NE, Atlanta, GA 30324",
            source_url="https://www.kroger.com/p/chicken-thighs",
        ),
        SanitizedPriceOption(
            ingredient="green onion",
            store_name="Kroger",
            product_name="Green Onions",
            package_size="1 bunch",
            package_price=0.99,
            portion_cost=0.5,
        ),
        SanitizedPriceOption(
            ingredient="rice",
            store_name="Kroger",
            product_name="Kroger Long Grain White Rice",
            package_size="2 lb",
            package_price=2.19,
            portion_cost=0.55,
        ),
        SanitizedPriceOption(
            ingredient="rice",
            store_name="Aldi",
            product_name="Long Grain Rice",
            package_size="2 lb",
            package_price=1.79,
            portion_cost=0.45,
        ),
        SanitizedPriceOption(
            ingredient="instant dashi stock powder",
            store_name="H Mart",
            store_type="ethnic",
            product_name="Ajinomoto Hondashi",
            package_size="1.94 oz",
            package_price=4.99,
            portion_cost=0.5,
            store_address="2550 Pleasant Hill Rd, Duluth, GA 30096",
        ),
    ]
