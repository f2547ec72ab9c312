"""Test configuration and shared fixtures for the rating engine.

Every test runs against a fixed clock so that vehicle ages and age buckets do
not drift with the calendar.
"""

from collections.abc import AsyncGenerator, Callable, Generator
from datetime import date

import fakeredis
import pytest
import pytest_asyncio

from policy_rating.core.cache import Cache, CacheConfig
from policy_rating.core.config import Settings, clear_settings_cache
from policy_rating.models.rating import VehicleProfile
from policy_rating.services.rating.catalog import InMemoryRatingCatalog
from policy_rating.services.rating.rating_engine import RatingEngine
from tests.fixtures.rating_data import TODAY, seed_rating_factors


@pytest.fixture(autouse=True)
def reset_settings() -> Generator[None, None, None]:
    """Drop cached settings between tests."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def today() -> Callable[[], date]:
    """Fixed clock."""
    return lambda: TODAY


@pytest.fixture
def settings() -> Settings:
    """Settings without a catalog deadline."""
    return Settings()


@pytest.fixture
def catalog() -> InMemoryRatingCatalog:
    """Catalog seeded with the standard OC/AC/NNW table."""
    return InMemoryRatingCatalog(seed_rating_factors())


@pytest.fixture
def engine(
    catalog: InMemoryRatingCatalog,
    today: Callable[[], date],
    settings: Settings,
) -> RatingEngine:
    """Rating engine over the seeded catalog."""
    return RatingEngine(catalog, today=today, settings=settings)


@pytest.fixture
def make_vehicle() -> Callable[..., VehicleProfile]:
    """Factory for vehicles; defaults to a 3 year old 1600cc / 132HP car."""

    def _make(
        engine_capacity_cc: int = 1600,
        power_hp: int = 132,
        first_registration_date: date = date(2022, 3, 15),
    ) -> VehicleProfile:
        return VehicleProfile(
            engine_capacity_cc=engine_capacity_cc,
            power_hp=power_hp,
            first_registration_date=first_registration_date,
        )

    return _make


@pytest_asyncio.fixture
async def fake_cache() -> AsyncGenerator[Cache, None]:
    """Cache backed by an in-process fake Redis server."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    cache = Cache(
        redis_client=client,
        config=CacheConfig(url="redis://fake:6379/0", default_ttl=600),
    )
    yield cache
    await cache.disconnect()
