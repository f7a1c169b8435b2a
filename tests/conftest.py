"""
Pytest configuration and shared fixtures for the Disaster Response API tests.

Every fixture runs fully offline: the relational store is in-memory and
geocoding providers are scripted fakes.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

# Set environment variables BEFORE any app imports so settings never
# pick up real credentials or write request logs during tests
os.environ["REQUEST_LOG_FILE"] = ""
os.environ["CACHE_BACKEND"] = "table"
for _var in (
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "SUPABASE_SERVICE_KEY",
    "GOOGLE_MAPS_API_KEY",
    "MAPBOX_ACCESS_TOKEN",
    "TWITTER_BEARER_TOKEN",
):
    os.environ.pop(_var, None)

from app.clients.store import InMemoryStore  # noqa: E402
from app.models import GeocodeResult, GeocodeSource  # noqa: E402
from app.services.cache import CacheService, TableCacheBackend  # noqa: E402
from app.services.geocoder import Geocoder, GeocodingProvider  # noqa: E402


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeProvider(GeocodingProvider):
    """Geocoding provider with a scripted outcome."""

    def __init__(
        self,
        source: GeocodeSource,
        lat: float = 40.7128,
        lng: float = -74.006,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        no_match: bool = False,
    ):
        super().__init__()
        self.source = source
        self._lat = lat
        self._lng = lng
        self._error = error
        self._delay = delay
        self._no_match = no_match
        self.calls: List[str] = []

    async def resolve(self, location_name: str) -> Optional[GeocodeResult]:
        self.calls.append(location_name)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        if self._no_match:
            return None
        return self._result(self._lat, self._lng, f"{location_name} (resolved)")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def cache(store: InMemoryStore, clock: FakeClock) -> CacheService:
    return CacheService(TableCacheBackend(store), clock=clock)


@pytest.fixture
def geocoder(cache: CacheService) -> Geocoder:
    return Geocoder([FakeProvider(GeocodeSource.GOOGLE)], cache)
