"""
Geocoding Service.

Resolves free-text location names to coordinates using an ordered chain
of providers (Google Maps, Mapbox, OpenStreetMap Nominatim). The first
provider to return a match wins; failures fall through to the next one.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..models import GeocodeResult, GeocodeSource
from ..utils.common import format_point, generate_cache_key, is_valid_coordinate
from .cache import CacheService, get_cache_service

logger = logging.getLogger(__name__)

GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
MAPBOX_GEOCODE_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"
NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"


class GeocodingError(Exception):
    """A provider rejected the request or returned an unusable payload."""


class GeocodingProvider(ABC):
    """One source of geocoding results."""

    source: GeocodeSource

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ):
        self._timeout = timeout_seconds
        self._client_factory = client_factory
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            if self._client_factory is not None:
                self._client = self._client_factory()
            else:
                self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    @abstractmethod
    async def resolve(self, location_name: str) -> Optional[GeocodeResult]:
        """
        Geocode a location name.

        Returns None when the provider has no match. Raises on transport
        or protocol errors.
        """

    def _result(self, lat: float, lng: float, address: Optional[str]) -> Optional[GeocodeResult]:
        if not is_valid_coordinate(lat, lng):
            logger.warning(f"{self.source.value} returned invalid coordinates: {lat}, {lng}")
            return None
        return GeocodeResult(lat=lat, lng=lng, formatted_address=address, source=self.source)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class GoogleGeocodingProvider(GeocodingProvider):
    """Google Maps Geocoding API (requires an API key)."""

    source = GeocodeSource.GOOGLE

    def __init__(self, api_key: str, **kwargs):
        super().__init__(**kwargs)
        self._api_key = api_key

    async def resolve(self, location_name: str) -> Optional[GeocodeResult]:
        client = await self._get_client()
        response = await client.get(
            GOOGLE_GEOCODE_URL,
            params={"address": location_name, "key": self._api_key},
        )
        response.raise_for_status()
        data = response.json()

        status = data.get("status", "OK")
        if status not in ("OK", "ZERO_RESULTS"):
            raise GeocodingError(f"Google status {status}: {data.get('error_message', '')}")

        results = data.get("results") or []
        if not results:
            return None

        first = results[0]
        location = first["geometry"]["location"]
        return self._result(location["lat"], location["lng"], first.get("formatted_address"))


class MapboxGeocodingProvider(GeocodingProvider):
    """Mapbox Geocoding API (requires an access token)."""

    source = GeocodeSource.MAPBOX

    def __init__(self, access_token: str, **kwargs):
        super().__init__(**kwargs)
        self._access_token = access_token

    async def resolve(self, location_name: str) -> Optional[GeocodeResult]:
        client = await self._get_client()
        response = await client.get(
            f"{MAPBOX_GEOCODE_URL}/{quote(location_name, safe='')}.json",
            params={"access_token": self._access_token, "limit": 1},
        )
        response.raise_for_status()
        features = response.json().get("features") or []
        if not features:
            return None

        lng, lat = features[0]["center"][:2]
        return self._result(lat, lng, features[0].get("place_name"))


class NominatimGeocodingProvider(GeocodingProvider):
    """OpenStreetMap Nominatim (free, no key required)."""

    source = GeocodeSource.OSM

    def __init__(self, user_agent: str = "DisasterResponseApp/1.0", **kwargs):
        super().__init__(**kwargs)
        self._user_agent = user_agent

    async def resolve(self, location_name: str) -> Optional[GeocodeResult]:
        client = await self._get_client()
        response = await client.get(
            NOMINATIM_SEARCH_URL,
            params={"q": location_name, "format": "json", "limit": 1},
            headers={"User-Agent": self._user_agent},
        )
        response.raise_for_status()
        data = response.json()
        if not data:
            return None

        first = data[0]
        # Nominatim returns coordinates as strings
        try:
            lat = float(first["lat"])
            lng = float(first["lon"])
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Unparseable Nominatim coordinates: {first}")
            return None

        return self._result(lat, lng, first.get("display_name"))


class Geocoder:
    """Cached geocoder that walks a provider fallback chain."""

    def __init__(
        self,
        providers: List[GeocodingProvider],
        cache: CacheService,
        timeout_seconds: float = 5.0,
        cache_ttl_minutes: int = 60,
    ):
        self._providers = providers
        self._cache = cache
        self._timeout = timeout_seconds
        self._ttl = cache_ttl_minutes

    @property
    def providers(self) -> List[GeocodingProvider]:
        return list(self._providers)

    async def geocode(self, location_name: Optional[str]) -> Optional[GeocodeResult]:
        """
        Resolve a location name to coordinates.

        Args:
            location_name: Free-text place name

        Returns:
            GeocodeResult tagged with the provider that produced it,
            or None if no provider found a match
        """
        name = (location_name or "").strip()
        if not name:
            return None

        cache_key = generate_cache_key("geocode", name)
        cached = await self._cache.get(cache_key)
        if cached:
            try:
                return GeocodeResult.model_validate(cached)
            except ValidationError as e:
                logger.warning(f"Discarding malformed cached geocode for {name}: {e}")

        failures: List[Tuple[str, str]] = []

        for provider in self._providers:
            try:
                result = await asyncio.wait_for(provider.resolve(name), timeout=self._timeout)
            except asyncio.TimeoutError:
                logger.error(f"{provider.source.value} geocoding timed out after {self._timeout}s")
                failures.append((provider.source.value, "timeout"))
                continue
            except Exception as e:
                logger.error(f"{provider.source.value} geocoding error: {e}")
                failures.append((provider.source.value, str(e)))
                continue

            if result is None:
                failures.append((provider.source.value, "no match"))
                continue

            await self._cache.set(cache_key, result.model_dump(mode="json"), self._ttl)
            logger.info(f"Geocoded: {name} -> {result.lat}, {result.lng} ({result.source.value})")
            return result

        logger.warning(f"Geocoding failed for '{name}': {failures}")
        return None

    async def geocode_point(self, location_name: Optional[str]) -> Optional[str]:
        """Geocode into the stored `POINT(lng lat)` form, or None when unresolved."""
        result = await self.geocode(location_name)
        if result is None:
            return None
        return format_point(result.lat, result.lng)

    async def close(self) -> None:
        for provider in self._providers:
            await provider.close()


def build_providers(settings: Settings) -> List[GeocodingProvider]:
    """Assemble the provider chain from configured credentials."""
    timeout = settings.geocode_timeout_seconds
    providers: List[GeocodingProvider] = []

    if settings.google_maps_api_key:
        providers.append(GoogleGeocodingProvider(settings.google_maps_api_key, timeout_seconds=timeout))
    if settings.mapbox_access_token:
        providers.append(MapboxGeocodingProvider(settings.mapbox_access_token, timeout_seconds=timeout))
    providers.append(NominatimGeocodingProvider(settings.nominatim_user_agent, timeout_seconds=timeout))

    return providers


# Singleton instance
_geocoder_instance: Optional[Geocoder] = None


def get_geocoder() -> Geocoder:
    """Get the singleton geocoder instance."""
    global _geocoder_instance
    if _geocoder_instance is None:
        settings = get_settings()
        _geocoder_instance = Geocoder(
            build_providers(settings),
            get_cache_service(),
            timeout_seconds=settings.geocode_timeout_seconds,
            cache_ttl_minutes=settings.geocode_cache_ttl_minutes,
        )
    return _geocoder_instance
