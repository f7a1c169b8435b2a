"""
Business Logic Services Module.

Core services for the Disaster Response API:
- CacheService: TTL cache with lazy eviction (store table or diskcache)
- Geocoder: Location name to coordinates via a provider fallback chain
- GeospatialService: Radius search over stored point geometries
- SocialMediaService: Social post search with urgency ranking
- OfficialUpdatesService: Press-release aggregation from relief agencies
- EventBus: Fire-and-forget realtime event publishing

These services contain the primary business logic and are used by routes.
"""

from .cache import CacheService, get_cache_service
from .geocoder import Geocoder, get_geocoder
from .geospatial import GeospatialService, get_geospatial_service
from .social_media import SocialMediaService, get_social_media_service
from .official_updates import OfficialUpdatesService, get_official_updates_service
from .realtime import EventBus, ConnectionManager, get_event_bus

__all__ = [
    "CacheService",
    "get_cache_service",
    "Geocoder",
    "get_geocoder",
    "GeospatialService",
    "get_geospatial_service",
    "SocialMediaService",
    "get_social_media_service",
    "OfficialUpdatesService",
    "get_official_updates_service",
    "EventBus",
    "ConnectionManager",
    "get_event_bus",
]
