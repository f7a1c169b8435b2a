"""
Shared utilities for the Disaster Response API.

Pure functions used by the geospatial, geocoding, caching and
social media services.
"""

from .common import (
    haversine_km,
    is_valid_coordinate,
    parse_point,
    format_point,
    generate_cache_key,
    parse_timestamp,
    classify_priority,
    PRIORITY_RANK,
    EARTH_RADIUS_KM,
)

__all__ = [
    "haversine_km",
    "is_valid_coordinate",
    "parse_point",
    "format_point",
    "generate_cache_key",
    "parse_timestamp",
    "classify_priority",
    "PRIORITY_RANK",
    "EARTH_RADIUS_KM",
]
