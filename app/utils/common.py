"""
Common utilities shared across clients and services.

Provides centralized implementations for:
- Great-circle distance (haversine)
- Point geometry parsing/formatting
- Cache key construction
- ISO-8601 timestamp parsing
- Social post urgency classification
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from ..models import GeoPoint, Priority


# Mean Earth radius in kilometers
EARTH_RADIUS_KM = 6371.0

# Classification keywords (checked in this order, first match wins)
URGENT_KEYWORDS = ("sos", "urgent", "emergency", "help", "trapped", "critical")
HIGH_KEYWORDS = ("need", "require", "assistance", "rescue")

# Ordering used when ranking posts (higher = more urgent)
PRIORITY_RANK = {
    Priority.URGENT: 3,
    Priority.HIGH: 2,
    Priority.MEDIUM: 1,
}

# Timestamps must at least start with a calendar date
ISO_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")

_DATETIME_ADAPTER = TypeAdapter(datetime)

# Matches "POINT(lng lat)", optionally preceded by an EWKT SRID prefix
POINT_PATTERN = re.compile(
    r"^\s*(?:SRID=\d+;)?\s*POINT\s*\(\s*([^)]+?)\s*\)\s*$",
    re.IGNORECASE,
)


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two points in kilometers.

    Args:
        lat1, lng1: First point in degrees
        lat2, lng2: Second point in degrees

    Returns:
        Distance in km on a sphere of radius 6371 km

    Example:
        >>> round(haversine_km(40.71, -74.00, 40.70, -74.00), 2)
        1.11
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Rounding can push a slightly above 1 for antipodal points
    a = min(1.0, max(0.0, a))

    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def is_valid_coordinate(lat: Any, lng: Any) -> bool:
    """Check that lat/lng are finite numbers within WGS84 bounds."""
    if isinstance(lat, bool) or isinstance(lng, bool):
        return False
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180


def parse_point(value: Any) -> Optional[GeoPoint]:
    """
    Parse a stored POINT(lng lat) geometry.

    Returns None for missing, non-string or malformed values, and for
    coordinates outside valid ranges.

    Example:
        >>> parse_point("POINT(-74.006 40.7128)")
        GeoPoint(lat=40.7128, lng=-74.006)
        >>> parse_point("POINT(abc)") is None
        True
    """
    if not isinstance(value, str):
        return None

    match = POINT_PATTERN.match(value)
    if not match:
        return None

    parts = match.group(1).split()
    if len(parts) != 2:
        return None

    try:
        lng, lat = float(parts[0]), float(parts[1])
    except ValueError:
        return None

    if not is_valid_coordinate(lat, lng):
        return None

    return GeoPoint(lat=lat, lng=lng)


def format_point(lat: float, lng: float) -> str:
    """Serialize coordinates as a POINT(lng lat) geometry string."""
    return f"POINT({lng} {lat})"


def generate_cache_key(prefix: str, *params: Any) -> str:
    """
    Build a namespaced cache key.

    Example:
        >>> generate_cache_key("social_media", "flood,help", "global")
        'social_media:flood,help:global'
    """
    return ":".join([prefix, *(str(p) for p in params)])


def classify_priority(content: Optional[str]) -> Priority:
    """
    Classify a post's urgency by keyword scan.

    Urgent keywords win over high keywords; anything else is medium.
    Matching is case-insensitive substring search.

    Example:
        >>> classify_priority("SOS need help now")
        <Priority.URGENT: 'urgent'>
        >>> classify_priority("need food supplies")
        <Priority.HIGH: 'high'>
    """
    text = (content or "").lower()

    if any(keyword in text for keyword in URGENT_KEYWORDS):
        return Priority.URGENT
    if any(keyword in text for keyword in HIGH_KEYWORDS):
        return Priority.HIGH
    return Priority.MEDIUM


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    Accepts any fractional-second precision (PostgreSQL trims trailing
    zeros) and a trailing "Z". Naive values are taken as UTC.

    Returns:
        The parsed datetime, or None if the value is not a timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and ISO_DATE_PREFIX.match(value.strip()):
        try:
            parsed = _DATETIME_ADAPTER.validate_python(value.strip())
        except ValidationError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
