"""Pydantic models for the Disaster Response API."""

import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GeocodeSource(str, Enum):
    """Geocoding provider that produced a result."""
    GOOGLE = "google"
    MAPBOX = "mapbox"
    OSM = "osm"


class Priority(str, Enum):
    """Urgency class of a social media post."""
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"


class ResourceType(str, Enum):
    """Kinds of relief resources."""
    SHELTER = "shelter"
    HOSPITAL = "hospital"
    FOOD = "food"
    WATER = "water"
    MEDICAL = "medical"
    RESCUE = "rescue"


class VerificationStatus(str, Enum):
    """Report verification state."""
    PENDING = "pending"
    VERIFIED = "verified"
    FLAGGED = "flagged"


class GeoPoint(BaseModel):
    """A latitude/longitude pair."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    @field_validator("lat", "lng")
    @classmethod
    def validate_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("Coordinate must be a finite number")
        return v


class GeocodeResult(BaseModel):
    """Resolved coordinates for a location name."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    formatted_address: Optional[str] = None
    source: GeocodeSource


class SocialPost(BaseModel):
    """A social media post with its derived priority."""

    id: str
    content: str
    user: str
    timestamp: datetime
    engagement: Optional[Dict[str, int]] = None
    priority: Priority = Priority.MEDIUM


class OfficialUpdate(BaseModel):
    """A normalized press release from an official source."""

    id: str
    source: str
    title: str
    summary: str
    link: str
    date: datetime
    type: str = "official"


# ============== Request Models ==============


class DisasterCreate(BaseModel):
    """Input schema for creating or replacing a disaster."""

    title: str = Field(..., min_length=3, max_length=200)
    location_name: str = Field(..., min_length=2, max_length=200)
    description: str = Field(..., min_length=10, max_length=2000)
    tags: List[str] = Field(default_factory=list)

    @field_validator("title", "location_name", "description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Field cannot be blank")
        return v


class ResourceCreate(BaseModel):
    """Input schema for creating a resource."""

    disaster_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=2, max_length=200)
    location_name: str = Field(..., min_length=2, max_length=200)
    type: ResourceType


class ResourceUpdate(BaseModel):
    """Partial update for a resource."""

    name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    location_name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    type: Optional[ResourceType] = None


class ReportCreate(BaseModel):
    """Input schema for a citizen report."""

    disaster_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=5, max_length=1000)
    image_url: Optional[str] = Field(default=None, max_length=2000)


class ReportUpdate(BaseModel):
    """Partial update for a report. Only admins may change verification_status."""

    content: Optional[str] = Field(default=None, min_length=5, max_length=1000)
    image_url: Optional[str] = Field(default=None, max_length=2000)
    verification_status: Optional[VerificationStatus] = None


class GeocodeRequest(BaseModel):
    """Input schema for the geocoding endpoint."""

    location_name: str = Field(..., min_length=1, max_length=200)


# ============== Response Models ==============


class ErrorResponse(BaseModel):
    """Error envelope."""

    success: bool = False
    error: str
    code: str
    request_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    checks: Dict[str, str]
    uptime_seconds: int = 0


def envelope(data: Any, **meta: Any) -> Dict[str, Any]:
    """Wrap a payload in the success envelope."""
    response: Dict[str, Any] = {"success": True, "data": data}
    if meta:
        response["meta"] = meta
    return response
