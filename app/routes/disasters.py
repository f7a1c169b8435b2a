"""
Disaster Routes.

CRUD over disaster records. Writes geocode the location name, extend the
audit trail and publish a `disaster_updated` event.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from ..clients.postgrest_client import get_store
from ..clients.store import BaseStore
from ..middleware.auth import get_current_user, require_role
from ..middleware.error_handler import APIError
from ..models import DisasterCreate, envelope
from ..services.geocoder import Geocoder, get_geocoder
from ..services.geospatial import GeospatialService, get_geospatial_service
from ..services.realtime import DISASTER_UPDATED, EventBus, get_event_bus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/disasters", tags=["disasters"])

# Related rows embedded in reads
DISASTER_LIST_COLUMNS = "*,reports(count)"
DISASTER_DETAIL_COLUMNS = "*,reports(*),resources(*)"


def audit_entry(action: str, user_id: str, details: str) -> Dict[str, Any]:
    return {
        "action": action,
        "user_id": user_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "details": details,
    }


@router.get("")
async def list_disasters(
    tag: Optional[str] = None,
    location: Optional[str] = None,
    owner_id: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    store: BaseStore = Depends(get_store),
):
    """List disasters, newest first."""
    query = (
        store.table("disasters")
        .select(DISASTER_LIST_COLUMNS)
        .order("created_at", desc=True)
        .range(offset, offset + limit - 1)
    )
    if tag:
        query = query.contains("tags", [tag])
    if owner_id:
        query = query.eq("owner_id", owner_id)
    if location:
        query = query.ilike("location_name", f"%{location}%")

    disasters = await query.execute()
    logger.info(f"Retrieved {len(disasters)} disasters")

    return envelope(disasters, count=len(disasters), limit=limit, offset=offset)


@router.get("/nearby")
async def nearby_disasters(
    lat: float,
    lng: float,
    radius: float = Query(default=50, ge=0),
    geospatial: GeospatialService = Depends(get_geospatial_service),
):
    """Disasters within `radius` km of a point, nearest first."""
    disasters = await geospatial.find_disasters_in_area(lat, lng, radius)
    return envelope(
        disasters,
        center={"lat": lat, "lng": lng},
        radius=radius,
        count=len(disasters),
    )


@router.get("/{disaster_id}")
async def get_disaster(disaster_id: str, store: BaseStore = Depends(get_store)):
    disaster = await store.table("disasters").select(DISASTER_DETAIL_COLUMNS).eq("id", disaster_id).single()
    return envelope(disaster)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_disaster(
    body: DisasterCreate,
    user: Dict[str, str] = Depends(get_current_user),
    store: BaseStore = Depends(get_store),
    geocoder: Geocoder = Depends(get_geocoder),
    events: EventBus = Depends(get_event_bus),
):
    """Create a disaster, geocoding its location when possible."""
    location = await geocoder.geocode_point(body.location_name)
    if location is None:
        logger.warning(f"Creating disaster without coordinates: {body.location_name}")

    disaster = await store.table("disasters").insert({
        "title": body.title,
        "location_name": body.location_name,
        "location": location,
        "description": body.description,
        "tags": body.tags,
        "owner_id": user["id"],
        "audit_trail": [audit_entry("create", user["id"], "Disaster record created")],
    })

    events.publish(DISASTER_UPDATED, {"type": "create", "data": disaster}, disaster["id"])
    logger.info(f"Disaster created: {disaster['id']} by {user['id']}")

    return envelope(disaster)


@router.put("/{disaster_id}")
async def update_disaster(
    disaster_id: str,
    body: DisasterCreate,
    user: Dict[str, str] = Depends(get_current_user),
    store: BaseStore = Depends(get_store),
    geocoder: Geocoder = Depends(get_geocoder),
    events: EventBus = Depends(get_event_bus),
):
    """Replace a disaster. Only the owner or an admin may do this."""
    existing = await store.table("disasters").select("*").eq("id", disaster_id).single()

    if existing.get("owner_id") != user["id"] and user["role"] != "admin":
        raise APIError(code="FORBIDDEN", message="Insufficient permissions", status_code=403)

    location = existing.get("location")
    if body.location_name != existing.get("location_name"):
        location = await geocoder.geocode_point(body.location_name) or location

    audit_trail = list(existing.get("audit_trail") or [])
    audit_trail.append(audit_entry("update", user["id"], "Disaster record updated"))

    updated = await store.table("disasters").eq("id", disaster_id).update({
        "title": body.title,
        "location_name": body.location_name,
        "location": location,
        "description": body.description,
        "tags": body.tags,
        "audit_trail": audit_trail,
    })
    disaster = updated[0] if updated else {**existing, "audit_trail": audit_trail}

    events.publish(DISASTER_UPDATED, {"type": "update", "data": disaster}, disaster_id)
    logger.info(f"Disaster updated: {disaster_id} by {user['id']}")

    return envelope(disaster)


@router.delete("/{disaster_id}")
async def delete_disaster(
    disaster_id: str,
    user: Dict[str, str] = Depends(require_role("admin")),
    store: BaseStore = Depends(get_store),
    events: EventBus = Depends(get_event_bus),
):
    deleted = await store.table("disasters").eq("id", disaster_id).delete()
    if not deleted:
        raise APIError(code="NOT_FOUND", message="Disaster not found", status_code=404)

    events.publish(DISASTER_UPDATED, {"type": "delete", "id": disaster_id}, disaster_id)
    logger.info(f"Disaster deleted: {disaster_id} by {user['id']}")

    return {"success": True, "message": "Disaster deleted successfully"}
