"""
Resource Routes.

Relief resources (shelters, hospitals, food and water points) attached to
a disaster, with radius search over their geocoded locations.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from ..clients.postgrest_client import get_store
from ..clients.store import BaseStore, NoRowsError
from ..middleware.auth import get_current_user
from ..middleware.error_handler import APIError, NotFoundError
from ..models import ResourceCreate, ResourceType, ResourceUpdate, envelope
from ..services.geocoder import Geocoder, get_geocoder
from ..services.geospatial import GeospatialService, get_geospatial_service
from ..services.realtime import RESOURCES_UPDATED, EventBus, get_event_bus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/resources", tags=["resources"])


async def _load_resource(store: BaseStore, resource_id: str, user: Dict[str, str]) -> dict:
    """Fetch a resource the user may modify (its creator or an admin)."""
    try:
        existing = await store.table("resources").select("*").eq("id", resource_id).single()
    except NoRowsError:
        raise NotFoundError("Resource not found")

    if existing.get("created_by") != user["id"] and user["role"] != "admin":
        raise APIError(code="FORBIDDEN", message="Insufficient permissions", status_code=403)
    return existing


@router.get("/nearby")
async def nearby_resources(
    lat: float,
    lng: float,
    radius: float = Query(default=10, ge=0),
    type: Optional[ResourceType] = None,
    geospatial: GeospatialService = Depends(get_geospatial_service),
):
    """Resources within `radius` km of a point, nearest first."""
    resource_type = type.value if type else None
    resources = await geospatial.find_nearby_resources(lat, lng, radius, resource_type)
    return envelope(
        resources,
        center={"lat": lat, "lng": lng},
        radius=radius,
        type=resource_type,
        count=len(resources),
    )


@router.get("/disaster/{disaster_id}")
async def resources_for_disaster(
    disaster_id: str,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius: float = Query(default=10, ge=0),
    type: Optional[ResourceType] = None,
    store: BaseStore = Depends(get_store),
    geospatial: GeospatialService = Depends(get_geospatial_service),
):
    """
    Resources for one disaster.

    When both lat and lng are given, only resources within the radius are
    returned, nearest first.
    """
    resource_type = type.value if type else None

    if lat is not None and lng is not None:
        resources = await geospatial.find_nearby_resources(
            lat, lng, radius, resource_type, disaster_id=disaster_id
        )
    else:
        query = store.table("resources").select("*").eq("disaster_id", disaster_id)
        if resource_type:
            query = query.eq("type", resource_type)
        resources = await query.execute()

    logger.info(f"Retrieved {len(resources)} resources for disaster {disaster_id}")

    return envelope(
        resources,
        disaster_id=disaster_id,
        filters={"lat": lat, "lng": lng, "radius": radius, "type": resource_type},
        count=len(resources),
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_resource(
    body: ResourceCreate,
    user: Dict[str, str] = Depends(get_current_user),
    store: BaseStore = Depends(get_store),
    geocoder: Geocoder = Depends(get_geocoder),
    events: EventBus = Depends(get_event_bus),
):
    try:
        await store.table("disasters").select("id").eq("id", body.disaster_id).single()
    except NoRowsError:
        raise NotFoundError("Disaster not found")

    resource = await store.table("resources").insert({
        "disaster_id": body.disaster_id,
        "name": body.name,
        "location_name": body.location_name,
        "location": await geocoder.geocode_point(body.location_name),
        "type": body.type.value,
        "created_by": user["id"],
    })

    events.publish(RESOURCES_UPDATED, {"type": "create", "data": resource}, body.disaster_id)
    logger.info(f"Resource created: {resource['id']} for disaster {body.disaster_id}")

    return envelope(resource)


@router.put("/{resource_id}")
async def update_resource(
    resource_id: str,
    body: ResourceUpdate,
    user: Dict[str, str] = Depends(get_current_user),
    store: BaseStore = Depends(get_store),
    geocoder: Geocoder = Depends(get_geocoder),
    events: EventBus = Depends(get_event_bus),
):
    """Partially update a resource, re-geocoding when its location changes."""
    existing = await _load_resource(store, resource_id, user)

    location = existing.get("location")
    if body.location_name and body.location_name != existing.get("location_name"):
        location = await geocoder.geocode_point(body.location_name) or location

    values = {
        "name": body.name or existing.get("name"),
        "location_name": body.location_name or existing.get("location_name"),
        "location": location,
        "type": body.type.value if body.type else existing.get("type"),
    }
    updated = await store.table("resources").eq("id", resource_id).update(values)
    resource = updated[0] if updated else {**existing, **values}

    events.publish(RESOURCES_UPDATED, {"type": "update", "data": resource}, resource.get("disaster_id"))
    logger.info(f"Resource updated: {resource_id} by {user['id']}")

    return envelope(resource)


@router.delete("/{resource_id}")
async def delete_resource(
    resource_id: str,
    user: Dict[str, str] = Depends(get_current_user),
    store: BaseStore = Depends(get_store),
    events: EventBus = Depends(get_event_bus),
):
    existing = await _load_resource(store, resource_id, user)

    await store.table("resources").eq("id", resource_id).delete()

    events.publish(RESOURCES_UPDATED, {"type": "delete", "id": resource_id}, existing.get("disaster_id"))
    logger.info(f"Resource deleted: {resource_id} by {user['id']}")

    return {"success": True, "message": "Resource deleted successfully"}
