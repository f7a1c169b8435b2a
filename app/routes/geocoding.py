"""Geocoding Route."""

import logging

from fastapi import APIRouter, Depends

from ..models import GeocodeRequest, envelope
from ..services.geocoder import Geocoder, get_geocoder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/geocoding", tags=["geocoding"])


@router.post("")
async def geocode_location(
    body: GeocodeRequest,
    geocoder: Geocoder = Depends(get_geocoder),
):
    """Resolve a location name. Unresolvable names yield null coordinates."""
    result = await geocoder.geocode(body.location_name)

    logger.info(
        f"Geocoding request: {body.location_name} -> "
        f"{f'{result.lat}, {result.lng}' if result else 'failed'}"
    )

    return envelope({
        "input_location": body.location_name,
        "geocoded": result.model_dump(mode="json") if result else None,
        "coordinates": {
            "lat": result.lat,
            "lng": result.lng,
            "formatted_address": result.formatted_address,
        } if result else None,
    })
