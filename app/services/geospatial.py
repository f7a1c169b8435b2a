"""
Geospatial Query Engine.

Finds resources and disasters within a radius of a point by scanning
stored POINT geometries and filtering on haversine distance.
"""

import logging
from typing import Any, Dict, List, Optional

from ..clients.postgrest_client import get_store
from ..clients.store import BaseStore
from ..utils.common import haversine_km, is_valid_coordinate, parse_point

logger = logging.getLogger(__name__)

# Parent disaster summary embedded in resource search results
RESOURCE_COLUMNS = "*,disasters(id,title,location_name)"


class InvalidQueryError(ValueError):
    """Radius query with an out-of-range center or a negative radius."""


class GeospatialService:
    """Radius search over records carrying a `location` point geometry."""

    def __init__(self, store: BaseStore):
        self._store = store

    @staticmethod
    def filter_by_distance(
        records: List[Dict[str, Any]],
        lat: float,
        lng: float,
        radius_km: float,
    ) -> List[Dict[str, Any]]:
        """
        Keep records within radius_km of (lat, lng), nearest first.

        Records with a missing or malformed location are skipped. Each
        returned record gets a transient `distance` field in km. The sort
        is stable, so equidistant records keep their retrieval order.
        """
        nearby = []
        skipped = 0

        for record in records:
            point = parse_point(record.get("location"))
            if point is None:
                skipped += 1
                continue

            distance = haversine_km(lat, lng, point.lat, point.lng)
            if distance <= radius_km:
                nearby.append({**record, "distance": distance})

        if skipped:
            logger.debug(f"Skipped {skipped} records with missing or malformed location")

        nearby.sort(key=lambda r: r["distance"])
        return nearby

    @staticmethod
    def _validate_query(lat: float, lng: float, radius_km: float) -> None:
        if not is_valid_coordinate(lat, lng):
            raise InvalidQueryError(f"Invalid coordinates: {lat}, {lng}")
        if radius_km is None or radius_km < 0:
            raise InvalidQueryError(f"Radius must be non-negative, got {radius_km}")

    async def find_nearby_resources(
        self,
        lat: float,
        lng: float,
        radius_km: float = 10,
        resource_type: Optional[str] = None,
        disaster_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Find resources within radius_km of a point.

        Args:
            lat, lng: Query center in degrees
            radius_km: Inclusive search radius
            resource_type: Optional resource type filter
            disaster_id: Optional disaster scope

        Returns:
            Matching resource records sorted by ascending distance

        Raises:
            InvalidQueryError: Invalid center or negative radius
            StoreError: Backing store unavailable
        """
        self._validate_query(lat, lng, radius_km)

        query = self._store.table("resources").select(RESOURCE_COLUMNS).not_null("location")
        if resource_type:
            query = query.eq("type", resource_type)
        if disaster_id:
            query = query.eq("disaster_id", disaster_id)

        candidates = await query.execute()
        nearby = self.filter_by_distance(candidates, lat, lng, radius_km)

        logger.info(
            f"Found {len(nearby)} of {len(candidates)} resources within {radius_km}km"
        )
        return nearby

    async def find_disasters_in_area(
        self,
        lat: float,
        lng: float,
        radius_km: float = 50,
    ) -> List[Dict[str, Any]]:
        """Find disasters within radius_km of a point, nearest first."""
        self._validate_query(lat, lng, radius_km)

        candidates = await (
            self._store.table("disasters").select("*").not_null("location").execute()
        )
        nearby = self.filter_by_distance(candidates, lat, lng, radius_km)

        logger.info(
            f"Found {len(nearby)} of {len(candidates)} disasters within {radius_km}km"
        )
        return nearby


# Singleton instance
_geospatial_instance: Optional[GeospatialService] = None


def get_geospatial_service() -> GeospatialService:
    """Get the singleton geospatial service instance."""
    global _geospatial_instance
    if _geospatial_instance is None:
        _geospatial_instance = GeospatialService(get_store())
    return _geospatial_instance
