"""
Cache Administration Routes.

Inspection is public; purging expired entries requires the admin role.
"""

import logging
from typing import Dict

from fastapi import APIRouter, Depends

from ..middleware.auth import require_role
from ..middleware.error_handler import APIError
from ..models import envelope
from ..services.cache import CacheService, get_cache_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cache", tags=["cache"])


@router.get("/stats")
async def cache_stats(cache: CacheService = Depends(get_cache_service)):
    return envelope(cache.stats())


@router.post("/clear-expired")
async def clear_expired(
    user: Dict[str, str] = Depends(require_role("admin")),
    cache: CacheService = Depends(get_cache_service),
):
    """Remove every expired cache entry."""
    if not await cache.clear_expired():
        raise APIError(
            code="CACHE_ERROR",
            message="Failed to clear expired cache entries",
            status_code=503,
        )

    logger.info(f"Expired cache entries cleared by {user['id']}")
    return {"success": True, "message": "Expired cache entries cleared"}
