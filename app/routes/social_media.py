"""
Social Media Routes.

Urgency-ranked posts for a disaster or an ad-hoc keyword search.
"""

import logging
from collections import Counter
from typing import List, Optional

from fastapi import APIRouter, Depends

from ..middleware.error_handler import APIError
from ..models import Priority, envelope
from ..services.realtime import SOCIAL_MEDIA_UPDATED, EventBus, get_event_bus
from ..services.social_media import SocialMediaService, get_social_media_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/social-media", tags=["social-media"])

DEFAULT_KEYWORDS = ["disaster", "emergency", "help"]

# Number of top posts pushed to realtime subscribers
PUSHED_POSTS = 5


def parse_keywords(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [k.strip() for k in raw.split(",") if k.strip()]


@router.get("/disaster/{disaster_id}")
async def posts_for_disaster(
    disaster_id: str,
    keywords: Optional[str] = None,
    location: Optional[str] = None,
    social: SocialMediaService = Depends(get_social_media_service),
    events: EventBus = Depends(get_event_bus),
):
    keyword_list = parse_keywords(keywords) or DEFAULT_KEYWORDS
    posts = [p.model_dump(mode="json") for p in await social.search_posts(keyword_list, location)]

    events.publish(
        SOCIAL_MEDIA_UPDATED,
        {"disaster_id": disaster_id, "posts": posts[:PUSHED_POSTS]},
        disaster_id,
    )

    return envelope(
        posts,
        disaster_id=disaster_id,
        keywords=keyword_list,
        location=location,
        count=len(posts),
        urgent_count=sum(1 for p in posts if p["priority"] == Priority.URGENT.value),
    )


@router.get("/search")
async def search_posts(
    keywords: Optional[str] = None,
    location: Optional[str] = None,
    social: SocialMediaService = Depends(get_social_media_service),
):
    """Ad-hoc keyword search with a breakdown by priority."""
    keyword_list = parse_keywords(keywords)
    if not keyword_list:
        raise APIError(code="BAD_REQUEST", message="Keywords parameter is required", status_code=400)

    posts = await social.search_posts(keyword_list, location)
    counts = Counter(p.priority for p in posts)

    return envelope(
        [p.model_dump(mode="json") for p in posts],
        keywords=keyword_list,
        location=location,
        count=len(posts),
        priority_breakdown={priority.value: counts.get(priority, 0) for priority in Priority},
    )
