"""
Social Media Signal Ranker.

Fetches disaster-related posts (live provider or mock), then triages
them by urgency so responders see SOS-style posts first.
"""

import logging
from datetime import timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import ValidationError

from ..clients.twitter_client import MockSocialMediaClient, TwitterClient
from ..config import get_settings
from ..models import SocialPost
from ..utils.common import PRIORITY_RANK, classify_priority, generate_cache_key
from .cache import CacheService, get_cache_service

logger = logging.getLogger(__name__)


class SocialMediaProvider(Protocol):
    async def search(self, keywords: Sequence[str], location: Optional[str] = None) -> List[Dict[str, Any]]:
        ...

    async def close(self) -> None:
        ...


def rank_posts(raw_posts: List[Dict[str, Any]]) -> List[SocialPost]:
    """
    Classify and order posts.

    Priority is derived from content on every call. Order is priority
    descending (urgent > high > medium), then most recent first.
    """
    posts = []
    for raw in raw_posts:
        try:
            post = SocialPost.model_validate(
                {k: v for k, v in raw.items() if k != "priority"}
            )
        except ValidationError as e:
            logger.warning(f"Skipping malformed post {raw.get('id')}: {e}")
            continue
        if post.timestamp.tzinfo is None:
            post.timestamp = post.timestamp.replace(tzinfo=timezone.utc)
        post.priority = classify_priority(post.content)
        posts.append(post)

    posts.sort(key=lambda p: (PRIORITY_RANK[p.priority], p.timestamp), reverse=True)
    return posts


class SocialMediaService:
    """
    Cached social media search with urgency ranking.

    The cache holds the unranked posts, so classifier changes apply to
    cached content immediately.
    """

    def __init__(
        self,
        cache: CacheService,
        provider: Optional[SocialMediaProvider] = None,
        fallback: Optional[SocialMediaProvider] = None,
        cache_ttl_minutes: int = 15,
    ):
        self._cache = cache
        self._fallback = fallback or MockSocialMediaClient()
        self._provider = provider or self._fallback
        self._ttl = cache_ttl_minutes

    @property
    def is_live(self) -> bool:
        return self._provider is not self._fallback

    async def _fetch(self, keywords: Sequence[str], location: Optional[str]) -> List[Dict[str, Any]]:
        if self.is_live:
            try:
                return await self._provider.search(keywords, location)
            except Exception as e:
                logger.error(f"Social media provider error, using mock posts: {e}")
        return await self._fallback.search(keywords, location)

    async def search_posts(
        self,
        keywords: Sequence[str],
        location: Optional[str] = None,
    ) -> List[SocialPost]:
        """
        Search posts and rank them by urgency.

        Args:
            keywords: Search terms (empty means no keyword filter)
            location: Optional place name; "global" when absent

        Returns:
            Posts ordered by priority, then recency
        """
        keywords = list(keywords or [])
        cache_key = generate_cache_key(
            "social_media", ",".join(keywords), location or "global"
        )

        raw_posts = await self._cache.get(cache_key)
        if not isinstance(raw_posts, list):
            raw_posts = await self._fetch(keywords, location)
            await self._cache.set(cache_key, raw_posts, self._ttl)

        posts = rank_posts(raw_posts)
        logger.info(
            f"Ranked {len(posts)} posts for keywords={keywords} location={location or 'global'}"
        )
        return posts

    async def close(self) -> None:
        await self._provider.close()


# Singleton instance
_social_media_instance: Optional[SocialMediaService] = None


def get_social_media_service() -> SocialMediaService:
    """Get the singleton social media service instance."""
    global _social_media_instance
    if _social_media_instance is None:
        settings = get_settings()
        provider = None
        if settings.twitter_bearer_token:
            provider = TwitterClient(
                settings.twitter_bearer_token,
                timeout_seconds=settings.social_media_timeout_seconds,
            )
            logger.info("Social media: live Twitter provider")
        else:
            logger.info("Social media: Twitter not configured, using mock posts")
        _social_media_instance = SocialMediaService(
            get_cache_service(),
            provider=provider,
            cache_ttl_minutes=settings.social_media_cache_ttl_minutes,
        )
    return _social_media_instance
