"""
Social Media Clients.

Live Twitter (X) API v2 recent-search client and a deterministic mock
provider used when no credentials are configured.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

TWITTER_SEARCH_URL = "https://api.twitter.com/2/tweets/search/recent"


class SocialMediaProviderError(Exception):
    """The social media provider could not be queried."""


class TwitterClient:
    """Client for the Twitter API v2 recent search endpoint."""

    def __init__(
        self,
        bearer_token: str,
        timeout_seconds: float = 10.0,
        max_results: int = 25,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ):
        self._bearer_token = bearer_token
        self._timeout = timeout_seconds
        self._max_results = max_results
        self._client_factory = client_factory
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            if self._client_factory is not None:
                self._client = self._client_factory()
            else:
                self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def _build_query(self, keywords: Sequence[str], location: Optional[str]) -> str:
        terms = [k for k in keywords if k] or ["disaster"]
        query = "(" + " OR ".join(terms) + ")"
        if location:
            query += f' "{location}"'
        return query + " -is:retweet"

    async def search(
        self,
        keywords: Sequence[str],
        location: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Search recent posts.

        Returns:
            Raw posts as dicts with id, content, user, timestamp, engagement

        Raises:
            SocialMediaProviderError: on HTTP or payload errors
        """
        client = await self._get_client()

        try:
            response = await client.get(
                TWITTER_SEARCH_URL,
                params={
                    "query": self._build_query(keywords, location),
                    "max_results": self._max_results,
                    "tweet.fields": "created_at,public_metrics,author_id",
                    "expansions": "author_id",
                    "user.fields": "username",
                },
                headers={"Authorization": f"Bearer {self._bearer_token}"},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SocialMediaProviderError(f"Twitter search failed: {e}") from e

        users = {
            user["id"]: user.get("username", user["id"])
            for user in data.get("includes", {}).get("users", [])
        }

        posts = []
        for tweet in data.get("data", []):
            metrics = tweet.get("public_metrics", {})
            posts.append({
                "id": tweet["id"],
                "content": tweet.get("text", ""),
                "user": users.get(tweet.get("author_id"), "unknown"),
                "timestamp": tweet.get("created_at") or datetime.now(timezone.utc).isoformat(),
                "engagement": {
                    "likes": metrics.get("like_count", 0),
                    "retweets": metrics.get("retweet_count", 0),
                    "replies": metrics.get("reply_count", 0),
                },
            })

        logger.info(f"Twitter search returned {len(posts)} posts")
        return posts

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class MockSocialMediaClient:
    """Deterministic stand-in for a live social feed."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _posts(self, location: Optional[str]) -> List[Dict[str, Any]]:
        now = self._clock()

        def ago(minutes: int) -> str:
            return (now - timedelta(minutes=minutes)).isoformat()

        return [
            {
                "id": "1",
                "content": (
                    f"#floodrelief Need immediate food supplies in {location or 'downtown area'}. "
                    "Family of 4 trapped on second floor."
                ),
                "user": "citizen_help",
                "timestamp": ago(10),
                "engagement": {"likes": 15, "retweets": 8, "replies": 3},
            },
            {
                "id": "2",
                "content": (
                    f"SOS: Medical emergency in {location or 'affected area'}. "
                    "Need ambulance access! #emergency #disaster"
                ),
                "user": "firstresponder",
                "timestamp": ago(30),
                "engagement": {"likes": 45, "retweets": 23, "replies": 12},
            },
            {
                "id": "3",
                "content": (
                    f"Red Cross shelter now open at {location or 'community center'}. "
                    "Safe space available for families. #shelter #safety"
                ),
                "user": "redcross_local",
                "timestamp": ago(45),
                "engagement": {"likes": 67, "retweets": 34, "replies": 8},
            },
            {
                "id": "4",
                "content": (
                    "Urgent: Running low on water supplies. "
                    "Distribution point needs restocking. #water #supplies"
                ),
                "user": "relief_coord",
                "timestamp": ago(60),
                "engagement": {"likes": 23, "retweets": 15, "replies": 6},
            },
            {
                "id": "5",
                "content": (
                    "Power restored to sectors 1-3. Still working on sector 4. "
                    "Updates every hour. #infrastructure"
                ),
                "user": "power_company",
                "timestamp": ago(90),
                "engagement": {"likes": 89, "retweets": 45, "replies": 22},
            },
        ]

    async def search(
        self,
        keywords: Sequence[str],
        location: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Return mock posts, filtered by keyword when any are given."""
        posts = self._posts(location)

        terms = [k.lower() for k in keywords if k]
        if terms:
            posts = [
                post for post in posts
                if any(term in post["content"].lower() for term in terms)
            ]

        return posts

    async def close(self) -> None:
        return None
