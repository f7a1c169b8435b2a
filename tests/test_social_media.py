"""Tests for social post ranking and the search service."""

from datetime import datetime, timezone

import httpx
import pytest

from app.clients.twitter_client import MockSocialMediaClient, SocialMediaProviderError, TwitterClient
from app.models import Priority
from app.services.cache import CacheService
from app.services.social_media import SocialMediaService, rank_posts

from .conftest import FakeClock


class FailingProvider:
    def __init__(self):
        self.calls = 0

    async def search(self, keywords, location=None):
        self.calls += 1
        raise SocialMediaProviderError("rate limited")

    async def close(self):
        return None


class CountingProvider(MockSocialMediaClient):
    def __init__(self, clock=None):
        super().__init__(clock)
        self.calls = 0

    async def search(self, keywords, location=None):
        self.calls += 1
        return await super().search(keywords, location)


def raw(post_id: str, content: str, minute: int) -> dict:
    return {
        "id": post_id,
        "content": content,
        "user": "someone",
        "timestamp": datetime(2024, 6, 15, 12, minute, tzinfo=timezone.utc).isoformat(),
    }


class TestRankPosts:
    """Urgency ordering."""

    def test_priority_then_recency(self) -> None:
        posts = rank_posts([
            raw("old-urgent", "SOS trapped on roof", 0),
            raw("medium", "Power restored downtown", 30),
            raw("high", "Need water bottles", 20),
            raw("new-urgent", "Emergency at the bridge", 10),
        ])

        assert [p.id for p in posts] == ["new-urgent", "old-urgent", "high", "medium"]
        assert [p.priority for p in posts] == [
            Priority.URGENT, Priority.URGENT, Priority.HIGH, Priority.MEDIUM,
        ]

    def test_stored_priority_is_ignored(self) -> None:
        post = dict(raw("1", "All quiet here", 0), priority="urgent")
        assert rank_posts([post])[0].priority == Priority.MEDIUM

    def test_malformed_posts_skipped(self) -> None:
        posts = rank_posts([
            {"id": "bad", "content": "help"},
            raw("good", "help needed", 5),
        ])
        assert [p.id for p in posts] == ["good"]

    def test_naive_timestamps_treated_as_utc(self) -> None:
        posts = rank_posts([
            dict(raw("a", "help", 0), timestamp="2024-06-15T12:00:00"),
            raw("b", "help", 5),
        ])
        assert [p.id for p in posts] == ["b", "a"]
        assert posts[1].timestamp.tzinfo is not None


class TestSocialMediaService:
    """Cached search over a provider."""

    @pytest.mark.asyncio
    async def test_mock_posts_ranked(self, cache: CacheService, clock: FakeClock) -> None:
        service = SocialMediaService(cache, fallback=MockSocialMediaClient(clock))

        posts = await service.search_posts([])

        assert [p.id for p in posts] == ["1", "2", "4", "3", "5"]
        assert not service.is_live

    @pytest.mark.asyncio
    async def test_keyword_filter(self, cache: CacheService, clock: FakeClock) -> None:
        service = SocialMediaService(cache, fallback=MockSocialMediaClient(clock))

        posts = await service.search_posts(["shelter"])

        assert [p.id for p in posts] == ["3"]
        assert posts[0].priority == Priority.MEDIUM

    @pytest.mark.asyncio
    async def test_raw_posts_cached_without_priority(self, cache: CacheService, clock: FakeClock) -> None:
        provider = CountingProvider(clock)
        service = SocialMediaService(cache, fallback=provider)

        await service.search_posts(["water"], "Manhattan")
        again = await service.search_posts(["water"], "Manhattan")

        assert provider.calls == 1
        assert again[0].priority == Priority.URGENT
        cached = await cache.get("social_media:water:Manhattan")
        assert all("priority" not in post for post in cached)

    @pytest.mark.asyncio
    async def test_live_failure_falls_back_to_mock(self, cache: CacheService, clock: FakeClock) -> None:
        live = FailingProvider()
        service = SocialMediaService(cache, provider=live, fallback=MockSocialMediaClient(clock))

        posts = await service.search_posts(["emergency"])

        assert live.calls == 1
        assert service.is_live
        assert [p.id for p in posts] == ["2"]


class TestTwitterClient:
    """Recent search payload mapping."""

    @pytest.mark.asyncio
    async def test_maps_tweets(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(200, json={
                "data": [{
                    "id": "99",
                    "text": "Need rescue boats in Red Hook",
                    "author_id": "u1",
                    "created_at": "2024-06-15T11:00:00.000Z",
                    "public_metrics": {"like_count": 4, "retweet_count": 2, "reply_count": 1},
                }],
                "includes": {"users": [{"id": "u1", "username": "redhook_watch"}]},
            })

        transport = httpx.MockTransport(handler)
        client = TwitterClient("token", client_factory=lambda: httpx.AsyncClient(transport=transport))

        posts = await client.search(["rescue", "flood"], "Brooklyn")

        assert posts == [{
            "id": "99",
            "content": "Need rescue boats in Red Hook",
            "user": "redhook_watch",
            "timestamp": "2024-06-15T11:00:00.000Z",
            "engagement": {"likes": 4, "retweets": 2, "replies": 1},
        }]
        request = seen["request"]
        assert request.headers["authorization"] == "Bearer token"
        assert request.url.params["query"] == '(rescue OR flood) "Brooklyn" -is:retweet'

    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(429, json={}))
        client = TwitterClient("token", client_factory=lambda: httpx.AsyncClient(transport=transport))

        with pytest.raises(SocialMediaProviderError):
            await client.search(["flood"])
