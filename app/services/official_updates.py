"""
Official Updates Aggregator.

Scrapes press-release listings from official relief agencies (FEMA,
Red Cross, CDC) into normalized update records. Each source is fetched
independently; a failing source never blocks the others.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup
from pydantic import ValidationError

from ..config import get_settings
from ..models import OfficialUpdate
from ..utils.common import generate_cache_key, parse_timestamp
from .cache import CacheService, get_cache_service

logger = logging.getLogger(__name__)

OFFICIAL_SOURCES: Dict[str, str] = {
    "fema": "https://www.fema.gov/news-release",
    "redcross": "https://www.redcross.org/about-us/news-and-events",
    "cdc": "https://www.cdc.gov/media/releases/index.html",
}

ITEM_SELECTOR = "article, .news-item, .press-release"
TITLE_SELECTOR = "h1, h2, h3, .title"
SUMMARY_SELECTOR = "p, .summary, .excerpt"
MAX_ITEMS_PER_SOURCE = 5
SUMMARY_LENGTH = 200


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return parse_timestamp(value)


def parse_updates(source: str, url: str, html: str, fetched_at: datetime) -> List[OfficialUpdate]:
    """
    Extract update records from a press-release listing page.

    Items without both a title and a summary are ignored.
    """
    soup = BeautifulSoup(html, "lxml")
    updates = []

    for index, element in enumerate(soup.select(ITEM_SELECTOR)[:MAX_ITEMS_PER_SOURCE]):
        title_el = element.select_one(TITLE_SELECTOR)
        summary_el = element.select_one(SUMMARY_SELECTOR)
        title = title_el.get_text(strip=True) if title_el else ""
        summary = summary_el.get_text(strip=True) if summary_el else ""

        if not (title and summary):
            continue

        anchor = element.find("a", href=True)
        link = urljoin(url, anchor["href"]) if anchor else url

        time_el = element.find("time")
        date = _parse_date(time_el.get("datetime") if time_el else None) or fetched_at

        updates.append(OfficialUpdate(
            id=f"{source}_{index}",
            source=source.upper(),
            title=title,
            summary=summary[:SUMMARY_LENGTH] + "...",
            link=link,
            date=date,
        ))

    return updates


def mock_updates(now: datetime) -> List[OfficialUpdate]:
    """Fixed updates returned when no source could be scraped."""
    return [
        OfficialUpdate(
            id="fema_001",
            source="FEMA",
            title="Federal Emergency Management Agency Issues Disaster Declaration",
            summary=(
                "FEMA has issued a major disaster declaration for affected areas, making "
                "federal funding available for emergency response and recovery efforts. "
                "Residents are advised to register for assistance through DisasterAssistance.gov."
            ),
            link="https://www.fema.gov/press-release/20230615/fema-issues-disaster-declaration",
            date=now - timedelta(hours=2),
        ),
        OfficialUpdate(
            id="redcross_001",
            source="RED CROSS",
            title="Emergency Shelters Activated Across Affected Region",
            summary=(
                "American Red Cross has opened multiple emergency shelters providing safe "
                "accommodation, meals, and basic necessities for displaced residents. "
                "Volunteers are providing support 24/7."
            ),
            link="https://www.redcross.org/about-us/news-and-events/news/emergency-shelters-activated",
            date=now - timedelta(hours=4),
        ),
        OfficialUpdate(
            id="cdc_001",
            source="CDC",
            title="Health and Safety Guidelines for Disaster Response",
            summary=(
                "CDC issues health recommendations for disaster-affected areas including "
                "water safety, food handling, and preventive measures to avoid illness "
                "during recovery operations."
            ),
            link="https://www.cdc.gov/disasters/healthandsafety.html",
            date=now - timedelta(hours=6),
        ),
    ]


class OfficialUpdatesService:
    """Cached aggregator over official press-release pages."""

    def __init__(
        self,
        cache: CacheService,
        sources: Optional[Dict[str, str]] = None,
        timeout_seconds: float = 10.0,
        user_agent: str = "DisasterResponseApp/1.0 (Educational Purpose)",
        cache_ttl_minutes: int = 30,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ):
        self._cache = cache
        self._sources = dict(OFFICIAL_SOURCES if sources is None else sources)
        self._timeout = timeout_seconds
        self._user_agent = user_agent
        self._ttl = cache_ttl_minutes
        self._client_factory = client_factory
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            if self._client_factory is not None:
                self._client = self._client_factory()
            else:
                self._client = httpx.AsyncClient(
                    timeout=self._timeout,
                    follow_redirects=True,
                )
        return self._client

    async def scrape_source(self, source: str, url: str) -> List[OfficialUpdate]:
        """Fetch and parse one source. Raises on HTTP errors or timeout."""
        client = await self._get_client()

        response = await asyncio.wait_for(
            client.get(url, headers={"User-Agent": self._user_agent}),
            timeout=self._timeout,
        )
        response.raise_for_status()

        updates = parse_updates(source, url, response.text, datetime.now(timezone.utc))
        logger.info(f"Scraped {len(updates)} updates from {source}")
        return updates

    async def get_official_updates(self, disaster_id: Optional[str] = None) -> List[OfficialUpdate]:
        """
        Get official updates, newest first.

        Falls back to fixed mock updates when every source fails or
        yields nothing.
        """
        cache_key = generate_cache_key("official_updates", disaster_id or "general")

        cached = await self._cache.get(cache_key)
        if isinstance(cached, list):
            try:
                return [OfficialUpdate.model_validate(item) for item in cached]
            except ValidationError as e:
                logger.warning(f"Discarding malformed cached updates: {e}")

        names = list(self._sources)
        results = await asyncio.gather(
            *(self.scrape_source(name, self._sources[name]) for name in names),
            return_exceptions=True,
        )

        updates: List[OfficialUpdate] = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.error(f"Error scraping {name}: {result!r}")
                continue
            updates.extend(result)

        if not updates:
            logger.info("No official updates scraped, using mock updates")
            updates = mock_updates(datetime.now(timezone.utc))

        updates.sort(key=lambda u: u.date, reverse=True)

        await self._cache.set(
            cache_key,
            [u.model_dump(mode="json") for u in updates],
            self._ttl,
        )
        return updates

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# Singleton instance
_updates_instance: Optional[OfficialUpdatesService] = None


def get_official_updates_service() -> OfficialUpdatesService:
    """Get the singleton official updates service instance."""
    global _updates_instance
    if _updates_instance is None:
        settings = get_settings()
        _updates_instance = OfficialUpdatesService(
            get_cache_service(),
            timeout_seconds=settings.scrape_timeout_seconds,
            user_agent=settings.scrape_user_agent,
            cache_ttl_minutes=settings.official_updates_cache_ttl_minutes,
        )
    return _updates_instance
