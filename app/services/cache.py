"""
Caching Layer.

Key/value cache with per-entry TTL and lazy eviction. Entries live either
in the relational store's `cache` table or in a local diskcache directory.
Caching is best-effort: every failure degrades to a miss or a no-op.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import diskcache

from ..clients.postgrest_client import get_store
from ..clients.store import BaseStore, NoRowsError
from ..config import get_settings
from ..utils.common import parse_timestamp

logger = logging.getLogger(__name__)

CACHE_TABLE = "cache"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    """Parse a stored expires_at value into an aware datetime."""
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"Invalid expires_at: {value!r}")
    return parsed


class CacheBackend(ABC):
    """Storage for raw cache entries ({value, expires_at})."""

    name = "abstract"

    @abstractmethod
    async def get_entry(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the stored entry or None if absent."""

    @abstractmethod
    async def put_entry(self, key: str, value: Any, expires_at: datetime) -> None:
        """Insert or overwrite an entry."""

    @abstractmethod
    async def delete_entry(self, key: str) -> None:
        """Remove an entry if present."""

    @abstractmethod
    async def delete_expired(self, now: datetime) -> int:
        """Remove entries that expired before now. Returns count removed."""

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.name}


class TableCacheBackend(CacheBackend):
    """Cache entries stored as rows of the relational `cache` table."""

    name = "table"

    def __init__(self, store: BaseStore):
        self._store = store

    async def get_entry(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            return await (
                self._store.table(CACHE_TABLE)
                .select("value, expires_at")
                .eq("key", key)
                .single()
            )
        except NoRowsError:
            return None

    async def put_entry(self, key: str, value: Any, expires_at: datetime) -> None:
        await self._store.table(CACHE_TABLE).upsert(
            {"key": key, "value": value, "expires_at": expires_at.isoformat()},
            on_conflict="key",
        )

    async def delete_entry(self, key: str) -> None:
        await self._store.table(CACHE_TABLE).eq("key", key).delete()

    async def delete_expired(self, now: datetime) -> int:
        removed = await (
            self._store.table(CACHE_TABLE)
            .lt("expires_at", now.isoformat())
            .delete()
        )
        return len(removed)


class DiskCacheBackend(CacheBackend):
    """Cache entries stored in a local diskcache directory."""

    name = "disk"

    def __init__(self, directory: str, size_limit: int = 2**30):
        self._directory = directory
        self._cache = diskcache.Cache(directory, size_limit=size_limit)

    async def get_entry(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._cache.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def put_entry(self, key: str, value: Any, expires_at: datetime) -> None:
        entry = {"value": value, "expires_at": expires_at.isoformat()}
        # diskcache expiry is a backstop; lazy eviction is still done by CacheService
        ttl_seconds = max(1.0, (expires_at - _utc_now()).total_seconds())
        self._cache.set(key, json.dumps(entry), expire=ttl_seconds)

    async def delete_entry(self, key: str) -> None:
        self._cache.delete(key)

    async def delete_expired(self, now: datetime) -> int:
        removed = 0
        for key in list(self._cache.iterkeys()):
            raw = self._cache.get(key)
            if raw is None:
                continue
            entry = json.loads(raw)
            if _parse_timestamp(entry["expires_at"]) < now:
                self._cache.delete(key)
                removed += 1
        removed += self._cache.expire()
        return removed

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "directory": self._directory,
            "size": len(self._cache),
        }

    def close(self) -> None:
        self._cache.close()


class CacheService:
    """
    TTL cache with lazy eviction.

    A read of an expired entry deletes it and reports a miss, so stale
    data is never returned. Storage errors are logged and swallowed.
    """

    def __init__(
        self,
        backend: CacheBackend,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._backend = backend
        self._clock = clock or _utc_now

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    async def get(self, key: str) -> Optional[Any]:
        """
        Get a cached value.

        Returns:
            The cached value, or None on miss, expiry or storage error
        """
        try:
            entry = await self._backend.get_entry(key)

            if entry is None:
                logger.debug(f"Cache miss for key: {key}")
                return None

            if _parse_timestamp(entry["expires_at"]) <= self._clock():
                logger.debug(f"Cache entry expired for key: {key}")
                await self.delete(key)
                return None

            logger.debug(f"Cache hit for key: {key}")
            return entry["value"]

        except Exception as e:
            logger.error(f"Cache get error for key {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl_minutes: float = 60) -> bool:
        """
        Cache a JSON-serializable value.

        Returns:
            True if successfully cached, False otherwise
        """
        try:
            # Round-trip through JSON so every backend stores the same shape
            payload = json.loads(json.dumps(value))
            expires_at = self._clock() + timedelta(minutes=ttl_minutes)

            await self._backend.put_entry(key, payload, expires_at)

            logger.debug(f"Cache set: {key} (TTL: {ttl_minutes}m)")
            return True

        except Exception as e:
            logger.error(f"Cache set error for key {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete a cached entry. Returns False on storage error."""
        try:
            await self._backend.delete_entry(key)
            return True
        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {e}")
            return False

    async def clear_expired(self) -> bool:
        """Remove every expired entry in one batch."""
        try:
            removed = await self._backend.delete_expired(self._clock())
            logger.info(f"Cache cleared of {removed} expired entries")
            return True
        except Exception as e:
            logger.error(f"Cache clear error: {e}")
            return False

    def stats(self) -> dict:
        """Get cache statistics."""
        try:
            return {"status": "ready", **self._backend.describe()}
        except Exception as e:
            return {"status": "error", "error": str(e)}

    def close(self) -> None:
        """Close the backend if it holds local resources."""
        if isinstance(self._backend, DiskCacheBackend):
            try:
                self._backend.close()
            except Exception as e:
                logger.warning(f"Error closing cache: {e}")


# Singleton instance
_cache_instance: Optional[CacheService] = None


def get_cache_service() -> CacheService:
    """Get the singleton cache service instance."""
    global _cache_instance
    if _cache_instance is None:
        settings = get_settings()
        if settings.cache_backend == "disk":
            backend: CacheBackend = DiskCacheBackend(settings.cache_directory)
        else:
            backend = TableCacheBackend(get_store())
        _cache_instance = CacheService(backend)
        logger.info(f"Cache service initialized ({backend.name} backend)")
    return _cache_instance
