"""Configuration settings for the Disaster Response API."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    app_name: str = "Disaster Response API"
    app_version: str = "1.0.0"
    debug: bool = False

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Relational store (Supabase / PostgREST)
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_key: Optional[str] = None
    store_timeout_seconds: float = 10.0

    # Cache Settings
    cache_backend: str = "table"  # "table" (relational cache table) or "disk"
    cache_directory: str = ".cache"
    geocode_cache_ttl_minutes: int = 60
    social_media_cache_ttl_minutes: int = 15
    official_updates_cache_ttl_minutes: int = 30

    # Geocoding providers (tried in this order)
    google_maps_api_key: Optional[str] = None
    mapbox_access_token: Optional[str] = None
    nominatim_user_agent: str = "DisasterResponseApp/1.0"
    geocode_timeout_seconds: float = 5.0

    # Social media
    twitter_bearer_token: Optional[str] = None
    social_media_timeout_seconds: float = 10.0

    # Official updates scraping
    scrape_timeout_seconds: float = 10.0
    scrape_user_agent: str = "DisasterResponseApp/1.0 (Educational Purpose)"

    # Realtime
    realtime_queue_size: int = 1000

    # CORS Settings
    cors_origins: list = ["*"]

    # Request logging
    request_log_file: Optional[str] = "logs/requests.jsonl"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def supabase_configured(self) -> bool:
        """Check if a hosted store is configured."""
        return bool(self.supabase_url and (self.supabase_service_key or self.supabase_anon_key))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
