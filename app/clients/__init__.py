"""
External Data Clients Module.

Provides async clients for the systems this API depends on:
- PostgRESTStore: Supabase-hosted relational store (with InMemoryStore fallback)
- TwitterClient: Social media recent search (with MockSocialMediaClient fallback)

All clients use httpx with configurable timeouts.
"""

from .store import BaseStore, InMemoryStore, NoRowsError, StoreError, TableQuery
from .postgrest_client import PostgRESTStore, get_store
from .twitter_client import MockSocialMediaClient, TwitterClient

__all__ = [
    "BaseStore",
    "InMemoryStore",
    "NoRowsError",
    "StoreError",
    "TableQuery",
    "PostgRESTStore",
    "get_store",
    "MockSocialMediaClient",
    "TwitterClient",
]
