"""
API Routes Module.

Contains all FastAPI router definitions:
- disasters_router: Disaster CRUD and area search
- resources_router: Relief resources and radius search
- reports_router: Citizen reports and official updates
- social_media_router: Urgency-ranked social posts
- geocoding_router: Location name resolution
- cache_router: Cache inspection and maintenance
- realtime_router: WebSocket push channel
"""

from .cache_admin import router as cache_router
from .disasters import router as disasters_router
from .geocoding import router as geocoding_router
from .realtime import router as realtime_router
from .reports import router as reports_router
from .resources import router as resources_router
from .social_media import router as social_media_router

__all__ = [
    "cache_router",
    "disasters_router",
    "geocoding_router",
    "realtime_router",
    "reports_router",
    "resources_router",
    "social_media_router",
]
