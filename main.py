"""
Disaster Response Coordination API - Main Application Entry Point.

Backend for coordinating disaster relief: disaster records with geocoded
locations, nearby relief resources, citizen reports, urgency-ranked social
media signals, official agency updates and a realtime push channel.

Run with: uvicorn main:app --reload
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.clients.postgrest_client import get_store
from app.config import get_settings
from app.middleware.error_handler import ErrorHandlerMiddleware, register_exception_handlers
from app.middleware.request_logging import RequestLoggingMiddleware
from app.models import HealthResponse
from app.routes import (
    cache_router,
    disasters_router,
    geocoding_router,
    realtime_router,
    reports_router,
    resources_router,
    social_media_router,
)
from app.services.cache import get_cache_service
from app.services.geocoder import get_geocoder
from app.services.official_updates import get_official_updates_service
from app.services.realtime import get_event_bus
from app.services.social_media import get_social_media_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Global state
_settings = get_settings()
_start_time: Optional[float] = None
_realtime_task: Optional[asyncio.Task] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: Initialize store and cache, start the realtime consumer
    - Shutdown: Stop the consumer, close HTTP clients and the cache
    """
    global _start_time, _realtime_task

    # === STARTUP ===
    logger.info("Starting Disaster Response API...")
    _start_time = time.time()

    store = get_store()
    cache_service = get_cache_service()
    logger.info(f"Cache service ready: {cache_service.stats()}")

    _realtime_task = asyncio.create_task(get_event_bus().run())

    logger.info(f"API v{__version__} ready")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down...")

    _realtime_task.cancel()
    try:
        await _realtime_task
    except asyncio.CancelledError:
        pass
    _realtime_task = None
    logger.info("Realtime consumer stopped")

    await get_geocoder().close()
    await get_social_media_service().close()
    await get_official_updates_service().close()
    await store.close()

    cache_service.close()
    logger.info("Cache service closed")

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Disaster Response Coordination API",
    description="""
## Disaster Response Coordination Backend

Aggregates location-aware data to help relief teams coordinate.

### Capabilities
- **Disasters**: CRUD with geocoded locations and an audit trail
- **Resources**: Shelters, hospitals, food and water points with radius search
- **Reports**: Citizen reports per disaster
- **Social Media**: Posts ranked by urgency (urgent > high > medium)
- **Official Updates**: FEMA, Red Cross and CDC press releases
- **Realtime**: WebSocket push at `/ws`

### Authentication
Send `X-User-ID` to act as a known user. Requests without it act as `citizen1`.
    """,
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Add custom middleware (order matters - last added = outermost)
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(RequestLoggingMiddleware, log_file=_settings.request_log_file)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add exception handlers for consistent error format
register_exception_handlers(app)

# Include routers
app.include_router(disasters_router)
app.include_router(resources_router)
app.include_router(reports_router)
app.include_router(social_media_router)
app.include_router(geocoding_router)
app.include_router(cache_router)
app.include_router(realtime_router)


@app.get(
    "/",
    tags=["root"],
    summary="API Root",
    description="Welcome message and API information.",
)
async def root():
    """API root endpoint."""
    return {
        "name": "Disaster Response Coordination API",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "disasters": "/api/disasters",
            "resources": "/api/resources",
            "reports": "/api/reports",
            "social_media": "/api/social-media",
            "geocoding": "POST /api/geocoding",
            "realtime": "WS /ws",
            "health": "GET /health",
        },
    }


@app.get(
    "/health",
    tags=["health"],
    summary="Health Check",
    description="Detailed health check with component status.",
    response_model=HealthResponse,
)
async def health_check():
    """
    Health check endpoint with detailed component status.

    Returns:
    - healthy: All systems operational
    - degraded: Running on fallbacks (in-memory store, mock social feed)
    - unhealthy: Critical systems unavailable
    """
    store = get_store()
    cache_service = get_cache_service()
    social = get_social_media_service()

    checks = {
        "store": "ok" if store.is_ready else "unavailable",
        "store_backend": type(store).__name__,
        "cache": "ok" if cache_service.stats().get("status") == "ready" else "unavailable",
        "geocoding_providers": ",".join(
            type(p).__name__ for p in get_geocoder().providers
        ),
        "social_media": "live" if social.is_live else "mock",
        "realtime": "ok" if _realtime_task and not _realtime_task.done() else "stopped",
    }

    critical_ok = checks["store"] == "ok"
    degraded = checks["store_backend"] == "InMemoryStore" or checks["social_media"] == "mock"

    if not critical_ok:
        status = "unhealthy"
    elif degraded or checks["cache"] != "ok":
        status = "degraded"
    else:
        status = "healthy"

    uptime_seconds = int(time.time() - _start_time) if _start_time else 0

    return HealthResponse(
        status=status,
        version=__version__,
        checks=checks,
        uptime_seconds=uptime_seconds,
    )


@app.get(
    "/ready",
    tags=["health"],
    summary="Readiness Check",
    description="Kubernetes-style readiness probe.",
)
async def readiness_check():
    """
    Readiness check for load balancers and orchestrators.

    Returns 200 if ready to accept traffic, 503 otherwise.
    """
    if not get_store().is_ready:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "reason": "Store not available"},
        )

    return {"ready": True}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.debug,
    )
