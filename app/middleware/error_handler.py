"""
Global Error Handler Middleware.

Provides consistent error response formatting across all endpoints:
{"success": false, "error": <message>, "code": <CODE>, "request_id": <id>}
"""

import logging
import uuid
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..clients.store import NoRowsError, StoreError
from ..config import get_settings
from ..models import ErrorResponse
from ..services.geospatial import InvalidQueryError

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Custom API error with structured response."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NotFoundError(APIError):
    """Requested entity does not exist."""

    def __init__(self, message: str):
        super().__init__(code="NOT_FOUND", message=message, status_code=404)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or f"req_{uuid.uuid4().hex[:12]}"


def format_error_response(
    code: str,
    message: str,
    request_id: str,
    details: Optional[dict] = None,
) -> dict:
    """Format a consistent error response."""
    return ErrorResponse(
        error=message,
        code=code,
        request_id=request_id,
        details=details or None,
    ).model_dump(exclude_none=True)


def _error_json(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    request_id = _request_id(request)
    return JSONResponse(
        status_code=status_code,
        content=format_error_response(code, message, request_id, details),
        headers={"X-Request-ID": request_id, **(headers or {})},
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Middleware that catches all exceptions and returns consistent error responses.

    Adds request ID to all responses for debugging/support.
    """

    def __init__(self, app):
        super().__init__(app)
        self._settings = get_settings()

    async def dispatch(self, request: Request, call_next) -> Response:
        """Process request and handle any errors consistently."""
        request_id = f"req_{uuid.uuid4().hex[:12]}"
        request.state.request_id = request_id

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as exc:
            logger.exception(f"Unhandled exception [request_id={request_id}]: {exc}")

            # Only show details in debug mode
            message = str(exc) if self._settings.debug else "Internal server error"
            return _error_json(request, 500, "INTERNAL_ERROR", message)


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle APIError subclasses."""
    return _error_json(request, exc.status_code, exc.code, exc.message, exc.details)


async def no_rows_handler(request: Request, exc: NoRowsError) -> JSONResponse:
    """Map a missing single row to 404."""
    return _error_json(request, 404, "NOT_FOUND", f"Record not found in {exc.table}")


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Backing store failures have no fallback: report them as a bad gateway."""
    logger.error(f"Store error [request_id={_request_id(request)}]: {exc.message}")
    settings = get_settings()
    message = exc.message if settings.debug else "Data store unavailable"
    return _error_json(request, 502, "STORE_ERROR", message)


async def invalid_query_handler(request: Request, exc: InvalidQueryError) -> JSONResponse:
    """Reject out-of-range radius query arguments."""
    return _error_json(request, 400, "BAD_REQUEST", str(exc))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle validation errors with consistent format."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error.get("loc", []))
        errors.append({
            "field": field,
            "message": error.get("msg", "Invalid value"),
            "type": error.get("type", "value_error"),
        })

    first = errors[0]["message"] if errors else "Request validation failed"
    return _error_json(
        request,
        422,
        "VALIDATION_ERROR",
        first,
        details={"errors": errors},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    return _error_json(
        request,
        exc.status_code,
        f"HTTP_{exc.status_code}",
        str(exc.detail),
        headers=exc.headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach every error handler to the app."""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(NoRowsError, no_rows_handler)
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(InvalidQueryError, invalid_query_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
