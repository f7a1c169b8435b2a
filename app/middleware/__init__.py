"""
FastAPI Middleware Module.

Request/response middleware for cross-cutting concerns:
- ErrorHandlerMiddleware: Consistent error response formatting
- RequestLoggingMiddleware: Structured request/response logging
- get_current_user / require_role: Mock header authentication

Middleware is applied in order defined in main.py (last added = outermost).
"""

from .auth import MOCK_USERS, get_current_user, require_role
from .error_handler import APIError, ErrorHandlerMiddleware, NotFoundError, register_exception_handlers
from .request_logging import RequestLoggingMiddleware

__all__ = [
    "MOCK_USERS",
    "get_current_user",
    "require_role",
    "APIError",
    "ErrorHandlerMiddleware",
    "NotFoundError",
    "register_exception_handlers",
    "RequestLoggingMiddleware",
]
