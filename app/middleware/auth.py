"""
Mock Authentication.

Identifies the acting user from the X-User-ID header against a fixed
user table. Requests without the header act as the default citizen.
There is no real credential check; this exists so audit trails and
owner fields carry a user id.
"""

import logging
from typing import Callable, Dict, Optional

from fastapi import Depends, Header, Request

from .error_handler import APIError

logger = logging.getLogger(__name__)

DEFAULT_USER_ID = "citizen1"

MOCK_USERS: Dict[str, Dict[str, str]] = {
    "netrunnerX": {"id": "netrunnerX", "role": "admin", "name": "Net Runner X"},
    "reliefAdmin": {"id": "reliefAdmin", "role": "admin", "name": "Relief Administrator"},
    "contributor1": {"id": "contributor1", "role": "contributor", "name": "Field Contributor"},
    "citizen1": {"id": "citizen1", "role": "user", "name": "Concerned Citizen"},
    "anonymous": {"id": "anonymous", "role": "user", "name": "Anonymous User"},
}

ROLE_LEVELS = {"user": 0, "contributor": 1, "admin": 2}


async def get_current_user(
    request: Request,
    x_user_id: Optional[str] = Header(None),
) -> Dict[str, str]:
    """
    Resolve the acting user.

    Raises:
        APIError: 401 for an unknown user id
    """
    user_id = x_user_id or DEFAULT_USER_ID
    user = MOCK_USERS.get(user_id)

    if user is None:
        logger.warning(f"Rejected unknown user id: {user_id}")
        raise APIError(
            code="INVALID_USER",
            message="Invalid user",
            status_code=401,
        )

    request.state.user_id = user["id"]
    return user


def require_role(role: str) -> Callable:
    """Build a dependency that rejects users below the given role."""
    required = ROLE_LEVELS[role]

    async def dependency(user: Dict[str, str] = Depends(get_current_user)) -> Dict[str, str]:
        if ROLE_LEVELS.get(user["role"], -1) < required:
            logger.warning(f"User {user['id']} lacks role {role}")
            raise APIError(
                code="FORBIDDEN",
                message=f"Requires {role} role",
                status_code=403,
            )
        return user

    return dependency
