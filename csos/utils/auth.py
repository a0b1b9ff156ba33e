"""
Authentication and role authorization utilities.

Callers identify themselves with a bearer JWT issued by the managed backend.
Role assignments live in the user_role table.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from fastapi import Request

from csos.backend import BackendClient
from csos.utils.error_handling import AuthenticationError, AuthorizationError, BackendError

logger = logging.getLogger(__name__)

ROLE_TABLE = "user_role"


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller and a backend client acting on their behalf."""
    user_id: str
    client: BackendClient


def get_bearer_token(request: Request) -> Optional[str]:
    """
    Extract the bearer token from the Authorization header.

    Returns:
        str: Token, or None if the header is missing or not a bearer token
    """
    auth_header = request.headers.get("authorization")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_auth(request: Request, backend: BackendClient) -> AuthContext:
    """
    Verify the caller is authenticated.

    Raises:
        AuthenticationError: If the header is missing or the token is invalid
    """
    if not request.headers.get("authorization"):
        raise AuthenticationError("Missing authorization header")

    token = get_bearer_token(request)
    user = backend.get_user(token) if token else None
    if not user:
        raise AuthenticationError("Invalid or expired authorization token")

    return AuthContext(user_id=user["id"], client=backend.for_user(token))


def get_user_roles(client: BackendClient, user_id: str) -> List[str]:
    """Get all roles for a user. Lookup failures yield no roles."""
    try:
        rows = client.select(ROLE_TABLE, {"user_id": user_id}, columns="role")
    except BackendError as e:
        logger.warning(f"Could not load roles for user {user_id}: {e}")
        return []
    return [row["role"] for row in rows]


def has_role(client: BackendClient, user_id: str, role: str) -> bool:
    """Check if user has a specific role."""
    return role in get_user_roles(client, user_id)


def require_role(client: BackendClient, user_id: str, allowed_roles: Iterable[str]) -> List[str]:
    """
    Require user to have at least one of the specified roles.

    Returns:
        The caller's roles, so handlers can reuse them

    Raises:
        AuthorizationError: If none of allowed_roles is held
    """
    allowed = list(allowed_roles)
    user_roles = get_user_roles(client, user_id)
    if not any(role in user_roles for role in allowed):
        logger.info(f"User {user_id} denied; has {user_roles}, needs one of {allowed}")
        raise AuthorizationError(f"Insufficient permissions. Required roles: {', '.join(allowed)}")
    return user_roles
