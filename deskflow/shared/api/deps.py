"""
API Dependencies
================

Caller identity for route handlers.

Authentication happens upstream; the gateway forwards the authenticated
user's id and role as ``X-User-Id`` and ``X-User-Role``.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Header

from deskflow.config import UserRole
from deskflow.core import AuthenticationException, AuthorizationException

VALID_ROLES = [UserRole.ADMIN, UserRole.TECHNICIAN, UserRole.USER, UserRole.SYSTEM]


@dataclass(frozen=True)
class Actor:
    """Authenticated caller."""
    user_id: str
    role: str


async def get_actor(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role")
) -> Actor:
    """
    Build the caller identity from gateway headers.

    Raises:
        AuthenticationException: 401 if either header is missing or the
            role is unknown
    """
    if not x_user_id or not x_user_role:
        raise AuthenticationException("Missing caller identity")

    role = x_user_role.strip().upper()
    if role not in VALID_ROLES:
        raise AuthenticationException(f"Unknown role '{x_user_role}'")

    return Actor(user_id=x_user_id.strip(), role=role)


def require_roles(*roles: str) -> Callable:
    """
    Dependency factory restricting a route to the given roles.

    Usage:
        @router.post("/templates")
        async def create(actor: Actor = Depends(require_roles(UserRole.ADMIN))):
            ...
    """
    allowed = set(roles)

    async def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in allowed:
            raise AuthorizationException(
                "Insufficient role for this operation",
                {"role": actor.role, "required": sorted(allowed)}
            )
        return actor

    return dependency


require_admin = require_roles(UserRole.ADMIN)
