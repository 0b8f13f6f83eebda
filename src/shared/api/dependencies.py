"""
Shared API Dependencies
=======================

FastAPI dependencies resolving the caller identity and the service
container.

Authentication happens upstream; the gateway forwards the resolved
identity as ``X-Actor-Id`` / ``X-Actor-Role`` headers.
"""

from typing import Optional

from fastapi import Header, Request

from src.config import ActorRole
from src.core import PermissionDeniedException
from src.complaints.domain import Actor


def get_container(request: Request):
    """The service container built at startup."""
    return request.app.state.container


async def get_actor(
    x_actor_id: Optional[str] = Header(None, description="Resolved caller id"),
    x_actor_role: Optional[str] = Header(None, description="Resolved caller role"),
) -> Actor:
    """
    Build the Actor from the identity headers.

    Raises:
        PermissionDeniedException: if either header is missing or the role is unknown
    """
    if not x_actor_id or not x_actor_role:
        raise PermissionDeniedException("Missing actor identity headers")
    try:
        role = ActorRole(x_actor_role.lower())
    except ValueError:
        raise PermissionDeniedException(f"Unknown actor role '{x_actor_role}'")
    if role == ActorRole.SYSTEM:
        raise PermissionDeniedException("The system role cannot be claimed over HTTP")
    return Actor(id=x_actor_id, role=role)
