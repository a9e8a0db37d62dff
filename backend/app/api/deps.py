# ruff: noqa: B008
from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, Request, status

from app.core.resources import ResourceRegistry
from app.exceptions import AppError
from app.schemas.auth import AuthContext


async def get_auth_context(
    x_actor_id: str = Header(default="anonymous"),
    x_role: str = Header(default="employee"),
) -> AuthContext:
    """Extract dev auth context from request headers."""
    return AuthContext(actor_id=x_actor_id, role=x_role)


AuthDep = Annotated[AuthContext, Depends(get_auth_context)]


async def require_admin(
    auth: AuthDep,
) -> AuthContext:
    """Require admin role for the request."""
    if not auth.is_admin:
        raise AppError("Admin access required", status_code=status.HTTP_403_FORBIDDEN)
    return auth


AdminDep = Annotated[AuthContext, Depends(require_admin)]


def get_resource_registry(request: Request) -> ResourceRegistry:
    """FastAPI dependency for the registry the app was built with."""
    registry: ResourceRegistry = request.app.state.registry
    return registry


RegistryDep = Annotated[ResourceRegistry, Depends(get_resource_registry)]
