# ruff: noqa: TC001, TC003
from __future__ import annotations

from fastapi import APIRouter, Query, status

from app.api.deps import AdminDep, AuthDep, RegistryDep
from app.db import SessionDep
from app.schemas.policy import (
    CreatePolicyRequest,
    CreatePresetRequest,
    PolicyDocument,
    PolicyListResponse,
    PolicyResponse,
)
from app.services import policy as policy_service

router = APIRouter(prefix="/policies", tags=["policies"])


@router.post("", response_model=PolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_policy(
    payload: CreatePolicyRequest,
    session: SessionDep,
    auth: AdminDep,
    registry: RegistryDep,
) -> PolicyResponse:
    """Validate and store a new policy document."""
    return await policy_service.create_policy(session, auth, payload, registry)


@router.get("", response_model=PolicyListResponse)
async def list_policies(
    session: SessionDep,
    auth: AuthDep,
    resource_type: str | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> PolicyListResponse:
    """List stored policies."""
    return await policy_service.list_policies(session, resource_type, offset, limit)


@router.get("/presets", response_model=dict[str, PolicyDocument])
async def list_presets(auth: AuthDep) -> dict[str, PolicyDocument]:
    """The built-in policy documents, by preset name."""
    return {name: build() for name, build in policy_service.PRESETS.items()}


@router.post("/presets/{preset}", response_model=PolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_preset_policy(
    preset: str,
    session: SessionDep,
    auth: AdminDep,
    registry: RegistryDep,
    payload: CreatePresetRequest | None = None,
) -> PolicyResponse:
    """Store one of the built-in policy documents."""
    return await policy_service.create_policy_from_preset(
        session, auth, preset, payload or CreatePresetRequest(), registry
    )


@router.get("/{key}", response_model=PolicyResponse)
async def get_policy(
    key: str,
    session: SessionDep,
    auth: AuthDep,
) -> PolicyResponse:
    """Get a single policy by key."""
    return await policy_service.get_policy(session, key)
