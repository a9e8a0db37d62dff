# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Query, status

from app.api.deps import AdminDep, AuthDep, RegistryDep
from app.db import SessionDep
from app.models.enums import RequestStatus
from app.schemas.request import (
    DecisionPayload,
    RequestListResponse,
    RequestResponse,
    SubmitRequestPayload,
)
from app.services import request as request_service

entity_requests_router = APIRouter(
    prefix="/entities/{entity_id}/requests",
    tags=["requests"],
)

requests_router = APIRouter(
    prefix="/requests",
    tags=["requests"],
)


@entity_requests_router.post("", response_model=RequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_request(
    entity_id: str,
    payload: SubmitRequestPayload,
    session: SessionDep,
    auth: AuthDep,
    registry: RegistryDep,
) -> RequestResponse:
    """Submit a consumption request for an entity."""
    return await request_service.submit_request(session, auth, registry, entity_id, payload)


@entity_requests_router.get("", response_model=RequestListResponse)
async def list_entity_requests(
    entity_id: str,
    session: SessionDep,
    auth: AuthDep,
    status_filter: RequestStatus | None = Query(default=None, alias="status"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> RequestListResponse:
    """List an entity's requests."""
    return await request_service.list_requests(
        session, entity_id=entity_id, status=status_filter, offset=offset, limit=limit
    )


@requests_router.get("", response_model=RequestListResponse)
async def list_requests(
    session: SessionDep,
    auth: AdminDep,
    status_filter: RequestStatus | None = Query(default=None, alias="status"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> RequestListResponse:
    """List requests across entities, e.g. the pending approval queue."""
    return await request_service.list_requests(session, status=status_filter, offset=offset, limit=limit)


@requests_router.get("/{request_id}", response_model=RequestResponse)
async def get_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> RequestResponse:
    """Get a single request."""
    return await request_service.get_request(session, auth, request_id)


@requests_router.post("/{request_id}/approve", response_model=RequestResponse)
async def approve_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AdminDep,
    registry: RegistryDep,
    payload: DecisionPayload | None = None,
) -> RequestResponse:
    """Approve a pending request."""
    return await request_service.approve_request(session, auth, registry, request_id, payload)


@requests_router.post("/{request_id}/reject", response_model=RequestResponse)
async def reject_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AdminDep,
    registry: RegistryDep,
    payload: DecisionPayload | None = None,
) -> RequestResponse:
    """Reject a pending request."""
    return await request_service.reject_request(session, auth, registry, request_id, payload)


@requests_router.post("/{request_id}/cancel", response_model=RequestResponse)
async def cancel_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    registry: RegistryDep,
    payload: DecisionPayload | None = None,
) -> RequestResponse:
    """Cancel a pending or approved request."""
    return await request_service.cancel_request(session, auth, registry, request_id, payload)
