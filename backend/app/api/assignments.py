# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Query, status

from app.api.deps import AdminDep, AuthDep, RegistryDep
from app.db import SessionDep
from app.schemas.assignment import (
    AssignmentListResponse,
    AssignmentResponse,
    CloseAssignmentRequest,
    CreateAssignmentRequest,
    PolicyChangeRequest,
)
from app.schemas.reconciliation import PolicyChangeResponse
from app.services import assignment as assignment_service

entity_assignments_router = APIRouter(
    prefix="/entities/{entity_id}",
    tags=["assignments"],
)


@entity_assignments_router.post(
    "/assignments", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED
)
async def create_assignment(
    entity_id: str,
    payload: CreateAssignmentRequest,
    session: SessionDep,
    auth: AdminDep,
    registry: RegistryDep,
) -> AssignmentResponse:
    """Assign an entity to a policy."""
    return await assignment_service.create_assignment(session, auth, registry, entity_id, payload)


@entity_assignments_router.get("/assignments", response_model=AssignmentListResponse)
async def list_assignments(
    entity_id: str,
    session: SessionDep,
    auth: AuthDep,
    resource_type: str | None = Query(default=None),
    active_on: date | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> AssignmentListResponse:
    """List an entity's assignments."""
    return await assignment_service.list_assignments(
        session, entity_id, resource_type=resource_type, active_on=active_on, offset=offset, limit=limit
    )


@entity_assignments_router.post("/assignments/{assignment_id}/close", response_model=AssignmentResponse)
async def close_assignment(
    entity_id: str,
    assignment_id: uuid.UUID,
    payload: CloseAssignmentRequest,
    session: SessionDep,
    auth: AdminDep,
) -> AssignmentResponse:
    """End-date an assignment."""
    return await assignment_service.close_assignment(session, auth, entity_id, assignment_id, payload.effective_to)


@entity_assignments_router.post("/policy-change", response_model=PolicyChangeResponse)
async def change_policy(
    entity_id: str,
    payload: PolicyChangeRequest,
    session: SessionDep,
    auth: AdminDep,
    registry: RegistryDep,
) -> PolicyChangeResponse:
    """Move an entity to a new policy, reconciling the old one."""
    return await assignment_service.change_policy(session, auth, registry, entity_id, payload)
