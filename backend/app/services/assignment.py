# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from app.core.time import Period
from app.exceptions import AppError, NotFoundError
from app.models.assignment import ResourcePolicyAssignment
from app.models.enums import AuditAction, AuditEntityType, TriggerType
from app.schemas.assignment import AssignmentListResponse, AssignmentResponse
from app.schemas.reconciliation import PolicyChangeResponse
from app.services.audit import model_to_audit_dict, write_audit_log
from app.services.balance import find_active_assignment, to_active_assignment
from app.services.employee import resolve_hire_date
from app.services.policy import get_policy_row, to_domain_policy
from app.services.reconciliation import build_run_response, reconcile_assignment

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.core.resources import ResourceRegistry
    from app.schemas.assignment import CreateAssignmentRequest, PolicyChangeRequest
    from app.schemas.auth import AuthContext

logger = logging.getLogger(__name__)


def _build_assignment_response(assignment: ResourcePolicyAssignment) -> AssignmentResponse:
    """Build an AssignmentResponse from a DB model."""
    return AssignmentResponse(
        id=assignment.id,
        entity_id=assignment.entity_id,
        policy_key=assignment.policy_key,
        resource_type=assignment.resource_type,
        effective_from=assignment.effective_from,
        effective_to=assignment.effective_to,
        consumption_priority=assignment.consumption_priority,
        requires_approval=assignment.requires_approval,
        auto_approve_up_to=Decimal(assignment.auto_approve_up_to) if assignment.auto_approve_up_to else None,
        hire_date=assignment.hire_date,
        created_at=assignment.created_at,
    )


async def _check_overlap(
    session: AsyncSession,
    entity_id: str,
    policy_key: str,
    effective_from: date,
    effective_to: date | None,
) -> None:
    """Check for overlapping assignments using closed intervals [from, to]."""
    query = select(ResourcePolicyAssignment).where(
        col(ResourcePolicyAssignment.entity_id) == entity_id,
        col(ResourcePolicyAssignment.policy_key) == policy_key,
        or_(
            col(ResourcePolicyAssignment.effective_to).is_(None),
            col(ResourcePolicyAssignment.effective_to) >= effective_from,
        ),
    )
    if effective_to is not None:
        query = query.where(col(ResourcePolicyAssignment.effective_from) <= effective_to)
    result = await session.execute(query)
    if result.first() is not None:
        raise AppError(
            "Assignment overlaps with an existing assignment for this entity and policy",
            status_code=409,
        )


async def _get_assignment(session: AsyncSession, entity_id: str, assignment_id: uuid.UUID) -> ResourcePolicyAssignment:
    result = await session.execute(
        select(ResourcePolicyAssignment).where(
            col(ResourcePolicyAssignment.id) == assignment_id,
            col(ResourcePolicyAssignment.entity_id) == entity_id,
        )
    )
    assignment = result.scalar_one_or_none()
    if assignment is None:
        raise NotFoundError("Assignment not found")
    return assignment


async def _insert_assignment(
    session: AsyncSession,
    auth: AuthContext,
    registry: ResourceRegistry,
    assignment: ResourcePolicyAssignment,
) -> ResourcePolicyAssignment:
    """Validate and flush a new assignment row, with its audit entry."""
    policy_row = await get_policy_row(session, assignment.policy_key)
    assignment.resource_type = policy_row.resource_type

    # Parsing against the entity's hire date surfaces tenure schedules that cannot be anchored.
    hire_date = await resolve_hire_date(assignment.entity_id, assignment.hire_date)
    to_domain_policy(policy_row, registry, hire_date=hire_date)

    await _check_overlap(
        session, assignment.entity_id, assignment.policy_key, assignment.effective_from, assignment.effective_to
    )
    session.add(assignment)
    try:
        async with session.begin_nested():
            await session.flush()
    except IntegrityError:
        raise AppError("Duplicate assignment", status_code=409) from None

    await write_audit_log(
        session,
        actor_id=auth.actor_id,
        entity_type=AuditEntityType.ASSIGNMENT,
        entity_id=assignment.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(assignment),
    )
    return assignment


async def create_assignment(
    session: AsyncSession,
    auth: AuthContext,
    registry: ResourceRegistry,
    entity_id: str,
    payload: CreateAssignmentRequest,
) -> AssignmentResponse:
    """Assign an entity to a policy."""
    assignment = ResourcePolicyAssignment(
        entity_id=entity_id,
        policy_key=payload.policy_key,
        resource_type="",
        effective_from=payload.effective_from,
        effective_to=payload.effective_to,
        consumption_priority=payload.consumption_priority,
        requires_approval=payload.requires_approval,
        auto_approve_up_to=str(payload.auto_approve_up_to) if payload.auto_approve_up_to is not None else None,
        hire_date=payload.hire_date,
    )
    await _insert_assignment(session, auth, registry, assignment)

    await session.commit()
    await session.refresh(assignment)
    return _build_assignment_response(assignment)


async def list_assignments(
    session: AsyncSession,
    entity_id: str,
    *,
    resource_type: str | None = None,
    active_on: date | None = None,
    offset: int = 0,
    limit: int = 50,
) -> AssignmentListResponse:
    """List an entity's assignments, optionally only those active on a date."""
    filters = [col(ResourcePolicyAssignment.entity_id) == entity_id]
    if resource_type is not None:
        filters.append(col(ResourcePolicyAssignment.resource_type) == resource_type)
    if active_on is not None:
        filters.append(col(ResourcePolicyAssignment.effective_from) <= active_on)
        filters.append(
            or_(
                col(ResourcePolicyAssignment.effective_to).is_(None),
                col(ResourcePolicyAssignment.effective_to) >= active_on,
            )
        )

    count_result = await session.execute(select(func.count()).select_from(ResourcePolicyAssignment).where(*filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(ResourcePolicyAssignment)
        .where(*filters)
        .order_by(col(ResourcePolicyAssignment.consumption_priority), col(ResourcePolicyAssignment.effective_from))
        .offset(offset)
        .limit(limit)
    )
    assignments = list(result.scalars().all())

    return AssignmentListResponse(
        items=[_build_assignment_response(a) for a in assignments],
        total=total,
    )


async def _close(
    session: AsyncSession,
    auth: AuthContext,
    assignment: ResourcePolicyAssignment,
    effective_to: date,
) -> None:
    if assignment.effective_to is not None and assignment.effective_to <= effective_to:
        raise AppError("Assignment already ends on or before that date", status_code=400)
    if effective_to < assignment.effective_from:
        raise AppError("effective_to must be >= effective_from", status_code=400)

    before_dict = model_to_audit_dict(assignment)
    assignment.effective_to = effective_to
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.actor_id,
        entity_type=AuditEntityType.ASSIGNMENT,
        entity_id=assignment.id,
        action=AuditAction.CLOSE,
        before_json=before_dict,
        after_json=model_to_audit_dict(assignment),
    )


async def close_assignment(
    session: AsyncSession,
    auth: AuthContext,
    entity_id: str,
    assignment_id: uuid.UUID,
    effective_to: date,
) -> AssignmentResponse:
    """End-date an assignment; ``effective_to`` is its last active day."""
    assignment = await _get_assignment(session, entity_id, assignment_id)
    await _close(session, auth, assignment, effective_to)

    await session.commit()
    await session.refresh(assignment)
    return _build_assignment_response(assignment)


async def change_policy(
    session: AsyncSession,
    auth: AuthContext,
    registry: ResourceRegistry,
    entity_id: str,
    payload: PolicyChangeRequest,
) -> PolicyChangeResponse:
    """Move an entity from one policy to another.

    The old assignment ends the day before ``effective_date`` and the new one
    starts on it. The old policy's shortened period is reconciled with the
    ``policy_change`` trigger, carrying into the new policy. All of it commits
    together or not at all.
    """
    last_day = payload.effective_date - timedelta(days=1)
    old = await find_active_assignment(
        session, registry, entity_id, payload.from_policy_key, last_day, for_update=True
    )
    new_policy_row = await get_policy_row(session, payload.to_policy_key)
    if new_policy_row.resource_type != old.row.resource_type:
        raise AppError(
            f"Cannot move {old.row.resource_type} balance to a {new_policy_row.resource_type} policy",
            status_code=400,
        )

    old_policy = old.assignment.policy
    full_period = old_policy.period_for(last_day, old.hire_date)
    ending_period = Period.of(full_period.start.date, last_day)

    await _close(session, auth, old.row, last_day)
    closed = await to_active_assignment(old.row, old.policy_row, registry)

    threshold = payload.auto_approve_up_to
    opened = ResourcePolicyAssignment(
        entity_id=entity_id,
        policy_key=payload.to_policy_key,
        resource_type=new_policy_row.resource_type,
        effective_from=payload.effective_date,
        consumption_priority=(
            payload.consumption_priority
            if payload.consumption_priority is not None
            else old.row.consumption_priority
        ),
        requires_approval=(
            payload.requires_approval if payload.requires_approval is not None else old.row.requires_approval
        ),
        auto_approve_up_to=str(threshold) if threshold is not None else old.row.auto_approve_up_to,
        hire_date=old.row.hire_date,
    )
    await _insert_assignment(session, auth, registry, opened)

    new_policy = to_domain_policy(new_policy_row, registry, hire_date=old.hire_date)
    new_full = new_policy.period_for(payload.effective_date, old.hire_date)
    next_period = Period.of(payload.effective_date, new_full.end.date)

    run = await reconcile_assignment(
        session,
        registry,
        closed,
        ending_period,
        next_period,
        trigger=TriggerType.POLICY_CHANGE,
        next_policy_key=payload.to_policy_key,
        full_period=full_period,
        actor_id=auth.actor_id,
    )

    await session.commit()
    await session.refresh(old.row)
    await session.refresh(opened)
    await session.refresh(run)
    logger.info(
        "Moved %s from %s to %s on %s",
        entity_id,
        payload.from_policy_key,
        payload.to_policy_key,
        payload.effective_date,
    )
    return PolicyChangeResponse(
        closed=_build_assignment_response(old.row),
        opened=_build_assignment_response(opened),
        run=build_run_response(run),
    )
