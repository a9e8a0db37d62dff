"""Balances, ledger reads and direct ledger writes (adjustments and grants).

Balances are never stored. Every query loads the period's transactions for
each active assignment and folds them with the policy's accrual schedule.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select
from sqlmodel import col

from app.core.accrual import HoursWorkedAccrual, PayrollRecord, total_accrued
from app.core.amount import Amount
from app.core.balance import calculate_balance
from app.core.ledger import DayUniqueLedger
from app.core.policy import ApprovalConfig, PolicyAssignment, PolicyBalance, ResourceBalance
from app.core.projection import project
from app.core.time import Period, TimePoint
from app.core.transaction import Transaction
from app.exceptions import AppError, InsufficientBalanceError, NotFoundError
from app.models.assignment import ResourcePolicyAssignment
from app.models.enums import AuditAction, AuditEntityType, TransactionType
from app.models.ledger import LedgerTransaction
from app.models.policy import ResourcePolicy
from app.schemas.balance import (
    LedgerListResponse,
    PolicyBalanceResponse,
    ProjectionResponse,
    ResourceBalanceResponse,
    TransactionResponse,
)
from app.services.audit import write_audit_log
from app.services.employee import resolve_hire_date, resolve_hours_per_day
from app.services.ledger import SqlLedgerStore, row_to_transaction
from app.services.policy import to_domain_policy

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.core.balance import Balance
    from app.core.resources import ResourceRegistry
    from app.core.store import LedgerStore
    from app.schemas.auth import AuthContext
    from app.schemas.balance import CreateAdjustmentRequest, CreateGrantRequest

logger = logging.getLogger(__name__)


def today_utc() -> date:
    return datetime.now(UTC).date()


# ---------------------------------------------------------------------------
# Assignment loading
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActiveAssignment:
    """A stored assignment together with its parsed domain counterpart."""

    row: ResourcePolicyAssignment
    policy_row: ResourcePolicy
    assignment: PolicyAssignment
    hire_date: date | None

    @property
    def accrual_from(self) -> date:
        """Accruals start at the later of the hire date and the assignment start."""
        if self.hire_date is not None and self.hire_date > self.row.effective_from:
            return self.hire_date
        return self.row.effective_from

    def period_for(self, on: date) -> Period:
        """The policy period containing ``on``, cut short where the assignment ends."""
        full = self.assignment.policy.period_for(on, self.hire_date)
        effective_to = self.row.effective_to
        if effective_to is not None and full.start.date <= effective_to < full.end.date:
            return Period.of(full.start.date, effective_to)
        return full


async def to_active_assignment(
    row: ResourcePolicyAssignment,
    policy_row: ResourcePolicy,
    registry: ResourceRegistry,
) -> ActiveAssignment:
    hire_date = await resolve_hire_date(row.entity_id, row.hire_date)
    hours_per_day = await resolve_hours_per_day(row.entity_id)
    policy = to_domain_policy(policy_row, registry, hire_date=hire_date, hours_per_day=hours_per_day)
    threshold = Amount.of(row.auto_approve_up_to, policy.unit) if row.auto_approve_up_to is not None else None
    assignment = PolicyAssignment(
        id=str(row.id),
        entity_id=row.entity_id,
        policy=policy,
        effective_from=row.effective_from,
        effective_to=row.effective_to,
        consumption_priority=row.consumption_priority,
        approval=ApprovalConfig(requires_approval=row.requires_approval, auto_approve_up_to=threshold),
    )
    return ActiveAssignment(row=row, policy_row=policy_row, assignment=assignment, hire_date=hire_date)


async def load_active_assignments(
    session: AsyncSession,
    registry: ResourceRegistry,
    entity_id: str,
    resource_type: str | None,
    on: date,
    *,
    for_update: bool = False,
) -> list[ActiveAssignment]:
    """Assignments of ``entity_id`` active on ``on``, ordered by consumption priority.

    ``for_update`` locks the assignment rows so concurrent writers for the same
    entity serialize on the balance check.
    """
    stmt = (
        select(ResourcePolicyAssignment, ResourcePolicy)
        .join(ResourcePolicy, col(ResourcePolicy.policy_key) == col(ResourcePolicyAssignment.policy_key))
        .where(
            col(ResourcePolicyAssignment.entity_id) == entity_id,
            col(ResourcePolicyAssignment.effective_from) <= on,
            or_(
                col(ResourcePolicyAssignment.effective_to).is_(None),
                col(ResourcePolicyAssignment.effective_to) >= on,
            ),
        )
        .order_by(col(ResourcePolicyAssignment.consumption_priority), col(ResourcePolicyAssignment.created_at))
    )
    if resource_type is not None:
        stmt = stmt.where(col(ResourcePolicyAssignment.resource_type) == resource_type)
    if for_update:
        stmt = stmt.with_for_update(of=ResourcePolicyAssignment)

    result = await session.execute(stmt)
    return [await to_active_assignment(row, policy_row, registry) for row, policy_row in result.all()]


async def find_active_assignment(
    session: AsyncSession,
    registry: ResourceRegistry,
    entity_id: str,
    policy_key: str,
    on: date,
    *,
    for_update: bool = False,
) -> ActiveAssignment:
    """The entity's assignment to ``policy_key`` on ``on``; raises 404 when there is none."""
    for active in await load_active_assignments(session, registry, entity_id, None, on, for_update=for_update):
        if active.row.policy_key == policy_key:
            return active
    raise NotFoundError(f"Entity {entity_id} is not assigned to policy {policy_key} on {on}")


# ---------------------------------------------------------------------------
# Balance computation
# ---------------------------------------------------------------------------


async def compute_policy_balance(
    store: LedgerStore,
    active: ActiveAssignment,
    as_of: date,
    period: Period | None = None,
) -> PolicyBalance:
    """Fold the ledger and accrual schedule of one assignment as of ``as_of``."""
    policy = active.assignment.policy
    if period is None:
        period = active.period_for(as_of)
    transactions = await store.load_range(active.row.entity_id, policy.id, period.start, period.end)
    balance = calculate_balance(
        transactions,
        period,
        policy.unit,
        policy.accrual,
        TimePoint.of(as_of),
        active.accrual_from,
    )
    return PolicyBalance(assignment=active.assignment, balance=balance)


async def get_resource_balance(
    session: AsyncSession,
    registry: ResourceRegistry,
    entity_id: str,
    resource_type: str,
    as_of: date | None = None,
    *,
    for_update: bool = False,
) -> ResourceBalance:
    """Every active policy balance of ``resource_type`` for ``entity_id``."""
    as_of = as_of or today_utc()
    resource = registry.get(resource_type)
    actives = await load_active_assignments(session, registry, entity_id, resource_type, as_of, for_update=for_update)
    store = SqlLedgerStore(session, registry)
    balances = [await compute_policy_balance(store, active, as_of) for active in actives]
    return ResourceBalance(
        entity_id=entity_id,
        resource_type=resource.name,
        unit=resource.unit,
        policy_balances=tuple(balances),
    )


async def get_policy_balance(
    session: AsyncSession,
    registry: ResourceRegistry,
    entity_id: str,
    policy_key: str,
    as_of: date | None = None,
) -> PolicyBalance:
    as_of = as_of or today_utc()
    active = await find_active_assignment(session, registry, entity_id, policy_key, as_of)
    return await compute_policy_balance(SqlLedgerStore(session, registry), active, as_of)


def build_policy_balance_response(pb: PolicyBalance) -> PolicyBalanceResponse:
    balance: Balance = pb.balance
    policy = pb.policy
    return PolicyBalanceResponse(
        policy_key=policy.id,
        assignment_id=pb.assignment.id,
        consumption_priority=pb.priority,
        period_start=balance.period.start.date,
        period_end=balance.period.end.date,
        unit=policy.unit,
        mode=policy.consumption_mode,
        is_unlimited=policy.is_unlimited,
        available=None if policy.is_unlimited else pb.available().value,
        accrued_to_date=balance.accrued_to_date.value,
        total_entitlement=balance.total_entitlement.value,
        consumed=balance.total_consumed.value,
        pending=balance.pending.value,
        adjustments=balance.adjustments.value,
        current_accrued=balance.current_accrued().value,
    )


def build_resource_balance_response(rb: ResourceBalance, as_of: date) -> ResourceBalanceResponse:
    return ResourceBalanceResponse(
        entity_id=rb.entity_id,
        resource_type=rb.resource_type,
        unit=rb.unit,
        as_of=as_of,
        is_unlimited=rb.is_unlimited,
        total_available=None if rb.is_unlimited else rb.total_available().value,
        policies=[build_policy_balance_response(pb) for pb in rb.by_priority()],
    )


async def get_balance_view(
    session: AsyncSession,
    registry: ResourceRegistry,
    entity_id: str,
    resource_type: str,
    as_of: date | None = None,
) -> ResourceBalanceResponse:
    as_of = as_of or today_utc()
    rb = await get_resource_balance(session, registry, entity_id, resource_type, as_of)
    return build_resource_balance_response(rb, as_of)


async def project_consumption(
    session: AsyncSession,
    registry: ResourceRegistry,
    entity_id: str,
    policy_key: str,
    requested: Amount,
    on: date | None = None,
) -> ProjectionResponse:
    """Would consuming ``requested`` from ``policy_key`` on ``on`` be allowed?"""
    on = on or today_utc()
    active = await find_active_assignment(session, registry, entity_id, policy_key, on)
    policy = active.assignment.policy
    period = active.period_for(on)
    store = SqlLedgerStore(session, registry)
    transactions = await store.load_range(entity_id, policy.id, period.start, period.end)
    result = project(transactions, policy, period, requested, as_of=TimePoint.of(on), hire_date=active.accrual_from)
    return ProjectionResponse(
        policy_key=policy.id,
        requested=requested.value,
        remaining=result.remaining.value,
        is_valid=result.is_valid,
        error=result.error,
        balance=build_policy_balance_response(PolicyBalance(active.assignment, result.balance)),
    )


# ---------------------------------------------------------------------------
# Ledger reads
# ---------------------------------------------------------------------------


def build_transaction_response(tx: Transaction) -> TransactionResponse:
    return TransactionResponse(
        id=tx.id,
        entity_id=tx.entity_id,
        policy_id=tx.policy_id,
        resource_type=tx.resource_type,
        type=tx.type,
        amount=tx.delta.value,
        unit=tx.delta.unit,
        effective_at=tx.effective_at.at,
        reference_id=tx.reference_id,
        reason=tx.reason,
        idempotency_key=tx.idempotency_key or None,
        metadata=tx.metadata,
    )


async def get_entity_ledger(
    session: AsyncSession,
    entity_id: str,
    *,
    policy_key: str | None = None,
    resource_type: str | None = None,
    start: date | None = None,
    end: date | None = None,
    offset: int = 0,
    limit: int = 50,
) -> LedgerListResponse:
    """Paginated ledger transactions for an entity, newest first."""
    filters = [col(LedgerTransaction.entity_id) == entity_id]
    if policy_key is not None:
        filters.append(col(LedgerTransaction.policy_id) == policy_key)
    if resource_type is not None:
        filters.append(col(LedgerTransaction.resource_type) == resource_type)
    if start is not None:
        filters.append(col(LedgerTransaction.effective_day) >= start)
    if end is not None:
        filters.append(col(LedgerTransaction.effective_day) <= end)

    total = (await session.execute(select(func.count()).select_from(LedgerTransaction).where(*filters))).scalar_one()
    result = await session.execute(
        select(LedgerTransaction)
        .where(*filters)
        .order_by(col(LedgerTransaction.effective_at).desc(), col(LedgerTransaction.created_at).desc())
        .offset(offset)
        .limit(limit)
    )
    items = [build_transaction_response(row_to_transaction(row)) for row in result.scalars().all()]
    return LedgerListResponse(items=items, total=total)


# ---------------------------------------------------------------------------
# Write path: adjustments and grants
# ---------------------------------------------------------------------------


async def _append_and_commit(
    session: AsyncSession,
    registry: ResourceRegistry,
    auth: AuthContext,
    tx: Transaction,
    entity_type: AuditEntityType,
) -> TransactionResponse:
    ledger = DayUniqueLedger(SqlLedgerStore(session, registry), registry)
    await ledger.append(tx)
    response = build_transaction_response(tx)

    await write_audit_log(
        session,
        actor_id=auth.actor_id,
        entity_type=entity_type,
        entity_id=tx.id,
        action=AuditAction.CREATE,
        after_json=response.model_dump(mode="json"),
    )
    await session.commit()
    return response


async def create_adjustment(
    session: AsyncSession,
    auth: AuthContext,
    registry: ResourceRegistry,
    entity_id: str,
    payload: CreateAdjustmentRequest,
) -> TransactionResponse:
    """Post a signed ADJUSTMENT to one of the entity's policies.

    Deductions are checked against the projected balance unless the policy
    allows negative balances.
    """
    on = payload.effective_date or today_utc()
    active = await find_active_assignment(session, registry, entity_id, payload.policy_key, on, for_update=True)
    policy = active.assignment.policy
    delta = Amount.of(payload.amount, policy.unit)

    if delta.is_negative() and not policy.is_unlimited:
        period = active.period_for(on)
        store = SqlLedgerStore(session, registry)
        transactions = await store.load_range(entity_id, policy.id, period.start, period.end)
        projection = project(
            transactions, policy, period, -delta, as_of=TimePoint.of(on), hire_date=active.accrual_from
        )
        if not projection.is_valid:
            raise InsufficientBalanceError(
                f"Adjustment rejected for policy {policy.id}: {projection.error}",
                shortfall=-projection.remaining.value if projection.remaining.is_negative() else None,
            )

    tx = Transaction(
        entity_id=entity_id,
        policy_id=policy.id,
        resource_type=policy.resource_type,
        effective_at=TimePoint.of(on),
        delta=delta,
        type=TransactionType.ADJUSTMENT,
        reason=payload.reason,
        idempotency_key=payload.idempotency_key or "",
        metadata={"adjusted_by": auth.actor_id},
    )
    logger.info("Adjusting %s/%s by %s", entity_id, policy.id, delta)
    return await _append_and_commit(session, registry, auth, tx, AuditEntityType.ADJUSTMENT)


async def create_grant(
    session: AsyncSession,
    auth: AuthContext,
    registry: ResourceRegistry,
    entity_id: str,
    payload: CreateGrantRequest,
) -> TransactionResponse:
    """Post a GRANT, either a fixed amount or the accrual earned from reported hours."""
    on = payload.effective_date or today_utc()
    active = await find_active_assignment(session, registry, entity_id, payload.policy_key, on)
    policy = active.assignment.policy

    metadata: dict[str, object] = {"granted_by": auth.actor_id}
    if payload.hours_worked is not None:
        if not isinstance(policy.accrual, HoursWorkedAccrual):
            raise AppError(f"Policy {policy.id} does not accrue from hours worked", status_code=400)
        schedule = policy.accrual.with_records([PayrollRecord(on=on, hours_worked=payload.hours_worked)])
        amount = total_accrued(schedule, TimePoint.of(on), TimePoint.of(on), policy.unit)
        metadata["hours_worked"] = str(payload.hours_worked)
        reason = payload.reason or f"{payload.hours_worked} hours worked"
    else:
        amount = Amount.of(payload.amount, policy.unit)
        reason = payload.reason or "grant"

    if not amount.is_positive():
        raise AppError("Grant amount must be positive", status_code=400)

    tx = Transaction(
        entity_id=entity_id,
        policy_id=policy.id,
        resource_type=policy.resource_type,
        effective_at=TimePoint.of(on),
        delta=amount,
        type=TransactionType.GRANT,
        reason=reason,
        idempotency_key=payload.idempotency_key or "",
        metadata=metadata,
    )
    logger.info("Granting %s to %s/%s", amount, entity_id, policy.id)
    return await _append_and_commit(session, registry, auth, tx, AuditEntityType.GRANT)
