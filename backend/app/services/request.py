# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from app.config import get_settings
from app.core.amount import Amount, quantize
from app.core.distribution import Allocation, ConsumptionDistribution, distribute, to_transactions
from app.core.ledger import DayUniqueLedger
from app.core.time import TimePoint
from app.core.transaction import Transaction, new_transaction_id
from app.exceptions import AppError, InsufficientBalanceError, InvalidStateError, NotFoundError
from app.models.enums import AuditAction, AuditEntityType, RequestStatus, ResourceDomain, TransactionType, Unit
from app.models.request import ResourceRequest
from app.schemas.request import AllocationResponse, RequestListResponse, RequestResponse
from app.services.audit import SYSTEM_ACTOR, model_to_audit_dict, write_audit_log
from app.services.balance import get_resource_balance
from app.services.holiday import holiday_dates
from app.services.ledger import SqlLedgerStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.core.policy import PolicyBalance, ResourceBalance
    from app.core.resources import ResourceRegistry, ResourceType
    from app.schemas.auth import AuthContext
    from app.schemas.request import DecisionPayload, SubmitRequestPayload

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_request_response(request: ResourceRequest) -> RequestResponse:
    """Map a request model to its response schema."""
    return RequestResponse(
        id=request.id,
        entity_id=request.entity_id,
        resource_type=request.resource_type,
        start_date=request.start_date,
        end_date=request.end_date,
        amount_per_day=Decimal(request.amount_per_day),
        total_amount=Decimal(request.total_amount),
        unit=Unit(request.unit),
        reason=request.reason,
        status=RequestStatus(request.status),
        requires_approval=request.requires_approval,
        allocations=[AllocationResponse.model_validate(a) for a in request.allocations_json or []],
        transaction_ids=list(request.transaction_ids or []),
        decided_at=request.decided_at,
        decided_by=request.decided_by,
        decision_note=request.decision_note,
        idempotency_key=request.idempotency_key,
        created_at=request.created_at,
    )


def _check_access(auth: AuthContext, entity_id: str) -> None:
    """Non-admins may only act on their own requests."""
    if not auth.is_admin and auth.actor_id != entity_id:
        raise AppError("Not allowed to act for this entity", status_code=403)


async def _get_request_or_404(session: AsyncSession, request_id: uuid.UUID) -> ResourceRequest:
    result = await session.execute(select(ResourceRequest).where(col(ResourceRequest.id) == request_id))
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError("Request not found")
    return request


async def _find_by_idempotency_key(session: AsyncSession, entity_id: str, key: str) -> ResourceRequest | None:
    result = await session.execute(
        select(ResourceRequest).where(
            col(ResourceRequest.entity_id) == entity_id,
            col(ResourceRequest.idempotency_key) == key,
        )
    )
    return result.scalar_one_or_none()


def counted_days(
    resource: ResourceType,
    start: date,
    end: date,
    *,
    include_weekends: bool = False,
    holidays: set[date] | frozenset[date] = frozenset(),
) -> list[date]:
    """Days in ``[start, end]`` a request draws on.

    Time off is never charged for a holiday, nor for a weekend unless the
    request opts in. Other domains count every day.
    """
    time_off = resource.domain == ResourceDomain.TIME_OFF
    skip_weekends = time_off and not include_weekends
    days = []
    day = start
    while day <= end:
        skipped = (time_off and day in holidays) or (skip_weekends and day.weekday() >= 5)
        if not skipped:
            days.append(day)
        day += timedelta(days=1)
    return days


def _check_minimums(rb: ResourceBalance, distribution: ConsumptionDistribution) -> None:
    """An overdraft may not take a policy below its configured floor."""
    by_assignment = {pb.assignment.id: pb for pb in rb.policy_balances}
    for alloc in distribution.allocations:
        pb = by_assignment[alloc.assignment_id]
        floor = pb.policy.constraints.min_balance
        if floor is not None and not pb.policy.is_unlimited and pb.available() - alloc.amount < floor:
            raise InsufficientBalanceError(
                f"Request would take policy {pb.policy.id} below its minimum balance of {floor}",
                shortfall=(floor - (pb.available() - alloc.amount)).value,
            )


def _split_by_day(
    distribution: ConsumptionDistribution,
    days: list[date],
    per_day: Amount,
    *,
    unique_per_day: bool,
) -> list[tuple[date, ConsumptionDistribution]]:
    """Lay the per-day amount over the allocations, in priority order.

    A day that straddles two policies is drawn from both, except on
    day-exclusive resources where one day belongs to exactly one policy.
    """
    allocations = list(distribution.allocations)
    index = 0
    left = allocations[0].amount
    zero = Amount.zero(per_day.unit)
    result = []

    for day in days:
        need = per_day
        parts: list[Allocation] = []
        while need.is_positive():
            while not left.is_positive() and index + 1 < len(allocations):
                index += 1
                left = allocations[index].amount
            if not left.is_positive():
                raise InsufficientBalanceError(f"Nothing left to allocate on {day}", shortfall=need.value)
            take = need.min(left)
            parts.append(replace(allocations[index], amount=take))
            need -= take
            left -= take
        if unique_per_day and len(parts) > 1:
            raise InsufficientBalanceError(
                f"No single policy covers {day}; a day cannot be split across policies",
                shortfall=None,
            )
        result.append((day, ConsumptionDistribution(per_day, tuple(parts), is_satisfiable=True, shortfall=zero)))
    return result


def _check_periods(rb: ResourceBalance, day_splits: list[tuple[date, ConsumptionDistribution]]) -> None:
    """Every day must fall inside the period its policy's balance was computed for."""
    by_assignment: dict[str, PolicyBalance] = {pb.assignment.id: pb for pb in rb.policy_balances}
    for day, split in day_splits:
        for alloc in split.allocations:
            period = by_assignment[alloc.assignment_id].balance.period
            if not period.contains(TimePoint.of(day)):
                raise AppError(
                    f"{day} falls outside the current period of policy {alloc.policy_id} ({period}); "
                    "submit separate requests per period",
                    status_code=400,
                )


def _allocations_json(distribution: ConsumptionDistribution) -> list[dict[str, Any]]:
    return [
        {
            "policy_key": a.policy_id,
            "assignment_id": a.assignment_id,
            "amount": str(a.amount.value),
            "requires_approval": a.requires_approval,
        }
        for a in distribution.allocations
    ]


async def _load_held(store: SqlLedgerStore, request: ResourceRequest) -> list[Transaction]:
    held = []
    for tx_id in request.transaction_ids or []:
        tx = await store.get(tx_id)
        if tx is None:
            raise InvalidStateError(f"Request {request.id} references missing transaction {tx_id}")
        held.append(tx)
    return held


async def _release(
    session: AsyncSession,
    auth: AuthContext,
    registry: ResourceRegistry,
    request: ResourceRequest,
    new_status: RequestStatus,
    audit_action: AuditAction,
    decision_note: str | None = None,
) -> RequestResponse:
    """Shared logic for reject and cancel: reverse what the request holds and update status."""
    store = SqlLedgerStore(session, registry)
    held = await _load_held(store, request)
    reversals = [
        tx.reversal(reason=f"request {new_status.value}", idempotency_key=f"request:{request.id}:release:{tx.id}")
        for tx in held
    ]
    await DayUniqueLedger(store, registry).append_batch(reversals)

    before_dict = model_to_audit_dict(request)
    request.status = new_status.value
    request.decided_at = datetime.now(UTC)
    request.decided_by = auth.actor_id
    request.decision_note = decision_note
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.actor_id,
        entity_type=AuditEntityType.REQUEST,
        entity_id=request.id,
        action=audit_action,
        before_json=before_dict,
        after_json=model_to_audit_dict(request),
    )

    await session.commit()
    await session.refresh(request)
    logger.info("Request %s %s, released %d transaction(s)", request.id, new_status, len(reversals))
    return _build_request_response(request)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def submit_request(
    session: AsyncSession,
    auth: AuthContext,
    registry: ResourceRegistry,
    entity_id: str,
    payload: SubmitRequestPayload,
) -> RequestResponse:
    """Submit a consumption request.

    Flow:
    1. Replay an earlier request with the same idempotency key
    2. Count the requested days
    3. Lock the entity's assignments and compute the pool as of the first day
    4. Distribute the total across policies by priority
    5. Lay the days over the allocations and check period bounds
    6. Write PENDING transactions, or CONSUMPTION when no approval is needed
    7. Audit and commit
    """
    _check_access(auth, entity_id)

    if payload.idempotency_key is not None:
        existing = await _find_by_idempotency_key(session, entity_id, payload.idempotency_key)
        if existing is not None:
            return _build_request_response(existing)

    resource = registry.get(payload.resource_type)
    holidays: set[date] = set()
    if resource.domain == ResourceDomain.TIME_OFF:
        holidays = await holiday_dates(session, payload.start_date, payload.end_date)
    days = counted_days(
        resource,
        payload.start_date,
        payload.end_date,
        include_weekends=payload.include_weekends,
        holidays=holidays,
    )
    if not days:
        raise AppError("Request covers no countable days", status_code=400)

    per_day = Amount.of(quantize(payload.amount_per_day), resource.unit)
    if not per_day.is_positive():
        raise AppError(
            f"amount_per_day {payload.amount_per_day} rounds to zero at six decimal places",
            status_code=422,
        )
    total = per_day.scale(len(days))

    rb = await get_resource_balance(
        session, registry, entity_id, resource.name, payload.start_date, for_update=True
    )
    if not rb.policy_balances:
        raise NotFoundError(f"Entity {entity_id} has no active {resource.name} policy on {payload.start_date}")

    first = rb.by_priority()[0]
    allow_negative = get_settings().allow_negative_default or first.policy.constraints.allow_negative
    distribution = distribute(rb, total, allow_negative=allow_negative)
    if not distribution.is_satisfiable:
        logger.warning("Rejected request for %s: %s short of %s", entity_id, distribution.shortfall, total)
        raise InsufficientBalanceError(
            f"Insufficient {resource.name} balance: requested {total}, short by {distribution.shortfall}",
            shortfall=distribution.shortfall.value,
        )
    _check_minimums(rb, distribution)

    day_splits = _split_by_day(distribution, days, per_day, unique_per_day=resource.unique_per_day)
    _check_periods(rb, day_splits)

    requires_approval = distribution.requires_approval
    request = ResourceRequest(
        entity_id=entity_id,
        resource_type=resource.name,
        start_date=payload.start_date,
        end_date=payload.end_date,
        amount_per_day=str(per_day.value),
        total_amount=str(total.value),
        unit=resource.unit.value,
        reason=payload.reason,
        status=RequestStatus.PENDING.value,
        requires_approval=requires_approval,
        allocations_json=_allocations_json(distribution),
        idempotency_key=payload.idempotency_key,
    )
    session.add(request)
    try:
        async with session.begin_nested():
            await session.flush()
    except IntegrityError:
        # Lost a race with a concurrent submit carrying the same key.
        if payload.idempotency_key is not None:
            existing = await _find_by_idempotency_key(session, entity_id, payload.idempotency_key)
            if existing is not None:
                return _build_request_response(existing)
        raise AppError("Duplicate request", status_code=409) from None

    tx_type = TransactionType.PENDING if requires_approval else TransactionType.CONSUMPTION
    transactions: list[Transaction] = []
    for day, split in day_splits:
        transactions.extend(
            to_transactions(
                split,
                entity_id=entity_id,
                resource_type=resource.name,
                effective_at=TimePoint.of(day),
                tx_type=tx_type,
                reference_id=str(request.id),
                reason=payload.reason or "",
                key_prefix=f"request:{request.id}:{day.isoformat()}",
            )
        )
    await DayUniqueLedger(SqlLedgerStore(session, registry), registry).append_batch(transactions)

    request.transaction_ids = [tx.id for tx in transactions]
    if not requires_approval:
        request.status = RequestStatus.APPROVED.value
        request.decided_at = datetime.now(UTC)
        request.decided_by = SYSTEM_ACTOR
        request.decision_note = "auto-approved"
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.actor_id,
        entity_type=AuditEntityType.REQUEST,
        entity_id=request.id,
        action=AuditAction.SUBMIT,
        after_json=model_to_audit_dict(request),
    )

    await session.commit()
    await session.refresh(request)
    logger.info(
        "Request %s for %s: %s %s over %d day(s), status=%s",
        request.id,
        entity_id,
        total,
        resource.name,
        len(days),
        request.status,
    )
    return _build_request_response(request)


async def approve_request(
    session: AsyncSession,
    auth: AuthContext,
    registry: ResourceRegistry,
    request_id: uuid.UUID,
    payload: DecisionPayload | None = None,
) -> RequestResponse:
    """Approve a pending request: each PENDING becomes a CONSUMPTION in one batch."""
    request = await _get_request_or_404(session, request_id)
    if request.status != RequestStatus.PENDING.value:
        raise InvalidStateError(f"Only pending requests can be approved (status is {request.status})")

    store = SqlLedgerStore(session, registry)
    held = await _load_held(store, request)
    batch: list[Transaction] = []
    consumptions: list[Transaction] = []
    for tx in held:
        batch.append(tx.reversal(reason="approved", idempotency_key=f"request:{request.id}:approve:{tx.id}"))
        consumption = replace(
            tx,
            id=new_transaction_id(),
            type=TransactionType.CONSUMPTION,
            reference_id=str(request.id),
            reason=tx.reason,
            idempotency_key=f"request:{request.id}:consume:{tx.id}",
            metadata=dict(tx.metadata),
        )
        consumptions.append(consumption)
    batch.extend(consumptions)
    await DayUniqueLedger(store, registry).append_batch(batch)

    before_dict = model_to_audit_dict(request)
    request.status = RequestStatus.APPROVED.value
    request.transaction_ids = [tx.id for tx in consumptions]
    request.decided_at = datetime.now(UTC)
    request.decided_by = auth.actor_id
    request.decision_note = payload.note if payload else None
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.actor_id,
        entity_type=AuditEntityType.REQUEST,
        entity_id=request.id,
        action=AuditAction.APPROVE,
        before_json=before_dict,
        after_json=model_to_audit_dict(request),
    )

    await session.commit()
    await session.refresh(request)
    logger.info("Request %s approved by %s", request.id, auth.actor_id)
    return _build_request_response(request)


async def reject_request(
    session: AsyncSession,
    auth: AuthContext,
    registry: ResourceRegistry,
    request_id: uuid.UUID,
    payload: DecisionPayload | None = None,
) -> RequestResponse:
    """Reject a pending request, releasing its pending transactions."""
    request = await _get_request_or_404(session, request_id)
    if request.status != RequestStatus.PENDING.value:
        raise InvalidStateError(f"Only pending requests can be rejected (status is {request.status})")
    note = payload.note if payload else None
    return await _release(session, auth, registry, request, RequestStatus.REJECTED, AuditAction.REJECT, note)


async def cancel_request(
    session: AsyncSession,
    auth: AuthContext,
    registry: ResourceRegistry,
    request_id: uuid.UUID,
    payload: DecisionPayload | None = None,
) -> RequestResponse:
    """Cancel a pending or approved request, reversing whatever it holds."""
    request = await _get_request_or_404(session, request_id)
    _check_access(auth, request.entity_id)
    if request.status not in (RequestStatus.PENDING.value, RequestStatus.APPROVED.value):
        raise InvalidStateError(f"Cannot cancel a request with status {request.status}")
    note = payload.note if payload else None
    return await _release(session, auth, registry, request, RequestStatus.CANCELLED, AuditAction.CANCEL, note)


async def get_request(session: AsyncSession, auth: AuthContext, request_id: uuid.UUID) -> RequestResponse:
    request = await _get_request_or_404(session, request_id)
    _check_access(auth, request.entity_id)
    return _build_request_response(request)


async def list_requests(
    session: AsyncSession,
    *,
    entity_id: str | None = None,
    status: RequestStatus | None = None,
    offset: int = 0,
    limit: int = 50,
) -> RequestListResponse:
    """List requests with optional filters, newest first."""
    filters = []
    if entity_id is not None:
        filters.append(col(ResourceRequest.entity_id) == entity_id)
    if status is not None:
        filters.append(col(ResourceRequest.status) == status.value)

    total = (await session.execute(select(func.count()).select_from(ResourceRequest).where(*filters))).scalar_one()
    result = await session.execute(
        select(ResourceRequest)
        .where(*filters)
        .order_by(col(ResourceRequest.created_at).desc())
        .offset(offset)
        .limit(limit)
    )
    return RequestListResponse(
        items=[_build_request_response(r) for r in result.scalars().all()],
        total=total,
    )
