"""Period-end reconciliation: persistence and scheduling around the pure engine.

``reconcile_assignment`` settles one (entity, policy, period). The unique
``reconciliation_run`` row guards against running it twice, and the engine's
deterministic idempotency keys guard the ledger should a run be retried after
a crash between the ledger write and the run update.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlmodel import col

from app.core.reconciliation import ReconciliationInput, process
from app.models.assignment import ResourcePolicyAssignment
from app.models.balance import BalanceSnapshot
from app.models.enums import AuditAction, AuditEntityType, PeriodType, ReconciliationRunStatus, TriggerType
from app.models.policy import ResourcePolicy
from app.models.reconciliation import ReconciliationRun
from app.schemas.reconciliation import ReconciliationRunListResponse, ReconciliationRunResponse
from app.services.audit import SYSTEM_ACTOR, model_to_audit_dict, write_audit_log
from app.services.balance import compute_policy_balance, to_active_assignment, today_utc
from app.services.ledger import SqlLedgerStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.core.balance import Balance
    from app.core.reconciliation import ReconciliationSummary
    from app.core.resources import ResourceRegistry
    from app.core.time import Period
    from app.services.balance import ActiveAssignment

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ReconciliationBatchResult:
    """Summary of one scheduler pass."""

    as_of: date
    processed: int = 0
    reconciled: int = 0
    skipped: int = 0
    errors: int = 0


def build_run_response(run: ReconciliationRun) -> ReconciliationRunResponse:
    return ReconciliationRunResponse(
        id=run.id,
        entity_id=run.entity_id,
        policy_key=run.policy_key,
        period_start=run.period_start,
        period_end=run.period_end,
        trigger=TriggerType(run.trigger),
        status=ReconciliationRunStatus(run.status),
        carried_over=Decimal(run.carried_over),
        expired=Decimal(run.expired),
        unit=run.unit,
        next_policy_key=run.next_policy_key,
        error=run.error,
        created_at=run.created_at,
        completed_at=run.completed_at,
    )


async def get_run(session: AsyncSession, entity_id: str, policy_key: str, period: Period) -> ReconciliationRun | None:
    result = await session.execute(
        select(ReconciliationRun).where(
            col(ReconciliationRun.entity_id) == entity_id,
            col(ReconciliationRun.policy_key) == policy_key,
            col(ReconciliationRun.period_start) == period.start.date,
            col(ReconciliationRun.period_end) == period.end.date,
        )
    )
    return result.scalar_one_or_none()


async def _write_snapshot(
    session: AsyncSession,
    entity_id: str,
    policy_key: str,
    balance: Balance,
) -> BalanceSnapshot:
    result = await session.execute(
        select(BalanceSnapshot).where(
            col(BalanceSnapshot.entity_id) == entity_id,
            col(BalanceSnapshot.policy_key) == policy_key,
            col(BalanceSnapshot.period_start) == balance.period.start.date,
            col(BalanceSnapshot.period_end) == balance.period.end.date,
        )
    )
    snapshot = result.scalar_one_or_none()
    if snapshot is None:
        snapshot = BalanceSnapshot(
            entity_id=entity_id,
            policy_key=policy_key,
            period_start=balance.period.start.date,
            period_end=balance.period.end.date,
            unit=balance.unit.value,
            accrued_to_date="0",
            total_entitlement="0",
            total_consumed="0",
            pending="0",
            adjustments="0",
            current_accrued="0",
        )
        session.add(snapshot)

    snapshot.accrued_to_date = str(balance.accrued_to_date.value)
    snapshot.total_entitlement = str(balance.total_entitlement.value)
    snapshot.total_consumed = str(balance.total_consumed.value)
    snapshot.pending = str(balance.pending.value)
    snapshot.adjustments = str(balance.adjustments.value)
    snapshot.current_accrued = str(balance.current_accrued().value)
    snapshot.taken_at = datetime.now(UTC)
    return snapshot


def _complete(run: ReconciliationRun, summary: ReconciliationSummary) -> None:
    run.status = ReconciliationRunStatus.COMPLETED
    run.carried_over = str(summary.carried_over.value)
    run.expired = str(summary.expired.value)
    run.error = None
    run.completed_at = datetime.now(UTC)


async def reconcile_assignment(
    session: AsyncSession,
    registry: ResourceRegistry,
    active: ActiveAssignment,
    ending_period: Period,
    next_period: Period,
    *,
    trigger: TriggerType = TriggerType.PERIOD_END,
    next_policy_key: str | None = None,
    full_period: Period | None = None,
    actor_id: str = SYSTEM_ACTOR,
) -> ReconciliationRun:
    """Settle ``ending_period`` of one assignment.

    A run that already completed is returned unchanged. The caller commits;
    on failure the caller rolls back and nothing of this run persists.
    """
    entity_id = active.row.entity_id
    policy = active.assignment.policy

    run = await get_run(session, entity_id, policy.id, ending_period)
    if run is not None and run.status == ReconciliationRunStatus.COMPLETED:
        logger.info("Reconciliation already completed for %s/%s %s", entity_id, policy.id, ending_period)
        return run
    if run is None:
        run = ReconciliationRun(
            entity_id=entity_id,
            policy_key=policy.id,
            period_start=ending_period.start.date,
            period_end=ending_period.end.date,
            trigger=trigger.value,
            unit=policy.unit.value,
        )
    run.status = ReconciliationRunStatus.RUNNING
    run.trigger = trigger.value
    run.next_policy_key = next_policy_key
    session.add(run)

    store = SqlLedgerStore(session, registry)
    pb = await compute_policy_balance(store, active, ending_period.end.date, period=ending_period)
    output = process(
        ReconciliationInput(
            entity_id=entity_id,
            policy_id=policy.id,
            policy=policy,
            current_balance=pb.balance,
            ending_period=ending_period,
            next_period=next_period,
            trigger=trigger,
            next_policy_id=next_policy_key,
            full_period=full_period,
        )
    )

    # Transactions written by an interrupted earlier attempt are already in the ledger.
    fresh = [tx for tx in output.transactions if not await store.exists(tx.idempotency_key)]
    await store.append_batch(fresh)

    await _write_snapshot(session, entity_id, policy.id, pb.balance)
    _complete(run, output.summary)
    await session.flush()

    await write_audit_log(
        session,
        actor_id=actor_id,
        entity_type=AuditEntityType.RECONCILIATION,
        entity_id=run.id,
        action=AuditAction.RECONCILE,
        after_json=model_to_audit_dict(run),
    )
    logger.info(
        "Reconciled %s/%s %s trigger=%s carried=%s expired=%s",
        entity_id,
        policy.id,
        ending_period,
        trigger,
        output.summary.carried_over,
        output.summary.expired,
    )
    return run


async def _record_failure(
    session: AsyncSession,
    *,
    entity_id: str,
    policy_key: str,
    period: Period,
    unit: str,
    error: str,
) -> None:
    run = await get_run(session, entity_id, policy_key, period)
    if run is None:
        run = ReconciliationRun(
            entity_id=entity_id,
            policy_key=policy_key,
            period_start=period.start.date,
            period_end=period.end.date,
            trigger=TriggerType.PERIOD_END.value,
            unit=unit,
        )
    run.status = ReconciliationRunStatus.FAILED
    run.error = error[:2000]
    session.add(run)
    await session.commit()


async def _load_assignment(
    session: AsyncSession,
    assignment_id: uuid.UUID,
) -> tuple[ResourcePolicyAssignment, ResourcePolicy]:
    result = await session.execute(
        select(ResourcePolicyAssignment, ResourcePolicy)
        .join(ResourcePolicy, col(ResourcePolicy.policy_key) == col(ResourcePolicyAssignment.policy_key))
        .where(col(ResourcePolicyAssignment.id) == assignment_id)
    )
    row, policy_row = result.one()
    return row, policy_row


def _closed_periods(
    active: ActiveAssignment,
    as_of: date,
) -> list[tuple[Period, Period]]:
    """Periods ended before ``as_of`` that the assignment held at their end, oldest first.

    Each period is paired with the one that follows it, which receives any
    carryover.
    """
    policy = active.assignment.policy
    row = active.row
    periods = []
    following = policy.period_for(as_of, active.hire_date)
    while True:
        ended = policy.period_for(following.start.date - timedelta(days=1), active.hire_date)
        if ended.end.date < row.effective_from:
            break
        if row.effective_to is None or row.effective_to >= ended.end.date:
            periods.append((ended, following))
        following = ended
    periods.reverse()
    return periods


async def run_reconciliation(
    session: AsyncSession,
    registry: ResourceRegistry,
    as_of: date | None = None,
) -> ReconciliationBatchResult:
    """Reconcile every period that ended before ``as_of`` and has no completed run.

    An assignment that missed several year ends is caught up oldest period
    first, each one committed before the next so carryover feeds forward. A
    failure stops that assignment's catch-up without holding back the rest.
    Re-running for the same date is a no-op.
    """
    if as_of is None:
        as_of = today_utc()

    result = ReconciliationBatchResult(as_of=as_of)

    candidates = await session.execute(
        select(ResourcePolicyAssignment.id)
        .where(col(ResourcePolicyAssignment.effective_from) < as_of)
        .order_by(col(ResourcePolicyAssignment.entity_id), col(ResourcePolicyAssignment.consumption_priority))
    )
    assignment_ids = list(candidates.scalars().all())

    for assignment_id in assignment_ids:
        result.processed += 1
        entity_id = policy_key = unit = ""
        ended: Period | None = None
        try:
            row, policy_row = await _load_assignment(session, assignment_id)
            entity_id, policy_key = row.entity_id, row.policy_key
            active = await to_active_assignment(row, policy_row, registry)
            policy = active.assignment.policy
            unit = policy.unit.value
            if policy.period_config.type == PeriodType.ROLLING:
                # A rolling window moves every day and never closes.
                result.skipped += 1
                continue

            settled = 0
            for ended, following in _closed_periods(active, as_of):
                existing = await get_run(session, entity_id, policy_key, ended)
                if existing is not None and existing.status == ReconciliationRunStatus.COMPLETED:
                    continue
                await reconcile_assignment(session, registry, active, ended, following)
                await session.commit()
                settled += 1
                result.reconciled += 1
            if not settled:
                result.skipped += 1
        except Exception as exc:
            logger.exception(
                "Error reconciling assignment=%s entity=%s policy=%s", assignment_id, entity_id, policy_key
            )
            await session.rollback()
            result.errors += 1
            if ended is not None:
                await _record_failure(
                    session, entity_id=entity_id, policy_key=policy_key, period=ended, unit=unit, error=str(exc)
                )

    logger.info(
        "Reconciliation pass for %s: processed=%d reconciled=%d skipped=%d errors=%d",
        as_of,
        result.processed,
        result.reconciled,
        result.skipped,
        result.errors,
    )
    return result


async def list_runs(
    session: AsyncSession,
    *,
    entity_id: str | None = None,
    policy_key: str | None = None,
    status: ReconciliationRunStatus | None = None,
    offset: int = 0,
    limit: int = 50,
) -> ReconciliationRunListResponse:
    """List reconciliation runs, newest period first."""
    filters = []
    if entity_id is not None:
        filters.append(col(ReconciliationRun.entity_id) == entity_id)
    if policy_key is not None:
        filters.append(col(ReconciliationRun.policy_key) == policy_key)
    if status is not None:
        filters.append(col(ReconciliationRun.status) == status.value)

    total = (await session.execute(select(func.count()).select_from(ReconciliationRun).where(*filters))).scalar_one()
    result = await session.execute(
        select(ReconciliationRun)
        .where(*filters)
        .order_by(col(ReconciliationRun.period_end).desc(), col(ReconciliationRun.entity_id))
        .offset(offset)
        .limit(limit)
    )
    return ReconciliationRunListResponse(items=[build_run_response(r) for r in result.scalars().all()], total=total)
