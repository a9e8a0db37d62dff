"""Period-end reconciliation engine.

Reads an ending balance and the policy's reconciliation rule, and decides how
much of the unused balance carries into the next period and how much expires.

``process`` is a pure function: the same input always yields the same
transactions (ids and idempotency keys included) and the same summary, so a
scheduler that re-runs after a crash cannot double-post a carryover.

Action semantics, applied in declared order to ``remaining``:

* ``carryover(max?)``: carry ``min(remaining, max)`` (scaled by the prorate
  factor, if one is active) into the next period as a RECONCILIATION
  transaction dated at the next period's start.
* ``cap``: clamp ``remaining`` to ``constraints.max_balance`` with an
  ADJUSTMENT transaction dated at the ending period's end; the excess counts
  as expired.
* ``prorate``: scale later carryovers by the share of the nominal period that
  the ending period actually covered (a policy change closes a period early).
* ``expire``: whatever is left is expired. No transaction is written; the next
  period simply starts without it.

Anything still left once the actions run out is expired as well, which keeps
``carried_over + expired == max(current_accrued, 0)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from app.core.amount import Amount
from app.core.transaction import Transaction
from app.models.enums import ActionType, TransactionType, TriggerType, Unit

if TYPE_CHECKING:
    from app.core.balance import Balance
    from app.core.policy import Policy, ReconciliationAction
    from app.core.time import Period

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationInput:
    entity_id: str
    policy_id: str
    policy: Policy
    current_balance: Balance
    ending_period: Period
    next_period: Period
    trigger: TriggerType = TriggerType.PERIOD_END
    next_policy_id: str | None = None
    full_period: Period | None = None


@dataclass(frozen=True)
class ReconciliationSummary:
    carried_over: Amount
    expired: Amount


@dataclass(frozen=True)
class ReconciliationOutput:
    transactions: tuple[Transaction, ...]
    summary: ReconciliationSummary


def reconciliation_key(entity_id: str, policy_id: str, ending_period: Period) -> str:
    """Replay guard shared by every transaction of one (entity, policy, period end)."""
    return f"reconcile:{entity_id}:{policy_id}:{ending_period.end.date.isoformat()}"


def _empty(unit: Unit) -> ReconciliationOutput:
    zero = Amount.zero(unit)
    return ReconciliationOutput(transactions=(), summary=ReconciliationSummary(zero, zero))


def _prorate_factor(data: ReconciliationInput) -> Decimal:
    full = data.full_period or data.policy.period_for(data.ending_period.start.date)
    return data.ending_period.elapsed_fraction(full)


def _carryover_tx(data: ReconciliationInput, action_index: int, carry: Amount) -> Transaction:
    key = reconciliation_key(data.entity_id, data.policy_id, data.ending_period)
    target_policy = data.next_policy_id or data.policy_id
    return Transaction(
        id=f"{key}:{action_index}:carryover",
        entity_id=data.entity_id,
        policy_id=target_policy,
        resource_type=data.policy.resource_type,
        effective_at=data.next_period.start,
        delta=carry,
        type=TransactionType.RECONCILIATION,
        reference_id=key,
        reason=f"carryover from {data.ending_period}",
        idempotency_key=f"{key}:{action_index}:carryover",
        metadata={
            "action": ActionType.CARRYOVER.value,
            "trigger": data.trigger.value,
            "source_policy_id": data.policy_id,
        },
    )


def _cap_tx(data: ReconciliationInput, action_index: int, excess: Amount) -> Transaction:
    key = reconciliation_key(data.entity_id, data.policy_id, data.ending_period)
    return Transaction(
        id=f"{key}:{action_index}:cap",
        entity_id=data.entity_id,
        policy_id=data.policy_id,
        resource_type=data.policy.resource_type,
        effective_at=data.ending_period.end,
        delta=-excess,
        type=TransactionType.ADJUSTMENT,
        reference_id=key,
        reason="balance capped at maximum",
        idempotency_key=f"{key}:{action_index}:cap",
        metadata={"action": ActionType.CAP.value, "trigger": data.trigger.value},
    )


def process(data: ReconciliationInput) -> ReconciliationOutput:
    """Settle one policy's ending balance."""
    unit = data.current_balance.unit
    remaining = data.current_balance.current_accrued()
    if not remaining.is_positive():
        # Negative balances are left as they are and simply open the next evaluation.
        return _empty(unit)

    rule = data.policy.rule_for(data.trigger)
    if rule is None:
        return _empty(unit)

    carried = Amount.zero(unit)
    expired = Amount.zero(unit)
    factor = Decimal(1)
    transactions: list[Transaction] = []

    for index, action in enumerate(rule.actions):
        if not remaining.is_positive():
            break
        if action.type == ActionType.CARRYOVER:
            carry = _carry_amount(action, remaining).scale(factor).min(remaining)
            if carry.is_positive():
                transactions.append(_carryover_tx(data, index, carry))
                carried += carry
                remaining -= carry
        elif action.type == ActionType.CAP:
            max_balance = data.policy.constraints.max_balance
            if max_balance is not None and remaining > max_balance:
                excess = remaining - max_balance
                transactions.append(_cap_tx(data, index, excess))
                expired += excess
                remaining = max_balance
        elif action.type == ActionType.PRORATE:
            factor = _prorate_factor(data)
        elif action.type == ActionType.EXPIRE:
            expired += remaining
            remaining = Amount.zero(unit)

    if remaining.is_positive():
        expired += remaining

    logger.debug(
        "Reconciled entity=%s policy=%s period=%s carried=%s expired=%s",
        data.entity_id,
        data.policy_id,
        data.ending_period,
        carried,
        expired,
    )
    return ReconciliationOutput(transactions=tuple(transactions), summary=ReconciliationSummary(carried, expired))


def _carry_amount(action: ReconciliationAction, remaining: Amount) -> Amount:
    if action.max_carryover is None:
        return remaining
    return remaining.min(action.max_carryover)
