"""Split one requested amount across an entity's prioritized policies."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from app.core.amount import Amount, sum_amounts
from app.core.transaction import Transaction
from app.models.enums import TransactionType

if TYPE_CHECKING:
    from app.core.policy import PolicyBalance, ResourceBalance
    from app.core.time import TimePoint


@dataclass(frozen=True)
class Allocation:
    policy_id: str
    assignment_id: str
    amount: Amount
    requires_approval: bool


@dataclass(frozen=True)
class ConsumptionDistribution:
    requested: Amount
    allocations: tuple[Allocation, ...]
    is_satisfiable: bool
    shortfall: Amount

    @property
    def total_allocated(self) -> Amount:
        return sum_amounts([a.amount for a in self.allocations], self.requested.unit)

    @property
    def requires_approval(self) -> bool:
        return any(a.requires_approval for a in self.allocations)


def _allocation(pb: PolicyBalance, amount: Amount) -> Allocation:
    return Allocation(
        policy_id=pb.policy.id,
        assignment_id=pb.assignment.id,
        amount=amount,
        requires_approval=pb.assignment.approval.requires_approval_for(amount),
    )


def distribute(
    resource_balance: ResourceBalance,
    requested: Amount,
    *,
    allow_negative: bool = False,
) -> ConsumptionDistribution:
    """Allocate ``requested`` across policies, lowest priority number first.

    Policies with nothing available are skipped. Unlimited policies absorb
    whatever is left. When the pool runs dry, ``allow_negative`` overdraws the
    highest-priority policy; otherwise the leftover is reported as a shortfall.
    """
    ordered = resource_balance.by_priority()
    remaining = requested
    allocations: list[Allocation] = []

    for pb in ordered:
        if not remaining.is_positive():
            break
        if pb.policy.is_unlimited:
            take = remaining
        else:
            available = pb.available()
            if not available.is_positive():
                continue
            take = remaining.min(available)
        allocations.append(_allocation(pb, take))
        remaining -= take

    zero = Amount.zero(requested.unit)
    if not remaining.is_positive():
        return ConsumptionDistribution(requested, tuple(allocations), is_satisfiable=True, shortfall=zero)

    if allow_negative and ordered:
        first = ordered[0]
        for i, alloc in enumerate(allocations):
            if alloc.assignment_id == first.assignment.id:
                total = alloc.amount + remaining
                allocations[i] = replace(
                    alloc,
                    amount=total,
                    requires_approval=first.assignment.approval.requires_approval_for(total),
                )
                break
        else:
            allocations.insert(0, _allocation(first, remaining))
        return ConsumptionDistribution(requested, tuple(allocations), is_satisfiable=True, shortfall=zero)

    return ConsumptionDistribution(requested, tuple(allocations), is_satisfiable=False, shortfall=remaining)


def to_transactions(
    distribution: ConsumptionDistribution,
    *,
    entity_id: str,
    resource_type: str,
    effective_at: TimePoint,
    tx_type: TransactionType = TransactionType.PENDING,
    reference_id: str = "",
    reason: str = "",
    key_prefix: str = "",
) -> list[Transaction]:
    """One negative-delta transaction per allocation."""
    return [
        Transaction(
            entity_id=entity_id,
            policy_id=alloc.policy_id,
            resource_type=resource_type,
            effective_at=effective_at,
            delta=-alloc.amount,
            type=tx_type,
            reference_id=reference_id,
            reason=reason,
            idempotency_key=f"{key_prefix}:{index}" if key_prefix else "",
            metadata={"assignment_id": alloc.assignment_id},
        )
        for index, alloc in enumerate(distribution.allocations)
    ]
