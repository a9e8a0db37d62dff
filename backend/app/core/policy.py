from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from app.core.amount import Amount, sum_amounts
from app.core.time import PeriodConfig
from app.models.enums import ActionType, ConsumptionMode, TriggerType, Unit

if TYPE_CHECKING:
    from datetime import date

    from app.core.accrual import AccrualSchedule
    from app.core.balance import Balance
    from app.core.time import Period


@dataclass(frozen=True)
class Constraints:
    allow_negative: bool = False
    max_balance: Amount | None = None
    min_balance: Amount | None = None


@dataclass(frozen=True)
class ReconciliationAction:
    type: ActionType
    max_carryover: Amount | None = None


@dataclass(frozen=True)
class ReconciliationRule:
    """Ordered actions applied when ``trigger`` fires."""

    trigger: TriggerType
    actions: tuple[ReconciliationAction, ...]


@dataclass(frozen=True)
class Policy:
    """Named ruleset governing one resource pool."""

    id: str
    name: str
    resource_type: str
    unit: Unit
    period_config: PeriodConfig = field(default_factory=PeriodConfig)
    consumption_mode: ConsumptionMode = ConsumptionMode.CONSUME_AHEAD
    constraints: Constraints = field(default_factory=Constraints)
    reconciliation_rules: tuple[ReconciliationRule, ...] = ()
    is_unlimited: bool = False
    unique_per_time_point: bool = False
    accrual: AccrualSchedule | None = None

    def period_for(self, on: date, hire_date: date | None = None) -> Period:
        return self.period_config.period_for(on, hire_date)

    def rule_for(self, trigger: TriggerType) -> ReconciliationRule | None:
        """Rule for ``trigger``; a policy change falls back to the period-end rule."""
        for rule in self.reconciliation_rules:
            if rule.trigger == trigger:
                return rule
        if trigger == TriggerType.POLICY_CHANGE:
            return self.rule_for(TriggerType.PERIOD_END)
        return None


@dataclass(frozen=True)
class ApprovalConfig:
    requires_approval: bool = False
    auto_approve_up_to: Amount | None = None

    def requires_approval_for(self, amount: Amount) -> bool:
        """Amounts at or below the auto-approve threshold never need approval."""
        if not self.requires_approval:
            return False
        if self.auto_approve_up_to is None:
            return True
        return amount > self.auto_approve_up_to


@dataclass(frozen=True)
class PolicyAssignment:
    """Link between an entity and a policy."""

    id: str
    entity_id: str
    policy: Policy
    effective_from: date
    effective_to: date | None = None
    consumption_priority: int = 0
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)

    def is_active(self, on: date) -> bool:
        if on < self.effective_from:
            return False
        return self.effective_to is None or on <= self.effective_to


@dataclass(frozen=True)
class PolicyBalance:
    """A policy's balance within an entity's resource pool."""

    assignment: PolicyAssignment
    balance: Balance

    @property
    def policy(self) -> Policy:
        return self.assignment.policy

    @property
    def priority(self) -> int:
        return self.assignment.consumption_priority

    def available(self) -> Amount:
        return self.balance.available_with_mode(self.policy.consumption_mode)


@dataclass(frozen=True)
class ResourceBalance:
    """All of an entity's policy balances for one resource type."""

    entity_id: str
    resource_type: str
    unit: Unit
    policy_balances: tuple[PolicyBalance, ...]

    @property
    def is_unlimited(self) -> bool:
        return any(pb.policy.is_unlimited for pb in self.policy_balances)

    def total_available(self) -> Amount:
        """Sum of positive availability across limited policies."""
        limited = [pb.available() for pb in self.policy_balances if not pb.policy.is_unlimited]
        return sum_amounts([amount for amount in limited if amount.is_positive()], self.unit)

    def by_priority(self) -> list[PolicyBalance]:
        return sorted(self.policy_balances, key=lambda pb: pb.priority)
