from sqlmodel import SQLModel

from app.models.assignment import ResourcePolicyAssignment
from app.models.audit import AuditLog
from app.models.balance import BalanceSnapshot
from app.models.base import TimestampMixin, UUIDBase
from app.models.enums import (
    AccrualFrequency,
    ActionType,
    AuditAction,
    AuditEntityType,
    ConsumptionMode,
    Granularity,
    PeriodType,
    ReconciliationRunStatus,
    RequestStatus,
    ResourceDomain,
    TransactionType,
    TriggerType,
    Unit,
)
from app.models.holiday import Holiday
from app.models.ledger import ConsumptionDayClaim, LedgerTransaction
from app.models.policy import ResourcePolicy
from app.models.reconciliation import ReconciliationRun
from app.models.request import ResourceRequest

__all__ = [
    "AccrualFrequency",
    "ActionType",
    "AuditAction",
    "AuditEntityType",
    "AuditLog",
    "BalanceSnapshot",
    "ConsumptionDayClaim",
    "ConsumptionMode",
    "Granularity",
    "Holiday",
    "LedgerTransaction",
    "PeriodType",
    "ReconciliationRun",
    "ReconciliationRunStatus",
    "RequestStatus",
    "ResourceDomain",
    "ResourcePolicy",
    "ResourcePolicyAssignment",
    "ResourceRequest",
    "SQLModel",
    "TimestampMixin",
    "TransactionType",
    "TriggerType",
    "UUIDBase",
    "Unit",
]
