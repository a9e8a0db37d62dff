from __future__ import annotations

import enum


class Unit(enum.StrEnum):
    """Unit tag carried by every amount."""

    DAYS = "days"
    HOURS = "hours"
    MINUTES = "minutes"
    POINTS = "points"
    DOLLARS = "dollars"


class Granularity(enum.StrEnum):
    """Resolution at which two time points are compared."""

    DAY = "day"
    HOUR = "hour"
    MINUTE = "minute"


class PeriodType(enum.StrEnum):
    """Shape of the accounting period a policy runs on."""

    CALENDAR_YEAR = "calendar_year"
    FISCAL_YEAR = "fiscal_year"
    ANNIVERSARY = "anniversary"
    ROLLING = "rolling"


class TransactionType(enum.StrEnum):
    """Kind of ledger transaction."""

    GRANT = "grant"
    CONSUMPTION = "consumption"
    PENDING = "pending"
    RECONCILIATION = "reconciliation"
    ADJUSTMENT = "adjustment"
    REVERSAL = "reversal"


class ConsumptionMode(enum.StrEnum):
    """Whether a policy may consume entitlement that has not been earned yet."""

    CONSUME_AHEAD = "consume_ahead"
    CONSUME_UP_TO_ACCRUED = "consume_up_to_accrued"


class AccrualFrequency(enum.StrEnum):
    """How an annual amount is spread over the year."""

    UPFRONT = "upfront"
    MONTHLY = "monthly"
    DAILY = "daily"


class TriggerType(enum.StrEnum):
    """Event that fires a reconciliation rule."""

    PERIOD_END = "period_end"
    POLICY_CHANGE = "policy_change"
    ENTITY_JOIN = "entity_join"
    MANUAL = "manual"


class ActionType(enum.StrEnum):
    """Reconciliation action vocabulary."""

    CARRYOVER = "carryover"
    EXPIRE = "expire"
    CAP = "cap"
    PRORATE = "prorate"


class ResourceDomain(enum.StrEnum):
    """Family a resource type belongs to."""

    TIME_OFF = "time_off"
    REWARDS = "rewards"


class RequestStatus(enum.StrEnum):
    """State machine for consumption requests."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ReconciliationRunStatus(enum.StrEnum):
    """Outcome of a reconciliation run record."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AuditEntityType(enum.StrEnum):
    """Entity type recorded in the audit log."""

    POLICY = "POLICY"
    ASSIGNMENT = "ASSIGNMENT"
    REQUEST = "REQUEST"
    ADJUSTMENT = "ADJUSTMENT"
    GRANT = "GRANT"
    RECONCILIATION = "RECONCILIATION"
    HOLIDAY = "HOLIDAY"


class AuditAction(enum.StrEnum):
    """Action recorded in the audit log."""

    CREATE = "CREATE"
    CLOSE = "CLOSE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    CANCEL = "CANCEL"
    SUBMIT = "SUBMIT"
    RECONCILE = "RECONCILE"
    DELETE = "DELETE"
