"""Policy documents: parsing into domain policies, presets and persistence.

A policy is stored as a JSON document (``PolicyDocument``) and turned into an
immutable domain ``Policy`` every time it is used. Parsing is where every
configuration error surfaces, so a policy that parses is safe to run.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import func, select
from sqlmodel import col

from app.config import get_settings
from app.core.accrual import HoursWorkedAccrual, TenureAccrual, TenureTier, YearlyAccrual
from app.core.amount import Amount
from app.core.policy import Constraints, Policy, ReconciliationAction, ReconciliationRule
from app.core.time import PeriodConfig
from app.exceptions import AppError, NotFoundError, PolicyConfigurationError
from app.models.enums import (
    AccrualFrequency,
    ActionType,
    AuditAction,
    AuditEntityType,
    ConsumptionMode,
    TriggerType,
)
from app.models.policy import ResourcePolicy
from app.schemas.policy import (
    ActionSettings,
    CreatePolicyRequest,
    HoursWorkedAccrualSettings,
    PolicyDocument,
    PolicyListResponse,
    PolicyResponse,
    RuleSettings,
    TenureAccrualSettings,
    TenureTierSettings,
    YearlyAccrualSettings,
)
from app.services.audit import model_to_audit_dict, write_audit_log

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import date

    from sqlalchemy.ext.asyncio import AsyncSession

    from app.core.accrual import AccrualSchedule
    from app.core.resources import ResourceRegistry, ResourceType
    from app.models.enums import Unit
    from app.schemas.auth import AuthContext
    from app.schemas.policy import AccrualSettings, CreatePresetRequest

logger = logging.getLogger(__name__)

_document_adapter: TypeAdapter[PolicyDocument] = TypeAdapter(PolicyDocument)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def load_document(document: PolicyDocument | dict[str, Any]) -> PolicyDocument:
    """Validate a raw document, reporting schema errors as configuration errors."""
    if isinstance(document, PolicyDocument):
        return document
    try:
        return _document_adapter.validate_python(document)
    except ValidationError as exc:
        msg = f"Invalid policy document: {exc.errors(include_url=False)}"
        raise PolicyConfigurationError(msg) from exc


def _check_rules(rules: list[RuleSettings]) -> None:
    seen: set[TriggerType] = set()
    for rule in rules:
        if rule.trigger in seen:
            msg = f"Duplicate reconciliation rule for trigger {rule.trigger}"
            raise PolicyConfigurationError(msg)
        seen.add(rule.trigger)
        for index, action in enumerate(rule.actions):
            if action.type == ActionType.EXPIRE and index != len(rule.actions) - 1:
                msg = f"expire must be the last action of the {rule.trigger} rule"
                raise PolicyConfigurationError(msg)
            if action.max_carryover is not None and action.type != ActionType.CARRYOVER:
                msg = f"max_carryover is only valid on carryover actions, not {action.type}"
                raise PolicyConfigurationError(msg)


def validate_policy_document(
    document: PolicyDocument | dict[str, Any],
    registry: ResourceRegistry,
) -> tuple[PolicyDocument, ResourceType]:
    """Check everything about a document that does not depend on a particular entity."""
    doc = load_document(document)
    resource_type = registry.get(doc.resource_type)

    if doc.unit is not None and doc.unit != resource_type.unit:
        msg = f"Resource {resource_type.name} is measured in {resource_type.unit}, not {doc.unit}"
        raise PolicyConfigurationError(msg)
    if doc.unique_per_time_point is not None and doc.unique_per_time_point != resource_type.unique_per_day:
        msg = f"unique_per_time_point must match the {resource_type.name} resource type"
        raise PolicyConfigurationError(msg)

    _check_rules(doc.reconciliation_rules)
    return doc, resource_type


def _build_accrual(
    settings: AccrualSettings,
    unit: Unit,
    *,
    hire_date: date | None,
    hours_per_day: int | None,
) -> AccrualSchedule:
    if isinstance(settings, YearlyAccrualSettings):
        return YearlyAccrual(annual_amount=settings.annual_amount, frequency=settings.frequency, unit=unit)

    if isinstance(settings, TenureAccrualSettings):
        anchor = settings.hire_date or hire_date
        if anchor is None:
            msg = "Tenure accrual requires a hire date"
            raise PolicyConfigurationError(msg)
        tiers = tuple(TenureTier(after_years=t.after_years, annual_amount=t.annual_amount) for t in settings.tiers)
        return TenureAccrual(hire_date=anchor, tiers=tiers, frequency=settings.frequency, unit=unit)

    if isinstance(settings, HoursWorkedAccrualSettings):
        per_day = settings.hours_per_day or Decimal(hours_per_day or get_settings().hours_per_day)
        return HoursWorkedAccrual(
            granted_hours=settings.granted_hours,
            per_hours_worked=settings.per_hours_worked,
            unit=unit,
            hours_per_day=per_day,
        )

    msg = f"Unknown accrual type: {type(settings).__name__}"
    raise PolicyConfigurationError(msg)


def _amount_or_none(value: Decimal | None, unit: Unit) -> Amount | None:
    return Amount.of(value, unit) if value is not None else None


def parse_policy_config(
    document: PolicyDocument | dict[str, Any],
    registry: ResourceRegistry,
    *,
    policy_id: str,
    name: str = "",
    hire_date: date | None = None,
    hours_per_day: int | None = None,
) -> Policy:
    """Turn a stored policy document into a domain ``Policy``.

    ``hire_date`` anchors tenure schedules that do not carry their own.
    """
    doc, resource_type = validate_policy_document(document, registry)
    unit = resource_type.unit

    accrual = None
    if doc.accrual is not None:
        accrual = _build_accrual(doc.accrual, unit, hire_date=hire_date, hours_per_day=hours_per_day)

    rules = tuple(
        ReconciliationRule(
            trigger=rule.trigger,
            actions=tuple(
                ReconciliationAction(type=action.type, max_carryover=_amount_or_none(action.max_carryover, unit))
                for action in rule.actions
            ),
        )
        for rule in doc.reconciliation_rules
    )

    return Policy(
        id=policy_id,
        name=name or policy_id,
        resource_type=resource_type.name,
        unit=unit,
        period_config=PeriodConfig(
            type=doc.period.type,
            fiscal_year_start_month=doc.period.fiscal_year_start_month,
            rolling_months=doc.period.rolling_months,
        ),
        consumption_mode=doc.consumption_mode,
        constraints=Constraints(
            allow_negative=doc.constraints.allow_negative,
            max_balance=_amount_or_none(doc.constraints.max_balance, unit),
            min_balance=_amount_or_none(doc.constraints.min_balance, unit),
        ),
        reconciliation_rules=rules,
        is_unlimited=doc.is_unlimited,
        unique_per_time_point=resource_type.unique_per_day,
        accrual=accrual,
    )


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------


def _expire_only() -> list[RuleSettings]:
    return [RuleSettings(trigger=TriggerType.PERIOD_END, actions=[ActionSettings(type=ActionType.EXPIRE)])]


def _carry_then_expire(max_carryover: Decimal) -> list[RuleSettings]:
    return [
        RuleSettings(
            trigger=TriggerType.PERIOD_END,
            actions=[
                ActionSettings(type=ActionType.CARRYOVER, max_carryover=max_carryover),
                ActionSettings(type=ActionType.EXPIRE),
            ],
        )
    ]


def standard_pto() -> PolicyDocument:
    """20 days a year, accrued monthly; up to 5 days carry over."""
    return PolicyDocument(
        resource_type="pto",
        accrual=YearlyAccrualSettings(annual_amount=Decimal(20), frequency=AccrualFrequency.MONTHLY),
        reconciliation_rules=_carry_then_expire(Decimal(5)),
    )


def sick_leave() -> PolicyDocument:
    """10 days granted on January 1st, use it or lose it."""
    return PolicyDocument(
        resource_type="sick",
        accrual=YearlyAccrualSettings(annual_amount=Decimal(10), frequency=AccrualFrequency.UPFRONT),
        reconciliation_rules=_expire_only(),
    )


def unlimited_pto() -> PolicyDocument:
    return PolicyDocument(resource_type="pto", is_unlimited=True)


def hourly_pto() -> PolicyDocument:
    """One hour earned per 30 hours worked; only earned time can be used."""
    return PolicyDocument(
        resource_type="pto",
        consumption_mode=ConsumptionMode.CONSUME_UP_TO_ACCRUED,
        accrual=HoursWorkedAccrualSettings(granted_hours=Decimal(1), per_hours_worked=Decimal(30)),
        reconciliation_rules=_carry_then_expire(Decimal(5)),
    )


def wellness_points() -> PolicyDocument:
    """100 points a month, spendable as they are earned."""
    return PolicyDocument(
        resource_type="wellness",
        consumption_mode=ConsumptionMode.CONSUME_UP_TO_ACCRUED,
        accrual=YearlyAccrualSettings(annual_amount=Decimal(1200), frequency=AccrualFrequency.MONTHLY),
        reconciliation_rules=_expire_only(),
    )


def learning_budget() -> PolicyDocument:
    """$2,500 granted upfront each year."""
    return PolicyDocument(
        resource_type="learning",
        accrual=YearlyAccrualSettings(annual_amount=Decimal(2500), frequency=AccrualFrequency.UPFRONT),
        reconciliation_rules=_expire_only(),
    )


def tenure_pto() -> PolicyDocument:
    """15 days a year, stepping up to 20 after 3 years and 25 after 5."""
    return PolicyDocument(
        resource_type="pto",
        accrual=TenureAccrualSettings(
            tiers=[
                TenureTierSettings(after_years=0, annual_amount=Decimal(15)),
                TenureTierSettings(after_years=3, annual_amount=Decimal(20)),
                TenureTierSettings(after_years=5, annual_amount=Decimal(25)),
            ],
        ),
        reconciliation_rules=_carry_then_expire(Decimal(5)),
    )


def recognition_points() -> PolicyDocument:
    """250 peer recognition points a quarter, released monthly."""
    return PolicyDocument(
        resource_type="recognition",
        consumption_mode=ConsumptionMode.CONSUME_UP_TO_ACCRUED,
        accrual=YearlyAccrualSettings(annual_amount=Decimal(1000), frequency=AccrualFrequency.MONTHLY),
        reconciliation_rules=_expire_only(),
    )


def volunteer_hours() -> PolicyDocument:
    """16 hours of paid volunteering granted each January."""
    return PolicyDocument(
        resource_type="volunteer",
        accrual=YearlyAccrualSettings(annual_amount=Decimal(16), frequency=AccrualFrequency.UPFRONT),
        reconciliation_rules=_expire_only(),
    )


def flex_benefits() -> PolicyDocument:
    """$1,500 flexible spending budget; up to $500 rolls over."""
    return PolicyDocument(
        resource_type="flex_benefits",
        accrual=YearlyAccrualSettings(annual_amount=Decimal(1500), frequency=AccrualFrequency.UPFRONT),
        reconciliation_rules=_carry_then_expire(Decimal(500)),
    )


def remote_days() -> PolicyDocument:
    """Two work-from-home days a month, usable once earned."""
    return PolicyDocument(
        resource_type="remote_days",
        consumption_mode=ConsumptionMode.CONSUME_UP_TO_ACCRUED,
        accrual=YearlyAccrualSettings(annual_amount=Decimal(24), frequency=AccrualFrequency.MONTHLY),
        reconciliation_rules=_expire_only(),
    )


PRESETS: dict[str, Callable[[], PolicyDocument]] = {
    "standard_pto": standard_pto,
    "sick_leave": sick_leave,
    "unlimited_pto": unlimited_pto,
    "hourly_pto": hourly_pto,
    "wellness_points": wellness_points,
    "learning_budget": learning_budget,
    "tenure_pto": tenure_pto,
    "recognition_points": recognition_points,
    "volunteer_hours": volunteer_hours,
    "flex_benefits": flex_benefits,
    "remote_days": remote_days,
}


def get_preset(name: str) -> PolicyDocument:
    try:
        return PRESETS[name]()
    except KeyError:
        raise NotFoundError(f"Unknown policy preset: {name}") from None


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def _build_policy_response(policy: ResourcePolicy) -> PolicyResponse:
    """Build a PolicyResponse from a DB model."""
    return PolicyResponse(
        id=policy.id,
        key=policy.policy_key,
        name=policy.name,
        resource_type=policy.resource_type,
        config=_document_adapter.validate_python(policy.config_json or {}),
        created_at=policy.created_at,
    )


async def create_policy(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreatePolicyRequest,
    registry: ResourceRegistry,
) -> PolicyResponse:
    """Validate and store a new policy document."""
    doc, resource_type = validate_policy_document(payload.config, registry)

    existing = await session.execute(select(ResourcePolicy).where(col(ResourcePolicy.policy_key) == payload.key))
    if existing.scalar_one_or_none() is not None:
        raise AppError("Policy with this key already exists", status_code=409)

    policy = ResourcePolicy(
        policy_key=payload.key,
        name=payload.name,
        resource_type=resource_type.name,
        config_json=doc.model_dump(mode="json"),
    )
    session.add(policy)
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.actor_id,
        entity_type=AuditEntityType.POLICY,
        entity_id=policy.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(policy),
    )

    await session.commit()
    await session.refresh(policy)
    logger.info("Created policy %s for resource %s", policy.policy_key, policy.resource_type)
    return _build_policy_response(policy)


async def create_policy_from_preset(
    session: AsyncSession,
    auth: AuthContext,
    preset: str,
    payload: CreatePresetRequest,
    registry: ResourceRegistry,
) -> PolicyResponse:
    """Store a preset document, keyed by the preset name unless the payload says otherwise."""
    doc = get_preset(preset)
    request = CreatePolicyRequest(
        key=payload.key or preset,
        name=payload.name or preset.replace("_", " ").title(),
        config=doc,
    )
    return await create_policy(session, auth, request, registry)


async def get_policy_row(session: AsyncSession, key: str) -> ResourcePolicy:
    result = await session.execute(select(ResourcePolicy).where(col(ResourcePolicy.policy_key) == key))
    policy = result.scalar_one_or_none()
    if policy is None:
        raise NotFoundError(f"Policy not found: {key}")
    return policy


async def get_policy(session: AsyncSession, key: str) -> PolicyResponse:
    """Fetch a single policy by key."""
    return _build_policy_response(await get_policy_row(session, key))


async def list_policies(
    session: AsyncSession,
    resource_type: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> PolicyListResponse:
    """List stored policies, optionally for one resource type."""
    count_stmt = select(func.count()).select_from(ResourcePolicy)
    list_stmt = select(ResourcePolicy)
    if resource_type is not None:
        count_stmt = count_stmt.where(col(ResourcePolicy.resource_type) == resource_type)
        list_stmt = list_stmt.where(col(ResourcePolicy.resource_type) == resource_type)

    total = (await session.execute(count_stmt)).scalar_one()
    result = await session.execute(
        list_stmt.order_by(col(ResourcePolicy.created_at), col(ResourcePolicy.policy_key)).offset(offset).limit(limit)
    )
    return PolicyListResponse(items=[_build_policy_response(p) for p in result.scalars().all()], total=total)


def to_domain_policy(
    row: ResourcePolicy,
    registry: ResourceRegistry,
    *,
    hire_date: date | None = None,
    hours_per_day: int | None = None,
) -> Policy:
    """Parse a stored policy row for one entity."""
    return parse_policy_config(
        row.config_json or {},
        registry,
        policy_id=row.policy_key,
        name=row.name,
        hire_date=hire_date,
        hours_per_day=hours_per_day,
    )
