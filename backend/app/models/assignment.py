# ruff: noqa: TC003
from __future__ import annotations

from datetime import date

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDBase


class ResourcePolicyAssignment(UUIDBase, TimestampMixin, table=True):
    """Links an entity to a policy with effective dating and consumption priority."""

    __tablename__ = "policy_assignment"
    __table_args__ = (
        sa.UniqueConstraint("entity_id", "policy_key", "effective_from", name="uq_assignment_entity_policy_from"),
    )

    entity_id: str = Field(max_length=255, index=True)
    policy_key: str = Field(
        sa_column=sa.Column(
            sa.String(255), sa.ForeignKey("resource_policy.policy_key", ondelete="CASCADE"), nullable=False, index=True
        ),
    )
    resource_type: str = Field(max_length=100, index=True)
    effective_from: date
    effective_to: date | None = None
    consumption_priority: int = Field(default=0)
    requires_approval: bool = Field(default=False)
    auto_approve_up_to: str | None = Field(default=None, max_length=64)
    hire_date: date | None = None
