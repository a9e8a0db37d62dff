# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Self

from pydantic import BaseModel, Field, model_validator


class CreateAssignmentRequest(BaseModel):
    """Request body for assigning an entity to a policy."""

    policy_key: str = Field(min_length=1, max_length=255)
    effective_from: date
    effective_to: date | None = None
    consumption_priority: int = Field(default=0, ge=0)
    requires_approval: bool = False
    auto_approve_up_to: Decimal | None = Field(default=None, ge=0)
    hire_date: date | None = None

    @model_validator(mode="after")
    def _validate_dates(self) -> Self:
        if self.effective_to is not None and self.effective_to < self.effective_from:
            msg = "effective_to must be >= effective_from"
            raise ValueError(msg)
        return self


class CloseAssignmentRequest(BaseModel):
    """Request body for end-dating an assignment (inclusive last day)."""

    effective_to: date


class PolicyChangeRequest(BaseModel):
    """Move an entity from one policy to another on ``effective_date``."""

    from_policy_key: str = Field(min_length=1, max_length=255)
    to_policy_key: str = Field(min_length=1, max_length=255)
    effective_date: date
    consumption_priority: int | None = Field(default=None, ge=0)
    requires_approval: bool | None = None
    auto_approve_up_to: Decimal | None = Field(default=None, ge=0)


class AssignmentResponse(BaseModel):
    """Response schema for a single assignment."""

    id: uuid.UUID
    entity_id: str
    policy_key: str
    resource_type: str
    effective_from: date
    effective_to: date | None
    consumption_priority: int
    requires_approval: bool
    auto_approve_up_to: Decimal | None
    hire_date: date | None
    created_at: datetime


class AssignmentListResponse(BaseModel):
    """Paginated list of assignments."""

    items: list[AssignmentResponse]
    total: int
