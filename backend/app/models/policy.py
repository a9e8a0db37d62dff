# ruff: noqa: TC003
from __future__ import annotations

from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDBase


class ResourcePolicy(UUIDBase, TimestampMixin, table=True):
    """Stored policy document; parsed into a domain Policy on every use."""

    __tablename__ = "resource_policy"

    policy_key: str = Field(max_length=255, unique=True)
    name: str = Field(max_length=255)
    resource_type: str = Field(max_length=100, index=True)
    config_json: dict[str, Any] = Field(sa_type=sa.JSON)
