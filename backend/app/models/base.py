"""Shared table bases and column helpers.

Amounts are persisted as decimal strings next to their unit, so SQLite and
PostgreSQL both round-trip the six-place fractions exactly.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

AMOUNT_MAX_LENGTH = 64


def utc_now() -> datetime:
    return datetime.now(UTC)


def amount_field(default: str | None = None) -> Any:
    """A decimal amount column stored as text."""
    if default is None:
        return Field(max_length=AMOUNT_MAX_LENGTH)
    return Field(default=default, max_length=AMOUNT_MAX_LENGTH)


def utc_timestamp_field(*, index: bool = False) -> Any:
    """A timezone-aware timestamp set on insert by both the app and the database."""
    return Field(
        default_factory=utc_now,
        index=index,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
        sa_column_kwargs={"server_default": sa.func.now()},
    )


class UUIDBase(SQLModel):
    """Base model with a UUID v4 primary key."""

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        sa_type=sa.Uuid,
    )


class TimestampMixin(SQLModel):
    created_at: datetime = utc_timestamp_field()
