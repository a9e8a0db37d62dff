# ruff: noqa: TC003
from __future__ import annotations

import datetime

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import UUIDBase


class Holiday(UUIDBase, table=True):
    """A day that time-off requests do not draw on.

    A recurring holiday falls on the same month and day every year; ``date``
    then records the year it was first observed.
    """

    __tablename__ = "holiday"
    __table_args__ = (sa.UniqueConstraint("date", name="uq_holiday_date"),)

    date: datetime.date = Field(index=True)
    name: str = Field(max_length=255)
    recurring: bool = Field(default=False)
