# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date

from pydantic import BaseModel, Field


class CreateHolidayRequest(BaseModel):
    """Request body for adding a holiday to the calendar."""

    date: date
    name: str = Field(min_length=1, max_length=255)
    recurring: bool = False


class HolidayResponse(BaseModel):
    id: uuid.UUID
    date: date
    name: str
    recurring: bool


class HolidayListResponse(BaseModel):
    """Paginated list of holidays."""

    items: list[HolidayResponse]
    total: int
