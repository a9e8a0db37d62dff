# ruff: noqa: TC003
from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import and_, extract, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from app.exceptions import AppError, NotFoundError
from app.models.enums import AuditAction, AuditEntityType
from app.models.holiday import Holiday
from app.schemas.holiday import HolidayListResponse, HolidayResponse
from app.services.audit import model_to_audit_dict, write_audit_log

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from app.schemas.auth import AuthContext
    from app.schemas.holiday import CreateHolidayRequest

logger = logging.getLogger(__name__)


def _build_holiday_response(holiday: Holiday) -> HolidayResponse:
    return HolidayResponse(
        id=holiday.id,
        date=holiday.date,
        name=holiday.name,
        recurring=holiday.recurring,
    )


def _occurrences(holiday: Holiday, start: date, end: date) -> list[date]:
    """Dates in ``[start, end]`` on which ``holiday`` is observed."""
    if not holiday.recurring:
        return [holiday.date] if start <= holiday.date <= end else []
    days = []
    for year in range(max(start.year, holiday.date.year), end.year + 1):
        try:
            day = holiday.date.replace(year=year)
        except ValueError:
            # Feb 29 is only observed in leap years.
            continue
        if start <= day <= end:
            days.append(day)
    return days


async def holiday_dates(session: AsyncSession, start: date, end: date) -> set[date]:
    """Every holiday falling in ``[start, end]``, recurring ones expanded."""
    result = await session.execute(
        select(Holiday).where(
            or_(
                and_(col(Holiday.date) >= start, col(Holiday.date) <= end),
                and_(col(Holiday.recurring).is_(True), col(Holiday.date) <= end),
            )
        )
    )
    days: set[date] = set()
    for holiday in result.scalars().all():
        days.update(_occurrences(holiday, start, end))
    return days


async def create_holiday(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreateHolidayRequest,
) -> HolidayResponse:
    """Add a holiday to the calendar."""
    holiday = Holiday(date=payload.date, name=payload.name, recurring=payload.recurring)
    session.add(holiday)
    try:
        async with session.begin_nested():
            await session.flush()
    except IntegrityError:
        raise AppError(f"A holiday already exists on {payload.date}", status_code=409) from None

    await write_audit_log(
        session,
        actor_id=auth.actor_id,
        entity_type=AuditEntityType.HOLIDAY,
        entity_id=holiday.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(holiday),
    )

    await session.commit()
    await session.refresh(holiday)
    logger.info("Added holiday %s on %s (recurring=%s)", holiday.name, holiday.date, holiday.recurring)
    return _build_holiday_response(holiday)


async def list_holidays(
    session: AsyncSession,
    year: int | None = None,
    offset: int = 0,
    limit: int = 50,
) -> HolidayListResponse:
    """List holidays, optionally those observed in ``year``."""
    filters = []
    if year is not None:
        year_of = extract("year", col(Holiday.date))
        filters.append(or_(year_of == year, and_(col(Holiday.recurring).is_(True), year_of <= year)))

    total = (await session.execute(select(func.count()).select_from(Holiday).where(*filters))).scalar_one()
    result = await session.execute(
        select(Holiday).where(*filters).order_by(col(Holiday.date)).offset(offset).limit(limit)
    )
    return HolidayListResponse(items=[_build_holiday_response(h) for h in result.scalars().all()], total=total)


async def delete_holiday(session: AsyncSession, auth: AuthContext, holiday_id: uuid.UUID) -> None:
    """Remove a holiday. Requests already submitted keep the days they were charged."""
    holiday = await session.get(Holiday, holiday_id)
    if holiday is None:
        raise NotFoundError(f"Holiday {holiday_id} not found")

    await write_audit_log(
        session,
        actor_id=auth.actor_id,
        entity_type=AuditEntityType.HOLIDAY,
        entity_id=holiday.id,
        action=AuditAction.DELETE,
        before_json=model_to_audit_dict(holiday),
    )
    await session.delete(holiday)
    await session.commit()
