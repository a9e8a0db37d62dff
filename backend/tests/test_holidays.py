"""Tests for the holiday calendar and its effect on time-off requests."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlmodel import col

from app.core.resources import build_default_registry
from app.models.audit import AuditLog
from app.models.enums import AuditAction, AuditEntityType
from app.models.holiday import Holiday
from app.services.holiday import _occurrences
from app.services.request import counted_days

if TYPE_CHECKING:
    from httpx import AsyncClient
    from sqlalchemy.ext.asyncio import AsyncSession

ENTITY_ID = "emp-1"
ADMIN_HEADERS = {"X-Actor-Id": "hr-admin", "X-Role": "admin"}
EMPLOYEE_HEADERS = {"X-Actor-Id": ENTITY_ID}

HOLIDAYS_URL = "/holidays"
REQUESTS_URL = f"/entities/{ENTITY_ID}/requests"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _add_holiday(client: AsyncClient, day: str, name: str = "Holiday", **extra: Any) -> dict[str, Any]:
    resp = await client.post(HOLIDAYS_URL, json={"date": day, "name": name, **extra}, headers=ADMIN_HEADERS)
    assert resp.status_code == 201, resp.text
    result: dict[str, Any] = resp.json()
    return result


async def _setup_policy(client: AsyncClient, resource_type: str, config: dict[str, Any]) -> None:
    body = {"key": resource_type, "name": resource_type, "config": {"resource_type": resource_type, **config}}
    resp = await client.post("/policies", json=body, headers=ADMIN_HEADERS)
    assert resp.status_code == 201, resp.text
    resp = await client.post(
        f"/entities/{ENTITY_ID}/assignments",
        json={"policy_key": resource_type, "effective_from": "2025-01-01"},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 201, resp.text


async def _submit(client: AsyncClient, resource_type: str, start: str, end: str, **extra: Any) -> Any:
    body = {"resource_type": resource_type, "start_date": start, "end_date": end, **extra}
    return await client.post(REQUESTS_URL, json=body, headers=EMPLOYEE_HEADERS)


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------


class TestHolidayCalendar:
    async def test_create(self, async_client: AsyncClient) -> None:
        data = await _add_holiday(async_client, "2025-07-04", "Independence Day")
        assert data["date"] == "2025-07-04"
        assert data["name"] == "Independence Day"
        assert data["recurring"] is False

    async def test_duplicate_date_conflicts(self, async_client: AsyncClient) -> None:
        await _add_holiday(async_client, "2025-07-04")
        resp = await async_client.post(
            HOLIDAYS_URL, json={"date": "2025-07-04", "name": "Again"}, headers=ADMIN_HEADERS
        )
        assert resp.status_code == 409

    async def test_employee_cannot_create(self, async_client: AsyncClient) -> None:
        resp = await async_client.post(
            HOLIDAYS_URL, json={"date": "2025-07-04", "name": "Nope"}, headers=EMPLOYEE_HEADERS
        )
        assert resp.status_code == 403

    async def test_list_by_year_includes_recurring(self, async_client: AsyncClient) -> None:
        await _add_holiday(async_client, "2025-07-04", "Independence Day")
        await _add_holiday(async_client, "2026-01-01", "New Year")
        await _add_holiday(async_client, "2024-12-25", "Christmas", recurring=True)

        resp = await async_client.get(HOLIDAYS_URL, params={"year": 2025}, headers=EMPLOYEE_HEADERS)
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 2
        assert [h["name"] for h in data["items"]] == ["Christmas", "Independence Day"]

        everything = await async_client.get(HOLIDAYS_URL, headers=EMPLOYEE_HEADERS)
        assert everything.json()["total"] == 3

    async def test_delete(self, async_client: AsyncClient, db_session: AsyncSession) -> None:
        created = await _add_holiday(async_client, "2025-07-04")
        resp = await async_client.delete(f"{HOLIDAYS_URL}/{created['id']}", headers=ADMIN_HEADERS)
        assert resp.status_code == 204

        listing = await async_client.get(HOLIDAYS_URL, headers=EMPLOYEE_HEADERS)
        assert listing.json()["total"] == 0

        result = await db_session.execute(
            select(AuditLog).where(
                col(AuditLog.entity_type) == AuditEntityType.HOLIDAY.value,
                col(AuditLog.action) == AuditAction.DELETE.value,
            )
        )
        entry = result.scalar_one()
        assert entry.before_json is not None
        assert entry.before_json["date"] == "2025-07-04"

    async def test_delete_missing(self, async_client: AsyncClient) -> None:
        resp = await async_client.delete(f"{HOLIDAYS_URL}/{uuid.uuid4()}", headers=ADMIN_HEADERS)
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Day counting
# ---------------------------------------------------------------------------


class TestOccurrences:
    def test_one_off_outside_range(self) -> None:
        holiday = Holiday(date=date(2025, 7, 4), name="x")
        assert _occurrences(holiday, date(2025, 1, 1), date(2025, 6, 30)) == []

    def test_recurring_repeats_each_year(self) -> None:
        holiday = Holiday(date=date(2024, 12, 25), name="x", recurring=True)
        assert _occurrences(holiday, date(2024, 1, 1), date(2026, 12, 31)) == [
            date(2024, 12, 25),
            date(2025, 12, 25),
            date(2026, 12, 25),
        ]

    def test_recurring_not_observed_before_first_year(self) -> None:
        holiday = Holiday(date=date(2025, 1, 1), name="x", recurring=True)
        assert _occurrences(holiday, date(2024, 1, 1), date(2024, 12, 31)) == []

    def test_leap_day_only_in_leap_years(self) -> None:
        holiday = Holiday(date=date(2024, 2, 29), name="x", recurring=True)
        assert _occurrences(holiday, date(2024, 1, 1), date(2028, 12, 31)) == [date(2024, 2, 29), date(2028, 2, 29)]


class TestCountedDays:
    def test_time_off_skips_holidays(self) -> None:
        pto = build_default_registry().get("pto")
        days = counted_days(pto, date(2025, 3, 3), date(2025, 3, 7), holidays={date(2025, 3, 5)})
        assert date(2025, 3, 5) not in days
        assert len(days) == 4

    def test_include_weekends_still_skips_holidays(self) -> None:
        pto = build_default_registry().get("pto")
        days = counted_days(
            pto, date(2025, 3, 8), date(2025, 3, 9), include_weekends=True, holidays={date(2025, 3, 8)}
        )
        assert days == [date(2025, 3, 9)]

    def test_rewards_ignore_holidays(self) -> None:
        wellness = build_default_registry().get("wellness")
        days = counted_days(wellness, date(2025, 3, 5), date(2025, 3, 5), holidays={date(2025, 3, 5)})
        assert days == [date(2025, 3, 5)]


# ---------------------------------------------------------------------------
# Requests over holidays
# ---------------------------------------------------------------------------


class TestRequestsOverHolidays:
    async def test_holiday_is_not_charged(self, async_client: AsyncClient) -> None:
        await _setup_policy(async_client, "pto", {"accrual": {"kind": "yearly", "annual_amount": "20"}})
        await _add_holiday(async_client, "2025-03-05")

        resp = await _submit(async_client, "pto", "2025-03-03", "2025-03-07")
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert Decimal(data["total_amount"]) == Decimal(4)
        assert len(data["transaction_ids"]) == 4

    async def test_recurring_holiday_is_not_charged(self, async_client: AsyncClient) -> None:
        await _setup_policy(async_client, "pto", {"accrual": {"kind": "yearly", "annual_amount": "20"}})
        await _add_holiday(async_client, "2024-03-05", recurring=True)

        resp = await _submit(async_client, "pto", "2025-03-03", "2025-03-07")
        assert resp.status_code == 201, resp.text
        assert Decimal(resp.json()["total_amount"]) == Decimal(4)

    async def test_request_covering_only_a_holiday_is_rejected(self, async_client: AsyncClient) -> None:
        await _setup_policy(async_client, "pto", {"accrual": {"kind": "yearly", "annual_amount": "20"}})
        await _add_holiday(async_client, "2025-03-05")

        resp = await _submit(async_client, "pto", "2025-03-05", "2025-03-05")
        assert resp.status_code == 400

    async def test_rewards_request_on_holiday_is_charged(self, async_client: AsyncClient) -> None:
        await _setup_policy(
            async_client,
            "wellness",
            {"accrual": {"kind": "yearly", "annual_amount": "1200", "frequency": "upfront"}},
        )
        await _add_holiday(async_client, "2025-03-05")

        resp = await _submit(async_client, "wellness", "2025-03-05", "2025-03-05", amount_per_day="50")
        assert resp.status_code == 201, resp.text
        assert Decimal(resp.json()["total_amount"]) == Decimal(50)
