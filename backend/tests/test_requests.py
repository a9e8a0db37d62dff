"""Tests for the request workflow: submit, approve, reject, cancel, day
uniqueness, multi-policy distribution and idempotency.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlmodel import col

from app.models.audit import AuditLog
from app.models.enums import AuditAction

if TYPE_CHECKING:
    from httpx import AsyncClient
    from sqlalchemy.ext.asyncio import AsyncSession

ENTITY_ID = "emp-1"
ADMIN_HEADERS = {"X-Actor-Id": "hr-admin", "X-Role": "admin"}
EMPLOYEE_HEADERS = {"X-Actor-Id": ENTITY_ID}
OTHER_HEADERS = {"X-Actor-Id": "emp-2"}

REQUESTS_URL = f"/entities/{ENTITY_ID}/requests"
BALANCE_URL = f"/entities/{ENTITY_ID}/balances/pto"


# ---------------------------------------------------------------------------
# Test helpers
# ---------------------------------------------------------------------------


async def _create_policy(client: AsyncClient, key: str, config: dict[str, Any]) -> None:
    resp = await client.post("/policies", json={"key": key, "name": key, "config": config}, headers=ADMIN_HEADERS)
    assert resp.status_code == 201, resp.text


async def _assign(client: AsyncClient, policy_key: str, **extra: Any) -> dict[str, Any]:
    body = {"policy_key": policy_key, "effective_from": "2025-01-01", **extra}
    resp = await client.post(f"/entities/{ENTITY_ID}/assignments", json=body, headers=ADMIN_HEADERS)
    assert resp.status_code == 201, resp.text
    result: dict[str, Any] = resp.json()
    return result


async def _setup_standard(client: AsyncClient, **assignment: Any) -> None:
    """20 days a year, accrued monthly, consumable ahead of accrual."""
    await _create_policy(
        client,
        "pto-standard",
        {"resource_type": "pto", "accrual": {"kind": "yearly", "annual_amount": "20"}},
    )
    await _assign(client, "pto-standard", **assignment)


async def _submit(
    client: AsyncClient,
    start: str = "2025-03-03",
    end: str = "2025-03-07",
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> Any:
    body = {"resource_type": "pto", "start_date": start, "end_date": end, **extra}
    return await client.post(REQUESTS_URL, json=body, headers=headers or EMPLOYEE_HEADERS)


async def _balance(client: AsyncClient, as_of: str = "2025-03-10") -> dict[str, Any]:
    resp = await client.get(BALANCE_URL, params={"as_of": as_of}, headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 200, resp.text
    result: dict[str, Any] = resp.json()["policies"][0]
    return result


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------


class TestSubmit:
    async def test_auto_approved_when_no_approval_needed(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        resp = await _submit(async_client)
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["status"] == "approved"
        assert data["decided_by"] == "system"
        assert Decimal(data["total_amount"]) == Decimal(5)
        assert len(data["transaction_ids"]) == 5

        balance = await _balance(async_client)
        assert Decimal(balance["consumed"]) == Decimal(5)
        assert Decimal(balance["available"]) == Decimal(15)

    async def test_weekends_are_not_counted(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        resp = await _submit(async_client, start="2025-03-07", end="2025-03-10")
        assert resp.status_code == 201, resp.text
        assert Decimal(resp.json()["total_amount"]) == Decimal(2)

    async def test_weekend_only_request_is_rejected(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        resp = await _submit(async_client, start="2025-03-08", end="2025-03-09")
        assert resp.status_code == 400

    async def test_include_weekends(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        resp = await _submit(async_client, start="2025-03-08", end="2025-03-09", include_weekends=True)
        assert resp.status_code == 201, resp.text
        assert Decimal(resp.json()["total_amount"]) == Decimal(2)

    async def test_end_before_start(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        resp = await _submit(async_client, start="2025-03-07", end="2025-03-03")
        assert resp.status_code == 422

    async def test_insufficient_balance(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        resp = await _submit(async_client, amount_per_day="5")
        assert resp.status_code == 422
        assert resp.json()["error"] == "InsufficientBalanceError"

    async def test_amount_below_precision_is_rejected(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        resp = await _submit(async_client, amount_per_day="0.0000001")
        assert resp.status_code == 422
        assert resp.json()["error"] == "AppError"

        listing = await async_client.get(REQUESTS_URL, headers=EMPLOYEE_HEADERS)
        assert listing.json()["total"] == 0

    async def test_no_policy(self, async_client: AsyncClient) -> None:
        resp = await _submit(async_client)
        assert resp.status_code == 404

    async def test_cannot_submit_for_someone_else(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        resp = await _submit(async_client, headers=OTHER_HEADERS)
        assert resp.status_code == 403

    async def test_request_crossing_period_end(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        resp = await _submit(async_client, start="2025-12-31", end="2026-01-02")
        assert resp.status_code == 400

    async def test_idempotent_replay(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        first = await _submit(async_client, idempotency_key="trip-1")
        second = await _submit(async_client, idempotency_key="trip-1")
        assert first.status_code == 201
        assert second.json()["id"] == first.json()["id"]

        ledger = await async_client.get(f"/entities/{ENTITY_ID}/ledger", headers=EMPLOYEE_HEADERS)
        assert ledger.json()["total"] == 5

    async def test_audit_entry(self, async_client: AsyncClient, db_session: AsyncSession) -> None:
        await _setup_standard(async_client)
        resp = await _submit(async_client)
        result = await db_session.execute(
            select(AuditLog).where(col(AuditLog.action) == AuditAction.SUBMIT.value)
        )
        entries = list(result.scalars().all())
        assert len(entries) == 1
        assert str(entries[0].entity_id) == resp.json()["id"]


# ---------------------------------------------------------------------------
# Day uniqueness
# ---------------------------------------------------------------------------


class TestDayUniqueness:
    async def test_same_day_twice_conflicts(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        assert (await _submit(async_client, start="2025-03-03", end="2025-03-04")).status_code == 201
        resp = await _submit(async_client, start="2025-03-04", end="2025-03-05")
        assert resp.status_code == 409
        assert resp.json()["error"] == "DuplicateDayError"

        # The failed request left nothing behind.
        listing = await async_client.get(REQUESTS_URL, headers=EMPLOYEE_HEADERS)
        assert listing.json()["total"] == 1

    async def test_pending_day_also_conflicts(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client, requires_approval=True)
        assert (await _submit(async_client, start="2025-03-03", end="2025-03-03")).status_code == 201
        resp = await _submit(async_client, start="2025-03-03", end="2025-03-03")
        assert resp.status_code == 409

    async def test_cancelled_day_can_be_requested_again(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        first = await _submit(async_client, start="2025-03-03", end="2025-03-03")
        cancel = await async_client.post(f"/requests/{first.json()['id']}/cancel", headers=EMPLOYEE_HEADERS)
        assert cancel.status_code == 200, cancel.text
        assert (await _submit(async_client, start="2025-03-03", end="2025-03-03")).status_code == 201

    async def test_rewards_requests_may_share_a_day(self, async_client: AsyncClient) -> None:
        await _create_policy(
            async_client,
            "wellness",
            {
                "resource_type": "wellness",
                "accrual": {"kind": "yearly", "annual_amount": "1200", "frequency": "upfront"},
            },
        )
        await _assign(async_client, "wellness")
        body = {
            "resource_type": "wellness",
            "start_date": "2025-03-08",
            "end_date": "2025-03-08",
            "amount_per_day": "50",
        }
        first = await async_client.post(REQUESTS_URL, json=body, headers=EMPLOYEE_HEADERS)
        second = await async_client.post(REQUESTS_URL, json=body, headers=EMPLOYEE_HEADERS)
        assert first.status_code == 201, first.text
        assert second.status_code == 201, second.text


# ---------------------------------------------------------------------------
# Multi-policy distribution
# ---------------------------------------------------------------------------


class TestDistribution:
    async def test_lower_priority_number_is_drawn_first(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client, consumption_priority=1)
        await _create_policy(async_client, "pto-bonus", {"resource_type": "pto"})
        await _assign(async_client, "pto-bonus", consumption_priority=0)
        grant = await async_client.post(
            f"/entities/{ENTITY_ID}/grants",
            json={"policy_key": "pto-bonus", "amount": "2", "effective_date": "2025-01-15"},
            headers=ADMIN_HEADERS,
        )
        assert grant.status_code == 201, grant.text

        resp = await _submit(async_client, start="2025-03-03", end="2025-03-05")
        assert resp.status_code == 201, resp.text
        allocations = [(a["policy_key"], Decimal(a["amount"])) for a in resp.json()["allocations"]]
        assert allocations == [("pto-bonus", Decimal(2)), ("pto-standard", Decimal(1))]

        ledger = await async_client.get(
            f"/entities/{ENTITY_ID}/ledger", params={"policy_key": "pto-bonus"}, headers=EMPLOYEE_HEADERS
        )
        # one grant plus two consumed days
        assert ledger.json()["total"] == 3

    async def test_a_day_is_never_split_across_policies(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client, consumption_priority=1)
        await _create_policy(async_client, "pto-bonus", {"resource_type": "pto"})
        await _assign(async_client, "pto-bonus", consumption_priority=0)
        await async_client.post(
            f"/entities/{ENTITY_ID}/grants",
            json={"policy_key": "pto-bonus", "amount": "0.5", "effective_date": "2025-01-15"},
            headers=ADMIN_HEADERS,
        )
        resp = await _submit(async_client, start="2025-03-03", end="2025-03-03")
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Approval workflow
# ---------------------------------------------------------------------------


class TestApprovalWorkflow:
    async def test_pending_then_approved(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client, requires_approval=True)
        submitted = await _submit(async_client)
        assert submitted.json()["status"] == "pending"
        request_id = submitted.json()["id"]

        balance = await _balance(async_client)
        assert Decimal(balance["pending"]) == Decimal(5)
        assert Decimal(balance["available"]) == Decimal(15)

        queue = await async_client.get("/requests", params={"status": "pending"}, headers=ADMIN_HEADERS)
        assert [r["id"] for r in queue.json()["items"]] == [request_id]

        approved = await async_client.post(
            f"/requests/{request_id}/approve", json={"note": "enjoy"}, headers=ADMIN_HEADERS
        )
        assert approved.status_code == 200, approved.text
        data = approved.json()
        assert data["status"] == "approved"
        assert data["decided_by"] == "hr-admin"
        assert data["decision_note"] == "enjoy"
        assert set(data["transaction_ids"]).isdisjoint(submitted.json()["transaction_ids"])

        balance = await _balance(async_client)
        assert Decimal(balance["pending"]) == Decimal(0)
        assert Decimal(balance["consumed"]) == Decimal(5)
        assert Decimal(balance["available"]) == Decimal(15)

    async def test_auto_approve_threshold(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client, requires_approval=True, auto_approve_up_to="2")
        small = await _submit(async_client, start="2025-03-03", end="2025-03-04")
        assert small.json()["status"] == "approved"
        large = await _submit(async_client, start="2025-03-10", end="2025-03-12")
        assert large.json()["status"] == "pending"

    async def test_rejection_releases_hold(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client, requires_approval=True)
        request_id = (await _submit(async_client)).json()["id"]
        rejected = await async_client.post(f"/requests/{request_id}/reject", headers=ADMIN_HEADERS)
        assert rejected.status_code == 200, rejected.text
        assert rejected.json()["status"] == "rejected"

        balance = await _balance(async_client)
        assert Decimal(balance["pending"]) == Decimal(0)
        assert Decimal(balance["available"]) == Decimal(20)

    async def test_only_admins_decide(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client, requires_approval=True)
        request_id = (await _submit(async_client)).json()["id"]
        resp = await async_client.post(f"/requests/{request_id}/approve", headers=EMPLOYEE_HEADERS)
        assert resp.status_code == 403

    async def test_cannot_approve_twice(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client, requires_approval=True)
        request_id = (await _submit(async_client)).json()["id"]
        assert (await async_client.post(f"/requests/{request_id}/approve", headers=ADMIN_HEADERS)).status_code == 200
        again = await async_client.post(f"/requests/{request_id}/approve", headers=ADMIN_HEADERS)
        assert again.status_code == 409

    async def test_cannot_reject_approved(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        request_id = (await _submit(async_client)).json()["id"]
        resp = await async_client.post(f"/requests/{request_id}/reject", headers=ADMIN_HEADERS)
        assert resp.status_code == 409


class TestCancel:
    async def test_cancel_approved_restores_balance(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        request_id = (await _submit(async_client)).json()["id"]
        cancelled = await async_client.post(f"/requests/{request_id}/cancel", headers=EMPLOYEE_HEADERS)
        assert cancelled.status_code == 200, cancelled.text
        assert cancelled.json()["status"] == "cancelled"

        balance = await _balance(async_client)
        assert Decimal(balance["consumed"]) == Decimal(0)
        assert Decimal(balance["available"]) == Decimal(20)

        # Reversals are appended; nothing is deleted.
        ledger = await async_client.get(f"/entities/{ENTITY_ID}/ledger", headers=EMPLOYEE_HEADERS)
        types = [item["type"] for item in ledger.json()["items"]]
        assert types.count("consumption") == 5
        assert types.count("reversal") == 5

    async def test_cancel_twice(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        request_id = (await _submit(async_client)).json()["id"]
        await async_client.post(f"/requests/{request_id}/cancel", headers=EMPLOYEE_HEADERS)
        again = await async_client.post(f"/requests/{request_id}/cancel", headers=EMPLOYEE_HEADERS)
        assert again.status_code == 409

    async def test_others_cannot_cancel_or_view(self, async_client: AsyncClient) -> None:
        await _setup_standard(async_client)
        request_id = (await _submit(async_client)).json()["id"]
        assert (await async_client.post(f"/requests/{request_id}/cancel", headers=OTHER_HEADERS)).status_code == 403
        assert (await async_client.get(f"/requests/{request_id}", headers=OTHER_HEADERS)).status_code == 403
        assert (await async_client.get(f"/requests/{request_id}", headers=ADMIN_HEADERS)).status_code == 200

    async def test_unknown_request(self, async_client: AsyncClient) -> None:
        resp = await async_client.get(
            "/requests/00000000-0000-0000-0000-000000000000", headers=ADMIN_HEADERS
        )
        assert resp.status_code == 404
