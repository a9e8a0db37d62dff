"""Integration tests for balance queries, projections, adjustments and grants."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from app.services.employee import EntityInfo

if TYPE_CHECKING:
    from httpx import AsyncClient

    from app.services.employee import InMemoryEntityDirectory

ENTITY_ID = "emp-1"
ADMIN_HEADERS = {"X-Actor-Id": "hr-admin", "X-Role": "admin"}
EMPLOYEE_HEADERS = {"X-Actor-Id": ENTITY_ID}
ENTITY_URL = f"/entities/{ENTITY_ID}"


async def _policy(client: AsyncClient, key: str, config: dict[str, Any], **assignment: Any) -> None:
    resp = await client.post("/policies", json={"key": key, "name": key, "config": config}, headers=ADMIN_HEADERS)
    assert resp.status_code == 201, resp.text
    body = {"policy_key": key, "effective_from": "2025-01-01", **assignment}
    resp = await client.post(f"{ENTITY_URL}/assignments", json=body, headers=ADMIN_HEADERS)
    assert resp.status_code == 201, resp.text


async def _yearly(client: AsyncClient, key: str = "pto-standard", annual: str = "24", **config: Any) -> None:
    await _policy(
        client, key, {"resource_type": "pto", "accrual": {"kind": "yearly", "annual_amount": annual}, **config}
    )


async def _balance(client: AsyncClient, resource: str = "pto", as_of: str = "2025-03-15") -> dict[str, Any]:
    resp = await client.get(f"{ENTITY_URL}/balances/{resource}", params={"as_of": as_of}, headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 200, resp.text
    result: dict[str, Any] = resp.json()
    return result


class TestBalanceView:
    async def test_mid_year_balance(self, async_client: AsyncClient) -> None:
        await _yearly(async_client)
        data = await _balance(async_client)
        assert data["unit"] == "days"
        assert data["as_of"] == "2025-03-15"
        policy = data["policies"][0]
        assert policy["period_start"] == "2025-01-01"
        assert policy["period_end"] == "2025-12-31"
        assert Decimal(policy["accrued_to_date"]) == Decimal(6)
        assert Decimal(policy["total_entitlement"]) == Decimal(24)
        assert Decimal(policy["available"]) == Decimal(24)
        assert Decimal(data["total_available"]) == Decimal(24)

    async def test_up_to_accrued_mode(self, async_client: AsyncClient) -> None:
        await _yearly(async_client, consumption_mode="consume_up_to_accrued")
        policy = (await _balance(async_client))["policies"][0]
        assert policy["mode"] == "consume_up_to_accrued"
        assert Decimal(policy["available"]) == Decimal(6)

    async def test_mid_year_hire_is_prorated(
        self, async_client: AsyncClient, directory: InMemoryEntityDirectory
    ) -> None:
        directory.seed(EntityInfo(id=ENTITY_ID, hire_date=date(2025, 7, 1)))
        await _yearly(async_client)
        policy = (await _balance(async_client, as_of="2025-12-31"))["policies"][0]
        assert Decimal(policy["accrued_to_date"]) == Decimal(12)

    async def test_unlimited(self, async_client: AsyncClient) -> None:
        await _policy(async_client, "pto-unlimited", {"resource_type": "pto", "is_unlimited": True})
        data = await _balance(async_client)
        assert data["is_unlimited"] is True
        assert data["total_available"] is None
        assert data["policies"][0]["available"] is None

    async def test_unknown_resource(self, async_client: AsyncClient) -> None:
        resp = await async_client.get(f"{ENTITY_URL}/balances/yachts", headers=EMPLOYEE_HEADERS)
        assert resp.status_code == 422

    async def test_no_assignments(self, async_client: AsyncClient) -> None:
        data = await _balance(async_client)
        assert data["policies"] == []
        assert Decimal(data["total_available"]) == Decimal(0)


class TestProjection:
    async def test_valid(self, async_client: AsyncClient) -> None:
        await _yearly(async_client)
        resp = await async_client.get(
            f"{ENTITY_URL}/balances/pto/projection",
            params={"policy_key": "pto-standard", "amount": "4", "on": "2025-03-15"},
            headers=EMPLOYEE_HEADERS,
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["is_valid"] is True
        assert Decimal(data["remaining"]) == Decimal(20)

    async def test_insufficient(self, async_client: AsyncClient) -> None:
        await _yearly(async_client)
        resp = await async_client.get(
            f"{ENTITY_URL}/balances/pto/projection",
            params={"policy_key": "pto-standard", "amount": "30", "on": "2025-03-15"},
            headers=EMPLOYEE_HEADERS,
        )
        data = resp.json()
        assert data["is_valid"] is False
        assert data["error"] == "insufficient_balance"


class TestAdjustments:
    async def test_credit(self, async_client: AsyncClient) -> None:
        await _yearly(async_client)
        resp = await async_client.post(
            f"{ENTITY_URL}/adjustments",
            json={"policy_key": "pto-standard", "amount": "2.5", "effective_date": "2025-02-01", "reason": "bonus"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["type"] == "adjustment"
        policy = (await _balance(async_client))["policies"][0]
        assert Decimal(policy["adjustments"]) == Decimal("2.5")
        assert Decimal(policy["available"]) == Decimal("26.5")

    async def test_debit_beyond_balance(self, async_client: AsyncClient) -> None:
        await _yearly(async_client)
        resp = await async_client.post(
            f"{ENTITY_URL}/adjustments",
            json={"policy_key": "pto-standard", "amount": "-30", "effective_date": "2025-02-01", "reason": "oops"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 422

    async def test_zero_rejected(self, async_client: AsyncClient) -> None:
        await _yearly(async_client)
        resp = await async_client.post(
            f"{ENTITY_URL}/adjustments",
            json={"policy_key": "pto-standard", "amount": "0", "reason": "nothing"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 422

    async def test_idempotency_key(self, async_client: AsyncClient) -> None:
        await _yearly(async_client)
        body = {
            "policy_key": "pto-standard",
            "amount": "1",
            "effective_date": "2025-02-01",
            "reason": "bonus",
            "idempotency_key": "adj-1",
        }
        first = await async_client.post(f"{ENTITY_URL}/adjustments", json=body, headers=ADMIN_HEADERS)
        assert first.status_code == 201
        again = await async_client.post(f"{ENTITY_URL}/adjustments", json=body, headers=ADMIN_HEADERS)
        assert again.status_code == 409
        assert again.json()["error"] == "DuplicateIdempotencyKeyError"

    async def test_requires_admin(self, async_client: AsyncClient) -> None:
        await _yearly(async_client)
        resp = await async_client.post(
            f"{ENTITY_URL}/adjustments",
            json={"policy_key": "pto-standard", "amount": "1", "reason": "please"},
            headers=EMPLOYEE_HEADERS,
        )
        assert resp.status_code == 403


class TestGrants:
    async def test_hours_worked_grant(self, async_client: AsyncClient) -> None:
        await _policy(
            async_client,
            "volunteer",
            {
                "resource_type": "volunteer",
                "accrual": {"kind": "hours_worked", "granted_hours": "1", "per_hours_worked": "30"},
            },
        )
        resp = await async_client.post(
            f"{ENTITY_URL}/grants",
            json={"policy_key": "volunteer", "hours_worked": "90", "effective_date": "2025-03-01"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 201, resp.text
        assert Decimal(resp.json()["amount"]) == Decimal(3)
        assert resp.json()["metadata"]["hours_worked"] == "90"

        policy = (await _balance(async_client, resource="volunteer"))["policies"][0]
        assert Decimal(policy["accrued_to_date"]) == Decimal(3)
        assert Decimal(policy["total_entitlement"]) == Decimal(3)

    async def test_hours_on_a_yearly_policy(self, async_client: AsyncClient) -> None:
        await _yearly(async_client)
        resp = await async_client.post(
            f"{ENTITY_URL}/grants",
            json={"policy_key": "pto-standard", "hours_worked": "40"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 400

    async def test_amount_and_hours_are_exclusive(self, async_client: AsyncClient) -> None:
        await _yearly(async_client)
        resp = await async_client.post(
            f"{ENTITY_URL}/grants",
            json={"policy_key": "pto-standard", "amount": "1", "hours_worked": "40"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 422


class TestLedger:
    async def test_newest_first_and_filtered(self, async_client: AsyncClient) -> None:
        await _yearly(async_client)
        await _yearly(async_client, key="pto-bonus", annual="2")
        for key, day in (("pto-standard", "2025-02-01"), ("pto-bonus", "2025-02-02"), ("pto-standard", "2025-02-03")):
            resp = await async_client.post(
                f"{ENTITY_URL}/adjustments",
                json={"policy_key": key, "amount": "1", "effective_date": day, "reason": "bonus"},
                headers=ADMIN_HEADERS,
            )
            assert resp.status_code == 201, resp.text

        ledger = await async_client.get(f"{ENTITY_URL}/ledger", headers=EMPLOYEE_HEADERS)
        assert ledger.json()["total"] == 3
        days = [item["effective_at"][:10] for item in ledger.json()["items"]]
        assert days == ["2025-02-03", "2025-02-02", "2025-02-01"]

        filtered = await async_client.get(
            f"{ENTITY_URL}/ledger", params={"policy_key": "pto-bonus"}, headers=EMPLOYEE_HEADERS
        )
        assert filtered.json()["total"] == 1
