"""Tests for the SQL ledger store against a real (SQLite) session."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import func, select

from app.core.amount import Amount
from app.core.ledger import DayUniqueLedger
from app.core.store import EntityLedgerStore
from app.core.time import TimePoint
from app.core.transaction import Transaction
from app.exceptions import AlreadyReversedError, DuplicateDayError, DuplicateIdempotencyKeyError
from app.models.enums import TransactionType, Unit
from app.models.ledger import ConsumptionDayClaim
from app.services.ledger import SqlLedgerStore, row_to_transaction, transaction_to_row

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.core.resources import ResourceRegistry
    from app.core.store import LedgerStore


def _tx(
    tx_type: TransactionType = TransactionType.CONSUMPTION,
    on: date = date(2025, 3, 3),
    *,
    policy_id: str = "pto",
    resource_type: str = "pto",
    delta: str = "-1",
    key: str = "",
) -> Transaction:
    unit = Unit.DAYS if resource_type == "pto" else Unit.POINTS
    return Transaction(
        entity_id="emp-1",
        policy_id=policy_id,
        resource_type=resource_type,
        effective_at=TimePoint.of(on),
        delta=Amount.of(delta, unit),
        type=tx_type,
        idempotency_key=key,
        metadata={"source": "test"},
    )


async def _claim_count(session: AsyncSession) -> int:
    return (await session.execute(select(func.count()).select_from(ConsumptionDayClaim))).scalar_one()


class TestRowConversion:
    def test_round_trip_keeps_precision_and_metadata(self) -> None:
        tx = _tx(delta="-0.333333", key="k")
        back = row_to_transaction(transaction_to_row(tx))
        assert back == tx
        assert back.metadata == {"source": "test"}

    def test_reversal_row_records_its_target(self) -> None:
        original = _tx()
        row = transaction_to_row(original.reversal())
        assert row.reversed_transaction_id == original.id
        assert transaction_to_row(original).reversed_transaction_id is None


class TestSqlLedgerStore:
    async def test_is_an_entity_store(self, db_session: AsyncSession, registry: ResourceRegistry) -> None:
        assert isinstance(SqlLedgerStore(db_session, registry), EntityLedgerStore)

    async def test_append_and_load(self, db_session: AsyncSession, registry: ResourceRegistry) -> None:
        store = SqlLedgerStore(db_session, registry)
        await store.append_batch([_tx(on=date(2025, 3, 4)), _tx(on=date(2025, 3, 3))])
        await db_session.commit()
        loaded = await store.load("emp-1", "pto")
        assert [tx.day for tx in loaded] == [date(2025, 3, 3), date(2025, 3, 4)]
        ranged = await store.load_range("emp-1", "pto", TimePoint.day(2025, 3, 4), TimePoint.day(2025, 3, 31))
        assert len(ranged) == 1

    async def test_duplicate_idempotency_key(self, db_session: AsyncSession, registry: ResourceRegistry) -> None:
        store = SqlLedgerStore(db_session, registry)
        await store.append(_tx(TransactionType.ADJUSTMENT, delta="2", key="adj-1"))
        assert await store.exists("adj-1")
        with pytest.raises(DuplicateIdempotencyKeyError):
            await store.append(_tx(TransactionType.ADJUSTMENT, delta="2", key="adj-1"))
        assert len(await store.load("emp-1", "pto")) == 1

    async def test_double_reversal(self, db_session: AsyncSession, registry: ResourceRegistry) -> None:
        store = SqlLedgerStore(db_session, registry)
        original = _tx()
        await store.append(original)
        await store.append(original.reversal())
        assert await store.is_reversed(original.id)
        with pytest.raises(AlreadyReversedError):
            await store.append(original.reversal())

    async def test_day_claim(self, db_session: AsyncSession, registry: ResourceRegistry) -> None:
        store = SqlLedgerStore(db_session, registry)
        await store.append(_tx())
        assert await _claim_count(db_session) == 1
        with pytest.raises(DuplicateDayError):
            await store.append(_tx(policy_id="bonus"))
        assert await _claim_count(db_session) == 1

    async def test_reversal_releases_claim_in_same_batch(
        self, db_session: AsyncSession, registry: ResourceRegistry
    ) -> None:
        store = SqlLedgerStore(db_session, registry)
        hold = _tx(TransactionType.PENDING)
        await store.append(hold)
        # Reversal listed last still runs first.
        await store.append_batch([_tx(), hold.reversal()])
        assert await _claim_count(db_session) == 1
        assert len(await store.load("emp-1", "pto")) == 3

    async def test_rewards_do_not_claim(self, db_session: AsyncSession, registry: ResourceRegistry) -> None:
        store = SqlLedgerStore(db_session, registry)
        await store.append(_tx(resource_type="wellness", policy_id="wellness"))
        await store.append(_tx(resource_type="wellness", policy_id="wellness"))
        assert await _claim_count(db_session) == 0

    async def test_failed_batch_writes_nothing(self, db_session: AsyncSession, registry: ResourceRegistry) -> None:
        store = SqlLedgerStore(db_session, registry)
        await store.append(_tx(key="taken"))
        with pytest.raises(DuplicateIdempotencyKeyError):
            await store.append_batch([_tx(on=date(2025, 3, 5), key="fresh"), _tx(on=date(2025, 3, 6), key="taken")])
        assert not await store.exists("fresh")
        assert len(await store.load("emp-1", "pto")) == 1

    async def test_with_tx_rolls_back(self, db_session: AsyncSession, registry: ResourceRegistry) -> None:
        store = SqlLedgerStore(db_session, registry)

        async def _work(inner: LedgerStore) -> None:
            await inner.append(_tx(key="inside"))
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await store.with_tx(_work)
        assert not await store.exists("inside")

    async def test_get(self, db_session: AsyncSession, registry: ResourceRegistry) -> None:
        store = SqlLedgerStore(db_session, registry)
        tx = _tx()
        await store.append(tx)
        assert await store.get(tx.id) == tx
        assert await store.get("missing") is None


class TestDayUniqueLedgerOnSql:
    async def test_checks_before_writing(self, db_session: AsyncSession, registry: ResourceRegistry) -> None:
        ledger = DayUniqueLedger(SqlLedgerStore(db_session, registry), registry)
        await ledger.append(_tx())
        with pytest.raises(DuplicateDayError):
            await ledger.append(_tx(TransactionType.PENDING, policy_id="bonus"))

    async def test_days_off(self, db_session: AsyncSession, registry: ResourceRegistry) -> None:
        ledger = DayUniqueLedger(SqlLedgerStore(db_session, registry), registry)
        first = _tx(on=date(2025, 3, 3))
        await ledger.append_batch([first, _tx(TransactionType.PENDING, on=date(2025, 3, 4))])
        await ledger.append(first.reversal())
        days = await ledger.days_off("emp-1", date(2025, 3, 1), date(2025, 3, 31))
        assert [(d.day, d.is_pending) for d in days] == [(date(2025, 3, 4), True)]
