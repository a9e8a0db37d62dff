"""SQL implementation of the ledger store.

Rows in ``ledger_transaction`` are only ever inserted. The database enforces
the invariants the in-memory store checks by hand:

* ``idempotency_key`` is unique, so a replayed write fails.
* ``reversed_transaction_id`` is unique, so a transaction can be reversed once.
* ``consumption_day_claim`` holds one row per (entity, resource type, day) for
  day-exclusive consumption; reversing the claiming transaction releases it.

Every batch runs inside a SAVEPOINT so it is all-or-nothing without ending the
caller's transaction. Committing is left to the caller.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from app.core.amount import Amount
from app.core.store import check_batch_keys, check_batch_reversals
from app.core.time import TimePoint
from app.core.transaction import Transaction
from app.exceptions import AlreadyReversedError, DuplicateDayError, DuplicateIdempotencyKeyError
from app.models.enums import Granularity, TransactionType
from app.models.ledger import ConsumptionDayClaim, LedgerTransaction

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from app.core.resources import ResourceRegistry
    from app.core.store import LedgerStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def transaction_to_row(tx: Transaction) -> LedgerTransaction:
    """Build the insertable row for a domain transaction."""
    is_reversal = tx.type == TransactionType.REVERSAL and bool(tx.reference_id)
    return LedgerTransaction(
        tx_id=tx.id,
        entity_id=tx.entity_id,
        policy_id=tx.policy_id,
        resource_type=tx.resource_type,
        tx_type=tx.type.value,
        amount=str(tx.delta.value),
        unit=tx.delta.unit.value,
        effective_at=tx.effective_at.at,
        effective_day=tx.day,
        granularity=tx.effective_at.granularity.value,
        reference_id=tx.reference_id,
        reason=tx.reason,
        idempotency_key=tx.idempotency_key or None,
        reversed_transaction_id=tx.reference_id if is_reversal else None,
        metadata_json=dict(tx.metadata) if tx.metadata else None,
    )


def row_to_transaction(row: LedgerTransaction) -> Transaction:
    """Rebuild the domain transaction a row was written from."""
    return Transaction(
        id=row.tx_id,
        entity_id=row.entity_id,
        policy_id=row.policy_id,
        resource_type=row.resource_type,
        effective_at=TimePoint(row.effective_at, Granularity(row.granularity)),
        delta=Amount.of(row.amount, row.unit),
        type=TransactionType(row.tx_type),
        reference_id=row.reference_id,
        reason=row.reason,
        idempotency_key=row.idempotency_key or "",
        metadata=dict(row.metadata_json or {}),
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqlLedgerStore:
    """Ledger store backed by the caller's ``AsyncSession``."""

    def __init__(self, session: AsyncSession, registry: ResourceRegistry) -> None:
        self._session = session
        self._registry = registry

    @property
    def session(self) -> AsyncSession:
        return self._session

    def _claims_day(self, tx: Transaction) -> bool:
        return tx.claims_day and self._registry.is_unique_per_day(tx.resource_type)

    # -- writes ---------------------------------------------------------------

    async def append(self, tx: Transaction) -> None:
        await self.append_batch([tx])

    async def append_batch(self, txs: list[Transaction]) -> None:
        if not txs:
            return
        check_batch_keys(txs)
        check_batch_reversals(txs, set())

        # Reversals go first so that a batch may release a day and claim it again.
        ordered = sorted(txs, key=lambda tx: tx.type != TransactionType.REVERSAL)
        try:
            async with self._session.begin_nested():
                for tx in ordered:
                    self._session.add(transaction_to_row(tx))
                    if tx.type == TransactionType.REVERSAL and tx.reference_id:
                        await self._session.execute(
                            delete(ConsumptionDayClaim).where(
                                col(ConsumptionDayClaim.transaction_id) == tx.reference_id
                            )
                        )
                    elif self._claims_day(tx):
                        self._session.add(
                            ConsumptionDayClaim(
                                entity_id=tx.entity_id,
                                resource_type=tx.resource_type,
                                day=tx.day,
                                transaction_id=tx.id,
                            )
                        )
                await self._session.flush()
        except IntegrityError as exc:
            translated = await self._translate(exc, txs)
            if translated is None:
                raise
            raise translated from exc
        logger.debug("Appended %d transaction(s)", len(txs))

    async def _translate(self, exc: IntegrityError, txs: list[Transaction]) -> Exception | None:
        """Map a constraint violation to the ledger error it stands for."""
        message = str(exc.orig)
        if "consumption_day_claim" in message:
            for tx in txs:
                if self._claims_day(tx) and await self._day_claimed(tx):
                    logger.warning(
                        "Rejected write: %s already taken on %s for %s", tx.resource_type, tx.day, tx.entity_id
                    )
                    return DuplicateDayError(tx.entity_id, tx.resource_type, tx.day)
            first = next(tx for tx in txs if self._claims_day(tx))
            return DuplicateDayError(first.entity_id, first.resource_type, first.day)
        if "reversed_transaction_id" in message:
            reversals = [tx for tx in txs if tx.type == TransactionType.REVERSAL]
            for tx in reversals:
                if await self.is_reversed(tx.reference_id):
                    return AlreadyReversedError(tx.reference_id)
            return AlreadyReversedError(reversals[0].reference_id)
        if "idempotency_key" in message or "tx_id" in message:
            for tx in txs:
                if tx.idempotency_key and await self.exists(tx.idempotency_key):
                    return DuplicateIdempotencyKeyError(tx.idempotency_key)
            return DuplicateIdempotencyKeyError(txs[0].idempotency_key or txs[0].id)
        return None

    async def _day_claimed(self, tx: Transaction) -> bool:
        result = await self._session.execute(
            select(ConsumptionDayClaim.id).where(
                col(ConsumptionDayClaim.entity_id) == tx.entity_id,
                col(ConsumptionDayClaim.resource_type) == tx.resource_type,
                col(ConsumptionDayClaim.day) == tx.day,
            )
        )
        return result.first() is not None

    async def with_tx(self, fn: Callable[[LedgerStore], Awaitable[None]]) -> None:
        """Run ``fn`` inside a SAVEPOINT; any exception rolls back its writes."""
        async with self._session.begin_nested():
            await fn(self)

    # -- reads ----------------------------------------------------------------

    async def _select(self, *conditions: object) -> list[Transaction]:
        result = await self._session.execute(
            select(LedgerTransaction)
            .where(*conditions)
            .order_by(col(LedgerTransaction.effective_at), col(LedgerTransaction.created_at))
        )
        return [row_to_transaction(row) for row in result.scalars().all()]

    async def load(self, entity_id: str, policy_id: str) -> list[Transaction]:
        return await self._select(
            col(LedgerTransaction.entity_id) == entity_id,
            col(LedgerTransaction.policy_id) == policy_id,
        )

    async def load_range(self, entity_id: str, policy_id: str, start: TimePoint, end: TimePoint) -> list[Transaction]:
        return await self._select(
            col(LedgerTransaction.entity_id) == entity_id,
            col(LedgerTransaction.policy_id) == policy_id,
            col(LedgerTransaction.effective_day) >= start.date,
            col(LedgerTransaction.effective_day) <= end.date,
        )

    async def load_by_entity(self, entity_id: str, start: TimePoint, end: TimePoint) -> list[Transaction]:
        return await self._select(
            col(LedgerTransaction.entity_id) == entity_id,
            col(LedgerTransaction.effective_day) >= start.date,
            col(LedgerTransaction.effective_day) <= end.date,
        )

    async def exists(self, idempotency_key: str) -> bool:
        result = await self._session.execute(
            select(LedgerTransaction.id).where(col(LedgerTransaction.idempotency_key) == idempotency_key)
        )
        return result.first() is not None

    async def get(self, transaction_id: str) -> Transaction | None:
        result = await self._session.execute(
            select(LedgerTransaction).where(col(LedgerTransaction.tx_id) == transaction_id)
        )
        row = result.scalar_one_or_none()
        return row_to_transaction(row) if row is not None else None

    async def is_reversed(self, transaction_id: str) -> bool:
        result = await self._session.execute(
            select(LedgerTransaction.id).where(col(LedgerTransaction.reversed_transaction_id) == transaction_id)
        )
        return result.first() is not None
