"""Day-uniqueness enforcement for time-off style resources.

An entity cannot be "off" twice on the same calendar day for the same resource
type, whichever policy the day is drawn from. ``DayUniqueLedger`` wraps any
``LedgerStore`` and rejects such writes before they reach the store; the store
keeps its own uniqueness constraint as the last line of defence against races
between this check and the write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from app.core.store import EntityLedgerStore
from app.core.time import TimePoint
from app.core.transaction import reversed_ids
from app.exceptions import DuplicateDayError
from app.models.enums import TransactionType

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import date

    from app.core.amount import Amount
    from app.core.resources import ResourceRegistry
    from app.core.store import LedgerStore
    from app.core.transaction import Transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DayOff:
    """One active consumption or pending day."""

    day: date
    policy_id: str
    resource_type: str
    amount: Amount
    is_pending: bool
    transaction_id: str


class DayUniqueLedger:
    """Ledger wrapper enforcing at most one active consumption per entity, resource type and day."""

    def __init__(self, store: LedgerStore, registry: ResourceRegistry) -> None:
        self._store = store
        self._registry = registry

    @property
    def store(self) -> LedgerStore:
        return self._store

    def _is_exclusive(self, tx: Transaction) -> bool:
        return tx.claims_day and self._registry.is_unique_per_day(tx.resource_type)

    # -- writes ---------------------------------------------------------------

    async def append(self, tx: Transaction) -> None:
        await self.append_batch([tx])

    async def append_batch(self, txs: list[Transaction]) -> None:
        candidates = [tx for tx in txs if self._is_exclusive(tx)]
        if candidates:
            released = reversed_ids(txs)
            self._check_batch(candidates)
            await self._check_existing(candidates, released)
        await self._store.append_batch(txs)

    @staticmethod
    def _check_batch(candidates: list[Transaction]) -> None:
        seen: set[tuple[str, str, date]] = set()
        for tx in candidates:
            key = (tx.entity_id, tx.resource_type, tx.day)
            if key in seen:
                logger.warning(
                    "Rejected batch: duplicate %s day %s for entity %s", tx.resource_type, tx.day, tx.entity_id
                )
                raise DuplicateDayError(tx.entity_id, tx.resource_type, tx.day)
            seen.add(key)

    async def _check_existing(self, candidates: list[Transaction], released: set[str]) -> None:
        if not isinstance(self._store, EntityLedgerStore):
            # Only the store-level constraint protects this store.
            return
        by_entity: dict[str, list[Transaction]] = {}
        for tx in candidates:
            by_entity.setdefault(tx.entity_id, []).append(tx)

        for entity_id, entity_txs in by_entity.items():
            days = [tx.day for tx in entity_txs]
            existing = await self._store.load_by_entity(entity_id, TimePoint.of(min(days)), TimePoint.of(max(days)))
            inactive = reversed_ids(existing) | released
            occupied = {(tx.resource_type, tx.day) for tx in existing if tx.claims_day and tx.id not in inactive}
            for tx in entity_txs:
                if (tx.resource_type, tx.day) in occupied:
                    logger.warning(
                        "Rejected write: %s already taken on %s for entity %s", tx.resource_type, tx.day, entity_id
                    )
                    raise DuplicateDayError(entity_id, tx.resource_type, tx.day)

    # -- reads / pass-through -------------------------------------------------

    async def load(self, entity_id: str, policy_id: str) -> list[Transaction]:
        return await self._store.load(entity_id, policy_id)

    async def load_range(self, entity_id: str, policy_id: str, start: TimePoint, end: TimePoint) -> list[Transaction]:
        return await self._store.load_range(entity_id, policy_id, start, end)

    async def exists(self, idempotency_key: str) -> bool:
        return await self._store.exists(idempotency_key)

    async def with_tx(self, fn: Callable[[LedgerStore], Awaitable[None]]) -> None:
        async def _wrapped(inner: LedgerStore) -> None:
            await fn(DayUniqueLedger(inner, self._registry))

        await self._store.with_tx(_wrapped)

    async def days_off(self, entity_id: str, start: date, end: date, policy_id: str | None = None) -> list[DayOff]:
        """Active (non-reversed) consumption and pending days in ``[start, end]``."""
        if not isinstance(self._store, EntityLedgerStore):
            return []
        txs = await self._store.load_by_entity(entity_id, TimePoint.of(start), TimePoint.of(end))
        inactive = reversed_ids(txs)
        result = [
            DayOff(
                day=tx.day,
                policy_id=tx.policy_id,
                resource_type=tx.resource_type,
                amount=-tx.delta,
                is_pending=tx.type == TransactionType.PENDING,
                transaction_id=tx.id,
            )
            for tx in txs
            if tx.claims_day and tx.id not in inactive and (policy_id is None or tx.policy_id == policy_id)
        ]
        return sorted(result, key=lambda d: d.day)

    async def is_day_off(self, entity_id: str, on: date) -> DayOff | None:
        days = await self.days_off(entity_id, on, on)
        return days[0] if days else None
