# ruff: noqa: TC003
"""Ledger store contract and the in-memory implementation.

The store is append-only: transactions go in through ``append`` or
``append_batch`` and never change afterwards. ``append_batch`` is atomic; it
validates every transaction (idempotency keys, reversal targets and, when a
resource registry is supplied, day claims) before writing any of them.

``InMemoryLedgerStore`` serializes writers against readers with an asyncio
read/write lock, so any number of balance queries may run together while a
write holds the store exclusively.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from app.exceptions import AlreadyReversedError, DuplicateDayError, DuplicateIdempotencyKeyError
from app.models.enums import TransactionType

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from app.core.resources import ResourceRegistry
    from app.core.time import TimePoint
    from app.core.transaction import Transaction

logger = logging.getLogger(__name__)

DayKey = tuple[str, str, date]


@runtime_checkable
class LedgerStore(Protocol):
    """Persistence contract the engine requires."""

    async def append(self, tx: Transaction) -> None: ...

    async def append_batch(self, txs: list[Transaction]) -> None: ...

    async def load(self, entity_id: str, policy_id: str) -> list[Transaction]: ...

    async def load_range(
        self, entity_id: str, policy_id: str, start: TimePoint, end: TimePoint
    ) -> list[Transaction]: ...

    async def exists(self, idempotency_key: str) -> bool: ...

    async def with_tx(self, fn: Callable[[LedgerStore], Awaitable[None]]) -> None: ...


@runtime_checkable
class EntityLedgerStore(LedgerStore, Protocol):
    """Optional extension: every transaction of one entity across policies."""

    async def load_by_entity(self, entity_id: str, start: TimePoint, end: TimePoint) -> list[Transaction]: ...


class ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


# ---------------------------------------------------------------------------
# Batch validation shared by the in-memory state
# ---------------------------------------------------------------------------


def check_batch_keys(txs: list[Transaction]) -> None:
    """Reject a batch that repeats an idempotency key within itself."""
    seen: set[str] = set()
    for tx in txs:
        if not tx.idempotency_key:
            continue
        if tx.idempotency_key in seen:
            raise DuplicateIdempotencyKeyError(tx.idempotency_key)
        seen.add(tx.idempotency_key)


def check_batch_reversals(txs: list[Transaction], already_reversed: set[str]) -> None:
    """Reject reversals of already-reversed transactions, within the batch or before it."""
    targets: set[str] = set()
    for tx in txs:
        if tx.type != TransactionType.REVERSAL or not tx.reference_id:
            continue
        if tx.reference_id in already_reversed or tx.reference_id in targets:
            raise AlreadyReversedError(tx.reference_id)
        targets.add(tx.reference_id)


class _MemoryState:
    def __init__(self) -> None:
        self.transactions: list[Transaction] = []
        self.keys: set[str] = set()
        self.reversed: set[str] = set()
        self.claims: dict[DayKey, str] = {}


class InMemoryLedgerStore:
    """Ledger store backed by process memory.

    When constructed with a ``ResourceRegistry`` it also enforces the
    one-consumption-per-day rule for day-exclusive resource types, the same
    constraint the SQL store enforces with a unique index.
    """

    def __init__(self, registry: ResourceRegistry | None = None) -> None:
        self._state = _MemoryState()
        self._lock = ReadWriteLock()
        self._registry = registry

    # -- writes ---------------------------------------------------------------

    async def append(self, tx: Transaction) -> None:
        await self.append_batch([tx])

    async def append_batch(self, txs: list[Transaction]) -> None:
        async with self._lock.write():
            self._append_locked(txs)

    async def with_tx(self, fn: Callable[[LedgerStore], Awaitable[None]]) -> None:
        """Run ``fn`` against an exclusive view; roll everything back if it raises."""
        async with self._lock.write():
            saved = copy.copy(self._state)
            saved.transactions = list(self._state.transactions)
            saved.keys = set(self._state.keys)
            saved.reversed = set(self._state.reversed)
            saved.claims = dict(self._state.claims)
            try:
                await fn(_LockedView(self))
            except Exception:
                self._state = saved
                raise

    def _claim_key(self, tx: Transaction) -> DayKey | None:
        if self._registry is None or not tx.claims_day:
            return None
        if not self._registry.is_unique_per_day(tx.resource_type):
            return None
        return (tx.entity_id, tx.resource_type, tx.day)

    def _append_locked(self, txs: list[Transaction]) -> None:
        state = self._state
        check_batch_keys(txs)
        for tx in txs:
            if tx.idempotency_key and tx.idempotency_key in state.keys:
                raise DuplicateIdempotencyKeyError(tx.idempotency_key)
        check_batch_reversals(txs, state.reversed)

        released = {tx.reference_id for tx in txs if tx.type == TransactionType.REVERSAL}
        claims = {k: v for k, v in state.claims.items() if v not in released}
        new_claims: dict[DayKey, str] = {}
        for tx in txs:
            key = self._claim_key(tx)
            if key is None:
                continue
            if key in claims or key in new_claims:
                raise DuplicateDayError(tx.entity_id, tx.resource_type, tx.day)
            new_claims[key] = tx.id

        for tx in txs:
            state.transactions.append(tx)
            if tx.idempotency_key:
                state.keys.add(tx.idempotency_key)
            if tx.type == TransactionType.REVERSAL and tx.reference_id:
                state.reversed.add(tx.reference_id)
        state.transactions.sort(key=lambda t: t.effective_at.at)
        claims.update(new_claims)
        state.claims = claims
        logger.debug("Appended %d transaction(s)", len(txs))

    # -- reads ----------------------------------------------------------------

    async def load(self, entity_id: str, policy_id: str) -> list[Transaction]:
        async with self._lock.read():
            return self._load_locked(entity_id, policy_id)

    async def load_range(self, entity_id: str, policy_id: str, start: TimePoint, end: TimePoint) -> list[Transaction]:
        async with self._lock.read():
            return self._load_range_locked(entity_id, policy_id, start, end)

    async def load_by_entity(self, entity_id: str, start: TimePoint, end: TimePoint) -> list[Transaction]:
        async with self._lock.read():
            return self._load_entity_locked(entity_id, start, end)

    async def exists(self, idempotency_key: str) -> bool:
        async with self._lock.read():
            return idempotency_key in self._state.keys

    def _load_locked(self, entity_id: str, policy_id: str) -> list[Transaction]:
        return [tx for tx in self._state.transactions if tx.entity_id == entity_id and tx.policy_id == policy_id]

    def _load_range_locked(self, entity_id: str, policy_id: str, start: TimePoint, end: TimePoint) -> list[Transaction]:
        return [tx for tx in self._load_locked(entity_id, policy_id) if start.date <= tx.day <= end.date]

    def _load_entity_locked(self, entity_id: str, start: TimePoint, end: TimePoint) -> list[Transaction]:
        return [
            tx for tx in self._state.transactions if tx.entity_id == entity_id and start.date <= tx.day <= end.date
        ]


class _LockedView:
    """Store view handed to ``with_tx`` callbacks; the write lock is already held."""

    def __init__(self, store: InMemoryLedgerStore) -> None:
        self._store = store

    async def append(self, tx: Transaction) -> None:
        self._store._append_locked([tx])

    async def append_batch(self, txs: list[Transaction]) -> None:
        self._store._append_locked(txs)

    async def load(self, entity_id: str, policy_id: str) -> list[Transaction]:
        return self._store._load_locked(entity_id, policy_id)

    async def load_range(self, entity_id: str, policy_id: str, start: TimePoint, end: TimePoint) -> list[Transaction]:
        return self._store._load_range_locked(entity_id, policy_id, start, end)

    async def load_by_entity(self, entity_id: str, start: TimePoint, end: TimePoint) -> list[Transaction]:
        return self._store._load_entity_locked(entity_id, start, end)

    async def exists(self, idempotency_key: str) -> bool:
        return idempotency_key in self._store._state.keys

    async def with_tx(self, fn: Callable[[LedgerStore], Awaitable[None]]) -> None:
        await fn(self)
