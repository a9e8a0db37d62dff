from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from app.models.enums import TransactionType

if TYPE_CHECKING:
    from datetime import date

    from app.core.amount import Amount
    from app.core.time import TimePoint

DAY_EXCLUSIVE_TYPES = frozenset({TransactionType.CONSUMPTION, TransactionType.PENDING})


def new_transaction_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Transaction:
    """Immutable ledger record; the only way a balance ever changes.

    Corrections are new ``REVERSAL`` or ``ADJUSTMENT`` transactions. A reversal's
    ``reference_id`` is the id of the transaction it undoes and its delta is the
    negation of that transaction's delta.
    """

    entity_id: str
    policy_id: str
    resource_type: str
    effective_at: TimePoint
    delta: Amount
    type: TransactionType
    id: str = field(default_factory=new_transaction_id)
    reference_id: str = ""
    reason: str = ""
    idempotency_key: str = ""
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def day(self) -> date:
        return self.effective_at.date

    @property
    def claims_day(self) -> bool:
        """Whether this transaction occupies its calendar day for day-exclusive resources."""
        return self.type in DAY_EXCLUSIVE_TYPES

    def reversal(self, *, reason: str = "", idempotency_key: str = "") -> Transaction:
        """Build the transaction that undoes this one."""
        return replace(
            self,
            id=new_transaction_id(),
            delta=-self.delta,
            type=TransactionType.REVERSAL,
            reference_id=self.id,
            reason=reason or f"reversal of {self.id}",
            idempotency_key=idempotency_key,
            metadata={"reversed_type": self.type.value, **self.metadata},
        )


def reversed_ids(transactions: list[Transaction]) -> set[str]:
    """Ids of every transaction referenced by a reversal in ``transactions``."""
    return {tx.reference_id for tx in transactions if tx.type == TransactionType.REVERSAL and tx.reference_id}
