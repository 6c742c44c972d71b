from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

# Upper bound on units in one confirmation; each unit becomes its own ledger entry.
MAX_QUANTITY = 100


@dataclass(slots=True)
class Transaction:
    """Committed ledger record owned by a single conversation."""

    id: int
    item: str
    unit_price: float
    occurred_at: datetime

    def get_details(self, currency: str = "R$") -> str:
        """Return a formatted, human-readable representation."""
        return f"#{self.id} — {self.item}: {currency} {self.unit_price:.2f}"

    def to_dict(self) -> dict[str, object]:
        """Convert the transaction to a serialisable dictionary."""
        return {
            "id": self.id,
            "item": self.item,
            "unit_price": self.unit_price,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class DraftTransaction:
    """Extracted but unconfirmed candidate; lives only inside a confirmation token."""

    item: str
    total_price: float
    quantity: int = 1

    @property
    def unit_price(self) -> float:
        return self.total_price / self.quantity

    def with_item(self, item: str) -> DraftTransaction:
        return DraftTransaction(item=item, total_price=self.total_price, quantity=self.quantity)


def sum_unit_prices(transactions: Iterable[Transaction]) -> float:
    return sum(t.unit_price for t in transactions)


def filter_transactions_since(
    transactions: Iterable[Transaction], start: datetime, end: datetime
) -> list[Transaction]:
    return [t for t in transactions if start <= t.occurred_at <= end]
