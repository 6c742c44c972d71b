from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from .domain.entities import Transaction, filter_transactions_since
from .errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Ledger:
    entries: list[Transaction] = field(default_factory=list)
    next_id: int = 1


def window_start(now: datetime, days_back: int) -> datetime:
    """Midnight of the first day of the last ``days_back`` calendar days, today included."""
    if days_back < 1:
        raise ValueError("days_back must be at least 1.")
    first_day = now - timedelta(days=days_back - 1)
    return first_day.replace(hour=0, minute=0, second=0, microsecond=0)


def zone_clock(timezone: str) -> Callable[[], datetime]:
    """Naive wall-clock time in ``timezone``, independent of the host's zone."""
    tz = ZoneInfo(timezone)

    def now() -> datetime:
        return datetime.now(tz).replace(tzinfo=None)

    return now


class LedgerStore:
    """In-memory, per-conversation append-only ledger.

    Ids are assigned from a per-conversation counter that only ever grows, so
    removed ids are never handed out again.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock
        self._ledgers: dict[str, _Ledger] = {}
        self._lock = threading.Lock()

    def commit(
        self,
        conversation_id: str,
        item: str,
        unit_price: float,
        occurred_at: datetime | None = None,
    ) -> int:
        timestamp = occurred_at if occurred_at is not None else self._clock()
        with self._lock:
            ledger = self._ledgers.setdefault(conversation_id, _Ledger())
            tx_id = ledger.next_id
            ledger.next_id += 1
            ledger.entries.append(
                Transaction(id=tx_id, item=item, unit_price=unit_price, occurred_at=timestamp)
            )
        logger.info("Committed #%s for conversation %s: %s %.2f", tx_id, conversation_id, item, unit_price)
        return tx_id

    def remove(self, conversation_id: str, transaction_id: int) -> Transaction:
        removed: Transaction | None = None
        with self._lock:
            ledger = self._ledgers.get(conversation_id)
            entries = ledger.entries if ledger else []
            for index, tx in enumerate(entries):
                if tx.id == transaction_id:
                    removed = entries.pop(index)
                    break
        if removed is None:
            raise NotFoundError(conversation_id, transaction_id)
        logger.info("Removed #%s from conversation %s", transaction_id, conversation_id)
        return removed

    def query(
        self, conversation_id: str, days_back: int, now: datetime | None = None
    ) -> list[Transaction]:
        current = now if now is not None else self._clock()
        start = window_start(current, days_back)
        with self._lock:
            ledger = self._ledgers.get(conversation_id)
            if ledger is None:
                return []
            return filter_transactions_since(ledger.entries, start, current)

    def count(self, conversation_id: str) -> int:
        with self._lock:
            ledger = self._ledgers.get(conversation_id)
            return len(ledger.entries) if ledger else 0
