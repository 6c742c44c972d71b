"""Totals, summaries and AI-assisted views over a conversation's ledger."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Sequence

from .completion import CompletionService, strip_code_fences
from .domain.entities import Transaction, sum_unit_prices
from .ledger import LedgerStore

logger = logging.getLogger(__name__)

ANALYSIS_DAYS = 30
CATEGORY_DAYS = 30
WEEKLY_DAYS = 7

ANALYSIS_PROMPT = """
Analise os seguintes gastos de um usuário nos últimos 30 dias:

{expenses}

Total: {currency} {total:.2f}

Forneça:
1. Uma análise concisa dos padrões de gastos
2. Sugestões para possíveis economias
3. Categorias com maior gasto

Responda em português, de forma amigável e objetiva, em até 500 caracteres.
Não formate sua resposta com markdown ou blocos de código.
"""

WEEKLY_PROMPT = """
Analise os seguintes gastos de um usuário na última semana:

{expenses}

Total: {currency} {total:.2f}

Forneça:
1. Um breve resumo dos gastos da semana
2. Uma dica de economia baseada nos padrões de compra
3. Uma previsão para a próxima semana

Responda em português, de forma amigável e concisa, em até 300 caracteres.
"""

CATEGORY_PROMPT = """
Categorize os seguintes itens de despesa em categorias claras e úteis (ex: Alimentação, Transporte, Lazer, etc):
{items}

Responda com uma lista de categorias e seus respectivos itens no formato:
categoria1: item1, item2
categoria2: item3, item4

Use no máximo 5 categorias principais. Seja objetivo e conciso.
"""

_BULLET_RE = re.compile(r"^(?:[-*•]+|\d+[.)])\s*")


@dataclass(slots=True)
class CategoryBucket:
    name: str
    members: list[str]

    def matches(self, label: str) -> bool:
        lowered = label.lower()
        return any(member in lowered for member in self.members)


@dataclass(slots=True)
class CategoryReport:
    raw_text: str
    buckets: list[CategoryBucket] = field(default_factory=list)
    totals: dict[str, float] = field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return not self.buckets


def total(entries: Iterable[Transaction]) -> float:
    return sum_unit_prices(entries)


def summarize(entries: Sequence[Transaction], currency: str = "R$") -> str:
    lines = ["📊 Resumo de Gastos:", ""]
    lines.extend(tx.get_details(currency) for tx in entries)
    lines.append("")
    lines.append(f"💰 Total: {currency} {total(entries):.2f}")
    return "\n".join(lines)


def monthly_days_back(today: date) -> int:
    """Days elapsed in the current month, capped at 30."""
    return min(30, today.day)


def monthly_total(
    store: LedgerStore, conversation_id: str, now: datetime | None = None
) -> tuple[float, int]:
    """Return the month-to-date total and the number of entries it covers."""
    current = now or datetime.now()
    entries = store.query(conversation_id, monthly_days_back(current.date()), now=current)
    return total(entries), len(entries)


def _expense_lines(entries: Iterable[Transaction], currency: str) -> str:
    return "\n".join(f"{tx.item}: {currency} {tx.unit_price:.2f}" for tx in entries)


def _clean_category_name(raw: str) -> str:
    return _BULLET_RE.sub("", raw.strip()).strip("*_ ").strip()


def parse_category_buckets(text: str) -> list[CategoryBucket]:
    buckets: list[CategoryBucket] = []
    for line in strip_code_fences(text).splitlines():
        if ":" not in line:
            continue
        name_part, members_part = line.split(":", 1)
        name = _clean_category_name(name_part)
        members = [
            member.strip(" *_.").lower()
            for member in members_part.split(",")
        ]
        members = [member for member in members if member]
        if not name or not members:
            continue
        buckets.append(CategoryBucket(name=name, members=members))
    return buckets


def reconcile(entries: Iterable[Transaction], buckets: Sequence[CategoryBucket]) -> dict[str, float]:
    """Sum each entry into the first bucket, in listing order, with a member inside its label.

    Entries that match no bucket are left out of the totals.
    """
    totals: dict[str, float] = {bucket.name: 0.0 for bucket in buckets}
    for tx in entries:
        for bucket in buckets:
            if bucket.matches(tx.item):
                totals[bucket.name] += tx.unit_price
                break
    return totals


async def categorize(
    store: LedgerStore,
    conversation_id: str,
    completion: CompletionService,
    now: datetime | None = None,
) -> CategoryReport | None:
    """Bucket the last 30 days of entries; None when there is nothing to categorize."""
    entries = store.query(conversation_id, CATEGORY_DAYS, now=now)
    if not entries:
        return None
    prompt = CATEGORY_PROMPT.format(items=", ".join(tx.item for tx in entries))
    raw = (await completion.complete(prompt)).strip()
    buckets = parse_category_buckets(raw)
    if not buckets:
        logger.warning("Could not parse category buckets for conversation %s", conversation_id)
        return CategoryReport(raw_text=raw)
    return CategoryReport(raw_text=raw, buckets=buckets, totals=reconcile(entries, buckets))


async def analyse(
    store: LedgerStore,
    conversation_id: str,
    completion: CompletionService,
    currency: str = "R$",
    now: datetime | None = None,
) -> str | None:
    entries = store.query(conversation_id, ANALYSIS_DAYS, now=now)
    if not entries:
        return None
    prompt = ANALYSIS_PROMPT.format(
        expenses=_expense_lines(entries, currency), currency=currency, total=total(entries)
    )
    return strip_code_fences(await completion.complete(prompt))


async def weekly_insights(
    entries: Sequence[Transaction], completion: CompletionService, currency: str = "R$"
) -> str:
    prompt = WEEKLY_PROMPT.format(
        expenses=_expense_lines(entries, currency), currency=currency, total=total(entries)
    )
    return strip_code_fences(await completion.complete(prompt))
