"""Conversation flow: text in, drafts out, confirmations committed, reports rendered.

The controller never talks to Telegram directly. Every operation returns a
``Reply`` that the transport adapter renders, which keeps the flow testable
with plain fakes.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from . import reports, tokens
from .completion import CompletionService
from .config import Settings, get_settings
from .domain.entities import DraftTransaction
from .errors import (
    ExtractionError,
    NotFoundError,
    ServiceUnavailable,
    TokenDecodeError,
    UsageError,
    ValidationError,
)
from .extractors import ExtractionPipeline, LabelFormatter, NumericExtractor, SemanticExtractor
from .ledger import LedgerStore

logger = logging.getLogger(__name__)

ACTION_SUMMARY = "resumo"
ACTION_TOTAL = "total"
ACTION_ANALYSIS = "analise"
ACTION_HELP = "ajuda"
ACTION_ADD = "adicionar"
ACTION_CATEGORIZE = "categorizar"
FIXED_ACTIONS = (
    ACTION_SUMMARY,
    ACTION_TOTAL,
    ACTION_ANALYSIS,
    ACTION_HELP,
    ACTION_ADD,
    ACTION_CATEGORIZE,
)
CANCEL_NOUN = "expense"
CATEGORIZE_THRESHOLD = 5
REMOVE_USAGE = "Uso correto: /remove [id]"

FORMAT_HINT = '"Café 5.50" ou "Pizza R$25" ou "Almoço R$15,90"'

WELCOME_TEXT = (
    "Bem-vindo ao Bot de Controle de Gastos! 💰\n\n"
    "Para registrar um gasto, você pode:\n"
    '• Usar formato simples: "Café 5.50" ou "Pizza 25"\n'
    '• Usar linguagem natural: "Gastei 35 com jantar" ou "Paguei 12,50 pelo almoço"\n\n'
    "Use os botões abaixo ou os comandos:\n"
    "/start - Exibe esta mensagem de ajuda\n"
    "/resumo - Exibe o resumo dos gastos de hoje\n"
    "/total - Exibe o total gasto este mês\n"
    "/analise - Análise dos seus gastos recentes usando IA\n"
    "/remove [id] - Remove um gasto pelo seu ID"
)

HELP_TEXT = (
    "Como usar o Bot de Controle de Gastos 💰\n\n"
    "1️⃣ *Para registrar um gasto*:\n"
    "Você pode usar um dos seguintes formatos:\n"
    '• Formato simples: "Café 5.50" ou "Pizza R$25"\n'
    '• Linguagem natural: "Gastei 15 com almoço" ou\n'
    '  "Comprei 3 pizzas por 60"\n\n'
    "2️⃣ *Para ver o resumo diário*:\n"
    'Clique no botão "📊 Resumo Diário" ou use /resumo\n\n'
    "3️⃣ *Para ver o total mensal*:\n"
    'Clique no botão "💰 Total Mensal" ou use /total\n\n'
    "4️⃣ *Para análise de gastos com IA*:\n"
    'Clique no botão "🧠 Análise IA" ou use /analise\n\n'
    "5️⃣ *Para remover um gasto*:\n"
    "Use o comando /remove [id] ou o botão ❌\n"
    "após registrar um gasto"
)


@dataclass(frozen=True, slots=True)
class Button:
    label: str
    data: str


@dataclass(slots=True)
class Reply:
    """Outgoing message: text, inline keyboard rows and rendering hints."""

    text: str
    keyboard: list[list[Button]] = field(default_factory=list)
    markdown: bool = False
    # Short text for the button-press acknowledgement, when the reply answers one.
    notice: str | None = None


SendFn = Callable[[str, Reply], Awaitable[object]]


def main_keyboard() -> list[list[Button]]:
    return [
        [Button("📊 Resumo Diário", ACTION_SUMMARY), Button("💰 Total Mensal", ACTION_TOTAL)],
        [Button("🧠 Análise IA", ACTION_ANALYSIS), Button("❓ Ajuda", ACTION_HELP)],
    ]


def summary_keyboard() -> list[list[Button]]:
    return [
        [Button("💰 Total Mensal", ACTION_TOTAL), Button("🧠 Análise IA", ACTION_ANALYSIS)],
        [Button("➕ Adicionar Gasto", ACTION_ADD), Button("⬅️ Voltar", ACTION_HELP)],
    ]


def broadcast_keyboard(entry_count: int) -> list[list[Button]]:
    rows: list[list[Button]] = []
    if entry_count >= CATEGORIZE_THRESHOLD:
        rows.append([Button("📊 Categorizar Gastos", ACTION_CATEGORIZE)])
    rows.append([Button("💰 Ver Total", ACTION_TOTAL), Button("➕ Adicionar", ACTION_ADD)])
    return rows


def confirmation_keyboard(draft: DraftTransaction) -> list[list[Button]]:
    return [
        [
            Button("✅ Sim, registrar", tokens.encode(draft)),
            Button("❌ Não, cancelar", tokens.cancel_token(CANCEL_NOUN)),
        ]
    ]


def committed_keyboard(transaction_id: int) -> list[list[Button]]:
    return [
        [Button("📊 Ver Resumo", ACTION_SUMMARY), Button("➕ Adicionar Mais", ACTION_ADD)],
        [Button("❌ Remover", tokens.remove_token(transaction_id))],
    ]


class ConversationController:
    def __init__(
        self,
        store: LedgerStore,
        completion: CompletionService,
        settings: Settings | None = None,
        pipeline: ExtractionPipeline | None = None,
        formatter: LabelFormatter | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.completion = completion
        self.settings = settings or get_settings()
        self.pipeline = pipeline or ExtractionPipeline(
            [NumericExtractor(), SemanticExtractor(completion)]
        )
        self.formatter = formatter or LabelFormatter(completion)
        self._clock = clock

    @property
    def currency(self) -> str:
        return self.settings.currency_symbol

    def _money(self, value: float) -> str:
        return f"{self.currency} {value:.2f}"

    def start(self) -> Reply:
        return Reply(WELCOME_TEXT, main_keyboard())

    def help(self) -> Reply:
        return Reply(HELP_TEXT, main_keyboard(), markdown=True, notice="Exibindo ajuda...")

    def add_prompt(self) -> Reply:
        return Reply(
            'Informe um novo gasto no formato:\n"Nome do produto Preço"\n\n'
            "Exemplos:\n- Café 5.50\n- Pizza R$25\n- Uber 15,90",
            main_keyboard(),
            notice="Informe o novo gasto...",
        )

    async def handle_text(self, conversation_id: str, text: str) -> Reply:
        try:
            draft = await self.pipeline.extract(text)
        except ServiceUnavailable as exc:
            logger.error("Completion service unavailable for conversation %s: %s", conversation_id, exc)
            return Reply(
                "O serviço de interpretação está indisponível no momento. Tente novamente mais tarde.",
                main_keyboard(),
            )
        except ValidationError as exc:
            logger.info("Rejected draft for conversation %s: %s", conversation_id, exc)
            return Reply(
                "O valor ou a quantidade informados não são válidos. "
                f"Tente novamente com um valor maior que zero, por exemplo:\n{FORMAT_HINT}",
                main_keyboard(),
            )
        except ExtractionError as exc:
            logger.info("No draft for conversation %s: %s", conversation_id, exc)
            return Reply(
                f"Não consegui entender sua mensagem. Por favor, use um formato como:\n{FORMAT_HINT}",
                main_keyboard(),
            )

        try:
            draft = tokens.fit_draft(draft)
        except ValueError:
            return Reply(
                f"Não consegui preparar a confirmação deste gasto. Tente um formato como:\n{FORMAT_HINT}",
                main_keyboard(),
            )
        return Reply(self._describe_draft(draft), confirmation_keyboard(draft))

    def _describe_draft(self, draft: DraftTransaction) -> str:
        if draft.quantity == 1:
            return f'Entendi que você gastou {self._money(draft.total_price)} com "{draft.item}". Está correto?'
        return (
            f'Entendi que você gastou {self._money(draft.total_price)} com {draft.quantity}x "{draft.item}" '
            f"({self._money(draft.unit_price)} cada). Está correto?"
        )

    async def confirm(self, conversation_id: str, token: str) -> Reply:
        try:
            draft = tokens.decode(token)
        except TokenDecodeError as exc:
            logger.warning("Discarding malformed confirmation for conversation %s: %s", conversation_id, exc)
            return Reply(
                f"Não foi possível registrar este gasto. Operação cancelada, tente novamente com um formato como:\n{FORMAT_HINT}",
                main_keyboard(),
                notice="Operação cancelada",
            )

        item = await self.formatter.format(draft.item)
        unit_price = draft.unit_price
        occurred_at = self._clock()
        results = await asyncio.gather(
            *(
                asyncio.to_thread(self.store.commit, conversation_id, item, unit_price, occurred_at)
                for _ in range(draft.quantity)
            ),
            return_exceptions=True,
        )
        ids: list[int] = []
        for result in results:
            if isinstance(result, BaseException):
                logger.error("Commit failed for conversation %s: %s", conversation_id, result)
            else:
                ids.append(result)

        if not ids:
            return Reply(
                "Ocorreu um erro ao registrar o gasto. Nada foi salvo, tente novamente.",
                main_keyboard(),
                notice="Erro ao registrar",
            )
        if draft.quantity == 1:
            tx_id = ids[0]
            return Reply(
                f"✅ Registrado: #{tx_id} - {item} - {self._money(unit_price)}\n\n"
                f"Para remover, use /remove {tx_id}",
                committed_keyboard(tx_id),
                notice="Registrando gasto...",
            )

        id_list = ", ".join(f"#{tx_id}" for tx_id in sorted(ids))
        if len(ids) < draft.quantity:
            header = f"⚠️ Registrados apenas {len(ids)} de {draft.quantity} itens: {id_list}"
        else:
            header = f"✅ Registrados {len(ids)} itens: {id_list}"
        return Reply(
            f"{header}\n{item} - {self._money(unit_price)} cada\n\n"
            f"Para remover, use /remove seguido do ID",
            committed_keyboard(max(ids)),
            notice="Registrando gasto...",
        )

    def cancel(self) -> Reply:
        return Reply(
            f"Operação cancelada. Tente novamente com um formato como:\n{FORMAT_HINT}",
            main_keyboard(),
            notice="Operação cancelada",
        )

    def daily_summary(self, conversation_id: str) -> Reply:
        entries = self.store.query(conversation_id, 1, now=self._clock())
        if not entries:
            return Reply("Você não registrou nenhum gasto hoje.", main_keyboard(), notice="Buscando resumo diário...")
        return Reply(
            reports.summarize(entries, self.currency),
            summary_keyboard(),
            notice="Buscando resumo diário...",
        )

    def monthly_total(self, conversation_id: str) -> Reply:
        value, count = reports.monthly_total(self.store, conversation_id, now=self._clock())
        if count == 0:
            return Reply("Você não registrou nenhum gasto este mês.", main_keyboard(), notice="Calculando total mensal...")
        return Reply(
            f"Total gasto neste mês: {self._money(value)}",
            main_keyboard(),
            notice="Calculando total mensal...",
        )

    async def analysis(self, conversation_id: str) -> Reply:
        try:
            text = await reports.analyse(
                self.store, conversation_id, self.completion, self.currency, now=self._clock()
            )
        except ServiceUnavailable as exc:
            logger.error("Analysis failed for conversation %s: %s", conversation_id, exc)
            return Reply(
                "Não foi possível gerar a análise neste momento. Tente novamente mais tarde.",
                main_keyboard(),
            )
        if text is None:
            return Reply("Você não possui gastos registrados para análise.", main_keyboard())
        return Reply(f"📊 *Análise de Gastos* 📊\n\n{text}", main_keyboard(), markdown=True)

    async def categorize(self, conversation_id: str) -> Reply:
        try:
            report = await reports.categorize(
                self.store, conversation_id, self.completion, now=self._clock()
            )
        except ServiceUnavailable as exc:
            logger.error("Categorization failed for conversation %s: %s", conversation_id, exc)
            return Reply(
                "Não foi possível categorizar seus gastos. Tente novamente mais tarde.",
                main_keyboard(),
            )
        if report is None:
            return Reply("Não há gastos para categorizar.", main_keyboard())
        if report.degraded:
            return Reply(f"📊 *Categorias de gastos:*\n\n{report.raw_text}", summary_keyboard(), markdown=True)
        lines = ["📊 *Suas despesas por categoria:*", "", report.raw_text, "", "*Totais por categoria:*"]
        lines.extend(f"{name}: {self._money(value)}" for name, value in report.totals.items())
        return Reply("\n".join(lines), summary_keyboard(), markdown=True)

    def _remove(self, conversation_id: str, transaction_id: int) -> Reply:
        if self.store.count(conversation_id) == 0:
            return Reply("Não há gastos registrados para remover.", main_keyboard())
        try:
            removed = self.store.remove(conversation_id, transaction_id)
        except NotFoundError:
            return Reply(f"Não foi encontrado nenhum gasto com ID {transaction_id}.", main_keyboard())
        return Reply(
            f"✅ Removido: {removed.item} - {self._money(removed.unit_price)}",
            main_keyboard(),
            notice="Removendo gasto...",
        )

    def remove_command(self, conversation_id: str, args: Sequence[str]) -> Reply:
        try:
            transaction_id = parse_remove_args(args)
        except UsageError as exc:
            return Reply(exc.usage)
        return self._remove(conversation_id, transaction_id)

    def remove_button(self, conversation_id: str, data: str) -> Reply:
        try:
            transaction_id = tokens.parse_remove_token(data)
        except TokenDecodeError:
            return Reply("Não foi possível identificar o gasto a remover.", main_keyboard())
        return self._remove(conversation_id, transaction_id)

    async def daily_broadcast(self, send: SendFn) -> None:
        for chat_id in self.settings.active_chats:
            try:
                entries = self.store.query(chat_id, 1, now=self._clock())
                if not entries:
                    continue
                summary = reports.summarize(entries, self.currency)
                await send(chat_id, Reply(f"🌙 Resumo diário de gastos:\n\n{summary}", broadcast_keyboard(len(entries))))
            except Exception:  # noqa: BLE001
                logger.exception("Failed to send daily summary to chat %s", chat_id)

    async def weekly_broadcast(self, send: SendFn) -> None:
        for chat_id in self.settings.active_chats:
            try:
                entries = self.store.query(chat_id, reports.WEEKLY_DAYS, now=self._clock())
                if not entries:
                    continue
                summary = reports.summarize(entries, self.currency)
                text = f"🌙 Resumo semanal de gastos:\n\n{summary}"
                try:
                    insights = await reports.weekly_insights(entries, self.completion, self.currency)
                    text += f"\n\n💡 *Insights da IA*:\n{insights}"
                except ServiceUnavailable as exc:
                    logger.warning("Sending weekly summary to chat %s without insights: %s", chat_id, exc)
                await send(chat_id, Reply(text, broadcast_keyboard(len(entries)), markdown=True))
            except Exception:  # noqa: BLE001
                logger.exception("Failed to send weekly summary to chat %s", chat_id)


def parse_remove_args(args: Sequence[str]) -> int:
    if len(args) != 1:
        raise UsageError(REMOVE_USAGE)
    raw = args[0].strip()
    if not re.fullmatch(r"[0-9]+", raw):
        raise UsageError("ID inválido. Use /remove seguido do número ID do gasto.")
    return int(raw)
