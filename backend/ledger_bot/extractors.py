"""Turn chat text into draft transactions."""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .completion import CompletionService, strip_code_fences
from .domain.entities import DraftTransaction
from .errors import ExtractionError, ServiceUnavailable, ValidationError
from .schemas import ExtractedExpense

logger = logging.getLogger(__name__)

NUMERIC_PATTERN = re.compile(
    r"^(?P<item>.*?)\s*(?:R\$|US\$|\$|€|£)?\s*(?<![\d.,])(?P<amount>\d+(?:[.,]\d+)?)$",
    re.IGNORECASE,
)
_LETTER_RE = re.compile(r"[^\W\d_]")

SEMANTIC_PROMPT = """
Analise a seguinte mensagem de despesa em português e extraia o item/serviço, o valor total e a quantidade:
"{text}"

Exemplos de entradas e suas interpretações:
1. "Gastei com café hoje 5 reais" → item: café, valor: 5
2. "Paguei a conta de luz de 150,90" → item: conta de luz, valor: 150.90
3. "Almocei por 32 reais" → item: almoço, valor: 32
4. "Uber 25" → item: uber, valor: 25
5. "Comprei 3 pizzas por 60" → item: pizza, valor: 60, quantidade: 3

Responda APENAS com um JSON no formato:
{{
  "item": "nome do item ou serviço",
  "valor": número total (com ponto como separador decimal),
  "quantidade": número inteiro de unidades (opcional, padrão 1)
}}

Se não for possível extrair tanto o item quanto o valor, responda com:
{{
  "erro": "Não foi possível identificar o item e valor"
}}

IMPORTANTE: Não inclua formatação markdown, blocos de código ou outras marcações. Responda apenas com o objeto JSON puro.
"""

LABEL_PROMPT = """
Formate o nome deste item de despesa para ser consistente e organizado: "{label}".
Use apenas letras minúsculas, corrija erros ortográficos óbvios, e padronize o nome.
Não adicione informações extras, apenas retorne o nome formatado.
Exemplos: "cafe" → "café", "refri coca" → "refrigerante coca-cola", "almoço restaurante" → "almoço".
Responda apenas com o texto formatado, sem explicações.
"""


class Extractor(ABC):
    """One strategy for reading a draft out of chat text."""

    @abstractmethod
    async def try_extract(self, text: str) -> DraftTransaction | None:
        """Return a draft, or None when this strategy does not apply."""


class NumericExtractor(Extractor):
    """Zero-latency path for short ``<label> <amount>`` messages such as ``Café 5,50``."""

    def parse(self, text: str) -> DraftTransaction | None:
        match = NUMERIC_PATTERN.match(text.strip())
        if not match:
            return None
        item = match.group("item").strip()
        if not _LETTER_RE.search(item):
            return None
        amount = round(float(match.group("amount").replace(",", ".")), 2)
        return DraftTransaction(item=item, total_price=amount, quantity=1)

    async def try_extract(self, text: str) -> DraftTransaction | None:
        return self.parse(text)


def _decode_payload(raw: str) -> dict[str, Any]:
    cleaned = strip_code_fences(raw)
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end == -1:
        raise ExtractionError("No JSON object in completion response.")
    try:
        data = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Completion response is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ExtractionError("Completion response is not a JSON object.")
    return data


class SemanticExtractor(Extractor):
    """Fallback that asks the completion service to interpret natural language."""

    def __init__(self, completion: CompletionService) -> None:
        self._completion = completion

    def build_prompt(self, text: str) -> str:
        return SEMANTIC_PROMPT.format(text=text.replace('"', "'"))

    def interpret(self, raw: str) -> DraftTransaction:
        data = _decode_payload(raw)
        if data.get("erro"):
            raise ExtractionError(str(data["erro"]))
        item = data.get("item")
        if not isinstance(item, str) or not item.strip() or data.get("valor") is None:
            raise ExtractionError("Completion response lacks item or valor.")
        try:
            parsed = ExtractedExpense.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(str(exc)) from exc
        return DraftTransaction(item=parsed.item, total_price=round(parsed.valor, 2), quantity=parsed.quantidade)

    async def try_extract(self, text: str) -> DraftTransaction | None:
        raw = await self._completion.complete(self.build_prompt(text))
        draft = self.interpret(raw)
        logger.info("Completion interpreted %r as %s", text, draft)
        return draft


class ExtractionPipeline:
    """Try each extractor in priority order; the first draft wins."""

    def __init__(self, extractors: Sequence[Extractor]) -> None:
        self._extractors = list(extractors)

    async def extract(self, text: str) -> DraftTransaction:
        cleaned = text.strip()
        if not cleaned:
            raise ExtractionError("Empty message.")
        for extractor in self._extractors:
            draft = await extractor.try_extract(cleaned)
            if draft is not None:
                return draft
        raise ExtractionError("No extractor recognised the message.")


class LabelFormatter:
    """Normalise an item label through the completion service, keeping the original on any doubt."""

    def __init__(self, completion: CompletionService) -> None:
        self._completion = completion

    async def format(self, label: str) -> str:
        try:
            formatted = strip_code_fences(
                await self._completion.complete(LABEL_PROMPT.format(label=label.replace('"', "'")))
            ).strip().strip('"')
        except ServiceUnavailable as exc:
            logger.warning("Keeping original label %r, formatter unavailable: %s", label, exc)
            return label
        if not formatted or len(formatted) > len(label) * 2:
            logger.warning("Keeping original label %r, formatter returned %r", label, formatted)
            return label
        return formatted
