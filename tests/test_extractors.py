import pytest

from ledger_bot.domain.entities import DraftTransaction
from ledger_bot.errors import ExtractionError, ServiceUnavailable, ValidationError
from ledger_bot.extractors import (
    ExtractionPipeline,
    LabelFormatter,
    NumericExtractor,
    SemanticExtractor,
)

from conftest import FakeCompletion


class TestNumericExtractor:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Coffee 5.50", DraftTransaction("Coffee", 5.5, 1)),
            ("Uber 15,90", DraftTransaction("Uber", 15.9, 1)),
            ("Pizza R$25", DraftTransaction("Pizza", 25.0, 1)),
            ("Pizza R$ 25", DraftTransaction("Pizza", 25.0, 1)),
            ("  Conta de luz 150.9  ", DraftTransaction("Conta de luz", 150.9, 1)),
            ("Pizza25", DraftTransaction("Pizza", 25.0, 1)),
            ("Água 0", DraftTransaction("Água", 0.0, 1)),
        ],
    )
    def test_hits(self, text, expected):
        assert NumericExtractor().parse(text) == expected

    @pytest.mark.parametrize(
        "text",
        [
            "Gastei 35 com jantar",
            "25",
            "Café",
            "",
            "Água 1.234,50",
            "Paguei 12,50 pelo almoço",
        ],
    )
    def test_misses(self, text):
        assert NumericExtractor().parse(text) is None


class TestSemanticExtractor:
    async def test_plain_json(self):
        completion = FakeCompletion(['{"item": "jantar", "valor": 35}'])
        draft = await SemanticExtractor(completion).try_extract("Gastei 35 com jantar")
        assert draft == DraftTransaction("jantar", 35.0, 1)
        assert "Gastei 35 com jantar" in completion.prompts[0]
        assert '"erro"' in completion.prompts[0]

    async def test_code_fenced_json_with_quantity(self):
        raw = 'Aqui está:\n```json\n{"item": "pizza", "valor": 60.0, "quantidade": 3}\n```'
        draft = await SemanticExtractor(FakeCompletion([raw])).try_extract("Comprei 3 pizzas por 60")
        assert draft == DraftTransaction("pizza", 60.0, 3)

    async def test_decimal_comma_string(self):
        raw = '{"item": "almoço", "valor": "12,50", "quantidade": null}'
        draft = await SemanticExtractor(FakeCompletion([raw])).try_extract("Paguei 12,50 pelo almoço")
        assert draft == DraftTransaction("almoço", 12.5, 1)

    async def test_explicit_cannot_extract(self):
        raw = '{"erro": "Não foi possível identificar o item e valor"}'
        with pytest.raises(ExtractionError):
            await SemanticExtractor(FakeCompletion([raw])).try_extract("olá")

    @pytest.mark.parametrize("raw", ["não sei", "{item: jantar}", '["jantar", 35]', '{"item": "jantar"}', '{"valor": 35}'])
    def test_unparseable_or_incomplete(self, raw):
        with pytest.raises(ExtractionError):
            SemanticExtractor(FakeCompletion()).interpret(raw)

    @pytest.mark.parametrize(
        "raw",
        [
            '{"item": "jantar", "valor": 0}',
            '{"item": "jantar", "valor": -4}',
            '{"item": "jantar", "valor": "muito"}',
            '{"item": "jantar", "valor": 35, "quantidade": 0}',
            '{"item": "jantar", "valor": 35, "quantidade": 1.5}',
            '{"item": "jantar", "valor": Infinity}',
            '{"item": "jantar", "valor": NaN}',
            '{"item": "jantar", "valor": "inf"}',
            '{"item": "bala", "valor": 10, "quantidade": 101}',
        ],
    )
    def test_invalid_values(self, raw):
        with pytest.raises(ValidationError):
            SemanticExtractor(FakeCompletion()).interpret(raw)

    async def test_service_failure_propagates(self):
        completion = FakeCompletion(error=ServiceUnavailable("timeout"))
        with pytest.raises(ServiceUnavailable):
            await SemanticExtractor(completion).try_extract("Gastei 35 com jantar")


class TestExtractionPipeline:
    async def test_numeric_hit_skips_completion(self):
        completion = FakeCompletion(['{"item": "x", "valor": 1}'])
        pipeline = ExtractionPipeline([NumericExtractor(), SemanticExtractor(completion)])
        draft = await pipeline.extract("Coffee 5.50")
        assert draft == DraftTransaction("Coffee", 5.5, 1)
        assert completion.prompts == []

    async def test_numeric_miss_falls_back(self):
        completion = FakeCompletion(['{"item": "jantar", "valor": 35}'])
        pipeline = ExtractionPipeline([NumericExtractor(), SemanticExtractor(completion)])
        draft = await pipeline.extract("Gastei 35 com jantar")
        assert draft == DraftTransaction("jantar", 35.0, 1)
        assert len(completion.prompts) == 1

    async def test_all_miss(self):
        pipeline = ExtractionPipeline([NumericExtractor()])
        with pytest.raises(ExtractionError):
            await pipeline.extract("Gastei 35 com jantar")

    async def test_blank_message(self):
        pipeline = ExtractionPipeline([NumericExtractor()])
        with pytest.raises(ExtractionError):
            await pipeline.extract("   ")


class TestLabelFormatter:
    async def test_uses_formatted_label(self):
        formatter = LabelFormatter(FakeCompletion(["café\n"]))
        assert await formatter.format("cafe") == "café"

    async def test_keeps_original_when_answer_is_too_long(self):
        formatter = LabelFormatter(FakeCompletion(["um café expresso duplo com leite"]))
        assert await formatter.format("cafe") == "cafe"

    async def test_keeps_original_when_empty(self):
        formatter = LabelFormatter(FakeCompletion(["   "]))
        assert await formatter.format("cafe") == "cafe"

    async def test_keeps_original_when_service_fails(self):
        formatter = LabelFormatter(FakeCompletion(error=ServiceUnavailable("down")))
        assert await formatter.format("cafe") == "cafe"
