import pytest

from ledger_bot import tokens
from ledger_bot.domain.entities import DraftTransaction
from ledger_bot.errors import TokenDecodeError


def test_encode_single_unit_matches_wire_format():
    assert tokens.encode(DraftTransaction("Coffee", 5.5)) == "confirm_Q29mZmVl_5.50"


def test_encode_strips_integral_cents_and_keeps_quantity():
    assert tokens.encode(DraftTransaction("Café", 25.0)) == "confirm_Q2Fmw6k=_25"
    assert tokens.encode(DraftTransaction("Café", 60.0, 3)) == "confirm_Q2Fmw6k=_60_3"


def test_decode_legacy_token_without_quantity():
    assert tokens.decode("confirm_Q29mZmVl_5.50") == DraftTransaction("Coffee", 5.5, 1)


@pytest.mark.parametrize(
    "draft",
    [
        DraftTransaction("Coffee", 5.5),
        DraftTransaction("café_com_leite", 12.34, 2),
        DraftTransaction("a/b+c=d_e", 0.99),
        DraftTransaction("Pizza 🍕", 100.0, 4),
        DraftTransaction("confirm_x_1_2", 7.1, 7),
    ],
)
def test_round_trip(draft):
    token = tokens.encode(draft)
    assert token.count("_") in (2, 3)
    assert tokens.decode(token) == draft


@pytest.mark.parametrize(
    "token",
    [
        "confirm_abc_5",
        "confirm_Q29mZmVl",
        "confirm_Q29mZmVl_-5",
        "confirm_Q29mZmVl_5_0",
        "confirm_Q29mZmVl_5_2_3",
        "confirm_Q29mZmVl_cinco",
        "confirm_!!!!_5",
        "confirm__5",
        "confirm_/w==_5",
        "cancel_expense",
    ],
)
def test_decode_rejects_malformed(token):
    with pytest.raises(TokenDecodeError):
        tokens.decode(token)


def test_encode_rejects_oversized_token():
    with pytest.raises(ValueError):
        tokens.encode(DraftTransaction("x" * 80, 10.0))


def test_fit_draft_shortens_label_until_it_fits():
    draft = DraftTransaction("compras do mês no supermercado do bairro com a família", 175.5, 2)
    fitted = tokens.fit_draft(draft)
    assert len(tokens.encode(fitted)) <= tokens.MAX_TOKEN_LENGTH
    assert draft.item.startswith(fitted.item)
    assert (fitted.total_price, fitted.quantity) == (175.5, 2)


def test_fit_draft_leaves_short_labels_alone():
    draft = DraftTransaction("Uber", 15.9)
    assert tokens.fit_draft(draft) == draft


def test_remove_tokens():
    assert tokens.remove_token(7) == "remove_7"
    assert tokens.parse_remove_token("remove_7") == 7
    with pytest.raises(TokenDecodeError):
        tokens.parse_remove_token("remove_abc")


def test_cancel_token():
    assert tokens.cancel_token() == "cancel_expense"
    assert tokens.cancel_token("sale") == "cancel_sale"


@pytest.mark.parametrize(
    "draft",
    [
        DraftTransaction("jantar", float("inf")),
        DraftTransaction("jantar", float("nan")),
        DraftTransaction("bala", 10.0, 101),
    ],
)
def test_encode_rejects_unconfirmable_drafts(draft):
    with pytest.raises(ValueError):
        tokens.encode(draft)
    with pytest.raises(ValueError):
        tokens.fit_draft(draft)


def test_quantity_cap():
    assert tokens.decode("confirm_YmFsYQ==_10_100").quantity == 100
    with pytest.raises(TokenDecodeError):
        tokens.decode("confirm_YmFsYQ==_10_101")
