"""Stateless confirmation tokens carried in inline button callback data.

Grammar::

    confirm_<base64(utf-8 label)>_<total>[_<quantity>]

The standard base64 alphabet has no ``_``, so the separator cannot occur in
the label segment. ``total`` drops a trailing ``.00``; ``quantity`` is left
out when it is 1 so tokens from single-unit drafts keep their old shape.
"""

from __future__ import annotations

import base64
import binascii
import math
import re

from .domain.entities import MAX_QUANTITY, DraftTransaction
from .errors import TokenDecodeError

CONFIRM_PREFIX = "confirm"
CANCEL_PREFIX = "cancel"
REMOVE_PREFIX = "remove"
SEPARATOR = "_"
# Telegram rejects callback data longer than 64 bytes.
MAX_TOKEN_LENGTH = 64

_CONFIRM_RE = re.compile(
    r"^confirm_(?P<label>[A-Za-z0-9+/]+={0,2})_(?P<total>\d+(?:\.\d+)?)(?:_(?P<quantity>\d+))?$"
)
_REMOVE_RE = re.compile(r"^remove_(?P<id>\d+)$")


def format_total(total: float) -> str:
    text = f"{total:.2f}"
    if text.endswith(".00"):
        return text[:-3]
    return text


def _check_amounts(draft: DraftTransaction) -> None:
    if not math.isfinite(draft.total_price) or draft.total_price < 0:
        raise ValueError(f"Cannot encode total {draft.total_price!r}.")
    if not 1 <= draft.quantity <= MAX_QUANTITY:
        raise ValueError(f"Quantity must be between 1 and {MAX_QUANTITY}.")


def encode(draft: DraftTransaction) -> str:
    _check_amounts(draft)
    label = base64.b64encode(draft.item.encode("utf-8")).decode("ascii")
    parts = [CONFIRM_PREFIX, label, format_total(draft.total_price)]
    if draft.quantity != 1:
        parts.append(str(draft.quantity))
    token = SEPARATOR.join(parts)
    if len(token.encode("ascii")) > MAX_TOKEN_LENGTH:
        raise ValueError(f"Confirmation token exceeds {MAX_TOKEN_LENGTH} bytes.")
    return token


def fits(draft: DraftTransaction) -> bool:
    try:
        encode(draft)
    except ValueError:
        return False
    return True


def fit_draft(draft: DraftTransaction) -> DraftTransaction:
    """Shorten the label until the draft's token fits in a callback payload."""
    _check_amounts(draft)
    item = draft.item
    while item and not fits(draft.with_item(item)):
        item = item[:-1].rstrip()
    if not item:
        raise ValueError("Draft cannot be encoded within the callback size limit.")
    return draft.with_item(item)


def decode(token: str) -> DraftTransaction:
    match = _CONFIRM_RE.match(token)
    if not match:
        raise TokenDecodeError(f"Malformed confirmation token: {token!r}")
    try:
        item = base64.b64decode(match.group("label"), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise TokenDecodeError(f"Label segment does not decode: {exc}") from exc
    total = float(match.group("total"))
    quantity_text = match.group("quantity")
    quantity = int(quantity_text) if quantity_text is not None else 1
    if not 1 <= quantity <= MAX_QUANTITY:
        raise TokenDecodeError(f"Quantity must be between 1 and {MAX_QUANTITY}.")
    if not item:
        raise TokenDecodeError("Label segment is empty.")
    return DraftTransaction(item=item, total_price=total, quantity=quantity)


def cancel_token(noun: str = "expense") -> str:
    return f"{CANCEL_PREFIX}{SEPARATOR}{noun}"


def remove_token(transaction_id: int) -> str:
    return f"{REMOVE_PREFIX}{SEPARATOR}{transaction_id}"


def parse_remove_token(data: str) -> int:
    match = _REMOVE_RE.match(data)
    if not match:
        raise TokenDecodeError(f"Malformed remove token: {data!r}")
    return int(match.group("id"))
