"""Error taxonomy shared by the extractors, the token codec and the ledger."""

from __future__ import annotations


class LedgerBotError(Exception):
    """Base class for every recoverable error the controller turns into a reply."""


class ExtractionError(LedgerBotError):
    """The text carries no recoverable item and amount."""


class ValidationError(LedgerBotError):
    """An item and amount were found but the values are not acceptable."""


class ServiceUnavailable(LedgerBotError):
    """The completion service failed or timed out."""


class TokenDecodeError(LedgerBotError):
    """A confirmation control carried a malformed token."""


class NotFoundError(LedgerBotError):
    """No ledger entry matches the requested id."""

    def __init__(self, conversation_id: str, transaction_id: int) -> None:
        super().__init__(f"No entry #{transaction_id} in conversation {conversation_id}.")
        self.conversation_id = conversation_id
        self.transaction_id = transaction_id


class UsageError(LedgerBotError):
    """A command was called with malformed arguments."""

    def __init__(self, usage: str) -> None:
        super().__init__(usage)
        self.usage = usage
