from __future__ import annotations

from datetime import datetime

import pytest

from ledger_bot.config import Settings
from ledger_bot.controller import ConversationController
from ledger_bot.errors import ServiceUnavailable
from ledger_bot.extractors import LabelFormatter
from ledger_bot.ledger import LedgerStore


class FakeCompletion:
    """Scripted stand-in for the OpenAI completion client."""

    def __init__(self, responses: list[str] | None = None, error: Exception | None = None) -> None:
        self.responses = list(responses or [])
        self.error = error
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        if not self.responses:
            raise ServiceUnavailable("No scripted response left.")
        return self.responses.pop(0)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 15, 14, 30))


@pytest.fixture()
def store(clock: FixedClock) -> LedgerStore:
    return LedgerStore(clock=clock)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        telegram_bot_token="test-token",
        openai_api_key=None,
        active_chats=["100", "200", "300"],
    )


@pytest.fixture()
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture()
def controller(store: LedgerStore, completion: FakeCompletion, settings: Settings, clock: FixedClock) -> ConversationController:
    # Label formatting is offline so confirmed labels stay exactly as drafted.
    formatter = LabelFormatter(FakeCompletion(error=ServiceUnavailable("offline")))
    return ConversationController(
        store=store,
        completion=completion,
        settings=settings,
        formatter=formatter,
        clock=clock,
    )
