from functools import lru_cache
import json
import os
from datetime import time
from pathlib import Path
from typing import Annotated

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import Field, field_validator, model_validator

_ENV_CANDIDATES = (
    Path(__file__).resolve().parent.parent.parent / ".env",
    Path(__file__).resolve().parent.parent / ".env",
    Path.cwd() / ".env",
)

for env_path in _ENV_CANDIDATES:
    if env_path.is_file():
        load_dotenv(env_path, override=False)
        break


class Settings(BaseSettings):
    """Bot configuration sourced from environment variables."""

    telegram_bot_token: str | None = Field(default=None, alias="TELEGRAM_BOT")
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    ai_model: str = "gpt-4o-mini"
    completion_timeout: float = 30.0
    active_chats: Annotated[list[str], NoDecode] = Field(default_factory=list, alias="ACTIVE_CHATS")
    currency_symbol: str = "R$"
    timezone: str = "America/Sao_Paulo"
    daily_summary_time: time = time(22, 0)
    weekly_summary_time: time = time(18, 0)
    # 0 = Sunday, following the JobQueue day numbering.
    weekly_summary_day: int = Field(default=0, ge=0, le=6)
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=None, populate_by_name=True)

    @field_validator("active_chats", mode="before")
    @classmethod
    def parse_active_chats(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, (int, float)):
            return [str(int(value))]
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    return [str(item) for item in json.loads(stripped)]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in stripped.split(",") if item.strip()]
        if isinstance(value, (list, tuple)):
            return [str(item).strip() for item in value if str(item).strip()]
        raise ValueError("Invalid active_chats format.")

    @model_validator(mode="after")
    def populate_from_env(self) -> "Settings":
        if not self.telegram_bot_token:
            self.telegram_bot_token = os.getenv("TELEGRAM_BOT") or os.getenv("BOT_TOKEN")
        if not self.openai_api_key:
            self.openai_api_key = os.getenv("OPENAI_API_KEY")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return cached settings to avoid repeated environment parsing."""
    return Settings()
