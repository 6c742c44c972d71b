"""Text-completion collaborator backed by the OpenAI chat completions API."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Protocol

from openai import OpenAI, OpenAIError

from .config import Settings, get_settings
from .errors import ServiceUnavailable

logger = logging.getLogger(__name__)

_CODE_FENCE_RE = re.compile(r"```(?:[a-zA-Z]+)?(.*?)```", re.DOTALL)


class CompletionService(Protocol):
    async def complete(self, prompt: str) -> str:
        ...


def strip_code_fences(text: str) -> str:
    """Keep only the contents of any ``` fenced blocks the model wrapped its answer in."""
    if "```" not in text:
        return text.strip()
    return _CODE_FENCE_RE.sub(lambda match: match.group(1), text).strip()


class OpenAICompletion:
    """Single-shot completions; no retries, failures surface as ServiceUnavailable."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._client: OpenAI | None = None
        self._client_disabled = False

    def _get_client(self) -> OpenAI | None:
        if self._client_disabled or not self._settings.openai_api_key:
            return None
        if self._client is not None:
            return self._client
        try:
            self._client = OpenAI(
                api_key=self._settings.openai_api_key,
                timeout=self._settings.completion_timeout,
                max_retries=0,
            )
            return self._client
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to initialise OpenAI client: %s", exc)
            self._client_disabled = True
            return None

    def _create(self, prompt: str) -> str:
        client = self._get_client()
        if client is None:
            raise ServiceUnavailable("OpenAI client is not configured.")
        response = client.chat.completions.create(
            model=self._settings.ai_model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0,
        )
        return response.choices[0].message.content or ""

    async def complete(self, prompt: str) -> str:
        try:
            return await asyncio.to_thread(self._create, prompt)
        except ServiceUnavailable:
            raise
        except (OpenAIError, IndexError) as exc:
            logger.error("OpenAI completion failed: %s", exc)
            raise ServiceUnavailable(str(exc)) from exc
