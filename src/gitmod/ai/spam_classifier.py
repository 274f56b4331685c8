"""
Optional spam check backed by an OpenAI-compatible chat model.

Only consulted for ordinary text that passed the banned-word check.
"""

from __future__ import annotations

import os

from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam

from gitmod.configuration.ai_settings import AISettings
from gitmod.util.logger import get_logger

logger = get_logger("spam_classifier")

SYSTEM_PROMPT = 'Is this message SPAM, an advertisement or a SCAM? Answer "SPAM" or "SAFE".'


class SpamClassifier:
    """
    Ask an OpenAI-compatible chat model whether a message is spam.

    The classifier is opaque to the rest of the bot: it returns a boolean and
    never raises. Any API failure is logged and treated as "not spam" so an
    unreachable model never blocks ordinary messages.
    """

    def __init__(self, settings: AISettings, client: AsyncOpenAI | None = None) -> None:
        self.settings = settings
        self._model_name = settings.model_id or "default"
        self._client = client
        if self._client is None and settings.enabled:
            self._client = AsyncOpenAI(
                api_key=os.getenv("OPENAI_API_KEY") or "not-needed",
                base_url=settings.base_url,
                timeout=settings.request_timeout,
            )
            logger.info("[SPAM CLASSIFIER] Initialized with base_url=%s, model=%s", settings.base_url, self._model_name)

    @property
    def enabled(self) -> bool:
        return self.settings.enabled and self._client is not None

    def should_check(self, text: str | None) -> bool:
        """Only long enough, non-command text is worth a model call."""
        return bool(self.enabled and text and len(text) > self.settings.min_length and not text.startswith("/"))

    async def is_spam(self, text: str) -> bool:
        if not self.should_check(text):
            return False

        messages: list[ChatCompletionMessageParam] = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": text},
        ]
        try:
            completion = await self._client.chat.completions.create(
                model=self._model_name,
                messages=messages,
                max_tokens=4,
                temperature=0,
            )
        except Exception as exc:
            logger.warning("[SPAM CLASSIFIER] Request failed, treating message as safe: %s", exc)
            return False

        if not completion.choices:
            return False
        answer = (completion.choices[0].message.content or "").strip().upper()
        return "SPAM" in answer
