"""Completion service client (Groq chat completions)."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import groq
from groq import Groq

from .config import GROQ_API_KEY, MAX_TOKENS, MODEL_ID, TEMPERATURE
from .errors import ModelUnavailable
from .models import PromptMessage

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_REPLY = "I apologize, I had trouble processing that."


class ModelClient:
    """Wraps the completion SDK client with the companion's fixed parameters.

    The SDK client is injected so tests can substitute a double; without
    one it is built lazily from GROQ_API_KEY on first use.
    """

    def __init__(
        self,
        client: Groq | None = None,
        model: str = MODEL_ID,
        temperature: float = TEMPERATURE,
        max_tokens: int = MAX_TOKENS,
        fallback_reply: str = DEFAULT_FALLBACK_REPLY,
    ):
        self._client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.fallback_reply = fallback_reply

    @property
    def client(self) -> Groq:
        if self._client is None:
            if not GROQ_API_KEY:
                raise ModelUnavailable("GROQ_API_KEY is not configured.")
            self._client = Groq(api_key=GROQ_API_KEY)
        return self._client

    def complete(self, messages: Sequence[PromptMessage]) -> str:
        payload = [{"role": m.role.value, "content": m.content} for m in messages]
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=payload,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except groq.APIError as e:
            logger.error("Completion request failed: %s", e)
            raise ModelUnavailable() from e

        try:
            choices = response.choices
            content = choices[0].message.content if choices else None
            if content is not None and not isinstance(content, str):
                raise TypeError(f"content is {type(content).__name__}")
        except (AttributeError, IndexError, TypeError) as e:
            logger.error("Malformed completion response: %r", response)
            raise ModelUnavailable() from e

        if not content or not content.strip():
            logger.warning("Completion returned no content; using fallback reply")
            return self.fallback_reply
        return content.strip()
