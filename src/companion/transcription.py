"""Speech-to-text for voice messages (Groq Whisper endpoint)."""

from __future__ import annotations

import logging

import groq
from groq import Groq

from .config import GROQ_API_KEY, TRANSCRIPTION_MODEL
from .errors import InvalidRequest, TranscriptionFailed

logger = logging.getLogger(__name__)


class Transcriber:
    def __init__(self, client: Groq | None = None, model: str = TRANSCRIPTION_MODEL):
        self._client = client
        self.model = model

    @property
    def client(self) -> Groq:
        if self._client is None:
            if not GROQ_API_KEY:
                raise TranscriptionFailed("GROQ_API_KEY is not configured.")
            self._client = Groq(api_key=GROQ_API_KEY)
        return self._client

    def transcribe(self, audio: bytes, filename: str = "audio.webm") -> str:
        """Return the best-effort transcript of an audio clip."""
        if not audio:
            raise InvalidRequest("Audio file is required")

        try:
            result = self.client.audio.transcriptions.create(
                file=(filename, audio),
                model=self.model,
                language="en",
            )
        except groq.APIError as e:
            logger.error("Transcription request failed: %s", e)
            raise TranscriptionFailed(f"Transcription failed: {e}") from e

        text = (getattr(result, "text", None) or "").strip()
        if not text:
            raise TranscriptionFailed("No speech detected in audio")
        return text
