"""Assemble the model-ready message sequence for a turn."""

from __future__ import annotations

from collections.abc import Iterable

from .models import Message, PromptMessage, Role


def build_prompt(history: Iterable[Message], persona: str) -> list[PromptMessage]:
    """Persona system message followed by the history in chronological order."""
    messages = [PromptMessage(role=Role.SYSTEM, content=persona)]
    messages.extend(PromptMessage(role=m.role, content=m.content) for m in history)
    return messages
