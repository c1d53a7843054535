"""Read message history for prompt context and transcripts."""

from __future__ import annotations

from .config import HISTORY_LIMIT
from .models import Message
from .storage import ConversationStore


def load_recent(
    store: ConversationStore, conversation_id: str, limit: int = HISTORY_LIMIT
) -> list[Message]:
    """Return the `limit` most recent messages, oldest first."""
    if limit <= 0:
        return []
    return store.recent_messages(conversation_id, limit)


def load_all(store: ConversationStore, conversation_id: str) -> list[Message]:
    """Return the whole transcript, oldest first."""
    return store.list_messages(conversation_id)
