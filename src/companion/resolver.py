"""Find or create the caller's conversation for a calendar day."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from .errors import NotFound, StorageError
from .models import Conversation
from .storage import ConversationStore, UniqueViolation

logger = logging.getLogger(__name__)

MAX_CREATE_ATTEMPTS = 3


class ConversationResolver:
    """Resolve an explicit conversation id, or today's conversation for an owner.

    "Today" is the calendar date in the configured reference timezone. The
    clock is injectable so day boundaries can be pinned in tests.
    """

    def __init__(
        self,
        store: ConversationStore,
        tz: str | ZoneInfo = "UTC",
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.tz = ZoneInfo(tz) if isinstance(tz, str) else tz
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def today(self) -> date:
        return self.clock().astimezone(self.tz).date()

    def resolve(self, owner_id: str, conversation_id: str | None = None) -> Conversation:
        if conversation_id:
            return self.get_owned(owner_id, conversation_id)
        return self.for_day(owner_id, self.today())

    def get_owned(self, owner_id: str, conversation_id: str) -> Conversation:
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None or conversation.owner_id != owner_id:
            raise NotFound()
        return conversation

    def for_day(self, owner_id: str, day: date) -> Conversation:
        """Find or create the (owner, day) conversation.

        A concurrent creator that wins the insert race makes ours fail the
        uniqueness constraint; we then read back the winner's row.
        """
        for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
            conversation = self.store.find_conversation(owner_id, day)
            if conversation is not None:
                return conversation
            try:
                conversation = self.store.insert_conversation(owner_id, day)
            except UniqueViolation:
                logger.info(
                    "Conversation for %s was created concurrently (attempt %d)",
                    day,
                    attempt,
                )
                continue
            logger.debug("Created conversation %s for %s", conversation.id, day)
            return conversation

        raise StorageError("Failed to create conversation. Please try again.")
