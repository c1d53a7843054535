"""The message-turn pipeline.

One call to ``TurnOrchestrator.handle`` takes an inbound user message
through screening, conversation resolution, persistence, context assembly
and completion:

    AWAITING_INPUT -> SCREENING -> RESOLVING -> PERSISTING_USER
        -> BUILDING_CONTEXT -> COMPLETING -> PERSISTING_ASSISTANT -> DONE

A crisis match ends the turn in CRISIS_HALT straight from SCREENING: a
CrisisFlag is written, the message itself is not stored and the model is
never called. Any error ends it in FAILED. Once the user message is
committed it stays committed, so a retry finds it in the history.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from .config import CONVERSATION_LIST_LIMIT, HISTORY_LIMIT, REFERENCE_TIMEZONE
from .errors import CompanionError, Forbidden, InvalidRequest, NotFound
from .history import load_all, load_recent
from .models import AudioFeatures, Conversation, Message, PromptMessage, Role, TurnResult
from .policy import Policy
from .prompt import build_prompt
from .resolver import ConversationResolver
from .screening import screen
from .storage import ConversationStore

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    AWAITING_INPUT = "awaiting_input"
    SCREENING = "screening"
    RESOLVING = "resolving"
    PERSISTING_USER = "persisting_user"
    BUILDING_CONTEXT = "building_context"
    COMPLETING = "completing"
    PERSISTING_ASSISTANT = "persisting_assistant"
    DONE = "done"
    CRISIS_HALT = "crisis_halt"
    FAILED = "failed"


class CompletionModel(Protocol):
    def complete(self, messages: list[PromptMessage]) -> str: ...


class TurnOrchestrator:
    """Handles turns and the read/delete operations around them for one store."""

    def __init__(
        self,
        store: ConversationStore,
        model: CompletionModel,
        policy: Policy,
        resolver: ConversationResolver | None = None,
        history_limit: int = HISTORY_LIMIT,
    ):
        self.store = store
        self.model = model
        self.policy = policy
        self.resolver = resolver or ConversationResolver(store, REFERENCE_TIMEZONE)
        self.history_limit = history_limit

    def handle(
        self,
        owner_id: str,
        text: str,
        conversation_id: str | None = None,
        audio_features: AudioFeatures | None = None,
    ) -> TurnResult:
        if not isinstance(text, str) or not text.strip():
            raise InvalidRequest("Message is required")

        state = TurnState.AWAITING_INPUT
        try:
            state = self._advance(state, TurnState.SCREENING)
            check = screen(text, self.policy.crisis_keywords)
            if check.detected:
                state = self._advance(state, TurnState.CRISIS_HALT)
                self.store.insert_crisis_flag(owner_id, check.keywords)
                logger.warning(
                    "Crisis language detected for owner %s: %s",
                    owner_id,
                    ", ".join(check.keywords),
                )
                return TurnResult(state=state.value, crisis=True, keywords=check.keywords)

            state = self._advance(state, TurnState.RESOLVING)
            conversation = self.resolver.resolve(owner_id, conversation_id)

            state = self._advance(state, TurnState.PERSISTING_USER)
            user_message = self.store.insert_message(
                conversation.id, Role.USER, text, audio_features
            )

            state = self._advance(state, TurnState.BUILDING_CONTEXT)
            history = load_recent(self.store, conversation.id, self.history_limit)
            prompt = build_prompt(history, self.policy.persona_prompt)

            state = self._advance(state, TurnState.COMPLETING)
            reply = self.model.complete(prompt)

            state = self._advance(state, TurnState.PERSISTING_ASSISTANT)
            assistant_message = self.store.insert_message(
                conversation.id, Role.ASSISTANT, reply
            )
            self.store.touch_conversation(conversation.id)

            state = self._advance(state, TurnState.DONE)
            return TurnResult(
                state=state.value,
                conversation_id=conversation.id,
                user_message=user_message,
                assistant_message=assistant_message,
            )
        except CompanionError as e:
            failed_in = state
            state = self._advance(state, TurnState.FAILED)
            logger.error(
                "Turn failed in state %s: %s (%s)",
                failed_in.value,
                type(e).__name__,
                e.message,
            )
            raise

    def _advance(self, current: TurnState, nxt: TurnState) -> TurnState:
        logger.debug("Turn %s -> %s", current.value, nxt.value)
        return nxt

    def history(
        self, owner_id: str, conversation_id: str | None = None
    ) -> tuple[Conversation, list[Message]]:
        """Full transcript of a conversation, today's by default."""
        conversation = self.resolver.resolve(owner_id, conversation_id)
        return conversation, load_all(self.store, conversation.id)

    def conversations(
        self, owner_id: str, limit: int = CONVERSATION_LIST_LIMIT
    ) -> list[Conversation]:
        return self.store.list_conversations(owner_id, limit)

    def delete(self, owner_id: str, conversation_id: str):
        if not conversation_id:
            raise InvalidRequest("Conversation ID is required")
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound()
        if conversation.owner_id != owner_id:
            raise Forbidden()
        if not self.store.delete_conversation(conversation_id):
            raise NotFound()
        logger.info("Deleted conversation %s", conversation_id)
