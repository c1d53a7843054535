"""FastMCP server exposing the companion to a local MCP client."""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from datetime import datetime

from mcp.server.fastmcp import FastMCP

from .config import LOG_FORMAT, LOG_LEVEL, POLICY_PATH, REFERENCE_TIMEZONE, SQLITE_PATH
from .errors import CompanionError
from .identity import local_owner
from .llm import ModelClient
from .models import Message
from .policy import Policy, load_policy
from .resolver import ConversationResolver
from .storage import ConversationStore
from .turns import TurnOrchestrator

# Logging to stderr only; stdout is the MCP JSON-RPC transport
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, stream=sys.stderr)

mcp = FastMCP(
    "companion",
    instructions=(
        "A supportive daily chat companion. Use send_message to talk to it; "
        "each day has its own conversation. Use get_history to read a day's "
        "conversation and list_conversations to browse past days. "
        "If send_message reports a crisis, share the listed resources with the user."
    ),
)

# Long-lived collaborators; each tool call still opens its own store
_policy: Policy | None = None
_model: ModelClient | None = None


def _get_policy() -> Policy:
    global _policy
    if _policy is None:
        _policy = load_policy(POLICY_PATH)
    return _policy


def _get_model() -> ModelClient:
    global _model
    if _model is None:
        _model = ModelClient(fallback_reply=_get_policy().fallback_reply)
    return _model


@contextmanager
def _turns():
    store = ConversationStore(SQLITE_PATH)
    try:
        resolver = ConversationResolver(store, REFERENCE_TIMEZONE)
        yield TurnOrchestrator(store, _get_model(), _get_policy(), resolver=resolver)
    finally:
        store.close()


def _format_ts(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%d %H:%M")


def _format_message(msg: Message) -> str:
    who = "**You**" if msg.role == "user" else "**Companion**"
    return f"{who} ({_format_ts(msg.created_at)}):\n{msg.content}\n"


def _error(e: CompanionError) -> str:
    return f"Error: {e.message}"


@mcp.tool()
def send_message(message: str, conversation_id: str | None = None) -> str:
    """Send a message to the companion and get its reply.

    Args:
        message: What the user wants to say
        conversation_id: Optional conversation to continue (defaults to today's)
    """
    try:
        owner_id = local_owner()
        with _turns() as turns:
            result = turns.handle(owner_id, message, conversation_id=conversation_id)
    except CompanionError as e:
        return _error(e)

    if result.crisis:
        policy = _get_policy()
        lines = [
            f"**{policy.crisis_message}**",
            "",
            f"Detected: {', '.join(result.keywords)}",
            "",
            "Please reach out now:",
        ]
        for r in policy.crisis_resources:
            line = f"- {r.name}: {r.contact}"
            if r.website:
                line += f" ({r.website})"
            lines.append(line)
        return "\n".join(lines)

    return result.assistant_message.content


@mcp.tool()
def get_history(conversation_id: str | None = None) -> str:
    """Read a conversation transcript.

    Args:
        conversation_id: The conversation id (defaults to today's conversation)
    """
    try:
        owner_id = local_owner()
        with _turns() as turns:
            conversation, messages = turns.history(owner_id, conversation_id)
    except CompanionError as e:
        return _error(e)

    lines = [
        f"# Conversation of {conversation.date.isoformat()}",
        f"ID: `{conversation.id}` | {len(messages)} messages",
        "",
    ]
    if not messages:
        lines.append("No messages yet.")
    lines.extend(_format_message(m) for m in messages)
    return "\n".join(lines)


@mcp.tool()
def list_conversations() -> str:
    """List the most recent daily conversations, newest first."""
    try:
        owner_id = local_owner()
        with _turns() as turns:
            conversations = turns.conversations(owner_id)
    except CompanionError as e:
        return _error(e)

    if not conversations:
        return "No conversations yet."

    lines = [f"Conversations ({len(conversations)} most recent):\n"]
    for i, c in enumerate(conversations, 1):
        lines.append(f"{i}. **{c.date.isoformat()}**")
        lines.append(f"   ID: `{c.id}` | Last activity: {_format_ts(c.updated_at)}")
    return "\n".join(lines)


@mcp.tool()
def delete_conversation(conversation_id: str) -> str:
    """Permanently delete a conversation and all of its messages.

    Args:
        conversation_id: The conversation id (from list_conversations)
    """
    try:
        owner_id = local_owner()
        with _turns() as turns:
            turns.delete(owner_id, conversation_id)
    except CompanionError as e:
        return _error(e)
    return f"Deleted conversation `{conversation_id}`."


@mcp.tool()
def get_stats() -> str:
    """Show statistics about stored conversations."""
    try:
        with _turns() as turns:
            stats = turns.store.get_stats()
    except CompanionError as e:
        return _error(e)

    lines = [
        "# Companion Statistics",
        "",
        f"- **Conversations**: {stats['total_conversations']:,}",
        f"- **Messages**: {stats['total_messages']:,}",
        f"- **Avg messages/conversation**: {stats['avg_messages_per_conversation']}",
        f"- **Crisis flags**: {stats['crisis_flags']:,}",
    ]
    if stats["date_range_start"]:
        lines.append(f"- **Date range**: {stats['date_range_start']} → {stats['date_range_end']}")
    lines.append(f"\n*Data stored in: {SQLITE_PATH}*")
    return "\n".join(lines)
