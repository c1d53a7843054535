"""Caller identity: bearer session tokens resolved to an owner id."""

from __future__ import annotations

import logging

from .config import LOCAL_OWNER_ID
from .errors import Unauthorized
from .storage import ConversationStore

logger = logging.getLogger(__name__)


def verify_caller(store: ConversationStore, token: str | None) -> str:
    """Return the owner id behind a session token.

    Fails closed: a missing, unknown or expired token is Unauthorized.
    """
    if not token:
        raise Unauthorized()
    owner_id = store.session_owner(token)
    if owner_id is None:
        logger.info("Rejected unknown or expired session token")
        raise Unauthorized("Unauthorized - session expired or invalid")
    return owner_id


def local_owner(owner_id: str | None = None) -> str:
    """Owner of a local stdio session, taken from COMPANION_OWNER_ID."""
    owner_id = owner_id or LOCAL_OWNER_ID
    if not owner_id:
        raise Unauthorized(
            "No local user configured. Set COMPANION_OWNER_ID and restart the server."
        )
    return owner_id
