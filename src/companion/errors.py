"""Error taxonomy shared by the turn pipeline and its request surfaces.

Every error carries a stable HTTP status code and a message that is safe to
show to the user.
"""

from __future__ import annotations


class CompanionError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(CompanionError):
    status_code = 401
    default_message = (
        "Unauthorized - Please log out and log back in to refresh your session."
    )


class InvalidRequest(CompanionError):
    status_code = 400
    default_message = "Invalid request"


class Forbidden(CompanionError):
    status_code = 403
    default_message = "Unauthorized"


class NotFound(CompanionError):
    status_code = 404
    default_message = "Conversation not found"


class StorageError(CompanionError):
    status_code = 500
    default_message = "Failed to save your conversation. Please try again."


class SchemaNotProvisioned(StorageError):
    default_message = (
        "Database tables not found. Please run `companion init-db` first."
    )


class ModelUnavailable(CompanionError):
    status_code = 502
    default_message = (
        "The companion is unavailable right now. Your message was saved, "
        "please try again."
    )


class TranscriptionFailed(CompanionError):
    status_code = 422
    default_message = "Transcription failed"
