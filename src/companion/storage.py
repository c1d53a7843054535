"""SQLite storage for conversations, messages, crisis flags and sessions."""

from __future__ import annotations

import hashlib
import json
import logging
import secrets
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from .errors import SchemaNotProvisioned, StorageError
from .models import AudioFeatures, Conversation, CrisisFlag, Message, Role

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_SECONDS = 30


class UniqueViolation(StorageError):
    """An insert collided with a uniqueness constraint."""


@contextmanager
def _translate_errors(conn: sqlite3.Connection):
    """Roll back and re-raise sqlite errors as StorageError."""
    try:
        yield
    except sqlite3.IntegrityError as e:
        conn.rollback()
        if "UNIQUE" in str(e):
            raise UniqueViolation(str(e)) from e
        raise StorageError() from e
    except sqlite3.OperationalError as e:
        conn.rollback()
        if "no such table" in str(e):
            raise SchemaNotProvisioned() from e
        logger.error("Storage operation failed: %s", e)
        raise StorageError() from e
    except sqlite3.Error as e:
        conn.rollback()
        logger.error("Storage operation failed: %s", e)
        raise StorageError() from e


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class ConversationStore:
    """SQLite-backed storage for daily conversations and their messages."""

    def __init__(self, db_path: Path, create_schema: bool = True):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        # Connections may be opened in one worker thread and used in another
        self.conn = sqlite3.connect(
            str(db_path), timeout=BUSY_TIMEOUT_SECONDS, check_same_thread=False
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        if create_schema:
            self.init_schema()

    def init_schema(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                date TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (owner_id, date)
            );

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
                content TEXT NOT NULL,
                audio_volume REAL,
                audio_pace REAL,
                audio_pause_count INTEGER,
                created_at TEXT NOT NULL,
                FOREIGN KEY (conversation_id) REFERENCES conversations(id)
                    ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conv_created
                ON messages(conversation_id, created_at);

            CREATE TABLE IF NOT EXISTS crisis_flags (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                keywords_detected TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sessions (
                token_hash TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            );
        """)
        self.conn.commit()

    # Conversations

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with _translate_errors(self.conn):
            row = self.conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        return _conversation(row) if row else None

    def find_conversation(self, owner_id: str, day: date) -> Conversation | None:
        with _translate_errors(self.conn):
            row = self.conn.execute(
                "SELECT * FROM conversations WHERE owner_id = ? AND date = ?",
                (owner_id, day.isoformat()),
            ).fetchone()
        return _conversation(row) if row else None

    def insert_conversation(self, owner_id: str, day: date) -> Conversation:
        """Create the (owner, day) conversation.

        Raises UniqueViolation if another writer created it first.
        """
        now = _now()
        conv_id = uuid.uuid4().hex
        with _translate_errors(self.conn):
            self.conn.execute(
                """INSERT INTO conversations (id, owner_id, date, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (conv_id, owner_id, day.isoformat(), now, now),
            )
            self.conn.commit()
        return Conversation(
            id=conv_id, owner_id=owner_id, date=day, created_at=now, updated_at=now
        )

    def touch_conversation(self, conversation_id: str):
        with _translate_errors(self.conn):
            self.conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (_now(), conversation_id),
            )
            self.conn.commit()

    def list_conversations(self, owner_id: str, limit: int = 30) -> list[Conversation]:
        """List an owner's conversations, newest day first."""
        with _translate_errors(self.conn):
            rows = self.conn.execute(
                """SELECT * FROM conversations
                   WHERE owner_id = ?
                   ORDER BY date DESC
                   LIMIT ?""",
                (owner_id, limit),
            ).fetchall()
        return [_conversation(r) for r in rows]

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation; its messages go with it."""
        with _translate_errors(self.conn):
            cur = self.conn.execute(
                "DELETE FROM conversations WHERE id = ?", (conversation_id,)
            )
            self.conn.commit()
        return cur.rowcount > 0

    # Messages

    def insert_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        audio_features: AudioFeatures | None = None,
    ) -> Message:
        message = Message(
            id=uuid.uuid4().hex,
            conversation_id=conversation_id,
            role=role,
            content=content,
            audio_volume=audio_features.volume if audio_features else None,
            audio_pace=audio_features.pace if audio_features else None,
            audio_pause_count=audio_features.pause_count if audio_features else None,
            created_at=_now(),
        )
        with _translate_errors(self.conn):
            self.conn.execute(
                """INSERT INTO messages (id, conversation_id, role, content,
                   audio_volume, audio_pace, audio_pause_count, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    message.id,
                    message.conversation_id,
                    message.role.value,
                    message.content,
                    message.audio_volume,
                    message.audio_pace,
                    message.audio_pause_count,
                    message.created_at.isoformat(timespec="microseconds"),
                ),
            )
            self.conn.commit()
        return message

    def list_messages(self, conversation_id: str) -> list[Message]:
        """All messages of a conversation, oldest first."""
        with _translate_errors(self.conn):
            rows = self.conn.execute(
                """SELECT * FROM messages WHERE conversation_id = ?
                   ORDER BY created_at, rowid""",
                (conversation_id,),
            ).fetchall()
        return [_message(r) for r in rows]

    def recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """The `limit` most recent messages of a conversation, oldest first."""
        with _translate_errors(self.conn):
            rows = self.conn.execute(
                """SELECT * FROM messages WHERE conversation_id = ?
                   ORDER BY created_at DESC, rowid DESC
                   LIMIT ?""",
                (conversation_id, limit),
            ).fetchall()
        return [_message(r) for r in reversed(rows)]

    # Crisis audit

    def insert_crisis_flag(self, owner_id: str, keywords: list[str]) -> CrisisFlag:
        now = _now()
        with _translate_errors(self.conn):
            cur = self.conn.execute(
                """INSERT INTO crisis_flags (owner_id, keywords_detected, created_at)
                   VALUES (?, ?, ?)""",
                (owner_id, json.dumps(keywords), now),
            )
            self.conn.commit()
        return CrisisFlag(
            id=cur.lastrowid, owner_id=owner_id, keywords=keywords, created_at=now
        )

    def list_crisis_flags(self, owner_id: str) -> list[CrisisFlag]:
        with _translate_errors(self.conn):
            rows = self.conn.execute(
                "SELECT * FROM crisis_flags WHERE owner_id = ? ORDER BY id",
                (owner_id,),
            ).fetchall()
        return [
            CrisisFlag(
                id=r["id"],
                owner_id=r["owner_id"],
                keywords=json.loads(r["keywords_detected"]),
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # Sessions

    def create_session(self, owner_id: str, ttl_hours: int = 24) -> str:
        """Issue a bearer token for owner_id. Only its hash is stored."""
        token = secrets.token_urlsafe(32)
        now = datetime.now(timezone.utc)
        with _translate_errors(self.conn):
            self.conn.execute(
                """INSERT INTO sessions (token_hash, owner_id, created_at, expires_at)
                   VALUES (?, ?, ?, ?)""",
                (
                    _hash_token(token),
                    owner_id,
                    now.isoformat(timespec="microseconds"),
                    (now + timedelta(hours=ttl_hours)).isoformat(timespec="microseconds"),
                ),
            )
            self.conn.commit()
        return token

    def session_owner(self, token: str) -> str | None:
        """Owner of an unexpired session token, or None."""
        with _translate_errors(self.conn):
            row = self.conn.execute(
                "SELECT owner_id, expires_at FROM sessions WHERE token_hash = ?",
                (_hash_token(token),),
            ).fetchone()
        if not row:
            return None
        if datetime.fromisoformat(row["expires_at"]) <= datetime.now(timezone.utc):
            return None
        return row["owner_id"]

    def revoke_session(self, token: str):
        with _translate_errors(self.conn):
            self.conn.execute(
                "DELETE FROM sessions WHERE token_hash = ?", (_hash_token(token),)
            )
            self.conn.commit()

    def get_stats(self) -> dict:
        """Get overall database statistics."""
        with _translate_errors(self.conn):
            conv_count = self.conn.execute("SELECT COUNT(*) FROM conversations").fetchone()[0]
            msg_count = self.conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
            owner_count = self.conn.execute(
                "SELECT COUNT(DISTINCT owner_id) FROM conversations"
            ).fetchone()[0]
            flag_count = self.conn.execute("SELECT COUNT(*) FROM crisis_flags").fetchone()[0]
            date_range = self.conn.execute(
                "SELECT MIN(date), MAX(date) FROM conversations"
            ).fetchone()

        return {
            "total_conversations": conv_count,
            "total_messages": msg_count,
            "total_owners": owner_count,
            "crisis_flags": flag_count,
            "date_range_start": date_range[0],
            "date_range_end": date_range[1],
            "avg_messages_per_conversation": round(msg_count / conv_count, 1) if conv_count else 0,
        }

    def close(self):
        self.conn.close()


def _conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        owner_id=row["owner_id"],
        date=row["date"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=row["role"],
        content=row["content"],
        audio_volume=row["audio_volume"],
        audio_pace=row["audio_pace"],
        audio_pause_count=row["audio_pause_count"],
        created_at=row["created_at"],
    )
