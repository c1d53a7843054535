"""Central configuration for paths, model parameters and limits."""

import os
from pathlib import Path

# Data directory; override with COMPANION_DATA_DIR env var
DATA_DIR = Path(
    os.environ.get("COMPANION_DATA_DIR", str(Path.home() / ".companion"))
)

# Database path
SQLITE_PATH = Path(os.environ.get("COMPANION_DB_PATH", str(DATA_DIR / "companion.db")))

# Calendar day boundaries for the one-conversation-per-day rule
REFERENCE_TIMEZONE = os.environ.get("COMPANION_TIMEZONE", "UTC")

# Completion service
GROQ_API_KEY = os.environ.get("GROQ_API_KEY", "")
MODEL_ID = os.environ.get("COMPANION_MODEL", "llama-3.1-8b-instant")
TEMPERATURE = 0.7
MAX_TOKENS = 500

# Transcription service
TRANSCRIPTION_MODEL = os.environ.get(
    "COMPANION_TRANSCRIPTION_MODEL", "whisper-large-v3-turbo"
)

# Windows
HISTORY_LIMIT = 20  # Messages sent to the model as context
CONVERSATION_LIST_LIMIT = 30  # Most recent days shown in the sidebar

# Sessions
SESSION_TTL_HOURS = int(os.environ.get("COMPANION_SESSION_TTL_HOURS", "24"))
SESSION_COOKIE = "session_token"

# Persona and crisis keyword file; unset means the bundled policy
POLICY_PATH = os.environ.get("COMPANION_POLICY_PATH") or None

# Identity of the single local user behind the MCP stdio server
LOCAL_OWNER_ID = os.environ.get("COMPANION_OWNER_ID") or None

LOG_LEVEL = os.environ.get("COMPANION_LOG_LEVEL", "WARNING").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
