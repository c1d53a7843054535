"""Data models for conversations, messages and turn outcomes."""

from __future__ import annotations

import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class AudioFeatures(BaseModel):
    """Prosody measured on a voice-originated user message."""

    model_config = ConfigDict(populate_by_name=True)

    volume: float = Field(ge=0, le=1)
    pace: float = Field(ge=0)  # words per minute
    pause_count: int = Field(ge=0, alias="pauseCount")


class Conversation(BaseModel):
    id: str
    owner_id: str
    date: dt.date
    created_at: dt.datetime
    updated_at: dt.datetime


class Message(BaseModel):
    id: str
    conversation_id: str
    role: Role
    content: str
    audio_volume: float | None = None
    audio_pace: float | None = None
    audio_pause_count: int | None = None
    created_at: dt.datetime

    @property
    def audio_features(self) -> AudioFeatures | None:
        if self.audio_volume is None:
            return None
        return AudioFeatures(
            volume=self.audio_volume,
            pace=self.audio_pace or 0,
            pause_count=self.audio_pause_count or 0,
        )


class CrisisFlag(BaseModel):
    id: int
    owner_id: str
    keywords: list[str]
    created_at: dt.datetime


class PromptMessage(BaseModel):
    role: Role
    content: str


class ScreenResult(BaseModel):
    detected: bool
    keywords: list[str] = []


class CrisisResource(BaseModel):
    name: str
    contact: str
    website: str | None = None


class TurnResult(BaseModel):
    state: str
    crisis: bool = False
    keywords: list[str] = []
    conversation_id: str | None = None
    user_message: Message | None = None
    assistant_message: Message | None = None
