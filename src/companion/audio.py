"""Prosody features derived from a transcribed voice message."""

from __future__ import annotations

import re

from .models import AudioFeatures

_PAUSE = re.compile(r"[.!?]\s+")


def calculate_pace(transcript: str, duration_seconds: float) -> int:
    """Words per minute, rounded. Zero for a zero-length recording."""
    if duration_seconds <= 0:
        return 0
    words = transcript.split()
    return round(len(words) / duration_seconds * 60)


def count_pauses(transcript: str) -> int:
    """Sentence breaks in the transcript, used as a proxy for spoken pauses."""
    return len(_PAUSE.findall(transcript))


def extract_audio_features(
    transcript: str, duration_seconds: float, average_volume: float
) -> AudioFeatures:
    return AudioFeatures(
        volume=max(0.0, min(1.0, average_volume)),
        pace=calculate_pace(transcript, duration_seconds),
        pause_count=count_pauses(transcript),
    )
