"""Keyword-based crisis screening, run before any model call."""

from __future__ import annotations

from collections.abc import Sequence

from .models import ScreenResult


def screen(text: str, keywords: Sequence[str]) -> ScreenResult:
    """Check text for crisis phrases.

    Every phrase is a case-insensitive substring match; all matches are
    reported in keyword-list order. Any match counts, whatever words
    surround it.
    """
    lowered = text.lower()
    matched = [kw for kw in keywords if kw.lower() in lowered]
    return ScreenResult(detected=bool(matched), keywords=matched)
