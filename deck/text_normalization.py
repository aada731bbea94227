"""Cleanup passes applied to raw speech-to-text output."""
from __future__ import annotations

import re
from typing import Callable

_MONTHS = (
    "January|February|March|April|May|June|July|August|September|October|November|December"
)

# [00:01.000 --> 00:04.500], optionally with a leading hour field.
TIMESTAMP_RANGE_RE = re.compile(
    r"\[(?:\d{2}:)?\d{2}:\d{2}\.\d{3}\s*-->\s*(?:\d{2}:)?\d{2}:\d{2}\.\d{3}\]"
)

# Checked in this order; earlier patterns win on overlapping text.
DATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    # 3/14/24, 3/14/2024
    re.compile(r"\b\d{1,2}/\d{1,2}/(?:\d{4}|\d{2})\b"),
    # 2024-03-14
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    # 3-14-24, 3-14-2024
    re.compile(r"\b\d{1,2}-\d{1,2}-(?:\d{4}|\d{2})\b"),
    # March 14, 2024
    re.compile(rf"\b(?:{_MONTHS})\s+\d{{1,2}},\s*\d{{4}}\b", re.IGNORECASE),
)

_WHITESPACE_RE = re.compile(r"\s+")


def strip_timestamp_ranges(text: str) -> str:
    return TIMESTAMP_RANGE_RE.sub("", text)


def strip_dates(text: str) -> str:
    for pattern in DATE_PATTERNS:
        text = pattern.sub("", text)
    return text


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text.strip())


PIPELINE: tuple[Callable[[str], str], ...] = (
    strip_timestamp_ranges,
    strip_dates,
    collapse_whitespace,
)


def _apply_once(text: str) -> str:
    for step in PIPELINE:
        text = step(text)
    return text


def normalize_transcript(text: str) -> str:
    """Run the cleanup pipeline until the text stops changing.

    A removal can butt two fragments together into something a previous pass
    would have matched, so one sweep is not always a fixed point. Every pass
    only deletes characters, so the loop terminates.
    """
    current = _apply_once(text)
    while True:
        following = _apply_once(current)
        if following == current:
            return current
        current = following
