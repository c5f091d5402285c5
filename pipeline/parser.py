"""
Extraction of captions from raw model text.

All functions here are pure: text in, strings out.
"""

from __future__ import annotations

import re
from typing import List, Sequence

from core.types import CaptionCandidate, CaptionOrigin

MAX_CAPTIONS = 3
MAX_FALLBACK_LINE_LENGTH = 120
NO_IDEAS_PLACEHOLDER = "(No meme ideas – add your own text!)"

# "1) foo", "2. bar", " 3- baz", "4: qux"
NUMBERED_LINE = re.compile(r"^\s*\d+[).\-:]\s*(.+)$")


def parse_numbered_list(text: str) -> List[str]:
    """Parse "1) foo\\n2) bar\\n3) baz" into ["foo", "bar", "baz"]."""
    results = []
    for line in text.splitlines():
        match = NUMBERED_LINE.match(line)
        if match:
            caption = match.group(1).strip()
            if caption:
                results.append(caption)
    return results


def _short_lines(text: str) -> List[str]:
    lines = (line.strip() for line in text.splitlines())
    return [line for line in lines if line and len(line) <= MAX_FALLBACK_LINE_LENGTH]


def fallback_captions(text: str, labels: Sequence[str]) -> List[str]:
    """Up to 3 short non-empty lines; else the labels; else a placeholder."""
    short_lines = _short_lines(text)
    if short_lines:
        return short_lines[:MAX_CAPTIONS]
    if labels:
        return list(labels)
    return [NO_IDEAS_PLACEHOLDER]


def clean_caption(text: str) -> str:
    """Replace non-printable characters (tabs, control codes) with spaces."""
    return "".join(ch if ch.isprintable() else " " for ch in text).strip()


def to_candidates(texts: Sequence[str], origin: CaptionOrigin) -> List[CaptionCandidate]:
    cleaned = (clean_caption(t) for t in texts)
    return [CaptionCandidate(text=t, origin=origin) for t in cleaned if t][:MAX_CAPTIONS]


def placeholder(message: str = NO_IDEAS_PLACEHOLDER) -> List[CaptionCandidate]:
    return [CaptionCandidate(text=message, origin=CaptionOrigin.PLACEHOLDER)]


def parse_response(text: str, labels: Sequence[str]) -> List[CaptionCandidate]:
    """
    Numbered list first, heuristic fallback second.

    Always returns 1-3 candidates.
    """
    parsed = to_candidates(parse_numbered_list(text), CaptionOrigin.GENERATED)
    if parsed:
        return parsed

    fallback = fallback_captions(text, labels)
    if _short_lines(text):
        candidates = to_candidates(fallback, CaptionOrigin.GENERATED)
    elif labels:
        candidates = to_candidates(fallback, CaptionOrigin.LABEL_FALLBACK)
    else:
        candidates = []

    if not candidates and labels:
        candidates = to_candidates(labels, CaptionOrigin.LABEL_FALLBACK)
    return candidates or placeholder()
