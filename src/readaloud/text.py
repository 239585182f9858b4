from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlparse

DEFAULT_WORDS_PER_MINUTE = 150
AVERAGE_WORD_LENGTH = 5
DEFAULT_TITLE_LENGTH = 60

_WORD_RE = re.compile(r"\S+")
_SENTENCE_END_RE = re.compile(r"[.!?…。！？｡‼⁉]+[\"'”’」』)\]]*(?=\s|$)")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True, frozen=True)
class TextSpan:
    start: int
    end: int
    text: str


def count_words(text: str) -> int:
    return len(text.split())


def word_spans(text: str) -> list[TextSpan]:
    return [TextSpan(match.start(), match.end(), match.group(0)) for match in _WORD_RE.finditer(text)]


def sentence_spans(text: str) -> list[TextSpan]:
    """
    Split text into sentences, keeping offsets into the original string.
    Leading whitespace is skipped; text without a terminator forms the last span.
    """
    spans: list[TextSpan] = []
    cursor = 0
    length = len(text)
    while cursor < length:
        while cursor < length and text[cursor].isspace():
            cursor += 1
        if cursor >= length:
            break
        match = _SENTENCE_END_RE.search(text, cursor)
        end = match.end() if match else length
        spans.append(TextSpan(cursor, end, text[cursor:end]))
        cursor = end
    return spans


def estimate_reading_seconds(
    text: str,
    speed: float = 1.0,
    words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
) -> float:
    words = count_words(text)
    if words == 0:
        return 0.0
    rate = max(0.01, float(speed)) * max(1, int(words_per_minute))
    return words / rate * 60.0


def estimate_seconds_for_characters(
    characters: int,
    speed: float = 1.0,
    words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
) -> float:
    words = max(0, int(characters)) / AVERAGE_WORD_LENGTH
    rate = max(0.01, float(speed)) * max(1, int(words_per_minute))
    return words / rate * 60.0


def format_reading_time(seconds: float) -> str:
    minutes = max(0.0, float(seconds)) / 60.0
    if minutes < 1:
        return f"{round(minutes * 60)}s"
    if minutes < 60:
        return f"{round(minutes)}m"
    hours = int(minutes // 60)
    mins = round(minutes % 60)
    return f"{hours}h {mins}m"


def derive_title(text: str, limit: int = DEFAULT_TITLE_LENGTH) -> str:
    collapsed = _WHITESPACE_RE.sub(" ", text).strip()
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[: max(1, limit - 1)].rstrip() + "…"


def origin_of(source: str | None) -> str | None:
    """Return the host used for per-site overrides, or None when unknown."""
    if not isinstance(source, str):
        return None
    candidate = source.strip()
    if not candidate:
        return None
    parsed = urlparse(candidate if "://" in candidate else f"//{candidate}")
    host = parsed.hostname
    if host:
        return host.lower()
    return candidate.lower()


__all__ = [
    "TextSpan",
    "count_words",
    "derive_title",
    "estimate_reading_seconds",
    "estimate_seconds_for_characters",
    "format_reading_time",
    "origin_of",
    "sentence_spans",
    "word_spans",
]
