from __future__ import annotations

import pytest

from readaloud.text import (
    count_words,
    derive_title,
    estimate_reading_seconds,
    estimate_seconds_for_characters,
    format_reading_time,
    origin_of,
    sentence_spans,
    word_spans,
)


def test_word_spans_keep_offsets() -> None:
    spans = word_spans("  Hello,  world again")
    assert [(span.start, span.text) for span in spans] == [(2, "Hello,"), (10, "world"), (16, "again")]
    assert count_words("  Hello,  world again") == 3
    assert word_spans("   ") == []


def test_sentence_spans() -> None:
    spans = sentence_spans("First one. Second one!  Third without end")
    assert [span.text for span in spans] == ["First one.", "Second one!", "Third without end"]
    assert spans[1].start == 11
    assert [span.text for span in sentence_spans("He said \"stop.\" Then left.")] == [
        "He said \"stop.\"",
        "Then left.",
    ]


def test_reading_estimates() -> None:
    assert estimate_reading_seconds("one two three") == pytest.approx(1.2)
    assert estimate_reading_seconds("one two three", speed=2.0) == pytest.approx(0.6)
    assert estimate_reading_seconds("") == 0.0
    assert estimate_seconds_for_characters(750) == 60.0
    assert estimate_seconds_for_characters(-10) == 0.0


def test_format_reading_time() -> None:
    assert format_reading_time(30) == "30s"
    assert format_reading_time(150) == "2m"
    assert format_reading_time(3720) == "1h 2m"
    assert format_reading_time(-4) == "0s"


def test_derive_title() -> None:
    assert derive_title("  Short\n\ttitle  ") == "Short title"
    long_text = "word " * 30
    title = derive_title(long_text)
    assert len(title) == 60
    assert title.endswith("…")


def test_origin_of() -> None:
    assert origin_of("https://News.Example.com/story?id=1") == "news.example.com"
    assert origin_of("example.org") == "example.org"
    assert origin_of("example.org:8080/path") == "example.org"
    assert origin_of("   ") is None
    assert origin_of(None) is None
