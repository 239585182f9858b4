from __future__ import annotations

import pytest

from readaloud.progress import ProgressTracker
from readaloud.scheduler import ManualScheduler

TEXT = "Hello world. This is a test."


def _tracker(text: str = TEXT, speed: float = 1.0) -> tuple[ProgressTracker, ManualScheduler]:
    scheduler = ManualScheduler()
    tracker = ProgressTracker(scheduler)
    tracker.initialize(text, speed=speed)
    return tracker, scheduler


def test_initialize_counts_words_and_characters() -> None:
    tracker, _ = _tracker()
    snapshot = tracker.snapshot()
    assert snapshot.total_characters == 28
    assert snapshot.total_words == 6
    assert snapshot.current_character == 0
    assert snapshot.is_playing is True


def test_remaining_time_uses_observed_pace() -> None:
    tracker, scheduler = _tracker()
    scheduler.advance(3.0)
    tracker.on_boundary(14)
    # half way after three seconds: three more to go
    assert tracker.estimated_remaining() == pytest.approx(3.0)


def test_remaining_time_falls_back_to_estimate_before_first_boundary() -> None:
    tracker, _ = _tracker("one two three four five six seven eight nine ten")
    # ten words at 150 wpm
    assert tracker.estimated_remaining() == pytest.approx(4.0)
    tracker.update_speed(2.0)
    assert tracker.estimated_remaining() == pytest.approx(2.0)


def test_speed_change_re_estimates_from_new_pace() -> None:
    tracker, scheduler = _tracker("x" * 100)
    scheduler.advance(10)
    tracker.on_boundary(20)
    assert tracker.estimated_remaining() == pytest.approx(40.0)
    tracker.update_speed(2.0)
    assert tracker.estimated_remaining() > 0
    scheduler.advance(2)
    tracker.on_boundary(30)
    assert tracker.estimated_remaining() == pytest.approx(14.0)


def test_boundary_never_moves_backwards() -> None:
    tracker, _ = _tracker()
    assert tracker.on_boundary(13) is True
    assert tracker.on_boundary(6) is False
    assert tracker.current_character == 13
    assert tracker.on_boundary(500) is True
    assert tracker.current_character == 28


def test_pause_excludes_time_from_elapsed() -> None:
    tracker, scheduler = _tracker()
    scheduler.advance(1)
    tracker.on_pause()
    scheduler.advance(60)
    assert tracker.elapsed() == pytest.approx(1.0)
    tracker.on_resume()
    scheduler.advance(2)
    assert tracker.elapsed() == pytest.approx(3.0)
    snapshot = tracker.snapshot()
    assert snapshot.is_paused is False and snapshot.is_playing is True


def test_end_snaps_to_complete() -> None:
    tracker, scheduler = _tracker()
    scheduler.advance(4)
    tracker.on_end()
    scheduler.advance(100)
    snapshot = tracker.snapshot()
    assert snapshot.percent_complete == 100.0
    assert snapshot.current_word == 6
    assert snapshot.time_elapsed_seconds == pytest.approx(4.0)
    assert snapshot.is_playing is False
    assert tracker.on_boundary(3) is False


def test_payload_uses_camel_case_keys() -> None:
    tracker, _ = _tracker()
    tracker.on_boundary(12)
    payload = tracker.snapshot().to_payload()
    assert payload["percentComplete"] == 42.9
    assert payload["currentWord"] == 2
    assert set(payload) >= {"totalCharacters", "estimatedRemainingSeconds", "isPaused", "speed"}
