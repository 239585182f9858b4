"""
Progress tracking for one playback session.

Positions are reported "as of the last boundary": the tracker never
interpolates between boundary notifications, so with sentence granularity
``current_character`` jumps a sentence at a time. Boundaries that would move
the position backwards are ignored, which keeps ``current_character``
non-decreasing across pause/resume and restarts.
"""

from __future__ import annotations

from dataclasses import dataclass

from .scheduler import Scheduler
from .text import (
    DEFAULT_WORDS_PER_MINUTE,
    count_words,
    estimate_reading_seconds,
)


@dataclass(slots=True, frozen=True)
class ProgressSnapshot:
    total_characters: int = 0
    current_character: int = 0
    total_words: int = 0
    current_word: int = 0
    percent_complete: float = 0.0
    time_elapsed_seconds: float = 0.0
    estimated_remaining_seconds: float = 0.0
    is_playing: bool = False
    is_paused: bool = False
    speed: float = 1.0

    def to_payload(self) -> dict[str, object]:
        return {
            "totalCharacters": self.total_characters,
            "currentCharacter": self.current_character,
            "totalWords": self.total_words,
            "currentWord": self.current_word,
            "percentComplete": round(self.percent_complete, 1),
            "timeElapsedSeconds": round(self.time_elapsed_seconds, 2),
            "estimatedRemainingSeconds": round(self.estimated_remaining_seconds, 2),
            "isPlaying": self.is_playing,
            "isPaused": self.is_paused,
            "speed": self.speed,
        }


class ProgressTracker:
    def __init__(
        self,
        scheduler: Scheduler,
        *,
        words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
    ) -> None:
        self.scheduler = scheduler
        self.words_per_minute = max(1, int(words_per_minute))
        self.reset()

    def reset(self) -> None:
        self.text = ""
        self.total_characters = 0
        self.total_words = 0
        self.current_character = 0
        self.current_word = 0
        self.speed = 1.0
        self.is_playing = False
        self.is_paused = False
        self.finished = False
        self._started_at: float | None = None
        self._paused_at: float | None = None
        self._paused_total = 0.0
        self._ended_elapsed: float | None = None
        # Elapsed time and position at the last speed change; remaining time
        # is extrapolated from the pace observed since then.
        self._anchor_elapsed = 0.0
        self._anchor_character = 0

    def initialize(self, text: str, *, speed: float = 1.0) -> None:
        self.reset()
        self.text = text
        self.total_characters = len(text)
        self.total_words = count_words(text)
        self.speed = float(speed)
        self._started_at = self.scheduler.now()
        self.is_playing = True

    def on_start(self) -> None:
        if self._started_at is None:
            self._started_at = self.scheduler.now()
        self.is_playing = True

    def on_boundary(self, char_index: int) -> bool:
        """Record a boundary; return False when it would rewind the position."""
        if self.finished:
            return False
        index = max(0, min(int(char_index), self.total_characters))
        if index < self.current_character:
            return False
        self.current_character = index
        self.current_word = count_words(self.text[:index])
        return True

    def on_pause(self) -> None:
        if self.is_paused or self.finished:
            return
        self.is_paused = True
        self.is_playing = False
        self._paused_at = self.scheduler.now()

    def on_resume(self) -> None:
        if not self.is_paused:
            return
        if self._paused_at is not None:
            self._paused_total += max(0.0, self.scheduler.now() - self._paused_at)
        self._paused_at = None
        self.is_paused = False
        self.is_playing = True

    def on_end(self) -> None:
        elapsed = self.elapsed()
        self.on_resume()
        self.current_character = self.total_characters
        self.current_word = self.total_words
        self.finished = True
        self.is_playing = False
        self._ended_elapsed = elapsed

    def on_stop(self) -> None:
        elapsed = self.elapsed()
        self.on_resume()
        self.is_playing = False
        self._ended_elapsed = elapsed

    def update_speed(self, speed: float) -> None:
        speed = float(speed)
        if speed == self.speed:
            return
        self._anchor_elapsed = self.elapsed()
        self._anchor_character = self.current_character
        self.speed = speed

    def elapsed(self) -> float:
        if self._ended_elapsed is not None:
            return self._ended_elapsed
        if self._started_at is None:
            return 0.0
        now = self.scheduler.now()
        paused = self._paused_total
        if self._paused_at is not None:
            paused += max(0.0, now - self._paused_at)
        return max(0.0, now - self._started_at - paused)

    def percent_complete(self) -> float:
        if self.total_characters <= 0:
            return 0.0
        return self.current_character / self.total_characters * 100.0

    def estimated_remaining(self) -> float:
        if self.finished or self.total_characters <= 0:
            return 0.0
        remaining_chars = self.total_characters - self.current_character
        covered = self.current_character - self._anchor_character
        spent = self.elapsed() - self._anchor_elapsed
        if covered > 0 and spent > 0:
            return spent / covered * remaining_chars
        remaining_text = self.text[self.current_character :]
        return estimate_reading_seconds(remaining_text, self.speed, self.words_per_minute)

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            total_characters=self.total_characters,
            current_character=self.current_character,
            total_words=self.total_words,
            current_word=self.current_word,
            percent_complete=self.percent_complete(),
            time_elapsed_seconds=self.elapsed(),
            estimated_remaining_seconds=self.estimated_remaining(),
            is_playing=self.is_playing,
            is_paused=self.is_paused,
            speed=self.speed,
        )


__all__ = ["ProgressSnapshot", "ProgressTracker"]
