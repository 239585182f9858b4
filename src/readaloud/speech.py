"""
Speech capability interface.

The host capability is a black box that speaks one utterance at a time and
reports progress through notifications. Notifications are decoded once, at
the adapter boundary, into the small frozen dataclasses below; everything
past this module dispatches on their type instead of on strings.
"""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Mapping, Union

from .errors import InvalidInput
from .logging_utils import debug_log
from .scheduler import Scheduler, TimerHandle
from .text import DEFAULT_WORDS_PER_MINUTE, sentence_spans, word_spans

GRANULARITY_WORD = "word"
GRANULARITY_SENTENCE = "sentence"


@dataclass(slots=True, frozen=True)
class UtteranceOptions:
    rate: float = 1.0
    volume: float = 100.0
    voice: str | None = None


@dataclass(slots=True, frozen=True)
class SpeechStarted:
    pass


@dataclass(slots=True, frozen=True)
class SpeechBoundary:
    char_index: int
    granularity: str = GRANULARITY_WORD


@dataclass(slots=True, frozen=True)
class SpeechPaused:
    pass


@dataclass(slots=True, frozen=True)
class SpeechResumed:
    pass


@dataclass(slots=True, frozen=True)
class SpeechEnded:
    pass


@dataclass(slots=True, frozen=True)
class SpeechFailed:
    reason: str


SpeechNotification = Union[
    SpeechStarted,
    SpeechBoundary,
    SpeechPaused,
    SpeechResumed,
    SpeechEnded,
    SpeechFailed,
]
NotificationListener = Callable[[SpeechNotification], None]


def decode_notification(payload: Mapping[str, object]) -> SpeechNotification:
    """Turn a string-tagged host payload into a notification variant."""
    kind = payload.get("type")
    if not isinstance(kind, str):
        raise InvalidInput("Speech notification is missing its type.")
    kind = kind.strip().lower()
    if kind == "start":
        return SpeechStarted()
    if kind == "boundary":
        raw_index = payload.get("charIndex", payload.get("char_index"))
        if isinstance(raw_index, bool) or not isinstance(raw_index, (int, float)):
            raise InvalidInput("Boundary notification requires a numeric charIndex.")
        granularity = payload.get("granularity", payload.get("name", GRANULARITY_WORD))
        if granularity not in (GRANULARITY_WORD, GRANULARITY_SENTENCE):
            granularity = GRANULARITY_WORD
        return SpeechBoundary(max(0, int(raw_index)), str(granularity))
    if kind == "pause":
        return SpeechPaused()
    if kind == "resume":
        return SpeechResumed()
    if kind == "end":
        return SpeechEnded()
    if kind == "error":
        reason = payload.get("reason", payload.get("error"))
        return SpeechFailed(str(reason) if reason else "unknown")
    raise InvalidInput(f"Unknown speech notification type: {kind}")


class UtteranceHandle:
    _ids = itertools.count(1)

    def __init__(self, text: str, options: UtteranceOptions) -> None:
        self.id = next(self._ids)
        self.text = text
        self.options = options

    def __repr__(self) -> str:
        return f"UtteranceHandle(id={self.id}, chars={len(self.text)})"


class SpeechCapability(ABC):
    """
    What the engine needs from a host speech service.

    ``pause``/``resume`` may be unsupported or fail silently; they return
    ``False`` when nothing was paused or resumed. ``cancel`` is the only
    operation every implementation must honour.
    """

    supports_native_pause = True
    supports_live_rate = False
    supports_live_volume = False

    @abstractmethod
    def speak(
        self,
        text: str,
        options: UtteranceOptions,
        listener: NotificationListener,
    ) -> UtteranceHandle:
        raise NotImplementedError

    @abstractmethod
    def cancel(self, handle: UtteranceHandle) -> None:
        raise NotImplementedError

    def pause(self, handle: UtteranceHandle) -> bool:
        return False

    def resume(self, handle: UtteranceHandle) -> bool:
        return False

    def set_rate(self, handle: UtteranceHandle, rate: float) -> bool:
        return False

    def set_volume(self, handle: UtteranceHandle, volume: float) -> bool:
        return False

    def close(self) -> None:
        return None


class _SimulatedUtterance:
    def __init__(
        self,
        handle: UtteranceHandle,
        listener: NotificationListener,
        offsets: list[int],
    ) -> None:
        self.handle = handle
        self.listener = listener
        self.offsets = offsets
        self.next_index = 0
        self.rate = handle.options.rate
        self.volume = handle.options.volume
        self.state = "pending"
        self.timer: TimerHandle | None = None


class SimulatedSpeech(SpeechCapability):
    """
    Scheduler-driven capability that "speaks" without producing audio.

    Boundaries are paced at ``words_per_minute * rate``. The switches below
    reproduce the behaviours hosts are known for: pause state that is lost
    before resume, and rate or volume that cannot change mid-utterance.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
        granularity: str = GRANULARITY_WORD,
        native_pause: bool = True,
        lose_pause_state: bool = False,
        live_rate: bool = True,
        live_volume: bool = True,
    ) -> None:
        self.scheduler = scheduler
        self.words_per_minute = max(1, int(words_per_minute))
        self.granularity = granularity
        self.supports_native_pause = native_pause
        self.lose_pause_state = lose_pause_state
        self.supports_live_rate = live_rate
        self.supports_live_volume = live_volume
        self._utterances: dict[int, _SimulatedUtterance] = {}
        self.spoken: list[UtteranceHandle] = []

    def speak(
        self,
        text: str,
        options: UtteranceOptions,
        listener: NotificationListener,
    ) -> UtteranceHandle:
        handle = UtteranceHandle(text, options)
        if self.granularity == GRANULARITY_SENTENCE:
            offsets = [span.start for span in sentence_spans(text)]
        else:
            offsets = [span.start for span in word_spans(text)]
        utterance = _SimulatedUtterance(handle, listener, offsets)
        self._utterances[handle.id] = utterance
        self.spoken.append(handle)
        utterance.timer = self.scheduler.call_later(0.0, self._begin, utterance)
        debug_log("speech", f"simulated speak #{handle.id} ({len(text)} chars)")
        return handle

    def cancel(self, handle: UtteranceHandle) -> None:
        utterance = self._utterances.pop(handle.id, None)
        if utterance is None:
            return
        utterance.state = "cancelled"
        if utterance.timer is not None:
            utterance.timer.cancel()

    def pause(self, handle: UtteranceHandle) -> bool:
        if not self.supports_native_pause:
            return False
        utterance = self._utterances.get(handle.id)
        if utterance is None or utterance.state != "speaking":
            return False
        if utterance.timer is not None:
            utterance.timer.cancel()
        utterance.state = "lost" if self.lose_pause_state else "paused"
        self.scheduler.call_later(0.0, utterance.listener, SpeechPaused())
        return True

    def resume(self, handle: UtteranceHandle) -> bool:
        utterance = self._utterances.get(handle.id)
        if utterance is None or utterance.state != "paused":
            if utterance is not None and utterance.state == "lost":
                self._utterances.pop(handle.id, None)
            return False
        utterance.state = "speaking"
        self.scheduler.call_later(0.0, utterance.listener, SpeechResumed())
        self._schedule_next(utterance, first=False)
        return True

    def set_rate(self, handle: UtteranceHandle, rate: float) -> bool:
        if not self.supports_live_rate:
            return False
        utterance = self._utterances.get(handle.id)
        if utterance is None:
            return False
        utterance.rate = float(rate)
        if utterance.state == "speaking":
            if utterance.timer is not None:
                utterance.timer.cancel()
            self._schedule_next(utterance, first=False)
        return True

    def set_volume(self, handle: UtteranceHandle, volume: float) -> bool:
        if not self.supports_live_volume:
            return False
        utterance = self._utterances.get(handle.id)
        if utterance is None:
            return False
        utterance.volume = float(volume)
        return True

    def current_volume(self, handle: UtteranceHandle) -> float | None:
        utterance = self._utterances.get(handle.id)
        return utterance.volume if utterance is not None else None

    def fail(self, handle: UtteranceHandle, reason: str) -> None:
        """Report a host failure for an active utterance."""
        utterance = self._utterances.pop(handle.id, None)
        if utterance is None:
            return
        if utterance.timer is not None:
            utterance.timer.cancel()
        utterance.state = "failed"
        utterance.listener(SpeechFailed(reason))

    def _word_duration(self, utterance: _SimulatedUtterance) -> float:
        return 60.0 / (self.words_per_minute * max(0.1, utterance.rate))

    def _begin(self, utterance: _SimulatedUtterance) -> None:
        if utterance.state != "pending":
            return
        utterance.state = "speaking"
        utterance.listener(SpeechStarted())
        self._schedule_next(utterance, first=True)

    def _schedule_next(self, utterance: _SimulatedUtterance, *, first: bool) -> None:
        delay = 0.0 if first else self._word_duration(utterance)
        if utterance.next_index < len(utterance.offsets):
            utterance.timer = self.scheduler.call_later(delay, self._emit_boundary, utterance)
        else:
            utterance.timer = self.scheduler.call_later(delay, self._finish, utterance)

    def _emit_boundary(self, utterance: _SimulatedUtterance) -> None:
        if utterance.state != "speaking":
            return
        offset = utterance.offsets[utterance.next_index]
        utterance.next_index += 1
        utterance.listener(SpeechBoundary(offset, self.granularity))
        if utterance.state == "speaking":
            self._schedule_next(utterance, first=False)

    def _finish(self, utterance: _SimulatedUtterance) -> None:
        if utterance.state != "speaking":
            return
        utterance.state = "ended"
        self._utterances.pop(utterance.handle.id, None)
        utterance.listener(SpeechEnded())


__all__ = [
    "GRANULARITY_SENTENCE",
    "GRANULARITY_WORD",
    "NotificationListener",
    "SimulatedSpeech",
    "SpeechBoundary",
    "SpeechCapability",
    "SpeechEnded",
    "SpeechFailed",
    "SpeechNotification",
    "SpeechPaused",
    "SpeechResumed",
    "SpeechStarted",
    "UtteranceHandle",
    "UtteranceOptions",
    "decode_notification",
]
