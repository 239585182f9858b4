"""
Pause/resume coordination for one reading session at a time.

Every utterance gets a fresh token; notifications carrying an older token are
dropped, so callbacks from a cancelled or replaced utterance never touch the
current session. The character position recorded from boundary notifications
is authoritative: native pause/resume is used when the capability offers it,
and when it does not (or the paused utterance is gone by the time we resume)
the remaining text is spoken as a new utterance whose boundary offsets are
shifted back into the full text.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .errors import (
    CapabilityError,
    CapabilityUnavailable,
    InvalidInput,
    ReadAloudError,
    error_kind_of,
    is_interruption,
)
from .logging_utils import debug_log, report
from .messaging import MessageBus, MessageType
from .progress import ProgressSnapshot, ProgressTracker
from .scheduler import Scheduler, TimerHandle
from .speech import (
    SpeechBoundary,
    SpeechCapability,
    SpeechEnded,
    SpeechFailed,
    SpeechNotification,
    SpeechPaused,
    SpeechResumed,
    SpeechStarted,
    UtteranceHandle,
    UtteranceOptions,
)
from .speed import SpeedSetting
from .text import origin_of
from .volume import VolumeSetting


class PlaybackState(str, Enum):
    IDLE = "idle"
    SPEAKING = "speaking"
    PAUSED = "paused"
    ENDED = "ended"


class EndReason(str, Enum):
    COMPLETED = "completed"
    STOPPED = "stopped"
    REPLACED = "replaced"
    INTERRUPTED = "interrupted"
    FAILED = "failed"


@dataclass(slots=True)
class PlaybackSession:
    id: int
    text: str
    origin: str | None = None
    state: PlaybackState = PlaybackState.IDLE
    pause_position: int | None = None
    started_at: float = 0.0
    paused_at: float | None = None
    total_paused_duration: float = 0.0
    pause_count: int = 0
    last_position: int = 0
    utterance_offset: int = 0
    utterance_count: int = 0
    end_reason: EndReason | None = None
    error: ReadAloudError | None = None

    @property
    def active(self) -> bool:
        return self.state in (PlaybackState.SPEAKING, PlaybackState.PAUSED)

    def to_payload(self) -> dict[str, object]:
        return {
            "sessionId": self.id,
            "state": self.state.value,
            "origin": self.origin,
            "characters": len(self.text),
            "pausePosition": self.pause_position,
            "position": self.last_position,
            "pauseCount": self.pause_count,
            "totalPausedSeconds": round(self.total_paused_duration, 2),
            "utterances": self.utterance_count,
            "endReason": self.end_reason.value if self.end_reason else None,
            "error": str(self.error) if self.error else None,
        }


@dataclass(slots=True, frozen=True)
class PlaybackEnded:
    session_id: int
    reason: EndReason
    error: ReadAloudError | None = None


EndListener = Callable[[PlaybackEnded], None]


class PlaybackCoordinator:
    def __init__(
        self,
        speech: SpeechCapability,
        speed: SpeedSetting,
        volume: VolumeSetting,
        tracker: ProgressTracker,
        scheduler: Scheduler,
        *,
        bus: MessageBus | None = None,
        progress_interval: float | None = 1.0,
        max_text_length: int | None = None,
    ) -> None:
        self.speech = speech
        self.speed = speed
        self.volume = volume
        self.tracker = tracker
        self.scheduler = scheduler
        self.bus = bus
        self.progress_interval = progress_interval
        self.max_text_length = max_text_length
        self.session: PlaybackSession | None = None
        self._session_ids = itertools.count(1)
        self._token = 0
        self._handle: UtteranceHandle | None = None
        self._native_paused = False
        self._refresh: TimerHandle | None = None
        self._end_listeners: list[EndListener] = []

    @property
    def state(self) -> PlaybackState:
        return self.session.state if self.session is not None else PlaybackState.IDLE

    @property
    def active_origin(self) -> str | None:
        if self.session is None or not self.session.active:
            return None
        return self.session.origin

    @property
    def is_active(self) -> bool:
        return self.session is not None and self.session.active

    def add_end_listener(self, listener: EndListener) -> None:
        self._end_listeners.append(listener)

    # Commands

    def start(self, text: str, *, origin: str | None = None) -> PlaybackSession:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput("Text to read must not be empty.")
        if self.max_text_length is not None and len(text) > self.max_text_length:
            raise InvalidInput(
                f"Text is too long ({len(text)} characters, limit {self.max_text_length})."
            )
        if self.session is not None and self.session.active:
            self._finish(EndReason.REPLACED)
        session = PlaybackSession(
            id=next(self._session_ids),
            text=text,
            origin=origin_of(origin),
            started_at=self.scheduler.now(),
        )
        self.session = session
        self.tracker.initialize(text, speed=self.speed.effective(session.origin))
        session.state = PlaybackState.SPEAKING
        try:
            self._speak_from(0)
        except ReadAloudError as exc:
            self._finish(EndReason.FAILED, exc)
            raise
        debug_log("playback", f"session {session.id} started ({len(text)} chars)")
        self._publish_state()
        self._schedule_refresh()
        return session

    def pause(self) -> bool:
        session = self.session
        if session is None or session.state is not PlaybackState.SPEAKING:
            return False
        session.pause_position = min(session.last_position, len(session.text))
        session.paused_at = self.scheduler.now()
        session.pause_count += 1
        session.state = PlaybackState.PAUSED
        self.tracker.on_pause()
        self._cancel_refresh()
        native = False
        if self._handle is not None and self.speech.supports_native_pause:
            try:
                native = bool(self.speech.pause(self._handle))
            except Exception as exc:
                report("playback", f"native pause failed: {exc}")
                native = False
        if not native:
            self._drop_utterance()
        self._native_paused = native
        debug_log(
            "playback",
            f"paused at {session.pause_position} ({'native' if native else 'position'})",
        )
        self._publish_state()
        return True

    def resume(self) -> bool:
        session = self.session
        if session is None or session.state is not PlaybackState.PAUSED:
            return False
        if session.paused_at is not None:
            session.total_paused_duration += max(0.0, self.scheduler.now() - session.paused_at)
        session.paused_at = None
        position = session.pause_position if session.pause_position is not None else session.last_position
        session.state = PlaybackState.SPEAKING
        self.tracker.on_resume()
        resumed = False
        if self._native_paused and self._handle is not None:
            try:
                resumed = bool(self.speech.resume(self._handle))
            except Exception as exc:
                report("playback", f"native resume failed: {exc}")
                resumed = False
        self._native_paused = False
        session.pause_position = None
        if not resumed:
            debug_log("playback", f"restarting session {session.id} at {position}")
            self._drop_utterance()
            if not self._restart_from(position):
                return True
        self._publish_state()
        self._schedule_refresh()
        return True

    def toggle_pause(self) -> bool:
        if self.state is PlaybackState.SPEAKING:
            return self.pause()
        if self.state is PlaybackState.PAUSED:
            return self.resume()
        return False

    def stop(self) -> bool:
        if self.session is None or not self.session.active:
            return False
        self._finish(EndReason.STOPPED)
        return True

    def reset(self) -> None:
        """Return to Idle after the queue decides there is nothing more to read."""
        if self.session is not None and self.session.active:
            self._finish(EndReason.STOPPED)
            return
        if self.session is not None and self.session.state is not PlaybackState.IDLE:
            self.session.state = PlaybackState.IDLE
            self._publish_state()

    def update_position(self, char_index: int) -> None:
        session = self.session
        if session is None:
            return
        index = max(0, min(int(char_index), len(session.text)))
        if index > session.last_position:
            session.last_position = index

    # Live parameter changes

    def apply_rate(self) -> str:
        """
        Push the current rate to the active session.

        Returns ``"live"`` when the capability changed rate in place,
        ``"restarted"`` when the remaining text was re-spoken, ``"deferred"``
        when paused (the next utterance uses the new rate) and ``"idle"``
        when nothing is playing.
        """
        session = self.session
        if session is None or not session.active:
            return "idle"
        rate = self.speed.effective(session.origin)
        self.tracker.update_speed(rate)
        if session.state is PlaybackState.PAUSED:
            if self._native_paused:
                self._drop_utterance()
                self._native_paused = False
            return "deferred"
        if self._handle is not None and self.speech.supports_live_rate:
            try:
                if self.speech.set_rate(self._handle, rate):
                    return "live"
            except Exception as exc:
                report("playback", f"live rate change failed: {exc}")
        self._drop_utterance()
        self._restart_from(session.last_position)
        return "restarted"

    def live_volume_available(self) -> bool:
        return (
            self.session is not None
            and self.session.state is PlaybackState.SPEAKING
            and self._handle is not None
            and self.speech.supports_live_volume
        )

    def set_gain(self, volume: float) -> bool:
        """Set gain on the live path only; used for fade steps."""
        if not self.live_volume_available() or self._handle is None:
            return False
        try:
            return bool(self.speech.set_volume(self._handle, volume))
        except Exception as exc:
            report("playback", f"live volume change failed: {exc}")
            return False

    def apply_volume(self) -> str:
        session = self.session
        if session is None or not session.active:
            return "idle"
        volume = self.volume.effective(session.origin)
        if session.state is PlaybackState.PAUSED:
            if self._native_paused and not self.speech.supports_live_volume:
                self._drop_utterance()
                self._native_paused = False
            return "deferred"
        if self.set_gain(volume):
            return "live"
        self._drop_utterance()
        self._restart_from(session.last_position)
        return "restarted"

    # Reporting

    def snapshot(self) -> ProgressSnapshot:
        return self.tracker.snapshot()

    def status(self) -> dict[str, object]:
        if self.session is None:
            return {"state": PlaybackState.IDLE.value, "sessionId": None}
        payload = self.session.to_payload()
        payload["speed"] = self.speed.effective(self.session.origin)
        payload["volume"] = self.volume.effective(self.session.origin)
        return payload

    # Internals

    def _speak_from(self, position: int) -> None:
        session = self.session
        assert session is not None
        self._token += 1
        token = self._token
        session.utterance_offset = position
        session.utterance_count += 1
        options = UtteranceOptions(
            rate=self.speed.effective(session.origin),
            volume=float(self.volume.effective(session.origin)),
        )

        def _listener(notification: SpeechNotification) -> None:
            self.scheduler.dispatch(self._on_notification, token, notification)

        try:
            self._handle = self.speech.speak(session.text[position:], options, _listener)
        except ReadAloudError:
            self._handle = None
            raise
        except Exception as exc:
            self._handle = None
            raise CapabilityUnavailable(f"Speech capability rejected the utterance: {exc}") from exc
        self._native_paused = False

    def _restart_from(self, position: int) -> bool:
        session = self.session
        assert session is not None
        if not session.text[position:].strip():
            self._finish(EndReason.COMPLETED)
            return False
        try:
            self._speak_from(position)
        except ReadAloudError as exc:
            self._finish(EndReason.FAILED, exc)
            return False
        return True

    def _drop_utterance(self) -> None:
        handle = self._handle
        self._handle = None
        self._token += 1
        if handle is None:
            return
        try:
            self.speech.cancel(handle)
        except Exception as exc:
            report("playback", f"cancel failed: {exc}")

    def _on_notification(self, token: int, notification: SpeechNotification) -> None:
        session = self.session
        if token != self._token or session is None or not session.active:
            debug_log("playback", f"dropped stale {type(notification).__name__}")
            return
        if isinstance(notification, SpeechStarted):
            self.tracker.on_start()
        elif isinstance(notification, SpeechBoundary):
            if session.state is not PlaybackState.SPEAKING:
                return
            position = session.utterance_offset + notification.char_index
            self.update_position(position)
            self.tracker.on_boundary(position)
        elif isinstance(notification, (SpeechPaused, SpeechResumed)):
            debug_log("playback", f"{type(notification).__name__} confirmed")
        elif isinstance(notification, SpeechEnded):
            if session.state is PlaybackState.PAUSED:
                # The paused utterance is gone; resume will restart by position.
                self._handle = None
                self._native_paused = False
                return
            self._finish(EndReason.COMPLETED)
        elif isinstance(notification, SpeechFailed):
            if is_interruption(notification.reason):
                if session.state is PlaybackState.PAUSED:
                    self._handle = None
                    self._native_paused = False
                    return
                self._finish(EndReason.INTERRUPTED)
                return
            error = CapabilityError(notification.reason)
            report("playback", str(error))
            self._finish(EndReason.FAILED, error)

    def _finish(self, reason: EndReason, error: ReadAloudError | None = None) -> None:
        session = self.session
        if session is None:
            return
        if reason is EndReason.COMPLETED:
            self._handle = None
            self._token += 1
        else:
            self._drop_utterance()
        self._native_paused = False
        self._cancel_refresh()
        if session.paused_at is not None:
            session.total_paused_duration += max(0.0, self.scheduler.now() - session.paused_at)
            session.paused_at = None
        if reason is EndReason.COMPLETED:
            self.tracker.on_end()
        else:
            self.tracker.on_stop()
        if reason in (EndReason.COMPLETED, EndReason.FAILED):
            session.state = PlaybackState.ENDED
        else:
            session.state = PlaybackState.IDLE
        session.pause_position = None
        session.end_reason = reason
        session.error = error
        debug_log("playback", f"session {session.id} ended: {reason.value}")
        self._publish_state()
        if error is not None and self.bus is not None:
            self.bus.publish(
                MessageType.PLAYBACK_ERROR,
                {
                    "sessionId": session.id,
                    "kind": error_kind_of(error),
                    "category": getattr(error, "category", None),
                    "error": str(error),
                },
            )
        ended = PlaybackEnded(session.id, reason, error)
        for listener in list(self._end_listeners):
            try:
                listener(ended)
            except Exception as exc:
                report("playback", f"end listener failed: {exc.__class__.__name__}: {exc}")

    def _schedule_refresh(self) -> None:
        self._cancel_refresh()
        if not self.progress_interval or self.state is not PlaybackState.SPEAKING:
            return
        self._refresh = self.scheduler.call_later(self.progress_interval, self._on_refresh)

    def _cancel_refresh(self) -> None:
        if self._refresh is not None:
            self._refresh.cancel()
            self._refresh = None

    def _on_refresh(self) -> None:
        self._refresh = None
        if self.state is not PlaybackState.SPEAKING:
            return
        if self.bus is not None and self.session is not None:
            payload = self.tracker.snapshot().to_payload()
            payload["sessionId"] = self.session.id
            self.bus.publish(MessageType.PROGRESS_UPDATE, payload)
        self._schedule_refresh()

    def _publish_state(self) -> None:
        if self.bus is None:
            return
        payload = self.status()
        payload["progress"] = self.tracker.snapshot().to_payload()
        self.bus.publish(MessageType.PLAYBACK_STATE_CHANGED, payload)


__all__ = [
    "EndReason",
    "PlaybackCoordinator",
    "PlaybackEnded",
    "PlaybackSession",
    "PlaybackState",
]
