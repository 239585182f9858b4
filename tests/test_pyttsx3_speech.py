from __future__ import annotations

import re
import threading

import pytest

from readaloud import pyttsx3_speech
from readaloud.errors import CapabilityUnavailable
from readaloud.pyttsx3_speech import Pyttsx3Speech, rate_to_words_per_minute, volume_to_gain
from readaloud.speech import SpeechBoundary, SpeechEnded, SpeechFailed, SpeechStarted, UtteranceOptions


class _FakeEngine:
    def __init__(self, fail_with: Exception | None = None) -> None:
        self.callbacks: dict[str, list] = {}
        self.properties: list[tuple[str, object]] = []
        self.queue: list[tuple[str, str]] = []
        self.fail_with = fail_with
        self.stopped = 0

    def connect(self, topic, callback):
        self.callbacks.setdefault(topic, []).append(callback)

    def setProperty(self, name, value):
        self.properties.append((name, value))

    def say(self, text, name=None):
        self.queue.append((text, name))

    def stop(self):
        self.stopped += 1

    def _fire(self, topic, *args):
        for callback in self.callbacks.get(topic, []):
            callback(*args)

    def runAndWait(self):
        pending, self.queue = self.queue, []
        for text, name in pending:
            if self.fail_with is not None:
                raise self.fail_with
            self._fire("started-utterance", name)
            for match in re.finditer(r"\S+", text):
                self._fire("started-word", name, match.start(), len(match.group()))
            self._fire("finished-utterance", name, True)


class _Recorder:
    def __init__(self) -> None:
        self.events: list = []
        self.done = threading.Event()

    def __call__(self, notification) -> None:
        self.events.append(notification)
        if isinstance(notification, (SpeechEnded, SpeechFailed)):
            self.done.set()


def test_conversions() -> None:
    assert rate_to_words_per_minute(1.0) == 200
    assert rate_to_words_per_minute(1.5) == 300
    assert rate_to_words_per_minute(0.01) == 20
    assert volume_to_gain(70) == 0.7
    assert volume_to_gain(140) == 1.0
    assert volume_to_gain(-5) == 0.0


def test_speaks_through_worker_thread(monkeypatch) -> None:
    engine = _FakeEngine()
    monkeypatch.setattr(pyttsx3_speech.pyttsx3, "init", lambda *args: engine)
    speech = Pyttsx3Speech(voice="en-gb")
    recorder = _Recorder()
    speech.speak("hello there world", UtteranceOptions(rate=1.5, volume=40), recorder)
    assert recorder.done.wait(2.0)
    speech.close()

    assert recorder.events == [
        SpeechStarted(),
        SpeechBoundary(0),
        SpeechBoundary(6),
        SpeechBoundary(12),
        SpeechEnded(),
    ]
    assert ("rate", 300) in engine.properties
    assert ("volume", 0.4) in engine.properties
    assert ("voice", "en-gb") in engine.properties


def test_run_failure_reports_speech_failed(monkeypatch) -> None:
    engine = _FakeEngine(fail_with=RuntimeError("driver crashed"))
    monkeypatch.setattr(pyttsx3_speech.pyttsx3, "init", lambda *args: engine)
    speech = Pyttsx3Speech()
    recorder = _Recorder()
    speech.speak("hello", UtteranceOptions(), recorder)
    assert recorder.done.wait(2.0)
    speech.close()
    assert recorder.events == [SpeechFailed("RuntimeError: driver crashed")]


def test_init_failure_is_capability_unavailable(monkeypatch) -> None:
    def _broken_init(*args):
        raise OSError("no speech driver")

    monkeypatch.setattr(pyttsx3_speech.pyttsx3, "init", _broken_init)
    speech = Pyttsx3Speech()
    with pytest.raises(CapabilityUnavailable, match="no speech driver"):
        speech.speak("hello", UtteranceOptions(), lambda notification: None)


def test_capability_flags() -> None:
    speech = Pyttsx3Speech()
    assert speech.supports_native_pause is False
    assert speech.supports_live_rate is False
    assert speech.supports_live_volume is False
