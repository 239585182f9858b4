from __future__ import annotations

import queue
import threading

import pyttsx3

from .errors import CapabilityUnavailable
from .logging_utils import debug_log
from .speech import (
    GRANULARITY_WORD,
    NotificationListener,
    SpeechCapability,
    UtteranceHandle,
    UtteranceOptions,
    decode_notification,
)

BASE_WORDS_PER_MINUTE = 200


def rate_to_words_per_minute(rate: float) -> int:
    return max(20, int(round(BASE_WORDS_PER_MINUTE * float(rate))))


def volume_to_gain(volume: float) -> float:
    return max(0.0, min(1.0, float(volume) / 100.0))


class _Request:
    def __init__(self, handle: UtteranceHandle, listener: NotificationListener) -> None:
        self.handle = handle
        self.listener = listener
        self.cancelled = False


class Pyttsx3Speech(SpeechCapability):
    """
    Host speech through pyttsx3.

    pyttsx3 drivers expect every call to come from the thread that created the
    engine, so a worker thread owns it and runs one ``runAndWait`` per
    utterance. Cancelling marks the request; the next word callback stops the
    engine from inside its own thread. There is no native pause and rate or
    volume only apply to the next utterance.
    """

    supports_native_pause = False
    supports_live_rate = False
    supports_live_volume = False

    def __init__(
        self,
        *,
        driver_name: str | None = None,
        voice: str | None = None,
        startup_timeout: float = 10.0,
    ) -> None:
        self.driver_name = driver_name
        self.voice = voice
        self.startup_timeout = startup_timeout
        self._requests: queue.Queue[_Request | None] = queue.Queue()
        self._active: dict[str, _Request] = {}
        self._active_lock = threading.Lock()
        self._ready = threading.Event()
        self._init_error: BaseException | None = None
        self._engine = None
        self._thread: threading.Thread | None = None
        self._start_lock = threading.Lock()

    def start(self) -> None:
        with self._start_lock:
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run, name="readaloud-pyttsx3", daemon=True
                )
                self._thread.start()
        if not self._ready.wait(self.startup_timeout):
            raise CapabilityUnavailable("pyttsx3 engine did not start in time.")
        if self._init_error is not None:
            raise CapabilityUnavailable(
                f"pyttsx3 is unavailable: {self._init_error}"
            ) from self._init_error

    def speak(
        self,
        text: str,
        options: UtteranceOptions,
        listener: NotificationListener,
    ) -> UtteranceHandle:
        self.start()
        handle = UtteranceHandle(text, options)
        request = _Request(handle, listener)
        with self._active_lock:
            self._active[str(handle.id)] = request
        self._requests.put(request)
        return handle

    def cancel(self, handle: UtteranceHandle) -> None:
        with self._active_lock:
            request = self._active.get(str(handle.id))
        if request is not None:
            request.cancelled = True

    def close(self) -> None:
        with self._active_lock:
            for request in self._active.values():
                request.cancelled = True
        if self._thread is not None:
            self._requests.put(None)
            self._thread.join(timeout=2)

    def _run(self) -> None:
        try:
            engine = pyttsx3.init(self.driver_name) if self.driver_name else pyttsx3.init()
        except Exception as exc:
            self._init_error = exc
            self._ready.set()
            return
        engine.connect("started-utterance", self._on_started)
        engine.connect("started-word", self._on_word)
        engine.connect("finished-utterance", self._on_finished)
        engine.connect("error", self._on_error)
        self._engine = engine
        self._ready.set()
        while True:
            request = self._requests.get()
            if request is None:
                break
            if request.cancelled:
                self._forget(request)
                continue
            options = request.handle.options
            engine.setProperty("rate", rate_to_words_per_minute(options.rate))
            engine.setProperty("volume", volume_to_gain(options.volume))
            voice = options.voice or self.voice
            if voice:
                engine.setProperty("voice", voice)
            debug_log("pyttsx3", f"speaking #{request.handle.id}")
            engine.say(request.handle.text, str(request.handle.id))
            try:
                engine.runAndWait()
            except Exception as exc:
                if not request.cancelled:
                    self._notify(request, {"type": "error", "error": f"{exc.__class__.__name__}: {exc}"})
            finally:
                self._forget(request)
        try:
            engine.stop()
        except Exception as exc:
            debug_log("pyttsx3", f"engine stop failed: {exc}")

    def _forget(self, request: _Request) -> None:
        with self._active_lock:
            self._active.pop(str(request.handle.id), None)

    def _notify(self, request: _Request, payload: dict[str, object]) -> None:
        request.listener(decode_notification(payload))

    def _lookup(self, name: object) -> _Request | None:
        with self._active_lock:
            return self._active.get(str(name))

    def _on_started(self, name: object) -> None:
        request = self._lookup(name)
        if request is None or request.cancelled:
            return
        self._notify(request, {"type": "start"})

    def _on_word(self, name: object, location: int, length: int) -> None:
        request = self._lookup(name)
        if request is None:
            return
        if request.cancelled:
            if self._engine is not None:
                self._engine.stop()
            return
        self._notify(
            request,
            {"type": "boundary", "charIndex": int(location), "granularity": GRANULARITY_WORD},
        )

    def _on_finished(self, name: object, completed: bool) -> None:
        request = self._lookup(name)
        if request is None:
            return
        self._forget(request)
        if request.cancelled:
            return
        self._notify(request, {"type": "end"})

    def _on_error(self, name: object, exception: BaseException) -> None:
        request = self._lookup(name)
        if request is None or request.cancelled:
            return
        self._forget(request)
        self._notify(request, {"type": "error", "error": str(exception) or exception.__class__.__name__})


__all__ = ["Pyttsx3Speech", "rate_to_words_per_minute", "volume_to_gain"]
