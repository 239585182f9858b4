"""
Timers for the reading engine.

The engine is single threaded in the logical sense: every timer callback and
every speech-capability notification runs through ``Scheduler.dispatch`` so it
is serialized with commands. ``ThreadScheduler`` does that with a re-entrant
lock, ``ManualScheduler`` keeps a virtual clock that tests advance explicitly.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from .logging_utils import report


class TimerHandle:
    def __init__(self) -> None:
        self.cancelled = False
        self.fired = False
        self._timer: threading.Timer | None = None
        self._on_cancel: Callable[[], None] | None = None

    @property
    def active(self) -> bool:
        return not self.cancelled and not self.fired

    def cancel(self) -> None:
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()
        if self._on_cancel is not None:
            on_cancel, self._on_cancel = self._on_cancel, None
            on_cancel()


class Scheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[..., object], *args: object) -> TimerHandle: ...

    def dispatch(self, callback: Callable[..., object], *args: object) -> object: ...


class ThreadScheduler:
    def __init__(self, lock: threading.RLock | None = None) -> None:
        self.lock = lock if lock is not None else threading.RLock()
        self._handles: set[TimerHandle] = set()
        self._handles_lock = threading.Lock()
        self._closed = False

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[..., object], *args: object) -> TimerHandle:
        handle = TimerHandle()
        if self._closed:
            handle.cancelled = True
            return handle

        def _fire() -> None:
            self._forget(handle)
            with self.lock:
                if handle.cancelled:
                    return
                handle.fired = True
                try:
                    callback(*args)
                except Exception as exc:
                    report("scheduler", f"timer callback failed: {exc.__class__.__name__}: {exc}")

        timer = threading.Timer(max(0.0, float(delay)), _fire)
        timer.daemon = True
        handle._timer = timer
        handle._on_cancel = lambda: self._forget(handle)
        with self._handles_lock:
            self._handles.add(handle)
        timer.start()
        return handle

    def dispatch(self, callback: Callable[..., object], *args: object) -> object:
        with self.lock:
            return callback(*args)

    def pending(self) -> int:
        with self._handles_lock:
            return len(self._handles)

    def _forget(self, handle: TimerHandle) -> None:
        with self._handles_lock:
            self._handles.discard(handle)

    def shutdown(self) -> None:
        self._closed = True
        with self._handles_lock:
            handles = list(self._handles)
            self._handles.clear()
        for handle in handles:
            handle.cancel()


class ManualScheduler:
    """Virtual-clock scheduler; nothing happens until ``advance`` is called."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._queue: list[tuple[float, int, TimerHandle, Callable[..., object], tuple[object, ...]]] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., object], *args: object) -> TimerHandle:
        handle = TimerHandle()
        due = self._now + max(0.0, float(delay))
        heapq.heappush(self._queue, (due, next(self._counter), handle, callback, args))
        return handle

    def dispatch(self, callback: Callable[..., object], *args: object) -> object:
        return callback(*args)

    def pending(self) -> int:
        return sum(1 for entry in self._queue if entry[2].active)

    def advance(self, seconds: float = 0.0) -> None:
        target = self._now + max(0.0, float(seconds))
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback, args = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, due)
            handle.fired = True
            callback(*args)
        self._now = target

    def run_pending(self) -> None:
        self.advance(0.0)


@dataclass
class BoundedRetry:
    """
    Attempt counter for operations that may fail transiently.

    The first attempt runs immediately; later attempts are scheduled with a
    delay of ``delay * backoff ** (attempt - 1)`` until ``max_attempts`` is
    reached.
    """

    max_attempts: int = 3
    delay: float = 0.2
    backoff: float = 2.0
    attempts: int = 0
    state: str = "idle"
    last_error: BaseException | None = None
    _handle: TimerHandle | None = field(default=None, repr=False)

    def next_delay(self) -> float:
        return max(0.0, self.delay * (self.backoff ** max(0, self.attempts - 1)))

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self.state == "waiting":
            self.state = "cancelled"

    def run(
        self,
        scheduler: Scheduler,
        operation: Callable[[], object],
        *,
        on_success: Callable[[object], None],
        on_exhausted: Callable[[BaseException], None],
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> None:
        self.attempts = 0
        self.last_error = None
        self._attempt(scheduler, operation, on_success, on_exhausted, on_retry)

    def _attempt(
        self,
        scheduler: Scheduler,
        operation: Callable[[], object],
        on_success: Callable[[object], None],
        on_exhausted: Callable[[BaseException], None],
        on_retry: Callable[[int, BaseException], None] | None,
    ) -> None:
        self._handle = None
        self.attempts += 1
        self.state = "running"
        try:
            result = operation()
        except Exception as exc:
            self.last_error = exc
            if self.attempts >= self.max_attempts:
                self.state = "exhausted"
                on_exhausted(exc)
                return
            self.state = "waiting"
            if on_retry is not None:
                on_retry(self.attempts, exc)
            self._handle = scheduler.call_later(
                self.next_delay(),
                self._attempt,
                scheduler,
                operation,
                on_success,
                on_exhausted,
                on_retry,
            )
            return
        self.state = "succeeded"
        on_success(result)


__all__ = [
    "BoundedRetry",
    "ManualScheduler",
    "Scheduler",
    "ThreadScheduler",
    "TimerHandle",
]
