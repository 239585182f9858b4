from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Mapping

import requests

from .errors import MessagingFailure
from .logging_utils import debug_log, report

DEFAULT_EVENT_LOG_SIZE = 500
DEFAULT_WEBHOOK_TIMEOUT = 2.0
DEFAULT_WEBHOOK_BACKLOG = 100


class MessageType(str, Enum):
    # Events published by the engine.
    PLAYBACK_STATE_CHANGED = "PLAYBACK_STATE_CHANGED"
    SPEED_CHANGED = "SPEED_CHANGED"
    VOLUME_CHANGED = "VOLUME_CHANGED"
    QUEUE_CHANGED = "QUEUE_CHANGED"
    PROGRESS_UPDATE = "PROGRESS_UPDATE"
    PLAYBACK_ERROR = "PLAYBACK_ERROR"
    # Commands accepted by the engine.
    START = "START"
    PAUSE = "PAUSE"
    RESUME = "RESUME"
    TOGGLE_PAUSE = "TOGGLE_PAUSE"
    STOP = "STOP"
    SET_SPEED = "SET_SPEED"
    INCREASE_SPEED = "INCREASE_SPEED"
    DECREASE_SPEED = "DECREASE_SPEED"
    SET_PRESET_SPEED = "SET_PRESET_SPEED"
    RESET_SPEED = "RESET_SPEED"
    SET_DOMAIN_SPEED = "SET_DOMAIN_SPEED"
    CLEAR_DOMAIN_SPEED = "CLEAR_DOMAIN_SPEED"
    SET_VOLUME = "SET_VOLUME"
    ADJUST_VOLUME = "ADJUST_VOLUME"
    TOGGLE_MUTE = "TOGGLE_MUTE"
    SET_DOMAIN_VOLUME = "SET_DOMAIN_VOLUME"
    CLEAR_DOMAIN_VOLUME = "CLEAR_DOMAIN_VOLUME"
    APPLY_VOLUME_PRESET = "APPLY_VOLUME_PRESET"
    SAVE_VOLUME_PRESET = "SAVE_VOLUME_PRESET"
    FADE_VOLUME = "FADE_VOLUME"
    GET_STATE = "GET_STATE"
    QUEUE_ADD = "QUEUE_ADD"
    QUEUE_REMOVE = "QUEUE_REMOVE"
    QUEUE_REORDER = "QUEUE_REORDER"
    QUEUE_NEXT = "QUEUE_NEXT"
    QUEUE_PREVIOUS = "QUEUE_PREVIOUS"
    QUEUE_JUMP = "QUEUE_JUMP"
    QUEUE_PLAY = "QUEUE_PLAY"
    QUEUE_CLEAR = "QUEUE_CLEAR"
    QUEUE_SET_OPTIONS = "QUEUE_SET_OPTIONS"

    @classmethod
    def parse(cls, value: object) -> "MessageType | None":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


@dataclass(slots=True)
class Event:
    type: MessageType
    payload: dict[str, object] = field(default_factory=dict)
    sequence: int = 0
    timestamp: float = 0.0

    def to_payload(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "payload": self.payload,
        }


Subscriber = Callable[[Event], None]


class MessageBus:
    """
    Best-effort fan-out of engine events.

    ``publish`` never raises: a subscriber that fails is reported and the bus
    is flagged as degraded until a later publish reaches every subscriber.
    Subscribers that deliver in the background report their outcome through
    ``record_failure`` and ``record_delivery``; the bus stays degraded while
    any of them is failing.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)
        self._inline_degraded = False
        self._failing: set[str] = set()
        self.failures = 0
        self.last_error: str | None = None

    @property
    def degraded(self) -> bool:
        with self._lock:
            return self._inline_degraded or bool(self._failing)

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return _unsubscribe

    def publish(
        self,
        message_type: MessageType,
        payload: Mapping[str, object] | None = None,
    ) -> Event:
        with self._lock:
            event = Event(
                type=message_type,
                payload=dict(payload or {}),
                sequence=next(self._sequence),
                timestamp=time.time(),
            )
            subscribers = list(self._subscribers)
        delivered = True
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception as exc:
                failure = exc if isinstance(exc, MessagingFailure) else MessagingFailure(
                    f"{exc.__class__.__name__}: {exc}"
                )
                delivered = False
                self._count_failure(str(failure))
                report("messaging", f"{message_type.value} not delivered: {failure}")
        with self._lock:
            if delivered and self._inline_degraded:
                debug_log("messaging", "delivery recovered")
            self._inline_degraded = not delivered
        return event

    def record_failure(self, source: str, error: str) -> None:
        self._count_failure(error)
        with self._lock:
            self._failing.add(source)

    def record_delivery(self, source: str) -> None:
        with self._lock:
            if source not in self._failing:
                return
            self._failing.discard(source)
        debug_log("messaging", f"{source} delivery recovered")

    def status(self) -> dict[str, object]:
        return {
            "degraded": self.degraded,
            "failures": self.failures,
            "lastError": self.last_error,
        }

    def _count_failure(self, error: str) -> None:
        with self._lock:
            self.failures += 1
            self.last_error = error


class EventLog:
    """Ring buffer of recent events for polling clients."""

    def __init__(self, capacity: int = DEFAULT_EVENT_LOG_SIZE) -> None:
        self._events: deque[Event] = deque(maxlen=max(1, int(capacity)))
        self._lock = threading.Lock()

    def __call__(self, event: Event) -> None:
        self.append(event)

    def append(self, event: Event) -> None:
        with self._lock:
            self._events.append(event)

    def since(self, sequence: int = 0, *, limit: int | None = None) -> list[Event]:
        with self._lock:
            events = [event for event in self._events if event.sequence > sequence]
        if limit is not None and limit >= 0:
            events = events[:limit]
        return events

    @property
    def latest_sequence(self) -> int:
        with self._lock:
            return self._events[-1].sequence if self._events else 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class WebhookPublisher:
    """
    POST every event to a subscriber URL from a background worker.

    Calling the publisher only queues the event, so the engine never waits on
    the endpoint. At most ``max_pending`` events wait for delivery; later ones
    are dropped and counted as failures on ``bus``.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_WEBHOOK_TIMEOUT,
        session: requests.Session | None = None,
        event_types: frozenset[MessageType] | None = None,
        max_pending: int = DEFAULT_WEBHOOK_BACKLOG,
        bus: MessageBus | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.event_types = event_types
        self.max_pending = max(1, int(max_pending))
        self.bus = bus
        self.dropped = 0
        self._pending = 0
        self._lock = threading.Lock()
        self._closed = False
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="readaloud-webhook")

    def __call__(self, event: Event) -> None:
        if self.event_types is not None and event.type not in self.event_types:
            return
        with self._lock:
            if self._closed:
                return
            if self._pending >= self.max_pending:
                self.dropped += 1
                dropped = True
            else:
                self._pending += 1
                dropped = False
        if dropped:
            self._failed(f"Webhook {self.url} backlog full; dropped {event.type.value}")
            return
        self.executor.submit(self._deliver, event)

    def send(self, event: Event) -> None:
        try:
            response = self.session.post(self.url, json=event.to_payload(), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise MessagingFailure(f"Webhook {self.url} failed: {exc}") from exc

    def close(self, *, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self.executor.shutdown(wait=wait, cancel_futures=not wait)

    def _deliver(self, event: Event) -> None:
        try:
            self.send(event)
        except MessagingFailure as exc:
            self._failed(str(exc))
        else:
            if self.bus is not None:
                self.bus.record_delivery(self.url)
        finally:
            with self._lock:
                self._pending -= 1

    def _failed(self, error: str) -> None:
        report("messaging", error)
        if self.bus is not None:
            self.bus.record_failure(self.url, error)


__all__ = [
    "Event",
    "EventLog",
    "MessageBus",
    "MessageType",
    "WebhookPublisher",
]
