from __future__ import annotations

import random
import time
import uuid
from dataclasses import dataclass, field
from typing import Mapping

from .config import ITEM_ERROR_POLICIES
from .coordinator import EndReason, PlaybackCoordinator, PlaybackEnded, PlaybackSession
from .errors import DuplicateItem, InvalidInput, QueueFull, ReadAloudError
from .logging_utils import debug_log, report
from .messaging import MessageBus, MessageType
from .scheduler import Scheduler, TimerHandle
from .store import QUEUE_KEY, QUEUE_OPTIONS_KEY, DebouncedWriter
from .text import (
    DEFAULT_WORDS_PER_MINUTE,
    count_words,
    derive_title,
    estimate_reading_seconds,
)


@dataclass(slots=True, frozen=True)
class ItemMetadata:
    word_count: int
    character_count: int
    estimated_reading_time_seconds: float

    @classmethod
    def for_text(cls, text: str, words_per_minute: int = DEFAULT_WORDS_PER_MINUTE) -> "ItemMetadata":
        return cls(
            word_count=count_words(text),
            character_count=len(text),
            estimated_reading_time_seconds=round(
                estimate_reading_seconds(text, 1.0, words_per_minute), 1
            ),
        )

    def to_payload(self) -> dict[str, object]:
        return {
            "wordCount": self.word_count,
            "characterCount": self.character_count,
            "estimatedReadingTimeSeconds": self.estimated_reading_time_seconds,
        }


@dataclass(slots=True, frozen=True)
class QueueItem:
    id: str
    title: str
    text: str
    source: str | None
    added_at: float
    metadata: ItemMetadata

    def to_payload(self, *, include_text: bool = True) -> dict[str, object]:
        payload: dict[str, object] = {
            "id": self.id,
            "title": self.title,
            "source": self.source,
            "addedAt": self.added_at,
            "metadata": self.metadata.to_payload(),
        }
        if include_text:
            payload["text"] = self.text
        return payload

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, object],
        words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
    ) -> "QueueItem | None":
        text = payload.get("text")
        item_id = payload.get("id")
        if not isinstance(text, str) or not text.strip():
            return None
        if not isinstance(item_id, str) or not item_id:
            item_id = uuid.uuid4().hex
        title = payload.get("title")
        source = payload.get("source")
        added_at = payload.get("addedAt")
        return cls(
            id=item_id,
            title=title if isinstance(title, str) and title else derive_title(text),
            text=text,
            source=source if isinstance(source, str) else None,
            added_at=float(added_at) if isinstance(added_at, (int, float)) else time.time(),
            metadata=ItemMetadata.for_text(text, words_per_minute),
        )


@dataclass(slots=True)
class QueueOptions:
    auto_advance: bool = True
    repeat: bool = False
    shuffle: bool = False

    def to_payload(self) -> dict[str, bool]:
        return {"autoAdvance": self.auto_advance, "repeat": self.repeat, "shuffle": self.shuffle}


@dataclass(slots=True)
class QueueState:
    items: list[QueueItem] = field(default_factory=list)
    current_index: int = -1
    options: QueueOptions = field(default_factory=QueueOptions)

    @property
    def total_duration_seconds(self) -> float:
        return round(sum(item.metadata.estimated_reading_time_seconds for item in self.items), 1)

    def to_payload(self, *, include_text: bool = False) -> dict[str, object]:
        payload: dict[str, object] = {
            "items": [item.to_payload(include_text=include_text) for item in self.items],
            "currentIndex": self.current_index,
            "totalDurationSeconds": self.total_duration_seconds,
        }
        payload.update(self.options.to_payload())
        return payload


class QueueManager:
    """
    Ordered reading list with a single "current item" pointer.

    The manager starts items through the coordinator and listens for their
    end: completion (or a failure under the ``skip`` policy) advances after
    ``auto_advance_delay``; stop and replacement never advance.
    """

    def __init__(
        self,
        coordinator: PlaybackCoordinator,
        scheduler: Scheduler,
        *,
        writer: DebouncedWriter | None = None,
        bus: MessageBus | None = None,
        max_items: int = 50,
        reject_duplicates: bool = True,
        max_text_length: int | None = None,
        auto_advance_delay: float = 0.5,
        error_policy: str = "skip",
        words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
        rng: random.Random | None = None,
    ) -> None:
        if error_policy not in ITEM_ERROR_POLICIES:
            raise InvalidInput(f"Unknown item error policy: {error_policy}")
        self.coordinator = coordinator
        self.scheduler = scheduler
        self.writer = writer
        self.bus = bus
        self.max_items = max(1, int(max_items))
        self.reject_duplicates = reject_duplicates
        self.max_text_length = max_text_length
        self.auto_advance_delay = max(0.0, float(auto_advance_delay))
        self.error_policy = error_policy
        self.words_per_minute = words_per_minute
        self.rng = rng or random.Random()
        self.state = QueueState()
        self.completed = False
        self._playing_item_id: str | None = None
        self._session_id: int | None = None
        self._played: set[str] = set()
        self._advance_timer: TimerHandle | None = None
        coordinator.add_end_listener(self._on_playback_ended)

    @property
    def items(self) -> list[QueueItem]:
        return self.state.items

    @property
    def current_index(self) -> int:
        return self.state.current_index

    @property
    def options(self) -> QueueOptions:
        return self.state.options

    @property
    def current_item(self) -> QueueItem | None:
        index = self.state.current_index
        if 0 <= index < len(self.state.items):
            return self.state.items[index]
        return None

    @property
    def playing_item_id(self) -> str | None:
        return self._playing_item_id

    def load(self, values: Mapping[str, object]) -> None:
        raw_items = values.get(QUEUE_KEY)
        items: list[QueueItem] = []
        if isinstance(raw_items, list):
            seen: set[str] = set()
            for entry in raw_items:
                if not isinstance(entry, dict):
                    continue
                item = QueueItem.from_payload(entry, self.words_per_minute)
                if item is None or item.id in seen:
                    continue
                seen.add(item.id)
                items.append(item)
        self.state.items = items[: self.max_items]
        self.state.current_index = 0 if self.state.items else -1
        raw_options = values.get(QUEUE_OPTIONS_KEY)
        if isinstance(raw_options, dict):
            options = self.state.options
            for key, attr in (("autoAdvance", "auto_advance"), ("repeat", "repeat"), ("shuffle", "shuffle")):
                value = raw_options.get(key)
                if isinstance(value, bool):
                    setattr(options, attr, value)

    # Collection edits

    def add_item(self, text: str, title: str | None = None, source: str | None = None) -> QueueItem:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput("Queue item text must not be empty.")
        if self.max_text_length is not None and len(text) > self.max_text_length:
            raise InvalidInput(
                f"Queue item is too long ({len(text)} characters, limit {self.max_text_length})."
            )
        if len(self.state.items) >= self.max_items:
            raise QueueFull(f"Queue is full ({self.max_items} items).")
        if self.reject_duplicates and any(item.text == text for item in self.state.items):
            raise DuplicateItem("This text is already in the queue.")
        clean_title = title.strip() if isinstance(title, str) else ""
        item = QueueItem(
            id=uuid.uuid4().hex,
            title=clean_title or derive_title(text),
            text=text,
            source=source if isinstance(source, str) and source.strip() else None,
            added_at=time.time(),
            metadata=ItemMetadata.for_text(text, self.words_per_minute),
        )
        self.state.items.append(item)
        if self.state.current_index == -1:
            self.state.current_index = 0
        self.completed = False
        debug_log("queue", f"added {item.id} ({item.metadata.word_count} words)")
        self._items_changed("add")
        return item

    def remove_item(self, item_id: str) -> bool:
        index = self._index_of(item_id)
        if index is None:
            return False
        was_playing = item_id == self._playing_item_id
        items = self.state.items
        items.pop(index)
        current = self.state.current_index
        if index < current:
            current -= 1
        elif index == current and current >= len(items):
            current = len(items) - 1
        self.state.current_index = current if items else -1
        self._played.discard(item_id)
        if was_playing:
            self._playing_item_id = None
            self._session_id = None
            self.coordinator.stop()
        self._items_changed("remove")
        return True

    def reorder_items(self, from_index: int, to_index: int) -> bool:
        items = self.state.items
        if not (_valid_index(from_index, items) and _valid_index(to_index, items)):
            return False
        if from_index == to_index:
            return False
        current = self.current_item
        item = items.pop(from_index)
        items.insert(to_index, item)
        if current is not None:
            self.state.current_index = items.index(current)
        self._items_changed("reorder")
        return True

    def clear(self) -> None:
        self.cancel_pending_advance()
        playing = self._playing_item_id is not None
        self._playing_item_id = None
        self._session_id = None
        self.state.items = []
        self.state.current_index = -1
        self._played.clear()
        self.completed = False
        if playing:
            self.coordinator.stop()
        self._items_changed("clear")

    def set_options(
        self,
        *,
        auto_advance: bool | None = None,
        repeat: bool | None = None,
        shuffle: bool | None = None,
    ) -> QueueOptions:
        options = self.state.options
        if auto_advance is not None:
            options.auto_advance = bool(auto_advance)
        if repeat is not None:
            options.repeat = bool(repeat)
        if shuffle is not None:
            if bool(shuffle) and not options.shuffle:
                self._played = {self.current_item.id} if self.current_item else set()
            options.shuffle = bool(shuffle)
        if self.writer is not None:
            self.writer.schedule(QUEUE_OPTIONS_KEY, options.to_payload())
        self._publish("options")
        return options

    # Navigation

    def move_to_next(self) -> bool:
        index = self._next_index()
        if index is None:
            return False
        self.state.current_index = index
        self._publish("next")
        return True

    def move_to_previous(self) -> bool:
        items = self.state.items
        current = self.state.current_index
        if not items:
            return False
        if self.state.options.shuffle and len(items) > 1:
            index = self.rng.choice([i for i in range(len(items)) if i != current])
        elif current > 0:
            index = current - 1
        elif self.state.options.repeat:
            index = len(items) - 1
        else:
            return False
        self.state.current_index = index
        self._publish("previous")
        return True

    def jump_to_item(self, index: int) -> bool:
        if not _valid_index(index, self.state.items):
            return False
        self.state.current_index = index
        self._publish("jump")
        return True

    def play(self, index: int | None = None) -> PlaybackSession:
        if not self.state.items:
            raise InvalidInput("Queue is empty.")
        if index is not None and not self.jump_to_item(index):
            raise InvalidInput(f"No queue item at index {index}.")
        self.cancel_pending_advance()
        item = self.current_item
        assert item is not None
        self._playing_item_id = item.id
        self._session_id = None
        try:
            session = self.coordinator.start(item.text, origin=item.source)
        except ReadAloudError:
            self._playing_item_id = None
            raise
        self._session_id = session.id
        self._played.add(item.id)
        self.completed = False
        debug_log("queue", f"playing {item.id} (index {self.state.current_index})")
        self._publish("play")
        return session

    def skip_next(self) -> PlaybackSession | None:
        if not self.move_to_next():
            return None
        return self.play()

    def skip_previous(self) -> PlaybackSession | None:
        if not self.move_to_previous():
            return None
        return self.play()

    def cancel_pending_advance(self) -> None:
        if self._advance_timer is not None:
            self._advance_timer.cancel()
            self._advance_timer = None

    @property
    def advance_pending(self) -> bool:
        return self._advance_timer is not None and self._advance_timer.active

    # Internals

    def _next_index(self) -> int | None:
        """
        Index to auto-advance to, or None when playback should stop.

        Shuffle picks a random item other than the current one among those
        not yet played. Once every item has played, shuffle only continues
        when repeat is on; it then starts a fresh round.
        """
        items = self.state.items
        current = self.state.current_index
        if not items:
            return None
        options = self.state.options
        if options.shuffle and len(items) > 1:
            candidates = [
                i for i, item in enumerate(items) if i != current and item.id not in self._played
            ]
            if not candidates:
                if not options.repeat:
                    return None
                self._played = {items[current].id} if 0 <= current < len(items) else set()
                candidates = [i for i in range(len(items)) if i != current]
            return self.rng.choice(candidates)
        if current < len(items) - 1:
            return current + 1
        if options.repeat:
            return 0
        return None

    def _on_playback_ended(self, event: PlaybackEnded) -> None:
        if self._session_id is None or event.session_id != self._session_id:
            return
        item_id = self._playing_item_id
        self._playing_item_id = None
        self._session_id = None
        if event.reason is EndReason.COMPLETED:
            if self.state.options.auto_advance:
                self._schedule_advance(None)
        elif event.reason is EndReason.FAILED:
            if self.error_policy == "halt":
                debug_log("queue", f"halting after failed item {item_id}")
                self.coordinator.reset()
                self._publish("halted")
            elif self.state.options.auto_advance:
                self._schedule_advance(item_id)

    def _schedule_advance(self, failed_item_id: str | None) -> None:
        self.cancel_pending_advance()
        self._advance_timer = self.scheduler.call_later(
            self.auto_advance_delay, self._auto_advance, failed_item_id
        )

    def _auto_advance(self, failed_item_id: str | None) -> None:
        self._advance_timer = None
        moved = self.move_to_next()
        if moved and failed_item_id is not None:
            current = self.current_item
            if current is not None and current.id == failed_item_id:
                moved = False
        if not moved:
            self.completed = True
            self.coordinator.reset()
            debug_log("queue", "queue complete")
            self._publish("complete")
            return
        try:
            self.play()
        except ReadAloudError as exc:
            report("queue", f"could not start next item: {exc}")

    def _index_of(self, item_id: str) -> int | None:
        for index, item in enumerate(self.state.items):
            if item.id == item_id:
                return index
        return None

    def _items_changed(self, action: str) -> None:
        if self.writer is not None:
            self.writer.schedule(QUEUE_KEY, [item.to_payload() for item in self.state.items])
        self._publish(action)

    def _publish(self, action: str) -> None:
        if self.bus is None:
            return
        payload = self.state.to_payload()
        payload["action"] = action
        payload["playingItemId"] = self._playing_item_id
        payload["completed"] = self.completed
        self.bus.publish(MessageType.QUEUE_CHANGED, payload)


def _valid_index(index: object, items: list[QueueItem]) -> bool:
    return isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(items)


__all__ = [
    "ItemMetadata",
    "QueueItem",
    "QueueManager",
    "QueueOptions",
    "QueueState",
]
