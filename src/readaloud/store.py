from __future__ import annotations

import copy
import json
import os
import threading
from pathlib import Path
from typing import Mapping, Protocol

from .errors import PersistenceFailure
from .logging_utils import debug_log, report
from .scheduler import Scheduler, TimerHandle

STORE_VERSION = 1

SPEED_KEY = "speed"
DOMAIN_SPEEDS_KEY = "domainSpeedOverrides"
VOLUME_KEY = "volume"
MUTED_KEY = "isMuted"
PREVIOUS_VOLUME_KEY = "previousVolume"
VOLUME_PRESETS_KEY = "volumePresets"
DOMAIN_VOLUMES_KEY = "domainVolumeOverrides"
QUEUE_KEY = "queue"
QUEUE_OPTIONS_KEY = "queueOptions"


class KeyValueStore(Protocol):
    def load(self) -> dict[str, object]: ...

    def get(self, key: str, default: object = None) -> object: ...

    def set(self, key: str, value: object) -> None: ...


class MemoryStore:
    def __init__(self, initial: Mapping[str, object] | None = None) -> None:
        self._data: dict[str, object] = copy.deepcopy(dict(initial or {}))
        self.writes: list[tuple[str, object]] = []

    def load(self) -> dict[str, object]:
        return copy.deepcopy(self._data)

    def get(self, key: str, default: object = None) -> object:
        return copy.deepcopy(self._data.get(key, default))

    def set(self, key: str, value: object) -> None:
        snapshot = copy.deepcopy(value)
        self._data[key] = snapshot
        self.writes.append((key, snapshot))


class JsonFileStore:
    """
    Key-value store persisted as one JSON object.

    Writes go to a temporary sibling file that replaces the target, so a crash
    never leaves a half-written store behind. A malformed file loads as empty.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()
        self._data: dict[str, object] | None = None

    def load(self) -> dict[str, object]:
        with self._lock:
            self._data = self._read()
            return copy.deepcopy(self._data)

    def get(self, key: str, default: object = None) -> object:
        with self._lock:
            if self._data is None:
                self._data = self._read()
            return copy.deepcopy(self._data.get(key, default))

    def set(self, key: str, value: object) -> None:
        with self._lock:
            if self._data is None:
                try:
                    self._data = self._read()
                except PersistenceFailure:
                    self._data = {}
            self._data[key] = copy.deepcopy(value)
            self._write(self._data)

    def _read(self) -> dict[str, object]:
        if not self.path.exists():
            return {}
        try:
            raw_text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceFailure(f"Failed to read store {self.path}: {exc}") from exc
        try:
            raw = json.loads(raw_text)
        except json.JSONDecodeError:
            report("store", f"Ignoring malformed store file {self.path}")
            return {}
        if not isinstance(raw, dict):
            return {}
        values = raw.get("values")
        if isinstance(values, dict):
            return values
        return {}

    def _write(self, data: Mapping[str, object]) -> None:
        payload = {"version": STORE_VERSION, "values": dict(data)}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps(payload, ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            tmp_path.unlink(missing_ok=True)
            raise PersistenceFailure(f"Failed to write store {self.path}: {exc}") from exc


class DebouncedWriter:
    """
    One coalescing timer per persisted key.

    Scheduling a key again cancels its pending timer and restarts the window,
    so a burst of changes produces a single write carrying the final value.
    Write failures are reported; in-memory state stays authoritative.
    """

    def __init__(self, store: KeyValueStore, scheduler: Scheduler, delay: float) -> None:
        self.store = store
        self.scheduler = scheduler
        self.delay = max(0.0, float(delay))
        self._pending: dict[str, tuple[TimerHandle, object]] = {}
        self.failures = 0
        self.last_error: PersistenceFailure | None = None

    def schedule(self, key: str, value: object) -> None:
        previous = self._pending.pop(key, None)
        if previous is not None:
            previous[0].cancel()
        snapshot = copy.deepcopy(value)
        handle = self.scheduler.call_later(self.delay, self._write, key)
        self._pending[key] = (handle, snapshot)

    def pending_keys(self) -> list[str]:
        return sorted(self._pending)

    def flush(self) -> None:
        for key in list(self._pending):
            handle, _ = self._pending[key]
            handle.cancel()
            self._write(key)

    def _write(self, key: str) -> None:
        entry = self._pending.pop(key, None)
        if entry is None:
            return
        _, value = entry
        try:
            self.store.set(key, value)
        except PersistenceFailure as exc:
            self.failures += 1
            self.last_error = exc
            report("store", str(exc))
            return
        debug_log("store", f"persisted {key}")


__all__ = [
    "DOMAIN_SPEEDS_KEY",
    "DOMAIN_VOLUMES_KEY",
    "DebouncedWriter",
    "JsonFileStore",
    "KeyValueStore",
    "MUTED_KEY",
    "MemoryStore",
    "PREVIOUS_VOLUME_KEY",
    "QUEUE_KEY",
    "QUEUE_OPTIONS_KEY",
    "SPEED_KEY",
    "VOLUME_KEY",
    "VOLUME_PRESETS_KEY",
]
