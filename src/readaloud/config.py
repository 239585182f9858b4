from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

ENV_PREFIX = "READALOUD_"

DEFAULT_MAX_QUEUE_ITEMS = 50
DEFAULT_MAX_TEXT_LENGTH = 100_000
DEFAULT_AUTO_ADVANCE_DELAY = 0.5
DEFAULT_PERSIST_DEBOUNCE = 0.5
DEFAULT_FADE_DURATION = 0.05
DEFAULT_FADE_STEPS = 5
DEFAULT_PROGRESS_INTERVAL = 1.0
DEFAULT_WORDS_PER_MINUTE = 150
ITEM_ERROR_POLICIES = ("skip", "halt")


@dataclass(slots=True)
class EngineConfig:
    store_path: Path | None = None
    max_queue_items: int = DEFAULT_MAX_QUEUE_ITEMS
    reject_duplicate_items: bool = True
    max_text_length: int = DEFAULT_MAX_TEXT_LENGTH
    auto_advance_delay: float = DEFAULT_AUTO_ADVANCE_DELAY
    persist_debounce: float = DEFAULT_PERSIST_DEBOUNCE
    fade_duration: float = DEFAULT_FADE_DURATION
    fade_steps: int = DEFAULT_FADE_STEPS
    progress_interval: float = DEFAULT_PROGRESS_INTERVAL
    item_error_policy: str = "skip"
    load_attempts: int = 3
    load_retry_delay: float = 0.2
    words_per_minute: int = DEFAULT_WORDS_PER_MINUTE

    def __post_init__(self) -> None:
        if self.store_path is not None:
            self.store_path = Path(self.store_path).expanduser()
        self.max_queue_items = max(1, int(self.max_queue_items))
        self.max_text_length = max(1, int(self.max_text_length))
        self.auto_advance_delay = max(0.0, float(self.auto_advance_delay))
        self.persist_debounce = max(0.0, float(self.persist_debounce))
        self.fade_duration = max(0.0, float(self.fade_duration))
        self.fade_steps = max(1, int(self.fade_steps))
        self.progress_interval = max(0.05, float(self.progress_interval))
        self.load_attempts = max(1, int(self.load_attempts))
        self.load_retry_delay = max(0.0, float(self.load_retry_delay))
        self.words_per_minute = max(1, int(self.words_per_minute))
        if self.item_error_policy not in ITEM_ERROR_POLICIES:
            self.item_error_policy = "skip"

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: object,
    ) -> "EngineConfig":
        """
        Build a config from ``READALOUD_*`` variables.

        Values that fail to parse are ignored and the default is kept. Keyword
        overrides win over the environment.
        """
        if environ is None:
            environ = os.environ
        values: dict[str, object] = {}
        for field in dataclasses.fields(cls):
            raw = environ.get(f"{ENV_PREFIX}{field.name.upper()}")
            if raw is None or not raw.strip():
                continue
            parsed = _parse_field_value(field.name, field.default, raw.strip())
            if parsed is not None:
                values[field.name] = parsed
        for key, value in overrides.items():
            if value is not None:
                values[key] = value
        return cls(**values)


def _parse_field_value(name: str, default: object, raw: str) -> object | None:
    if name == "store_path":
        return Path(raw)
    if isinstance(default, bool):
        lowered = raw.lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        return None
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            return None
    if isinstance(default, float):
        try:
            return float(raw)
        except ValueError:
            return None
    return raw


__all__ = ["EngineConfig", "ENV_PREFIX", "ITEM_ERROR_POLICIES"]
