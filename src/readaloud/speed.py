from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Mapping

from .errors import InvalidInput
from .logging_utils import debug_log
from .messaging import MessageBus, MessageType
from .store import DOMAIN_SPEEDS_KEY, SPEED_KEY, DebouncedWriter
from .text import (
    DEFAULT_WORDS_PER_MINUTE,
    estimate_seconds_for_characters,
    format_reading_time,
    origin_of,
)

if TYPE_CHECKING:
    from .coordinator import PlaybackCoordinator

MIN_SPEED = 0.1
MAX_SPEED = 4.0
DEFAULT_SPEED = 1.0
SPEED_STEP = 0.1
SPEED_PRESETS = (0.5, 0.75, 1.0, 1.25, 1.5, 2.0)


def clamp_speed(value: float) -> float:
    return round(min(MAX_SPEED, max(MIN_SPEED, float(value))), 1)


def format_speed(value: float) -> str:
    return f"{round(float(value), 2):g}x"


def _coerce_number(value: object, label: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise InvalidInput(f"{label} must be a number.")
    try:
        number = float(value)
    except ValueError as exc:
        raise InvalidInput(f"{label} must be a number.") from exc
    if math.isnan(number):
        raise InvalidInput(f"{label} must be a number.")
    return number


@dataclass(slots=True)
class SpeedSetting:
    current: float = DEFAULT_SPEED
    default: float = DEFAULT_SPEED
    minimum: float = MIN_SPEED
    maximum: float = MAX_SPEED
    step: float = SPEED_STEP
    presets: tuple[float, ...] = SPEED_PRESETS
    domain_overrides: dict[str, float] = field(default_factory=dict)

    def effective(self, origin: str | None = None) -> float:
        if origin is not None and origin in self.domain_overrides:
            return self.domain_overrides[origin]
        return self.current


class SpeedController:
    """Owns the playback rate; the coordinator only reads it."""

    def __init__(
        self,
        setting: SpeedSetting,
        *,
        coordinator: "PlaybackCoordinator | None" = None,
        writer: DebouncedWriter | None = None,
        bus: MessageBus | None = None,
        words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
    ) -> None:
        self.setting = setting
        self.coordinator = coordinator
        self.writer = writer
        self.bus = bus
        self.words_per_minute = words_per_minute

    @property
    def current(self) -> float:
        return self.setting.current

    def load(self, values: Mapping[str, object]) -> None:
        raw = values.get(SPEED_KEY)
        if isinstance(raw, (int, float)) and not isinstance(raw, bool) and math.isfinite(raw):
            self.setting.current = clamp_speed(raw)
        overrides = values.get(DOMAIN_SPEEDS_KEY)
        if isinstance(overrides, dict):
            self.setting.domain_overrides = {
                str(origin): clamp_speed(value)
                for origin, value in overrides.items()
                if isinstance(value, (int, float)) and not isinstance(value, bool)
            }

    def set_speed(self, value: object, source: str = "user") -> bool:
        speed = clamp_speed(_coerce_number(value, "Speed"))
        if speed == self.setting.current:
            return False
        previous = self.setting.current
        self.setting.current = speed
        debug_log("speed", f"{previous} -> {speed} ({source})")
        if self.coordinator is not None:
            self.coordinator.apply_rate()
        if self.writer is not None:
            self.writer.schedule(SPEED_KEY, speed)
        self._publish(source, previous)
        return True

    def increase_speed(self) -> bool:
        if self.setting.current >= self.setting.maximum:
            return False
        return self.set_speed(self.setting.current + self.setting.step, "increase")

    def decrease_speed(self) -> bool:
        if self.setting.current <= self.setting.minimum:
            return False
        return self.set_speed(self.setting.current - self.setting.step, "decrease")

    def set_preset_speed(self, index: object) -> bool:
        if isinstance(index, bool) or not isinstance(index, int):
            return False
        if not 0 <= index < len(self.setting.presets):
            return False
        return self.set_speed(self.setting.presets[index], "preset")

    def reset_speed(self) -> bool:
        return self.set_speed(self.setting.default, "reset")

    def set_domain_speed(self, origin: str, value: object) -> float:
        key = origin_of(origin)
        if key is None:
            raise InvalidInput("Domain speed requires an origin.")
        speed = clamp_speed(_coerce_number(value, "Speed"))
        self.setting.domain_overrides[key] = speed
        self._domain_changed(key)
        return speed

    def clear_domain_speed(self, origin: str) -> bool:
        key = origin_of(origin)
        if key is None or key not in self.setting.domain_overrides:
            return False
        del self.setting.domain_overrides[key]
        self._domain_changed(key)
        return True

    def speed_for_domain(self, origin: str | None) -> float:
        return self.setting.effective(origin_of(origin))

    def format_speed(self, value: float | None = None) -> str:
        return format_speed(self.setting.current if value is None else value)

    def estimate_reading_time(self, characters: int, speed: float | None = None) -> str:
        rate = self.setting.current if speed is None else float(speed)
        seconds = estimate_seconds_for_characters(characters, rate, self.words_per_minute)
        return format_reading_time(seconds)

    def speed_info(self) -> dict[str, object]:
        return {
            "current": self.setting.current,
            "default": self.setting.default,
            "min": self.setting.minimum,
            "max": self.setting.maximum,
            "step": self.setting.step,
            "presets": list(self.setting.presets),
            "formatted": self.format_speed(),
            "domainOverrides": dict(self.setting.domain_overrides),
        }

    def _domain_changed(self, origin: str) -> None:
        if self.coordinator is not None and self.coordinator.active_origin == origin:
            self.coordinator.apply_rate()
        if self.writer is not None:
            self.writer.schedule(DOMAIN_SPEEDS_KEY, dict(self.setting.domain_overrides))
        if self.bus is not None:
            self.bus.publish(
                MessageType.SPEED_CHANGED,
                {
                    "speed": self.setting.current,
                    "origin": origin,
                    "domainSpeed": self.setting.domain_overrides.get(origin),
                    "source": "domain",
                },
            )

    def _publish(self, source: str, previous: float) -> None:
        if self.bus is None:
            return
        self.bus.publish(
            MessageType.SPEED_CHANGED,
            {
                "speed": self.setting.current,
                "previous": previous,
                "formatted": self.format_speed(),
                "source": source,
            },
        )


__all__ = [
    "DEFAULT_SPEED",
    "MAX_SPEED",
    "MIN_SPEED",
    "SPEED_PRESETS",
    "SPEED_STEP",
    "SpeedController",
    "SpeedSetting",
    "clamp_speed",
    "format_speed",
]
