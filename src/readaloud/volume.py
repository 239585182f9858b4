"""
Volume control.

``VolumeSetting`` is the shared value the coordinator reads when it builds an
utterance; only ``VolumeController`` mutates it. Effective volume resolves as
mute, then per-domain override, then the global value.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Mapping

from .errors import InvalidInput
from .logging_utils import debug_log
from .messaging import MessageBus, MessageType
from .scheduler import Scheduler, TimerHandle
from .store import (
    DOMAIN_VOLUMES_KEY,
    MUTED_KEY,
    PREVIOUS_VOLUME_KEY,
    VOLUME_KEY,
    VOLUME_PRESETS_KEY,
    DebouncedWriter,
)
from .text import origin_of

if TYPE_CHECKING:
    from .coordinator import PlaybackCoordinator

MIN_VOLUME = 0
MAX_VOLUME = 100
DEFAULT_VOLUME = 70
MAX_CUSTOM_PRESETS = 5
MAX_DOMAIN_OVERRIDES = 100
PRUNED_DOMAIN_OVERRIDES = 80


@dataclass(slots=True, frozen=True)
class VolumePreset:
    id: str
    name: str
    volume: int
    builtin: bool = True

    def to_payload(self) -> dict[str, object]:
        return {"id": self.id, "name": self.name, "volume": self.volume, "builtin": self.builtin}


BUILTIN_PRESETS = (
    VolumePreset("quiet", "Quiet", 30),
    VolumePreset("normal", "Normal", 70),
    VolumePreset("loud", "Loud", 90),
    VolumePreset("office", "Office", 50),
    VolumePreset("headphones", "Headphones", 60),
)


def clamp_volume(value: float) -> int:
    return int(round(min(MAX_VOLUME, max(MIN_VOLUME, float(value)))))


def _coerce_volume(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise InvalidInput("Volume must be a number.")
    try:
        number = float(value)
    except ValueError as exc:
        raise InvalidInput("Volume must be a number.") from exc
    if math.isnan(number):
        raise InvalidInput("Volume must be a number.")
    return clamp_volume(number)


@dataclass(slots=True)
class VolumeSetting:
    current: int = DEFAULT_VOLUME
    is_muted: bool = False
    previous_volume: int = DEFAULT_VOLUME
    domain_overrides: dict[str, int] = field(default_factory=dict)

    def effective(self, origin: str | None = None) -> int:
        if self.is_muted:
            return 0
        if origin is not None and origin in self.domain_overrides:
            return self.domain_overrides[origin]
        return self.current


class VolumeController:
    def __init__(
        self,
        setting: VolumeSetting,
        scheduler: Scheduler,
        *,
        coordinator: "PlaybackCoordinator | None" = None,
        writer: DebouncedWriter | None = None,
        bus: MessageBus | None = None,
        fade_duration: float = 0.05,
        fade_steps: int = 5,
    ) -> None:
        self.setting = setting
        self.scheduler = scheduler
        self.coordinator = coordinator
        self.writer = writer
        self.bus = bus
        self.fade_duration = max(0.0, float(fade_duration))
        self.fade_steps = max(1, int(fade_steps))
        self.custom_presets: list[VolumePreset] = []
        self._fade_timers: list[TimerHandle] = []

    def load(self, values: Mapping[str, object]) -> None:
        raw = values.get(VOLUME_KEY)
        if isinstance(raw, (int, float)) and not isinstance(raw, bool) and math.isfinite(raw):
            self.setting.current = clamp_volume(raw)
        previous = values.get(PREVIOUS_VOLUME_KEY)
        if isinstance(previous, (int, float)) and not isinstance(previous, bool) and math.isfinite(previous):
            self.setting.previous_volume = clamp_volume(previous)
        muted = values.get(MUTED_KEY)
        if isinstance(muted, bool):
            self.setting.is_muted = muted
        if self.setting.current == 0:
            self.setting.is_muted = True
        overrides = values.get(DOMAIN_VOLUMES_KEY)
        if isinstance(overrides, dict):
            self.setting.domain_overrides = {
                str(origin): clamp_volume(value)
                for origin, value in overrides.items()
                if isinstance(value, (int, float)) and not isinstance(value, bool)
            }
        presets = values.get(VOLUME_PRESETS_KEY)
        if isinstance(presets, list):
            loaded: list[VolumePreset] = []
            for entry in presets:
                if not isinstance(entry, dict):
                    continue
                preset_id = entry.get("id")
                name = entry.get("name")
                volume = entry.get("volume")
                if not isinstance(preset_id, str) or not isinstance(name, str):
                    continue
                if isinstance(volume, bool) or not isinstance(volume, (int, float)):
                    continue
                loaded.append(VolumePreset(preset_id, name, clamp_volume(volume), builtin=False))
            self.custom_presets = loaded[-MAX_CUSTOM_PRESETS:]

    # Global volume

    def set_volume(self, value: object, source: str = "user", *, smooth: bool = True) -> bool:
        volume = _coerce_volume(value)
        setting = self.setting
        if volume == setting.current and setting.is_muted == (volume == 0):
            return False
        before = self._effective()
        setting.current = volume
        if volume == 0:
            setting.is_muted = True
        else:
            setting.is_muted = False
            setting.previous_volume = volume
        self._changed(before, source, smooth=smooth)
        return True

    def adjust_volume(self, delta: object) -> bool:
        step = _coerce_delta(delta)
        return self.set_volume(self.setting.current + step, "adjust")

    def toggle_mute(self) -> bool:
        """Flip the mute state and return the new value."""
        if self.setting.is_muted:
            self.unmute()
        else:
            self.mute()
        return self.setting.is_muted

    def mute(self) -> bool:
        setting = self.setting
        if setting.is_muted:
            return False
        before = self._effective()
        if setting.current > 0:
            setting.previous_volume = setting.current
        setting.current = 0
        setting.is_muted = True
        self._changed(before, "mute")
        return True

    def unmute(self) -> bool:
        setting = self.setting
        if not setting.is_muted:
            return False
        before = self._effective()
        restored = setting.previous_volume if setting.previous_volume > 0 else DEFAULT_VOLUME
        setting.current = restored
        setting.previous_volume = restored
        setting.is_muted = False
        self._changed(before, "unmute")
        return True

    # Domain overrides

    def set_domain_volume(self, origin: str, value: object) -> int:
        key = origin_of(origin)
        if key is None:
            raise InvalidInput("Domain volume requires an origin.")
        volume = _coerce_volume(value)
        before = self._effective()
        overrides = self.setting.domain_overrides
        overrides.pop(key, None)
        overrides[key] = volume
        if len(overrides) > MAX_DOMAIN_OVERRIDES:
            kept = list(overrides.items())[-PRUNED_DOMAIN_OVERRIDES:]
            overrides.clear()
            overrides.update(kept)
            debug_log("volume", f"pruned domain overrides to {len(kept)}")
        self._domain_changed(key, before)
        return volume

    def clear_domain_volume(self, origin: str) -> bool:
        key = origin_of(origin)
        if key is None or key not in self.setting.domain_overrides:
            return False
        before = self._effective()
        del self.setting.domain_overrides[key]
        self._domain_changed(key, before)
        return True

    def effective_volume(self, origin: str | None = None) -> int:
        return self.setting.effective(origin_of(origin))

    # Presets

    def presets(self) -> list[VolumePreset]:
        return list(BUILTIN_PRESETS) + list(self.custom_presets)

    def apply_preset(self, preset_id: str) -> bool:
        for preset in self.presets():
            if preset.id == preset_id:
                return self.set_volume(preset.volume, "preset")
        raise InvalidInput(f"Unknown volume preset: {preset_id}")

    def save_preset(self, name: str, volume: object = None) -> VolumePreset:
        label = name.strip() if isinstance(name, str) else ""
        if not label:
            raise InvalidInput("Preset name is required.")
        value = self.setting.current if volume is None else _coerce_volume(volume)
        preset_id = "custom-" + (re.sub(r"[^a-z0-9]+", "-", label.lower()).strip("-") or "preset")
        self.custom_presets = [preset for preset in self.custom_presets if preset.id != preset_id]
        preset = VolumePreset(preset_id, label, value, builtin=False)
        self.custom_presets.append(preset)
        if len(self.custom_presets) > MAX_CUSTOM_PRESETS:
            self.custom_presets = self.custom_presets[-MAX_CUSTOM_PRESETS:]
        if self.writer is not None:
            self.writer.schedule(
                VOLUME_PRESETS_KEY,
                [{"id": p.id, "name": p.name, "volume": p.volume} for p in self.custom_presets],
            )
        return preset

    # Fades on the live gain path

    def fade_out(self, duration: float | None = None) -> bool:
        coordinator = self.coordinator
        if coordinator is None or not coordinator.live_volume_available():
            return False
        self._fade(self._effective(), 0, duration, finish=False)
        return True

    def fade_in(self, duration: float | None = None) -> bool:
        coordinator = self.coordinator
        if coordinator is None or not coordinator.live_volume_available():
            return False
        self._fade(0, self._effective(), duration, finish=True)
        return True

    def volume_state(self, origin: str | None = None) -> dict[str, object]:
        key = origin_of(origin)
        return {
            "volume": self.setting.current,
            "muted": self.setting.is_muted,
            "previousVolume": self.setting.previous_volume,
            "effectiveVolume": self.setting.effective(key),
            "origin": key,
            "domainVolume": self.setting.domain_overrides.get(key) if key else None,
            "presets": [preset.to_payload() for preset in self.presets()],
        }

    def _effective(self) -> int:
        origin = self.coordinator.active_origin if self.coordinator is not None else None
        return self.setting.effective(origin)

    def _cancel_fade(self) -> None:
        for handle in self._fade_timers:
            handle.cancel()
        self._fade_timers = []

    def _fade(self, start: int, end: int, duration: float | None, *, finish: bool) -> None:
        self._cancel_fade()
        coordinator = self.coordinator
        if coordinator is None:
            return
        total = self.fade_duration if duration is None else max(0.0, float(duration))
        steps = self.fade_steps
        for index in range(1, steps + 1):
            level = start + (end - start) * index / steps
            delay = total * index / steps
            last = index == steps
            if last and finish:
                self._fade_timers.append(self.scheduler.call_later(delay, coordinator.apply_volume))
            else:
                self._fade_timers.append(self.scheduler.call_later(delay, coordinator.set_gain, level))

    def _apply(self, before: int, smooth: bool) -> None:
        coordinator = self.coordinator
        if coordinator is None:
            return
        after = self._effective()
        if after == before:
            return
        if smooth and self.fade_duration > 0 and coordinator.live_volume_available():
            self._fade(before, after, None, finish=True)
        else:
            self._cancel_fade()
            coordinator.apply_volume()

    def _changed(self, before: int, source: str, *, smooth: bool = True) -> None:
        setting = self.setting
        debug_log("volume", f"volume={setting.current} muted={setting.is_muted} ({source})")
        self._apply(before, smooth)
        if self.writer is not None:
            self.writer.schedule(VOLUME_KEY, setting.current)
            self.writer.schedule(MUTED_KEY, setting.is_muted)
            self.writer.schedule(PREVIOUS_VOLUME_KEY, setting.previous_volume)
        if self.bus is not None:
            self.bus.publish(
                MessageType.VOLUME_CHANGED,
                {
                    "volume": setting.current,
                    "muted": setting.is_muted,
                    "effectiveVolume": self._effective(),
                    "source": source,
                },
            )

    def _domain_changed(self, origin: str, before: int) -> None:
        if self.coordinator is not None and self.coordinator.active_origin == origin:
            self._apply(before, True)
        if self.writer is not None:
            self.writer.schedule(DOMAIN_VOLUMES_KEY, dict(self.setting.domain_overrides))
        if self.bus is not None:
            self.bus.publish(
                MessageType.VOLUME_CHANGED,
                {
                    "volume": self.setting.current,
                    "muted": self.setting.is_muted,
                    "origin": origin,
                    "domainVolume": self.setting.domain_overrides.get(origin),
                    "effectiveVolume": self._effective(),
                    "source": "domain",
                },
            )


def _coerce_delta(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise InvalidInput("Volume delta must be a number.")
    try:
        number = float(value)
    except ValueError as exc:
        raise InvalidInput("Volume delta must be a number.") from exc
    if not math.isfinite(number):
        raise InvalidInput("Volume delta must be a number.")
    return number


__all__ = [
    "BUILTIN_PRESETS",
    "DEFAULT_VOLUME",
    "MAX_VOLUME",
    "MIN_VOLUME",
    "VolumeController",
    "VolumePreset",
    "VolumeSetting",
    "clamp_volume",
]
