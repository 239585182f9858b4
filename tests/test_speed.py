from __future__ import annotations

import pytest

from readaloud.errors import InvalidInput
from readaloud.messaging import MessageBus, MessageType
from readaloud.scheduler import ManualScheduler
from readaloud.speed import SpeedController, SpeedSetting, format_speed
from readaloud.store import DOMAIN_SPEEDS_KEY, SPEED_KEY, DebouncedWriter, MemoryStore


def _controller() -> tuple[SpeedController, MemoryStore, ManualScheduler, list]:
    scheduler = ManualScheduler()
    store = MemoryStore()
    bus = MessageBus()
    events: list = []
    bus.subscribe(events.append)
    controller = SpeedController(
        SpeedSetting(),
        writer=DebouncedWriter(store, scheduler, 0.5),
        bus=bus,
    )
    return controller, store, scheduler, events


@pytest.mark.parametrize(
    "value, expected",
    [
        (0.1, 0.1),
        (1.0, 1.0),
        (1.26, 1.3),
        (2.04, 2.0),
        (4.0, 4.0),
        (0.0, 0.1),
        (-3, 0.1),
        (9.5, 4.0),
    ],
)
def test_set_speed_clamps_and_rounds(value, expected) -> None:
    controller, _, _, _ = _controller()
    controller.set_speed(value)
    assert controller.current == expected


def test_set_speed_rejects_non_numbers() -> None:
    controller, _, _, _ = _controller()
    with pytest.raises(InvalidInput):
        controller.set_speed("fast")
    with pytest.raises(InvalidInput):
        controller.set_speed(True)
    assert controller.current == 1.0


def test_unchanged_speed_does_not_notify_or_persist() -> None:
    controller, store, scheduler, events = _controller()
    assert controller.set_speed(1.0) is False
    scheduler.advance(1)
    assert events == []
    assert store.writes == []


def test_slider_drag_coalesces_into_one_write() -> None:
    controller, store, scheduler, events = _controller()
    for value in (1.1, 1.2, 1.3, 1.4, 1.5):
        controller.set_speed(value, "slider")
        scheduler.advance(0.1)
    assert store.writes == []
    scheduler.advance(0.5)
    assert store.writes == [(SPEED_KEY, 1.5)]
    assert [event.payload["speed"] for event in events if event.type is MessageType.SPEED_CHANGED] == [
        1.1,
        1.2,
        1.3,
        1.4,
        1.5,
    ]


def test_increase_and_decrease_stop_at_bounds() -> None:
    controller, _, _, _ = _controller()
    controller.set_speed(3.9)
    assert controller.increase_speed() is True
    assert controller.current == 4.0
    assert controller.increase_speed() is False
    controller.set_speed(0.2)
    assert controller.decrease_speed() is True
    assert controller.current == 0.1
    assert controller.decrease_speed() is False


def test_presets_and_reset() -> None:
    controller, _, _, events = _controller()
    assert controller.set_preset_speed(4) is True
    assert controller.current == 1.5
    assert events[-1].payload["source"] == "preset"
    assert controller.set_preset_speed(99) is False
    assert controller.current == 1.5
    assert controller.reset_speed() is True
    assert controller.current == 1.0


def test_domain_speed_overrides_global() -> None:
    controller, store, scheduler, _ = _controller()
    controller.set_domain_speed("https://news.example.com/a", 1.75)
    assert controller.speed_for_domain("news.example.com") == 1.8
    assert controller.speed_for_domain("other.org") == 1.0
    scheduler.advance(1)
    assert (DOMAIN_SPEEDS_KEY, {"news.example.com": 1.8}) in store.writes
    assert controller.clear_domain_speed("news.example.com") is True
    assert controller.clear_domain_speed("news.example.com") is False


def test_format_and_reading_time() -> None:
    controller, _, _, _ = _controller()
    assert format_speed(1.5) == "1.5x"
    assert format_speed(1.0) == "1x"
    assert controller.estimate_reading_time(750) == "1m"
    assert controller.estimate_reading_time(250) == "20s"
    assert controller.estimate_reading_time(750 * 65) == "1h 5m"
    info = controller.speed_info()
    assert info["min"] == 0.1 and info["max"] == 4.0
    assert info["presets"] == [0.5, 0.75, 1.0, 1.25, 1.5, 2.0]


def test_load_restores_persisted_values() -> None:
    controller, _, _, _ = _controller()
    controller.load({SPEED_KEY: 7.0, DOMAIN_SPEEDS_KEY: {"a.com": 0.5, "b.com": "x"}})
    assert controller.current == 4.0
    assert controller.setting.domain_overrides == {"a.com": 0.5}
