from __future__ import annotations

import random

import pytest

from readaloud.coordinator import PlaybackCoordinator, PlaybackState
from readaloud.errors import DuplicateItem, InvalidInput, QueueFull
from readaloud.progress import ProgressTracker
from readaloud.reading_queue import QueueManager
from readaloud.scheduler import ManualScheduler
from readaloud.speech import SimulatedSpeech
from readaloud.speed import SpeedSetting
from readaloud.store import QUEUE_KEY, QUEUE_OPTIONS_KEY, DebouncedWriter, MemoryStore
from readaloud.volume import VolumeSetting

# One-word items: SimulatedSpeech at 150 wpm finishes each in 0.4 s.
WORD_TIME = 0.45
ADVANCE_TIME = 0.55


def _queue(**kwargs):
    scheduler = ManualScheduler()
    speech = SimulatedSpeech(scheduler)
    coordinator = PlaybackCoordinator(
        speech,
        SpeedSetting(),
        VolumeSetting(),
        ProgressTracker(scheduler),
        scheduler,
        progress_interval=None,
    )
    store = MemoryStore()
    kwargs.setdefault("rng", random.Random(7))
    queue = QueueManager(
        coordinator,
        scheduler,
        writer=DebouncedWriter(store, scheduler, 0.5),
        auto_advance_delay=0.5,
        **kwargs,
    )
    return queue, coordinator, speech, scheduler, store


def _fill(queue: QueueManager, *texts: str) -> list[str]:
    return [queue.add_item(text).id for text in texts]


def _titles(queue: QueueManager) -> list[str]:
    return [item.title for item in queue.items]


def test_add_item_derives_title_and_metadata() -> None:
    queue, *_ = _queue()
    text = "Line one\nline two " + "word " * 30
    item = queue.add_item(text, source="https://example.com/post")
    assert item.title.startswith("Line one line two")
    assert len(item.title) <= 60 and item.title.endswith("…")
    assert item.metadata.word_count == 34
    assert item.metadata.character_count == len(text)
    assert item.metadata.estimated_reading_time_seconds == pytest.approx(13.6)
    assert queue.current_index == 0
    assert queue.state.total_duration_seconds == pytest.approx(13.6)


def test_add_item_rejections() -> None:
    queue, *_ = _queue(max_items=2)
    with pytest.raises(InvalidInput):
        queue.add_item("   ")
    queue.add_item("Alpha")
    with pytest.raises(DuplicateItem):
        queue.add_item("Alpha")
    queue.add_item("Bravo")
    with pytest.raises(QueueFull):
        queue.add_item("Charlie")


def test_duplicates_allowed_when_policy_disabled() -> None:
    queue, *_ = _queue(reject_duplicates=False)
    queue.add_item("Alpha")
    queue.add_item("Alpha")
    assert len(queue.items) == 2


def test_reorder_keeps_current_item() -> None:
    queue, *_ = _queue()
    _fill(queue, "A", "B", "C")
    queue.jump_to_item(1)
    assert queue.reorder_items(1, 2) is True
    assert _titles(queue) == ["A", "C", "B"]
    assert queue.current_index == 2
    assert queue.reorder_items(0, 5) is False


def test_remove_reindexes_current() -> None:
    queue, *_ = _queue()
    ids = _fill(queue, "A", "B", "C")
    queue.jump_to_item(2)
    queue.remove_item(ids[0])
    assert queue.current_index == 1
    assert queue.current_item.title == "C"
    queue.remove_item(ids[2])
    assert queue.current_index == 0
    queue.remove_item(ids[1])
    assert queue.current_index == -1
    assert queue.remove_item("missing") is False


def test_remove_current_middle_item_points_at_next() -> None:
    queue, *_ = _queue()
    ids = _fill(queue, "A", "B", "C")
    queue.jump_to_item(1)
    queue.remove_item(ids[1])
    assert queue.current_index == 1
    assert queue.current_item.title == "C"


def test_removing_playing_item_stops_playback() -> None:
    queue, coordinator, _, scheduler, _ = _queue()
    ids = _fill(queue, "Alpha beta gamma delta", "Bravo")
    queue.play()
    scheduler.run_pending()
    assert coordinator.state is PlaybackState.SPEAKING
    queue.remove_item(ids[0])
    assert coordinator.state is PlaybackState.IDLE
    scheduler.advance(5)
    assert coordinator.state is PlaybackState.IDLE
    assert queue.current_item.title == "Bravo"


def test_auto_advance_without_repeat_completes_queue() -> None:
    queue, coordinator, speech, scheduler, _ = _queue()
    _fill(queue, "Alpha", "Bravo")
    queue.play()
    scheduler.advance(WORD_TIME)
    assert coordinator.state is PlaybackState.ENDED
    scheduler.advance(ADVANCE_TIME)
    assert queue.current_index == 1
    assert coordinator.state is PlaybackState.SPEAKING
    assert speech.spoken[-1].text == "Bravo"

    scheduler.advance(WORD_TIME)
    scheduler.advance(ADVANCE_TIME)
    assert queue.completed is True
    assert queue.current_index == 1
    assert coordinator.state is PlaybackState.IDLE
    assert len(speech.spoken) == 2


def test_move_to_next_with_repeat_wraps() -> None:
    queue, *_ = _queue()
    _fill(queue, "A", "B")
    queue.jump_to_item(1)
    assert queue.move_to_next() is False
    queue.set_options(repeat=True)
    assert queue.move_to_next() is True
    assert queue.current_index == 0
    assert queue.move_to_previous() is True
    assert queue.current_index == 1


def test_move_to_previous_stops_at_start_without_repeat() -> None:
    queue, *_ = _queue()
    _fill(queue, "A", "B")
    assert queue.move_to_previous() is False
    assert queue.current_index == 0


def test_auto_advance_disabled_leaves_session_ended() -> None:
    queue, coordinator, _, scheduler, _ = _queue()
    _fill(queue, "Alpha", "Bravo")
    queue.set_options(auto_advance=False)
    queue.play()
    scheduler.advance(5)
    assert queue.current_index == 0
    assert coordinator.state is PlaybackState.ENDED


def test_shuffle_visits_each_item_once_without_repeat() -> None:
    queue, *_ = _queue()
    _fill(queue, "A", "B", "C", "D")
    queue.set_options(shuffle=True)
    queue.play()
    visited = [queue.current_item.title]
    while queue.skip_next() is not None:
        assert queue.current_item.title not in visited
        visited.append(queue.current_item.title)
    assert sorted(visited) == ["A", "B", "C", "D"]


def test_shuffle_with_repeat_starts_a_new_cycle() -> None:
    queue, *_ = _queue()
    _fill(queue, "A", "B", "C")
    queue.set_options(shuffle=True, repeat=True)
    queue.play()
    previous = queue.current_index
    for _ in range(10):
        assert queue.skip_next() is not None
        assert queue.current_index != previous
        previous = queue.current_index


def test_failed_item_is_skipped_by_default() -> None:
    queue, coordinator, speech, scheduler, _ = _queue()
    _fill(queue, "Alpha", "Bravo")
    queue.play()
    scheduler.run_pending()
    speech.fail(speech.spoken[-1], "network error")
    assert coordinator.state is PlaybackState.ENDED
    scheduler.advance(ADVANCE_TIME)
    assert queue.current_index == 1
    assert speech.spoken[-1].text == "Bravo"


def test_failed_item_halts_under_halt_policy() -> None:
    queue, coordinator, speech, scheduler, _ = _queue(error_policy="halt")
    _fill(queue, "Alpha", "Bravo")
    queue.play()
    scheduler.run_pending()
    speech.fail(speech.spoken[-1], "audio-hardware")
    scheduler.advance(5)
    assert queue.current_index == 0
    assert coordinator.state is PlaybackState.IDLE
    assert len(speech.spoken) == 1


def test_failed_single_item_is_not_replayed_with_repeat() -> None:
    queue, coordinator, speech, scheduler, _ = _queue()
    _fill(queue, "Alpha")
    queue.set_options(repeat=True)
    queue.play()
    scheduler.run_pending()
    speech.fail(speech.spoken[-1], "network")
    scheduler.advance(5)
    assert len(speech.spoken) == 1
    assert queue.completed is True
    assert coordinator.state is PlaybackState.IDLE


def test_stop_does_not_advance() -> None:
    queue, coordinator, speech, scheduler, _ = _queue()
    _fill(queue, "Alpha beta gamma", "Bravo")
    queue.play()
    scheduler.run_pending()
    coordinator.stop()
    scheduler.advance(5)
    assert queue.current_index == 0
    assert len(speech.spoken) == 1


def test_play_validates_queue_and_index() -> None:
    queue, *_ = _queue()
    with pytest.raises(InvalidInput):
        queue.play()
    _fill(queue, "A")
    with pytest.raises(InvalidInput):
        queue.play(3)
    assert queue.jump_to_item(-1) is False


def test_clear_resets_and_stops() -> None:
    queue, coordinator, _, scheduler, _ = _queue()
    _fill(queue, "Alpha beta", "Bravo")
    queue.play()
    scheduler.run_pending()
    queue.clear()
    assert queue.items == []
    assert queue.current_index == -1
    assert coordinator.state is PlaybackState.IDLE


def test_queue_persists_and_restores() -> None:
    queue, _, _, scheduler, store = _queue()
    _fill(queue, "Alpha", "Bravo")
    queue.set_options(repeat=True)
    scheduler.advance(1)
    written = dict(store.writes)
    assert [entry["text"] for entry in written[QUEUE_KEY]] == ["Alpha", "Bravo"]
    assert written[QUEUE_OPTIONS_KEY] == {"autoAdvance": True, "repeat": True, "shuffle": False}

    restored, *_ = _queue()
    restored.load(store.load())
    assert [item.text for item in restored.items] == ["Alpha", "Bravo"]
    assert [item.id for item in restored.items] == [item.id for item in queue.items]
    assert restored.current_index == 0
    assert restored.options.repeat is True


def test_load_skips_malformed_entries() -> None:
    queue, *_ = _queue()
    queue.load({QUEUE_KEY: [{"text": ""}, "junk", {"id": "x", "text": "Kept"}], QUEUE_OPTIONS_KEY: []})
    assert [item.id for item in queue.items] == ["x"]
    assert queue.items[0].title == "Kept"


def test_skip_previous_plays_earlier_item() -> None:
    queue, _, speech, _, _ = _queue()
    _fill(queue, "Alpha", "Bravo")
    assert queue.skip_previous() is None
    queue.play(1)
    session = queue.skip_previous()
    assert session is not None
    assert queue.current_index == 0
    assert speech.spoken[-1].text == "Alpha"
