from __future__ import annotations

from pathlib import Path

from readaloud.config import EngineConfig


def test_from_env_parses_typed_values() -> None:
    config = EngineConfig.from_env(
        {
            "READALOUD_MAX_QUEUE_ITEMS": "10",
            "READALOUD_REJECT_DUPLICATE_ITEMS": "no",
            "READALOUD_AUTO_ADVANCE_DELAY": "1.5",
            "READALOUD_ITEM_ERROR_POLICY": "halt",
            "READALOUD_STORE_PATH": "/tmp/readaloud/state.json",
        }
    )
    assert config.max_queue_items == 10
    assert config.reject_duplicate_items is False
    assert config.auto_advance_delay == 1.5
    assert config.item_error_policy == "halt"
    assert config.store_path == Path("/tmp/readaloud/state.json")


def test_from_env_ignores_unparseable_values() -> None:
    config = EngineConfig.from_env(
        {
            "READALOUD_FADE_DURATION": "slow",
            "READALOUD_MAX_TEXT_LENGTH": "lots",
            "READALOUD_REJECT_DUPLICATE_ITEMS": "maybe",
            "READALOUD_WORDS_PER_MINUTE": "  ",
        }
    )
    defaults = EngineConfig()
    assert config.fade_duration == defaults.fade_duration
    assert config.max_text_length == defaults.max_text_length
    assert config.reject_duplicate_items is True
    assert config.words_per_minute == 150


def test_overrides_win_over_environment() -> None:
    config = EngineConfig.from_env({"READALOUD_MAX_QUEUE_ITEMS": "10"}, max_queue_items=3, store_path=None)
    assert config.max_queue_items == 3
    assert config.store_path is None


def test_values_are_clamped() -> None:
    config = EngineConfig(
        max_queue_items=0,
        auto_advance_delay=-1,
        progress_interval=0,
        fade_steps=0,
        load_attempts=0,
        item_error_policy="retry",
    )
    assert config.max_queue_items == 1
    assert config.auto_advance_delay == 0.0
    assert config.progress_interval == 0.05
    assert config.fade_steps == 1
    assert config.load_attempts == 1
    assert config.item_error_policy == "skip"
