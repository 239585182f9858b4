from __future__ import annotations

from typing import Callable, Mapping

from .config import EngineConfig
from .coordinator import PlaybackCoordinator, PlaybackState
from .errors import (
    ERROR_KIND_INVALID_INPUT,
    NotFound,
    PersistenceFailure,
    ReadAloudError,
    error_kind_of,
)
from .logging_utils import debug_log, report
from .messaging import EventLog, MessageBus, MessageType
from .progress import ProgressTracker
from .reading_queue import QueueManager
from .scheduler import BoundedRetry, Scheduler, ThreadScheduler
from .speech import SimulatedSpeech, SpeechCapability
from .speed import SpeedController, SpeedSetting
from .store import DebouncedWriter, JsonFileStore, KeyValueStore, MemoryStore
from .volume import VolumeController, VolumeSetting

CommandHandler = Callable[[Mapping[str, object]], dict[str, object]]


class ReaderEngine:
    """
    Engine context: one instance owns every component and the shared settings.

    Commands from any thread go through ``handle_command``; it serializes them
    with timer and speech callbacks on the scheduler and always returns a
    payload instead of raising.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        speech: SpeechCapability | None = None,
        store: KeyValueStore | None = None,
        scheduler: Scheduler | None = None,
        bus: MessageBus | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.scheduler = scheduler or ThreadScheduler()
        if store is None:
            store = JsonFileStore(self.config.store_path) if self.config.store_path else MemoryStore()
        self.store = store
        self.speech = speech or SimulatedSpeech(
            self.scheduler, words_per_minute=self.config.words_per_minute
        )
        self.bus = bus or MessageBus()
        self.events = EventLog()
        self.bus.subscribe(self.events)
        self.writer = DebouncedWriter(self.store, self.scheduler, self.config.persist_debounce)

        self.speed_setting = SpeedSetting()
        self.volume_setting = VolumeSetting()
        self.tracker = ProgressTracker(self.scheduler, words_per_minute=self.config.words_per_minute)
        self.coordinator = PlaybackCoordinator(
            self.speech,
            self.speed_setting,
            self.volume_setting,
            self.tracker,
            self.scheduler,
            bus=self.bus,
            progress_interval=self.config.progress_interval,
            max_text_length=self.config.max_text_length,
        )
        self.speed = SpeedController(
            self.speed_setting,
            coordinator=self.coordinator,
            writer=self.writer,
            bus=self.bus,
            words_per_minute=self.config.words_per_minute,
        )
        self.volume = VolumeController(
            self.volume_setting,
            self.scheduler,
            coordinator=self.coordinator,
            writer=self.writer,
            bus=self.bus,
            fade_duration=self.config.fade_duration,
            fade_steps=self.config.fade_steps,
        )
        self.queue = QueueManager(
            self.coordinator,
            self.scheduler,
            writer=self.writer,
            bus=self.bus,
            max_items=self.config.max_queue_items,
            reject_duplicates=self.config.reject_duplicate_items,
            max_text_length=self.config.max_text_length,
            auto_advance_delay=self.config.auto_advance_delay,
            error_policy=self.config.item_error_policy,
            words_per_minute=self.config.words_per_minute,
        )
        self.loader = BoundedRetry(
            max_attempts=self.config.load_attempts,
            delay=self.config.load_retry_delay,
        )
        self.loaded = False
        self.load_error: PersistenceFailure | None = None
        self._closed = False
        self._handlers: dict[MessageType, CommandHandler] = {
            MessageType.START: self._cmd_start,
            MessageType.PAUSE: lambda _: {"changed": self.coordinator.pause()},
            MessageType.RESUME: lambda _: {"changed": self.coordinator.resume()},
            MessageType.TOGGLE_PAUSE: lambda _: {"changed": self.coordinator.toggle_pause()},
            MessageType.STOP: self._cmd_stop,
            MessageType.SET_SPEED: self._cmd_set_speed,
            MessageType.INCREASE_SPEED: lambda _: self._speed_result(self.speed.increase_speed()),
            MessageType.DECREASE_SPEED: lambda _: self._speed_result(self.speed.decrease_speed()),
            MessageType.SET_PRESET_SPEED: self._cmd_set_preset_speed,
            MessageType.RESET_SPEED: lambda _: self._speed_result(self.speed.reset_speed()),
            MessageType.SET_DOMAIN_SPEED: self._cmd_set_domain_speed,
            MessageType.CLEAR_DOMAIN_SPEED: self._cmd_clear_domain_speed,
            MessageType.SET_VOLUME: self._cmd_set_volume,
            MessageType.ADJUST_VOLUME: self._cmd_adjust_volume,
            MessageType.TOGGLE_MUTE: self._cmd_toggle_mute,
            MessageType.SET_DOMAIN_VOLUME: self._cmd_set_domain_volume,
            MessageType.CLEAR_DOMAIN_VOLUME: self._cmd_clear_domain_volume,
            MessageType.APPLY_VOLUME_PRESET: self._cmd_apply_volume_preset,
            MessageType.SAVE_VOLUME_PRESET: self._cmd_save_volume_preset,
            MessageType.FADE_VOLUME: self._cmd_fade_volume,
            MessageType.GET_STATE: lambda _: {"state": self.status()},
            MessageType.QUEUE_ADD: self._cmd_queue_add,
            MessageType.QUEUE_REMOVE: self._cmd_queue_remove,
            MessageType.QUEUE_REORDER: self._cmd_queue_reorder,
            MessageType.QUEUE_NEXT: lambda _: self._queue_move(self.queue.move_to_next),
            MessageType.QUEUE_PREVIOUS: lambda _: self._queue_move(self.queue.move_to_previous),
            MessageType.QUEUE_JUMP: self._cmd_queue_jump,
            MessageType.QUEUE_PLAY: self._cmd_queue_play,
            MessageType.QUEUE_CLEAR: self._cmd_queue_clear,
            MessageType.QUEUE_SET_OPTIONS: self._cmd_queue_set_options,
        }

    def __enter__(self) -> "ReaderEngine":
        self.load()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # Lifecycle

    def load(self) -> None:
        """Restore persisted settings; defaults stay in effect until a load succeeds."""
        self.scheduler.dispatch(
            lambda: self.loader.run(
                self.scheduler,
                self.store.load,
                on_success=self._apply_persisted,
                on_exhausted=self._load_exhausted,
                on_retry=self._load_retry,
            )
        )

    def _apply_persisted(self, values: object) -> None:
        if not isinstance(values, Mapping):
            values = {}
        self.speed.load(values)
        self.volume.load(values)
        self.queue.load(values)
        self.loaded = True
        self.load_error = None
        debug_log("engine", f"restored {len(values)} stored keys")

    def _load_retry(self, attempt: int, exc: BaseException) -> None:
        debug_log("engine", f"store load attempt {attempt} failed: {exc}")

    def _load_exhausted(self, exc: BaseException) -> None:
        failure = exc if isinstance(exc, PersistenceFailure) else PersistenceFailure(str(exc))
        self.load_error = failure
        report("engine", f"Using defaults, store could not be loaded: {failure}")

    def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True

        def _stop() -> None:
            self.loader.cancel()
            self.queue.cancel_pending_advance()
            self.coordinator.stop()
            self.writer.flush()

        self.scheduler.dispatch(_stop)
        try:
            self.speech.close()
        except Exception as exc:
            report("engine", f"speech shutdown failed: {exc}")
        shutdown = getattr(self.scheduler, "shutdown", None)
        if callable(shutdown):
            shutdown()

    # Commands

    def handle_command(
        self,
        command: str | MessageType,
        payload: Mapping[str, object] | None = None,
    ) -> dict[str, object]:
        message_type = MessageType.parse(command)
        handler = self._handlers.get(message_type) if message_type is not None else None
        if handler is None:
            return {"success": False, "error": f"Unknown command: {command}", "kind": ERROR_KIND_INVALID_INPUT}
        args = dict(payload or {})
        try:
            result = self.scheduler.dispatch(handler, args)
        except ReadAloudError as exc:
            debug_log("engine", f"{message_type.value} rejected: {exc}")
            return {"success": False, "error": str(exc), "kind": error_kind_of(exc)}
        except (TypeError, ValueError) as exc:
            return {"success": False, "error": str(exc), "kind": ERROR_KIND_INVALID_INPUT}
        response: dict[str, object] = {"success": True}
        response.update(result)
        return response

    def status(self) -> dict[str, object]:
        def _collect() -> dict[str, object]:
            origin = self.coordinator.active_origin
            return {
                "playback": self.coordinator.status(),
                "progress": self.coordinator.snapshot().to_payload(),
                "speed": self.speed.speed_info(),
                "volume": self.volume.volume_state(origin),
                "queue": self.queue.state.to_payload(),
                "messaging": self.bus.status(),
                "persistence": {
                    "loaded": self.loaded,
                    "loadError": str(self.load_error) if self.load_error else None,
                    "writeFailures": self.writer.failures,
                    "pendingKeys": self.writer.pending_keys(),
                },
            }

        return self.scheduler.dispatch(_collect)

    # Handlers

    def _cmd_start(self, args: Mapping[str, object]) -> dict[str, object]:
        text = args.get("text")
        origin = args.get("origin")
        self.queue.cancel_pending_advance()
        session = self.coordinator.start(
            text if isinstance(text, str) else "",
            origin=origin if isinstance(origin, str) else None,
        )
        return {"session": session.to_payload()}

    def _cmd_stop(self, args: Mapping[str, object]) -> dict[str, object]:
        self.queue.cancel_pending_advance()
        changed = self.coordinator.stop()
        return {"changed": changed}

    def _speed_result(self, changed: bool) -> dict[str, object]:
        return {"changed": changed, "speed": self.speed.current}

    def _cmd_set_speed(self, args: Mapping[str, object]) -> dict[str, object]:
        changed = self.speed.set_speed(_required(args, "speed"), str(args.get("source") or "user"))
        return self._speed_result(changed)

    def _cmd_set_preset_speed(self, args: Mapping[str, object]) -> dict[str, object]:
        return self._speed_result(self.speed.set_preset_speed(_required(args, "index")))

    def _cmd_set_domain_speed(self, args: Mapping[str, object]) -> dict[str, object]:
        origin = _required(args, "origin")
        speed = self.speed.set_domain_speed(str(origin), _required(args, "speed"))
        return {"origin": origin, "domainSpeed": speed}

    def _cmd_clear_domain_speed(self, args: Mapping[str, object]) -> dict[str, object]:
        origin = _required(args, "origin")
        return {"changed": self.speed.clear_domain_speed(str(origin))}

    def _volume_result(self, changed: bool) -> dict[str, object]:
        return {
            "changed": changed,
            "volume": self.volume_setting.current,
            "muted": self.volume_setting.is_muted,
        }

    def _cmd_set_volume(self, args: Mapping[str, object]) -> dict[str, object]:
        changed = self.volume.set_volume(_required(args, "volume"), str(args.get("source") or "user"))
        return self._volume_result(changed)

    def _cmd_adjust_volume(self, args: Mapping[str, object]) -> dict[str, object]:
        return self._volume_result(self.volume.adjust_volume(_required(args, "delta")))

    def _cmd_toggle_mute(self, args: Mapping[str, object]) -> dict[str, object]:
        self.volume.toggle_mute()
        return self._volume_result(True)

    def _cmd_set_domain_volume(self, args: Mapping[str, object]) -> dict[str, object]:
        origin = _required(args, "origin")
        volume = self.volume.set_domain_volume(str(origin), _required(args, "volume"))
        return {"origin": origin, "domainVolume": volume}

    def _cmd_clear_domain_volume(self, args: Mapping[str, object]) -> dict[str, object]:
        origin = _required(args, "origin")
        return {"changed": self.volume.clear_domain_volume(str(origin))}

    def _cmd_apply_volume_preset(self, args: Mapping[str, object]) -> dict[str, object]:
        preset = _required(args, "preset")
        return self._volume_result(self.volume.apply_preset(str(preset)))

    def _cmd_save_volume_preset(self, args: Mapping[str, object]) -> dict[str, object]:
        name = _required(args, "name")
        preset = self.volume.save_preset(str(name), args.get("volume"))
        return {"preset": preset.to_payload()}

    def _cmd_fade_volume(self, args: Mapping[str, object]) -> dict[str, object]:
        direction = str(_required(args, "direction")).lower()
        duration = args.get("duration")
        if duration is not None and (isinstance(duration, bool) or not isinstance(duration, (int, float))):
            raise ValueError("Fade duration must be a number of seconds.")
        if direction == "in":
            changed = self.volume.fade_in(duration)
        elif direction == "out":
            changed = self.volume.fade_out(duration)
        else:
            raise ValueError(f"Unknown fade direction: {direction}")
        return {"changed": changed}

    def _cmd_queue_add(self, args: Mapping[str, object]) -> dict[str, object]:
        text = args.get("text")
        title = args.get("title")
        source = args.get("source")
        item = self.queue.add_item(
            text if isinstance(text, str) else "",
            title=title if isinstance(title, str) else None,
            source=source if isinstance(source, str) else None,
        )
        return {"item": item.to_payload(include_text=False)}

    def _cmd_queue_remove(self, args: Mapping[str, object]) -> dict[str, object]:
        item_id = _required(args, "id")
        if not self.queue.remove_item(str(item_id)):
            raise NotFound(f"Queue item {item_id} not found.")
        return {"queue": self.queue.state.to_payload()}

    def _cmd_queue_reorder(self, args: Mapping[str, object]) -> dict[str, object]:
        changed = self.queue.reorder_items(_required(args, "from"), _required(args, "to"))
        return {"changed": changed, "queue": self.queue.state.to_payload()}

    def _queue_move(self, move: Callable[[], bool]) -> dict[str, object]:
        was_active = self.coordinator.state in (PlaybackState.SPEAKING, PlaybackState.PAUSED)
        moved = move()
        if moved and was_active:
            self.queue.play()
        return {"moved": moved, "currentIndex": self.queue.current_index}

    def _cmd_queue_jump(self, args: Mapping[str, object]) -> dict[str, object]:
        return self._queue_move(lambda: self.queue.jump_to_item(_required(args, "index")))

    def _cmd_queue_play(self, args: Mapping[str, object]) -> dict[str, object]:
        index = args.get("index")
        session = self.queue.play(index if isinstance(index, int) and not isinstance(index, bool) else None)
        return {"session": session.to_payload(), "currentIndex": self.queue.current_index}

    def _cmd_queue_clear(self, args: Mapping[str, object]) -> dict[str, object]:
        self.queue.clear()
        return {"queue": self.queue.state.to_payload()}

    def _cmd_queue_set_options(self, args: Mapping[str, object]) -> dict[str, object]:
        options = self.queue.set_options(
            auto_advance=_optional_bool(args, "autoAdvance"),
            repeat=_optional_bool(args, "repeat"),
            shuffle=_optional_bool(args, "shuffle"),
        )
        return {"options": options.to_payload()}


def _required(args: Mapping[str, object], key: str) -> object:
    if key not in args or args[key] is None:
        raise ValueError(f"Missing required field: {key}")
    return args[key]


def _optional_bool(args: Mapping[str, object], key: str) -> bool | None:
    value = args.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false.")
    return value


__all__ = ["ReaderEngine"]
