from .config import EngineConfig
from .coordinator import EndReason, PlaybackCoordinator, PlaybackSession, PlaybackState
from .engine import ReaderEngine
from .errors import (
    CapabilityError,
    CapabilityUnavailable,
    DuplicateItem,
    InvalidInput,
    MessagingFailure,
    NotFound,
    PersistenceFailure,
    QueueFull,
    ReadAloudError,
)
from .progress import ProgressSnapshot, ProgressTracker
from .reading_queue import QueueItem, QueueManager
from .speech import SimulatedSpeech, SpeechCapability

__all__ = [
    "EngineConfig",
    "ReaderEngine",
    "PlaybackCoordinator",
    "PlaybackSession",
    "PlaybackState",
    "EndReason",
    "ProgressSnapshot",
    "ProgressTracker",
    "QueueItem",
    "QueueManager",
    "SpeechCapability",
    "SimulatedSpeech",
    "ReadAloudError",
    "InvalidInput",
    "QueueFull",
    "DuplicateItem",
    "NotFound",
    "CapabilityUnavailable",
    "CapabilityError",
    "PersistenceFailure",
    "MessagingFailure",
]
