from __future__ import annotations

ERROR_KIND_INVALID_INPUT = "invalid_input"
ERROR_KIND_QUEUE_FULL = "queue_full"
ERROR_KIND_DUPLICATE_ITEM = "duplicate_item"
ERROR_KIND_CAPABILITY_UNAVAILABLE = "capability_unavailable"
ERROR_KIND_CAPABILITY_ERROR = "capability_error"
ERROR_KIND_PERSISTENCE_FAILURE = "persistence_failure"
ERROR_KIND_MESSAGING_FAILURE = "messaging_failure"
ERROR_KIND_NOT_FOUND = "not_found"
ERROR_KIND_UNKNOWN = "unknown"

_SPEECH_ERROR_CATEGORIES = (
    ("network", "network"),
    ("not-allowed", "permission"),
    ("permission", "permission"),
    ("audio-busy", "audio-busy"),
    ("audio-hardware", "audio-hardware"),
    ("language-not-supported", "language-not-supported"),
    ("voice-unavailable", "voice-unavailable"),
    ("interrupted", "interrupted"),
    ("canceled", "interrupted"),
    ("cancelled", "interrupted"),
)


class ReadAloudError(RuntimeError):
    """Base class for every error raised by the reading engine."""

    error_kind = ERROR_KIND_UNKNOWN


class InvalidInput(ReadAloudError, ValueError):
    """Raised when text or a command argument is empty, oversized or malformed."""

    error_kind = ERROR_KIND_INVALID_INPUT


class QueueFull(ReadAloudError):
    """Raised when the reading queue already holds the maximum number of items."""

    error_kind = ERROR_KIND_QUEUE_FULL


class DuplicateItem(ReadAloudError):
    """Raised when an item with identical text is already queued."""

    error_kind = ERROR_KIND_DUPLICATE_ITEM


class CapabilityUnavailable(ReadAloudError):
    """Raised when the speech capability is missing or cannot be reached."""

    error_kind = ERROR_KIND_CAPABILITY_UNAVAILABLE


class CapabilityError(ReadAloudError):
    """Raised (or forwarded) when the speech capability fails mid-utterance."""

    error_kind = ERROR_KIND_CAPABILITY_ERROR

    def __init__(self, reason: str) -> None:
        self.reason = str(reason or "unknown").strip() or "unknown"
        self.category = categorize_speech_error(self.reason)
        super().__init__(f"Speech synthesis error ({self.category}): {self.reason}")


class PersistenceFailure(ReadAloudError):
    """Raised when the persistent store cannot be read or written."""

    error_kind = ERROR_KIND_PERSISTENCE_FAILURE


class MessagingFailure(ReadAloudError):
    """Raised when a state-change notification cannot be delivered."""

    error_kind = ERROR_KIND_MESSAGING_FAILURE


class NotFound(ReadAloudError):
    """Raised when a command refers to a queue item that does not exist."""

    error_kind = ERROR_KIND_NOT_FOUND


def categorize_speech_error(reason: str) -> str:
    lowered = str(reason or "").strip().lower()
    for needle, category in _SPEECH_ERROR_CATEGORIES:
        if needle in lowered:
            return category
    return "unknown"


def is_interruption(reason: str) -> bool:
    return categorize_speech_error(reason) == "interrupted"


def error_kind_of(exc: BaseException) -> str:
    kind = getattr(exc, "error_kind", None)
    if isinstance(kind, str) and kind:
        return kind
    return ERROR_KIND_UNKNOWN


__all__ = [
    "CapabilityError",
    "CapabilityUnavailable",
    "DuplicateItem",
    "InvalidInput",
    "MessagingFailure",
    "NotFound",
    "PersistenceFailure",
    "QueueFull",
    "ReadAloudError",
    "categorize_speech_error",
    "error_kind_of",
    "is_interruption",
]
