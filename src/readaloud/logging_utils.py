from __future__ import annotations

import sys
from copy import copy, deepcopy
from typing import Any
from urllib.parse import unquote

from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter as UvicornAccessFormatter

_DEBUG_LOG = False


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = bool(enabled)


def debug_log(scope: str, message: str) -> None:
    if _DEBUG_LOG:
        print(f"[readaloud {scope} debug] {message}", file=sys.stderr, flush=True)


def report(scope: str, message: str) -> None:
    """Print an operational problem that does not interrupt playback."""
    print(f"[readaloud {scope}] {message}", file=sys.stderr, flush=True)


def decode_access_args(args: object) -> tuple | None:
    """
    Return uvicorn access-log args with the request path percent-decoded.

    Domain routes carry origins such as ``news.example.com%2Fpath``; queue routes
    carry item ids. None means the record does not look like an access entry.
    """
    if not isinstance(args, tuple) or len(args) != 5:
        return None
    client_addr, method, path, http_version, status_code = args
    if isinstance(path, str) and "%" in path:
        path = unquote(path, encoding="utf-8", errors="replace")
    return (client_addr, method, path, http_version, status_code)


class DecodedAccessFormatter(UvicornAccessFormatter):
    def formatMessage(self, record):  # type: ignore[override]
        args = decode_access_args(record.args)
        if args is None or args == record.args:
            return super().formatMessage(record)
        decoded = copy(record)
        decoded.args = args
        return super().formatMessage(decoded)


def build_uvicorn_log_config(*, debug: bool = False) -> dict[str, Any]:
    config = deepcopy(LOGGING_CONFIG)
    access = config.setdefault("formatters", {}).get("access")
    if isinstance(access, dict):
        access["()"] = f"{__name__}.DecodedAccessFormatter"
    level = "DEBUG" if debug else "INFO"
    for name, logger in config.get("loggers", {}).items():
        if isinstance(logger, dict) and name.startswith("uvicorn"):
            logger["level"] = level
    return config


__all__ = [
    "DecodedAccessFormatter",
    "decode_access_args",
    "build_uvicorn_log_config",
    "debug_log",
    "report",
    "set_debug_logging",
]
