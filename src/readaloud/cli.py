from __future__ import annotations

import argparse
import json
import sys
import time
from importlib import metadata
from pathlib import Path

import uvicorn
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

import tomllib

from .client import DEFAULT_SERVER_URL, EngineClient, EngineClientError, EngineUnavailableError
from .config import EngineConfig
from .engine import ReaderEngine
from .errors import CapabilityUnavailable, ReadAloudError
from .logging_utils import build_uvicorn_log_config, set_debug_logging
from .messaging import WebhookPublisher
from .scheduler import ThreadScheduler
from .speech import SimulatedSpeech, SpeechCapability
from .text import format_reading_time

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 2125
SPEECH_BACKENDS = ("pyttsx3", "simulated")


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("readaloud")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"readaloud {__version__}",
    )


def _add_engine_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--speech",
        choices=SPEECH_BACKENDS,
        default="pyttsx3",
        help="Speech backend (default: pyttsx3; 'simulated' paces boundaries without audio).",
    )
    parser.add_argument(
        "--voice",
        help="pyttsx3 voice id to use.",
    )
    parser.add_argument(
        "--store",
        help="JSON file for persisted settings and queue (default: in-memory).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Print debug logs to stderr.",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="readaloud",
        description="Read text aloud with pausable, queueable playback. Subcommands: serve, read, ctl.",
    )
    _add_version_flag(ap)
    return ap


def build_serve_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="readaloud serve",
        description="Run the reading engine behind an HTTP API.",
    )
    _add_version_flag(ap)
    ap.add_argument("--host", default=DEFAULT_HOST, help=f"Bind address (default: {DEFAULT_HOST}).")
    ap.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"Port (default: {DEFAULT_PORT}).")
    ap.add_argument(
        "--webhook",
        action="append",
        default=[],
        help="URL that receives every engine event as a JSON POST (repeatable).",
    )
    _add_engine_flags(ap)
    return ap


def build_read_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="readaloud read",
        description="Read a text file (or stdin) aloud in this process.",
    )
    _add_version_flag(ap)
    ap.add_argument("input_path", help="Text file to read, or '-' for stdin.")
    ap.add_argument("--speed", type=float, help="Playback rate multiplier (0.1-4.0).")
    ap.add_argument("--volume", type=float, help="Volume (0-100).")
    _add_engine_flags(ap)
    return ap


def build_ctl_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="readaloud ctl",
        description="Send a command to a running readaloud server.",
    )
    _add_version_flag(ap)
    ap.add_argument(
        "--url",
        default=DEFAULT_SERVER_URL,
        help=f"Server URL (default: {DEFAULT_SERVER_URL}).",
    )
    sub = ap.add_subparsers(dest="ctl_cmd")
    sub.add_parser("status", help="Print the engine status.")
    sub.add_parser("pause", help="Pause playback.")
    sub.add_parser("resume", help="Resume playback.")
    sub.add_parser("toggle", help="Toggle pause.")
    sub.add_parser("stop", help="Stop playback.")
    speed = sub.add_parser("speed", help="Set the playback rate.")
    speed.add_argument("value", type=float)
    volume = sub.add_parser("volume", help="Set the volume (0-100).")
    volume.add_argument("value", type=float)
    sub.add_parser("mute", help="Toggle mute.")
    add = sub.add_parser("add", help="Add text (or a file with @path) to the queue.")
    add.add_argument("text")
    add.add_argument("--title")
    add.add_argument("--source")
    sub.add_parser("next", help="Move to the next queue item.")
    sub.add_parser("previous", help="Move to the previous queue item.")
    play = sub.add_parser("play", help="Play the current (or given) queue item.")
    play.add_argument("index", type=int, nargs="?")
    sub.add_parser("clear", help="Clear the queue.")
    sub.add_parser("list", help="List queued items.")
    return ap


def _build_speech(args: argparse.Namespace, scheduler: ThreadScheduler, config: EngineConfig) -> SpeechCapability:
    if args.speech == "simulated":
        return SimulatedSpeech(scheduler, words_per_minute=config.words_per_minute)
    from .pyttsx3_speech import Pyttsx3Speech

    speech = Pyttsx3Speech(voice=args.voice)
    try:
        speech.start()
    except CapabilityUnavailable as exc:
        raise SystemExit(f"{exc} Use --speech simulated to run without audio.") from exc
    return speech


def _build_engine(args: argparse.Namespace) -> ReaderEngine:
    set_debug_logging(args.debug)
    overrides: dict[str, object] = {}
    if args.store:
        overrides["store_path"] = Path(args.store)
    config = EngineConfig.from_env(**overrides)
    scheduler = ThreadScheduler()
    speech = _build_speech(args, scheduler, config)
    return ReaderEngine(config, speech=speech, scheduler=scheduler)


def _run_serve(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    publishers = [WebhookPublisher(url, bus=engine.bus) for url in args.webhook]
    for publisher in publishers:
        engine.bus.subscribe(publisher)
    engine.load()
    from .server import create_app

    app = create_app(engine)
    print(f"Serving readaloud at http://{args.host}:{args.port}/")
    print("Press Ctrl+C to stop.\n")
    try:
        uvicorn.run(
            app,
            host=args.host,
            port=args.port,
            log_level="debug" if args.debug else "info",
            log_config=build_uvicorn_log_config(debug=args.debug),
        )
    finally:
        engine.shutdown()
        for publisher in publishers:
            publisher.close(wait=False)
    return 0


def _read_input(value: str) -> str:
    if value == "-":
        return sys.stdin.read()
    path = Path(value).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Input path not found: {path}")
    return path.read_text(encoding="utf-8")


def _run_read(args: argparse.Namespace) -> int:
    text = _read_input(args.input_path)
    if not text.strip():
        raise SystemExit("Nothing to read: input is empty.")
    console = Console(stderr=True)
    engine = _build_engine(args)
    with engine:
        if args.speed is not None:
            engine.speed.set_speed(args.speed, "cli")
        if args.volume is not None:
            engine.volume.set_volume(args.volume, "cli", smooth=False)
        result = engine.handle_command("START", {"text": text})
        if not result.get("success"):
            console.print(f"[red]Could not start reading:[/red] {result.get('error')}")
            return 1
        estimate = engine.speed.estimate_reading_time(len(text))
        console.print(f"Reading {len(text)} characters (about {estimate}). Press Ctrl+C to stop.")
        progress = Progress(
            TextColumn("{task.description}", justify="left"),
            BarColumn(bar_width=None),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[detail]}", justify="left"),
            console=console,
            auto_refresh=True,
            transient=False,
            disable=not console.is_terminal,
        )
        task = progress.add_task("Reading", total=100.0, detail="")
        try:
            with progress:
                while True:
                    status = engine.status()
                    snapshot = status["progress"]
                    remaining = format_reading_time(float(snapshot["estimatedRemainingSeconds"]))
                    progress.update(
                        task,
                        completed=float(snapshot["percentComplete"]),
                        detail=f"word {snapshot['currentWord']}/{snapshot['totalWords']} · {remaining} left",
                    )
                    if status["playback"]["state"] not in {"speaking", "paused"}:
                        break
                    time.sleep(0.2)
        except KeyboardInterrupt:
            engine.handle_command("STOP")
            console.print("Stopped.")
            return 130
        playback = engine.status()["playback"]
        if playback.get("endReason") == "failed":
            console.print(f"[red]Speech failed:[/red] {playback.get('error')}")
            return 1
    return 0


def _print_json(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _run_ctl(args: argparse.Namespace) -> int:
    client = EngineClient(args.url)
    cmd = args.ctl_cmd
    try:
        if cmd in {None, "status"}:
            _print_json(client.status())
        elif cmd in {"pause", "resume", "toggle", "stop"}:
            _print_json(getattr(client, cmd)())
        elif cmd == "speed":
            _print_json(client.set_speed(args.value))
        elif cmd == "volume":
            _print_json(client.set_volume(args.value))
        elif cmd == "mute":
            _print_json(client.toggle_mute())
        elif cmd == "add":
            text = args.text
            if text.startswith("@"):
                text = _read_input(text[1:])
            _print_json(client.add(text, title=args.title, source=args.source))
        elif cmd == "next":
            _print_json(client.next())
        elif cmd == "previous":
            _print_json(client.previous())
        elif cmd == "play":
            _print_json(client.play(args.index))
        elif cmd == "clear":
            _print_json(client.clear())
        elif cmd == "list":
            queue = client.queue()
            current = queue.get("currentIndex", -1)
            for index, item in enumerate(queue.get("items", [])):
                marker = "*" if index == current else " "
                seconds = item.get("metadata", {}).get("estimatedReadingTimeSeconds", 0)
                print(f"{marker} {index:>2}  {item.get('title')}  ({format_reading_time(seconds)})")
        else:
            raise SystemExit(f"Unknown ctl command: {cmd}")
    except EngineUnavailableError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    except EngineClientError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "serve":
        return _run_serve(build_serve_parser().parse_args(argv[1:]))
    if argv and argv[0] == "read":
        try:
            return _run_read(build_read_parser().parse_args(argv[1:]))
        except (FileNotFoundError, ReadAloudError) as exc:
            raise SystemExit(str(exc)) from exc
    if argv and argv[0] == "ctl":
        return _run_ctl(build_ctl_parser().parse_args(argv[1:]))

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    parser.error(f"Unknown command: {argv[0]}")
    return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
