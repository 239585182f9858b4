from __future__ import annotations

import json

import pytest
from fastapi import HTTPException

from readaloud.config import EngineConfig
from readaloud.engine import ReaderEngine
from readaloud.scheduler import ManualScheduler
from readaloud.server import create_app
from readaloud.store import MemoryStore


def _find_route(app, path: str, method: str):
    method = method.upper()
    for route in app.router.routes:
        if getattr(route, "path", None) == path and method in getattr(route, "methods", set()):
            return route.endpoint
    raise RuntimeError(f"Route {method} {path} not found")


def _app(config: EngineConfig | None = None):
    scheduler = ManualScheduler()
    engine = ReaderEngine(config or EngineConfig(), scheduler=scheduler, store=MemoryStore())
    engine.load()
    return create_app(engine), engine, scheduler


def _body(response) -> dict:
    assert response.status_code == 200
    return json.loads(response.body)


def test_start_and_pause_through_routes() -> None:
    app, engine, scheduler = _app()
    start = _find_route(app, "/api/playback/start", "POST")
    action = _find_route(app, "/api/playback/{action}", "POST")
    status = _find_route(app, "/api/status", "GET")

    payload = _body(start({"text": "Read this aloud please.", "origin": "news.example.org"}))
    assert payload["session"]["state"] == "speaking"
    scheduler.advance(0.5)
    assert _body(action("pause"))["changed"] is True
    state = _body(status())
    assert state["playback"]["state"] == "paused"
    assert state["playback"]["origin"] == "news.example.org"
    assert _body(action("STOP"))["changed"] is True

    with pytest.raises(HTTPException) as excinfo:
        action("rewind")
    assert excinfo.value.status_code == 404


def test_invalid_input_maps_to_400() -> None:
    app, _, _ = _app()
    start = _find_route(app, "/api/playback/start", "POST")
    with pytest.raises(HTTPException) as excinfo:
        start({"text": ""})
    assert excinfo.value.status_code == 400
    assert excinfo.value.detail == {"error": "Text to read must not be empty.", "kind": "invalid_input"}

    speed = _find_route(app, "/api/speed", "POST")
    with pytest.raises(HTTPException) as excinfo:
        speed({"speed": "fast"})
    assert excinfo.value.status_code == 400


def test_queue_conflicts_and_missing_items() -> None:
    app, _, _ = _app(EngineConfig(max_queue_items=2))
    add = _find_route(app, "/api/queue", "POST")
    remove = _find_route(app, "/api/queue/{item_id}", "DELETE")
    listing = _find_route(app, "/api/queue", "GET")

    item = _body(add({"text": "First article."}))["item"]
    with pytest.raises(HTTPException) as excinfo:
        add({"text": "First article."})
    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["kind"] == "duplicate_item"

    add({"text": "Second article."})
    with pytest.raises(HTTPException) as excinfo:
        add({"text": "Third article."})
    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["kind"] == "queue_full"

    with pytest.raises(HTTPException) as excinfo:
        remove("nope")
    assert excinfo.value.status_code == 404

    _body(remove(item["id"]))
    queue = _body(listing())
    assert [entry["title"] for entry in queue["items"]] == ["Second article."]
    assert "text" not in queue["items"][0]


def test_queue_navigation_routes() -> None:
    app, engine, _ = _app()
    add = _find_route(app, "/api/queue", "POST")
    for text in ("One.", "Two.", "Three."):
        add({"text": text})
    play = _find_route(app, "/api/queue/play", "POST")
    next_route = _find_route(app, "/api/queue/next", "POST")
    previous_route = _find_route(app, "/api/queue/previous", "POST")
    reorder = _find_route(app, "/api/queue/reorder", "POST")
    options = _find_route(app, "/api/queue/options", "PATCH")

    assert _body(play({"index": 1}))["currentIndex"] == 1
    assert _body(next_route())["currentIndex"] == 2
    assert _body(previous_route())["currentIndex"] == 1
    assert engine.speech.spoken[-1].text == "Two."
    assert _body(reorder({"from": 0, "to": 2}))["queue"]["currentIndex"] == 0
    assert _body(options({"shuffle": True}))["options"]["shuffle"] is True

    with pytest.raises(HTTPException) as excinfo:
        play({"index": 7})
    assert excinfo.value.status_code == 400


def test_volume_and_domain_routes() -> None:
    app, engine, _ = _app()
    volume = _find_route(app, "/api/volume", "POST")
    mute = _find_route(app, "/api/volume/mute", "POST")
    set_domain = _find_route(app, "/api/domains/{origin:path}/volume", "PUT")
    clear_domain = _find_route(app, "/api/domains/{origin:path}/volume", "DELETE")

    assert _body(volume({"volume": 140}))["volume"] == 100
    assert _body(mute())["muted"] is True
    assert _body(set_domain("blog.example.com", {"volume": 25}))["domainVolume"] == 25
    assert engine.volume_setting.domain_overrides == {"blog.example.com": 25}
    assert _body(clear_domain("blog.example.com"))["changed"] is True


def test_generic_command_route() -> None:
    app, _, _ = _app()
    command = _find_route(app, "/api/commands", "POST")
    result = _body(command({"type": "SET_SPEED", "payload": {"speed": 1.5}}))
    assert result == {"success": True, "changed": True, "speed": 1.5}

    with pytest.raises(HTTPException) as excinfo:
        command({"type": "LAUNCH"})
    assert excinfo.value.status_code == 400
    with pytest.raises(HTTPException) as excinfo:
        command({"type": "SET_SPEED", "payload": [1]})
    assert excinfo.value.status_code == 400


def test_events_route_reports_sequence() -> None:
    app, _, _ = _app()
    command = _find_route(app, "/api/commands", "POST")
    events = _find_route(app, "/api/events", "GET")
    command({"type": "SET_VOLUME", "payload": {"volume": 20}})
    payload = _body(events(since=0, limit=None))
    assert payload["events"][-1]["type"] == "VOLUME_CHANGED"
    assert payload["latest"] == payload["events"][-1]["sequence"]
    assert payload["degraded"] is False
    assert _body(events(since=payload["latest"], limit=None))["events"] == []


def test_domain_speed_preset_and_fade_routes() -> None:
    app, engine, _ = _app()
    set_speed = _find_route(app, "/api/domains/{origin:path}/speed", "PUT")
    clear_speed = _find_route(app, "/api/domains/{origin:path}/speed", "DELETE")
    presets = _find_route(app, "/api/volume/presets", "POST")
    fade = _find_route(app, "/api/volume/fade/{direction}", "POST")

    assert _body(set_speed("blog.example.com", {"speed": 1.5}))["domainSpeed"] == 1.5
    assert engine.speed_setting.domain_overrides == {"blog.example.com": 1.5}
    assert _body(clear_speed("blog.example.com"))["changed"] is True
    assert _body(presets({"name": "Quiet", "volume": 10}))["preset"]["id"] == "custom-quiet"
    assert _body(fade("out", None))["changed"] is False

    with pytest.raises(HTTPException) as excinfo:
        fade("up", None)
    assert excinfo.value.status_code == 400
