from __future__ import annotations

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from .config import EngineConfig
from .engine import ReaderEngine
from .errors import (
    ERROR_KIND_CAPABILITY_ERROR,
    ERROR_KIND_CAPABILITY_UNAVAILABLE,
    ERROR_KIND_DUPLICATE_ITEM,
    ERROR_KIND_INVALID_INPUT,
    ERROR_KIND_NOT_FOUND,
    ERROR_KIND_QUEUE_FULL,
)
from .messaging import MessageType

STATUS_BY_KIND = {
    ERROR_KIND_INVALID_INPUT: 400,
    ERROR_KIND_QUEUE_FULL: 409,
    ERROR_KIND_DUPLICATE_ITEM: 409,
    ERROR_KIND_CAPABILITY_UNAVAILABLE: 503,
    ERROR_KIND_CAPABILITY_ERROR: 502,
    ERROR_KIND_NOT_FOUND: 404,
}

PLAYBACK_ACTIONS = {
    "pause": MessageType.PAUSE,
    "resume": MessageType.RESUME,
    "toggle": MessageType.TOGGLE_PAUSE,
    "stop": MessageType.STOP,
}


def create_app(engine: ReaderEngine | None = None, config: EngineConfig | None = None) -> FastAPI:
    if engine is None:
        engine = ReaderEngine(config or EngineConfig.from_env())
        engine.load()
    app = FastAPI(title="readaloud")
    app.state.engine = engine
    app.state.config = engine.config

    def _run(command: MessageType, payload: dict[str, object] | None = None) -> JSONResponse:
        result = engine.handle_command(command, payload or {})
        if not result.get("success"):
            kind = str(result.get("kind") or "")
            raise HTTPException(
                status_code=STATUS_BY_KIND.get(kind, 500),
                detail={"error": result.get("error"), "kind": kind},
            )
        return JSONResponse(result)

    def _payload(payload: object) -> dict[str, object]:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        return payload

    @app.get("/api/status")
    def api_status() -> JSONResponse:
        return JSONResponse(engine.status())

    @app.get("/api/events")
    def api_events(
        since: int = Query(0, ge=0),
        limit: int | None = Query(None, ge=1, le=500),
    ) -> JSONResponse:
        events = engine.events.since(since, limit=limit)
        return JSONResponse(
            {
                "events": [event.to_payload() for event in events],
                "latest": engine.events.latest_sequence,
                "degraded": engine.bus.degraded,
            }
        )

    @app.post("/api/commands")
    def api_command(payload: dict[str, object] = Body(...)) -> JSONResponse:
        payload = _payload(payload)
        command = MessageType.parse(payload.get("type"))
        if command is None:
            raise HTTPException(status_code=400, detail="Unknown command.")
        args = payload.get("payload")
        if args is not None and not isinstance(args, dict):
            raise HTTPException(status_code=400, detail="Command payload must be an object.")
        return _run(command, args)

    @app.post("/api/playback/start")
    def api_start(payload: dict[str, object] = Body(...)) -> JSONResponse:
        return _run(MessageType.START, _payload(payload))

    @app.post("/api/playback/{action}")
    def api_playback_action(action: str) -> JSONResponse:
        command = PLAYBACK_ACTIONS.get(action.lower())
        if command is None:
            raise HTTPException(status_code=404, detail="Unknown playback action.")
        return _run(command)

    @app.post("/api/speed")
    def api_speed(payload: dict[str, object] = Body(...)) -> JSONResponse:
        return _run(MessageType.SET_SPEED, _payload(payload))

    @app.post("/api/volume")
    def api_volume(payload: dict[str, object] = Body(...)) -> JSONResponse:
        return _run(MessageType.SET_VOLUME, _payload(payload))

    @app.post("/api/volume/mute")
    def api_toggle_mute() -> JSONResponse:
        return _run(MessageType.TOGGLE_MUTE)

    @app.post("/api/volume/presets")
    def api_save_volume_preset(payload: dict[str, object] = Body(...)) -> JSONResponse:
        return _run(MessageType.SAVE_VOLUME_PRESET, _payload(payload))

    @app.post("/api/volume/fade/{direction}")
    def api_fade_volume(direction: str, payload: dict[str, object] | None = Body(None)) -> JSONResponse:
        args = dict(_payload(payload)) if payload is not None else {}
        args["direction"] = direction
        return _run(MessageType.FADE_VOLUME, args)

    @app.put("/api/domains/{origin:path}/speed")
    def api_set_domain_speed(origin: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        args = dict(_payload(payload))
        args["origin"] = origin
        return _run(MessageType.SET_DOMAIN_SPEED, args)

    @app.delete("/api/domains/{origin:path}/speed")
    def api_clear_domain_speed(origin: str) -> JSONResponse:
        return _run(MessageType.CLEAR_DOMAIN_SPEED, {"origin": origin})

    @app.put("/api/domains/{origin:path}/volume")
    def api_set_domain_volume(origin: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        args = dict(_payload(payload))
        args["origin"] = origin
        return _run(MessageType.SET_DOMAIN_VOLUME, args)

    @app.delete("/api/domains/{origin:path}/volume")
    def api_clear_domain_volume(origin: str) -> JSONResponse:
        return _run(MessageType.CLEAR_DOMAIN_VOLUME, {"origin": origin})

    @app.get("/api/queue")
    def api_queue() -> JSONResponse:
        return JSONResponse(engine.status()["queue"])

    @app.post("/api/queue")
    def api_queue_add(payload: dict[str, object] = Body(...)) -> JSONResponse:
        return _run(MessageType.QUEUE_ADD, _payload(payload))

    @app.delete("/api/queue")
    def api_queue_clear() -> JSONResponse:
        return _run(MessageType.QUEUE_CLEAR)

    @app.delete("/api/queue/{item_id}")
    def api_queue_remove(item_id: str) -> JSONResponse:
        return _run(MessageType.QUEUE_REMOVE, {"id": item_id})

    @app.post("/api/queue/reorder")
    def api_queue_reorder(payload: dict[str, object] = Body(...)) -> JSONResponse:
        return _run(MessageType.QUEUE_REORDER, _payload(payload))

    @app.post("/api/queue/next")
    def api_queue_next() -> JSONResponse:
        return _run(MessageType.QUEUE_NEXT)

    @app.post("/api/queue/previous")
    def api_queue_previous() -> JSONResponse:
        return _run(MessageType.QUEUE_PREVIOUS)

    @app.post("/api/queue/play")
    def api_queue_play(payload: dict[str, object] | None = Body(None)) -> JSONResponse:
        return _run(MessageType.QUEUE_PLAY, _payload(payload) if payload is not None else {})

    @app.patch("/api/queue/options")
    def api_queue_options(payload: dict[str, object] = Body(...)) -> JSONResponse:
        return _run(MessageType.QUEUE_SET_OPTIONS, _payload(payload))

    return app


__all__ = ["STATUS_BY_KIND", "create_app"]
