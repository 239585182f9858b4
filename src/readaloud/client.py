from __future__ import annotations

import json

import requests

from .errors import ReadAloudError

DEFAULT_SERVER_URL = "http://127.0.0.1:2125"


class EngineClientError(ReadAloudError):
    """Raised when the server rejects a command or returns an unexpected payload."""

    def __init__(self, message: str, *, status_code: int | None = None, kind: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        if kind:
            self.error_kind = kind


class EngineUnavailableError(ConnectionError):
    """Raised when no readaloud server answers at the configured URL."""


class EngineClient:
    """
    Thin wrapper around the readaloud HTTP API.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_SERVER_URL,
        timeout: float = 5.0,
        *,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs: object) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise EngineUnavailableError(f"Failed to contact readaloud server at {self.base_url}") from exc
        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise EngineClientError(
                f"{method} {path} returned invalid JSON (status {response.status_code})",
                status_code=response.status_code,
            ) from exc
        if response.status_code != 200:
            detail = payload.get("detail") if isinstance(payload, dict) else None
            kind = None
            message = detail
            if isinstance(detail, dict):
                kind = detail.get("kind")
                message = detail.get("error")
            raise EngineClientError(
                f"{method} {path} failed with status {response.status_code}: {message}",
                status_code=response.status_code,
                kind=kind if isinstance(kind, str) else None,
            )
        if not isinstance(payload, dict):
            raise EngineClientError(f"{method} {path} returned an unexpected payload")
        return payload

    def status(self) -> dict:
        return self._request("GET", "/api/status")

    def events(self, since: int = 0, limit: int | None = None) -> dict:
        params: dict[str, int] = {"since": since}
        if limit is not None:
            params["limit"] = limit
        return self._request("GET", "/api/events", params=params)

    def command(self, command: str, payload: dict[str, object] | None = None) -> dict:
        body: dict[str, object] = {"type": command}
        if payload:
            body["payload"] = payload
        return self._request("POST", "/api/commands", json=body)

    def start(self, text: str, origin: str | None = None) -> dict:
        body: dict[str, object] = {"text": text}
        if origin:
            body["origin"] = origin
        return self._request("POST", "/api/playback/start", json=body)

    def pause(self) -> dict:
        return self._request("POST", "/api/playback/pause")

    def resume(self) -> dict:
        return self._request("POST", "/api/playback/resume")

    def toggle(self) -> dict:
        return self._request("POST", "/api/playback/toggle")

    def stop(self) -> dict:
        return self._request("POST", "/api/playback/stop")

    def set_speed(self, speed: float) -> dict:
        return self._request("POST", "/api/speed", json={"speed": speed})

    def set_volume(self, volume: float) -> dict:
        return self._request("POST", "/api/volume", json={"volume": volume})

    def toggle_mute(self) -> dict:
        return self._request("POST", "/api/volume/mute")

    def queue(self) -> dict:
        return self._request("GET", "/api/queue")

    def add(self, text: str, title: str | None = None, source: str | None = None) -> dict:
        body: dict[str, object] = {"text": text}
        if title:
            body["title"] = title
        if source:
            body["source"] = source
        return self._request("POST", "/api/queue", json=body)

    def remove(self, item_id: str) -> dict:
        return self._request("DELETE", f"/api/queue/{item_id}")

    def next(self) -> dict:
        return self._request("POST", "/api/queue/next")

    def previous(self) -> dict:
        return self._request("POST", "/api/queue/previous")

    def play(self, index: int | None = None) -> dict:
        body = {"index": index} if index is not None else {}
        return self._request("POST", "/api/queue/play", json=body)

    def clear(self) -> dict:
        return self._request("DELETE", "/api/queue")


__all__ = [
    "DEFAULT_SERVER_URL",
    "EngineClient",
    "EngineClientError",
    "EngineUnavailableError",
]
