from __future__ import annotations

import pytest
import requests

from readaloud.client import EngineClient, EngineClientError, EngineUnavailableError


class _FakeResponse:
    def __init__(self, status_code: int, payload: object = None, invalid: bool = False) -> None:
        self.status_code = status_code
        self._payload = payload
        self._invalid = invalid

    def json(self):
        if self._invalid:
            raise ValueError("no json")
        return self._payload


class _FakeSession:
    def __init__(self, response: _FakeResponse | None = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[tuple[str, str, dict]] = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def test_start_posts_text_and_origin() -> None:
    session = _FakeSession(_FakeResponse(200, {"success": True, "session": {"state": "speaking"}}))
    client = EngineClient("http://localhost:9000/", timeout=3.0, session=session)
    payload = client.start("Hello", origin="example.com")
    assert payload["session"]["state"] == "speaking"
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", "http://localhost:9000/api/playback/start")
    assert kwargs["json"] == {"text": "Hello", "origin": "example.com"}
    assert kwargs["timeout"] == 3.0


def test_command_and_events_requests() -> None:
    session = _FakeSession(_FakeResponse(200, {"success": True}))
    client = EngineClient(session=session)
    client.command("RESET_SPEED")
    client.events(since=4, limit=10)
    client.play(2)
    assert session.calls[0][2]["json"] == {"type": "RESET_SPEED"}
    assert session.calls[1][2]["params"] == {"since": 4, "limit": 10}
    assert session.calls[2][2]["json"] == {"index": 2}


def test_error_detail_is_surfaced() -> None:
    detail = {"detail": {"error": "Queue is full (50 items).", "kind": "queue_full"}}
    client = EngineClient(session=_FakeSession(_FakeResponse(409, detail)))
    with pytest.raises(EngineClientError) as excinfo:
        client.add("More text")
    assert excinfo.value.status_code == 409
    assert excinfo.value.error_kind == "queue_full"
    assert "Queue is full" in str(excinfo.value)


def test_invalid_json_raises_client_error() -> None:
    client = EngineClient(session=_FakeSession(_FakeResponse(502, invalid=True)))
    with pytest.raises(EngineClientError, match="invalid JSON"):
        client.status()


def test_connection_failure_raises_unavailable() -> None:
    client = EngineClient(session=_FakeSession(error=requests.ConnectionError("refused")))
    with pytest.raises(EngineUnavailableError):
        client.stop()
