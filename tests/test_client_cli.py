"""Tests for the httpx CLI client against a mocked API."""

import json
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
)

import httpx
import pytest

from agentify.client import cli

EVENTS = [
    {
        "sequence": 0,
        "step": "normalizing",
        "progress": 5,
        "message": "Normalizing",
        "status": "pending",
    },
    {
        "sequence": 1,
        "step": "succeeded",
        "progress": 100,
        "message": "Done",
        "status": "succeeded",
    },
]


def _api(status: str = "succeeded", artifact: str = "/out/agent.so") -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "POST" and path == "/compilations":
            return httpx.Response(202, json={"request_id": "r1", "status": "pending"})
        if path == "/compilations/r1/events":
            payload = {"request_id": "r1", "status": status, "events": EVENTS}
            return httpx.Response(200, json=payload)
        if path == "/compilations/r1":
            return httpx.Response(
                200,
                json={
                    "request_id": "r1",
                    "state": status,
                    "status": status,
                    "artifact_path": artifact,
                    "error": None,
                    "logs": [],
                },
            )
        return httpx.Response(404, json={"detail": f"Unknown path {path}"})

    return httpx.MockTransport(handler)


@pytest.fixture
def config_file(tmp_path: Path, ui_config: Dict[str, Any]) -> Path:
    path = tmp_path / "agent.json"
    path.write_text(json.dumps(ui_config), encoding="utf-8")
    return path


def test_run_cli_success(config_file: Path, capsys: pytest.CaptureFixture) -> None:
    with httpx.Client(transport=_api()) as client:
        exit_code = cli.run_cli(config_file, client=client)

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "normalizing: Normalizing" in out
    assert "Artifact: /out/agent.so" in out


def test_run_cli_degraded(config_file: Path) -> None:
    with httpx.Client(transport=_api(status="degraded")) as client:
        assert cli.run_cli(config_file, client=client) == 2


def test_call_api_error() -> None:
    """HTTP errors carry the API's detail message."""

    with httpx.Client(transport=_api()) as client:
        try:
            cli.call_api("GET", "/compilations/unknown", client=client)
        except httpx.HTTPStatusError as exc:
            assert "404" in str(exc)
            assert "Unknown path" in str(exc)
        else:  # pragma: no cover
            raise AssertionError("HTTPStatusError was not raised")


def test_call_api_retries_until_ready(monkeypatch: pytest.MonkeyPatch) -> None:
    delays: List[float] = []
    monkeypatch.setattr(cli.time, "sleep", delays.append)
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"status": "ok"})

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        assert cli.call_api("GET", "/health", client=client) == {"status": "ok"}

    assert delays == [0.5, 1.0]


def test_call_api_gives_up(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli.time, "sleep", lambda _: None)

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(httpx.ConnectError):
            cli.call_api("GET", "/health", max_retries=2, client=client)
