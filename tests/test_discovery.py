from __future__ import annotations

import asyncio
import json
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

import pytest

from browser_operator.config import OperatorConfig
from browser_operator.discovery import (
    NoTargetAvailableError,
    pick_page_target,
    resolve_stream_url,
    resolve_stream_url_sync,
)
from browser_operator.http_client import HttpClientError, HttpStatusError

PAGE_WS = "ws://127.0.0.1:9222/devtools/page/AAA"
NEW_WS = "ws://127.0.0.1:9222/devtools/page/NEW"


def _fake_endpoint(monkeypatch: pytest.MonkeyPatch, routes: dict[tuple[str, str], Any]) -> list[tuple[str, str]]:
    seen: list[tuple[str, str]] = []

    def fake_get_json(url: str, timeout: float = 2.0, *, method: str = "GET") -> Any:  # noqa: ARG001
        path = url.split("9222", 1)[1]
        seen.append((method, path))
        value = routes.get((method, path))
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise HttpStatusError(404, "not found")
        return value

    monkeypatch.setattr("browser_operator.discovery.http_get_json", fake_get_json)
    return seen


def test_pick_page_target_skips_non_pages_and_missing_urls() -> None:
    targets = [
        {"type": "service_worker", "webSocketDebuggerUrl": "ws://x/sw"},
        {"type": "page"},
        {"type": "page", "webSocketDebuggerUrl": PAGE_WS},
        {"type": "page", "webSocketDebuggerUrl": "ws://x/second"},
    ]
    assert pick_page_target(targets) == PAGE_WS
    assert pick_page_target({"not": "a list"}) is None
    assert pick_page_target([]) is None


def test_resolve_uses_existing_page(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _fake_endpoint(monkeypatch, {("GET", "/json"): [{"type": "page", "webSocketDebuggerUrl": PAGE_WS}]})
    assert asyncio.run(resolve_stream_url(OperatorConfig())) == PAGE_WS
    assert seen == [("GET", "/json")]


def test_resolve_creates_blank_page_with_put(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _fake_endpoint(
        monkeypatch,
        {
            ("GET", "/json"): [{"type": "iframe", "webSocketDebuggerUrl": "ws://x/frame"}],
            ("PUT", "/json/new?about:blank"): {"type": "page", "webSocketDebuggerUrl": NEW_WS},
        },
    )
    assert resolve_stream_url_sync(OperatorConfig()) == NEW_WS
    assert seen == [("GET", "/json"), ("PUT", "/json/new?about:blank")]


def test_resolve_falls_back_to_get_for_older_browsers(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _fake_endpoint(
        monkeypatch,
        {
            ("GET", "/json"): [],
            ("GET", "/json/new?about:blank"): {"webSocketDebuggerUrl": NEW_WS},
        },
    )
    assert resolve_stream_url_sync(OperatorConfig()) == NEW_WS
    assert [m for m, _ in seen] == ["GET", "PUT", "GET"]


def test_resolve_raises_when_nothing_is_available(monkeypatch: pytest.MonkeyPatch) -> None:
    _fake_endpoint(monkeypatch, {("GET", "/json"): HttpClientError("connection refused")})
    with pytest.raises(NoTargetAvailableError) as excinfo:
        resolve_stream_url_sync(OperatorConfig())
    assert "connection refused" in str(excinfo.value)
    assert isinstance(excinfo.value, HttpClientError)


@contextmanager
def _debug_endpoint(targets: list[dict[str, Any]]) -> Iterator[int]:
    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            body = json.dumps(targets if self.path == "/json" else {}).encode()
            self.send_response(200 if self.path == "/json" else 404)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        do_PUT = do_GET  # noqa: N815

        def log_message(self, format: str, *args: Any) -> None:  # noqa: A002, ARG002
            return

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield int(server.server_address[1])
    finally:
        server.shutdown()
        server.server_close()


def test_resolve_against_local_http_endpoint() -> None:
    with _debug_endpoint([{"type": "page", "webSocketDebuggerUrl": PAGE_WS}]) as port:
        cfg = OperatorConfig(cdp_port=port)
        assert asyncio.run(resolve_stream_url(cfg)) == PAGE_WS


def test_resolve_against_empty_local_endpoint_raises() -> None:
    with _debug_endpoint([]) as port:
        with pytest.raises(NoTargetAvailableError):
            resolve_stream_url_sync(OperatorConfig(cdp_port=port))
