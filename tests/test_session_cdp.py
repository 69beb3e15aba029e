from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest

from browser_operator.session_cdp import (
    CdpClosedError,
    CdpCommandError,
    CdpConnection,
    CdpTimeoutError,
    NotConnectedError,
    TransmissionError,
)


class FakeSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, responder: Callable[[dict[str, Any]], list[dict[str, Any]]] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.inbox: asyncio.Queue[str | None] = asyncio.Queue()
        self.responder = responder
        self.fail_send_for: set[str] = set()
        self.close_calls = 0

    async def send(self, raw: str) -> None:
        msg = json.loads(raw)
        if msg["method"] in self.fail_send_for:
            raise OSError("broken pipe")
        self.sent.append(msg)
        if self.responder is not None:
            for reply in self.responder(msg):
                self.push(reply)

    def push(self, message: dict[str, Any]) -> None:
        self.inbox.put_nowait(json.dumps(message))

    def hang_up(self) -> None:
        self.inbox.put_nowait(None)

    def __aiter__(self) -> FakeSocket:
        return self

    async def __anext__(self) -> str:
        item = await self.inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        self.close_calls += 1
        self.hang_up()


def _ok(msg: dict[str, Any]) -> list[dict[str, Any]]:
    return [{"id": msg["id"], "result": {}}]


def _connection(ws: FakeSocket, *, enable_methods: tuple[str, ...] = (), timeout: float = 2.0) -> CdpConnection:
    conn = CdpConnection("ws://fake/devtools/page/1", timeout=timeout, enable_methods=enable_methods)

    async def _open() -> FakeSocket:
        return ws

    conn._open_socket = _open  # type: ignore[method-assign]
    return conn


async def _until_sent(ws: FakeSocket, count: int) -> None:
    while len(ws.sent) < count:
        await asyncio.sleep(0)


def test_connect_enables_domains_in_order() -> None:
    async def scenario() -> list[str]:
        ws = FakeSocket(responder=_ok)
        conn = _connection(ws, enable_methods=("Page.enable", "Runtime.enable", "DOM.enable"))
        await conn.connect()
        assert conn.is_open
        await conn.close()
        return [m["method"] for m in ws.sent]

    assert asyncio.run(scenario()) == ["Page.enable", "Runtime.enable", "DOM.enable"]


def test_replies_are_matched_by_id_not_arrival_order() -> None:
    async def scenario() -> None:
        ws = FakeSocket()
        conn = _connection(ws)
        await conn.connect()

        tasks = [asyncio.create_task(conn.call(f"Test.m{i}", {"i": i})) for i in range(3)]
        await _until_sent(ws, 3)
        ws.push({"method": "Page.loadEventFired", "params": {}})
        ws.push({"id": 9999, "result": {"stray": True}})
        for msg in reversed(ws.sent):
            ws.push({"id": msg["id"], "result": {"method": msg["method"]}})

        results = await asyncio.gather(*tasks)
        assert [r["method"] for r in results] == ["Test.m0", "Test.m1", "Test.m2"]
        assert conn.pending_count == 0
        await conn.close()

    asyncio.run(scenario())


def test_ids_are_unique_and_increasing() -> None:
    async def scenario() -> list[int]:
        ws = FakeSocket(responder=_ok)
        conn = _connection(ws)
        await conn.connect()
        for _ in range(4):
            await conn.call("Test.ping")
        await conn.close()
        return [m["id"] for m in ws.sent]

    ids = asyncio.run(scenario())
    assert ids == sorted(set(ids))
    assert len(ids) == 4


def test_close_fails_every_pending_call_and_empties_the_map() -> None:
    async def scenario() -> None:
        ws = FakeSocket()
        conn = _connection(ws)
        await conn.connect()

        tasks = [asyncio.create_task(conn.call(f"Test.slow{i}")) for i in range(5)]
        await _until_sent(ws, 5)
        assert conn.pending_count == 5

        await conn.close()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, CdpClosedError) for r in results)
        assert conn.pending_count == 0
        assert not conn.is_open

        await conn.close()
        assert ws.close_calls == 1

    asyncio.run(scenario())


def test_send_failure_fails_only_that_call() -> None:
    async def scenario() -> None:
        ws = FakeSocket(responder=_ok)
        ws.fail_send_for.add("Test.broken")
        conn = _connection(ws)
        await conn.connect()

        with pytest.raises(TransmissionError):
            await conn.call("Test.broken")
        assert conn.pending_count == 0
        assert await conn.call("Test.fine") == {}
        await conn.close()

    asyncio.run(scenario())


def test_call_after_close_raises_not_connected() -> None:
    async def scenario() -> None:
        ws = FakeSocket(responder=_ok)
        conn = _connection(ws)
        await conn.connect()
        await conn.close()
        with pytest.raises(NotConnectedError):
            await conn.call("Test.ping")

    asyncio.run(scenario())


def test_call_before_connect_raises_not_connected() -> None:
    conn = CdpConnection("ws://fake/devtools/page/1")
    with pytest.raises(NotConnectedError):
        asyncio.run(conn.call("Test.ping"))


def test_peer_hang_up_fails_pending_and_marks_closed() -> None:
    async def scenario() -> None:
        ws = FakeSocket()
        conn = _connection(ws)
        await conn.connect()

        task = asyncio.create_task(conn.call("Test.waiting"))
        await _until_sent(ws, 1)
        ws.hang_up()

        with pytest.raises(CdpClosedError):
            await task
        assert not conn.is_open
        assert conn.pending_count == 0
        with pytest.raises(NotConnectedError):
            await conn.call("Test.ping")
        await conn.close()

    asyncio.run(scenario())


def test_error_reply_raises_command_error() -> None:
    def responder(msg: dict[str, Any]) -> list[dict[str, Any]]:
        return [{"id": msg["id"], "error": {"code": -32601, "message": "'Nope.nope' wasn't found"}}]

    async def scenario() -> None:
        ws = FakeSocket(responder=responder)
        conn = _connection(ws)
        await conn.connect()
        with pytest.raises(CdpCommandError) as excinfo:
            await conn.call("Nope.nope")
        assert excinfo.value.code == -32601
        assert excinfo.value.method == "Nope.nope"
        await conn.close()

    asyncio.run(scenario())


def test_call_times_out_and_removes_waiter() -> None:
    async def scenario() -> None:
        ws = FakeSocket()
        conn = _connection(ws)
        await conn.connect()
        with pytest.raises(CdpTimeoutError):
            await conn.call("Test.never", timeout=0.05)
        assert conn.pending_count == 0
        await conn.close()

    asyncio.run(scenario())


def test_enable_failure_fails_connect_and_closes_socket() -> None:
    def responder(msg: dict[str, Any]) -> list[dict[str, Any]]:
        if msg["method"] == "Runtime.enable":
            return [{"id": msg["id"], "error": {"code": -32000, "message": "boom"}}]
        return _ok(msg)

    async def scenario() -> FakeSocket:
        ws = FakeSocket(responder=responder)
        conn = _connection(ws, enable_methods=("Page.enable", "Runtime.enable", "DOM.enable"))
        with pytest.raises(CdpCommandError):
            await conn.connect()
        assert not conn.is_open
        return ws

    ws = asyncio.run(scenario())
    assert ws.close_calls == 1
    assert [m["method"] for m in ws.sent] == ["Page.enable", "Runtime.enable"]


def test_open_failure_raises_not_connected() -> None:
    conn = CdpConnection("ws://127.0.0.1:1/devtools/page/x")

    async def _open() -> Any:
        raise OSError("connection refused")

    conn._open_socket = _open  # type: ignore[method-assign]
    with pytest.raises(NotConnectedError):
        asyncio.run(conn.connect())
    assert not conn.is_open


def test_real_websocket_server_out_of_order_replies() -> None:
    try:
        import websockets  # type: ignore[import-not-found]
    except Exception:  # noqa: BLE001
        pytest.skip("websockets not installed")

    async def handler(ws: Any) -> None:
        batch: list[dict[str, Any]] = []
        async for raw in ws:
            batch.append(json.loads(raw))
            if len(batch) == 3:
                for msg in reversed(batch):
                    await ws.send(json.dumps({"id": msg["id"], "result": {"method": msg["method"]}}))
                batch.clear()

    async def scenario() -> list[dict[str, Any]]:
        async with websockets.serve(handler, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            conn = CdpConnection(f"ws://127.0.0.1:{port}/devtools/page/1", timeout=5.0, enable_methods=())
            await conn.connect()
            try:
                return await asyncio.gather(*(conn.call(f"Test.m{i}") for i in range(3)))
            finally:
                await conn.close()

    results = asyncio.run(scenario())
    assert [r["method"] for r in results] == ["Test.m0", "Test.m1", "Test.m2"]
