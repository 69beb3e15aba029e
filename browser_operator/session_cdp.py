"""CDP transport: one websocket, one background receive task, id-correlated calls.

The pending-request map and the id counter are only touched from the event loop
that owns the connection, so the loop itself is the single serialized owner:
a waiter is registered before its frame is sent, and whichever of reply,
send failure, timeout or forced close comes first removes it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

from .http_client import HttpClientError

logger = logging.getLogger("browser_operator.cdp")

ENABLE_METHODS: tuple[str, ...] = ("Page.enable", "Runtime.enable", "DOM.enable")


def _import_websockets():
    try:
        import websockets  # type: ignore[import-not-found]

        return websockets
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(
            "The CDP transport requires the 'websockets' Python package (pip install websockets)."
        ) from exc


class CdpError(HttpClientError):
    pass


class NotConnectedError(CdpError):
    pass


class TransmissionError(CdpError):
    pass


class CdpClosedError(CdpError):
    pass


class CdpTimeoutError(CdpError):
    pass


class CdpCommandError(CdpError):
    """The browser answered the call with an embedded error object."""

    def __init__(self, method: str, error: Any) -> None:
        if isinstance(error, dict):
            self.code = error.get("code")
            message = str(error.get("message") or error)
        else:
            self.code = None
            message = str(error)
        self.method = method
        super().__init__(f"{method} failed: {message}")


@dataclass
class PendingRequest:
    id: int
    method: str
    submitted_at: float
    future: asyncio.Future

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.submitted_at) * 1000.0

    def resolve(self, message: dict[str, Any]) -> None:
        if not self.future.done():
            self.future.set_result(message)

    def fail(self, exc: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(exc)


class CdpConnection:
    """Async CDP websocket connection with request/response correlation."""

    def __init__(
        self,
        ws_url: str,
        *,
        timeout: float | None = 30.0,
        max_message_bytes: int = 16 * 1024 * 1024,
        enable_methods: tuple[str, ...] = ENABLE_METHODS,
    ) -> None:
        self.ws_url = ws_url
        self.timeout = timeout
        self.max_message_bytes = int(max_message_bytes)
        self.enable_methods = tuple(enable_methods)
        self._ws: Any | None = None
        self._reader: asyncio.Task | None = None
        self._next_id = 1
        self._pending: dict[int, PendingRequest] = {}
        self._open = False
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._open and self._ws is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def _open_socket(self) -> Any:
        websockets = _import_websockets()
        return await websockets.connect(
            self.ws_url,
            max_size=self.max_message_bytes,
            open_timeout=self.timeout,
        )

    async def connect(self) -> None:
        """Open the stream, start the receive loop and enable the required domains."""
        if self._ws is not None:
            raise CdpError("Connection already established")
        try:
            self._ws = await self._open_socket()
        except Exception as exc:  # noqa: BLE001
            self._ws = None
            raise NotConnectedError(f"Failed to open {self.ws_url}: {exc}") from exc

        self._open = True
        self._closed = False
        self._reader = asyncio.create_task(self._receive_loop(self._ws), name="cdp-receive")
        logger.info("cdp connected %s", self.ws_url)

        try:
            for method in self.enable_methods:
                await self.call(method)
        except CdpError:
            await self.close()
            raise

    async def close(self) -> None:
        """Tear down the stream and fail every outstanding call. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._open = False

        self._fail_pending(CdpClosedError("connection closed"))

        reader = self._reader
        self._reader = None
        if reader is not None and not reader.done():
            reader.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await reader

        ws = self._ws
        if ws is not None:
            with suppress(Exception):
                await ws.close()
            logger.info("cdp closed %s", self.ws_url)

    def _fail_pending(self, exc: CdpError) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for req in pending:
            req.fail(exc)
        if pending:
            logger.debug("failed %d pending call(s): %s", len(pending), exc)

    async def _receive_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError):
                    logger.debug("dropping undecodable frame")
                    continue
                if not isinstance(message, dict):
                    continue
                msg_id = message.get("id")
                if not isinstance(msg_id, int):
                    # Unsolicited event; only request/response is exposed.
                    continue
                req = self._pending.pop(msg_id, None)
                if req is None:
                    logger.debug("dropping reply for unknown id=%s", msg_id)
                    continue
                logger.debug("cdp %s id=%d %.1fms", req.method, req.id, req.elapsed_ms)
                req.resolve(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.debug("cdp receive loop ended: %s", exc)
        finally:
            self._open = False
            self._fail_pending(CdpClosedError("connection closed by peer"))

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a CDP command and wait for the reply with the same id."""
        ws = self._ws
        if ws is None or not self._open:
            raise NotConnectedError(f"Not connected (method={method})")

        loop = asyncio.get_running_loop()
        msg_id = self._next_id
        self._next_id += 1
        req = PendingRequest(id=msg_id, method=method, submitted_at=time.monotonic(), future=loop.create_future())
        self._pending[msg_id] = req

        frame = json.dumps({"id": msg_id, "method": method, "params": params or {}})
        try:
            await ws.send(frame)
        except Exception as exc:  # noqa: BLE001
            self._pending.pop(msg_id, None)
            if req.future.done() and not req.future.cancelled():
                # Already failed by a concurrent close; consume it so asyncio does not warn.
                req.future.exception()
            else:
                req.future.cancel()
            raise TransmissionError(f"{method}: send failed: {exc}") from exc

        wait_s = self.timeout if timeout is None else timeout
        try:
            if wait_s is not None and wait_s > 0:
                reply = await asyncio.wait_for(req.future, timeout=wait_s)
            else:
                reply = await req.future
        except asyncio.TimeoutError:
            raise CdpTimeoutError(f"{method} timed out after {wait_s:.1f}s") from None
        finally:
            self._pending.pop(msg_id, None)

        if "error" in reply:
            raise CdpCommandError(method, reply["error"])
        result = reply.get("result")
        return result if isinstance(result, dict) else {}


__all__ = [
    "CdpClosedError",
    "CdpCommandError",
    "CdpConnection",
    "CdpError",
    "CdpTimeoutError",
    "ENABLE_METHODS",
    "NotConnectedError",
    "PendingRequest",
    "TransmissionError",
]
