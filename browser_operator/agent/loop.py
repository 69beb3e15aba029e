"""Multi-turn operator loop.

One OperatorAgent drives one browser session: it connects with capped
exponential backoff, then alternates between the reasoning endpoint and
the action executor until the model stops asking for actions, the turn
budget runs out, or stop() is called.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from ..browser_session import BrowserSession
from ..config import OperatorConfig
from ..discovery import resolve_stream_url
from ..http_client import HttpClientError
from ..redaction import redact_for_log
from ..session_cdp import CdpConnection
from .actions import ActionError, decode_action
from .cancel import CancellationToken, OperatorCancelled
from .coords import CoordinateFrame
from .executor import ActionExecutor
from .reasoning import BadResponseError, ResponsesClient, extract_assistant_text
from .schema import build_tools

logger = logging.getLogger("browser_operator.agent")

StatusListener = Callable[[str], None]
Connector = Callable[[OperatorConfig], Awaitable[BrowserSession]]


class AgentState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


TERMINAL_STATES = frozenset({AgentState.COMPLETED, AgentState.STOPPED, AgentState.FAILED})


class Reasoner(Protocol):
    async def create(self, input_items: list[dict[str, Any]], tools: list[dict[str, Any]]) -> list[dict[str, Any]]: ...


class InvalidViewportError(Exception):
    pass


@dataclass
class RunResult:
    state: AgentState
    status: str
    turns: int
    items: list[dict[str, Any]] = field(default_factory=list)


async def default_connector(config: OperatorConfig) -> BrowserSession:
    """Discover a page target, open its stream and wrap it in a BrowserSession."""
    ws_url = await resolve_stream_url(config)
    conn = CdpConnection(ws_url, timeout=config.cdp_timeout, max_message_bytes=config.max_message_bytes)
    await conn.connect()
    return BrowserSession(
        conn,
        screenshot_format=config.screenshot_format,
        screenshot_quality=config.screenshot_quality,
    )


def _call_id(item: dict[str, Any]) -> str:
    for key in ("call_id", "id"):
        value = item.get(key)
        if isinstance(value, str) and value:
            return value
    return f"call_{uuid.uuid4().hex}"


def _error_output(item: dict[str, Any], detail: str) -> dict[str, Any]:
    if item.get("type") == "function_call":
        return {
            "type": "function_call_output",
            "call_id": _call_id(item),
            "output": json.dumps({"ok": False, "error": detail}),
        }
    out: dict[str, Any] = {
        "type": "computer_call_output",
        "call_id": _call_id(item),
        "output": {"type": "error", "error": detail},
    }
    checks = item.get("pending_safety_checks")
    if checks:
        out["acknowledged_safety_checks"] = checks
    return out


class OperatorAgent:
    def __init__(
        self,
        config: OperatorConfig,
        reasoner: Reasoner | None = None,
        connector: Connector | None = None,
        on_status: StatusListener | None = None,
    ) -> None:
        self.config = config
        self._reasoner = reasoner
        self._connector = connector or default_connector
        self._listeners: list[StatusListener] = [on_status] if on_status else []
        self._token = CancellationToken()
        self._session: BrowserSession | None = None
        self._session_closed = False
        self._task: asyncio.Task[RunResult] | None = None
        self.state = AgentState.IDLE
        self.status = "Idle"
        self.turns = 0

    def add_status_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def _set_status(self, status: str) -> None:
        self.status = status
        logger.info("status: %s", redact_for_log(status))
        for listener in list(self._listeners):
            listener(status)

    def _finish(self, state: AgentState, status: str) -> None:
        if self.state in TERMINAL_STATES:
            return
        self.state = state
        self._set_status(status)

    async def _close_session(self) -> None:
        session = self._session
        if session is None or self._session_closed:
            return
        self._session_closed = True
        try:
            await session.close()
        except (HttpClientError, OSError) as exc:
            logger.warning("session close failed: %s", exc)

    def start(self, prompt: str) -> asyncio.Task[RunResult]:
        """Schedule run(prompt) on the running loop."""
        self._task = asyncio.create_task(self.run(prompt))
        return self._task

    async def stop(self) -> None:
        """Cancel the run and close the transport; safe to call more than once."""
        if self._token.cancelled:
            return
        self._token.cancel()
        await self._close_session()
        self._finish(AgentState.STOPPED, "Stopped")

    async def run(self, prompt: str) -> RunResult:
        items: list[dict[str, Any]] = [{"role": "user", "content": prompt}]
        try:
            reasoner = self._reasoner or ResponsesClient(self.config)
            self.state = AgentState.CONNECTING
            session = await self._connect()
            self._session = session
            self._token.raise_if_cancelled()
            self.state = AgentState.RUNNING
            self._set_status("Connected. Starting operator...")
            await self._run_turns(session, reasoner, items)
        except OperatorCancelled:
            self._finish(AgentState.STOPPED, "Stopped")
        except BadResponseError as exc:
            logger.error("bad response payload: %s", exc)
            self._finish(*self._failure("Bad response payload"))
        except Exception as exc:
            logger.exception("operator failed")
            self._finish(*self._failure(f"Error: {exc}"))
        finally:
            self._token.cancel()
            await self._close_session()
        return RunResult(state=self.state, status=self.status, turns=self.turns, items=items)

    def _failure(self, status: str) -> tuple[AgentState, str]:
        # Errors raised because stop() tore down the transport are not failures.
        if self._token.cancelled:
            return AgentState.STOPPED, "Stopped"
        return AgentState.FAILED, status

    async def _connect(self) -> BrowserSession:
        delay = self.config.backoff_initial
        attempt = 0
        self._set_status("Connecting to browser...")
        while True:
            self._token.raise_if_cancelled()
            attempt += 1
            try:
                session = await self._connector(self.config)
            except (HttpClientError, OSError) as exc:
                logger.warning("connect attempt %d failed: %s", attempt, exc)
                self._set_status(f"Connecting to browser... (attempt #{attempt}; retrying in {delay:.1f}s)")
                await self._token.sleep(delay)
                delay = min(delay * 2, self.config.backoff_max)
                continue
            if self._token.cancelled:
                self._session = session
                raise OperatorCancelled("operator stopped")
            logger.info("connected after %d attempt(s)", attempt)
            return session

    async def _run_turns(self, session: BrowserSession, reasoner: Reasoner, items: list[dict[str, Any]]) -> None:
        executor = ActionExecutor(session, self.config)
        for turn in range(1, self.config.max_turns + 1):
            self._token.raise_if_cancelled()
            self.turns = turn
            width, height, ratio = await session.viewport_size()
            frame = CoordinateFrame.from_viewport(width, height, ratio)
            if not frame.is_valid:
                raise InvalidViewportError(f"Invalid viewport size {width}x{height}")
            tools = build_tools(self.config.tool_mode, frame.display_width, frame.display_height, self.config.environment)

            output = await reasoner.create(list(items), tools)
            self._token.raise_if_cancelled()
            items.extend(output)

            calls = [item for item in output if item.get("type") in ("computer_call", "function_call")]
            logger.info("turn %d: %d output item(s), %d call(s)", turn, len(output), len(calls))
            if not calls:
                text = extract_assistant_text(output)
                self._finish(AgentState.COMPLETED, text or "No actionable output")
                return

            trailing: list[dict[str, Any]] = []
            for index, item in enumerate(calls):
                if self._token.cancelled:
                    items.extend(_error_output(rest, "operator stopped") for rest in calls[index:])
                    raise OperatorCancelled("operator stopped")
                if item.get("type") == "computer_call":
                    items.append(await self._handle_computer_call(session, executor, item, frame))
                else:
                    output_item, image_item = await self._handle_function_call(session, executor, item)
                    items.append(output_item)
                    if image_item is not None:
                        trailing.append(image_item)
            items.extend(trailing)

        self._finish(AgentState.COMPLETED, "Turn limit reached")

    async def _capture(self, session: BrowserSession) -> str:
        image = await session.screenshot()
        return f"data:{session.screenshot_mime_type};base64,{base64.b64encode(image).decode('ascii')}"

    async def _handle_computer_call(
        self,
        session: BrowserSession,
        executor: ActionExecutor,
        item: dict[str, Any],
        frame: CoordinateFrame,
    ) -> dict[str, Any]:
        payload = item.get("action")
        kind = payload.get("type") if isinstance(payload, dict) else None
        self._set_status(f"Executing {kind or 'unknown'}")

        checks = item.get("pending_safety_checks") or []
        if checks:
            logger.warning("acknowledging safety checks: %s", redact_for_log(checks))

        try:
            await executor.execute(decode_action(payload), frame)
            image_url = await self._capture(session)
            current_url = await session.current_url()
        except (ActionError, HttpClientError, ValueError, OverflowError) as exc:
            logger.warning("action %s failed: %s", kind, exc)
            return _error_output(item, str(exc))

        output: dict[str, Any] = {"type": "input_image", "image_url": image_url}
        if current_url:
            output["current_url"] = current_url
        result: dict[str, Any] = {"type": "computer_call_output", "call_id": _call_id(item), "output": output}
        if checks:
            result["acknowledged_safety_checks"] = checks
        return result

    async def _handle_function_call(
        self,
        session: BrowserSession,
        executor: ActionExecutor,
        item: dict[str, Any],
    ) -> tuple[dict[str, Any], dict[str, Any] | None]:
        name = item.get("name") if isinstance(item.get("name"), str) else "unknown"
        self._set_status(f"Executing {name}")

        raw_args = item.get("arguments")
        try:
            args = json.loads(raw_args) if isinstance(raw_args, str) and raw_args.strip() else (raw_args or {})
        except json.JSONDecodeError:
            return _error_output(item, "invalid_json"), None
        if not isinstance(args, dict):
            return _error_output(item, "invalid_arguments"), None

        try:
            result, image = await executor.execute_function(name, args)
        except ActionError as exc:
            return _error_output(item, str(exc)), None
        except (HttpClientError, ValueError, OverflowError) as exc:
            logger.warning("function %s failed: %s", name, exc)
            return _error_output(item, str(exc)), None

        output_item = {"type": "function_call_output", "call_id": _call_id(item), "output": json.dumps(result)}
        if image is None:
            return output_item, None
        data_url = f"data:{session.screenshot_mime_type};base64,{base64.b64encode(image).decode('ascii')}"
        return output_item, {"role": "user", "content": [{"type": "input_image", "image_url": data_url}]}


__all__ = [
    "AgentState",
    "InvalidViewportError",
    "OperatorAgent",
    "RunResult",
    "default_connector",
]
