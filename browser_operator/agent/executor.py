"""Maps decoded actions onto BrowserSession primitives.

Handlers are looked up by action type in a dispatch table; every coordinate
that reaches the browser has gone through CoordinateFrame.to_css first.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.parse
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from .actions import (
    Action,
    ActionError,
    BackAction,
    ClickAction,
    DoubleClickAction,
    DragAction,
    ForwardAction,
    GotoAction,
    KeypressAction,
    MoveAction,
    ScreenshotAction,
    ScrollAction,
    TypeAction,
    WaitAction,
)
from .coords import CoordinateFrame

if TYPE_CHECKING:
    from ..browser_session import BrowserSession
    from ..config import OperatorConfig

logger = logging.getLogger("browser_operator.agent.executor")

Handler = Callable[["ActionExecutor", Any, CoordinateFrame], Awaitable[None]]


def ensure_allowed_navigation(url: str, config: OperatorConfig) -> None:
    """Relaxed check for browser navigation - allows about:, data: and blob: schemes."""
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme in ("about", "data", "blob"):
        return
    if parsed.scheme not in ("http", "https"):
        raise ActionError(
            action="goto",
            reason=f"Unsupported scheme: {parsed.scheme or '<none>'}",
            suggestion="Use an absolute http(s) URL",
        )
    if not config.is_host_allowed(parsed.hostname or ""):
        raise ActionError(
            action="goto",
            reason=f"Host {parsed.hostname} is not in allowlist",
            suggestion="Stay on allowed hosts",
        )


async def _click(ex: ActionExecutor, action: ClickAction, frame: CoordinateFrame) -> None:
    x, y = frame.point_to_css(action.x, action.y)
    await ex.session.click_at(x, y, button=action.button)


async def _double_click(ex: ActionExecutor, action: DoubleClickAction, frame: CoordinateFrame) -> None:
    x, y = frame.point_to_css(action.x, action.y)
    await ex.session.double_click_at(x, y)


async def _scroll(ex: ActionExecutor, action: ScrollAction, frame: CoordinateFrame) -> None:
    x, y = frame.point_to_css(action.x, action.y)
    await ex.session.scroll_by(x, y, frame.to_css(action.scroll_x), frame.to_css(action.scroll_y))


async def _move(ex: ActionExecutor, action: MoveAction, frame: CoordinateFrame) -> None:
    x, y = frame.point_to_css(action.x, action.y)
    await ex.session.move_mouse(x, y)


async def _drag(ex: ActionExecutor, action: DragAction, frame: CoordinateFrame) -> None:
    await ex.session.drag([frame.point_to_css(px, py) for px, py in action.path])


async def _type(ex: ActionExecutor, action: TypeAction, frame: CoordinateFrame) -> None:  # noqa: ARG001
    await ex.session.type_text(action.text)


async def _keypress(ex: ActionExecutor, action: KeypressAction, frame: CoordinateFrame) -> None:  # noqa: ARG001
    try:
        await ex.session.keypress(list(action.keys))
    except ValueError as exc:
        raise ActionError(action="keypress", reason=str(exc), suggestion="Use modifier names like CTRL, ALT, SHIFT, META") from exc


async def _wait(ex: ActionExecutor, action: WaitAction, frame: CoordinateFrame) -> None:  # noqa: ARG001
    await asyncio.sleep(action.ms / 1000.0)


async def _goto(ex: ActionExecutor, action: GotoAction, frame: CoordinateFrame) -> None:  # noqa: ARG001
    ensure_allowed_navigation(action.url, ex.config)
    await ex.session.navigate(action.url)


async def _back(ex: ActionExecutor, action: BackAction, frame: CoordinateFrame) -> None:  # noqa: ARG001
    await ex.session.go_back()


async def _forward(ex: ActionExecutor, action: ForwardAction, frame: CoordinateFrame) -> None:  # noqa: ARG001
    await ex.session.go_forward()


async def _screenshot(ex: ActionExecutor, action: ScreenshotAction, frame: CoordinateFrame) -> None:  # noqa: ARG001
    # A screenshot is captured after every action anyway.
    return None


_HANDLERS: dict[type, Handler] = {
    ClickAction: _click,
    DoubleClickAction: _double_click,
    ScrollAction: _scroll,
    MoveAction: _move,
    DragAction: _drag,
    TypeAction: _type,
    KeypressAction: _keypress,
    WaitAction: _wait,
    GotoAction: _goto,
    BackAction: _back,
    ForwardAction: _forward,
    ScreenshotAction: _screenshot,
}


class ActionExecutor:
    """Executes computer-use actions and selector-based function calls."""

    def __init__(self, session: BrowserSession, config: OperatorConfig) -> None:
        self.session = session
        self.config = config

    async def execute(self, action: Action, frame: CoordinateFrame) -> None:
        handler = _HANDLERS.get(type(action))
        if handler is None:
            raise ActionError(action=getattr(action, "kind", "unknown"), reason="No handler for action")
        logger.info("action=%s %s", action.kind, _describe(action))
        await handler(self, action, frame)

    async def execute_function(self, name: str, args: dict[str, Any]) -> tuple[dict[str, Any], bytes | None]:
        """Run one selector-based function tool; returns (result payload, screenshot bytes)."""
        if name == "navigate" and isinstance(args.get("url"), str):
            url = args["url"]
            ensure_allowed_navigation(url, self.config)
            await self.session.navigate(url)
            return {"ok": True, "action": name, "url": url}, None
        if name == "click" and isinstance(args.get("selector"), str):
            selector = args["selector"]
            found = await self.session.click(selector)
            return {"ok": found, "action": name, "selector": selector}, None
        if name == "type" and isinstance(args.get("selector"), str) and isinstance(args.get("text"), str):
            selector = args["selector"]
            found = await self.session.type(selector, args["text"])
            return {"ok": found, "action": name, "selector": selector}, None
        if name == "evaluate" and isinstance(args.get("expression"), str):
            value = await self.session.evaluate(args["expression"])
            return {"ok": True, "action": name, "value": _json_safe(value)}, None
        if name == "screenshot":
            return {"ok": True, "action": name}, await self.session.screenshot()
        return {"ok": False, "error": "invalid_arguments", "action": name}, None


def _json_safe(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def _describe(action: Action) -> str:
    if isinstance(action, TypeAction):
        return f"text_len={len(action.text)}"
    if isinstance(action, DragAction):
        return f"points={len(action.path)}"
    fields = getattr(action, "__dataclass_fields__", {})
    return " ".join(f"{name}={getattr(action, name)}" for name in fields)


__all__ = ["ActionExecutor", "ensure_allowed_navigation"]
