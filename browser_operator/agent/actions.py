"""Decoded action requests.

The reasoning endpoint sends a loosely-typed action object; `decode_action`
turns it into one of the frozen dataclasses below exactly once, at the loop
boundary, so the executor never re-inspects raw dicts.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Union

from .schema import ACTION_SHAPES

MAX_WAIT_MS = 60_000


@dataclass
class ActionError(Exception):
    """Structured action failure, reported back to the reasoning endpoint."""

    action: str
    reason: str
    suggestion: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        text = f"[{self.action}] {self.reason}"
        if self.suggestion:
            text += f". Suggestion: {self.suggestion}"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "action": self.action,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "details": self.details,
        }


class ActionDecodeError(ActionError):
    pass


@dataclass(frozen=True)
class ClickAction:
    x: float
    y: float
    button: str = "left"
    kind = "click"


@dataclass(frozen=True)
class DoubleClickAction:
    x: float
    y: float
    kind = "double_click"


@dataclass(frozen=True)
class ScrollAction:
    x: float
    y: float
    scroll_x: float
    scroll_y: float
    kind = "scroll"


@dataclass(frozen=True)
class MoveAction:
    x: float
    y: float
    kind = "move"


@dataclass(frozen=True)
class DragAction:
    path: tuple[tuple[float, float], ...]
    kind = "drag"


@dataclass(frozen=True)
class TypeAction:
    text: str
    kind = "type"


@dataclass(frozen=True)
class KeypressAction:
    keys: tuple[str, ...]
    kind = "keypress"


@dataclass(frozen=True)
class WaitAction:
    ms: int = 1000
    kind = "wait"


@dataclass(frozen=True)
class GotoAction:
    url: str
    kind = "goto"


@dataclass(frozen=True)
class BackAction:
    kind = "back"


@dataclass(frozen=True)
class ForwardAction:
    kind = "forward"


@dataclass(frozen=True)
class ScreenshotAction:
    kind = "screenshot"


Action = Union[
    ClickAction,
    DoubleClickAction,
    ScrollAction,
    MoveAction,
    DragAction,
    TypeAction,
    KeypressAction,
    WaitAction,
    GotoAction,
    BackAction,
    ForwardAction,
    ScreenshotAction,
]


def _fail(kind: str, reason: str, payload: dict[str, Any]) -> ActionDecodeError:
    required = ACTION_SHAPES.get(kind, {}).get("required") or []
    suggestion = f"Required arguments: {', '.join(required)}" if required else "Check the action arguments"
    return ActionDecodeError(
        action=kind or "unknown",
        reason=reason,
        suggestion=suggestion,
        details={"keys": sorted(str(k) for k in payload)},
    )


def _number(kind: str, payload: dict[str, Any], key: str, default: float | None = None) -> float:
    value = payload.get(key)
    if value is None and default is not None:
        return default
    if isinstance(value, bool):
        raise _fail(kind, f"'{key}' must be a number", payload)
    number: float | None = None
    if isinstance(value, (int, float, str)):
        try:
            number = float(value)
        except (ValueError, OverflowError):
            number = None
    if number is None:
        raise _fail(kind, f"'{key}' must be a number", payload)
    if not math.isfinite(number):
        raise _fail(kind, f"'{key}' must be a finite number", payload)
    return number


def _string(kind: str, payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise _fail(kind, f"'{key}' must be a string", payload)
    return value


def _decode_click(kind: str, p: dict[str, Any]) -> Action:
    button = p.get("button") or "left"
    if not isinstance(button, str):
        raise _fail(kind, "'button' must be a string", p)
    return ClickAction(_number(kind, p, "x"), _number(kind, p, "y"), button.lower())


def _decode_double_click(kind: str, p: dict[str, Any]) -> Action:
    return DoubleClickAction(_number(kind, p, "x"), _number(kind, p, "y"))


def _decode_scroll(kind: str, p: dict[str, Any]) -> Action:
    return ScrollAction(
        _number(kind, p, "x"),
        _number(kind, p, "y"),
        _number(kind, p, "scroll_x", 0.0),
        _number(kind, p, "scroll_y", 0.0),
    )


def _decode_move(kind: str, p: dict[str, Any]) -> Action:
    return MoveAction(_number(kind, p, "x"), _number(kind, p, "y"))


def _decode_drag(kind: str, p: dict[str, Any]) -> Action:
    raw = p.get("path")
    if not isinstance(raw, list) or not raw:
        raise _fail(kind, "'path' must be a non-empty list of points", p)
    points: list[tuple[float, float]] = []
    for point in raw:
        if isinstance(point, dict):
            points.append((_number(kind, point, "x"), _number(kind, point, "y")))
        elif isinstance(point, (list, tuple)) and len(point) == 2:
            points.append((_number(kind, {"x": point[0]}, "x"), _number(kind, {"y": point[1]}, "y")))
        else:
            raise _fail(kind, "each path point needs x and y", p)
    return DragAction(tuple(points))


def _decode_type(kind: str, p: dict[str, Any]) -> Action:
    return TypeAction(_string(kind, p, "text"))


def _decode_keypress(kind: str, p: dict[str, Any]) -> Action:
    keys = p.get("keys")
    if isinstance(keys, str):
        keys = [keys]
    if not isinstance(keys, list) or not keys or not all(isinstance(k, str) for k in keys):
        raise _fail(kind, "'keys' must be a non-empty list of strings", p)
    return KeypressAction(tuple(keys))


def _decode_wait(kind: str, p: dict[str, Any]) -> Action:
    return WaitAction(int(min(max(0.0, _number(kind, p, "ms", 1000.0)), MAX_WAIT_MS)))


def _decode_goto(kind: str, p: dict[str, Any]) -> Action:
    return GotoAction(_string(kind, p, "url"))


_DECODERS = {
    "click": _decode_click,
    "double_click": _decode_double_click,
    "scroll": _decode_scroll,
    "move": _decode_move,
    "drag": _decode_drag,
    "type": _decode_type,
    "keypress": _decode_keypress,
    "wait": _decode_wait,
    "goto": _decode_goto,
    "back": lambda kind, p: BackAction(),
    "forward": lambda kind, p: ForwardAction(),
    "screenshot": lambda kind, p: ScreenshotAction(),
}

ACTION_KINDS: tuple[str, ...] = tuple(_DECODERS)


def decode_action(payload: Any) -> Action:
    """Decode a raw action object into its typed form.

    Raises ActionDecodeError for unknown kinds and missing or ill-typed arguments.
    """
    if not isinstance(payload, dict):
        raise ActionDecodeError(action="unknown", reason="action payload must be an object")
    kind = payload.get("type")
    if not isinstance(kind, str) or not kind:
        raise _fail("", "action is missing its 'type'", payload)
    decoder = _DECODERS.get(kind)
    if decoder is None:
        raise ActionDecodeError(
            action=kind,
            reason=f"Unknown action type: {kind}",
            suggestion=f"Use one of: {', '.join(ACTION_KINDS)}",
        )
    return decoder(kind, payload)


__all__ = [
    "ACTION_KINDS",
    "MAX_WAIT_MS",
    "Action",
    "ActionDecodeError",
    "ActionError",
    "BackAction",
    "ClickAction",
    "DoubleClickAction",
    "DragAction",
    "ForwardAction",
    "GotoAction",
    "KeypressAction",
    "MoveAction",
    "ScreenshotAction",
    "ScrollAction",
    "TypeAction",
    "WaitAction",
    "decode_action",
]
