"""High-level browser actions built on a CdpConnection.

Every method here is a thin composition of one or more CDP calls. Coordinates
are CSS pixels; conversion from screenshot pixels happens in the agent layer.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from contextlib import suppress
from typing import Any, Protocol

logger = logging.getLogger("browser_operator.session")

DOUBLE_CLICK_DELAY_S = 0.05
MIN_DEVICE_PIXEL_RATIO = 0.5

_BUTTON_ALIASES = {
    "left": "left",
    "right": "right",
    "middle": "middle",
    "wheel": "middle",
    "back": "back",
    "forward": "forward",
}

# CDP Input.dispatchMouseEvent "buttons" bitmask.
_BUTTON_MASK = {"left": 1, "right": 2, "middle": 4, "back": 8, "forward": 16}

# Input.dispatchKeyEvent modifier bits.
_MODIFIER_BITS = {"Alt": 1, "Control": 2, "Meta": 4, "Shift": 8}
_MODIFIER_VK = {"Alt": 18, "Control": 17, "Meta": 91, "Shift": 16}
_MODIFIER_ALIASES = {
    "alt": "Alt",
    "option": "Alt",
    "ctrl": "Control",
    "control": "Control",
    "meta": "Meta",
    "cmd": "Meta",
    "command": "Meta",
    "super": "Meta",
    "win": "Meta",
    "shift": "Shift",
}

# name -> (key, code, windowsVirtualKeyCode, text)
_SPECIAL_KEYS: dict[str, tuple[str, str, int, str]] = {
    "enter": ("Enter", "Enter", 13, "\r"),
    "return": ("Enter", "Enter", 13, "\r"),
    "tab": ("Tab", "Tab", 9, ""),
    "space": (" ", "Space", 32, " "),
    "backspace": ("Backspace", "Backspace", 8, ""),
    "delete": ("Delete", "Delete", 46, ""),
    "del": ("Delete", "Delete", 46, ""),
    "escape": ("Escape", "Escape", 27, ""),
    "esc": ("Escape", "Escape", 27, ""),
    "arrowup": ("ArrowUp", "ArrowUp", 38, ""),
    "up": ("ArrowUp", "ArrowUp", 38, ""),
    "arrowdown": ("ArrowDown", "ArrowDown", 40, ""),
    "down": ("ArrowDown", "ArrowDown", 40, ""),
    "arrowleft": ("ArrowLeft", "ArrowLeft", 37, ""),
    "left": ("ArrowLeft", "ArrowLeft", 37, ""),
    "arrowright": ("ArrowRight", "ArrowRight", 39, ""),
    "right": ("ArrowRight", "ArrowRight", 39, ""),
    "home": ("Home", "Home", 36, ""),
    "end": ("End", "End", 35, ""),
    "pageup": ("PageUp", "PageUp", 33, ""),
    "pagedown": ("PageDown", "PageDown", 34, ""),
    "insert": ("Insert", "Insert", 45, ""),
}


class CdpCaller(Protocol):
    async def call(
        self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None
    ) -> dict[str, Any]: ...

    async def close(self) -> None: ...


def _key_definition(name: str) -> tuple[str, str, int, str]:
    lowered = name.strip().lower()
    if lowered in _SPECIAL_KEYS:
        return _SPECIAL_KEYS[lowered]
    if lowered.startswith("f") and lowered[1:].isdigit() and 1 <= int(lowered[1:]) <= 12:
        num = int(lowered[1:])
        return (f"F{num}", f"F{num}", 111 + num, "")
    if len(name) == 1:
        ch = name
        if ch.isalpha():
            return (ch, f"Key{ch.upper()}", ord(ch.upper()), ch)
        if ch.isdigit():
            return (ch, f"Digit{ch}", ord(ch), ch)
        return (ch, "", 0, ch)
    return (name, name, 0, "")


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    return 0.0


class BrowserSession:
    """
    Browser actions for one attached page.

    Wraps a CdpConnection (or anything exposing async call/close).
    """

    def __init__(
        self,
        connection: CdpCaller,
        *,
        screenshot_format: str = "jpeg",
        screenshot_quality: int = 60,
    ) -> None:
        self.conn = connection
        self.screenshot_format = screenshot_format
        self.screenshot_quality = max(1, min(int(screenshot_quality), 100))

    async def close(self) -> None:
        await self.conn.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    async def navigate(self, url: str) -> None:
        """Start navigating to url; does not wait for the load event."""
        await self.conn.call("Page.navigate", {"url": url})

    async def go_back(self) -> None:
        await self.evaluate("window.history.back(); true")

    async def go_forward(self) -> None:
        await self.evaluate("window.history.forward(); true")

    async def open_tab(self, url: str = "about:blank") -> str | None:
        """Open a new page target; this session stays attached to its own page."""
        result = await self.conn.call("Target.createTarget", {"url": url})
        target_id = result.get("targetId")
        return target_id if isinstance(target_id, str) else None

    async def current_url(self) -> str | None:
        value = await self.evaluate("window.location.href")
        return value if isinstance(value, str) else None

    # ─────────────────────────────────────────────────────────────────────────
    # JavaScript / DOM
    # ─────────────────────────────────────────────────────────────────────────

    async def evaluate(self, expression: str) -> Any:
        """Evaluate JavaScript in the page and return the by-value result.

        undefined, null, thrown exceptions and unexpected reply shapes all map to None.
        """
        result = await self.conn.call(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
        )
        if not isinstance(result, dict) or result.get("exceptionDetails"):
            return None
        value = result.get("result")
        if not isinstance(value, dict):
            return None
        if value.get("type") == "undefined":
            return None
        if value.get("type") == "object" and value.get("subtype") == "null":
            return None
        return value.get("value")

    async def click(self, selector: str) -> bool:
        """Click the first element matching selector via element.click()."""
        js = f"""
        (() => {{
            const el = document.querySelector({json.dumps(selector)});
            if (!el) return false;
            try {{ el.scrollIntoView({{block: 'center', inline: 'center'}}); }} catch (e) {{}}
            el.click();
            return true;
        }})()
        """
        return bool(await self.evaluate(js))

    async def type(self, selector: str, text: str) -> bool:
        """Set the value of an input-like element and fire input/change events."""
        js = f"""
        (() => {{
            const el = document.querySelector({json.dumps(selector)});
            if (!el) return false;
            try {{ el.focus(); }} catch (e) {{}}
            const text = {json.dumps(text)};
            if (el.isContentEditable) {{
                el.textContent = text;
            }} else {{
                el.value = text;
            }}
            el.dispatchEvent(new Event('input', {{bubbles: true}}));
            el.dispatchEvent(new Event('change', {{bubbles: true}}));
            return true;
        }})()
        """
        return bool(await self.evaluate(js))

    async def wait_for_selector(self, selector: str, timeout_ms: int = 5000, interval_ms: int = 100) -> bool:
        """Poll for selector every interval_ms until it resolves or timeout_ms elapses."""
        interval_ms = max(1, int(interval_ms))
        polls = max(0, int(timeout_ms)) // interval_ms + 1
        probe = f"document.querySelector({json.dumps(selector)}) !== null"
        for attempt in range(polls):
            if await self.evaluate(probe):
                return True
            if attempt < polls - 1:
                await asyncio.sleep(interval_ms / 1000.0)
        return False

    # ─────────────────────────────────────────────────────────────────────────
    # Screenshots & viewport
    # ─────────────────────────────────────────────────────────────────────────

    async def screenshot(self) -> bytes:
        """Capture the visible viewport as compressed image bytes."""
        params: dict[str, Any] = {
            "format": self.screenshot_format,
            "fromSurface": True,
            "captureBeyondViewport": False,
        }
        if self.screenshot_format != "png":
            params["quality"] = self.screenshot_quality
        result = await self.conn.call("Page.captureScreenshot", params)
        data = result.get("data")
        if not isinstance(data, str) or not data:
            return b""
        return base64.b64decode(data)

    @property
    def screenshot_mime_type(self) -> str:
        return f"image/{self.screenshot_format}"

    async def viewport_size(self) -> tuple[int, int, float]:
        """Return (css width, css height, device pixel ratio)."""
        width = _as_number(await self.evaluate("window.innerWidth"))
        height = _as_number(await self.evaluate("window.innerHeight"))
        ratio = _as_number(await self.evaluate("window.devicePixelRatio"))
        return int(width), int(height), max(MIN_DEVICE_PIXEL_RATIO, ratio)

    # ─────────────────────────────────────────────────────────────────────────
    # Mouse input
    # ─────────────────────────────────────────────────────────────────────────

    async def _mouse_event(self, event_type: str, x: float, y: float, **extra: Any) -> None:
        params: dict[str, Any] = {"type": event_type, "x": x, "y": y}
        params.update(extra)
        await self.conn.call("Input.dispatchMouseEvent", params)

    async def move_mouse(self, x: float, y: float) -> None:
        await self._mouse_event("mouseMoved", x, y)

    async def click_at(self, x: float, y: float, button: str = "left", click_count: int = 1) -> None:
        """Move to (x, y), then press and release there."""
        btn = _BUTTON_ALIASES.get((button or "left").lower(), "left")
        mask = _BUTTON_MASK.get(btn, 1)
        await self.move_mouse(x, y)
        await self._mouse_event("mousePressed", x, y, button=btn, buttons=mask, clickCount=click_count)
        await self._mouse_event("mouseReleased", x, y, button=btn, buttons=0, clickCount=click_count)

    async def double_click_at(self, x: float, y: float) -> None:
        await self.click_at(x, y, click_count=1)
        await asyncio.sleep(DOUBLE_CLICK_DELAY_S)
        await self.click_at(x, y, click_count=2)

    async def drag(self, path: list[tuple[float, float]]) -> None:
        """Press at the first point, move through the rest holding the left button, release at the last."""
        if not path:
            raise ValueError("drag requires at least one point")
        start_x, start_y = path[0]
        end_x, end_y = path[-1]
        await self.move_mouse(start_x, start_y)
        await self._mouse_event("mousePressed", start_x, start_y, button="left", buttons=1, clickCount=1)
        for x, y in path[1:]:
            await self._mouse_event("mouseMoved", x, y, button="left", buttons=1)
        await self._mouse_event("mouseReleased", end_x, end_y, button="left", buttons=0, clickCount=1)

    async def scroll_by(self, x: float, y: float, delta_x: float, delta_y: float) -> None:
        await self._mouse_event("mouseWheel", x, y, deltaX=delta_x, deltaY=delta_y)

    # ─────────────────────────────────────────────────────────────────────────
    # Keyboard input
    # ─────────────────────────────────────────────────────────────────────────

    async def type_text(self, text: str) -> None:
        if not text:
            return
        try:
            await self.conn.call("Input.insertText", {"text": str(text)})
            return
        except Exception as exc:  # noqa: BLE001
            logger.debug("Input.insertText failed, falling back to char events: %s", exc)
        for ch in text:
            await self.conn.call("Input.dispatchKeyEvent", {"type": "char", "text": ch})

    async def focus_page(self) -> None:
        """Best-effort: bring the page to front and focus the window."""
        with suppress(Exception):
            await self.conn.call("Page.bringToFront")
        with suppress(Exception):
            await self.evaluate("window.focus(); true")

    async def keypress(self, keys: list[str]) -> None:
        """Press a key chord: the last entry is the main key, the rest are modifiers."""
        names = [str(k) for k in keys if str(k).strip() or str(k) == " "]
        if not names:
            raise ValueError("keypress requires at least one key")

        *modifier_names, main_name = names
        modifiers: list[str] = []
        for raw in modifier_names:
            canonical = _MODIFIER_ALIASES.get(raw.strip().lower())
            if canonical is None:
                raise ValueError(f"Unknown modifier key: {raw}")
            if canonical not in modifiers:
                modifiers.append(canonical)

        mask = 0
        for mod in modifiers:
            mask |= _MODIFIER_BITS[mod]
        shortcut = any(mod != "Shift" for mod in modifiers)
        if shortcut:
            await self.focus_page()

        # A lone modifier as the main key ("shift") is pressed like any other key.
        main_mod = _MODIFIER_ALIASES.get(main_name.strip().lower())
        if main_mod is not None:
            key, code, vk, text = main_mod, f"{main_mod}Left", _MODIFIER_VK[main_mod], ""
        else:
            key, code, vk, text = _key_definition(main_name)
            if "Shift" in modifiers and len(text) == 1 and text.isalpha():
                key = text = text.upper()
        if shortcut:
            text = ""

        held = 0
        for mod in modifiers:
            held |= _MODIFIER_BITS[mod]
            await self.conn.call(
                "Input.dispatchKeyEvent",
                {
                    "type": "rawKeyDown",
                    "key": mod,
                    "code": f"{mod}Left",
                    "windowsVirtualKeyCode": _MODIFIER_VK[mod],
                    "modifiers": held,
                },
            )

        down: dict[str, Any] = {
            "type": "keyDown" if text else "rawKeyDown",
            "key": key,
            "code": code,
            "windowsVirtualKeyCode": vk,
            "modifiers": mask,
        }
        if text:
            down["text"] = text
            down["unmodifiedText"] = text
        await self.conn.call("Input.dispatchKeyEvent", down)
        await self.conn.call(
            "Input.dispatchKeyEvent",
            {"type": "keyUp", "key": key, "code": code, "windowsVirtualKeyCode": vk, "modifiers": mask},
        )

        for mod in reversed(modifiers):
            held &= ~_MODIFIER_BITS[mod]
            await self.conn.call(
                "Input.dispatchKeyEvent",
                {
                    "type": "keyUp",
                    "key": mod,
                    "code": f"{mod}Left",
                    "windowsVirtualKeyCode": _MODIFIER_VK[mod],
                    "modifiers": held,
                },
            )


__all__ = ["BrowserSession", "CdpCaller", "DOUBLE_CLICK_DELAY_S", "MIN_DEVICE_PIXEL_RATIO"]
