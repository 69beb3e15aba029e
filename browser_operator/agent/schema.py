"""Tool declarations sent to the reasoning endpoint."""

from __future__ import annotations

from typing import Any

# Required argument shape per action kind (JSON-schema fragments).
ACTION_SHAPES: dict[str, dict[str, Any]] = {
    "click": {
        "required": ["x", "y"],
        "properties": {
            "x": {"type": "integer"},
            "y": {"type": "integer"},
            "button": {"type": "string", "enum": ["left", "right", "wheel", "back", "forward"]},
        },
    },
    "double_click": {"required": ["x", "y"], "properties": {"x": {"type": "integer"}, "y": {"type": "integer"}}},
    "scroll": {
        "required": ["x", "y", "scroll_x", "scroll_y"],
        "properties": {
            "x": {"type": "integer"},
            "y": {"type": "integer"},
            "scroll_x": {"type": "integer"},
            "scroll_y": {"type": "integer"},
        },
    },
    "move": {"required": ["x", "y"], "properties": {"x": {"type": "integer"}, "y": {"type": "integer"}}},
    "drag": {
        "required": ["path"],
        "properties": {
            "path": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {"x": {"type": "integer"}, "y": {"type": "integer"}},
                    "required": ["x", "y"],
                },
            }
        },
    },
    "type": {"required": ["text"], "properties": {"text": {"type": "string"}}},
    "keypress": {"required": ["keys"], "properties": {"keys": {"type": "array", "items": {"type": "string"}}}},
    "wait": {"required": [], "properties": {"ms": {"type": "integer"}}},
    "goto": {"required": ["url"], "properties": {"url": {"type": "string"}}},
    "back": {"required": [], "properties": {}},
    "forward": {"required": [], "properties": {}},
    "screenshot": {"required": [], "properties": {}},
}


def computer_tool(display_width: int, display_height: int, environment: str = "browser") -> dict[str, Any]:
    """Native computer-use tool; dimensions are device pixels so coordinates line up with screenshots."""
    return {
        "type": "computer_use_preview",
        "display_width": int(display_width),
        "display_height": int(display_height),
        "environment": environment,
    }


def _function(name: str, description: str, properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "description": description,
        "parameters": {"type": "object", "properties": properties, "required": required},
    }


def function_tools() -> list[dict[str, Any]]:
    """Selector-based function tools (alternative to the computer-use tool)."""
    return [
        _function("navigate", "Navigate the browser to a URL", {"url": {"type": "string"}}, ["url"]),
        _function("click", "Click an element by CSS selector", {"selector": {"type": "string"}}, ["selector"]),
        _function(
            "type",
            "Type text into an element by CSS selector",
            {"selector": {"type": "string"}, "text": {"type": "string"}},
            ["selector", "text"],
        ),
        _function(
            "evaluate",
            "Run JavaScript in the page context",
            {"expression": {"type": "string"}},
            ["expression"],
        ),
        _function("screenshot", "Capture a screenshot of the current page", {}, []),
    ]


def build_tools(tool_mode: str, display_width: int, display_height: int, environment: str) -> list[dict[str, Any]]:
    if tool_mode == "functions":
        return function_tools()
    return [computer_tool(display_width, display_height, environment)]


__all__ = ["ACTION_SHAPES", "build_tools", "computer_tool", "function_tools"]
