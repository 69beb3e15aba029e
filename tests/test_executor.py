from __future__ import annotations

import asyncio

import pytest
from fakes import FakeSession

from browser_operator.agent.actions import ActionError, decode_action
from browser_operator.agent.coords import CoordinateFrame
from browser_operator.agent.executor import ActionExecutor, ensure_allowed_navigation
from browser_operator.config import OperatorConfig

RETINA = CoordinateFrame(1280, 720, 2.0)


def _run(session: FakeSession, payload: dict, config: OperatorConfig | None = None, frame: CoordinateFrame = RETINA) -> None:
    executor = ActionExecutor(session, config or OperatorConfig())  # type: ignore[arg-type]
    asyncio.run(executor.execute(decode_action(payload), frame))


def test_pointer_actions_convert_device_to_css_pixels() -> None:
    session = FakeSession()
    _run(session, {"type": "click", "x": 200, "y": 101, "button": "right"})
    _run(session, {"type": "double_click", "x": 10, "y": 10})
    _run(session, {"type": "move", "x": 2, "y": 4})
    _run(session, {"type": "scroll", "x": 100, "y": 100, "scroll_x": 0, "scroll_y": 600})
    _run(session, {"type": "drag", "path": [{"x": 0, "y": 0}, {"x": 40, "y": 80}]})

    assert session.calls == [
        ("click_at", 100, 50, "right"),
        ("double_click_at", 5, 5),
        ("move_mouse", 1, 2),
        ("scroll_by", 50, 50, 0, 300),
        ("drag", [(0, 0), (20, 40)]),
    ]


def test_keyboard_and_navigation_actions() -> None:
    session = FakeSession()
    _run(session, {"type": "type", "text": "hello"})
    _run(session, {"type": "keypress", "keys": ["CTRL", "l"]})
    _run(session, {"type": "goto", "url": "https://example.com/docs"})
    _run(session, {"type": "back"})
    _run(session, {"type": "forward"})
    _run(session, {"type": "screenshot"})

    assert session.calls == [
        ("type_text", "hello"),
        ("keypress", ["CTRL", "l"]),
        ("navigate", "https://example.com/docs"),
        ("go_back",),
        ("go_forward",),
    ]


def test_wait_sleeps_for_requested_milliseconds(monkeypatch: pytest.MonkeyPatch) -> None:
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    monkeypatch.setattr("browser_operator.agent.executor.asyncio.sleep", fake_sleep)
    _run(FakeSession(), {"type": "wait"})
    _run(FakeSession(), {"type": "wait", "ms": 250})
    assert sleeps == [1.0, 0.25]


def test_goto_respects_host_allowlist() -> None:
    session = FakeSession()
    config = OperatorConfig(allow_hosts=["example.com"])
    with pytest.raises(ActionError) as excinfo:
        _run(session, {"type": "goto", "url": "https://evil.test/"}, config)
    assert "allowlist" in excinfo.value.reason
    assert session.calls == []

    _run(session, {"type": "goto", "url": "https://docs.example.com/"}, config)
    assert session.calls == [("navigate", "https://docs.example.com/")]


def test_navigation_check_allows_blank_and_rejects_odd_schemes() -> None:
    config = OperatorConfig(allow_hosts=["example.com"])
    ensure_allowed_navigation("about:blank", config)
    with pytest.raises(ActionError):
        ensure_allowed_navigation("file:///etc/passwd", config)


def test_keypress_value_error_becomes_action_error() -> None:
    with pytest.raises(ActionError) as excinfo:
        _run(FakeSession(), {"type": "keypress", "keys": ["bogus", "a"]})
    assert excinfo.value.action == "keypress"


def test_function_tools_return_json_ready_results() -> None:
    session = FakeSession()
    executor = ActionExecutor(session, OperatorConfig())  # type: ignore[arg-type]

    async def scenario() -> list[tuple[dict, bytes | None]]:
        return [
            await executor.execute_function("navigate", {"url": "https://example.com/"}),
            await executor.execute_function("click", {"selector": "#go"}),
            await executor.execute_function("type", {"selector": "#q", "text": "cats"}),
            await executor.execute_function("evaluate", {"expression": "6 * 7"}),
            await executor.execute_function("screenshot", {}),
            await executor.execute_function("click", {}),
        ]

    results = asyncio.run(scenario())
    assert results[0] == ({"ok": True, "action": "navigate", "url": "https://example.com/"}, None)
    assert results[1][0]["ok"] is True
    assert results[2][0]["selector"] == "#q"
    assert results[3][0]["value"] == 42
    assert results[4] == ({"ok": True, "action": "screenshot"}, b"jpeg-bytes")
    assert results[5] == ({"ok": False, "error": "invalid_arguments", "action": "click"}, None)
