from __future__ import annotations

import os
from dataclasses import dataclass, field

TOOL_MODES = ("computer", "functions")
SCREENSHOT_FORMATS = ("jpeg", "webp", "png")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class OperatorConfig:
    cdp_host: str = "127.0.0.1"
    cdp_port: int = 9222
    api_key: str = ""
    api_base: str = "https://api.openai.com/v1"
    model: str = "computer-use-preview"
    tool_mode: str = "computer"
    environment: str = "browser"
    max_turns: int = 24
    http_timeout: float = 120.0
    discovery_timeout: float = 2.0
    cdp_timeout: float = 30.0
    max_message_bytes: int = 16 * 1024 * 1024
    screenshot_format: str = "jpeg"
    screenshot_quality: int = 60
    backoff_initial: float = 0.2
    backoff_max: float = 5.0
    allow_hosts: list[str] = field(default_factory=list)

    @staticmethod
    def normalize_tool_mode(raw: str | None) -> str:
        mode = (raw or "").strip().lower()
        if mode in {"functions", "function", "fn"}:
            return "functions"
        return "computer"

    @staticmethod
    def normalize_screenshot_format(raw: str | None) -> str:
        fmt = (raw or "").strip().lower()
        if fmt == "jpg":
            return "jpeg"
        if fmt in SCREENSHOT_FORMATS:
            return fmt
        return "jpeg"

    @classmethod
    def from_env(cls) -> OperatorConfig:
        allow_raw = os.environ.get("OPERATOR_ALLOW_HOSTS", "")
        allow_hosts = [host.strip().lower() for host in allow_raw.split(",") if host.strip() and host.strip() != "*"]
        quality = _env_int("OPERATOR_SCREENSHOT_QUALITY", 60)
        return cls(
            cdp_host=os.environ.get("OPERATOR_CDP_HOST", "127.0.0.1").strip() or "127.0.0.1",
            cdp_port=_env_int("OPERATOR_CDP_PORT", 9222),
            api_key=os.environ.get("OPENAI_API_KEY", "").strip(),
            api_base=(os.environ.get("OPERATOR_API_BASE") or "https://api.openai.com/v1").rstrip("/"),
            model=os.environ.get("OPERATOR_MODEL", "computer-use-preview").strip() or "computer-use-preview",
            tool_mode=cls.normalize_tool_mode(os.environ.get("OPERATOR_TOOL_MODE")),
            environment=os.environ.get("OPERATOR_ENVIRONMENT", "browser").strip() or "browser",
            max_turns=max(1, _env_int("OPERATOR_MAX_TURNS", 24)),
            http_timeout=_env_float("OPERATOR_HTTP_TIMEOUT", 120.0),
            discovery_timeout=_env_float("OPERATOR_DISCOVERY_TIMEOUT", 2.0),
            cdp_timeout=_env_float("OPERATOR_CDP_TIMEOUT", 30.0),
            max_message_bytes=_env_int("OPERATOR_MAX_MESSAGE_BYTES", 16 * 1024 * 1024),
            screenshot_format=cls.normalize_screenshot_format(os.environ.get("OPERATOR_SCREENSHOT_FORMAT")),
            screenshot_quality=max(1, min(quality, 100)),
            backoff_initial=_env_float("OPERATOR_BACKOFF_INITIAL", 0.2),
            backoff_max=_env_float("OPERATOR_BACKOFF_MAX", 5.0),
            allow_hosts=allow_hosts,
        )

    @property
    def debug_base_url(self) -> str:
        return f"http://{self.cdp_host}:{self.cdp_port}"

    def is_host_allowed(self, host: str) -> bool:
        host = (host or "").strip().lower().rstrip(".")
        if not self.allow_hosts:
            return True
        for raw_allowed in self.allow_hosts:
            allowed = (raw_allowed or "").strip().lower().lstrip(".").rstrip(".")
            if not allowed:
                continue
            if host == allowed:
                return True
            if host.endswith("." + allowed):
                return True
        return False
