"""Redaction helpers for logging conversation items and request payloads.

Screenshots dominate every payload, and API keys must never reach a log line,
so anything passed to a logger goes through here first.
"""

from __future__ import annotations

import os
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SENSITIVE_SUBSTRINGS = (
    "token",
    "secret",
    "password",
    "passwd",
    "authorization",
    "cookie",
    "jwt",
    "bearer",
    "api-key",
    "api_key",
    "apikey",
)

_SENSITIVE_EXACT = {
    # Avoid false-positives like "author" while still protecting obvious keys.
    "auth",
    "pwd",
}


def is_sensitive_key(key: str) -> bool:
    k = (key or "").strip().lower()
    if not k:
        return False
    if k in _SENSITIVE_EXACT:
        return True
    return any(s in k for s in _SENSITIVE_SUBSTRINGS)


def _max_text_chars() -> int:
    try:
        return max(40, int(os.environ.get("OPERATOR_LOG_MAX_CHARS") or 400))
    except ValueError:
        return 400


def redact_url(url: str) -> str:
    """Drop userinfo and redact sensitive query parameters; unchanged URLs are returned as-is."""
    if not isinstance(url, str) or not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    changed = False
    netloc = parts.netloc
    query = parts.query
    if "@" in netloc:
        netloc = netloc.split("@", 1)[1]
        changed = True
    if query:
        pairs = parse_qsl(query, keep_blank_values=True)
        out_pairs = [(k, "<redacted>" if is_sensitive_key(k) and v else v) for k, v in pairs]
        if out_pairs != pairs:
            query = urlencode(out_pairs, doseq=True)
            changed = True
    if not changed:
        return url
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


def _redact_string(value: str, max_chars: int) -> str:
    if value.startswith("data:image/"):
        return f"<omitted image base64 len={len(value)}>"
    if value.startswith(("http://", "https://")):
        value = redact_url(value)
    if len(value) > max_chars:
        return value[:max_chars] + f"...<truncated len={len(value)}>"
    return value


def redact_for_log(value: Any, *, max_chars: int | None = None) -> Any:
    """Return a log-safe deep copy of a JSON-like value."""
    limit = max_chars if max_chars is not None else _max_text_chars()
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            if is_sensitive_key(key) and v:
                out[key] = "<redacted>"
            elif key in {"data", "image_url"} and isinstance(v, str) and len(v) > limit:
                out[key] = f"<omitted image base64 len={len(v)}>"
            else:
                out[key] = redact_for_log(v, max_chars=limit)
        return out
    if isinstance(value, list):
        return [redact_for_log(v, max_chars=limit) for v in value]
    if isinstance(value, str):
        return _redact_string(value, limit)
    if isinstance(value, (bytes, bytearray)):
        return f"<omitted bytes len={len(value)}>"
    return value


def redact_headers(headers: dict[str, Any]) -> dict[str, Any]:
    return {k: ("<redacted>" if is_sensitive_key(str(k)) else v) for k, v in (headers or {}).items()}


__all__ = ["is_sensitive_key", "redact_for_log", "redact_headers", "redact_url"]
