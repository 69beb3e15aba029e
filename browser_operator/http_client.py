from __future__ import annotations

import json
import ssl
import urllib.parse
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import HTTPSHandler, Request, build_opener

USER_AGENT = "browser-operator/1.0"


class HttpClientError(Exception):
    pass


class HttpStatusError(HttpClientError):
    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"HTTP {status}: {body[:300]}")
        self.status = status
        self.body = body


def _build_request(
    url: str,
    *,
    method: str = "GET",
    body: bytes | None = None,
    headers: dict[str, str] | None = None,
) -> Request:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise HttpClientError("Only http/https are supported")
    merged = {"User-Agent": USER_AGENT}
    if headers:
        merged.update(headers)
    return Request(url, data=body, headers=merged, method=method)


def http_request(
    url: str,
    *,
    method: str = "GET",
    body: bytes | None = None,
    headers: dict[str, str] | None = None,
    timeout: float = 10.0,
) -> bytes:
    """Perform a blocking HTTP request and return the raw response body.

    Non-2xx responses raise HttpStatusError; network failures raise HttpClientError.
    """
    req = _build_request(url, method=method, body=body, headers=headers)
    try:
        ctx = ssl.create_default_context()
        opener = build_opener(HTTPSHandler(context=ctx))
        with opener.open(req, timeout=timeout) as resp:
            return resp.read()
    except HTTPError as exc:
        detail = ""
        try:
            detail = exc.read().decode(errors="replace")
        except Exception:  # noqa: BLE001
            detail = str(exc.reason)
        raise HttpStatusError(exc.code, detail) from exc
    except (TimeoutError, URLError, OSError) as exc:
        raise HttpClientError(str(exc)) from exc


def http_get_json(url: str, timeout: float = 2.0, *, method: str = "GET") -> Any:
    """Fetch JSON from URL."""
    raw = http_request(url, method=method, timeout=timeout)
    try:
        return json.loads(raw.decode())
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HttpClientError(f"Invalid JSON from {url}: {exc}") from exc


def http_post_json(
    url: str,
    payload: dict[str, Any],
    *,
    headers: dict[str, str] | None = None,
    timeout: float = 60.0,
) -> bytes:
    """POST a JSON body; the caller decodes the response so it can classify bad payloads."""
    merged = {"Content-Type": "application/json"}
    if headers:
        merged.update(headers)
    body = json.dumps(payload).encode()
    return http_request(url, method="POST", body=body, headers=merged, timeout=timeout)
