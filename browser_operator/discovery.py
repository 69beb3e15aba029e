"""Target discovery against the browser's debugging HTTP endpoint.

One probe per call: list targets, take the first page with a websocket URL,
otherwise ask the browser for a fresh blank page. Retrying is the caller's job.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .config import OperatorConfig
from .http_client import HttpClientError, http_get_json

logger = logging.getLogger("browser_operator.discovery")


class NoTargetAvailableError(HttpClientError):
    pass


def pick_page_target(targets: Any) -> str | None:
    """Return the stream URL of the first page-level target, if any."""
    if not isinstance(targets, list):
        return None
    for target in targets:
        if not isinstance(target, dict):
            continue
        if target.get("type") != "page":
            continue
        ws_url = target.get("webSocketDebuggerUrl")
        if isinstance(ws_url, str) and ws_url:
            return ws_url
    return None


def _create_blank_target(config: OperatorConfig) -> str | None:
    url = f"{config.debug_base_url}/json/new?about:blank"
    # Chrome 111+ requires PUT for /json/new; older builds only answer GET.
    for method in ("PUT", "GET"):
        try:
            created = http_get_json(url, timeout=config.discovery_timeout, method=method)
        except HttpClientError as exc:
            logger.debug("json/new via %s failed: %s", method, exc)
            continue
        if isinstance(created, dict):
            ws_url = created.get("webSocketDebuggerUrl")
            if isinstance(ws_url, str) and ws_url:
                return ws_url
    return None


def resolve_stream_url_sync(config: OperatorConfig) -> str:
    listing_error: str | None = None
    try:
        targets = http_get_json(f"{config.debug_base_url}/json", timeout=config.discovery_timeout)
    except HttpClientError as exc:
        listing_error = str(exc)
        targets = None

    ws_url = pick_page_target(targets)
    if ws_url:
        logger.debug("discovered page target %s", ws_url)
        return ws_url

    ws_url = _create_blank_target(config)
    if ws_url:
        logger.info("created blank page target %s", ws_url)
        return ws_url

    detail = f" (listing failed: {listing_error})" if listing_error else ""
    raise NoTargetAvailableError(f"No debuggable page on {config.debug_base_url}{detail}")


async def resolve_stream_url(config: OperatorConfig) -> str:
    return await asyncio.to_thread(resolve_stream_url_sync, config)


__all__ = ["NoTargetAvailableError", "pick_page_target", "resolve_stream_url", "resolve_stream_url_sync"]
