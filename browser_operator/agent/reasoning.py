"""Client for the remote reasoning endpoint (Responses API)."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from ..config import OperatorConfig
from ..http_client import HttpClientError, http_post_json
from ..redaction import redact_for_log, redact_headers

logger = logging.getLogger("browser_operator.reasoning")


class ConfigurationError(Exception):
    """Fatal misconfiguration detected before any request is made."""


class ReasoningError(HttpClientError):
    pass


class BadResponseError(ReasoningError):
    """The endpoint answered, but not with a decodable `{output: [...]}` payload."""


def parse_output(raw: bytes) -> list[dict[str, Any]]:
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise BadResponseError(f"Response is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise BadResponseError("Response is not an object")
    output = payload.get("output")
    if not isinstance(output, list):
        raise BadResponseError("Response has no output list")
    if not all(isinstance(item, dict) for item in output):
        raise BadResponseError("Response output contains non-object items")
    return output


class ResponsesClient:
    def __init__(self, config: OperatorConfig) -> None:
        if not config.api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set")
        self.config = config

    @property
    def endpoint(self) -> str:
        return f"{self.config.api_base.rstrip('/')}/responses"

    async def create(self, input_items: list[dict[str, Any]], tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Submit the whole conversation and return the output items."""
        body = {
            "model": self.config.model,
            "input": input_items,
            "tools": tools,
            "truncation": "auto",
        }
        headers = {"Authorization": f"Bearer {self.config.api_key}"}
        logger.debug(
            "responses request %s items=%d headers=%s tools=%s",
            self.endpoint,
            len(input_items),
            redact_headers(headers),
            redact_for_log(tools),
        )
        try:
            raw = await asyncio.to_thread(
                http_post_json,
                self.endpoint,
                body,
                headers=headers,
                timeout=self.config.http_timeout,
            )
        except HttpClientError as exc:
            raise ReasoningError(str(exc)) from exc
        output = parse_output(raw)
        logger.debug("responses output=%s", redact_for_log(output))
        return output


def extract_assistant_text(output: list[dict[str, Any]]) -> str | None:
    """Join the text parts of assistant messages; None when there is no text."""
    parts: list[str] = []
    for item in output:
        if item.get("type") == "message":
            content = item.get("content")
            if isinstance(content, list):
                for part in content:
                    if not isinstance(part, dict):
                        continue
                    if part.get("type") in {"output_text", "text"} and isinstance(part.get("text"), str):
                        parts.append(part["text"])
            elif isinstance(content, str):
                parts.append(content)
        elif item.get("type") == "output_text" and isinstance(item.get("text"), str):
            parts.append(item["text"])
    text = "\n".join(p for p in parts if p.strip()).strip()
    return text or None


__all__ = [
    "BadResponseError",
    "ConfigurationError",
    "ReasoningError",
    "ResponsesClient",
    "extract_assistant_text",
    "parse_output",
]
