from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_BASE_DELAY_SECONDS = 2.0


class GatewayError(Exception):
    """A gateway answered with an error or could not be reached."""

    provider = "gateway"

    def __init__(self, message: str, *, http_status: int | None = None, raw_response: Any = None):
        super().__init__(message)
        self.message = message
        self.http_status = http_status
        self.raw_response = raw_response


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_json_or_raw(text: str, parser: Any) -> dict[str, Any]:
    try:
        parsed = parser()
        if isinstance(parsed, dict):
            return parsed
        return {"value": parsed}
    except Exception:  # noqa: BLE001
        return {"raw": text}


def as_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def error_message(body: dict[str, Any], fallback: str) -> str:
    for key in ("error", "message", "reason", "revertReason"):
        candidate = body.get(key)
        if isinstance(candidate, dict):
            candidate = candidate.get("message")
        text = as_str(candidate)
        if text:
            return text
    return fallback


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    headers: dict[str, str],
    json: dict[str, Any] | None = None,
    max_retries: int = 3,
) -> httpx.Response:
    """Make an HTTP request with retry on 429 (Too Many Requests).

    Uses exponential backoff: 2s, 4s, 8s between retries, unless the
    gateway sends a numeric retry-after header.
    """
    response: httpx.Response | None = None
    for attempt in range(max_retries + 1):
        response = await client.request(method, url, headers=headers, json=json)
        if response.status_code != 429:
            return response
        if attempt < max_retries:
            retry_after = response.headers.get("retry-after")
            if retry_after and retry_after.isdigit():
                delay = float(retry_after)
            else:
                delay = _BASE_DELAY_SECONDS * (2**attempt)
            logger.warning(
                "Gateway rate limited (429), retrying",
                extra={"attempt": attempt + 1, "delay_seconds": delay, "url": url},
            )
            await asyncio.sleep(delay)
    if response is None:
        raise RuntimeError("Gateway response was not initialized")
    return response
