"""Shared JSON POST helper for notification transports.

Transports call ``post_json`` with an optional injected ``httpx.AsyncClient``.
Without one, a client is opened for the single call (fresh client per
operation), which keeps resource cleanup local and lets tests swap in an
``httpx.MockTransport``-backed client.

HTTP failures are translated to ``ChannelSendFailure`` so the dispatcher can
record a reason without knowing about httpx:

- Timeouts raise ``TimeoutExceeded`` (reason ``timeout``)
- Non-2xx responses raise with reason ``http_<status>``
- Connection and protocol errors raise with reason ``connection_error``
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from config import settings
from drift.errors import ChannelSendFailure, TimeoutExceeded

logger = logging.getLogger(__name__)


def default_timeout() -> httpx.Timeout:
    """Return the per-request timeout derived from the dispatch settings."""
    return httpx.Timeout(float(settings.dispatch.send_timeout_seconds))


async def post_json(
    url: str,
    payload: dict[str, Any],
    *,
    client: httpx.AsyncClient | None = None,
    timeout: httpx.Timeout | None = None,
) -> httpx.Response:
    """POST a JSON body and return the response; raises ChannelSendFailure."""
    try:
        if client is not None:
            response = await client.post(url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=timeout or default_timeout()) as owned:
                response = await owned.post(url, json=payload)
        response.raise_for_status()
        return response
    except httpx.TimeoutException as exc:
        raise TimeoutExceeded(f"POST {url} timed out: {exc}") from exc
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        logger.debug("POST %s failed with status %s: %s", url, status, exc.response.text)
        raise ChannelSendFailure(
            f"POST {url} returned HTTP {status}", reason=f"http_{status}"
        ) from exc
    except httpx.RequestError as exc:
        raise ChannelSendFailure(
            f"POST {url} failed: {type(exc).__name__}: {exc}", reason="connection_error"
        ) from exc
