"""HTTP helpers shared by the platform adapters.

Maps transport errors and HTTP status codes onto the error taxonomy so the
reply path only ever handles BridgeError subclasses.
"""

from __future__ import annotations

from typing import Any

import httpx

from chatbridge.core.errors import ConfigurationError, TransientProviderError


def raise_for_status(resp: httpx.Response, what: str) -> None:
    status = resp.status_code
    if status < 400:
        return
    if status in (401, 403):
        raise ConfigurationError(f"{what}: credentials rejected ({status})")
    raise TransientProviderError(
        f"{what}: HTTP {status}",
        status_code=status,
        retryable=status == 429 or status >= 500,
    )


async def request(
    method: str,
    url: str,
    *,
    what: str,
    timeout: float = 15.0,
    **kwargs: Any,
) -> httpx.Response:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise TransientProviderError(f"{what}: timeout after {timeout}s") from e
    except httpx.HTTPError as e:
        raise TransientProviderError(f"{what}: transport error: {e}") from e
    raise_for_status(resp, what)
    return resp


async def request_json(method: str, url: str, *, what: str, timeout: float = 15.0, **kwargs: Any) -> Any:
    resp = await request(method, url, what=what, timeout=timeout, **kwargs)
    try:
        return resp.json()
    except ValueError as e:
        raise TransientProviderError(f"{what}: malformed JSON", retryable=False) from e
