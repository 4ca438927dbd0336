"""ChatBridge – OpenAI-compatible provider base client.

Shared HTTP plumbing for the embedding, chat and speech-to-text clients:
bounded timeouts, status classification into the error taxonomy, retry with
backoff and the "log once, then short-circuit" rule for configuration errors.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from chatbridge.core.errors import ConfigurationError, TransientProviderError
from chatbridge.core.instrumentation import PROVIDER_FAILURES
from chatbridge.core.retry import NO_RETRY, RetryPolicy, retry_async

logger = structlog.get_logger()


class ProviderClient:
    """Base class for one provider capability (embedding, chat, stt, ...)."""

    capability = "provider"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        retry_policy: RetryPolicy = NO_RETRY,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._retry = retry_policy
        self._disabled_reason: str | None = None

    @property
    def available(self) -> bool:
        return bool(self._api_key) and self._disabled_reason is None

    def _disable(self, reason: str) -> ConfigurationError:
        if self._disabled_reason is None:
            self._disabled_reason = reason
            logger.error("provider.unavailable", capability=self.capability, reason=reason)
        return ConfigurationError(f"{self.capability}: {reason}")

    def _ensure_configured(self) -> None:
        if self._disabled_reason is not None:
            raise ConfigurationError(f"{self.capability}: {self._disabled_reason}")
        if not self._api_key:
            raise self._disable("missing API key")

    def _parse(self, resp: httpx.Response) -> dict[str, Any]:
        status = resp.status_code
        if status in (401, 403):
            raise self._disable(f"credentials rejected ({status})")
        if status == 429 or status >= 500:
            raise TransientProviderError(f"{self.capability} HTTP {status}", status_code=status)
        if status >= 400:
            raise TransientProviderError(
                f"{self.capability} HTTP {status}", status_code=status, retryable=False
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise TransientProviderError(f"{self.capability} malformed payload: {e}", retryable=False) from e
        if not isinstance(data, dict):
            raise TransientProviderError(f"{self.capability} unexpected payload type", retryable=False)
        return data

    async def _post(
        self,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """POST to ``{base_url}{path}`` with retry. Raises BridgeError subclasses."""
        self._ensure_configured()
        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {self._api_key}"}
        effective_timeout = timeout or self._timeout

        async def attempt() -> dict[str, Any]:
            try:
                async with httpx.AsyncClient(timeout=effective_timeout) as client:
                    resp = await client.post(url, headers=headers, json=json, files=files, data=data)
            except httpx.TimeoutException as e:
                raise TransientProviderError(f"{self.capability} timeout after {effective_timeout}s") from e
            except httpx.HTTPError as e:
                raise TransientProviderError(f"{self.capability} transport error: {e}") from e
            return self._parse(resp)

        return await retry_async(attempt, self._retry, op_name=f"{self.capability}.post")

    def _record_failure(self, error: Exception) -> None:
        kind = "configuration" if isinstance(error, ConfigurationError) else "transient"
        PROVIDER_FAILURES.labels(capability=self.capability, kind=kind).inc()
