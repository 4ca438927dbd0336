"""Text embedding client (OpenAI-compatible ``/embeddings``)."""

from __future__ import annotations

import numpy as np
import structlog

from chatbridge.ai.base import ProviderClient
from chatbridge.core.errors import BridgeError, TransientProviderError
from chatbridge.core.retry import NO_RETRY, RetryPolicy

logger = structlog.get_logger()


class EmbeddingClient(ProviderClient):
    """Turns a string into a fixed-length float vector.

    ``embed`` never raises: empty input and provider failures both come back
    as ``None`` and the caller skips that candidate.
    """

    capability = "embedding"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "text-embedding-ada-002",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 120.0,
        retry_policy: RetryPolicy = NO_RETRY,
    ) -> None:
        super().__init__(api_key, base_url=base_url, timeout=timeout, retry_policy=retry_policy)
        self.model = model

    async def embed(self, text: str) -> np.ndarray | None:
        if not text or not text.strip():
            logger.debug("embedding.skipped_empty")
            return None
        try:
            data = await self._post("/embeddings", json={"model": self.model, "input": text})
            return self._vector(data)
        except BridgeError as e:
            self._record_failure(e)
            logger.warning("embedding.failed", error=str(e), text_len=len(text))
            return None

    @staticmethod
    def _vector(data: dict) -> np.ndarray:
        try:
            raw = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise TransientProviderError("embedding response without data", retryable=False) from e
        try:
            vector = np.asarray(raw, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise TransientProviderError("embedding is not numeric", retryable=False) from e
        if vector.ndim != 1 or vector.size == 0:
            raise TransientProviderError("embedding response is not a flat vector", retryable=False)
        return vector
