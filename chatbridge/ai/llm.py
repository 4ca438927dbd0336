"""chatbridge/ai/llm.py – Chat-completion client (text and vision).

Speaks the OpenAI-compatible ``/chat/completions`` protocol. ``complete``
raises the error taxonomy; ``chat``, ``ask`` and ``describe_image`` follow the
reply-path contract and return ``None`` on any failure.
"""

import time
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from chatbridge.ai.base import ProviderClient
from chatbridge.core.errors import BridgeError, TransientProviderError
from chatbridge.core.retry import NO_RETRY, RetryPolicy

logger = structlog.get_logger()


@dataclass
class LLMResponse:
    """Structured response from an LLM call including usage metadata."""
    content: str
    model: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    latency_ms: int = 0


def _extract_usage(data: dict) -> tuple[int, int, int]:
    """Extract token usage from an OpenAI-compatible response."""
    usage = data.get("usage") or {}
    pt = usage.get("prompt_tokens", 0)
    ct = usage.get("completion_tokens", 0)
    tt = usage.get("total_tokens", pt + ct)
    return pt, ct, tt


class LLMClient(ProviderClient):
    """Chat-completion client with per-call model, temperature and token limits."""

    capability = "chat"

    def __init__(
        self,
        openai_api_key: str = "",
        *,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-2024-08-06",
        temperature: float = 0.7,
        max_tokens: int = 1600,
        timeout: float = 30.0,
        retry_policy: RetryPolicy = NO_RETRY,
    ):
        super().__init__(openai_api_key, base_url=base_url, timeout=timeout, retry_policy=retry_policy)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        """Execute one chat completion. Raises BridgeError subclasses."""
        effective_model = model or self.model
        start_time = time.time()
        data = await self._post(
            "/chat/completions",
            json={
                "model": effective_model,
                "messages": messages,
                "temperature": self.temperature if temperature is None else temperature,
                "max_tokens": max_tokens or self.max_tokens,
            },
            timeout=timeout,
        )
        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise TransientProviderError("chat response without choices", retryable=False) from e

        prompt_tokens, completion_tokens, total_tokens = _extract_usage(data)
        latency = round((time.time() - start_time) * 1000)
        logger.info(
            "llm.success",
            model=effective_model,
            latency_ms=latency,
            tokens=total_tokens,
        )
        return LLMResponse(
            content=content.strip(),
            model=effective_model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            latency_ms=latency,
        )

    async def chat(self, messages: list[dict[str, Any]], **kwargs: Any) -> Optional[str]:
        """Like ``complete`` but returns the text, or ``None`` on failure or empty output."""
        try:
            response = await self.complete(messages, **kwargs)
        except BridgeError as e:
            self._record_failure(e)
            logger.warning("llm.request_failed", error=str(e), model=kwargs.get("model") or self.model)
            return None
        return response.content or None

    async def ask(
        self,
        prompt: str,
        system_prompt: str = "You are a helpful assistant.",
        **kwargs: Any,
    ) -> Optional[str]:
        """Simple helper for single-turn questions."""
        return await self.chat(
            [{"role": "system", "content": system_prompt}, {"role": "user", "content": prompt}],
            **kwargs,
        )

    async def describe_image(
        self,
        text: str,
        image_url: str,
        *,
        system_prompt: str = "Analyze the following images.",
        **kwargs: Any,
    ) -> Optional[str]:
        """Vision completion over one image plus its (possibly empty) caption."""
        return await self.chat(
            [
                {"role": "system", "content": system_prompt},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": text},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                },
            ],
            **kwargs,
        )
