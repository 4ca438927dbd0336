"""Speech-to-Text client for the OpenAI-compatible transcription endpoint.

Uploads one audio file as multipart form data and returns its transcript.
"""
import asyncio
import time
from dataclasses import dataclass
from pathlib import Path

import structlog

from chatbridge.ai.base import ProviderClient
from chatbridge.core.errors import TransientProviderError
from chatbridge.core.retry import NO_RETRY, RetryPolicy

logger = structlog.get_logger()


@dataclass
class TranscriptResult:
    """Structured result from speech-to-text transcription."""
    text: str
    source: str
    duration_ms: int = 0


class SpeechToText(ProviderClient):
    capability = "stt"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "whisper-1",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 120.0,
        retry_policy: RetryPolicy = NO_RETRY,
    ):
        super().__init__(api_key, base_url=base_url, timeout=timeout, retry_policy=retry_policy)
        self.model = model

    async def transcribe_file(self, path: Path, mime_type: str = "audio/mpeg") -> TranscriptResult:
        """Transcribe an audio file.

        Raises:
            TransientProviderError / ConfigurationError from the provider call.
        """
        t0 = time.perf_counter()
        audio = await asyncio.to_thread(path.read_bytes)
        data = await self._post(
            "/audio/transcriptions",
            files={"file": (path.name, audio, mime_type)},
            data={"model": self.model},
        )
        text = data.get("text")
        if not isinstance(text, str):
            raise TransientProviderError("transcription response without text", retryable=False)

        result = TranscriptResult(
            text=text.strip(),
            source=self.model,
            duration_ms=int((time.perf_counter() - t0) * 1000),
        )
        logger.info("stt.success", size=len(audio), text_len=len(result.text), duration_ms=result.duration_ms)
        return result
