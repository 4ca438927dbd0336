"""ChatBridge – Media Transcoder.

Turns non-text payloads into something the reply path can use: voice notes
become transcript text, images become persisted, addressable files.
"""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

import structlog

from chatbridge.core.errors import InvalidMediaError
from chatbridge.media.store import ImageHandle, MediaStore
from chatbridge.voice.ingress import UPLOAD_READY, AudioIngress
from chatbridge.voice.stt import SpeechToText

logger = structlog.get_logger()


class MediaTranscoder:
    def __init__(
        self,
        ingress: AudioIngress,
        stt: SpeechToText,
        store: MediaStore,
        *,
        scratch_dir: str | Path | None = None,
    ) -> None:
        self._ingress = ingress
        self._stt = stt
        self._store = store
        self._scratch_dir = str(scratch_dir) if scratch_dir else None

    @property
    def store(self) -> MediaStore:
        return self._store

    async def transcribe_voice(self, data: bytes, mime_type: str = "audio/ogg") -> str:
        """Transcribe a voice note.

        The payload is written to a private scratch directory that is removed
        on every exit path, including cancellation.

        Raises:
            InvalidMediaError: empty payload, undecodable audio, or empty transcript.
            TransientProviderError: conversion or provider timeout/failure.
            ConfigurationError: ffmpeg or the provider key is missing.
        """
        if not data:
            raise InvalidMediaError("empty voice payload")

        fmt = self._ingress.format_from_mime(mime_type)
        if self._scratch_dir:
            Path(self._scratch_dir).mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix="chatbridge-voice-", dir=self._scratch_dir) as tmp:
            source = Path(tmp) / f"voice.{fmt.value if fmt else 'bin'}"
            await asyncio.to_thread(source.write_bytes, data)

            if fmt in UPLOAD_READY:
                upload, upload_mime = source, mime_type.split(";", 1)[0].strip()
            else:
                upload = await self._ingress.convert_to_mp3(source, Path(tmp) / "voice.mp3")
                upload_mime = "audio/mpeg"

            result = await self._stt.transcribe_file(upload, upload_mime)

        if not result.text:
            raise InvalidMediaError("voice note produced an empty transcript")
        return result.text

    async def persist_image(
        self, data: bytes, mime_type: str, message_id: str, timestamp: int
    ) -> ImageHandle | None:
        return await self._store.persist_image(data, mime_type, message_id, timestamp)
