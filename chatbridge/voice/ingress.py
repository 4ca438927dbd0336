"""ChatBridge – Audio Ingress.

Converts inbound voice notes into a container the speech-to-text provider
accepts, using an ffmpeg subprocess.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from pathlib import Path

import structlog

from chatbridge.core.errors import ConfigurationError, InvalidMediaError, TransientProviderError

logger = structlog.get_logger()


class AudioFormat(str, Enum):
    """Supported audio formats."""
    OGG = "ogg"
    MP3 = "mp3"
    WAV = "wav"
    WEBM = "webm"
    M4A = "m4a"


# Containers the transcription endpoint takes without conversion.
UPLOAD_READY = frozenset({AudioFormat.MP3, AudioFormat.WAV, AudioFormat.WEBM, AudioFormat.M4A})

_MIME_FORMATS = {
    "audio/ogg": AudioFormat.OGG,
    "audio/opus": AudioFormat.OGG,
    "audio/mpeg": AudioFormat.MP3,
    "audio/mp3": AudioFormat.MP3,
    "audio/wav": AudioFormat.WAV,
    "audio/x-wav": AudioFormat.WAV,
    "audio/webm": AudioFormat.WEBM,
    "audio/mp4": AudioFormat.M4A,
    "audio/m4a": AudioFormat.M4A,
    "audio/x-m4a": AudioFormat.M4A,
    "audio/aac": AudioFormat.M4A,
}


class AudioIngress:
    """Voice note conversion pipeline.

    Anything that is not already upload-ready (WhatsApp/Telegram voice notes
    are OGG/Opus) is converted to MP3, mono, 16 kHz.
    """

    def __init__(self, ffmpeg_binary: str = "ffmpeg", timeout: float = 120.0) -> None:
        self._ffmpeg = ffmpeg_binary
        self._timeout = timeout

    def format_from_mime(self, mime_type: str) -> AudioFormat | None:
        """Map a mimetype (parameters ignored) to a format; None when unknown."""
        base = mime_type.split(";", 1)[0].strip().lower()
        return _MIME_FORMATS.get(base)

    async def convert_to_mp3(self, source: Path, target: Path) -> Path:
        """Convert ``source`` to MP3 at ``target``.

        Raises:
            ConfigurationError: ffmpeg is not installed.
            InvalidMediaError: ffmpeg could not decode the input.
            TransientProviderError: conversion exceeded the timeout.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                self._ffmpeg, "-nostdin", "-y",
                "-i", str(source),
                "-vn",
                "-ac", "1",  # Mono
                "-ar", "16000",  # 16kHz sample rate (Whisper optimal)
                "-f", "mp3",
                str(target),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            logger.error("voice.ffmpeg_unavailable", binary=self._ffmpeg)
            raise ConfigurationError(f"ffmpeg binary '{self._ffmpeg}' not found") from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            logger.error("voice.ffmpeg_timeout", timeout_s=self._timeout)
            raise TransientProviderError(f"ffmpeg timed out after {self._timeout}s") from e
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

        if proc.returncode != 0:
            detail = (stderr or b"")[-200:].decode(errors="replace")
            logger.error("voice.ffmpeg_error", returncode=proc.returncode, stderr=detail)
            raise InvalidMediaError(f"ffmpeg exited with {proc.returncode}")

        logger.debug(
            "voice.converted",
            input_size=source.stat().st_size,
            output_size=target.stat().st_size,
        )
        return target
