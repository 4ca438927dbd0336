"""ChatBridge – Pytest Configuration.

Shared fixtures for all tests.
"""

import os

# Keep tests independent of a local .env
os.environ["ENVIRONMENT"] = "testing"
os.environ["REDIS_URL"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["WHATSAPP_BRIDGE_URL"] = ""
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["INSTAGRAM_ACCESS_TOKEN"] = ""

from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pytest

from chatbridge.ai.llm import LLMClient
from chatbridge.core.errors import BridgeError, TransientProviderError
from chatbridge.gateway.schemas import (
    Contact,
    InboundMessage,
    MediaKind,
    MediaRef,
    Platform,
    UnreadConversation,
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def http_client():
    """Patch ``httpx.AsyncClient`` and yield the client every ``async with`` returns."""
    with patch("httpx.AsyncClient") as mock_client_cls:
        mock_client = AsyncMock()
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=False)
        mock_client_cls.return_value = mock_client
        yield mock_client


def make_message(
    message_id: str = "m-1",
    body: str | None = "Hello",
    *,
    platform: Platform = Platform.WHATSAPP,
    conversation_id: str = "905551234567@c.us",
    media: MediaRef | None = None,
    is_outgoing: bool = False,
    is_read: bool = False,
    has_reply: bool = False,
) -> InboundMessage:
    return InboundMessage(
        message_id=message_id,
        platform=platform,
        conversation_id=conversation_id,
        sender_id=conversation_id,
        body=body,
        media=media,
        is_outgoing=is_outgoing,
        is_read=is_read,
        has_reply=has_reply,
        received_at=datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
    )


def voice_media(data: bytes = b"OggS-voice", mime_type: str = "audio/ogg; codecs=opus") -> MediaRef:
    return MediaRef(kind=MediaKind.VOICE, mime_type=mime_type, data=data)


def image_media(data: bytes | None = b"\xff\xd8\xff-jpeg", url: str | None = None) -> MediaRef:
    return MediaRef(kind=MediaKind.IMAGE, mime_type="image/jpeg", data=data, url=url)


class FakeAdapter:
    """In-memory ChatAdapter."""

    def __init__(self, platform: Platform = Platform.WHATSAPP) -> None:
        self.platform = platform
        self.connect_failures = 0
        self.connect_calls = 0
        self.contacts: list[Contact] = [Contact(id="905551234567@c.us", name="Ayşe")]
        self.unread: list[UnreadConversation] = []
        self.conversations: dict[str, list[InboundMessage]] = {}
        self.media: dict[str, bytes] = {}
        self.sent: list[dict[str, Any]] = []
        self.send_error: BridgeError | None = None
        self.list_error: BridgeError | None = None

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_calls <= self.connect_failures:
            raise TransientProviderError("not ready")

    async def list_contacts(self) -> list[Contact]:
        return list(self.contacts)

    async def list_unread_conversations(self) -> list[UnreadConversation]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.unread)

    async def fetch_recent_messages(self, conversation_id: str, limit: int) -> list[InboundMessage]:
        messages = self.conversations.get(conversation_id)
        if messages is None:
            raise TransientProviderError(f"unknown conversation {conversation_id}")
        return messages[-limit:]

    async def download_media(self, message: InboundMessage) -> bytes:
        return self.media.get(message.message_id, b"")

    async def send_text(self, conversation_id: str, text: str, reply_to: str | None = None) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append({"conversation_id": conversation_id, "text": text, "reply_to": reply_to})


class FakeEmbedder:
    """Embedding client backed by a lookup table; unknown texts fail like a provider error."""

    def __init__(self, vectors: dict[str, list[float]] | None = None) -> None:
        self.vectors = {k: np.asarray(v, dtype=np.float64) for k, v in (vectors or {}).items()}
        self.calls: list[str] = []

    async def embed(self, text: str) -> np.ndarray | None:
        self.calls.append(text)
        return self.vectors.get(text)


class FakeWebSocket:
    def __init__(self, fail: bool = False) -> None:
        self.accepted = False
        self.sent: list[dict[str, Any]] = []
        self.fail = fail

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def llm() -> MagicMock:
    """LLMClient stand-in; ``ask`` and ``describe_image`` are AsyncMocks."""
    mock = MagicMock(spec=LLMClient)
    mock.ask = AsyncMock(return_value="Generated answer")
    mock.describe_image = AsyncMock(return_value="Image answer")
    mock.chat = AsyncMock(return_value=None)
    return mock
