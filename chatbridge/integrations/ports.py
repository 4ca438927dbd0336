"""Adapter port consumed by the reply core and the account registry.

Each platform adapter implements this protocol; the core never sees
platform-specific payloads.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from chatbridge.gateway.schemas import Contact, InboundMessage, Platform, UnreadConversation


@runtime_checkable
class ChatAdapter(Protocol):
    platform: Platform

    async def connect(self) -> None:
        """Run the platform handshake. Returns once the account can send and list chats."""
        ...

    async def list_contacts(self) -> list[Contact]: ...

    async def list_unread_conversations(self) -> list[UnreadConversation]: ...

    async def fetch_recent_messages(self, conversation_id: str, limit: int) -> list[InboundMessage]:
        """Most recent ``limit`` messages of a conversation, oldest first."""
        ...

    async def download_media(self, message: InboundMessage) -> bytes: ...

    async def send_text(self, conversation_id: str, text: str, reply_to: str | None = None) -> None:
        """Deliver ``text``. Raises BridgeError subclasses on failure."""
        ...
