"""ChatBridge – WhatsApp Integration.

Drives a WhatsApp Web session through a local bridge sidecar (whatsapp-web.js
behind a small HTTP API). The bridge owns the browser session and QR login;
this adapter only reads chats and sends text.

Bridge endpoints:
  GET  /status                        → {"state": "ready"|"qr"|"starting", "qr": "<data url>"}
  GET  /contacts                      → [{"id", "name", "pushname"}]
  GET  /chats?unread=true             → [{"id", "unreadCount"}]
  GET  /chats/{chat_id}/messages      → [message]        (?limit=N, oldest first)
  GET  /messages/{message_id}/media   → {"mimetype", "data": <base64>}
  POST /send                          → {"id"}           ({"chatId", "text", "quotedMessageId"})
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Awaitable, Callable
from urllib.parse import quote

import structlog

from chatbridge.core.errors import ConfigurationError, InvalidMediaError, TransientProviderError
from chatbridge.gateway.schemas import Contact, InboundMessage, Platform, UnreadConversation
from chatbridge.integrations.http import request_json
from chatbridge.integrations.normalizer import MessageNormalizer

logger = structlog.get_logger()

QrCallback = Callable[[str], Awaitable[Any]]


def _serialized(raw_id: Any) -> str:
    if isinstance(raw_id, dict):
        return str(raw_id.get("_serialized") or raw_id.get("user") or "")
    return str(raw_id or "")


class WhatsAppBridgeAdapter:
    """ChatAdapter for one WhatsApp Web session behind the bridge at ``bridge_url``."""

    platform = Platform.WHATSAPP

    def __init__(
        self,
        bridge_url: str,
        *,
        api_key: str = "",
        timeout: float = 15.0,
        media_timeout: float = 120.0,
        normalizer: MessageNormalizer | None = None,
        on_qr: QrCallback | None = None,
    ) -> None:
        self._bridge_url = bridge_url.rstrip("/")
        self._headers = {"X-Api-Key": api_key} if api_key else {}
        self._timeout = timeout
        self._media_timeout = media_timeout
        self._normalizer = normalizer or MessageNormalizer()
        self.on_qr = on_qr

    async def _get(self, path: str, *, timeout: float | None = None, **params: Any) -> Any:
        if not self._bridge_url:
            raise ConfigurationError("whatsapp: bridge URL not configured")
        return await request_json(
            "GET",
            f"{self._bridge_url}{path}",
            what="whatsapp.bridge",
            timeout=timeout or self._timeout,
            headers=self._headers,
            params=params or None,
        )

    async def connect(self) -> None:
        """Succeeds once the bridge session is logged in.

        While the bridge waits for a QR scan the code is handed to ``on_qr``
        and a retryable error is raised so the registry polls again.
        """
        status = await self._get("/status")
        state = status.get("state")
        if state == "ready":
            logger.info("whatsapp.bridge.ready", url=self._bridge_url)
            return
        qr = status.get("qr")
        if qr and self.on_qr is not None:
            await self.on_qr(qr)
        raise TransientProviderError(f"whatsapp: session not ready ({state})")

    async def list_contacts(self) -> list[Contact]:
        contacts = []
        for raw in await self._get("/contacts") or []:
            contact_id = _serialized(raw.get("id"))
            if not contact_id:
                continue
            name = raw.get("name") or raw.get("pushname") or contact_id.split("@", 1)[0]
            contacts.append(Contact(id=contact_id, name=name))
        return contacts

    async def list_unread_conversations(self) -> list[UnreadConversation]:
        chats = await self._get("/chats", unread="true") or []
        unread = []
        for chat in chats:
            # unreadCount may be null.
            count = int(chat.get("unreadCount") or 0)
            if count > 0:
                unread.append(UnreadConversation(conversation_id=_serialized(chat.get("id")), unread_count=count))
        return unread

    async def fetch_recent_messages(self, conversation_id: str, limit: int) -> list[InboundMessage]:
        raw_messages = await self._get(f"/chats/{quote(conversation_id, safe='')}/messages", limit=limit) or []
        messages = []
        for raw in raw_messages:
            raw.setdefault("chatId", conversation_id)
            message = self._normalizer.normalize_whatsapp(raw)
            if message is not None:
                messages.append(message)
        return messages

    async def download_media(self, message: InboundMessage) -> bytes:
        payload = await self._get(
            f"/messages/{quote(message.message_id, safe='')}/media", timeout=self._media_timeout
        )
        data = (payload or {}).get("data")
        if not data:
            raise InvalidMediaError("whatsapp: media no longer available")
        try:
            return base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidMediaError(f"whatsapp: media payload is not base64: {e}") from e

    async def send_text(self, conversation_id: str, text: str, reply_to: str | None = None) -> None:
        if not self._bridge_url:
            raise ConfigurationError("whatsapp: bridge URL not configured")
        payload: dict[str, Any] = {"chatId": conversation_id, "text": text}
        if reply_to:
            payload["quotedMessageId"] = reply_to
        data = await request_json(
            "POST",
            f"{self._bridge_url}/send",
            what="whatsapp.bridge",
            timeout=self._timeout,
            headers=self._headers,
            json=payload,
        )
        logger.info("whatsapp.bridge.sent", to=conversation_id, id=(data or {}).get("id"))
