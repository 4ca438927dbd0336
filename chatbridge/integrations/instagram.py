"""ChatBridge – Instagram DM Integration.

Sends and reads Instagram Direct Messages via the Instagram Graph API.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any

import structlog

from chatbridge.core.errors import ConfigurationError, InvalidMediaError
from chatbridge.gateway.schemas import Contact, InboundMessage, Platform, UnreadConversation
from chatbridge.integrations.http import request, request_json
from chatbridge.integrations.normalizer import MessageNormalizer

logger = structlog.get_logger()

GRAPH_API_VERSION = "v21.0"
GRAPH_API_BASE = f"https://graph.instagram.com/{GRAPH_API_VERSION}"


class InstagramAdapter:
    """ChatAdapter for one Instagram professional account.

    Parameters
    ----------
    page_id : str
        Instagram account ID; resolved from ``/me`` on connect when empty.
    access_token : str
        Long-lived token with the instagram_manage_messages permission.
    app_secret : str, optional
        App Secret for webhook signature verification.
    """

    platform = Platform.INSTAGRAM

    def __init__(
        self,
        page_id: str,
        access_token: str,
        app_secret: str = "",
        *,
        timeout: float = 15.0,
        media_timeout: float = 120.0,
        normalizer: MessageNormalizer | None = None,
    ) -> None:
        self.page_id = page_id
        self.access_token = access_token
        self.app_secret = app_secret
        self._timeout = timeout
        self._media_timeout = media_timeout
        self._normalizer = normalizer or MessageNormalizer()

    async def _graph(self, method: str, path: str, **kwargs: Any) -> Any:
        if not self.access_token:
            raise ConfigurationError("instagram: access token not configured")
        params = dict(kwargs.pop("params", None) or {})
        params["access_token"] = self.access_token
        return await request_json(
            method, f"{GRAPH_API_BASE}/{path}", what="instagram.graph", timeout=self._timeout, params=params, **kwargs
        )

    async def connect(self) -> None:
        me = await self._graph("GET", "me", params={"fields": "id,username"})
        self.page_id = self.page_id or str(me.get("id", ""))
        logger.info("instagram.ready", page_id=self.page_id, username=me.get("username"))

    async def list_contacts(self) -> list[Contact]:
        data = await self._graph("GET", "me/conversations", params={"platform": "instagram", "fields": "participants"})
        contacts: dict[str, Contact] = {}
        for conversation in data.get("data", []):
            for participant in conversation.get("participants", {}).get("data", []):
                pid = str(participant.get("id", ""))
                if pid and pid != self.page_id:
                    contacts[pid] = Contact(id=pid, name=participant.get("username", pid))
        return list(contacts.values())

    async def list_unread_conversations(self) -> list[UnreadConversation]:
        data = await self._graph(
            "GET", "me/conversations", params={"platform": "instagram", "fields": "id,unread_count"}
        )
        return [
            UnreadConversation(conversation_id=c["id"], unread_count=int(c.get("unread_count", 0)))
            for c in data.get("data", [])
            if c.get("id") and int(c.get("unread_count", 0)) > 0
        ]

    async def fetch_recent_messages(self, conversation_id: str, limit: int) -> list[InboundMessage]:
        data = await self._graph(
            "GET",
            f"{conversation_id}/messages",
            params={"fields": "id,message,from,created_time,attachments,is_read", "limit": limit},
        )
        messages = []
        # The Graph API lists newest first.
        for raw in reversed(data.get("data", [])):
            message = self._normalizer.normalize_instagram_graph(raw, self.page_id, conversation_id)
            if message is not None:
                messages.append(message)
        return messages

    async def download_media(self, message: InboundMessage) -> bytes:
        url = message.media.url if message.media else None
        if not url:
            raise InvalidMediaError("instagram: attachment has no URL")
        resp = await request("GET", url, what="instagram.media", timeout=self._media_timeout)
        return resp.content

    async def send_text(self, conversation_id: str, text: str, reply_to: str | None = None) -> None:
        """Send a text message to an Instagram-scoped user ID (IGSID)."""
        payload: dict[str, Any] = {
            "recipient": {"id": conversation_id},
            "message": {"text": text},
        }
        data = await self._graph("POST", "me/messages", json=payload)
        logger.info("instagram.message_sent", recipient=conversation_id, message_id=(data or {}).get("message_id", ""))

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Verify the X-Hub-Signature-256 header from Meta."""
        if not self.app_secret:
            return True  # No verification configured
        if not signature or not signature.startswith("sha256="):
            return False
        expected = hmac.new(
            self.app_secret.encode("utf-8"),
            payload,
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(f"sha256={expected}", signature)
