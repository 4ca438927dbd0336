"""ChatBridge – Telegram Bot Integration.

Bot API adapter: handshake via getMe, text replies via sendMessage, media via
getFile + file download, live updates via long polling or webhook.
"""

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from chatbridge.core.errors import BridgeError, ConfigurationError, InvalidMediaError, TransientProviderError
from chatbridge.gateway.schemas import Contact, InboundMessage, Platform, UnreadConversation
from chatbridge.integrations.http import request, request_json
from chatbridge.integrations.normalizer import MessageNormalizer

logger = structlog.get_logger()

TELEGRAM_API_BASE = "https://api.telegram.org"


class TelegramAdapter:
    """Telegram Bot API client.

    The Bot API cannot list past or unread chats, so the unread sweep yields
    nothing here; live updates are the only inbound path.
    """

    platform = Platform.TELEGRAM

    def __init__(
        self,
        bot_token: str,
        *,
        timeout: float = 15.0,
        media_timeout: float = 120.0,
        normalizer: MessageNormalizer | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._base_url = f"{TELEGRAM_API_BASE}/bot{bot_token}"
        self._timeout = timeout
        self._media_timeout = media_timeout
        self._normalizer = normalizer or MessageNormalizer()
        self.bot_id = ""

    async def _call(self, method: str, *, timeout: float | None = None, **payload: Any) -> Any:
        if not self._bot_token:
            raise ConfigurationError("telegram: bot token not configured")
        data = await request_json(
            "POST",
            f"{self._base_url}/{method}",
            what=f"telegram.{method}",
            timeout=timeout or self._timeout,
            json=payload,
        )
        if not data.get("ok", False):
            raise TransientProviderError(
                f"telegram.{method}: {data.get('description', 'not ok')}",
                status_code=data.get("error_code"),
                retryable=False,
            )
        return data.get("result")

    async def connect(self) -> None:
        me = await self._call("getMe")
        self.bot_id = str(me.get("id", ""))
        logger.info("telegram.ready", bot_id=self.bot_id, username=me.get("username"))

    async def list_contacts(self) -> list[Contact]:
        return []

    async def list_unread_conversations(self) -> list[UnreadConversation]:
        return []

    async def fetch_recent_messages(self, conversation_id: str, limit: int) -> list[InboundMessage]:
        return []

    async def download_media(self, message: InboundMessage) -> bytes:
        file_id = message.media.url if message.media else None
        if not file_id:
            raise InvalidMediaError("telegram: message has no file id")
        info = await self._call("getFile", file_id=file_id)
        file_path = (info or {}).get("file_path")
        if not file_path:
            raise InvalidMediaError("telegram: file is not downloadable")
        resp = await request(
            "GET",
            f"{TELEGRAM_API_BASE}/file/bot{self._bot_token}/{file_path}",
            what="telegram.download",
            timeout=self._media_timeout,
        )
        return resp.content

    async def send_text(self, conversation_id: str, text: str, reply_to: str | None = None) -> None:
        payload: dict[str, Any] = {"chat_id": conversation_id, "text": text}
        # Ids arrive chat-scoped ("{chat_id}:{message_id}"); the Bot API wants the bare number.
        raw_reply_to = (reply_to or "").rsplit(":", 1)[-1]
        if raw_reply_to.isdigit():
            payload["reply_to_message_id"] = int(raw_reply_to)
            payload["allow_sending_without_reply"] = True
        await self._call("sendMessage", **payload)
        logger.info("telegram.message_sent", chat_id=conversation_id)

    async def get_updates(self, offset: int | None = None, timeout: int = 30) -> list[dict[str, Any]]:
        """Long polling for updates (alternative to webhook)."""
        payload: dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset:
            payload["offset"] = offset
        return await self._call("getUpdates", timeout=timeout + 10.0, **payload) or []

    def normalize_update(self, update: dict[str, Any]) -> InboundMessage | None:
        return self._normalizer.normalize_telegram(update, bot_id=self.bot_id)

    async def poll(
        self,
        on_message: Callable[[InboundMessage], Awaitable[Any]],
        *,
        retry_delay: float = 5.0,
    ) -> None:
        """Poll forever, handing every normalized message to ``on_message``."""
        offset: int | None = None
        while True:
            try:
                updates = await self.get_updates(offset)
            except BridgeError as e:
                logger.error("telegram.polling_failed", error=str(e))
                await asyncio.sleep(retry_delay)
                continue
            for update in updates:
                offset = int(update.get("update_id", 0)) + 1
                message = self.normalize_update(update)
                if message is not None:
                    await on_message(message)
