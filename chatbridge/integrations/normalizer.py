"""ChatBridge – Message Normalizer.

Multi-platform inbound normalization → unified InboundMessage schema.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import structlog

from chatbridge.gateway.schemas import InboundMessage, MediaKind, MediaRef, Platform

logger = structlog.get_logger()

# WhatsApp-Web message types
_WA_VOICE_TYPES = {"ptt", "audio"}
_WA_IMAGE_TYPES = {"image"}


def _from_epoch(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.now(timezone.utc)


def _from_iso(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            # Graph API: 2024-05-01T10:00:00+0000
            return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z")
        except ValueError:
            pass
    return datetime.now(timezone.utc)


class MessageNormalizer:
    """Normalizes messages from different platforms into InboundMessage.

    Ensures the reply core never branches on platform-specific shapes.
    """

    def normalize_whatsapp(self, raw: dict[str, Any]) -> InboundMessage | None:
        """Normalize one WhatsApp-Web bridge message.

        The bridge serializes whatsapp-web.js messages: ``id`` (string or
        ``{"_serialized": ...}``), ``from``/``to``, ``fromMe``, ``body``,
        ``type``, ``hasMedia``, ``hasQuotedMsg``, ``timestamp`` and, when it
        already downloaded the payload, ``mimetype``.
        """
        raw_id = raw.get("id")
        message_id = raw_id.get("_serialized") if isinstance(raw_id, dict) else raw_id
        if not message_id:
            logger.warning("normalizer.whatsapp_missing_id")
            return None

        from_me = bool(raw.get("fromMe", False))
        msg_type = raw.get("type", "chat")
        body = raw.get("body") or None
        media = None

        if raw.get("hasMedia") or msg_type in _WA_VOICE_TYPES | _WA_IMAGE_TYPES:
            if msg_type in _WA_VOICE_TYPES:
                kind, default_mime = MediaKind.VOICE, "audio/ogg"
                body = None  # the body of a voice note is not a caption
            elif msg_type in _WA_IMAGE_TYPES:
                kind, default_mime = MediaKind.IMAGE, "image/jpeg"
            else:
                kind, default_mime = MediaKind.OTHER, "application/octet-stream"
            media = MediaRef(kind=kind, mime_type=raw.get("mimetype") or default_mime, url=message_id)

        chat_id = raw.get("to") if from_me else raw.get("from")
        inbound = InboundMessage(
            message_id=message_id,
            platform=Platform.WHATSAPP,
            conversation_id=raw.get("chatId") or chat_id or "unknown",
            sender_id=raw.get("author") or raw.get("from") or "unknown",
            body=body,
            media=media,
            is_outgoing=from_me,
            is_read=bool(raw.get("isRead", False)),
            has_reply=bool(raw.get("hasQuotedMsg", False)),
            received_at=_from_epoch(raw.get("timestamp")),
            metadata={"raw_type": msg_type},
        )
        logger.debug("normalizer.whatsapp", message_id=message_id, raw_type=msg_type)
        return inbound

    def normalize_telegram(self, update: dict[str, Any], bot_id: str = "") -> InboundMessage | None:
        """Normalize Telegram update to InboundMessage.

        Args:
            update: Telegram Bot API update object.
            bot_id: Our bot's user id, to recognise our own messages.

        Returns:
            Normalized InboundMessage or None if not a message update.
        """
        message = update.get("message") or update.get("edited_message")
        if not message:
            return None

        chat = message.get("chat", {})
        user = message.get("from", {})
        caption = message.get("caption") or None
        body = None
        media = None

        if "text" in message:
            body = message["text"]
        elif "voice" in message or "audio" in message:
            voice = message.get("voice") or message.get("audio")
            media = MediaRef(kind=MediaKind.VOICE, mime_type=voice.get("mime_type", "audio/ogg"), url=voice.get("file_id"))
        elif "photo" in message:
            # Largest size is last
            photos = message["photo"]
            file_id = photos[-1].get("file_id") if photos else None
            media = MediaRef(kind=MediaKind.IMAGE, mime_type="image/jpeg", url=file_id)
            body = caption
        elif "document" in message and str(message["document"].get("mime_type", "")).startswith("image/"):
            doc = message["document"]
            media = MediaRef(kind=MediaKind.IMAGE, mime_type=doc["mime_type"], url=doc.get("file_id"))
            body = caption
        else:
            media = MediaRef(kind=MediaKind.OTHER)
            body = caption

        sender_id = str(user.get("id", chat.get("id", "unknown")))
        conversation_id = str(chat.get("id", sender_id))
        # Bot API message ids restart at 1 in every chat; scope them by chat.
        chat_message_id = str(message.get("message_id", uuid4()))
        inbound = InboundMessage(
            message_id=f"{conversation_id}:{chat_message_id}",
            platform=Platform.TELEGRAM,
            conversation_id=conversation_id,
            sender_id=sender_id,
            body=body,
            media=media,
            is_outgoing=bool(bot_id) and sender_id == str(bot_id),
            has_reply=False,
            received_at=_from_epoch(message.get("date")),
            metadata={
                "chat_type": chat.get("type", "private"),
                "chat_message_id": chat_message_id,
                "username": user.get("username", ""),
            },
        )
        logger.debug("normalizer.telegram", message_id=inbound.message_id, chat_type=chat.get("type", "private"))
        return inbound

    def normalize_instagram(self, event: dict[str, Any]) -> InboundMessage | None:
        """Normalize one Instagram webhook ``messaging`` event."""
        message = event.get("message")
        if not message or not message.get("mid"):
            return None
        sender_id = str(event.get("sender", {}).get("id", "unknown"))
        recipient_id = str(event.get("recipient", {}).get("id", ""))
        is_echo = bool(message.get("is_echo", False))
        media = self._instagram_media(message.get("attachments") or [])

        inbound = InboundMessage(
            message_id=message["mid"],
            platform=Platform.INSTAGRAM,
            conversation_id=recipient_id if is_echo else sender_id,
            sender_id=sender_id,
            body=message.get("text") or None,
            media=media,
            is_outgoing=is_echo,
            received_at=_from_epoch(event["timestamp"] / 1000 if event.get("timestamp") else None),
        )
        logger.debug("normalizer.instagram", message_id=inbound.message_id)
        return inbound

    def normalize_instagram_webhook(self, body: dict[str, Any]) -> list[InboundMessage]:
        messages: list[InboundMessage] = []
        if body.get("object") != "instagram":
            return messages
        for entry in body.get("entry", []):
            for event in entry.get("messaging", []):
                inbound = self.normalize_instagram(event)
                if inbound is not None:
                    messages.append(inbound)
        return messages

    def normalize_instagram_graph(self, raw: dict[str, Any], page_id: str, conversation_id: str) -> InboundMessage | None:
        """Normalize a message returned by ``/{conversation_id}/messages``.

        Replies go to the customer's IGSID, so that becomes the conversation
        id for inbound messages; the thread id is kept in metadata.
        """
        if not raw.get("id"):
            return None
        sender_id = str(raw.get("from", {}).get("id", "unknown"))
        is_outgoing = sender_id == str(page_id)
        attachments = (raw.get("attachments") or {}).get("data", [])
        return InboundMessage(
            message_id=raw["id"],
            platform=Platform.INSTAGRAM,
            conversation_id=conversation_id if is_outgoing else sender_id,
            sender_id=sender_id,
            body=raw.get("message") or None,
            media=self._instagram_media(attachments),
            is_outgoing=is_outgoing,
            is_read=bool(raw.get("is_read", False)),
            received_at=_from_iso(raw.get("created_time")),
            metadata={"thread_id": conversation_id},
        )

    @staticmethod
    def _instagram_media(attachments: list[dict[str, Any]]) -> MediaRef | None:
        if not attachments:
            return None
        attachment = attachments[0]
        a_type = attachment.get("type", "")
        url = (
            attachment.get("payload", {}).get("url")
            or attachment.get("image_data", {}).get("url")
            or attachment.get("file_url")
        )
        if a_type == "image" or "image_data" in attachment:
            return MediaRef(kind=MediaKind.IMAGE, mime_type=attachment.get("mime_type", "image/jpeg"), url=url)
        if a_type == "audio" or attachment.get("mime_type", "").startswith("audio/"):
            return MediaRef(kind=MediaKind.VOICE, mime_type=attachment.get("mime_type", "audio/mp4"), url=url)
        return MediaRef(kind=MediaKind.OTHER, url=url)
