"""ChatBridge – Message Schemas.

Defines the unified message types shared by every platform adapter and
the auto-reply core. Platform-specific payload shapes never cross the
adapter boundary; the normalizer turns them into these models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Platform(str, Enum):
    """Supported messaging platforms."""

    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"
    INSTAGRAM = "instagram"


class MediaKind(str, Enum):
    """Kind of media attached to an inbound message."""

    VOICE = "voice"
    IMAGE = "image"
    OTHER = "other"


class MessageKind(str, Enum):
    """Tag of an inbound message after classification."""

    TEXT = "text"
    VOICE = "voice"
    IMAGE = "image"
    UNSUPPORTED = "unsupported"


class MediaRef(BaseModel):
    """Reference to a media payload.

    Exactly one of ``data``, ``file_path`` or ``url`` is expected. ``url`` is
    a platform handle (file id, CDN URL) that the originating adapter can
    download on demand.
    """

    model_config = ConfigDict(frozen=True)

    kind: MediaKind
    mime_type: str = Field(default="application/octet-stream")
    data: bytes | None = Field(default=None, repr=False)
    file_path: str | None = None
    url: str | None = None


class InboundMessage(BaseModel):
    """Message arriving from any platform, immutable once received."""

    model_config = ConfigDict(frozen=True)

    message_id: str = Field(..., description="Platform message identifier")
    platform: Platform = Field(..., description="Source platform")
    conversation_id: str = Field(..., description="Chat / thread the message belongs to")
    sender_id: str = Field(..., description="Platform-specific sender ID")
    body: str | None = Field(default=None, description="Text body or media caption")
    media: MediaRef | None = Field(default=None)
    is_outgoing: bool = Field(default=False, description="Sent by the connected account itself")
    is_read: bool = Field(default=False)
    has_reply: bool = Field(default=False, description="Platform shows a quoted/threaded reply")
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def kind(self) -> MessageKind:
        if self.media is None:
            return MessageKind.TEXT
        if self.media.kind == MediaKind.VOICE:
            return MessageKind.VOICE
        if self.media.kind == MediaKind.IMAGE:
            return MessageKind.IMAGE
        return MessageKind.UNSUPPORTED

    @property
    def is_answerable(self) -> bool:
        """Not our own message and not already replied to on the platform."""
        return not self.is_outgoing and not self.has_reply

    @property
    def timestamp(self) -> int:
        return int(self.received_at.timestamp())


class OutboundMessage(BaseModel):
    """Text reply routed back through the originating adapter."""

    platform: Platform
    conversation_id: str
    content: str
    reply_to: str | None = Field(default=None, description="Original message ID being replied to")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Contact(BaseModel):
    id: str
    name: str = ""


class UnreadConversation(BaseModel):
    conversation_id: str
    unread_count: int = 0


class DashboardEventType(str, Enum):
    """Typed events pushed to dashboard clients."""

    QR = "qr"
    CONTACTS = "contacts"
    TEXT_MESSAGE = "textMessage"
    MEDIA_MESSAGE = "mediaMessage"
    AUTO_REPLY = "autoReply"
    ACCOUNT_STATUS = "accountStatus"


class DashboardEvent(BaseModel):
    """Event broadcast to every connected dashboard client."""

    type: DashboardEventType
    account_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "userId": self.account_id,
            "timestamp": self.timestamp.isoformat(),
            **self.payload,
        }
