"""ChatBridge – Reply Resolver.

Takes one inbound message through

    Received → Classified → Normalized → FaqLookup → FaqHit | FaqMiss
             → GenerativeFallback (on miss) → Resolved

or drops it. The resolver never sends anything: it returns a ``ReplySession``
and the caller delivers ``session.reply`` through the originating adapter.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

import structlog

from chatbridge.ai.language import LanguageService
from chatbridge.ai.llm import LLMClient
from chatbridge.core.errors import BridgeError, ConfigurationError, InvalidMediaError, StaleCacheError
from chatbridge.gateway.schemas import InboundMessage, MessageKind
from chatbridge.knowledge.faq import FaqIndex, FaqMatch
from chatbridge.media.store import ImageHandle
from chatbridge.media.transcoder import MediaTranscoder
from chatbridge.prompts.engine import SALES_PERSONA, VISION, PromptEngine, get_engine
from chatbridge.reply.ledger import AnsweredLedger

logger = structlog.get_logger()

MediaFetcher = Callable[[InboundMessage], Awaitable[bytes]]


class ReplyState(str, Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    NORMALIZED = "normalized"
    FAQ_LOOKUP = "faq_lookup"
    FAQ_HIT = "faq_hit"
    FAQ_MISS = "faq_miss"
    GENERATIVE_FALLBACK = "generative_fallback"
    RESOLVED = "resolved"
    DELIVERED = "delivered"
    DROPPED = "dropped"


class ReplySource(str, Enum):
    NONE = "none"
    FAQ = "faq"
    GENERATIVE = "generative"
    VISION = "vision"


@dataclass
class ReplySession:
    """Transient state for one message. Never persisted."""

    account_id: str
    message: InboundMessage
    state: ReplyState = ReplyState.RECEIVED
    history: list[ReplyState] = field(default_factory=lambda: [ReplyState.RECEIVED])
    kind: Optional[MessageKind] = None
    claimed: bool = False
    detected_language: Optional[str] = None
    normalized_text: str = ""
    pivot_text: str = ""
    image: Optional[ImageHandle] = None
    match: Optional[FaqMatch] = None
    reply: Optional[str] = None
    source: ReplySource = ReplySource.NONE
    drop_reason: Optional[str] = None
    # A retryable drop releases the claim so a later sweep can try again;
    # a final one marks the message handled.
    retryable: bool = False

    def advance(self, state: ReplyState) -> None:
        self.state = state
        self.history.append(state)

    def drop(self, reason: str, *, retryable: bool = False) -> "ReplySession":
        self.drop_reason = reason
        self.retryable = retryable
        self.advance(ReplyState.DROPPED)
        logger.info(
            "reply.dropped",
            account_id=self.account_id,
            message_id=self.message.message_id,
            reason=reason,
            retryable=retryable,
        )
        return self

    @property
    def resolved(self) -> bool:
        return self.state == ReplyState.RESOLVED


class ReplyResolver:
    """Resolves one reply per eligible inbound message."""

    def __init__(
        self,
        *,
        ledger: AnsweredLedger,
        transcoder: MediaTranscoder,
        language: LanguageService,
        faq: FaqIndex,
        llm: LLMClient,
        pivot_language: str = "tr",
        chat_model: str = "gpt-4o-2024-08-06",
        vision_model: str = "gpt-4o-mini",
        fallback_message: str = "",
        business_name: str = "",
        inline_images: bool = True,
        vision_timeout: float | None = None,
        engine: PromptEngine | None = None,
    ) -> None:
        self._ledger = ledger
        self._transcoder = transcoder
        self._language = language
        self._faq = faq
        self._llm = llm
        self.pivot_language = pivot_language
        self._chat_model = chat_model
        self._vision_model = vision_model
        self._fallback_message = fallback_message
        self._business_name = business_name
        self._inline_images = inline_images
        self._vision_timeout = vision_timeout
        self._engine = engine or get_engine()

    async def resolve(
        self,
        account_id: str,
        message: InboundMessage,
        *,
        fetch_media: MediaFetcher | None = None,
    ) -> ReplySession:
        session = ReplySession(account_id=account_id, message=message)

        # Received → Classified
        if message.is_outgoing:
            return session.drop("outgoing")
        if message.has_reply:
            return session.drop("already_replied")
        if not await self._ledger.claim(account_id, message.message_id):
            return session.drop("already_claimed")
        session.claimed = True
        try:
            return await self._resolve_claimed(session, fetch_media)
        except BaseException:
            # Cancelled (account disconnect) or crashed: let a later pass retry.
            await self._ledger.release(account_id, message.message_id)
            raise

    async def _resolve_claimed(self, session: ReplySession, fetch_media: MediaFetcher | None) -> ReplySession:
        message = session.message
        log = logger.bind(account_id=session.account_id, message_id=message.message_id, platform=message.platform.value)
        session.kind = message.kind
        session.advance(ReplyState.CLASSIFIED)

        # Classified → Normalized
        if not await self._normalize(session, fetch_media):
            return session
        session.advance(ReplyState.NORMALIZED)
        log.info("reply.normalized", kind=session.kind.value, text_len=len(session.normalized_text),
                 has_image=session.image is not None)

        # Normalized → FaqLookup
        session.advance(ReplyState.FAQ_LOOKUP)
        if session.normalized_text:
            session.detected_language = await self._language.detect_language(session.normalized_text)
            if session.detected_language == self.pivot_language:
                session.pivot_text = session.normalized_text
            else:
                session.pivot_text = await self._language.translate(session.normalized_text, self.pivot_language)
            session.match = await self._lookup(session.pivot_text)
        else:
            session.detected_language = self._language.default_language

        try:
            if session.match is not None:
                # FaqHit
                session.advance(ReplyState.FAQ_HIT)
                answer = session.match.entry.answer
                if session.detected_language != self.pivot_language:
                    answer = await self._language.translate(answer, session.detected_language)
                session.reply = answer
                session.source = ReplySource.FAQ
            else:
                # FaqMiss → GenerativeFallback
                session.advance(ReplyState.FAQ_MISS)
                session.advance(ReplyState.GENERATIVE_FALLBACK)
                session.reply = await self._generate(session)
        except ConfigurationError as e:
            log.error("reply.prompt_unavailable", error=str(e))
            return session.drop("prompt_unavailable")

        # → Resolved
        if not session.reply or not session.reply.strip():
            return session.drop("no_reply", retryable=True)
        session.reply = session.reply.strip()
        session.advance(ReplyState.RESOLVED)
        log.info("reply.resolved", source=session.source.value, language=session.detected_language)
        return session

    async def _normalize(self, session: ReplySession, fetch_media: MediaFetcher | None) -> bool:
        message = session.message
        caption = (message.body or "").strip()

        if session.kind == MessageKind.VOICE:
            try:
                data = await self._media_bytes(message, fetch_media)
                session.normalized_text = (await self._transcoder.transcribe_voice(data, message.media.mime_type)).strip()
            except InvalidMediaError as e:
                logger.warning("reply.voice_invalid", message_id=message.message_id, error=str(e))
                session.drop("voice_invalid")
                return False
            except BridgeError as e:
                logger.warning("reply.voice_failed", message_id=message.message_id, error=str(e))
                session.drop("voice_failed", retryable=not isinstance(e, ConfigurationError))
                return False

        elif session.kind == MessageKind.IMAGE:
            session.normalized_text = caption
            try:
                data = await self._media_bytes(message, fetch_media)
            except BridgeError as e:
                logger.warning("reply.image_unavailable", message_id=message.message_id, error=str(e))
            else:
                session.image = await self._transcoder.persist_image(
                    data, message.media.mime_type, message.message_id, message.timestamp
                )
            if session.image is None:
                logger.info("reply.image_dropped", message_id=message.message_id, has_caption=bool(caption))

        else:
            # TEXT, and UNSUPPORTED media with whatever caption it carries.
            session.normalized_text = caption

        if not session.normalized_text and session.image is None:
            session.drop("empty")
            return False
        return True

    async def _media_bytes(self, message: InboundMessage, fetch_media: MediaFetcher | None) -> bytes:
        media = message.media
        if media is None:
            raise InvalidMediaError("message carries no media")
        if media.data:
            return media.data
        if media.file_path:
            try:
                return await asyncio.to_thread(Path(media.file_path).read_bytes)
            except OSError as e:
                raise InvalidMediaError(f"media file unreadable: {e}") from e
        if fetch_media is None:
            raise InvalidMediaError("media must be downloaded but no fetcher is available")
        data = await fetch_media(message)
        if not data:
            raise InvalidMediaError("downloaded media is empty")
        return data

    async def _lookup(self, pivot_text: str) -> FaqMatch | None:
        try:
            await self._faq.refresh_if_stale()
        except StaleCacheError as e:
            logger.warning("reply.faq_unavailable", error=str(e))
            return None
        except OSError as e:
            logger.error("reply.faq_cache_io_failed", error=str(e))
        return await self._faq.best_match(pivot_text)

    async def _generate(self, session: ReplySession) -> str | None:
        context = {
            "language": session.detected_language,
            "fallback_message": self._fallback_message,
            "business_name": self._business_name,
        }
        if session.image is not None:
            session.source = ReplySource.VISION
            image_url = session.image.url
            if self._inline_images:
                image_url = await self._transcoder.store.data_url(session.image) or image_url
            return await self._llm.describe_image(
                session.pivot_text,
                image_url,
                system_prompt=self._engine.render(VISION, **context),
                model=self._vision_model,
                timeout=self._vision_timeout,
            )

        session.source = ReplySource.GENERATIVE
        return await self._llm.ask(
            session.pivot_text,
            self._engine.render(SALES_PERSONA, **context),
            model=self._chat_model,
        )
