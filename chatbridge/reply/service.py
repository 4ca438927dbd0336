"""ChatBridge – Reply service.

The single entry point both call paths (live events and the unread sweep)
use: resolve, deliver, update the answered ledger, tell the dashboard.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from chatbridge.accounts.registry import AccountRegistry
from chatbridge.core.instrumentation import REPLY_LATENCY, REPLY_OUTCOMES
from chatbridge.gateway.notifications import DashboardHub
from chatbridge.gateway.schemas import DashboardEventType, InboundMessage, MessageKind, OutboundMessage
from chatbridge.integrations.dispatcher import OutboundDispatcher
from chatbridge.reply.ledger import AnsweredLedger
from chatbridge.reply.resolver import ReplyResolver, ReplySession, ReplyState

logger = structlog.get_logger()


class ReplyService:
    def __init__(
        self,
        resolver: ReplyResolver,
        ledger: AnsweredLedger,
        registry: AccountRegistry,
        dispatcher: OutboundDispatcher,
        hub: DashboardHub | None = None,
    ) -> None:
        self._resolver = resolver
        self._ledger = ledger
        self._registry = registry
        self._dispatcher = dispatcher
        self._hub = hub

    async def handle(self, account_id: str, message: InboundMessage) -> ReplySession:
        """Resolve and deliver at most one reply for ``message``."""
        started = time.perf_counter()
        account = self._registry.find(account_id)
        fetch_media = account.adapter.download_media if account is not None else None

        session = await self._resolver.resolve(account_id, message, fetch_media=fetch_media)

        if session.resolved:
            await self._deliver(session)
        elif session.claimed:
            if session.retryable:
                await self._ledger.release(account_id, message.message_id)
            else:
                await self._ledger.mark_answered(account_id, message.message_id)

        REPLY_OUTCOMES.labels(
            platform=message.platform.value, state=session.state.value, source=session.source.value
        ).inc()
        REPLY_LATENCY.labels(platform=message.platform.value).observe(time.perf_counter() - started)
        return session

    async def _deliver(self, session: ReplySession) -> None:
        message = session.message
        sent = await self._dispatcher.dispatch(
            session.account_id,
            OutboundMessage(
                platform=message.platform,
                conversation_id=message.conversation_id,
                content=session.reply,
                reply_to=message.message_id,
            ),
        )
        if not sent:
            await self._ledger.release(session.account_id, message.message_id)
            session.drop("send_failed", retryable=True)
            return

        await self._ledger.mark_answered(session.account_id, message.message_id)
        session.advance(ReplyState.DELIVERED)
        if self._hub is not None:
            await self._hub.emit(
                DashboardEventType.AUTO_REPLY,
                session.account_id,
                conversationId=message.conversation_id,
                messageId=message.message_id,
                reply=session.reply,
                source=session.source.value,
                language=session.detected_language,
            )

    async def handle_inbound(self, account_id: str, message: InboundMessage) -> ReplySession:
        """Live path: mirror the message to the dashboard, then handle it."""
        if self._hub is not None:
            if message.kind == MessageKind.TEXT:
                await self._hub.emit(
                    DashboardEventType.TEXT_MESSAGE,
                    account_id,
                    conversationId=message.conversation_id,
                    messageId=message.message_id,
                    senderId=message.sender_id,
                    body=message.body or "",
                    fromMe=message.is_outgoing,
                )
            else:
                await self._hub.emit(
                    DashboardEventType.MEDIA_MESSAGE,
                    account_id,
                    conversationId=message.conversation_id,
                    messageId=message.message_id,
                    senderId=message.sender_id,
                    mediaKind=message.media.kind.value if message.media else None,
                    mimeType=message.media.mime_type if message.media else None,
                    caption=message.body or "",
                    fromMe=message.is_outgoing,
                )
        return await self.handle(account_id, message)

    def submit(self, account_id: str, message: InboundMessage) -> asyncio.Task:
        """Schedule ``handle_inbound`` as in-flight work of the account."""
        return self._registry.spawn(account_id, self.handle_inbound(account_id, message))
