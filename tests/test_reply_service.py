"""ChatBridge – Reply Service & Unread Sweep Tests.

Tests: delivery and ledger bookkeeping, dashboard events, send failures,
the unread sweep feeding the same path as live events.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatbridge.accounts.registry import AccountRegistry
from chatbridge.core.errors import TransientProviderError
from chatbridge.gateway.notifications import DashboardHub
from chatbridge.gateway.schemas import DashboardEventType, OutboundMessage, Platform, UnreadConversation
from chatbridge.integrations.dispatcher import OutboundDispatcher
from chatbridge.reply.ledger import InMemoryLedger
from chatbridge.reply.resolver import ReplyResolver, ReplySession, ReplySource, ReplyState
from chatbridge.reply.service import ReplyService
from chatbridge.reply.sweep import UnreadSweeper

from conftest import FakeAdapter, FakeWebSocket, image_media, make_message


def _resolved(account_id, message, reply="Our prices start at 100 TL.") -> ReplySession:
    session = ReplySession(account_id=account_id, message=message, claimed=True)
    session.reply = reply
    session.source = ReplySource.FAQ
    session.detected_language = "en"
    session.advance(ReplyState.RESOLVED)
    return session


def _dropped(account_id, message, reason, *, retryable=False, claimed=True) -> ReplySession:
    session = ReplySession(account_id=account_id, message=message, claimed=claimed)
    return session.drop(reason, retryable=retryable)


class Setup:
    def __init__(self) -> None:
        self.adapter = FakeAdapter()
        self.hub = DashboardHub()
        self.socket = FakeWebSocket()
        self.hub._clients.append(self.socket)
        self.registry = AccountRegistry(self.hub, reconnect_delay_seconds=0)
        self.session = self.registry.register("wa", self.adapter)
        self.ledger = InMemoryLedger()
        self.resolver = MagicMock(spec=ReplyResolver)
        self.resolver.resolve = AsyncMock(side_effect=self._resolve)
        self.service = ReplyService(
            self.resolver, self.ledger, self.registry, OutboundDispatcher(self.registry), self.hub
        )

    async def _resolve(self, account_id, message, *, fetch_media=None):
        await self.ledger.claim(account_id, message.message_id)
        return _resolved(account_id, message)

    def events(self, event_type: DashboardEventType) -> list[dict]:
        return [e for e in self.socket.sent if e["type"] == event_type.value]


@pytest.fixture
def setup() -> Setup:
    return Setup()


class TestHandle:
    @pytest.mark.anyio
    async def test_resolved_reply_is_sent_and_recorded(self, setup: Setup) -> None:
        message = make_message("m-1", "What are your prices?")

        session = await setup.service.handle("wa", message)

        assert session.state == ReplyState.DELIVERED
        assert setup.adapter.sent == [
            {"conversation_id": message.conversation_id, "text": "Our prices start at 100 TL.", "reply_to": "m-1"}
        ]
        assert await setup.ledger.is_answered("wa", "m-1")
        (event,) = setup.events(DashboardEventType.AUTO_REPLY)
        assert event["userId"] == "wa"
        assert event["messageId"] == "m-1"
        assert event["reply"] == "Our prices start at 100 TL."
        assert event["source"] == "faq"

    @pytest.mark.anyio
    async def test_adapter_download_is_offered_to_the_resolver(self, setup: Setup) -> None:
        await setup.service.handle("wa", make_message())
        assert setup.resolver.resolve.call_args.kwargs["fetch_media"] == setup.adapter.download_media

    @pytest.mark.anyio
    async def test_send_failure_releases_the_claim(self, setup: Setup) -> None:
        setup.adapter.send_error = TransientProviderError("bridge down")

        session = await setup.service.handle("wa", make_message("m-2"))

        assert session.drop_reason == "send_failed"
        assert session.retryable is True
        assert not await setup.ledger.is_answered("wa", "m-2")
        assert await setup.ledger.claim("wa", "m-2") is True
        assert setup.events(DashboardEventType.AUTO_REPLY) == []

    @pytest.mark.anyio
    async def test_final_drop_marks_answered(self, setup: Setup) -> None:
        async def drop(account_id, message, *, fetch_media=None):
            await setup.ledger.claim(account_id, message.message_id)
            return _dropped(account_id, message, "voice_invalid")

        setup.resolver.resolve.side_effect = drop

        await setup.service.handle("wa", make_message("m-3"))

        assert await setup.ledger.is_answered("wa", "m-3")
        assert setup.adapter.sent == []

    @pytest.mark.anyio
    async def test_retryable_drop_releases(self, setup: Setup) -> None:
        async def drop(account_id, message, *, fetch_media=None):
            await setup.ledger.claim(account_id, message.message_id)
            return _dropped(account_id, message, "no_reply", retryable=True)

        setup.resolver.resolve.side_effect = drop

        await setup.service.handle("wa", make_message("m-4"))

        assert not await setup.ledger.is_answered("wa", "m-4")
        assert await setup.ledger.claim("wa", "m-4") is True

    @pytest.mark.anyio
    async def test_unclaimed_drop_leaves_ledger_alone(self, setup: Setup) -> None:
        setup.resolver.resolve.side_effect = None
        setup.resolver.resolve.return_value = _dropped("wa", make_message("m-5"), "outgoing", claimed=False)

        await setup.service.handle("wa", make_message("m-5"))

        assert not await setup.ledger.is_answered("wa", "m-5")


class TestHandleInbound:
    @pytest.mark.anyio
    async def test_text_message_is_mirrored(self, setup: Setup) -> None:
        await setup.service.handle_inbound("wa", make_message("m-6", "Merhaba"))

        (event,) = setup.events(DashboardEventType.TEXT_MESSAGE)
        assert event["body"] == "Merhaba"
        assert event["fromMe"] is False

    @pytest.mark.anyio
    async def test_media_message_is_mirrored(self, setup: Setup) -> None:
        await setup.service.handle_inbound("wa", make_message("m-7", body="caption", media=image_media()))

        (event,) = setup.events(DashboardEventType.MEDIA_MESSAGE)
        assert event["mediaKind"] == "image"
        assert event["caption"] == "caption"

    @pytest.mark.anyio
    async def test_submit_runs_as_account_work(self, setup: Setup) -> None:
        task = setup.service.submit("wa", make_message("m-8"))
        assert task in setup.session.inflight

        session = await task

        assert session.state == ReplyState.DELIVERED
        await asyncio.sleep(0)
        assert task not in setup.session.inflight


class TestUnreadSweep:
    @pytest.mark.anyio
    async def test_quoted_message_is_skipped(self, setup: Setup) -> None:
        setup.session.ready.set()
        setup.adapter.unread = [UnreadConversation(conversation_id="c1", unread_count=3)]
        setup.adapter.conversations["c1"] = [
            make_message("u-1", "Fiyat?", conversation_id="c1"),
            make_message("u-2", "Kargo?", conversation_id="c1", has_reply=True),
            make_message("u-3", "Merhaba", conversation_id="c1"),
        ]
        sweeper = UnreadSweeper(setup.registry, setup.service)

        handed = await sweeper.sweep_unread("wa")

        assert handed == 2
        assert setup.resolver.resolve.await_count == 2
        handled = [call.args[1].message_id for call in setup.resolver.resolve.call_args_list]
        assert handled == ["u-1", "u-3"]

    @pytest.mark.anyio
    async def test_read_and_outgoing_messages_are_skipped(self, setup: Setup) -> None:
        setup.session.ready.set()
        setup.adapter.unread = [UnreadConversation(conversation_id="c1", unread_count=3)]
        setup.adapter.conversations["c1"] = [
            make_message("u-1", conversation_id="c1", is_read=True),
            make_message("u-2", conversation_id="c1", is_outgoing=True),
            make_message("u-3", conversation_id="c1"),
        ]

        assert await UnreadSweeper(setup.registry, setup.service).sweep_unread("wa") == 1

    @pytest.mark.anyio
    async def test_not_ready_account_is_skipped(self, setup: Setup) -> None:
        setup.adapter.unread = [UnreadConversation(conversation_id="c1", unread_count=1)]

        assert await UnreadSweeper(setup.registry, setup.service).sweep_unread("wa") == 0
        setup.resolver.resolve.assert_not_awaited()

    @pytest.mark.anyio
    async def test_list_failure_ends_the_pass(self, setup: Setup) -> None:
        setup.session.ready.set()
        setup.adapter.list_error = TransientProviderError("bridge down")

        assert await UnreadSweeper(setup.registry, setup.service).sweep_unread("wa") == 0

    @pytest.mark.anyio
    async def test_failed_conversation_does_not_stop_the_pass(self, setup: Setup) -> None:
        setup.session.ready.set()
        setup.adapter.unread = [
            UnreadConversation(conversation_id="missing", unread_count=1),
            UnreadConversation(conversation_id="c2", unread_count=1),
        ]
        setup.adapter.conversations["c2"] = [make_message("u-9", conversation_id="c2")]

        assert await UnreadSweeper(setup.registry, setup.service).sweep_unread("wa") == 1

    @pytest.mark.anyio
    async def test_answered_message_is_not_sent_twice(self, setup: Setup) -> None:
        """A live reply and a later sweep of the same message send once."""

        async def resolve(account_id, message, *, fetch_media=None):
            if not await setup.ledger.claim(account_id, message.message_id):
                return _dropped(account_id, message, "already_claimed", claimed=False)
            return _resolved(account_id, message)

        setup.resolver.resolve.side_effect = resolve
        setup.session.ready.set()
        message = make_message("u-1", conversation_id="c1")
        setup.adapter.unread = [UnreadConversation(conversation_id="c1", unread_count=1)]
        setup.adapter.conversations["c1"] = [message]

        await setup.service.handle("wa", message)
        await UnreadSweeper(setup.registry, setup.service).sweep_unread("wa")

        assert len(setup.adapter.sent) == 1

    @pytest.mark.anyio
    async def test_start_is_idempotent(self, setup: Setup) -> None:
        sweeper = UnreadSweeper(setup.registry, setup.service, interval_seconds=3600)

        first = sweeper.start("wa")
        second = sweeper.start("wa")

        assert first is second
        assert setup.session.sweep_task is first
        await setup.registry.disconnect("wa")
        assert first.cancelled()
        assert setup.session.sweep_task is None


class TestDispatcher:
    @pytest.mark.anyio
    async def test_unknown_account(self, setup: Setup) -> None:
        sent = await OutboundDispatcher(setup.registry).dispatch(
            "nope", OutboundMessage(platform=Platform.WHATSAPP, conversation_id="c", content="x")
        )
        assert sent is False

    @pytest.mark.anyio
    async def test_platform_mismatch(self, setup: Setup) -> None:
        sent = await OutboundDispatcher(setup.registry).dispatch(
            "wa", OutboundMessage(platform=Platform.TELEGRAM, conversation_id="c", content="x")
        )
        assert sent is False
        assert setup.adapter.sent == []
