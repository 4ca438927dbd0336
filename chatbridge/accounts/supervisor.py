"""ChatBridge – Account supervisor.

Owns the background bring-up of every registered account: handshake,
unread sweep loop and, for Telegram accounts without a webhook, the long
polling loop.
"""

from __future__ import annotations

import asyncio

import structlog

from chatbridge.accounts.registry import AccountRegistry
from chatbridge.gateway.schemas import InboundMessage, Platform
from chatbridge.integrations.telegram import TelegramAdapter
from chatbridge.reply.service import ReplyService
from chatbridge.reply.sweep import UnreadSweeper

logger = structlog.get_logger()


class AccountSupervisor:
    def __init__(
        self,
        registry: AccountRegistry,
        sweeper: UnreadSweeper,
        service: ReplyService,
        *,
        telegram_polling: bool = True,
    ) -> None:
        self._registry = registry
        self._sweeper = sweeper
        self._service = service
        self._telegram_polling = telegram_polling
        self._bring_up_tasks: dict[str, asyncio.Task] = {}

    def start(self, account_id: str) -> asyncio.Task:
        """Schedule the bring-up of ``account_id`` unless one is already running."""
        task = self._bring_up_tasks.get(account_id)
        if task is None or task.done():
            task = asyncio.create_task(self.bring_up(account_id), name=f"bring-up:{account_id}")
            self._bring_up_tasks[account_id] = task
        return task

    def start_all(self) -> list[asyncio.Task]:
        return [self.start(session.account_id) for session in self._registry.sessions()]

    async def bring_up(self, account_id: str) -> bool:
        connected = await self._registry.connect(account_id)
        if not connected:
            return False
        self._sweeper.start(account_id)
        session = self._registry.get(account_id)
        if (
            self._telegram_polling
            and session.platform == Platform.TELEGRAM
            and isinstance(session.adapter, TelegramAdapter)
        ):
            adapter = session.adapter

            async def on_message(message: InboundMessage) -> None:
                self._service.submit(account_id, message)

            self._registry.spawn(account_id, adapter.poll(on_message))
            logger.info("telegram.polling_started", account_id=account_id)
        return True

    async def restart(self, account_id: str) -> asyncio.Task:
        """Tear the account down and reconnect it in the background."""
        task = self._bring_up_tasks.pop(account_id, None)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._registry.disconnect(account_id)
        return self.start(account_id)

    async def shutdown(self) -> None:
        tasks = [t for t in self._bring_up_tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._bring_up_tasks.clear()
        await self._registry.shutdown()
