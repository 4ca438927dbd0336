"""Periodic unread sweep, one loop per connected account.

Each account sweeps its conversations sequentially so rate-limited provider
calls never overlap within an account; different accounts run in parallel.
"""

from __future__ import annotations

import asyncio

import structlog

from chatbridge.accounts.registry import AccountRegistry
from chatbridge.core.errors import BridgeError
from chatbridge.core.instrumentation import SWEEP_RUNS
from chatbridge.reply.service import ReplyService

logger = structlog.get_logger()


class UnreadSweeper:
    def __init__(self, registry: AccountRegistry, service: ReplyService, *, interval_seconds: float = 60.0) -> None:
        self._registry = registry
        self._service = service
        self.interval_seconds = interval_seconds

    async def sweep_unread(self, account_id: str) -> int:
        """Feed every unread, unanswered message of the account to the reply path.

        Skipped entirely until the account is ready. Returns how many messages
        were handed over.
        """
        session = self._registry.get(account_id)
        platform = session.platform.value
        if not session.is_ready:
            logger.debug("sweep.skipped_not_ready", account_id=account_id)
            SWEEP_RUNS.labels(platform=platform, status="skipped").inc()
            return 0

        adapter = session.adapter
        try:
            conversations = await adapter.list_unread_conversations()
        except BridgeError as e:
            logger.warning("sweep.list_failed", account_id=account_id, error=str(e))
            SWEEP_RUNS.labels(platform=platform, status="failed").inc()
            return 0

        handed = 0
        for conversation in conversations:
            if conversation.unread_count <= 0:
                continue
            try:
                messages = await adapter.fetch_recent_messages(
                    conversation.conversation_id, conversation.unread_count
                )
            except BridgeError as e:
                logger.warning(
                    "sweep.fetch_failed",
                    account_id=account_id,
                    conversation_id=conversation.conversation_id,
                    error=str(e),
                )
                continue

            for message in messages:
                if message.is_read or not message.is_answerable:
                    continue
                await self._service.handle(account_id, message)
                handed += 1

        logger.info("sweep.completed", account_id=account_id, conversations=len(conversations), handed=handed)
        SWEEP_RUNS.labels(platform=platform, status="ok").inc()
        return handed

    async def run(self, account_id: str) -> None:
        """Sweep forever: wait for the ready signal, sweep, sleep."""
        session = self._registry.get(account_id)
        while True:
            await session.ready.wait()
            try:
                await self.sweep_unread(account_id)
            except Exception as e:
                logger.error("sweep.crashed", account_id=account_id, error=str(e))
                SWEEP_RUNS.labels(platform=session.platform.value, status="failed").inc()
            await asyncio.sleep(self.interval_seconds)

    def start(self, account_id: str) -> asyncio.Task:
        session = self._registry.get(account_id)
        if session.sweep_task is None or session.sweep_task.done():
            session.sweep_task = asyncio.create_task(self.run(account_id), name=f"sweep:{account_id}")
        return session.sweep_task
