"""ChatBridge – Account registry.

One explicit session per connected account, owned here and passed by
reference to the reply path, instead of platform modules keeping their own
global client maps.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Coroutine

import structlog

from chatbridge.core.errors import BridgeError
from chatbridge.gateway.notifications import DashboardHub
from chatbridge.gateway.schemas import DashboardEventType, Platform
from chatbridge.integrations.ports import ChatAdapter

logger = structlog.get_logger()


@dataclass
class AccountSession:
    account_id: str
    adapter: ChatAdapter
    ready: asyncio.Event = field(default_factory=asyncio.Event)
    sweep_task: asyncio.Task | None = None
    inflight: set[asyncio.Task] = field(default_factory=set)

    @property
    def platform(self) -> Platform:
        return self.adapter.platform

    @property
    def is_ready(self) -> bool:
        return self.ready.is_set()


class AccountRegistry:
    def __init__(self, hub: DashboardHub | None = None, *, reconnect_delay_seconds: float = 5.0) -> None:
        self._sessions: dict[str, AccountSession] = {}
        self._hub = hub
        self.reconnect_delay_seconds = reconnect_delay_seconds

    def register(self, account_id: str, adapter: ChatAdapter) -> AccountSession:
        if account_id in self._sessions:
            raise ValueError(f"account '{account_id}' is already registered")
        session = AccountSession(account_id=account_id, adapter=adapter)
        self._sessions[account_id] = session
        logger.info("account.registered", account_id=account_id, platform=adapter.platform.value)
        return session

    def get(self, account_id: str) -> AccountSession:
        try:
            return self._sessions[account_id]
        except KeyError:
            raise KeyError(f"unknown account '{account_id}'") from None

    def find(self, account_id: str) -> AccountSession | None:
        return self._sessions.get(account_id)

    def sessions(self) -> list[AccountSession]:
        return list(self._sessions.values())

    async def connect(self, account_id: str, *, max_attempts: int | None = None) -> bool:
        """Run the adapter handshake, retrying after ``reconnect_delay_seconds``.

        On success the ready signal is set and the contact list is pushed to
        the dashboard. Returns False when ``max_attempts`` ran out.
        """
        session = self.get(account_id)
        attempt = 0
        while True:
            attempt += 1
            try:
                await session.adapter.connect()
                break
            except BridgeError as e:
                logger.warning("account.connect_failed", account_id=account_id, attempt=attempt, error=str(e))
                await self._emit(DashboardEventType.ACCOUNT_STATUS, account_id, status="disconnected", error=str(e))
                if max_attempts is not None and attempt >= max_attempts:
                    return False
                await asyncio.sleep(self.reconnect_delay_seconds)

        session.ready.set()
        logger.info("account.ready", account_id=account_id, attempts=attempt)
        await self._emit(DashboardEventType.ACCOUNT_STATUS, account_id, status="ready")

        try:
            contacts = await session.adapter.list_contacts()
        except BridgeError as e:
            logger.warning("account.contacts_failed", account_id=account_id, error=str(e))
            contacts = []
        await self._emit(DashboardEventType.CONTACTS, account_id, contacts=[c.model_dump() for c in contacts])
        return True

    def spawn(self, account_id: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run ``coro`` as in-flight work of the account, cancelled on disconnect."""
        session = self.get(account_id)
        task = asyncio.create_task(coro)
        session.inflight.add(task)
        task.add_done_callback(lambda t: self._reap(session, t))
        return task

    @staticmethod
    def _reap(session: AccountSession, task: asyncio.Task) -> None:
        session.inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("account.task_failed", account_id=session.account_id, error=str(task.exception()))

    async def disconnect(self, account_id: str) -> None:
        """Clear the ready signal and cancel the sweep loop and in-flight work."""
        session = self.get(account_id)
        session.ready.clear()
        tasks = list(session.inflight)
        if session.sweep_task is not None:
            tasks.append(session.sweep_task)
            session.sweep_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("account.disconnected", account_id=account_id, cancelled=len(tasks))
        await self._emit(DashboardEventType.ACCOUNT_STATUS, account_id, status="disconnected")

    async def shutdown(self) -> None:
        for account_id in list(self._sessions):
            await self.disconnect(account_id)

    async def _emit(self, event_type: DashboardEventType, account_id: str, **payload: Any) -> None:
        if self._hub is not None:
            await self._hub.emit(event_type, account_id, **payload)
