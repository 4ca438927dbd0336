"""ChatBridge – Answered-message ledger.

Shared dedup marker for the live handler and the unread sweep. A message is
first *claimed* (short TTL, atomic check-and-set) and, after a successful
send, *marked answered* (long TTL). A failed attempt releases its claim so a
later sweep can try again.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol

import redis.asyncio as redis
import structlog

from chatbridge.core.redis_keys import answered_key, claim_key

logger = structlog.get_logger()


class AnsweredLedger(Protocol):
    async def claim(self, account_id: str, message_id: str) -> bool: ...

    async def mark_answered(self, account_id: str, message_id: str) -> None: ...

    async def release(self, account_id: str, message_id: str) -> None: ...

    async def is_answered(self, account_id: str, message_id: str) -> bool: ...


class InMemoryLedger:
    """Single-process ledger.

    Expired markers are dropped on lookup, and a full sweep of both stores runs
    from the write path at most once per claim TTL.
    """

    def __init__(self, *, claim_ttl_seconds: float = 600, answered_ttl_seconds: float = 7 * 24 * 3600) -> None:
        self._claim_ttl = claim_ttl_seconds
        self._answered_ttl = answered_ttl_seconds
        self._claims: dict[tuple[str, str], float] = {}
        self._answered: dict[tuple[str, str], float] = {}
        self._lock = asyncio.Lock()
        self._next_purge = 0.0

    @staticmethod
    def _live(store: dict[tuple[str, str], float], key: tuple[str, str], now: float) -> bool:
        expires = store.get(key)
        if expires is None:
            return False
        if expires <= now:
            del store[key]
            return False
        return True

    def _purge(self, now: float) -> None:
        if now < self._next_purge:
            return
        self._next_purge = now + self._claim_ttl
        dropped = 0
        for store in (self._claims, self._answered):
            expired = [key for key, expires in store.items() if expires <= now]
            for key in expired:
                del store[key]
            dropped += len(expired)
        if dropped:
            logger.debug("ledger.purged", dropped=dropped, answered=len(self._answered), claims=len(self._claims))

    async def claim(self, account_id: str, message_id: str) -> bool:
        key = (account_id, message_id)
        async with self._lock:
            now = time.monotonic()
            self._purge(now)
            if self._live(self._answered, key, now) or self._live(self._claims, key, now):
                return False
            self._claims[key] = now + self._claim_ttl
            return True

    async def mark_answered(self, account_id: str, message_id: str) -> None:
        key = (account_id, message_id)
        async with self._lock:
            now = time.monotonic()
            self._purge(now)
            self._answered[key] = now + self._answered_ttl
            self._claims.pop(key, None)

    async def release(self, account_id: str, message_id: str) -> None:
        async with self._lock:
            self._claims.pop((account_id, message_id), None)

    async def is_answered(self, account_id: str, message_id: str) -> bool:
        async with self._lock:
            return self._live(self._answered, (account_id, message_id), time.monotonic())


class RedisLedger:
    """Ledger shared across processes through Redis ``SET NX EX``."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        claim_ttl_seconds: int = 600,
        answered_ttl_seconds: int = 7 * 24 * 3600,
    ) -> None:
        self._client = client
        self._claim_ttl = int(claim_ttl_seconds)
        self._answered_ttl = int(answered_ttl_seconds)

    async def claim(self, account_id: str, message_id: str) -> bool:
        if await self._client.exists(answered_key(account_id, message_id)):
            return False
        acquired = await self._client.set(claim_key(account_id, message_id), "1", nx=True, ex=self._claim_ttl)
        return bool(acquired)

    async def mark_answered(self, account_id: str, message_id: str) -> None:
        # The claim is left to expire: deleting it here would let a concurrent
        # claim() that already passed the answered check slip through.
        await self._client.set(answered_key(account_id, message_id), "1", ex=self._answered_ttl)

    async def release(self, account_id: str, message_id: str) -> None:
        await self._client.delete(claim_key(account_id, message_id))

    async def is_answered(self, account_id: str, message_id: str) -> bool:
        return bool(await self._client.exists(answered_key(account_id, message_id)))
