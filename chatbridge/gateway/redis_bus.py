"""ChatBridge – Redis Bus Connector.

Optional shared backbone. When ``REDIS_URL`` is set the gateway mirrors every
dashboard event onto ``chatbridge:events`` (so a second gateway process or an
external dashboard can follow along) and keeps the answered-ledger in Redis.
Without it the gateway runs single-process with an in-memory ledger.
"""

import json
from typing import Any
from urllib.parse import urlsplit

import redis.asyncio as redis
import structlog

logger = structlog.get_logger()


def _safe_url(url: str) -> str:
    """Strip credentials before the URL reaches a log line."""
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return f"{parts.scheme}://{host}{parts.path}"


class RedisBus:
    """Connection holder for the events channel and the ledger client."""

    CHANNEL_EVENTS = "chatbridge:events"

    def __init__(self, redis_url: str = "redis://127.0.0.1:6379/0") -> None:
        self._redis_url = redis_url
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        """Open the client and ping it; a failed ping leaves the bus disconnected."""
        client = redis.from_url(self._redis_url, decode_responses=True, retry_on_timeout=True)
        try:
            await client.ping()
        except (redis.RedisError, OSError):
            await client.aclose()
            raise
        self._client = client
        logger.info("redis.connected", url=_safe_url(self._redis_url))

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("redis.disconnected")

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> redis.Redis:
        """The live client, for the Redis ledger."""
        if self._client is None:
            raise RuntimeError("Redis not connected. Call connect() first.")
        return self._client

    async def health_check(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except (redis.ConnectionError, redis.TimeoutError):
            logger.error("redis.health_check_failed")
            return False

    async def publish_event(self, data: dict[str, Any]) -> int:
        """Publish one dashboard event as JSON. Returns the subscriber count."""
        count = await self.client.publish(self.CHANNEL_EVENTS, json.dumps(data, default=str))
        logger.debug("redis.event_published", type=data.get("type"), subscribers=count)
        return count
