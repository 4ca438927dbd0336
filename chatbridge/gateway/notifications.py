"""ChatBridge – Dashboard notification hub.

Pushes typed events to every connected dashboard websocket. Delivery is
fire-and-forget: a socket that fails to receive is dropped, nothing is
acknowledged or retried.
"""

from __future__ import annotations

from typing import Any

import redis.asyncio as redis
import structlog
from fastapi import WebSocket

from chatbridge.gateway.redis_bus import RedisBus
from chatbridge.gateway.schemas import DashboardEvent, DashboardEventType

logger = structlog.get_logger()


class DashboardHub:
    def __init__(self, redis_bus: RedisBus | None = None) -> None:
        self._clients: list[WebSocket] = []
        self._last_qr: dict[str, DashboardEvent] = {}
        self._redis_bus = redis_bus

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, ws: WebSocket) -> None:
        """Accept a dashboard socket and replay the pending QR code of every account."""
        await ws.accept()
        self._clients.append(ws)
        logger.info("dashboard.connected", total=len(self._clients))
        for event in list(self._last_qr.values()):
            try:
                await ws.send_json(event.to_wire())
            except Exception:
                self.disconnect(ws)
                return

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self._clients:
            self._clients.remove(ws)
            logger.info("dashboard.disconnected", total=len(self._clients))

    async def broadcast(self, event: DashboardEvent) -> int:
        """Send ``event`` to every client. Returns how many received it."""
        if event.type == DashboardEventType.QR:
            self._last_qr[event.account_id] = event
        elif event.type == DashboardEventType.ACCOUNT_STATUS and event.payload.get("status") == "ready":
            # Logged in: the QR code is no longer valid.
            self._last_qr.pop(event.account_id, None)

        data = event.to_wire()
        delivered = 0
        disconnected = []
        for ws in list(self._clients):
            try:
                await ws.send_json(data)
                delivered += 1
            except Exception:
                disconnected.append(ws)
        for ws in disconnected:
            self.disconnect(ws)

        await self._mirror(data)
        return delivered

    async def emit(self, event_type: DashboardEventType, account_id: str, **payload: Any) -> int:
        return await self.broadcast(DashboardEvent(type=event_type, account_id=account_id, payload=payload))

    async def _mirror(self, data: dict[str, Any]) -> None:
        if self._redis_bus is None or not self._redis_bus.is_connected:
            return
        try:
            await self._redis_bus.publish_event(data)
        except (redis.RedisError, RuntimeError) as e:
            logger.warning("dashboard.mirror_failed", error=str(e))
