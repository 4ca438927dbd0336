"""ChatBridge – Dashboard WebSocket Router.

Read-only event stream for the operator dashboard: QR codes, contacts,
live messages, auto-replies and account status.
"""

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from chatbridge.gateway.dependencies import hub

logger = structlog.get_logger()
router = APIRouter(tags=["dashboard"])


@router.websocket("/ws/dashboard")
async def dashboard_socket(ws: WebSocket) -> None:
    """Push dashboard events; anything the client sends is ignored."""
    await hub.connect(ws)
    try:
        while True:
            data = await ws.receive_text()
            logger.debug("dashboard.received", length=len(data))
    except WebSocketDisconnect:
        hub.disconnect(ws)
