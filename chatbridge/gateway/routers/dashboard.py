"""ChatBridge – Dashboard Operator Router.

Operator actions behind the dashboard: manual send, conversation history
and an on-demand contact refresh. Every call goes through the account's
adapter, so all platforms share one set of endpoints.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from chatbridge.accounts.registry import AccountRegistry, AccountSession
from chatbridge.core.errors import BridgeError
from chatbridge.gateway.dependencies import get_hub, get_registry
from chatbridge.gateway.notifications import DashboardHub
from chatbridge.gateway.schemas import DashboardEventType, OutboundMessage
from chatbridge.integrations.dispatcher import OutboundDispatcher

logger = structlog.get_logger()
router = APIRouter(prefix="/dashboard", tags=["dashboard"])


class SendRequest(BaseModel):
    conversation_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    reply_to: str | None = None


def _session(registry: AccountRegistry, account_id: str) -> AccountSession:
    session = registry.find(account_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Unknown account")
    return session


@router.post("/{account_id}/send")
async def send_message(
    account_id: str,
    request: SendRequest,
    registry: AccountRegistry = Depends(get_registry),
    hub: DashboardHub = Depends(get_hub),
) -> dict[str, Any]:
    """Send an operator-written text into a conversation."""
    session = _session(registry, account_id)
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Text must not be blank")

    outbound = OutboundMessage(
        platform=session.platform,
        conversation_id=request.conversation_id,
        content=request.text,
        reply_to=request.reply_to,
    )
    if not await OutboundDispatcher(registry).dispatch(account_id, outbound):
        raise HTTPException(status_code=502, detail="Platform rejected the message")

    logger.info("dashboard.manual_send", account_id=account_id, conversation_id=request.conversation_id)
    await hub.emit(
        DashboardEventType.TEXT_MESSAGE,
        account_id,
        conversationId=request.conversation_id,
        body=request.text,
        fromMe=True,
    )
    return {"status": "ok"}


@router.get("/{account_id}/messages/{conversation_id}")
async def conversation_history(
    account_id: str,
    conversation_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    registry: AccountRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Most recent messages of one conversation, oldest first."""
    session = _session(registry, account_id)
    try:
        messages = await session.adapter.fetch_recent_messages(conversation_id, limit)
    except BridgeError as e:
        logger.warning("dashboard.history_failed", account_id=account_id, conversation_id=conversation_id, error=str(e))
        raise HTTPException(status_code=502, detail=str(e)) from e
    return {
        "messages": [m.model_dump(mode="json", exclude={"media": {"data"}}) for m in messages],
    }


@router.get("/{account_id}/contacts")
async def contacts(
    account_id: str,
    registry: AccountRegistry = Depends(get_registry),
    hub: DashboardHub = Depends(get_hub),
) -> dict[str, Any]:
    """Fetch the contact list now and push it to every dashboard client."""
    session = _session(registry, account_id)
    try:
        found = await session.adapter.list_contacts()
    except BridgeError as e:
        logger.warning("dashboard.contacts_failed", account_id=account_id, error=str(e))
        raise HTTPException(status_code=502, detail=str(e)) from e
    payload = [c.model_dump() for c in found]
    await hub.emit(DashboardEventType.CONTACTS, account_id, contacts=payload)
    return {"contacts": payload}
