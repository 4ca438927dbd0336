"""ChatBridge – Webhook Router.

Live inbound path: WhatsApp bridge events, Telegram updates and Instagram
messaging webhooks. Every accepted message is handed to the reply service
as in-flight work of its account; the request returns immediately.
"""

import hmac
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from pydantic import BaseModel, ValidationError

from chatbridge.accounts.registry import AccountRegistry, AccountSession
from chatbridge.gateway.dependencies import ReplyStack, get_hub, get_normalizer, get_registry, get_reply_stack
from chatbridge.gateway.notifications import DashboardHub
from chatbridge.gateway.schemas import DashboardEventType, InboundMessage, Platform
from chatbridge.integrations.instagram import InstagramAdapter
from chatbridge.integrations.normalizer import MessageNormalizer
from config.settings import get_settings

logger = structlog.get_logger()
router = APIRouter(prefix="/webhooks", tags=["webhooks"])
settings = get_settings()


class BridgeEvent(BaseModel):
    """Event pushed by the WhatsApp-Web bridge sidecar."""

    event: str
    message: dict[str, Any] | None = None
    qr: str | None = None
    reason: str | None = None


class WebhookBody(BaseModel):
    """Meta webhook envelope."""

    object: str = ""
    entry: list[dict[str, Any]] = []


def _account(registry: AccountRegistry, account_id: str, platform: Platform) -> AccountSession:
    session = registry.find(account_id)
    if session is None or session.platform != platform:
        raise HTTPException(status_code=404, detail="Unknown account")
    return session


def _secret_matches(expected: str, provided: str | None) -> bool:
    if not expected:
        return True
    return hmac.compare_digest(expected, provided or "")


def _submit(stack: ReplyStack, account_id: str, message: InboundMessage | None) -> int:
    if message is None:
        return 0
    stack.service.submit(account_id, message)
    logger.info(
        "webhook.message_received",
        platform=message.platform.value,
        account_id=account_id,
        message_id=message.message_id,
    )
    return 1


@router.post("/whatsapp/{account_id}")
async def whatsapp_bridge_event(
    account_id: str,
    event: BridgeEvent,
    x_api_key: str | None = Header(default=None, alias="x-api-key"),
    stack: ReplyStack = Depends(get_reply_stack),
    registry: AccountRegistry = Depends(get_registry),
    normalizer: MessageNormalizer = Depends(get_normalizer),
    hub: DashboardHub = Depends(get_hub),
) -> dict[str, Any]:
    """Bridge events: ``message``, ``qr``, ``ready`` and ``disconnected``."""
    _account(registry, account_id, Platform.WHATSAPP)
    if not _secret_matches(settings.whatsapp_bridge_api_key, x_api_key):
        logger.warning("webhook.whatsapp_forbidden", account_id=account_id)
        raise HTTPException(status_code=403, detail="Invalid bridge key")

    processed = 0
    if event.event == "message" and event.message:
        processed = _submit(stack, account_id, normalizer.normalize_whatsapp(event.message))
    elif event.event == "qr" and event.qr:
        await hub.emit(DashboardEventType.QR, account_id, qrCode=event.qr)
    elif event.event == "ready":
        stack.supervisor.start(account_id)
    elif event.event == "disconnected":
        logger.warning("webhook.whatsapp_disconnected", account_id=account_id, reason=event.reason)
        await stack.supervisor.restart(account_id)
    else:
        logger.debug("webhook.whatsapp_ignored", account_id=account_id, event=event.event)
    return {"status": "ok", "processed": processed}


@router.post("/telegram/{account_id}")
async def telegram_update(
    account_id: str,
    update: dict[str, Any],
    x_telegram_bot_api_secret_token: str | None = Header(default=None, alias="x-telegram-bot-api-secret-token"),
    stack: ReplyStack = Depends(get_reply_stack),
    registry: AccountRegistry = Depends(get_registry),
    normalizer: MessageNormalizer = Depends(get_normalizer),
) -> dict[str, Any]:
    session = _account(registry, account_id, Platform.TELEGRAM)
    if not _secret_matches(settings.telegram_webhook_secret, x_telegram_bot_api_secret_token):
        logger.warning("webhook.telegram_forbidden", account_id=account_id)
        raise HTTPException(status_code=403, detail="Invalid webhook secret")
    bot_id = getattr(session.adapter, "bot_id", "")
    processed = _submit(stack, account_id, normalizer.normalize_telegram(update, bot_id=bot_id))
    return {"status": "ok", "processed": processed}


@router.get("/instagram/{account_id}")
async def instagram_verify(
    account_id: str,
    hub_mode: str = Query(default="", alias="hub.mode"),
    hub_verify_token: str = Query(default="", alias="hub.verify_token"),
    hub_challenge: str = Query(default="", alias="hub.challenge"),
    registry: AccountRegistry = Depends(get_registry),
) -> Response:
    """Meta webhook verification handshake."""
    _account(registry, account_id, Platform.INSTAGRAM)
    expected = settings.instagram_verify_token
    if hub_mode == "subscribe" and expected and hmac.compare_digest(expected, hub_verify_token):
        logger.info("webhook.instagram_verified", account_id=account_id)
        return Response(content=hub_challenge, media_type="text/plain")
    logger.warning("webhook.instagram_verification_failed", account_id=account_id, mode=hub_mode)
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/instagram/{account_id}")
async def instagram_event(
    account_id: str,
    request: Request,
    x_hub_signature_256: str | None = Header(default=None, alias="x-hub-signature-256"),
    stack: ReplyStack = Depends(get_reply_stack),
    registry: AccountRegistry = Depends(get_registry),
    normalizer: MessageNormalizer = Depends(get_normalizer),
) -> dict[str, Any]:
    session = _account(registry, account_id, Platform.INSTAGRAM)
    raw_body = await request.body()
    adapter = session.adapter
    if isinstance(adapter, InstagramAdapter) and adapter.app_secret:
        if not adapter.verify_webhook_signature(raw_body, x_hub_signature_256 or ""):
            logger.warning("webhook.instagram_forbidden", reason="invalid_signature")
            raise HTTPException(status_code=403, detail="Invalid webhook signature")

    try:
        body = WebhookBody.model_validate_json(raw_body)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    processed = 0
    for message in normalizer.normalize_instagram_webhook(body.model_dump()):
        processed += _submit(stack, account_id, message)
    return {"status": "ok", "processed": processed}