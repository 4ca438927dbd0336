"""ChatBridge – Gateway.

FastAPI app hosting the dashboard websocket, the live webhooks and the
account lifecycle (handshake, unread sweep, Telegram polling).
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatbridge.accounts.registry import AccountRegistry
from chatbridge.core.instrumentation import router as metrics_router
from chatbridge.core.instrumentation import setup_logging
from chatbridge.gateway.dependencies import (
    ReplyStack,
    build_ledger,
    build_reply_stack,
    get_redis_bus,
    get_registry,
    get_reply_stack,
    hub,
    normalizer,
    redis_bus,
    register_accounts,
    registry,
    set_reply_stack,
    settings,
)
from chatbridge.gateway.redis_bus import RedisBus
from chatbridge.gateway.routers.dashboard import router as dashboard_router
from chatbridge.gateway.routers.webhooks import router as webhooks_router
from chatbridge.gateway.routers.websocket import router as websocket_router
from chatbridge.media.store import MediaStore
from config.settings import Settings

logger = structlog.get_logger()

VERSION = "0.1.0"


def _parse_cors_origins(raw: str) -> list[str]:
    origins = [item.strip() for item in (raw or "").split(",") if item.strip()]
    return origins or ["http://localhost:3000"]


def _enforce_startup_guards(settings: Settings) -> None:
    if not settings.is_production:
        return

    unsigned = []
    if settings.whatsapp_bridge_url and not settings.whatsapp_bridge_api_key:
        unsigned.append("whatsapp_bridge_api_key")
    if settings.telegram_bot_token and not settings.telegram_polling and not settings.telegram_webhook_secret:
        unsigned.append("telegram_webhook_secret")
    if settings.instagram_access_token and not settings.instagram_app_secret:
        unsigned.append("instagram_app_secret")
    if unsigned:
        raise RuntimeError(f"Refusing startup in production with unauthenticated webhooks: {', '.join(unsigned)}")


async def _prune_media_loop(store: MediaStore, retention_days: int, interval_seconds: float) -> None:
    max_age = retention_days * 86400.0
    while True:
        try:
            removed = await store.prune(max_age)
            if removed:
                logger.info("media.pruned", removed=removed, retention_days=retention_days)
        except OSError as e:
            logger.warning("media.prune_failed", error=str(e))
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[type-arg]
    """Connect Redis, build the reply pipeline and bring accounts up."""
    setup_logging(settings.log_level)
    _enforce_startup_guards(settings)
    background_tasks: list[asyncio.Task] = []
    logger.info("chatbridge.gateway.startup", version=VERSION, env=settings.environment)

    if settings.redis_url:
        try:
            await redis_bus.connect()
        except Exception:
            logger.warning("chatbridge.gateway.redis_unavailable", msg="Starting without Redis")

    stack = build_reply_stack(settings, build_ledger(settings, redis_bus), registry=registry, hub=hub)
    set_reply_stack(stack)

    if not registry.sessions():
        register_accounts(settings, registry, hub, normalizer)
    stack.supervisor.start_all()

    if settings.media_retention_days > 0:
        prune = _prune_media_loop(stack.store, settings.media_retention_days, settings.sweep_interval_seconds)
        background_tasks.append(asyncio.create_task(prune))

    yield

    for task in background_tasks:
        task.cancel()
    await stack.supervisor.shutdown()
    set_reply_stack(None)
    await redis_bus.disconnect()
    logger.info("chatbridge.gateway.shutdown")


app = FastAPI(
    title="ChatBridge Gateway",
    description="Multi-platform auto-reply gateway – FastAPI + WebSocket dashboard",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_cors_origins(settings.cors_allowed_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(metrics_router)
app.include_router(websocket_router)
app.include_router(webhooks_router)
app.include_router(dashboard_router)


@app.get("/health")
async def health_check(
    bus: RedisBus = Depends(get_redis_bus),
    accounts: AccountRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Health endpoint – returns system status."""
    redis_ok = await bus.health_check()
    if settings.redis_url:
        redis_status = "connected" if redis_ok else "disconnected"
    else:
        redis_status = "disabled"
    return {
        "status": "degraded" if redis_status == "disconnected" else "ok",
        "service": "chatbridge-gateway",
        "version": VERSION,
        "redis": redis_status,
        "accounts": {
            s.account_id: {"platform": s.platform.value, "ready": s.is_ready} for s in accounts.sessions()
        },
        "dashboard_clients": hub.client_count,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/faq/status")
async def faq_status(stack: ReplyStack = Depends(get_reply_stack)) -> dict[str, Any]:
    """Loaded FAQ entries and how many question vectors are cached."""
    return {"entries": len(stack.faq.entries), "cached_vectors": stack.faq.cached_vectors}
