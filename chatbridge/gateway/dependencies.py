"""Shared dependencies for the Gateway routers.

Avoids circular imports by centralizing singleton initialization. The
reply stack depends on which ledger backend is reachable, so it is built
by the lifespan and installed with ``set_reply_stack``.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from fastapi import HTTPException

from chatbridge.accounts.registry import AccountRegistry
from chatbridge.accounts.supervisor import AccountSupervisor
from chatbridge.ai.embeddings import EmbeddingClient
from chatbridge.ai.language import LanguageService
from chatbridge.ai.llm import LLMClient
from chatbridge.core.retry import RetryPolicy
from chatbridge.gateway.notifications import DashboardHub
from chatbridge.gateway.redis_bus import RedisBus
from chatbridge.gateway.schemas import DashboardEventType
from chatbridge.integrations.dispatcher import OutboundDispatcher
from chatbridge.integrations.instagram import InstagramAdapter
from chatbridge.integrations.normalizer import MessageNormalizer
from chatbridge.integrations.telegram import TelegramAdapter
from chatbridge.integrations.whatsapp import WhatsAppBridgeAdapter
from chatbridge.knowledge.faq import FaqIndex
from chatbridge.media.store import MediaStore
from chatbridge.media.transcoder import MediaTranscoder
from chatbridge.prompts.engine import get_engine
from chatbridge.reply.ledger import AnsweredLedger, InMemoryLedger, RedisLedger
from chatbridge.reply.resolver import ReplyResolver
from chatbridge.reply.service import ReplyService
from chatbridge.reply.sweep import UnreadSweeper
from chatbridge.voice.ingress import AudioIngress
from chatbridge.voice.stt import SpeechToText
from config.settings import Settings, get_settings

logger = structlog.get_logger()
settings = get_settings()

# Initialize Singletons
redis_bus = RedisBus(redis_url=settings.redis_url or "redis://127.0.0.1:6379/0")
hub = DashboardHub(redis_bus)
registry = AccountRegistry(hub, reconnect_delay_seconds=settings.reconnect_delay_seconds)
normalizer = MessageNormalizer()


@dataclass
class ReplyStack:
    ledger: AnsweredLedger
    store: MediaStore
    faq: FaqIndex
    resolver: ReplyResolver
    service: ReplyService
    sweeper: UnreadSweeper
    supervisor: AccountSupervisor


_reply_stack: ReplyStack | None = None


def build_ledger(settings: Settings, bus: RedisBus) -> AnsweredLedger:
    if bus.is_connected:
        return RedisLedger(
            bus.client,
            claim_ttl_seconds=settings.claim_ttl_seconds,
            answered_ttl_seconds=settings.answered_ttl_seconds,
        )
    logger.warning("gateway.ledger_in_memory", reason="redis not connected")
    return InMemoryLedger(
        claim_ttl_seconds=settings.claim_ttl_seconds,
        answered_ttl_seconds=settings.answered_ttl_seconds,
    )


def _retry_policy(settings: Settings, max_retries: int | None) -> RetryPolicy:
    if max_retries is None:
        max_retries = settings.provider_max_retries
    return RetryPolicy(max_retries, settings.provider_backoff_seconds)


def build_reply_stack(
    settings: Settings,
    ledger: AnsweredLedger,
    *,
    registry: AccountRegistry,
    hub: DashboardHub | None = None,
) -> ReplyStack:
    engine = get_engine(settings.prompt_override_dir or None)

    llm = LLMClient(
        settings.openai_api_key,
        base_url=settings.openai_base_url,
        model=settings.chat_model,
        temperature=settings.chat_temperature,
        max_tokens=settings.chat_max_tokens,
        timeout=settings.text_timeout_seconds,
        retry_policy=_retry_policy(settings, settings.chat_max_retries),
    )
    embedder = EmbeddingClient(
        settings.openai_api_key,
        model=settings.embedding_model,
        base_url=settings.openai_base_url,
        timeout=settings.media_timeout_seconds,
        retry_policy=_retry_policy(settings, settings.embedding_max_retries),
    )
    stt = SpeechToText(
        settings.openai_api_key,
        model=settings.transcription_model,
        base_url=settings.openai_base_url,
        timeout=settings.media_timeout_seconds,
        retry_policy=_retry_policy(settings, settings.stt_max_retries),
    )
    language = LanguageService(
        llm,
        model=settings.language_model,
        default_language=settings.default_language,
        engine=engine,
        max_tokens=settings.chat_max_tokens,
    )
    faq = FaqIndex(
        embedder,
        cache_path=settings.faq_cache_path,
        source_url=settings.faq_source_url,
        threshold=settings.faq_similarity_threshold,
        timeout=settings.text_timeout_seconds,
    )
    store = MediaStore(settings.media_dir, settings.media_public_base_url)
    transcoder = MediaTranscoder(
        AudioIngress(settings.ffmpeg_binary, timeout=settings.media_timeout_seconds),
        stt,
        store,
        scratch_dir=settings.scratch_dir or None,
    )
    resolver = ReplyResolver(
        ledger=ledger,
        transcoder=transcoder,
        language=language,
        faq=faq,
        llm=llm,
        pivot_language=settings.pivot_language,
        chat_model=settings.chat_model,
        vision_model=settings.vision_model,
        fallback_message=settings.fallback_message,
        business_name=settings.business_name,
        inline_images=settings.vision_inline_images,
        vision_timeout=settings.media_timeout_seconds,
        engine=engine,
    )
    service = ReplyService(resolver, ledger, registry, OutboundDispatcher(registry), hub)
    sweeper = UnreadSweeper(registry, service, interval_seconds=settings.sweep_interval_seconds)
    supervisor = AccountSupervisor(registry, sweeper, service, telegram_polling=settings.telegram_polling)
    return ReplyStack(
        ledger=ledger,
        store=store,
        faq=faq,
        resolver=resolver,
        service=service,
        sweeper=sweeper,
        supervisor=supervisor,
    )


def register_accounts(
    settings: Settings,
    registry: AccountRegistry,
    hub: DashboardHub,
    normalizer: MessageNormalizer,
) -> list[str]:
    """Register one adapter per configured platform. Returns the account ids."""
    registered = []

    if settings.whatsapp_bridge_url:
        account_id = settings.whatsapp_account_id

        async def on_qr(qr: str) -> None:
            await hub.emit(DashboardEventType.QR, account_id, qrCode=qr)

        registry.register(
            account_id,
            WhatsAppBridgeAdapter(
                settings.whatsapp_bridge_url,
                api_key=settings.whatsapp_bridge_api_key,
                timeout=settings.text_timeout_seconds,
                media_timeout=settings.media_timeout_seconds,
                normalizer=normalizer,
                on_qr=on_qr,
            ),
        )
        registered.append(account_id)

    if settings.telegram_bot_token:
        registry.register(
            settings.telegram_account_id,
            TelegramAdapter(
                settings.telegram_bot_token,
                timeout=settings.text_timeout_seconds,
                media_timeout=settings.media_timeout_seconds,
                normalizer=normalizer,
            ),
        )
        registered.append(settings.telegram_account_id)

    if settings.instagram_access_token:
        registry.register(
            settings.instagram_account_id,
            InstagramAdapter(
                settings.instagram_page_id,
                settings.instagram_access_token,
                settings.instagram_app_secret,
                timeout=settings.text_timeout_seconds,
                media_timeout=settings.media_timeout_seconds,
                normalizer=normalizer,
            ),
        )
        registered.append(settings.instagram_account_id)

    logger.info("gateway.accounts_registered", accounts=registered)
    return registered


def set_reply_stack(stack: ReplyStack | None) -> None:
    global _reply_stack
    _reply_stack = stack


def get_reply_stack() -> ReplyStack:
    if _reply_stack is None:
        raise HTTPException(status_code=503, detail="Reply pipeline not started")
    return _reply_stack


def get_redis_bus() -> RedisBus:
    return redis_bus


def get_hub() -> DashboardHub:
    return hub


def get_registry() -> AccountRegistry:
    return registry


def get_normalizer() -> MessageNormalizer:
    return normalizer
