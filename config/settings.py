"""ChatBridge – Application Configuration.

Pydantic Settings, loaded from .env file or environment variables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Gateway ---
    environment: str = "development"
    log_level: str = "info"
    gateway_host: str = "0.0.0.0"
    gateway_port: int = 8000
    cors_allowed_origins: str = "http://localhost:3000"

    # --- Redis (optional: dedup ledger + event mirror) ---
    redis_url: str = ""

    # --- OpenAI-compatible provider ---
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    chat_model: str = "gpt-4o-2024-08-06"
    vision_model: str = "gpt-4o-mini"
    language_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-ada-002"
    transcription_model: str = "whisper-1"
    chat_max_tokens: int = 1600
    chat_temperature: float = 0.7

    # --- Provider call policy ---
    text_timeout_seconds: float = 30.0
    media_timeout_seconds: float = 120.0
    provider_max_retries: int = 2
    provider_backoff_seconds: float = 0.5
    # Per-capability overrides; None = provider_max_retries
    chat_max_retries: int | None = None
    embedding_max_retries: int | None = None
    stt_max_retries: int | None = None

    # --- FAQ store ---
    faq_source_url: str = ""
    faq_cache_path: str = "data/faq/questions.json"
    faq_similarity_threshold: float = 0.8
    pivot_language: str = "tr"
    default_language: str = "en"

    # --- Prompts ---
    prompt_override_dir: str = ""  # empty = packaged templates only
    business_name: str = ""
    fallback_message: str = "Sizin için satış temsilcimiz en kısa sürede bilgi verecek."

    # --- Media ---
    media_dir: str = "data/media"
    media_public_base_url: str = "http://localhost:8000/media"
    media_retention_days: int = 0  # 0 = keep forever
    scratch_dir: str = ""  # empty = system temp dir
    ffmpeg_binary: str = "ffmpeg"
    vision_inline_images: bool = True  # send images as data URLs instead of the public URL

    # --- Auto-reply sweep ---
    sweep_interval_seconds: float = 60.0
    reconnect_delay_seconds: float = 5.0
    answered_ttl_seconds: int = 7 * 24 * 3600
    claim_ttl_seconds: int = 600

    # --- WhatsApp (WhatsApp-Web bridge sidecar) ---
    whatsapp_bridge_url: str = ""
    whatsapp_bridge_api_key: str = ""
    whatsapp_account_id: str = "whatsapp-default"

    # --- Telegram Bot ---
    telegram_bot_token: str = ""
    telegram_account_id: str = "telegram-default"
    telegram_polling: bool = True  # False = updates arrive on /webhooks/telegram/{account}
    telegram_webhook_secret: str = ""

    # --- Instagram (Meta Graph API) ---
    instagram_page_id: str = ""
    instagram_access_token: str = ""
    instagram_account_id: str = "instagram-default"
    instagram_app_secret: str = ""
    instagram_verify_token: str = ""

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def get_settings() -> Settings:
    """Factory function for settings singleton."""
    return Settings()
