"""Language detection and translation via the chat model.

Both operations are best-effort: failures are logged and replaced by a
default language tag or the untranslated input, never raised.
"""

from __future__ import annotations

import re

import structlog

from chatbridge.ai.llm import LLMClient
from chatbridge.core.errors import ConfigurationError
from chatbridge.prompts.engine import DETECT_LANGUAGE, TRANSLATE, PromptEngine, get_engine

logger = structlog.get_logger()

# Bare ISO 639 code, optionally with a region subtag ("en", "pt-BR", "zh_hans").
_LANG_CODE = re.compile(r"^([a-z]{2,3})(?:[-_][a-z0-9]+)?$")


class LanguageService:
    def __init__(
        self,
        llm: LLMClient,
        *,
        model: str = "gpt-4o-mini",
        default_language: str = "en",
        engine: PromptEngine | None = None,
        max_tokens: int = 1600,
    ) -> None:
        self._llm = llm
        self._model = model
        self.default_language = default_language
        self._engine = engine or get_engine()
        self._max_tokens = max_tokens

    async def detect_language(self, text: str) -> str:
        """Return a lowercase ISO 639 code, or ``default_language`` when unsure."""
        if not text or not text.strip():
            return self.default_language

        try:
            system_prompt = self._engine.render(DETECT_LANGUAGE, default_language=self.default_language)
        except ConfigurationError:
            return self.default_language
        raw = await self._llm.ask(text, system_prompt, model=self._model, temperature=0.0, max_tokens=5)
        code = self._clean_code(raw)
        if code is None:
            logger.warning("language.detect_fallback", raw=(raw or "")[:20], default=self.default_language)
            return self.default_language
        logger.debug("language.detected", language=code, text_len=len(text))
        return code

    async def translate(self, text: str, target_language: str) -> str:
        """Translate ``text`` into ``target_language``; the input comes back on failure."""
        if not text or not text.strip():
            return text

        try:
            system_prompt = self._engine.render(TRANSLATE, target_language=target_language)
        except ConfigurationError:
            return text
        translated = await self._llm.ask(
            text,
            system_prompt,
            model=self._model,
            temperature=0.0,
            max_tokens=self._max_tokens,
        )
        if not translated:
            logger.warning("language.translate_fallback", target=target_language, text_len=len(text))
            return text
        return translated

    @staticmethod
    def _clean_code(raw: str | None) -> str | None:
        if not raw:
            return None
        match = _LANG_CODE.match(raw.strip().strip("\"'`.").lower())
        return match.group(1) if match else None
