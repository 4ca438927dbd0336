"""ChatBridge – Language Service Tests.

Tests: detection parsing and fallbacks, translation fallbacks, prompt rendering
and a translation round-trip checked by re-detecting the target language.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from chatbridge.ai.language import LanguageService
from chatbridge.ai.llm import LLMClient
from chatbridge.core.errors import ConfigurationError
from chatbridge.prompts.engine import DETECT_LANGUAGE, SALES_PERSONA, TRANSLATE, VISION, PromptEngine


def _llm(answer=None, side_effect=None) -> MagicMock:
    llm = MagicMock(spec=LLMClient)
    llm.ask = AsyncMock(return_value=answer, side_effect=side_effect)
    return llm


class TestDetectLanguage:
    @pytest.mark.anyio
    @pytest.mark.parametrize(
        "raw, expected",
        [("en", "en"), ("TR", "tr"), ('"de".', "de"), ("en-US", "en"), ("pt_BR", "pt"), (" fr\n", "fr")],
    )
    async def test_code_is_normalized(self, raw: str, expected: str) -> None:
        service = LanguageService(_llm(raw))
        assert await service.detect_language("some text") == expected

    @pytest.mark.anyio
    async def test_unparseable_answer_falls_back_to_default(self) -> None:
        service = LanguageService(_llm("The language is English"), default_language="en")
        assert await service.detect_language("Hello there") == "en"

    @pytest.mark.anyio
    @pytest.mark.parametrize("raw", ["It is Turkish", "tr because of the suffixes", "English", "en US"])
    async def test_chatty_answer_is_not_a_code(self, raw: str) -> None:
        # "It is Turkish" must not become "it" (Italian).
        service = LanguageService(_llm(raw), default_language="tr")
        assert await service.detect_language("Merhaba, fiyatlar nedir?") == "tr"

    @pytest.mark.anyio
    async def test_provider_failure_falls_back_to_default(self) -> None:
        service = LanguageService(_llm(None), default_language="tr")
        assert await service.detect_language("Merhaba") == "tr"

    @pytest.mark.anyio
    async def test_empty_text_skips_provider(self) -> None:
        llm = _llm("de")
        service = LanguageService(llm, default_language="en")

        assert await service.detect_language("   ") == "en"
        llm.ask.assert_not_awaited()

    @pytest.mark.anyio
    async def test_detect_is_deterministic_and_short(self) -> None:
        llm = _llm("en")
        await LanguageService(llm, model="gpt-4o-mini").detect_language("Hello")

        kwargs = llm.ask.call_args.kwargs
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 5
        assert kwargs["model"] == "gpt-4o-mini"


class TestTranslate:
    @pytest.mark.anyio
    async def test_translation_returned(self) -> None:
        llm = _llm("Fiyatlarınız nedir?")
        service = LanguageService(llm)

        assert await service.translate("What are your prices?", "tr") == "Fiyatlarınız nedir?"
        system_prompt = llm.ask.call_args.args[1]
        assert '"tr"' in system_prompt

    @pytest.mark.anyio
    async def test_failure_returns_input(self) -> None:
        service = LanguageService(_llm(None))
        assert await service.translate("What are your prices?", "tr") == "What are your prices?"

    @pytest.mark.anyio
    async def test_empty_text_returned_unchanged(self) -> None:
        llm = _llm("x")
        assert await LanguageService(llm).translate("", "tr") == ""
        llm.ask.assert_not_awaited()

    @pytest.mark.anyio
    async def test_broken_template_returns_input(self) -> None:
        engine = MagicMock(spec=PromptEngine)
        engine.render.side_effect = ConfigurationError("template missing")
        llm = _llm("x")
        service = LanguageService(llm, engine=engine)

        assert await service.translate("Hello", "tr") == "Hello"
        assert await service.detect_language("Hello") == service.default_language
        llm.ask.assert_not_awaited()

    @pytest.mark.anyio
    async def test_round_trip_is_detected_as_target(self) -> None:
        """Translate into German, then re-detect: the detector sees German."""
        german = {"What are your prices?": "Was kosten Ihre Produkte?"}
        detected = {"Was kosten Ihre Produkte?": "de", "What are your prices?": "en"}

        async def ask(prompt, system_prompt, **kwargs):
            if kwargs.get("max_tokens") == 5:
                return detected.get(prompt)
            return german.get(prompt)

        service = LanguageService(_llm(side_effect=ask))

        translated = await service.translate("What are your prices?", "de")
        assert translated != "What are your prices?"
        assert await service.detect_language(translated) == "de"


class TestPromptEngine:
    def test_packaged_templates_render(self) -> None:
        engine = PromptEngine()
        assert "ISO 639-1" in engine.render(DETECT_LANGUAGE, default_language="en")
        assert '"de"' in engine.render(TRANSLATE, target_language="de")
        sales = engine.render(SALES_PERSONA, business_name="Acme", language="en", fallback_message="Wait please.")
        assert "Acme" in sales
        assert sales.endswith("Wait please.")
        assert "Analyze the following images." in engine.render(VISION, language="tr", fallback_message="x")

    def test_business_name_defaults(self) -> None:
        assert "our store" in PromptEngine().render(SALES_PERSONA, business_name="", fallback_message="x")

    def test_override_directory_wins(self, tmp_path) -> None:
        (tmp_path / "reply").mkdir()
        (tmp_path / "reply" / "sales.j2").write_text("Custom persona for {{ business_name }}")
        engine = PromptEngine(override_dir=tmp_path)

        assert engine.render(SALES_PERSONA, business_name="Acme") == "Custom persona for Acme"
        # Templates without an override still come from the package.
        assert "ISO 639-1" in engine.render(DETECT_LANGUAGE)

    def test_missing_template_raises_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            PromptEngine().render("reply/missing.j2")
