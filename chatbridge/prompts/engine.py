"""ChatBridge – Jinja2 Prompt Engine.

Renders LLM system prompts from Jinja2 templates with optional operator
overrides.

Template resolution order:
1. {prompt_override_dir}/{name}                (operator custom, optional)
2. chatbridge/prompts/templates/{name}         (packaged default)

Usage:
    from chatbridge.prompts.engine import get_engine

    prompt = get_engine().render("reply/sales.j2", language="en", fallback_message="...")
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
from jinja2 import ChoiceLoader, Environment, FileSystemLoader, TemplateError, select_autoescape

from chatbridge.core.errors import ConfigurationError

logger = structlog.get_logger()

_TEMPLATE_BASE = Path(__file__).parent / "templates"

DETECT_LANGUAGE = "language/detect.j2"
TRANSLATE = "language/translate.j2"
SALES_PERSONA = "reply/sales.j2"
VISION = "reply/vision.j2"


class PromptEngine:
    """Jinja2-backed prompt renderer.

    An override directory, when given, is searched before the packaged
    templates so operators can reword a prompt without a release.
    """

    def __init__(self, template_dir: str | Path = _TEMPLATE_BASE, override_dir: str | Path | None = None) -> None:
        self.template_dir = Path(template_dir)
        search = [FileSystemLoader(str(self.template_dir))]
        if override_dir:
            search.insert(0, FileSystemLoader(str(override_dir)))
        self.env = Environment(
            loader=ChoiceLoader(search),
            autoescape=select_autoescape(enabled_extensions=()),  # disabled for LLM prompts
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, template_name: str, **context: Any) -> str:
        """Render a template.

        Raises:
            ConfigurationError: the template is missing or broken.
        """
        try:
            template = self.env.get_template(template_name)
            return template.render(**context).strip()
        except TemplateError as exc:
            logger.error("prompt_engine.render_failed", template=template_name, error=str(exc))
            raise ConfigurationError(f"prompt template '{template_name}' failed: {exc}") from exc

    def default_template_path(self, template_name: str) -> Path:
        """Return the packaged default path for a template."""
        return self.template_dir / template_name


_engine: PromptEngine | None = None


def get_engine(override_dir: str | Path | None = None) -> PromptEngine:
    """Return the module-level PromptEngine singleton."""
    global _engine
    if _engine is None:
        _engine = PromptEngine(_TEMPLATE_BASE, override_dir=override_dir or None)
    return _engine
