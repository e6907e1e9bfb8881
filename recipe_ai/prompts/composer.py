"""Prompt composer: registry document + variable bag -> ComposedPrompt."""

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from .registry import PromptRegistry, get_prompt_registry
from .resolver import TemplateResolver, get_template_resolver
from .schemas import ComposedPrompt

logger = logging.getLogger(__name__)


class PromptComposer:
    """Composes step prompts from registry documents.

    Usage:
        composer = PromptComposer()
        composed = composer.compose(
            "potential-causes",
            {"health_concern": "headache", "user_language": "EN_US"},
        )
        composed.prompt            # resolved text
        composed.model_parameters  # model, temperature, max_tokens
    """

    def __init__(
        self,
        registry: Optional[PromptRegistry] = None,
        resolver: Optional[TemplateResolver] = None,
    ):
        self.registry = registry or get_prompt_registry()
        self.resolver = resolver or self.registry.resolver or get_template_resolver()

    def compose(self, name: str, variables: Mapping[str, Any]) -> ComposedPrompt:
        """Resolve the named document against `variables`.

        Raises:
            NotFoundError: if the document does not exist
            MalformedDocumentError: if the document is invalid
        """
        template = self.registry.load(name)
        prompt, missing = self.resolver.resolve_with_report(template.body, variables)

        if missing:
            logger.debug(f"[{name}] Unresolved placeholders left verbatim: {missing}")

        return ComposedPrompt(
            template_name=template.name,
            template_version=template.version,
            prompt=prompt,
            model_parameters=template.model_parameters,
            output_schema=template.output_schema,
            composed_at=datetime.now(timezone.utc).isoformat(),
            missing_variables=missing,
        )


# Global composer instance
_composer: Optional[PromptComposer] = None


def get_prompt_composer() -> PromptComposer:
    """Get the global PromptComposer instance."""
    global _composer
    if _composer is None:
        _composer = PromptComposer()
    return _composer
