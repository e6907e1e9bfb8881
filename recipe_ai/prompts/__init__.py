"""Prompt documents: YAML registry, template resolver and composer."""

from .composer import PromptComposer, get_prompt_composer
from .registry import PromptRegistry, get_prompt_registry
from .resolver import TemplateResolver, get_template_resolver, resolve
from .schemas import ComposedPrompt, ModelParameters, PromptTemplate, PromptTemplateSummary

__all__ = [
    "ComposedPrompt",
    "ModelParameters",
    "PromptComposer",
    "PromptRegistry",
    "PromptTemplate",
    "PromptTemplateSummary",
    "TemplateResolver",
    "get_prompt_composer",
    "get_prompt_registry",
    "get_template_resolver",
    "resolve",
]
