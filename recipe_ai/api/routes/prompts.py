"""API routes for prompt documents (inspection and cache control)."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException

from recipe_ai.errors import MalformedDocumentError, NotFoundError
from recipe_ai.prompts.composer import PromptComposer
from recipe_ai.prompts.registry import PromptRegistry, get_prompt_registry
from recipe_ai.prompts.schemas import (
    ComposedPrompt,
    PromptTemplate,
    PromptTemplateSummary,
    ResolveRequest,
)
from recipe_ai.recipe.variables import prepare_template_variables

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/prompts", tags=["prompts"])

_registry: Optional[PromptRegistry] = None


def init_registry(registry: Optional[PromptRegistry]) -> None:
    global _registry
    _registry = registry


def _get_registry() -> PromptRegistry:
    return _registry or get_prompt_registry()


def _load(name: str) -> PromptTemplate:
    reg = _get_registry()
    try:
        return reg.load(name)
    except NotFoundError:
        raise HTTPException(
            status_code=404,
            detail=f"Prompt '{name}' not found. Available: {reg.list_available()}",
        )
    except MalformedDocumentError as e:
        raise HTTPException(
            status_code=500,
            detail={"error": "Failed to load AI configuration", "message": str(e)},
        )


# ── List / cache endpoints ───────────────────────────────


@router.get("", response_model=list[PromptTemplateSummary])
async def list_prompts():
    """List every prompt document on disk (loading each one)."""
    try:
        return _get_registry().list_summaries()
    except MalformedDocumentError as e:
        raise HTTPException(
            status_code=500,
            detail={"error": "Failed to load AI configuration", "message": str(e)},
        )


@router.get("/cache")
async def get_cache():
    """Names currently held in the prompt cache."""
    cached = _get_registry().cached_names()
    return {"cached": cached, "count": len(cached)}


@router.delete("/cache")
async def clear_cache():
    """Drop every cached document; the next request re-reads from disk."""
    reg = _get_registry()
    cleared = len(reg.cached_names())
    reg.clear_cache()
    logger.info(f"Cleared {cleared} cached prompt documents")
    return {"cleared": cleared}


# ── Detail endpoints ─────────────────────────────────────


@router.get("/{name}", response_model=PromptTemplate, response_model_by_alias=False)
async def get_prompt(name: str):
    """Get a single prompt document."""
    return _load(name)


@router.post("/{name}/resolve", response_model=ComposedPrompt)
async def resolve_prompt(name: str, body: ResolveRequest):
    """Resolve a prompt document against a variable bag (no LLM call)."""
    _load(name)
    variables = body.variables
    if body.feature:
        variables = prepare_template_variables(body.feature, variables)
    composer = PromptComposer(registry=_get_registry())
    return composer.compose(name, variables)
