"""API routes for recipe step configuration."""

from fastapi import APIRouter, HTTPException

from recipe_ai.recipe.schemas import NextStepRequest, SelectionRequest
from recipe_ai.recipe.steps import (
    STEP_CONFIGURATIONS,
    SelectionValidation,
    StepConfig,
    StepProgress,
    get_step_config,
    step_progress,
    validate_selection,
)

router = APIRouter(prefix="/v1/recipe", tags=["recipe"])


@router.get("/steps", response_model=list[StepConfig])
async def list_steps():
    """All AI steps in flow order."""
    return list(STEP_CONFIGURATIONS.values())


@router.get("/steps/{step}", response_model=StepConfig)
async def get_step(step: str):
    config = get_step_config(step)
    if config is None:
        raise HTTPException(
            status_code=404,
            detail=f"Step '{step}' not found. Available: {list(STEP_CONFIGURATIONS)}",
        )
    return config


@router.post("/steps/next", response_model=StepProgress)
async def next_step(body: NextStepRequest):
    """Progress and next executable step for a set of completed steps."""
    return step_progress(body.completed_steps)


@router.post("/steps/{step}/validate-selection", response_model=SelectionValidation)
async def check_selection(step: str, body: SelectionRequest):
    """Check a user's selection against the step's limits."""
    if get_step_config(step) is None:
        raise HTTPException(status_code=404, detail=f"Step '{step}' not found")
    return validate_selection(step, body.selected_items)
