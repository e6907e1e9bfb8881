"""Recipe step configuration.

Each AI step of the recipe flow names its prompt document, the array in the
response that is streamed item by item, the steps it depends on, and how
many of its items a user may select. Steps with a `facet_source` fan out
into one call per facet (one per selected therapeutic property) instead of
streaming a single call.

`health-concern` and `demographics` are user-input steps: they have no
configuration here but appear as dependencies.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class SelectionLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_selection: int = 1
    max_selection: int
    required: bool = True


class StepConfig(BaseModel):
    """Configuration of one AI step."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    display_name: str
    prompt_name: str = Field(..., description="Prompt document name (file stem)")
    json_array_path: str = Field(..., description="Dotted path of the streamed array")
    id_field: str = Field(..., description="Id field of each item in the array")
    dependencies: tuple[str, ...] = ()
    selection: SelectionLimits
    facet_source: Optional[str] = Field(
        default=None,
        description="Request field holding the facets to fan out over",
    )
    facet_variable: str = "target_property"
    facet_id_field: str = "property_id"

    @property
    def field_name(self) -> str:
        """Last segment of json_array_path (the array's own name)."""
        return self.json_array_path.rsplit(".", 1)[-1]

    @property
    def is_fan_out(self) -> bool:
        return self.facet_source is not None


class SelectionValidation(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)


class StepProgress(BaseModel):
    completed: int
    total: int
    percentage: int
    next_step: Optional[str] = None


USER_INPUT_STEPS = ("health-concern", "demographics")

STEP_CONFIGURATIONS: dict[str, StepConfig] = {
    config.step_id: config
    for config in (
        StepConfig(
            step_id="potential-causes",
            display_name="Potential Causes",
            prompt_name="potential-causes",
            json_array_path="data.potential_causes",
            id_field="cause_id",
            dependencies=("health-concern", "demographics"),
            selection=SelectionLimits(min_selection=1, max_selection=10),
        ),
        StepConfig(
            step_id="potential-symptoms",
            display_name="Potential Symptoms",
            prompt_name="potential-symptoms",
            json_array_path="data.potential_symptoms",
            id_field="symptom_id",
            dependencies=("health-concern", "demographics", "potential-causes"),
            selection=SelectionLimits(min_selection=1, max_selection=15),
        ),
        StepConfig(
            step_id="therapeutic-properties",
            display_name="Therapeutic Properties",
            prompt_name="therapeutic-properties",
            json_array_path="data.therapeutic_properties",
            id_field="property_id",
            dependencies=("health-concern", "demographics", "potential-causes", "potential-symptoms"),
            selection=SelectionLimits(min_selection=1, max_selection=8),
        ),
        StepConfig(
            step_id="suggested-oils",
            display_name="Suggested Oils",
            prompt_name="suggested-oils",
            json_array_path="data.suggested_oils",
            id_field="oil_id",
            dependencies=(
                "health-concern",
                "demographics",
                "potential-causes",
                "potential-symptoms",
                "therapeutic-properties",
            ),
            selection=SelectionLimits(min_selection=0, max_selection=20, required=False),
            facet_source="therapeutic_properties",
        ),
    )
}


def get_step_config(step_id: str) -> Optional[StepConfig]:
    return STEP_CONFIGURATIONS.get(step_id)


def available_steps() -> list[str]:
    """AI step ids in flow order."""
    return list(STEP_CONFIGURATIONS.keys())


def can_execute_step(step_id: str, completed_steps: list[str]) -> bool:
    """True if every dependency of `step_id` is in `completed_steps`."""
    config = get_step_config(step_id)
    if config is None:
        return False
    return all(dep in completed_steps for dep in config.dependencies)


def get_next_step(completed_steps: list[str]) -> Optional[str]:
    """First step not yet completed whose dependencies are satisfied."""
    for step_id in available_steps():
        if step_id not in completed_steps and can_execute_step(step_id, completed_steps):
            return step_id
    return None


def is_final_step(step_id: str) -> bool:
    """True if no other step depends on `step_id`."""
    if get_step_config(step_id) is None:
        return False
    return not any(step_id in config.dependencies for config in STEP_CONFIGURATIONS.values())


def validate_selection(step_id: str, selected_items: list[Any]) -> SelectionValidation:
    config = get_step_config(step_id)
    if config is None:
        return SelectionValidation(is_valid=False, errors=["Invalid step configuration"])

    limits = config.selection
    name = config.display_name.lower()
    count = len(selected_items)
    errors: list[str] = []

    if limits.required and count == 0:
        errors.append(f"At least {limits.min_selection} {name} must be selected")
    elif count < limits.min_selection:
        errors.append(f"Please select at least {limits.min_selection} {name}")

    if count > limits.max_selection:
        errors.append(f"You can select up to {limits.max_selection} {name} maximum")

    return SelectionValidation(is_valid=not errors, errors=errors)


def step_progress(completed_steps: list[str]) -> StepProgress:
    """Progress through the AI steps (user-input steps are not counted)."""
    total = len(STEP_CONFIGURATIONS)
    completed = len({step for step in completed_steps if step in STEP_CONFIGURATIONS})
    return StepProgress(
        completed=completed,
        total=total,
        percentage=round(completed / total * 100),
        next_step=get_next_step(completed_steps),
    )
