"""Tests for recipe step configuration."""

import pytest

from recipe_ai.recipe.steps import (
    STEP_CONFIGURATIONS,
    available_steps,
    can_execute_step,
    get_next_step,
    get_step_config,
    is_final_step,
    step_progress,
    validate_selection,
)

USER_INPUTS = ["health-concern", "demographics"]


class TestConfiguration:
    def test_flow_order(self):
        assert available_steps() == [
            "potential-causes",
            "potential-symptoms",
            "therapeutic-properties",
            "suggested-oils",
        ]

    def test_every_step_has_a_shipped_prompt(self, shipped_registry):
        for config in STEP_CONFIGURATIONS.values():
            assert shipped_registry.exists(config.prompt_name)

    def test_array_paths_exist_in_prompt_schemas(self, shipped_registry):
        for config in STEP_CONFIGURATIONS.values():
            schema = shipped_registry.load(config.prompt_name).json_schema
            node = schema
            for segment in config.json_array_path.split("."):
                node = node["properties"][segment]
            assert node["type"] == "array"

    def test_field_name_and_fan_out(self):
        oils = get_step_config("suggested-oils")
        assert oils.field_name == "suggested_oils"
        assert oils.is_fan_out
        assert not get_step_config("potential-causes").is_fan_out

    def test_unknown_step(self):
        assert get_step_config("nope") is None
        assert not can_execute_step("nope", USER_INPUTS)
        assert not is_final_step("nope")


class TestFlow:
    def test_dependencies(self):
        assert can_execute_step("potential-causes", USER_INPUTS)
        assert not can_execute_step("potential-symptoms", USER_INPUTS)
        assert can_execute_step("potential-symptoms", USER_INPUTS + ["potential-causes"])

    @pytest.mark.parametrize(
        "completed,expected",
        [
            ([], None),
            (USER_INPUTS, "potential-causes"),
            (USER_INPUTS + ["potential-causes"], "potential-symptoms"),
            (USER_INPUTS + ["potential-causes", "potential-symptoms"], "therapeutic-properties"),
            (
                USER_INPUTS + ["potential-causes", "potential-symptoms", "therapeutic-properties"],
                "suggested-oils",
            ),
            (USER_INPUTS + available_steps(), None),
        ],
    )
    def test_next_step(self, completed, expected):
        assert get_next_step(completed) == expected

    def test_final_step(self):
        assert is_final_step("suggested-oils")
        assert not is_final_step("potential-causes")

    def test_progress(self):
        progress = step_progress(USER_INPUTS + ["potential-causes"])
        assert progress.completed == 1
        assert progress.total == 4
        assert progress.percentage == 25
        assert progress.next_step == "potential-symptoms"

    def test_progress_ignores_unknown_and_repeated_steps(self):
        progress = step_progress(["potential-causes", "potential-causes", "whatever"])
        assert progress.completed == 1


class TestSelection:
    def test_valid(self):
        result = validate_selection("potential-causes", ["a", "b"])
        assert result.is_valid
        assert result.errors == []

    def test_required_but_empty(self):
        result = validate_selection("potential-causes", [])
        assert not result.is_valid
        assert result.errors == ["At least 1 potential causes must be selected"]

    def test_too_many(self):
        result = validate_selection("therapeutic-properties", list(range(9)))
        assert result.errors == ["You can select up to 8 therapeutic properties maximum"]

    def test_optional_step_accepts_empty(self):
        assert validate_selection("suggested-oils", []).is_valid

    def test_unknown_step(self):
        result = validate_selection("nope", ["a"])
        assert not result.is_valid
        assert result.errors == ["Invalid step configuration"]
