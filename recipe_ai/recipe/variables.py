"""Variable bag preparation for the two client features.

`recipe-wizard` clients send camelCase fields, possibly with demographics
flattened into the top level; `create-recipe` clients send snake_case fields
with a nested `demographics` object. Both are normalized so the same prompt
documents resolve for either feature.
"""

from typing import Any, Mapping

DEFAULT_USER_LANGUAGE = "PT_BR"
RECIPE_WIZARD_LANGUAGE = "en"

RECIPE_WIZARD = "recipe-wizard"
CREATE_RECIPE = "create-recipe"
FEATURES = (RECIPE_WIZARD, CREATE_RECIPE)


def _first(source: Mapping[str, Any], *keys: str, default: Any = "") -> Any:
    for key in keys:
        value = source.get(key)
        if value not in (None, ""):
            return value
    return default


def _demographics(data: Mapping[str, Any]) -> dict[str, Any]:
    nested = data.get("demographics") or data.get("user_demographics")
    source = nested if isinstance(nested, Mapping) else data
    return {
        "gender": _first(source, "gender"),
        "age_category": _first(source, "age_category", "ageCategory"),
        "age_specific": _first(source, "age_specific", "specificAge", "age_value"),
    }


def prepare_template_variables(feature: str, data: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize request data into a variable bag for `feature`.

    Unknown features pass the data through unchanged.
    """
    if feature == RECIPE_WIZARD:
        demographics = _demographics(data)
        nested = data.get("demographics")
        source = nested if isinstance(nested, Mapping) else data
        language = _first(source, "language", "user_language", default=RECIPE_WIZARD_LANGUAGE)
        health_concern = _first(data, "healthConcern", "health_concern")
        return {
            "healthConcern": health_concern,
            "gender": demographics["gender"],
            "ageCategory": demographics["age_category"],
            "specificAge": demographics["age_specific"],
            "language": language,
            # snake_case names used by the prompt documents
            "health_concern": health_concern,
            "age_category": demographics["age_category"],
            "age_specific": demographics["age_specific"],
            "user_language": language,
        }

    if feature == CREATE_RECIPE:
        variables = build_shared_context(data)
        target = data.get("target_property")
        variables["target_property"] = dict(target) if isinstance(target, Mapping) else {}
        return variables

    return dict(data)


def build_shared_context(data: Mapping[str, Any]) -> dict[str, Any]:
    """Context shared by every facet of a fan-out request."""
    demographics = _demographics(data)
    return {
        "health_concern": _first(data, "health_concern", "healthConcern"),
        "demographics": demographics,
        **demographics,
        "selected_causes": list(data.get("selected_causes") or []),
        "selected_symptoms": list(data.get("selected_symptoms") or []),
        "user_language": _first(data, "user_language", default=DEFAULT_USER_LANGUAGE),
    }
