"""JSON-schema validation of model payloads."""

import logging
from typing import Any, Optional

import jsonschema

from recipe_ai.errors import PayloadValidationError

logger = logging.getLogger(__name__)


def schema_errors(payload: Any, schema: Optional[dict[str, Any]]) -> list[str]:
    """Validate `payload` against `schema`.

    Returns:
        List of validation error messages (empty if valid or no schema given)
    """
    if not schema:
        return []

    try:
        validator_cls = jsonschema.validators.validator_for(schema)
        validator_cls.check_schema(schema)
    except jsonschema.SchemaError as e:
        return [f"Schema error: {e.message}"]

    errors: list[str] = []
    for error in validator_cls(schema).iter_errors(payload):
        errors.append(f"Validation error at {error.json_path}: {error.message}")
    return errors


def validate_payload(payload: Any, schema: Optional[dict[str, Any]], label: str = "") -> None:
    """Raise PayloadValidationError if `payload` does not satisfy `schema`."""
    errors = schema_errors(payload, schema)
    if errors:
        prefix = f"[{label}] " if label else ""
        logger.warning(f"{prefix}Payload failed schema validation: {errors[0]}")
        raise PayloadValidationError(
            f"Payload does not match output schema: {'; '.join(errors[:3])}",
            errors=errors,
        )
