"""Pydantic schemas for prompt documents.

A prompt document is one YAML file per step:

    version: "1.0.0"
    description: ...
    config:
      model: gpt-4o-mini
      temperature: 0.3
      max_tokens: 4000
    template: |
      ... {{health_concern}} ... {{#each selected_causes}} ... {{/each}}
    schema:
      type: json_schema
      name: potential_causes_response
      schema: {...}

Field names follow the document (config/template/schema) on input and the
domain names (model_parameters/body/output_schema) in code.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def unwrap_json_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Return the validating JSON schema from a document's `schema` block.

    Documents written for structured-output APIs wrap the schema in a
    {type: json_schema, name, schema} envelope; unwrap it.
    """
    inner = schema.get("schema")
    if schema.get("type") == "json_schema" and isinstance(inner, dict):
        return inner
    return schema


class ModelParameters(BaseModel):
    """Model settings for one prompt document.

    Extra provider-specific keys (top_p, reasoning effort, ...) are kept.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    model: str = Field(..., description="Model identifier, e.g. 'gpt-4o-mini' or 'claude-sonnet-4-6'")
    temperature: float = Field(..., description="Sampling temperature")
    max_tokens: int = Field(..., description="Maximum output tokens")

    @property
    def extras(self) -> dict[str, Any]:
        """Provider-specific keys beyond model/temperature/max_tokens."""
        return dict(self.model_extra or {})


class PromptTemplate(BaseModel):
    """A loaded, validated prompt document. Immutable once loaded."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, protected_namespaces=())

    name: str = Field(..., description="Registry name (file stem)")
    version: str = Field(default="", description="Document version")
    description: str = Field(default="")
    model_parameters: ModelParameters = Field(..., alias="config")
    body: str = Field(..., alias="template", min_length=1)
    output_schema: dict[str, Any] = Field(..., alias="schema")

    @field_validator("version", "description", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        # YAML reads `version: 2` as a number and a blank `description:` as None
        return "" if value is None else str(value)

    @property
    def json_schema(self) -> dict[str, Any]:
        """The JSON schema payloads must satisfy.

        Documents written for structured-output APIs wrap the schema in a
        {type: json_schema, name, schema} envelope; unwrap it.
        """
        return unwrap_json_schema(self.output_schema)

    @property
    def schema_name(self) -> str:
        """Name used when the schema is sent to a structured-output API."""
        name = self.output_schema.get("name")
        if isinstance(name, str) and name:
            return name
        return self.name.replace("-", "_")

    @property
    def has_structured_output(self) -> bool:
        """True when the schema describes an object with properties."""
        schema = self.json_schema
        return schema.get("type") == "object" or "properties" in schema


class PromptTemplateSummary(BaseModel):
    """Lightweight listing entry."""

    name: str
    version: str = ""
    description: str = ""
    model: str
    cached: bool = False


class ComposedPrompt(BaseModel):
    """A fully resolved prompt ready to send to a backend."""

    model_config = ConfigDict(protected_namespaces=())

    template_name: str
    template_version: str = ""
    prompt: str
    model_parameters: ModelParameters
    output_schema: dict[str, Any] = Field(default_factory=dict)
    composed_at: str = Field(default="", description="ISO timestamp of composition")
    missing_variables: list[str] = Field(
        default_factory=list,
        description="Placeholders left verbatim because no value was supplied",
    )

    @property
    def json_schema(self) -> dict[str, Any]:
        return unwrap_json_schema(self.output_schema)


class ResolveRequest(BaseModel):
    """Request body for resolving a prompt against a variable bag."""

    variables: dict[str, Any] = Field(default_factory=dict)
    feature: Optional[str] = Field(
        default=None,
        description="If set, variables are normalized for this feature first",
    )
