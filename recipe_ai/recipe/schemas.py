"""Request schemas for recommendation streaming."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StreamingMode(str, Enum):
    AUTO = "auto"
    STRUCTURED = "structured"
    TEXT = "text"


class StreamingRequest(BaseModel):
    """Body of POST /v1/ai/streaming."""

    model_config = ConfigDict(populate_by_name=True)

    feature: str = Field(..., min_length=1, description="Client feature, e.g. 'create-recipe'")
    step: str = Field(..., min_length=1, description="Step id / prompt document name")
    data: dict[str, Any] = Field(default_factory=dict, description="Variables for the step")
    streaming_mode: StreamingMode = Field(default=StreamingMode.AUTO, alias="streamingMode")


class SelectionRequest(BaseModel):
    selected_items: list[Any] = Field(default_factory=list)


class NextStepRequest(BaseModel):
    completed_steps: list[str] = Field(default_factory=list)
