"""Exception hierarchy for the recommendation core.

Configuration problems (prompt documents) propagate to the caller.
Per-facet problems never leave the orchestrator as exceptions; they are
captured as TaskFailure values (see orchestrator.schemas.ErrorKind).
"""

from typing import Optional


class RecipeAIError(Exception):
    """Base class for all recipe_ai errors."""


class PromptError(RecipeAIError):
    """A prompt document could not be provided."""

    def __init__(self, message: str, name: Optional[str] = None):
        super().__init__(message)
        self.name = name


class NotFoundError(PromptError):
    """No prompt document is registered under the requested name."""


class MalformedDocumentError(PromptError):
    """A prompt document exists but is missing required fields or is invalid."""


class TemplateSyntaxError(MalformedDocumentError):
    """A template body has unbalanced or misplaced block tags."""


class BackendError(RecipeAIError):
    """The LLM backend failed.

    `retriable` tells callers whether repeating the same request may succeed
    (rate limits, timeouts, 5xx) or not (bad request, auth).
    """

    def __init__(self, message: str, retriable: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.retriable = retriable
        self.status_code = status_code


class PayloadValidationError(RecipeAIError):
    """A model response did not satisfy its output schema."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class IncompleteStreamError(RecipeAIError):
    """A streamed document ended without forming one complete, valid payload."""


class OrchestrationError(RecipeAIError):
    """The orchestrator was called incorrectly."""


class EmptyDescriptorSetError(OrchestrationError):
    """run() was called with zero task descriptors."""


class DuplicateFacetError(OrchestrationError):
    """Two task descriptors share the same facet_id."""
