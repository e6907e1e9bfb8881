"""Shared LLM client used by the recommendation service.

Wraps a model backend with the provider-agnostic concerns:
- Retry with exponential backoff on retriable backend errors
- Markdown fence stripping and JSON parsing
- Output schema validation
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Callable, Optional

from recipe_ai import config
from recipe_ai.errors import BackendError, PayloadValidationError
from recipe_ai.prompts.schemas import ModelParameters, unwrap_json_schema
from recipe_ai.validation import validate_payload

from .backends import ModelBackend
from .factory import get_backend

logger = logging.getLogger(__name__)


def parse_llm_json_response(raw_text: str) -> Any:
    """Parse JSON from LLM response, handling markdown code fences.

    LLMs sometimes wrap JSON in ```json ... ``` fences despite being
    told not to. This function strips those fences before parsing.

    Raises:
        json.JSONDecodeError: If the text cannot be parsed as JSON
    """
    content = raw_text.strip()

    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content[3:]

    if content.endswith("```"):
        content = content.rsplit("```", 1)[0]

    return json.loads(content.strip())


class LLMClient:
    """Calls the backend selected for a model id.

    Usage:
        client = LLMClient()
        payload = await client.call(prompt, schema, params, label="causes")
        async for fragment in client.call_streaming(prompt, schema, params):
            ...
    """

    def __init__(
        self,
        backend_factory: Callable[[str], ModelBackend] = get_backend,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        self.backend_factory = backend_factory
        self.max_retries = config.LLM_MAX_RETRIES if max_retries is None else max_retries
        self.retry_base_delay = (
            config.LLM_RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        )

    def _backend(self, params: ModelParameters) -> ModelBackend:
        try:
            return self.backend_factory(params.model)
        except ValueError as e:
            raise BackendError(str(e)) from e

    async def call(
        self,
        prompt: str,
        schema: Optional[dict[str, Any]],
        params: ModelParameters,
        *,
        schema_name: str = "response",
        label: str = "",
    ) -> Any:
        """Run one non-streaming call and return the validated payload.

        Raises:
            BackendError: provider failure (after retries for retriable ones)
            PayloadValidationError: response is not JSON or violates the schema
        """
        backend = self._backend(params)
        json_schema = unwrap_json_schema(schema) if schema else None

        attempt = 0
        while True:
            try:
                result = await backend.complete(
                    prompt,
                    params=params,
                    schema=json_schema,
                    schema_name=schema_name,
                    label=label,
                )
                break
            except BackendError as e:
                if not e.retriable or attempt >= self.max_retries:
                    raise
                delay = self.retry_base_delay * (2**attempt)
                attempt += 1
                logger.warning(
                    f"[{label}] Retriable backend error (attempt {attempt}/"
                    f"{self.max_retries}), retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)

        try:
            payload = parse_llm_json_response(result.content)
        except json.JSONDecodeError as e:
            raise PayloadValidationError(
                f"[{label}] Response is not valid JSON: {e}",
                errors=[str(e)],
            ) from e

        validate_payload(payload, json_schema, label=label)
        return payload

    async def call_streaming(
        self,
        prompt: str,
        schema: Optional[dict[str, Any]],
        params: ModelParameters,
        *,
        schema_name: str = "response",
        label: str = "",
    ) -> AsyncIterator[str]:
        """Stream raw text fragments from one call.

        Fragments are not retried once delivery has started; callers feed
        them to an IncrementalAssembler or forward them as text.
        """
        backend = self._backend(params)
        json_schema = unwrap_json_schema(schema) if schema else None

        async for fragment in backend.stream(
            prompt,
            params=params,
            schema=json_schema,
            schema_name=schema_name,
            label=label,
        ):
            yield fragment


# Global client instance
_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get the global LLMClient instance."""
    global _client
    if _client is None:
        _client = LLMClient()
    return _client
