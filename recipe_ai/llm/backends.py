"""LLM backend abstraction for multi-provider support.

Provides a unified async interface for calling different LLM providers
(Anthropic Claude, OpenAI) with a consistent response format.

Each backend handles provider-specific concerns:
- Client creation and timeout configuration
- Structured-output configuration (JSON schema)
- Response parsing and token counting
- Streaming of text deltas
- Mapping provider exceptions to BackendError(retriable)

The LLMClient handles provider-agnostic concerns:
- Retry with exponential backoff
- JSON parsing and schema validation
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Protocol, runtime_checkable

import anthropic
import httpx
import openai

from recipe_ai.errors import BackendError
from recipe_ai.prompts.schemas import ModelParameters

logger = logging.getLogger(__name__)


@dataclass
class LLMCallResult:
    """Normalized response from any LLM backend."""

    content: str
    model_id: str
    input_tokens: int
    output_tokens: int
    duration_ms: int


RETRIABLE_STATUS_CODES = {408, 409, 429}

JSON_ONLY_INSTRUCTION = (
    "Respond with a single JSON document that satisfies this JSON schema. "
    "Do not wrap it in Markdown fences and do not add commentary.\n"
)


def is_retriable_status(status_code: int) -> bool:
    return status_code in RETRIABLE_STATUS_CODES or status_code >= 500


def _client_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=30.0,
        read=120.0,  # max silence on socket
        write=60.0,
        pool=30.0,
    )


@runtime_checkable
class ModelBackend(Protocol):
    """Protocol for LLM backend implementations."""

    @property
    def model_id(self) -> str: ...

    async def complete(
        self,
        prompt: str,
        *,
        params: ModelParameters,
        schema: Optional[dict[str, Any]] = None,
        schema_name: str = "response",
        label: str = "",
    ) -> LLMCallResult: ...

    def stream(
        self,
        prompt: str,
        *,
        params: ModelParameters,
        schema: Optional[dict[str, Any]] = None,
        schema_name: str = "response",
        label: str = "",
    ) -> AsyncIterator[str]: ...


class AnthropicBackend:
    """Anthropic Claude backend.

    Claude has no JSON-schema response format on the Messages API, so the
    schema is sent as a system instruction and the caller validates.
    Requires ANTHROPIC_API_KEY.
    """

    def __init__(self, model_id: str = "claude-sonnet-4-6", client: Optional[Any] = None):
        self._model_id = model_id
        self._client = client

    @property
    def model_id(self) -> str:
        return self._model_id

    def _get_client(self) -> "anthropic.AsyncAnthropic":
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(timeout=_client_timeout(), max_retries=0)
        return self._client

    def _build_kwargs(
        self,
        prompt: str,
        params: ModelParameters,
        schema: Optional[dict[str, Any]],
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            **params.extras,
            "model": self._model_id,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if schema:
            kwargs["system"] = JSON_ONLY_INSTRUCTION + json.dumps(schema, ensure_ascii=False)
        return kwargs

    async def complete(
        self,
        prompt: str,
        *,
        params: ModelParameters,
        schema: Optional[dict[str, Any]] = None,
        schema_name: str = "response",
        label: str = "",
    ) -> LLMCallResult:
        client = self._get_client()
        kwargs = self._build_kwargs(prompt, params, schema)
        start_time = time.time()

        logger.info(
            f"[{label}] Anthropic call: model={self._model_id}, "
            f"max_tokens={params.max_tokens}, ~{len(prompt) // 4:,} input tokens"
        )
        try:
            response = await client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise map_anthropic_error(e, label) from e

        duration_ms = int((time.time() - start_time) * 1000)
        raw_text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not raw_text.strip():
            raise BackendError(f"[{label}] Empty response from {self._model_id}", retriable=True)

        logger.info(
            f"[{label}] Completed: {response.usage.input_tokens}+"
            f"{response.usage.output_tokens} tokens, {duration_ms}ms"
        )
        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=duration_ms,
        )

    async def stream(
        self,
        prompt: str,
        *,
        params: ModelParameters,
        schema: Optional[dict[str, Any]] = None,
        schema_name: str = "response",
        label: str = "",
    ) -> AsyncIterator[str]:
        client = self._get_client()
        kwargs = self._build_kwargs(prompt, params, schema)
        chunk_count = 0

        logger.info(f"[{label}] Anthropic stream: model={self._model_id}")
        try:
            async with client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    if text:
                        chunk_count += 1
                        yield text
        except anthropic.APIError as e:
            raise map_anthropic_error(e, label) from e

        logger.info(f"[{label}] Stream finished after {chunk_count} chunks")


class OpenAIBackend:
    """OpenAI backend using the Responses API.

    The schema is sent as a `json_schema` text format so the model is
    constrained to it. Model ids may carry an `openai/` prefix.
    Requires OPENAI_API_KEY.
    """

    def __init__(self, model_id: str = "gpt-4o-mini", client: Optional[Any] = None):
        self._model_id = model_id.removeprefix("openai/")
        self._client = client

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def supports_temperature(self) -> bool:
        # Reasoning models reject sampling parameters
        return not (self._model_id.startswith("o") or self._model_id.startswith("gpt-5"))

    def _get_client(self) -> "openai.AsyncOpenAI":
        if self._client is None:
            self._client = openai.AsyncOpenAI(timeout=_client_timeout(), max_retries=0)
        return self._client

    def _build_kwargs(
        self,
        prompt: str,
        params: ModelParameters,
        schema: Optional[dict[str, Any]],
        schema_name: str,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            **params.extras,
            "model": self._model_id,
            "input": prompt,
            "max_output_tokens": params.max_tokens,
        }
        if self.supports_temperature:
            kwargs["temperature"] = params.temperature
        if schema:
            kwargs["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": schema,
                    "strict": False,
                }
            }
        return kwargs

    async def complete(
        self,
        prompt: str,
        *,
        params: ModelParameters,
        schema: Optional[dict[str, Any]] = None,
        schema_name: str = "response",
        label: str = "",
    ) -> LLMCallResult:
        client = self._get_client()
        kwargs = self._build_kwargs(prompt, params, schema, schema_name)
        start_time = time.time()

        logger.info(
            f"[{label}] OpenAI call: model={self._model_id}, "
            f"max_tokens={params.max_tokens}, ~{len(prompt) // 4:,} input tokens"
        )
        try:
            response = await client.responses.create(**kwargs)
        except openai.APIError as e:
            raise map_openai_error(e, label) from e

        duration_ms = int((time.time() - start_time) * 1000)
        raw_text = getattr(response, "output_text", "") or ""
        if not raw_text.strip():
            raise BackendError(f"[{label}] Empty response from {self._model_id}", retriable=True)

        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "input_tokens", 0) or 0
        output_tokens = getattr(usage, "output_tokens", 0) or 0
        logger.info(f"[{label}] Completed: {input_tokens}+{output_tokens} tokens, {duration_ms}ms")

        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
        )

    async def stream(
        self,
        prompt: str,
        *,
        params: ModelParameters,
        schema: Optional[dict[str, Any]] = None,
        schema_name: str = "response",
        label: str = "",
    ) -> AsyncIterator[str]:
        client = self._get_client()
        kwargs = self._build_kwargs(prompt, params, schema, schema_name)
        chunk_count = 0

        logger.info(f"[{label}] OpenAI stream: model={self._model_id}")
        try:
            events = await client.responses.create(**kwargs, stream=True)
            async for event in events:
                event_type = getattr(event, "type", "")
                if event_type == "response.output_text.delta":
                    chunk_count += 1
                    yield event.delta
                elif event_type in ("response.failed", "error"):
                    message = getattr(event, "message", None) or "response failed"
                    raise BackendError(f"[{label}] OpenAI stream error: {message}", retriable=True)
        except openai.APIError as e:
            raise map_openai_error(e, label) from e

        logger.info(f"[{label}] Stream finished after {chunk_count} chunks")


def map_anthropic_error(error: "anthropic.APIError", label: str = "") -> BackendError:
    """Translate an anthropic SDK exception into a BackendError."""
    if isinstance(error, anthropic.APIStatusError):
        return BackendError(
            f"[{label}] Anthropic API error {error.status_code}: {error.message}",
            retriable=is_retriable_status(error.status_code),
            status_code=error.status_code,
        )
    if isinstance(error, anthropic.APIConnectionError):
        return BackendError(f"[{label}] Anthropic connection error: {error}", retriable=True)
    return BackendError(f"[{label}] Anthropic error: {error}")


def map_openai_error(error: "openai.APIError", label: str = "") -> BackendError:
    """Translate an openai SDK exception into a BackendError."""
    if isinstance(error, openai.APIStatusError):
        return BackendError(
            f"[{label}] OpenAI API error {error.status_code}: {error.message}",
            retriable=is_retriable_status(error.status_code),
            status_code=error.status_code,
        )
    if isinstance(error, openai.APIConnectionError):
        return BackendError(f"[{label}] OpenAI connection error: {error}", retriable=True)
    return BackendError(f"[{label}] OpenAI error: {error}")
