"""LLM provider adapters and the shared client."""

from .backends import AnthropicBackend, LLMCallResult, ModelBackend, OpenAIBackend
from .client import LLMClient, get_llm_client, parse_llm_json_response
from .factory import get_backend

__all__ = [
    "AnthropicBackend",
    "LLMCallResult",
    "LLMClient",
    "ModelBackend",
    "OpenAIBackend",
    "get_backend",
    "get_llm_client",
    "parse_llm_json_response",
]
