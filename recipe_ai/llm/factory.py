"""Model backend factory.

Resolves model IDs to the appropriate backend implementation.
"""

import logging
import re
from typing import Union

from recipe_ai.llm.backends import AnthropicBackend, OpenAIBackend

logger = logging.getLogger(__name__)

_OPENAI_REASONING_RE = re.compile(r"^o\d")

_backends: dict[str, Union[AnthropicBackend, OpenAIBackend]] = {}


def get_backend(model_id: str) -> Union[AnthropicBackend, OpenAIBackend]:
    """Get the backend for a model ID (one shared instance per ID).

    Args:
        model_id: Full model identifier (e.g. 'claude-sonnet-4-6',
                  'gpt-4o-mini', 'o4-mini', 'openai/gpt-4.1')

    Returns:
        Backend instance for the model

    Raises:
        ValueError: If model_id is not recognized
    """
    backend = _backends.get(model_id)
    if backend is not None:
        return backend

    if model_id.startswith("claude-"):
        backend = AnthropicBackend(model_id=model_id)
    elif (
        model_id.startswith("gpt-")
        or model_id.startswith("openai/")
        or _OPENAI_REASONING_RE.match(model_id)
    ):
        backend = OpenAIBackend(model_id=model_id)
    else:
        raise ValueError(
            f"Unknown model: '{model_id}'. "
            f"Expected a model ID starting with 'claude-', 'gpt-', 'o<n>' or 'openai/'."
        )

    logger.debug(f"Created {type(backend).__name__} for {model_id}")
    _backends[model_id] = backend
    return backend
