"""Runtime configuration read from environment variables.

All values have working defaults so the service starts without any
environment set; provider API keys are only needed for real LLM calls.
"""

import os
from pathlib import Path
from typing import Optional


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    return float(raw) if raw.strip() else default


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    value = int(raw)
    # 0 means "no limit" for concurrency settings
    return value if value > 0 else None


# Prompt documents
PROMPTS_DIR = Path(
    os.environ.get(
        "RECIPE_AI_PROMPTS_DIR",
        str(Path(__file__).parent / "prompts" / "definitions"),
    )
)

# Streaming: max silence between two fragments before the call is considered stalled
STREAM_IDLE_TIMEOUT = _env_float("RECIPE_AI_STREAM_IDLE_TIMEOUT", 30.0)

# Facet fan-out (bounded to stay under provider rate limits)
FACET_MAX_CONCURRENCY = _env_int("RECIPE_AI_FACET_CONCURRENCY", 4)
FACET_TIMEOUT_SECONDS = _env_float("RECIPE_AI_FACET_TIMEOUT", 60.0)

# LLM retry policy for retriable backend errors
LLM_MAX_RETRIES = _env_int("RECIPE_AI_LLM_MAX_RETRIES", 2) or 0
LLM_RETRY_BASE_DELAY = _env_float("RECIPE_AI_LLM_RETRY_DELAY", 1.0)

LOG_LEVEL = os.environ.get("RECIPE_AI_LOG_LEVEL", "INFO").upper()


def configured_providers() -> dict[str, bool]:
    """Report which LLM providers have credentials in the environment."""
    return {
        "anthropic": bool(os.environ.get("ANTHROPIC_API_KEY")),
        "openai": bool(os.environ.get("OPENAI_API_KEY")),
    }
