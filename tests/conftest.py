"""Shared fixtures: prompt documents on disk, registries and a fake LLM client."""

from pathlib import Path

import pytest

from recipe_ai.config import PROMPTS_DIR
from recipe_ai.prompts.registry import PromptRegistry
from recipe_ai.prompts.resolver import TemplateResolver
from tests.helpers import GREETING_YAML, FakeLLMClient, write_prompt


@pytest.fixture
def prompts_dir(tmp_path: Path) -> Path:
    """Temporary directory with a valid greeting document."""
    directory = tmp_path / "definitions"
    directory.mkdir()
    write_prompt(directory, "greeting", GREETING_YAML)
    return directory


@pytest.fixture
def registry(prompts_dir: Path) -> PromptRegistry:
    return PromptRegistry(prompts_dir=prompts_dir, resolver=TemplateResolver())


@pytest.fixture
def shipped_registry() -> PromptRegistry:
    """Registry over the prompt documents shipped with the package."""
    return PromptRegistry(prompts_dir=PROMPTS_DIR, resolver=TemplateResolver())


@pytest.fixture
def fake_llm() -> FakeLLMClient:
    return FakeLLMClient()
