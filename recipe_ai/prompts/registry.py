"""Prompt registry - loads prompt documents from YAML files.

Follows the registry pattern used across the service:
- YAML-per-file in definitions/ directory ({name}.yaml)
- Lazy loading: a document is read and validated on first request
- In-memory dict keyed by name, kept for the registry's lifetime
- Global instance via get_prompt_registry() for the API; tests construct
  their own registry pointed at a temporary directory

Concurrent first loads of the same name collapse into one parse; other
callers wait on a per-name lock and then read the cached document.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from recipe_ai import config
from recipe_ai.errors import MalformedDocumentError, NotFoundError, TemplateSyntaxError

from .resolver import TemplateResolver, get_template_resolver
from .schemas import PromptTemplate, PromptTemplateSummary

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")
REQUIRED_FIELDS = ("template", "config", "schema")
REQUIRED_CONFIG_FIELDS = ("model", "temperature", "max_tokens")


class PromptRegistry:
    """Registry of prompt documents loaded from YAML files."""

    def __init__(
        self,
        prompts_dir: Optional[Path] = None,
        resolver: Optional[TemplateResolver] = None,
    ):
        """Initialize the registry.

        Args:
            prompts_dir: Directory holding {name}.yaml documents
                (default: config.PROMPTS_DIR)
            resolver: Resolver used to check template block structure at
                load time (default: global resolver)
        """
        self.prompts_dir = Path(prompts_dir) if prompts_dir else config.PROMPTS_DIR
        self.resolver = resolver or get_template_resolver()
        self._templates: dict[str, PromptTemplate] = {}
        self._key_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self._generation = 0
        self.load_count = 0

    def load(self, name: str) -> PromptTemplate:
        """Get a prompt document by name, reading it on first request.

        Raises:
            NotFoundError: if no document is registered under `name`
            MalformedDocumentError: if the document is invalid
        """
        cached = self._templates.get(name)
        if cached is not None:
            return cached

        with self._lock:
            key_lock = self._key_locks.setdefault(name, threading.Lock())

        with key_lock:
            # Another caller may have finished the load while we waited
            cached = self._templates.get(name)
            if cached is not None:
                return cached

            with self._lock:
                generation = self._generation
            template = self._read(name)
            with self._lock:
                self.load_count += 1
                # A clear_cache() during the read invalidates this result
                if generation == self._generation:
                    self._templates[name] = template
            logger.info(
                f"Loaded prompt document: {name} (v{template.version or '?'}, "
                f"model={template.model_parameters.model})"
            )
            return template

    def get(self, name: str) -> Optional[PromptTemplate]:
        """Get a document by name, or None if it does not exist."""
        try:
            return self.load(name)
        except NotFoundError:
            return None

    def exists(self, name: str) -> bool:
        """Check if a document file exists (without loading it)."""
        return self._find_file(name) is not None

    def list_available(self) -> list[str]:
        """List document names available on disk."""
        if not self.prompts_dir.exists():
            logger.warning(f"Prompts directory not found: {self.prompts_dir}")
            return []
        names = {
            path.stem
            for path in self.prompts_dir.iterdir()
            if path.is_file() and path.suffix in YAML_SUFFIXES
        }
        return sorted(names)

    def list_summaries(self) -> list[PromptTemplateSummary]:
        """Load and summarize every available document."""
        summaries = []
        for name in self.list_available():
            template = self.load(name)
            summaries.append(
                PromptTemplateSummary(
                    name=template.name,
                    version=template.version,
                    description=template.description,
                    model=template.model_parameters.model,
                    cached=True,
                )
            )
        return summaries

    def preload(self) -> int:
        """Load every available document. Returns the number cached."""
        for name in self.list_available():
            self.load(name)
        return len(self._templates)

    def count(self) -> int:
        """Number of documents available on disk."""
        return len(self.list_available())

    def cached_names(self) -> list[str]:
        """Names currently held in the cache."""
        with self._lock:
            return sorted(self._templates.keys())

    def clear_cache(self) -> None:
        """Drop every cached document; the next load re-reads from disk."""
        with self._lock:
            self._templates.clear()
            self._generation += 1
        logger.info("Prompt cache cleared")

    # ── Internals ────────────────────────────────────────

    def _find_file(self, name: str) -> Optional[Path]:
        if not name or "/" in name or "\\" in name or name.startswith("."):
            return None
        for suffix in YAML_SUFFIXES:
            candidate = self.prompts_dir / f"{name}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def _read(self, name: str) -> PromptTemplate:
        path = self._find_file(name)
        if path is None:
            raise NotFoundError(
                f"Prompt document '{name}' not found in {self.prompts_dir}",
                name=name,
            )

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise MalformedDocumentError(
                f"Prompt document '{name}' is not valid YAML: {e}", name=name
            ) from e

        self._check_required(name, data)

        try:
            template = PromptTemplate.model_validate({**data, "name": name})
        except ValidationError as e:
            raise MalformedDocumentError(
                f"Prompt document '{name}' failed validation: {e}", name=name
            ) from e

        try:
            self.resolver.validate(template.body)
        except TemplateSyntaxError as e:
            raise TemplateSyntaxError(
                f"Prompt document '{name}' has an invalid template: {e}", name=name
            ) from e

        return template

    @staticmethod
    def _check_required(name: str, data: Any) -> None:
        if not isinstance(data, dict):
            raise MalformedDocumentError(
                f"Prompt document '{name}' must be a mapping at the top level",
                name=name,
            )

        for key in REQUIRED_FIELDS:
            if key not in data or data[key] is None:
                raise MalformedDocumentError(
                    f"Missing required field '{key}' in prompt document '{name}'",
                    name=name,
                )

        if not isinstance(data["config"], dict):
            raise MalformedDocumentError(
                f"Invalid config section in prompt document '{name}'", name=name
            )
        for key in REQUIRED_CONFIG_FIELDS:
            if key not in data["config"]:
                raise MalformedDocumentError(
                    f"Missing required config field '{key}' in prompt document '{name}'",
                    name=name,
                )

        if not isinstance(data["template"], str) or not data["template"].strip():
            raise MalformedDocumentError(
                f"Template must be a non-empty string in prompt document '{name}'",
                name=name,
            )
        if not isinstance(data["schema"], dict):
            raise MalformedDocumentError(
                f"Schema must be a mapping in prompt document '{name}'", name=name
            )


# Global registry instance
_registry: Optional[PromptRegistry] = None


def get_prompt_registry() -> PromptRegistry:
    """Get the global prompt registry instance."""
    global _registry
    if _registry is None:
        _registry = PromptRegistry()
    return _registry
