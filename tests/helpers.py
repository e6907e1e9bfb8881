"""Test helpers: prompt document texts, a scripted LLM client, SSE parsing."""

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Optional

GREETING_YAML = """\
version: "1.0"
description: Greeting used in tests
config:
  model: gpt-4o-mini
  temperature: 0.1
  max_tokens: 100
template: |
  Hello {{name}}, items: {{#each xs}}{{this}}{{#unless @last}}, {{/unless}}{{/each}}.
schema:
  type: object
  properties:
    reply: {type: string}
"""

MISSING_CONFIG_YAML = """\
version: "1.0"
template: "Hi {{name}}"
schema: {type: object}
"""

NESTED_EACH_YAML = """\
version: "1.0"
config: {model: gpt-4o-mini, temperature: 0, max_tokens: 10}
template: "{{#each a}}{{#each b}}x{{/each}}{{/each}}"
schema: {type: object}
"""


def write_prompt(directory: Path, name: str, content: str) -> Path:
    path = directory / f"{name}.yaml"
    path.write_text(content, encoding="utf-8")
    return path


class FakeLLMClient:
    """Stands in for LLMClient.

    `responder(prompt)` returns the payload for call() or raises; it may be
    a coroutine function. `fragments` are yielded by call_streaming(); an
    exception in the list is raised at that point instead.
    """

    def __init__(
        self,
        responder: Optional[Callable[[str], Any]] = None,
        fragments: Optional[list[Any]] = None,
        fragment_delay: float = 0.0,
    ):
        self.responder = responder or (lambda prompt: {})
        self.fragments = fragments or []
        self.fragment_delay = fragment_delay
        self.calls: list[dict[str, Any]] = []
        self.stream_calls: list[dict[str, Any]] = []

    async def call(self, prompt, schema, params, *, schema_name="response", label=""):
        self.calls.append({"prompt": prompt, "schema": schema, "params": params, "label": label})
        result = self.responder(prompt)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    async def call_streaming(self, prompt, schema, params, *, schema_name="response", label=""):
        self.stream_calls.append({"prompt": prompt, "schema": schema, "params": params, "label": label})
        for fragment in self.fragments:
            if isinstance(fragment, Exception):
                raise fragment
            if self.fragment_delay:
                await asyncio.sleep(self.fragment_delay)
            yield fragment


def parse_sse(text: str) -> list[dict[str, Any]]:
    """Split an SSE body into frames of {"event": name or None, "data": obj}."""
    frames = []
    for block in text.split("\n\n"):
        if not block.strip():
            continue
        event = None
        data = None
        for line in block.splitlines():
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        frames.append({"event": event, "data": data})
    return frames


def oils_payload(property_id: str, oils: int = 2) -> dict[str, Any]:
    """A valid suggested-oils response for one property."""
    return {
        "data": {
            "therapeutic_property_context": {
                "property_id": property_id,
                "property_name_english": property_id.replace("_", " ").title(),
            },
            "suggested_oils": [
                {
                    "oil_id": f"{property_id}-oil-{i}",
                    "name_english": f"Oil {i}",
                    "relevancy_to_property_score": 3,
                }
                for i in range(oils)
            ],
        }
    }


def property_facet(property_id: str) -> dict[str, Any]:
    return {
        "property_id": property_id,
        "property_name_english": property_id.replace("_", " ").title(),
        "property_name_localized": property_id,
    }


CREATE_RECIPE_DATA = {
    "health_concern": "tension headache",
    "demographics": {"gender": "female", "age_category": "adult", "age_specific": "34"},
    "selected_causes": [
        {"cause_id": "stress", "name_localized": "Stress", "explanation_localized": "Work stress"},
        {"cause_id": "sleep", "name_localized": "Poor sleep", "explanation_localized": "Short nights"},
    ],
    "selected_symptoms": [
        {"symptom_id": "throbbing", "name_localized": "Throbbing pain"},
    ],
    "user_language": "EN_US",
}
