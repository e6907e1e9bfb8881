"""Task descriptor builder.

Merges the shared context of a request with one facet (e.g. one therapeutic
property), resolves the facet-scoped prompt and stamps a facet id. Pure: no
I/O, the template document is passed in already loaded.
"""

import hashlib
import json
from typing import Any, Iterable, Mapping, Optional

from recipe_ai.prompts.resolver import TemplateResolver, get_template_resolver
from recipe_ai.prompts.schemas import PromptTemplate

from .schemas import TaskDescriptor

DEFAULT_FACET_VARIABLE = "target_property"
DEFAULT_ID_FIELD = "property_id"


def facet_id_for(facet: Mapping[str, Any], id_field: str = DEFAULT_ID_FIELD) -> str:
    """Facet id from `id_field`, or a stable content hash when it is absent."""
    value = facet.get(id_field)
    if value is not None and str(value).strip():
        return str(value)
    canonical = json.dumps(facet, sort_keys=True, ensure_ascii=False, default=str)
    return "facet-" + hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:12]


class TaskDescriptorBuilder:
    """Builds one TaskDescriptor per facet.

    Usage:
        builder = TaskDescriptorBuilder(registry.load("suggested-oils"))
        descriptors = builder.build_all(properties, shared_context)
    """

    def __init__(
        self,
        template: PromptTemplate,
        resolver: Optional[TemplateResolver] = None,
        facet_variable: str = DEFAULT_FACET_VARIABLE,
        id_field: str = DEFAULT_ID_FIELD,
    ):
        self.template = template
        self.resolver = resolver or get_template_resolver()
        self.facet_variable = facet_variable
        self.id_field = id_field

    def build(self, facet: Mapping[str, Any], shared_context: Mapping[str, Any]) -> TaskDescriptor:
        variables = {**shared_context, self.facet_variable: facet}
        prompt = self.resolver.resolve(self.template.body, variables)

        return TaskDescriptor(
            facet_id=facet_id_for(facet, self.id_field),
            facet=dict(facet),
            resolved_prompt=prompt,
            output_schema=self.template.output_schema,
            shared_context=dict(shared_context),
            model_parameters=self.template.model_parameters,
            template_name=self.template.name,
        )

    def build_all(
        self,
        facets: Iterable[Mapping[str, Any]],
        shared_context: Mapping[str, Any],
    ) -> list[TaskDescriptor]:
        return [self.build(facet, shared_context) for facet in facets]
