"""Recommendation service.

Turns a (feature, step, data) request into a stream of SSE frames:

- Single-call steps stream one LLM call. In structured mode the fragments go
  through an IncrementalAssembler and each completed array item becomes a
  `structured_data` frame; in text mode fragments are forwarded as
  `text_chunk` frames.
- Fan-out steps (suggested-oils) build one task descriptor per therapeutic
  property and run them through the ParallelOrchestrator, streaming a
  `facet_result` frame as each facet settles and finishing with the unified
  response.

Preparation (`prepare`) is separate from streaming so configuration errors
surface before the HTTP response starts.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Mapping, Optional

from recipe_ai import config
from recipe_ai.errors import (
    BackendError,
    DuplicateFacetError,
    EmptyDescriptorSetError,
    RecipeAIError,
)
from recipe_ai.llm.client import LLMClient, get_llm_client
from recipe_ai.orchestrator.descriptors import TaskDescriptorBuilder
from recipe_ai.orchestrator.runner import ParallelOrchestrator
from recipe_ai.orchestrator.schemas import (
    AggregateResult,
    AggregateStatus,
    OrchestratorOptions,
    TaskDescriptor,
    TaskSuccess,
)
from recipe_ai.prompts.composer import PromptComposer
from recipe_ai.prompts.registry import PromptRegistry, get_prompt_registry
from recipe_ai.prompts.schemas import ComposedPrompt, PromptTemplate
from recipe_ai.streaming import events
from recipe_ai.streaming.assembler import IncrementalAssembler

from .schemas import StreamingMode
from .steps import StepConfig, get_step_config
from .variables import build_shared_context, prepare_template_variables

logger = logging.getLogger(__name__)

UNIFIED_RESPONSE_VERSION = "1.0.0"


@dataclass
class StepRun:
    """A prepared request: everything needed to start streaming."""

    feature: str
    step: str
    template: PromptTemplate
    variables: dict[str, Any]
    step_config: Optional[StepConfig] = None
    composed: Optional[ComposedPrompt] = None
    descriptors: list[TaskDescriptor] = field(default_factory=list)
    request_data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_fan_out(self) -> bool:
        return bool(self.descriptors)

    @property
    def label(self) -> str:
        return f"{self.feature}:{self.step}"


class RecommendationService:
    """Runs recipe steps against the LLM backend."""

    def __init__(
        self,
        registry: Optional[PromptRegistry] = None,
        llm_client: Optional[LLMClient] = None,
        orchestrator_options: Optional[OrchestratorOptions] = None,
        idle_timeout: Optional[float] = None,
    ):
        self.registry = registry or get_prompt_registry()
        self.llm = llm_client or get_llm_client()
        self.composer = PromptComposer(registry=self.registry, resolver=self.registry.resolver)
        self.orchestrator = ParallelOrchestrator(
            orchestrator_options
            or OrchestratorOptions(
                max_concurrency=config.FACET_MAX_CONCURRENCY,
                per_task_timeout=config.FACET_TIMEOUT_SECONDS,
            )
        )
        self.idle_timeout = config.STREAM_IDLE_TIMEOUT if idle_timeout is None else idle_timeout

    # ── Preparation ──────────────────────────────────────

    def prepare(self, feature: str, step: str, data: Mapping[str, Any]) -> StepRun:
        """Load the step's prompt document and resolve it.

        Raises:
            NotFoundError: no prompt document for `step`
            MalformedDocumentError: the document is invalid
            EmptyDescriptorSetError: a fan-out step received no facets
            DuplicateFacetError: two facets share an id
        """
        step_config = get_step_config(step)
        prompt_name = step_config.prompt_name if step_config else step

        if step_config is not None and step_config.is_fan_out:
            template = self.registry.load(prompt_name)
            shared_context = build_shared_context(data)
            facets = [f for f in data.get(step_config.facet_source, None) or [] if isinstance(f, Mapping)]
            if not facets:
                raise EmptyDescriptorSetError(
                    f"Step '{step}' needs at least one entry in '{step_config.facet_source}'"
                )
            builder = TaskDescriptorBuilder(
                template,
                resolver=self.registry.resolver,
                facet_variable=step_config.facet_variable,
                id_field=step_config.facet_id_field,
            )
            descriptors = builder.build_all(facets, shared_context)
            facet_ids = [d.facet_id for d in descriptors]
            if len(set(facet_ids)) != len(facet_ids):
                raise DuplicateFacetError(f"Step '{step}' received duplicate facets: {facet_ids}")
            logger.info(f"[{feature}:{step}] Prepared {len(descriptors)} facet tasks")
            return StepRun(
                feature=feature,
                step=step,
                template=template,
                variables=shared_context,
                step_config=step_config,
                descriptors=descriptors,
                request_data=dict(data),
            )

        variables = prepare_template_variables(feature, data)
        composed = self.composer.compose(prompt_name, variables)
        return StepRun(
            feature=feature,
            step=step,
            template=self.registry.load(prompt_name),
            variables=variables,
            step_config=step_config,
            composed=composed,
            request_data=dict(data),
        )

    # ── Streaming ────────────────────────────────────────

    def stream(
        self,
        run: StepRun,
        mode: StreamingMode = StreamingMode.AUTO,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        """SSE frames for a prepared run."""
        if run.is_fan_out:
            return self.run_facets(run, cancel_event=cancel_event)
        return self.stream_step(run, mode)

    async def stream_step(
        self,
        run: StepRun,
        mode: StreamingMode = StreamingMode.AUTO,
    ) -> AsyncIterator[str]:
        """Stream one LLM call as SSE frames, ending with a terminal frame."""
        composed = run.composed
        if composed is None:
            raise ValueError(f"[{run.label}] stream_step needs a composed prompt")

        structured = mode == StreamingMode.STRUCTURED or (
            mode == StreamingMode.AUTO and run.template.has_structured_output
        )
        target_path = run.step_config.json_array_path if run.step_config else ""
        field_name = run.step_config.field_name if run.step_config else ""
        assembler = IncrementalAssembler(target_path, schema=composed.json_schema or None)

        started = time.monotonic()
        chunk_count = 0
        text_parts: list[str] = []
        source: Optional[AsyncIterator[str]] = None

        logger.info(
            f"[{run.label}] Streaming ({'structured' if structured else 'text'}) "
            f"with {composed.model_parameters.model}"
        )

        try:
            fragments = self.llm.call_streaming(
                composed.prompt,
                composed.output_schema if structured else None,
                composed.model_parameters,
                schema_name=run.template.schema_name,
                label=run.label,
            )
            source = self._with_idle_timeout(fragments, run.label)
            async for fragment in source:
                chunk_count += 1
                if structured:
                    for item in assembler.feed(fragment):
                        yield events.structured_data(field_name, item.index, item.value)
                else:
                    text_parts.append(fragment)
                    yield events.text_chunk(fragment)

            stats = {
                "chunks": chunk_count,
                "duration_ms": int((time.monotonic() - started) * 1000),
            }
            if structured:
                payload = assembler.finalize()
                stats["items"] = assembler.state.emitted_item_count
                logger.info(f"[{run.label}] Structured stream complete: {stats}")
                yield events.structured_complete(payload, stats)
            else:
                logger.info(f"[{run.label}] Text stream complete: {stats}")
                yield events.completion("".join(text_parts), stats)

        except BackendError as e:
            logger.warning(f"[{run.label}] Backend error during stream: {e}")
            yield events.error_event(
                str(e),
                details={"retriable": e.retriable, "status_code": e.status_code},
            )
        except RecipeAIError as e:
            logger.warning(f"[{run.label}] Stream failed: {e}")
            yield events.error_event(str(e))
        except Exception as e:
            logger.exception(f"[{run.label}] Unexpected error during stream")
            yield events.error_event(f"{type(e).__name__}: {e}")
        finally:
            if source is not None:
                await source.aclose()

    async def run_facets(
        self,
        run: StepRun,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        """Run every facet of a fan-out step, streaming results as they settle.

        Closing the generator early (client disconnect) sets the
        cancellation event and waits for the orchestrator to wind down.
        """
        cancel_event = cancel_event or asyncio.Event()
        frames: asyncio.Queue[Optional[str]] = asyncio.Queue()
        started = time.monotonic()

        async def on_result(result) -> None:
            await frames.put(events.facet_result(result))

        async def execute(descriptor: TaskDescriptor) -> Any:
            return await self.llm.call(
                descriptor.resolved_prompt,
                descriptor.output_schema,
                descriptor.model_parameters,
                schema_name=run.template.schema_name,
                label=f"{run.label}:{descriptor.facet_id}",
            )

        async def drive() -> AggregateResult:
            try:
                return await self.orchestrator.run(
                    run.descriptors,
                    execute,
                    cancel_event=cancel_event,
                    on_result=on_result,
                    label=run.label,
                )
            finally:
                await frames.put(None)

        task = asyncio.create_task(drive())
        try:
            while True:
                frame = await frames.get()
                if frame is None:
                    break
                yield frame

            aggregate = await task
            response = build_unified_response(
                run,
                aggregate,
                execution_time_ms=int((time.monotonic() - started) * 1000),
            )
            if aggregate.status == AggregateStatus.TOTAL_FAILURE:
                yield events.error_event(
                    f"All {aggregate.counts.submitted} therapeutic properties failed",
                    recovery=events.TOTAL_FAILURE_RECOVERY,
                    details=response,
                )
            else:
                yield events.aggregate_complete(response)

        except RecipeAIError as e:
            logger.warning(f"[{run.label}] Fan-out failed: {e}")
            yield events.error_event(str(e))
        except Exception as e:
            logger.exception(f"[{run.label}] Unexpected error during fan-out")
            yield events.error_event(f"{type(e).__name__}: {e}")
        finally:
            if not task.done():
                logger.info(f"[{run.label}] Stream closed early, cancelling facets")
                cancel_event.set()
                await asyncio.wait({task})

    async def _with_idle_timeout(
        self,
        fragments: AsyncIterator[str],
        label: str,
    ) -> AsyncIterator[str]:
        """Re-yield fragments, failing if the source goes quiet too long."""
        iterator = fragments.__aiter__()
        try:
            while True:
                try:
                    if self.idle_timeout:
                        fragment = await asyncio.wait_for(iterator.__anext__(), self.idle_timeout)
                    else:
                        fragment = await iterator.__anext__()
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError as e:
                    raise BackendError(
                        f"[{label}] No data from model for {self.idle_timeout}s",
                        retriable=True,
                        status_code=408,
                    ) from e
                yield fragment
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()


def build_unified_response(
    run: StepRun,
    aggregate: AggregateResult,
    execution_time_ms: int,
) -> dict[str, Any]:
    """Combine per-property payloads into one oil-suggestion response."""
    suggestions = []
    for result in aggregate.results:
        if not isinstance(result, TaskSuccess):
            continue
        data = result.payload.get("data", {}) if isinstance(result.payload, Mapping) else {}
        suggestions.append(
            {
                "property_id": result.facet_id,
                "therapeutic_property_context": data.get("therapeutic_property_context"),
                "suggested_oils": data.get("suggested_oils", []),
            }
        )

    context = run.variables
    submitted = aggregate.counts.submitted
    succeeded = aggregate.counts.succeeded

    return {
        "meta": {
            "step_name": run.step_config.display_name if run.step_config else run.step,
            "request_id": str(uuid.uuid4()),
            "timestamp_utc": datetime.now(timezone.utc).isoformat(),
            "version": UNIFIED_RESPONSE_VERSION,
            "user_language": context.get("user_language"),
            "status": aggregate.status.value,
            "message": f"Successfully processed {succeeded}/{submitted} therapeutic properties",
        },
        "data": {"property_oil_suggestions": suggestions},
        "execution_metadata": {
            "total_properties": submitted,
            "successful_properties": succeeded,
            "failed_properties": aggregate.counts.failed,
            "timed_out_properties": aggregate.counts.timed_out,
            "cancelled_properties": aggregate.counts.cancelled,
            "total_execution_time_ms": execution_time_ms,
            "parallel_execution": True,
            "failed_property_ids": list(aggregate.failures),
        },
        "echo": {
            "health_concern_input": context.get("health_concern"),
            "user_info_input": {
                **context.get("demographics", {}),
                "age_unit": "years",
            },
            "selected_cause_ids": [
                c.get("cause_id") for c in context.get("selected_causes", []) if isinstance(c, Mapping)
            ],
            "selected_symptom_ids": [
                s.get("symptom_id") for s in context.get("selected_symptoms", []) if isinstance(s, Mapping)
            ],
            "therapeutic_property_ids": [d.facet_id for d in run.descriptors],
        },
    }


# Global service instance
_service: Optional[RecommendationService] = None


def get_recommendation_service() -> RecommendationService:
    """Get the global RecommendationService instance."""
    global _service
    if _service is None:
        _service = RecommendationService()
    return _service


def init_service(service: Optional[RecommendationService]) -> None:
    """Replace the global service (used by tests and app startup)."""
    global _service
    _service = service
