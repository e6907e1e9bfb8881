"""Pydantic schemas for facet fan-out.

A unit of work (e.g. "suggest oils for these therapeutic properties") is
split into one TaskDescriptor per facet. Each descriptor settles into exactly
one TaskResult, and the results fold into one AggregateResult.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from recipe_ai.prompts.schemas import ModelParameters, unwrap_json_schema


class ErrorKind(str, Enum):
    """Why a facet task failed."""

    TIMEOUT = "timeout"
    EXECUTION_ERROR = "execution_error"
    CANCELLED = "cancelled"


class AggregateStatus(str, Enum):
    """Overall outcome of a fan-out run."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    TOTAL_FAILURE = "total_failure"


class OrchestratorOptions(BaseModel):
    """Fan-out limits."""

    max_concurrency: Optional[int] = Field(
        default=None,
        ge=1,
        description="Maximum facets in flight at once (None: all at once)",
    )
    per_task_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Seconds before a single facet task is abandoned (None: no limit)",
    )


class TaskDescriptor(BaseModel):
    """Everything needed to run one facet independently."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    facet_id: str
    facet: dict[str, Any] = Field(default_factory=dict)
    resolved_prompt: str
    output_schema: dict[str, Any] = Field(default_factory=dict)
    shared_context: dict[str, Any] = Field(default_factory=dict)
    model_parameters: ModelParameters
    template_name: str = ""

    @property
    def json_schema(self) -> dict[str, Any]:
        return unwrap_json_schema(self.output_schema) if self.output_schema else {}


class TaskSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    facet_id: str
    payload: Any
    duration_ms: int


class TaskFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["failure"] = "failure"
    facet_id: str
    error_kind: ErrorKind
    message: str
    duration_ms: int
    retriable: bool = False


TaskResult = Annotated[Union[TaskSuccess, TaskFailure], Field(discriminator="status")]


class AggregateCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    submitted: int
    succeeded: int
    failed: int
    timed_out: int
    cancelled: int


class AggregateResult(BaseModel):
    """Outcome of one fan-out run.

    `successes` holds payloads and `failures` holds facet ids, both in
    submission order; `results` keeps every TaskResult in submission order.
    """

    model_config = ConfigDict(frozen=True)

    status: AggregateStatus
    successes: list[Any] = Field(default_factory=list)
    failures: list[str] = Field(default_factory=list)
    results: list[TaskResult] = Field(default_factory=list)
    total_duration_ms: int = 0
    counts: AggregateCounts

    @classmethod
    def from_results(
        cls,
        results: list[Union[TaskSuccess, TaskFailure]],
        total_duration_ms: int = 0,
    ) -> "AggregateResult":
        """Fold per-facet results (already in submission order)."""
        successes = [r.payload for r in results if isinstance(r, TaskSuccess)]
        failures = [r.facet_id for r in results if isinstance(r, TaskFailure)]

        if not failures:
            status = AggregateStatus.SUCCESS
        elif not successes:
            status = AggregateStatus.TOTAL_FAILURE
        else:
            status = AggregateStatus.PARTIAL_FAILURE

        counts = AggregateCounts(
            submitted=len(results),
            succeeded=len(successes),
            failed=len(failures),
            timed_out=sum(
                1 for r in results
                if isinstance(r, TaskFailure) and r.error_kind == ErrorKind.TIMEOUT
            ),
            cancelled=sum(
                1 for r in results
                if isinstance(r, TaskFailure) and r.error_kind == ErrorKind.CANCELLED
            ),
        )

        return cls(
            status=status,
            successes=successes,
            failures=failures,
            results=list(results),
            total_duration_ms=total_duration_ms,
            counts=counts,
        )

    def result_for(self, facet_id: str) -> Optional[Union[TaskSuccess, TaskFailure]]:
        for result in self.results:
            if result.facet_id == facet_id:
                return result
        return None
