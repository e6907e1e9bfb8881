"""Facet fan-out: descriptor builder and parallel orchestrator."""

from .descriptors import TaskDescriptorBuilder, facet_id_for
from .runner import ParallelOrchestrator
from .schemas import (
    AggregateCounts,
    AggregateResult,
    AggregateStatus,
    ErrorKind,
    OrchestratorOptions,
    TaskDescriptor,
    TaskFailure,
    TaskResult,
    TaskSuccess,
)

__all__ = [
    "AggregateCounts",
    "AggregateResult",
    "AggregateStatus",
    "ErrorKind",
    "OrchestratorOptions",
    "ParallelOrchestrator",
    "TaskDescriptor",
    "TaskDescriptorBuilder",
    "TaskFailure",
    "TaskResult",
    "TaskSuccess",
    "facet_id_for",
]
