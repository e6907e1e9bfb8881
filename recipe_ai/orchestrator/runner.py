"""Parallel orchestrator - fan-out/fan-in execution of facet tasks.

Runs one task per descriptor with a bounded worker pool. Each task is
settled independently; a timeout or error in one facet never aborts its
siblings, and every descriptor ends up with exactly one TaskResult.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from recipe_ai.errors import BackendError, DuplicateFacetError, EmptyDescriptorSetError
from recipe_ai.validation import schema_errors

from .schemas import (
    AggregateResult,
    ErrorKind,
    OrchestratorOptions,
    TaskDescriptor,
    TaskFailure,
    TaskSuccess,
)

logger = logging.getLogger(__name__)

TaskOutcome = Union[TaskSuccess, TaskFailure]
ExecuteFn = Callable[[TaskDescriptor], Awaitable[Any]]
ResultCallback = Callable[[TaskOutcome], Awaitable[None]]


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ParallelOrchestrator:
    """Runs facet tasks concurrently and folds them into an AggregateResult.

    Workers pull descriptor indices from an asyncio.Queue, so at most
    `max_concurrency` tasks are in flight. Setting `cancel_event` stops the
    run: in-flight tasks are cancelled, settled results are kept and the
    remaining facets are recorded as cancelled.
    """

    def __init__(self, options: Optional[OrchestratorOptions] = None):
        self.options = options or OrchestratorOptions()

    async def run(
        self,
        descriptors: Sequence[TaskDescriptor],
        execute: ExecuteFn,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        on_result: Optional[ResultCallback] = None,
        label: str = "facets",
    ) -> AggregateResult:
        """Execute every descriptor and wait for all of them to settle.

        Args:
            descriptors: One descriptor per facet, in submission order
            execute: Async function producing the payload for a descriptor
            cancel_event: Optional event; when set, the run is cancelled
            on_result: Optional async callback invoked as each task settles
            label: Log prefix

        Raises:
            EmptyDescriptorSetError: if no descriptors are given
            DuplicateFacetError: if two descriptors share a facet_id
        """
        descriptors = list(descriptors)
        if not descriptors:
            raise EmptyDescriptorSetError("Cannot orchestrate an empty set of task descriptors")

        seen: set[str] = set()
        for descriptor in descriptors:
            if descriptor.facet_id in seen:
                raise DuplicateFacetError(f"Duplicate facet_id: {descriptor.facet_id}")
            seen.add(descriptor.facet_id)

        total = len(descriptors)
        worker_count = min(self.options.max_concurrency or total, total)
        timeout = self.options.per_task_timeout

        queue: asyncio.Queue[int] = asyncio.Queue()
        for index in range(total):
            queue.put_nowait(index)

        results: list[Optional[TaskOutcome]] = [None] * total
        started_at: dict[int, float] = {}
        run_started = time.monotonic()

        logger.info(
            f"[{label}] Starting {total} facet tasks with {worker_count} workers "
            f"(timeout={timeout or 'none'})"
        )

        async def worker() -> None:
            while True:
                try:
                    index = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                started_at[index] = time.monotonic()
                result = await self._execute_one(descriptors[index], execute, timeout)
                results[index] = result
                self._log_result(label, result)
                if on_result is not None:
                    try:
                        await on_result(result)
                    except Exception as e:
                        logger.warning(f"[{label}] on_result callback failed for {result.facet_id}: {e}")

        worker_tasks = [asyncio.create_task(worker()) for _ in range(worker_count)]
        cancel_waiter = asyncio.create_task(cancel_event.wait()) if cancel_event else None

        try:
            pending = set(worker_tasks)
            while pending:
                wait_for = set(pending)
                if cancel_waiter is not None:
                    wait_for.add(cancel_waiter)
                done, _ = await asyncio.wait(wait_for, return_when=asyncio.FIRST_COMPLETED)
                pending -= done
                if cancel_waiter is not None and cancel_waiter in done:
                    logger.info(f"[{label}] Cancellation requested, stopping {len(pending)} workers")
                    break
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()
            for task in worker_tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*worker_tasks, return_exceptions=True)

        now = time.monotonic()
        settled: list[TaskOutcome] = []
        for index, result in enumerate(results):
            if result is None:
                began = started_at.get(index, now)
                result = TaskFailure(
                    facet_id=descriptors[index].facet_id,
                    error_kind=ErrorKind.CANCELLED,
                    message="Cancelled before completion",
                    duration_ms=int((now - began) * 1000),
                    retriable=True,
                )
            settled.append(result)

        aggregate = AggregateResult.from_results(settled, total_duration_ms=_elapsed_ms(run_started))
        logger.info(
            f"[{label}] Finished: status={aggregate.status.value}, "
            f"{aggregate.counts.succeeded}/{total} succeeded, "
            f"{aggregate.counts.timed_out} timed out, {aggregate.counts.cancelled} cancelled, "
            f"{aggregate.total_duration_ms}ms"
        )
        return aggregate

    async def _execute_one(
        self,
        descriptor: TaskDescriptor,
        execute: ExecuteFn,
        timeout: Optional[float],
    ) -> TaskOutcome:
        started = time.monotonic()
        facet_id = descriptor.facet_id

        try:
            if timeout:
                payload = await asyncio.wait_for(execute(descriptor), timeout)
            else:
                payload = await execute(descriptor)
        except asyncio.TimeoutError:
            return TaskFailure(
                facet_id=facet_id,
                error_kind=ErrorKind.TIMEOUT,
                message=f"Timed out after {timeout}s",
                duration_ms=_elapsed_ms(started),
                retriable=True,
            )
        except BackendError as e:
            return TaskFailure(
                facet_id=facet_id,
                error_kind=ErrorKind.EXECUTION_ERROR,
                message=str(e),
                duration_ms=_elapsed_ms(started),
                retriable=e.retriable,
            )
        except Exception as e:
            return TaskFailure(
                facet_id=facet_id,
                error_kind=ErrorKind.EXECUTION_ERROR,
                message=f"{type(e).__name__}: {e}",
                duration_ms=_elapsed_ms(started),
            )

        errors = schema_errors(payload, descriptor.json_schema)
        if errors:
            return TaskFailure(
                facet_id=facet_id,
                error_kind=ErrorKind.EXECUTION_ERROR,
                message=f"Payload does not match output schema: {errors[0]}",
                duration_ms=_elapsed_ms(started),
            )

        return TaskSuccess(facet_id=facet_id, payload=payload, duration_ms=_elapsed_ms(started))

    @staticmethod
    def _log_result(label: str, result: TaskOutcome) -> None:
        if isinstance(result, TaskSuccess):
            logger.info(f"[{label}] Facet {result.facet_id} succeeded in {result.duration_ms}ms")
        else:
            logger.warning(
                f"[{label}] Facet {result.facet_id} failed ({result.error_kind.value}) "
                f"after {result.duration_ms}ms: {result.message}"
            )
