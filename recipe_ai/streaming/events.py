"""Server-sent event framing for recommendation streams.

Intermediate records are plain `data:` frames whose JSON carries a `type`:

    data: {"type": "structured_data", "field": "potential_causes", "index": 0, "data": {...}}

A stream always ends with exactly one terminal frame, either

    event: complete
    data: {"type": "structured_complete", "data": {...}, "stats": {...}}

or

    event: error
    data: {"type": "error", "error": "...", "recovery": "..."}
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional, Union

from recipe_ai.orchestrator.schemas import TaskFailure, TaskSuccess

RECOVERY_MESSAGE = "Stream terminated due to error. Please try again."
TOTAL_FAILURE_RECOVERY = "No facet could be completed. Please try again in a moment."

COMPLETE_EVENT = "complete"
ERROR_EVENT = "error"


def format_sse_event(data: dict[str, Any], event_type: Optional[str] = None) -> str:
    """Format one SSE frame.

    Args:
        data: Frame payload (JSON serialized on a single `data:` line)
        event_type: Optional SSE event name; only terminal frames set one
    """
    lines = []
    if event_type:
        lines.append(f"event: {event_type}")
    lines.append(f"data: {json.dumps(data, ensure_ascii=False, default=str)}")
    lines.append("")
    return "\n".join(lines) + "\n"


def text_chunk(content: str) -> str:
    return format_sse_event({"type": "text_chunk", "content": content})


def structured_data(field: str, index: int, data: Any) -> str:
    return format_sse_event(
        {"type": "structured_data", "field": field, "index": index, "data": data}
    )


def facet_result(result: Union[TaskSuccess, TaskFailure]) -> str:
    record: dict[str, Any] = {
        "type": "facet_result",
        "facet_id": result.facet_id,
        "status": result.status,
        "duration_ms": result.duration_ms,
    }
    if isinstance(result, TaskSuccess):
        record["payload"] = result.payload
    else:
        record["error"] = {
            "kind": result.error_kind.value,
            "message": result.message,
            "retriable": result.retriable,
        }
    return format_sse_event(record)


def structured_complete(data: Any, stats: dict[str, Any]) -> str:
    return format_sse_event(
        {"type": "structured_complete", "data": data, "stats": stats},
        event_type=COMPLETE_EVENT,
    )


def completion(content: str, stats: dict[str, Any]) -> str:
    return format_sse_event(
        {"type": "completion", "content": content, "stats": stats},
        event_type=COMPLETE_EVENT,
    )


def aggregate_complete(response: dict[str, Any]) -> str:
    return format_sse_event(
        {"type": "aggregate_complete", "data": response},
        event_type=COMPLETE_EVENT,
    )


def error_event(error: str, recovery: str = RECOVERY_MESSAGE, details: Optional[dict[str, Any]] = None) -> str:
    record: dict[str, Any] = {
        "type": "error",
        "error": error,
        "recovery": recovery,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if details:
        record["details"] = details
    return format_sse_event(record, event_type=ERROR_EVENT)
