"""API routes for streamed recommendations.

POST /v1/ai/streaming answers with `text/event-stream`. Configuration errors
(unknown or malformed prompt document, empty fan-out) are raised before the
stream starts so they come back as ordinary HTTP errors.
"""

import asyncio
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse

from recipe_ai import config
from recipe_ai.errors import MalformedDocumentError, NotFoundError, OrchestrationError
from recipe_ai.recipe.schemas import StreamingMode, StreamingRequest
from recipe_ai.recipe.service import get_recommendation_service
from recipe_ai.recipe.steps import available_steps
from recipe_ai.recipe.variables import FEATURES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/ai", tags=["streaming"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


@router.post("/streaming")
async def stream_recommendation(body: StreamingRequest, request: Request):
    """Stream one recipe step as server-sent events."""
    service = get_recommendation_service()
    label = f"{body.feature}:{body.step}"

    try:
        # Cold loads read and parse YAML; keep them off the event loop
        run = await run_in_threadpool(service.prepare, body.feature, body.step, body.data)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MalformedDocumentError as e:
        logger.error(f"[{label}] Prompt document error: {e}")
        raise HTTPException(
            status_code=500,
            detail={"error": "Failed to load AI configuration", "message": str(e)},
        )
    except OrchestrationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    cancel_event = asyncio.Event()
    frames = service.stream(run, body.streaming_mode, cancel_event=cancel_event)

    async def event_stream():
        try:
            async for frame in frames:
                if await request.is_disconnected():
                    logger.info(f"[{label}] Client disconnected, stopping stream")
                    cancel_event.set()
                    break
                yield frame
        finally:
            await frames.aclose()

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/streaming")
async def streaming_status():
    """Service status for the streaming endpoint."""
    return {
        "status": "healthy",
        "service": "recipe-ai streaming",
        "providers": config.configured_providers(),
        "features": list(FEATURES),
        "steps": available_steps(),
        "streaming_modes": [mode.value for mode in StreamingMode],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
