"""
Chat generation endpoints

- POST /chat                        start a background generation
- GET  /generations/{id}/stream     SSE: replay from ?from=N, then live chunks
- POST /generations/{id}/cancel     owner-only cancel
- GET  /generations/active          resume lookup for a chat
- POST /chat/ghost-fix              raw text stream of a single fix request

The generation keeps running when the SSE client disconnects; a client
reconnects with ?from=<chunks received> and gets the rest without gaps.
"""

import asyncio
import json
from typing import Any, AsyncGenerator, Tuple

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse

from app.api.deps import (
    get_current_user_id,
    get_generation_manager,
    get_ghost_fix_service,
    get_repository,
)
from app.core.logging_config import logger
from app.models.chat import MessageRole
from app.models.generation import GenerationStatus
from app.schemas.generation import (
    ActiveGenerationResponse,
    CancelResponse,
    ChatRequest,
    ChatResponse,
    GhostFixRequest,
)
from app.services.generation_manager import (
    STALE_GENERATION_ERROR,
    GenerationManager,
    StartGenerationParams,
    message_text,
)
from app.services.generation_repository import GenerationRepository
from app.services.ghost_fix_service import GhostFixService

router = APIRouter(tags=["Generations"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_event(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@router.post("/chat", response_model=ChatResponse)
async def start_chat_generation(
    request: ChatRequest,
    user_id: str = Depends(get_current_user_id),
    manager: GenerationManager = Depends(get_generation_manager),
    repository: GenerationRepository = Depends(get_repository),
):
    """Persist the user message and start streaming the reply in the background"""
    messages = [m.model_dump() for m in request.messages]
    last_message = messages[-1]

    await repository.ensure_chat(request.chat_id, user_id, request.project_id)

    last_user_message = None
    if last_message["role"] == "user":
        last_user_message = last_message
        content = last_message["content"]
        await repository.add_message(
            request.chat_id,
            MessageRole.USER,
            content if isinstance(content, str) else json.dumps(content),
        )

    generation_id = await manager.start(StartGenerationParams(
        chat_id=request.chat_id,
        user_id=user_id,
        project_id=request.project_id,
        messages=messages,
        model_id=request.model_id,
        provider=request.provider,
        project_context=request.project_context,
        plan_mode=request.plan_mode,
        last_user_message=last_user_message,
    ))

    logger.info(f"[Chat] Started generation {generation_id} for chat {request.chat_id}: {message_text(last_user_message)[:80]}")
    return ChatResponse(generation_id=generation_id)


@router.get("/generations/active", response_model=ActiveGenerationResponse)
async def get_active_generation(
    chat_id: str = Query(..., description="Chat to look up"),
    user_id: str = Depends(get_current_user_id),
    manager: GenerationManager = Depends(get_generation_manager),
    repository: GenerationRepository = Depends(get_repository),
):
    """
    In-memory streaming session first; a durable row still marked streaming
    belongs to a previous process, so it is closed as an error and its
    partial content returned.
    """
    active = manager.find_active(chat_id, user_id)
    if active is not None:
        return ActiveGenerationResponse(generation_id=active.id, status=active.status.value)

    try:
        row = await repository.find_streaming_generation(chat_id, user_id)
        if row is not None:
            await repository.update_generation(
                row.id, status=GenerationStatus.ERROR, error=STALE_GENERATION_ERROR
            )
            return ActiveGenerationResponse(
                generation_id=row.id,
                status=GenerationStatus.ERROR.value,
                content=row.content or None,
                error=STALE_GENERATION_ERROR,
            )
    except Exception as e:
        logger.warning(f"[Chat] Active generation lookup failed for chat {chat_id}: {e}")

    return ActiveGenerationResponse(generation_id=None)


@router.get("/generations/{generation_id}/stream")
async def stream_generation(
    generation_id: str,
    from_chunk: int = Query(0, alias="from", ge=0),
    user_id: str = Depends(get_current_user_id),
    manager: GenerationManager = Depends(get_generation_manager),
    repository: GenerationRepository = Depends(get_repository),
):
    """Server-Sent Events: chunk, done, error, or catchup for evicted sessions"""

    async def live_stream() -> AsyncGenerator[str, None]:
        session = manager.get(generation_id)
        if session is None:
            async for event in durable_stream():
                yield event
            return
        if session.user_id != user_id:
            yield sse_event("error", {"error": "Unauthorized"})
            return

        queue: "asyncio.Queue[Tuple[str, bool]]" = asyncio.Queue()
        unsubscribe = manager.subscribe(
            generation_id, from_chunk, lambda chunk, done: queue.put_nowait((chunk, done))
        )
        if unsubscribe is None:
            yield sse_event("error", {"error": "Generation not found"})
            return

        index = from_chunk
        try:
            while True:
                chunk, done = await queue.get()
                if done:
                    yield sse_event("done", {"status": session.status.value})
                    return
                yield sse_event("chunk", {"text": chunk, "index": index})
                index += 1
        finally:
            # Client disconnects only drop the subscription; the generation keeps going
            unsubscribe()

    async def durable_stream() -> AsyncGenerator[str, None]:
        try:
            row = await repository.get_generation(generation_id)
        except Exception as e:
            logger.log_error_with_context(e, context=f"stream_generation:{generation_id}")
            yield sse_event("error", {"error": "Internal server error"})
            return

        if row is None:
            yield sse_event("error", {"error": "Generation not found"})
            return
        if row.user_id != user_id:
            yield sse_event("error", {"error": "Unauthorized"})
            return

        yield sse_event("catchup", {"content": row.content, "status": row.status, "error": row.error})
        yield sse_event("done", {"status": row.status})

    return StreamingResponse(live_stream(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/generations/{generation_id}/cancel", response_model=CancelResponse)
async def cancel_generation(
    generation_id: str,
    user_id: str = Depends(get_current_user_id),
    manager: GenerationManager = Depends(get_generation_manager),
):
    cancelled = await manager.cancel(generation_id, user_id)
    if not cancelled:
        return JSONResponse(
            status_code=404,
            content={"ok": False, "error": "Generation not found or not active"},
        )
    return CancelResponse(ok=True)


@router.post("/chat/ghost-fix")
async def ghost_fix(
    request: GhostFixRequest,
    user_id: str = Depends(get_current_user_id),
    service: GhostFixService = Depends(get_ghost_fix_service),
):
    """Stream the raw fix response; nothing is persisted"""
    return StreamingResponse(
        service.stream_fix(request),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache"},
    )
