"""
API route aggregator: register endpoints; no logic, only delegate to handlers.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import StreamingResponse

from agent_stream.api.handlers import get_dispatcher, handle_message, sse_events
from agent_stream.core.config import DEFAULT_THREAD_ID
from agent_stream.schemas.message import MessageRequest, MessageResponse
from agent_stream.services.dispatcher import SessionDispatcher

logger = logging.getLogger(__name__)
router = APIRouter()


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"message": "Agent stream server", "status": "running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


@router.get("/stats", tags=["system"], summary="Session dispatcher statistics")
def stats(dispatcher: SessionDispatcher = Depends(get_dispatcher)) -> dict:
    return dispatcher.get_stats()


# --- Chat ---

@router.post(
    "/message",
    response_model=MessageResponse,
    tags=["chat"],
    summary="Send a message to the agent",
    description="Forward a user message into the conversation identified by thread_id. Replies are delivered to every client following GET /stream for that thread. 409 if a turn is already running for the thread, 502/503 on agent failure.",
)
async def post_message(
    body: MessageRequest,
    response: Response,
    thread_id: str = Query(DEFAULT_THREAD_ID, min_length=1, description="Conversation id."),
    wait: bool = Query(True, description="Wait for the agent turn to finish before responding."),
    dispatcher: SessionDispatcher = Depends(get_dispatcher),
) -> MessageResponse:
    result = await handle_message(dispatcher, thread_id, body.message, wait=wait)
    if result.status == "accepted":
        response.status_code = 202
    return result


@router.get(
    "/stream",
    tags=["chat"],
    summary="Follow a conversation (SSE stream)",
    description="Server-Sent Events for one thread. Events: connected, message (one per conversation message).",
)
async def get_stream(
    request: Request,
    thread_id: str = Query(DEFAULT_THREAD_ID, min_length=1, description="Conversation id."),
    dispatcher: SessionDispatcher = Depends(get_dispatcher),
) -> StreamingResponse:
    logger.info("[api:get_stream] IN  thread_id=%s", thread_id)
    return StreamingResponse(
        sse_events(request, dispatcher, thread_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
