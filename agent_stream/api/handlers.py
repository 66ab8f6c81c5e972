"""
API handlers: call the session dispatcher, map results/errors to HTTP, format SSE.

Responsibility: Bridge HTTP types and the dispatcher. Marshalling and
exception-to-HTTP mapping. Lives in the API layer so services stay free of
FastAPI/HTTP types.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator

from fastapi import HTTPException, Request

from agent_stream.core.config import SSE_KEEPALIVE_SECONDS
from agent_stream.core.errors import AgentInvocationError, ConcurrentSubmitError, ServiceUnavailableError
from agent_stream.schemas.message import MessageResponse, StreamMessage
from agent_stream.services.dispatcher import SessionDispatcher

logger = logging.getLogger(__name__)

# strong refs so fire-and-forget turns are not garbage collected mid-run
_background_turns: set[asyncio.Task] = set()


def get_dispatcher(request: Request) -> SessionDispatcher:
    """FastAPI dependency: the dispatcher built in the app lifespan."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=503, detail="Agent is not initialized yet.")
    return dispatcher


def _log_background_turn(task: asyncio.Task) -> None:
    _background_turns.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if isinstance(error, AgentInvocationError):
        logger.error("[api:background_turn] thread_id=%s failed: %s", error.thread_id, error.message)
    elif error is not None:
        logger.error("[api:background_turn] failed: %r", error)


async def handle_message(dispatcher: SessionDispatcher, thread_id: str, text: str, wait: bool = True) -> MessageResponse:
    """
    Forward a user message into the agent for thread_id.
    409 if a turn is already running for the thread, in both modes.
    wait=True: resolve after the turn; 503 if the LLM is unavailable, 502 for other
    agent failures.
    wait=False: reserve the thread, run the turn in the background and return
    immediately; later agent failures are logged.
    """
    logger.info("[api:handle_message] IN  thread_id=%s wait=%s text_len=%d", thread_id, wait, len(text))
    if not wait:
        try:
            task = dispatcher.start_turn(thread_id, text)
        except ConcurrentSubmitError as e:
            raise HTTPException(status_code=409, detail=e.message) from e
        _background_turns.add(task)
        task.add_done_callback(_log_background_turn)
        return MessageResponse(status="accepted", thread_id=thread_id)

    try:
        await dispatcher.submit(thread_id, text)
    except ConcurrentSubmitError as e:
        raise HTTPException(status_code=409, detail=e.message) from e
    except AgentInvocationError as e:
        if isinstance(e.__cause__, ServiceUnavailableError):
            raise HTTPException(status_code=503, detail=e.__cause__.message) from e
        raise HTTPException(status_code=502, detail=f"Agent failed: {e.message}") from e
    logger.info("[api:handle_message] OUT thread_id=%s completed", thread_id)
    return MessageResponse(status="completed", thread_id=thread_id)


def _sse(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


async def sse_events(
    request: Request,
    dispatcher: SessionDispatcher,
    thread_id: str,
    keepalive: float = SSE_KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """
    Yield Server-Sent Events for one client following thread_id.
    The client is subscribed while this generator runs and unsubscribed when it ends
    (client disconnect cancels it or is noticed on the next keepalive tick).
    """
    queue: asyncio.Queue = asyncio.Queue()
    handle = dispatcher.subscribe(thread_id, queue.put_nowait)
    try:
        yield _sse("connected", json.dumps({"connected": True, "thread_id": thread_id}))
        while True:
            try:
                message = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    break
                yield ": keepalive\n\n"
                continue
            yield _sse("message", StreamMessage.from_message(message).model_dump_json())
    finally:
        dispatcher.unsubscribe(thread_id, handle)
        logger.info("[api:sse_events] SSE connection closed for thread: %s", thread_id)
