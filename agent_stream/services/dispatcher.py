"""
Session dispatcher: fan out a streaming agent's messages to every client
subscribed to the same conversation thread.

Responsibility: keep, per thread, the ordered set of subscribed sinks and the
ids of messages already delivered; run at most one agent turn per thread at a
time; deliver each new message once to the sinks subscribed when it is
dispatched. No HTTP here; the API layer registers sinks and starts turns.

The agent yields cumulative snapshots ({"messages": [...]}, the whole
conversation so far), so a message id that was already delivered is skipped
and only the new tail of each snapshot goes out.
"""

import asyncio
import inspect
import logging
import threading
from collections.abc import AsyncGenerator, AsyncIterator, Callable, Mapping
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from agent_stream.core.errors import AgentInvocationError, ConcurrentSubmitError

logger = logging.getLogger(__name__)

# A sink takes one message; it may return an awaitable (e.g. asyncio.Queue.put).
Sink = Callable[[Any], Any]


class AgentProtocol(Protocol):
    """What the dispatcher needs from an agent: one async snapshot stream per turn."""

    def invoke_turn(self, thread_id: str, text: str) -> AsyncGenerator[Any, None]:
        ...


@dataclass(eq=False)
class SubscriptionHandle:
    """Returned by subscribe(); pass it back to unsubscribe(). Compared by identity."""

    thread_id: str
    sink: Sink
    active: bool = True
    # serializes delivery to this sink
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


@dataclass
class ThreadState:
    subscribers: dict[SubscriptionHandle, None] = field(default_factory=dict)
    seen: set[str] = field(default_factory=set)
    turn: Optional[object] = None  # token of the turn in flight

    @property
    def busy(self) -> bool:
        return self.turn is not None


@dataclass
class DispatcherStats:
    """Runtime statistics for monitoring."""
    turns: int = 0
    delivered: int = 0
    duplicates: int = 0
    rejected: int = 0
    sink_errors: int = 0
    agent_errors: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _require_thread_id(thread_id: str) -> None:
    if not thread_id or not isinstance(thread_id, str):
        raise ValueError("thread_id must be a non-empty string")


def _snapshot_messages(snapshot: Any) -> list:
    if isinstance(snapshot, Mapping):
        messages = snapshot.get("messages")
    else:
        messages = getattr(snapshot, "messages", None)
    return list(messages) if messages else []


def _message_id(message: Any) -> Optional[str]:
    if isinstance(message, Mapping):
        mid = message.get("id")
    else:
        mid = getattr(message, "id", None)
    if mid is None or mid == "":
        return None
    return str(mid)


class SessionDispatcher:
    """Per-thread pub/sub between one streaming agent and many client sinks.

    subscribe/unsubscribe are plain methods (callable from any thread);
    submit/stream_turn/broadcast are coroutines. A threading.Lock guards the
    registry and is never held across an await.
    """

    def __init__(self, agent: AgentProtocol):
        self._agent = agent
        self._threads: dict[str, ThreadState] = {}
        self._lock = threading.Lock()
        self.stats = DispatcherStats()

    def _state_for(self, thread_id: str) -> ThreadState:
        # caller holds self._lock
        state = self._threads.get(thread_id)
        if state is None:
            state = ThreadState()
            self._threads[thread_id] = state
        return state

    # ─── Registration ─────────────────────────────────────

    def subscribe(self, thread_id: str, sink: Sink) -> SubscriptionHandle:
        """Register a sink for thread_id. Unknown threads are created on the fly."""
        _require_thread_id(thread_id)
        handle = SubscriptionHandle(thread_id=thread_id, sink=sink)
        with self._lock:
            state = self._state_for(thread_id)
            state.subscribers[handle] = None
            count = len(state.subscribers)
        logger.info("[dispatcher:subscribe] thread_id=%s subscribers=%d", thread_id, count)
        return handle

    def unsubscribe(self, thread_id: str, handle: SubscriptionHandle) -> None:
        """Remove exactly this handle. No-op if the thread or handle is already gone."""
        with self._lock:
            state = self._threads.get(thread_id)
            if state is None or handle not in state.subscribers:
                logger.debug("[dispatcher:unsubscribe] no-op thread_id=%r", thread_id)
                return
            del state.subscribers[handle]
            handle.active = False
            count = len(state.subscribers)
        logger.info("[dispatcher:unsubscribe] thread_id=%s subscribers=%d", thread_id, count)

    def subscriber_count(self, thread_id: str) -> int:
        with self._lock:
            state = self._threads.get(thread_id)
            return len(state.subscribers) if state else 0

    def is_busy(self, thread_id: str) -> bool:
        """True while a turn is in flight for thread_id."""
        with self._lock:
            state = self._threads.get(thread_id)
            return bool(state and state.busy)

    # ─── Turns ────────────────────────────────────────────

    def _reserve(self, thread_id: str) -> tuple[ThreadState, object]:
        """Mark thread_id busy and return (state, turn token), or raise ConcurrentSubmitError."""
        _require_thread_id(thread_id)
        token = object()
        with self._lock:
            state = self._state_for(thread_id)
            if state.busy:
                self.stats.rejected += 1
                logger.warning("[dispatcher:reserve] rejected thread_id=%s (turn in flight)", thread_id)
                raise ConcurrentSubmitError(thread_id)
            state.turn = token
            self.stats.turns += 1
        return state, token

    def _release(self, state: ThreadState, token: object) -> None:
        # only the turn that reserved the thread may free it
        with self._lock:
            if state.turn is token:
                state.turn = None

    async def submit(self, thread_id: str, text: str) -> None:
        """Run one agent turn for thread_id and deliver its new messages to subscribers.

        Raises ConcurrentSubmitError if the thread already has a turn in flight and
        AgentInvocationError if the agent fails; messages delivered before the
        failure are not rolled back.
        """
        state, token = self._reserve(thread_id)
        await self._drain(state, token, thread_id, text)

    def start_turn(self, thread_id: str, text: str) -> asyncio.Task:
        """Reserve thread_id now and run the turn as a background task.

        The reservation happens before this returns, so a second call for the same
        thread raises ConcurrentSubmitError right away instead of failing inside
        the task. Agent failures surface through the returned task.
        """
        state, token = self._reserve(thread_id)
        task = asyncio.create_task(self._drain(state, token, thread_id, text))
        # also covers a task cancelled before it ever ran
        task.add_done_callback(lambda _task: self._release(state, token))
        return task

    async def stream_turn(self, thread_id: str, text: str) -> AsyncIterator[Any]:
        """Lazy form of submit(): yields each message right after it has been broadcast.

        Each call starts a new turn. Close the generator (contextlib.aclosing) if
        you stop iterating early, otherwise the thread stays busy until it is
        garbage collected.
        """
        state, token = self._reserve(thread_id)
        async with aclosing(self._run_turn(state, token, thread_id, text)) as messages:
            async for message in messages:
                yield message

    async def _drain(self, state: ThreadState, token: object, thread_id: str, text: str) -> None:
        async with aclosing(self._run_turn(state, token, thread_id, text)) as messages:
            async for _ in messages:
                pass

    async def _run_turn(self, state: ThreadState, token: object, thread_id: str, text: str) -> AsyncIterator[Any]:
        logger.info("[dispatcher:turn] START thread_id=%s text_len=%d", thread_id, len(text or ""))
        delivered = 0
        try:
            async with aclosing(self._fresh_messages(state, thread_id, text)) as fresh:
                async for message in fresh:
                    await self.broadcast(thread_id, message)
                    delivered += 1
                    yield message
        finally:
            self._release(state, token)
            logger.info("[dispatcher:turn] END thread_id=%s new_messages=%d", thread_id, delivered)

    async def _fresh_messages(self, state: ThreadState, thread_id: str, text: str) -> AsyncIterator[Any]:
        """Drain the agent's snapshots, yielding only messages this thread has not seen yet."""
        try:
            async with aclosing(self._agent.invoke_turn(thread_id, text)) as snapshots:
                async for snapshot in snapshots:
                    for message in _snapshot_messages(snapshot):
                        if self._mark_seen(state, thread_id, message):
                            yield message
        except Exception as e:
            with self._lock:
                self.stats.agent_errors += 1
            logger.exception("[dispatcher:turn] agent failed thread_id=%s", thread_id)
            raise AgentInvocationError(thread_id, str(e) or type(e).__name__) from e

    def _mark_seen(self, state: ThreadState, thread_id: str, message: Any) -> bool:
        mid = _message_id(message)
        if mid is None:
            logger.warning("[dispatcher:dedup] skipping message without id thread_id=%s type=%s", thread_id, type(message).__name__)
            return False
        with self._lock:
            if mid in state.seen:
                self.stats.duplicates += 1
                return False
            state.seen.add(mid)
        return True

    # ─── Fan-out ──────────────────────────────────────────

    async def broadcast(self, thread_id: str, message: Any) -> int:
        """Deliver message to every sink subscribed to thread_id right now.

        Sinks are called one after another in subscription order. A failing sink
        is logged and skipped; the rest still receive the message. Returns the
        number of successful deliveries.
        """
        with self._lock:
            state = self._threads.get(thread_id)
            targets = list(state.subscribers) if state else []
        delivered = 0
        for handle in targets:
            async with handle.lock:
                if not handle.active:
                    continue
                try:
                    result = handle.sink(message)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception(
                        "[dispatcher:broadcast] sink failed thread_id=%s message_id=%s",
                        thread_id,
                        _message_id(message),
                    )
                    with self._lock:
                        self.stats.sink_errors += 1
                    continue
            delivered += 1
        with self._lock:
            self.stats.delivered += delivered
        logger.debug("[dispatcher:broadcast] thread_id=%s message_id=%s sinks=%d", thread_id, _message_id(message), delivered)
        return delivered

    # ─── Stats ────────────────────────────────────────────

    def get_stats(self) -> dict:
        """Return dispatcher statistics for monitoring."""
        with self._lock:
            return {
                "threads": len(self._threads),
                "subscribers": sum(len(s.subscribers) for s in self._threads.values()),
                "in_flight": sum(1 for s in self._threads.values() if s.busy),
                "turns": self.stats.turns,
                "delivered": self.stats.delivered,
                "duplicates": self.stats.duplicates,
                "rejected": self.stats.rejected,
                "sink_errors": self.stats.sink_errors,
                "agent_errors": self.stats.agent_errors,
                "started_at": self.stats.started_at.isoformat(),
            }
