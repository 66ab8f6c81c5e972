"""
Integration tests for the HTTP layer: POST /message error mapping, /stats, and
the SSE generator behind GET /stream.

The dispatcher is overridden with one driving a scripted agent, so tests do not
require an LLM.
"""

import asyncio
import json

import httpx
import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from agent_stream.api.handlers import _background_turns, get_dispatcher, handle_message, sse_events
from agent_stream.core.errors import ServiceUnavailableError
from agent_stream.main import app
from agent_stream.services.dispatcher import SessionDispatcher
from conftest import ScriptedAgent, msg


@pytest.fixture
def dispatcher() -> SessionDispatcher:
    return SessionDispatcher(ScriptedAgent([[msg("h1", "hello", "human")], [msg("h1", "hello", "human"), msg("a1", "hi")]]))


@pytest.fixture
def client(dispatcher: SessionDispatcher):
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()


class FakeRequest:
    """Stands in for starlette's Request: reports a disconnect after N checks."""

    def __init__(self, connected_checks: int = 0) -> None:
        self.remaining = connected_checks

    async def is_disconnected(self) -> bool:
        if self.remaining > 0:
            self.remaining -= 1
            return False
        return True


# --- system ---

def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_stats_reports_dispatcher_counters(client: TestClient, dispatcher: SessionDispatcher) -> None:
    dispatcher.subscribe("t1", lambda m: None)
    response = client.get("/stats")
    assert response.status_code == 200
    data = response.json()
    assert data["threads"] == 1
    assert data["subscribers"] == 1
    assert data["in_flight"] == 0


def test_missing_dispatcher_returns_503() -> None:
    app.dependency_overrides.clear()
    app.state.dispatcher = None
    response = TestClient(app).get("/stats")
    assert response.status_code == 503


# --- POST /message ---

def test_post_message_delivers_to_subscribers(client: TestClient, dispatcher: SessionDispatcher) -> None:
    received: list = []
    dispatcher.subscribe("t1", received.append)

    response = client.post("/message", params={"thread_id": "t1"}, json={"message": "hello"})

    assert response.status_code == 200
    assert response.json() == {"status": "completed", "thread_id": "t1"}
    assert [m["id"] for m in received] == ["h1", "a1"]


def test_post_message_uses_default_thread(client: TestClient, dispatcher: SessionDispatcher) -> None:
    response = client.post("/message", json={"message": "hello"})
    assert response.status_code == 200
    assert response.json()["thread_id"] == "chat-id-XXX"


def test_post_message_empty_body_returns_422(client: TestClient) -> None:
    response = client.post("/message", json={"message": ""})
    assert response.status_code == 422


def test_post_message_agent_failure_returns_502(client: TestClient) -> None:
    failing = SessionDispatcher(ScriptedAgent([RuntimeError("upstream exploded")]))
    app.dependency_overrides[get_dispatcher] = lambda: failing
    response = client.post("/message", params={"thread_id": "t1"}, json={"message": "hello"})
    assert response.status_code == 502
    assert "upstream exploded" in response.json()["detail"]


def test_post_message_llm_unavailable_returns_503(client: TestClient) -> None:
    failing = SessionDispatcher(ScriptedAgent([ServiceUnavailableError("No LLM configured")]))
    app.dependency_overrides[get_dispatcher] = lambda: failing
    response = client.post("/message", params={"thread_id": "t1"}, json={"message": "hello"})
    assert response.status_code == 503
    assert response.json()["detail"] == "No LLM configured"


class BlockingAgent:
    """Holds its turn open until release is set, so the thread stays busy."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def invoke_turn(self, thread_id: str, text: str):
        self.started.set()
        await self.release.wait()
        yield {"messages": [msg("h1", text, "human"), msg("a1", "done")]}


@pytest.mark.asyncio
async def test_post_message_while_turn_in_flight_returns_409() -> None:
    agent = BlockingAgent()
    busy = SessionDispatcher(agent)
    app.dependency_overrides[get_dispatcher] = lambda: busy
    try:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            first = asyncio.create_task(ac.post("/message", params={"thread_id": "t1"}, json={"message": "one"}))
            await asyncio.wait_for(agent.started.wait(), timeout=5)
            waiting = await ac.post("/message", params={"thread_id": "t1"}, json={"message": "two"})
            background = await ac.post("/message", params={"thread_id": "t1", "wait": "false"}, json={"message": "three"})
            agent.release.set()
            done = await asyncio.wait_for(first, timeout=5)
    finally:
        agent.release.set()
        app.dependency_overrides.clear()

    assert waiting.status_code == 409
    assert background.status_code == 409
    assert done.status_code == 200
    assert done.json() == {"status": "completed", "thread_id": "t1"}
    assert busy.get_stats()["rejected"] == 2


@pytest.mark.asyncio
async def test_background_submits_back_to_back_second_is_409() -> None:
    agent = ScriptedAgent([[msg("h1", "one", "human"), msg("a1")]])
    d = SessionDispatcher(agent)
    received: list = []
    d.subscribe("t1", received.append)

    first = await handle_message(d, "t1", "one", wait=False)
    with pytest.raises(HTTPException) as exc:
        await handle_message(d, "t1", "two", wait=False)
    await asyncio.gather(*list(_background_turns))

    assert first.status == "accepted"
    assert exc.value.status_code == 409
    assert agent.calls == [("t1", "one")]
    assert [m["id"] for m in received] == ["h1", "a1"]
    assert not d.is_busy("t1")



def test_post_message_background_returns_202(client: TestClient) -> None:
    idle = SessionDispatcher(ScriptedAgent([]))
    app.dependency_overrides[get_dispatcher] = lambda: idle
    response = client.post("/message", params={"thread_id": "t1", "wait": "false"}, json={"message": "hi"})
    assert response.status_code == 202
    assert response.json() == {"status": "accepted", "thread_id": "t1"}


# --- SSE ---

@pytest.mark.asyncio
async def test_sse_events_streams_messages_and_unsubscribes(dispatcher: SessionDispatcher) -> None:
    events = sse_events(FakeRequest(), dispatcher, "t1", keepalive=5)

    first = await events.__anext__()
    assert first.startswith("event: connected\n")
    assert dispatcher.subscriber_count("t1") == 1

    await dispatcher.submit("t1", "hello")
    frames = [await events.__anext__(), await events.__anext__()]
    payloads = [json.loads(f.split("data: ", 1)[1]) for f in frames]
    assert all(f.startswith("event: message\n") for f in frames)
    assert [p["id"] for p in payloads] == ["h1", "a1"]
    assert payloads[1]["content"] == "hi"
    assert payloads[1]["type"] == "ai"

    await events.aclose()
    assert dispatcher.subscriber_count("t1") == 0


@pytest.mark.asyncio
async def test_sse_events_keepalive_then_disconnect(dispatcher: SessionDispatcher) -> None:
    events = sse_events(FakeRequest(connected_checks=1), dispatcher, "t1", keepalive=0.01)

    frames = [frame async for frame in events]

    assert frames[0].startswith("event: connected")
    assert frames[1:] == [": keepalive\n\n"]
    assert dispatcher.subscriber_count("t1") == 0
