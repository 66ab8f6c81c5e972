"""
Shared fixtures: a scripted agent that replays cumulative snapshots, so tests
need neither an LLM nor a LangGraph checkpointer.
"""

import asyncio
from typing import Any

import pytest

from agent_stream.services.dispatcher import SessionDispatcher


def msg(mid: str, content: str = "", type_: str = "ai") -> dict[str, Any]:
    return {"id": mid, "type": type_, "content": content or mid}


class ScriptedAgent:
    """
    Each call to invoke_turn consumes the next scripted turn: a list of snapshots,
    where a snapshot is a list of messages or an Exception to raise at that point.
    """

    def __init__(self, *turns: list) -> None:
        self.turns = list(turns)
        self.calls: list[tuple[str, str]] = []

    async def invoke_turn(self, thread_id: str, text: str):
        self.calls.append((thread_id, text))
        snapshots = self.turns.pop(0) if self.turns else []
        for snap in snapshots:
            await asyncio.sleep(0)
            if isinstance(snap, Exception):
                raise snap
            yield {"messages": list(snap)}


@pytest.fixture
def make_dispatcher():
    """Build a SessionDispatcher over a ScriptedAgent: make_dispatcher(turn1, turn2, ...)."""

    def _make(*turns: list) -> SessionDispatcher:
        return SessionDispatcher(ScriptedAgent(*turns))

    return _make
