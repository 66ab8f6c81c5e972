"""
LangGraph chat agent: call_model → (run_tools → call_model)* → END.

Conversation memory lives in the checkpointer, keyed by thread_id. ChatAgent
streams the graph with stream_mode="values", so every item it yields is the
whole message list so far (a cumulative snapshot, not a delta).
"""

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from datetime import datetime
from typing import Any, Literal

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.graph import END, MessagesState, StateGraph

from agent_stream.agent.llm import chat_with_tools
from agent_stream.agent.tools import AGENT_TOOLS, run_tool_call
from agent_stream.core.config import AGENT_MAX_TOKENS, MAX_AGENTIC_ROUNDS, TRIM_KEEP_LAST

logger = logging.getLogger(__name__)


class AgentState(MessagesState):
    rounds: int  # model calls in the current turn


def _system_prompt() -> str:
    """Rebuilt on every model call so the date is always current."""
    today = datetime.now().strftime("%A, %d %B %Y")
    return (
        "You are a precise, helpful assistant. Answer clearly and concisely.\n\n"
        f"CURRENT DATE: {today}\n\n"
        "Tools:\n"
        "- calculator: use for any numeric calculation that needs precision.\n"
        "- current_date: use when the user asks about the current date or time.\n\n"
        "If you are not sure of an answer, use the tools. Once you have what you need, "
        "give the final answer without calling more tools."
    )


def trim_history(messages: list[BaseMessage], keep_last: int = TRIM_KEEP_LAST) -> list[BaseMessage]:
    """
    Limit what the model sees: first message + last `keep_last`.
    Tool results at the start of the kept tail are dropped (their tool call was trimmed).
    The graph state is not modified; only the prompt is.
    """
    if len(messages) <= keep_last + 1:
        return list(messages)
    recent = list(messages[-keep_last:])
    while recent and isinstance(recent[0], ToolMessage):
        recent.pop(0)
    return [messages[0], *recent]


async def _call_model(state: AgentState) -> dict:
    """Node: ask the LLM for the next step. Tools are withheld on the last allowed round."""
    messages = state.get("messages") or []
    rounds = (state.get("rounds") or 0) + 1
    history = trim_history(messages)
    tools = AGENT_TOOLS if rounds < MAX_AGENTIC_ROUNDS else []
    logger.info("[graph:call_model] IN  messages=%d trimmed=%d round=%d tools=%d", len(messages), len(history), rounds, len(tools))
    reply = await chat_with_tools([SystemMessage(content=_system_prompt()), *history], tools, max_tokens=AGENT_MAX_TOKENS)
    logger.info("[graph:call_model] OUT content_len=%d tool_calls=%d", len(reply.content or ""), len(reply.tool_calls))
    return {"messages": [reply], "rounds": rounds}


def _run_tools(state: AgentState) -> dict:
    """Node: execute every tool call of the last AI message."""
    last = state["messages"][-1]
    results = [run_tool_call(tc) for tc in getattr(last, "tool_calls", None) or []]
    logger.info("[graph:run_tools] OUT results=%d", len(results))
    return {"messages": results}


def _route_after_model(state: AgentState) -> Literal["run_tools", "__end__"]:
    last = (state.get("messages") or [None])[-1]
    if isinstance(last, AIMessage) and last.tool_calls:
        return "run_tools"
    return END


def build_graph(checkpointer: BaseCheckpointSaver | None = None):
    """Build and compile the agent graph."""
    graph = StateGraph(AgentState)

    graph.add_node("call_model", _call_model)
    graph.add_node("run_tools", _run_tools)

    graph.set_entry_point("call_model")
    graph.add_conditional_edges("call_model", _route_after_model)
    graph.add_edge("run_tools", "call_model")

    return graph.compile(checkpointer=checkpointer)


class ChatAgent:
    """Agent collaborator for the session dispatcher: one snapshot stream per turn."""

    def __init__(self, graph: Any):
        self._graph = graph

    async def invoke_turn(self, thread_id: str, text: str) -> AsyncIterator[dict]:
        logger.info("[agent:invoke_turn] START thread_id=%s", thread_id)
        config = {"configurable": {"thread_id": thread_id}}
        initial = {"messages": [HumanMessage(content=text)], "rounds": 0}
        async with aclosing(self._graph.astream(initial, config=config, stream_mode="values")) as snapshots:
            async for snapshot in snapshots:
                yield snapshot
        logger.info("[agent:invoke_turn] END thread_id=%s", thread_id)
