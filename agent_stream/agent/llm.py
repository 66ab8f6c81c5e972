"""
Agent LLM: OpenAI (primary, with tool calling) or Hugging Face (fallback, text only).
When OPENAI_API_KEY is set, uses OpenAI chat completions; otherwise uses the HF router.
"""

import json
import logging
from typing import Any

import httpx
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from openai import APIConnectionError, AsyncOpenAI

from agent_stream.core.config import (
    HF_API_KEY,
    HF_CHAT_URL,
    HF_LLM_MODEL,
    LLM_API_TIMEOUT,
    OPENAI_API_KEY,
    OPENAI_LLM_MODEL,
)
from agent_stream.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)


def to_openai_messages(messages: list[BaseMessage]) -> list[dict[str, Any]]:
    """Convert LangChain messages into OpenAI chat-completions dicts (tool calls included)."""
    out: list[dict[str, Any]] = []
    for m in messages:
        content = m.content if isinstance(m.content, str) else json.dumps(m.content, default=str)
        if isinstance(m, SystemMessage):
            out.append({"role": "system", "content": content})
        elif isinstance(m, HumanMessage):
            out.append({"role": "user", "content": content})
        elif isinstance(m, AIMessage):
            msg: dict[str, Any] = {"role": "assistant", "content": content or ""}
            if m.tool_calls:
                msg["tool_calls"] = [
                    {
                        "id": tc.get("id") or "",
                        "type": "function",
                        "function": {"name": tc["name"], "arguments": json.dumps(tc.get("args") or {})},
                    }
                    for tc in m.tool_calls
                ]
            out.append(msg)
        elif isinstance(m, ToolMessage):
            out.append({"role": "tool", "tool_call_id": m.tool_call_id, "content": content})
        else:
            logger.debug("[llm] skipping unsupported message type=%s", type(m).__name__)
    return out


def _parse_tool_calls(raw_tool_calls: list[Any]) -> list[dict[str, Any]]:
    tool_calls = []
    for tc in raw_tool_calls:
        fn = getattr(tc, "function", None)
        if not fn:
            continue
        fargs = getattr(fn, "arguments", None) or "{}"
        try:
            args = json.loads(fargs) if isinstance(fargs, str) else fargs
        except json.JSONDecodeError:
            args = {}
        tool_calls.append({"id": getattr(tc, "id", None) or "", "name": getattr(fn, "name", None) or "", "args": args})
    return tool_calls


async def _call_openai(
    messages: list[dict[str, Any]],
    tools: list[dict[str, Any]],
    max_tokens: int,
) -> AIMessage:
    kwargs: dict[str, Any] = {"model": OPENAI_LLM_MODEL, "messages": messages, "max_tokens": max_tokens}
    if tools:
        kwargs["tools"] = tools
    try:
        async with AsyncOpenAI(api_key=OPENAI_API_KEY, timeout=LLM_API_TIMEOUT) as client:
            response = await client.chat.completions.create(**kwargs)
    except APIConnectionError as e:
        raise ServiceUnavailableError(f"OpenAI chat request failed: {e}") from e
    msg = response.choices[0].message if response.choices else None
    if not msg:
        return AIMessage(content="")
    content = (getattr(msg, "content", None) or "").strip()
    tool_calls = _parse_tool_calls(getattr(msg, "tool_calls", None) or [])
    if tool_calls:
        logger.info("[llm:openai] OUT tool_calls=%s", [t["name"] for t in tool_calls])
    logger.info("[llm:openai] OUT content_len=%d", len(content))
    return AIMessage(content=content, tool_calls=tool_calls)


async def _call_hf(messages: list[dict[str, Any]], max_tokens: int) -> AIMessage:
    """Hugging Face router chat completions. No tool support; tool traffic is dropped from the prompt."""
    plain = [m for m in messages if m["role"] in ("system", "user", "assistant") and m.get("content")]
    headers = {"Authorization": f"Bearer {HF_API_KEY}", "Content-Type": "application/json"}
    payload = {"model": HF_LLM_MODEL, "messages": plain, "max_tokens": max_tokens}
    try:
        async with httpx.AsyncClient(timeout=LLM_API_TIMEOUT) as client:
            response = await client.post(HF_CHAT_URL, json=payload, headers=headers)
    except httpx.HTTPError as e:
        raise ServiceUnavailableError(f"Hugging Face chat request failed: {e}") from e
    if response.status_code != 200:
        logger.warning("[llm:hf] HF LLM error %s: %s", response.status_code, response.text[:200])
        raise ServiceUnavailableError(f"Hugging Face chat returned {response.status_code}")
    data = response.json()
    choices = data.get("choices") or []
    out = ""
    if choices and isinstance(choices[0], dict):
        out = ((choices[0].get("message") or {}).get("content") or "").strip()
    logger.info("[llm:hf] OUT response_len=%d", len(out))
    return AIMessage(content=out)


async def chat_with_tools(
    messages: list[BaseMessage],
    tools: list[dict[str, Any]],
    max_tokens: int = 512,
) -> AIMessage:
    """
    Call the chat model with tools and return its reply as an AIMessage.
    If the reply carries tool_calls, the caller should run them and call again with the results.
    Falls back to Hugging Face (no tools) when OPENAI_API_KEY is not set.
    Raises ServiceUnavailableError when no LLM is configured.
    """
    payload = to_openai_messages(messages)
    logger.info("[llm] IN  messages=%d tools=%d max_tokens=%d", len(payload), len(tools), max_tokens)
    if OPENAI_API_KEY:
        return await _call_openai(payload, tools, max_tokens)
    if HF_API_KEY:
        return await _call_hf(payload, max_tokens)
    raise ServiceUnavailableError("No LLM configured: set OPENAI_API_KEY or HF_API_KEY in .env")
