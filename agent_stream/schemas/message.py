"""Schemas for the message and stream endpoints."""

from collections.abc import Mapping
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class MessageRequest(BaseModel):
    """Request body for POST /message. History is kept server-side per thread_id."""

    message: str = Field(..., min_length=1, description="User message for the agent.")


class MessageResponse(BaseModel):
    """Response for POST /message."""

    status: Literal["completed", "accepted"] = Field(..., description="'completed' once the turn ran; 'accepted' when it runs in the background.")
    thread_id: str = Field(..., description="Conversation the message was sent to.")


class StreamMessage(BaseModel):
    """Payload of one SSE `message` event: a single conversation message."""

    id: str
    type: str = Field(..., description="human, ai, tool or system.")
    content: Any = ""
    name: Optional[str] = None
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_message(cls, message: Any) -> "StreamMessage":
        """Build from a LangChain message or a plain {"id", "content", ...} mapping."""
        if isinstance(message, Mapping):
            get = message.get
        else:
            def get(key: str, default: Any = None) -> Any:
                return getattr(message, key, default)
        tool_calls = [
            {"id": tc.get("id"), "name": tc.get("name"), "args": tc.get("args") or {}}
            for tc in (get("tool_calls") or [])
        ]
        return cls(
            id=str(get("id")),
            type=get("type") or "message",
            content=get("content", ""),
            name=get("name"),
            tool_calls=tool_calls,
        )
