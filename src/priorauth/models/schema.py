"""Conversation and model-response types shared by every model adapter.

The agent loop speaks to the reasoning engine exclusively in these types, so
any engine (Gemini, a test fake, another provider) only has to translate
AgentTurn history into its own wire format and back.
"""

from __future__ import annotations

import enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class TurnRole(enum.StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


def _call_id() -> str:
    return f"call_{uuid4().hex[:12]}"


class ToolCall(BaseModel):
    """One tool invocation requested by the reasoning engine."""

    id: str = Field(default_factory=_call_id)
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    # Opaque provider token that must be echoed back with the call (Gemini 3).
    thought_signature: bytes | None = Field(default=None, exclude=True, repr=False)


class AgentTurn(BaseModel):
    """A single entry in the append-only conversation history."""

    role: TurnRole
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: str | None = None  # set on TOOL turns
    tool_name: str | None = None  # set on TOOL turns

    @classmethod
    def user(cls, content: str) -> AgentTurn:
        return cls(role=TurnRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCall] | None = None) -> AgentTurn:
        return cls(role=TurnRole.ASSISTANT, content=content, tool_calls=tool_calls or [])

    @classmethod
    def observation(cls, call: ToolCall, content: str) -> AgentTurn:
        return cls(
            role=TurnRole.TOOL,
            content=content,
            tool_call_id=call.id,
            tool_name=call.name,
        )


class ModelResponse(BaseModel):
    """Raw model API response metadata."""

    text: str
    input_tokens: int
    output_tokens: int
    latency_ms: float
    estimated_cost: float
    token_count_estimated: bool = False


class EngineReply(BaseModel):
    """One reasoning-engine turn: either final content or tool-call requests."""

    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class EngineChunk(BaseModel):
    """Incremental piece of a streamed engine turn.

    Content chunks carry text; the tool calls of a turn may arrive in any
    chunk and are accumulated by the consumer.
    """

    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
