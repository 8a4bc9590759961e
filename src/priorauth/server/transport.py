"""Conversions between the chat wire format and agent types."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from priorauth.agent.schema import AgentResult
from priorauth.models.schema import AgentTurn, TurnRole

_KEPT_ROLES = {"user": TurnRole.USER, "assistant": TurnRole.ASSISTANT}


class ChatMessage(BaseModel):
    role: str
    content: str = ""


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)
    show_intermediate_steps: bool = False


def messages_to_history(messages: list[ChatMessage]) -> list[AgentTurn]:
    """Keep only user and assistant messages; intermediate steps are display-only."""
    return [
        AgentTurn(role=_KEPT_ROLES[m.role], content=m.content)
        for m in messages
        if m.role in _KEPT_ROLES
    ]


def turn_to_message(turn: AgentTurn) -> dict[str, Any]:
    if turn.role == TurnRole.USER:
        return {"role": "user", "content": turn.content}
    if turn.role == TurnRole.ASSISTANT:
        message: dict[str, Any] = {"role": "assistant", "content": turn.content}
        if turn.tool_calls:
            message["tool_calls"] = [
                {"id": c.id, "name": c.name, "args": c.arguments} for c in turn.tool_calls
            ]
        return message
    return {
        "role": "tool",
        "content": turn.content,
        "tool_call_id": turn.tool_call_id,
        "name": turn.tool_name,
    }


def steps_payload(result: AgentResult) -> dict[str, Any]:
    """`{messages, steps: [{action, observation}], output}` for step-capture mode."""
    return {
        "messages": [turn_to_message(t) for t in result.turns],
        "steps": [
            {
                "action": {
                    "id": step.action.id,
                    "tool": step.action.name,
                    "tool_input": step.action.arguments,
                },
                "observation": step.observation,
            }
            for step in result.steps
        ],
        "output": result.output,
    }


def error_status(exc: BaseException) -> int:
    """HTTP status carried by the exception (`status_code` or `status`), else 500."""
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and 400 <= value <= 599:
            return value
    return 500
