"""Agent loop result types."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from priorauth.models.schema import AgentTurn, ToolCall


class AgentStep(BaseModel):
    """One executed tool call and the observation fed back to the engine."""

    action: ToolCall
    observation: str


class AgentResult(BaseModel):
    """Complete output of one agent run."""

    output: str
    turns: list[AgentTurn] = Field(default_factory=list)
    steps: list[AgentStep] = Field(default_factory=list)
    iterations: int = 0
    tool_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: float = 0.0


class AgentEvent(BaseModel):
    """Progress event emitted while the loop runs.

    kinds:
      - model_chunk: visible text from the engine (content)
      - tool_start: a tool call is about to run (call)
      - tool_end: a tool call finished (call, observation)
      - final: the run is complete (result)
    """

    kind: Literal["model_chunk", "tool_start", "tool_end", "final"]
    content: str = ""
    call: ToolCall | None = None
    observation: str | None = None
    result: AgentResult | None = None
