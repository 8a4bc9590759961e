"""Base protocols for model adapters.

Two capabilities are kept apart:
  - ModelAdapter: single-prompt text or JSON generation (summaries, extraction).
  - ReasoningEngine: tool-aware chat turns that drive the agent loop.

A concrete provider may implement both.
"""

from __future__ import annotations

import abc
from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING

from priorauth.models.schema import EngineChunk

if TYPE_CHECKING:
    from pydantic import BaseModel

    from priorauth.agent.catalog import ToolSpec
    from priorauth.models.schema import AgentTurn, EngineReply, ModelResponse


class ModelAdapter(abc.ABC):
    """Abstract base for single-prompt LLM adapters."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Model name for logging."""

    @abc.abstractmethod
    async def generate(
        self,
        prompt: str,
        max_tokens: int = 2048,
        response_schema: type[BaseModel] | None = None,
    ) -> ModelResponse:
        """Send prompt to model and return structured response.

        When response_schema is given the adapter must request JSON output
        constrained to that schema.
        """

    @abc.abstractmethod
    async def health_check(self) -> bool:
        """Return True if model endpoint is reachable."""


class ReasoningEngine(abc.ABC):
    """Abstract base for the tool-calling engine behind the agent loop."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Model name for logging."""

    @abc.abstractmethod
    async def generate_turn(
        self,
        system_prompt: str,
        history: Sequence[AgentTurn],
        tools: Sequence[ToolSpec],
    ) -> EngineReply:
        """Produce the next assistant turn: final content or tool calls."""

    async def stream_turn(
        self,
        system_prompt: str,
        history: Sequence[AgentTurn],
        tools: Sequence[ToolSpec],
    ) -> AsyncIterator[EngineChunk]:
        """Stream the next assistant turn.

        Engines without native streaming fall back to one chunk holding the
        whole reply.
        """
        reply = await self.generate_turn(system_prompt, history, tools)
        yield EngineChunk(
            content=reply.content,
            tool_calls=reply.tool_calls,
            input_tokens=reply.input_tokens,
            output_tokens=reply.output_tokens,
        )
