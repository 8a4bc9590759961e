"""Think -> act -> observe loop over a ReasoningEngine and a ToolCatalog.

Each model turn either requests tools or is the final answer. All tool calls
of one turn run concurrently; their observations are appended to the history
in the order the engine requested them, regardless of completion order.
Tool failures are observations. Only an engine failure (AgentEngineError)
leaves the loop. Calls beyond the tool budget are answered with a budget
message instead of running. If the turn limit is hit first, the engine gets
one last turn without tools; TURN_LIMIT_MESSAGE is the answer if that fails.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field

import structlog

from priorauth.agent.catalog import ToolCatalog, ToolSpec
from priorauth.agent.prompts import SYSTEM_PROMPT
from priorauth.agent.schema import AgentEvent, AgentResult, AgentStep
from priorauth.models.base import ReasoningEngine
from priorauth.models.schema import AgentTurn, ToolCall

logger = structlog.get_logger()

MAX_TOOL_CALLS_DEFAULT = 12
# Extra model turns beyond the tool budget so the engine can write its summary.
EXTRA_TURNS = 5
# Returned when the engine still has no answer once the turn limit is reached.
TURN_LIMIT_MESSAGE = (
    "The coverage search reached its tool budget before an answer was produced. "
    "Please narrow the question (procedure, diagnosis, state or payer) and try again."
)


@dataclass
class _TurnOutput:
    content: str = ""
    calls: list[ToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0



class AgentLoop:
    def __init__(
        self,
        engine: ReasoningEngine,
        catalog: ToolCatalog,
        system_prompt: str = SYSTEM_PROMPT,
        max_tool_calls: int = MAX_TOOL_CALLS_DEFAULT,
    ):
        self._engine = engine
        self._catalog = catalog
        self._system_prompt = system_prompt
        self._max_tool_calls = max_tool_calls

    async def run(self, history: Sequence[AgentTurn]) -> AgentResult:
        """Run to completion and return the final answer with every step."""
        async for event in self._drive(history, streaming=False):
            if event.kind == "final" and event.result is not None:
                return event.result
        raise RuntimeError("Agent loop ended without a final result")

    def stream(self, history: Sequence[AgentTurn]) -> AsyncIterator[AgentEvent]:
        """Run with a streaming engine, yielding events as they happen."""
        return self._drive(history, streaming=True)

    def _budget_message(self) -> str:
        return (
            f"Tool budget of {self._max_tool_calls} calls exhausted. "
            "Stop searching and summarise findings so far."
        )

    async def _execute(self, calls: list[ToolCall]) -> list[str]:
        results = await asyncio.gather(
            *(self._catalog.dispatch(call) for call in calls), return_exceptions=True
        )
        observations = []
        for call, result in zip(calls, results, strict=True):
            if isinstance(result, str):
                observations.append(result)
            elif isinstance(result, Exception):
                logger.error("tool_dispatch_error", tool=call.name, error=str(result))
                observations.append(f"Tool '{call.name}' failed: {result}")
            else:
                raise result
        return observations

    async def _model_turn(
        self,
        turns: list[AgentTurn],
        tools: Sequence[ToolSpec],
        streaming: bool,
        out: _TurnOutput,
    ) -> AsyncIterator[AgentEvent]:
        """Ask the engine for one turn, filling `out` and yielding text chunks."""
        content_parts: list[str] = []
        if streaming:
            async for chunk in self._engine.stream_turn(self._system_prompt, turns, tools):
                # Streamed usage is cumulative within a turn.
                out.input_tokens = max(out.input_tokens, chunk.input_tokens)
                out.output_tokens = max(out.output_tokens, chunk.output_tokens)
                out.calls.extend(chunk.tool_calls)
                if chunk.content:
                    content_parts.append(chunk.content)
                    yield AgentEvent(kind="model_chunk", content=chunk.content)
        else:
            reply = await self._engine.generate_turn(self._system_prompt, turns, tools)
            out.input_tokens = reply.input_tokens
            out.output_tokens = reply.output_tokens
            out.calls.extend(reply.tool_calls)
            if reply.content:
                content_parts.append(reply.content)
                yield AgentEvent(kind="model_chunk", content=reply.content)
        out.content = "".join(content_parts)

    async def _drive(self, history: Sequence[AgentTurn], streaming: bool) -> AsyncIterator[AgentEvent]:
        run_start = time.perf_counter()
        turns = list(history)
        specs = self._catalog.specs()
        steps: list[AgentStep] = []
        call_index = 0
        iterations = 0
        total_input_tokens = 0
        total_output_tokens = 0
        output = ""
        finished = False

        for _iteration in range(self._max_tool_calls + EXTRA_TURNS):
            iterations += 1
            turn = _TurnOutput()
            async for event in self._model_turn(turns, specs, streaming, turn):
                yield event
            total_input_tokens += turn.input_tokens
            total_output_tokens += turn.output_tokens

            calls = turn.calls
            turns.append(AgentTurn.assistant(turn.content, calls))
            output = turn.content

            if not calls:
                finished = True
                break

            # Calls past the budget are answered with the budget message so
            # every requested call still has an observation.
            remaining = max(self._max_tool_calls - call_index, 0)
            allowed, refused = calls[:remaining], calls[remaining:]
            if refused:
                logger.warning(
                    "agent_tool_budget_exceeded",
                    max_tool_calls=self._max_tool_calls,
                    refused=len(refused),
                )

            for call in allowed:
                yield AgentEvent(kind="tool_start", call=call)

            observations = await self._execute(allowed) if allowed else []
            for call, observation in zip(allowed, observations, strict=True):
                turns.append(AgentTurn.observation(call, observation))
                steps.append(AgentStep(action=call, observation=observation))
                yield AgentEvent(kind="tool_end", call=call, observation=observation)
            turns.extend(AgentTurn.observation(call, self._budget_message()) for call in refused)
            call_index += len(allowed)

        if not finished:
            logger.warning("agent_turn_limit_reached", iterations=iterations)
            # One more turn with no tools declared so the engine has to answer.
            iterations += 1
            turn = _TurnOutput()
            async for event in self._model_turn(turns, [], streaming, turn):
                yield event
            total_input_tokens += turn.input_tokens
            total_output_tokens += turn.output_tokens
            if turn.content and not turn.calls:
                output = turn.content
                turns.append(AgentTurn.assistant(output))
            else:
                logger.warning("agent_no_final_answer", requested_tools=len(turn.calls))
                output = TURN_LIMIT_MESSAGE
                turns.append(AgentTurn.assistant(output))
                yield AgentEvent(kind="model_chunk", content=output)

        latency_ms = (time.perf_counter() - run_start) * 1000
        logger.info(
            "agent_run_complete",
            engine=self._engine.name,
            iterations=iterations,
            tool_calls=call_index,
            input_tokens=total_input_tokens,
            output_tokens=total_output_tokens,
            latency_ms=f"{latency_ms:.0f}",
        )

        result = AgentResult(
            output=output,
            turns=turns,
            steps=steps,
            iterations=iterations,
            tool_calls=call_index,
            input_tokens=total_input_tokens,
            output_tokens=total_output_tokens,
            latency_ms=latency_ms,
        )
        yield AgentEvent(kind="final", result=result)
