"""Gemini adapter via Google AI Studio (google-genai SDK).

Implements both adapter protocols:
  - ModelAdapter.generate: single-prompt summaries and schema-constrained
    JSON extraction.
  - ReasoningEngine.generate_turn / stream_turn: function-calling chat turns
    for the agent loop.

Tool input schemas are declared as pydantic models; they are translated into
genai Schema objects here so the rest of the code never touches genai types.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING, Any

import structlog
from google import genai
from google.genai import types as genai_types

from priorauth.errors import AgentEngineError
from priorauth.models.base import ModelAdapter, ReasoningEngine
from priorauth.models.schema import (
    AgentTurn,
    EngineChunk,
    EngineReply,
    ModelResponse,
    ToolCall,
    TurnRole,
)

if TYPE_CHECKING:
    from pydantic import BaseModel

    from priorauth.agent.catalog import ToolSpec

logger = structlog.get_logger()

DEFAULT_MODEL = "gemini-3-flash-preview"

# Pricing per 1M tokens (approximate)
COST_PER_1M_INPUT = 1.25
COST_PER_1M_OUTPUT = 10.00

THINKING_MODELS = {"gemini-3-pro-preview", "gemini-3-pro", "gemini-3-flash-preview"}

_TRANSIENT_MARKERS = ("503", "429", "UNAVAILABLE", "RESOURCE_EXHAUSTED", "high demand")

_JSON_TYPES: dict[str, genai_types.Type] = {
    "string": genai_types.Type.STRING,
    "integer": genai_types.Type.INTEGER,
    "number": genai_types.Type.NUMBER,
    "boolean": genai_types.Type.BOOLEAN,
    "array": genai_types.Type.ARRAY,
    "object": genai_types.Type.OBJECT,
}


class GeminiAdapter(ModelAdapter, ReasoningEngine):
    """Adapter for Gemini models via Google AI Studio."""

    def __init__(
        self,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        max_retries: int = 4,
        retry_backoff: float = 2.0,
        max_wait: float = 30.0,
        max_output_tokens: int = 4096,
    ):
        self._client = genai.Client(api_key=api_key)
        self._model = model
        self._is_thinking_model = model in THINKING_MODELS
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff
        self._max_wait = max_wait
        self._max_output_tokens = max_output_tokens

    @property
    def name(self) -> str:
        return self._model

    # ------------------------------------------------------------------
    # ModelAdapter
    # ------------------------------------------------------------------

    async def generate(
        self,
        prompt: str,
        max_tokens: int = 2048,
        response_schema: type[BaseModel] | None = None,
    ) -> ModelResponse:
        """Generate with Gemini, tracking cost. Retries on transient 503/429 errors."""
        start = time.perf_counter()

        # Thinking models: max_output_tokens covers thinking AND visible output.
        if self._is_thinking_model:
            effective_max_tokens = max(max_tokens, 32768)
        else:
            effective_max_tokens = max_tokens

        config: dict[str, Any] = {"max_output_tokens": effective_max_tokens}
        if response_schema is not None:
            config["response_mime_type"] = "application/json"
            config["response_schema"] = schema_from_model(response_schema)

        response = await self._call_with_retry(contents=prompt, config=config)
        elapsed = (time.perf_counter() - start) * 1000

        input_tokens, output_tokens = _usage(response)
        cost = (input_tokens * COST_PER_1M_INPUT + output_tokens * COST_PER_1M_OUTPUT) / 1_000_000

        return ModelResponse(
            text=response.text or "",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=elapsed,
            estimated_cost=cost,
        )

    async def health_check(self) -> bool:
        """Check if Gemini API is reachable."""
        try:
            response = await asyncio.to_thread(
                self._client.models.generate_content,
                model=self._model,
                contents='Return JSON: {"status": "ok"}',
                config={"response_mime_type": "application/json", "max_output_tokens": 50},
            )
            return response is not None
        except Exception:
            return False

    # ------------------------------------------------------------------
    # ReasoningEngine
    # ------------------------------------------------------------------

    async def generate_turn(
        self,
        system_prompt: str,
        history: Sequence[AgentTurn],
        tools: Sequence[ToolSpec],
    ) -> EngineReply:
        response = await self._call_with_retry(
            contents=history_to_contents(history),
            config=self._chat_config(system_prompt, tools),
        )
        input_tokens, output_tokens = _usage(response)

        if not response.candidates or response.candidates[0].content is None:
            logger.warning("gemini_empty_candidates", model=self._model)
            return EngineReply(input_tokens=input_tokens, output_tokens=output_tokens)

        text, calls = _split_parts(response.candidates[0].content.parts or [])
        return EngineReply(
            content=text,
            tool_calls=calls,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def stream_turn(
        self,
        system_prompt: str,
        history: Sequence[AgentTurn],
        tools: Sequence[ToolSpec],
    ) -> AsyncIterator[EngineChunk]:
        try:
            stream = await self._client.aio.models.generate_content_stream(
                model=self._model,
                contents=history_to_contents(history),
                config=self._chat_config(system_prompt, tools),
            )
            async for chunk in stream:
                input_tokens, output_tokens = _usage(chunk)
                if not chunk.candidates or chunk.candidates[0].content is None:
                    continue
                text, calls = _split_parts(chunk.candidates[0].content.parts or [])
                yield EngineChunk(
                    content=text,
                    tool_calls=calls,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                )
        except AgentEngineError:
            raise
        except Exception as exc:
            raise _engine_error(exc) from exc

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _chat_config(
        self, system_prompt: str, tools: Sequence[ToolSpec]
    ) -> genai_types.GenerateContentConfig:
        declarations = [
            genai_types.FunctionDeclaration(
                name=tool.name,
                description=tool.description,
                parameters=schema_from_model(tool.input_model),
            )
            for tool in tools
        ]
        return genai_types.GenerateContentConfig(
            system_instruction=system_prompt,
            tools=[genai_types.Tool(function_declarations=declarations)] if declarations else None,
            tool_config=(
                genai_types.ToolConfig(
                    function_calling_config=genai_types.FunctionCallingConfig(mode="AUTO")
                )
                if declarations
                else None
            ),
            max_output_tokens=self._max_output_tokens,
        )

    async def _call_with_retry(self, contents: Any, config: Any) -> Any:
        """Wrap genai generate_content with transient-error retry."""
        for attempt in range(self._max_retries):
            try:
                return await asyncio.to_thread(
                    self._client.models.generate_content,
                    model=self._model,
                    contents=contents,
                    config=config,
                )
            except Exception as exc:
                err_str = str(exc)
                is_transient = any(marker in err_str for marker in _TRANSIENT_MARKERS)
                if is_transient and attempt < self._max_retries - 1:
                    wait = min(self._retry_backoff**attempt, self._max_wait)
                    logger.warning(
                        "gemini_api_transient_error",
                        attempt=attempt + 1,
                        wait_seconds=wait,
                        error=err_str[:120],
                    )
                    await asyncio.sleep(wait)
                    continue
                raise _engine_error(exc) from exc

        msg = f"Gemini failed after {self._max_retries} retries"
        raise AgentEngineError(msg, status_code=503)  # pragma: no cover


def _engine_error(exc: Exception) -> AgentEngineError:
    status = getattr(exc, "code", None)
    if not isinstance(status, int) or status < 400:
        status = 500
    return AgentEngineError(f"Gemini request failed: {exc}", status_code=status)


def _usage(response: Any) -> tuple[int, int]:
    meta = getattr(response, "usage_metadata", None)
    if not meta:
        return 0, 0
    return (
        getattr(meta, "prompt_token_count", 0) or 0,
        getattr(meta, "candidates_token_count", 0) or 0,
    )


def _split_parts(parts: Sequence[Any]) -> tuple[str, list[ToolCall]]:
    """Separate visible text from function calls in a model Content."""
    texts: list[str] = []
    calls: list[ToolCall] = []
    for part in parts:
        if getattr(part, "thought", False):
            continue
        fc = getattr(part, "function_call", None)
        if fc:
            call = ToolCall(name=fc.name, arguments=dict(fc.args) if fc.args else {})
            if getattr(fc, "id", None):
                call.id = fc.id
            call.thought_signature = getattr(part, "thought_signature", None)
            calls.append(call)
        elif getattr(part, "text", None):
            texts.append(part.text)
    return "".join(texts), calls


def history_to_contents(history: Sequence[AgentTurn]) -> list[genai_types.Content]:
    """Translate AgentTurn history into genai Contents.

    Consecutive tool observations are grouped into one user Content, since
    every function_call of a model turn must be answered together.
    """
    contents: list[genai_types.Content] = []
    pending: list[genai_types.Part] = []

    def _flush() -> None:
        if pending:
            contents.append(genai_types.Content(role="user", parts=list(pending)))
            pending.clear()

    for turn in history:
        if turn.role == TurnRole.TOOL:
            pending.append(
                genai_types.Part(
                    function_response=genai_types.FunctionResponse(
                        name=turn.tool_name or "",
                        response={"result": turn.content},
                    )
                )
            )
            continue

        _flush()
        if turn.role == TurnRole.USER:
            contents.append(
                genai_types.Content(role="user", parts=[genai_types.Part(text=turn.content)])
            )
            continue

        parts: list[genai_types.Part] = []
        if turn.content:
            parts.append(genai_types.Part(text=turn.content))
        for call in turn.tool_calls:
            parts.append(
                genai_types.Part(
                    function_call=genai_types.FunctionCall(name=call.name, args=call.arguments),
                    thought_signature=call.thought_signature,
                )
            )
        if parts:
            contents.append(genai_types.Content(role="model", parts=parts))

    _flush()
    return contents


def schema_from_model(model: type[BaseModel]) -> genai_types.Schema:
    """Convert a pydantic model's JSON schema into a genai Schema."""
    raw = model.model_json_schema(by_alias=True)
    return _convert_schema(raw, raw.get("$defs", {}))


def _convert_schema(node: dict[str, Any], defs: dict[str, Any]) -> genai_types.Schema:
    if "$ref" in node:
        ref_name = node["$ref"].rsplit("/", 1)[-1]
        merged = {**defs[ref_name], **{k: v for k, v in node.items() if k != "$ref"}}
        return _convert_schema(merged, defs)

    nullable = False
    if "anyOf" in node:
        variants = [v for v in node["anyOf"] if v.get("type") != "null"]
        nullable = len(variants) < len(node["anyOf"])
        base = dict(variants[0]) if variants else {"type": "string"}
        if node.get("description"):
            base.setdefault("description", node["description"])
        schema = _convert_schema(base, defs)
        if nullable:
            schema.nullable = True
        return schema

    kwargs: dict[str, Any] = {}
    json_type = node.get("type")
    if json_type is None and "enum" in node:
        json_type = "string"
    if json_type is None and "properties" in node:
        json_type = "object"
    kwargs["type"] = _JSON_TYPES.get(json_type or "string", genai_types.Type.STRING)

    if node.get("description"):
        kwargs["description"] = node["description"]
    if "enum" in node:
        kwargs["enum"] = [str(v) for v in node["enum"]]
    if json_type == "array" and "items" in node:
        kwargs["items"] = _convert_schema(node["items"], defs)
    if json_type == "object" and "properties" in node:
        kwargs["properties"] = {
            key: _convert_schema(value, defs) for key, value in node["properties"].items()
        }
        if node.get("required"):
            kwargs["required"] = list(node["required"])

    return genai_types.Schema(**kwargs)
