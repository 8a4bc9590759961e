"""Tool interface and catalog.

A tool is a name, a model-facing description, a pydantic input model and an
async __call__ returning observation text. The catalog is the only place
tool calls from the reasoning engine are executed:

  - arguments are validated against the input model first; a validation
    failure becomes the observation and the tool is never run,
  - an unknown tool name becomes an "unknown tool" observation,
  - ToolError (and SourceError) raised by a tool becomes its observation.
"""

from __future__ import annotations

import abc
import time
from collections.abc import Iterable
from typing import ClassVar, Protocol

import structlog
from pydantic import BaseModel, ValidationError

from priorauth.agent.cache import ResultCache, cache_key
from priorauth.errors import ToolError
from priorauth.models.schema import ToolCall

logger = structlog.get_logger()


class ToolSpec(Protocol):
    """What the reasoning engine needs to declare a tool."""

    name: str
    description: str
    input_model: type[BaseModel]


class CoverageTool(abc.ABC):
    """Base class for catalog tools.

    Successful results are memoized in the shared ResultCache when one is
    given. Failures are raised as ToolError and therefore never cached.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    input_model: ClassVar[type[BaseModel]]
    cacheable: ClassVar[bool] = True

    def __init__(self, cache: ResultCache | None = None):
        self._cache = cache

    async def __call__(self, args: BaseModel) -> str:
        key = cache_key(self.name, args.model_dump(mode="json", exclude_none=True))
        use_cache = self.cacheable and self._cache is not None
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                logger.info("tool_cache_hit", tool=self.name)
                return cached

        result = await self.run(args)

        if use_cache:
            self._cache.set(key, result)
        return result

    @abc.abstractmethod
    async def run(self, args: BaseModel) -> str:
        """Execute with validated arguments. Raise ToolError on failure."""


def format_validation_error(tool_name: str, exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "arguments"
        problems.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return (
        f"Invalid arguments for tool '{tool_name}': "
        + "; ".join(problems)
        + ". Correct the arguments and call the tool again."
    )


class ToolCatalog:
    """Name -> tool registry with a failure-isolating dispatcher."""

    def __init__(self, tools: Iterable[CoverageTool] = ()):
        self._tools: dict[str, CoverageTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: CoverageTool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Duplicate tool name: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> CoverageTool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def specs(self) -> list[CoverageTool]:
        return list(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def dispatch(self, call: ToolCall) -> str:
        """Run one tool call and return its observation. Never raises for tool failures."""
        tool = self._tools.get(call.name)
        if tool is None:
            logger.warning("unknown_tool", tool=call.name)
            return (
                f"Unknown tool '{call.name}'. Available tools: {', '.join(self._tools)}."
            )

        try:
            args = tool.input_model.model_validate(call.arguments)
        except ValidationError as exc:
            logger.info("tool_arguments_invalid", tool=call.name, errors=exc.error_count())
            return format_validation_error(call.name, exc)

        start = time.perf_counter()
        try:
            result = await tool(args)
        except ToolError as exc:
            logger.info("tool_failed", tool=call.name, error=exc.observation[:200])
            return exc.observation
        except Exception as exc:
            logger.exception("tool_crashed", tool=call.name)
            return f"Tool '{call.name}' failed unexpectedly: {exc}"

        logger.info(
            "tool_complete",
            tool=call.name,
            latency_ms=round((time.perf_counter() - start) * 1000),
            chars=len(result),
        )
        return result
