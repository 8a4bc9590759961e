"""Agent module: conversation history -> tool-using loop -> final answer.

Public API:
  AgentLoop    : think/act/observe loop over a ReasoningEngine
  ToolCatalog  : tool registry with validation and failure isolation
  ResultCache  : process-wide tool result cache
"""

from priorauth.agent.cache import ResultCache
from priorauth.agent.catalog import CoverageTool, ToolCatalog
from priorauth.agent.loop import AgentLoop
from priorauth.agent.schema import AgentEvent, AgentResult, AgentStep

__all__ = [
    "AgentEvent",
    "AgentLoop",
    "AgentResult",
    "AgentStep",
    "CoverageTool",
    "ResultCache",
    "ToolCatalog",
]
