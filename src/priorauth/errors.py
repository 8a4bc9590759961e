"""Exception types for the coverage agent.

Recoverable failures (ToolError and subclasses) never leave the tool
boundary: the catalog turns them into observation text. AgentEngineError is
the only failure that ends a request.
"""

from __future__ import annotations


class ToolError(Exception):
    """A tool could not produce a result; the message is the observation."""

    def __init__(self, observation: str):
        super().__init__(observation)
        self.observation = observation


class SourceError(ToolError):
    """An upstream coverage source returned non-2xx, timed out, or was unreachable."""

    def __init__(self, observation: str, status_code: int | None = None):
        super().__init__(observation)
        self.status_code = status_code


class AgentEngineError(Exception):
    """The reasoning engine call itself failed (network, auth, quota)."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code
