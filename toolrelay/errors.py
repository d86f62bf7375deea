"""Error taxonomy for toolrelay.

Tool-level errors (ToolError and subclasses) are recovered inside the
tool loop and turned into tool_result content. Everything else is
reported to the immediate caller.
"""

from __future__ import annotations


class ToolRelayError(Exception):
    """Base class for all toolrelay errors."""


class ToolError(ToolRelayError):
    """A single tool call failed. Never escapes the loop."""


class UnknownTool(ToolError):
    """The model asked for a tool name that is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool {name} does not exist")
        self.name = name


class ToolInputError(ToolError):
    """Tool input failed schema validation."""


class ToolExecutionFailure(ToolError):
    """An adapter's network call or response parsing failed."""


class ModelUnavailable(ToolRelayError):
    """The model backend could not produce a reply (network, auth, rate limit)."""


class LoopLimitExceeded(ToolRelayError):
    """The model kept requesting tools past the configured max_turns."""

    def __init__(self, max_turns: int) -> None:
        super().__init__(f"Tool loop exceeded {max_turns} rounds without a final answer")
        self.max_turns = max_turns


class NoActiveSession(ToolRelayError):
    """A message arrived for a session id with no live transport."""

    def __init__(self, session_id: str | None) -> None:
        super().__init__(f"No transport found for session {session_id}")
        self.session_id = session_id


class FatalConfiguration(ToolRelayError):
    """Required credentials are missing at startup."""
