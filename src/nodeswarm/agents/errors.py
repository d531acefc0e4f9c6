"""Exception taxonomy for the node-graph engine."""

from typing import List, Optional


class SwarmError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(SwarmError):
    """Graph or agent misconfiguration detected at build time."""


class ProviderError(SwarmError):
    """LLM provider call failed."""


class ProviderTimeout(ProviderError):
    """LLM provider call exceeded its timeout."""


class ToolExecutionError(SwarmError):
    """A tool call failed. Fed back to the agent, never fatal."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class PermissionDenied(SwarmError):
    """A tool call was refused by the permission engine."""

    def __init__(self, tool_name: str, reason: str):
        super().__init__(f"Permission denied for tool '{tool_name}': {reason}")
        self.tool_name = tool_name
        self.reason = reason


class TurnLimitExceeded(SwarmError):
    """The agent loop ran out of turns before producing final content."""

    def __init__(self, agent_name: str, max_turns: int):
        super().__init__(
            f"Agent '{agent_name}' exceeded turn limit of {max_turns} without a final response"
        )
        self.agent_name = agent_name
        self.max_turns = max_turns


class HookError(SwarmError):
    """A hook marked stop_on_error failed."""

    def __init__(self, event: str, message: str, output: Optional[str] = None):
        super().__init__(f"Hook for '{event}' failed: {message}")
        self.event = event
        self.output = output


class DelegationError(SwarmError):
    """Delegation refused (cycle or depth limit)."""

    def __init__(self, message: str, chain: Optional[List[str]] = None):
        super().__init__(message)
        self.chain = list(chain or [])


class RunCancelled(SwarmError):
    """Cooperative cancellation was observed between agent turns."""


class SnapshotError(SwarmError):
    """Base class for snapshot load failures."""


class VersionMismatch(SnapshotError):
    """Snapshot version is not supported."""

    def __init__(self, version, supported):
        super().__init__(
            f"Unsupported snapshot version: {version!r} (supported: {sorted(supported)})"
        )
        self.version = version


class ParseError(SnapshotError):
    """Snapshot document is malformed."""
