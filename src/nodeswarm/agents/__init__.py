"""Node-graph execution engine for teams of LLM agents."""

from .errors import (
    ConfigurationError,
    DelegationError,
    HookError,
    ParseError,
    PermissionDenied,
    ProviderError,
    ProviderTimeout,
    RunCancelled,
    SnapshotError,
    SwarmError,
    ToolExecutionError,
    TurnLimitExceeded,
    VersionMismatch,
)
from .swarm import Swarm

__all__ = [
    "ConfigurationError",
    "DelegationError",
    "HookError",
    "ParseError",
    "PermissionDenied",
    "ProviderError",
    "ProviderTimeout",
    "RunCancelled",
    "SnapshotError",
    "Swarm",
    "SwarmError",
    "ToolExecutionError",
    "TurnLimitExceeded",
    "VersionMismatch",
]
