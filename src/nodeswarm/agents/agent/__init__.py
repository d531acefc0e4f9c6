"""Agents, collaborators and the session manager."""

# Core data models
from .models import (
    AgentResponse,
    AgentUsage,
    AgentSessionState,
    LLMResponse,
    Message,
    TokenUsage,
    ToolCall
)

# Collaborator contracts and definitions
from .base import (
    AgentDefinition,
    LLMClient,
    MemoryEngine,
    MemoryHit,
    PermissionDecision,
    PermissionEngine,
    ToolExecutor
)
from .registry import Registry
from .cancellation import CancellationToken

# Tools
from .tool_base import BaseTool, StructuredTool, ToolCatalog, ToolStub, tool
from .tools import LocalToolExecutor
from .mcp_client import MCPServerConfig, MCPToolExecutor

# Permissions and memory
from .permissions import AllowAllPermissions, PermissionRule, RulePermissionEngine
from .memory import InMemoryMemoryEngine, create_memory_search_tool

# LLM client
from .openai_client import OpenAIChatClient
from .factory import create_agent

# Session manager
from .session import AgentSessionManager, delegation_tool_name


__all__ = [
    # Data models
    "AgentResponse",
    "AgentUsage",
    "AgentSessionState",
    "LLMResponse",
    "Message",
    "TokenUsage",
    "ToolCall",
    # Contracts
    "AgentDefinition",
    "LLMClient",
    "MemoryEngine",
    "MemoryHit",
    "PermissionDecision",
    "PermissionEngine",
    "ToolExecutor",
    "Registry",
    "CancellationToken",
    # Tools
    "BaseTool",
    "StructuredTool",
    "ToolCatalog",
    "ToolStub",
    "tool",
    "LocalToolExecutor",
    "MCPServerConfig",
    "MCPToolExecutor",
    # Permissions and memory
    "AllowAllPermissions",
    "PermissionRule",
    "RulePermissionEngine",
    "InMemoryMemoryEngine",
    "create_memory_search_tool",
    # LLM
    "OpenAIChatClient",
    "create_agent",
    # Sessions
    "AgentSessionManager",
    "delegation_tool_name",
]
