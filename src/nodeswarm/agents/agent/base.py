"""Collaborator interfaces and agent definitions."""

from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field
from abc import ABC, abstractmethod

from .models import Message, LLMResponse


class LLMClient(ABC):
    """Black-box request/response transport to a language model."""

    @abstractmethod
    async def send(
        self,
        messages: List[Message],
        tool_schemas: List[Dict[str, Any]]
    ) -> LLMResponse:
        """Send the full conversation and active tool schemas.

        Args:
            messages: Conversation, system prompt first if any
            tool_schemas: Tool definitions as ``{name, description, input_schema}``

        Returns:
            Final content or tool calls, with usage

        Raises:
            ProviderError: If the call fails
        """
        pass


class ToolExecutor(ABC):
    """Executes named tools on behalf of agents."""

    @abstractmethod
    async def execute(self, tool_name: str, args: Dict[str, Any]) -> str:
        """Run a tool.

        Raises:
            ToolExecutionError: If the tool fails or is unknown
        """
        pass

    @abstractmethod
    async def tool_info(self, name: str) -> Optional[Dict[str, Any]]:
        """Return ``{"description", "input_schema"}`` or None if absent."""
        pass


@dataclass(frozen=True)
class PermissionDecision:
    """Answer from a permission engine."""
    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls) -> "PermissionDecision":
        return cls(True)

    @classmethod
    def deny(cls, reason: str) -> "PermissionDecision":
        return cls(False, reason)


class PermissionEngine(ABC):
    """Consulted before every tool execution."""

    @abstractmethod
    def authorize(self, tool_name: str, args: Dict[str, Any]) -> PermissionDecision:
        pass


@dataclass(frozen=True)
class MemoryHit:
    """A ranked memory search result."""
    content: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class MemoryEngine(ABC):
    """Persistent memory with hybrid semantic/keyword ranking."""

    @abstractmethod
    def search(
        self,
        query: str,
        semantic_weight: float = 0.5,
        keyword_weight: float = 0.5,
        limit: int = 5
    ) -> List[MemoryHit]:
        pass


@dataclass
class AgentDefinition:
    """Configuration of one LLM-backed agent.

    ``hooks`` maps event names to agent-scoped hook specs; they run after
    the swarm-wide handlers for the same event.
    """
    name: str
    llm: LLMClient
    description: str = ""
    system_prompt: Optional[str] = None
    tools: List[str] = field(default_factory=list)
    max_turns: Optional[int] = None
    hooks: Dict[str, List[Any]] = field(default_factory=dict)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Agent name must not be empty")
