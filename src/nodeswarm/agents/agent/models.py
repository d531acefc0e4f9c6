"""Data models for agent sessions."""

from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field

ROLES = ("user", "assistant", "tool", "system")


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": dict(self.arguments)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCall":
        return cls(id=data["id"], name=data["name"], arguments=dict(data.get("arguments") or {}))


@dataclass(frozen=True)
class Message:
    """One entry in a conversation.

    Assistant messages carry ``tool_calls`` when the model requested tools;
    tool messages carry the ``tool_call_id`` they answer.
    """
    role: str
    content: Optional[str] = None
    tool_calls: tuple = ()
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Invalid message role: {self.role!r}")

    @property
    def tool_call_metadata(self) -> Optional[Dict[str, Any]]:
        """Tool-call fields as a single dict, or None for plain messages."""
        metadata: Dict[str, Any] = {}
        if self.tool_calls:
            metadata["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        if self.tool_call_id is not None:
            metadata["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            metadata["name"] = self.name
        return metadata or None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        metadata = self.tool_call_metadata
        if metadata is not None:
            data["tool_call_metadata"] = metadata
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        metadata = data.get("tool_call_metadata") or {}
        return cls(
            role=data["role"],
            content=data.get("content"),
            tool_calls=tuple(ToolCall.from_dict(c) for c in metadata.get("tool_calls", [])),
            tool_call_id=metadata.get("tool_call_id"),
            name=metadata.get("name")
        )


@dataclass(frozen=True)
class TokenUsage:
    """Token usage and cost for one LLM call."""
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class LLMResponse:
    """Response from the LLM collaborator: final content or tool calls."""
    content: Optional[str] = None
    tool_calls: tuple = ()
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class AgentSessionState:
    """Conversation state owned by the session manager for one agent."""
    agent_name: str
    messages: List[Message] = field(default_factory=list)
    total_cost: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    pending_context: List[str] = field(default_factory=list)

    def fork(self, fresh: bool = False) -> "AgentSessionState":
        """Working copy for one invocation (empty history when ``fresh``)."""
        return AgentSessionState(
            agent_name=self.agent_name,
            messages=[] if fresh else list(self.messages),
            pending_context=list(self.pending_context)
        )

    def append(self, message: Message) -> None:
        self.messages.append(message)

    def add_usage(self, usage: TokenUsage) -> None:
        self.total_cost += usage.cost
        self.total_input_tokens += usage.input_tokens
        self.total_output_tokens += usage.output_tokens

    def take_pending_context(self) -> List[str]:
        pending, self.pending_context = self.pending_context, []
        return pending

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens


@dataclass
class AgentUsage:
    """Usage attributed to one agent."""
    cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    llm_requests: int = 0
    tool_calls: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, other: "AgentUsage") -> None:
        self.cost += other.cost
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.llm_requests += other.llm_requests
        self.tool_calls += other.tool_calls

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cost": round(self.cost, 6),
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "llm_requests": self.llm_requests,
            "tool_calls": self.tool_calls
        }


@dataclass
class AgentResponse:
    """Outcome of one agent invocation."""
    agent: str
    content: str
    cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    turns: int = 0
    agents_involved: List[str] = field(default_factory=list)
    usage_by_agent: Dict[str, AgentUsage] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def record_turn(self, usage: TokenUsage, tool_calls: int = 0) -> None:
        """Add one model request made by this response's own agent."""
        self.cost += usage.cost
        self.input_tokens += usage.input_tokens
        self.output_tokens += usage.output_tokens
        self.usage_by_agent.setdefault(self.agent, AgentUsage()).add(AgentUsage(
            cost=usage.cost,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            llm_requests=1,
            tool_calls=tool_calls
        ))

    def merge_usage(self, other: "AgentResponse") -> None:
        """Fold a delegate's usage into this response."""
        self.cost += other.cost
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        for name in other.agents_involved:
            if name not in self.agents_involved:
                self.agents_involved.append(name)
        for name, usage in other.usage_by_agent.items():
            self.usage_by_agent.setdefault(name, AgentUsage()).add(usage)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent": self.agent,
            "content": self.content,
            "cost": round(self.cost, 6),
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "turns": self.turns,
            "agents_involved": list(self.agents_involved),
            "usage_by_agent": {name: usage.to_dict() for name, usage in self.usage_by_agent.items()}
        }
