"""Node results, statuses and the per-node execution context."""

from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from dataclasses import dataclass, field
from enum import Enum

from ..agent.models import AgentUsage


class NodeStatus(Enum):
    """Status of a node during a run."""
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (NodeStatus.COMPLETED, NodeStatus.FAILED, NodeStatus.SKIPPED, NodeStatus.CANCELLED)


@dataclass(frozen=True)
class NodeResult:
    """Outcome of one node. Built only once the node is terminal."""
    node: str
    status: NodeStatus
    content: Optional[str] = None
    success: bool = False
    skipped: bool = False
    error: Optional[str] = None
    duration: float = 0.0
    cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    agents_involved: Tuple[str, ...] = ()
    halted: bool = False
    agent_usage: Mapping[str, AgentUsage] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @classmethod
    def failed(cls, node: str, error: str, duration: float = 0.0, **usage) -> "NodeResult":
        return cls(node=node, status=NodeStatus.FAILED, error=error, duration=duration, **usage)

    @classmethod
    def skipped_by_dependency(cls, node: str, reason: str) -> "NodeResult":
        return cls(node=node, status=NodeStatus.SKIPPED, skipped=True, error=reason)

    @classmethod
    def cancelled(cls, node: str, reason: str, duration: float = 0.0, **usage) -> "NodeResult":
        return cls(node=node, status=NodeStatus.CANCELLED, error=reason, duration=duration, **usage)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": self.node,
            "status": self.status.value,
            "content": self.content,
            "success": self.success,
            "skipped": self.skipped,
            "error": self.error,
            "duration": round(self.duration, 3),
            "cost": round(self.cost, 6),
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "agents_involved": list(self.agents_involved),
            "halted": self.halted,
            "agent_usage": {name: usage.to_dict() for name, usage in self.agent_usage.items()}
        }


@dataclass(frozen=True)
class SkipExecution:
    """Input-transform directive: bypass the node body with ``content``."""
    content: str


@dataclass(frozen=True)
class HaltWorkflow:
    """Transform directive: complete this node with ``content`` and stop the run."""
    content: str


Directive = Union[SkipExecution, HaltWorkflow]


@dataclass(frozen=True)
class ExecutionContext:
    """What a transform sees of the run.

    ``all_results`` is a read-only view of the results of nodes that were
    terminal when this node started. ``content`` and ``response`` are set
    only during the output-transform phase.
    """
    original_prompt: str
    node_name: str
    dependencies: Tuple[str, ...] = ()
    all_results: Mapping[str, NodeResult] = field(default_factory=lambda: MappingProxyType({}))
    content: Optional[str] = None
    response: Optional[Any] = None  # AgentResponse of the lead agent
    phase: str = "input"

    @classmethod
    def for_input(
        cls,
        original_prompt: str,
        node_name: str,
        dependencies: Tuple[str, ...],
        results: Mapping[str, NodeResult]
    ) -> "ExecutionContext":
        return cls(
            original_prompt=original_prompt,
            node_name=node_name,
            dependencies=tuple(dependencies),
            all_results=MappingProxyType(dict(results))
        )

    def for_output(self, content: Optional[str], response: Optional[Any] = None) -> "ExecutionContext":
        return ExecutionContext(
            original_prompt=self.original_prompt,
            node_name=self.node_name,
            dependencies=self.dependencies,
            all_results=self.all_results,
            content=content,
            response=response,
            phase="output"
        )

    @property
    def previous_result(self) -> Union[None, NodeResult, Mapping[str, NodeResult]]:
        """The single predecessor's result, a mapping for several, None for none."""
        if not self.dependencies:
            return None
        if len(self.dependencies) == 1:
            return self.all_results.get(self.dependencies[0])
        return MappingProxyType({name: self.all_results[name] for name in self.dependencies if name in self.all_results})

    @property
    def dependency_contents(self) -> List[Tuple[str, str]]:
        return [
            (name, self.all_results[name].content or "")
            for name in self.dependencies
            if name in self.all_results
        ]

    def skip_execution(self, content: str) -> SkipExecution:
        if content is None:
            raise ValueError(f"skip_execution requires content (node '{self.node_name}')")
        return SkipExecution(str(content))

    def halt_workflow(self, content: str) -> HaltWorkflow:
        if content is None:
            raise ValueError(f"halt_workflow requires content (node '{self.node_name}')")
        return HaltWorkflow(str(content))
