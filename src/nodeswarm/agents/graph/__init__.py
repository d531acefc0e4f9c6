"""Workflow graphs: building, node execution and scheduling."""

from .state import ExecutionContext, HaltWorkflow, NodeResult, NodeStatus, SkipExecution
from .dag import AgentBinding, Delegation, NodeBuilder, NodeSpec, WorkflowBuilder, WorkflowGraph
from .node import NodeExecutor, default_prompt
from .orchestrator import Orchestrator, WorkflowResult

__all__ = [
    "AgentBinding",
    "Delegation",
    "ExecutionContext",
    "HaltWorkflow",
    "NodeBuilder",
    "NodeExecutor",
    "NodeResult",
    "NodeSpec",
    "NodeStatus",
    "Orchestrator",
    "SkipExecution",
    "WorkflowBuilder",
    "WorkflowGraph",
    "WorkflowResult",
    "default_prompt",
]
