"""Swarm: a built workflow wired to sessions, hooks and the scheduler."""

from pathlib import Path
from typing import List, Optional, Sequence, Union
from loguru import logger

from ..settings import Settings
from .agent.base import PermissionEngine, ToolExecutor
from .agent.models import Message
from .agent.session import AgentSessionManager
from .agent.tool_base import ToolCatalog
from .hooks import HookDispatcher
from .graph.dag import WorkflowGraph
from .graph.node import NodeExecutor
from .graph.orchestrator import Orchestrator, WorkflowResult
from .snapshot import RestoreResult, Snapshot, restore_snapshot, take_snapshot


class Swarm:
    """Runs a ``WorkflowGraph`` and owns its agents' conversations.

    Sessions persist across ``execute`` calls on the same swarm; use
    ``snapshot``/``restore`` to carry them across processes.

    Example:
        swarm = Swarm(graph, tool_executor=LocalToolExecutor(tools))
        result = await swarm.execute("Build a todo app")
        swarm.snapshot().write_to_file("state.json")
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        tool_executor: Optional[ToolExecutor] = None,
        permissions: Optional[PermissionEngine] = None,
        hooks: Optional[HookDispatcher] = None,
        settings: Optional[Settings] = None
    ):
        self.graph = graph
        self.settings = settings or Settings()
        self.hooks = hooks or HookDispatcher(default_timeout=self.settings.hook_timeout_seconds)
        self.sessions = AgentSessionManager(
            definitions=graph.agents,
            tool_catalog=ToolCatalog(tool_executor),
            permissions=permissions,
            hooks=self.hooks,
            settings=self.settings
        )
        self.executor = NodeExecutor(self.sessions, hooks=self.hooks, settings=self.settings)
        self.orchestrator = Orchestrator(graph, self.executor, hooks=self.hooks, settings=self.settings)

    @property
    def name(self) -> str:
        return self.graph.name

    @property
    def agent_names(self) -> List[str]:
        return self.sessions.agent_names

    def has_agent(self, name: str) -> bool:
        return self.sessions.has_agent(name)

    def history(self, name: str) -> List[Message]:
        return self.sessions.history(name)

    def replace_history(self, name: str, messages: Sequence[Message]) -> None:
        self.sessions.replace_history(name, messages)

    async def execute(self, prompt: str) -> WorkflowResult:
        logger.info(f"[SWARM:{self.name}] Executing prompt ({len(prompt)} chars)")
        return await self.orchestrator.run(prompt)

    def cancel(self, reason: str = "cancelled") -> None:
        self.orchestrator.cancel(reason)

    def snapshot(self) -> Snapshot:
        return take_snapshot(self)

    def restore(self, snapshot: Union[Snapshot, str, Path]) -> RestoreResult:
        """Restore from a ``Snapshot`` or a snapshot file path."""
        if not isinstance(snapshot, Snapshot):
            snapshot = Snapshot.from_file(snapshot)
        return restore_snapshot(snapshot, self)
