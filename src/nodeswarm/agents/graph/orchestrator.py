"""Dependency-aware scheduler for workflow graphs."""

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from loguru import logger

from ...settings import Settings
from ..agent.cancellation import CancellationToken
from ..agent.models import AgentUsage
from ..errors import HookError
from ..hooks import HookDispatcher, HookEvent
from ..logging_config import log_metrics
from .dag import WorkflowGraph
from .node import NodeExecutor
from .state import ExecutionContext, NodeResult, NodeStatus

_BLOCKING = (NodeStatus.FAILED, NodeStatus.SKIPPED, NodeStatus.CANCELLED)


@dataclass
class WorkflowResult:
    """Result of one workflow run."""
    workflow: str
    success: bool
    content: Optional[str]
    node_results: Dict[str, NodeResult]
    statuses: Dict[str, NodeStatus]
    total_cost: float
    duration: float
    first_failure: Optional[NodeResult] = None
    halted: bool = False
    error: Optional[str] = None
    # (event, node): "start"/"end" for executed nodes, "skipped"/"cancelled" otherwise
    trace: List[Tuple[str, str]] = field(default_factory=list)

    def count(self, status: NodeStatus) -> int:
        return sum(1 for s in self.statuses.values() if s is status)

    @property
    def total_tokens(self) -> int:
        return sum(r.total_tokens for r in self.node_results.values())

    @property
    def agents_involved(self) -> List[str]:
        names: List[str] = []
        for result in self.node_results.values():
            for name in result.agents_involved:
                if name not in names:
                    names.append(name)
        return names

    @property
    def usage_by_agent(self) -> Dict[str, AgentUsage]:
        """Cost, tokens, model requests and tool calls per agent across all nodes."""
        totals: Dict[str, AgentUsage] = {}
        for result in self.node_results.values():
            for name, usage in result.agent_usage.items():
                totals.setdefault(name, AgentUsage()).add(usage)
        return totals

    @property
    def llm_requests(self) -> int:
        return sum(usage.llm_requests for usage in self.usage_by_agent.values())

    @property
    def tool_calls(self) -> int:
        return sum(usage.tool_calls for usage in self.usage_by_agent.values())

    def summary(self) -> Dict[str, Any]:
        """Flat metrics for display."""
        return {
            "workflow": self.workflow,
            "success": self.success,
            "total_nodes": len(self.statuses),
            "completed_nodes": self.count(NodeStatus.COMPLETED),
            "failed_nodes": self.count(NodeStatus.FAILED),
            "skipped_nodes": self.count(NodeStatus.SKIPPED),
            "cancelled_nodes": self.count(NodeStatus.CANCELLED),
            "halted": self.halted,
            "total_tokens": self.total_tokens,
            "llm_requests": self.llm_requests,
            "tool_calls": self.tool_calls,
            "total_cost": round(self.total_cost, 6),
            "duration_seconds": round(self.duration, 3)
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "workflow": self.workflow,
            "success": self.success,
            "content": self.content,
            "halted": self.halted,
            "error": self.error,
            "total_cost": round(self.total_cost, 6),
            "duration": round(self.duration, 3),
            "first_failure": self.first_failure.node if self.first_failure else None,
            "statuses": {name: status.value for name, status in self.statuses.items()},
            "node_results": {name: result.to_dict() for name, result in self.node_results.items()},
            "usage_by_agent": {name: usage.to_dict() for name, usage in self.usage_by_agent.items()},
            "trace": [list(entry) for entry in self.trace]
        }


class _Run:
    """Mutable bookkeeping for one ``Orchestrator.run`` call."""

    def __init__(self, graph: WorkflowGraph, prompt: str):
        self.prompt = prompt
        self.statuses: Dict[str, NodeStatus] = {name: NodeStatus.PENDING for name in graph.topological_order}
        self.remaining: Dict[str, int] = {name: len(graph.dependencies(name)) for name in graph.topological_order}
        self.results: Dict[str, NodeResult] = {}
        self.ready: List[str] = []
        self.trace: List[Tuple[str, str]] = []
        self.last_content: Optional[str] = None
        self.halt_content: Optional[str] = None
        self.halted = False
        self.first_failure: Optional[NodeResult] = None
        self.error: Optional[str] = None
        self.token = CancellationToken()


class Orchestrator:
    """Runs a ``WorkflowGraph`` to completion.

    Nodes whose dependencies are all COMPLETED become READY and are
    dispatched concurrently (bounded by ``max_parallelism``). A FAILED,
    SKIPPED or CANCELLED node marks its transitive dependents SKIPPED.
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        executor: NodeExecutor,
        hooks: Optional[HookDispatcher] = None,
        settings: Optional[Settings] = None
    ):
        self.graph = graph
        self.executor = executor
        self.hooks = hooks or executor.hooks
        self.settings = settings or executor.settings
        self._current: Optional[_Run] = None

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cooperative cancellation of the in-flight run."""
        if self._current is not None:
            logger.warning(f"[ORCHESTRATOR] Cancellation requested: {reason}")
            self._current.token.cancel(reason)

    async def run(self, prompt: str) -> WorkflowResult:
        """Execute the graph with ``prompt`` as the original prompt."""
        if self._current is not None:
            raise RuntimeError(f"Workflow '{self.graph.name}' is already running")
        started = time.monotonic()
        run = _Run(self.graph, prompt)
        self._current = run
        logger.info(f"[ORCHESTRATOR] Starting workflow '{self.graph.name}' ({len(run.statuses)} nodes)")

        try:
            if await self._workflow_hook(run, HookEvent.WORKFLOW_START, {"prompt": prompt}):
                await self._schedule_within_timeout(run)
            else:
                run.token.cancel(run.error)
        finally:
            self._current = None

        for name, status in run.statuses.items():
            if not status.terminal:
                reason = run.token.reason or "run stopped"
                self._record(run, NodeResult.cancelled(name, reason))

        result = WorkflowResult(
            workflow=self.graph.name,
            success=run.error is None and NodeStatus.FAILED not in run.statuses.values(),
            content=run.halt_content if run.halted else run.last_content,
            node_results={name: run.results[name] for name in self.graph.topological_order},
            statuses=dict(run.statuses),
            total_cost=sum(r.cost for r in run.results.values()),
            duration=time.monotonic() - started,
            first_failure=run.first_failure,
            halted=run.halted,
            error=run.error,
            trace=run.trace
        )

        await self._workflow_hook(run, HookEvent.WORKFLOW_END, {
            "success": result.success,
            "content": result.content,
            "halted": result.halted
        })
        if run.error is not None and result.error is None:
            result.error = run.error
            result.success = False

        logger.info(
            f"[ORCHESTRATOR] Completed '{self.graph.name}': "
            f"{result.count(NodeStatus.COMPLETED)}/{len(result.statuses)} nodes, "
            f"success={result.success}, time={result.duration:.2f}s"
        )
        if self.settings.log_run_summary:
            log_metrics(result.summary(), title=f"Workflow: {self.graph.name}")
        return result

    async def _schedule_within_timeout(self, run: _Run) -> None:
        timeout = self.settings.execution_timeout_seconds
        if not timeout:
            await self._schedule(run)
            return
        try:
            await asyncio.wait_for(self._schedule(run), timeout=timeout)
        except asyncio.TimeoutError:
            reason = f"Workflow timed out after {timeout}s"
            logger.error(f"[ORCHESTRATOR] {reason}")
            run.error = reason
            run.token.cancel(reason)

    async def _schedule(self, run: _Run) -> None:
        limit = self.settings.max_parallelism
        semaphore = asyncio.Semaphore(limit) if limit else None
        running: Dict[asyncio.Task, str] = {}

        self._mark_ready(run, self.graph.start_node)
        try:
            while True:
                if not run.token.cancelled:
                    while run.ready:
                        name = run.ready.pop(0)
                        task = asyncio.create_task(self._run_node(run, name, semaphore))
                        running[task] = name
                if not running:
                    break

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=lambda t: self.graph.topological_order.index(running[t])):
                    running.pop(task)
                    self._finish(run, task.result())
        finally:
            for task in running:
                task.cancel()
            if running:
                await asyncio.gather(*running, return_exceptions=True)

    async def _run_node(self, run: _Run, name: str, semaphore: Optional[asyncio.Semaphore]) -> NodeResult:
        if semaphore is None:
            return await self._execute(run, name)
        async with semaphore:
            return await self._execute(run, name)

    async def _execute(self, run: _Run, name: str) -> NodeResult:
        if run.token.cancelled:
            return NodeResult.cancelled(name, run.token.reason or "cancelled")
        spec = self.graph.node(name)
        run.statuses[name] = NodeStatus.RUNNING
        run.trace.append(("start", name))
        ctx = ExecutionContext.for_input(run.prompt, name, spec.dependencies, run.results)
        result = await self.executor.execute(spec, ctx, cancel_token=run.token)
        run.trace.append(("end", name))
        return result

    def _mark_ready(self, run: _Run, name: str) -> None:
        run.statuses[name] = NodeStatus.READY
        run.ready.append(name)
        logger.debug(f"[ORCHESTRATOR] Node '{name}' is ready")

    def _record(self, run: _Run, result: NodeResult) -> None:
        if result.node not in run.results and run.statuses[result.node] is not NodeStatus.RUNNING:
            # Never started: skipped or cancelled
            run.trace.append((result.status.value, result.node))
        run.results[result.node] = result
        run.statuses[result.node] = result.status

    def _finish(self, run: _Run, result: NodeResult) -> None:
        name = result.node
        self._record(run, result)

        if result.status is NodeStatus.COMPLETED:
            run.last_content = result.content
            if result.halted:
                logger.info(f"[ORCHESTRATOR] Node '{name}' halted the workflow")
                run.halted = True
                run.halt_content = result.content
                run.token.cancel(f"workflow halted by node '{name}'")
                return
            for dependent in self.graph.get_dependents(name):
                run.remaining[dependent] -= 1
                if run.remaining[dependent] == 0 and run.statuses[dependent] is NodeStatus.PENDING:
                    self._mark_ready(run, dependent)
            return

        if result.status is NodeStatus.FAILED:
            logger.error(f"[ORCHESTRATOR] Node '{name}' failed: {result.error}")
            if run.first_failure is None:
                run.first_failure = result
            if self.settings.fail_fast and not run.token.cancelled:
                run.token.cancel(f"fail-fast: node '{name}' failed")

        if run.token.cancelled:
            return
        for dependent in self.graph.downstream(name):
            if run.statuses[dependent] is NodeStatus.PENDING:
                logger.warning(f"[ORCHESTRATOR] Skipping '{dependent}': dependency '{name}' {result.status.value}")
                self._record(run, NodeResult.skipped_by_dependency(
                    dependent, f"Dependency '{name}' {result.status.value}"
                ))

    async def _workflow_hook(self, run: _Run, event: HookEvent, payload: Dict[str, Any]) -> bool:
        if not self.hooks.has_handlers(event):
            return True
        try:
            await self.hooks.dispatch(event, {"workflow": self.graph.name, **payload})
        except HookError as e:
            logger.error(f"[ORCHESTRATOR] {event.value} hook aborted the run: {e}")
            run.error = str(e)
            return False
        return True
