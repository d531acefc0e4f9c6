"""Node execution engine: transforms around one agent invocation."""

import asyncio
import inspect
import time
from typing import Any, Optional
from loguru import logger

from ...settings import Settings
from ..agent.cancellation import CancellationToken
from ..agent.models import AgentResponse
from ..agent.session import AgentSessionManager
from ..errors import HookError, RunCancelled
from ..hooks import HookDispatcher, HookEvent
from .dag import NodeSpec
from .state import ExecutionContext, HaltWorkflow, NodeResult, NodeStatus, SkipExecution


async def _call_transform(fn, ctx: ExecutionContext) -> Any:
    value = fn(ctx)
    if inspect.isawaitable(value):
        value = await value
    return value


def default_prompt(ctx: ExecutionContext) -> str:
    """Prompt used when a node has no input transform."""
    contents = ctx.dependency_contents
    if not ctx.dependencies:
        return ctx.original_prompt
    if len(contents) == 1:
        return contents[0][1]
    return "\n\n".join(f"## {name}\n\n{content}" for name, content in contents)


class NodeExecutor:
    """Runs one node and always returns a terminal ``NodeResult``."""

    def __init__(
        self,
        sessions: AgentSessionManager,
        hooks: Optional[HookDispatcher] = None,
        settings: Optional[Settings] = None
    ):
        self.sessions = sessions
        self.hooks = hooks or sessions.hooks
        self.settings = settings or sessions.settings

    async def execute(
        self,
        spec: NodeSpec,
        ctx: ExecutionContext,
        cancel_token: Optional[CancellationToken] = None
    ) -> NodeResult:
        """Execute ``spec`` in ``ctx``.

        Exceptions from transforms, hooks and agents become FAILED
        results; cooperative cancellation becomes CANCELLED.
        """
        started = time.monotonic()
        logger.info(f"[NODE:{spec.name}] Starting execution")

        try:
            if self.hooks.has_handlers(HookEvent.NODE_START):
                await self.hooks.dispatch(
                    HookEvent.NODE_START,
                    {"node": spec.name, "prompt": ctx.original_prompt, "dependencies": list(spec.dependencies)}
                )
            timeout = self.settings.node_timeout_seconds
            if timeout:
                try:
                    result = await asyncio.wait_for(
                        self._run_guarded(spec, ctx, cancel_token, started), timeout=timeout
                    )
                except asyncio.TimeoutError:
                    logger.error(f"[NODE:{spec.name}] Timed out after {timeout}s")
                    result = NodeResult.failed(
                        spec.name,
                        f"Node timed out after {timeout}s",
                        duration=time.monotonic() - started
                    )
            else:
                result = await self._run(spec, ctx, cancel_token, started)
        except RunCancelled as e:
            logger.warning(f"[NODE:{spec.name}] Cancelled: {e}")
            result = NodeResult.cancelled(spec.name, str(e), duration=time.monotonic() - started)
        except Exception as e:
            logger.exception(f"[NODE:{spec.name}] Error: {e}")
            result = NodeResult.failed(spec.name, f"{type(e).__name__}: {e}", duration=time.monotonic() - started)

        result = await self._node_end(spec, result)
        logger.info(
            f"[NODE:{spec.name}] {result.status.value} in {result.duration:.2f}s"
            + (" (skipped)" if result.skipped else "")
        )
        return result

    async def _run_guarded(
        self,
        spec: NodeSpec,
        ctx: ExecutionContext,
        cancel_token: Optional[CancellationToken],
        started: float
    ) -> NodeResult:
        # A TimeoutError raised by the node body is a failure, not a node timeout
        try:
            return await self._run(spec, ctx, cancel_token, started)
        except asyncio.TimeoutError as e:
            logger.exception(f"[NODE:{spec.name}] Error: {e}")
            return NodeResult.failed(spec.name, f"{type(e).__name__}: {e}", duration=time.monotonic() - started)

    async def _run(
        self,
        spec: NodeSpec,
        ctx: ExecutionContext,
        cancel_token: Optional[CancellationToken],
        started: float
    ) -> NodeResult:
        # 1. Input transform
        prompt = None
        if spec.input_transform is not None:
            value = await _call_transform(spec.input_transform, ctx)
            if isinstance(value, SkipExecution):
                logger.info(f"[NODE:{spec.name}] Input transform requested skip")
                return NodeResult(
                    node=spec.name,
                    status=NodeStatus.COMPLETED,
                    content=value.content,
                    success=True,
                    skipped=True,
                    duration=time.monotonic() - started
                )
            if isinstance(value, HaltWorkflow):
                logger.info(f"[NODE:{spec.name}] Input transform halted the workflow")
                return NodeResult(
                    node=spec.name,
                    status=NodeStatus.COMPLETED,
                    content=value.content,
                    success=True,
                    halted=True,
                    duration=time.monotonic() - started
                )
            if value is not None:
                prompt = str(value)
        if prompt is None:
            prompt = default_prompt(ctx)

        # 2-4. Lead agent with delegates
        response: Optional[AgentResponse] = None
        content = prompt
        lead = spec.lead_binding
        if lead is not None:
            bindings = {binding.agent: binding for binding in spec.agents}
            fresh_agents = {b.agent for b in spec.agents if b.reset_context and b.agent != lead.agent}
            logger.debug(
                f"[NODE:{spec.name}] Lead '{lead.agent}', delegates={[d.agent for d in lead.delegates_to]}"
            )
            response = await self.sessions.execute(
                lead.agent,
                prompt,
                reset_context=lead.reset_context,
                tools=lead.tools,
                delegations=lead.delegates_to,
                bindings=bindings,
                cancel_token=cancel_token,
                node_name=spec.name,
                fresh_agents=fresh_agents
            )
            content = response.content

        # 5. Output transform
        halted = False
        if spec.output_transform is not None:
            value = await _call_transform(spec.output_transform, ctx.for_output(content, response))
            if isinstance(value, HaltWorkflow):
                logger.info(f"[NODE:{spec.name}] Output transform halted the workflow")
                content, halted = value.content, True
            elif isinstance(value, SkipExecution):
                raise TypeError("skip_execution is only valid in an input transform")
            elif value is not None:
                content = str(value)

        # 6. Package
        return NodeResult(
            node=spec.name,
            status=NodeStatus.COMPLETED,
            content=content,
            success=True,
            duration=time.monotonic() - started,
            cost=response.cost if response else 0.0,
            input_tokens=response.input_tokens if response else 0,
            output_tokens=response.output_tokens if response else 0,
            agents_involved=tuple(response.agents_involved) if response else (),
            halted=halted,
            agent_usage=dict(response.usage_by_agent) if response else {}
        )

    async def _node_end(self, spec: NodeSpec, result: NodeResult) -> NodeResult:
        if not self.hooks.has_handlers(HookEvent.NODE_END):
            return result
        payload = {
            "node": spec.name,
            "status": result.status.value,
            "success": result.success,
            "skipped": result.skipped,
            "content": result.content,
            "error": result.error
        }
        try:
            await self.hooks.dispatch(HookEvent.NODE_END, payload)
        except HookError as e:
            logger.error(f"[NODE:{spec.name}] node_end hook failed: {e}")
            if result.status is not NodeStatus.COMPLETED:
                return result
            return NodeResult.failed(
                spec.name,
                str(e),
                duration=result.duration,
                cost=result.cost,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
                agents_involved=result.agents_involved,
                agent_usage=result.agent_usage
            )
        return result
