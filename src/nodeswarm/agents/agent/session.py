"""Agent session manager: conversation state and the tool-call loop."""

import asyncio
import re
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ...settings import Settings
from ..errors import (
    ConfigurationError,
    DelegationError,
    HookError,
    PermissionDenied,
    ProviderError,
    ProviderTimeout,
    RunCancelled,
    SwarmError,
    ToolExecutionError,
    TurnLimitExceeded,
)
from ..hooks import HookDispatcher, HookDispatchResult, HookEvent
from .base import AgentDefinition, PermissionEngine
from .cancellation import CancellationToken
from .models import AgentResponse, AgentSessionState, LLMResponse, Message, ToolCall
from .permissions import AllowAllPermissions
from .tool_base import ToolCatalog

DELEGATION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "task": {"type": "string", "description": "The task or question for the delegate"}
    },
    "required": ["task"]
}


def delegation_tool_name(agent_name: str) -> str:
    """Default tool name for delegating to ``agent_name`` (``WorkWith<Name>``)."""
    parts = re.split(r"[^0-9a-zA-Z]+", agent_name)
    return "WorkWith" + "".join(part[:1].upper() + part[1:] for part in parts if part)


def _inject(text: Optional[str], additions: List[str]) -> str:
    text = text or ""
    if not additions:
        return text
    return "\n\n".join([text] + additions) if text else "\n\n".join(additions)


class _Invocation:
    """Per-call state threaded through the loop."""

    def __init__(
        self,
        definition: AgentDefinition,
        state: AgentSessionState,
        response: AgentResponse,
        tool_names: List[str],
        delegations: Dict[str, Any],
        bindings: Mapping[str, Any],
        chain: Tuple[str, ...],
        cancel_token: Optional[CancellationToken],
        node_name: Optional[str],
        fresh_agents: Optional[Set[str]]
    ):
        self.definition = definition
        self.state = state
        self.response = response
        self.tool_names = tool_names
        self.delegations = delegations
        self.bindings = bindings
        self.chain = chain
        self.cancel_token = cancel_token
        self.node_name = node_name
        self.fresh_agents = fresh_agents

    @property
    def agent(self) -> str:
        return self.definition.name

    def payload(self, **extra) -> Dict[str, Any]:
        return {"agent": self.agent, "node": self.node_name, **extra}


class AgentSessionManager:
    """Owns one ``AgentSessionState`` per agent and runs agent invocations.

    Every invocation works on a copy of the agent's conversation (empty
    when ``reset_context`` is set) and commits it back only on success, so
    failed or cancelled invocations never mutate the persistent session.
    A per-agent lock keeps at most one invocation of an agent in flight.
    """

    def __init__(
        self,
        definitions: Mapping[str, AgentDefinition],
        tool_catalog: Optional[ToolCatalog] = None,
        permissions: Optional[PermissionEngine] = None,
        hooks: Optional[HookDispatcher] = None,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or Settings()
        self.definitions: Dict[str, AgentDefinition] = dict(definitions)
        self.tool_catalog = tool_catalog or ToolCatalog()
        self.permissions = permissions or AllowAllPermissions()
        self.hooks = hooks or HookDispatcher(default_timeout=self.settings.hook_timeout_seconds)
        self._sessions: Dict[str, AgentSessionState] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    @property
    def agent_names(self) -> List[str]:
        return list(self.definitions)

    def has_agent(self, name: str) -> bool:
        return name in self.definitions

    def session(self, name: str) -> AgentSessionState:
        if name not in self.definitions:
            raise ConfigurationError(f"Unknown agent '{name}'")
        state = self._sessions.get(name)
        if state is None:
            state = AgentSessionState(agent_name=name)
            self._sessions[name] = state
        return state

    def history(self, name: str) -> List[Message]:
        return list(self.session(name).messages)

    def replace_history(self, name: str, messages: Sequence[Message]) -> None:
        """Replace (not merge) an agent's conversation."""
        state = self.session(name)
        state.messages = list(messages)
        state.pending_context = []
        logger.debug(f"[SESSION:{name}] History replaced ({len(state.messages)} messages)")

    def clear(self, name: str) -> None:
        self.replace_history(name, [])

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        agent_name: str,
        prompt: str,
        *,
        reset_context: bool = False,
        tools: Optional[Sequence[str]] = None,
        delegations: Sequence[Any] = (),
        bindings: Optional[Mapping[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
        node_name: Optional[str] = None,
        fresh_agents: Optional[Set[str]] = None,
        _chain: Tuple[str, ...] = ()
    ) -> AgentResponse:
        """Run one agent invocation to final content.

        Args:
            agent_name: Agent to run
            prompt: User message for this invocation
            reset_context: Start from an empty conversation
            tools: Tool-name override (None = agent default)
            delegations: Objects with ``agent``, ``tool_name`` and
                ``preserve_context`` exposed as delegation tools
            bindings: Node-scoped options per agent (``tools``,
                ``delegates_to``) applied when delegating
            cancel_token: Checked between turns
            node_name: Node being executed, for hook payloads and logs
            fresh_agents: Delegates whose first delegation in this node
                starts from an empty conversation (consumed on use)

        Raises:
            TurnLimitExceeded, ProviderError, HookError, RunCancelled
        """
        definition = self.definitions.get(agent_name)
        if definition is None:
            raise ConfigurationError(f"Unknown agent '{agent_name}'")
        chain = _chain + (agent_name,)

        lock = self._locks[agent_name]
        if _chain:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.settings.delegation_lock_timeout_seconds)
            except asyncio.TimeoutError as e:
                raise DelegationError(f"Agent '{agent_name}' is busy; delegation timed out", chain) from e
        else:
            await lock.acquire()

        try:
            persistent = self.session(agent_name)
            working = persistent.fork(fresh=reset_context)
            invocation = _Invocation(
                definition=definition,
                state=working,
                response=AgentResponse(agent=agent_name, content="", agents_involved=[agent_name]),
                tool_names=list(tools) if tools is not None else list(definition.tools),
                delegations={self._delegation_name(d): d for d in delegations},
                bindings=bindings or {},
                chain=chain,
                cancel_token=cancel_token,
                node_name=node_name,
                fresh_agents=fresh_agents
            )
            logger.info(
                f"[SESSION:{agent_name}] Starting invocation "
                f"(reset_context={reset_context}, depth={len(_chain)}, history={len(working.messages)})"
            )

            await self._run_loop(invocation, prompt)

            # Commit
            persistent.messages = working.messages
            persistent.pending_context = working.pending_context
            persistent.total_cost += working.total_cost
            persistent.total_input_tokens += working.total_input_tokens
            persistent.total_output_tokens += working.total_output_tokens
            logger.info(
                f"[SESSION:{agent_name}] Completed in {invocation.response.turns} turn(s), "
                f"tokens={invocation.response.total_tokens}, cost={invocation.response.cost:.6f}"
            )
            return invocation.response
        finally:
            lock.release()

    async def _run_loop(self, inv: _Invocation, prompt: str) -> None:
        hook_result = await self._dispatch(HookEvent.ON_USER_MESSAGE, inv, prompt=prompt)
        additions = inv.state.take_pending_context() + hook_result.context_additions
        inv.state.append(Message(role="user", content=_inject(prompt, additions)))

        tool_defs = await self._tool_definitions(inv)
        max_turns = inv.definition.max_turns or self.settings.agent_max_turns

        for turn in range(1, max_turns + 1):
            if inv.cancel_token is not None and inv.cancel_token.cancelled:
                logger.warning(f"[SESSION:{inv.agent}] Cancelled before turn {turn}")
                raise RunCancelled(inv.cancel_token.reason or "cancelled")

            inv.response.turns = turn
            reply = await self._send(inv, tool_defs)
            inv.state.add_usage(reply.usage)
            inv.response.record_turn(reply.usage, tool_calls=len(reply.tool_calls))

            if not reply.wants_tools:
                content = reply.content or ""
                hook_result = await self._dispatch(HookEvent.PRE_RESPONSE, inv, content=content)
                inv.state.pending_context.extend(hook_result.context_additions)
                inv.state.append(Message(role="assistant", content=content))
                inv.response.content = content
                return

            logger.debug(
                f"[SESSION:{inv.agent}] Turn {turn}: {len(reply.tool_calls)} tool call(s): "
                f"{[c.name for c in reply.tool_calls]}"
            )
            inv.state.append(Message(role="assistant", content=reply.content, tool_calls=tuple(reply.tool_calls)))

            outputs = await self._run_tool_calls(inv, list(reply.tool_calls))
            for call, output in zip(reply.tool_calls, outputs):
                inv.state.append(Message(role="tool", content=output, tool_call_id=call.id, name=call.name))

        raise TurnLimitExceeded(inv.agent, max_turns)

    async def _send(self, inv: _Invocation, tool_defs: List[Dict[str, Any]]) -> LLMResponse:
        messages = list(inv.state.messages)
        if inv.definition.system_prompt:
            messages.insert(0, Message(role="system", content=inv.definition.system_prompt))

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.settings.provider_max_attempts)),
            wait=wait_exponential(
                multiplier=self.settings.provider_backoff_multiplier,
                max=self.settings.provider_backoff_max_seconds
            ),
            retry=retry_if_exception_type(ProviderError),
            before_sleep=lambda rs: logger.warning(
                f"[SESSION:{inv.agent}] Provider error (attempt {rs.attempt_number}), retrying: "
                f"{rs.outcome.exception()}"
            ),
            reraise=True
        )
        reply = None
        async for attempt in retrying:
            with attempt:
                try:
                    reply = await asyncio.wait_for(
                        inv.definition.llm.send(messages, tool_defs),
                        timeout=self.settings.llm_timeout_seconds
                    )
                except asyncio.TimeoutError as e:
                    raise ProviderTimeout(
                        f"LLM call for '{inv.agent}' timed out after {self.settings.llm_timeout_seconds}s"
                    ) from e
        return reply

    async def _tool_definitions(self, inv: _Invocation) -> List[Dict[str, Any]]:
        definitions = []
        if inv.tool_names:
            definitions.extend(await self.tool_catalog.definitions(inv.tool_names))
        for tool_name, delegation in inv.delegations.items():
            target = self.definitions.get(delegation.agent)
            description = f"Delegate a task to agent '{delegation.agent}'."
            if target is not None and target.description:
                description += f" {target.description}"
            definitions.append({"name": tool_name, "description": description, "input_schema": DELEGATION_SCHEMA})
        return definitions

    async def _run_tool_calls(self, inv: _Invocation, calls: List[ToolCall]) -> List[str]:
        if self.settings.parallel_tool_calls and len(calls) > 1:
            results = await asyncio.gather(
                *(self._handle_tool_call(inv, call) for call in calls),
                return_exceptions=True
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            return list(results)
        return [await self._handle_tool_call(inv, call) for call in calls]

    async def _handle_tool_call(self, inv: _Invocation, call: ToolCall) -> str:
        if call.name in inv.delegations:
            return await self._delegate(inv, inv.delegations[call.name], call)

        if call.name not in inv.tool_names:
            logger.warning(f"[SESSION:{inv.agent}] Model requested unavailable tool '{call.name}'")
            return f"Error: tool '{call.name}' is not available to agent '{inv.agent}'"

        decision = self.permissions.authorize(call.name, call.arguments)
        if not decision.allowed:
            denied = PermissionDenied(call.name, decision.reason)
            logger.info(f"[SESSION:{inv.agent}] {denied}")
            return f"Error: {denied}"

        pre = await self._dispatch(HookEvent.PRE_TOOL, inv, tool_name=call.name, arguments=call.arguments)
        try:
            output = await asyncio.wait_for(
                self.tool_catalog.stub(call.name).arun(call.arguments),
                timeout=self.settings.tool_timeout_seconds
            )
        except ToolExecutionError as e:
            logger.warning(f"[SESSION:{inv.agent}] {e}")
            output = f"Error: {e}"
        except asyncio.TimeoutError:
            logger.warning(f"[SESSION:{inv.agent}] Tool '{call.name}' timed out")
            output = f"Error: tool '{call.name}' timed out after {self.settings.tool_timeout_seconds}s"

        post = await self._dispatch(
            HookEvent.POST_TOOL, inv, tool_name=call.name, arguments=call.arguments, result=output
        )
        return _inject(output, pre.context_additions + post.context_additions)

    async def _delegate(self, inv: _Invocation, delegation: Any, call: ToolCall) -> str:
        task = call.arguments.get("task") or call.arguments.get("prompt")
        if not task:
            return f"Error: delegation to '{delegation.agent}' requires a 'task' argument"

        target = delegation.agent
        if target in inv.chain:
            cycle = " -> ".join(inv.chain + (target,))
            logger.warning(f"[SESSION:{inv.agent}] Refused delegation cycle: {cycle}")
            return f"Error: delegation cycle refused ({cycle})"
        depth = len(inv.chain)
        if depth > self.settings.max_delegation_depth:
            logger.warning(f"[SESSION:{inv.agent}] Delegation depth limit reached at '{target}'")
            return f"Error: delegation depth limit ({self.settings.max_delegation_depth}) reached"

        binding = inv.bindings.get(target)
        fresh = inv.fresh_agents is not None and target in inv.fresh_agents
        if fresh:
            inv.fresh_agents.discard(target)
        logger.info(f"[SESSION:{inv.agent}] Delegating to '{target}' (depth={depth}, fresh={fresh})")
        try:
            sub = await self.execute(
                target,
                task,
                reset_context=fresh or not getattr(delegation, "preserve_context", True),
                tools=getattr(binding, "tools", None),
                delegations=getattr(binding, "delegates_to", ()) or (),
                bindings=inv.bindings,
                cancel_token=inv.cancel_token,
                node_name=inv.node_name,
                fresh_agents=inv.fresh_agents,
                _chain=inv.chain
            )
        except RunCancelled:
            raise
        except SwarmError as e:
            logger.warning(f"[SESSION:{inv.agent}] Delegate '{target}' failed: {e}")
            return f"Error: delegate '{target}' failed: {e}"

        inv.response.merge_usage(sub)
        return sub.content

    async def _dispatch(self, event: HookEvent, inv: _Invocation, **payload) -> HookDispatchResult:
        extra = inv.definition.hooks.get(event.value) or inv.definition.hooks.get(event) or []
        if not self.hooks.has_handlers(event, extra):
            return HookDispatchResult(event=event)
        return await self.hooks.dispatch(event, inv.payload(**payload), extra=extra)

    @staticmethod
    def _delegation_name(delegation: Any) -> str:
        return getattr(delegation, "tool_name", None) or delegation_tool_name(delegation.agent)
