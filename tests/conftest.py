"""Shared fixtures: a scripted LLM client and quiet settings."""

import asyncio
import sys
from typing import Any, Callable, Dict, List, Optional, Union

import pytest
from loguru import logger

from nodeswarm.settings import Settings
from nodeswarm.agents.agent import AgentDefinition, LLMClient, LLMResponse, Message, TokenUsage, ToolCall

logger.remove()
logger.add(sys.stderr, level="WARNING")

Step = Union[str, LLMResponse, Exception, Callable[[List[Message], List[Dict[str, Any]]], Any]]


def tool_call(name: str, call_id: str = "call_1", **arguments) -> LLMResponse:
    """An LLM turn requesting one tool."""
    return LLMResponse(
        tool_calls=(ToolCall(id=call_id, name=name, arguments=arguments),),
        usage=TokenUsage(input_tokens=10, output_tokens=5, cost=0.001)
    )


def reply(content: str) -> LLMResponse:
    """An LLM turn with final content."""
    return LLMResponse(content=content, usage=TokenUsage(input_tokens=10, output_tokens=5, cost=0.001))


class ScriptedLLM(LLMClient):
    """Replays a script of responses and records every request.

    Script steps may be a string (final content), an ``LLMResponse``, an
    exception to raise, or a callable ``(messages, tools)`` returning
    either (sync or async). When the script runs out ``default`` is used.
    """

    def __init__(self, script: Optional[List[Step]] = None, default: Optional[str] = "done", delay: float = 0.0):
        self.script = list(script or [])
        self.default = default
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def send(self, messages, tool_schemas):
        self.calls.append({"messages": list(messages), "tools": [t["name"] for t in tool_schemas]})
        if self.delay:
            await asyncio.sleep(self.delay)
        step = self.script.pop(0) if self.script else self.default
        if callable(step) and not isinstance(step, LLMResponse):
            step = step(messages, tool_schemas)
            if asyncio.iscoroutine(step):
                step = await step
        if isinstance(step, Exception):
            raise step
        if isinstance(step, str):
            return reply(step)
        return step

    @property
    def last_messages(self) -> List[Message]:
        return self.calls[-1]["messages"]


def make_agent(name: str, script: Optional[List[Step]] = None, **kwargs) -> AgentDefinition:
    """AgentDefinition backed by a ``ScriptedLLM``."""
    llm = kwargs.pop("llm", None) or ScriptedLLM(script, default=kwargs.pop("default", "done"))
    return AgentDefinition(name=name, llm=llm, **kwargs)


@pytest.fixture
def settings() -> Settings:
    """Settings that ignore .env and never sleep between retries."""
    return Settings(
        _env_file=None,
        provider_max_attempts=3,
        provider_backoff_multiplier=0,
        provider_backoff_max_seconds=0,
        llm_timeout_seconds=5,
        tool_timeout_seconds=5,
        hook_timeout_seconds=5,
        agent_max_turns=5
    )
