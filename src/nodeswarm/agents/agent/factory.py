"""Factory functions for creating agent definitions."""

from typing import Dict, List, Optional
from openai import AsyncOpenAI

from ...settings import Settings
from .base import AgentDefinition, LLMClient
from .openai_client import OpenAIChatClient


def create_agent(
    name: str,
    system_prompt: Optional[str] = None,
    description: str = "",
    tools: Optional[List[str]] = None,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_turns: Optional[int] = None,
    hooks: Optional[Dict[str, list]] = None,
    llm: Optional[LLMClient] = None,
    client: Optional[AsyncOpenAI] = None,
    settings: Optional[Settings] = None
) -> AgentDefinition:
    """Create an ``AgentDefinition`` backed by an OpenAI-compatible endpoint.

    Args:
        name: Unique agent name
        system_prompt: System prompt sent before the conversation
        description: Shown to agents that can delegate to this one
        tools: Default tool names
        model: Model override (default: ``settings.llm_model``)
        temperature: Sampling temperature override
        max_turns: Turn budget override (default: ``settings.agent_max_turns``)
        hooks: Agent-scoped hooks keyed by event name
        llm: Use this client instead of building an ``OpenAIChatClient``
        client: Shared ``AsyncOpenAI`` instance for the built client
        settings: Settings (default: loaded from env / .env)

    Examples:
        # For Ollama (local):
        planner = create_agent(
            "planner",
            system_prompt="You break tasks into steps.",
            model="gemma3:27b"
        )

        # For OpenAI:
        coder = create_agent(
            "coder",
            system_prompt="You write code.",
            tools=["read_file", "write_file"],
            model="gpt-4o"
        )
    """
    settings = settings or Settings()
    if llm is None:
        llm = OpenAIChatClient(settings=settings, client=client, model=model, temperature=temperature)
    return AgentDefinition(
        name=name,
        llm=llm,
        description=description,
        system_prompt=system_prompt,
        tools=list(tools or []),
        max_turns=max_turns,
        hooks=dict(hooks or {})
    )
