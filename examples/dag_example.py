"""Example: planning -> parallel implementation -> review with delegation.

Requires an OpenAI-compatible endpoint (Ollama by default, see Settings).
"""

import asyncio
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from loguru import logger

from nodeswarm.settings import Settings
from nodeswarm.agents import Swarm
from nodeswarm.agents.agent import LocalToolExecutor, PermissionRule, Registry, RulePermissionEngine, create_agent, tool
from nodeswarm.agents.graph import NodeBuilder, WorkflowBuilder
from nodeswarm.agents.hooks import HookDispatcher, HookSpec
from nodeswarm.agents.logging_config import setup_logging_from_settings


@tool(name="read_file")
def read_file(path: str) -> str:
    """Read a UTF-8 text file."""
    with open(path, encoding="utf-8") as f:
        return f.read()


@tool(name="list_dir")
def list_dir(path: str = ".") -> str:
    """List the entries of a directory."""
    return "\n".join(sorted(os.listdir(path)))


def build_swarm(settings: Settings) -> Swarm:
    registry = Registry([
        create_agent(
            "planner",
            system_prompt="You break feature requests into a short numbered plan.",
            settings=settings
        ),
        create_agent(
            "backend",
            system_prompt="You implement server-side changes. Ask the tester when unsure.",
            tools=["read_file", "list_dir"],
            settings=settings
        ),
        create_agent(
            "frontend",
            system_prompt="You implement UI changes.",
            tools=["read_file"],
            settings=settings
        ),
        create_agent(
            "tester",
            description="Writes and reviews tests.",
            system_prompt="You review changes and describe the tests they need.",
            settings=settings
        ),
    ])

    def needs_review(ctx):
        if "no changes" in (ctx.content or "").lower():
            return ctx.halt_workflow("Nothing to review.")
        return None

    graph = (
        WorkflowBuilder(registry)
        .name("feature-delivery")
        .node(NodeBuilder("plan").agent("planner"))
        .node(
            NodeBuilder("backend")
            .agent("backend", delegates_to=["tester"])
            .depends_on("plan")
            .input(lambda ctx: f"Implement the backend part of:\n\n{ctx.previous_result.content}")
        )
        .node(
            NodeBuilder("frontend")
            .agent("frontend")
            .depends_on("plan")
            .output(needs_review)
        )
        .node(NodeBuilder("review").agent("tester", reset_context=False).depends_on("backend", "frontend"))
        .start_node("plan")
        .build()
    )
    print("\n" + graph.visualize())

    hooks = HookDispatcher(default_timeout=settings.hook_timeout_seconds).register(
        "post_tool",
        HookSpec.callback(lambda event, payload: logger.info(f"tool {payload['tool_name']} finished"))
    )
    permissions = RulePermissionEngine([
        PermissionRule(tool="read_file", argument="path", patterns=("/etc/*", "*.env")),
    ])
    return Swarm(
        graph,
        tool_executor=LocalToolExecutor([read_file, list_dir]),
        permissions=permissions,
        hooks=hooks,
        settings=settings
    )


async def main():
    settings = Settings(log_run_summary=True)
    setup_logging_from_settings(settings)

    swarm = build_swarm(settings)
    result = await swarm.execute("Add a dark-mode toggle to the settings page")

    print(f"\nSuccess: {result.success}")
    for name, status in result.statuses.items():
        print(f"  {name}: {status.value}")
    print(f"\n{result.content}")

    path = swarm.snapshot().write_to_file("feature-delivery.snapshot.json")
    print(f"\nSnapshot written to {path}")


if __name__ == "__main__":
    asyncio.run(main())
