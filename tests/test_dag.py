"""Tests for workflow graph building and validation."""

import pytest

from nodeswarm.agents.agent import Registry
from nodeswarm.agents.errors import ConfigurationError
from nodeswarm.agents.graph import Delegation, NodeBuilder, NodeSpec, WorkflowBuilder

from conftest import make_agent


@pytest.fixture
def registry():
    return Registry([make_agent("planner"), make_agent("coder"), make_agent("tester")])


def test_linear_graph_builds(registry):
    """A valid chain builds with a deterministic topological order."""
    graph = (
        WorkflowBuilder(registry)
        .name("delivery")
        .node(NodeBuilder("planning").agent("planner"))
        .node(NodeBuilder("implementation").agent("coder").depends_on("planning"))
        .node(NodeBuilder("testing").agent("tester").depends_on("implementation"))
        .start_node("planning")
        .build()
    )

    assert graph.name == "delivery"
    assert graph.topological_order == ("planning", "implementation", "testing")
    assert graph.get_dependents("planning") == ("implementation",)
    assert graph.downstream("planning") == ["implementation", "testing"]
    assert set(graph.agents) == {"planner", "coder", "tester"}


def test_execution_levels_group_independent_nodes(registry):
    """Nodes at the same depth share a level."""
    graph = (
        WorkflowBuilder(registry)
        .node(NodeBuilder("plan").agent("planner"))
        .node(NodeBuilder("backend").agent("coder").depends_on("plan"))
        .node(NodeBuilder("frontend").agent("coder").depends_on("plan"))
        .node(NodeBuilder("qa").agent("tester").depends_on("backend", "frontend"))
        .start_node("plan")
        .build()
    )

    assert graph.execution_levels() == [["plan"], ["backend", "frontend"], ["qa"]]
    assert "Level 2: backend, frontend" in graph.visualize()


def test_graph_is_immutable(registry):
    """Built graphs cannot be mutated."""
    graph = WorkflowBuilder(registry).node(NodeBuilder("a").agent("planner")).start_node("a").build()

    with pytest.raises(TypeError):
        graph.nodes["b"] = graph.nodes["a"]
    with pytest.raises(AttributeError):
        graph.start_node = "b"


def test_missing_dependency_fails(registry):
    builder = (
        WorkflowBuilder(registry)
        .node(NodeBuilder("a").agent("planner"))
        .node(NodeBuilder("b").agent("coder").depends_on("ghost"))
        .start_node("a")
    )

    with pytest.raises(ConfigurationError, match="unknown node 'ghost'"):
        builder.build()


def test_cycle_is_named(registry):
    """A back-edge fails the build and the error names the cycle."""
    builder = (
        WorkflowBuilder(registry)
        .node(NodeBuilder("start").agent("planner"))
        .node(NodeBuilder("a").agent("coder").depends_on("start", "b"))
        .node(NodeBuilder("b").agent("tester").depends_on("a"))
        .start_node("start")
    )

    with pytest.raises(ConfigurationError) as exc_info:
        builder.build()

    message = str(exc_info.value)
    assert "Cycle detected" in message
    assert "a -> b -> a" in message or "b -> a -> b" in message


def test_unresolved_agent_is_named(registry):
    builder = WorkflowBuilder(registry).node(NodeBuilder("a").agent("wizard")).start_node("a")

    with pytest.raises(ConfigurationError, match="unknown agent 'wizard'"):
        builder.build()


def test_unresolved_delegate_is_named(registry):
    builder = (
        WorkflowBuilder(registry)
        .node(NodeBuilder("a").agent("planner", delegates_to=["oracle"]))
        .start_node("a")
    )

    with pytest.raises(ConfigurationError, match="'oracle'"):
        builder.build()


@pytest.mark.parametrize("start", [None, "nope"])
def test_start_node_must_exist(registry, start):
    builder = WorkflowBuilder(registry).node(NodeBuilder("a").agent("planner"))
    if start:
        builder.start_node(start)

    with pytest.raises(ConfigurationError, match="(?i)start node"):
        builder.build()


def test_start_node_without_dependencies(registry):
    builder = (
        WorkflowBuilder(registry)
        .node(NodeBuilder("a").agent("planner"))
        .node(NodeBuilder("b").agent("coder").depends_on("a"))
        .start_node("b")
    )

    with pytest.raises(ConfigurationError, match="must not have dependencies"):
        builder.build()


def test_unreachable_nodes_fail(registry):
    builder = (
        WorkflowBuilder(registry)
        .node(NodeBuilder("a").agent("planner"))
        .node(NodeBuilder("island").agent("coder"))
        .start_node("a")
    )

    with pytest.raises(ConfigurationError, match="island"):
        builder.build()


def test_duplicate_node_names_fail(registry):
    builder = (
        WorkflowBuilder(registry)
        .node(NodeBuilder("a").agent("planner"))
        .node(NodeBuilder("a").agent("coder"))
        .start_node("a")
    )

    with pytest.raises(ConfigurationError, match="Duplicate node"):
        builder.build()


def test_empty_workflow_fails(registry):
    with pytest.raises(ConfigurationError, match="no nodes"):
        WorkflowBuilder(registry).build()


def test_agent_less_node_needs_transform():
    """Nodes without agents must carry a transform."""
    with pytest.raises(ConfigurationError, match="at least one transformer"):
        NodeBuilder("noop").build()

    spec = NodeBuilder("format").output(lambda ctx: ctx.content.upper()).build()
    assert spec.agent_less


def test_agent_less_node_spec_checked_at_build(registry):
    """Directly constructed specs get the same checks."""
    builder = WorkflowBuilder(registry).node(NodeSpec(name="noop")).start_node("noop")

    with pytest.raises(ConfigurationError, match="at least one transformer"):
        builder.build()


def test_delegates_are_added_to_node(registry):
    """Delegates not bound explicitly join the node with default settings."""
    spec = NodeBuilder("impl").agent("coder", delegates_to=["tester"]).build()

    assert [b.agent for b in spec.agents] == ["coder", "tester"]
    assert spec.lead_binding.agent == "coder"
    assert spec.binding("tester").reset_context is True


def test_delegation_defaults():
    """Tool names default to WorkWith<CamelName> and context is preserved."""
    delegation = Delegation("code_reviewer")

    assert delegation.tool_name == "WorkWithCodeReviewer"
    assert delegation.preserve_context is True
    assert Delegation("qa", tool_name="ask_qa").tool_name == "ask_qa"


def test_delegation_accepts_dicts():
    spec = NodeBuilder("impl").agent(
        "coder", delegates_to=[{"agent": "tester", "tool_name": "run_tests", "preserve_context": False}]
    ).build()

    delegation = spec.lead_binding.delegates_to[0]
    assert (delegation.agent, delegation.tool_name, delegation.preserve_context) == ("tester", "run_tests", False)


def test_lead_must_be_bound():
    with pytest.raises(ConfigurationError, match="Lead agent 'ghost'"):
        NodeBuilder("impl").agent("coder").lead("ghost").build()

    spec = NodeBuilder("impl").agent("coder").agent("tester").lead("tester").build()
    assert spec.lead_binding.agent == "tester"


def test_agent_bound_twice_fails():
    with pytest.raises(ConfigurationError, match="bound twice"):
        NodeBuilder("impl").agent("coder").agent("coder")


def test_workflow_local_agents_take_precedence(registry):
    """Workflow-local definitions shadow the registry."""
    local_planner = make_agent("planner", system_prompt="local")
    graph = (
        WorkflowBuilder(registry)
        .agent(local_planner)
        .node(NodeBuilder("a").agent("planner"))
        .start_node("a")
        .build()
    )

    assert graph.agents["planner"] is local_planner


def test_tools_override_recorded():
    spec = NodeBuilder("impl").agent("coder", tools=["bash"], reset_context=False).build()

    binding = spec.lead_binding
    assert binding.tools == ("bash",)
    assert binding.reset_context is False
