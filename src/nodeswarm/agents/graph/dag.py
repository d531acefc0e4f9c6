"""Workflow graph: node specs, builders and validation."""

from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from dataclasses import dataclass, field
from loguru import logger

from ..agent.base import AgentDefinition
from ..agent.registry import Registry
from ..agent.session import delegation_tool_name
from ..errors import ConfigurationError

# fn(ExecutionContext) -> str | SkipExecution | HaltWorkflow | None, sync or async
Transform = Callable[..., Any]


@dataclass(frozen=True)
class Delegation:
    """A delegate exposed to the calling agent as a tool."""
    agent: str
    tool_name: Optional[str] = None
    preserve_context: bool = True

    def __post_init__(self):
        if not self.agent:
            raise ConfigurationError("Delegation target must not be empty")
        if self.tool_name is None:
            object.__setattr__(self, "tool_name", delegation_tool_name(self.agent))


@dataclass(frozen=True)
class AgentBinding:
    """An agent as used by one node.

    ``reset_context`` starts the agent from an empty conversation on each
    node entry; ``tools`` overrides the agent's default tool list.
    """
    agent: str
    delegates_to: Tuple[Delegation, ...] = ()
    reset_context: bool = True
    tools: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class NodeSpec:
    """One stage of a workflow."""
    name: str
    agents: Tuple[AgentBinding, ...] = ()
    dependencies: Tuple[str, ...] = ()
    input_transform: Optional[Transform] = None
    output_transform: Optional[Transform] = None
    lead: Optional[str] = None

    @property
    def agent_less(self) -> bool:
        return not self.agents

    @property
    def lead_binding(self) -> Optional[AgentBinding]:
        if not self.agents:
            return None
        if self.lead is None:
            return self.agents[0]
        return next(b for b in self.agents if b.agent == self.lead)

    def binding(self, agent: str) -> Optional[AgentBinding]:
        return next((b for b in self.agents if b.agent == agent), None)

    def referenced_agents(self) -> List[str]:
        names: List[str] = []
        for binding in self.agents:
            for name in [binding.agent] + [d.agent for d in binding.delegates_to]:
                if name not in names:
                    names.append(name)
        return names


def _as_delegation(item: Union[str, Delegation, Dict[str, Any]]) -> Delegation:
    if isinstance(item, Delegation):
        return item
    if isinstance(item, str):
        return Delegation(agent=item)
    if isinstance(item, dict):
        return Delegation(**item)
    raise ConfigurationError(f"Invalid delegation: {item!r}")


class NodeBuilder:
    """Fluent builder for a ``NodeSpec``.

    Example:
        NodeBuilder("implementation")
            .agent("backend", delegates_to=["tester"], tools=["bash"])
            .depends_on("planning")
            .input(lambda ctx: f"Implement: {ctx.previous_result.content}")
    """

    def __init__(self, name: str):
        if not name:
            raise ConfigurationError("Node name must not be empty")
        self.name = name
        self._bindings: List[AgentBinding] = []
        self._dependencies: List[str] = []
        self._input: Optional[Transform] = None
        self._output: Optional[Transform] = None
        self._lead: Optional[str] = None

    def agent(
        self,
        name: str,
        delegates_to: Iterable[Union[str, Delegation, Dict[str, Any]]] = (),
        reset_context: bool = True,
        tools: Optional[Sequence[str]] = None
    ) -> "NodeBuilder":
        if any(b.agent == name for b in self._bindings):
            raise ConfigurationError(f"Agent '{name}' is bound twice in node '{self.name}'")
        self._bindings.append(AgentBinding(
            agent=name,
            delegates_to=tuple(_as_delegation(d) for d in delegates_to),
            reset_context=reset_context,
            tools=tuple(tools) if tools is not None else None
        ))
        return self

    def depends_on(self, *names: str) -> "NodeBuilder":
        for name in names:
            if name not in self._dependencies:
                self._dependencies.append(name)
        return self

    def input(self, fn: Transform) -> "NodeBuilder":
        self._input = fn
        return self

    def output(self, fn: Transform) -> "NodeBuilder":
        self._output = fn
        return self

    def lead(self, name: str) -> "NodeBuilder":
        self._lead = name
        return self

    def build(self) -> NodeSpec:
        bindings = list(self._bindings)
        bound = {b.agent for b in bindings}
        # Delegates not declared explicitly join the node with defaults
        for binding in self._bindings:
            for delegation in binding.delegates_to:
                if delegation.agent not in bound:
                    bindings.append(AgentBinding(agent=delegation.agent))
                    bound.add(delegation.agent)

        if not bindings and self._input is None and self._output is None:
            raise ConfigurationError(
                f"Node '{self.name}' has no agents and must have at least one transformer"
            )
        if self._lead is not None and self._lead not in bound:
            raise ConfigurationError(f"Lead agent '{self._lead}' is not bound in node '{self.name}'")

        return NodeSpec(
            name=self.name,
            agents=tuple(bindings),
            dependencies=tuple(self._dependencies),
            input_transform=self._input,
            output_transform=self._output,
            lead=self._lead
        )


@dataclass(frozen=True)
class WorkflowGraph:
    """Validated, immutable workflow graph."""
    name: str
    nodes: Mapping[str, NodeSpec]
    start_node: str
    agents: Mapping[str, AgentDefinition]
    dependents: Mapping[str, Tuple[str, ...]]
    topological_order: Tuple[str, ...]

    def node(self, name: str) -> NodeSpec:
        return self.nodes[name]

    def dependencies(self, name: str) -> Tuple[str, ...]:
        return self.nodes[name].dependencies

    def get_dependents(self, name: str) -> Tuple[str, ...]:
        return self.dependents.get(name, ())

    def downstream(self, name: str) -> List[str]:
        """All transitive dependents of ``name`` in topological order."""
        seen = set()
        stack = list(self.get_dependents(name))
        while stack:
            current = stack.pop()
            if current not in seen:
                seen.add(current)
                stack.extend(self.get_dependents(current))
        return [n for n in self.topological_order if n in seen]

    def execution_levels(self) -> List[List[str]]:
        """Groups of nodes that can run in parallel."""
        level: Dict[str, int] = {}
        for name in self.topological_order:
            deps = self.nodes[name].dependencies
            level[name] = 1 + max((level[d] for d in deps), default=-1)
        levels: List[List[str]] = [[] for _ in range(max(level.values(), default=-1) + 1)]
        for name in self.topological_order:
            levels[level[name]].append(name)
        return levels

    def visualize(self) -> str:
        """Text rendering of the graph."""
        lines = [f"Workflow: {self.name}", "=" * 50, "\nNodes:"]
        for name, spec in self.nodes.items():
            marker = "*" if name == self.start_node else " "
            agents = ", ".join(b.agent for b in spec.agents) or "(transform only)"
            lines.append(f"  {marker} {name}: {agents}")
        lines.append("\nEdges:")
        for name, spec in self.nodes.items():
            for dep in spec.dependencies:
                lines.append(f"  {dep} -> {name}")
        lines.append("\nExecution Order:")
        for i, level in enumerate(self.execution_levels()):
            lines.append(f"  Level {i + 1}: {', '.join(level)}")
        return "\n".join(lines)


class WorkflowBuilder:
    """Collects node specs and builds a validated ``WorkflowGraph``.

    Agents are resolved against workflow-local definitions first, then
    the ``Registry`` passed in.
    """

    def __init__(self, registry: Optional[Registry] = None, name: str = "workflow"):
        self.registry = registry or Registry()
        self._name = name
        self._agents: Dict[str, AgentDefinition] = {}
        self._nodes: List[NodeSpec] = []
        self._start: Optional[str] = None

    def name(self, name: str) -> "WorkflowBuilder":
        self._name = name
        return self

    def agent(self, definition: AgentDefinition) -> "WorkflowBuilder":
        if definition.name in self._agents:
            raise ConfigurationError(f"Agent '{definition.name}' defined twice in workflow '{self._name}'")
        self._agents[definition.name] = definition
        return self

    def node(self, node: Union[NodeSpec, NodeBuilder]) -> "WorkflowBuilder":
        self._nodes.append(node.build() if isinstance(node, NodeBuilder) else node)
        return self

    def start_node(self, name: str) -> "WorkflowBuilder":
        self._start = name
        return self

    def build(self) -> WorkflowGraph:
        """Validate and freeze the graph.

        Raises:
            ConfigurationError: On any structural or reference problem
        """
        if not self._nodes:
            raise ConfigurationError(f"Workflow '{self._name}' has no nodes")

        nodes: Dict[str, NodeSpec] = {}
        for spec in self._nodes:
            if spec.name in nodes:
                raise ConfigurationError(f"Duplicate node name '{spec.name}'")
            if spec.agent_less and spec.input_transform is None and spec.output_transform is None:
                raise ConfigurationError(
                    f"Node '{spec.name}' has no agents and must have at least one transformer"
                )
            if spec.lead is not None and spec.binding(spec.lead) is None:
                raise ConfigurationError(f"Lead agent '{spec.lead}' is not bound in node '{spec.name}'")
            nodes[spec.name] = spec

        if self._start is None:
            raise ConfigurationError(f"Workflow '{self._name}' has no start node")
        if self._start not in nodes:
            raise ConfigurationError(f"Start node '{self._start}' is not defined")

        for spec in nodes.values():
            for dep in spec.dependencies:
                if dep not in nodes:
                    raise ConfigurationError(f"Node '{spec.name}' depends on unknown node '{dep}'")

        self._check_cycles(nodes)

        if nodes[self._start].dependencies:
            raise ConfigurationError(
                f"Start node '{self._start}' must not have dependencies "
                f"(depends on {list(nodes[self._start].dependencies)})"
            )

        dependents: Dict[str, List[str]] = {name: [] for name in nodes}
        for spec in nodes.values():
            for dep in spec.dependencies:
                dependents[dep].append(spec.name)

        unreachable = set(nodes) - self._reachable(self._start, dependents)
        if unreachable:
            raise ConfigurationError(
                f"Nodes not reachable from start node '{self._start}': "
                f"{[n for n in nodes if n in unreachable]}"
            )

        agents = self._resolve_agents(nodes)
        order = self._topological_order(nodes, dependents)

        graph = WorkflowGraph(
            name=self._name,
            nodes=MappingProxyType(nodes),
            start_node=self._start,
            agents=MappingProxyType(agents),
            dependents=MappingProxyType({k: tuple(v) for k, v in dependents.items()}),
            topological_order=tuple(order)
        )
        logger.info(f"[DAG:{self._name}] Built graph: {len(nodes)} node(s), {len(agents)} agent(s)")
        return graph

    def _check_cycles(self, nodes: Dict[str, NodeSpec]) -> None:
        """Three-color DFS over dependency edges; a back-edge is fatal."""
        WHITE, GRAY, BLACK = 0, 1, 2
        color = {name: WHITE for name in nodes}
        path: List[str] = []

        def visit(name: str) -> None:
            color[name] = GRAY
            path.append(name)
            for dep in nodes[name].dependencies:
                if color[dep] == GRAY:
                    cycle = path[path.index(dep):] + [dep]
                    # Path follows dependency edges; report in execution direction
                    raise ConfigurationError(f"Cycle detected: {' -> '.join(reversed(cycle))}")
                if color[dep] == WHITE:
                    visit(dep)
            path.pop()
            color[name] = BLACK

        for name in nodes:
            if color[name] == WHITE:
                visit(name)

    @staticmethod
    def _reachable(start: str, dependents: Dict[str, List[str]]) -> set:
        seen = set()
        stack = [start]
        while stack:
            current = stack.pop()
            if current not in seen:
                seen.add(current)
                stack.extend(dependents[current])
        return seen

    def _resolve_agents(self, nodes: Dict[str, NodeSpec]) -> Dict[str, AgentDefinition]:
        agents: Dict[str, AgentDefinition] = dict(self._agents)
        for spec in nodes.values():
            for name in spec.referenced_agents():
                if name in agents:
                    continue
                definition = self.registry.get(name)
                if definition is None:
                    raise ConfigurationError(
                        f"Node '{spec.name}' references unknown agent '{name}'"
                    )
                agents[name] = definition
        return agents

    @staticmethod
    def _topological_order(nodes: Dict[str, NodeSpec], dependents: Dict[str, List[str]]) -> List[str]:
        remaining = {name: len(spec.dependencies) for name, spec in nodes.items()}
        ready = [name for name in nodes if remaining[name] == 0]
        order: List[str] = []
        while ready:
            current = ready.pop(0)
            order.append(current)
            for dependent in dependents[current]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)
        return order
