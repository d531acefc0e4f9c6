"""Tests for snapshot capture, persistence and restore."""

import json

import pytest

from nodeswarm.agents import Swarm
from nodeswarm.agents.agent import Registry
from nodeswarm.agents.errors import ParseError, SnapshotError, VersionMismatch
from nodeswarm.agents.graph import NodeBuilder, WorkflowBuilder
from nodeswarm.agents.snapshot import SNAPSHOT_TYPE, Snapshot, restore_snapshot

from conftest import make_agent, tool_call


def two_agent_swarm(settings, planner_script=None, coder_script=None):
    planner = make_agent("planner", planner_script)
    coder = make_agent("coder", coder_script)
    graph = (
        WorkflowBuilder(Registry([planner, coder]))
        .node(NodeBuilder("plan").agent("planner"))
        .node(NodeBuilder("code").agent("coder").depends_on("plan"))
        .start_node("plan")
        .build()
    )
    return Swarm(graph, settings=settings)


def one_agent_swarm(settings, name="planner"):
    agent = make_agent(name)
    graph = WorkflowBuilder(Registry([agent])).node(NodeBuilder("only").agent(name)).start_node("only").build()
    return Swarm(graph, settings=settings)


@pytest.mark.asyncio
async def test_round_trip_through_file(settings, tmp_path):
    """A snapshot written by one swarm restores identical history into another."""
    source = two_agent_swarm(settings, planner_script=["the plan"], coder_script=["the code"])
    await source.execute("build it")
    path = tmp_path / "state" / "snapshot.json"

    source.snapshot().write_to_file(path)
    target = two_agent_swarm(settings)
    result = target.restore(path)

    assert result.success
    assert result.restored_agents == ["planner", "coder"]
    assert target.history("planner") == source.history("planner")
    assert target.history("coder") == source.history("coder")
    assert [p.name for p in path.parent.iterdir()] == ["snapshot.json"]


@pytest.mark.asyncio
async def test_tool_call_metadata_survives(settings):
    """Assistant tool calls and tool results keep their ids and arguments."""
    lead = make_agent("lead", [tool_call("WorkWithHelper", call_id="c7", task="check"), "done"])
    graph = (
        WorkflowBuilder(Registry([lead, make_agent("helper", ["checked"])]))
        .node(NodeBuilder("work").agent("lead", delegates_to=["helper"], reset_context=False))
        .start_node("work")
        .build()
    )
    swarm = Swarm(graph, settings=settings)
    await swarm.execute("go")

    snapshot = Snapshot.from_json(swarm.snapshot().to_json())
    restored = snapshot.messages("lead")

    assert restored == swarm.history("lead")
    assert restored[1].tool_calls[0].id == "c7"
    assert restored[1].tool_calls[0].arguments == {"task": "check"}
    assert restored[2].tool_call_id == "c7"


def test_document_layout(settings):
    swarm = one_agent_swarm(settings)
    swarm.replace_history("planner", [])

    data = json.loads(swarm.snapshot().to_json())

    assert data["type"] == SNAPSHOT_TYPE
    assert data["version"] == 1
    assert data["agent_names"] == ["planner"]
    assert data["agents"] == {"planner": []}
    assert data["snapshot_at"]


@pytest.mark.asyncio
async def test_plain_messages_omit_metadata(settings):
    swarm = one_agent_swarm(settings)
    await swarm.execute("hello")

    data = swarm.snapshot().to_dict()

    assert data["agents"]["planner"] == [
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "done"},
    ]


@pytest.mark.asyncio
async def test_missing_agent_is_reported(settings):
    """Agents absent from the target are skipped and named in the summary."""
    source = two_agent_swarm(settings)
    await source.execute("go")
    target = one_agent_swarm(settings)

    result = target.restore(source.snapshot())

    assert not result.success
    assert result.unmatched_agents == ["coder"]
    assert result.restored_agents == ["planner"]
    assert "coder" in result.summary
    assert target.history("planner") == source.history("planner")


@pytest.mark.asyncio
async def test_restore_replaces_rather_than_merges(settings):
    swarm = one_agent_swarm(settings)
    empty = swarm.snapshot()
    await swarm.execute("hello")

    restore_snapshot(empty, swarm)

    assert swarm.history("planner") == []


def test_version_mismatch(settings):
    data = one_agent_swarm(settings).snapshot().to_dict()
    data["version"] = 2

    with pytest.raises(VersionMismatch, match="2"):
        Snapshot.from_json(json.dumps(data))


@pytest.mark.parametrize("text", [
    "not json",
    "[]",
    json.dumps({"type": "something.else", "version": 1}),
    json.dumps({"type": SNAPSHOT_TYPE, "version": 1, "agent_names": ["a"], "agents": {}}),
    json.dumps({"type": SNAPSHOT_TYPE, "version": 1, "agent_names": ["a"],
                "agents": {"a": [{"role": "wizard", "content": "x"}]}}),
    json.dumps({"type": SNAPSHOT_TYPE, "version": 1, "agent_names": ["a"],
                "agents": {"a": [{"role": "assistant", "content": None,
                                  "tool_call_metadata": {"tool_calls": [{"name": "x"}]}}]}}),
    json.dumps({"type": SNAPSHOT_TYPE, "version": 1, "agent_names": ["a"],
                "agents": {"a": [{"role": "tool", "content": "r",
                                  "tool_call_metadata": {"tool_call_id": "c1", "extra": True}}]}}),
    json.dumps({"type": SNAPSHOT_TYPE, "version": 1, "agent_names": ["a"],
                "agents": {"a": [{"role": "assistant", "content": None,
                                  "tool_call_metadata": {"tool_calls": [{"id": "c1", "name": "x", "arguments": "no"}]}}]}}),
])
def test_malformed_documents_raise_parse_error(text):
    with pytest.raises(ParseError):
        Snapshot.from_json(text)


def test_load_errors_share_a_base_class(tmp_path):
    path = tmp_path / "bad.json"
    path.write_bytes(b"\xff\xfe\x00garbage")

    with pytest.raises(SnapshotError):
        Snapshot.from_file(path)


@pytest.mark.asyncio
async def test_malformed_file_leaves_every_history_untouched(settings, tmp_path):
    """A document with a broken later agent is rejected before anything is replaced."""
    swarm = two_agent_swarm(settings, planner_script=["old plan"])
    await swarm.execute("go")
    before = swarm.history("planner")
    data = swarm.snapshot().to_dict()
    data["agents"]["planner"] = [{"role": "user", "content": "new plan"}]
    data["agents"]["coder"] = [
        {"role": "assistant", "content": None, "tool_call_metadata": {"tool_calls": [{"name": "x"}]}}
    ]
    path = tmp_path / "broken.json"
    path.write_text(json.dumps(data), encoding="utf-8")

    with pytest.raises(ParseError):
        swarm.restore(path)

    assert swarm.history("planner") == before


def test_restore_builds_all_histories_before_replacing():
    """A failure while converting one agent leaves earlier agents as they were."""
    class Target:
        def __init__(self):
            self.replaced = []

        def has_agent(self, name):
            return True

        def replace_history(self, name, messages):
            self.replaced.append(name)

    class BrokenSnapshot:
        agent_names = ("a", "b")

        def messages(self, name):
            if name == "b":
                raise ValueError("bad message")
            return []

    target = Target()

    with pytest.raises(ValueError):
        restore_snapshot(BrokenSnapshot(), target)

    assert target.replaced == []
