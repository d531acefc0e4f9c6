"""Tests for the hook dispatcher."""

import asyncio
import json
import re
import shutil

import pytest

from nodeswarm.agents.errors import HookError
from nodeswarm.agents.hooks import HookDispatcher, HookEvent, HookSpec

needs_shell = pytest.mark.skipif(shutil.which("cat") is None, reason="requires a POSIX shell")


@pytest.mark.asyncio
async def test_handlers_run_in_registration_order():
    calls = []
    dispatcher = (
        HookDispatcher()
        .register("pre_tool", HookSpec.callback(lambda e, p: calls.append("first")))
        .register("pre_tool", HookSpec.callback(lambda e, p: calls.append("second")))
        .register("post_tool", HookSpec.callback(lambda e, p: calls.append("other event")))
    )

    await dispatcher.dispatch(HookEvent.PRE_TOOL, {"tool_name": "bash"})

    assert calls == ["first", "second"]


@pytest.mark.asyncio
async def test_stop_on_error_halts_remaining_handlers():
    """A failing stop_on_error handler raises and later handlers never run."""
    calls = []

    def fail(event, payload):
        raise RuntimeError("blocked")

    dispatcher = (
        HookDispatcher()
        .register("pre_tool", HookSpec.callback(fail, stop_on_error=True))
        .register("pre_tool", HookSpec.callback(lambda e, p: calls.append("late")))
    )

    with pytest.raises(HookError, match="blocked") as exc_info:
        await dispatcher.dispatch("pre_tool", {"tool_name": "bash"})

    assert exc_info.value.event == "pre_tool"
    assert calls == []


@pytest.mark.asyncio
async def test_ignored_failure_is_recorded():
    """Without stop_on_error a failure is logged and dispatch continues."""
    def fail(event, payload):
        raise RuntimeError("flaky")

    dispatcher = (
        HookDispatcher()
        .register("node_end", HookSpec.callback(fail))
        .register("node_end", HookSpec.callback(lambda e, p: "still ran"))
    )

    result = await dispatcher.dispatch("node_end", {"node": "n"})

    assert result.outputs == ["still ran"]
    assert len(result.failures) == 1
    assert "flaky" in result.failures[0].message


@pytest.mark.asyncio
async def test_outputs_append_to_context_only_when_flagged():
    dispatcher = (
        HookDispatcher()
        .register("on_user_message", HookSpec.callback(lambda e, p: "kept", append_output_to_context=True))
        .register("on_user_message", HookSpec.callback(lambda e, p: "not kept"))
    )

    result = await dispatcher.dispatch("on_user_message", {"prompt": "hi"})

    assert result.outputs == ["kept", "not kept"]
    assert result.context_additions == ["kept"]
    assert result.context_text == "kept"


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited():
    async def annotate(event, payload):
        await asyncio.sleep(0)
        return f"{event}:{payload['node']}"

    dispatcher = HookDispatcher().register("node_start", HookSpec.callback(annotate))

    result = await dispatcher.dispatch("node_start", {"node": "build"})

    assert result.outputs == ["node_start:build"]


@pytest.mark.asyncio
async def test_callback_timeout_is_a_failure():
    async def slow(event, payload):
        await asyncio.sleep(1)

    dispatcher = HookDispatcher().register("node_start", HookSpec.callback(slow, timeout_seconds=0.05))

    result = await dispatcher.dispatch("node_start", {"node": "n"})

    assert "timed out" in result.failures[0].message


@pytest.mark.asyncio
async def test_matcher_filters_tool_events():
    """Matchers apply to the tool name; non-matching handlers are skipped."""
    calls = []
    dispatcher = (
        HookDispatcher()
        .register("pre_tool", HookSpec.callback(lambda e, p: calls.append(p["tool_name"]), matcher=r"^bash$"))
    )

    await dispatcher.dispatch("pre_tool", {"tool_name": "read_file"})
    await dispatcher.dispatch("pre_tool", {"tool_name": "bash"})

    assert calls == ["bash"]


@needs_shell
@pytest.mark.asyncio
async def test_shell_hook_receives_payload_on_stdin():
    """Shell commands get the event payload as JSON on stdin."""
    dispatcher = HookDispatcher().register("post_tool", HookSpec.shell("cat", append_output_to_context=True))

    result = await dispatcher.dispatch("post_tool", {"tool_name": "bash", "result": "ok"})

    payload = json.loads(result.outputs[0])
    assert payload == {"event": "post_tool", "tool_name": "bash", "result": "ok"}
    assert result.context_additions == result.outputs


@needs_shell
@pytest.mark.asyncio
async def test_shell_hook_nonzero_exit_is_a_failure():
    dispatcher = HookDispatcher().register("pre_tool", HookSpec.shell("echo nope >&2; exit 1", stop_on_error=True))

    with pytest.raises(HookError, match="exit status 1: nope"):
        await dispatcher.dispatch("pre_tool", {"tool_name": "bash"})


@needs_shell
@pytest.mark.asyncio
async def test_shell_hook_sees_event_in_environment():
    dispatcher = HookDispatcher().register("workflow_end", HookSpec.shell("echo $NODESWARM_HOOK_EVENT"))

    result = await dispatcher.dispatch("workflow_end", {"workflow": "w"})

    assert result.outputs == ["workflow_end"]


def test_unknown_event_is_rejected():
    with pytest.raises(ValueError, match="Unknown hook event 'on_magic'"):
        HookDispatcher().register("on_magic", HookSpec.shell("true"))


def test_invalid_matcher_is_rejected():
    with pytest.raises(re.error):
        HookSpec.shell("true", matcher="(")


def test_has_handlers_counts_extra_specs():
    dispatcher = HookDispatcher()
    spec = HookSpec.shell("true")

    assert not dispatcher.has_handlers("pre_tool")
    assert dispatcher.has_handlers("pre_tool", extra=[spec])
