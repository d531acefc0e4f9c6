"""Hook events, actions and handler specs."""

import re
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union
from dataclasses import dataclass, field


class HookEvent(str, Enum):
    """Lifecycle points where hooks run."""
    PRE_TOOL = "pre_tool"
    POST_TOOL = "post_tool"
    ON_USER_MESSAGE = "on_user_message"
    PRE_RESPONSE = "pre_response"
    NODE_START = "node_start"
    NODE_END = "node_end"
    WORKFLOW_START = "workflow_start"
    WORKFLOW_END = "workflow_end"


TOOL_EVENTS = (HookEvent.PRE_TOOL, HookEvent.POST_TOOL)


@dataclass(frozen=True)
class ShellAction:
    """Run a shell command; the event payload arrives as JSON on stdin."""
    command: str


@dataclass(frozen=True)
class CallbackAction:
    """Call ``fn(event, payload)``; sync or async, string return is output."""
    fn: Callable[..., Any]


HookAction = Union[ShellAction, CallbackAction]


@dataclass(frozen=True)
class HookSpec:
    """A handler bound to an event."""
    action: HookAction
    append_output_to_context: bool = False
    stop_on_error: bool = False
    matcher: Optional[str] = None  # regex on tool name, tool events only
    timeout_seconds: Optional[float] = None

    def __post_init__(self):
        if not isinstance(self.action, (ShellAction, CallbackAction)):
            raise TypeError(f"Unsupported hook action: {type(self.action).__name__}")
        if self.matcher is not None:
            re.compile(self.matcher)

    @classmethod
    def shell(cls, command: str, **flags) -> "HookSpec":
        return cls(action=ShellAction(command), **flags)

    @classmethod
    def callback(cls, fn: Callable[..., Any], **flags) -> "HookSpec":
        return cls(action=CallbackAction(fn), **flags)

    @property
    def label(self) -> str:
        if isinstance(self.action, ShellAction):
            return f"shell:{self.action.command}"
        return f"callback:{getattr(self.action.fn, '__name__', repr(self.action.fn))}"

    def matches(self, payload: Dict[str, Any]) -> bool:
        if self.matcher is None:
            return True
        tool_name = payload.get("tool_name")
        if tool_name is None:
            return True
        return re.search(self.matcher, str(tool_name)) is not None


@dataclass
class HookFailure:
    """A handler that failed without stop_on_error."""
    hook: str
    message: str


@dataclass
class HookDispatchResult:
    """Collected outcome of one dispatch."""
    event: HookEvent
    outputs: List[str] = field(default_factory=list)
    context_additions: List[str] = field(default_factory=list)
    failures: List[HookFailure] = field(default_factory=list)

    @property
    def context_text(self) -> Optional[str]:
        if not self.context_additions:
            return None
        return "\n".join(self.context_additions)


def coerce_event(event: Union[str, HookEvent]) -> HookEvent:
    try:
        return HookEvent(event)
    except ValueError:
        valid = ", ".join(e.value for e in HookEvent)
        raise ValueError(f"Unknown hook event '{event}'. Valid events: {valid}") from None
