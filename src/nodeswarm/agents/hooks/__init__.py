"""Lifecycle hooks."""

from .definition import (
    CallbackAction,
    HookAction,
    HookDispatchResult,
    HookEvent,
    HookFailure,
    HookSpec,
    ShellAction,
)
from .dispatcher import HookDispatcher

__all__ = [
    "CallbackAction",
    "HookAction",
    "HookDispatchResult",
    "HookDispatcher",
    "HookEvent",
    "HookFailure",
    "HookSpec",
    "ShellAction",
]
