"""Permission engines consulted before tool execution."""

from fnmatch import fnmatch
from typing import Any, Dict, List, Optional, Sequence
from dataclasses import dataclass, field
from loguru import logger

from .base import PermissionDecision, PermissionEngine


class AllowAllPermissions(PermissionEngine):
    """Permits every tool call."""

    def authorize(self, tool_name: str, args: Dict[str, Any]) -> PermissionDecision:
        return PermissionDecision.allow()


@dataclass(frozen=True)
class PermissionRule:
    """Glob rule over a tool name and, optionally, one argument value.

    ``tool`` is a glob on the tool name. When ``argument`` is set the rule
    only matches calls whose argument value matches one of ``patterns``.
    """
    tool: str
    effect: str = "deny"  # "allow" or "deny"
    argument: Optional[str] = None
    patterns: Sequence[str] = field(default_factory=tuple)

    def __post_init__(self):
        if self.effect not in ("allow", "deny"):
            raise ValueError(f"Invalid rule effect: {self.effect!r}")

    def applies_to(self, tool_name: str) -> bool:
        return fnmatch(tool_name, self.tool)

    def matches(self, tool_name: str, args: Dict[str, Any]) -> bool:
        if not self.applies_to(tool_name):
            return False
        if self.argument is None:
            return True
        value = args.get(self.argument)
        if value is None:
            return False
        return any(fnmatch(str(value), pattern) for pattern in self.patterns)

    def describe(self) -> str:
        if self.argument is None:
            return f"{self.effect} {self.tool}"
        return f"{self.effect} {self.tool}({self.argument} in {list(self.patterns)})"


class RulePermissionEngine(PermissionEngine):
    """Deny rules win; allow rules whitelist the tools they apply to.

    A call is denied when any deny rule matches it, or when allow rules
    exist for the tool and none of them matches.
    """

    def __init__(self, rules: Optional[List[PermissionRule]] = None):
        self.rules = list(rules or [])

    def authorize(self, tool_name: str, args: Dict[str, Any]) -> PermissionDecision:
        for rule in self.rules:
            if rule.effect == "deny" and rule.matches(tool_name, args):
                logger.info(f"[PERMISSIONS] Denied '{tool_name}' by rule '{rule.describe()}'")
                return PermissionDecision.deny(f"blocked by rule '{rule.describe()}'")

        allow_rules = [r for r in self.rules if r.effect == "allow" and r.applies_to(tool_name)]
        if allow_rules and not any(r.matches(tool_name, args) for r in allow_rules):
            logger.info(f"[PERMISSIONS] Denied '{tool_name}': no allow rule matched")
            return PermissionDecision.deny("arguments not permitted by any allow rule")

        return PermissionDecision.allow()
