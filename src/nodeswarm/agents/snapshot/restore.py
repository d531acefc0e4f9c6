"""Restore conversation state from a snapshot."""

from typing import Dict, List
from dataclasses import dataclass, field
from loguru import logger

from .snapshot import Snapshot

RESTORED = "restored"
UNMATCHED = "unmatched"


@dataclass
class RestoreResult:
    """Per-agent outcome of a restore."""
    outcomes: Dict[str, str] = field(default_factory=dict)  # agent -> restored | unmatched

    @property
    def unmatched_agents(self) -> List[str]:
        return [name for name, outcome in self.outcomes.items() if outcome == UNMATCHED]

    @property
    def restored_agents(self) -> List[str]:
        return [name for name, outcome in self.outcomes.items() if outcome == RESTORED]

    @property
    def success(self) -> bool:
        return not self.unmatched_agents

    @property
    def summary(self) -> str:
        if self.success:
            return f"Snapshot restored successfully. All {len(self.outcomes)} agent(s) restored."
        return (
            f"Snapshot restored with warnings. {len(self.restored_agents)} agent(s) restored, "
            f"{len(self.unmatched_agents)} skipped (not in this swarm): {', '.join(self.unmatched_agents)}"
        )


def restore_snapshot(snapshot: Snapshot, target) -> RestoreResult:
    """Replace each matched agent's history with the snapshot's.

    ``target`` exposes ``has_agent(name)`` and ``replace_history(name,
    messages)``. Agents absent from ``target`` are recorded as unmatched.
    """
    result = RestoreResult()
    histories = {}
    for name in snapshot.agent_names:
        if not target.has_agent(name):
            logger.warning(f"[SNAPSHOT] Agent '{name}' not found in target, skipping")
            result.outcomes[name] = UNMATCHED
            continue
        histories[name] = snapshot.messages(name)
        result.outcomes[name] = RESTORED

    # Every history is built before the first replacement
    for name, messages in histories.items():
        target.replace_history(name, messages)

    log = logger.info if result.success else logger.warning
    log(f"[SNAPSHOT] {result.summary}")
    return result
