"""Explicit registry of reusable agent definitions."""

from typing import Dict, Iterator, List, Optional
from loguru import logger

from .base import AgentDefinition


class Registry:
    """Agent definitions shared across workflows.

    Passed by reference into builders; workflow-local definitions take
    precedence over entries found here.
    """

    def __init__(self, definitions: Optional[List[AgentDefinition]] = None):
        self._agents: Dict[str, AgentDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: AgentDefinition) -> "Registry":
        if definition.name in self._agents:
            raise ValueError(f"Agent '{definition.name}' is already registered")
        self._agents[definition.name] = definition
        logger.debug(f"[REGISTRY] Registered agent '{definition.name}'")
        return self

    def get(self, name: str) -> Optional[AgentDefinition]:
        return self._agents.get(name)

    def names(self) -> List[str]:
        return list(self._agents)

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    def __iter__(self) -> Iterator[AgentDefinition]:
        return iter(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)
