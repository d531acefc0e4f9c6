"""Versioned snapshots of every agent's conversation."""

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from loguru import logger

from ..agent.models import Message
from ..errors import ParseError, VersionMismatch

SNAPSHOT_TYPE = "nodeswarm.snapshot"
SNAPSHOT_VERSION = 1
SUPPORTED_VERSIONS = frozenset({SNAPSHOT_VERSION})


class SnapshotToolCall(BaseModel):
    """A tool call requested by an assistant message."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolCallMetadata(BaseModel):
    """Tool-call fields of one message."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    tool_calls: Tuple[SnapshotToolCall, ...] = ()
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        return {key: value for key, value in data.items() if value not in (None, [])}


class SnapshotMessage(BaseModel):
    """One serialized conversation message."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    role: Literal["user", "assistant", "tool", "system"]
    content: Optional[str] = None
    tool_call_metadata: Optional[ToolCallMetadata] = None

    @classmethod
    def from_message(cls, message: Message) -> "SnapshotMessage":
        return cls(**message.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_metadata is not None:
            data["tool_call_metadata"] = self.tool_call_metadata.to_dict()
        return data

    def to_message(self) -> Message:
        return Message.from_dict(self.to_dict())


class Snapshot(BaseModel):
    """Immutable capture of all agents' message histories."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["nodeswarm.snapshot"] = SNAPSHOT_TYPE
    version: int = SNAPSHOT_VERSION
    snapshot_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    agent_names: Tuple[str, ...] = ()
    agents: Dict[str, Tuple[SnapshotMessage, ...]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _names_match_agents(self) -> "Snapshot":
        if list(self.agent_names) != list(self.agents):
            raise ValueError(
                f"agent_names {list(self.agent_names)} do not match agents {list(self.agents)}"
            )
        return self

    def messages(self, agent_name: str) -> List[Message]:
        return [m.to_message() for m in self.agents[agent_name]]

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"agents"})
        data["agents"] = {
            name: [m.to_dict() for m in messages]
            for name, messages in self.agents.items()
        }
        return data

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def write_to_file(self, path: Union[str, Path]) -> Path:
        """Write atomically: temp file in the target directory, then rename."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(self.to_json())
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.info(f"[SNAPSHOT] Wrote {len(self.agent_names)} agent(s) to {path}")
        return path

    @classmethod
    def from_json(cls, text: str) -> "Snapshot":
        """Parse a snapshot document.

        Raises:
            ParseError: Invalid JSON, wrong type or schema violation
            VersionMismatch: Unsupported version
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError(f"Snapshot is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ParseError("Snapshot document must be a JSON object")
        if data.get("type") != SNAPSHOT_TYPE:
            raise ParseError(f"Not a snapshot document (type={data.get('type')!r})")

        version = data.get("version")
        if type(version) is not int or version not in SUPPORTED_VERSIONS:
            raise VersionMismatch(version, SUPPORTED_VERSIONS)

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ParseError(f"Malformed snapshot: {e}") from e

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Snapshot":
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"Snapshot {path} is not UTF-8 text: {e}") from e
        snapshot = cls.from_json(text)
        logger.info(f"[SNAPSHOT] Loaded {len(snapshot.agent_names)} agent(s) from {path}")
        return snapshot


def take_snapshot(source) -> Snapshot:
    """Capture every agent known to ``source``.

    ``source`` exposes ``agent_names`` and ``history(name)`` (a session
    manager or a swarm).
    """
    names = list(source.agent_names)
    agents = {
        name: tuple(SnapshotMessage.from_message(m) for m in source.history(name))
        for name in names
    }
    snapshot = Snapshot(agent_names=tuple(names), agents=agents)
    logger.debug(
        f"[SNAPSHOT] Captured {len(names)} agent(s), "
        f"{sum(len(m) for m in agents.values())} message(s)"
    )
    return snapshot
