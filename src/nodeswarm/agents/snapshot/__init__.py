"""Snapshot and restore of agent conversation state."""

from .snapshot import (
    SNAPSHOT_TYPE,
    SNAPSHOT_VERSION,
    SUPPORTED_VERSIONS,
    Snapshot,
    SnapshotMessage,
    SnapshotToolCall,
    ToolCallMetadata,
    take_snapshot
)
from .restore import RESTORED, UNMATCHED, RestoreResult, restore_snapshot

__all__ = [
    "RESTORED",
    "UNMATCHED",
    "RestoreResult",
    "SNAPSHOT_TYPE",
    "SNAPSHOT_VERSION",
    "SUPPORTED_VERSIONS",
    "Snapshot",
    "SnapshotMessage",
    "SnapshotToolCall",
    "ToolCallMetadata",
    "restore_snapshot",
    "take_snapshot",
]
