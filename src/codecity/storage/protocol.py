"""Persistence contract for engine snapshots.

The core never writes to disk or the network. It produces and consumes
self-contained, JSON-serializable snapshots and hands them to whatever
store the caller supplies.

Usage:
    class MemoryStore:
        def __init__(self):
            self.data = None

        def write(self, snapshot):
            self.data = snapshot

        def read(self):
            return self.data

    engine.save(MemoryStore())
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

SNAPSHOT_VERSION = 1


class SnapshotError(ValueError):
    """Raised when a snapshot is malformed or internally inconsistent."""


@runtime_checkable
class SnapshotStore(Protocol):
    """Protocol for external snapshot storage.

    Example implementations (outside this package):
        - JSON file on disk
        - Key/value store entry
        - Browser local storage behind an API
    """

    def write(self, snapshot: dict[str, Any]) -> None:
        """Persist a snapshot, replacing any previous one."""
        ...

    def read(self) -> dict[str, Any] | None:
        """Return the last written snapshot, or None if nothing is stored."""
        ...
