"""Change events: the closed set of inputs the engine consumes.

Each change kind is its own frozen dataclass carrying only the fields it
needs, so the engine dispatches on type instead of checking payload shape.

Usage:
    event = RenameEvent(
        previous_key="src/a.ts",
        key="src/lib/a.ts",
        timestamp=datetime(2024, 3, 1, tzinfo=UTC),
        author="ada",
    )
    event.kind  # ChangeKind.RENAME
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import ClassVar

from codecity.core.building import ChangeKind


@dataclass(frozen=True, slots=True, kw_only=True)
class FileChangeEvent:
    """Fields shared by every change event.

    Attributes:
        key: Path the change applies to (destination path for relocations).
        timestamp: When the change happened. Naive values are taken as UTC.
        author: Author name.
        author_email: Author e-mail.
        additions: Lines added.
        deletions: Lines removed.
        message: Commit message.
        source_id: Identifier of the originating commit.
    """

    kind: ClassVar[ChangeKind]

    key: str
    timestamp: datetime
    author: str = ""
    author_email: str = ""
    additions: int = 0
    deletions: int = 0
    message: str = ""
    source_id: str = ""

    def __post_init__(self) -> None:
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=UTC))


@dataclass(frozen=True, slots=True, kw_only=True)
class CreateEvent(FileChangeEvent):
    """A file was added."""

    kind: ClassVar[ChangeKind] = ChangeKind.CREATE


@dataclass(frozen=True, slots=True, kw_only=True)
class ModifyEvent(FileChangeEvent):
    """An existing file was edited in place."""

    kind: ClassVar[ChangeKind] = ChangeKind.MODIFY


@dataclass(frozen=True, slots=True, kw_only=True)
class DeleteEvent(FileChangeEvent):
    """A file was removed."""

    kind: ClassVar[ChangeKind] = ChangeKind.DELETE


@dataclass(frozen=True, slots=True, kw_only=True)
class RenameEvent(FileChangeEvent):
    """A file was renamed from `previous_key` to `key`."""

    kind: ClassVar[ChangeKind] = ChangeKind.RENAME

    previous_key: str


@dataclass(frozen=True, slots=True, kw_only=True)
class MoveEvent(FileChangeEvent):
    """A file was moved from `previous_key` to `key`."""

    kind: ClassVar[ChangeKind] = ChangeKind.MOVE

    previous_key: str


ChangeEvent = CreateEvent | ModifyEvent | DeleteEvent | RenameEvent | MoveEvent
"""Any event the engine accepts."""

RelocationEvent = RenameEvent | MoveEvent

EVENT_TYPES: dict[ChangeKind, type[FileChangeEvent]] = {
    ChangeKind.CREATE: CreateEvent,
    ChangeKind.MODIFY: ModifyEvent,
    ChangeKind.DELETE: DeleteEvent,
    ChangeKind.RENAME: RenameEvent,
    ChangeKind.MOVE: MoveEvent,
}
