"""Change events and helpers to build them from external records."""

from codecity.core.events.ingest import (
    change_kind_for_status,
    events_from_commit,
    events_from_commits,
    parse_event,
    parse_timestamp,
)
from codecity.core.events.models import (
    ChangeEvent,
    CreateEvent,
    DeleteEvent,
    FileChangeEvent,
    ModifyEvent,
    MoveEvent,
    RelocationEvent,
    RenameEvent,
)

__all__ = [
    "ChangeEvent",
    "CreateEvent",
    "DeleteEvent",
    "FileChangeEvent",
    "ModifyEvent",
    "MoveEvent",
    "RelocationEvent",
    "RenameEvent",
    "change_kind_for_status",
    "events_from_commit",
    "events_from_commits",
    "parse_event",
    "parse_timestamp",
]
