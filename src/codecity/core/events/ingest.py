"""Build change events from plain records and commit payloads.

These helpers are pure: they never fetch anything. The caller obtains the
commit data however it likes and hands it over as mappings.

Usage:
    events = events_from_commit(commit_detail_json)
    event = parse_event({"key": "a.ts", "kind": "create", "timestamp": "2024-01-01T00:00:00Z"})
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from codecity.core.building import ChangeKind
from codecity.core.events.models import EVENT_TYPES, ChangeEvent

_STATUS_KINDS: dict[str, ChangeKind] = {
    "added": ChangeKind.CREATE,
    "modified": ChangeKind.MODIFY,
    "removed": ChangeKind.DELETE,
}


def parse_timestamp(value: datetime | str | int | float) -> datetime:
    """Normalize a timestamp to a timezone-aware datetime.

    Accepts datetimes, ISO-8601 strings (including a trailing ``Z``) and
    Unix epoch seconds. Naive values are taken as UTC.

    Raises:
        ValueError: If a string is not valid ISO-8601.
        TypeError: For any other input type.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value)
    elif isinstance(value, int | float) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=UTC)
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def change_kind_for_status(status: str, previous_key: str | None = None) -> ChangeKind:
    """Map a hosting-API file status to a change kind.

    Unknown statuses (``copied``, ``changed``, ...) are treated as edits.
    """
    if status == "renamed":
        return ChangeKind.RENAME if previous_key else ChangeKind.MOVE
    return _STATUS_KINDS.get(status, ChangeKind.MODIFY)


def parse_event(record: Mapping[str, Any]) -> ChangeEvent:
    """Build the event variant matching `record["kind"]`.

    Args:
        record: Flat mapping with ``key``, ``kind``, ``timestamp`` and
            optionally ``previous_key``, ``author``, ``author_email``,
            ``additions``, ``deletions``, ``message``, ``source_id``.

    Returns:
        The typed event.

    Raises:
        KeyError: If a required field is missing.
        ValueError: If ``kind`` is not a known change kind.
    """
    kind = ChangeKind(record["kind"])
    fields: dict[str, Any] = {
        "key": record["key"],
        "timestamp": parse_timestamp(record["timestamp"]),
        "author": record.get("author") or "",
        "author_email": record.get("author_email") or "",
        "additions": int(record.get("additions") or 0),
        "deletions": int(record.get("deletions") or 0),
        "message": record.get("message") or "",
        "source_id": record.get("source_id") or "",
    }
    if kind.is_relocation:
        fields["previous_key"] = record.get("previous_key") or record["key"]
    return EVENT_TYPES[kind](**fields)  # type: ignore[return-value]


def events_from_commit(commit: Mapping[str, Any]) -> list[ChangeEvent]:
    """Turn one commit-detail payload into change events, in file order.

    Expects the shape returned by common hosting APIs::

        {
            "sha": "...",
            "commit": {"author": {"name", "email", "date"}, "message": "..."},
            "files": [{"filename", "previous_filename", "status",
                       "additions", "deletions"}, ...],
        }

    Returns:
        One event per changed file; empty if the payload lists no files.
    """
    details = commit.get("commit", {})
    author = details.get("author", {})
    timestamp = parse_timestamp(author["date"])
    events: list[ChangeEvent] = []
    for file in commit.get("files") or []:
        previous = file.get("previous_filename")
        kind = change_kind_for_status(file.get("status", ""), previous)
        events.append(
            parse_event(
                {
                    "key": file["filename"],
                    "previous_key": previous,
                    "kind": kind.value,
                    "timestamp": timestamp,
                    "author": author.get("name", ""),
                    "author_email": author.get("email", ""),
                    "additions": file.get("additions", 0),
                    "deletions": file.get("deletions", 0),
                    "message": details.get("message", ""),
                    "source_id": commit.get("sha", ""),
                }
            )
        )
    return events


def events_from_commits(commits: Iterable[Mapping[str, Any]]) -> list[ChangeEvent]:
    """Flatten several commit payloads into one event list (caller order)."""
    events: list[ChangeEvent] = []
    for commit in commits:
        events.extend(events_from_commit(commit))
    return events
