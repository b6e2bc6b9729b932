"""Per-event outcomes and batch reports.

Usage:
    report = engine.apply(events)
    report.applied          # number of events applied
    for outcome in report.failures():
        print(outcome.failure, outcome.reason)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from codecity.core.events import ChangeEvent
from codecity.core.identity import BuildingId


class EventStatus(Enum):
    """What happened to one event."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


class FailureKind(Enum):
    """Why an event was skipped or failed."""

    INPUT_INCONSISTENCY = "input_inconsistency"
    """The event does not match the path's state (e.g. DELETE of an unknown path)."""

    CAPACITY_EXHAUSTED = "capacity_exhausted"
    """No grid cell could be found, even after growing the grid."""

    DESTINATION_CONFLICT = "destination_conflict"
    """A rename or move targets a path that already has an active building."""


@dataclass(frozen=True, slots=True)
class EventOutcome:
    """Result of applying a single event.

    Attributes:
        event: The event as received.
        status: Applied, skipped or failed.
        building_id: Building the event touched, if any.
        failure: Failure category for skipped/failed events.
        reason: Human readable explanation for skipped/failed events.
        implicit: True when the event created a building through the
            first-sighting fallback (MODIFY/RENAME/MOVE of an unknown path).
    """

    event: ChangeEvent
    status: EventStatus
    building_id: BuildingId | None = None
    failure: FailureKind | None = None
    reason: str = ""
    implicit: bool = False

    @property
    def ok(self) -> bool:
        return self.status is EventStatus.APPLIED


@dataclass
class ApplyReport:
    """Accumulated outcomes of one apply() call, in application order."""

    outcomes: list[EventOutcome] = field(default_factory=list)
    cancelled: bool = False
    total: int = 0

    def _count(self, status: EventStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)

    @property
    def applied(self) -> int:
        return self._count(EventStatus.APPLIED)

    @property
    def skipped(self) -> int:
        return self._count(EventStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(EventStatus.FAILED)

    @property
    def remaining(self) -> int:
        """Events left unapplied because the batch was cancelled."""
        return self.total - len(self.outcomes)

    def failures(self) -> list[EventOutcome]:
        """Skipped and failed outcomes."""
        return [outcome for outcome in self.outcomes if not outcome.ok]

    def merge(self, other: ApplyReport) -> None:
        """Append another report's outcomes to this one."""
        self.outcomes.extend(other.outcomes)
        self.total += other.total
        self.cancelled = self.cancelled or other.cancelled
