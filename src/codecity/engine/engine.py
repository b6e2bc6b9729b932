"""DerivationEngine: applies change events to the spatial index and ledger.

The engine is the only component that touches both the SpatialIndex and
the EntityLedger for a single event, and it always does so in a fixed
order, so a failure partway through can at worst leave a freed cell
behind, never an occupied cell without a building or a building without
a cell.

Usage:
    engine = DerivationEngine(CitySettings(road_interval=4))
    engine.subscribe(print)

    report = engine.apply(events)          # sorted by timestamp first
    boxes = engine.geometry()              # active buildings only
    state = engine.export_state()          # hand to an external store

    # Yield to the event loop between events:
    report = await engine.apply_async(events, cancel=stop_event)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from loguru import logger
from pydantic import ValidationError

from codecity.config import CitySettings
from codecity.core.building import Building, ChangeKind, Layer
from codecity.core.events import (
    ChangeEvent,
    CreateEvent,
    DeleteEvent,
    ModifyEvent,
    MoveEvent,
    RenameEvent,
)
from codecity.core.grid import CellState, GridBounds, GridStats
from codecity.core.identity import BuildingId
from codecity.core.types import Copy
from codecity.engine.geometry import BuildingGeometry, building_geometry
from codecity.engine.notifications import CityUpdate, Listener, ListenerRegistry, UpdateKind
from codecity.engine.result import ApplyReport, EventOutcome, EventStatus, FailureKind
from codecity.storage import (
    SNAPSHOT_VERSION,
    EntityLedger,
    GridExhaustedError,
    SnapshotError,
    SnapshotStore,
    SpatialIndex,
)


class CancelSignal(Protocol):
    """Anything with an `is_set()` method, e.g. threading.Event or asyncio.Event."""

    def is_set(self) -> bool: ...


ProgressCallback = Callable[[int, int], Any]
"""Signature: (events_done, events_total) -> ignored"""


@dataclass(frozen=True, slots=True)
class CitySnapshot:
    """Read-only view of the whole city at one point in the event stream."""

    buildings: list[Building]
    bounds: GridBounds
    grid: GridStats
    total_files: int
    active_files: int
    total_layers: int
    last_event_at: datetime | None


class DerivationEngine:
    """Orchestrates SpatialIndex and EntityLedger for a stream of change events.

    Not thread-safe and not re-entrant: one event is fully applied (index,
    ledger, notifications) before the next begins. Parallel layouts need
    separate engine instances.

    Args:
        settings: Engine configuration. Defaults to CitySettings() (which
            reads CODECITY_* environment variables).
    """

    def __init__(self, settings: CitySettings | None = None):
        self._settings = settings or CitySettings()
        self._index = self._new_index(self._settings)
        self._ledger = EntityLedger()
        self._listeners = ListenerRegistry()
        self._clock: datetime | None = None
        self._busy = False

    @staticmethod
    def _new_index(settings: CitySettings) -> SpatialIndex:
        return SpatialIndex(
            initial_size=settings.initial_grid_size,
            road_interval=settings.road_interval,
            max_occupancy=settings.max_occupancy,
        )

    # --- Accessors ---

    @property
    def settings(self) -> CitySettings:
        return self._settings

    @property
    def index(self) -> SpatialIndex:
        return self._index

    @property
    def ledger(self) -> EntityLedger:
        return self._ledger

    @property
    def clock(self) -> datetime | None:
        """Timestamp of the latest applied event."""
        return self._clock

    # --- Listeners ---

    def subscribe(self, listener: Listener) -> Listener:
        """Register a notification listener. Usable as a decorator."""
        return self._listeners.subscribe(listener)

    def unsubscribe(self, listener: Listener) -> bool:
        return self._listeners.unsubscribe(listener)

    @property
    def listener_failures(self) -> int:
        return self._listeners.failures

    # --- Event application ---

    @staticmethod
    def order(events: Iterable[ChangeEvent]) -> list[ChangeEvent]:
        """Stable sort by timestamp; equal timestamps keep their input order."""
        return sorted(events, key=lambda event: event.timestamp)

    def _enter(self) -> None:
        if self._busy:
            raise RuntimeError(
                "DerivationEngine is already applying events; "
                "use a separate engine for concurrent work"
            )
        self._busy = True

    def _run(
        self,
        ordered: list[ChangeEvent],
        report: ApplyReport,
        cancel: CancelSignal | None,
        on_progress: ProgressCallback | None,
    ) -> Iterator[None]:
        """Apply events one by one, yielding between whole events."""
        for done, event in enumerate(ordered, start=1):
            if cancel is not None and cancel.is_set():
                report.cancelled = True
                logger.info(f"Event batch cancelled after {done - 1}/{len(ordered)} events")
                return
            report.outcomes.append(self._apply_one(event))
            if on_progress is not None:
                on_progress(done, len(ordered))
            yield

    def apply(
        self,
        events: Iterable[ChangeEvent],
        *,
        cancel: CancelSignal | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ApplyReport:
        """Apply a batch of events in timestamp order.

        Args:
            events: Change events in any order; they are sorted first.
            cancel: Checked before each event; once set, the batch stops
                and the engine is left consistent.
            on_progress: Called after each event with (done, total).

        Returns:
            Report with one outcome per processed event.

        Raises:
            RuntimeError: If called while another batch is in flight.
        """
        ordered = self.order(events)
        report = ApplyReport(total=len(ordered))
        self._enter()
        try:
            for _ in self._run(ordered, report, cancel, on_progress):
                pass
        finally:
            self._busy = False
        return report

    async def apply_async(
        self,
        events: Iterable[ChangeEvent],
        *,
        cancel: CancelSignal | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ApplyReport:
        """Async variant of apply() that yields to the event loop between events.

        Only the gap between two whole events is a suspension point. A
        second batch started on this engine while one is running raises.
        """
        ordered = self.order(events)
        report = ApplyReport(total=len(ordered))
        self._enter()
        try:
            for _ in self._run(ordered, report, cancel, on_progress):
                await asyncio.sleep(0)
        finally:
            self._busy = False
        return report

    def apply_event(self, event: ChangeEvent) -> EventOutcome:
        """Apply one event. Events older than the engine clock are skipped."""
        self._enter()
        try:
            return self._apply_one(event)
        finally:
            self._busy = False

    def _apply_one(self, event: ChangeEvent) -> EventOutcome:
        if self._clock is not None and event.timestamp < self._clock:
            return self._skip(
                event,
                FailureKind.INPUT_INCONSISTENCY,
                f"Event at {event.timestamp.isoformat()} is older than {self._clock.isoformat()}",
            )

        if isinstance(event, CreateEvent):
            outcome = self._create(event.key, event)
        elif isinstance(event, ModifyEvent):
            outcome = self._modify(event)
        elif isinstance(event, DeleteEvent):
            outcome = self._delete(event)
        elif isinstance(event, RenameEvent | MoveEvent):
            outcome = self._relocate(event)
        else:
            raise TypeError(f"Unsupported event type: {type(event).__name__}")

        if outcome.ok:
            self._clock = event.timestamp
            logger.debug(f"Applied {event.kind.value} {event.key} -> {outcome.building_id}")
        return outcome

    @staticmethod
    def _layer(event: ChangeEvent, kind: ChangeKind | None = None) -> Layer:
        return Layer(
            source_id=event.source_id,
            timestamp=event.timestamp,
            author=event.author,
            kind=kind or event.kind,
            additions=event.additions,
            deletions=event.deletions,
            message=event.message,
            author_email=event.author_email,
        )

    def _skip(
        self,
        event: ChangeEvent,
        failure: FailureKind,
        reason: str,
        building_id: BuildingId | None = None,
    ) -> EventOutcome:
        logger.warning(f"Skipping {event.kind.value} {event.key}: {reason}")
        return EventOutcome(
            event=event,
            status=EventStatus.SKIPPED,
            building_id=building_id,
            failure=failure,
            reason=reason,
        )

    def _fail(
        self,
        event: ChangeEvent,
        failure: FailureKind,
        reason: str,
        building_id: BuildingId | None = None,
    ) -> EventOutcome:
        logger.error(f"Failed {event.kind.value} {event.key}: {reason}")
        return EventOutcome(
            event=event,
            status=EventStatus.FAILED,
            building_id=building_id,
            failure=failure,
            reason=reason,
        )

    def _create(self, key: str, event: ChangeEvent, implicit: bool = False) -> EventOutcome:
        """Allocate a cell, then record the building. No cell, no building."""
        existing = self._ledger.get_active(key)
        if existing is not None:
            return self._skip(
                event,
                FailureKind.INPUT_INCONSISTENCY,
                f"Building already exists for file: {key}",
                existing.id,
            )

        building_id = self._ledger.peek_id()
        try:
            position = self._index.allocate(key, building_id)
        except GridExhaustedError as e:
            return self._fail(event, FailureKind.CAPACITY_EXHAUSTED, str(e))

        created = self._ledger.create(key, position, self._layer(event, ChangeKind.CREATE))
        self._listeners.emit(
            CityUpdate(
                kind=UpdateKind.CREATED,
                building_id=created,
                key=key,
                timestamp=event.timestamp,
                details={"position": position},
                implicit=implicit,
            )
        )
        return EventOutcome(
            event=event, status=EventStatus.APPLIED, building_id=created, implicit=implicit
        )

    def _modify(self, event: ModifyEvent) -> EventOutcome:
        if not self._ledger.is_active(event.key):
            return self._create(event.key, event, implicit=True)
        return self._update_in_place(event.key, event)

    def _update_in_place(self, key: str, event: ChangeEvent) -> EventOutcome:
        building = self._ledger.append_layer(key, self._layer(event))
        self._listeners.emit(
            CityUpdate(
                kind=UpdateKind.UPDATED,
                building_id=building.id,
                key=key,
                timestamp=event.timestamp,
                details={"layer_count": building.layer_count},
            )
        )
        return EventOutcome(event=event, status=EventStatus.APPLIED, building_id=building.id)

    def _delete(self, event: DeleteEvent) -> EventOutcome:
        """Retire in the ledger first, then free the cell."""
        if not self._ledger.is_active(event.key):
            return self._skip(
                event,
                FailureKind.INPUT_INCONSISTENCY,
                f"Cannot delete non-existent file: {event.key}",
            )

        building = self._ledger.retire(event.key, self._layer(event))
        self._index.free(building.position)
        self._listeners.emit(
            CityUpdate(
                kind=UpdateKind.DELETED,
                building_id=building.id,
                key=event.key,
                timestamp=event.timestamp,
                details={
                    "final_layer_count": building.layer_count,
                    "position": building.position,
                },
            )
        )
        return EventOutcome(event=event, status=EventStatus.APPLIED, building_id=building.id)

    def _relocate(self, event: RenameEvent | MoveEvent) -> EventOutcome:
        """Free the old cell, allocate the new one, then relocate in the ledger."""
        old_key, new_key = event.previous_key, event.key
        source = self._ledger.get_active(old_key)
        if source is None:
            return self._create(new_key, event, implicit=True)
        if old_key == new_key:
            return self._update_in_place(new_key, event)

        destination = self._ledger.get_active(new_key)
        if destination is not None:
            return self._fail(
                event,
                FailureKind.DESTINATION_CONFLICT,
                f"Building already exists at destination: {new_key}",
                source.id,
            )

        self._index.free(source.position)
        try:
            position = self._index.allocate(new_key, source.id)
        except GridExhaustedError as e:
            # The freed cell cannot have been claimed in between.
            self._index.occupy(source.position, source.id)
            return self._fail(event, FailureKind.CAPACITY_EXHAUSTED, str(e), source.id)

        building = self._ledger.relocate(old_key, new_key, position, self._layer(event))
        self._listeners.emit(
            CityUpdate(
                kind=UpdateKind.MOVED,
                building_id=building.id,
                key=new_key,
                timestamp=event.timestamp,
                details={
                    "old_key": old_key,
                    "new_key": new_key,
                    "old_position": source.position,
                    "new_position": position,
                },
            )
        )
        return EventOutcome(event=event, status=EventStatus.APPLIED, building_id=building.id)

    # --- Projections ---

    def geometry(self, now: datetime | None = None) -> list[BuildingGeometry]:
        """Bounding boxes for every active building, in creation order.

        Args:
            now: Reference time for layer ages. Defaults to the engine clock
                (latest applied event), so repeated calls agree.
        """
        reference = now or self._clock or datetime.now(tz=UTC)
        geometries: list[BuildingGeometry] = []
        for building in self._ledger.active():
            geometry = building_geometry(building, reference, self._settings)
            if geometry is not None:
                geometries.append(geometry)
        return geometries

    def snapshot(self) -> CitySnapshot:
        buildings = self._ledger.all()
        return CitySnapshot(
            buildings=buildings,
            bounds=self._index.bounds,
            grid=self._index.stats(),
            total_files=len(buildings),
            active_files=sum(1 for b in buildings if b.active),
            total_layers=sum(b.layer_count for b in buildings),
            last_event_at=self._clock,
        )

    def statistics(self) -> dict[str, Any]:
        """Flat summary of ledger and grid statistics."""
        ledger = self._ledger.statistics()
        grid = self._index.stats()
        return {
            "total_buildings": ledger.total,
            "active_buildings": ledger.active,
            "inactive_buildings": ledger.inactive,
            "category_counts": {c.value: n for c, n in ledger.category_counts.items()},
            "total_layers": ledger.total_layers,
            "total_additions": ledger.total_additions,
            "total_deletions": ledger.total_deletions,
            "average_layers": ledger.average_layers,
            "grid_utilization": grid.occupancy,
            "grid_cells": grid.total,
            "occupied_cells": grid.occupied,
            "road_cells": grid.roads,
            "grid_expansions": self._index.expansions,
        }

    def building(self, key: str) -> Copy[Building] | None:
        return self._ledger.get(key)

    def verify(self) -> list[str]:
        """Check that the index and ledger agree. Returns violations (empty if none)."""
        return audit(self._index, self._ledger)

    # --- Persistence ---

    def reset(self) -> None:
        """Drop all buildings and cells. Listeners stay registered."""
        self._index = self._new_index(self._settings)
        self._ledger.clear()
        self._clock = None

    def export_state(self) -> dict[str, Any]:
        """Self-contained, JSON-serializable snapshot sufficient to resume identically."""
        return {
            "version": SNAPSHOT_VERSION,
            "config": self._settings.model_dump(mode="json"),
            "clock": self._clock.isoformat() if self._clock else None,
            "ledger": self._ledger.export_state(),
            "index": self._index.export_state(),
        }

    def import_state(self, data: dict[str, Any]) -> None:
        """Replace all state with an export_state() snapshot.

        Raises:
            SnapshotError: If the snapshot is malformed, from another
                version, its config does not describe its grid, or its
                index and ledger disagree. The engine is
                unchanged in that case.
        """
        if data.get("version") != SNAPSHOT_VERSION:
            raise SnapshotError(f"Unsupported snapshot version: {data.get('version')!r}")
        try:
            settings = CitySettings.model_validate(data["config"])
            clock = datetime.fromisoformat(data["clock"]) if data.get("clock") else None
            index = SpatialIndex.from_state(data["index"])
            ledger = EntityLedger.from_state(data["ledger"])
        except SnapshotError:
            raise
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise SnapshotError(f"Malformed snapshot: {e}") from e

        layout = {
            "initial_grid_size": (settings.initial_grid_size, index.initial_size),
            "road_interval": (settings.road_interval, index.road_interval),
            "max_occupancy": (settings.max_occupancy, index.max_occupancy),
        }
        for name, (configured, stored) in layout.items():
            if configured != stored:
                raise SnapshotError(f"Config {name}={configured!r} does not match grid {stored!r}")

        problems = audit(index, ledger)
        if problems:
            raise SnapshotError("Inconsistent snapshot: " + "; ".join(problems))

        self._settings = settings
        self._index = index
        self._ledger = ledger
        self._clock = clock

    def save(self, store: SnapshotStore) -> None:
        store.write(self.export_state())

    def load(self, store: SnapshotStore) -> bool:
        """Restore from `store`. Returns False if it holds no snapshot."""
        data = store.read()
        if data is None:
            return False
        self.import_state(data)
        return True


def audit(index: SpatialIndex, ledger: EntityLedger) -> list[str]:
    """List every disagreement between a spatial index and a ledger."""
    problems: list[str] = []
    occupied = index.occupied()
    seen: dict[BuildingId, Building] = {}

    for building in ledger.all():
        seen[building.id] = building
        if not building.active:
            if occupied.get(building.position) == building.id:
                problems.append(f"Retired {building.id} still occupies {building.position}")
            continue
        if index.state(building.position) is not CellState.OCCUPIED:
            problems.append(f"{building.id} at {building.position} has no occupied cell")
        elif occupied.get(building.position) != building.id:
            problems.append(
                f"{building.id} at {building.position} but cell belongs to "
                f"{occupied.get(building.position)}"
            )

    for coordinate, occupant in occupied.items():
        if index.is_road(coordinate):
            problems.append(f"Road cell {coordinate} is occupied by {occupant}")
        owner = seen.get(occupant)
        if owner is None:
            problems.append(f"Cell {coordinate} occupied by unknown {occupant}")
        elif not owner.active or owner.position != coordinate:
            problems.append(f"Cell {coordinate} occupied by {occupant}, recorded elsewhere")
    return problems
