"""Tests for DerivationEngine event application.

Critical Invariants:
- A cell is claimed before its building is recorded, and freed only after retirement
- Every non-applied event leaves ledger and index untouched
- Events are applied in timestamp order; equal timestamps keep input order
- After any batch, index and ledger agree (verify() is empty)
"""

import threading

import pytest

from codecity import CitySettings, DerivationEngine
from codecity.core.building import ChangeKind
from codecity.core.grid import CellState
from codecity.core.identity import BuildingId
from codecity.engine import EventStatus, FailureKind
from codecity.storage import GridExhaustedError
from factories import at, create, delete, modify, move, rename


def tiny_engine():
    """Engine whose grid has exactly 4 buildable cells before growing."""
    return DerivationEngine(
        CitySettings.model_validate(
            {"initial_grid_size": 4, "road_interval": 2, "max_occupancy": 1.0}
        )
    )


# --- Basic lifecycle ---


def test_create_then_modify(engine):
    report = engine.apply([create("a.ts", 1), modify("a.ts", 2)])

    building = engine.building("a.ts")
    assert report.applied == 2
    assert building.active
    assert building.layer_count == 2
    assert engine.index.occupied() == {building.position: building.id}
    assert engine.verify() == []


def test_create_then_delete(engine):
    engine.apply([create("a.ts", 1)])
    position = engine.building("a.ts").position

    engine.apply([delete("a.ts", 2)])

    building = engine.building("a.ts")
    assert not building.active
    assert building.layer_count == 2
    assert building.layers[-1].kind is ChangeKind.DELETE
    assert engine.index.state(position) is CellState.EMPTY
    assert engine.geometry() == []
    assert engine.verify() == []


def test_create_then_move(engine):
    engine.apply([create("a.ts", 1)])
    original = engine.building("a.ts")

    engine.apply([move("a.ts", "b/a.ts", 2)])

    moved = engine.building("b/a.ts")
    assert engine.building("a.ts") is None
    assert moved.id == original.id
    assert moved.layer_count == 2
    assert moved.layers[-1].kind is ChangeKind.MOVE
    assert engine.index.occupant(moved.position) == original.id
    # The freed cell may only be reused if the scan from the new path lands on it.
    if moved.position != original.position:
        assert engine.index.state(original.position) is CellState.EMPTY
    assert engine.verify() == []


def test_rename_keeps_history_and_recategorizes(engine):
    engine.apply([create("a.ts", 1), modify("a.ts", 2), rename("a.ts", "a.md", 3)])

    building = engine.building("a.md")
    assert [layer.kind for layer in building.layers] == [
        ChangeKind.CREATE,
        ChangeKind.MODIFY,
        ChangeKind.RENAME,
    ]
    assert building.category.value == "markdown"
    assert building.created_at == at(1)


def test_delete_of_unknown_key_changes_nothing(engine):
    engine.apply([create("a.ts", 1)])
    before = engine.export_state()

    report = engine.apply([delete("ghost.ts", 2)])

    outcome = report.outcomes[0]
    assert outcome.status is EventStatus.SKIPPED
    assert outcome.failure is FailureKind.INPUT_INCONSISTENCY
    assert engine.export_state() == before


def test_delete_twice_skips_second(engine):
    report = engine.apply([create("a.ts", 1), delete("a.ts", 2), delete("a.ts", 3)])

    assert [o.status for o in report.outcomes] == [
        EventStatus.APPLIED,
        EventStatus.APPLIED,
        EventStatus.SKIPPED,
    ]
    assert engine.building("a.ts").layer_count == 2


def test_duplicate_create_is_skipped(engine):
    report = engine.apply([create("a.ts", 1), create("a.ts", 2)])

    assert report.skipped == 1
    assert report.outcomes[1].building_id == BuildingId(1)
    assert len(engine.ledger) == 1


def test_recreate_after_delete_gets_new_id(engine):
    engine.apply([create("a.ts", 1), delete("a.ts", 2), create("a.ts", 3)])

    assert engine.building("a.ts").id == BuildingId(2)
    assert not engine.ledger.get_by_id(BuildingId(1)).active
    assert engine.ledger.ids_for("a.ts") == [BuildingId(1), BuildingId(2)]
    assert engine.verify() == []


# --- First-sighting fallback ---


def test_modify_of_unknown_key_creates_implicitly(engine):
    report = engine.apply([modify("a.ts", 1)])

    outcome = report.outcomes[0]
    building = engine.building("a.ts")
    assert outcome.ok
    assert outcome.implicit
    assert building.layer_count == 1
    assert building.layers[0].kind is ChangeKind.CREATE
    assert building.layers[0].additions == 5


def test_move_of_unknown_source_creates_at_destination(engine):
    report = engine.apply([rename("old.ts", "new.ts", 1)])

    assert report.outcomes[0].implicit
    assert engine.building("new.ts").active
    assert "old.ts" not in engine.ledger


def test_modify_after_delete_starts_new_building(engine):
    report = engine.apply([create("a.ts", 1), delete("a.ts", 2), modify("a.ts", 3)])

    assert report.outcomes[2].implicit
    assert engine.building("a.ts").id == BuildingId(2)


# --- Relocation edge cases ---


def test_move_onto_active_destination_fails(engine):
    engine.apply([create("a.ts", 1), create("b.ts", 1)])
    a_before = engine.building("a.ts")
    b_before = engine.building("b.ts")

    report = engine.apply([move("a.ts", "b.ts", 2)])

    outcome = report.outcomes[0]
    assert outcome.status is EventStatus.FAILED
    assert outcome.failure is FailureKind.DESTINATION_CONFLICT
    assert engine.building("a.ts") == a_before
    assert engine.building("b.ts") == b_before
    assert engine.clock == at(1)
    assert engine.verify() == []


def test_move_onto_retired_destination_succeeds(engine):
    engine.apply([create("b.ts", 1), delete("b.ts", 2), create("a.ts", 3)])

    report = engine.apply([move("a.ts", "b.ts", 4)])

    assert report.applied == 1
    assert engine.building("b.ts").id == BuildingId(2)
    assert engine.ledger.ids_for("b.ts") == [BuildingId(1), BuildingId(2)]


def test_rename_to_same_key_appends_in_place(engine):
    engine.apply([create("a.ts", 1)])
    position = engine.building("a.ts").position

    engine.apply([rename("a.ts", "a.ts", 2)])

    building = engine.building("a.ts")
    assert building.layer_count == 2
    assert building.position == position


def test_move_rolls_back_when_no_cell_is_found(engine, monkeypatch):
    engine.apply([create("a.ts", 1)])
    original = engine.building("a.ts")

    def exhausted(key, occupant):
        raise GridExhaustedError(f"Unable to allocate a cell for {key!r}")

    monkeypatch.setattr(engine.index, "allocate", exhausted)
    report = engine.apply([move("a.ts", "b.ts", 2)])

    assert report.outcomes[0].failure is FailureKind.CAPACITY_EXHAUSTED
    assert engine.building("a.ts") == original
    assert engine.index.occupant(original.position) == original.id
    assert engine.verify() == []


# --- Capacity ---


def test_capacity_exhaustion_creates_nothing(monkeypatch):
    engine = tiny_engine()
    monkeypatch.setattr(engine.index, "expand", lambda: engine.index.bounds)

    report = engine.apply([create(f"f{i}.ts", i) for i in range(5)])

    last = report.outcomes[-1]
    assert report.applied == 4
    assert last.status is EventStatus.FAILED
    assert last.failure is FailureKind.CAPACITY_EXHAUSTED
    assert len(engine.ledger) == 4
    assert engine.ledger.peek_id() == BuildingId(5)
    assert engine.verify() == []


def test_grid_grows_instead_of_failing():
    engine = tiny_engine()

    report = engine.apply([create(f"f{i}.ts", i) for i in range(10)])

    assert report.applied == 10
    assert engine.index.expansions >= 1
    assert engine.statistics()["grid_expansions"] == engine.index.expansions
    assert engine.verify() == []


# --- Ordering ---


def test_batch_is_sorted_by_timestamp(engine):
    report = engine.apply([modify("a.ts", 2), create("a.ts", 1)])

    assert report.applied == 2
    assert not any(o.implicit for o in report.outcomes)
    assert [layer.kind for layer in engine.building("a.ts").layers] == [
        ChangeKind.CREATE,
        ChangeKind.MODIFY,
    ]


def test_equal_timestamps_keep_input_order(engine):
    report = engine.apply([create("a.ts", 1), modify("a.ts", 1), delete("a.ts", 1)])

    assert report.applied == 3
    assert not engine.building("a.ts").active


def test_event_older_than_clock_is_skipped(engine):
    engine.apply([create("a.ts", 5)])

    outcome = engine.apply_event(modify("a.ts", 3))

    assert outcome.status is EventStatus.SKIPPED
    assert outcome.failure is FailureKind.INPUT_INCONSISTENCY
    assert engine.building("a.ts").layer_count == 1
    assert engine.clock == at(5)


def test_skipped_events_do_not_advance_clock(engine):
    engine.apply([create("a.ts", 1), delete("ghost.ts", 9)])

    assert engine.clock == at(1)


# --- Batches ---


def test_cancel_stops_between_events(engine):
    stop = threading.Event()

    def progress(done, total):
        if done == 2:
            stop.set()

    report = engine.apply(
        [create(f"f{i}.ts", i) for i in range(5)], cancel=stop, on_progress=progress
    )

    assert report.cancelled
    assert report.applied == 2
    assert report.remaining == 3
    assert len(engine.ledger) == 2
    assert engine.verify() == []


def test_progress_reports_every_event(engine):
    calls = []

    engine.apply(
        [create("a.ts", 1), modify("a.ts", 2)],
        on_progress=lambda done, total: calls.append((done, total)),
    )

    assert calls == [(1, 2), (2, 2)]


def test_reentrant_apply_is_rejected(engine):
    """CRITICAL: A listener may not start a batch on the engine notifying it.

    Why: Nested application would interleave two events' index/ledger updates.
    """
    errors = []

    def listener(update):
        try:
            engine.apply([create("nested.ts", 9)])
        except RuntimeError as e:
            errors.append(e)

    engine.subscribe(listener)
    report = engine.apply([create("a.ts", 1)])

    assert report.applied == 1
    assert len(errors) == 1
    assert "already applying" in str(errors[0])
    assert "nested.ts" not in engine.ledger


def test_engine_is_usable_after_listener_error(engine):
    engine.subscribe(lambda update: 1 / 0)

    engine.apply([create("a.ts", 1)])
    report = engine.apply([modify("a.ts", 2)])

    assert report.applied == 1
    assert engine.listener_failures == 2


# --- Read models ---


def test_snapshot_and_statistics(engine):
    engine.apply([create("a.ts", 1), create("b.py", 2), modify("a.ts", 3), delete("b.py", 4)])

    snapshot = engine.snapshot()
    stats = engine.statistics()

    assert snapshot.total_files == 2
    assert snapshot.active_files == 1
    assert snapshot.total_layers == 4
    assert snapshot.last_event_at == at(4)
    assert snapshot.grid.occupied == 1
    assert stats["total_buildings"] == 2
    assert stats["inactive_buildings"] == 1
    assert stats["category_counts"] == {"typescript": 1, "python": 1}
    assert stats["occupied_cells"] == 1


def test_reset_keeps_listeners(engine):
    seen = []
    engine.subscribe(seen.append)
    engine.apply([create("a.ts", 1)])

    engine.reset()
    engine.apply([create("b.ts", 1)])

    assert len(engine.ledger) == 1
    assert engine.building("b.ts").id == BuildingId(1)
    assert len(seen) == 2


def test_verify_reports_tampering(engine):
    engine.apply([create("a.ts", 1)])
    engine.index.free(engine.building("a.ts").position)

    problems = engine.verify()

    assert len(problems) == 1
    assert "has no occupied cell" in problems[0]


def test_skips_are_logged(engine, log_messages):
    engine.apply([delete("ghost.ts", 1)])

    assert any("Skipping delete ghost.ts" in m for m in log_messages)


def test_reports_merge(engine):
    first = engine.apply([create("a.ts", 1), delete("ghost.ts", 2)])
    second = engine.apply([modify("a.ts", 3)])

    first.merge(second)

    assert first.total == 3
    assert first.applied == 2
    assert [o.event.key for o in first.failures()] == ["ghost.ts"]


def test_undecodable_path_does_not_abort_batch(engine):
    """Paths decoded with surrogateescape still get a building.

    Why: Git allows non-UTF-8 path bytes; one such file must not drop the rest of the batch.
    """
    odd = b"src/caf\xe9.ts".decode("utf-8", "surrogateescape")

    report = engine.apply([create("a.ts", 1), create(odd, 2), create("b.ts", 3)])

    assert report.applied == 3
    assert engine.building(odd).active
    assert engine.building("b.ts").active
    assert engine.verify() == []
