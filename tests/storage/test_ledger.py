"""Tests for EntityLedger.

Critical Invariants:
- A path has at most one active building
- Layers are append-only; retirement keeps history
- Relocation preserves id, history and creation time
- Snapshots restore ids and path mappings exactly
"""

import json

import pytest

from codecity.core.building import ChangeKind, FileCategory
from codecity.core.grid import Coordinate
from codecity.core.identity import BuildingId
from codecity.storage import (
    BuildingNotFoundError,
    DuplicateBuildingError,
    EntityLedger,
    InactiveBuildingError,
    SnapshotError,
)
from factories import at, make_layer


def seed(ledger, key="src/a.ts", day=0, position=Coordinate(1, 1), author="ada"):
    return ledger.create(key, position, make_layer(day, ChangeKind.CREATE, author=author))


# --- Lifecycle ---


def test_create_assigns_sequential_ids(ledger):
    first = seed(ledger, "a.ts")
    second = seed(ledger, "b.ts", position=Coordinate(1, 3))

    assert (first, second) == (BuildingId(1), BuildingId(2))
    assert ledger.get("a.ts").category is FileCategory.TYPESCRIPT
    assert ledger.get("a.ts").created_at == at(0)


def test_create_rejects_active_duplicate(ledger):
    seed(ledger)

    with pytest.raises(DuplicateBuildingError):
        seed(ledger)
    assert len(ledger) == 1


def test_append_layer_grows_history(ledger):
    seed(ledger)

    updated = ledger.append_layer("src/a.ts", make_layer(3))

    assert updated.layer_count == 2
    assert updated.last_modified == at(3)
    assert updated.created_at == at(0)


def test_append_layer_unknown_key(ledger):
    with pytest.raises(BuildingNotFoundError):
        ledger.append_layer("missing.ts", make_layer(1))


def test_not_found_is_also_a_key_error(ledger):
    with pytest.raises(KeyError):
        ledger.append_layer("missing.ts", make_layer(1))


def test_retire_keeps_history(ledger):
    building_id = seed(ledger)
    ledger.append_layer("src/a.ts", make_layer(1))

    retired = ledger.retire("src/a.ts", make_layer(2))

    assert not retired.active
    assert retired.layers[-1].kind is ChangeKind.DELETE
    assert ledger.get_by_id(building_id).layer_count == 3
    assert ledger.get("src/a.ts").id == building_id
    assert ledger.get_active("src/a.ts") is None
    assert [layer.timestamp for layer in ledger.history("src/a.ts")] == [at(0), at(1), at(2)]


def test_retired_building_rejects_changes(ledger):
    seed(ledger)
    ledger.retire("src/a.ts", make_layer(1))

    with pytest.raises(InactiveBuildingError):
        ledger.append_layer("src/a.ts", make_layer(2))
    with pytest.raises(InactiveBuildingError):
        ledger.retire("src/a.ts", make_layer(2))
    with pytest.raises(InactiveBuildingError):
        ledger.relocate("src/a.ts", "b.ts", Coordinate(3, 3), make_layer(2, ChangeKind.MOVE))


def test_recreating_a_retired_path_gets_fresh_id(ledger):
    old = seed(ledger)
    ledger.retire("src/a.ts", make_layer(1))

    new = seed(ledger, day=2)

    assert new != old
    assert ledger.get("src/a.ts").id == new
    assert ledger.ids_for("src/a.ts") == [old, new]
    assert not ledger.get_by_id(old).active


def test_relocate_preserves_identity(ledger):
    building_id = seed(ledger, "src/a.ts")
    ledger.append_layer("src/a.ts", make_layer(1))

    moved = ledger.relocate(
        "src/a.ts", "docs/a.md", Coordinate(5, 7), make_layer(2, ChangeKind.RENAME)
    )

    assert moved.id == building_id
    assert moved.key == "docs/a.md"
    assert moved.position == Coordinate(5, 7)
    assert moved.category is FileCategory.MARKDOWN
    assert moved.created_at == at(0)
    assert [layer.kind for layer in moved.layers] == [
        ChangeKind.CREATE,
        ChangeKind.MODIFY,
        ChangeKind.RENAME,
    ]
    assert "src/a.ts" not in ledger
    assert ledger.get("docs/a.md").id == building_id


def test_relocate_forces_relocation_kind(ledger):
    seed(ledger)

    moved = ledger.relocate("src/a.ts", "b.ts", Coordinate(3, 3), make_layer(1, ChangeKind.MODIFY))

    assert moved.layers[-1].kind is ChangeKind.MOVE


def test_relocate_onto_active_path_fails(ledger):
    seed(ledger, "a.ts")
    seed(ledger, "b.ts", position=Coordinate(1, 3))

    with pytest.raises(DuplicateBuildingError):
        ledger.relocate("a.ts", "b.ts", Coordinate(3, 3), make_layer(1, ChangeKind.MOVE))
    assert ledger.get("a.ts").active
    assert ledger.get("a.ts").layer_count == 1


def test_relocate_onto_retired_path_keeps_both(ledger):
    old = seed(ledger, "b.ts", position=Coordinate(1, 3))
    ledger.retire("b.ts", make_layer(1))
    mover = seed(ledger, "a.ts", day=2)

    ledger.relocate("a.ts", "b.ts", Coordinate(3, 3), make_layer(3, ChangeKind.MOVE))

    assert ledger.ids_for("b.ts") == [old, mover]
    assert ledger.get("b.ts").id == mover


# --- Queries ---


def test_queries_return_copies(ledger):
    seed(ledger)

    building = ledger.get("src/a.ts")
    building.layers.clear()
    building.key = "tampered"
    ledger.all()[0].active = False

    assert ledger.get("src/a.ts").layer_count == 1
    assert ledger.get("src/a.ts").active


def test_category_and_author_queries(ledger):
    seed(ledger, "a.ts", author="ada")
    seed(ledger, "b.py", position=Coordinate(1, 3), author="bob")
    ledger.append_layer("a.ts", make_layer(1, author="bob"))

    assert [b.key for b in ledger.by_category(FileCategory.PYTHON)] == ["b.py"]
    assert [b.key for b in ledger.by_author("bob")] == ["a.ts", "b.py"]
    assert [b.key for b in ledger.by_author("ada")] == ["a.ts"]


def test_modified_between_is_inclusive(ledger):
    seed(ledger, "a.ts", day=1)
    seed(ledger, "b.ts", day=5, position=Coordinate(1, 3))
    seed(ledger, "c.ts", day=9, position=Coordinate(3, 1))

    assert [b.key for b in ledger.modified_between(at(1), at(5))] == ["a.ts", "b.ts"]


def test_most_changed_breaks_ties_by_creation_order(ledger):
    for i, key in enumerate(["a.ts", "b.ts", "c.ts"]):
        seed(ledger, key, position=Coordinate(1, 1 + 2 * i))
    ledger.append_layer("c.ts", make_layer(1))

    assert [b.key for b in ledger.most_changed(limit=3)] == ["c.ts", "a.ts", "b.ts"]
    assert [b.key for b in ledger.most_changed(limit=1)] == ["c.ts"]


def test_most_recent_orders_newest_first(ledger):
    seed(ledger, "a.ts", day=4)
    seed(ledger, "b.ts", day=1, position=Coordinate(1, 3))
    seed(ledger, "c.ts", day=4, position=Coordinate(3, 1))

    assert [b.key for b in ledger.most_recent()] == ["a.ts", "c.ts", "b.ts"]


def test_statistics(ledger):
    seed(ledger, "a.ts")
    seed(ledger, "b.py", position=Coordinate(1, 3))
    ledger.append_layer("a.ts", make_layer(1))
    ledger.retire("b.py", make_layer(2))

    stats = ledger.statistics()

    assert stats.total == 2
    assert stats.active == 1
    assert stats.inactive == 1
    assert stats.total_layers == 4
    assert stats.average_layers == 2.0
    assert stats.total_additions == 40
    assert stats.total_deletions == 8
    assert stats.category_counts == {FileCategory.TYPESCRIPT: 1, FileCategory.PYTHON: 1}


def test_clear_restarts_ids(ledger):
    seed(ledger)
    ledger.clear()

    assert len(ledger) == 0
    assert seed(ledger) == BuildingId(1)


# --- Serialization ---


def populated_ledger():
    ledger = EntityLedger()
    seed(ledger, "a.ts")
    seed(ledger, "b.ts", position=Coordinate(1, 3))
    ledger.retire("a.ts", make_layer(1))
    seed(ledger, "a.ts", day=2, position=Coordinate(3, 1))
    ledger.relocate("b.ts", "lib/b.ts", Coordinate(3, 3), make_layer(3, ChangeKind.MOVE))
    return ledger


def test_snapshot_restores_exactly():
    """CRITICAL: Ids and path mappings must survive a JSON round trip unchanged.

    Why: Resuming from a snapshot has to continue exactly like the original run.
    """
    ledger = populated_ledger()
    dump = json.loads(json.dumps(ledger.export_state()))

    restored = EntityLedger.from_state(dump)

    assert restored.export_state() == ledger.export_state()
    assert restored.ids_for("a.ts") == [BuildingId(1), BuildingId(3)]
    assert restored.all() == ledger.all()
    assert restored.peek_id() == BuildingId(4)


def test_rejected_snapshot_leaves_state_untouched():
    ledger = populated_ledger()
    before = ledger.export_state()
    dump = ledger.export_state()
    dump["keys"]["a.ts"] = [3, 1]  # active building no longer last

    with pytest.raises(SnapshotError, match="not latest"):
        ledger.import_state(dump)
    assert ledger.export_state() == before


@pytest.mark.parametrize(
    "corrupt",
    [
        lambda d: d.pop("buildings"),
        lambda d: d.update(next_id=2),
        lambda d: d["keys"].pop("lib/b.ts"),
        lambda d: d["keys"].update({"other.ts": [2]}),
        lambda d: d["buildings"].append(d["buildings"][0]),
    ],
)
def test_inconsistent_snapshot_is_rejected(corrupt):
    dump = populated_ledger().export_state()
    corrupt(dump)

    with pytest.raises(SnapshotError):
        EntityLedger.from_state(dump)
