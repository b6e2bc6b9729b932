"""Entity ledger: the single source of truth for building identity and history.

Buildings live in one arena keyed by id. File paths map to the ids that
have ever lived at that path, oldest first, so lookups by path resolve
through the arena and the two can never disagree about a building's data.

Usage:
    ledger = EntityLedger()
    building_id = ledger.create("src/a.ts", Coordinate(1, 1), create_layer)
    ledger.append_layer("src/a.ts", modify_layer)
    ledger.relocate("src/a.ts", "lib/a.ts", Coordinate(5, 3), move_layer)
    ledger.retire("lib/a.ts", delete_layer)
    ledger.get_by_id(building_id).active  # False, history kept
"""

from __future__ import annotations

import copy as cp
import dataclasses
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from codecity.core.building import Building, ChangeKind, FileCategory, Layer, categorize
from codecity.core.grid import Coordinate
from codecity.core.identity import BuildingId
from codecity.core.types import Copy
from codecity.storage.allocator import BuildingIdAllocator
from codecity.storage.protocol import SnapshotError


class LedgerError(Exception):
    """Base class for ledger operation failures."""


class BuildingNotFoundError(LedgerError, KeyError):
    """No building is recorded for the requested path or id."""


class DuplicateBuildingError(LedgerError):
    """An active building already exists for the requested path."""


class InactiveBuildingError(LedgerError):
    """The building at the requested path has been retired."""


@dataclass(frozen=True, slots=True)
class LedgerStats:
    """Aggregate counts over every building, active or retired."""

    total: int
    active: int
    category_counts: dict[FileCategory, int]
    total_layers: int
    total_additions: int
    total_deletions: int

    @property
    def inactive(self) -> int:
        return self.total - self.active

    @property
    def average_layers(self) -> float:
        return self.total_layers / self.total if self.total else 0.0


class EntityLedger:
    """Lifecycle tracker for buildings.

    Structure:
        _buildings[building_id] = Building   (insertion order = creation order)
        _keys[path] = [building_id, ...]     (oldest first; an active one is last)

    Every query returns deep copies, so callers cannot mutate ledger state.
    """

    def __init__(self) -> None:
        self._allocator = BuildingIdAllocator()
        self._buildings: dict[BuildingId, Building] = {}
        self._keys: dict[str, list[BuildingId]] = {}

    # --- Internal lookups ---

    def _resolve(self, key: str) -> Building | None:
        """Active building at `key`, else the most recent retired one."""
        ids = self._keys.get(key)
        return self._buildings[ids[-1]] if ids else None

    def _require(self, key: str) -> Building:
        building = self._resolve(key)
        if building is None:
            raise BuildingNotFoundError(f"No building found for file: {key}")
        return building

    def _require_active(self, key: str) -> Building:
        building = self._require(key)
        if not building.active:
            raise InactiveBuildingError(f"Building for {key} is retired")
        return building

    # --- Lifecycle ---

    def peek_id(self) -> BuildingId:
        """Id the next create() call will assign."""
        return self._allocator.peek()

    def create(self, key: str, position: Coordinate, first_layer: Layer) -> BuildingId:
        """Record a new building with its first layer.

        Args:
            key: File path.
            position: Cell the caller has already claimed for it.
            first_layer: Initial history entry.

        Returns:
            The new building's id.

        Raises:
            DuplicateBuildingError: If an active building exists for `key`.
        """
        existing = self._resolve(key)
        if existing is not None and existing.active:
            raise DuplicateBuildingError(f"Building already exists for file: {key}")

        building_id = self._allocator.allocate()
        self._buildings[building_id] = Building(
            id=building_id,
            key=key,
            position=position,
            layers=[first_layer],
            category=categorize(key),
            active=True,
        )
        self._keys.setdefault(key, []).append(building_id)
        return building_id

    def append_layer(self, key: str, layer: Layer) -> Copy[Building]:
        """Append a layer to the active building at `key`.

        Returns:
            Copy of the updated building.

        Raises:
            BuildingNotFoundError: If nothing was ever recorded for `key`.
            InactiveBuildingError: If the building is retired. Use create()
                to start a new building at that path instead.
        """
        building = self._require_active(key)
        building.layers.append(layer)
        return cp.deepcopy(building)

    def retire(self, key: str, terminal_layer: Layer) -> Copy[Building]:
        """Append a DELETE layer and mark the building inactive.

        The building stays in every map: its history remains queryable by
        path and by id.

        Returns:
            Copy of the retired building.

        Raises:
            BuildingNotFoundError: If nothing was ever recorded for `key`.
            InactiveBuildingError: If the building is already retired.
        """
        building = self._require_active(key)
        if terminal_layer.kind is not ChangeKind.DELETE:
            terminal_layer = dataclasses.replace(terminal_layer, kind=ChangeKind.DELETE)
        building.layers.append(terminal_layer)
        building.active = False
        return cp.deepcopy(building)

    def relocate(
        self,
        old_key: str,
        new_key: str,
        new_position: Coordinate,
        transition_layer: Layer,
    ) -> Copy[Building]:
        """Move the active building at `old_key` to `new_key`.

        Id, history and creation time are preserved; the category is
        re-derived from the new path.

        Returns:
            Copy of the relocated building.

        Raises:
            BuildingNotFoundError: If nothing was ever recorded for `old_key`.
            InactiveBuildingError: If the building at `old_key` is retired.
            DuplicateBuildingError: If an active building exists at `new_key`.
        """
        building = self._require_active(old_key)
        destination = self._resolve(new_key)
        if destination is not None and destination.active:
            raise DuplicateBuildingError(f"Building already exists at destination: {new_key}")

        if not transition_layer.kind.is_relocation:
            transition_layer = dataclasses.replace(transition_layer, kind=ChangeKind.MOVE)
        building.layers.append(transition_layer)
        building.key = new_key
        building.position = new_position
        building.category = categorize(new_key)

        old_ids = self._keys[old_key]
        old_ids.remove(building.id)
        if not old_ids:
            del self._keys[old_key]
        self._keys.setdefault(new_key, []).append(building.id)
        return cp.deepcopy(building)

    def clear(self) -> None:
        """Forget every building and restart id allocation."""
        self._allocator = BuildingIdAllocator()
        self._buildings.clear()
        self._keys.clear()

    # --- Queries ---

    def __len__(self) -> int:
        return len(self._buildings)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def get(self, key: str) -> Copy[Building] | None:
        """Building at `key`: the active one, else the most recently retired one."""
        building = self._resolve(key)
        return cp.deepcopy(building) if building is not None else None

    def get_active(self, key: str) -> Copy[Building] | None:
        building = self._resolve(key)
        return cp.deepcopy(building) if building is not None and building.active else None

    def is_active(self, key: str) -> bool:
        building = self._resolve(key)
        return building is not None and building.active

    def get_by_id(self, building_id: BuildingId) -> Copy[Building] | None:
        building = self._buildings.get(building_id)
        return cp.deepcopy(building) if building is not None else None

    def ids_for(self, key: str) -> list[BuildingId]:
        """Every building id that has lived at `key`, oldest first."""
        return list(self._keys.get(key, ()))

    def history(self, key: str) -> list[Layer]:
        """Layer history of the building resolved by `key` (empty if unknown)."""
        building = self._resolve(key)
        return list(building.layers) if building is not None else []

    def _select(self, predicate: Callable[[Building], bool]) -> list[Copy[Building]]:
        return [cp.deepcopy(b) for b in self._buildings.values() if predicate(b)]

    def all(self) -> list[Copy[Building]]:
        """Every building, active and retired, in creation order."""
        return self._select(lambda b: True)

    def active(self) -> list[Copy[Building]]:
        return self._select(lambda b: b.active)

    def by_category(self, category: FileCategory) -> list[Copy[Building]]:
        return self._select(lambda b: b.category is category)

    def by_author(self, author: str) -> list[Copy[Building]]:
        """Buildings with at least one layer by `author`."""
        return self._select(lambda b: any(layer.author == author for layer in b.layers))

    def modified_between(self, start: datetime, end: datetime) -> list[Copy[Building]]:
        """Buildings whose last modification falls in [start, end]."""
        return self._select(lambda b: start <= b.last_modified <= end)

    def most_changed(self, limit: int = 10) -> list[Copy[Building]]:
        """Buildings with the most layers; ties keep creation order."""
        ranked = sorted(self._buildings.values(), key=lambda b: -len(b.layers))
        return [cp.deepcopy(b) for b in ranked[:limit]]

    def most_recent(self, limit: int = 10) -> list[Copy[Building]]:
        """Buildings by last modification, newest first; ties keep creation order."""
        ranked = sorted(self._buildings.values(), key=lambda b: b.last_modified, reverse=True)
        return [cp.deepcopy(b) for b in ranked[:limit]]

    def statistics(self) -> LedgerStats:
        categories: Counter[FileCategory] = Counter()
        layers = additions = deletions = active = 0
        for building in self._buildings.values():
            categories[building.category] += 1
            if building.active:
                active += 1
            layers += len(building.layers)
            for layer in building.layers:
                additions += layer.additions
                deletions += layer.deletions
        return LedgerStats(
            total=len(self._buildings),
            active=active,
            category_counts=dict(categories),
            total_layers=layers,
            total_additions=additions,
            total_deletions=deletions,
        )

    # --- Serialization ---

    def export_state(self) -> dict[str, Any]:
        """Lossless JSON-serializable dump, including the path index."""
        return {
            "next_id": self._allocator.next_index,
            "buildings": [building.to_dict() for building in self._buildings.values()],
            "keys": {key: [i.index for i in ids] for key, ids in self._keys.items()},
        }

    def import_state(self, data: dict[str, Any]) -> None:
        """Replace all state with an `export_state()` dump.

        Ids and path mappings are restored exactly, not regenerated. The
        current state is left untouched if the dump is rejected.

        Raises:
            SnapshotError: If the dump is malformed or inconsistent.
        """
        try:
            buildings = [Building.from_dict(item) for item in data["buildings"]]
            keys = {
                str(key): [BuildingId(int(i)) for i in ids] for key, ids in data["keys"].items()
            }
            next_id = int(data["next_id"])
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotError(f"Malformed ledger snapshot: {e}") from e

        arena = _check_arena(buildings, keys, next_id)
        allocator = BuildingIdAllocator()
        allocator.restore(next_id)
        self._allocator = allocator
        self._buildings = arena
        self._keys = keys

    @classmethod
    def from_state(cls, data: dict[str, Any]) -> EntityLedger:
        ledger = cls()
        ledger.import_state(data)
        return ledger


def _check_arena(
    buildings: Iterable[Building],
    keys: dict[str, list[BuildingId]],
    next_id: int,
) -> dict[BuildingId, Building]:
    """Validate imported buildings against the imported path index."""
    arena: dict[BuildingId, Building] = {}
    for building in buildings:
        if building.id in arena:
            raise SnapshotError(f"Duplicate building id {building.id}")
        if building.id.index >= next_id:
            raise SnapshotError(f"Building id {building.id} not below next_id {next_id}")
        arena[building.id] = building

    listed: set[BuildingId] = set()
    for key, ids in keys.items():
        if not ids:
            raise SnapshotError(f"Empty id list for {key!r}")
        for position, building_id in enumerate(ids):
            building = arena.get(building_id)
            if building is None:
                raise SnapshotError(f"Unknown building id {building_id} under {key!r}")
            if building.key != key:
                raise SnapshotError(f"Building {building_id} is {building.key!r}, not {key!r}")
            if building.active and position != len(ids) - 1:
                raise SnapshotError(f"Active building {building_id} is not latest at {key!r}")
            if building_id in listed:
                raise SnapshotError(f"Building {building_id} listed twice")
            listed.add(building_id)

    missing = set(arena) - listed
    if missing:
        raise SnapshotError(f"Buildings missing from key index: {sorted(missing)}")
    return arena
