"""Spatial index: deterministic, collision-free grid placement.

Every file path hashes to a preferred cell. Collisions are resolved by a
spiral scan around that cell, and the grid grows symmetrically when it is
full or crowded. Cells on every `road_interval`-th row and column are
roads and are never built on.

Usage:
    index = SpatialIndex(initial_size=50, road_interval=4)
    position = index.allocate("src/app.ts", BuildingId(1))
    index.free(position)
"""

from __future__ import annotations

import dataclasses
import hashlib
import math
from collections.abc import Iterator
from typing import Any

from loguru import logger

from codecity.core.grid import Cell, CellState, Coordinate, GridBounds, GridStats
from codecity.core.identity import BuildingId
from codecity.storage.protocol import SnapshotError


class GridExhaustedError(Exception):
    """Raised when no free cell exists even after growing the grid."""


def stable_hash(key: str) -> int:
    """Deterministic hash of a key, identical across processes and runs.

    Uses the first 64 bits of the SHA256 digest of the UTF-8 encoded key.
    Lone surrogates (undecodable path bytes) are encoded as-is.
    """
    return int(hashlib.sha256(key.encode("utf-8", "surrogatepass")).hexdigest()[:16], 16)


def spiral_ring(center: Coordinate, radius: int) -> Iterator[Coordinate]:
    """Yield the perimeter of the square ring at `radius` around `center`.

    Order is fixed: dx ascending from -radius to radius, and for each dx,
    dz ascending. Only perimeter cells are produced.
    """
    if radius == 0:
        yield center
        return
    for dx in range(-radius, radius + 1):
        if abs(dx) == radius:
            for dz in range(-radius, radius + 1):
                yield center.offset(dx, dz)
        else:
            yield center.offset(dx, -radius)
            yield center.offset(dx, radius)


class SpatialIndex:
    """Grid allocator mapping string keys to stable integer cells.

    Structure:
        _cells[coordinate] = Cell
        _counts[state] = number of cells in that state

    Args:
        initial_size: Cells per side of the initial grid (centred on 0, 0).
        road_interval: Every Nth row and column is a road (>= 2).
        max_occupancy: Occupancy ratio that triggers proactive growth
            before a scan. None disables proactive growth.
    """

    def __init__(
        self,
        initial_size: int = 50,
        road_interval: int = 4,
        max_occupancy: float | None = 0.6,
    ):
        """Initialize the grid and lay out its road network.

        Raises:
            ValueError: If the size or road interval is too small, or the
                occupancy threshold is outside (0, 1].
        """
        if initial_size < 2:
            raise ValueError(f"initial_size must be at least 2, got {initial_size}")
        if road_interval < 2:
            raise ValueError(f"road_interval must be at least 2, got {road_interval}")
        if max_occupancy is not None and not 0.0 < max_occupancy <= 1.0:
            raise ValueError(f"max_occupancy must be in (0, 1], got {max_occupancy}")
        self._initial_size = initial_size
        self._road_interval = road_interval
        self._max_occupancy = max_occupancy
        self._bounds = GridBounds.centered(initial_size)
        self._cells: dict[Coordinate, Cell] = {}
        self._counts: dict[CellState, int] = {state: 0 for state in CellState}
        self._expansions = 0
        self._populate(self._bounds)

    # --- Layout ---

    def is_road(self, coordinate: Coordinate) -> bool:
        """Road rule: x or z divisible by the road interval. Holds for any coordinate."""
        return coordinate.x % self._road_interval == 0 or coordinate.z % self._road_interval == 0

    def _populate(self, bounds: GridBounds) -> None:
        """Create cells for every coordinate in `bounds` that does not exist yet."""
        for x in range(bounds.min_x, bounds.max_x + 1):
            for z in range(bounds.min_z, bounds.max_z + 1):
                coordinate = Coordinate(x, z)
                if coordinate in self._cells:
                    continue
                state = CellState.ROAD if self.is_road(coordinate) else CellState.EMPTY
                self._cells[coordinate] = Cell(coordinate=coordinate, state=state)
                self._counts[state] += 1

    def _set_state(self, cell: Cell, state: CellState) -> None:
        self._counts[cell.state] -= 1
        self._counts[state] += 1
        cell.state = state

    def expand(self) -> GridBounds:
        """Grow the grid by half its smaller dimension on every side.

        Existing cells keep their state; only new cells are classified.

        Returns:
            The new bounds.
        """
        amount = math.ceil(min(self._bounds.width, self._bounds.height) / 2)
        self._bounds = self._bounds.grown(amount)
        self._populate(self._bounds)
        self._expansions += 1
        logger.info(
            f"Grid expanded by {amount} to {self._bounds.width}x{self._bounds.height} "
            f"(expansion #{self._expansions})"
        )
        return self._bounds

    # --- Placement ---

    def preferred_position(self, key: str) -> Coordinate:
        """Deterministic preferred cell for `key` within the current bounds."""
        digest = stable_hash(key)
        width, height = self._bounds.width, self._bounds.height
        x = digest % width + self._bounds.min_x
        z = (digest // width) % height + self._bounds.min_z
        return Coordinate(x, z)

    def _is_empty(self, coordinate: Coordinate) -> bool:
        cell = self._cells.get(coordinate)
        return cell is not None and cell.state is CellState.EMPTY

    def _find_empty(self, preferred: Coordinate) -> Coordinate | None:
        """Spiral scan from `preferred` out to the larger grid dimension."""
        max_radius = max(self._bounds.width, self._bounds.height)
        for radius in range(max_radius + 1):
            for candidate in spiral_ring(preferred, radius):
                if self._is_empty(candidate):
                    return candidate
        return None

    def _crowded(self) -> bool:
        if self._max_occupancy is None:
            return False
        buildable = (
            self._counts[CellState.EMPTY]
            + self._counts[CellState.OCCUPIED]
            + self._counts[CellState.RESERVED]
        )
        taken = self._counts[CellState.OCCUPIED] + self._counts[CellState.RESERVED]
        return buildable == 0 or taken / buildable >= self._max_occupancy

    def allocate(self, key: str, occupant: BuildingId) -> Coordinate:
        """Claim a cell for `key` on behalf of `occupant`.

        Takes the preferred cell if it is empty, otherwise the first empty
        cell of the spiral scan. If the scan finds nothing the grid grows
        and the scan is retried once from the same preferred cell.

        Args:
            key: File path being placed.
            occupant: Building that will own the cell.

        Returns:
            The claimed coordinate.

        Raises:
            GridExhaustedError: If no empty cell exists after growing.
        """
        if self._crowded():
            self.expand()
        preferred = self.preferred_position(key)
        found = self._find_empty(preferred)
        if found is None:
            self.expand()
            found = self._find_empty(preferred)
        if found is None:
            raise GridExhaustedError(f"Unable to allocate a cell for {key!r}")
        self._claim(self._cells[found], occupant)
        return found

    def _claim(self, cell: Cell, occupant: BuildingId) -> None:
        self._set_state(cell, CellState.OCCUPIED)
        cell.occupant = occupant
        cell.reserved_by = None

    def occupy(
        self, coordinate: Coordinate, occupant: BuildingId, owner: str | None = None
    ) -> bool:
        """Claim a specific cell.

        EMPTY cells can always be claimed. A RESERVED cell can only be
        claimed by passing the matching reservation `owner`.

        Returns:
            True if the cell is now occupied by `occupant`.
        """
        cell = self._cells.get(coordinate)
        if cell is None:
            return False
        if cell.state is CellState.EMPTY or (
            cell.state is CellState.RESERVED and owner is not None and cell.reserved_by == owner
        ):
            self._claim(cell, occupant)
            return True
        return False

    def free(self, coordinate: Coordinate) -> bool:
        """Return an OCCUPIED cell to EMPTY.

        Returns:
            True if the cell was occupied, False otherwise (no-op).
        """
        cell = self._cells.get(coordinate)
        if cell is None or cell.state is not CellState.OCCUPIED:
            return False
        self._set_state(cell, CellState.EMPTY)
        cell.occupant = None
        cell.reserved_by = None
        return True

    def reserve(self, coordinate: Coordinate, owner: str) -> bool:
        """Hold an EMPTY cell so no allocation can claim it.

        Returns:
            True if reserved; False if the cell is missing or not EMPTY
            (including already RESERVED).
        """
        cell = self._cells.get(coordinate)
        if cell is None or cell.state is not CellState.EMPTY:
            return False
        self._set_state(cell, CellState.RESERVED)
        cell.reserved_by = owner
        return True

    def release(self, coordinate: Coordinate) -> bool:
        """Drop a reservation, returning the cell to EMPTY.

        Returns:
            True if the cell was RESERVED, False otherwise.
        """
        cell = self._cells.get(coordinate)
        if cell is None or cell.state is not CellState.RESERVED:
            return False
        self._set_state(cell, CellState.EMPTY)
        cell.reserved_by = None
        return True

    # --- Queries ---

    @property
    def bounds(self) -> GridBounds:
        return self._bounds

    @property
    def initial_size(self) -> int:
        return self._initial_size

    @property
    def road_interval(self) -> int:
        return self._road_interval

    @property
    def max_occupancy(self) -> float | None:
        return self._max_occupancy

    @property
    def expansions(self) -> int:
        """Number of times the grid has grown."""
        return self._expansions

    def __len__(self) -> int:
        return len(self._cells)

    def __contains__(self, coordinate: object) -> bool:
        return coordinate in self._cells

    def cell(self, coordinate: Coordinate) -> Cell | None:
        """Copy of the cell at `coordinate`, or None if out of bounds."""
        cell = self._cells.get(coordinate)
        return dataclasses.replace(cell) if cell is not None else None

    def state(self, coordinate: Coordinate) -> CellState | None:
        cell = self._cells.get(coordinate)
        return cell.state if cell is not None else None

    def occupant(self, coordinate: Coordinate) -> BuildingId | None:
        cell = self._cells.get(coordinate)
        return cell.occupant if cell is not None else None

    def occupied(self) -> dict[Coordinate, BuildingId]:
        """Map of every OCCUPIED coordinate to its occupant."""
        return {
            coordinate: cell.occupant
            for coordinate, cell in self._cells.items()
            if cell.state is CellState.OCCUPIED and cell.occupant is not None
        }

    def cells(self) -> Iterator[Cell]:
        """Iterate copies of all cells (for debugging and visualization)."""
        for cell in self._cells.values():
            yield dataclasses.replace(cell)

    def stats(self) -> GridStats:
        return GridStats(
            empty=self._counts[CellState.EMPTY],
            occupied=self._counts[CellState.OCCUPIED],
            reserved=self._counts[CellState.RESERVED],
            roads=self._counts[CellState.ROAD],
        )

    # --- Serialization ---

    def export_state(self) -> dict[str, Any]:
        """Serialize layout and claims. Road and empty cells are implied by bounds."""
        occupied: list[list[int]] = []
        reserved: list[list[Any]] = []
        for coordinate, cell in sorted(self._cells.items()):
            if cell.state is CellState.OCCUPIED and cell.occupant is not None:
                occupied.append([coordinate.x, coordinate.z, cell.occupant.index])
            elif cell.state is CellState.RESERVED:
                reserved.append([coordinate.x, coordinate.z, cell.reserved_by])
        return {
            "initial_size": self._initial_size,
            "road_interval": self._road_interval,
            "max_occupancy": self._max_occupancy,
            "bounds": self._bounds.to_dict(),
            "expansions": self._expansions,
            "occupied": occupied,
            "reserved": reserved,
        }

    @classmethod
    def from_state(cls, data: dict[str, Any]) -> SpatialIndex:
        """Build an index from `export_state()` output.

        Raises:
            SnapshotError: If the data is malformed or claims a road cell,
                an out-of-bounds cell, or the same cell twice.
        """
        try:
            index = cls(
                initial_size=int(data["initial_size"]),
                road_interval=int(data["road_interval"]),
                max_occupancy=data.get("max_occupancy"),
            )
            bounds = GridBounds.from_dict(data["bounds"])
            occupied = [
                (Coordinate(int(x), int(z)), BuildingId(int(i))) for x, z, i in data["occupied"]
            ]
            reserved = [
                (Coordinate(int(x), int(z)), str(o)) for x, z, o in data.get("reserved", [])
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotError(f"Malformed grid snapshot: {e}") from e

        initial = index._bounds
        if not (
            bounds.min_x <= initial.min_x
            and bounds.max_x >= initial.max_x
            and bounds.min_z <= initial.min_z
            and bounds.max_z >= initial.max_z
        ):
            raise SnapshotError(f"Bounds {bounds} do not contain the initial grid {initial}")
        if bounds != initial:
            index._bounds = bounds
            index._populate(bounds)
        index._expansions = int(data.get("expansions", 0))
        for coordinate, occupant in occupied:
            if not index.occupy(coordinate, occupant):
                raise SnapshotError(
                    f"Cannot occupy {coordinate} for {occupant}: {index.state(coordinate)}"
                )
        for coordinate, owner in reserved:
            if not index.reserve(coordinate, owner):
                raise SnapshotError(f"Cannot reserve {coordinate}: {index.state(coordinate)}")
        return index
