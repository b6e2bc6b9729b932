"""Grid models: coordinates, cells and bounds.

Usage:
    origin = Coordinate(0, 0)
    bounds = GridBounds.centered(50)
    bounds.contains(origin)  # True
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from codecity.core.identity import BuildingId


@dataclass(frozen=True, slots=True, order=True)
class Coordinate:
    """Integer grid position. Identity is the (x, z) pair itself."""

    x: int
    z: int

    def offset(self, dx: int, dz: int) -> Coordinate:
        return Coordinate(self.x + dx, self.z + dz)

    def to_list(self) -> list[int]:
        return [self.x, self.z]

    @classmethod
    def from_list(cls, data: list[int] | tuple[int, int]) -> Coordinate:
        x, z = data
        return cls(int(x), int(z))


class CellState(Enum):
    """Occupancy state of a single grid cell."""

    EMPTY = "empty"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    ROAD = "road"


@dataclass(slots=True)
class Cell:
    """One grid cell.

    Attributes:
        coordinate: Position of the cell.
        state: Current occupancy state.
        occupant: Building holding the cell (OCCUPIED only).
        reserved_by: Owner of a transient reservation (RESERVED only).
    """

    coordinate: Coordinate
    state: CellState = CellState.EMPTY
    occupant: BuildingId | None = None
    reserved_by: str | None = None

    @property
    def buildable(self) -> bool:
        return self.state is not CellState.ROAD


@dataclass(frozen=True, slots=True)
class GridBounds:
    """Inclusive rectangular bounds of the grid."""

    min_x: int
    max_x: int
    min_z: int
    max_z: int

    @classmethod
    def centered(cls, size: int) -> GridBounds:
        """Square bounds of `size` cells per side, centred on the origin."""
        low = -(size // 2)
        high = low + size - 1
        return cls(min_x=low, max_x=high, min_z=low, max_z=high)

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_z - self.min_z + 1

    def contains(self, coordinate: Coordinate) -> bool:
        return (
            self.min_x <= coordinate.x <= self.max_x and self.min_z <= coordinate.z <= self.max_z
        )

    def grown(self, amount: int) -> GridBounds:
        """Bounds enlarged by `amount` cells in every direction."""
        return GridBounds(
            min_x=self.min_x - amount,
            max_x=self.max_x + amount,
            min_z=self.min_z - amount,
            max_z=self.max_z + amount,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "min_x": self.min_x,
            "max_x": self.max_x,
            "min_z": self.min_z,
            "max_z": self.max_z,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GridBounds:
        return cls(
            min_x=int(data["min_x"]),
            max_x=int(data["max_x"]),
            min_z=int(data["min_z"]),
            max_z=int(data["max_z"]),
        )


@dataclass(frozen=True, slots=True)
class GridStats:
    """Cell counts per state.

    `occupancy` is the share of buildable cells (everything except roads)
    that are OCCUPIED.
    """

    empty: int
    occupied: int
    reserved: int
    roads: int

    @property
    def total(self) -> int:
        return self.empty + self.occupied + self.reserved + self.roads

    @property
    def buildable(self) -> int:
        return self.empty + self.occupied + self.reserved

    @property
    def occupancy(self) -> float:
        return self.occupied / self.buildable if self.buildable else 0.0
