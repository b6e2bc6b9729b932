"""Grid primitives: coordinates, cell states and bounds."""

from codecity.core.grid.models import Cell, CellState, Coordinate, GridBounds, GridStats

__all__ = [
    "Cell",
    "CellState",
    "Coordinate",
    "GridBounds",
    "GridStats",
]
