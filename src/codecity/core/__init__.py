"""Core models: stateless primitives shared by storage and engine.

Architecture Note:
    core/ contains plain data models and pure functions with no runtime
    state. For stateful services, see storage/ and engine/.
"""

from codecity.core.building import Building, ChangeKind, FileCategory, Layer, categorize
from codecity.core.events import (
    ChangeEvent,
    CreateEvent,
    DeleteEvent,
    ModifyEvent,
    MoveEvent,
    RenameEvent,
    events_from_commit,
    parse_event,
)
from codecity.core.grid import Cell, CellState, Coordinate, GridBounds, GridStats
from codecity.core.identity import BuildingId
from codecity.core.types import Copy

__all__ = [
    # Identity
    "BuildingId",
    # Grid
    "Cell",
    "CellState",
    "Coordinate",
    "GridBounds",
    "GridStats",
    # Buildings
    "Building",
    "ChangeKind",
    "FileCategory",
    "Layer",
    "categorize",
    # Events
    "ChangeEvent",
    "CreateEvent",
    "ModifyEvent",
    "DeleteEvent",
    "RenameEvent",
    "MoveEvent",
    "events_from_commit",
    "parse_event",
    # Types
    "Copy",
]
