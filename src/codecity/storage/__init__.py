"""Stateful services: id allocation, spatial index and entity ledger."""

from codecity.storage.allocator import BuildingIdAllocator
from codecity.storage.grid import GridExhaustedError, SpatialIndex, spiral_ring, stable_hash
from codecity.storage.ledger import (
    BuildingNotFoundError,
    DuplicateBuildingError,
    EntityLedger,
    InactiveBuildingError,
    LedgerError,
    LedgerStats,
)
from codecity.storage.protocol import SNAPSHOT_VERSION, SnapshotError, SnapshotStore

__all__ = [
    "BuildingIdAllocator",
    "SpatialIndex",
    "GridExhaustedError",
    "spiral_ring",
    "stable_hash",
    "EntityLedger",
    "LedgerError",
    "LedgerStats",
    "BuildingNotFoundError",
    "DuplicateBuildingError",
    "InactiveBuildingError",
    "SnapshotStore",
    "SnapshotError",
    "SNAPSHOT_VERSION",
]
