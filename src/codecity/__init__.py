"""codecity: turn a repository's file-change history into a city.

Every file path becomes a building on a 2-D grid. Each change event adds a
layer to its building; deletions retire it and renames move it, keeping
its identity and full history.

Usage:
    from datetime import UTC, datetime
    from codecity import CreateEvent, DerivationEngine, ModifyEvent

    engine = DerivationEngine()
    engine.apply([
        CreateEvent(key="src/a.ts", timestamp=datetime(2024, 1, 1, tzinfo=UTC), author="ada"),
        ModifyEvent(key="src/a.ts", timestamp=datetime(2024, 2, 1, tzinfo=UTC), author="ada"),
    ])
    engine.building("src/a.ts").layer_count  # 2
    engine.geometry()                         # boxes for the renderer
"""

__version__ = "0.1.0"

# Configuration
from codecity.config import CitySettings, ColorScheme

# Core primitives
from codecity.core import (
    Building,
    BuildingId,
    Cell,
    CellState,
    ChangeEvent,
    ChangeKind,
    Coordinate,
    CreateEvent,
    DeleteEvent,
    FileCategory,
    GridBounds,
    GridStats,
    Layer,
    ModifyEvent,
    MoveEvent,
    RenameEvent,
    categorize,
    events_from_commit,
    parse_event,
)

# Engine
from codecity.engine import (
    ApplyReport,
    BuildingGeometry,
    CitySnapshot,
    CityUpdate,
    DerivationEngine,
    EventOutcome,
    EventStatus,
    FailureKind,
    LayerGeometry,
    UpdateKind,
)

# Storage
from codecity.storage import (
    EntityLedger,
    GridExhaustedError,
    LedgerError,
    SnapshotError,
    SnapshotStore,
    SpatialIndex,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "CitySettings",
    "ColorScheme",
    # Core
    "BuildingId",
    "Coordinate",
    "Cell",
    "CellState",
    "GridBounds",
    "GridStats",
    "Building",
    "Layer",
    "ChangeKind",
    "FileCategory",
    "categorize",
    "ChangeEvent",
    "CreateEvent",
    "ModifyEvent",
    "DeleteEvent",
    "RenameEvent",
    "MoveEvent",
    "events_from_commit",
    "parse_event",
    # Storage
    "SpatialIndex",
    "EntityLedger",
    "GridExhaustedError",
    "LedgerError",
    "SnapshotError",
    "SnapshotStore",
    # Engine
    "DerivationEngine",
    "ApplyReport",
    "EventOutcome",
    "EventStatus",
    "FailureKind",
    "CityUpdate",
    "UpdateKind",
    "BuildingGeometry",
    "LayerGeometry",
    "CitySnapshot",
]
