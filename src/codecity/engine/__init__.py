"""Event application, projections and notifications."""

from codecity.engine.engine import CancelSignal, CitySnapshot, DerivationEngine, audit
from codecity.engine.geometry import BuildingGeometry, LayerGeometry, building_geometry
from codecity.engine.notifications import CityUpdate, ListenerRegistry, UpdateKind
from codecity.engine.result import ApplyReport, EventOutcome, EventStatus, FailureKind

__all__ = [
    "DerivationEngine",
    "CitySnapshot",
    "CancelSignal",
    "audit",
    "BuildingGeometry",
    "LayerGeometry",
    "building_geometry",
    "CityUpdate",
    "UpdateKind",
    "ListenerRegistry",
    "ApplyReport",
    "EventOutcome",
    "EventStatus",
    "FailureKind",
]
