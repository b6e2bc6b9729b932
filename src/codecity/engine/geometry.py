"""Geometry projection: buildings to renderable bounding boxes.

Pure functions over ledger copies; nothing here mutates engine state.
Height grows with the number of layers up to the configured cap. Each
drawn layer gets a colour bucket (recent/old) and an opacity that fades
linearly with age down to a floor.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from codecity.config import CitySettings
from codecity.core.building import Building, ChangeKind, FileCategory, Layer
from codecity.core.identity import BuildingId

_DAY = timedelta(days=1)


@dataclass(frozen=True, slots=True)
class LayerGeometry:
    """One horizontal slice of a building."""

    height: float
    color: str
    opacity: float
    timestamp: datetime
    author: str
    kind: ChangeKind
    recent: bool


@dataclass(frozen=True, slots=True)
class BuildingGeometry:
    """Axis-aligned box for one active building.

    `position` is the box centre in world units; `dimensions` is
    (width, height, depth).
    """

    building_id: BuildingId
    key: str
    category: FileCategory
    position: tuple[float, float, float]
    dimensions: tuple[float, float, float]
    color: str
    layers: tuple[LayerGeometry, ...]


def layer_age_days(layer: Layer, now: datetime) -> float:
    """Age of a layer in days. Layers from the future count as brand new."""
    return max(0.0, (now - layer.timestamp) / _DAY)


def layer_opacity(age_days: float, settings: CitySettings) -> float:
    """Monotonically non-increasing opacity for a layer of the given age."""
    faded = 1.0 - age_days / settings.fade_window_days
    return max(settings.min_opacity, min(1.0, faded))


def layer_geometry(layer: Layer, now: datetime, settings: CitySettings) -> LayerGeometry:
    age = layer_age_days(layer, now)
    recent = age < settings.recent_window_days
    colors = settings.colors
    return LayerGeometry(
        height=settings.layer_height,
        color=colors.recent_activity if recent else colors.old_activity,
        opacity=layer_opacity(age, settings),
        timestamp=layer.timestamp,
        author=layer.author,
        kind=layer.kind,
        recent=recent,
    )


def building_geometry(
    building: Building, now: datetime, settings: CitySettings
) -> BuildingGeometry | None:
    """Project one building. Returns None for retired buildings.

    When the history is taller than the height cap, the most recent
    layers are drawn.
    """
    if not building.active or not building.layers:
        return None

    drawn = building.layers[-settings.max_layers :]
    total_height = len(drawn) * settings.layer_height
    world_x = building.position.x * settings.grid_spacing
    world_z = building.position.z * settings.grid_spacing
    base = settings.building_base_size
    return BuildingGeometry(
        building_id=building.id,
        key=building.key,
        category=building.category,
        position=(world_x, total_height / 2, world_z),
        dimensions=(base, total_height, base),
        color=settings.colors.color_for(building.category),
        layers=tuple(layer_geometry(layer, now, settings) for layer in drawn),
    )
