"""Configuration settings using Pydantic Settings.

Provides typed engine configuration with environment variable support.

Usage:
    from codecity.config import CitySettings

    # Load from environment variables (CODECITY_*)
    settings = CitySettings()

    # Or override with explicit values
    settings = CitySettings(road_interval=5, max_building_height=20.0)
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from codecity.core.building import FileCategory

_HEX_COLOR = r"^#[0-9a-fA-F]{6}$"

DEFAULT_CATEGORY_COLORS: dict[FileCategory, str] = {
    FileCategory.JAVASCRIPT: "#f7df1e",
    FileCategory.TYPESCRIPT: "#3178c6",
    FileCategory.PYTHON: "#3776ab",
    FileCategory.JAVA: "#ed8b00",
    FileCategory.CSS: "#1572b6",
    FileCategory.HTML: "#e34f26",
    FileCategory.MARKDOWN: "#083fa1",
    FileCategory.JSON: "#000000",
    FileCategory.CONFIG: "#6c757d",
    FileCategory.IMAGE: "#ff6b6b",
    FileCategory.OTHER: "#64748b",
}


class ColorScheme(BaseModel):
    """Colour hints handed to the renderer.

    Attributes:
        file_types: Base colour per file category.
        building_base: Fallback building colour.
        roads: Road colour.
        terrain: Ground colour.
        recent_activity: Colour of layers inside the recent window.
        old_activity: Colour of older layers.
    """

    file_types: dict[FileCategory, str] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_COLORS)
    )
    building_base: str = Field(default="#64748b", pattern=_HEX_COLOR)
    roads: str = Field(default="#374151", pattern=_HEX_COLOR)
    terrain: str = Field(default="#065f46", pattern=_HEX_COLOR)
    recent_activity: str = Field(default="#10b981", pattern=_HEX_COLOR)
    old_activity: str = Field(default="#6b7280", pattern=_HEX_COLOR)

    def color_for(self, category: FileCategory) -> str:
        return self.file_types.get(category, self.building_base)


class CitySettings(BaseSettings):  # type: ignore[misc]
    """Configuration for the derivation engine.

    Attributes:
        grid_spacing: World-unit distance between neighbouring cells.
        road_interval: Every Nth row and column is a road.
        initial_grid_size: Cells per side of the initial grid.
        max_occupancy: Occupancy ratio at which the grid grows proactively.
        building_base_size: Footprint width/depth of a building.
        layer_height: Height contributed by each layer.
        max_building_height: Cap on total building height.
        recent_window_days: Layers younger than this count as recent.
        fade_window_days: Age at which a layer reaches `min_opacity`.
        min_opacity: Opacity floor for old layers.
        colors: Colour scheme by category and by age bucket.

    Environment Variables:
        CODECITY_GRID_SPACING
        CODECITY_ROAD_INTERVAL
        CODECITY_INITIAL_GRID_SIZE
        CODECITY_MAX_OCCUPANCY
        CODECITY_BUILDING_BASE_SIZE
        CODECITY_LAYER_HEIGHT
        CODECITY_MAX_BUILDING_HEIGHT
        CODECITY_RECENT_WINDOW_DAYS
        CODECITY_FADE_WINDOW_DAYS
        CODECITY_MIN_OPACITY
    """

    model_config = SettingsConfigDict(
        env_prefix="CODECITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    grid_spacing: float = Field(default=2.0, gt=0)
    road_interval: int = Field(default=4, ge=2)
    initial_grid_size: int = Field(default=50, ge=2)
    max_occupancy: float = Field(default=0.6, gt=0, le=1)
    building_base_size: float = Field(default=1.0, gt=0)
    layer_height: float = Field(default=0.2, gt=0)
    max_building_height: float = Field(default=10.0, gt=0)
    recent_window_days: float = Field(default=30.0, gt=0)
    fade_window_days: float = Field(default=365.0, gt=0)
    min_opacity: float = Field(default=0.3, ge=0, le=1)
    colors: ColorScheme = Field(default_factory=ColorScheme)

    @model_validator(mode="after")
    def _check_height(self) -> CitySettings:
        if self.layer_height > self.max_building_height:
            raise ValueError("layer_height must not exceed max_building_height")
        return self

    @property
    def max_layers(self) -> int:
        """Number of layers that fit under the height cap."""
        return max(1, int(round(self.max_building_height / self.layer_height, 6)))
