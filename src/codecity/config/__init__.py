"""Configuration module using Pydantic Settings.

Usage:
    from codecity.config import CitySettings

    settings = CitySettings(road_interval=5)
"""

from codecity.config.settings import CitySettings, ColorScheme

__all__ = [
    "CitySettings",
    "ColorScheme",
]
