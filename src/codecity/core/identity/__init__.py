"""Building identity: lightweight ids that survive relocation."""

from codecity.core.identity.models import BuildingId

__all__ = [
    "BuildingId",
]
