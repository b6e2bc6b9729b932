"""Building records, lifecycle layers and file categories."""

from codecity.core.building.models import (
    Building,
    ChangeKind,
    FileCategory,
    Layer,
    categorize,
)

__all__ = [
    "Building",
    "ChangeKind",
    "FileCategory",
    "Layer",
    "categorize",
]
