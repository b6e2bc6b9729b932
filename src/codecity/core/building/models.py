"""Building and layer models.

A building is the spatial representation of one file path. Every change
event applied to it appends an immutable Layer, so the building's layer
list is its complete lifecycle history.

Usage:
    layer = Layer(
        source_id="3f2a9c1",
        timestamp=datetime(2024, 1, 1, tzinfo=UTC),
        author="ada",
        kind=ChangeKind.CREATE,
        additions=120,
    )
    categorize("src/app.tsx")  # FileCategory.TYPESCRIPT
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from codecity.core.grid import Coordinate
from codecity.core.identity import BuildingId


class ChangeKind(Enum):
    """Kind of change a layer (or an incoming event) records."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    RENAME = "rename"
    MOVE = "move"

    @property
    def is_relocation(self) -> bool:
        return self in (ChangeKind.RENAME, ChangeKind.MOVE)


class FileCategory(Enum):
    """Coarse file type, derived from the path suffix."""

    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    PYTHON = "python"
    JAVA = "java"
    CSS = "css"
    HTML = "html"
    MARKDOWN = "markdown"
    JSON = "json"
    CONFIG = "config"
    IMAGE = "image"
    OTHER = "other"


_SUFFIX_CATEGORIES: dict[str, FileCategory] = {
    "js": FileCategory.JAVASCRIPT,
    "jsx": FileCategory.JAVASCRIPT,
    "mjs": FileCategory.JAVASCRIPT,
    "cjs": FileCategory.JAVASCRIPT,
    "ts": FileCategory.TYPESCRIPT,
    "tsx": FileCategory.TYPESCRIPT,
    "py": FileCategory.PYTHON,
    "java": FileCategory.JAVA,
    "css": FileCategory.CSS,
    "scss": FileCategory.CSS,
    "sass": FileCategory.CSS,
    "less": FileCategory.CSS,
    "html": FileCategory.HTML,
    "htm": FileCategory.HTML,
    "md": FileCategory.MARKDOWN,
    "markdown": FileCategory.MARKDOWN,
    "json": FileCategory.JSON,
    "yml": FileCategory.CONFIG,
    "yaml": FileCategory.CONFIG,
    "toml": FileCategory.CONFIG,
    "ini": FileCategory.CONFIG,
    "conf": FileCategory.CONFIG,
    "config": FileCategory.CONFIG,
    "cfg": FileCategory.CONFIG,
    "png": FileCategory.IMAGE,
    "jpg": FileCategory.IMAGE,
    "jpeg": FileCategory.IMAGE,
    "gif": FileCategory.IMAGE,
    "svg": FileCategory.IMAGE,
    "webp": FileCategory.IMAGE,
}


def categorize(key: str) -> FileCategory:
    """Derive the category of a path from its suffix (case-insensitive).

    Args:
        key: File path, e.g. ``"src/app.tsx"``.

    Returns:
        Matching FileCategory, or OTHER for unknown or missing suffixes.
    """
    name = key.rsplit("/", 1)[-1]
    if "." not in name:
        return FileCategory.OTHER
    suffix = name.rsplit(".", 1)[-1].lower()
    return _SUFFIX_CATEGORIES.get(suffix, FileCategory.OTHER)


@dataclass(frozen=True, slots=True)
class Layer:
    """One lifecycle event applied to a building. Immutable once appended.

    Attributes:
        source_id: Identifier of the originating event (commit sha).
        timestamp: When the change happened (timezone-aware).
        author: Author name.
        kind: What the change did to the file.
        additions: Lines added.
        deletions: Lines removed.
        message: Originating commit message.
        author_email: Author e-mail, empty when unknown.
    """

    source_id: str
    timestamp: datetime
    author: str
    kind: ChangeKind
    additions: int = 0
    deletions: int = 0
    message: str = ""
    author_email: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "source_id": self.source_id,
            "timestamp": self.timestamp.isoformat(),
            "author": self.author,
            "author_email": self.author_email,
            "kind": self.kind.value,
            "additions": self.additions,
            "deletions": self.deletions,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Layer:
        """Create from dictionary (for deserialization)."""
        return cls(
            source_id=data["source_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            author=data["author"],
            kind=ChangeKind(data["kind"]),
            additions=int(data.get("additions", 0)),
            deletions=int(data.get("deletions", 0)),
            message=data.get("message", ""),
            author_email=data.get("author_email", ""),
        )


@dataclass(slots=True)
class Building:
    """Ledger record for one file path.

    `layers` is append-only and never empty. Creation and last-modified
    times are read from the first and last layer so they cannot drift from
    the history.

    Attributes:
        id: Stable identity, preserved across relocation.
        key: Current file path.
        position: Current grid cell (meaningful while active).
        layers: Lifecycle history, oldest first.
        category: Category derived from `key`.
        active: False once the file has been deleted.
    """

    id: BuildingId
    key: str
    position: Coordinate
    layers: list[Layer] = field(default_factory=list)
    category: FileCategory = FileCategory.OTHER
    active: bool = True

    @property
    def created_at(self) -> datetime:
        return self.layers[0].timestamp

    @property
    def last_modified(self) -> datetime:
        return self.layers[-1].timestamp

    @property
    def layer_count(self) -> int:
        return len(self.layers)

    def authors(self) -> set[str]:
        return {layer.author for layer in self.layers}

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "id": self.id.index,
            "key": self.key,
            "position": self.position.to_list(),
            "category": self.category.value,
            "active": self.active,
            "created_at": self.created_at.isoformat(),
            "last_modified": self.last_modified.isoformat(),
            "layers": [layer.to_dict() for layer in self.layers],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Building:
        """Create from dictionary (for deserialization).

        Raises:
            ValueError: If the record has no layers.
        """
        layers = [Layer.from_dict(layer) for layer in data["layers"]]
        if not layers:
            raise ValueError(f"Building {data.get('key')!r} has no layers")
        return cls(
            id=BuildingId(index=int(data["id"])),
            key=data["key"],
            position=Coordinate.from_list(data["position"]),
            layers=layers,
            category=FileCategory(data["category"]),
            active=bool(data["active"]),
        )
