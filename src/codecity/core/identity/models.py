"""Building identity models.

Usage:
    building = BuildingId(index=42)
    str(building)  # "b42"
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True, order=True)
class BuildingId:
    """Stable building identifier, independent of the file path it tracks.

    A building keeps its id across renames and moves. Ids are never
    recycled: a path that is deleted and re-created gets a fresh id.
    """

    index: int = 0

    def __hash__(self) -> int:
        return hash(self.index)

    def __str__(self) -> str:
        return f"b{self.index}"

    @classmethod
    def parse(cls, value: str | int) -> "BuildingId":
        """Rebuild an id from its string or integer form.

        Args:
            value: Either ``"b<index>"`` or the bare integer index.

        Returns:
            The matching BuildingId.

        Raises:
            ValueError: If the string is not a valid id.
        """
        if isinstance(value, int):
            return cls(index=value)
        text = value[1:] if value.startswith("b") else value
        if not text.isdigit():
            raise ValueError(f"Invalid building id: {value!r}")
        return cls(index=int(text))
