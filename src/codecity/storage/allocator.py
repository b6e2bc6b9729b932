"""Building id allocation service.

BuildingIdAllocator is a stateful service that hands out building ids.
"""

from __future__ import annotations

from codecity.core.identity import BuildingId


class BuildingIdAllocator:
    """Allocates sequential building ids. Ids are never recycled.

    Retired buildings keep their id forever so their history stays
    addressable; a path that comes back after deletion gets a new id.

    Args:
        start: First index to hand out.
    """

    def __init__(self, start: int = 1):
        """Initialize allocator.

        Args:
            start: First index to hand out (default 1).
        """
        self._next_index = start

    def peek(self) -> BuildingId:
        """Return the id the next allocate() call will produce, without consuming it."""
        return BuildingId(index=self._next_index)

    def allocate(self) -> BuildingId:
        """Allocate a fresh building id.

        Returns:
            Newly allocated BuildingId.
        """
        building_id = BuildingId(index=self._next_index)
        self._next_index += 1
        return building_id

    @property
    def next_index(self) -> int:
        return self._next_index

    def restore(self, next_index: int) -> None:
        """Resume allocation from `next_index` (used when importing snapshots).

        Raises:
            ValueError: If next_index is not positive.
        """
        if next_index < 1:
            raise ValueError(f"next_index must be positive, got {next_index}")
        self._next_index = next_index
