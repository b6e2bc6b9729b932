"""Lifecycle notifications and the listener registry.

Each engine owns its own registry; there is no process-wide listener
state. Listeners run synchronously in registration order and a failing
listener never stops the others or the event stream.

Usage:
    @engine.subscribe
    def on_update(update: CityUpdate) -> None:
        print(update.kind, update.key)

    engine.unsubscribe(on_update)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from loguru import logger

from codecity.core.identity import BuildingId


class UpdateKind(Enum):
    """Notification type emitted after a successfully applied event."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    MOVED = "moved"


@dataclass(frozen=True, slots=True)
class CityUpdate:
    """One lifecycle notification.

    Attributes:
        kind: What happened.
        building_id: Building affected.
        key: Path of the building after the event.
        timestamp: Timestamp of the event that caused it.
        details: Kind-specific data: ``position`` for created, ``layer_count``
            for updated, ``final_layer_count`` for deleted, and
            ``old_key``/``new_key``/``old_position``/``new_position`` for moved.
        implicit: True when the building was created by the first-sighting
            fallback rather than an explicit CREATE.
    """

    kind: UpdateKind
    building_id: BuildingId
    key: str
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)
    implicit: bool = False


Listener = Callable[[CityUpdate], Any]


class ListenerRegistry:
    """Ordered, per-engine set of notification listeners."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._failures = 0

    def subscribe(self, listener: Listener) -> Listener:
        """Register `listener`. Returns it unchanged so this works as a decorator."""
        self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: Listener) -> bool:
        """Remove the first registration of `listener`.

        Returns:
            True if it was registered.
        """
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def emit(self, update: CityUpdate) -> int:
        """Deliver `update` to every listener in registration order.

        Returns:
            Number of listeners that raised.
        """
        failed = 0
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception:
                failed += 1
                logger.exception(
                    f"City update listener {getattr(listener, '__name__', listener)!r} "
                    f"failed on {update.kind.value} {update.key}"
                )
        self._failures += failed
        return failed

    def clear(self) -> None:
        self._listeners.clear()

    @property
    def failures(self) -> int:
        """Total listener failures since creation."""
        return self._failures

    def __len__(self) -> int:
        return len(self._listeners)

    def __contains__(self, listener: object) -> bool:
        return listener in self._listeners
