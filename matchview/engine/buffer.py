"""
Fixed-capacity event buffer.

Backed by a deque with maxlen, so append is O(1) and eviction of the
oldest entry happens implicitly on overflow. Readers get tuples, never
the deque itself.
"""

from __future__ import annotations

from collections import deque
from typing import Generic, Iterable, TypeVar

T = TypeVar("T")


class BoundedEventBuffer(Generic[T]):
    """
    Insertion-ordered buffer holding the most recent `capacity` events.

    Thread-safety: NOT thread-safe. Owned and mutated by SyncCoordinator only.
    """

    __slots__ = ('capacity', '_events', '_total_appended')

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._events: deque[T] = deque(maxlen=capacity)
        self._total_appended: int = 0

    def append(self, event: T) -> None:
        """Append an event, evicting the oldest one if full."""
        self._events.append(event)
        self._total_appended += 1

    def extend(self, events: Iterable[T]) -> None:
        for event in events:
            self.append(event)

    def newest_first(self) -> tuple[T, ...]:
        """Immutable copy, most recent event at index 0."""
        return tuple(reversed(self._events))

    def oldest_first(self) -> tuple[T, ...]:
        """Immutable copy in arrival order."""
        return tuple(self._events)

    @property
    def evicted(self) -> int:
        """How many events have been pushed out by newer ones."""
        return self._total_appended - len(self._events)

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

    def __bool__(self) -> bool:
        return bool(self._events)
