"""Fixed-capacity buffer that overwrites its oldest element when full."""

from __future__ import annotations

from collections import deque
from itertools import islice
from typing import Generic, Iterator, TypeVar

T = TypeVar("T")

DEFAULT_CAPACITY = 1000


class RingBuffer(Generic[T]):
    """Append-only sequence of at most ``capacity`` items.

    Pushing into a full buffer silently drops the oldest item. Pushes never
    raise, so they are safe from inside logging handlers and exception hooks.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._items: deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def push(self, item: T) -> None:
        self._items.append(item)

    def to_list(self) -> list[T]:
        """Return a copy ordered oldest to newest."""
        return list(self._items)

    def recent(self, k: int) -> list[T]:
        """Return the ``k`` most recent items, oldest first."""
        if k <= 0:
            return []
        items = list(islice(reversed(self._items), k))
        items.reverse()
        return items

    def size(self) -> int:
        return len(self._items)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))
