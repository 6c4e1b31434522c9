"""Fixed-capacity circular history of the most recent readings."""
from __future__ import annotations

from typing import Generic, Iterator, List, Optional, TypeVar

T = TypeVar('T')


class TemporalBuffer(Generic[T]):
    """Circular buffer that never ends and cycles back on itself.

    Offsets are relative to the oldest retained value: ``get(0)`` is the
    oldest reading and ``get(count - 1)`` the most recent one.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._items: List[Optional[T]] = []
        self._cursor = 0
        self._count = 0
        self.clear()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def count(self) -> int:
        return self._count

    def __len__(self) -> int:
        return self._count

    def _index(self, offset: int) -> int:
        if not 0 <= offset < self._count:
            raise IndexError(f"offset {offset} out of range [0, {self._count})")
        return (self._cursor - self._count + offset) % self._capacity

    def get(self, offset: int) -> T:
        return self._items[self._index(offset)]

    def set(self, offset: int, value: T) -> None:
        self._items[self._index(offset)] = value

    __getitem__ = get
    __setitem__ = set

    def add(self, value: T) -> None:
        """Overwrite the oldest slot and advance the cycle."""
        self._items[self._cursor] = value
        self._cursor = (self._cursor + 1) % self._capacity
        if self._count < self._capacity:
            self._count += 1

    def clear(self) -> None:
        """Reset the count to 0; old values become unreachable."""
        self._items = [None] * self._capacity
        self._cursor = 0
        self._count = 0

    def __iter__(self) -> Iterator[T]:
        for offset in range(self._count):
            yield self.get(offset)

    def values(self) -> List[T]:
        return list(self)

    def filter(self, radius: int) -> List[int]:
        """Windowed mean of the retained values.

        Each interior value is replaced by the integer mean of its ``2 * radius``
        neighbours (the value itself excluded). Values within ``radius`` of
        either end are passed through unchanged. Raw values are always read,
        never previously filtered ones.
        """
        raw = self.values()
        if radius <= 0:
            return list(raw)

        filtered = list(raw)
        window = radius * 2
        for i in range(radius, len(raw) - radius):
            total = sum(raw[i - radius:i]) + sum(raw[i + 1:i + radius + 1])
            filtered[i] = int(total / window)
        return filtered

    def __repr__(self) -> str:
        return f"TemporalBuffer(capacity={self._capacity}, values={self.values()!r})"
