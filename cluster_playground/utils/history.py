"""
Bounded undo/redo history.

A fixed-capacity list of entries with a cursor. Undo and redo only move the
cursor; pushing after an undo discards the entries past the cursor, and the
oldest entry is evicted once capacity is exceeded.
"""

from typing import Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")


class HistoryStack(Generic[T]):
    """Bounded stack with a cursor for undo/redo."""

    def __init__(self, capacity: int = 10):
        if capacity < 1:
            raise ValueError(f"History capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._entries: List[T] = []
        self._cursor = -1

    def push(self, entry: T) -> None:
        """Append an entry after the cursor, dropping any redo tail."""
        del self._entries[self._cursor + 1:]
        self._entries.append(entry)
        if len(self._entries) > self.capacity:
            del self._entries[: len(self._entries) - self.capacity]
        self._cursor = len(self._entries) - 1

    @property
    def current(self) -> Optional[T]:
        if self._cursor < 0:
            return None
        return self._entries[self._cursor]

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def entries(self) -> Tuple[T, ...]:
        return tuple(self._entries)

    def can_undo(self) -> bool:
        return self._cursor > 0

    def can_redo(self) -> bool:
        return self._cursor < len(self._entries) - 1

    def undo(self) -> Optional[T]:
        """Move back one entry. Returns it, or None when nothing to undo."""
        if not self.can_undo():
            return None
        self._cursor -= 1
        return self._entries[self._cursor]

    def redo(self) -> Optional[T]:
        """Move forward one entry. Returns it, or None when nothing to redo."""
        if not self.can_redo():
            return None
        self._cursor += 1
        return self._entries[self._cursor]

    def seek(self, index: int) -> T:
        """Move the cursor to `index` and return that entry."""
        if not 0 <= index < len(self._entries):
            raise IndexError(f"History index {index} out of range (size {len(self._entries)})")
        self._cursor = index
        return self._entries[index]

    def clear(self) -> None:
        self._entries.clear()
        self._cursor = -1

    def __len__(self) -> int:
        return len(self._entries)
