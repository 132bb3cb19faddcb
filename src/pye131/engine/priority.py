"""Per-universe priority tracking.

The tracker is a multiset of the priorities held by registered sources.
It is seeded with one synthetic unit at the default priority so that an
empty universe still has a well-defined winning priority.
"""

from __future__ import annotations

import bisect

from pye131._constants import DEFAULT_PRIORITY, MAX_PRIORITY, MIN_PRIORITY
from pye131.exceptions import E131StateError


def _check_priority(priority: int) -> int:
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ValueError(f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {priority}")
    return priority


class PriorityTracker:
    """Counts sources per priority level.

    Removing the only source at the winning level reveals the next level
    without rescanning the registry. Keys are kept sorted, so the winning
    priority is always the last key.
    """

    def __init__(self, default_priority: int = DEFAULT_PRIORITY) -> None:
        self._seed = _check_priority(default_priority)
        self._counts: dict[int, int] = {self._seed: 1}
        self._levels: list[int] = [self._seed]

    @property
    def default_priority(self) -> int:
        return self._seed

    def add(self, priority: int) -> int:
        """Count one more source at *priority*; return the winning priority."""
        _check_priority(priority)
        count = self._counts.get(priority, 0)
        if count == 0:
            bisect.insort(self._levels, priority)
        self._counts[priority] = count + 1
        return self.winning_priority()

    def remove(self, priority: int) -> int:
        """Count one source fewer at *priority*; return the winning priority.

        Raises :class:`E131StateError` if no source is counted at
        *priority*, or if the call would drop the seed unit.
        """
        count = self._counts.get(priority, 0)
        floor = 1 if priority == self._seed else 0
        if count <= floor:
            raise E131StateError(f"no source registered at priority {priority}")
        if count == 1:
            del self._counts[priority]
            del self._levels[bisect.bisect_left(self._levels, priority)]
        else:
            self._counts[priority] = count - 1
        return self.winning_priority()

    def move(self, old: int, new: int) -> int:
        """Move one source from *old* to *new*; return the winning priority."""
        if old == new:
            return self.winning_priority()
        _check_priority(new)
        self.remove(old)
        return self.add(new)

    def winning_priority(self) -> int:
        """Highest priority currently held (the seed when no sources exist)."""
        return self._levels[-1]

    def source_count(self) -> int:
        """Number of registered sources at the winning priority."""
        winning = self._levels[-1]
        count = self._counts[winning]
        return count - 1 if winning == self._seed else count

    def total_sources(self) -> int:
        """Number of registered sources across all priorities."""
        return sum(self._counts.values()) - 1

    def levels(self) -> dict[int, int]:
        """Snapshot of real source counts per priority, highest first."""
        snapshot: dict[int, int] = {}
        for level in reversed(self._levels):
            count = self._counts[level] - (1 if level == self._seed else 0)
            if count:
                snapshot[level] = count
        return snapshot

    def __repr__(self) -> str:
        return f"PriorityTracker(winning={self.winning_priority()}, sources={self.source_count()})"
