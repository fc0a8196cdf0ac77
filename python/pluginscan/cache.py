"""Round-robin store of recent converged fit configurations.

Entries are alternate optimizer start points, never model truth.
"""

from __future__ import annotations

from collections import deque

from .params import ParameterVector

DEFAULT_SIZE = 3


class RoundRobinStartCache:
    def __init__(self, size: int = DEFAULT_SIZE) -> None:
        if size < DEFAULT_SIZE:
            raise ValueError(f"cache size must be >= {DEFAULT_SIZE}, got {size}")
        self.size = int(size)
        self._slots: deque[ParameterVector] = deque(maxlen=self.size)

    def __len__(self) -> int:
        return len(self._slots)

    def __repr__(self) -> str:
        return f"RoundRobinStartCache(size={self.size}, held={len(self)})"

    def prime(self, parameters: ParameterVector) -> None:
        """Fill every slot with ``parameters``."""
        self._slots.clear()
        for _ in range(self.size):
            self._slots.appendleft(parameters)

    def push(self, parameters: ParameterVector) -> None:
        """Store ``parameters`` as the most recent entry, evicting the oldest."""
        self._slots.appendleft(parameters)

    def get(self, n: int) -> ParameterVector:
        """The ``n``-th most recent entry (0 is the newest)."""
        if not 0 <= n < len(self._slots):
            raise IndexError(f"round-robin slot {n} not available ({len(self._slots)} held)")
        return self._slots[n]


__all__ = ["DEFAULT_SIZE", "RoundRobinStartCache"]
