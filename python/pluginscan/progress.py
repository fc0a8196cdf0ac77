from __future__ import annotations

import logging
import time

logger = logging.getLogger(__name__)


class ProgressCounter:
    """Count toy slots of a scan and log progress about ``n_messages`` times.

    Slots not generated because of importance sampling are skipped, not
    dropped, so the percentage reaches 100 at the end of the scan.
    """

    def __init__(self, total: int, *, n_messages: int = 50, label: str = "plugin scan") -> None:
        if total < 0:
            raise ValueError("total must be >= 0")
        self.total = int(total)
        self.label = label
        self.done = 0
        self._every = max(1, self.total // n_messages) if self.total > 100 else max(1, self.total)
        self._next = self._every
        self._t0 = time.perf_counter()

    @property
    def fraction(self) -> float:
        return self.done / self.total if self.total else 1.0

    def _advance(self, n: int) -> None:
        self.done = min(self.total, self.done + n)
        if self.done >= self._next:
            elapsed = time.perf_counter() - self._t0
            logger.info("%s: %.0f%% (%d/%d toys, %.1fs)", self.label, 100 * self.fraction, self.done, self.total, elapsed)
            while self._next <= self.done:
                self._next += self._every

    def step(self) -> None:
        self._advance(1)

    def skip(self, n: int) -> None:
        if n > 0:
            self._advance(n)


__all__ = ["ProgressCounter"]
