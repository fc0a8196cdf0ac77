"""Merge the result files of many runs into one table."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .errors import NoRunFilesError, WrongRunWarning, warn
from .records import ToyTable
from .store import ResultStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergedRuns:
    table: ToyTable
    runs: tuple[int, ...]
    n_missing: int
    chi2min_global: float
    n_wrong_run: int

    @property
    def wrong_run_fraction(self) -> float:
        return self.n_wrong_run / len(self.table) if len(self.table) else 0.0


class MultiRunAggregator:
    """Concatenate per-run result files, flagging rows from a different run.

    A row whose data ``chi2min_global`` differs from the active value by more
    than ``rel_tol`` (relative) was produced against a different data fit.
    Such rows are kept and flagged in a ``wrong_run`` column.
    """

    def __init__(
        self,
        store: ResultStore,
        *,
        chi2min_global: Optional[float] = None,
        rel_tol: float = 0.01,
        abs_tol: float = 1e-6,
    ) -> None:
        self.store = store
        self.chi2min_global = chi2min_global
        self.rel_tol = rel_tol
        self.abs_tol = abs_tol

    def merge(self, run_min: int, run_max: int) -> MergedRuns:
        if run_max < run_min:
            raise ValueError(f"empty run range [{run_min}, {run_max}]")
        tables: list[ToyTable] = []
        runs: list[int] = []
        n_missing = 0
        for run in range(run_min, run_max + 1):
            path = self.store.path(run)
            if not path.is_file():
                logger.debug("file not found: %s", path)
                n_missing += 1
                continue
            logger.debug("reading %s", path)
            tables.append(self.store.read(run))
            runs.append(run)

        logger.info("read files: %d, missing files: %d (%s)", len(runs), n_missing, self.store.directory)
        if not runs:
            raise NoRunFilesError(
                f"no result files for runs {run_min}..{run_max} in {self.store.directory}"
            )

        table = ToyTable.concat(tables)
        ref = self.chi2min_global
        if ref is None:
            ref = float(tables[0]["chi2min_global"][0]) if len(tables[0]) else float("nan")

        if len(table):
            col = table["chi2min_global"]
            wrong = ~np.isclose(col, ref, rtol=self.rel_tol, atol=self.abs_tol)
        else:
            wrong = np.zeros(0, dtype=bool)
        table = table.with_column("wrong_run", wrong)
        n_wrong = int(np.count_nonzero(wrong))
        if n_wrong:
            warn(
                logger,
                WrongRunWarning,
                f"read toys that differ in global chi2min (wrong run): {100.0 * n_wrong / len(table):.2f}% "
                f"of {len(table)} (expected chi2min_global={ref:g})",
            )
        return MergedRuns(table=table, runs=tuple(runs), n_missing=n_missing, chi2min_global=ref, n_wrong_run=n_wrong)


__all__ = ["MergedRuns", "MultiRunAggregator"]
