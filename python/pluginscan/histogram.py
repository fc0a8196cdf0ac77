"""From toy records to p-values.

Every toy that passes the quality cut is classified per scan bin:

- physical: ``chi2min_toy - chi2min_global_toy > 0``; these make up ``total``,
- better: physical and the toy delta exceeds the data delta
  ``chi2min - chi2min_global``,
- gof: physical and ``chi2min_global_toy > chi2min_global``,
- background: not physical.

``p = better / total`` with binomial error ``sqrt(p (1 - p) / total)``;
bins with no physical toys have an undefined (NaN) p-value.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import numpy as np

from .records import ToyTable

logger = logging.getLogger(__name__)

BATCH_ID_TOL = 0.001


def edges_from_points(points: np.ndarray) -> np.ndarray:
    """One bin per distinct coordinate, edges halfway between neighbours."""
    xs = np.unique(np.asarray(points, dtype=np.float64))
    xs = xs[np.isfinite(xs)]
    if xs.size == 0:
        return np.array([], dtype=np.float64)
    if xs.size == 1:
        return np.array([xs[0] - 1.0, xs[0] + 1.0])
    mids = 0.5 * (xs[1:] + xs[:-1])
    first = xs[0] - (mids[0] - xs[0])
    last = xs[-1] + (xs[-1] - mids[-1])
    return np.concatenate([[first], mids, [last]])


def _bin(x: np.ndarray, edges: np.ndarray) -> np.ndarray:
    """Bin index per value, -1 outside ``[edges[0], edges[-1]]``."""
    if edges.size < 2:
        return np.full(x.shape, -1, dtype=np.int64)
    idx = np.searchsorted(edges, x, side="right") - 1
    idx[x == edges[-1]] = edges.size - 2
    idx[(x < edges[0]) | (x > edges[-1]) | ~np.isfinite(x)] = -1
    return idx.astype(np.int64)


def _binomial_error(p: np.ndarray, n: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.sqrt(p * (1.0 - p) / n)


@dataclass(frozen=True)
class PValueCurve:
    edges: np.ndarray
    pvalue: np.ndarray
    error: np.ndarray
    better: np.ndarray
    total: np.ndarray
    background: np.ndarray
    gof: np.ndarray
    failed: np.ndarray
    n_toys: int = 0
    n_failed: int = 0
    n_outside: int = 0
    n_wrong_run: int = 0
    fit_probability: Optional[float] = None
    fit_probability_error: Optional[float] = None
    best_fit_point: Optional[float] = None

    @property
    def centres(self) -> np.ndarray:
        return 0.5 * (self.edges[1:] + self.edges[:-1])

    @property
    def n_bins(self) -> int:
        return max(self.edges.size - 1, 0)

    def bin_index(self, x: float) -> int:
        i = int(_bin(np.array([float(x)]), self.edges)[0])
        if i < 0:
            raise ValueError(f"{x} outside histogram range [{self.edges[0]}, {self.edges[-1]}]")
        return i

    def pvalue_at(self, x: float) -> float:
        return float(self.pvalue[self.bin_index(x)])

    def error_at(self, x: float) -> float:
        return float(self.error[self.bin_index(x)])


@dataclass(frozen=True)
class PValueGrid:
    x_edges: np.ndarray
    y_edges: np.ndarray
    pvalue: np.ndarray
    error: np.ndarray
    better: np.ndarray
    total: np.ndarray
    background: np.ndarray
    failed: np.ndarray
    n_toys: int = 0
    n_failed: int = 0

    def pvalue_at(self, x: float, y: float) -> float:
        i = int(_bin(np.array([float(x)]), self.x_edges)[0])
        j = int(_bin(np.array([float(y)]), self.y_edges)[0])
        if i < 0 or j < 0:
            raise ValueError(f"({x}, {y}) outside histogram range")
        return float(self.pvalue[i, j])


class TestStatisticHistogrammer:
    """Apply the toy cuts and histogram the plugin test statistic.

    ``external_chi2`` maps scan coordinate(s) to a constrained data chi2 that
    replaces the stored ``chi2min`` (e.g. ``ProfileLikelihoodCurve.chi2min``).
    ``coverage_corrector`` is a monotonic map applied to each bin's p-value.
    """

    __test__ = False  # not a pytest class

    def __init__(
        self,
        *,
        quality_bound: float = 500.0,
        plot_range: Optional[tuple[float, float]] = None,
        external_chi2: Optional[Callable[[float], float]] = None,
        coverage_corrector: Optional[Callable[[float], float]] = None,
        subtract_background: bool = False,
    ) -> None:
        if quality_bound <= 0:
            raise ValueError("quality_bound must be > 0")
        if plot_range is not None and not plot_range[0] < plot_range[1]:
            raise ValueError(f"plot_range needs lo < hi, got {plot_range}")
        self.quality_bound = float(quality_bound)
        self.plot_range = plot_range
        self.external_chi2 = external_chi2
        self.coverage_corrector = coverage_corrector
        self.subtract_background = subtract_background

    # -- selection --------------------------------------------------------

    def _select_batch(self, table: ToyTable, batch_id: int) -> ToyTable:
        if batch_id == -1 or len(table) == 0:
            return table
        return table.select(np.abs(table["id"] - batch_id) <= BATCH_ID_TOL)

    def _quality(self, table: ToyTable) -> np.ndarray:
        b = self.quality_bound
        with np.errstate(invalid="ignore"):
            return (
                (np.abs(table["chi2min_toy"]) < b)
                & (np.abs(table["chi2min_global_toy"]) < b)
                & (table["status_scan"] == 0)
                & (table["status_free"] == 0)
            )

    def _data_chi2min(self, table: ToyTable, *coords: np.ndarray) -> np.ndarray:
        if self.external_chi2 is None:
            return table["chi2min"]
        cache: dict[tuple[float, ...], float] = {}
        out = np.empty(len(table), dtype=np.float64)
        for k, point in enumerate(zip(*coords)):
            key = tuple(float(v) for v in point)
            if key not in cache:
                cache[key] = float(self.external_chi2(*key))
            out[k] = cache[key]
        return out

    def _classify(self, table: ToyTable, *coords: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        toy_delta = table["chi2min_toy"] - table["chi2min_global_toy"]
        data_delta = self._data_chi2min(table, *coords) - table["chi2min_global"]
        physical = toy_delta > 0
        better = physical & (toy_delta > data_delta)
        gof = physical & (table["chi2min_global_toy"] > table["chi2min_global"])
        return physical, better, gof

    def _pvalues(self, better, total, background) -> tuple[np.ndarray, np.ndarray]:
        better = better.astype(np.float64)
        total = total.astype(np.float64)
        background = background.astype(np.float64)
        with np.errstate(divide="ignore", invalid="ignore"):
            p = np.where(total > 0, better / total, np.nan)
            n = np.where(total > 0, total, np.nan)
            if self.subtract_background:
                denom = total - background
                sub = denom > 0
                p = np.where(sub, (better - background) / denom, p)
                n = np.where(sub, denom, n)
        if self.coverage_corrector is not None:
            p = np.array([self.coverage_corrector(float(v)) if math.isfinite(v) else math.nan for v in p.ravel()]).reshape(p.shape)
        p = np.where(np.isfinite(p), np.clip(p, 0.0, 1.0), np.nan)
        return p, _binomial_error(p, n)

    # -- 1D ---------------------------------------------------------------

    def analyse(
        self,
        table: ToyTable,
        batch_id: int = -1,
        *,
        edges: Optional[Sequence[float]] = None,
    ) -> PValueCurve:
        """p-value per scan bin of ``scanpoint1``; ``batch_id=-1`` uses all rows."""
        sel = self._select_batch(table, batch_id)
        n = len(sel)
        if n == 0:
            e = np.asarray(edges if edges is not None else [], dtype=np.float64)
            nb = max(e.size - 1, 0)
            z = np.zeros(nb, dtype=np.int64)
            nan = np.full(nb, np.nan)
            logger.info("no toys to analyse (batch id %d)", batch_id)
            return PValueCurve(e, nan, nan.copy(), z, z.copy(), z.copy(), z.copy(), z.copy())

        x = sel["scanpoint1"]
        e = np.asarray(edges, dtype=np.float64) if edges is not None else edges_from_points(x)
        nb = e.size - 1
        idx = _bin(x, e)

        ok = self._quality(sel)
        failed = ~ok
        keep = ok.copy()
        n_outside = 0
        if self.plot_range is not None:
            lo, hi = self.plot_range
            inside = (lo < x) & (x < hi)
            n_outside = int(np.count_nonzero(ok & ~inside))
            keep &= inside
        n_outside += int(np.count_nonzero(keep & (idx < 0)))
        keep &= idx >= 0

        physical, better, gof = self._classify(sel, x)

        def count(mask: np.ndarray) -> np.ndarray:
            return np.bincount(idx[mask & (idx >= 0)], minlength=nb).astype(np.int64)

        c_total = count(keep & physical)
        c_better = count(keep & better)
        c_gof = count(keep & gof)
        c_bkg = count(keep & ~physical)
        c_failed = count(failed)
        p, err = self._pvalues(c_better, c_total, c_bkg)

        n_failed = int(np.count_nonzero(failed))
        n_wrong = int(np.count_nonzero(sel["wrong_run"][ok])) if "wrong_run" in sel else 0
        if batch_id == -1:
            logger.info("read an average of %.1f toys per scan point", (n - n_failed) / max(nb, 1))
        else:
            logger.info("read %d toys at id %d", n, batch_id)
        logger.info("fraction of failed toys: %.2f%%", 100.0 * n_failed / n)
        logger.info("fraction of background toys: %.2f%%", 100.0 * int(c_bkg.sum()) / n)
        if n_wrong:
            logger.info("toys with a different data chi2min_global (wrong run): %.2f%%", 100.0 * n_wrong / max(n - n_failed, 1))

        fit_p = fit_err = best = None
        if batch_id == -1 and np.any(np.isfinite(p)):
            ib = int(np.nanargmax(p))
            best = float(0.5 * (e[ib] + e[ib + 1]))
            fit_p = float(c_gof[ib] / c_total[ib])
            fit_err = float(math.sqrt(fit_p * (1.0 - fit_p) / c_total[ib]))
            logger.info("fit probability of best-fit point (%g): (%.1f+/-%.1f)%%", best, 100 * fit_p, 100 * fit_err)

        return PValueCurve(
            edges=e,
            pvalue=p,
            error=err,
            better=c_better,
            total=c_total,
            background=c_bkg,
            gof=c_gof,
            failed=c_failed,
            n_toys=n,
            n_failed=n_failed,
            n_outside=n_outside,
            n_wrong_run=n_wrong,
            fit_probability=fit_p,
            fit_probability_error=fit_err,
            best_fit_point=best,
        )

    # -- 2D ---------------------------------------------------------------

    def analyse_2d(
        self,
        table: ToyTable,
        x_edges: Optional[Sequence[float]] = None,
        y_edges: Optional[Sequence[float]] = None,
    ) -> PValueGrid:
        """p-value per ``(scanpoint1, scanpoint2)`` cell."""
        n = len(table)
        if n == 0:
            xe = np.asarray(x_edges if x_edges is not None else [], dtype=np.float64)
            ye = np.asarray(y_edges if y_edges is not None else [], dtype=np.float64)
        else:
            xe = np.asarray(x_edges, dtype=np.float64) if x_edges is not None else edges_from_points(table["scanpoint1"])
            ye = np.asarray(y_edges, dtype=np.float64) if y_edges is not None else edges_from_points(table["scanpoint2"])
        nx, ny = max(xe.size - 1, 0), max(ye.size - 1, 0)
        if n == 0:
            z = np.zeros((nx, ny), dtype=np.int64)
            nan = np.full((nx, ny), np.nan)
            return PValueGrid(xe, ye, nan, nan.copy(), z, z.copy(), z.copy(), z.copy())

        x, y = table["scanpoint1"], table["scanpoint2"]
        ix, iy = _bin(x, xe), _bin(y, ye)
        inside = (ix >= 0) & (iy >= 0)
        flat = np.where(inside, ix * ny + iy, -1)

        ok = self._quality(table)
        physical, better, _ = self._classify(table, x, y)
        keep = ok & inside

        def count(mask: np.ndarray) -> np.ndarray:
            return np.bincount(flat[mask & inside], minlength=nx * ny).reshape(nx, ny).astype(np.int64)

        c_total = count(keep & physical)
        c_better = count(keep & better)
        c_bkg = count(keep & ~physical)
        c_failed = count(~ok)
        p, err = self._pvalues(c_better, c_total, c_bkg)
        n_failed = int(np.count_nonzero(~ok))
        logger.info("fraction of failed toys: %.2f%%", 100.0 * n_failed / n)
        return PValueGrid(xe, ye, p, err, c_better, c_total, c_bkg, c_failed, n_toys=n, n_failed=n_failed)


__all__ = ["PValueCurve", "PValueGrid", "TestStatisticHistogrammer", "edges_from_points"]
