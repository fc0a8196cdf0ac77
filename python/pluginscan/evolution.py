"""Parameter evolution over a profile-likelihood curve.

A curve stores, per scan bin, the best-fit configuration with the scan
variable(s) held fixed and its chi2. The plugin scan generates toys at these
configurations. :func:`profile_likelihood_scan` builds such a curve from a
model; curves computed elsewhere can be constructed directly.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .errors import ConsistencyWarning, ParameterEvolutionMissing, warn
from .model import Model
from .params import ParameterSpace, ParameterVector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurveResult:
    parameters: ParameterVector
    chi2: float


def _differs(requested: float, stored: float, rel_tol: float) -> bool:
    return abs(requested - stored) > rel_tol * abs(requested)


def _bin_index(x: float, lo: float, hi: float, n: int) -> int:
    i = int(math.floor((float(x) - lo) / ((hi - lo) / n)))
    return min(max(i, 0), n - 1)


@dataclass
class ProfileLikelihoodCurve:
    """1D profile likelihood: ``results[i]`` belongs to bin ``i`` of ``[lo, hi]``."""

    scan_var: str
    lo: float
    hi: float
    results: list[Optional[CurveResult]]
    chi2min_global: float
    global_minimum: Optional[ParameterVector] = None
    rel_tol: float = 0.01

    def __post_init__(self) -> None:
        if not self.results:
            raise ValueError("curve needs at least one bin")
        if not (self.lo < self.hi):
            raise ValueError(f"need lo < hi, got [{self.lo}, {self.hi}]")

    @property
    def n_bins(self) -> int:
        return len(self.results)

    @property
    def bin_width(self) -> float:
        return (self.hi - self.lo) / self.n_bins

    def bin_index(self, x: float) -> int:
        return _bin_index(x, self.lo, self.hi, self.n_bins)

    def centre(self, i: int) -> float:
        return self.lo + (i + 0.5) * self.bin_width

    def _result(self, x: float) -> CurveResult:
        i = self.bin_index(x)
        res = self.results[i]
        if res is None:
            raise ParameterEvolutionMissing(f"curve result not found, id={i}, scanpoint={x}")
        if self.scan_var not in res.parameters:
            raise ParameterEvolutionMissing(
                f"scan variable {self.scan_var!r} not found in parameter evolution at id={i}: {res.parameters}"
            )
        return res

    def lookup(self, x: float, *, rel_tol: Optional[float] = None) -> CurveResult:
        """Stored configuration for scan value ``x``.

        The toy generation point is ``x`` itself; a stored scan value off by
        more than ``rel_tol`` (default: the curve's) is reported but not
        corrected.
        """
        tol = self.rel_tol if rel_tol is None else rel_tol
        res = self._result(x)
        stored = res.parameters[self.scan_var]
        if _differs(x, stored, tol):
            warn(
                logger,
                ConsistencyWarning,
                f"scanpoint and parameter evolution point differ by more than {tol:.0%}: "
                f"{self.scan_var}={x:g} vs {stored:g}",
            )
        return res

    def chi2min(self, x: float) -> float:
        return self._result(x).chi2


@dataclass
class ProfileLikelihoodCurve2D:
    """2D profile likelihood over ``x_range`` x ``y_range``; ``results[i][j]``."""

    scan_vars: tuple[str, str]
    x_range: tuple[float, float]
    y_range: tuple[float, float]
    results: list[list[Optional[CurveResult]]]
    chi2min_global: float
    global_minimum: Optional[ParameterVector] = None
    rel_tol: float = 0.01

    def __post_init__(self) -> None:
        if not self.results or not self.results[0]:
            raise ValueError("curve needs at least one bin per axis")
        ny = len(self.results[0])
        if any(len(row) != ny for row in self.results):
            raise ValueError("results must be rectangular")

    @property
    def shape(self) -> tuple[int, int]:
        return len(self.results), len(self.results[0])

    def bin_index(self, x: float, y: float) -> tuple[int, int]:
        nx, ny = self.shape
        return _bin_index(x, *self.x_range, nx), _bin_index(y, *self.y_range, ny)

    def centre(self, i: int, j: int) -> tuple[float, float]:
        nx, ny = self.shape
        (x0, x1), (y0, y1) = self.x_range, self.y_range
        return x0 + (i + 0.5) * (x1 - x0) / nx, y0 + (j + 0.5) * (y1 - y0) / ny

    def lookup(self, x: float, y: float, *, rel_tol: Optional[float] = None) -> Optional[CurveResult]:
        """Stored configuration near ``(x, y)``, or ``None`` if the bin is empty."""
        tol = self.rel_tol if rel_tol is None else rel_tol
        i, j = self.bin_index(x, y)
        res = self.results[i][j]
        if res is None:
            warn(logger, ConsistencyWarning, f"curve result not found, id=[{i},{j}], val=[{x:g},{y:g}]")
            return None
        var1, var2 = self.scan_vars
        if var1 not in res.parameters or var2 not in res.parameters:
            raise ParameterEvolutionMissing(
                f"variable {var1!r} or {var2!r} not found in external result id=[{i},{j}]: {res.parameters}"
            )
        for var, requested in ((var1, x), (var2, y)):
            stored = res.parameters[var]
            if _differs(requested, stored, tol):
                warn(
                    logger,
                    ConsistencyWarning,
                    f"scanpoint and external point differ by more than {tol:.0%}: "
                    f"{var}={requested:g} vs {stored:g}",
                )
        return res

    def chi2min(self, x: float, y: float) -> float:
        i, j = self.bin_index(x, y)
        res = self.results[i][j]
        if res is None:
            raise ParameterEvolutionMissing(f"curve result not found, id=[{i},{j}], val=[{x:g},{y:g}]")
        return res.chi2


@dataclass
class _GlobalMin:
    chi2: float
    parameters: ParameterVector
    improved: int = field(default=0)

    def offer(self, chi2: float, parameters: ParameterVector) -> None:
        if chi2 < self.chi2:
            self.chi2 = chi2
            self.parameters = parameters
            self.improved += 1


def _constrained_fit(
    model: Model,
    space: ParameterSpace,
    point: dict[str, float],
    starts: Sequence[ParameterVector],
) -> Optional[CurveResult]:
    for var, value in point.items():
        space.set(var, value, constant=True)
    out = model.fit(space, list(starts))
    if not math.isfinite(out.chi2):
        return None
    return CurveResult(parameters=out.parameters.replace(constant={v: False for v in point}), chi2=out.chi2)


def profile_likelihood_scan(
    model: Model,
    space: ParameterSpace,
    scan_var: str,
    lo: float,
    hi: float,
    n_bins: int,
) -> ProfileLikelihoodCurve:
    """Scan the profile likelihood of ``scan_var`` at ``n_bins`` bin centres.

    Each constrained fit starts from the previous bin's result and from the
    global minimum. A bin whose centre lies outside the parameter's bounds
    stays empty. ``space`` is left unchanged.
    """
    if n_bins <= 0:
        raise ValueError("n_bins must be > 0")
    spec = space.spec(scan_var)
    width = (hi - lo) / n_bins
    results: list[Optional[CurveResult]] = []

    with space.preserved():
        space.free(scan_var)
        glob = model.fit(space, [None])
        best = _GlobalMin(chi2=glob.chi2, parameters=glob.parameters)
        prev = glob.parameters
        for i in range(n_bins):
            x = lo + (i + 0.5) * width
            if not spec.contains(x):
                results.append(None)
                continue
            res = _constrained_fit(model, space, {scan_var: x}, [prev, glob.parameters])
            results.append(res)
            if res is not None:
                prev = res.parameters
                best.offer(res.chi2, res.parameters)
            space.free(scan_var)

    if best.improved:
        logger.info("profile likelihood scan found a better global minimum: chi2=%.6g", best.chi2)
    return ProfileLikelihoodCurve(
        scan_var=scan_var,
        lo=lo,
        hi=hi,
        results=results,
        chi2min_global=best.chi2,
        global_minimum=best.parameters,
    )


def profile_likelihood_scan_2d(
    model: Model,
    space: ParameterSpace,
    scan_vars: tuple[str, str],
    x_range: tuple[float, float],
    y_range: tuple[float, float],
    n_bins: tuple[int, int],
) -> ProfileLikelihoodCurve2D:
    """2D analogue of :func:`profile_likelihood_scan`; rows are scanned along y."""
    nx, ny = n_bins
    if nx <= 0 or ny <= 0:
        raise ValueError("n_bins must be > 0 on both axes")
    var1, var2 = scan_vars
    spec1, spec2 = space.spec(var1), space.spec(var2)
    (x0, x1), (y0, y1) = x_range, y_range
    results: list[list[Optional[CurveResult]]] = [[None] * ny for _ in range(nx)]

    with space.preserved():
        space.free(var1, var2)
        glob = model.fit(space, [None])
        best = _GlobalMin(chi2=glob.chi2, parameters=glob.parameters)
        for i in range(nx):
            x = x0 + (i + 0.5) * (x1 - x0) / nx
            prev = glob.parameters if i == 0 or results[i - 1][0] is None else results[i - 1][0].parameters
            for j in range(ny):
                y = y0 + (j + 0.5) * (y1 - y0) / ny
                if not (spec1.contains(x) and spec2.contains(y)):
                    continue
                res = _constrained_fit(model, space, {var1: x, var2: y}, [prev, glob.parameters])
                results[i][j] = res
                if res is not None:
                    prev = res.parameters
                    best.offer(res.chi2, res.parameters)
                space.free(var1, var2)

    return ProfileLikelihoodCurve2D(
        scan_vars=(var1, var2),
        x_range=(x0, x1),
        y_range=(y0, y1),
        results=results,
        chi2min_global=best.chi2,
        global_minimum=best.parameters,
    )


__all__ = [
    "CurveResult",
    "ProfileLikelihoodCurve",
    "ProfileLikelihoodCurve2D",
    "profile_likelihood_scan",
    "profile_likelihood_scan_2d",
]
