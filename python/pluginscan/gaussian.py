"""Reference model: multivariate Gaussian of observables around theory predictions.

The observables are measured quantities with statistical and systematic
uncertainties and correlations; the theory maps parameter values to their
expected values. ``chi2 = r^T C^-1 r`` with ``r = observed - theory``.

This is the collaborator used by the tests and examples. The scan engine
works with any object satisfying :class:`pluginscan.model.Model`.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Mapping, Optional, Sequence

import numpy as np
from scipy.optimize import minimize

from .errors import FitFailure, ModelConfigError
from .model import FitOutcome, FitStatus, space_for
from .params import ParameterSpace, ParameterSpec, ParameterVector

logger = logging.getLogger(__name__)

Theory = Callable[[Mapping[str, float]], Sequence[float]]


def _symmetrize(cor: Optional[Sequence[Sequence[float]]], n: int, what: str) -> np.ndarray:
    """Unit-diagonal symmetric matrix from a full or upper-triangular one."""
    if cor is None:
        return np.eye(n)
    c = np.asarray(cor, dtype=np.float64)
    if c.shape != (n, n):
        raise ModelConfigError(f"{what} correlation matrix must be {n}x{n}, got {c.shape}")
    upper = np.triu(c, 1)
    return upper + upper.T + np.eye(n)


def build_covariance(
    stat_err: Sequence[float],
    syst_err: Optional[Sequence[float]] = None,
    cor_stat: Optional[Sequence[Sequence[float]]] = None,
    cor_syst: Optional[Sequence[Sequence[float]]] = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Total covariance and correlation matrices from stat + syst parts.

    Raises :class:`ModelConfigError` when the covariance is singular or the
    total correlation matrix is not positive definite.
    """
    stat = np.asarray(stat_err, dtype=np.float64)
    n = stat.shape[0]
    syst = np.zeros(n) if syst_err is None else np.asarray(syst_err, dtype=np.float64)
    if stat.ndim != 1 or syst.shape != (n,):
        raise ModelConfigError("stat/syst errors must be 1d and of equal length")

    c_stat = _symmetrize(cor_stat, n, "stat")
    c_syst = _symmetrize(cor_syst, n, "syst")
    cov = np.outer(stat, stat) * c_stat + np.outer(syst, syst) * c_syst

    if np.linalg.matrix_rank(cov) < n:
        raise ModelConfigError(
            "total covariance matrix is not invertible (det(COV)=0); "
            f"check ordering and number of observables:\n{cov}"
        )
    sig = np.sqrt(np.diag(cov))
    cor = cov / np.outer(sig, sig)
    try:
        np.linalg.cholesky(cor)
    except np.linalg.LinAlgError as e:
        raise ModelConfigError(
            "total correlation matrix is not positive definite; very large "
            f"correlations may need more precision:\n{cor}"
        ) from e
    return cov, cor


class GaussianModel:
    def __init__(
        self,
        parameters: Sequence[ParameterSpec],
        observables: Mapping[str, float],
        theory: Theory,
        stat_err: Sequence[float],
        syst_err: Optional[Sequence[float]] = None,
        *,
        cor_stat: Optional[Sequence[Sequence[float]]] = None,
        cor_syst: Optional[Sequence[Sequence[float]]] = None,
        name: str = "gaussian",
    ) -> None:
        self.name = name
        self.parameters = tuple(parameters)
        self.observable_names = tuple(observables)
        self.observed = {k: float(v) for k, v in observables.items()}
        if len(stat_err) != len(self.observable_names):
            raise ModelConfigError(
                f"{len(self.observable_names)} observables but {len(stat_err)} stat errors"
            )
        self._theory = theory
        self.cov, self.cor = build_covariance(stat_err, syst_err, cor_stat, cor_syst)
        self._inv_cov = np.linalg.inv(self.cov)
        self._chol = np.linalg.cholesky(self.cov)

    def __repr__(self) -> str:
        return f"GaussianModel({self.name!r}, n_par={len(self.parameters)}, n_obs={len(self.observable_names)})"

    def new_space(self) -> ParameterSpace:
        return space_for(self)

    def theory(self, values: Mapping[str, float]) -> np.ndarray:
        th = np.asarray(self._theory(values), dtype=np.float64)
        if th.shape != (len(self.observable_names),):
            raise ModelConfigError(
                f"theory returned shape {th.shape}, expected ({len(self.observable_names)},)"
            )
        return th

    def chi2(self, values: Mapping[str, float], observed: np.ndarray) -> float:
        r = observed - self.theory(values)
        return float(r @ self._inv_cov @ r)

    def generate(self, space: ParameterSpace, n: int, rng: np.random.Generator) -> np.ndarray:
        mean = self.theory(space.current())
        z = rng.standard_normal((int(n), mean.shape[0]))
        return mean + z @ self._chol.T

    def _observed_array(self, space: ParameterSpace) -> np.ndarray:
        obs = space.observables()
        return np.array([obs[o] for o in self.observable_names], dtype=np.float64)

    def fit(self, space: ParameterSpace, starts: Sequence[Optional[ParameterVector]] = ()) -> FitOutcome:
        observed = self._observed_array(space)
        base = space.current().as_dict()
        floating = space.floating()
        self.theory(base)

        if not floating:
            chi2 = self.chi2(base, observed)
            if not math.isfinite(chi2):
                raise FitFailure(f"non-finite chi2 at fixed point {base}")
            return FitOutcome(chi2=chi2, status=FitStatus.CONVERGED, parameters=space.current())

        specs = [space.spec(n) for n in floating]
        bounds = [
            (s.lo if math.isfinite(s.lo) else None, s.hi if math.isfinite(s.hi) else None) for s in specs
        ]

        def objective(x: np.ndarray) -> float:
            vals = dict(base)
            vals.update(zip(floating, (float(v) for v in x)))
            return self.chi2(vals, observed)

        best = None
        for start in list(starts) or [None]:
            x0 = np.array(
                [
                    s.clip(start[name] if start is not None and name in start else base[name])
                    for name, s in zip(floating, specs)
                ]
            )
            try:
                res = minimize(objective, x0, method="L-BFGS-B", bounds=bounds)
            except (ValueError, FloatingPointError, np.linalg.LinAlgError) as e:
                logger.debug("fit attempt from %s failed: %s", x0, e)
                continue
            if not np.isfinite(res.fun):
                continue
            if best is None or res.fun < best.fun:
                best = res

        if best is None:
            raise FitFailure(f"no fit attempt of {len(starts) or 1} produced a finite chi2")

        for name, value in zip(floating, best.x):
            space.set(name, float(value))
        status = FitStatus.CONVERGED if best.success else FitStatus.FAILED
        return FitOutcome(chi2=float(best.fun), status=int(status), parameters=space.current())


__all__ = ["GaussianModel", "build_covariance"]
