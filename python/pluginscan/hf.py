"""HistFactory models through pyhf.

Requires pyhf (install with: `pip install "pluginscan[hf]"`).

Observables are the main-bin counts, named ``<channel>[<bin>]``, followed
by the auxiliary data, named ``aux[<i>]``. Parameters are named like the
pyhf parameter sets, with ``[<i>]`` appended for vector parameters
(e.g. ``staterror_ch[0]``). The chi2 is pyhf's ``twice_nll``.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from .errors import FitFailure, ModelConfigError
from .model import FitOutcome, FitStatus, space_for
from .params import ParameterSpace, ParameterSpec, ParameterVector

logger = logging.getLogger(__name__)


def _require_pyhf():
    try:
        import pyhf  # type: ignore
    except Exception as e:
        raise ImportError("pluginscan.hf requires pyhf. Install: pip install 'pluginscan[hf]'") from e
    return pyhf


def _scalar(x: Any) -> float:
    return float(np.asarray(x, dtype=np.float64).ravel()[0])


def _parameter_names(config) -> list[str]:
    names: list[str] = []
    for par in config.par_order:
        n = int(config.param_set(par).n_parameters)
        names.extend([par] if n == 1 else [f"{par}[{i}]" for i in range(n)])
    return names


def _observable_names(config) -> list[str]:
    names = [f"{ch}[{i}]" for ch in config.channels for i in range(int(config.channel_nbins[ch]))]
    names.extend(f"aux[{i}]" for i in range(int(config.nauxdata)))
    return names


class PyhfModel:
    def __init__(self, model: Any, data: Sequence[float], *, name: str = "pyhf") -> None:
        self.pyhf = _require_pyhf()
        self.model = model
        self.name = name
        cfg = model.config

        par_names = _parameter_names(cfg)
        init = [float(v) for v in cfg.suggested_init()]
        bounds = [(float(lo), float(hi)) for lo, hi in cfg.suggested_bounds()]
        if not (len(par_names) == len(init) == len(bounds)):
            raise ModelConfigError("pyhf parameter layout does not match suggested init/bounds")
        self.parameters = tuple(
            ParameterSpec(n, lo=lo, hi=hi, default=min(max(v, lo), hi)) for n, v, (lo, hi) in zip(par_names, init, bounds)
        )
        self._fixed_default = [n for n, fixed in zip(par_names, cfg.suggested_fixed()) if fixed]

        self.observable_names = tuple(_observable_names(cfg))
        values = np.asarray(data, dtype=np.float64)
        if values.shape != (len(self.observable_names),):
            raise ModelConfigError(
                f"data has {values.size} entries, model expects {len(self.observable_names)} (main + aux)"
            )
        self.observed = dict(zip(self.observable_names, (float(v) for v in values)))

    @classmethod
    def from_workspace(cls, workspace: Mapping[str, Any], measurement_name: Optional[str] = None, **kwargs) -> "PyhfModel":
        pyhf = _require_pyhf()
        ws = pyhf.Workspace(dict(workspace))
        model = ws.model(measurement_name=measurement_name) if measurement_name else ws.model()
        return cls(model, ws.data(model), name=kwargs.pop("name", measurement_name or "pyhf"))

    def __repr__(self) -> str:
        return f"PyhfModel({self.name!r}, n_par={len(self.parameters)}, n_obs={len(self.observable_names)})"

    @property
    def poi_name(self) -> Optional[str]:
        poi = self.model.config.poi_name
        return str(poi) if poi else None

    def new_space(self) -> ParameterSpace:
        space = space_for(self)
        space.fix(*self._fixed_default)
        return space

    def _pars(self, values: Mapping[str, float]) -> np.ndarray:
        return np.array([values[p.name] for p in self.parameters], dtype=np.float64)

    def _data(self, space: ParameterSpace) -> np.ndarray:
        obs = space.observables()
        return np.array([obs[o] for o in self.observable_names], dtype=np.float64)

    def chi2(self, values: Mapping[str, float], data: np.ndarray) -> float:
        tensorlib, _ = self.pyhf.get_backend()
        pars = tensorlib.astensor(self._pars(values))
        return _scalar(self.pyhf.infer.mle.twice_nll(pars, tensorlib.astensor(data), self.model))

    def generate(self, space: ParameterSpace, n: int, rng: np.random.Generator) -> np.ndarray:
        """Sample main and auxiliary data at the current parameters.

        pyhf's numpy backend samples from numpy's global random state. It is
        seeded from ``rng`` for the draw, so draws follow the caller's seed
        policy, and restored afterwards.
        """
        tensorlib, _ = self.pyhf.get_backend()
        pdf = self.model.make_pdf(tensorlib.astensor(self._pars(space.current())))
        saved = np.random.get_state()
        try:
            np.random.seed(int(rng.integers(2**32 - 1)))
            toys = np.asarray(tensorlib.tolist(pdf.sample((int(n),))), dtype=np.float64)
        finally:
            np.random.set_state(saved)
        return toys.reshape(int(n), len(self.observable_names))

    def fit(self, space: ParameterSpace, starts: Sequence[Optional[ParameterVector]] = ()) -> FitOutcome:
        data = self._data(space)
        base = space.current()
        floating = set(space.floating())

        if not floating:
            chi2 = self.chi2(base, data)
            if not math.isfinite(chi2):
                raise FitFailure(f"non-finite twice_nll at fixed point {base}")
            return FitOutcome(chi2=chi2, status=FitStatus.CONVERGED, parameters=base)

        tensorlib, _ = self.pyhf.get_backend()
        fixed = [p.name not in floating for p in self.parameters]
        bounds = [(p.lo, p.hi) for p in self.parameters]

        best: Optional[tuple[float, np.ndarray]] = None
        for start in list(starts) or [None]:
            init = {
                p.name: p.clip(start[p.name]) if start is not None and p.name in floating and p.name in start else base[p.name]
                for p in self.parameters
            }
            try:
                pars, twice_nll = self.pyhf.infer.mle.fit(
                    tensorlib.astensor(data),
                    self.model,
                    init_pars=self._pars(init).tolist(),
                    par_bounds=bounds,
                    fixed_params=fixed,
                    return_fitted_val=True,
                )
            except self.pyhf.exceptions.FailedMinimization as e:
                logger.debug("pyhf fit from %s failed: %s", init, e)
                continue
            val = _scalar(twice_nll)
            if math.isfinite(val) and (best is None or val < best[0]):
                best = (val, np.asarray(tensorlib.tolist(pars), dtype=np.float64))

        if best is None:
            raise FitFailure(f"no pyhf fit of {len(starts) or 1} start point(s) converged")

        chi2, pars = best
        for p, v in zip(self.parameters, pars):
            if p.name in floating:
                space.set(p.name, float(v))
        return FitOutcome(chi2=chi2, status=FitStatus.CONVERGED, parameters=space.current())


__all__ = ["PyhfModel"]
