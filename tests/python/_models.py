"""Small models and synthetic toy tables shared by the scan tests.

The line model has two observables ``x = mu + b`` and ``y = b`` with
Gaussian errors 1 and 0.5, so its profile likelihood in ``mu`` is exactly
parabolic and the plugin test statistic is chi2-distributed with one
degree of freedom.
"""

from __future__ import annotations

from typing import Any, Sequence

import numpy as np

from pluginscan import GaussianModel, ParameterSpec, ToyTable
from pluginscan.records import record_columns

X_OBS = 1.0
Y_OBS = 0.2
SIGMA_X = 1.0
SIGMA_Y = 0.5
# variance of the mu estimate x - y
SIGMA_MU = float(np.sqrt(SIGMA_X**2 + SIGMA_Y**2))


def line_theory(p):
    return [p["mu"] + p["b"], p["b"]]


def make_line_model(x: float = X_OBS, y: float = Y_OBS, *, mu_range=(-10.0, 10.0)) -> GaussianModel:
    return GaussianModel(
        [ParameterSpec("mu", *mu_range, default=0.0), ParameterSpec("b", -5.0, 5.0, default=0.0)],
        {"x": x, "y": y},
        line_theory,
        [SIGMA_X, SIGMA_Y],
        name="line",
    )


def make_plane_model() -> GaussianModel:
    """Two parameters of interest and one nuisance, three observables."""
    return GaussianModel(
        [
            ParameterSpec("a", -5.0, 5.0, default=0.0),
            ParameterSpec("c", -5.0, 5.0, default=0.0),
            ParameterSpec("b", -5.0, 5.0, default=0.0),
        ],
        {"u": 0.5, "v": -0.3, "w": 0.1},
        lambda p: [p["a"] + p["b"], p["c"] + p["b"], p["b"]],
        [1.0, 1.0, 0.5],
        name="plane",
    )


def delta_chi2(mu: float, x: float = X_OBS, y: float = Y_OBS) -> float:
    """Closed-form profile delta chi2 of the line model."""
    return (mu - (x - y)) ** 2 / SIGMA_MU**2


def toy_table(rows: Sequence[dict[str, Any]], dim: int = 1) -> ToyTable:
    """Synthetic result table; unspecified columns take neutral defaults."""
    cols = record_columns(dim, [], [])
    defaults = {c: 0.0 for c in cols}
    defaults.update(run=1, id=0, chi2min_global=0.0, chi2min_global_toy=0.0)
    return ToyTable({c: [r.get(c, defaults[c]) for r in rows] for c in cols})
