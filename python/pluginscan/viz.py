"""Control plots for plugin scans.

Requires matplotlib (install via `pip install pluginscan[viz]`).
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from .histogram import PValueCurve
from .records import ToyTable


def _require_matplotlib():
    try:
        import matplotlib.pyplot as plt  # noqa: F401
    except Exception as e:  # pragma: no cover
        raise ImportError("Missing dependency: matplotlib. Install via `pip install matplotlib`.") from e


def plot_pvalue_curve(
    curve: PValueCurve,
    *,
    ax=None,
    log: bool = False,
    xlabel: str = "scan parameter",
    title: Optional[str] = None,
    prob_curve: Optional[tuple[np.ndarray, np.ndarray]] = None,
):
    """Plot 1-CL per scan bin with binomial error bars.

    ``prob_curve`` overlays an ``(x, p)`` curve, e.g. the asymptotic
    profile-likelihood p-value.
    """
    _require_matplotlib()
    import matplotlib.pyplot as plt

    if ax is None:
        _, ax = plt.subplots(figsize=(7.2, 4.2))

    ok = np.isfinite(curve.pvalue)
    x = curve.centres[ok]
    ax.errorbar(x, curve.pvalue[ok], yerr=curve.error[ok], fmt="o", ms=3.5, color="#111827", lw=1.25, label="plugin")

    if prob_curve is not None:
        px, pp = prob_curve
        ax.plot(px, pp, color="#2563EB", lw=1.5, ls="--", label="Prob")

    if log:
        ax.set_yscale("log")
        pos = curve.pvalue[ok & (curve.pvalue > 0)]
        ax.set_ylim(max(float(pos.min()) / 2, 1e-6) if pos.size else 1e-3, 1.0)
    else:
        ax.set_ylim(0.0, 1.05)

    ax.set_xlabel(xlabel)
    ax.set_ylabel("1-CL")
    ax.grid(True, alpha=0.25)
    ax.legend(loc="best", frameon=False)
    if title:
        ax.set_title(title)
    return ax


def plot_test_statistic(
    table: ToyTable,
    x: float,
    *,
    ax=None,
    bins: int = 50,
    quality_bound: float = 500.0,
    title: Optional[str] = None,
):
    """Histogram of the toy test statistic at scan point ``x`` against the data value."""
    _require_matplotlib()
    import matplotlib.pyplot as plt

    if ax is None:
        _, ax = plt.subplots(figsize=(7.2, 4.2))

    sp = table["scanpoint1"]
    if sp.size == 0:
        raise ValueError("empty toy table")
    nearest = sp[np.argmin(np.abs(sp - float(x)))]
    at = sp == nearest
    ok = (
        at
        & (table["status_scan"] == 0)
        & (table["status_free"] == 0)
        & (np.abs(table["chi2min_toy"]) < quality_bound)
        & (np.abs(table["chi2min_global_toy"]) < quality_bound)
    )
    toy = table["chi2min_toy"][ok] - table["chi2min_global_toy"][ok]
    ax.hist(toy, bins=bins, histtype="step", color="#111827", lw=1.5, label="toys")

    data = table["chi2min"][at] - table["chi2min_global"][at]
    if data.size:
        ax.axvline(float(data[0]), color="#DC2626", lw=1.5, ls="--", label="data")

    ax.set_xlabel("Δχ² (toy)")
    ax.set_ylabel("toys")
    ax.legend(loc="best", frameon=False)
    ax.set_title(title if title else f"scan point {nearest:g}")
    return ax


__all__ = ["plot_pvalue_curve", "plot_test_statistic"]
