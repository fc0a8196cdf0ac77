"""Importance sampling: scale the toy count by the expected p-value.

Toys are spent where a log-scale 1-CL plot needs precision (moderate p),
not where the outcome is a near-certain accept (p near 1) or unmeasurable
with the nominal count (p below the cutoff).
"""

from __future__ import annotations

from dataclasses import dataclass

from scipy.stats import chi2

MIN_FRACTION = 0.05  # smallest fraction of the nominal toys ever generated
CUTOFF = 1e-5  # below this expected p-value no toys are generated
SCALE = 30.0


def importance(pvalue: float) -> float:
    """Fraction in ``[0.05, 1]`` of the nominal toy count, or 0 below the cutoff."""
    p = float(pvalue)
    if p < CUTOFF:
        return 0.0
    f = (1.0 - p) / p / SCALE
    if f > 1.0:
        return 1.0
    if f < MIN_FRACTION:
        return MIN_FRACTION
    return f


def expected_pvalue(chi2min: float, chi2min_global: float) -> float:
    """Asymptotic (Wilks, 1 dof) p-value of the data at a scan point."""
    return float(chi2.sf(max(float(chi2min) - float(chi2min_global), 0.0), 1))


@dataclass(frozen=True)
class ImportanceSampler:
    enabled: bool = False

    def n_toys(self, nominal: int, pvalue: float) -> tuple[int, int]:
        """Return ``(n_to_generate, n_skipped)`` for a nominal toy count."""
        if not self.enabled:
            return int(nominal), 0
        n = int(nominal * importance(pvalue))
        return n, int(nominal) - n


__all__ = ["CUTOFF", "ImportanceSampler", "MIN_FRACTION", "expected_pvalue", "importance"]
