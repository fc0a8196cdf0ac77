"""Model collaborator protocol.

The scan engine only drives a model: it never builds or validates one. Any
object with this surface works, e.g. :class:`pluginscan.gaussian.GaussianModel`
or :class:`pluginscan.hf.PyhfModel`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Mapping, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from .params import ParameterSpace, ParameterSpec, ParameterVector


class FitStatus(IntEnum):
    CONVERGED = 0
    FAILED = 1


@dataclass(frozen=True)
class FitOutcome:
    """Result of one optimizer invocation.

    ``chi2`` is -2 log L at the minimum; ``status`` is 0 on convergence.
    """

    chi2: float
    status: int
    parameters: ParameterVector

    @property
    def converged(self) -> bool:
        return int(self.status) == FitStatus.CONVERGED and math.isfinite(self.chi2)


@runtime_checkable
class Model(Protocol):
    parameters: Sequence[ParameterSpec]
    observable_names: Sequence[str]
    observed: Mapping[str, float]

    def new_space(self) -> ParameterSpace:
        """Fresh context at default parameter values, loaded with the observed data."""
        ...

    def generate(self, space: ParameterSpace, n: int, rng: np.random.Generator) -> np.ndarray:
        """Draw ``n`` observation sets at the current configuration, shape ``(n, n_obs)``."""
        ...

    def fit(self, space: ParameterSpace, starts: Sequence[Optional[ParameterVector]] = ()) -> FitOutcome:
        """Minimize over the floating parameters of ``space``.

        Each entry of ``starts`` is one start attempt (``None``: current values);
        the best attempt wins and ``space`` is left at it.
        """
        ...


def space_for(model: Model) -> ParameterSpace:
    """Build a context for ``model`` loaded with its observed data."""
    space = ParameterSpace(model.parameters, model.observable_names)
    space.load_observables(model.observed)
    return space


__all__ = ["FitOutcome", "FitStatus", "Model", "space_for"]
