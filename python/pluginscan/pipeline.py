"""Per-toy fit pipeline: scan fit, free fit, bookkeeping.

For each toy the observables are loaded into the parameter space, the model
is fitted once with the scan variable(s) fixed at the scan coordinate ("scan
fit") and once with them floating ("free fit"). Both fits start from seeds
given by an explicit retry table; a second attempt is only made when the
first does not converge.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from .cache import RoundRobinStartCache
from .errors import FitFailure
from .model import FitOutcome, FitStatus, Model
from .params import ParameterSpace, ParameterVector
from .records import DataStatistic, ScanPoint, ToyRecord
from .toys import ToyDataset

logger = logging.getLogger(__name__)


class SeedSource(Enum):
    """Where an optimizer start point comes from."""

    CACHE_0 = "cache[0]"
    CACHE_1 = "cache[1]"
    CACHE_2 = "cache[2]"
    GLOBAL_MIN = "global-min"  # the toy generation point
    CURRENT = "current"  # parameters at the start of the fit stage
    RETAINED = "retained"  # whatever the previous attempt left in the space


@dataclass(frozen=True)
class FitAttempt:
    seeds: tuple[SeedSource, ...]


SCAN_FIT_ATTEMPTS: tuple[FitAttempt, ...] = (
    FitAttempt((SeedSource.CACHE_0, SeedSource.GLOBAL_MIN)),
    FitAttempt((SeedSource.CACHE_1, SeedSource.CACHE_2)),
)

FREE_FIT_ATTEMPTS: tuple[FitAttempt, ...] = (
    FitAttempt((SeedSource.CURRENT,)),
    FitAttempt((SeedSource.RETAINED,)),
)


class PerToyFitPipeline:
    def __init__(
        self,
        model: Model,
        space: ParameterSpace,
        scan_vars: Sequence[str],
        cache: Optional[RoundRobinStartCache] = None,
        *,
        scan_attempts: Sequence[FitAttempt] = SCAN_FIT_ATTEMPTS,
        free_attempts: Sequence[FitAttempt] = FREE_FIT_ATTEMPTS,
    ) -> None:
        for v in scan_vars:
            space.spec(v)
        self.model = model
        self.space = space
        self.scan_vars = tuple(scan_vars)
        self.cache = cache if cache is not None else RoundRobinStartCache()
        self.scan_attempts = tuple(scan_attempts)
        self.free_attempts = tuple(free_attempts)
        self.n_retries = 0
        self.n_failures = 0

    def reset(self, generation_point: ParameterVector) -> None:
        """Prime the start cache for a new scan point."""
        self.cache.prime(generation_point)

    def _seed(self, source: SeedSource, global_min: ParameterVector, current: ParameterVector) -> Optional[ParameterVector]:
        if source is SeedSource.CACHE_0:
            return self.cache.get(0)
        if source is SeedSource.CACHE_1:
            return self.cache.get(1)
        if source is SeedSource.CACHE_2:
            return self.cache.get(2)
        if source is SeedSource.GLOBAL_MIN:
            return global_min
        if source is SeedSource.CURRENT:
            return current
        return None

    def _fit_once(self, starts: list[Optional[ParameterVector]]) -> FitOutcome:
        try:
            return self.model.fit(self.space, starts)
        except FitFailure as e:
            logger.debug("fit failed: %s", e)
            return FitOutcome(chi2=math.nan, status=int(FitStatus.FAILED), parameters=self.space.current())

    def fit(self, attempts: Sequence[FitAttempt], global_min: ParameterVector) -> FitOutcome:
        """Run the attempts of a retry table until one converges."""
        current = self.space.current()
        outcome = None
        for k, attempt in enumerate(attempts):
            if k > 0:
                self.n_retries += 1
            outcome = self._fit_once([self._seed(s, global_min, current) for s in attempt.seeds])
            if outcome.converged:
                return outcome
        if outcome is None:
            raise ValueError("retry table has no attempts")
        self.n_failures += 1
        return outcome

    def run(
        self,
        toy: ToyDataset,
        point: ScanPoint,
        data: DataStatistic,
        generation_point: ParameterVector,
        *,
        run: int,
    ) -> ToyRecord:
        """Fit one toy at ``point`` and return its record.

        The space is loaded with the generation point first, so every toy of a
        scan point starts from the same configuration.
        """
        space = self.space
        space.load(generation_point)
        space.load_observables(toy)
        for var, value in zip(self.scan_vars, point.values):
            space.set(var, value, constant=True)
        start = space.current()

        scan = self.fit(self.scan_attempts, generation_point)
        scan_pars = space.current()

        space.free(*self.scan_vars)
        free = self.fit(self.free_attempts, generation_point)
        free_pars = space.current()
        if free.converged:
            self.cache.push(free_pars)

        return ToyRecord(
            run=run,
            batch_id=point.id,
            point=point,
            data=data,
            chi2min_toy=scan.chi2,
            chi2min_global_toy=free.chi2,
            status_scan=int(scan.status),
            status_free=int(free.status),
            scanbest=tuple(free_pars[v] for v in self.scan_vars),
            start=start,
            scan=scan_pars,
            free=free_pars,
            observables=dict(toy),
        )


__all__ = [
    "FREE_FIT_ATTEMPTS",
    "FitAttempt",
    "PerToyFitPipeline",
    "SCAN_FIT_ATTEMPTS",
    "SeedSource",
]
