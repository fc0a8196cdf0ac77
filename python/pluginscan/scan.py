"""Plugin scans: toys at every scan point, fitted and persisted per run.

A :class:`ScanStrategy` says *what* to scan (grid, generation point, data
test statistic, result location); :class:`ScanOrchestrator` drives any
strategy through the same generate / fit / record loop.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence, Union

from .cache import RoundRobinStartCache
from .config import ScanConfig
from .errors import ConsistencyWarning, warn
from .evolution import ProfileLikelihoodCurve, ProfileLikelihoodCurve2D
from .histogram import PValueCurve, PValueGrid, TestStatisticHistogrammer
from .importance import ImportanceSampler, expected_pvalue
from .merge import MergedRuns, MultiRunAggregator
from .model import Model
from .params import ParameterSpace, ParameterVector
from .pipeline import PerToyFitPipeline
from .progress import ProgressCounter
from .records import DataStatistic, ScanPoint, ToyRecord, ToyTable, record_columns
from .store import ResultStore
from .toys import FragileObservable, ToyDataset, ToyGenerator, make_seed_policy

logger = logging.getLogger(__name__)


class ScanStrategy(Protocol):
    model: Model
    config: ScanConfig
    scan_vars: tuple[str, ...]

    def grid(self, space: ParameterSpace) -> list[ScanPoint]:
        ...

    def resolve_start_point(self, space: ParameterSpace, point: ScanPoint) -> tuple[ParameterVector, DataStatistic]:
        """Generation point and data test statistic at ``point``."""
        ...

    def compute_test_statistic(
        self,
        pipeline: PerToyFitPipeline,
        toy: ToyDataset,
        point: ScanPoint,
        data: DataStatistic,
        generation_point: ParameterVector,
        run: int,
    ) -> ToyRecord:
        ...

    def persist_result(self, records: Sequence[ToyRecord], run: int) -> Optional[Path]:
        ...

    def analyse(self, run: int) -> Union[PValueCurve, PValueGrid]:
        ...


@dataclass(frozen=True)
class ScanRun:
    run: int
    path: Optional[Path]
    n_points: int
    n_toys: int
    n_skipped: int
    result: Optional[Union[PValueCurve, PValueGrid]] = None


def _grid_1d(lo: float, hi: float, n: int) -> list[float]:
    return [lo + (hi - lo) * i / n + 0.5 * (hi - lo) / n for i in range(n)]


class ScanOrchestrator:
    """Run a strategy for one run id.

    Parameter and observable state of ``space`` is restored after every scan
    point and when the run ends, also on error.
    """

    def __init__(
        self,
        strategy: ScanStrategy,
        *,
        space: Optional[ParameterSpace] = None,
        fragile: Sequence[FragileObservable] = (),
    ) -> None:
        self.strategy = strategy
        self.model = strategy.model
        self.config = strategy.config
        self.space = space if space is not None else self.model.new_space()
        self.fragile = tuple(fragile)
        self.sampler = ImportanceSampler(self.config.importance)

    def _components(self, run: int) -> tuple[ToyGenerator, PerToyFitPipeline]:
        policy = make_seed_policy(self.config.seed_policy, self.config.seed_for_run(run))
        generator = ToyGenerator(self.model, seed_policy=policy, fragile=self.fragile)
        pipeline = PerToyFitPipeline(
            self.model,
            self.space,
            self.strategy.scan_vars,
            RoundRobinStartCache(self.config.cache_size),
        )
        return generator, pipeline

    def collect(self, points: Sequence[ScanPoint], run: int) -> tuple[list[ToyRecord], int]:
        """Toy records for ``points``, and the number of toy slots skipped."""
        ntoys = self.config.ntoys
        generator, pipeline = self._components(run)
        progress = ProgressCounter(len(points) * ntoys)
        space = self.space
        records: list[ToyRecord] = []
        n_skipped = 0

        with space.preserved():
            for point in points:
                with space.preserved():
                    start, data = self.strategy.resolve_start_point(space, point)
                    n, skipped = self.sampler.n_toys(ntoys, expected_pvalue(data.chi2min, data.chi2min_global))
                    progress.skip(skipped)
                    n_skipped += skipped
                    if skipped:
                        logger.debug("importance sampling at %s: %d of %d toys", point, n, ntoys)

                    space.load(start)
                    for var, value in zip(self.strategy.scan_vars, point.values):
                        space.set(var, value, constant=True)
                    batch = generator.generate(space, n)
                    generation_point = space.current()
                    pipeline.reset(generation_point)

                    for toy in batch:
                        records.append(
                            self.strategy.compute_test_statistic(pipeline, toy, point, data, generation_point, run)
                        )
                        progress.step()

        if pipeline.n_failures:
            logger.info("%d fits did not converge after retry (%d retries)", pipeline.n_failures, pipeline.n_retries)
        return records, n_skipped

    def run(self, run: int) -> ScanRun:
        points = self.strategy.grid(self.space)
        logger.info(
            "plugin scan of %s, run %d: %d points, %d toys each",
            ", ".join(self.strategy.scan_vars),
            run,
            len(points),
            self.config.ntoys,
        )
        records, n_skipped = self.collect(points, run)
        path = self.strategy.persist_result(records, run)
        result = None if self.config.batch else self.strategy.analyse(run)
        return ScanRun(run=run, path=path, n_points=len(points), n_toys=len(records), n_skipped=n_skipped, result=result)


class _PluginScanBase:
    model: Model
    config: ScanConfig
    scan_vars: tuple[str, ...]
    store: ResultStore
    coverage_corrector: Optional[Callable[[float], float]] = None
    subtract_background: bool = False

    def compute_test_statistic(
        self,
        pipeline: PerToyFitPipeline,
        toy: ToyDataset,
        point: ScanPoint,
        data: DataStatistic,
        generation_point: ParameterVector,
        run: int,
    ) -> ToyRecord:
        return pipeline.run(toy, point, data, generation_point, run=run)

    def _columns(self) -> list[str]:
        return record_columns(
            len(self.scan_vars),
            [p.name for p in self.model.parameters],
            self.model.observable_names,
        )

    def persist_result(self, records: Sequence[ToyRecord], run: int) -> Optional[Path]:
        return self.store.write(ToyTable.from_records(records, self._columns()), run)

    def read(self, run: int) -> ToyTable:
        return self.store.read(run)

    def _histogrammer(self, external_chi2=None) -> TestStatisticHistogrammer:
        return TestStatisticHistogrammer(
            quality_bound=self.config.quality_bound,
            plot_range=self.config.plot_range if len(self.scan_vars) == 1 else None,
            external_chi2=external_chi2 if self.config.plugin_ext else None,
            coverage_corrector=self.coverage_corrector,
            subtract_background=self.subtract_background,
        )

    def _chi2min_global(self) -> float:
        raise NotImplementedError

    def merge_runs(self, run_min: int, run_max: int) -> MergedRuns:
        """Merge the result files of runs ``run_min..run_max`` (inclusive).

        Rows are checked against the data ``chi2min_global`` of this scan
        within ``wrong_run_rel_tol``.
        """
        aggregator = MultiRunAggregator(
            self.store,
            chi2min_global=self._chi2min_global(),
            rel_tol=self.config.wrong_run_rel_tol,
        )
        return aggregator.merge(run_min, run_max)

    def analyse_runs(self, run_min: int, run_max: int) -> Union[PValueCurve, PValueGrid]:
        return self.analyse_table(self.merge_runs(run_min, run_max).table)

    def run(self, run: int, *, space: Optional[ParameterSpace] = None) -> ScanRun:
        return ScanOrchestrator(self, space=space).run(run)


class PluginScan1D(_PluginScanBase):
    """Plugin scan of one parameter along a profile-likelihood curve."""

    def __init__(
        self,
        model: Model,
        curve: ProfileLikelihoodCurve,
        config: Optional[ScanConfig] = None,
        *,
        store: Optional[ResultStore] = None,
        coverage_corrector: Optional[Callable[[float], float]] = None,
        subtract_background: bool = False,
    ) -> None:
        self.model = model
        self.curve = curve
        self.config = config if config is not None else ScanConfig()
        self.scan_vars = (curve.scan_var,)
        self.store = store if store is not None else ResultStore(self.config.output_dir, self.config.name, self.scan_vars)
        self.coverage_corrector = coverage_corrector
        self.subtract_background = subtract_background
        self._columns()  # observable names must not shadow result columns

    def grid(self, space: ParameterSpace) -> list[ScanPoint]:
        spec = space.spec(self.curve.scan_var)
        ranges = ((self.curve.lo, self.curve.hi),)
        points = []
        for i, x in enumerate(_grid_1d(self.curve.lo, self.curve.hi, self.config.npoints1d)):
            if not spec.contains(x):
                continue
            points.append(ScanPoint(values=(x,), bins=(i,), id=i, ranges=ranges))
        return points

    def edges(self) -> list[float]:
        """Bin edges of the configured grid, one bin per grid point."""
        lo, hi, n = self.curve.lo, self.curve.hi, self.config.npoints1d
        return [lo + (hi - lo) * i / n for i in range(n + 1)]

    def _chi2min_global(self) -> float:
        return self.curve.chi2min_global

    def resolve_start_point(self, space: ParameterSpace, point: ScanPoint) -> tuple[ParameterVector, DataStatistic]:
        (x,) = point.values
        var = self.curve.scan_var
        res = self.curve.lookup(x, rel_tol=self.config.evolution_rel_tol)
        start = res.parameters.replace({var: x})
        chi2min = res.chi2
        if self.config.scan_force:
            space.load(start)
            space.set(var, x, constant=True)
            seeds: list[Optional[ParameterVector]] = [None]
            if self.curve.global_minimum is not None:
                seeds.append(self.curve.global_minimum)
            out = self.model.fit(space, seeds)
            start = out.parameters.replace(constant={var: False})
            chi2min = out.chi2
            logger.debug("forced refit at %s=%g: chi2=%g (curve: %g)", var, x, chi2min, res.chi2)
        return start, DataStatistic(chi2min=chi2min, chi2min_global=self.curve.chi2min_global)

    def analyse(self, run: int) -> PValueCurve:
        return self.analyse_table(self.read(run))

    def analyse_table(self, table: ToyTable, batch_id: int = -1) -> PValueCurve:
        return self._histogrammer(self.curve.chi2min).analyse(table, batch_id, edges=self.edges())

    def pvalue(
        self,
        x: float,
        batch_id: int = 0,
        *,
        run: int = 0,
        space: Optional[ParameterSpace] = None,
    ) -> float:
        """p-value at a single scan coordinate from ``ntoys`` toys (not persisted)."""
        point = ScanPoint(
            values=(float(x),),
            bins=(self.curve.bin_index(x),),
            id=batch_id,
            ranges=((self.curve.lo, self.curve.hi),),
        )
        records, _ = ScanOrchestrator(self, space=space).collect([point], run)
        table = ToyTable.from_records(records, self._columns())
        return self.analyse_table(table, batch_id).pvalue_at(x) if len(table) else math.nan


class PluginScan2D(_PluginScanBase):
    """Plugin scan over a rectangular grid of two parameters.

    The constrained data minimum is refitted at every point, starting from
    the external curve result of the bin when there is one.
    """

    def __init__(
        self,
        model: Model,
        curve: Optional[ProfileLikelihoodCurve2D] = None,
        config: Optional[ScanConfig] = None,
        *,
        scan_vars: Optional[tuple[str, str]] = None,
        x_range: Optional[tuple[float, float]] = None,
        y_range: Optional[tuple[float, float]] = None,
        store: Optional[ResultStore] = None,
        coverage_corrector: Optional[Callable[[float], float]] = None,
        subtract_background: bool = False,
    ) -> None:
        if curve is None and (scan_vars is None or x_range is None or y_range is None):
            raise ValueError("without a curve, scan_vars, x_range and y_range are required")
        self.model = model
        self.curve = curve
        self.config = config if config is not None else ScanConfig()
        self.scan_vars = tuple(scan_vars if scan_vars is not None else curve.scan_vars)
        self.x_range = tuple(x_range if x_range is not None else curve.x_range)
        self.y_range = tuple(y_range if y_range is not None else curve.y_range)
        self.store = store if store is not None else ResultStore(self.config.output_dir, self.config.name, self.scan_vars)
        self._global: Optional[tuple[float, ParameterVector]] = None
        self._previous: Optional[ParameterVector] = None
        self.coverage_corrector = coverage_corrector
        self.subtract_background = subtract_background
        self._columns()  # observable names must not shadow result columns

    def grid(self, space: ParameterSpace) -> list[ScanPoint]:
        nx, ny = self.config.npoints2d
        spec1, spec2 = space.spec(self.scan_vars[0]), space.spec(self.scan_vars[1])
        ranges = (tuple(self.x_range), tuple(self.y_range))
        points = []
        for i, x in enumerate(_grid_1d(*self.x_range, nx)):
            for j, y in enumerate(_grid_1d(*self.y_range, ny)):
                if not (spec1.contains(x) and spec2.contains(y)):
                    continue
                points.append(ScanPoint(values=(x, y), bins=(i, j), id=i * ny + j, ranges=ranges))
        return points

    def global_minimum(self, space: ParameterSpace) -> tuple[float, ParameterVector]:
        """``chi2min_global`` and its parameters: from the curve, else one free fit."""
        if self.curve is not None and self.curve.global_minimum is not None:
            return self.curve.chi2min_global, self.curve.global_minimum
        if self._global is None:
            with space.preserved():
                space.free(*self.scan_vars)
                out = self.model.fit(space, [None])
            logger.info("global minimum of the data: chi2=%.6g", out.chi2)
            self._global = (out.chi2, out.parameters)
        return self._global

    def _chi2min_global(self) -> float:
        if self.curve is not None:
            return self.curve.chi2min_global
        return self.global_minimum(self.model.new_space())[0]

    def _check_refit(self, external: ParameterVector, refit: ParameterVector) -> None:
        tol = self.config.refit_rel_tol
        for name, int_val in refit.items():
            if name in self.scan_vars or name not in external:
                continue
            ext_val = external[name]
            if abs(ext_val - int_val) > tol * abs(int_val):
                warn(
                    logger,
                    ConsistencyWarning,
                    f"external and refitted minimum differ by more than {tol:.0%}: "
                    f"{name} ext={ext_val:g} int={int_val:g}",
                )

    def resolve_start_point(self, space: ParameterSpace, point: ScanPoint) -> tuple[ParameterVector, DataStatistic]:
        x, y = point.values
        chi2min_global, glob = self.global_minimum(space)
        ext = self.curve.lookup(x, y, rel_tol=self.config.evolution_rel_tol) if self.curve is not None else None
        if ext is not None:
            logger.debug("loading start parameters from external curve at [%g, %g]", x, y)
            space.load(ext.parameters)
        for var, value in zip(self.scan_vars, point.values):
            space.set(var, value, constant=True)

        starts: list[Optional[ParameterVector]] = [None]
        if self.config.scan_force:
            starts += [glob] + ([self._previous] if self._previous is not None else [])
        out = self.model.fit(space, starts)
        refit = out.parameters.replace(constant={v: False for v in self.scan_vars})
        self._previous = refit
        if ext is not None:
            self._check_refit(ext.parameters, refit)
        return refit, DataStatistic(chi2min=out.chi2, chi2min_global=chi2min_global)

    def analyse(self, run: int) -> PValueGrid:
        return self.analyse_table(self.read(run))

    def analyse_table(self, table: ToyTable) -> PValueGrid:
        nx, ny = self.config.npoints2d
        (x0, x1), (y0, y1) = self.x_range, self.y_range
        x_edges = [x0 + (x1 - x0) * i / nx for i in range(nx + 1)]
        y_edges = [y0 + (y1 - y0) * j / ny for j in range(ny + 1)]
        ext = self.curve.chi2min if self.curve is not None else None
        return self._histogrammer(ext).analyse_2d(table, x_edges, y_edges)


__all__ = [
    "PluginScan1D",
    "PluginScan2D",
    "ScanOrchestrator",
    "ScanRun",
    "ScanStrategy",
]
