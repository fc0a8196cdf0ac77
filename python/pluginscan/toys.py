"""Batched toy generation at a fixed model configuration."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np

from .errors import GenerationAnomaly, ModelConfigError, warn
from .model import Model
from .params import ParameterSpace

logger = logging.getLogger(__name__)


class SeedPolicy(Protocol):
    def rng_for_batch(self) -> np.random.Generator:
        ...


class AdvancingSeedPolicy:
    """One generator stream per run; successive batches continue it."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def rng_for_batch(self) -> np.random.Generator:
        return self._rng

    def __repr__(self) -> str:
        return f"AdvancingSeedPolicy(seed={self.seed!r})"


class FixedSeedPolicy:
    """Reset to the same seed before every batch: identical draws at identical configurations."""

    def __init__(self, seed: int = 0) -> None:
        self.seed = int(seed)

    def rng_for_batch(self) -> np.random.Generator:
        return np.random.default_rng(self.seed)

    def __repr__(self) -> str:
        return f"FixedSeedPolicy(seed={self.seed})"


def make_seed_policy(kind: str, seed: Optional[int]) -> SeedPolicy:
    if kind == "advancing":
        return AdvancingSeedPolicy(seed)
    if kind == "fixed":
        return FixedSeedPolicy(0 if seed is None else seed)
    raise ValueError(f"unknown seed policy {kind!r}, expected 'advancing' or 'fixed'")


@dataclass(frozen=True)
class FragileObservable:
    """An observable the sampler may collapse to an edge value.

    When that happens, the parameters in ``jitter`` are smeared by a Gaussian
    of width ``sigma`` and the batch is drawn again.
    """

    observable: str
    jitter: tuple[str, ...]
    sigma: float = 0.05


class ToyDataset(Mapping[str, float]):
    """One pseudo-observation set (read-only)."""

    __slots__ = ("index", "_names", "_row")

    def __init__(self, index: int, names: tuple[str, ...], row: np.ndarray) -> None:
        self.index = index
        self._names = names
        self._row = row

    def __getitem__(self, name: str) -> float:
        try:
            return float(self._row[self._names.index(name)])
        except ValueError:
            raise KeyError(name) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        vals = ", ".join(f"{n}={v:g}" for n, v in zip(self._names, self._row))
        return f"ToyDataset[{self.index}]({vals})"


class ToyBatch(Sequence[ToyDataset]):
    """``n`` toys drawn in one call; toy ``j`` is row ``j``."""

    def __init__(self, observable_names: Sequence[str], values: np.ndarray) -> None:
        self.observable_names = tuple(observable_names)
        arr = np.array(values, dtype=np.float64, copy=True)
        if arr.ndim != 2 or arr.shape[1] != len(self.observable_names):
            raise ModelConfigError(
                f"toy batch must have shape (n, {len(self.observable_names)}), got {arr.shape}"
            )
        arr.setflags(write=False)
        self._values = arr

    @property
    def values(self) -> np.ndarray:
        return self._values

    def __len__(self) -> int:
        return self._values.shape[0]

    def __getitem__(self, j):  # type: ignore[override]
        if isinstance(j, slice):
            raise TypeError("ToyBatch does not support slicing")
        n = len(self)
        if j < 0:
            j += n
        if not 0 <= j < n:
            raise IndexError(f"toy {j} out of range for batch of {n}")
        return ToyDataset(j, self.observable_names, self._values[j])

    def column(self, name: str) -> np.ndarray:
        return self._values[:, self.observable_names.index(name)]


class ToyGenerator:
    def __init__(
        self,
        model: Model,
        *,
        seed_policy: Optional[SeedPolicy] = None,
        fragile: Sequence[FragileObservable] = (),
    ) -> None:
        self.model = model
        self.seed_policy = seed_policy if seed_policy is not None else AdvancingSeedPolicy()
        self._fragile: list[FragileObservable] = []
        for f in fragile:
            self.register_fragile(f)

    @property
    def fragile(self) -> tuple[FragileObservable, ...]:
        return tuple(self._fragile)

    def register_fragile(self, fragile: FragileObservable) -> None:
        if fragile.observable not in self.model.observable_names:
            raise ModelConfigError(f"fragile observable {fragile.observable!r} is not a model observable")
        names = {p.name for p in self.model.parameters}
        missing = [p for p in fragile.jitter if p not in names]
        if missing:
            raise ModelConfigError(f"cannot jitter unknown parameters {missing}")
        self._fragile.append(fragile)

    def _draw(self, space: ParameterSpace, n: int, rng: np.random.Generator) -> ToyBatch:
        if n == 0:
            return ToyBatch(self.model.observable_names, np.empty((0, len(self.model.observable_names))))
        return ToyBatch(self.model.observable_names, self.model.generate(space, n, rng))

    def _degenerate(self, batch: ToyBatch) -> list[FragileObservable]:
        if len(batch) < 2:
            return []
        return [f for f in self._fragile if batch.column(f.observable)[0] == batch.column(f.observable)[1]]

    def generate(self, space: ParameterSpace, n: int) -> ToyBatch:
        """Draw ``n`` toys at the current configuration of ``space``.

        A degenerate draw is discarded once: the offending parameters are
        jittered in ``space`` and the batch is regenerated.
        """
        if n < 0:
            raise ValueError("n must be >= 0")
        rng = self.seed_policy.rng_for_batch()
        batch = self._draw(space, n, rng)
        bad = self._degenerate(batch)
        if not bad:
            return batch

        for f in bad:
            at = ", ".join(f"{p}={space.get(p):g}" for p in f.jitter)
            warn(logger, GenerationAnomaly, f"{f.observable} generation error at {at}")
            for p in f.jitter:
                space.set(p, rng.normal(space.get(p), f.sigma))
            at = ", ".join(f"{p}={space.get(p):g}" for p in f.jitter)
            logger.info("%s second generation at %s", f.observable, at)

        batch = self._draw(space, n, rng)
        for f in bad:
            col = batch.column(f.observable)
            logger.info("%s new values: toy 0: %g toy 1: %g", f.observable, col[0], col[1])
        return batch


__all__ = [
    "AdvancingSeedPolicy",
    "FixedSeedPolicy",
    "FragileObservable",
    "SeedPolicy",
    "ToyBatch",
    "ToyDataset",
    "ToyGenerator",
    "make_seed_policy",
]
