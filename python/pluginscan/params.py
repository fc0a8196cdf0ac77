"""Parameter bookkeeping: specs, immutable parameter vectors, and the mutable
parameter-space context that generation and fitting operate on.

Names are validated once, when a :class:`ParameterSpace` is built from the
model's :class:`ParameterSpec` list. Afterwards every access by an unknown
name is a :class:`~pluginscan.errors.ModelConfigError`.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass

from .errors import ModelConfigError


@dataclass(frozen=True)
class ParameterSpec:
    name: str
    lo: float = -math.inf
    hi: float = math.inf
    default: float | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ModelConfigError("parameter name must be non-empty")
        if not (float(self.lo) < float(self.hi)):
            raise ModelConfigError(f"parameter {self.name!r}: need lo < hi, got [{self.lo}, {self.hi}]")
        if self.default is not None and not (self.lo <= self.default <= self.hi):
            raise ModelConfigError(
                f"parameter {self.name!r}: default {self.default} outside [{self.lo}, {self.hi}]"
            )

    def clip(self, value: float) -> float:
        return min(max(float(value), float(self.lo)), float(self.hi))

    def contains(self, value: float) -> bool:
        return float(self.lo) <= float(value) <= float(self.hi)

    @property
    def initial(self) -> float:
        if self.default is not None:
            return float(self.default)
        return self.clip(0.0)


class ParameterVector(Mapping[str, float]):
    """Immutable ordered mapping ``name -> value`` with per-name constant flags."""

    __slots__ = ("_values", "_constant")

    def __init__(
        self,
        values: Mapping[str, float] | Iterable[tuple[str, float]],
        constant: Mapping[str, bool] | Iterable[str] | None = None,
    ) -> None:
        self._values: dict[str, float] = {str(k): float(v) for k, v in dict(values).items()}
        if constant is None:
            names: set[str] = set()
        elif isinstance(constant, Mapping):
            names = {str(k) for k, flag in constant.items() if flag}
        else:
            names = {str(k) for k in constant}
        unknown = names - self._values.keys()
        if unknown:
            raise ValueError(f"constant flags for unknown parameters: {sorted(unknown)}")
        self._constant = frozenset(names)

    def __getitem__(self, name: str) -> float:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParameterVector):
            return NotImplemented
        return self._values == other._values and self._constant == other._constant

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        inner = ", ".join(
            f"{k}={v:g}{'(c)' if k in self._constant else ''}" for k, v in self._values.items()
        )
        return f"ParameterVector({inner})"

    @property
    def constant_names(self) -> frozenset[str]:
        return self._constant

    def is_constant(self, name: str) -> bool:
        if name not in self._values:
            raise KeyError(name)
        return name in self._constant

    def replace(self, values: Mapping[str, float] | None = None, *, constant: Mapping[str, bool] | None = None) -> "ParameterVector":
        """Return a copy with some values and/or constant flags replaced."""
        new_values = dict(self._values)
        for k, v in (values or {}).items():
            if k not in new_values:
                raise KeyError(k)
            new_values[k] = float(v)
        flags = {k: (k in self._constant) for k in new_values}
        for k, flag in (constant or {}).items():
            if k not in flags:
                raise KeyError(k)
            flags[k] = bool(flag)
        return ParameterVector(new_values, flags)

    def as_dict(self) -> dict[str, float]:
        return dict(self._values)


@dataclass(frozen=True)
class SpaceSnapshot:
    parameters: ParameterVector
    observables: tuple[tuple[str, float], ...]


class ParameterSpace:
    """Mutable parameter/observable state shared by a model's generate and fit calls.

    The scan engine never relies on ambient state: every orchestrator operation
    takes a snapshot on entry and restores it on exit (see :meth:`preserved`).
    """

    def __init__(self, parameters: Sequence[ParameterSpec], observable_names: Sequence[str]) -> None:
        specs: dict[str, ParameterSpec] = {}
        for spec in parameters:
            if spec.name in specs:
                raise ModelConfigError(f"duplicate parameter name {spec.name!r}")
            specs[spec.name] = spec
        obs = [str(o) for o in observable_names]
        if len(set(obs)) != len(obs):
            raise ModelConfigError("duplicate observable names")
        clash = specs.keys() & set(obs)
        if clash:
            raise ModelConfigError(f"names used both as parameter and observable: {sorted(clash)}")

        self._specs = specs
        self._values: dict[str, float] = {name: spec.initial for name, spec in specs.items()}
        self._constant: set[str] = set()
        self._observables: dict[str, float] = dict.fromkeys(obs, 0.0)

    # -- introspection ----------------------------------------------------

    @property
    def parameter_names(self) -> tuple[str, ...]:
        return tuple(self._specs)

    @property
    def observable_names(self) -> tuple[str, ...]:
        return tuple(self._observables)

    def spec(self, name: str) -> ParameterSpec:
        self._check(name)
        return self._specs[name]

    def _check(self, name: str) -> None:
        if name not in self._specs:
            raise ModelConfigError(f"unknown parameter {name!r}")

    # -- parameters -------------------------------------------------------

    def get(self, name: str) -> float:
        self._check(name)
        return self._values[name]

    def set(self, name: str, value: float, *, constant: bool | None = None) -> None:
        self._check(name)
        self._values[name] = self._specs[name].clip(value)
        if constant is not None:
            if constant:
                self._constant.add(name)
            else:
                self._constant.discard(name)

    def fix(self, *names: str) -> None:
        for name in names:
            self._check(name)
            self._constant.add(name)

    def free(self, *names: str) -> None:
        for name in names:
            self._check(name)
            self._constant.discard(name)

    def is_constant(self, name: str) -> bool:
        self._check(name)
        return name in self._constant

    def floating(self) -> tuple[str, ...]:
        return tuple(n for n in self._specs if n not in self._constant)

    def load(self, values: Mapping[str, float], *, constants: bool = False) -> None:
        """Set values from a mapping; with ``constants`` also apply its constant flags."""
        for name in values:
            self._check(name)
        for name, value in values.items():
            self._values[name] = self._specs[name].clip(value)
        if constants and isinstance(values, ParameterVector):
            for name in values:
                if values.is_constant(name):
                    self._constant.add(name)
                else:
                    self._constant.discard(name)

    def current(self) -> ParameterVector:
        return ParameterVector(self._values, self._constant)

    # -- observables ------------------------------------------------------

    def load_observables(self, values: Mapping[str, float]) -> None:
        unknown = [k for k in values if k not in self._observables]
        if unknown:
            raise ModelConfigError(f"unknown observables: {unknown}")
        for name, value in values.items():
            self._observables[name] = float(value)

    def observables(self) -> dict[str, float]:
        return dict(self._observables)

    # -- state ------------------------------------------------------------

    def snapshot(self) -> SpaceSnapshot:
        return SpaceSnapshot(parameters=self.current(), observables=tuple(self._observables.items()))

    def restore(self, snapshot: SpaceSnapshot) -> None:
        self._values = {name: snapshot.parameters[name] for name in self._specs}
        self._constant = set(snapshot.parameters.constant_names)
        self._observables = dict(snapshot.observables)

    @contextmanager
    def preserved(self) -> Iterator[SpaceSnapshot]:
        """Snapshot on entry; restore parameters, flags and observables on exit."""
        snap = self.snapshot()
        try:
            yield snap
        finally:
            self.restore(snap)


__all__ = [
    "ParameterSpace",
    "ParameterSpec",
    "ParameterVector",
    "SpaceSnapshot",
]
