"""Per-toy records and their columnar in-memory form."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Sequence

import numpy as np

from .errors import ModelConfigError
from .params import ParameterVector

INT_COLUMNS = ("run", "id", "status_scan", "status_free", "wrong_run")


@dataclass(frozen=True)
class ScanPoint:
    """Scan coordinate(s), grid bin indices and the batch id stored with its toys.

    ``ranges`` holds the ``(lo, hi)`` scan range per axis when the point
    belongs to a grid.
    """

    values: tuple[float, ...]
    bins: tuple[int, ...]
    id: int = 0
    ranges: tuple[tuple[float, float], ...] = ()

    def __post_init__(self) -> None:
        if self.ranges and len(self.ranges) != len(self.values):
            raise ValueError(f"need one scan range per coordinate, got {len(self.ranges)} for {len(self.values)}")

    @property
    def dim(self) -> int:
        return len(self.values)

    def __str__(self) -> str:
        return ", ".join(f"{v:g}" for v in self.values)


@dataclass(frozen=True)
class DataStatistic:
    """Test statistic ingredients of the observed data at one scan point."""

    chi2min: float
    chi2min_global: float

    @property
    def delta(self) -> float:
        return self.chi2min - self.chi2min_global


@dataclass(frozen=True)
class ToyRecord:
    run: int
    batch_id: int
    point: ScanPoint
    data: DataStatistic
    chi2min_toy: float
    chi2min_global_toy: float
    status_scan: int
    status_free: int
    scanbest: tuple[float, ...]
    start: ParameterVector
    scan: ParameterVector
    free: ParameterVector
    observables: Mapping[str, float] = field(default_factory=dict)

    @property
    def delta(self) -> float:
        return self.chi2min_toy - self.chi2min_global_toy

    def to_row(self) -> dict[str, float]:
        row: dict[str, float] = {"run": self.run, "id": self.batch_id}
        for k, v in enumerate(self.point.values, start=1):
            row[f"scanpoint{k}"] = v
        row["chi2min"] = self.data.chi2min
        row["chi2min_global"] = self.data.chi2min_global
        row["chi2min_toy"] = self.chi2min_toy
        row["chi2min_global_toy"] = self.chi2min_global_toy
        row["status_scan"] = self.status_scan
        row["status_free"] = self.status_free
        for k, v in enumerate(self.scanbest, start=1):
            row[f"scanbest{k}"] = v
        for suffix, vec in (("start", self.start), ("scan", self.scan), ("free", self.free)):
            for name, v in vec.items():
                row[f"{name}_{suffix}"] = v
        row.update(self.observables)
        return row


def record_columns(dim: int, parameter_names: Sequence[str], observable_names: Sequence[str]) -> list[str]:
    """Column layout of a result table for a ``dim``-dimensional scan."""
    cols = ["run", "id"]
    cols += [f"scanpoint{k}" for k in range(1, dim + 1)]
    cols += ["chi2min", "chi2min_global", "chi2min_toy", "chi2min_global_toy", "status_scan", "status_free"]
    cols += [f"scanbest{k}" for k in range(1, dim + 1)]
    for suffix in ("start", "scan", "free"):
        cols += [f"{p}_{suffix}" for p in parameter_names]
    clash = sorted((set(cols) | {"wrong_run"}) & set(observable_names))
    if clash:
        raise ModelConfigError(f"observable names clash with result columns: {clash}")
    cols += list(observable_names)
    return cols


def _dtype(name: str):
    return np.int64 if name in INT_COLUMNS else np.float64


class ToyTable:
    """Columnar view of many toy records: ``column name -> 1d numpy array``."""

    def __init__(self, columns: Mapping[str, Iterable[float]]) -> None:
        cols = {str(k): np.asarray(v, dtype=_dtype(str(k))) for k, v in columns.items()}
        lengths = {a.shape[0] for a in cols.values()}
        if len(lengths) > 1:
            raise ValueError(f"columns have different lengths: {sorted(lengths)}")
        if any(a.ndim != 1 for a in cols.values()):
            raise ValueError("columns must be 1d")
        self._cols = cols
        self._n = lengths.pop() if lengths else 0

    @classmethod
    def from_records(cls, records: Sequence[ToyRecord], columns: Optional[Sequence[str]] = None) -> "ToyTable":
        """Build a table from records; ``columns`` fixes the layout even when empty."""
        rows = [r.to_row() for r in records]
        if columns is None:
            columns = list(rows[0]) if rows else []
        return cls({c: [row.get(c, math.nan) for row in rows] for c in columns})

    @classmethod
    def concat(cls, tables: Sequence["ToyTable"]) -> "ToyTable":
        tables = [t for t in tables if t.columns]
        if not tables:
            return cls({})
        names = tables[0].columns
        for t in tables[1:]:
            if set(t.columns) != set(names):
                diff = sorted(set(t.columns) ^ set(names))
                raise ValueError(f"cannot concatenate tables with different columns: {diff}")
        return cls({c: np.concatenate([t[c] for t in tables]) for c in names})

    def __len__(self) -> int:
        return self._n

    def __contains__(self, name: object) -> bool:
        return name in self._cols

    def __getitem__(self, name: str) -> np.ndarray:
        try:
            return self._cols[name]
        except KeyError:
            raise KeyError(f"no column {name!r} in toy table") from None

    def __repr__(self) -> str:
        return f"ToyTable(rows={self._n}, columns={len(self._cols)})"

    @property
    def columns(self) -> list[str]:
        return list(self._cols)

    def as_dict(self) -> dict[str, np.ndarray]:
        return dict(self._cols)

    def with_column(self, name: str, values: Iterable[float]) -> "ToyTable":
        cols = dict(self._cols)
        cols[name] = values
        return ToyTable(cols)

    def select(self, mask: np.ndarray) -> "ToyTable":
        return ToyTable({k: v[mask] for k, v in self._cols.items()})


__all__ = ["DataStatistic", "ScanPoint", "ToyRecord", "ToyTable", "record_columns"]
