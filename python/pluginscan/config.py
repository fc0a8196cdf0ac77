"""Build a :class:`ScanConfig` from a configuration dict or JSON file.

Unknown keys and malformed values raise :class:`~pluginscan.errors.ConfigError`
naming the offending key.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from .errors import ConfigError


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULTS: dict[str, Any] = {
    "ntoys": 100,
    "npoints1d": 20,
    "npoints2d": (10, 10),
    "importance": False,
    "plot_range": None,
    "scan_force": False,
    "plugin_ext": False,
    "batch": False,
    "cache_size": 3,
    "quality_bound": 500.0,
    "evolution_rel_tol": 0.01,
    "refit_rel_tol": 0.02,
    "wrong_run_rel_tol": 0.01,
    "seed_policy": "advancing",
    "seed": None,
    "output_dir": "root",
    "name": "analysis",
}


@dataclass(frozen=True)
class ScanConfig:
    ntoys: int = 100
    npoints1d: int = 20
    npoints2d: tuple[int, int] = (10, 10)
    importance: bool = False
    plot_range: Optional[tuple[float, float]] = None
    scan_force: bool = False
    plugin_ext: bool = False
    batch: bool = False
    cache_size: int = 3
    quality_bound: float = 500.0
    evolution_rel_tol: float = 0.01
    refit_rel_tol: float = 0.02
    wrong_run_rel_tol: float = 0.01
    seed_policy: str = "advancing"
    seed: Optional[int] = None
    output_dir: str = "root"
    name: str = "analysis"

    def __post_init__(self) -> None:
        if self.ntoys < 0:
            raise ConfigError(f"ntoys must be >= 0, got {self.ntoys}")
        if self.npoints1d <= 0:
            raise ConfigError(f"npoints1d must be > 0, got {self.npoints1d}")
        if len(self.npoints2d) != 2 or min(self.npoints2d) <= 0:
            raise ConfigError(f"npoints2d must be two positive integers, got {self.npoints2d}")
        if self.plot_range is not None and not self.plot_range[0] < self.plot_range[1]:
            raise ConfigError(f"plot_range needs lo < hi, got {self.plot_range}")
        if self.cache_size < 3:
            raise ConfigError(f"cache_size must be >= 3, got {self.cache_size}")
        if self.quality_bound <= 0:
            raise ConfigError("quality_bound must be > 0")
        for key in ("evolution_rel_tol", "refit_rel_tol", "wrong_run_rel_tol"):
            if getattr(self, key) < 0:
                raise ConfigError(f"{key} must be >= 0")
        if self.seed_policy not in ("advancing", "fixed"):
            raise ConfigError(f"seed_policy must be 'advancing' or 'fixed', got {self.seed_policy!r}")
        if not self.name:
            raise ConfigError("name must be non-empty")

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "ScanConfig":
        unknown = sorted(set(cfg) - set(DEFAULTS))
        if unknown:
            raise ConfigError(f"unknown config keys: {unknown}")
        merged = dict(DEFAULTS)
        merged.update(cfg)
        return cls(**{f.name: _coerce(f.name, merged[f.name]) for f in fields(cls)})

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["npoints2d"] = list(self.npoints2d)
        if self.plot_range is not None:
            d["plot_range"] = list(self.plot_range)
        return d

    def seed_for_run(self, run: int) -> int:
        """Base seed of a run: ``seed + run`` when a seed is set, else the run id."""
        return int(run) if self.seed is None else int(self.seed) + int(run)


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------


def _as_int(key: str, v: Any) -> int:
    if isinstance(v, bool) or not isinstance(v, (int, float)) or int(v) != v:
        raise ConfigError(f"{key}: expected an integer, got {v!r}")
    return int(v)


def _as_float(key: str, v: Any) -> float:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise ConfigError(f"{key}: expected a number, got {v!r}")
    return float(v)


def _as_bool(key: str, v: Any) -> bool:
    if not isinstance(v, bool):
        raise ConfigError(f"{key}: expected true/false, got {v!r}")
    return v


def _as_pair(key: str, v: Any, conv) -> tuple:
    if not isinstance(v, (list, tuple)) or len(v) != 2:
        raise ConfigError(f"{key}: expected a pair, got {v!r}")
    return conv(key, v[0]), conv(key, v[1])


def _coerce(key: str, v: Any) -> Any:
    if key in ("ntoys", "npoints1d", "cache_size"):
        return _as_int(key, v)
    if key == "npoints2d":
        return _as_pair(key, v, _as_int)
    if key == "plot_range":
        return None if v is None else _as_pair(key, v, _as_float)
    if key in ("importance", "scan_force", "plugin_ext", "batch"):
        return _as_bool(key, v)
    if key in ("quality_bound", "evolution_rel_tol", "refit_rel_tol", "wrong_run_rel_tol"):
        return _as_float(key, v)
    if key == "seed":
        return None if v is None else _as_int(key, v)
    if key in ("seed_policy", "output_dir", "name"):
        if not isinstance(v, str):
            raise ConfigError(f"{key}: expected a string, got {v!r}")
        return v
    raise ConfigError(f"unknown config key: {key!r}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(path: Union[str, Path]) -> ScanConfig:
    """Read a JSON object of config keys (missing keys take their defaults)."""
    p = Path(path)
    try:
        cfg = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"{p}: invalid JSON: {e}") from e
    if not isinstance(cfg, dict):
        raise ConfigError(f"{p}: expected a JSON object, got {type(cfg).__name__}")
    return ScanConfig.from_mapping(cfg)


__all__ = ["DEFAULTS", "ScanConfig", "load_config"]
