"""Exceptions and warning categories raised by the plugin scan engine."""

from __future__ import annotations

import logging
import warnings


class PluginScanError(Exception):
    """Base class for all pluginscan errors."""


class ParameterEvolutionMissing(PluginScanError, LookupError):
    """No stored profile-likelihood result for the requested scan bin."""


class FitFailure(PluginScanError, RuntimeError):
    """A model fit could not produce a result at all."""


class NoRunFilesError(PluginScanError, FileNotFoundError):
    """A merge over a run range found no result files."""


class ModelConfigError(PluginScanError, ValueError):
    """Inconsistent model definition (covariance, parameters, bounds)."""


class ConfigError(PluginScanError, ValueError):
    """Invalid scan configuration value."""


class PluginScanWarning(UserWarning):
    pass


class ConsistencyWarning(PluginScanWarning):
    """Two numbers that should agree differ by more than the tolerance."""


class GenerationAnomaly(PluginScanWarning):
    """The toy sampler produced a degenerate batch."""


class WrongRunWarning(PluginScanWarning):
    """Merged rows carry a data test statistic from a different run."""


def warn(logger: logging.Logger, category: type[PluginScanWarning], msg: str) -> None:
    """Log ``msg`` at WARNING and issue it as a Python warning of ``category``."""
    logger.warning(msg)
    warnings.warn(msg, category, stacklevel=3)


__all__ = [
    "ConfigError",
    "ConsistencyWarning",
    "FitFailure",
    "GenerationAnomaly",
    "ModelConfigError",
    "NoRunFilesError",
    "ParameterEvolutionMissing",
    "PluginScanError",
    "PluginScanWarning",
    "WrongRunWarning",
    "warn",
]
