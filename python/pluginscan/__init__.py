"""pluginscan: frequentist confidence intervals by the plugin (toy Monte-Carlo) method.

Typical use::

    from pluginscan import GaussianModel, ParameterSpec, PluginScan1D, ScanConfig
    from pluginscan import profile_likelihood_scan

    model = GaussianModel([...], {...}, theory, stat_err)
    curve = profile_likelihood_scan(model, model.new_space(), "g", 0.0, 180.0, 60)
    scan = PluginScan1D(model, curve, ScanConfig(ntoys=200, npoints1d=30))
    result = scan.run(run=1).result  # p-value curve of this run

The pyhf adapter (``pluginscan.hf``) and plots (``pluginscan.viz``) import
their optional dependencies lazily and are not imported here.
"""

from __future__ import annotations

import logging

from .cache import RoundRobinStartCache
from .config import ScanConfig, load_config
from .errors import (
    ConfigError,
    ConsistencyWarning,
    FitFailure,
    GenerationAnomaly,
    ModelConfigError,
    NoRunFilesError,
    ParameterEvolutionMissing,
    PluginScanError,
    PluginScanWarning,
    WrongRunWarning,
)
from .evolution import (
    CurveResult,
    ProfileLikelihoodCurve,
    ProfileLikelihoodCurve2D,
    profile_likelihood_scan,
    profile_likelihood_scan_2d,
)
from .gaussian import GaussianModel, build_covariance
from .histogram import PValueCurve, PValueGrid, TestStatisticHistogrammer
from .importance import ImportanceSampler, expected_pvalue, importance
from .merge import MergedRuns, MultiRunAggregator
from .model import FitOutcome, FitStatus, Model
from .params import ParameterSpace, ParameterSpec, ParameterVector
from .pipeline import FREE_FIT_ATTEMPTS, SCAN_FIT_ATTEMPTS, FitAttempt, PerToyFitPipeline, SeedSource
from .progress import ProgressCounter
from .records import DataStatistic, ScanPoint, ToyRecord, ToyTable
from .scan import PluginScan1D, PluginScan2D, ScanOrchestrator, ScanRun, ScanStrategy
from .store import ResultStore
from .toys import (
    AdvancingSeedPolicy,
    FixedSeedPolicy,
    FragileObservable,
    ToyBatch,
    ToyDataset,
    ToyGenerator,
)

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "AdvancingSeedPolicy",
    "ConfigError",
    "ConsistencyWarning",
    "CurveResult",
    "DataStatistic",
    "FREE_FIT_ATTEMPTS",
    "FitAttempt",
    "FitFailure",
    "FitOutcome",
    "FitStatus",
    "FixedSeedPolicy",
    "FragileObservable",
    "GaussianModel",
    "GenerationAnomaly",
    "ImportanceSampler",
    "MergedRuns",
    "Model",
    "ModelConfigError",
    "MultiRunAggregator",
    "NoRunFilesError",
    "PValueCurve",
    "PValueGrid",
    "ParameterEvolutionMissing",
    "ParameterSpace",
    "ParameterSpec",
    "ParameterVector",
    "PerToyFitPipeline",
    "PluginScan1D",
    "PluginScan2D",
    "PluginScanError",
    "PluginScanWarning",
    "ProfileLikelihoodCurve",
    "ProfileLikelihoodCurve2D",
    "ProgressCounter",
    "ResultStore",
    "RoundRobinStartCache",
    "SCAN_FIT_ATTEMPTS",
    "ScanConfig",
    "ScanOrchestrator",
    "ScanPoint",
    "ScanRun",
    "ScanStrategy",
    "SeedSource",
    "TestStatisticHistogrammer",
    "ToyBatch",
    "ToyDataset",
    "ToyGenerator",
    "ToyRecord",
    "ToyTable",
    "WrongRunWarning",
    "__version__",
    "build_covariance",
    "expected_pvalue",
    "importance",
    "load_config",
    "profile_likelihood_scan",
    "profile_likelihood_scan_2d",
]
