"""
epicluster: transmission clusters from temporal, spatial and genetic distances
under incomplete case reporting.
"""
from __future__ import annotations

from .bundle import DistanceBundle
from .clustering import ClusterResult, cluster_cases
from .config import AnalysisConfig, StreamConfig
from .cutoffs import CutoffVector, StreamPrior, cutoff_table, derive_cutoff, derive_cutoffs
from .diagnostics import compare_streams, graph_summary
from .errors import (
    ConfigurationError,
    EmptyInputError,
    EpiclusterError,
    InvalidParameterError,
    NumericalNonConvergence,
    ValidationError,
)
from .families import (
    MODEL_FAMILIES,
    EmpiricalModel,
    GammaModel,
    PoissonGammaModel,
    PoissonModel,
    RayleighModel,
    build_model,
)
from .model import CasePairModel, SolverSettings, geometric_weights
from .pipeline import cutoff_sweep, priors_from_config, run_analysis, sweep_partitions

__version__ = "0.1.0"

__all__ = [
    "AnalysisConfig",
    "CasePairModel",
    "ClusterResult",
    "ConfigurationError",
    "CutoffVector",
    "DistanceBundle",
    "EmpiricalModel",
    "EmptyInputError",
    "EpiclusterError",
    "GammaModel",
    "InvalidParameterError",
    "MODEL_FAMILIES",
    "NumericalNonConvergence",
    "PoissonGammaModel",
    "PoissonModel",
    "RayleighModel",
    "SolverSettings",
    "StreamConfig",
    "StreamPrior",
    "ValidationError",
    "build_model",
    "cluster_cases",
    "compare_streams",
    "cutoff_sweep",
    "cutoff_table",
    "derive_cutoff",
    "derive_cutoffs",
    "geometric_weights",
    "graph_summary",
    "priors_from_config",
    "run_analysis",
    "sweep_partitions",
]
