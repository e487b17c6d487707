"""
epicluster/pipeline.py

End-to-end runs: priors -> cutoffs -> clusters, and the quantile sweep used to
check how sensitive the partition is to the cutoff quantile.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from .bundle import DistanceBundle
from .clustering import ClusterResult, cluster_cases
from .config import AnalysisConfig
from .cutoffs import CutoffVector, StreamPrior, derive_cutoffs
from .errors import ConfigurationError
from .model import check_quantile

logger = logging.getLogger(__name__)


def priors_from_config(config: AnalysisConfig) -> Dict[str, StreamPrior]:
    return {
        name: StreamPrior(model=sc.build(config.solver), reporting=sc.reporting)
        for name, sc in config.streams.items()
    }


def _priors_for(bundle: DistanceBundle, priors: Mapping[str, StreamPrior]) -> Dict[str, StreamPrior]:
    missing = [t for t in bundle.types if t not in priors]
    if missing:
        raise ConfigurationError(f"No distance model configured for stream type(s) {missing}.")
    return {t: priors[t] for t in bundle.types}


def run_analysis(
    bundle: DistanceBundle,
    priors: Mapping[str, StreamPrior],
    quantile: float,
) -> Tuple[CutoffVector, ClusterResult]:
    """Derive cutoffs for the bundle's streams at `quantile` and cluster."""
    cutoffs = derive_cutoffs(_priors_for(bundle, priors), quantile)
    logger.info(f"Cutoffs at q={quantile}: {dict(cutoffs)}")
    return cutoffs, cluster_cases(bundle, cutoffs)


def cutoff_sweep(
    bundle: DistanceBundle,
    priors: Mapping[str, StreamPrior],
    quantiles: Iterable[float],
    partitions: Optional[Dict[float, ClusterResult]] = None,
) -> pd.DataFrame:
    """
    Cluster the bundle once per quantile.

    Returns
    -------
    DataFrame with one row per quantile:
      quantile, cutoff_<type> for each stream, n_clusters, n_singletons,
      largest_cluster, n_combined_edges

    If `partitions` is given, each ClusterResult is also stored in it, keyed
    by quantile.
    """
    qs = sorted({check_quantile(q) for q in quantiles})
    rows = []
    for q in qs:
        cutoffs, result = run_analysis(bundle, priors, q)
        sizes = result.sizes
        rows.append({
            "quantile": q,
            **{f"cutoff_{t}": cutoffs[t] for t in cutoffs},
            "n_clusters": result.n_clusters,
            "n_singletons": int((sizes == 1).sum()),
            "largest_cluster": int(sizes.max()) if len(sizes) else 0,
            "n_combined_edges": int(result.combined.ecount()),
        })
        if partitions is not None:
            partitions[q] = result
    return pd.DataFrame(rows)


def sweep_partitions(partitions: Mapping[float, ClusterResult]) -> pd.DataFrame:
    """Long table (case_id, quantile, cluster_id, cluster_size) of a sweep's partitions."""
    frames = []
    for q, result in sorted(partitions.items()):
        df = result.to_frame()
        df.insert(1, "quantile", float(q))
        frames.append(df)
    if not frames:
        return pd.DataFrame(columns=["case_id", "quantile", "cluster_id", "cluster_size"])
    out = pd.concat(frames, ignore_index=True)
    out["cluster_id"] = out["cluster_id"].astype(np.int64)
    return out
