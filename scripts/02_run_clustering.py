#!/usr/bin/env python3
"""
scripts/02_run_clustering.py

Build threshold graphs from a pairwise distance table, fuse them and extract
transmission clusters, at the main quantile and across the sensitivity grid.

Inputs
------
A *pairwise* table (parquet or CSV) with columns:
  - case_i, case_j
  - one distance column per stream type named in config/analysis.yaml
    (NaN where a pair has no data for that stream)

Outputs
-------
data/processed/clusters/
  - partition.parquet        (rows: case_id, cluster_id, cluster_size)
  - cluster_sizes.csv        (rows: cluster_id, cluster_size)
  - combined_edges.parquet   (rows: case_i, case_j, <type> distances)
  - sweep_partitions.parquet (rows: case_id, quantile, cluster_id, cluster_size)
tables/
  - stream_comparison.csv
  - cutoff_sweep.csv

Config
------
config/paths.yaml:
  data:
    pairwise: data/raw/pairwise_distances.parquet
    processed: data/processed/clusters
  outputs:
    tables: tables
config/analysis.yaml
"""
from __future__ import annotations

import argparse
import logging
from pathlib import Path

import pandas as pd

from epicluster import (
    AnalysisConfig,
    DistanceBundle,
    compare_streams,
    cutoff_sweep,
    priors_from_config,
    run_analysis,
    sweep_partitions,
)
from epicluster.config import deep_get, ensure_dirs, load_yaml


def read_pairwise(path: Path) -> pd.DataFrame:
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    if path.suffix in {".csv", ".tsv"}:
        return pd.read_csv(path, sep="\t" if path.suffix == ".tsv" else ",")
    raise ValueError(f"Unsupported pairwise file type: {path.suffix}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Cluster cases from pairwise distances.")
    parser.add_argument("--paths", default="../config/paths.yaml")
    parser.add_argument("--analysis", default="../config/analysis.yaml")
    parser.add_argument("--pairwise", default="", help="Override the pairwise table path from paths.yaml")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    paths_cfg = load_yaml(Path(args.paths))
    config = AnalysisConfig.from_yaml(Path(args.analysis))

    pw_path = Path(args.pairwise or deep_get(paths_cfg, ["data", "pairwise"], "../data/raw/pairwise_distances.parquet"))
    out_dir = Path(deep_get(paths_cfg, ["data", "processed"], "../data/processed/clusters"))
    tabs_dir = Path(deep_get(paths_cfg, ["outputs", "tables"], "../tables"))
    ensure_dirs(out_dir, tabs_dir)

    if not pw_path.exists():
        raise FileNotFoundError(f"Pairwise distance file not found: {pw_path}")

    df = read_pairwise(pw_path)
    types = [t for t in config.streams if t in df.columns]
    skipped = sorted(set(config.streams) - set(types))
    if skipped:
        print(f"Streams configured but absent from {pw_path.name}: {skipped}")

    bundle = DistanceBundle.from_pairwise(df, types=types)
    print(f"Loaded {bundle.n_cases:,} cases and {len(df):,} pairs with streams {list(bundle.types)}.")

    priors = priors_from_config(config)

    # Main partition
    cutoffs, result = run_analysis(bundle, priors, config.quantile)
    print(f">>> q={config.quantile}: cutoffs {dict(cutoffs)} -> {result.n_clusters:,} clusters")

    result.to_frame().to_parquet(out_dir / "partition.parquet", index=False)
    result.sizes.reset_index().to_csv(out_dir / "cluster_sizes.csv", index=False)
    result.edges().to_parquet(out_dir / "combined_edges.parquet", index=False)
    compare_streams(result).to_csv(tabs_dir / "stream_comparison.csv", index=False)

    # Sensitivity to the quantile
    partitions = {}
    sweep = cutoff_sweep(bundle, priors, config.quantiles, partitions=partitions)
    sweep.to_csv(tabs_dir / "cutoff_sweep.csv", index=False)
    sweep_partitions(partitions).to_parquet(out_dir / "sweep_partitions.parquet", index=False)

    print(f"Saved partitions to: {out_dir}")
    print("Done.")


if __name__ == "__main__":
    main()
