#!/usr/bin/env python3
"""
scripts/01_derive_cutoffs.py

Derive reporting-adjusted cutoff distances for each configured stream type
across the sensitivity grid of quantiles.

Outputs
-------
tables/
  - cutoffs.csv  (rows: type, quantile, reporting, cutoff)

Config
------
config/paths.yaml:
  outputs:
    tables: tables
config/analysis.yaml:
  analysis:
    quantiles: [0.9, 0.95, 0.99]
  streams:
    temporal: {family: gamma, reporting: 0.5, params: {shape: 2.36, scale: 2.64}}
"""
from __future__ import annotations

import argparse
import logging
from pathlib import Path

from epicluster import AnalysisConfig, cutoff_table, priors_from_config
from epicluster.config import deep_get, ensure_dirs, load_yaml


def main() -> None:
    parser = argparse.ArgumentParser(description="Derive cutoff distances from distance models.")
    parser.add_argument("--paths", default="../config/paths.yaml")
    parser.add_argument("--analysis", default="../config/analysis.yaml")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    paths_cfg = load_yaml(Path(args.paths))
    config = AnalysisConfig.from_yaml(Path(args.analysis))

    tabs_dir = Path(deep_get(paths_cfg, ["outputs", "tables"], "../tables"))
    ensure_dirs(tabs_dir)

    priors = priors_from_config(config)
    quantiles = sorted(set(config.quantiles) | {config.quantile})

    table = cutoff_table(priors, quantiles)
    for row in table.itertuples():
        print(f"{row.type:>10s}  q={row.quantile:<6g} reporting={row.reporting:<6g} cutoff={row.cutoff:.4g}")

    out = tabs_dir / "cutoffs.csv"
    table.to_csv(out, index=False)
    print(f"Saved cutoffs to: {out}")


if __name__ == "__main__":
    main()
