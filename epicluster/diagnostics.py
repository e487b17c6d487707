"""
epicluster/diagnostics.py

How much each data stream contributes to the combined partition.

Per-type graphs never feed the partition; these summaries compare them with
the combined graph after the fact.
"""
from __future__ import annotations

from typing import Dict

import igraph as ig
import numpy as np
import pandas as pd
from sklearn.metrics import adjusted_rand_score

from .clustering import COMBINED, ClusterResult


def graph_summary(g: ig.Graph) -> Dict[str, float]:
    n = g.vcount()
    m = g.ecount()
    density = (2 * m) / (n * (n - 1)) if n > 1 else np.nan

    if n == 0:
        return {
            "n_nodes": 0,
            "n_edges": 0,
            "density": np.nan,
            "n_components": 0,
            "giant_component_size": 0,
            "giant_component_frac": np.nan,
        }

    sizes = np.asarray(g.connected_components().sizes(), dtype=int)
    giant = int(sizes.max())
    return {
        "n_nodes": int(n),
        "n_edges": int(m),
        "density": float(density),
        "n_components": int(sizes.size),
        "giant_component_size": giant,
        "giant_component_frac": float(giant / n),
    }


def compare_streams(result: ClusterResult) -> pd.DataFrame:
    """
    One row per stream type plus a "combined" row.

    Columns: graph summary fields, cutoff, edges_in_combined (share of the
    stream's edges that survive AND-fusion) and ari_vs_combined (adjusted Rand
    index between the stream's own components and the combined partition).
    """
    combined_edges = {tuple(sorted(e)) for e in result.combined.get_edgelist()}

    rows = []
    for name, g in result.graphs.items():
        own = g.connected_components().membership
        edges = g.get_edgelist()
        kept = sum(1 for e in edges if tuple(sorted(e)) in combined_edges)
        rows.append({
            "type": name,
            "cutoff": result.cutoffs[name],
            **graph_summary(g),
            "edges_in_combined": kept / len(edges) if edges else np.nan,
            "ari_vs_combined": float(adjusted_rand_score(own, result.membership)),
        })

    rows.append({
        "type": COMBINED,
        "cutoff": np.nan,
        **graph_summary(result.combined),
        "edges_in_combined": 1.0 if combined_edges else np.nan,
        "ari_vs_combined": 1.0,
    })
    return pd.DataFrame(rows)
