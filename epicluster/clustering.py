"""
epicluster/clustering.py

Threshold graphs per stream type, AND-fusion, and connected-component clusters.

Algorithm
---------
1) Per-type graph: edge (i, j) if the distance for that type is defined and
   <= the type's cutoff.
2) Combined graph: edge (i, j) if at least one type defines the pair and every
   type that defines it is within its cutoff. Missing entries never block a
   link; a pair with no defined distance at all is not linked.
3) Clusters are the connected components of the combined graph. Isolated
   cases are singleton clusters with their own ids.

Graphs are igraph graphs over vertex indices 0..N-1 (bundle order) with a
"case_id" vertex attribute. Per-type graphs are kept for inspection only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Mapping, Optional, Tuple

import igraph as ig
import networkx as nx
import numpy as np
import pandas as pd

from .bundle import DistanceBundle, label_array
from .cutoffs import CutoffVector
from .errors import ConfigurationError, EmptyInputError

logger = logging.getLogger(__name__)

COMBINED = "combined"


def resolve_cutoffs(bundle: DistanceBundle, cutoffs: Mapping[str, float]) -> CutoffVector:
    """
    Restrict `cutoffs` to the bundle's stream types.

    Every type in the bundle must have a cutoff; there is no default.
    """
    missing = [t for t in bundle.types if t not in cutoffs]
    if missing:
        raise ConfigurationError(
            f"No cutoff for stream type(s) {missing}. Give every stream in the bundle an explicit cutoff "
            f"(use inf to leave a stream unconstrained, or drop it from the bundle)."
        )
    extra = [t for t in cutoffs if t not in bundle]
    if extra:
        logger.warning(f"Ignoring cutoffs for stream types not in the bundle: {extra}")
    return CutoffVector({t: cutoffs[t] for t in bundle.types})


def _graph(labels: Tuple[Hashable, ...], iu: np.ndarray, ju: np.ndarray, attrs: Dict[str, np.ndarray]) -> ig.Graph:
    g = ig.Graph(n=len(labels), edges=list(zip(iu.tolist(), ju.tolist())), directed=False)
    g.vs["case_id"] = list(labels)
    if not iu.size:
        return g
    for name, values in attrs.items():
        g.es[name] = values.tolist()
    return g


@dataclass(frozen=True, eq=False)
class ClusterResult:
    """Output of `cluster_cases`: the partition plus every graph it was built from."""
    labels: Tuple[Hashable, ...]
    membership: np.ndarray
    cutoffs: CutoffVector
    graphs: Dict[str, ig.Graph]
    combined: ig.Graph
    _index: Dict[Hashable, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_index", {lab: pos for pos, lab in enumerate(self.labels)})

    @property
    def partition(self) -> Dict[Hashable, int]:
        """Case label -> cluster id."""
        return {lab: int(c) for lab, c in zip(self.labels, self.membership)}

    @property
    def sizes(self) -> pd.Series:
        """Number of cases per cluster id, indexed by cluster id."""
        counts = np.bincount(self.membership) if self.membership.size else np.array([], dtype=int)
        return pd.Series(counts, index=pd.RangeIndex(len(counts), name="cluster_id"), name="cluster_size")

    @property
    def n_clusters(self) -> int:
        return int(self.membership.max()) + 1 if self.membership.size else 0

    def cluster_of(self, case: Hashable) -> int:
        return int(self.membership[self._index[case]])

    def members(self, cluster_id: int) -> List[Hashable]:
        return [lab for lab, c in zip(self.labels, self.membership) if c == cluster_id]

    def to_frame(self) -> pd.DataFrame:
        """One row per case: case_id, cluster_id, cluster_size."""
        sizes = self.sizes.to_numpy()
        return pd.DataFrame({
            "case_id": list(self.labels),
            "cluster_id": self.membership,
            "cluster_size": sizes[self.membership] if self.membership.size else np.array([], dtype=int),
        })

    def graph(self, stream: Optional[str] = None) -> ig.Graph:
        """The combined graph, or the per-type graph for `stream`."""
        if stream is None or stream == COMBINED:
            return self.combined
        try:
            return self.graphs[stream]
        except KeyError:
            raise KeyError(f"No '{stream}' graph (have {list(self.graphs)}).") from None

    def edges(self, stream: Optional[str] = None) -> pd.DataFrame:
        """
        Edge table (case_i, case_j, distances) of the combined or a per-type graph.

        The combined table has one distance column per stream type, a per-type
        table one column for its stream, whether or not any edge survived.
        """
        g = self.graph(stream)
        ends = np.asarray(g.get_edgelist(), dtype=int).reshape(-1, 2)
        labels = label_array(self.labels)
        out = pd.DataFrame({"case_i": labels[ends[:, 0]], "case_j": labels[ends[:, 1]]})
        columns = list(self.graphs) if g is self.combined else [stream]
        present = set(g.es.attributes())
        for attr in columns:
            out[attr] = np.asarray(g.es[attr], dtype=float) if attr in present else np.empty(0, dtype=float)
        return out

    def to_networkx(self, stream: Optional[str] = None) -> nx.Graph:
        """networkx copy of a graph, nodes keyed by case label."""
        g = self.graph(stream)
        out = nx.Graph()
        out.add_nodes_from(self.labels)
        names = g.es.attributes()
        for e in g.es:
            a, b = e.tuple
            out.add_edge(self.labels[a], self.labels[b], **{k: e[k] for k in names})
        return out


def cluster_cases(bundle: DistanceBundle, cutoffs: Mapping[str, float]) -> ClusterResult:
    """
    Partition the bundle's cases into transmission clusters.

    Parameters
    ----------
    bundle : DistanceBundle
    cutoffs : mapping of stream type -> cutoff
        Must cover every stream type in the bundle. Distances equal to the
        cutoff count as linked.

    Raises
    ------
    EmptyInputError
        The bundle has no cases.
    ConfigurationError
        A stream type in the bundle has no cutoff.
    InvalidParameterError
        A cutoff is negative or NaN.
    """
    if bundle.n_cases == 0:
        raise EmptyInputError("Cannot cluster a distance bundle with zero cases.")
    cuts = resolve_cutoffs(bundle, cutoffs)

    n = bundle.n_cases
    iu, ju = np.triu_indices(n, k=1)

    any_defined = np.zeros(iu.size, dtype=bool)
    violated = np.zeros(iu.size, dtype=bool)
    distances: Dict[str, np.ndarray] = {}
    graphs: Dict[str, ig.Graph] = {}

    for name in bundle.types:
        d = bundle.matrix(name)[iu, ju]
        defined = ~np.isnan(d)
        within = defined & (d <= cuts[name])

        any_defined |= defined
        violated |= defined & ~within
        distances[name] = d

        graphs[name] = _graph(bundle.labels, iu[within], ju[within], {name: d[within]})
        logger.debug(f"{name}: {int(within.sum())} of {int(defined.sum())} defined pairs within cutoff {cuts[name]:g}")

    linked = any_defined & ~violated
    combined = _graph(
        bundle.labels,
        iu[linked],
        ju[linked],
        {name: d[linked] for name, d in distances.items()},
    )

    membership = np.asarray(combined.connected_components(mode="weak").membership, dtype=int)
    result = ClusterResult(
        labels=bundle.labels,
        membership=membership,
        cutoffs=cuts,
        graphs=graphs,
        combined=combined,
    )
    logger.info(
        f"Clustered {n} cases into {result.n_clusters} clusters "
        f"({int((result.sizes == 1).sum())} singletons, {combined.ecount()} combined edges)"
    )
    return result
