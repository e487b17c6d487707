"""
epicluster/cutoffs.py

Turn distance models and reporting probabilities into per-stream cutoffs.

A cutoff for stream type t at quantile q is the q-quantile of the distance
between two consecutively observed cases, given the reporting probability of
t's model. Every (type, quantile) is derived on its own; nothing couples the
streams.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Mapping

import numpy as np
import pandas as pd

from .errors import InvalidParameterError
from .model import CasePairModel, check_quantile, check_reporting

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamPrior:
    """A direct-link distance model and the reporting probability it is used with."""
    model: CasePairModel
    reporting: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "reporting", check_reporting(self.reporting))


class CutoffVector(Mapping[str, float]):
    """Immutable stream type -> distance threshold mapping."""

    def __init__(self, cutoffs: Mapping[str, float]):
        values: Dict[str, float] = {}
        for name, value in dict(cutoffs).items():
            v = float(value)
            if np.isnan(v) or v < 0:
                raise InvalidParameterError(f"Cutoff for '{name}' must be a non-negative number, got {value}.")
            values[str(name)] = v
        self._values = values

    def __getitem__(self, key: str) -> float:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"CutoffVector({self._values!r})"


def derive_cutoff(model: CasePairModel, quantile: float, reporting: float = 1.0) -> float:
    """Distance below which a fraction `quantile` of observed-case pairs linked by transmission fall."""
    cutoff = model.ppf(check_quantile(quantile), check_reporting(reporting))
    logger.debug(f"{model!r}: cutoff {cutoff:g} at q={quantile}, reporting={reporting}")
    return cutoff


def derive_cutoffs(priors: Mapping[str, StreamPrior], quantile: float) -> CutoffVector:
    """One cutoff per stream type, all at the same quantile."""
    return CutoffVector({
        name: derive_cutoff(prior.model, quantile, prior.reporting)
        for name, prior in priors.items()
    })


def cutoff_table(priors: Mapping[str, StreamPrior], quantiles: Iterable[float]) -> pd.DataFrame:
    """
    Cutoffs for every (stream type, quantile) combination.

    Returns
    -------
    DataFrame with columns: type, quantile, reporting, cutoff
    """
    qs = [check_quantile(q) for q in quantiles]
    rows = []
    for name, prior in priors.items():
        for q in qs:
            rows.append({
                "type": name,
                "quantile": q,
                "reporting": prior.reporting,
                "cutoff": derive_cutoff(prior.model, q, prior.reporting),
            })
    return pd.DataFrame(rows, columns=["type", "quantile", "reporting", "cutoff"])
