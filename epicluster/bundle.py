"""
epicluster/bundle.py

Validated container for the pairwise distance matrices of one analysis.

Each stream type (temporal, spatial, genetic, ...) contributes one symmetric
N x N matrix over the same ordered case labels. Missing pairwise entries are
NaN and mean "no constraint for this pair and type"; they are kept as NaN and
never filled in.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Hashable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import InvalidParameterError, ValidationError

logger = logging.getLogger(__name__)


def label_array(labels: Sequence[Hashable]) -> np.ndarray:
    """1-D object array of case labels; tuple labels stay whole elements."""
    arr = np.empty(len(labels), dtype=object)
    arr[:] = list(labels)
    return arr


def _as_float_matrix(name: str, values: Any) -> np.ndarray:
    if isinstance(values, pd.DataFrame):
        arr = values.to_numpy(dtype=float, na_value=np.nan)
    else:
        try:
            # None becomes NaN under dtype=float
            arr = np.array(values, dtype=float)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Distance matrix '{name}' is not numeric: {e}") from e

    if arr.size == 0:
        arr = arr.reshape(0, 0)
    if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
        raise ValidationError(f"Distance matrix '{name}' must be square, got shape {arr.shape}.")
    return arr.copy()


def _check_matrix(name: str, arr: np.ndarray) -> None:
    missing = np.isnan(arr)
    if not np.array_equal(missing, missing.T):
        raise ValidationError(f"Distance matrix '{name}' has asymmetric missing entries.")

    defined = arr[~missing]
    if np.any(defined < 0):
        raise InvalidParameterError(f"Distance matrix '{name}' contains negative distances.")

    # inf == inf passes, so infinite distances are allowed as long as they are mirrored
    if not np.allclose(arr, arr.T, equal_nan=True, rtol=1e-12, atol=1e-12):
        raise ValidationError(f"Distance matrix '{name}' is not symmetric.")

    diag = np.diag(arr)
    if np.any(diag[~np.isnan(diag)] != 0):
        raise ValidationError(f"Distance matrix '{name}' must have a zero diagonal.")


class DistanceBundle:
    """
    One or more named distance matrices sharing a case ordering.

    Parameters
    ----------
    matrices : mapping of str -> array-like or DataFrame
        Stream type to N x N distance matrix. DataFrames must carry the case
        labels on both index and columns, in the same order.
    labels : sequence, optional
        Ordered, unique case identifiers. Defaults to the labels of the first
        DataFrame, or 0..N-1 when only bare arrays are given.

    Raises
    ------
    ValidationError
        Shapes, labels or symmetry disagree. Labels are never reordered to
        make matrices line up.
    InvalidParameterError
        A matrix contains negative distances.
    """

    def __init__(self, matrices: Mapping[str, Any], labels: Optional[Sequence[Hashable]] = None):
        if not matrices:
            raise ValidationError("A distance bundle needs at least one distance matrix.")

        frame_labels: Optional[List[Hashable]] = None
        frame_owner = None
        arrays: Dict[str, np.ndarray] = {}

        for name, values in matrices.items():
            name = str(name)
            if name in arrays:
                raise ValidationError(f"Duplicate stream type '{name}'.")

            if isinstance(values, pd.DataFrame):
                idx = list(values.index)
                if idx != list(values.columns):
                    raise ValidationError(f"Distance matrix '{name}' has different row and column labels.")
                if frame_labels is None:
                    frame_labels, frame_owner = idx, name
                elif idx != frame_labels:
                    raise ValidationError(
                        f"Case labels of '{name}' do not match those of '{frame_owner}' (same order required)."
                    )

            arrays[name] = _as_float_matrix(name, values)

        sizes = {name: arr.shape[0] for name, arr in arrays.items()}
        if len(set(sizes.values())) > 1:
            raise ValidationError(f"Distance matrices have different dimensions: {sizes}")
        n = next(iter(sizes.values()))

        if labels is None:
            labels = frame_labels if frame_labels is not None else list(range(n))
        else:
            labels = list(labels)
            if frame_labels is not None and labels != frame_labels:
                raise ValidationError(f"Supplied labels do not match the labels of '{frame_owner}'.")

        if len(labels) != n:
            raise ValidationError(f"Got {len(labels)} case labels for {n} x {n} distance matrices.")
        if len(set(labels)) != len(labels):
            raise ValidationError("Case labels must be unique.")

        for name, arr in arrays.items():
            _check_matrix(name, arr)
            arr.setflags(write=False)

        self._labels: Tuple[Hashable, ...] = tuple(labels)
        self._matrices = arrays
        logger.debug(f"Built distance bundle: {n} cases, streams {list(arrays)}")

    # -----------------------------
    # Accessors
    # -----------------------------

    @property
    def labels(self) -> Tuple[Hashable, ...]:
        return self._labels

    @property
    def types(self) -> Tuple[str, ...]:
        return tuple(self._matrices)

    @property
    def n_cases(self) -> int:
        return len(self._labels)

    def __len__(self) -> int:
        return self.n_cases

    def __contains__(self, stream: object) -> bool:
        return stream in self._matrices

    def __repr__(self) -> str:
        return f"DistanceBundle(n_cases={self.n_cases}, types={list(self.types)})"

    def matrix(self, stream: str) -> np.ndarray:
        """Read-only distance matrix for one stream type."""
        try:
            return self._matrices[stream]
        except KeyError:
            raise KeyError(f"No '{stream}' distances in bundle (have {list(self.types)}).") from None

    def frame(self, stream: str) -> pd.DataFrame:
        return pd.DataFrame(self.matrix(stream), index=list(self._labels), columns=list(self._labels))

    def pairs(self) -> Iterator[Tuple[int, int, Dict[str, float]]]:
        """
        Iterate over unordered case pairs (i < j, by position).

        Yields (i, j, entries) where entries maps each stream type with a
        defined distance for the pair to that distance. Pairs without any
        defined distance yield an empty dict.
        """
        n = self.n_cases
        for i in range(n):
            for j in range(i + 1, n):
                entries = {}
                for name, arr in self._matrices.items():
                    d = arr[i, j]
                    if not np.isnan(d):
                        entries[name] = float(d)
                yield i, j, entries

    def to_pairwise(self, case_i: str = "case_i", case_j: str = "case_j") -> pd.DataFrame:
        """Long pairwise table: one row per unordered pair, one column per stream type."""
        iu, ju = np.triu_indices(self.n_cases, k=1)
        labels = label_array(self._labels)
        out = pd.DataFrame({case_i: labels[iu], case_j: labels[ju]})
        for name, arr in self._matrices.items():
            out[name] = arr[iu, ju]
        return out

    # -----------------------------
    # Constructors
    # -----------------------------

    @classmethod
    def from_pairwise(
        cls,
        df: pd.DataFrame,
        types: Sequence[str],
        case_i: str = "case_i",
        case_j: str = "case_j",
        labels: Optional[Sequence[Hashable]] = None,
    ) -> "DistanceBundle":
        """
        Build a bundle from a long pairwise table with columns:
          - case_i, case_j
          - one distance column per stream type (NaN where missing)

        Pairs absent from the table are missing for every type. If `labels`
        is not given, cases are ordered by first appearance.
        """
        required = {case_i, case_j, *types}
        missing_cols = required - set(df.columns)
        if missing_cols:
            raise ValidationError(f"Missing required columns in pairwise table: {sorted(missing_cols)}")

        if labels is None:
            labels = list(pd.unique(df[[case_i, case_j]].to_numpy().ravel()))
        else:
            labels = list(labels)
        index = {lab: pos for pos, lab in enumerate(labels)}
        if len(index) != len(labels):
            raise ValidationError("Case labels must be unique.")

        unknown = (set(df[case_i]) | set(df[case_j])) - set(index)
        if unknown:
            raise ValidationError(f"Pairwise table references unknown cases: {sorted(map(str, unknown))[:10]}")

        # Series.map would turn tuple keys into a MultiIndex
        rows = np.array([index[lab] for lab in df[case_i]], dtype=int)
        cols = np.array([index[lab] for lab in df[case_j]], dtype=int)
        n = len(labels)

        matrices = {}
        for name in types:
            values = df[name].to_numpy(dtype=float, na_value=np.nan)
            arr = np.full((n, n), np.nan)
            np.fill_diagonal(arr, 0.0)

            for a, b, d in zip(rows, cols, values):
                if a == b:
                    continue
                prev = arr[a, b]
                if np.isnan(prev):
                    arr[a, b] = arr[b, a] = d
                elif not np.isnan(d) and prev != d:
                    raise ValidationError(
                        f"Conflicting '{name}' distances for pair ({labels[a]}, {labels[b]}): {prev} vs {d}"
                    )
            matrices[name] = arr

        return cls(matrices, labels=labels)
