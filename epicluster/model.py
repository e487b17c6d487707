"""
epicluster/model.py

Reporting-adjusted law of the distance between two observed cases.

If each case in a transmission chain is reported with probability pi, the
number k of unobserved intermediate links between two consecutively observed
cases is geometric:

    P(k) = (1 - pi)^k * pi,    k = 0, 1, 2, ...

and, given k, the distance between them is the sum of k + 1 i.i.d. direct-link
distances. The reporting-adjusted density is the geometric mixture

    f_pi(d) = sum_k (1 - pi)^k * pi * f_(k+1)(d)

truncated once the cumulative weight reaches 1 - truncation_tol.

Concrete distribution families live in `epicluster.families`; they only need
to provide the n-fold convolution of their single-link law.
"""
from __future__ import annotations

import abc
import logging
import math
import warnings
from dataclasses import dataclass
from typing import Union

import numpy as np
from scipy import optimize

from .errors import InvalidParameterError, NumericalNonConvergence

logger = logging.getLogger(__name__)

ArrayLike = Union[float, np.ndarray]


@dataclass(frozen=True)
class SolverSettings:
    """Numerical settings shared by mixture evaluation and quantile search."""
    truncation_tol: float = 1e-9
    max_generations: int = 10_000
    max_expansions: int = 200
    xtol: float = 1e-12
    rtol: float = 1e-12
    maxiter: int = 500

    def __post_init__(self) -> None:
        if not (0.0 < self.truncation_tol < 1.0):
            raise InvalidParameterError("truncation_tol must be in (0, 1).")
        for name in ("max_generations", "max_expansions", "maxiter"):
            if int(getattr(self, name)) < 1:
                raise InvalidParameterError(f"{name} must be a positive integer.")
        if self.xtol <= 0 or self.rtol <= 0:
            raise InvalidParameterError("xtol and rtol must be positive.")


DEFAULT_SETTINGS = SolverSettings()


def check_reporting(reporting: float) -> float:
    pi = float(reporting)
    if not (0.0 < pi <= 1.0):
        raise InvalidParameterError(f"Reporting probability must be in (0, 1], got {reporting}.")
    return pi


def check_quantile(quantile: float) -> float:
    q = float(quantile)
    if not (0.0 < q < 1.0):
        raise InvalidParameterError(f"Quantile must be in (0, 1), got {quantile}.")
    return q


def check_positive(name: str, value: float) -> float:
    v = float(value)
    if not np.isfinite(v) or v <= 0:
        raise InvalidParameterError(f"{name} must be positive and finite, got {value}.")
    return v


def geometric_weights(reporting: float, settings: SolverSettings = DEFAULT_SETTINGS) -> np.ndarray:
    """
    Weights of 0, 1, 2, ... unobserved intermediate links.

    Truncated at the smallest K with 1 - (1 - pi)^K >= 1 - truncation_tol and
    renormalised to sum to one.
    """
    pi = check_reporting(reporting)
    if pi == 1.0:
        return np.ones(1)

    n_terms = math.ceil(math.log(settings.truncation_tol) / math.log1p(-pi))
    n_terms = max(n_terms, 1)
    if n_terms > settings.max_generations:
        warnings.warn(
            f"Reporting probability {pi} needs {n_terms} generations to reach "
            f"truncation_tol={settings.truncation_tol}; capping at {settings.max_generations}.",
            RuntimeWarning,
        )
        n_terms = settings.max_generations

    k = np.arange(n_terms)
    w = pi * np.exp(k * math.log1p(-pi))
    return w / w.sum()


class CasePairModel(abc.ABC):
    """
    Distance between a case and its infector, and between observed cases.

    Subclasses implement the n-fold convolution of the direct-link law in
    `_link_pdf` / `_link_cdf`, where `n` may be an array broadcasting against
    `x`. Everything else (reporting adjustment, quantiles) is shared.
    """

    name: str = "abstract"
    discrete: bool = False
    step: float = 1.0

    def __init__(self, settings: SolverSettings = DEFAULT_SETTINGS):
        self.settings = settings

    def _freeze(self) -> None:
        """Called at the end of a subclass __init__; parameters are read-only afterwards."""
        self._frozen = True

    def __setattr__(self, name: str, value) -> None:
        if getattr(self, "_frozen", False):
            raise AttributeError(f"{type(self).__name__} is immutable; cannot set '{name}'.")
        super().__setattr__(name, value)

    # -----------------------------
    # Family interface
    # -----------------------------

    @abc.abstractmethod
    def _link_pdf(self, x: np.ndarray, n: np.ndarray) -> np.ndarray:
        """Density (pmf if discrete) of the sum of n direct-link distances."""

    @abc.abstractmethod
    def _link_cdf(self, x: np.ndarray, n: np.ndarray) -> np.ndarray:
        """CDF of the sum of n direct-link distances."""

    @abc.abstractmethod
    def _link_mean(self) -> float:
        """Mean direct-link distance."""

    @property
    def params(self) -> dict:
        return {}

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.params.items())
        return f"{type(self).__name__}({args})"

    # -----------------------------
    # Reporting-adjusted law
    # -----------------------------

    def generation_weights(self, reporting: float = 1.0) -> np.ndarray:
        return geometric_weights(reporting, self.settings)

    def _mixture(self, fn, d: ArrayLike, reporting: float) -> ArrayLike:
        w = self.generation_weights(reporting)
        x = np.asarray(d, dtype=float)
        if np.any(np.isnan(x)):
            raise InvalidParameterError("Distances must not be NaN.")
        n = np.arange(1, w.size + 1, dtype=float)
        vals = fn(x[..., None], n) @ w
        if np.ndim(d) == 0:
            return float(vals)
        return vals

    def pdf(self, d: ArrayLike, reporting: float = 1.0) -> ArrayLike:
        """
        Density (pmf for discrete families) of the distance between observed
        cases. With reporting=1 this is the direct-link law.
        """
        return self._mixture(self._link_pdf, d, reporting)

    def cdf(self, d: ArrayLike, reporting: float = 1.0) -> ArrayLike:
        return self._mixture(self._link_cdf, d, reporting)

    def mean(self, reporting: float = 1.0) -> float:
        w = self.generation_weights(reporting)
        n = np.arange(1, w.size + 1, dtype=float)
        return float(self._link_mean() * (n @ w))

    def ppf(self, quantile: float, reporting: float = 1.0) -> float:
        """
        Smallest distance d with CDF(d) >= quantile.

        The search interval [0, upper] is doubled until it brackets the
        quantile; continuous families then use Brent's method, discrete ones
        bisect over the grid.

        Raises
        ------
        NumericalNonConvergence
            The bracket could not be found within `max_expansions` doublings,
            or the root-find did not converge within `maxiter` iterations.
        """
        q = check_quantile(quantile)
        pi = check_reporting(reporting)
        s = self.settings

        lower = 0.0
        if self.cdf(lower, pi) >= q:
            return lower

        upper = max(self.mean(pi), self.step if self.discrete else 0.0)
        if not np.isfinite(upper) or upper <= 0:
            upper = 1.0

        for _ in range(s.max_expansions):
            if self.cdf(upper, pi) >= q:
                break
            lower, upper = upper, 2.0 * upper
        else:
            raise NumericalNonConvergence(
                f"{self!r}: could not bracket quantile {q} (reporting={pi}) "
                f"after {s.max_expansions} expansions; last upper bound {upper:g}."
            )

        if self.discrete:
            return self._grid_search(q, pi, lower, upper)

        root, info = optimize.brentq(
            lambda x: self.cdf(x, pi) - q,
            lower,
            upper,
            xtol=s.xtol,
            rtol=s.rtol,
            maxiter=s.maxiter,
            full_output=True,
            disp=False,
        )
        if not info.converged:
            raise NumericalNonConvergence(
                f"{self!r}: quantile {q} did not converge in {s.maxiter} iterations ({info.flag})."
            )
        logger.debug(f"{self!r}: ppf({q}, reporting={pi}) = {root:g} in {info.iterations} iterations")
        return float(root)

    def _grid_search(self, q: float, pi: float, lower: float, upper: float) -> float:
        # invariant: cdf(lo * step) < q <= cdf(hi * step)
        lo = int(math.floor(lower / self.step))
        hi = int(math.ceil(upper / self.step))
        for _ in range(self.settings.maxiter):
            if hi - lo <= 1:
                return hi * self.step
            mid = (lo + hi) // 2
            if self.cdf(mid * self.step, pi) >= q:
                hi = mid
            else:
                lo = mid
        raise NumericalNonConvergence(
            f"{self!r}: grid search for quantile {q} did not converge in {self.settings.maxiter} iterations."
        )
