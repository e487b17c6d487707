"""
epicluster/families.py

Direct-link distance distributions, one per kind of data stream.

Each family knows the law of the sum of n i.i.d. direct-link distances:

  gamma          temporal; Gamma(shape, scale) -> Gamma(n * shape, scale)
  rayleigh       spatial; norm of a 2-D Gaussian displacement with per-axis sd sigma.
                 n displacements add up to Rayleigh(sigma * sqrt(n))
  poisson        genetic; Poisson(rate) mutations per generation -> Poisson(n * rate)
  poisson_gamma  genetic; Poisson(lambda * T) mutations over a gamma-distributed
                 time T. Marginally NegBin(shape, p) with p = 1 / (1 + lambda * scale);
                 n links scale the time argument, giving NegBin(n * shape, p)
  empirical      any pmf on a regular grid; mixture over n computed numerically (FFT)
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple, Type

import numpy as np
from scipy import stats

from .errors import ConfigurationError, InvalidParameterError, NumericalNonConvergence
from .model import DEFAULT_SETTINGS, CasePairModel, SolverSettings, check_positive, check_reporting

logger = logging.getLogger(__name__)


class GammaModel(CasePairModel):
    """Temporal distance (e.g. serial interval) between a case and its infector."""

    name = "gamma"

    def __init__(self, shape: float, scale: float, settings: SolverSettings = DEFAULT_SETTINGS):
        super().__init__(settings)
        self.shape = check_positive("shape", shape)
        self.scale = check_positive("scale", scale)
        self._freeze()

    @property
    def params(self) -> dict:
        return {"shape": self.shape, "scale": self.scale}

    def _link_pdf(self, x, n):
        return stats.gamma.pdf(x, a=n * self.shape, scale=self.scale)

    def _link_cdf(self, x, n):
        return stats.gamma.cdf(x, a=n * self.shape, scale=self.scale)

    def _link_mean(self) -> float:
        return self.shape * self.scale


class RayleighModel(CasePairModel):
    """
    Spatial distance under an isotropic 2-D Gaussian dispersal kernel.

    The n-link law is the norm of the vector sum of n displacements,
    Rayleigh(sigma * sqrt(n)), not the sum of n scalar distances.
    """

    name = "rayleigh"

    def __init__(self, sigma: float, settings: SolverSettings = DEFAULT_SETTINGS):
        super().__init__(settings)
        self.sigma = check_positive("sigma", sigma)
        self._freeze()

    @property
    def params(self) -> dict:
        return {"sigma": self.sigma}

    def _link_pdf(self, x, n):
        return stats.rayleigh.pdf(x, scale=self.sigma * np.sqrt(n))

    def _link_cdf(self, x, n):
        return stats.rayleigh.cdf(x, scale=self.sigma * np.sqrt(n))

    def _link_mean(self) -> float:
        return self.sigma * np.sqrt(np.pi / 2.0)

    def mean(self, reporting: float = 1.0) -> float:
        # sqrt(n) scaling, so the single-link mean does not scale linearly
        w = self.generation_weights(reporting)
        n = np.arange(1, w.size + 1, dtype=float)
        return float(self._link_mean() * (np.sqrt(n) @ w))


class PoissonModel(CasePairModel):
    """Number of mutations separating a case from its infector, fixed rate per generation."""

    name = "poisson"
    discrete = True

    def __init__(self, rate: float, settings: SolverSettings = DEFAULT_SETTINGS):
        super().__init__(settings)
        self.rate = check_positive("rate", rate)
        self._freeze()

    @property
    def params(self) -> dict:
        return {"rate": self.rate}

    def _link_pdf(self, x, n):
        return np.where(_on_grid(x), stats.poisson.pmf(np.rint(x), n * self.rate), 0.0)

    def _link_cdf(self, x, n):
        return stats.poisson.cdf(np.floor(x + 1e-9), n * self.rate)

    def _link_mean(self) -> float:
        return self.rate


class PoissonGammaModel(CasePairModel):
    """
    Mutations accumulated over a gamma-distributed time between infections.

    Parameters
    ----------
    mutation_rate : float
        Substitutions per site per unit time.
    sequence_length : float
        Number of sites.
    shape, scale : float
        Gamma law of the time separating a case from its infector.
    """

    name = "poisson_gamma"
    discrete = True

    def __init__(
        self,
        mutation_rate: float,
        sequence_length: float,
        shape: float,
        scale: float,
        settings: SolverSettings = DEFAULT_SETTINGS,
    ):
        super().__init__(settings)
        self.mutation_rate = check_positive("mutation_rate", mutation_rate)
        self.sequence_length = check_positive("sequence_length", sequence_length)
        self.shape = check_positive("shape", shape)
        self.scale = check_positive("scale", scale)
        self._freeze()

    @property
    def params(self) -> dict:
        return {
            "mutation_rate": self.mutation_rate,
            "sequence_length": self.sequence_length,
            "shape": self.shape,
            "scale": self.scale,
        }

    @property
    def _p(self) -> float:
        lam = self.mutation_rate * self.sequence_length
        return 1.0 / (1.0 + lam * self.scale)

    def _link_pdf(self, x, n):
        return np.where(_on_grid(x), stats.nbinom.pmf(np.rint(x), n * self.shape, self._p), 0.0)

    def _link_cdf(self, x, n):
        return stats.nbinom.cdf(np.floor(x + 1e-9), n * self.shape, self._p)

    def _link_mean(self) -> float:
        return self.mutation_rate * self.sequence_length * self.shape * self.scale


class EmpiricalModel(CasePairModel):
    """
    Direct-link distance given as a pmf on the grid 0, step, 2*step, ...

    The reporting-adjusted law is the geometric mixture of n-fold
    convolutions. Its generating function has the closed form

        pi * P(z) / (1 - (1 - pi) * P(z))

    so the mixed pmf is one inverse FFT on a zero-padded grid, doubled until
    the mass in its upper half drops below truncation_tol. Only the mixed
    pmf/CDF is cached, once per reporting probability.
    """

    name = "empirical"
    discrete = True

    def __init__(self, pmf, step: float = 1.0, settings: SolverSettings = DEFAULT_SETTINGS):
        super().__init__(settings)
        p = np.asarray(pmf, dtype=float).ravel()
        if p.size == 0 or not np.all(np.isfinite(p)) or np.any(p < 0) or p.sum() <= 0:
            raise InvalidParameterError("pmf must be a non-empty array of non-negative finite weights.")
        pmf = p / p.sum()
        pmf.setflags(write=False)
        self.pmf = pmf
        self.step = check_positive("step", step)
        self._mixed: Dict[float, Tuple[np.ndarray, np.ndarray]] = {1.0: (pmf, np.minimum(np.cumsum(pmf), 1.0))}
        self._freeze()

    @classmethod
    def from_distribution(
        cls,
        dist,
        step: float = 1.0,
        upper: Optional[float] = None,
        settings: SolverSettings = DEFAULT_SETTINGS,
    ) -> "EmpiricalModel":
        """
        Discretise a frozen scipy.stats distribution onto the grid.

        Grid point i*step receives the mass of [(i - 1/2) * step, (i + 1/2) * step);
        the grid extends to `upper` (default: the 1 - 1e-12 quantile).
        """
        step = check_positive("step", step)
        if upper is None:
            upper = float(dist.ppf(1.0 - 1e-12))
        upper = check_positive("upper", upper)
        edges = (np.arange(int(np.ceil(upper / step)) + 2) - 0.5) * step
        edges[0] = -np.inf
        return cls(np.diff(dist.cdf(edges)), step=step, settings=settings)

    @property
    def params(self) -> dict:
        return {"support": self.pmf.size, "step": self.step}

    # -----------------------------
    # Mixture tables
    # -----------------------------

    def mixed_tables(self, reporting: float = 1.0) -> Tuple[np.ndarray, np.ndarray]:
        """(pmf, cdf) of the reporting-adjusted law on the grid."""
        pi = check_reporting(reporting)
        if pi not in self._mixed:
            pmf = self._mix(pi)
            self._mixed[pi] = (pmf, np.minimum(np.cumsum(pmf), 1.0))
        return self._mixed[pi]

    def _mix(self, pi: float) -> np.ndarray:
        s = self.settings
        mean_cells = self._link_mean() / self.step / pi
        size = 1 << int(np.ceil(np.log2(max(4 * self.pmf.size, 8 * mean_cells, 64))))

        for _ in range(s.max_expansions):
            spec = np.fft.rfft(self.pmf, size)
            mixed = np.clip(np.fft.irfft(pi * spec / (1.0 - (1.0 - pi) * spec), size), 0.0, None)
            # mass past the midpoint would wrap around on a smaller grid
            tail = mixed[size // 2:].sum()
            if tail < max(s.truncation_tol, 64 * size * np.finfo(float).eps):
                logger.debug(f"{self!r}: mixed pmf for reporting={pi} on {size} grid cells")
                return mixed / mixed.sum()
            size *= 2

        raise NumericalNonConvergence(
            f"{self!r}: mixed pmf for reporting={pi} still has mass {tail:g} in the upper half "
            f"of a {size // 2}-cell grid after {s.max_expansions} expansions."
        )

    def _nfold_pmf(self, n: int) -> np.ndarray:
        size = n * (self.pmf.size - 1) + 1
        out = np.clip(np.fft.irfft(np.fft.rfft(self.pmf, size) ** n, size), 0.0, None)
        return out / out.sum()

    def _lookup(self, x: np.ndarray, table: np.ndarray, fill_high: float, mass: bool) -> np.ndarray:
        # clip keeps inf representable as an index past the end of any table
        idx = np.floor(np.clip(x / self.step, -1.0, 1e15) + 1e-9).astype(np.int64)
        out = np.where(idx >= table.size, fill_high, table[np.clip(idx, 0, table.size - 1)])
        out = np.where(idx < 0, 0.0, out)
        if mass:
            out = np.where(_on_grid(x / self.step), out, 0.0)
        return out

    def _evaluate(self, d, reporting: float, which: int, fill_high: float):
        x = np.asarray(d, dtype=float)
        if np.any(np.isnan(x)):
            raise InvalidParameterError("Distances must not be NaN.")
        vals = self._lookup(x, self.mixed_tables(reporting)[which], fill_high, mass=which == 0)
        if np.ndim(d) == 0:
            return float(vals)
        return vals

    def pdf(self, d, reporting: float = 1.0):
        return self._evaluate(d, reporting, 0, 0.0)

    def cdf(self, d, reporting: float = 1.0):
        return self._evaluate(d, reporting, 1, 1.0)

    def _link_pdf(self, x, n):
        x_b, n_b = np.broadcast_arrays(np.asarray(x, dtype=float), np.asarray(n))
        out = np.zeros(x_b.shape)
        for order in np.unique(n_b).astype(int):
            sel = n_b == order
            out[sel] = self._lookup(x_b[sel], self._nfold_pmf(order), 0.0, mass=True)
        return out

    def _link_cdf(self, x, n):
        x_b, n_b = np.broadcast_arrays(np.asarray(x, dtype=float), np.asarray(n))
        out = np.zeros(x_b.shape)
        for order in np.unique(n_b).astype(int):
            sel = n_b == order
            out[sel] = self._lookup(x_b[sel], np.minimum(np.cumsum(self._nfold_pmf(order)), 1.0), 1.0, mass=False)
        return out

    def _link_mean(self) -> float:
        return float(np.arange(self.pmf.size) @ self.pmf * self.step)


def _on_grid(x) -> np.ndarray:
    x = np.asarray(x, dtype=float)
    return (x >= 0) & (np.abs(x - np.rint(x)) < 1e-9)


# -----------------------------
# Registry
# -----------------------------

MODEL_FAMILIES: Dict[str, Type[CasePairModel]] = {
    GammaModel.name: GammaModel,
    RayleighModel.name: RayleighModel,
    PoissonModel.name: PoissonModel,
    PoissonGammaModel.name: PoissonGammaModel,
    EmpiricalModel.name: EmpiricalModel,
}


def build_model(family: str, settings: SolverSettings = DEFAULT_SETTINGS, **params: Any) -> CasePairModel:
    """Instantiate a registered family by name, e.g. build_model("gamma", shape=2.0, scale=3.0)."""
    key = str(family).lower().strip()
    if key not in MODEL_FAMILIES:
        raise ConfigurationError(f"Unknown model family '{family}'. Options: {sorted(MODEL_FAMILIES)}")
    try:
        return MODEL_FAMILIES[key](settings=settings, **params)
    except TypeError as e:
        raise ConfigurationError(f"Bad parameters for '{key}' model: {e}") from e
