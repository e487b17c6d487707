import numpy as np
import pytest
from scipy import integrate, stats

from epicluster import (
    ConfigurationError,
    EmpiricalModel,
    GammaModel,
    InvalidParameterError,
    NumericalNonConvergence,
    PoissonGammaModel,
    PoissonModel,
    RayleighModel,
    SolverSettings,
    build_model,
    geometric_weights,
)

CONTINUOUS = [GammaModel(shape=2.36, scale=2.64), RayleighModel(sigma=0.5)]
DISCRETE = [
    PoissonModel(rate=0.9),
    PoissonGammaModel(mutation_rate=3e-6, sequence_length=29903, shape=2.36, scale=2.64),
]


# -----------------------------
# Geometric weights
# -----------------------------

def test_perfect_reporting_has_single_generation():
    assert geometric_weights(1.0).tolist() == [1.0]


def test_weights_are_geometric_and_normalised():
    w = geometric_weights(0.5)
    # smallest K with 1 - 0.5**K >= 1 - 1e-9
    assert w.size == 30
    assert w.sum() == pytest.approx(1.0)
    assert np.allclose(w[:-1] / w[1:], 2.0)


def test_truncation_tolerance_is_configurable():
    loose = geometric_weights(0.5, SolverSettings(truncation_tol=1e-3))
    assert loose.size == 10


def test_generation_cap_warns():
    with pytest.warns(RuntimeWarning):
        w = geometric_weights(1e-6, SolverSettings(max_generations=500))
    assert w.size == 500
    assert w.sum() == pytest.approx(1.0)


@pytest.mark.parametrize("pi", [0.0, -0.1, 1.5, np.nan])
def test_reporting_out_of_range(pi):
    with pytest.raises(InvalidParameterError):
        geometric_weights(pi)


# -----------------------------
# Single-link laws
# -----------------------------

def test_gamma_single_link_matches_scipy():
    m = GammaModel(shape=2.0, scale=3.0)
    x = np.linspace(0.0, 30.0, 13)
    assert np.allclose(m.pdf(x), stats.gamma.pdf(x, 2.0, scale=3.0))
    assert np.allclose(m.cdf(x), stats.gamma.cdf(x, 2.0, scale=3.0))
    assert m.ppf(0.95) == pytest.approx(stats.gamma.ppf(0.95, 2.0, scale=3.0), rel=1e-9)


def test_rayleigh_nfold_is_scaled_rayleigh():
    m = RayleighModel(sigma=2.0)
    x = np.array([0.5, 1.0, 4.0, 9.0])
    expected = 1.0 - np.exp(-x ** 2 / (2 * 3 * 2.0 ** 2))
    assert np.allclose(m._link_cdf(x, 3), expected)


def test_poisson_single_link_quantile_matches_scipy():
    m = PoissonModel(rate=2.0)
    for q in (0.5, 0.9, 0.95, 0.999):
        assert m.ppf(q) == stats.poisson.ppf(q, 2.0)


def test_poisson_gamma_single_link_is_negative_binomial():
    m = PoissonGammaModel(mutation_rate=1e-3, sequence_length=1000, shape=2.0, scale=3.0)
    p = 1.0 / (1.0 + 1.0 * 3.0)
    k = np.arange(30)
    assert np.allclose(m.pdf(k), stats.nbinom.pmf(k, 2.0, p))
    assert m.ppf(0.95) == stats.nbinom.ppf(0.95, 2.0, p)
    assert m.mean() == pytest.approx(2.0 * 3.0)


def test_poisson_gamma_two_links_match_numerical_convolution():
    m = PoissonGammaModel(mutation_rate=1e-3, sequence_length=1000, shape=1.5, scale=2.0)
    k = np.arange(60)
    one = m._link_pdf(k, 1)
    two = np.convolve(one, one)[:60]
    assert np.allclose(m._link_pdf(k, 2), two, atol=1e-12)


def test_discrete_pdf_is_zero_off_grid():
    m = PoissonModel(rate=1.0)
    assert m.pdf(1.5) == 0.0
    assert m.pdf(-1.0) == 0.0
    assert m.cdf(1.5) == pytest.approx(stats.poisson.cdf(1, 1.0))


def test_scalar_in_scalar_out():
    m = GammaModel(shape=2.0, scale=1.0)
    assert isinstance(m.pdf(1.0, reporting=0.5), float)
    assert m.cdf(np.array([1.0, 2.0]), reporting=0.5).shape == (2,)


def test_nan_distance_rejected():
    with pytest.raises(InvalidParameterError):
        GammaModel(shape=2.0, scale=1.0).cdf(np.nan)


# -----------------------------
# Reporting-adjusted laws
# -----------------------------

@pytest.mark.parametrize("model", CONTINUOUS)
def test_adjusted_density_integrates_to_one(model):
    total, _ = integrate.quad(lambda x: model.pdf(x, reporting=0.4), 0, np.inf, limit=200)
    assert total == pytest.approx(1.0, abs=1e-6)


@pytest.mark.parametrize("model", DISCRETE)
def test_adjusted_pmf_sums_to_one(model):
    k = np.arange(2000)
    assert model.pdf(k, reporting=0.4).sum() == pytest.approx(1.0, abs=1e-6)


def test_adjusted_mean_scales_with_expected_generations():
    m = PoissonModel(rate=1.5)
    # E[number of links] = 1 / pi
    assert m.mean(reporting=0.25) == pytest.approx(1.5 * 4.0, rel=1e-6)


def test_adjusted_density_is_explicit_mixture():
    m = GammaModel(shape=2.0, scale=1.0)
    x = np.array([0.5, 2.0, 7.0])
    w = geometric_weights(0.3)
    expected = sum(wk * stats.gamma.pdf(x, 2.0 * (k + 1), scale=1.0) for k, wk in enumerate(w))
    assert np.allclose(m.pdf(x, reporting=0.3), expected)


@pytest.mark.parametrize("model", CONTINUOUS + DISCRETE)
def test_perfect_reporting_equals_single_link(model):
    x = np.linspace(0.0, 20.0, 21)
    assert np.allclose(model.cdf(x, reporting=1.0), model._link_cdf(x, 1))
    assert model.ppf(0.9, reporting=1.0) == model.ppf(0.9)


@pytest.mark.parametrize("model", CONTINUOUS + DISCRETE)
def test_underreporting_widens_cutoff(model):
    assert model.ppf(0.95, reporting=0.3) >= model.ppf(0.95, reporting=1.0)


@pytest.mark.parametrize("model", CONTINUOUS + DISCRETE)
@pytest.mark.parametrize("pi", [1.0, 0.7, 0.2])
def test_quantile_monotone_in_q(model, pi):
    cuts = [model.ppf(q, reporting=pi) for q in (0.1, 0.5, 0.9, 0.99, 0.999999)]
    assert all(a <= b for a, b in zip(cuts, cuts[1:]))


@pytest.mark.parametrize("model", CONTINUOUS)
@pytest.mark.parametrize("pi", [1.0, 0.5, 0.1])
@pytest.mark.parametrize("q", [0.05, 0.5, 0.95, 0.999])
def test_cdf_of_quantile_recovers_q(model, pi, q):
    assert model.cdf(model.ppf(q, reporting=pi), reporting=pi) == pytest.approx(q, abs=1e-6)


@pytest.mark.parametrize("model", DISCRETE)
def test_discrete_quantile_is_smallest_grid_value(model):
    d = model.ppf(0.95, reporting=0.5)
    assert d == np.rint(d)
    assert model.cdf(d, reporting=0.5) >= 0.95
    if d > 0:
        assert model.cdf(d - 1, reporting=0.5) < 0.95


def test_extreme_quantile_is_finite():
    d = GammaModel(shape=2.0, scale=1.0).ppf(1.0 - 1e-12, reporting=0.5)
    assert np.isfinite(d)


@pytest.mark.parametrize("q", [0.0, 1.0, -0.5, 1.2])
def test_quantile_out_of_range(q):
    with pytest.raises(InvalidParameterError):
        GammaModel(shape=2.0, scale=1.0).ppf(q)


def test_bracket_expansion_cap():
    m = GammaModel(shape=2.0, scale=1.0, settings=SolverSettings(max_expansions=1))
    with pytest.raises(NumericalNonConvergence):
        m.ppf(0.999)


def test_root_find_iteration_cap():
    m = GammaModel(shape=2.0, scale=1.0, settings=SolverSettings(maxiter=1))
    with pytest.raises(NumericalNonConvergence):
        m.ppf(0.95)


# -----------------------------
# Empirical family
# -----------------------------

def test_empirical_convolution_matches_poisson():
    rate = 1.0
    emp = EmpiricalModel(stats.poisson.pmf(np.arange(60), rate))
    ref = PoissonModel(rate=rate)
    k = np.arange(0, 40)
    assert np.allclose(emp.cdf(k, reporting=0.5), ref.cdf(k, reporting=0.5), atol=1e-8)
    assert emp.ppf(0.95, reporting=0.5) == ref.ppf(0.95, reporting=0.5)


def test_empirical_pmf_is_normalised():
    emp = EmpiricalModel([2.0, 1.0, 1.0])
    assert emp.pmf.tolist() == [0.5, 0.25, 0.25]
    assert emp.cdf(np.inf) == 1.0
    assert emp.cdf(-1.0) == 0.0


def test_empirical_grid_step():
    emp = EmpiricalModel([0.0, 1.0], step=2.5)
    assert emp.pdf(2.5) == 1.0
    assert emp.pdf(2.0) == 0.0
    assert emp.ppf(0.5, reporting=1.0) == 2.5
    # two links land on 5.0
    assert emp._link_pdf(np.array([5.0]), 2)[0] == pytest.approx(1.0)


def test_empirical_from_distribution_tracks_continuous_law():
    dist = stats.lognorm(s=0.5, scale=5.0)
    emp = EmpiricalModel.from_distribution(dist, step=0.1)
    assert emp.mean() == pytest.approx(dist.mean(), rel=1e-2)
    assert abs(emp.ppf(0.95) - dist.ppf(0.95)) <= 0.1 + 1e-9


def test_empirical_low_reporting_matches_gamma():
    dist = stats.gamma(2.36, scale=2.64)
    emp = EmpiricalModel.from_distribution(dist, step=0.5)
    ref = GammaModel(shape=2.36, scale=2.64)
    assert emp.ppf(0.95, reporting=0.02) == pytest.approx(ref.ppf(0.95, reporting=0.02), rel=1e-2)
    assert emp.mean(reporting=0.05) == pytest.approx(ref.mean(reporting=0.05), rel=1e-2)


def test_empirical_low_reporting_keeps_one_table_per_reporting():
    emp = EmpiricalModel.from_distribution(stats.gamma(2.36, scale=2.64), step=0.5)
    for q in (0.5, 0.9, 0.95, 0.99):
        emp.ppf(q, reporting=0.02)
    emp.cdf(np.arange(100.0), reporting=0.05)

    assert sorted(emp._mixed) == [0.02, 0.05, 1.0]
    pmf, cdf = emp.mixed_tables(0.02)
    assert pmf.size <= 2 ** 20
    assert pmf.sum() == pytest.approx(1.0)
    assert cdf[-1] == pytest.approx(1.0)


def test_empirical_mixed_cdf_recovers_quantile():
    emp = EmpiricalModel.from_distribution(stats.gamma(2.0, scale=3.0), step=0.25)
    d = emp.ppf(0.9, reporting=0.05)
    assert emp.cdf(d, reporting=0.05) >= 0.9
    assert emp.cdf(d - emp.step, reporting=0.05) < 0.9


@pytest.mark.parametrize("pmf", [[], [-1.0, 2.0], [0.0, 0.0], [np.nan]])
def test_empirical_invalid_pmf(pmf):
    with pytest.raises(InvalidParameterError):
        EmpiricalModel(pmf)


# -----------------------------
# Construction
# -----------------------------

@pytest.mark.parametrize("kwargs", [{"shape": -1.0, "scale": 1.0}, {"shape": 1.0, "scale": 0.0},
                                    {"shape": np.inf, "scale": 1.0}])
def test_invalid_gamma_parameters(kwargs):
    with pytest.raises(InvalidParameterError):
        GammaModel(**kwargs)


@pytest.mark.parametrize("model, attr", [
    (GammaModel(shape=2.0, scale=3.0), "shape"),
    (RayleighModel(sigma=1.0), "sigma"),
    (PoissonModel(rate=1.0), "rate"),
    (EmpiricalModel([0.5, 0.5]), "step"),
])
def test_models_are_immutable(model, attr):
    before = model.params
    with pytest.raises(AttributeError):
        setattr(model, attr, 10.0)
    with pytest.raises(AttributeError):
        model.settings = SolverSettings()
    assert model.params == before


def test_empirical_pmf_is_read_only():
    emp = EmpiricalModel([0.5, 0.5])
    with pytest.raises(ValueError):
        emp.pmf[0] = 1.0


def test_build_model_by_name():
    m = build_model("Gamma", shape=2.0, scale=3.0)
    assert isinstance(m, GammaModel)
    assert m.params == {"shape": 2.0, "scale": 3.0}


def test_build_model_unknown_family():
    with pytest.raises(ConfigurationError):
        build_model("weibull", shape=1.0)


def test_build_model_bad_parameters():
    with pytest.raises(ConfigurationError):
        build_model("gamma", shape=1.0)
