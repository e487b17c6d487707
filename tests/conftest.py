import numpy as np
import pytest

from epicluster import DistanceBundle

NAN = np.nan


@pytest.fixture
def three_case_temporal():
    # pairs (1,2)=5, (1,3)=50, (2,3)=48
    return np.array([
        [0.0, 5.0, 50.0],
        [5.0, 0.0, 48.0],
        [50.0, 48.0, 0.0],
    ])


@pytest.fixture
def three_case_bundle(three_case_temporal):
    return DistanceBundle({"temporal": three_case_temporal}, labels=[1, 2, 3])


def random_bundle(n=30, types=("temporal", "spatial", "genetic"), missing=0.0, seed=1):
    rng = np.random.default_rng(seed)
    matrices = {}
    for t in types:
        upper = np.triu(rng.gamma(2.0, 5.0, size=(n, n)), k=1)
        if missing:
            upper[np.triu(rng.random((n, n)) < missing, k=1)] = NAN
        m = upper + upper.T
        np.fill_diagonal(m, 0.0)
        matrices[t] = m
    return DistanceBundle(matrices, labels=[f"case{i}" for i in range(n)])


@pytest.fixture
def make_bundle():
    return random_bundle
