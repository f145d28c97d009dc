import numpy as np
import pandas as pd
import pytest

from sk_ate import Dataset


def make_scenario_frame(n=2000, seed=0):
    """Confounded design with a constant treatment effect of 2.0."""
    rng = np.random.default_rng(seed)
    x1 = rng.normal(0, 1, n)
    x2 = rng.binomial(1, 0.3, n)
    propensity = 1 / (1 + np.exp(-(-0.5 + 0.8 * x1 - 0.4 * x2)))
    d = rng.binomial(1, propensity)
    y = 3 + 2 * d + 1.2 * x1 - 0.5 * x2 + rng.normal(0, 1, n)
    return pd.DataFrame({"x1": x1, "x2": x2, "d": d, "y": y})


@pytest.fixture
def scenario_frame():
    return make_scenario_frame()


@pytest.fixture
def scenario_dataset(scenario_frame):
    return Dataset.from_frame(scenario_frame, covariates=["x1", "x2"], treatment="d", outcome="y")


@pytest.fixture
def small_dataset():
    rng = np.random.default_rng(7)
    n = 300
    X = rng.normal(size=(n, 2))
    treatment = (rng.random(n) < 1 / (1 + np.exp(-X[:, 0]))).astype(int)
    y = 1.0 + 2.0 * treatment + X[:, 0] + 0.5 * X[:, 1] + rng.normal(0, 0.5, n)
    return Dataset(X, treatment, y, covariate_names=["a", "b"])
