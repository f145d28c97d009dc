"""Tests for causal inference estimators."""

import numpy as np
import pytest
from sklearn.linear_model import LinearRegression, LogisticRegression

from sk_ate import (
    DoublyRobust,
    InsufficientDataError,
    InversePropensityWeighting,
    OutcomeModel,
    PositivityViolation,
    PositivityWarning,
    PropensityModel,
    PropensityScoreMatching,
)


def generate_synthetic_data(n_samples=500, true_ate=2.0, seed=42, shift=0.0):
    """Generate synthetic data for testing causal estimators.

    Parameters
    ----------
    n_samples : int
        Number of samples.
    true_ate : float
        True average treatment effect.
    seed : int
        Random seed.
    shift : float
        Added to the treatment logit; negative values make treatment rarer.

    Returns
    -------
    X : ndarray
        Covariates.
    treatment : ndarray
        Treatment indicator.
    y : ndarray
        Outcomes.
    """
    rng = np.random.RandomState(seed)

    # Generate covariates
    X = rng.randn(n_samples, 3)

    # Treatment assignment depends on X
    propensity = 1 / (1 + np.exp(-(X[:, 0] + 0.5 * X[:, 1] + shift)))
    treatment = (rng.rand(n_samples) < propensity).astype(int)

    # Outcome depends on X and treatment
    y0 = X[:, 0] + X[:, 1] + rng.randn(n_samples) * 0.5
    y1 = y0 + true_ate
    y = np.where(treatment == 1, y1, y0)

    return X, treatment, y


class TestPropensityScoreMatching:
    """Tests for PropensityScoreMatching estimator."""

    def test_fit_and_estimate(self):
        """Test that PSM can fit and estimate ATE."""
        X, treatment, y = generate_synthetic_data(n_samples=500, true_ate=2.0, shift=-1.0)
        psm = PropensityScoreMatching(n_neighbors=1, random_state=42)
        psm.fit(X, treatment, y)

        ate = psm.estimate_ate()
        assert isinstance(ate, float)
        assert abs(ate - 2.0) < 1.0
        assert psm.n_unmatched_ == 0

    def test_fit_with_replacement(self):
        """Test matching with replacement keeps every treated unit."""
        X, treatment, y = generate_synthetic_data(n_samples=500, true_ate=2.0)
        psm = PropensityScoreMatching(n_neighbors=3, replace=True, random_state=42)
        psm.fit(X, treatment, y)

        assert abs(psm.estimate_ate() - 2.0) < 1.0
        assert psm.n_unmatched_ == 0
        assert all(len(pair.controls) == 3 for pair in psm.match_result_.pairs)

    def test_controls_exhausted(self):
        """Test that running out of controls leaves treated units unmatched."""
        X, treatment, y = generate_synthetic_data()
        psm = PropensityScoreMatching(n_neighbors=3, random_state=42)
        psm.fit(X, treatment, y)

        n_treated = int(treatment.sum())
        assert psm.n_unmatched_ > 0
        assert psm.match_result_.n_matched + psm.n_unmatched_ == n_treated
        controls = [c for pair in psm.match_result_.pairs for c in pair.controls]
        assert len(controls) == len(set(controls))

    def test_estimate_att(self):
        """Test ATT estimation."""
        X, treatment, y = generate_synthetic_data()
        psm = PropensityScoreMatching(random_state=42)
        psm.fit(X, treatment, y)

        att = psm.estimate_att()
        assert isinstance(att, float)

    def test_matched_mean_difference_equals_ols(self):
        """Test that the estimate is the OLS coefficient on the matched rows."""
        X, treatment, y = generate_synthetic_data(shift=-1.0)
        psm = PropensityScoreMatching(n_neighbors=2, random_state=42)
        psm.fit(X, treatment, y)

        rows = psm.matched_indices_
        ols = LinearRegression().fit(treatment[rows].reshape(-1, 1), y[rows])
        assert psm.estimate_ate() == pytest.approx(ols.coef_[0], abs=1e-8)

    def test_propensity_scores(self):
        """Test that propensity scores are computed."""
        X, treatment, y = generate_synthetic_data()
        psm = PropensityScoreMatching(random_state=42)
        psm.fit(X, treatment, y)

        assert hasattr(psm, "propensity_scores_")
        assert len(psm.propensity_scores_) == len(X)
        assert np.all(psm.propensity_scores_ > 0)
        assert np.all(psm.propensity_scores_ < 1)

    def test_caliper(self):
        """Test matching with caliper."""
        X, treatment, y = generate_synthetic_data()
        psm = PropensityScoreMatching(n_neighbors=1, caliper=0.001, random_state=42)
        psm.fit(X, treatment, y)

        # Some matches should be invalid with tight caliper
        assert psm.n_unmatched_ > 0
        for pair in psm.match_result_.pairs:
            assert max(pair.distances) <= 0.001

    def test_balance_improves(self):
        """Test that matching reduces imbalance of the main confounder."""
        X, treatment, y = generate_synthetic_data(shift=-1.0)
        psm = PropensityScoreMatching(random_state=42)
        psm.fit(X, treatment, y)

        assert abs(psm.balance_after_["x0"]) < abs(psm.balance_before_["x0"])

    def test_custom_propensity_model(self):
        """Test with custom propensity model."""
        X, treatment, y = generate_synthetic_data()
        custom_model = LogisticRegression(C=0.5, random_state=42)
        psm = PropensityScoreMatching(propensity_model=custom_model, random_state=42)
        psm.fit(X, treatment, y)

        ate = psm.estimate_ate()
        assert isinstance(ate, float)
        # The user's estimator is cloned, not fitted in place
        assert not hasattr(custom_model, "coef_")

    def test_not_fitted_error(self):
        """Test error when estimating without fitting."""
        psm = PropensityScoreMatching()
        with pytest.raises(ValueError, match="not been fitted"):
            psm.estimate_ate()


class TestInversePropensityWeighting:
    """Tests for InversePropensityWeighting estimator."""

    def test_fit_and_estimate(self):
        """Test that IPW can fit and estimate ATE."""
        X, treatment, y = generate_synthetic_data(n_samples=500, true_ate=2.0)
        ipw = InversePropensityWeighting(random_state=42)
        ipw.fit(X, treatment, y)

        ate = ipw.estimate_ate()
        assert isinstance(ate, float)
        # Check that estimate is reasonably close to true ATE
        assert abs(ate - 2.0) < 1.0

    def test_propensity_scores(self):
        """Test that propensity scores are computed."""
        X, treatment, y = generate_synthetic_data()
        ipw = InversePropensityWeighting(random_state=42)
        ipw.fit(X, treatment, y)

        assert hasattr(ipw, "propensity_scores_")
        assert len(ipw.propensity_scores_) == len(X)

    def test_weights(self):
        """Test that IPW weights are computed."""
        X, treatment, y = generate_synthetic_data()
        ipw = InversePropensityWeighting(random_state=42)
        ipw.fit(X, treatment, y)

        assert hasattr(ipw, "weights_")
        assert len(ipw.weights_) == len(X)
        assert np.all(ipw.weights_ >= 1)
        assert ipw.weight_summary_.max == pytest.approx(ipw.weights_.max())

    def test_regression_formulation_agrees(self):
        """Test that the weighted regression gives the weighted mean difference."""
        X, treatment, y = generate_synthetic_data()
        ipw = InversePropensityWeighting(random_state=42)
        ipw.fit(X, treatment, y)

        assert ipw.regression_ate() == pytest.approx(ipw.estimate_ate(), abs=1e-8)

    def test_clipping(self):
        """Test propensity score clipping."""
        X, treatment, y = generate_synthetic_data()
        ipw = InversePropensityWeighting(epsilon=0.1, random_state=42)
        with pytest.warns(PositivityWarning):
            ipw.fit(X, treatment, y)

        # Weights should be bounded due to clipping
        max_weight = 1 / 0.1
        assert np.all(ipw.weights_ <= max_weight + 1e-10)
        assert ipw.n_clipped_ > 0

    def test_positivity_violation(self):
        """Test that positivity problems can be made fatal."""
        X, treatment, y = generate_synthetic_data()
        ipw = InversePropensityWeighting(
            epsilon=0.1, positivity_action="raise", random_state=42
        )
        with pytest.raises(PositivityViolation) as excinfo:
            ipw.fit(X, treatment, y)

        assert excinfo.value.n_clipped > 0
        assert len(excinfo.value.indices) == excinfo.value.n_clipped
        assert 0 < excinfo.value.fraction < 1

    def test_tolerated_clipping(self):
        """Test that clipping below the tolerated fraction passes silently."""
        X, treatment, y = generate_synthetic_data()
        ipw = InversePropensityWeighting(
            epsilon=0.1,
            max_clipped_fraction=1.0,
            positivity_action="raise",
            random_state=42,
        )
        ipw.fit(X, treatment, y)
        assert ipw.n_clipped_ > 0

    def test_trim_clamp(self):
        """Test clamping weights to quantile bounds."""
        X, treatment, y = generate_synthetic_data()
        untrimmed = InversePropensityWeighting(random_state=42).fit(X, treatment, y)
        ipw = InversePropensityWeighting(trim_quantiles=(0.01, 0.99), random_state=42)
        ipw.fit(X, treatment, y)

        assert ipw.n_trimmed_ > 0
        assert ipw.keep_mask_.all()
        assert ipw.weights_.max() <= untrimmed.weights_.max()

    def test_trim_exclude(self):
        """Test excluding units outside the quantile bounds."""
        X, treatment, y = generate_synthetic_data()
        ipw = InversePropensityWeighting(
            trim_quantiles=(0.01, 0.99), trim_policy="exclude", random_state=42
        )
        ipw.fit(X, treatment, y)

        assert ipw.keep_mask_.sum() == len(y) - ipw.n_trimmed_
        assert ipw.keep_mask_.sum() < len(y)
        assert ipw.regression_ate() == pytest.approx(ipw.estimate_ate(), abs=1e-8)

    def test_no_normalization(self):
        """Test without weight normalization."""
        X, treatment, y = generate_synthetic_data()
        ipw = InversePropensityWeighting(normalize_weights=False, random_state=42)
        ipw.fit(X, treatment, y)

        ate = ipw.estimate_ate()
        assert isinstance(ate, float)

    def test_not_fitted_error(self):
        """Test error when estimating without fitting."""
        ipw = InversePropensityWeighting()
        with pytest.raises(ValueError, match="not been fitted"):
            ipw.estimate_ate()


class TestDoublyRobust:
    """Tests for DoublyRobust estimator."""

    def test_fit_and_estimate(self):
        """Test that DR can fit and estimate ATE."""
        X, treatment, y = generate_synthetic_data(n_samples=500, true_ate=2.0)
        dr = DoublyRobust(random_state=42)
        dr.fit(X, treatment, y)

        ate = dr.estimate_ate()
        assert isinstance(ate, float)
        # DR should give good estimates
        assert abs(ate - 2.0) < 0.5

    def test_propensity_scores(self):
        """Test that propensity scores are computed."""
        X, treatment, y = generate_synthetic_data()
        dr = DoublyRobust(random_state=42)
        dr.fit(X, treatment, y)

        assert hasattr(dr, "propensity_scores_")
        assert len(dr.propensity_scores_) == len(X)

    def test_potential_outcomes(self):
        """Test that potential outcomes are predicted."""
        X, treatment, y = generate_synthetic_data()
        dr = DoublyRobust(random_state=42)
        dr.fit(X, treatment, y)

        assert hasattr(dr, "mu0_")
        assert hasattr(dr, "mu1_")
        assert len(dr.mu0_) == len(X)
        assert len(dr.mu1_) == len(X)

    def test_cate_estimation(self):
        """Test CATE estimation."""
        X, treatment, y = generate_synthetic_data()
        dr = DoublyRobust(random_state=42)
        dr.fit(X, treatment, y)

        X_test = np.random.randn(10, 3)
        cate = dr.estimate_cate(X_test)

        assert len(cate) == 10
        assert isinstance(cate, np.ndarray)
        # The additive outcome model implies a constant effect
        assert np.allclose(cate, cate[0])

    def test_separate_arms(self):
        """Test per-arm outcome models."""
        X, treatment, y = generate_synthetic_data()
        dr = DoublyRobust(separate_arms=True, random_state=42)
        dr.fit(X, treatment, y)

        assert abs(dr.estimate_ate() - 2.0) < 0.5

    def test_custom_models(self):
        """Test with custom propensity and outcome models."""
        X, treatment, y = generate_synthetic_data()
        custom_ps = LogisticRegression(C=0.5, random_state=42)
        custom_outcome = LinearRegression()

        dr = DoublyRobust(
            propensity_model=custom_ps, outcome_model=custom_outcome, random_state=42
        )
        dr.fit(X, treatment, y)

        ate = dr.estimate_ate()
        assert isinstance(ate, float)

    def test_model_wrappers(self):
        """Test passing configured model wrappers directly."""
        X, treatment, y = generate_synthetic_data()
        dr = DoublyRobust(
            propensity_model=PropensityModel(max_iter=500),
            outcome_model=OutcomeModel(separate_arms=True),
            random_state=42,
        )
        dr.fit(X, treatment, y)

        assert abs(dr.estimate_ate() - 2.0) < 0.5

    def test_not_fitted_error(self):
        """Test error when estimating without fitting."""
        dr = DoublyRobust()
        with pytest.raises(ValueError, match="not been fitted"):
            dr.estimate_ate()


class TestInputValidation:
    """Tests for input validation across estimators."""

    @pytest.mark.parametrize(
        "EstimatorClass",
        [PropensityScoreMatching, InversePropensityWeighting, DoublyRobust],
    )
    def test_mismatched_lengths(self, EstimatorClass):
        """Test error on mismatched input lengths."""
        X = np.random.randn(100, 3)
        treatment = np.random.randint(0, 2, 50)  # Wrong length
        y = np.random.randn(100)

        estimator = EstimatorClass(random_state=42)
        with pytest.raises(ValueError, match="samples"):
            estimator.fit(X, treatment, y)

    @pytest.mark.parametrize(
        "EstimatorClass",
        [PropensityScoreMatching, InversePropensityWeighting, DoublyRobust],
    )
    def test_non_binary_treatment(self, EstimatorClass):
        """Test error on non-binary treatment."""
        X = np.random.randn(100, 3)
        treatment = np.random.randint(0, 3, 100)  # Non-binary
        treatment[:3] = 2
        y = np.random.randn(100)

        estimator = EstimatorClass(random_state=42)
        with pytest.raises(ValueError, match="binary"):
            estimator.fit(X, treatment, y)

    @pytest.mark.parametrize(
        "EstimatorClass",
        [PropensityScoreMatching, InversePropensityWeighting, DoublyRobust],
    )
    def test_single_arm(self, EstimatorClass):
        """Test error when one treatment arm is missing."""
        X = np.random.randn(100, 3)
        treatment = np.ones(100, dtype=int)
        y = np.random.randn(100)

        estimator = EstimatorClass(random_state=42)
        with pytest.raises(InsufficientDataError) as excinfo:
            estimator.fit(X, treatment, y)
        assert excinfo.value.n_treated == 100
        assert excinfo.value.n_control == 0

    @pytest.mark.parametrize(
        "EstimatorClass",
        [PropensityScoreMatching, InversePropensityWeighting, DoublyRobust],
    )
    def test_1d_covariates(self, EstimatorClass):
        """Test that 1D covariates are reshaped."""
        rng = np.random.RandomState(0)
        X = rng.randn(100)
        treatment = np.tile([0, 1], 50)
        y = rng.randn(100)

        estimator = EstimatorClass(random_state=42)
        estimator.fit(X, treatment, y)

        ate = estimator.estimate_ate()
        assert isinstance(ate, float)


class TestSklearnCompatibility:
    """Tests for scikit-learn API compatibility."""

    @pytest.mark.parametrize(
        "EstimatorClass",
        [PropensityScoreMatching, InversePropensityWeighting, DoublyRobust],
    )
    def test_get_params(self, EstimatorClass):
        """Test get_params method."""
        estimator = EstimatorClass(random_state=42)
        params = estimator.get_params()

        assert isinstance(params, dict)
        assert "random_state" in params
        assert params["random_state"] == 42
        assert params["epsilon"] == 1e-6

    @pytest.mark.parametrize(
        "EstimatorClass",
        [PropensityScoreMatching, InversePropensityWeighting, DoublyRobust],
    )
    def test_set_params(self, EstimatorClass):
        """Test set_params method."""
        estimator = EstimatorClass(random_state=42)
        estimator.set_params(random_state=123)

        assert estimator.random_state == 123

    @pytest.mark.parametrize(
        "EstimatorClass",
        [PropensityScoreMatching, InversePropensityWeighting, DoublyRobust],
    )
    def test_repr(self, EstimatorClass):
        """Test string representation."""
        estimator = EstimatorClass(random_state=42)
        repr_str = repr(estimator)

        assert EstimatorClass.__name__ in repr_str
