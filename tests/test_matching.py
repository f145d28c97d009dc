"""Tests for nearest-neighbour matching and balance diagnostics."""

import numpy as np
import pytest
from sklearn.linear_model import LinearRegression

from sk_ate import NearestNeighborMatcher, standardized_mean_difference
from sk_ate.matching import balance_table


class TestNearestNeighborMatcher:
    """Tests for NearestNeighborMatcher."""

    def test_closest_control(self):
        scores = np.array([0.3, 0.6, 0.31, 0.58])
        result = NearestNeighborMatcher().match(scores, [1, 1, 0, 0])

        assert [(p.treated, p.controls) for p in result.pairs] == [(0, (2,)), (1, (3,))]
        assert result.n_unmatched == 0
        assert result.pairs[0].distances == pytest.approx((0.01,))

    def test_tie_goes_to_lowest_control_index(self):
        scores = np.array([0.5, 0.75, 0.25])
        result = NearestNeighborMatcher().match(scores, [1, 0, 0])

        assert result.pairs[0].controls == (1,)

    def test_treated_processed_in_order(self):
        """Test that an earlier treated unit claims a control first."""
        scores = np.array([0.5, 0.6, 0.58, 0.1])
        result = NearestNeighborMatcher().match(scores, [1, 1, 0, 0])

        assert result.pairs[0].controls == (2,)
        assert result.pairs[1].controls == (3,)

    def test_exhausted_controls(self):
        scores = np.array([0.2, 0.4, 0.6, 0.41])
        result = NearestNeighborMatcher().match(scores, [1, 1, 1, 0])

        assert result.n_matched == 1
        assert result.n_unmatched == 2
        np.testing.assert_array_equal(result.unmatched_treated, [1, 2])
        assert result.pairs[0].treated == 0

    def test_ratio(self):
        scores = np.array([0.5, 0.3, 0.45, 0.52, 0.9, 0.1])
        result = NearestNeighborMatcher(ratio=2).match(scores, [1, 1, 0, 0, 0, 0])

        assert result.pairs[0].controls == (3, 2)
        # only two controls remain for the second treated unit
        assert set(result.pairs[1].controls) == {5, 4}
        assert result.n_unmatched == 0

    def test_partial_last_pair(self):
        scores = np.array([0.5, 0.3, 0.45, 0.52, 0.9])
        result = NearestNeighborMatcher(ratio=2).match(scores, [1, 1, 0, 0, 0])

        assert result.pairs[1].controls == (4,)

    def test_partial_pair_weights_match_ols(self):
        scores = np.array([0.5, 0.3, 0.45, 0.52, 0.9])
        treatment = np.array([1, 1, 0, 0, 0])
        y = np.array([4.0, 6.0, 1.0, 2.5, 0.5])
        result = NearestNeighborMatcher(ratio=2).match(scores, treatment)

        weights = result.match_weights(len(scores))
        np.testing.assert_array_equal(weights, [1, 1, 1, 1, 1])

        treated = treatment == 1
        weighted = np.average(y[treated], weights=weights[treated]) - np.average(
            y[~treated], weights=weights[~treated]
        )
        rows = result.matched_indices()
        ols = LinearRegression().fit(treatment[rows].reshape(-1, 1), y[rows])
        assert weighted == pytest.approx(ols.coef_[0])
        assert weighted == pytest.approx(5.0 - 4.0 / 3.0)

    def test_without_replacement_uses_each_control_once(self):
        rng = np.random.default_rng(3)
        scores = rng.uniform(0.05, 0.95, 200)
        treatment = (rng.random(200) < 0.3).astype(int)
        result = NearestNeighborMatcher(ratio=2).match(scores, treatment)

        controls = [c for pair in result.pairs for c in pair.controls]
        assert len(controls) == len(set(controls))
        assert all(treatment[c] == 0 for c in controls)
        assert all(treatment[pair.treated] == 1 for pair in result.pairs)

    def test_dense_coverage_fully_matched(self):
        treated_scores = np.linspace(0.2, 0.8, 50)
        control_scores = np.linspace(0.19, 0.81, 50)
        scores = np.concatenate([treated_scores, control_scores])
        treatment = np.repeat([1, 0], 50)
        result = NearestNeighborMatcher(ratio=1).match(scores, treatment)

        assert result.n_unmatched == 0
        assert result.n_matched == 50

    def test_caliper(self):
        scores = np.array([0.5, 0.9, 0.52, 0.1])
        result = NearestNeighborMatcher(caliper=0.05).match(scores, [1, 1, 0, 0])

        assert result.n_matched == 1
        np.testing.assert_array_equal(result.unmatched_treated, [1])

    def test_with_replacement(self):
        scores = np.array([0.5, 0.51, 0.49, 0.5, 0.1])
        result = NearestNeighborMatcher(replace=True).match(scores, [1, 1, 1, 0, 0])

        assert result.n_unmatched == 0
        assert all(pair.controls == (3,) for pair in result.pairs)
        weights = result.match_weights(5)
        np.testing.assert_array_equal(weights, [1, 1, 1, 3, 0])

    def test_matched_indices(self):
        scores = np.array([0.5, 0.3, 0.45, 0.52, 0.9, 0.1])
        result = NearestNeighborMatcher(ratio=2).match(scores, [1, 1, 0, 0, 0, 0])

        rows = result.matched_indices()
        assert rows[0] == 0
        assert len(rows) == 6
        np.testing.assert_array_equal(result.match_weights(6), np.ones(6))

    def test_invalid_ratio(self):
        with pytest.raises(ValueError, match="ratio"):
            NearestNeighborMatcher(ratio=0)

    def test_mismatched_lengths(self):
        with pytest.raises(ValueError, match="samples"):
            NearestNeighborMatcher().match([0.1, 0.2], [1, 0, 0])


class TestStandardizedMeanDifference:
    """Tests for balance diagnostics."""

    def test_known_value(self):
        covariate = [1.0, 2.0, 3.0, 1.0, 1.0, 1.0]
        treatment = [1, 1, 1, 0, 0, 0]
        smd = standardized_mean_difference(covariate, treatment)

        assert smd == pytest.approx(1.0 / np.sqrt(1.0 / 3.0))

    def test_zero_pooled_sd(self):
        assert standardized_mean_difference([2.0, 2.0, 2.0], [1, 0, 0]) == 0.0

    def test_weights_drop_units(self):
        covariate = [1.0, 5.0, 1.0, 9.0]
        treatment = [1, 1, 0, 0]
        smd = standardized_mean_difference(covariate, treatment, weights=[1, 0, 1, 0])

        assert smd == 0.0

    def test_balance_table(self):
        X = np.array([[1.0, 0.0], [2.0, 1.0], [3.0, 1.0], [1.0, 1.0]])
        table = balance_table(X, [1, 1, 0, 0], names=["age", "flag"])

        assert set(table) == {"age", "flag"}
        assert table["flag"] < 0
