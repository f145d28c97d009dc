"""Causal inference estimators."""

import logging

import numpy as np
from sklearn.base import clone
from sklearn.linear_model import LinearRegression

from .base import BaseCausalEstimator
from .exceptions import InsufficientDataError
from .matching import NearestNeighborMatcher, balance_table
from .models import OutcomeModel
from .weighting import compute_weights, trim, weight_summary

logger = logging.getLogger(__name__)


class PropensityScoreMatching(BaseCausalEstimator):
    """Propensity Score Matching estimator for causal inference.

    Estimates treatment effects by matching treated units to control units
    with similar propensity scores, greedily and without replacement by
    default, then taking the difference in mean outcomes over the matched
    dataset.

    Parameters
    ----------
    n_neighbors : int, default=1
        Number of controls matched to each treated unit.
    caliper : float or None, default=None
        Maximum distance for a match. If None, no caliper is used.
    replace : bool, default=False
        Whether a control unit may be matched more than once.
    propensity_model : estimator or None, default=None
        Model to estimate propensity scores. Must have fit and predict_proba
        methods. If None, uses LogisticRegression.
    epsilon : float, default=1e-6
        Propensity scores are clipped into ``[epsilon, 1 - epsilon]``.
    max_clipped_fraction : float, default=0.0
        Share of clipped scores tolerated before positivity is reported.
    positivity_action : {"warn", "raise"}, default="warn"
        How a positivity problem is reported.
    max_iter : int, default=1000
        Iteration cap for the propensity solver.
    random_state : int or None, default=None
        Random state for reproducibility.

    Attributes
    ----------
    ate_ : float
        Estimated average treatment effect after fitting.
    att_ : float
        Estimated average treatment effect on the treated after fitting.
    propensity_scores_ : ndarray of shape (n_samples,)
        Estimated propensity scores.
    match_result_ : MatchResult
        Matched pairs and unmatched treated units.
    matched_indices_ : ndarray
        Row indices of the matched dataset.
    match_weights_ : ndarray of shape (n_samples,)
        Frequency of each unit in the matched dataset.
    n_unmatched_ : int
        Treated units left without a control.
    balance_before_, balance_after_ : dict
        Standardised mean differences before and after matching.

    Examples
    --------
    >>> from sk_ate import PropensityScoreMatching
    >>> import numpy as np
    >>> X = np.random.randn(100, 3)
    >>> treatment = (X[:, 0] + np.random.randn(100) > 0).astype(int)
    >>> y = treatment * 2 + X[:, 0] + np.random.randn(100) * 0.5
    >>> psm = PropensityScoreMatching(n_neighbors=1)
    >>> psm.fit(X, treatment, y)
    >>> print(f"ATE: {psm.estimate_ate():.2f}")
    """

    def __init__(
        self,
        n_neighbors=1,
        caliper=None,
        replace=False,
        propensity_model=None,
        epsilon=1e-6,
        max_clipped_fraction=0.0,
        positivity_action="warn",
        max_iter=1000,
        random_state=None,
    ):
        super().__init__(
            propensity_model=propensity_model,
            epsilon=epsilon,
            max_clipped_fraction=max_clipped_fraction,
            positivity_action=positivity_action,
            max_iter=max_iter,
            random_state=random_state,
        )
        self.n_neighbors = n_neighbors
        self.caliper = caliper
        self.replace = replace

    def fit(self, X, treatment, y):
        """Fit the propensity score matching estimator.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Covariate matrix.
        treatment : array-like of shape (n_samples,)
            Binary treatment indicator (0 or 1).
        y : array-like of shape (n_samples,)
            Observed outcomes.

        Returns
        -------
        self : object
            Fitted estimator.

        Raises
        ------
        InsufficientDataError
            If no treated unit could be matched.
        """
        X, treatment, y = self._validate_inputs(X, treatment, y)

        self.X_ = X
        self.treatment_ = treatment
        self.y_ = y

        ps = self._fit_propensity(X, treatment)

        # Perform matching
        matcher = NearestNeighborMatcher(
            ratio=self.n_neighbors, caliper=self.caliper, replace=self.replace
        )
        self.match_result_ = matcher.match(ps, treatment)
        if self.match_result_.n_matched == 0:
            raise InsufficientDataError(
                "No treated unit could be matched to a control.",
                n_treated=int(treatment.sum()),
                n_control=int((1 - treatment).sum()),
            )

        self.matched_indices_ = self.match_result_.matched_indices()
        self.match_weights_ = self.match_result_.match_weights(len(y))
        self.n_unmatched_ = self.match_result_.n_unmatched

        # Difference in means over the matched dataset
        w = self.match_weights_
        treated_mask = (treatment == 1) & (w > 0)
        control_mask = (treatment == 0) & (w > 0)
        mean_treated = np.average(y[treated_mask], weights=w[treated_mask])
        mean_control = np.average(y[control_mask], weights=w[control_mask])

        self.att_ = float(mean_treated - mean_control)
        self.ate_ = self.att_  # PSM primarily estimates ATT

        self.balance_before_ = balance_table(X, treatment)
        self.balance_after_ = balance_table(X, treatment, weights=w)
        logger.info(
            "Matched %d of %d treated units (%d unmatched), ATE %.4f",
            self.match_result_.n_matched,
            self.match_result_.n_treated,
            self.n_unmatched_,
            self.ate_,
        )
        return self

    def estimate_att(self):
        """Estimate the Average Treatment Effect on the Treated (ATT).

        Returns
        -------
        att : float
            Estimated average treatment effect on the treated.
        """
        if not hasattr(self, "att_"):
            raise ValueError("Estimator has not been fitted. Call fit() first.")
        return self.att_


class InversePropensityWeighting(BaseCausalEstimator):
    """Inverse Propensity Weighting (IPW) estimator for causal inference.

    Estimates treatment effects using inverse probability of treatment
    weighting to create a pseudo-population where treatment is independent
    of covariates.

    Parameters
    ----------
    propensity_model : estimator or None, default=None
        Model to estimate propensity scores. Must have fit and predict_proba
        methods. If None, uses LogisticRegression.
    normalize_weights : bool, default=True
        Whether to normalize weights to sum to 1 within each treatment group.
    trim_quantiles : tuple of (float, float) or None, default=None
        Trim weights outside this quantile range. If None, no trimming.
    trim_policy : {"clamp", "exclude"}, default="clamp"
        Clamp trimmed weights to the bounds or exclude the units.
    extreme_weight_threshold : float or None, default=None
        Absolute threshold above which weights are flagged as extreme.
    extreme_weight_factor : float, default=10.0
        If no absolute threshold is given, weights above this multiple of
        the mean weight are flagged.
    epsilon : float, default=1e-6
        Propensity scores are clipped into ``[epsilon, 1 - epsilon]``.
    max_clipped_fraction : float, default=0.0
        Share of clipped scores tolerated before positivity is reported.
    positivity_action : {"warn", "raise"}, default="warn"
        How a positivity problem is reported.
    max_iter : int, default=1000
        Iteration cap for the propensity solver.
    random_state : int or None, default=None
        Random state for reproducibility.

    Attributes
    ----------
    ate_ : float
        Estimated average treatment effect after fitting.
    propensity_scores_ : ndarray of shape (n_samples,)
        Estimated propensity scores.
    weights_ : ndarray of shape (n_samples,)
        IPW weights for each observation, after clamping if requested.
    keep_mask_ : ndarray of bool
        Units that take part in the estimate.
    n_trimmed_ : int
        Units clamped or excluded by trimming.
    weight_summary_ : WeightSummary
        Distribution of the untrimmed weights.
    balance_ : dict
        Weighted standardised mean differences.

    Examples
    --------
    >>> from sk_ate import InversePropensityWeighting
    >>> import numpy as np
    >>> X = np.random.randn(100, 3)
    >>> treatment = (X[:, 0] + np.random.randn(100) > 0).astype(int)
    >>> y = treatment * 2 + X[:, 0] + np.random.randn(100) * 0.5
    >>> ipw = InversePropensityWeighting()
    >>> ipw.fit(X, treatment, y)
    >>> print(f"ATE: {ipw.estimate_ate():.2f}")
    """

    def __init__(
        self,
        propensity_model=None,
        normalize_weights=True,
        trim_quantiles=None,
        trim_policy="clamp",
        extreme_weight_threshold=None,
        extreme_weight_factor=10.0,
        epsilon=1e-6,
        max_clipped_fraction=0.0,
        positivity_action="warn",
        max_iter=1000,
        random_state=None,
    ):
        super().__init__(
            propensity_model=propensity_model,
            epsilon=epsilon,
            max_clipped_fraction=max_clipped_fraction,
            positivity_action=positivity_action,
            max_iter=max_iter,
            random_state=random_state,
        )
        self.normalize_weights = normalize_weights
        self.trim_quantiles = trim_quantiles
        self.trim_policy = trim_policy
        self.extreme_weight_threshold = extreme_weight_threshold
        self.extreme_weight_factor = extreme_weight_factor

    def fit(self, X, treatment, y):
        """Fit the IPW estimator.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Covariate matrix.
        treatment : array-like of shape (n_samples,)
            Binary treatment indicator (0 or 1).
        y : array-like of shape (n_samples,)
            Observed outcomes.

        Returns
        -------
        self : object
            Fitted estimator.
        """
        X, treatment, y = self._validate_inputs(X, treatment, y)

        self.X_ = X
        self.treatment_ = treatment
        self.y_ = y

        ps = self._fit_propensity(X, treatment)

        # Compute IPW weights
        weights = compute_weights(treatment, ps)
        self.weight_summary_ = weight_summary(
            weights,
            threshold=self.extreme_weight_threshold,
            extreme_factor=self.extreme_weight_factor,
        )

        keep = np.ones(len(y), dtype=bool)
        self.n_trimmed_ = 0
        if self.trim_quantiles is not None:
            trimmed = trim(weights, *self.trim_quantiles, policy=self.trim_policy)
            keep = trimmed.keep_mask
            self.n_trimmed_ = trimmed.n_trimmed
            if self.trim_policy == "clamp":
                weights = trimmed.weights
            else:
                weights = np.where(keep, weights, 0.0)
        self.weights_ = weights
        self.keep_mask_ = keep

        treated_mask = (treatment == 1) & keep
        control_mask = (treatment == 0) & keep
        if not treated_mask.any() or not control_mask.any():
            raise InsufficientDataError(
                "Trimming removed an entire treatment arm.",
                n_treated=int(treated_mask.sum()),
                n_control=int(control_mask.sum()),
            )

        if self.normalize_weights:
            # Normalized (Hajek) estimator
            w_treated = weights[treated_mask]
            w_control = weights[control_mask]

            mean_treated = np.sum(w_treated * y[treated_mask]) / np.sum(w_treated)
            mean_control = np.sum(w_control * y[control_mask]) / np.sum(w_control)
        else:
            # Horvitz-Thompson estimator
            n = int(keep.sum())
            mean_treated = np.sum(weights[treated_mask] * y[treated_mask]) / n
            mean_control = np.sum(weights[control_mask] * y[control_mask]) / n

        self.ate_ = float(mean_treated - mean_control)
        self.balance_ = balance_table(X, treatment, weights=weights)
        logger.info(
            "IPW estimate %.4f (%d trimmed, %d extreme weights)",
            self.ate_,
            self.n_trimmed_,
            self.weight_summary_.n_extreme,
        )
        return self

    def regression_ate(self):
        """ATE as the weighted least squares coefficient of y on treatment.

        Agrees with the normalized (Hajek) estimate to floating point
        tolerance.

        Returns
        -------
        ate : float
        """
        if not hasattr(self, "weights_"):
            raise ValueError("Estimator has not been fitted. Call fit() first.")
        keep = self.keep_mask_
        wls = LinearRegression().fit(
            self.treatment_[keep].reshape(-1, 1).astype(float),
            self.y_[keep],
            sample_weight=self.weights_[keep],
        )
        return float(wls.coef_[0])


class DoublyRobust(BaseCausalEstimator):
    """Doubly Robust (AIPW) estimator for causal inference.

    Combines inverse propensity weighting with outcome regression to create
    an estimator that is consistent if either the propensity score model
    or the outcome model is correctly specified.

    Parameters
    ----------
    propensity_model : estimator or None, default=None
        Model to estimate propensity scores. Must have fit and predict_proba
        methods. If None, uses LogisticRegression.
    outcome_model : estimator or None, default=None
        An :class:`~sk_ate.models.OutcomeModel`, or any regressor with fit
        and predict methods. If None, uses ordinary least squares of y on
        treatment and covariates.
    separate_arms : bool, default=False
        Fit one outcome regression per treatment arm instead of a single
        additive model.
    epsilon : float, default=1e-6
        Propensity scores are clipped into ``[epsilon, 1 - epsilon]``.
    max_clipped_fraction : float, default=0.0
        Share of clipped scores tolerated before positivity is reported.
    positivity_action : {"warn", "raise"}, default="warn"
        How a positivity problem is reported.
    max_iter : int, default=1000
        Iteration cap for the propensity solver.
    random_state : int or None, default=None
        Random state for reproducibility.

    Attributes
    ----------
    ate_ : float
        Estimated average treatment effect after fitting.
    propensity_scores_ : ndarray of shape (n_samples,)
        Estimated propensity scores.
    weights_ : ndarray of shape (n_samples,)
        IPW weights implied by the propensity scores.
    mu0_ : ndarray of shape (n_samples,)
        Predicted outcomes under control.
    mu1_ : ndarray of shape (n_samples,)
        Predicted outcomes under treatment.

    Examples
    --------
    >>> from sk_ate import DoublyRobust
    >>> import numpy as np
    >>> X = np.random.randn(100, 3)
    >>> treatment = (X[:, 0] + np.random.randn(100) > 0).astype(int)
    >>> y = treatment * 2 + X[:, 0] + np.random.randn(100) * 0.5
    >>> dr = DoublyRobust()
    >>> dr.fit(X, treatment, y)
    >>> print(f"ATE: {dr.estimate_ate():.2f}")
    """

    def __init__(
        self,
        propensity_model=None,
        outcome_model=None,
        separate_arms=False,
        epsilon=1e-6,
        max_clipped_fraction=0.0,
        positivity_action="warn",
        max_iter=1000,
        random_state=None,
    ):
        super().__init__(
            propensity_model=propensity_model,
            epsilon=epsilon,
            max_clipped_fraction=max_clipped_fraction,
            positivity_action=positivity_action,
            max_iter=max_iter,
            random_state=random_state,
        )
        self.outcome_model = outcome_model
        self.separate_arms = separate_arms

    def _make_outcome_model(self):
        if isinstance(self.outcome_model, OutcomeModel):
            return clone(self.outcome_model)
        return OutcomeModel(estimator=self.outcome_model, separate_arms=self.separate_arms)

    def fit(self, X, treatment, y):
        """Fit the doubly robust estimator.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Covariate matrix.
        treatment : array-like of shape (n_samples,)
            Binary treatment indicator (0 or 1).
        y : array-like of shape (n_samples,)
            Observed outcomes.

        Returns
        -------
        self : object
            Fitted estimator.
        """
        X, treatment, y = self._validate_inputs(X, treatment, y)

        self.X_ = X
        self.treatment_ = treatment
        self.y_ = y

        ps = self._fit_propensity(X, treatment)
        self.weights_ = compute_weights(treatment, ps)

        # Fit outcome model and predict potential outcomes
        self._outcome_model = self._make_outcome_model().fit(X, treatment, y)
        self.mu1_, self.mu0_ = self._outcome_model.predict_outcomes(X)

        # Compute AIPW estimator
        # E[Y(1)] = E[mu1(X) + T(Y - mu1(X))/e(X)]
        # E[Y(0)] = E[mu0(X) + (1-T)(Y - mu0(X))/(1-e(X))]
        aipw_treated = self.mu1_ + treatment * (y - self.mu1_) / ps
        aipw_control = self.mu0_ + (1 - treatment) * (y - self.mu0_) / (1 - ps)

        self.ate_ = float(np.mean(aipw_treated - aipw_control))
        logger.info("Doubly robust estimate %.4f", self.ate_)
        return self

    def estimate_cate(self, X):
        """Estimate Conditional Average Treatment Effects (CATE).

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Covariate matrix for which to estimate CATE.

        Returns
        -------
        cate : ndarray of shape (n_samples,)
            Estimated conditional average treatment effects.
        """
        if not hasattr(self, "mu0_"):
            raise ValueError("Estimator has not been fitted. Call fit() first.")

        mu1, mu0 = self._outcome_model.predict_outcomes(X)
        return mu1 - mu0
