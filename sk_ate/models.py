"""Propensity and outcome models.

Both models follow the scikit-learn ``fit``/``predict`` protocol and wrap an
arbitrary scikit-learn estimator, so alternative learners can be plugged in
without touching the ATE estimators. Logistic regression and ordinary least
squares are the defaults.
"""

import logging
import warnings

import numpy as np
from sklearn.base import BaseEstimator, clone
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LinearRegression, LogisticRegression

from .exceptions import ModelFitError

logger = logging.getLogger(__name__)

# Large enough that the L2 penalty has no practical effect on the MLE.
_UNPENALIZED_C = 1e8


def _as_2d(X):
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    return X


def _check_full_rank(design, what):
    rank = np.linalg.matrix_rank(design)
    if rank < design.shape[1]:
        raise ModelFitError(
            f"{what} design matrix is rank-deficient "
            f"(rank {rank} < {design.shape[1]} columns); "
            f"covariates are perfectly collinear."
        )


def _with_intercept(X):
    return np.column_stack([np.ones(X.shape[0]), X])


def clip_scores(scores, epsilon):
    """Clip propensity scores into ``[epsilon, 1 - epsilon]``.

    Parameters
    ----------
    scores : array-like of shape (n_samples,)
        Raw predicted probabilities.
    epsilon : float
        Boundary distance from 0 and 1.

    Returns
    -------
    clipped : ndarray of shape (n_samples,)
        Clipped scores.
    clipped_indices : ndarray of int
        Positions whose score had to be moved.
    """
    scores = np.asarray(scores, dtype=float)
    outside = (scores < epsilon) | (scores > 1.0 - epsilon)
    return np.clip(scores, epsilon, 1.0 - epsilon), np.flatnonzero(outside)


class PropensityModel(BaseEstimator):
    """Binary probability model for the propensity score e(x) = P(D=1 | x).

    Parameters
    ----------
    estimator : classifier or None, default=None
        Any scikit-learn classifier with ``fit`` and ``predict_proba``. It is
        cloned before fitting. If None, an unpenalised
        :class:`~sklearn.linear_model.LogisticRegression` is used.
    epsilon : float, default=1e-6
        Predicted scores are clipped into ``[epsilon, 1 - epsilon]``.
    max_iter : int, default=1000
        Iteration cap for the default solver.
    random_state : int or None, default=None
        Passed to the default logistic regression.

    Attributes
    ----------
    estimator_ : classifier
        The fitted classifier.
    coef_ : ndarray of shape (n_features,)
        Slope coefficients, if the fitted classifier exposes them.
    intercept_ : float
        Intercept, if the fitted classifier exposes it.
    clipped_indices_ : ndarray of int
        Positions clipped by the last call to ``predict``.
    n_clipped_ : int
        Number of positions clipped by the last call to ``predict``.
    """

    def __init__(self, estimator=None, epsilon=1e-6, max_iter=1000, random_state=None):
        self.estimator = estimator
        self.epsilon = epsilon
        self.max_iter = max_iter
        self.random_state = random_state

    def fit(self, X, treatment):
        """Fit the propensity model.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Covariate matrix.
        treatment : array-like of shape (n_samples,)
            Binary treatment indicator (0 or 1).

        Returns
        -------
        self : object
            Fitted model.

        Raises
        ------
        ModelFitError
            If the treatment has no variation, the covariates are
            collinear, or the solver does not converge.
        """
        X = _as_2d(X)
        treatment = np.asarray(treatment).ravel()
        if treatment.shape[0] != X.shape[0]:
            raise ValueError(
                f"treatment has {treatment.shape[0]} samples, "
                f"but X has {X.shape[0]} samples."
            )
        if not set(np.unique(treatment)).issubset({0, 1}):
            raise ValueError(
                f"treatment must be binary (0 or 1), got values: {np.unique(treatment)}"
            )
        treatment = treatment.astype(int)

        n_treated = int(treatment.sum())
        if n_treated == 0 or n_treated == treatment.shape[0]:
            raise ModelFitError(
                f"treatment has no variation ({n_treated} of "
                f"{treatment.shape[0]} units treated)."
            )
        _check_full_rank(_with_intercept(X), "Propensity")

        if self.estimator is None:
            model = LogisticRegression(
                C=_UNPENALIZED_C,
                max_iter=self.max_iter,
                random_state=self.random_state,
            )
        else:
            model = clone(self.estimator)

        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            try:
                model.fit(X, treatment)
            except ConvergenceWarning as exc:
                raise ModelFitError(
                    f"Propensity model did not converge within "
                    f"max_iter={self.max_iter}: {exc}"
                ) from exc

        self.estimator_ = model
        self._positive_column = list(model.classes_).index(1)
        if hasattr(model, "coef_"):
            self.coef_ = np.ravel(model.coef_)
            self.intercept_ = float(np.ravel(model.intercept_)[0])
        logger.debug(
            "Fitted propensity model %s on %d units (%d treated)",
            type(model).__name__,
            X.shape[0],
            n_treated,
        )
        return self

    def _check_fitted(self):
        if not hasattr(self, "estimator_"):
            raise ValueError("PropensityModel has not been fitted. Call fit() first.")

    def predict_raw(self, X):
        """Predict unclipped probabilities of treatment."""
        self._check_fitted()
        return self.estimator_.predict_proba(_as_2d(X))[:, self._positive_column]

    def predict(self, X):
        """Predict propensity scores clipped into ``[epsilon, 1 - epsilon]``.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Covariate matrix.

        Returns
        -------
        scores : ndarray of shape (n_samples,)
            Propensity scores, strictly inside (0, 1). Positions that had to
            be clipped are stored in ``clipped_indices_`` and counted in
            ``n_clipped_``.
        """
        scores, clipped = clip_scores(self.predict_raw(X), self.epsilon)
        self.clipped_indices_ = clipped
        self.n_clipped_ = len(clipped)
        return scores

    def fit_predict(self, X, treatment):
        """Fit the model and return the clipped in-sample scores."""
        return self.fit(X, treatment).predict(X)


class OutcomeModel(BaseEstimator):
    """Regression of the outcome on treatment and covariates.

    Counterfactual predictions hold the covariates fixed and force the
    treatment regressor to 0 or 1 for every row.

    Parameters
    ----------
    estimator : regressor or None, default=None
        Any scikit-learn regressor with ``fit`` and ``predict``. It is
        cloned before fitting. If None, ordinary least squares
        (:class:`~sklearn.linear_model.LinearRegression`) is used.
    separate_arms : bool, default=False
        If False, one additive model of Y on [D, X] is fitted. If True, one
        model of Y on X is fitted per treatment arm, which lets the effect
        vary with the covariates.

    Attributes
    ----------
    estimator_ : regressor
        The pooled model (``separate_arms=False``).
    estimator_0_, estimator_1_ : regressor
        The per-arm models (``separate_arms=True``).
    """

    def __init__(self, estimator=None, separate_arms=False):
        self.estimator = estimator
        self.separate_arms = separate_arms

    def _new_estimator(self):
        if self.estimator is None:
            return LinearRegression()
        return clone(self.estimator)

    def fit(self, X, treatment, y):
        """Fit the outcome model.

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
            Fitted model.

        Raises
        ------
        ModelFitError
            If the design matrix is rank-deficient or the outcome is not
            finite.
        """
        X = _as_2d(X)
        treatment = np.asarray(treatment).ravel().astype(int)
        y = np.asarray(y, dtype=float).ravel()
        if treatment.shape[0] != X.shape[0] or y.shape[0] != X.shape[0]:
            raise ValueError(
                f"X has {X.shape[0]} samples, treatment {treatment.shape[0]}, "
                f"y {y.shape[0]}."
            )
        if not np.all(np.isfinite(y)):
            raise ModelFitError("Outcome contains non-finite values.")

        if self.separate_arms:
            for arm in (0, 1):
                mask = treatment == arm
                if not mask.any():
                    raise ModelFitError(f"No units in treatment arm {arm}.")
                _check_full_rank(_with_intercept(X[mask]), f"Outcome (arm {arm})")
            self.estimator_0_ = self._new_estimator().fit(
                X[treatment == 0], y[treatment == 0]
            )
            self.estimator_1_ = self._new_estimator().fit(
                X[treatment == 1], y[treatment == 1]
            )
        else:
            design = np.column_stack([treatment, X])
            _check_full_rank(_with_intercept(design), "Outcome")
            self.estimator_ = self._new_estimator().fit(design, y)

        logger.debug(
            "Fitted outcome model on %d units (separate_arms=%s)",
            X.shape[0],
            self.separate_arms,
        )
        return self

    def predict_counterfactual(self, X, treatment_value):
        """Predict outcomes with treatment forced to ``treatment_value``.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Covariate matrix.
        treatment_value : {0, 1}
            Treatment level assigned to every row.

        Returns
        -------
        predictions : ndarray of shape (n_samples,)
        """
        if treatment_value not in (0, 1):
            raise ValueError(f"treatment_value must be 0 or 1, got {treatment_value!r}")
        if not (hasattr(self, "estimator_") or hasattr(self, "estimator_0_")):
            raise ValueError("OutcomeModel has not been fitted. Call fit() first.")
        X = _as_2d(X)
        if self.separate_arms:
            model = self.estimator_1_ if treatment_value == 1 else self.estimator_0_
            return np.asarray(model.predict(X), dtype=float)
        design = np.column_stack([np.full(X.shape[0], treatment_value), X])
        return np.asarray(self.estimator_.predict(design), dtype=float)

    def predict_outcomes(self, X):
        """Return the counterfactual pair ``(m1, m0)`` for every row."""
        return self.predict_counterfactual(X, 1), self.predict_counterfactual(X, 0)
