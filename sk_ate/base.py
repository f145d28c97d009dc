"""Base classes for causal inference estimators."""

import logging
import warnings
from abc import ABC, abstractmethod

import numpy as np
from sklearn.base import BaseEstimator, clone

from .exceptions import InsufficientDataError, PositivityViolation, PositivityWarning
from .models import PropensityModel, clip_scores

logger = logging.getLogger(__name__)


def check_positivity(clipped_indices, n_units, max_clipped_fraction=0.0, action="warn"):
    """Report propensity scores that had to be clipped.

    Parameters
    ----------
    clipped_indices : ndarray of int
        Positions of clipped units.
    n_units : int
        Total number of units.
    max_clipped_fraction : float, default=0.0
        Clipped share tolerated silently.
    action : {"warn", "raise"}, default="warn"
        What to do once the tolerated share is exceeded.

    Raises
    ------
    PositivityViolation
        If ``action="raise"`` and too many scores were clipped.
    """
    n_clipped = len(clipped_indices)
    fraction = n_clipped / n_units if n_units else 0.0
    if n_clipped == 0 or fraction <= max_clipped_fraction:
        return
    message = (
        f"{n_clipped} of {n_units} propensity scores ({fraction:.1%}) were clipped "
        f"at the epsilon boundary; overlap is poor for units "
        f"{np.asarray(clipped_indices)[:20].tolist()}"
        + ("..." if n_clipped > 20 else "")
    )
    if action == "raise":
        raise PositivityViolation(
            message, n_clipped=n_clipped, fraction=fraction, indices=clipped_indices
        )
    if action != "warn":
        raise ValueError(f"action must be 'warn' or 'raise', got {action!r}")
    logger.warning(message)
    warnings.warn(message, PositivityWarning, stacklevel=3)


class BaseCausalEstimator(BaseEstimator, ABC):
    """Base class for causal inference estimators.

    All causal estimators should inherit from this class and implement
    the `fit` and `estimate_ate` methods. Propensity scores are produced by
    :class:`~sk_ate.models.PropensityModel` and checked for overlap here.

    Parameters
    ----------
    propensity_model : estimator or None, default=None
        A :class:`~sk_ate.models.PropensityModel`, or any classifier with
        fit and predict_proba methods. If None, uses unpenalised
        LogisticRegression.
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
    """

    def __init__(
        self,
        propensity_model=None,
        epsilon=1e-6,
        max_clipped_fraction=0.0,
        positivity_action="warn",
        max_iter=1000,
        random_state=None,
    ):
        self.propensity_model = propensity_model
        self.epsilon = epsilon
        self.max_clipped_fraction = max_clipped_fraction
        self.positivity_action = positivity_action
        self.max_iter = max_iter
        self.random_state = random_state

    @abstractmethod
    def fit(self, X, treatment, y):
        """Fit the causal estimator.

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
        pass

    def estimate_ate(self):
        """Estimate the Average Treatment Effect (ATE).

        Returns
        -------
        ate : float
            Estimated average treatment effect.
        """
        if not hasattr(self, "ate_"):
            raise ValueError("Estimator has not been fitted. Call fit() first.")
        return self.ate_

    def estimate_att(self):
        """Estimate the Average Treatment Effect on the Treated (ATT).

        Returns
        -------
        att : float
            Estimated average treatment effect on the treated.

        Raises
        ------
        NotImplementedError
            If the estimator does not support ATT estimation.
        """
        raise NotImplementedError(
            f"{self.__class__.__name__} does not support ATT estimation."
        )

    def _make_propensity_model(self):
        if isinstance(self.propensity_model, PropensityModel):
            return clone(self.propensity_model).set_params(epsilon=self.epsilon)
        return PropensityModel(
            estimator=self.propensity_model,
            epsilon=self.epsilon,
            max_iter=self.max_iter,
            random_state=self.random_state,
        )

    def _fit_propensity(self, X, treatment):
        """Fit the propensity model and set the score attributes.

        Sets ``propensity_scores_``, ``clipped_indices_`` and ``n_clipped_``
        and runs the positivity check. Returns the clipped scores.
        """
        self._propensity_model = self._make_propensity_model()
        self._propensity_model.fit(X, treatment)
        raw = self._propensity_model.predict_raw(X)
        scores, clipped = clip_scores(raw, self.epsilon)

        self.propensity_scores_ = scores
        self.clipped_indices_ = clipped
        self.n_clipped_ = len(clipped)
        logger.debug("%d of %d propensity scores clipped", len(clipped), len(scores))
        check_positivity(
            clipped, len(scores), self.max_clipped_fraction, self.positivity_action
        )
        return scores

    def _validate_inputs(self, X, treatment, y):
        """Validate input arrays.

        Parameters
        ----------
        X : array-like
            Covariate matrix.
        treatment : array-like
            Treatment indicator.
        y : array-like
            Outcomes.

        Returns
        -------
        X : ndarray
            Validated covariate matrix.
        treatment : ndarray
            Validated treatment array.
        y : ndarray
            Validated outcome array.

        Raises
        ------
        ValueError
            If shapes disagree or the treatment is not binary.
        InsufficientDataError
            If a treatment arm is empty.
        """
        X = np.asarray(X, dtype=float)
        treatment = np.asarray(treatment).ravel()
        y = np.asarray(y, dtype=float).ravel()

        if X.ndim == 1:
            X = X.reshape(-1, 1)

        n_samples = X.shape[0]
        if treatment.shape[0] != n_samples:
            raise ValueError(
                f"treatment has {treatment.shape[0]} samples, "
                f"but X has {n_samples} samples."
            )
        if y.shape[0] != n_samples:
            raise ValueError(
                f"y has {y.shape[0]} samples, but X has {n_samples} samples."
            )

        unique_treatments = np.unique(treatment)
        if not set(unique_treatments).issubset({0, 1}):
            raise ValueError(
                f"treatment must be binary (0 or 1), got values: {unique_treatments}"
            )
        treatment = treatment.astype(int)

        n_treated = int(treatment.sum())
        n_control = n_samples - n_treated
        if n_treated == 0 or n_control == 0:
            raise InsufficientDataError(
                f"Need both treated and control units, "
                f"got {n_treated} treated and {n_control} control.",
                n_treated=n_treated,
                n_control=n_control,
            )

        return X, treatment, y
