"""Dataset-level ATE estimation and bootstrap replicates.

:class:`ATEEstimator` turns an :class:`~sk_ate.config.EstimationConfig` into
one of the scikit-learn style estimators, runs it on a
:class:`~sk_ate.data.Dataset` and packages the outcome as an
:class:`~sk_ate.results.ATEResult`.
"""

import logging

import numpy as np
from joblib import Parallel, delayed

from .config import METHODS, EstimationConfig
from .data import Dataset
from .estimators import DoublyRobust, InversePropensityWeighting, PropensityScoreMatching
from .results import ATEResult
from .weighting import weight_summary

logger = logging.getLogger(__name__)


class ATEEstimator:
    """Estimate the ATE of a dataset by matching, IPW or doubly robust.

    Parameters
    ----------
    config : EstimationConfig or None, default=None
        Estimation options. Defaults to ``EstimationConfig()``.
    propensity_model : estimator or None, default=None
        Propensity model plug-in (a PropensityModel or any classifier).
    outcome_model : estimator or None, default=None
        Outcome model plug-in for DR (an OutcomeModel or any regressor).
    """

    def __init__(self, config=None, propensity_model=None, outcome_model=None):
        self.config = config if config is not None else EstimationConfig()
        self.propensity_model = propensity_model
        self.outcome_model = outcome_model

    def build_estimator(self, method=None):
        """Return an unfitted estimator for ``method`` configured from ``config``."""
        config = self.config
        method = method or config.method
        common = dict(
            propensity_model=self.propensity_model,
            epsilon=config.positivity_epsilon,
            max_clipped_fraction=config.max_clipped_fraction,
            positivity_action=config.positivity_action,
            max_iter=config.max_iter,
            random_state=config.random_state,
        )
        if method == "matching":
            return PropensityScoreMatching(
                n_neighbors=config.match_ratio,
                caliper=config.caliper,
                replace=config.match_with_replacement,
                **common,
            )
        if method == "ipw":
            return InversePropensityWeighting(
                normalize_weights=config.normalize_weights,
                trim_quantiles=config.trim_quantiles,
                trim_policy=config.trim_policy,
                extreme_weight_threshold=config.extreme_weight_threshold,
                extreme_weight_factor=config.extreme_weight_factor,
                **common,
            )
        if method == "dr":
            return DoublyRobust(
                outcome_model=self.outcome_model,
                separate_arms=config.separate_outcome_models,
                **common,
            )
        raise ValueError(f"method must be one of {METHODS}, got {method!r}")

    def estimate(self, dataset, method=None):
        """Estimate the ATE.

        Parameters
        ----------
        dataset : Dataset
            Units to estimate on. Not modified.
        method : {"matching", "ipw", "dr"} or None, default=None
            Overrides ``config.method``.

        Returns
        -------
        result : ATEResult
            Point estimate, diagnostics and, when
            ``config.bootstrap_replicates > 0``, the bootstrap replicates.

        Raises
        ------
        ModelFitError
            If the propensity or outcome model cannot be fitted.
        PositivityViolation
            If too many scores are clipped and ``positivity_action="raise"``.
        InsufficientDataError
            If a treatment arm is missing or nothing could be matched.
        """
        if not isinstance(dataset, Dataset):
            raise TypeError("dataset must be a sk_ate.Dataset")
        method = method or self.config.method
        if self.config.trim_quantiles is not None and method != "ipw":
            logger.warning(
                "trim_quantiles=%s is ignored for method %r; trimming applies to ipw only",
                self.config.trim_quantiles,
                method,
            )
        estimator = self.build_estimator(method)
        estimator.fit(dataset.covariates, dataset.treatment, dataset.outcome)

        diagnostics = {
            "n_units": dataset.n_units,
            "n_treated": dataset.n_treated,
            "n_control": dataset.n_control,
            "n_clipped": estimator.n_clipped_,
            "clipped_indices": estimator.clipped_indices_.tolist(),
            "clipped_labels": dataset.index[estimator.clipped_indices_].tolist(),
        }
        names = dataset.covariate_names
        weights = None
        pairs = None
        matched = None

        if method == "matching":
            match = estimator.match_result_
            diagnostics.update(
                n_matched=match.n_matched,
                n_unmatched=match.n_unmatched,
                unmatched_treated=match.unmatched_treated.tolist(),
                unmatched_labels=dataset.index[match.unmatched_treated].tolist(),
                balance_before=dict(zip(names, estimator.balance_before_.values())),
                balance_after=dict(zip(names, estimator.balance_after_.values())),
            )
            pairs = match.pairs
            matched = dataset.take(match.matched_indices())
        elif method == "ipw":
            weights = estimator.weights_
            diagnostics.update(
                weight_summary=estimator.weight_summary_.as_dict(),
                n_trimmed=estimator.n_trimmed_,
                balance=dict(zip(names, estimator.balance_.values())),
            )
        else:
            weights = estimator.weights_
            diagnostics.update(
                weight_summary=_summary_for(weights, self.config),
                mean_mu1=float(np.mean(estimator.mu1_)),
                mean_mu0=float(np.mean(estimator.mu0_)),
            )

        replicates = None
        if self.config.bootstrap_replicates > 0:
            replicates = bootstrap(
                dataset,
                method=method,
                config=self.config,
                propensity_model=self.propensity_model,
                outcome_model=self.outcome_model,
            )

        result = ATEResult(
            estimate=estimator.estimate_ate(),
            method=method,
            diagnostics=diagnostics,
            propensity_scores=estimator.propensity_scores_,
            weights=weights,
            matched_pairs=pairs,
            matched_dataset=matched,
            replicates=replicates,
        )
        logger.info("%s ATE on %d units: %.4f", method, dataset.n_units, result.estimate)
        return result


def _summary_for(weights, config):
    return weight_summary(
        weights,
        threshold=config.extreme_weight_threshold,
        extreme_factor=config.extreme_weight_factor,
    ).as_dict()


def estimate(dataset, method=None, config=None, propensity_model=None, outcome_model=None):
    """Estimate the ATE of ``dataset``. See :meth:`ATEEstimator.estimate`."""
    return ATEEstimator(
        config=config, propensity_model=propensity_model, outcome_model=outcome_model
    ).estimate(dataset, method=method)


def _bootstrap_replicate(seed, dataset, method, config, propensity_model, outcome_model):
    """Resample with replacement, re-estimate and return one ATE value."""
    rng = np.random.default_rng(seed)
    sample = dataset.resample(rng)
    estimator = ATEEstimator(
        config=config, propensity_model=propensity_model, outcome_model=outcome_model
    ).build_estimator(method)
    estimator.fit(sample.covariates, sample.treatment, sample.outcome)
    return estimator.estimate_ate()


def bootstrap(
    dataset,
    method=None,
    config=None,
    n_replicates=None,
    propensity_model=None,
    outcome_model=None,
):
    """Bootstrap replicates of the ATE.

    Each replicate draws ``n_units`` units with replacement, reruns the
    estimator and records one ATE value. Replicates are independent and
    run through :class:`joblib.Parallel` with ``config.n_jobs`` workers.
    Summarising them into a confidence interval is left to the caller.

    Parameters
    ----------
    dataset : Dataset
        Units to resample.
    method : {"matching", "ipw", "dr"} or None, default=None
        Overrides ``config.method``.
    config : EstimationConfig or None, default=None
        Estimation options; ``random_state`` seeds the resampling.
    n_replicates : int or None, default=None
        Overrides ``config.bootstrap_replicates``.
    propensity_model, outcome_model : estimator or None, default=None
        Model plug-ins, as for :class:`ATEEstimator`.

    Returns
    -------
    replicates : ndarray of shape (n_replicates,)
    """
    config = config if config is not None else EstimationConfig()
    method = method or config.method
    n_replicates = config.bootstrap_replicates if n_replicates is None else n_replicates
    if n_replicates < 0:
        raise ValueError(f"n_replicates must be non-negative, got {n_replicates!r}")

    seeds = np.random.default_rng(config.random_state).integers(
        0, 2**32 - 1, size=n_replicates
    )
    logger.debug("Running %d %s bootstrap replicates", n_replicates, method)
    values = Parallel(n_jobs=config.n_jobs)(
        delayed(_bootstrap_replicate)(
            seed, dataset, method, config, propensity_model, outcome_model
        )
        for seed in seeds
    )
    return np.asarray(values, dtype=float)
