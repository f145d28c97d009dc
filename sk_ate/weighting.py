"""Inverse probability weights, weight diagnostics and trimming."""

import logging
from dataclasses import dataclass
from typing import Dict

import numpy as np

logger = logging.getLogger(__name__)

SUMMARY_QUANTILES = (0.05, 0.25, 0.5, 0.75, 0.95)


def compute_weights(treatment, propensity_scores):
    """Compute IPW weights ``D/e + (1 - D)/(1 - e)``.

    Parameters
    ----------
    treatment : array-like of shape (n_samples,)
        Binary treatment indicator (0 or 1).
    propensity_scores : array-like of shape (n_samples,)
        Propensity scores, already clipped away from 0 and 1.

    Returns
    -------
    weights : ndarray of shape (n_samples,)
    """
    treatment = np.asarray(treatment).ravel()
    ps = np.asarray(propensity_scores, dtype=float).ravel()
    if treatment.shape[0] != ps.shape[0]:
        raise ValueError(
            f"treatment has {treatment.shape[0]} samples, "
            f"but propensity_scores has {ps.shape[0]} samples."
        )
    if np.any(ps <= 0) or np.any(ps >= 1):
        raise ValueError("propensity_scores must lie strictly inside (0, 1).")
    return np.where(treatment == 1, 1 / ps, 1 / (1 - ps))


@dataclass(frozen=True, eq=False)
class WeightSummary:
    """Distribution summary of a weight vector."""

    min: float
    max: float
    mean: float
    quantiles: Dict[float, float]
    effective_sample_size: float
    threshold: float
    extreme_indices: np.ndarray

    @property
    def n_extreme(self):
        return len(self.extreme_indices)

    def as_dict(self):
        return {
            "min": self.min,
            "max": self.max,
            "mean": self.mean,
            "quantiles": dict(self.quantiles),
            "effective_sample_size": self.effective_sample_size,
            "threshold": self.threshold,
            "n_extreme": self.n_extreme,
            "extreme_indices": self.extreme_indices.tolist(),
        }


def weight_summary(weights, threshold=None, extreme_factor=10.0):
    """Summarise weights and flag extreme ones.

    Parameters
    ----------
    weights : array-like of shape (n_samples,)
        Non-negative weights.
    threshold : float or None, default=None
        Weights strictly above this value are flagged as extreme.
    extreme_factor : float, default=10.0
        When ``threshold`` is None, it is ``extreme_factor * mean(weights)``.

    Returns
    -------
    summary : WeightSummary
    """
    weights = np.asarray(weights, dtype=float).ravel()
    if weights.size == 0:
        raise ValueError("Cannot summarise an empty weight vector.")
    mean = float(weights.mean())
    if threshold is None:
        threshold = extreme_factor * mean
    extreme = np.flatnonzero(weights > threshold)
    if len(extreme):
        logger.info(
            "%d weights exceed the extreme threshold %.3g (max %.3g)",
            len(extreme),
            threshold,
            weights.max(),
        )
    sum_sq = np.sum(weights**2)
    values = np.quantile(weights, SUMMARY_QUANTILES)
    return WeightSummary(
        min=float(weights.min()),
        max=float(weights.max()),
        mean=mean,
        quantiles={q: float(v) for q, v in zip(SUMMARY_QUANTILES, values)},
        effective_sample_size=float(weights.sum() ** 2 / sum_sq) if sum_sq > 0 else 0.0,
        threshold=float(threshold),
        extreme_indices=extreme,
    )


@dataclass(frozen=True, eq=False)
class TrimResult:
    """Trimmed weights.

    Attributes
    ----------
    weights : ndarray
        Clamped weights (same length as the input) for ``"clamp"``, or the
        surviving weights for ``"exclude"``.
    keep_mask : ndarray of bool
        Which input units are still present.
    n_trimmed : int
        Units clamped or excluded.
    """

    weights: np.ndarray
    keep_mask: np.ndarray
    n_trimmed: int


def trim(weights, lower_quantile, upper_quantile, policy="clamp"):
    """Trim weights outside a quantile range.

    Parameters
    ----------
    weights : array-like of shape (n_samples,)
        Weights to trim.
    lower_quantile, upper_quantile : float
        Quantile bounds, ``0 <= lower_quantile < upper_quantile <= 1``.
    policy : {"clamp", "exclude"}, default="clamp"
        ``"clamp"`` pulls outlying weights onto the bounds and keeps every
        unit. ``"exclude"`` drops units outside the bounds.

    Returns
    -------
    result : TrimResult
    """
    if not 0.0 <= lower_quantile < upper_quantile <= 1.0:
        raise ValueError(
            f"Quantiles must satisfy 0 <= lower < upper <= 1, "
            f"got ({lower_quantile}, {upper_quantile})."
        )
    weights = np.asarray(weights, dtype=float).ravel()
    low, high = np.quantile(weights, [lower_quantile, upper_quantile])
    outside = (weights < low) | (weights > high)

    if policy == "clamp":
        return TrimResult(
            weights=np.clip(weights, low, high),
            keep_mask=np.ones(weights.shape[0], dtype=bool),
            n_trimmed=int(outside.sum()),
        )
    if policy == "exclude":
        keep = ~outside
        return TrimResult(
            weights=weights[keep], keep_mask=keep, n_trimmed=int(outside.sum())
        )
    raise ValueError(f"policy must be 'clamp' or 'exclude', got {policy!r}")
